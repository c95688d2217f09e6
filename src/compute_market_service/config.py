"""
Configuration management for the compute market service.

Loads configuration from YAML with ZERO defaults.
Every value must be explicitly specified or startup fails.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, Literal

from pydantic import BaseModel, ConfigDict, Field, model_validator
from service_commons.config import (
    REDACTION_MARKER,
    create_settings_loader,
    get_safe_model_config,
)
from service_commons.config import (
    get_config_path as resolve_config_path,
)

if TYPE_CHECKING:
    from pathlib import Path


class ServiceConfig(BaseModel):
    """Service identity configuration."""

    model_config = ConfigDict(extra="forbid")
    name: str
    version: str


class ServerConfig(BaseModel):
    """HTTP server configuration."""

    model_config = ConfigDict(extra="forbid")
    host: str
    port: int
    log_level: str


class LoggingConfig(BaseModel):
    """Logging configuration."""

    model_config = ConfigDict(extra="forbid")
    level: str
    directory: str | None


class DatabaseConfig(BaseModel):
    """Database configuration. ':memory:' keeps a store in process memory."""

    model_config = ConfigDict(extra="forbid")
    resources_path: str
    tasks_path: str


class WalletConfig(BaseModel):
    """Wallet transfer service connection configuration."""

    model_config = ConfigDict(extra="forbid")
    base_url: str
    transfer_path: str
    api_key: str | None = None


class PaymentsConfig(BaseModel):
    """Payment sender selection and behaviour."""

    model_config = ConfigDict(extra="forbid")
    mode: Literal["wallet", "simulate"]
    allow_simulation: bool
    timeout_seconds: float = Field(gt=0)
    simulated_delay_seconds: float = Field(ge=0)
    wallet: WalletConfig | None = None

    @model_validator(mode="after")
    def _wallet_required_for_wallet_mode(self) -> PaymentsConfig:
        if self.mode == "wallet" and self.wallet is None:
            msg = "payments.wallet must be configured when payments.mode is 'wallet'"
            raise ValueError(msg)
        return self


class AdmissionConfig(BaseModel):
    """Task admission policy."""

    model_config = ConfigDict(extra="forbid")
    reserve_capacity: bool


class PricingConfig(BaseModel):
    """Settlement and display precision."""

    model_config = ConfigDict(extra="forbid")
    settlement_decimals: int = Field(ge=0, le=36)
    display_decimals: int = Field(ge=2, le=6)


class RequestConfig(BaseModel):
    """Request handling configuration."""

    model_config = ConfigDict(extra="forbid")
    max_body_size: int


class Settings(BaseModel):
    """
    Root configuration container.

    All sections are REQUIRED. No defaults exist.
    Missing fields cause immediate startup failure.
    """

    model_config = ConfigDict(extra="forbid")
    service: ServiceConfig
    server: ServerConfig
    logging: LoggingConfig
    database: DatabaseConfig
    payments: PaymentsConfig
    admission: AdmissionConfig
    pricing: PricingConfig
    request: RequestConfig


def get_config_path() -> Path:
    """Determine configuration file path."""
    return resolve_config_path(
        env_var_name="CONFIG_PATH",
        default_filename="config.yaml",
    )


get_settings, clear_settings_cache = create_settings_loader(Settings, get_config_path)  # nosemgrep


def get_safe_config() -> dict[str, Any]:
    """Get configuration with sensitive values redacted."""
    return get_safe_model_config(get_settings(), REDACTION_MARKER)
