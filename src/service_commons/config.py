"""
Shared YAML configuration loading.

Services describe their configuration as pydantic models with
extra="forbid" and no defaults; this module locates the YAML file,
validates it against the model, and caches the result.
"""

from __future__ import annotations

import os
from functools import lru_cache
from pathlib import Path
from typing import TYPE_CHECKING, Any, TypeVar

import yaml

if TYPE_CHECKING:
    from collections.abc import Callable

    from pydantic import BaseModel

REDACTION_MARKER = "***REDACTED***"

_SENSITIVE_KEY_PARTS: tuple[str, ...] = ("api_key", "secret", "password", "token", "private_key")

SettingsT = TypeVar("SettingsT", bound="BaseModel")


def get_config_path(env_var_name: str, default_filename: str) -> Path:
    """
    Resolve the configuration file path.

    The environment variable wins when set; otherwise the default
    filename is resolved against the current working directory.
    """
    override = os.environ.get(env_var_name)
    if override:
        return Path(override)
    return Path.cwd() / default_filename


def load_yaml_mapping(config_path: Path) -> dict[str, Any]:
    """Read a YAML file that must contain a top-level mapping."""
    if not config_path.exists():
        msg = f"Configuration file not found: {config_path}"
        raise FileNotFoundError(msg)

    raw = yaml.safe_load(config_path.read_text())
    if not isinstance(raw, dict):
        msg = f"Invalid config file: {config_path}"
        raise ValueError(msg)
    return raw


def create_settings_loader(
    settings_cls: type[SettingsT],
    path_resolver: Callable[[], Path],
) -> tuple[Callable[[], SettingsT], Callable[[], None]]:
    """
    Build a cached settings getter and its cache-clear function.

    Returns:
        (get_settings, clear_settings_cache)
    """

    @lru_cache(maxsize=1)
    def get_settings() -> SettingsT:
        raw = load_yaml_mapping(path_resolver())
        return settings_cls.model_validate(raw)

    def clear_settings_cache() -> None:
        get_settings.cache_clear()

    return get_settings, clear_settings_cache


def _is_sensitive(key: str) -> bool:
    lowered = key.lower()
    return any(part in lowered for part in _SENSITIVE_KEY_PARTS)


def _redact(value: Any, marker: str) -> Any:
    if isinstance(value, dict):
        return {
            key: (marker if _is_sensitive(str(key)) and item is not None else _redact(item, marker))
            for key, item in value.items()
        }
    if isinstance(value, list):
        return [_redact(item, marker) for item in value]
    return value


def get_safe_model_config(settings: BaseModel, marker: str) -> dict[str, Any]:
    """Dump a settings model with sensitive values replaced by the marker."""
    redacted: dict[str, Any] = _redact(settings.model_dump(mode="json"), marker)
    return redacted
