"""Pydantic request/response models for the API."""

from __future__ import annotations

from decimal import Decimal
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field

# Largest value a SQLite INTEGER column holds
MAX_INTEGER = 2**63 - 1
MAX_PRICE = Decimal("1000000000000")  # per hour
MAX_ESTIMATE_HOURS = Decimal("1000000")


class HealthResponse(BaseModel):
    """Response model for GET /health."""

    model_config = ConfigDict(extra="forbid")
    status: Literal["ok"]
    uptime_seconds: float
    started_at: str
    total_tasks: int
    tasks_by_status: dict[str, int]
    resources_by_status: dict[str, int]
    total_transactions: int


class ResourceRequest(BaseModel):
    """Body of POST /resources and PUT /resources/{resource_id}."""

    model_config = ConfigDict(extra="forbid")
    provider_id: str = Field(min_length=1)
    provider_name: str | None = Field(default=None, min_length=1, max_length=200)
    location: str = Field(min_length=1, max_length=200)
    cpu_cores: int = Field(ge=0, le=MAX_INTEGER, strict=True)
    gpu_memory: int = Field(ge=0, le=MAX_INTEGER, strict=True)
    cpu_price: Decimal = Field(ge=0, le=MAX_PRICE, allow_inf_nan=False)
    gpu_price: Decimal = Field(ge=0, le=MAX_PRICE, allow_inf_nan=False)
    availability: float | None = Field(default=None, ge=0, le=100)
    rating: float | None = Field(default=None, ge=0, le=5)
    status: Literal["active", "inactive"] | None = None


class EstimateRequest(BaseModel):
    """Body of POST /resources/{resource_id}/estimate."""

    model_config = ConfigDict(extra="forbid")
    cpu_cores: int = Field(ge=0, le=MAX_INTEGER, strict=True)
    gpu_memory: int = Field(ge=0, le=MAX_INTEGER, strict=True)
    hours: Decimal = Field(ge=0, le=MAX_ESTIMATE_HOURS, allow_inf_nan=False)


class TaskSubmitRequest(BaseModel):
    """Body of POST /tasks."""

    model_config = ConfigDict(extra="forbid")
    task_type: str = Field(min_length=1, max_length=200)
    description: str = Field(min_length=1, max_length=10000)
    consumer_id: str = Field(min_length=1)
    resource_id: str = Field(min_length=1)
    provider_id: str | None = Field(default=None, min_length=1)
    cpu_cores: int = Field(ge=0, le=MAX_INTEGER, strict=True)
    gpu_memory: int = Field(ge=0, le=MAX_INTEGER, strict=True)


class TaskCompleteRequest(BaseModel):
    """
    Body of POST /tasks/{task_id}/complete.

    Usage seconds default to the wall-clock time since start; wallet
    addresses default to the task's consumer_id and provider_id.
    """

    model_config = ConfigDict(extra="forbid")
    cpu_seconds: int | None = Field(default=None, ge=0, le=MAX_INTEGER, strict=True)
    gpu_seconds: int | None = Field(default=None, ge=0, le=MAX_INTEGER, strict=True)
    consumer_wallet_address: str | None = Field(default=None, min_length=1)
    provider_wallet_address: str | None = Field(default=None, min_length=1)
    simulate: bool = Field(default=False, strict=True)


class TaskFailRequest(BaseModel):
    """Body of POST /tasks/{task_id}/fail."""

    model_config = ConfigDict(extra="forbid")
    reason: str | None = Field(default=None, max_length=2000)
