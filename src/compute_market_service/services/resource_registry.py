"""Resource registry: provider-owned compute offers and their reservations."""

from __future__ import annotations

import uuid
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any

from compute_market_service.core.exceptions import NotFoundError, ValidationError
from compute_market_service.logging import get_logger
from compute_market_service.services.capacity import can_admit, free_capacity
from compute_market_service.services.pricing import (
    AmountOutOfRangeError,
    estimate_cost,
    format_amount,
)

if TYPE_CHECKING:
    from compute_market_service.schemas import EstimateRequest, ResourceRequest
    from compute_market_service.services.resource_store import ResourceStore
    from compute_market_service.services.task_store import TaskStore

_RESOURCE_TYPES = frozenset({"cpu", "gpu"})
_RESOURCE_STATUSES = frozenset({"active", "inactive"})

DEFAULT_PROVIDER_NAME = "Anonymous Provider"


def _now_iso() -> str:
    """Return current UTC time as ISO 8601 string with Z suffix."""
    return datetime.now(UTC).isoformat(timespec="microseconds").replace("+00:00", "Z")


class ResourceRegistry:
    """
    Keyed store of resources with status, capacity and reserved capacity.

    Consulted by the task controller at admission. Resources bound to a
    pending or running task are deactivated instead of deleted.
    """

    def __init__(self, store: ResourceStore, task_store: TaskStore, display_decimals: int) -> None:
        self._store = store
        self._task_store = task_store
        self._display_decimals = display_decimals
        self._logger = get_logger(__name__)

    def describe(self, resource: dict[str, Any]) -> dict[str, Any]:
        """Convert a stored resource to its JSON response shape."""
        available_cpu, available_gpu = free_capacity(resource)
        return {
            "resource_id": resource["resource_id"],
            "provider_id": resource["provider_id"],
            "provider_name": resource["provider_name"],
            "location": resource["location"],
            "cpu_cores": resource["cpu_cores"],
            "gpu_memory": resource["gpu_memory"],
            "cpu_price": str(resource["cpu_price"]),
            "gpu_price": str(resource["gpu_price"]),
            "availability": resource["availability"],
            "rating": resource["rating"],
            "status": resource["status"],
            "reserved_cpu_cores": resource["reserved_cpu_cores"],
            "reserved_gpu_memory": resource["reserved_gpu_memory"],
            "available_cpu_cores": available_cpu,
            "available_gpu_memory": available_gpu,
            "created_at": resource["created_at"],
            "updated_at": resource["updated_at"],
        }

    # ------------------------------------------------------------------
    # Lookups
    # ------------------------------------------------------------------

    def find(self, resource_id: str) -> dict[str, Any] | None:
        """Fetch a resource, or None if it does not exist."""
        return self._store.get_resource(resource_id)

    def get(self, resource_id: str) -> dict[str, Any]:
        """
        Fetch a resource.

        Raises:
            NotFoundError: RESOURCE_NOT_FOUND
        """
        resource = self._store.get_resource(resource_id)
        if resource is None:
            raise NotFoundError("RESOURCE_NOT_FOUND", "Resource not found")
        return resource

    def list_by_provider(self, provider_id: str) -> list[dict[str, Any]]:
        """All resources of a provider, whatever their status."""
        return self._store.list_resources(provider_id=provider_id, status=None, resource_type=None)

    def list_active(self) -> list[dict[str, Any]]:
        """All resources currently accepting tasks."""
        return self._store.list_resources(provider_id=None, status="active", resource_type=None)

    def list_resources(
        self,
        provider_id: str | None,
        resource_type: str | None,
        status: str | None,
    ) -> list[dict[str, Any]]:
        """List resources, optionally filtered by provider, type (cpu/gpu) and status."""
        if resource_type is not None and resource_type not in _RESOURCE_TYPES:
            raise ValidationError(f"type must be one of {sorted(_RESOURCE_TYPES)}")
        if status is not None and status not in _RESOURCE_STATUSES:
            raise ValidationError(f"status must be one of {sorted(_RESOURCE_STATUSES)}")
        return self._store.list_resources(
            provider_id=provider_id,
            status=status,
            resource_type=resource_type,
        )

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    def register(self, request: ResourceRequest) -> dict[str, Any]:
        """Register a new resource under a generated id."""
        resource_id = f"res-{uuid.uuid4()}"
        resource, _created = self.upsert(resource_id, request)
        return resource

    def upsert(self, resource_id: str, request: ResourceRequest) -> tuple[dict[str, Any], bool]:
        """
        Create or replace a resource's offer.

        Only the owning provider may change an existing resource; omitted
        optional fields keep their stored values. Reservations are never
        rewritten here.

        Returns:
            (resource, created)

        Raises:
            ValidationError: PROVIDER_MISMATCH if provider_id differs from the owner
        """
        now = _now_iso()
        existing = self._store.get_resource(resource_id)

        if existing is None:
            resource = {
                "resource_id": resource_id,
                "provider_id": request.provider_id,
                "provider_name": request.provider_name or DEFAULT_PROVIDER_NAME,
                "location": request.location,
                "cpu_cores": request.cpu_cores,
                "gpu_memory": request.gpu_memory,
                "cpu_price": request.cpu_price,
                "gpu_price": request.gpu_price,
                "availability": request.availability if request.availability is not None else 100,
                "rating": request.rating if request.rating is not None else 0,
                "status": request.status or "active",
                "reserved_cpu_cores": 0,
                "reserved_gpu_memory": 0,
                "created_at": now,
                "updated_at": now,
            }
            self._store.insert_resource(resource)
            self._logger.info(
                "Resource registered",
                extra={"resource_id": resource_id, "provider_id": request.provider_id},
            )
            return self.get(resource_id), True

        if existing["provider_id"] != request.provider_id:
            raise ValidationError(
                "Only the owning provider can modify this resource",
                {"resource_id": resource_id, "provider_id": existing["provider_id"]},
                error="PROVIDER_MISMATCH",
            )

        updates: dict[str, Any] = {
            "location": request.location,
            "cpu_cores": request.cpu_cores,
            "gpu_memory": request.gpu_memory,
            "cpu_price": request.cpu_price,
            "gpu_price": request.gpu_price,
            "updated_at": now,
        }
        if request.provider_name is not None:
            updates["provider_name"] = request.provider_name
        if request.availability is not None:
            updates["availability"] = request.availability
        if request.rating is not None:
            updates["rating"] = request.rating
        if request.status is not None:
            updates["status"] = request.status

        self._store.update_resource(resource_id, updates)
        self._logger.info("Resource updated", extra={"resource_id": resource_id})
        return self.get(resource_id), False

    def remove(self, resource_id: str) -> dict[str, Any]:
        """
        Remove a resource, or deactivate it while tasks are bound to it.

        Raises:
            NotFoundError: RESOURCE_NOT_FOUND
        """
        self.get(resource_id)
        active_tasks = self._task_store.count_active_tasks_for_resource(resource_id)

        if active_tasks > 0:
            self._store.update_resource(
                resource_id,
                {"status": "inactive", "updated_at": _now_iso()},
            )
            self._logger.info(
                "Resource in use, deactivated instead of removed",
                extra={"resource_id": resource_id, "active_tasks": active_tasks},
            )
            return {
                "resource_id": resource_id,
                "deleted": False,
                "status": "inactive",
                "active_tasks": active_tasks,
            }

        self._store.delete_resource(resource_id)
        self._logger.info("Resource removed", extra={"resource_id": resource_id})
        return {"resource_id": resource_id, "deleted": True, "status": None, "active_tasks": 0}

    def reserve(self, resource_id: str, cpu_cores: int, gpu_memory: int) -> bool:
        """Atomically hold capacity; False if the resource cannot take it."""
        return self._store.reserve_capacity(resource_id, cpu_cores, gpu_memory)

    def release(self, resource_id: str, cpu_cores: int, gpu_memory: int) -> None:
        """Return capacity held by a task."""
        self._store.release_capacity(resource_id, cpu_cores, gpu_memory)

    # ------------------------------------------------------------------
    # Estimates and stats
    # ------------------------------------------------------------------

    def estimate(self, resource_id: str, request: EstimateRequest) -> dict[str, Any]:
        """Estimate the cost of running cpu_cores/gpu_memory for a number of hours."""
        resource = self.get(resource_id)
        cost = estimate_cost(
            request.cpu_cores,
            request.hours,
            resource["cpu_price"],
            request.gpu_memory,
            request.hours,
            resource["gpu_price"],
        )
        try:
            total_cost_display = format_amount(cost.total_cost, self._display_decimals)
        except AmountOutOfRangeError as exc:
            raise ValidationError(
                exc.args[0], {"resource_id": resource_id}, error="AMOUNT_OUT_OF_RANGE"
            ) from exc
        return {
            "resource_id": resource_id,
            "cpu_cores": request.cpu_cores,
            "gpu_memory": request.gpu_memory,
            "hours": str(request.hours),
            "cpu_cost": str(cost.cpu_cost),
            "gpu_cost": str(cost.gpu_cost),
            "total_cost": str(cost.total_cost),
            "total_cost_display": total_cost_display,
            "can_admit": can_admit(resource, request.cpu_cores, request.gpu_memory),
        }

    def count_by_status(self) -> dict[str, int]:
        """Resource counts for every status."""
        counts = {status: 0 for status in sorted(_RESOURCE_STATUSES)}
        counts.update(self._store.count_resources_by_status())
        return counts
