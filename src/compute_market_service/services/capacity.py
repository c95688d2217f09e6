"""Admission checks of task requests against a resource's capacity."""

from __future__ import annotations

from typing import Any

from compute_market_service.core.exceptions import CapacityError


def can_admit(resource: dict[str, Any], requested_cpu_cores: int, requested_gpu_memory: int) -> bool:
    """True iff the resource is active and its declared capacity covers the request."""
    return (
        resource["status"] == "active"
        and resource["cpu_cores"] >= requested_cpu_cores
        and resource["gpu_memory"] >= requested_gpu_memory
    )


def free_capacity(resource: dict[str, Any]) -> tuple[int, int]:
    """(cpu_cores, gpu_memory) not held by admitted tasks."""
    return (
        max(0, resource["cpu_cores"] - resource["reserved_cpu_cores"]),
        max(0, resource["gpu_memory"] - resource["reserved_gpu_memory"]),
    )


def can_reserve(
    resource: dict[str, Any], requested_cpu_cores: int, requested_gpu_memory: int
) -> bool:
    """Like can_admit, but against capacity not already reserved."""
    free_cpu, free_gpu = free_capacity(resource)
    return (
        resource["status"] == "active"
        and free_cpu >= requested_cpu_cores
        and free_gpu >= requested_gpu_memory
    )


def rejection_reason(
    resource: dict[str, Any],
    requested_cpu_cores: int,
    requested_gpu_memory: int,
    *,
    reserved: bool,
) -> CapacityError:
    """Build the CapacityError describing why a request was not admitted."""
    resource_id = resource["resource_id"]
    if resource["status"] != "active":
        return CapacityError(
            "RESOURCE_INACTIVE",
            f"Resource {resource_id} is not active",
            {"resource_id": resource_id, "status": resource["status"]},
        )

    if reserved:
        available_cpu, available_gpu = free_capacity(resource)
    else:
        available_cpu, available_gpu = resource["cpu_cores"], resource["gpu_memory"]

    details = {
        "resource_id": resource_id,
        "requested_cpu_cores": requested_cpu_cores,
        "requested_gpu_memory": requested_gpu_memory,
        "available_cpu_cores": available_cpu,
        "available_gpu_memory": available_gpu,
    }
    if available_cpu < requested_cpu_cores:
        message = (
            f"Requested {requested_cpu_cores} CPU cores exceeds the "
            f"{available_cpu} available on resource {resource_id}"
        )
    else:
        message = (
            f"Requested {requested_gpu_memory} GB GPU memory exceeds the "
            f"{available_gpu} GB available on resource {resource_id}"
        )
    return CapacityError("INSUFFICIENT_CAPACITY", message, details)
