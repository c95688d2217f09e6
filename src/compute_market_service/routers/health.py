"""Health check endpoint."""

from __future__ import annotations

from fastapi import APIRouter

from compute_market_service.core.state import get_app_state
from compute_market_service.schemas import HealthResponse

router = APIRouter()


@router.get("/health", response_model=HealthResponse)
async def health_check() -> HealthResponse:
    """Check service health and return statistics."""
    state = get_app_state()
    total_tasks = 0
    total_transactions = 0
    tasks_by_status: dict[str, int] = {}
    resources_by_status: dict[str, int] = {}
    if state.task_controller is not None:
        stats = state.task_controller.get_stats()
        total_tasks = stats["total_tasks"]
        tasks_by_status = stats["tasks_by_status"]
        total_transactions = stats["total_transactions"]
    if state.resource_registry is not None:
        resources_by_status = state.resource_registry.count_by_status()
    return HealthResponse(
        status="ok",
        uptime_seconds=state.uptime_seconds,
        started_at=state.started_at,
        total_tasks=total_tasks,
        tasks_by_status=tasks_by_status,
        resources_by_status=resources_by_status,
        total_transactions=total_transactions,
    )
