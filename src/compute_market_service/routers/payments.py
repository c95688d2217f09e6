"""Payment transaction endpoints."""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Request

from compute_market_service.core.state import get_app_state
from compute_market_service.routers.validation import optional_query

router = APIRouter()


@router.get("/payments")
async def list_payments(request: Request) -> dict[str, Any]:
    """List settled payment transactions, optionally by provider_id or task_id."""
    state = get_app_state()
    if state.task_controller is None:
        msg = "TaskController not initialized"
        raise RuntimeError(msg)

    transactions = state.task_controller.list_transactions(
        provider_id=optional_query(request.query_params.get("provider_id")),
        task_id=optional_query(request.query_params.get("task_id")),
    )
    return {"transactions": transactions}
