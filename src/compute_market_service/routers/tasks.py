"""Task lifecycle endpoints."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse

from compute_market_service.core.state import get_app_state
from compute_market_service.routers.validation import (
    optional_query,
    parse_json_body,
    parse_model,
    parse_optional_json_body,
)
from compute_market_service.schemas import (
    TaskCompleteRequest,
    TaskFailRequest,
    TaskSubmitRequest,
)

if TYPE_CHECKING:
    from compute_market_service.services.task_controller import TaskController

router = APIRouter()


def _controller() -> TaskController:
    state = get_app_state()
    if state.task_controller is None:
        msg = "TaskController not initialized"
        raise RuntimeError(msg)
    return state.task_controller


# ---------------------------------------------------------------------------
# POST /tasks, GET /tasks (MUST be before GET /tasks/{task_id})
# ---------------------------------------------------------------------------


@router.post("/tasks", status_code=201)
async def submit_task(request: Request) -> JSONResponse:
    """Submit a task against a resource."""
    data = parse_json_body(await request.body())
    submit_request = parse_model(TaskSubmitRequest, data)

    result = await _controller().submit_task(submit_request)
    return JSONResponse(status_code=201, content=result)


@router.get("/tasks")
async def list_tasks(request: Request) -> dict[str, Any]:
    """List tasks with optional filters."""
    tasks = _controller().list_tasks(
        provider_id=optional_query(request.query_params.get("provider_id")),
        consumer_id=optional_query(request.query_params.get("consumer_id")),
        status=optional_query(request.query_params.get("status")),
        resource_id=optional_query(request.query_params.get("resource_id")),
    )
    return {"tasks": tasks}


# ---------------------------------------------------------------------------
# /tasks/{task_id}
# ---------------------------------------------------------------------------


@router.get("/tasks/{task_id}")
async def get_task(task_id: str) -> dict[str, Any]:
    """Get a single task."""
    return _controller().get_task(task_id)


@router.post("/tasks/{task_id}/start")
async def start_task(task_id: str) -> dict[str, Any]:
    """Mark a pending task as running."""
    return await _controller().start_task(task_id)


@router.post("/tasks/{task_id}/complete")
async def complete_task(task_id: str, request: Request) -> dict[str, Any]:
    """Complete a running task and settle its usage."""
    data = parse_optional_json_body(await request.body())
    complete_request = parse_model(TaskCompleteRequest, data)
    return await _controller().complete_task(task_id, complete_request)


@router.post("/tasks/{task_id}/fail")
async def fail_task(task_id: str, request: Request) -> dict[str, Any]:
    """Abort a pending or running task without payment."""
    data = parse_optional_json_body(await request.body())
    fail_request = parse_model(TaskFailRequest, data)
    return await _controller().fail_task(task_id, fail_request)
