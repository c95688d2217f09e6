"""Resource registry endpoints."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse

from compute_market_service.core.state import get_app_state
from compute_market_service.routers.validation import (
    optional_query,
    parse_json_body,
    parse_model,
)
from compute_market_service.schemas import EstimateRequest, ResourceRequest

if TYPE_CHECKING:
    from compute_market_service.services.resource_registry import ResourceRegistry

router = APIRouter()


def _registry() -> ResourceRegistry:
    state = get_app_state()
    if state.resource_registry is None:
        msg = "ResourceRegistry not initialized"
        raise RuntimeError(msg)
    return state.resource_registry


# ---------------------------------------------------------------------------
# POST /resources, GET /resources (MUST be before /resources/{resource_id})
# ---------------------------------------------------------------------------


@router.post("/resources", status_code=201)
async def register_resource(request: Request) -> JSONResponse:
    """Register a new resource offer."""
    data = parse_json_body(await request.body())
    resource_request = parse_model(ResourceRequest, data)

    registry = _registry()
    resource = registry.register(resource_request)
    return JSONResponse(status_code=201, content=registry.describe(resource))


@router.get("/resources")
async def list_resources(request: Request) -> dict[str, Any]:
    """List resources, optionally filtered by provider_id, type and status."""
    registry = _registry()
    resources = registry.list_resources(
        provider_id=optional_query(request.query_params.get("provider_id")),
        resource_type=optional_query(request.query_params.get("type")),
        status=optional_query(request.query_params.get("status")),
    )
    return {"resources": [registry.describe(resource) for resource in resources]}


# ---------------------------------------------------------------------------
# /resources/{resource_id}
# ---------------------------------------------------------------------------


@router.get("/resources/{resource_id}")
async def get_resource(resource_id: str) -> dict[str, Any]:
    """Get a single resource."""
    registry = _registry()
    return registry.describe(registry.get(resource_id))


@router.put("/resources/{resource_id}")
async def upsert_resource(resource_id: str, request: Request) -> JSONResponse:
    """Create a resource under a chosen id, or replace its offer."""
    data = parse_json_body(await request.body())
    resource_request = parse_model(ResourceRequest, data)

    registry = _registry()
    resource, created = registry.upsert(resource_id, resource_request)
    return JSONResponse(status_code=201 if created else 200, content=registry.describe(resource))


@router.delete("/resources/{resource_id}")
async def remove_resource(resource_id: str) -> dict[str, Any]:
    """Remove a resource, or deactivate it while tasks are bound to it."""
    return _registry().remove(resource_id)


@router.post("/resources/{resource_id}/estimate")
async def estimate_cost(resource_id: str, request: Request) -> dict[str, Any]:
    """Estimate the cost of a planned run on this resource."""
    data = parse_json_body(await request.body())
    estimate_request = parse_model(EstimateRequest, data)
    return _registry().estimate(resource_id, estimate_request)
