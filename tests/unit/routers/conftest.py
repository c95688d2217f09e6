"""Router test fixtures with a mocked payment sender."""

from __future__ import annotations

import os
from contextlib import asynccontextmanager
from typing import TYPE_CHECKING, Any
from unittest.mock import AsyncMock

import pytest
from httpx import ASGITransport, AsyncClient

from compute_market_service.app import create_app
from compute_market_service.config import clear_settings_cache
from compute_market_service.core.lifespan import lifespan
from compute_market_service.core.state import get_app_state, reset_app_state
from tests.helpers import CONSUMER_ID, PROVIDER_ID, write_config

if TYPE_CHECKING:
    from collections.abc import AsyncIterator
    from pathlib import Path

RECEIPT = "0x" + "ab" * 32

SCENARIO_RESOURCE: dict[str, Any] = {
    "provider_id": PROVIDER_ID,
    "provider_name": "Provider One",
    "location": "eu-west",
    "cpu_cores": 8,
    "gpu_memory": 16,
    "cpu_price": "0.0008",
    "gpu_price": "0.0045",
}


# ---------------------------------------------------------------------------
# App + client fixtures
# ---------------------------------------------------------------------------
@asynccontextmanager
async def running_app(tmp_path: Path, **config_options: Any) -> AsyncIterator[Any]:
    """Run the app inside its lifespan with a temp config and a mock payment sender."""
    config_path = write_config(tmp_path, **config_options)

    old_config = os.environ.get("CONFIG_PATH")
    os.environ["CONFIG_PATH"] = str(config_path)

    clear_settings_cache()
    reset_app_state()

    try:
        test_app = create_app()
        async with lifespan(test_app):
            state = get_app_state()

            # Replace the wallet client; default: every transfer succeeds
            if state.payment_sender is not None and state.payment_sender is not (
                state.simulated_sender
            ):
                await state.payment_sender.close()
            mock_sender = AsyncMock()
            mock_sender.send = AsyncMock(return_value=RECEIPT)
            mock_sender.close = AsyncMock()
            state.payment_sender = mock_sender

            yield test_app
    finally:
        reset_app_state()
        clear_settings_cache()
        if old_config is None:
            os.environ.pop("CONFIG_PATH", None)
        else:
            os.environ["CONFIG_PATH"] = old_config


@asynccontextmanager
async def client_for(app: Any) -> AsyncIterator[AsyncClient]:
    """Open an async HTTP client against an app."""
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as c:
        yield c


@pytest.fixture
async def app(tmp_path: Path) -> AsyncIterator[Any]:
    """Create a test app with temp databases and a mocked payment sender."""
    async with running_app(tmp_path) as test_app:
        yield test_app


@pytest.fixture
async def client(app: Any) -> AsyncIterator[AsyncClient]:
    """Create an async HTTP client for the test app."""
    async with client_for(app) as c:
        yield c


@pytest.fixture
def payment_sender(app: Any) -> AsyncMock:
    """The mocked payment sender wired into the running app."""
    sender = get_app_state().payment_sender
    assert isinstance(sender, AsyncMock)
    return sender


# ---------------------------------------------------------------------------
# API helpers
# ---------------------------------------------------------------------------
async def create_resource(client: AsyncClient, **overrides: Any) -> dict[str, Any]:
    """Register a resource and return its JSON."""
    response = await client.post("/resources", json=SCENARIO_RESOURCE | overrides)
    assert response.status_code == 201, response.text
    return response.json()


async def create_task(
    client: AsyncClient, resource_id: str, **overrides: Any
) -> dict[str, Any]:
    """Submit a task against a resource and return its JSON."""
    body: dict[str, Any] = {
        "task_type": "training",
        "description": "Fine-tune a small model",
        "consumer_id": CONSUMER_ID,
        "resource_id": resource_id,
        "cpu_cores": 4,
        "gpu_memory": 8,
    }
    response = await client.post("/tasks", json=body | overrides)
    assert response.status_code == 201, response.text
    return response.json()


async def create_running_task(client: AsyncClient, **resource_overrides: Any) -> dict[str, Any]:
    """Register a resource, submit a task and start it."""
    resource = await create_resource(client, **resource_overrides)
    task = await create_task(client, resource["resource_id"])
    response = await client.post(f"/tasks/{task['task_id']}/start")
    assert response.status_code == 200, response.text
    return response.json()
