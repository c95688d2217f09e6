"""Shared test helpers: config files and store/service factories."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any
from unittest.mock import AsyncMock

from compute_market_service.schemas import ResourceRequest, TaskSubmitRequest
from compute_market_service.services.resource_registry import ResourceRegistry
from compute_market_service.services.resource_store import ResourceStore
from compute_market_service.services.settlement_coordinator import SettlementCoordinator
from compute_market_service.services.task_controller import TaskController
from compute_market_service.services.task_store import TaskStore

if TYPE_CHECKING:
    from pathlib import Path

PROVIDER_ID = "prov-1"
CONSUMER_ID = "cons-1"


def write_config(
    tmp_path: Path,
    *,
    mode: str = "wallet",
    allow_simulation: bool = False,
    reserve_capacity: bool = True,
    max_body_size: int = 1048576,
    extra_service_field: bool = False,
) -> Path:
    """Write a complete config.yaml under tmp_path and return its path."""
    extra = "  unknown_field: true\n" if extra_service_field else ""
    config_content = f"""\
service:
  name: "compute-market"
  version: "0.1.0"
{extra}server:
  host: "0.0.0.0"
  port: 8010
  log_level: "info"
logging:
  level: "WARNING"
  directory: null
database:
  resources_path: "{tmp_path / "resources.db"}"
  tasks_path: "{tmp_path / "tasks.db"}"
payments:
  mode: "{mode}"
  allow_simulation: {"true" if allow_simulation else "false"}
  timeout_seconds: 5
  simulated_delay_seconds: 0
  wallet:
    base_url: "http://localhost:8002"
    transfer_path: "/transfers"
    api_key: "secret-key"
admission:
  reserve_capacity: {"true" if reserve_capacity else "false"}
pricing:
  settlement_decimals: 18
  display_decimals: 6
request:
  max_body_size: {max_body_size}
"""
    config_path = tmp_path / "config.yaml"
    config_path.write_text(config_content)
    return config_path


def resource_request(**overrides: Any) -> ResourceRequest:
    """Build a ResourceRequest with sensible defaults."""
    data: dict[str, Any] = {
        "provider_id": PROVIDER_ID,
        "location": "eu-west",
        "cpu_cores": 4,
        "gpu_memory": 8,
        "cpu_price": "0.0012",
        "gpu_price": "0.0135",
    }
    data.update(overrides)
    return ResourceRequest.model_validate(data)


def submit_request(resource_id: str, **overrides: Any) -> TaskSubmitRequest:
    """Build a TaskSubmitRequest bound to a resource."""
    data: dict[str, Any] = {
        "task_type": "training",
        "description": "Fine-tune a small model",
        "consumer_id": CONSUMER_ID,
        "resource_id": resource_id,
        "cpu_cores": 2,
        "gpu_memory": 4,
    }
    data.update(overrides)
    return TaskSubmitRequest.model_validate(data)


def make_services(
    *,
    reserve_capacity: bool = True,
    allow_simulation: bool = False,
    sender: Any = None,
) -> tuple[TaskController, ResourceRegistry, TaskStore, AsyncMock]:
    """Wire an in-memory registry and controller around a mock payment sender."""
    payment_sender = sender if sender is not None else AsyncMock()
    if sender is None:
        payment_sender.send = AsyncMock(return_value="0xreceipt")
    simulated_sender = AsyncMock()
    simulated_sender.send = AsyncMock(return_value="0xsimulated")

    resource_store = ResourceStore(db_path=":memory:")
    task_store = TaskStore(db_path=":memory:")
    registry = ResourceRegistry(resource_store, task_store, display_decimals=6)
    coordinator = SettlementCoordinator(
        payment_sender,
        simulated_sender,
        sender_is_simulated=False,
        allow_simulation=allow_simulation,
        timeout_seconds=5,
    )
    controller = TaskController(
        task_store,
        registry,
        coordinator,
        reserve_capacity=reserve_capacity,
        settlement_decimals=18,
        display_decimals=6,
    )
    return controller, registry, task_store, payment_sender
