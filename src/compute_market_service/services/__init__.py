"""Service layer components."""

from compute_market_service.services.resource_registry import ResourceRegistry
from compute_market_service.services.settlement_coordinator import SettlementCoordinator
from compute_market_service.services.task_controller import TaskController

__all__ = [
    "ResourceRegistry",
    "SettlementCoordinator",
    "TaskController",
]
