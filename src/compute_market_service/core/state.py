"""Application state management."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from compute_market_service.clients.wallet_client import PaymentSender
    from compute_market_service.services.resource_registry import ResourceRegistry
    from compute_market_service.services.resource_store import ResourceStore
    from compute_market_service.services.settlement_coordinator import SettlementCoordinator
    from compute_market_service.services.task_controller import TaskController
    from compute_market_service.services.task_store import TaskStore


@dataclass
class AppState:
    """Runtime application state."""

    start_time: datetime = field(default_factory=lambda: datetime.now(UTC))
    resource_store: ResourceStore | None = None
    task_store: TaskStore | None = None
    resource_registry: ResourceRegistry | None = None
    task_controller: TaskController | None = None
    settlement_coordinator: SettlementCoordinator | None = None
    payment_sender: PaymentSender | None = None
    simulated_sender: PaymentSender | None = None

    def __setattr__(self, name: str, value: Any) -> None:
        """Keep the settlement coordinator's payment sender in sync with AppState."""
        super().__setattr__(name, value)

        if name != "payment_sender" or value is None:
            return
        settlement_coordinator = self.__dict__.get("settlement_coordinator")
        if settlement_coordinator is not None:
            settlement_coordinator.set_payment_sender(value)

    @property
    def uptime_seconds(self) -> float:
        """Calculate uptime in seconds."""
        return (datetime.now(UTC) - self.start_time).total_seconds()

    @property
    def started_at(self) -> str:
        """ISO format start time."""
        return self.start_time.isoformat(timespec="seconds").replace("+00:00", "Z")


# Global application state container
_state_container: dict[str, AppState | None] = {"app_state": None}


def get_app_state() -> AppState:
    """Get the current application state."""
    app_state = _state_container["app_state"]
    if app_state is None:
        msg = "Application state not initialized"
        raise RuntimeError(msg)
    return app_state


def init_app_state() -> AppState:
    """Initialize application state. Called during startup."""
    app_state = AppState()
    _state_container["app_state"] = app_state
    return app_state


def reset_app_state() -> None:
    """Reset application state. Used in testing."""
    _state_container["app_state"] = None
