"""Application lifecycle management."""

from __future__ import annotations

from contextlib import asynccontextmanager
from typing import TYPE_CHECKING

from compute_market_service.clients.simulated_sender import SimulatedPaymentSender
from compute_market_service.clients.wallet_client import WalletClient
from compute_market_service.config import get_settings
from compute_market_service.core.state import init_app_state
from compute_market_service.logging import get_logger, setup_logging
from compute_market_service.services.resource_registry import ResourceRegistry
from compute_market_service.services.resource_store import ResourceStore
from compute_market_service.services.settlement_coordinator import SettlementCoordinator
from compute_market_service.services.task_controller import TaskController
from compute_market_service.services.task_store import TaskStore

if TYPE_CHECKING:
    from collections.abc import AsyncIterator

    from fastapi import FastAPI

    from compute_market_service.clients.wallet_client import PaymentSender


@asynccontextmanager
async def lifespan(_app: FastAPI) -> AsyncIterator[None]:
    """Manage application lifecycle."""
    # === STARTUP ===
    settings = get_settings()

    setup_logging(settings.logging.level, settings.service.name, settings.logging.directory)
    logger = get_logger(__name__)

    state = init_app_state()

    resource_store = ResourceStore(db_path=settings.database.resources_path)
    task_store = TaskStore(db_path=settings.database.tasks_path)
    state.resource_store = resource_store
    state.task_store = task_store

    # Simulated sender is always available for explicit opt-in requests
    simulated_sender = SimulatedPaymentSender(
        delay_seconds=settings.payments.simulated_delay_seconds,
    )
    state.simulated_sender = simulated_sender

    payment_sender: PaymentSender
    wallet = settings.payments.wallet
    if settings.payments.mode == "wallet" and wallet is not None:
        payment_sender = WalletClient(
            base_url=wallet.base_url,
            transfer_path=wallet.transfer_path,
            timeout_seconds=settings.payments.timeout_seconds,
            api_key=wallet.api_key,
        )
    else:
        payment_sender = simulated_sender

    settlement_coordinator = SettlementCoordinator(
        payment_sender=payment_sender,
        simulated_sender=simulated_sender,
        sender_is_simulated=settings.payments.mode == "simulate",
        allow_simulation=settings.payments.allow_simulation,
        timeout_seconds=settings.payments.timeout_seconds,
    )
    state.settlement_coordinator = settlement_coordinator
    state.payment_sender = payment_sender

    registry = ResourceRegistry(
        store=resource_store,
        task_store=task_store,
        display_decimals=settings.pricing.display_decimals,
    )
    state.resource_registry = registry

    state.task_controller = TaskController(
        store=task_store,
        registry=registry,
        settlement=settlement_coordinator,
        reserve_capacity=settings.admission.reserve_capacity,
        settlement_decimals=settings.pricing.settlement_decimals,
        display_decimals=settings.pricing.display_decimals,
    )

    logger.info(
        "Service starting",
        extra={
            "service": settings.service.name,
            "version": settings.service.version,
            "port": settings.server.port,
            "resources_path": settings.database.resources_path,
            "tasks_path": settings.database.tasks_path,
            "payments_mode": settings.payments.mode,
            "allow_simulation": settings.payments.allow_simulation,
            "reserve_capacity": settings.admission.reserve_capacity,
        },
    )

    yield  # Application runs here

    # === SHUTDOWN ===
    logger.info("Service shutting down", extra={"uptime_seconds": state.uptime_seconds})

    task_store.close()
    resource_store.close()

    # Close whichever sender is current (tests may have swapped it)
    if state.payment_sender is not None and state.payment_sender is not simulated_sender:
        await state.payment_sender.close()
    await simulated_sender.close()
