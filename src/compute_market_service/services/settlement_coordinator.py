"""Payment transfer coordination for task settlement."""

from __future__ import annotations

import asyncio
from typing import TYPE_CHECKING

from compute_market_service.core.exceptions import TransferError, ValidationError
from compute_market_service.logging import get_logger

if TYPE_CHECKING:
    from decimal import Decimal

    from compute_market_service.clients.wallet_client import PaymentSender


class SettlementCoordinator:
    """
    Sends settlement payments and normalizes every failure to TransferError.

    The configured payment sender is used by default. A caller may ask for
    the simulated sender explicitly; that is only honoured when simulation
    is allowed by configuration. A failed transfer is never replaced by a
    simulated one.
    """

    def __init__(
        self,
        payment_sender: PaymentSender,
        simulated_sender: PaymentSender,
        *,
        sender_is_simulated: bool,
        allow_simulation: bool,
        timeout_seconds: float,
    ) -> None:
        self._payment_sender = payment_sender
        self._simulated_sender = simulated_sender
        self._sender_is_simulated = sender_is_simulated
        self._allow_simulation = allow_simulation
        self._timeout_seconds = timeout_seconds
        self._logger = get_logger(__name__)

    def set_payment_sender(self, payment_sender: PaymentSender) -> None:
        """Replace the configured payment sender (used by tests to inject mocks)."""
        self._payment_sender = payment_sender

    def check_simulation_allowed(self, simulate: bool) -> None:
        """Reject an explicit simulation request when configuration forbids it."""
        if simulate and not self._allow_simulation and not self._sender_is_simulated:
            raise ValidationError(
                "Simulated transfers are disabled on this service",
                error="SIMULATION_DISABLED",
            )

    async def send_payment(
        self,
        task_id: str,
        from_address: str,
        to_address: str,
        amount: Decimal,
        *,
        simulate: bool,
    ) -> tuple[str, bool]:
        """
        Transfer a settlement amount and return (receipt, simulated).

        Raises:
            ValidationError: SIMULATION_DISABLED if simulate is not allowed
            TransferError: TRANSFER_FAILED on any sender failure, timeout or empty receipt
        """
        self.check_simulation_allowed(simulate)

        use_simulation = simulate or self._sender_is_simulated
        sender = self._simulated_sender if simulate else self._payment_sender

        try:
            receipt = await asyncio.wait_for(
                sender.send(from_address, to_address, amount),
                timeout=self._timeout_seconds,
            )
        except TimeoutError as exc:
            self._logger.warning(
                "Settlement transfer timed out",
                extra={"task_id": task_id, "timeout_seconds": self._timeout_seconds},
            )
            raise TransferError("Payment transfer timed out", {"task_id": task_id}) from exc
        except TransferError as exc:
            self._logger.warning(
                "Settlement transfer failed",
                extra={"task_id": task_id, "amount": str(amount), "reason": exc.message},
            )
            raise
        except Exception as exc:
            self._logger.warning(
                "Settlement transfer raised",
                extra={"task_id": task_id, "amount": str(amount), "error": repr(exc)},
            )
            raise TransferError("Payment transfer failed", {"task_id": task_id}) from exc

        if not isinstance(receipt, str) or not receipt:
            self._logger.warning(
                "Settlement transfer returned an empty receipt",
                extra={"task_id": task_id},
            )
            raise TransferError("Payment sender returned an empty receipt", {"task_id": task_id})

        return receipt, use_simulation
