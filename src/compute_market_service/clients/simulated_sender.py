"""Simulated payment sender for demos and local development."""

from __future__ import annotations

import asyncio
import secrets
from typing import TYPE_CHECKING

from compute_market_service.logging import get_logger

if TYPE_CHECKING:
    from decimal import Decimal


class SimulatedPaymentSender:
    """
    Pretends to transfer funds and returns a random 0x-prefixed 32-byte hash.

    Only used when configured (payments.mode: simulate) or when a completion
    request opts in with simulate=true and payments.allow_simulation is on.
    """

    def __init__(self, delay_seconds: float) -> None:
        self._delay_seconds = delay_seconds

    async def send(self, from_address: str, to_address: str, amount: Decimal) -> str:
        """Wait for the configured delay and return a fake transaction hash."""
        if self._delay_seconds > 0:
            await asyncio.sleep(self._delay_seconds)
        receipt = "0x" + secrets.token_hex(32)
        get_logger(__name__).info(
            "Simulated transfer",
            extra={
                "from_address": from_address,
                "to_address": to_address,
                "amount": str(amount),
                "transaction_hash": receipt,
            },
        )
        return receipt

    async def close(self) -> None:
        """Nothing to release."""
