"""Async HTTP client for the wallet transfer service."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, Protocol

import httpx

from compute_market_service.core.exceptions import TransferError
from compute_market_service.logging import get_logger

if TYPE_CHECKING:
    from decimal import Decimal


class PaymentSender(Protocol):
    """Anything that can move funds between two wallets and return a receipt."""

    async def send(self, from_address: str, to_address: str, amount: Decimal) -> str: ...

    async def close(self) -> None: ...


class WalletClient:
    """
    Client for token transfers through the wallet service.

    POSTs {"from_address", "to_address", "amount"} to the configured transfer
    path and expects a 200/201 body carrying "transaction_hash". The amount is
    sent as a decimal string so no precision is lost in JSON.
    """

    def __init__(
        self,
        base_url: str,
        transfer_path: str,
        timeout_seconds: float,
        api_key: str | None = None,
    ) -> None:
        self._base_url = base_url
        self._transfer_path = transfer_path
        headers = {"Authorization": f"Bearer {api_key}"} if api_key else {}
        self._client = httpx.AsyncClient(
            base_url=base_url,
            timeout=httpx.Timeout(timeout_seconds),
            headers=headers,
        )

    async def send(self, from_address: str, to_address: str, amount: Decimal) -> str:
        """
        Transfer amount from one wallet to another.

        Returns:
            The transaction hash reported by the wallet service

        Raises:
            TransferError: on connection/timeout errors, non-success status
                           codes, or a response without a transaction hash
        """
        logger = get_logger(__name__)

        try:
            response = await self._client.post(
                self._transfer_path,
                json={
                    "from_address": from_address,
                    "to_address": to_address,
                    "amount": str(amount),
                },
            )
        except (httpx.ConnectError, httpx.TimeoutException) as exc:
            logger.warning(
                "Wallet service connection failed",
                extra={"error": str(exc), "base_url": self._base_url},
            )
            raise TransferError("Cannot connect to wallet service") from exc
        except httpx.HTTPError as exc:
            logger.warning(
                "Wallet service HTTP error",
                extra={"error": str(exc), "base_url": self._base_url},
            )
            raise TransferError("Wallet service request failed") from exc

        if response.status_code in (200, 201):
            try:
                body: dict[str, Any] = response.json()
            except ValueError as exc:
                raise TransferError("Wallet service returned a non-JSON body") from exc
            receipt = body.get("transaction_hash") if isinstance(body, dict) else None
            if not isinstance(receipt, str) or not receipt:
                raise TransferError("Wallet service response is missing transaction_hash")
            return receipt

        details: dict[str, Any] = {"status_code": response.status_code}
        try:
            error_body = response.json()
        except ValueError:
            error_body = None
        if isinstance(error_body, dict) and "error" in error_body:
            details["wallet_error"] = error_body["error"]

        logger.warning(
            "Wallet service rejected transfer",
            extra={"status_code": response.status_code, "base_url": self._base_url},
        )
        if response.status_code == 402:
            raise TransferError("Consumer wallet has insufficient funds", details)
        raise TransferError("Wallet service returned unexpected status", details)

    async def close(self) -> None:
        """Close the underlying HTTP client."""
        await self._client.aclose()
