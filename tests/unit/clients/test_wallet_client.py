from __future__ import annotations

from decimal import Decimal
from typing import Any
from unittest.mock import AsyncMock

import httpx
import pytest

from compute_market_service.clients.simulated_sender import SimulatedPaymentSender
from compute_market_service.clients.wallet_client import WalletClient
from compute_market_service.core.exceptions import TransferError


def _make_client(
    mock_response: httpx.Response | None = None,
    side_effect: Exception | None = None,
) -> tuple[WalletClient, AsyncMock]:
    """Create a WalletClient with a mock HTTP client."""
    client = WalletClient(
        base_url="http://mock-wallet:8002",
        transfer_path="/transfers",
        timeout_seconds=5,
    )

    mock_http = AsyncMock(spec=httpx.AsyncClient)
    mock_http.post = AsyncMock(return_value=mock_response, side_effect=side_effect)
    client._client = mock_http
    return client, mock_http


def _mock_response(status_code: int, json_body: dict[str, Any]) -> httpx.Response:
    """Create a mock httpx.Response."""
    return httpx.Response(
        status_code=status_code,
        json=json_body,
        request=httpx.Request("POST", "http://mock-wallet:8002/transfers"),
    )


@pytest.mark.unit
async def test_send_returns_transaction_hash() -> None:
    client, mock_http = _make_client(_mock_response(201, {"transaction_hash": "0xabc"}))

    receipt = await client.send("cons-1", "prov-1", Decimal("0.0294"))

    assert receipt == "0xabc"
    mock_http.post.assert_awaited_once_with(
        "/transfers",
        json={"from_address": "cons-1", "to_address": "prov-1", "amount": "0.0294"},
    )


@pytest.mark.unit
async def test_send_402_raises_insufficient_funds() -> None:
    client, _ = _make_client(
        _mock_response(402, {"error": "INSUFFICIENT_FUNDS", "message": "No funds", "details": {}})
    )

    with pytest.raises(TransferError) as exc_info:
        await client.send("cons-1", "prov-1", Decimal(1))

    assert exc_info.value.error == "TRANSFER_FAILED"
    assert exc_info.value.status_code == 502
    assert "insufficient funds" in exc_info.value.message
    assert exc_info.value.details["wallet_error"] == "INSUFFICIENT_FUNDS"


@pytest.mark.unit
async def test_send_500_raises_transfer_error() -> None:
    client, _ = _make_client(_mock_response(500, {"error": "boom"}))

    with pytest.raises(TransferError) as exc_info:
        await client.send("cons-1", "prov-1", Decimal(1))

    assert exc_info.value.details["status_code"] == 500


@pytest.mark.unit
async def test_send_missing_hash_raises_transfer_error() -> None:
    client, _ = _make_client(_mock_response(200, {"status": "ok"}))

    with pytest.raises(TransferError, match="transaction_hash"):
        await client.send("cons-1", "prov-1", Decimal(1))


@pytest.mark.unit
async def test_send_connect_error_raises_transfer_error() -> None:
    client, _ = _make_client(side_effect=httpx.ConnectError("refused"))

    with pytest.raises(TransferError, match="Cannot connect"):
        await client.send("cons-1", "prov-1", Decimal(1))


@pytest.mark.unit
async def test_send_timeout_raises_transfer_error() -> None:
    client, _ = _make_client(side_effect=httpx.ReadTimeout("slow"))

    with pytest.raises(TransferError):
        await client.send("cons-1", "prov-1", Decimal(1))


@pytest.mark.unit
async def test_simulated_sender_returns_random_hash() -> None:
    sender = SimulatedPaymentSender(delay_seconds=0)

    first = await sender.send("cons-1", "prov-1", Decimal("0.0294"))
    second = await sender.send("cons-1", "prov-1", Decimal("0.0294"))

    assert first.startswith("0x")
    assert len(first) == 66
    assert first != second
    await sender.close()
