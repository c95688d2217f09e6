"""Unit tests for shared router validation helpers."""

from __future__ import annotations

import pytest
from service_commons.exceptions import ServiceError

from compute_market_service.routers.validation import (
    optional_query,
    parse_json_body,
    parse_model,
    parse_optional_json_body,
)
from compute_market_service.schemas import TaskFailRequest


@pytest.mark.unit
def test_parse_json_body_valid_object() -> None:
    """Returns parsed dict for valid JSON object."""
    assert parse_json_body(b'{"reason":"OOM"}') == {"reason": "OOM"}


@pytest.mark.unit
@pytest.mark.parametrize("raw", [b"{", b'["not", "object"]', b""])
def test_parse_json_body_invalid(raw: bytes) -> None:
    """Malformed, non-object and empty bodies are INVALID_JSON."""
    with pytest.raises(ServiceError) as exc_info:
        parse_json_body(raw)
    assert exc_info.value.error == "INVALID_JSON"
    assert exc_info.value.status_code == 400


@pytest.mark.unit
def test_parse_optional_json_body_empty() -> None:
    """An empty optional body is an empty object."""
    assert parse_optional_json_body(b"") == {}


@pytest.mark.unit
def test_parse_model_reports_field_errors() -> None:
    """Pydantic errors become INVALID_PAYLOAD with field details."""
    with pytest.raises(ServiceError) as exc_info:
        parse_model(TaskFailRequest, {"reason": 5})

    assert exc_info.value.error == "INVALID_PAYLOAD"
    assert exc_info.value.details["errors"][0]["field"] == "reason"


@pytest.mark.unit
def test_optional_query() -> None:
    """Empty query parameters count as absent."""
    assert optional_query(None) is None
    assert optional_query("") is None
    assert optional_query("pending") == "pending"
