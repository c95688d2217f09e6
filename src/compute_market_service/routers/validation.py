"""Shared request validation helpers for the routers."""

from __future__ import annotations

import json
from typing import Any, TypeVar

from pydantic import BaseModel
from pydantic import ValidationError as PydanticValidationError

from compute_market_service.core.exceptions import ValidationError

ModelT = TypeVar("ModelT", bound=BaseModel)


def parse_json_body(raw_body: bytes) -> dict[str, Any]:
    """Parse JSON body, raising ValidationError on failure."""
    try:
        data = json.loads(raw_body)
    except (json.JSONDecodeError, UnicodeDecodeError) as exc:
        raise ValidationError("Request body is not valid JSON", error="INVALID_JSON") from exc

    if not isinstance(data, dict):
        raise ValidationError("Request body must be a JSON object", error="INVALID_JSON")

    return data


def parse_optional_json_body(raw_body: bytes) -> dict[str, Any]:
    """Like parse_json_body, but an empty body means an empty object."""
    if raw_body.strip() == b"":
        return {}
    return parse_json_body(raw_body)


def parse_model(model_cls: type[ModelT], data: dict[str, Any]) -> ModelT:
    """Validate parsed JSON against a request model."""
    try:
        return model_cls.model_validate(data)
    except PydanticValidationError as exc:
        errors = [
            {
                "field": ".".join(str(part) for part in error["loc"]),
                "message": error["msg"],
                "type": error["type"],
            }
            for error in exc.errors(include_url=False)
        ]
        first = errors[0] if errors else {"field": "", "message": "Invalid request body"}
        message = (
            f"{first['field']}: {first['message']}" if first["field"] else first["message"]
        )
        raise ValidationError(message, {"errors": errors}) from exc


def optional_query(value: str | None) -> str | None:
    """Treat an empty query parameter the same as an absent one."""
    if value is None or value == "":
        return None
    return value
