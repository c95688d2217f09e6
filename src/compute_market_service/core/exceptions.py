"""Error taxonomy and exception handlers for consistent error responses."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, cast

from fastapi.responses import JSONResponse
from service_commons.exceptions import ServiceError
from service_commons.exceptions import (
    register_exception_handlers as register_common_exception_handlers,
)
from starlette.exceptions import HTTPException as StarletteHTTPException

from compute_market_service.logging import get_logger

if TYPE_CHECKING:
    from fastapi import FastAPI, Request
    from starlette.types import ExceptionHandler

__all__ = [
    "CapacityError",
    "InvalidStatusError",
    "NotFoundError",
    "ServiceError",
    "TransferError",
    "ValidationError",
    "register_exception_handlers",
]


class ValidationError(ServiceError):
    """Missing or invalid request fields. No state is mutated."""

    def __init__(
        self,
        message: str,
        details: dict[str, Any] | None = None,
        error: str = "INVALID_PAYLOAD",
    ) -> None:
        super().__init__(error, message, 400, details)


class CapacityError(ServiceError):
    """Resource inactive or too small; the task is never created."""

    def __init__(self, error: str, message: str, details: dict[str, Any] | None = None) -> None:
        super().__init__(error, message, 409, details)


class TransferError(ServiceError):
    """The payment sender failed; the task stays running and may be retried."""

    def __init__(self, message: str, details: dict[str, Any] | None = None) -> None:
        super().__init__("TRANSFER_FAILED", message, 502, details)


class NotFoundError(ServiceError):
    """Unknown task or resource id."""

    def __init__(self, error: str, message: str) -> None:
        super().__init__(error, message, 404, {})


class InvalidStatusError(ServiceError):
    """Transition not allowed from the task's current status."""

    def __init__(self, message: str, error: str = "INVALID_STATUS") -> None:
        super().__init__(error, message, 409, {})


async def service_error_handler(request: Request, exc: ServiceError) -> JSONResponse:
    """Handle ServiceError exceptions."""
    logger = get_logger(__name__)
    logger.warning(
        "Service error",
        extra={
            "error_code": exc.error,
            "status_code": exc.status_code,
            "path": str(request.url.path),
        },
    )
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


async def unhandled_exception_handler(request: Request, _exc: Exception) -> JSONResponse:
    """Handle unexpected exceptions."""
    logger = get_logger(__name__)
    logger.exception("Unhandled exception", extra={"path": str(request.url.path)})
    return JSONResponse(
        status_code=500,
        content={
            "error": "internal_error",
            "message": "An unexpected error occurred",
            "details": {},
        },
    )


async def http_exception_handler(
    _request: Request,
    exc: StarletteHTTPException,
) -> JSONResponse:
    """Handle Starlette HTTP exceptions (404 for unknown routes, 405 from router)."""
    if exc.status_code == 405:
        return JSONResponse(
            status_code=405,
            content={
                "error": "METHOD_NOT_ALLOWED",
                "message": "Method not allowed",
                "details": {},
            },
        )
    return JSONResponse(
        status_code=exc.status_code,
        content={
            "error": "HTTP_ERROR",
            "message": str(exc.detail),
            "details": {},
        },
    )


def register_exception_handlers(app: FastAPI) -> None:
    """Register all exception handlers on the app."""
    register_common_exception_handlers(
        app,
        ServiceError,
        service_error_handler,
        unhandled_exception_handler,
    )
    app.add_exception_handler(
        StarletteHTTPException,
        cast("ExceptionHandler", http_exception_handler),
    )
