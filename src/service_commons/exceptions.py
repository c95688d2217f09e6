"""
Shared service error type and exception handler registration.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, cast

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable

    from fastapi import FastAPI, Request
    from fastapi.responses import JSONResponse
    from starlette.types import ExceptionHandler


class ServiceError(Exception):
    """
    Domain error carried through to the HTTP boundary.

    Attributes:
        error: Machine-readable error code (e.g. TASK_NOT_FOUND)
        message: Human-readable description
        status_code: HTTP status code to respond with
        details: Extra structured context for the client
    """

    def __init__(
        self,
        error: str,
        message: str,
        status_code: int,
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message)
        self.error = error
        self.message = message
        self.status_code = status_code
        self.details: dict[str, Any] = details if details is not None else {}

    def to_dict(self) -> dict[str, Any]:
        """Render the standard error body."""
        return {"error": self.error, "message": self.message, "details": self.details}

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.error!r}, {self.message!r}, {self.status_code})"


def register_exception_handlers(
    app: FastAPI,
    error_cls: type[ServiceError],
    service_error_handler: Callable[[Request, Any], Awaitable[JSONResponse]],
    unhandled_exception_handler: Callable[[Request, Exception], Awaitable[JSONResponse]],
) -> None:
    """
    Register the service-level and catch-all exception handlers on an app.

    Args:
        app: FastAPI application
        error_cls: ServiceError (or a subclass) to route to service_error_handler
        service_error_handler: Handler rendering ServiceError responses
        unhandled_exception_handler: Handler for anything else (500)
    """
    app.add_exception_handler(error_cls, cast("ExceptionHandler", service_error_handler))
    app.add_exception_handler(Exception, cast("ExceptionHandler", unhandled_exception_handler))
