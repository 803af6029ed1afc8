"""
Shared service error type and exception handler registration.

Every service reports failures with the same JSON envelope::

    {"error": "<CODE>", "message": "<human readable>", "details": {...}}
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from fastapi.responses import JSONResponse

if TYPE_CHECKING:
    from fastapi import FastAPI
    from starlette.types import ExceptionHandler


class ServiceError(Exception):
    """Domain error carrying a machine-readable code and an HTTP status."""

    def __init__(
        self,
        error: str,
        message: str,
        status_code: int = 400,
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message)
        self.error = error
        self.message = message
        self.status_code = status_code
        self.details: dict[str, Any] = details if details is not None else {}

    def __repr__(self) -> str:
        return f"ServiceError({self.error!r}, {self.message!r}, {self.status_code})"

    def to_dict(self) -> dict[str, Any]:
        """Return the error envelope."""
        return {"error": self.error, "message": self.message, "details": self.details}


def error_response(
    status_code: int,
    error: str,
    message: str,
    details: dict[str, Any] | None = None,
) -> JSONResponse:
    """Build a JSON response with the standard error envelope."""
    return JSONResponse(
        status_code=status_code,
        content={"error": error, "message": message, "details": details or {}},
    )


def register_exception_handlers(
    app: FastAPI,
    error_cls: type[Exception],
    service_handler: ExceptionHandler,
    unhandled_handler: ExceptionHandler,
) -> None:
    """Attach the domain error handler and the catch-all 500 handler."""
    app.add_exception_handler(error_cls, service_handler)
    app.add_exception_handler(Exception, unhandled_handler)
