"""Custom exception handlers for consistent error responses."""

from __future__ import annotations

import sqlite3
from typing import TYPE_CHECKING, cast

from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from service_commons.exceptions import ServiceError, error_response
from service_commons.exceptions import (
    register_exception_handlers as register_common_exception_handlers,
)
from starlette.exceptions import HTTPException as StarletteHTTPException

from task_market_service.logging import get_logger

if TYPE_CHECKING:
    from fastapi import FastAPI, Request
    from starlette.types import ExceptionHandler

__all__ = ["ServiceError", "register_exception_handlers"]


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
    return error_response(500, "INTERNAL_ERROR", "An unexpected error occurred")


async def store_unavailable_handler(
    request: Request,
    exc: sqlite3.OperationalError,
) -> JSONResponse:
    """Handle SQLite operational errors such as lock timeouts."""
    logger = get_logger(__name__)
    logger.warning(
        "Store unavailable",
        extra={"error": str(exc), "path": str(request.url.path)},
    )
    return error_response(503, "STORE_UNAVAILABLE", "Storage is temporarily unavailable")


async def http_exception_handler(
    _request: Request,
    exc: StarletteHTTPException,
) -> JSONResponse:
    """Handle Starlette HTTP exceptions (e.g., 405 from router)."""
    if exc.status_code == 405:
        return error_response(405, "METHOD_NOT_ALLOWED", "Method not allowed")
    if exc.status_code == 404:
        return error_response(404, "NOT_FOUND", "Resource not found")
    return error_response(exc.status_code, "HTTP_ERROR", str(exc.detail))


async def validation_exception_handler(
    _request: Request,
    exc: RequestValidationError,
) -> JSONResponse:
    """Handle FastAPI request validation errors (path and query parameters)."""
    return error_response(
        400,
        "VALIDATION_ERROR",
        "Request validation failed",
        {"errors": [str(error.get("msg", "")) for error in exc.errors()]},
    )


def register_exception_handlers(app: FastAPI) -> None:
    """Register all exception handlers on the app."""
    register_common_exception_handlers(
        app,
        ServiceError,
        cast("ExceptionHandler", service_error_handler),
        unhandled_exception_handler,
    )
    app.add_exception_handler(
        sqlite3.OperationalError,
        cast("ExceptionHandler", store_unavailable_handler),
    )
    app.add_exception_handler(
        StarletteHTTPException,
        cast("ExceptionHandler", http_exception_handler),
    )
    app.add_exception_handler(
        RequestValidationError,
        cast("ExceptionHandler", validation_exception_handler),
    )
