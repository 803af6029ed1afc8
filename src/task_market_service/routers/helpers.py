"""Shared router helper functions."""

from __future__ import annotations

import json
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from service_commons.exceptions import ServiceError
from starlette.concurrency import run_in_threadpool

from task_market_service.core.state import get_app_state
from task_market_service.timeutils import now_iso

if TYPE_CHECKING:
    from fastapi import Request

    from task_market_service.services.rating_eligibility import RatingResolver
    from task_market_service.services.reputation_ledger import ReputationLedger
    from task_market_service.services.task_lifecycle import TaskLifecycleEngine


@dataclass(frozen=True)
class Actor:
    """The authenticated user behind a request."""

    user_id: str
    display_name: str | None


def parse_json_body(body: bytes) -> dict[str, Any]:
    """Parse JSON body, raising ServiceError on failure."""
    try:
        data = json.loads(body)
    except (json.JSONDecodeError, UnicodeDecodeError) as exc:
        raise ServiceError(
            "INVALID_JSON",
            "Request body is not valid JSON",
            400,
            {},
        ) from exc

    if not isinstance(data, dict):
        raise ServiceError(
            "INVALID_JSON",
            "Request body must be a JSON object",
            400,
            {},
        )

    return data


def extract_bearer_token(authorization: str | None) -> str:
    """Extract the bearer token from an Authorization header."""
    if authorization is None:
        raise ServiceError("UNAUTHORIZED", "Missing Authorization header", 401, {})

    if not authorization.startswith("Bearer "):
        raise ServiceError(
            "UNAUTHORIZED",
            "Authorization header must use Bearer scheme",
            401,
            {},
        )

    token = authorization[len("Bearer ") :].strip()
    if not token:
        raise ServiceError("UNAUTHORIZED", "Bearer token must not be empty", 401, {})

    return token


async def authenticate(request: Request) -> Actor:
    """Verify the caller's bearer token and make sure their user row exists."""
    token = extract_bearer_token(request.headers.get("authorization"))

    state = get_app_state()
    if state.identity_client is None:
        msg = "Identity client not initialized"
        raise RuntimeError(msg)
    if state.store is None:
        msg = "MarketStore not initialized"
        raise RuntimeError(msg)

    verified = await state.identity_client.verify_token(token)
    username = verified.get("username")
    actor = Actor(
        user_id=str(verified["user_id"]),
        display_name=username if isinstance(username, str) else None,
    )
    await run_in_threadpool(state.store.ensure_user, actor.user_id, actor.display_name, now_iso())
    return actor


def require_engine() -> TaskLifecycleEngine:
    """Return the lifecycle engine from app state."""
    state = get_app_state()
    if state.engine is None:
        msg = "TaskLifecycleEngine not initialized"
        raise RuntimeError(msg)
    return state.engine


def require_resolver() -> RatingResolver:
    """Return the rating resolver from app state."""
    state = get_app_state()
    if state.resolver is None:
        msg = "RatingResolver not initialized"
        raise RuntimeError(msg)
    return state.resolver


def require_ledger() -> ReputationLedger:
    """Return the reputation ledger from app state."""
    state = get_app_state()
    if state.ledger is None:
        msg = "ReputationLedger not initialized"
        raise RuntimeError(msg)
    return state.ledger


def parse_pagination(request: Request) -> tuple[int | None, int | None]:
    """Read optional ``limit`` and ``offset`` query parameters."""
    offset_raw = request.query_params.get("offset")
    limit_raw = request.query_params.get("limit")

    offset: int | None = None
    limit: int | None = None

    if offset_raw is not None:
        try:
            offset = int(offset_raw)
        except ValueError as exc:
            raise ServiceError("VALIDATION_ERROR", "offset must be an integer", 400, {}) from exc
        if offset < 0:
            raise ServiceError("VALIDATION_ERROR", "offset must be >= 0", 400, {})

    if limit_raw is not None:
        try:
            limit = int(limit_raw)
        except ValueError as exc:
            raise ServiceError("VALIDATION_ERROR", "limit must be an integer", 400, {}) from exc
        if limit <= 0:
            raise ServiceError("VALIDATION_ERROR", "limit must be >= 1", 400, {})

    return limit, offset
