"""User endpoints: reputation profiles and per-user task views."""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Request
from starlette.concurrency import run_in_threadpool

from task_market_service.routers.helpers import authenticate, require_engine, require_ledger

router = APIRouter()


# ---------------------------------------------------------------------------
# /users/me/* MUST be before /users/{user_id}/*
# ---------------------------------------------------------------------------


@router.get("/users/me/given")
async def my_given_tasks(request: Request) -> dict[str, Any]:
    """Tasks the caller posted."""
    actor = await authenticate(request)
    engine = require_engine()
    return {"tasks": await run_in_threadpool(engine.given_tasks, actor.user_id)}


@router.get("/users/me/accepted")
async def my_accepted_tasks(request: Request) -> dict[str, Any]:
    """Tasks the caller is or was the acceptor of."""
    actor = await authenticate(request)
    engine = require_engine()
    return {"tasks": await run_in_threadpool(engine.accepted_tasks, actor.user_id)}


@router.get("/users/me/applications")
async def my_applications(request: Request) -> dict[str, Any]:
    """The caller's applications, each with a task summary."""
    actor = await authenticate(request)
    engine = require_engine()
    return {"applications": await run_in_threadpool(engine.user_applications, actor.user_id)}


@router.get("/users/me/exits")
async def my_exits(request: Request) -> dict[str, Any]:
    """Tasks the caller withdrew from or was removed from."""
    actor = await authenticate(request)
    engine = require_engine()
    return {"exits": await run_in_threadpool(engine.user_exits, actor.user_id)}


# ---------------------------------------------------------------------------
# Public reputation
# ---------------------------------------------------------------------------


@router.get("/users/{user_id}")
async def get_user(user_id: str) -> dict[str, Any]:
    """A user's ratings per category and trophy count."""
    ledger = require_ledger()
    return await run_in_threadpool(ledger.get_reputation, user_id)


@router.get("/users/{user_id}/ratings")
async def get_user_ratings(user_id: str) -> dict[str, Any]:
    """Ratings a user has received, newest first."""
    ledger = require_ledger()
    ratings = await run_in_threadpool(ledger.ratings_received, user_id)
    return {"user_id": user_id, "ratings": ratings}
