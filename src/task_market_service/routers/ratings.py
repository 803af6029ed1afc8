"""Rating endpoints."""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse
from starlette.concurrency import run_in_threadpool

from task_market_service.logging import get_logger
from task_market_service.routers.helpers import authenticate, parse_json_body, require_resolver

router = APIRouter()


@router.post("/tasks/{task_id}/ratings", status_code=201)
async def submit_rating(task_id: str, request: Request) -> JSONResponse:
    """Rate the other party of a task."""
    actor = await authenticate(request)
    body = await request.body()
    data = parse_json_body(body)

    resolver = require_resolver()
    result = await run_in_threadpool(
        resolver.submit_rating,
        task_id,
        actor.user_id,
        data.get("ratee_id"),
        data.get("value"),
        data.get("comment"),
    )
    get_logger(__name__).info(
        "Rating submitted",
        extra={"task_id": task_id, "rater_id": actor.user_id, "category": result["category"]},
    )
    return JSONResponse(status_code=201, content=result)


@router.get("/tasks/{task_id}/ratings")
async def list_task_ratings(task_id: str, request: Request) -> dict[str, Any]:
    """Ratings submitted on a task."""
    await authenticate(request)
    resolver = require_resolver()
    ratings = await run_in_threadpool(resolver.ratings_for_task, task_id)
    return {"task_id": task_id, "ratings": ratings}


@router.get("/tasks/{task_id}/has-rated")
async def has_rated(task_id: str, request: Request) -> dict[str, Any]:
    """Whether the caller already rated this task."""
    actor = await authenticate(request)
    resolver = require_resolver()
    rated = await run_in_threadpool(resolver.has_rated, task_id, actor.user_id)
    return {"task_id": task_id, "has_rated": rated}
