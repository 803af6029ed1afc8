"""Task lifecycle endpoints."""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse
from service_commons.exceptions import ServiceError
from starlette.concurrency import run_in_threadpool

from task_market_service.routers.helpers import (
    authenticate,
    parse_json_body,
    parse_pagination,
    require_engine,
)

router = APIRouter()

_DUPLICATE_FIELDS = ("title", "description", "reward", "deadline")


# ---------------------------------------------------------------------------
# POST /tasks: create task (MUST be before GET /tasks/{task_id})
# ---------------------------------------------------------------------------


@router.post("/tasks", status_code=201)
async def create_task(request: Request) -> JSONResponse:
    """Post a new OPEN task."""
    actor = await authenticate(request)
    body = await request.body()
    data = {} if body == b"" else parse_json_body(body)

    engine = require_engine()
    result = await run_in_threadpool(
        engine.create_task,
        actor.user_id,
        data.get("title"),
        data.get("description"),
        data.get("reward"),
        data.get("deadline"),
    )
    return JSONResponse(status_code=201, content=result)


# ---------------------------------------------------------------------------
# GET /tasks: list tasks (MUST be before GET /tasks/{task_id})
# ---------------------------------------------------------------------------


@router.get("/tasks")
async def list_tasks(request: Request) -> dict[str, Any]:
    """List tasks with optional filters."""
    await authenticate(request)
    limit, offset = parse_pagination(request)

    engine = require_engine()
    tasks = await run_in_threadpool(
        engine.list_tasks,
        request.query_params.get("status"),
        request.query_params.get("giver_id"),
        request.query_params.get("acceptor_id"),
        limit,
        offset,
    )
    return {"tasks": tasks}


# ---------------------------------------------------------------------------
# POST /tasks/expire: cancel OPEN tasks past their deadline
# ---------------------------------------------------------------------------


@router.post("/tasks/expire")
async def expire_open_tasks(request: Request) -> dict[str, Any]:
    """Cancel every OPEN task whose deadline has passed."""
    await authenticate(request)
    engine = require_engine()
    count = await run_in_threadpool(engine.expire_open_tasks)
    return {"cancelled": count}


@router.api_route("/tasks/expire", methods=["GET", "PUT", "PATCH", "DELETE"])
async def expire_method_not_allowed(request: Request) -> None:
    """Reject wrong methods on /tasks/expire."""
    _ = request
    raise ServiceError("METHOD_NOT_ALLOWED", "Method not allowed", 405, {})


# ---------------------------------------------------------------------------
# Giver actions
# ---------------------------------------------------------------------------


@router.post("/tasks/{task_id}/duplicate", status_code=201)
async def duplicate_task(task_id: str, request: Request) -> JSONResponse:
    """Post a copy of one of your tasks with a new deadline."""
    actor = await authenticate(request)
    body = await request.body()
    data = {} if body == b"" else parse_json_body(body)
    overrides = {name: data[name] for name in _DUPLICATE_FIELDS if name in data}

    engine = require_engine()
    result = await run_in_threadpool(engine.duplicate_task, task_id, actor.user_id, overrides)
    return JSONResponse(status_code=201, content=result)


@router.post("/tasks/{task_id}/complete")
async def complete_task(task_id: str, request: Request) -> dict[str, Any]:
    """Mark an IN_PROGRESS task as completed and award the acceptor a trophy."""
    actor = await authenticate(request)
    engine = require_engine()
    return await run_in_threadpool(engine.complete, task_id, actor.user_id)


@router.post("/tasks/{task_id}/cancel")
async def cancel_task(task_id: str, request: Request) -> dict[str, Any]:
    """Cancel an OPEN or IN_PROGRESS task."""
    actor = await authenticate(request)
    engine = require_engine()
    return await run_in_threadpool(engine.cancel, task_id, actor.user_id)


@router.post("/tasks/{task_id}/remove-acceptor")
async def remove_acceptor(task_id: str, request: Request) -> dict[str, Any]:
    """Remove the acceptor and reopen the task."""
    actor = await authenticate(request)
    body = await request.body()
    data = parse_json_body(body)

    engine = require_engine()
    return await run_in_threadpool(
        engine.remove_acceptor, task_id, actor.user_id, data.get("reason")
    )


# ---------------------------------------------------------------------------
# Acceptor actions
# ---------------------------------------------------------------------------


@router.post("/tasks/{task_id}/withdraw")
async def withdraw_from_task(task_id: str, request: Request) -> dict[str, Any]:
    """Give up an accepted task; it reopens for new applicants."""
    actor = await authenticate(request)
    body = await request.body()
    data = parse_json_body(body)

    engine = require_engine()
    return await run_in_threadpool(engine.withdraw, task_id, actor.user_id, data.get("reason"))


# ---------------------------------------------------------------------------
# Method-not-allowed: action routes
#
# Without these, requests like GET /tasks/{task_id}/cancel fall through to
# the generic 404 instead of the required 405.
# ---------------------------------------------------------------------------


_ACTION_METHODS = ["GET", "PUT", "PATCH", "DELETE"]


@router.api_route("/tasks/{task_id}/duplicate", methods=_ACTION_METHODS)
@router.api_route("/tasks/{task_id}/complete", methods=_ACTION_METHODS)
@router.api_route("/tasks/{task_id}/cancel", methods=_ACTION_METHODS)
@router.api_route("/tasks/{task_id}/withdraw", methods=_ACTION_METHODS)
@router.api_route("/tasks/{task_id}/remove-acceptor", methods=_ACTION_METHODS)
async def action_method_not_allowed(task_id: str, request: Request) -> None:
    """Reject wrong methods on POST-only task actions."""
    _ = (task_id, request)
    raise ServiceError("METHOD_NOT_ALLOWED", "Method not allowed", 405, {})


# ---------------------------------------------------------------------------
# GET/PUT /tasks/{task_id}: MUST be LAST (parameterized catch-all)
# ---------------------------------------------------------------------------


@router.get("/tasks/{task_id}")
async def get_task(task_id: str, request: Request) -> dict[str, Any]:
    """Get full task details including its application history."""
    await authenticate(request)
    engine = require_engine()
    return await run_in_threadpool(engine.get_task, task_id)


@router.put("/tasks/{task_id}")
async def edit_task(task_id: str, request: Request) -> dict[str, Any]:
    """Move a task's deadline."""
    actor = await authenticate(request)
    body = await request.body()
    data = parse_json_body(body)

    engine = require_engine()
    return await run_in_threadpool(engine.edit_task, task_id, actor.user_id, data.get("deadline"))
