"""Application endpoints: apply, list, accept and reject."""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse
from service_commons.exceptions import ServiceError
from starlette.concurrency import run_in_threadpool

from task_market_service.core.state import get_app_state
from task_market_service.routers.helpers import authenticate, require_engine

router = APIRouter()


@router.post("/tasks/{task_id}/applications", status_code=201)
async def apply_to_task(task_id: str, request: Request) -> JSONResponse:
    """Apply to perform an OPEN task."""
    actor = await authenticate(request)

    state = get_app_state()
    if state.registry is None:
        msg = "ApplicationRegistry not initialized"
        raise RuntimeError(msg)

    result = await run_in_threadpool(state.registry.apply, task_id, actor.user_id)
    return JSONResponse(status_code=201, content=result)


@router.get("/tasks/{task_id}/applications")
async def list_applications(task_id: str, request: Request) -> dict[str, Any]:
    """Application history of a task, most recent first."""
    await authenticate(request)
    engine = require_engine()
    applications = await run_in_threadpool(engine.application_history, task_id)
    return {"task_id": task_id, "applications": applications}


@router.post("/tasks/{task_id}/applications/{applicant_id}/accept")
async def accept_applicant(task_id: str, applicant_id: str, request: Request) -> dict[str, Any]:
    """Accept a PENDING applicant; every other PENDING application is rejected."""
    actor = await authenticate(request)
    engine = require_engine()
    return await run_in_threadpool(engine.accept, task_id, applicant_id, actor.user_id)


@router.post("/tasks/{task_id}/applications/{applicant_id}/reject")
async def reject_applicant(task_id: str, applicant_id: str, request: Request) -> dict[str, Any]:
    """Reject a single PENDING applicant."""
    actor = await authenticate(request)
    engine = require_engine()
    return await run_in_threadpool(engine.reject_applicant, task_id, applicant_id, actor.user_id)


@router.api_route(
    "/tasks/{task_id}/applications/{applicant_id}/accept",
    methods=["GET", "PUT", "PATCH", "DELETE"],
)
@router.api_route(
    "/tasks/{task_id}/applications/{applicant_id}/reject",
    methods=["GET", "PUT", "PATCH", "DELETE"],
)
async def decision_method_not_allowed(task_id: str, applicant_id: str, request: Request) -> None:
    """Reject wrong methods on the accept/reject endpoints."""
    _ = (task_id, applicant_id, request)
    raise ServiceError("METHOD_NOT_ALLOWED", "Method not allowed", 405, {})
