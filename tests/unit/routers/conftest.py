"""Router test fixtures with a mocked Identity service."""

from __future__ import annotations

import os
from typing import TYPE_CHECKING, Any
from unittest.mock import AsyncMock

import pytest
from httpx import ASGITransport, AsyncClient
from service_commons.exceptions import ServiceError

from task_market_service.app import create_app
from task_market_service.config import clear_settings_cache
from task_market_service.core.lifespan import lifespan
from task_market_service.core.state import get_app_state, reset_app_state
from tests.helpers import auth_headers, future_deadline, make_config_content, verify_token_response

if TYPE_CHECKING:
    from collections.abc import AsyncIterator
    from pathlib import Path

# ---------------------------------------------------------------------------
# Fixed user IDs
# ---------------------------------------------------------------------------
GIVER = "u-giver"
ALICE = "u-alice"
BOB = "u-bob"
CAROL = "u-carol"


async def mock_verify_token(token: str) -> dict[str, Any]:
    """Stand-in for IdentityClient.verify_token over the ``token-<user_id>`` scheme."""
    result = verify_token_response(token)
    if not result["valid"]:
        raise ServiceError("FORBIDDEN", "Bearer token verification failed", 403, {})
    return result


# ---------------------------------------------------------------------------
# App + client fixtures
# ---------------------------------------------------------------------------
@pytest.fixture
async def app(tmp_path: Path) -> AsyncIterator[Any]:
    """Create a test app with a temp database and a mocked Identity service."""
    config_path = tmp_path / "config.yaml"
    config_path.write_text(make_config_content(tmp_path / "test.db", tmp_path / "logs"))

    old_config = os.environ.get("CONFIG_PATH")
    os.environ["CONFIG_PATH"] = str(config_path)

    clear_settings_cache()
    reset_app_state()

    test_app = create_app()
    async with lifespan(test_app):
        state = get_app_state()

        # Mock Identity client. Default: token-<user_id> verifies as that user
        mock_identity = AsyncMock()
        mock_identity.close = AsyncMock()
        mock_identity.verify_token = AsyncMock(side_effect=mock_verify_token)
        state.identity_client = mock_identity

        yield test_app

    reset_app_state()
    clear_settings_cache()
    if old_config is None:
        os.environ.pop("CONFIG_PATH", None)
    else:
        os.environ["CONFIG_PATH"] = old_config


@pytest.fixture
async def client(app: Any) -> AsyncIterator[AsyncClient]:
    """Create an async HTTP client for the test app."""
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as c:
        yield c


# ---------------------------------------------------------------------------
# Task lifecycle helper functions
# ---------------------------------------------------------------------------
async def create_task(
    client: AsyncClient,
    giver_id: str = GIVER,
    *,
    title: str = "Walk the dog",
    description: str = "Thirty minutes around the park",
    reward: str = "A homemade cake",
    deadline: str | None = None,
) -> Any:
    """Create a task via POST /tasks and return the response."""
    return await client.post(
        "/tasks",
        json={
            "title": title,
            "description": description,
            "reward": reward,
            "deadline": deadline if deadline is not None else future_deadline(),
        },
        headers=auth_headers(giver_id),
    )


async def apply(client: AsyncClient, task_id: str, applicant_id: str) -> Any:
    """Apply to a task."""
    return await client.post(f"/tasks/{task_id}/applications", headers=auth_headers(applicant_id))


async def accept(
    client: AsyncClient, task_id: str, applicant_id: str, giver_id: str = GIVER
) -> Any:
    """Accept an applicant."""
    return await client.post(
        f"/tasks/{task_id}/applications/{applicant_id}/accept",
        headers=auth_headers(giver_id),
    )


async def complete(client: AsyncClient, task_id: str, giver_id: str = GIVER) -> Any:
    """Complete a task."""
    return await client.post(f"/tasks/{task_id}/complete", headers=auth_headers(giver_id))


async def cancel(client: AsyncClient, task_id: str, giver_id: str = GIVER) -> Any:
    """Cancel a task."""
    return await client.post(f"/tasks/{task_id}/cancel", headers=auth_headers(giver_id))


async def withdraw(client: AsyncClient, task_id: str, user_id: str, reason: Any = "sick") -> Any:
    """Withdraw the acceptor from a task."""
    return await client.post(
        f"/tasks/{task_id}/withdraw",
        json={"reason": reason},
        headers=auth_headers(user_id),
    )


async def remove_acceptor(
    client: AsyncClient, task_id: str, giver_id: str = GIVER, reason: Any = "no show"
) -> Any:
    """Remove the acceptor from a task."""
    return await client.post(
        f"/tasks/{task_id}/remove-acceptor",
        json={"reason": reason},
        headers=auth_headers(giver_id),
    )


async def rate(
    client: AsyncClient,
    task_id: str,
    rater_id: str,
    ratee_id: str,
    value: Any,
    comment: str | None = None,
) -> Any:
    """Submit a rating."""
    body: dict[str, Any] = {"ratee_id": ratee_id, "value": value}
    if comment is not None:
        body["comment"] = comment
    return await client.post(
        f"/tasks/{task_id}/ratings",
        json=body,
        headers=auth_headers(rater_id),
    )


async def setup_in_progress(client: AsyncClient, acceptor_id: str = ALICE) -> str:
    """Create a task and accept ``acceptor_id``; return the task id."""
    task_id = (await create_task(client)).json()["task_id"]
    assert (await apply(client, task_id, acceptor_id)).status_code == 201
    assert (await accept(client, task_id, acceptor_id)).status_code == 200
    return str(task_id)
