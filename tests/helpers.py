"""Shared test helpers: config files, bearer tokens and timestamps."""

from __future__ import annotations

from datetime import UTC, datetime, timedelta
from typing import TYPE_CHECKING, Any

from task_market_service.timeutils import to_iso

if TYPE_CHECKING:
    from pathlib import Path


def make_config_content(
    db_path: Path | str,
    log_directory: Path | str,
    *,
    expiry_enabled: bool = False,
    max_body_size: int = 65536,
    max_comment_length: int = 500,
) -> str:
    """Render a complete config.yaml for a test instance."""
    return f"""\
service:
  name: "task-market"
  version: "0.1.0"
server:
  host: "127.0.0.1"
  port: 8010
  log_level: "info"
logging:
  level: "WARNING"
  directory: "{log_directory}"
database:
  path: "{db_path}"
identity:
  base_url: "http://identity.test"
  verify_token_path: "/auth/verify-token"
  timeout_seconds: 5
request:
  max_body_size: {max_body_size}
limits:
  max_title_length: 100
  max_description_length: 1000
  max_reward_length: 50
  max_reason_length: 200
  max_comment_length: {max_comment_length}
expiry:
  enabled: {"true" if expiry_enabled else "false"}
  interval_seconds: 3600
"""


def token_for(user_id: str) -> str:
    """Bearer token the mocked Identity service maps back to ``user_id``."""
    return f"token-{user_id}"


def auth_headers(user_id: str) -> dict[str, str]:
    """Authorization header for a user."""
    return {"Authorization": f"Bearer {token_for(user_id)}"}


def verify_token_response(token: str) -> dict[str, Any]:
    """Identity service answer for the ``token-<user_id>`` scheme."""
    if not token.startswith("token-"):
        return {"valid": False}
    user_id = token[len("token-") :]
    return {"valid": True, "user_id": user_id, "username": user_id.capitalize()}


def future_deadline(days: int = 7) -> str:
    """A deadline comfortably in the future."""
    return to_iso(datetime.now(UTC) + timedelta(days=days))


def past_deadline(days: int = 1) -> str:
    """A deadline that has already passed."""
    return to_iso(datetime.now(UTC) - timedelta(days=days))


def task_row(
    task_id: str,
    giver_id: str = "giver",
    *,
    status: str = "OPEN",
    acceptor_id: str | None = None,
    deadline: str | None = None,
) -> dict[str, Any]:
    """A complete tasks-table row for store-level tests."""
    return {
        "task_id": task_id,
        "giver_id": giver_id,
        "acceptor_id": acceptor_id,
        "title": f"Task {task_id}",
        "description": "Water the plants",
        "reward": "Coffee",
        "deadline": deadline if deadline is not None else future_deadline(),
        "status": status,
        "created_at": to_iso(datetime.now(UTC)),
        "accepted_at": None,
        "completed_at": None,
        "cancelled_at": None,
    }
