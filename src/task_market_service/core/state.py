"""Application state management."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from task_market_service.clients.identity_client import IdentityClient
    from task_market_service.services.application_registry import ApplicationRegistry
    from task_market_service.services.expiry_sweeper import ExpirySweeper
    from task_market_service.services.market_store import MarketStore
    from task_market_service.services.rating_eligibility import RatingResolver
    from task_market_service.services.reputation_ledger import ReputationLedger
    from task_market_service.services.task_lifecycle import TaskLifecycleEngine


@dataclass
class AppState:
    """Runtime application state."""

    start_time: datetime = field(default_factory=lambda: datetime.now(UTC))
    store: MarketStore | None = None
    engine: TaskLifecycleEngine | None = None
    registry: ApplicationRegistry | None = None
    ledger: ReputationLedger | None = None
    resolver: RatingResolver | None = None
    identity_client: IdentityClient | None = None
    sweeper: ExpirySweeper | None = None

    @property
    def uptime_seconds(self) -> float:
        """Calculate uptime in seconds."""
        return (datetime.now(UTC) - self.start_time).total_seconds()

    @property
    def started_at(self) -> str:
        """ISO format start time."""
        return self.start_time.isoformat(timespec="seconds").replace("+00:00", "Z")


# Global application state container
_state_container: dict[str, AppState | None] = {"app_state": None}


def get_app_state() -> AppState:
    """Get the current application state."""
    app_state = _state_container["app_state"]
    if app_state is None:
        msg = "Application state not initialized"
        raise RuntimeError(msg)
    return app_state


def init_app_state() -> AppState:
    """Initialize application state. Called during startup."""
    app_state = AppState()
    _state_container["app_state"] = app_state
    return app_state


def reset_app_state() -> None:
    """Reset application state. Used in testing."""
    _state_container["app_state"] = None
