"""Unit test fixtures — auto-clear caches, and an in-process market."""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING

import pytest

from task_market_service.config import LimitsConfig, clear_settings_cache
from task_market_service.core.state import reset_app_state
from task_market_service.services.application_registry import ApplicationRegistry
from task_market_service.services.market_store import MarketStore
from task_market_service.services.rating_eligibility import RatingResolver
from task_market_service.services.reputation_ledger import ReputationLedger
from task_market_service.services.task_lifecycle import TaskLifecycleEngine

if TYPE_CHECKING:
    from collections.abc import Iterator
    from pathlib import Path


@pytest.fixture(autouse=True)
def _clear_caches():
    """Clear settings cache and app state between tests."""
    clear_settings_cache()
    reset_app_state()
    yield
    clear_settings_cache()
    reset_app_state()


@dataclass
class Market:
    """The services wired together over one temporary database."""

    store: MarketStore
    registry: ApplicationRegistry
    ledger: ReputationLedger
    engine: TaskLifecycleEngine
    resolver: RatingResolver


TEST_LIMITS = LimitsConfig(
    max_title_length=100,
    max_description_length=1000,
    max_reward_length=50,
    max_reason_length=200,
    max_comment_length=500,
)


@pytest.fixture
def store(tmp_path: Path) -> Iterator[MarketStore]:
    """A MarketStore on a fresh database file."""
    market_store = MarketStore(db_path=str(tmp_path / "market.db"))
    yield market_store
    market_store.close()


@pytest.fixture
def market(store: MarketStore) -> Market:
    """Registry, ledger, engine and resolver sharing one store."""
    registry = ApplicationRegistry(store=store)
    ledger = ReputationLedger(store=store)
    engine = TaskLifecycleEngine(store=store, registry=registry, ledger=ledger, limits=TEST_LIMITS)
    resolver = RatingResolver(
        store=store,
        registry=registry,
        ledger=ledger,
        max_comment_length=TEST_LIMITS.max_comment_length,
    )
    return Market(store=store, registry=registry, ledger=ledger, engine=engine, resolver=resolver)
