"""Application lifecycle management."""

from __future__ import annotations

from contextlib import asynccontextmanager
from typing import TYPE_CHECKING

from task_market_service.clients.identity_client import IdentityClient
from task_market_service.config import get_settings
from task_market_service.core.state import init_app_state
from task_market_service.logging import get_logger, setup_logging
from task_market_service.services.application_registry import ApplicationRegistry
from task_market_service.services.expiry_sweeper import ExpirySweeper
from task_market_service.services.market_store import MarketStore
from task_market_service.services.rating_eligibility import RatingResolver
from task_market_service.services.reputation_ledger import ReputationLedger
from task_market_service.services.task_lifecycle import TaskLifecycleEngine

if TYPE_CHECKING:
    from collections.abc import AsyncIterator

    from fastapi import FastAPI


@asynccontextmanager
async def lifespan(_app: FastAPI) -> AsyncIterator[None]:
    """Manage application lifecycle."""
    # === STARTUP ===
    settings = get_settings()

    setup_logging(settings.logging.level, settings.service.name, settings.logging.directory)
    logger = get_logger(__name__)

    state = init_app_state()

    db_path = settings.database.path
    store = MarketStore(db_path=db_path)
    state.store = store

    registry = ApplicationRegistry(store=store)
    ledger = ReputationLedger(store=store)
    state.registry = registry
    state.ledger = ledger

    state.engine = TaskLifecycleEngine(
        store=store,
        registry=registry,
        ledger=ledger,
        limits=settings.limits,
    )
    state.resolver = RatingResolver(
        store=store,
        registry=registry,
        ledger=ledger,
        max_comment_length=settings.limits.max_comment_length,
    )

    # Initialize IdentityClient (HTTP client for bearer token verification)
    identity_client = IdentityClient(
        base_url=settings.identity.base_url,
        verify_token_path=settings.identity.verify_token_path,
        timeout_seconds=settings.identity.timeout_seconds,
    )
    state.identity_client = identity_client

    if settings.expiry.enabled:
        sweeper = ExpirySweeper(state.engine, settings.expiry.interval_seconds)
        sweeper.start()
        state.sweeper = sweeper

    logger.info(
        "Service starting",
        extra={
            "service": settings.service.name,
            "version": settings.service.version,
            "port": settings.server.port,
            "db_path": db_path,
            "identity_base_url": settings.identity.base_url,
            "expiry_enabled": settings.expiry.enabled,
        },
    )

    yield  # Application runs here

    # === SHUTDOWN ===
    logger.info("Service shutting down", extra={"uptime_seconds": state.uptime_seconds})

    if state.sweeper is not None:
        await state.sweeper.stop()

    await identity_client.close()
    store.close()
