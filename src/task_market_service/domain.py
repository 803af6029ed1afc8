"""Status and category vocabulary shared by the market services."""

from __future__ import annotations

import uuid

# Task statuses
OPEN = "OPEN"
IN_PROGRESS = "IN_PROGRESS"
COMPLETED = "COMPLETED"
CANCELLED = "CANCELLED"

TASK_STATUSES: frozenset[str] = frozenset({OPEN, IN_PROGRESS, COMPLETED, CANCELLED})
TERMINAL_TASK_STATUSES: frozenset[str] = frozenset({COMPLETED, CANCELLED})

# Application statuses
PENDING = "PENDING"
ACCEPTED = "ACCEPTED"
REJECTED = "REJECTED"
REMOVED = "REMOVED"
WITHDRAWN = "WITHDRAWN"

LIVE_APPLICATION_STATUSES: tuple[str, ...] = (PENDING, ACCEPTED)
EXIT_APPLICATION_STATUSES: tuple[str, ...] = (WITHDRAWN, REMOVED)

# Rating categories
GIVING = "GIVING"
ACCEPTING = "ACCEPTING"

RATING_CATEGORIES: frozenset[str] = frozenset({GIVING, ACCEPTING})
MIN_RATING = 1
MAX_RATING = 5

# Every user starts with one virtual rating of this value in each category.
SEED_RATING = 5.0


def new_task_id() -> str:
    return f"t-{uuid.uuid4()}"


def new_application_id() -> str:
    return f"app-{uuid.uuid4()}"


def new_rating_id() -> str:
    return f"r-{uuid.uuid4()}"
