"""
Reputation ledger: rating events, running averages and trophies.

Pure Python — no FastAPI imports.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from service_commons.exceptions import ServiceError

from task_market_service.domain import ACCEPTING, GIVING, SEED_RATING
from task_market_service.logging import get_logger
from task_market_service.timeutils import now_iso

if TYPE_CHECKING:
    from task_market_service.services.market_store import MarketStore

_AGGREGATE_COLUMNS: dict[str, tuple[str, str]] = {
    GIVING: ("giving_rating", "giving_rating_count"),
    ACCEPTING: ("accepting_rating", "accepting_rating_count"),
}


def running_average(total: int, count: int) -> float:
    """Average of the stored ratings plus the permanent 5.0 seed."""
    return (SEED_RATING + total) / (count + 1)


def user_to_profile(user_id: str, row: dict[str, Any] | None) -> dict[str, Any]:
    """Render a user row, or the seed profile of a user never seen before."""
    if row is None:
        return {
            "user_id": user_id,
            "display_name": None,
            "giving_rating": SEED_RATING,
            "accepting_rating": SEED_RATING,
            "giving_rating_count": 0,
            "accepting_rating_count": 0,
            "trophies": 0,
        }
    return {
        "user_id": row["user_id"],
        "display_name": row["display_name"],
        "giving_rating": float(row["giving_rating"]),
        "accepting_rating": float(row["accepting_rating"]),
        "giving_rating_count": int(row["giving_rating_count"]),
        "accepting_rating_count": int(row["accepting_rating_count"]),
        "trophies": int(row["trophies"]),
    }


def rating_to_response(row: dict[str, Any]) -> dict[str, Any]:
    """Convert a rating row to its response dict."""
    return {
        "rating_id": row["rating_id"],
        "task_id": row["task_id"],
        "rater_id": row["rater_id"],
        "ratee_id": row["ratee_id"],
        "value": row["value"],
        "category": row["category"],
        "comment": row["comment"],
        "created_at": row["created_at"],
    }


class ReputationLedger:
    """
    Sole writer of rating aggregates and trophy counts.

    The aggregate of a category is always re-derived from the stored
    ratings inside the caller's transaction, so concurrent ratings of the
    same user cannot lose an update.
    """

    def __init__(self, store: MarketStore) -> None:
        self._store = store
        self._logger = get_logger(__name__)

    def record_rating(self, rating: dict[str, Any]) -> dict[str, Any]:
        """
        Store a rating and recompute the ratee's aggregate for its category.

        Raises:
            DuplicateRatingError: the rater already rated this task.
        """
        average_column, count_column = _AGGREGATE_COLUMNS[rating["category"]]
        with self._store.transaction():
            self._store.insert_rating(rating)
            self._store.ensure_user(rating["ratee_id"], None, now_iso())
            total, count = self._store.rating_totals(rating["ratee_id"], rating["category"])
            average = running_average(total, count)
            self._store.set_rating_aggregate(
                rating["ratee_id"], average_column, count_column, average, count
            )

        self._logger.info(
            "Rating recorded",
            extra={
                "task_id": rating["task_id"],
                "ratee_id": rating["ratee_id"],
                "category": rating["category"],
                "average": average,
                "count": count,
            },
        )
        return rating_to_response(rating)

    def award_trophy(self, user_id: str) -> None:
        """Give one trophy to the acceptor of a completed task."""
        with self._store.transaction():
            self._store.ensure_user(user_id, None, now_iso())
            self._store.increment_trophies(user_id)
        self._logger.info("Trophy awarded", extra={"user_id": user_id})

    def get_reputation(self, user_id: str) -> dict[str, Any]:
        """Return a user's reputation profile."""
        row = self._store.get_user(user_id)
        if row is None:
            raise ServiceError("USER_NOT_FOUND", "User not found", 404, {})
        return user_to_profile(user_id, row)

    def ratings_received(self, user_id: str) -> list[dict[str, Any]]:
        """Ratings a user has received, newest first."""
        return [rating_to_response(row) for row in self._store.list_ratings_for_ratee(user_id)]

    def profiles(self, user_ids: list[str]) -> dict[str, dict[str, Any]]:
        """Profiles for several users, seeded for users never seen."""
        rows = self._store.get_users(user_ids)
        return {user_id: user_to_profile(user_id, rows.get(user_id)) for user_id in user_ids}
