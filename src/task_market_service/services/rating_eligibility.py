"""
Rating eligibility: who may rate whom on a task, and under which category.

The decision itself is a pure function over a ``RatingContext`` snapshot.
``RatingResolver`` builds that snapshot from the store, consults the
table and writes accepted ratings through the reputation ledger.

Pure Python — no FastAPI imports.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from service_commons.exceptions import ServiceError

from task_market_service.domain import (
    ACCEPTING,
    CANCELLED,
    COMPLETED,
    GIVING,
    IN_PROGRESS,
    MAX_RATING,
    MIN_RATING,
    OPEN,
    REMOVED,
    WITHDRAWN,
    new_rating_id,
)
from task_market_service.logging import get_logger
from task_market_service.services.market_store import DuplicateRatingError
from task_market_service.services.reputation_ledger import rating_to_response
from task_market_service.timeutils import now_iso

if TYPE_CHECKING:
    from collections.abc import Callable

    from task_market_service.services.application_registry import ApplicationRegistry
    from task_market_service.services.market_store import MarketStore
    from task_market_service.services.reputation_ledger import ReputationLedger


@dataclass(frozen=True)
class RatingContext:
    """Everything the decision table looks at, captured at one instant."""

    status: str
    rater_is_giver: bool
    ratee_is_giver: bool
    rater_is_acceptor: bool
    ratee_is_acceptor: bool
    rater_exit: str | None
    ratee_exit: str | None
    self_rating: bool = False

    @property
    def rater_is_participant(self) -> bool:
        return self.rater_is_giver or self.rater_is_acceptor or self.rater_exit is not None


@dataclass(frozen=True)
class Ineligible:
    """Rejection result."""

    error: str
    message: str
    status_code: int

    def to_service_error(self) -> ServiceError:
        return ServiceError(self.error, self.message, self.status_code, {})


def _invalid(message: str) -> Ineligible:
    return Ineligible("INVALID_RATING", message, 400)


def _forbidden(message: str) -> Ineligible:
    return Ineligible("FORBIDDEN", message, 403)


def _in_flight(ctx: RatingContext) -> bool:
    return ctx.status in (OPEN, IN_PROGRESS)


Outcome = str | Ineligible

# Ordered rows: the first predicate that holds decides the outcome.
RULES: tuple[tuple[str, Callable[[RatingContext], bool], Outcome], ...] = (
    (
        "self_rating",
        lambda ctx: ctx.self_rating,
        _invalid("You cannot rate yourself"),
    ),
    (
        "non_participant",
        lambda ctx: not ctx.rater_is_participant,
        _forbidden("Not authorized to rate this task"),
    ),
    # COMPLETED: the giver and the acceptor rate each other.
    (
        "completed_giver_rates_acceptor",
        lambda ctx: ctx.status == COMPLETED and ctx.rater_is_giver and ctx.ratee_is_acceptor,
        ACCEPTING,
    ),
    (
        "completed_acceptor_rates_giver",
        lambda ctx: ctx.status == COMPLETED and ctx.rater_is_acceptor and ctx.ratee_is_giver,
        GIVING,
    ),
    (
        "completed_other_pairing",
        lambda ctx: ctx.status == COMPLETED,
        _invalid("Invalid rating configuration"),
    ),
    # CANCELLED: only the acceptor at cancellation time rates, and only the giver.
    (
        "cancelled_acceptor_rates_giver",
        lambda ctx: ctx.status == CANCELLED and ctx.rater_is_acceptor and ctx.ratee_is_giver,
        GIVING,
    ),
    (
        "cancelled_giver",
        lambda ctx: ctx.status == CANCELLED and ctx.rater_is_giver,
        _forbidden("Cannot rate acceptor for a cancelled task"),
    ),
    (
        "cancelled_other_pairing",
        lambda ctx: ctx.status == CANCELLED,
        _invalid("Invalid rating configuration"),
    ),
    # OPEN / IN_PROGRESS: only withdrawal and removal open a rating window.
    (
        "giver_rates_withdrawn",
        lambda ctx: _in_flight(ctx) and ctx.rater_is_giver and ctx.ratee_exit == WITHDRAWN,
        ACCEPTING,
    ),
    (
        "withdrawn_rater",
        lambda ctx: _in_flight(ctx) and ctx.rater_exit == WITHDRAWN,
        _forbidden("Only giver can rate after withdrawal"),
    ),
    (
        "removed_rates_giver",
        lambda ctx: _in_flight(ctx) and ctx.rater_exit == REMOVED and ctx.ratee_is_giver,
        GIVING,
    ),
    (
        "removed_rates_other",
        lambda ctx: _in_flight(ctx) and ctx.rater_exit == REMOVED,
        _invalid("Removed acceptor may only rate the giver"),
    ),
    (
        "giver_rates_removed",
        lambda ctx: _in_flight(ctx) and ctx.rater_is_giver and ctx.ratee_exit == REMOVED,
        _forbidden("Only removed acceptor can rate the giver"),
    ),
    (
        "participant_other",
        lambda _ctx: True,
        _invalid("Task must be completed, cancelled, or have withdrawal/removal"),
    ),
)


def decide(ctx: RatingContext) -> Outcome:
    """Return the rating category, or why the rating is refused."""
    for _name, predicate, outcome in RULES:
        if predicate(ctx):
            return outcome
    msg = "Rating rules are not exhaustive"
    raise RuntimeError(msg)


def validate_rating_value(value: object) -> int:
    """Ratings are integers 1-5; booleans and floats are refused."""
    if (
        not isinstance(value, int)
        or isinstance(value, bool)
        or not MIN_RATING <= value <= MAX_RATING
    ):
        raise ServiceError(
            "INVALID_RATING",
            f"Rating must be an integer between {MIN_RATING} and {MAX_RATING}",
            400,
            {},
        )
    return value


class RatingResolver:
    """Validates, decides and records ratings."""

    def __init__(
        self,
        store: MarketStore,
        registry: ApplicationRegistry,
        ledger: ReputationLedger,
        max_comment_length: int,
    ) -> None:
        self._store = store
        self._registry = registry
        self._ledger = ledger
        self._max_comment_length = max_comment_length
        self._logger = get_logger(__name__)

    def build_context(self, task: dict[str, Any], rater_id: str, ratee_id: str) -> RatingContext:
        """Snapshot the roles of rater and ratee on a task."""
        acceptor_id = task["acceptor_id"]
        rater_exit = self._registry.latest_exit(task["task_id"], rater_id)
        ratee_exit = self._registry.latest_exit(task["task_id"], ratee_id)
        return RatingContext(
            status=task["status"],
            rater_is_giver=rater_id == task["giver_id"],
            ratee_is_giver=ratee_id == task["giver_id"],
            rater_is_acceptor=acceptor_id is not None and rater_id == acceptor_id,
            ratee_is_acceptor=acceptor_id is not None and ratee_id == acceptor_id,
            rater_exit=rater_exit["status"] if rater_exit is not None else None,
            ratee_exit=ratee_exit["status"] if ratee_exit is not None else None,
            self_rating=rater_id == ratee_id,
        )

    def submit_rating(
        self,
        task_id: str,
        rater_id: str,
        ratee_id: object,
        value: object,
        comment: object,
    ) -> dict[str, Any]:
        """
        Submit a rating.

        Error precedence:
        1. INVALID_RATING — value not an integer in 1-5
        2. VALIDATION_ERROR — ratee_id missing, comment malformed or too long
        3. TASK_NOT_FOUND
        4. ALREADY_RATED
        5. Decision table (INVALID_RATING or FORBIDDEN)
        """
        rating_value = validate_rating_value(value)

        if not isinstance(ratee_id, str) or ratee_id.strip() == "":
            raise ServiceError(
                "VALIDATION_ERROR",
                "Field 'ratee_id' is required and must be a non-empty string",
                400,
                {"field": "ratee_id"},
            )
        if comment is not None and not isinstance(comment, str):
            raise ServiceError(
                "VALIDATION_ERROR",
                "Field 'comment' must be a string",
                400,
                {"field": "comment"},
            )
        if comment is not None and len(comment) > self._max_comment_length:
            raise ServiceError(
                "VALIDATION_ERROR",
                f"Comment must be at most {self._max_comment_length} characters",
                400,
                {"field": "comment"},
            )

        with self._store.transaction():
            task = self._store.get_task(task_id)
            if task is None:
                raise ServiceError("TASK_NOT_FOUND", "Task not found", 404, {})

            if self._store.get_rating_by_rater(task_id, rater_id) is not None:
                raise ServiceError("ALREADY_RATED", "You have already rated this task", 409, {})

            ctx = self.build_context(task, rater_id, ratee_id)
            outcome = decide(ctx)
            if isinstance(outcome, Ineligible):
                self._logger.info(
                    "Rating refused",
                    extra={"task_id": task_id, "rater_id": rater_id, "error": outcome.error},
                )
                raise outcome.to_service_error()

            rating = {
                "rating_id": new_rating_id(),
                "task_id": task_id,
                "rater_id": rater_id,
                "ratee_id": ratee_id,
                "value": rating_value,
                "category": outcome,
                "comment": comment if comment else None,
                "created_at": now_iso(),
            }
            try:
                return self._ledger.record_rating(rating)
            except DuplicateRatingError as exc:
                raise ServiceError(
                    "ALREADY_RATED", "You have already rated this task", 409, {}
                ) from exc

    def has_rated(self, task_id: str, user_id: str) -> bool:
        """Whether the user already rated this task."""
        if self._store.get_task(task_id) is None:
            raise ServiceError("TASK_NOT_FOUND", "Task not found", 404, {})
        return self._store.get_rating_by_rater(task_id, user_id) is not None

    def ratings_for_task(self, task_id: str) -> list[dict[str, Any]]:
        """Ratings submitted on a task, oldest first."""
        if self._store.get_task(task_id) is None:
            raise ServiceError("TASK_NOT_FOUND", "Task not found", 404, {})
        return [rating_to_response(row) for row in self._store.list_ratings_for_task(task_id)]
