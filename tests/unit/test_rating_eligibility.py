"""Unit tests for the rating decision table and RatingResolver."""

from __future__ import annotations

import pytest
from service_commons.exceptions import ServiceError

from task_market_service.services.rating_eligibility import (
    Ineligible,
    RatingContext,
    decide,
    validate_rating_value,
)
from tests.helpers import future_deadline

GIVER = "u-giver"


def _ctx(status: str, **roles) -> RatingContext:
    fields = {
        "rater_is_giver": False,
        "ratee_is_giver": False,
        "rater_is_acceptor": False,
        "ratee_is_acceptor": False,
        "rater_exit": None,
        "ratee_exit": None,
        "self_rating": False,
    }
    fields.update(roles)
    return RatingContext(status=status, **fields)


def _error_of(outcome) -> str:
    assert isinstance(outcome, Ineligible)
    return outcome.error


# ---------------------------------------------------------------------------
# decide()
# ---------------------------------------------------------------------------


@pytest.mark.unit
class TestDecide:
    def test_self_rating_wins_over_everything(self) -> None:
        ctx = _ctx("COMPLETED", rater_is_giver=True, ratee_is_giver=True, self_rating=True)
        assert _error_of(decide(ctx)) == "INVALID_RATING"

    @pytest.mark.parametrize("status", ["OPEN", "IN_PROGRESS", "COMPLETED", "CANCELLED"])
    def test_non_participant_is_forbidden(self, status) -> None:
        ctx = _ctx(status, ratee_is_giver=True)
        assert _error_of(decide(ctx)) == "FORBIDDEN"

    def test_completed_giver_rates_acceptor(self) -> None:
        ctx = _ctx("COMPLETED", rater_is_giver=True, ratee_is_acceptor=True)
        assert decide(ctx) == "ACCEPTING"

    def test_completed_acceptor_rates_giver(self) -> None:
        ctx = _ctx("COMPLETED", rater_is_acceptor=True, ratee_is_giver=True)
        assert decide(ctx) == "GIVING"

    def test_completed_giver_rates_stranger(self) -> None:
        ctx = _ctx("COMPLETED", rater_is_giver=True)
        assert _error_of(decide(ctx)) == "INVALID_RATING"

    def test_completed_exited_user_rates_giver(self) -> None:
        ctx = _ctx("COMPLETED", rater_exit="WITHDRAWN", ratee_is_giver=True)
        assert _error_of(decide(ctx)) == "INVALID_RATING"

    def test_cancelled_acceptor_rates_giver(self) -> None:
        ctx = _ctx("CANCELLED", rater_is_acceptor=True, ratee_is_giver=True)
        assert decide(ctx) == "GIVING"

    def test_cancelled_giver_is_forbidden(self) -> None:
        ctx = _ctx("CANCELLED", rater_is_giver=True, ratee_is_acceptor=True)
        assert _error_of(decide(ctx)) == "FORBIDDEN"

    def test_cancelled_removed_user_rates_giver(self) -> None:
        ctx = _ctx("CANCELLED", rater_exit="REMOVED", ratee_is_giver=True)
        assert _error_of(decide(ctx)) == "INVALID_RATING"

    @pytest.mark.parametrize("status", ["OPEN", "IN_PROGRESS"])
    def test_giver_rates_withdrawn_user(self, status) -> None:
        ctx = _ctx(status, rater_is_giver=True, ratee_exit="WITHDRAWN")
        assert decide(ctx) == "ACCEPTING"

    def test_withdrawn_user_cannot_rate(self) -> None:
        ctx = _ctx("OPEN", rater_exit="WITHDRAWN", ratee_is_giver=True)
        assert _error_of(decide(ctx)) == "FORBIDDEN"

    @pytest.mark.parametrize("status", ["OPEN", "IN_PROGRESS"])
    def test_removed_user_rates_giver(self, status) -> None:
        ctx = _ctx(status, rater_exit="REMOVED", ratee_is_giver=True)
        assert decide(ctx) == "GIVING"

    def test_removed_user_rates_someone_else(self) -> None:
        ctx = _ctx("IN_PROGRESS", rater_exit="REMOVED", ratee_is_acceptor=True)
        assert _error_of(decide(ctx)) == "INVALID_RATING"

    def test_giver_cannot_rate_removed_user(self) -> None:
        ctx = _ctx("OPEN", rater_is_giver=True, ratee_exit="REMOVED")
        assert _error_of(decide(ctx)) == "FORBIDDEN"

    def test_in_progress_without_exit(self) -> None:
        ctx = _ctx("IN_PROGRESS", rater_is_giver=True, ratee_is_acceptor=True)
        assert _error_of(decide(ctx)) == "INVALID_RATING"

    def test_in_progress_acceptor_rates_giver(self) -> None:
        ctx = _ctx("IN_PROGRESS", rater_is_acceptor=True, ratee_is_giver=True)
        assert _error_of(decide(ctx)) == "INVALID_RATING"


@pytest.mark.unit
@pytest.mark.parametrize("value", [0, 6, -1, 3.0, "4", None, True])
def test_rating_value_must_be_int_in_range(value) -> None:
    with pytest.raises(ServiceError) as exc_info:
        validate_rating_value(value)
    assert exc_info.value.error == "INVALID_RATING"
    assert exc_info.value.status_code == 400


@pytest.mark.unit
@pytest.mark.parametrize("value", [1, 3, 5])
def test_rating_value_accepts_bounds(value) -> None:
    assert validate_rating_value(value) == value


# ---------------------------------------------------------------------------
# RatingResolver
# ---------------------------------------------------------------------------


def _task(market) -> str:
    task = market.engine.create_task(GIVER, "Walk the dog", "Twice", "Cake", future_deadline())
    return task["task_id"]


def _in_progress(market, acceptor_id: str = "u-a") -> str:
    task_id = _task(market)
    market.registry.apply(task_id, acceptor_id)
    market.engine.accept(task_id, acceptor_id, GIVER)
    return task_id


@pytest.mark.unit
class TestSubmitRating:
    def test_completed_task_both_directions(self, market) -> None:
        task_id = _in_progress(market)
        market.engine.complete(task_id, GIVER)

        to_acceptor = market.resolver.submit_rating(task_id, GIVER, "u-a", 4, "Great")
        to_giver = market.resolver.submit_rating(task_id, "u-a", GIVER, 5, None)

        assert to_acceptor["category"] == "ACCEPTING"
        assert to_acceptor["comment"] == "Great"
        assert to_giver["category"] == "GIVING"
        assert market.ledger.get_reputation("u-a")["accepting_rating"] == pytest.approx(4.5)
        assert market.ledger.get_reputation(GIVER)["giving_rating"] == pytest.approx(5.0)

    def test_second_rating_is_already_rated(self, market) -> None:
        task_id = _in_progress(market)
        market.engine.complete(task_id, GIVER)
        market.resolver.submit_rating(task_id, GIVER, "u-a", 4, None)

        with pytest.raises(ServiceError) as exc_info:
            market.resolver.submit_rating(task_id, GIVER, "u-a", 2, None)

        assert exc_info.value.error == "ALREADY_RATED"
        assert exc_info.value.status_code == 409
        assert market.ledger.get_reputation("u-a")["accepting_rating_count"] == 1

    def test_already_rated_checked_before_decision(self, market) -> None:
        task_id = _in_progress(market)
        market.engine.complete(task_id, GIVER)
        market.resolver.submit_rating(task_id, GIVER, "u-a", 4, None)

        with pytest.raises(ServiceError) as exc_info:
            market.resolver.submit_rating(task_id, GIVER, GIVER, 4, None)
        assert exc_info.value.error == "ALREADY_RATED"

    def test_value_checked_before_task_lookup(self, market) -> None:
        with pytest.raises(ServiceError) as exc_info:
            market.resolver.submit_rating("t-missing", GIVER, "u-a", 6, None)
        assert exc_info.value.error == "INVALID_RATING"

    def test_missing_task(self, market) -> None:
        with pytest.raises(ServiceError) as exc_info:
            market.resolver.submit_rating("t-missing", GIVER, "u-a", 3, None)
        assert exc_info.value.error == "TASK_NOT_FOUND"

    @pytest.mark.parametrize("ratee_id", [None, "", 12])
    def test_ratee_is_required(self, market, ratee_id) -> None:
        task_id = _task(market)
        with pytest.raises(ServiceError) as exc_info:
            market.resolver.submit_rating(task_id, GIVER, ratee_id, 3, None)
        assert exc_info.value.error == "VALIDATION_ERROR"

    def test_comment_length_limit(self, market) -> None:
        task_id = _task(market)
        with pytest.raises(ServiceError) as exc_info:
            market.resolver.submit_rating(task_id, GIVER, "u-a", 3, "x" * 501)
        assert exc_info.value.error == "VALIDATION_ERROR"
        assert exc_info.value.details == {"field": "comment"}

    def test_withdrawal_opens_giver_window(self, market) -> None:
        task_id = _in_progress(market)
        market.engine.withdraw(task_id, "u-a", "sick")

        with pytest.raises(ServiceError) as exc_info:
            market.resolver.submit_rating(task_id, "u-a", GIVER, 5, None)
        assert exc_info.value.error == "FORBIDDEN"

        rating = market.resolver.submit_rating(task_id, GIVER, "u-a", 2, None)
        assert rating["category"] == "ACCEPTING"

    def test_removal_opens_acceptor_window(self, market) -> None:
        task_id = _in_progress(market)
        market.engine.remove_acceptor(task_id, GIVER, "no show")

        with pytest.raises(ServiceError) as exc_info:
            market.resolver.submit_rating(task_id, GIVER, "u-a", 1, None)
        assert exc_info.value.error == "FORBIDDEN"

        rating = market.resolver.submit_rating(task_id, "u-a", GIVER, 1, None)
        assert rating["category"] == "GIVING"

    def test_removed_user_keeps_window_after_reacceptance(self, market) -> None:
        task_id = _in_progress(market, "u-a")
        market.engine.remove_acceptor(task_id, GIVER, "no show")
        market.registry.apply(task_id, "u-b")
        market.engine.accept(task_id, "u-b", GIVER)

        rating = market.resolver.submit_rating(task_id, "u-a", GIVER, 3, None)
        assert rating["category"] == "GIVING"

        with pytest.raises(ServiceError) as exc_info:
            market.resolver.submit_rating(task_id, "u-b", GIVER, 3, None)
        assert exc_info.value.error == "INVALID_RATING"

    def test_cancelled_task_acceptor_rates_giver(self, market) -> None:
        task_id = _in_progress(market)
        market.engine.cancel(task_id, GIVER)

        with pytest.raises(ServiceError) as exc_info:
            market.resolver.submit_rating(task_id, GIVER, "u-a", 1, None)
        assert exc_info.value.error == "FORBIDDEN"

        rating = market.resolver.submit_rating(task_id, "u-a", GIVER, 2, None)
        assert rating["category"] == "GIVING"

    def test_stranger_is_forbidden(self, market) -> None:
        task_id = _in_progress(market)
        market.engine.complete(task_id, GIVER)
        with pytest.raises(ServiceError) as exc_info:
            market.resolver.submit_rating(task_id, "u-stranger", GIVER, 3, None)
        assert exc_info.value.error == "FORBIDDEN"

    def test_refused_rating_stores_nothing(self, market) -> None:
        task_id = _in_progress(market)
        with pytest.raises(ServiceError):
            market.resolver.submit_rating(task_id, GIVER, "u-a", 3, None)
        assert market.resolver.ratings_for_task(task_id) == []
        assert market.resolver.has_rated(task_id, GIVER) is False


@pytest.mark.unit
def test_has_rated_and_ratings_for_task(market) -> None:
    task_id = _in_progress(market)
    market.engine.complete(task_id, GIVER)
    market.resolver.submit_rating(task_id, GIVER, "u-a", 4, "")

    assert market.resolver.has_rated(task_id, GIVER) is True
    assert market.resolver.has_rated(task_id, "u-a") is False
    ratings = market.resolver.ratings_for_task(task_id)
    assert len(ratings) == 1
    assert ratings[0]["comment"] is None


@pytest.mark.unit
def test_has_rated_unknown_task(market) -> None:
    with pytest.raises(ServiceError) as exc_info:
        market.resolver.has_rated("t-missing", GIVER)
    assert exc_info.value.error == "TASK_NOT_FOUND"
