"""
Task lifecycle engine.

Owns every change to ``Task.status`` and ``Task.acceptor_id``. Each
multi-entity transition runs inside one ``MarketStore.transaction()`` and
the task row update is a compare-and-set on the expected status, so a
transition that lost a race fails with ``INVALID_STATUS`` and leaves no
partial state behind.

Pure Python — no FastAPI imports. Methods are synchronous; routers call
them through ``run_in_threadpool``.
"""

from __future__ import annotations

from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any

from service_commons.exceptions import ServiceError

from task_market_service.domain import (
    CANCELLED,
    COMPLETED,
    IN_PROGRESS,
    OPEN,
    PENDING,
    TASK_STATUSES,
    TERMINAL_TASK_STATUSES,
    new_task_id,
)
from task_market_service.logging import get_logger
from task_market_service.services.application_registry import application_to_response
from task_market_service.timeutils import parse_timestamp, to_iso

if TYPE_CHECKING:
    from task_market_service.config import LimitsConfig
    from task_market_service.services.application_registry import ApplicationRegistry
    from task_market_service.services.market_store import MarketStore
    from task_market_service.services.reputation_ledger import ReputationLedger


def _task_not_found() -> ServiceError:
    return ServiceError("TASK_NOT_FOUND", "Task not found", 404, {})


def _invalid_status(action: str, status: str, required: str) -> ServiceError:
    return ServiceError(
        "INVALID_STATUS",
        f"Cannot {action} task in '{status}' status, must be {required}",
        409,
        {"status": status},
    )


def _require_text(value: object, field_name: str, max_length: int) -> str:
    """Validate a required, non-blank string field within its length limit."""
    if not isinstance(value, str) or value.strip() == "":
        raise ServiceError(
            "VALIDATION_ERROR",
            f"Field '{field_name}' is required and must be a non-empty string",
            400,
            {"field": field_name},
        )
    if len(value) > max_length:
        raise ServiceError(
            "VALIDATION_ERROR",
            f"Field '{field_name}' must be at most {max_length} characters",
            400,
            {"field": field_name},
        )
    return value


def _require_future_deadline(value: object, now: datetime) -> str:
    """Parse a deadline and reject it unless it lies in the future."""
    if not isinstance(value, str) or value.strip() == "":
        raise ServiceError(
            "VALIDATION_ERROR",
            "Field 'deadline' is required and must be an ISO 8601 timestamp",
            400,
            {"field": "deadline"},
        )
    try:
        deadline = parse_timestamp(value)
    except ValueError as exc:
        raise ServiceError(
            "VALIDATION_ERROR",
            "Field 'deadline' must be an ISO 8601 timestamp",
            400,
            {"field": "deadline"},
        ) from exc
    if deadline <= now:
        raise ServiceError(
            "VALIDATION_ERROR",
            "Deadline must be in the future",
            400,
            {"field": "deadline"},
        )
    return to_iso(deadline)


class TaskLifecycleEngine:
    """
    Manages the task lifecycle: creation, acceptance, completion,
    cancellation, withdrawal, removal and expiry.

    Application status changes are delegated to ApplicationRegistry and
    trophy awards to ReputationLedger.
    """

    def __init__(
        self,
        store: MarketStore,
        registry: ApplicationRegistry,
        ledger: ReputationLedger,
        limits: LimitsConfig,
    ) -> None:
        self._store = store
        self._registry = registry
        self._ledger = ledger
        self._limits = limits
        self._logger = get_logger(__name__)

    # ------------------------------------------------------------------
    # Private helper methods
    # ------------------------------------------------------------------

    @staticmethod
    def _now() -> datetime:
        return datetime.now(UTC)

    def _load_task(self, task_id: str) -> dict[str, Any]:
        task = self._store.get_task(task_id)
        if task is None:
            raise _task_not_found()
        return task

    def _reload(self, task_id: str) -> dict[str, Any]:
        task = self._store.get_task(task_id)
        if task is None:
            msg = f"Task {task_id} not found after update"
            raise RuntimeError(msg)
        return self._task_to_response(task)

    @staticmethod
    def _require_giver(task: dict[str, Any], actor_id: str, action: str) -> None:
        if task["giver_id"] != actor_id:
            raise ServiceError("FORBIDDEN", f"Only the task giver can {action}", 403, {})

    def _require_reason(self, reason: object) -> str:
        return _require_text(reason, "reason", self._limits.max_reason_length).strip()

    @staticmethod
    def _task_to_response(row: dict[str, Any]) -> dict[str, Any]:
        """Convert a DB row dict to a task response dict."""
        return {
            "task_id": row["task_id"],
            "giver_id": row["giver_id"],
            "acceptor_id": row["acceptor_id"],
            "title": row["title"],
            "description": row["description"],
            "reward": row["reward"],
            "deadline": row["deadline"],
            "status": row["status"],
            "created_at": row["created_at"],
            "accepted_at": row["accepted_at"],
            "completed_at": row["completed_at"],
            "cancelled_at": row["cancelled_at"],
        }

    def _enrich_tasks(self, tasks: list[dict[str, Any]]) -> list[dict[str, Any]]:
        """Attach the giver's display name, giving rating and trophies."""
        profiles = self._ledger.profiles([task["giver_id"] for task in tasks])
        enriched: list[dict[str, Any]] = []
        for task in tasks:
            profile = profiles[task["giver_id"]]
            response = self._task_to_response(task)
            response["giver"] = {
                "display_name": profile["display_name"],
                "giving_rating": profile["giving_rating"],
                "trophies": profile["trophies"],
            }
            enriched.append(response)
        return enriched

    def _enrich_applications(self, applications: list[dict[str, Any]]) -> list[dict[str, Any]]:
        """Attach the applicant's display name, accepting rating and trophies."""
        profiles = self._ledger.profiles([app["applicant_id"] for app in applications])
        enriched: list[dict[str, Any]] = []
        for application in applications:
            profile = profiles[application["applicant_id"]]
            enriched.append(
                {
                    **application,
                    "applicant": {
                        "display_name": profile["display_name"],
                        "accepting_rating": profile["accepting_rating"],
                        "trophies": profile["trophies"],
                    },
                }
            )
        return enriched

    # ------------------------------------------------------------------
    # Creation and reads
    # ------------------------------------------------------------------

    def create_task(
        self,
        giver_id: str,
        title: object,
        description: object,
        reward: object,
        deadline: object,
    ) -> dict[str, Any]:
        """Create an OPEN task owned by the giver."""
        now = self._now()
        task = {
            "task_id": new_task_id(),
            "giver_id": giver_id,
            "acceptor_id": None,
            "title": _require_text(title, "title", self._limits.max_title_length),
            "description": _require_text(
                description, "description", self._limits.max_description_length
            ),
            "reward": _require_text(reward, "reward", self._limits.max_reward_length),
            "deadline": _require_future_deadline(deadline, now),
            "status": OPEN,
            "created_at": to_iso(now),
            "accepted_at": None,
            "completed_at": None,
            "cancelled_at": None,
        }
        self._store.insert_task(task)
        self._logger.info(
            "Task created",
            extra={"task_id": task["task_id"], "giver_id": giver_id},
        )
        return self._task_to_response(task)

    def get_task(self, task_id: str) -> dict[str, Any]:
        """Task details with enriched giver and application history."""
        task = self._load_task(task_id)
        response = self._enrich_tasks([task])[0]
        response["applications"] = self._enrich_applications(
            self._registry.application_history(task_id)
        )
        return response

    def list_tasks(
        self,
        status: str | None,
        giver_id: str | None,
        acceptor_id: str | None,
        limit: int | None,
        offset: int | None,
    ) -> list[dict[str, Any]]:
        """List tasks, newest first."""
        if status is not None and status not in TASK_STATUSES:
            raise ServiceError(
                "VALIDATION_ERROR",
                f"Unknown status '{status}'",
                400,
                {"field": "status"},
            )
        rows = self._store.list_tasks(
            status=status,
            giver_id=giver_id,
            acceptor_id=acceptor_id,
            limit=limit,
            offset=offset,
        )
        return self._enrich_tasks(rows)

    def application_history(self, task_id: str) -> list[dict[str, Any]]:
        """All applications of a task, most recent first."""
        self._load_task(task_id)
        return self._enrich_applications(self._registry.application_history(task_id))

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------

    def accept(self, task_id: str, applicant_id: str, acting_giver: str) -> dict[str, Any]:
        """
        Accept an applicant: OPEN -> IN_PROGRESS.

        Error precedence:
        1. TASK_NOT_FOUND
        2. FORBIDDEN — actor is not the giver
        3. INVALID_STATUS — task is not OPEN
        4. APPLICATION_NOT_FOUND — no application for the pair
        5. INVALID_STATUS — application is not PENDING
        """
        with self._store.transaction():
            task = self._load_task(task_id)
            self._require_giver(task, acting_giver, "accept applicants")
            if task["status"] != OPEN:
                raise _invalid_status("accept applicant on", task["status"], f"'{OPEN}'")

            application = self._registry.find(task_id, applicant_id)
            if application is None:
                raise ServiceError("APPLICATION_NOT_FOUND", "Application not found", 404, {})
            if application["status"] != PENDING:
                raise ServiceError(
                    "INVALID_STATUS",
                    f"Application is '{application['status']}', must be '{PENDING}'",
                    409,
                    {"status": application["status"]},
                )

            updated = self._store.update_task(
                task_id,
                {
                    "status": IN_PROGRESS,
                    "acceptor_id": applicant_id,
                    "accepted_at": to_iso(self._now()),
                },
                expected_status=OPEN,
            )
            if updated == 0:
                raise _invalid_status("accept applicant on", IN_PROGRESS, f"'{OPEN}'")
            if not self._registry.mark_accepted(application):
                raise ServiceError(
                    "INVALID_STATUS",
                    f"Application is no longer '{PENDING}'",
                    409,
                    {},
                )
            rejected = self._registry.reject_pending(task_id, applicant_id)

        self._logger.info(
            "Applicant accepted",
            extra={"task_id": task_id, "acceptor_id": applicant_id, "rejected": rejected},
        )
        return self._reload(task_id)

    def reject_applicant(
        self, task_id: str, applicant_id: str, acting_giver: str
    ) -> dict[str, Any]:
        """Reject a single PENDING application."""
        with self._store.transaction():
            task = self._load_task(task_id)
            self._require_giver(task, acting_giver, "reject applicants")

            application = self._registry.find(task_id, applicant_id)
            if application is None:
                raise ServiceError("APPLICATION_NOT_FOUND", "Application not found", 404, {})
            if application["status"] != PENDING or not self._registry.reject(application):
                raise ServiceError(
                    "INVALID_STATUS",
                    f"Application is '{application['status']}', must be '{PENDING}'",
                    409,
                    {"status": application["status"]},
                )

        self._logger.info(
            "Applicant rejected",
            extra={"task_id": task_id, "applicant_id": applicant_id},
        )
        refreshed = self._registry.find(task_id, applicant_id)
        if refreshed is None:
            msg = f"Application for {task_id} vanished after reject"
            raise RuntimeError(msg)
        return application_to_response(refreshed)

    def complete(self, task_id: str, acting_giver: str) -> dict[str, Any]:
        """IN_PROGRESS -> COMPLETED; the acceptor earns a trophy."""
        with self._store.transaction():
            task = self._load_task(task_id)
            self._require_giver(task, acting_giver, "complete this task")
            if task["status"] != IN_PROGRESS:
                raise _invalid_status("complete", task["status"], f"'{IN_PROGRESS}'")

            updated = self._store.update_task(
                task_id,
                {"status": COMPLETED, "completed_at": to_iso(self._now())},
                expected_status=IN_PROGRESS,
            )
            if updated == 0:
                raise _invalid_status("complete", COMPLETED, f"'{IN_PROGRESS}'")
            if task["acceptor_id"] is not None:
                self._ledger.award_trophy(task["acceptor_id"])

        self._logger.info(
            "Task completed",
            extra={"task_id": task_id, "acceptor_id": task["acceptor_id"]},
        )
        return self._reload(task_id)

    def cancel(self, task_id: str, acting_giver: str) -> dict[str, Any]:
        """OPEN or IN_PROGRESS -> CANCELLED. The acceptor, if any, is kept."""
        with self._store.transaction():
            task = self._load_task(task_id)
            self._require_giver(task, acting_giver, "cancel this task")
            if task["status"] in TERMINAL_TASK_STATUSES:
                raise _invalid_status("cancel", task["status"], f"'{OPEN}' or '{IN_PROGRESS}'")

            updated = self._store.update_task(
                task_id,
                {"status": CANCELLED, "cancelled_at": to_iso(self._now())},
                expected_status=(OPEN, IN_PROGRESS),
            )
            if updated == 0:
                raise _invalid_status("cancel", task["status"], f"'{OPEN}' or '{IN_PROGRESS}'")

        self._logger.info(
            "Task cancelled",
            extra={"task_id": task_id, "previous_status": task["status"]},
        )
        return self._reload(task_id)

    def withdraw(self, task_id: str, acting_acceptor: str, reason: object) -> dict[str, Any]:
        """
        The acceptor leaves: IN_PROGRESS -> OPEN.

        Error precedence:
        1. VALIDATION_ERROR — reason missing or blank
        2. TASK_NOT_FOUND
        3. INVALID_STATUS — task is not IN_PROGRESS
        4. FORBIDDEN — actor is not the acceptor
        """
        clean_reason = self._require_reason(reason)
        with self._store.transaction():
            task = self._load_task(task_id)
            if task["status"] != IN_PROGRESS:
                raise _invalid_status("withdraw from", task["status"], f"'{IN_PROGRESS}'")
            if task["acceptor_id"] != acting_acceptor:
                raise ServiceError(
                    "FORBIDDEN", "Only the acceptor can withdraw from this task", 403, {}
                )

            updated = self._store.update_task(
                task_id,
                {"status": OPEN, "acceptor_id": None, "accepted_at": None},
                expected_status=IN_PROGRESS,
                expected_acceptor=acting_acceptor,
            )
            if updated == 0:
                raise _invalid_status("withdraw from", OPEN, f"'{IN_PROGRESS}'")
            record = self._registry.record_withdrawal(task_id, acting_acceptor, clean_reason)

        self._logger.info(
            "Acceptor withdrew",
            extra={"task_id": task_id, "user_id": acting_acceptor},
        )
        response = self._reload(task_id)
        response["exit"] = record
        return response

    def remove_acceptor(self, task_id: str, acting_giver: str, reason: object) -> dict[str, Any]:
        """
        The giver removes the acceptor: IN_PROGRESS -> OPEN.

        Error precedence:
        1. VALIDATION_ERROR — reason missing or blank
        2. TASK_NOT_FOUND
        3. FORBIDDEN — actor is not the giver
        4. INVALID_STATUS — task is not IN_PROGRESS or has no acceptor
        """
        clean_reason = self._require_reason(reason)
        with self._store.transaction():
            task = self._load_task(task_id)
            self._require_giver(task, acting_giver, "remove the acceptor")
            if task["status"] != IN_PROGRESS:
                raise _invalid_status("remove acceptor from", task["status"], f"'{IN_PROGRESS}'")
            acceptor_id = task["acceptor_id"]
            application = self._registry.accepted_applicant(task)
            if acceptor_id is None or application is None:
                raise ServiceError("INVALID_STATUS", "Task has no acceptor", 409, {})

            updated = self._store.update_task(
                task_id,
                {"status": OPEN, "acceptor_id": None, "accepted_at": None},
                expected_status=IN_PROGRESS,
                expected_acceptor=acceptor_id,
            )
            if updated == 0 or not self._registry.mark_removed(application, clean_reason):
                raise _invalid_status("remove acceptor from", OPEN, f"'{IN_PROGRESS}'")

        self._logger.info(
            "Acceptor removed",
            extra={"task_id": task_id, "user_id": acceptor_id},
        )
        response = self._reload(task_id)
        removed = self._registry.latest_exit(task_id, acceptor_id)
        response["exit"] = removed
        return response

    def edit_task(self, task_id: str, acting_giver: str, deadline: object) -> dict[str, Any]:
        """Move the deadline of a task that is still live."""
        with self._store.transaction():
            task = self._load_task(task_id)
            self._require_giver(task, acting_giver, "edit this task")
            if task["status"] in TERMINAL_TASK_STATUSES:
                raise _invalid_status("edit", task["status"], f"'{OPEN}' or '{IN_PROGRESS}'")
            new_deadline = _require_future_deadline(deadline, self._now())
            updated = self._store.update_task(
                task_id,
                {"deadline": new_deadline},
                expected_status=(OPEN, IN_PROGRESS),
            )
            if updated == 0:
                raise _invalid_status("edit", task["status"], f"'{OPEN}' or '{IN_PROGRESS}'")

        self._logger.info(
            "Task deadline changed",
            extra={"task_id": task_id, "deadline": new_deadline},
        )
        return self._reload(task_id)

    def duplicate_task(
        self, task_id: str, acting_giver: str, overrides: dict[str, Any]
    ) -> dict[str, Any]:
        """Post a new OPEN task copied from one of the giver's tasks."""
        original = self._load_task(task_id)
        self._require_giver(original, acting_giver, "duplicate this task")
        return self.create_task(
            acting_giver,
            overrides.get("title", original["title"]),
            overrides.get("description", original["description"]),
            overrides.get("reward", original["reward"]),
            overrides.get("deadline"),
        )

    def expire_open_tasks(self, now: datetime | None = None) -> int:
        """Cancel every OPEN task whose deadline has passed; returns the count."""
        moment = to_iso(now if now is not None else self._now())
        expired = self._store.cancel_open_tasks_past_deadline(moment, to_iso(self._now()))
        if len(expired) > 0:
            self._logger.info(
                "Expired open tasks cancelled",
                extra={"count": len(expired), "task_ids": expired},
            )
        return len(expired)

    # ------------------------------------------------------------------
    # Per-user views
    # ------------------------------------------------------------------

    def given_tasks(self, user_id: str) -> list[dict[str, Any]]:
        """Tasks the user posted."""
        return self.list_tasks(None, user_id, None, None, None)

    def accepted_tasks(self, user_id: str) -> list[dict[str, Any]]:
        """Tasks the user holds or held as acceptor."""
        return self.list_tasks(None, None, user_id, None, None)

    def _with_task_summaries(self, applications: list[dict[str, Any]]) -> list[dict[str, Any]]:
        results: list[dict[str, Any]] = []
        for application in applications:
            task = self._store.get_task(application["task_id"])
            summary = None
            if task is not None:
                summary = {
                    "task_id": task["task_id"],
                    "giver_id": task["giver_id"],
                    "title": task["title"],
                    "reward": task["reward"],
                    "deadline": task["deadline"],
                    "status": task["status"],
                }
            results.append({**application, "task": summary})
        return results

    def user_applications(self, user_id: str) -> list[dict[str, Any]]:
        """The user's applications with a summary of each task."""
        return self._with_task_summaries(self._registry.applications_of(user_id))

    def user_exits(self, user_id: str) -> list[dict[str, Any]]:
        """Tasks the user withdrew from or was removed from."""
        return self._with_task_summaries(self._registry.exits_of(user_id))

    def get_stats(self) -> dict[str, Any]:
        """Task counts for the health endpoint."""
        counts = self._store.count_tasks_by_status()
        return {
            "total_tasks": self._store.count_tasks(),
            "tasks_by_status": {status: counts.get(status, 0) for status in TASK_STATUSES},
        }
