"""
Application registry: who applied to which task, and what became of it.

Pure Python — no FastAPI imports.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from service_commons.exceptions import ServiceError

from task_market_service.domain import (
    ACCEPTED,
    EXIT_APPLICATION_STATUSES,
    OPEN,
    PENDING,
    REJECTED,
    REMOVED,
    WITHDRAWN,
    new_application_id,
)
from task_market_service.logging import get_logger
from task_market_service.services.market_store import DuplicateApplicationError
from task_market_service.timeutils import now_iso

if TYPE_CHECKING:
    from task_market_service.services.market_store import MarketStore


def application_to_response(row: dict[str, Any]) -> dict[str, Any]:
    """Convert an application row to its response dict."""
    return {
        "application_id": row["application_id"],
        "task_id": row["task_id"],
        "applicant_id": row["applicant_id"],
        "status": row["status"],
        "reason": row["reason"],
        "applied_at": row["applied_at"],
        "updated_at": row["updated_at"],
    }


class ApplicationRegistry:
    """
    Tracks applications and is the only component that changes their status.

    The status writers (``mark_accepted``, ``reject_pending``, ``reject``,
    ``record_withdrawal``, ``mark_removed``) are driven by the lifecycle
    engine inside its transactions. Exit records (WITHDRAWN, REMOVED) are
    never deleted: they are the provenance the rating rules rely on.
    """

    def __init__(self, store: MarketStore) -> None:
        self._store = store
        self._logger = get_logger(__name__)

    # ------------------------------------------------------------------
    # Public operations
    # ------------------------------------------------------------------

    def apply(self, task_id: str, applicant_id: str) -> dict[str, Any]:
        """
        Create a PENDING application.

        Error precedence:
        1. TASK_NOT_FOUND
        2. INVALID_STATUS — task is not OPEN
        3. FORBIDDEN — the giver applying to their own task
        4. APPLICATION_EXISTS — any earlier application for the pair
        """
        with self._store.transaction():
            task = self._store.get_task(task_id)
            if task is None:
                raise ServiceError("TASK_NOT_FOUND", "Task not found", 404, {})

            if task["status"] != OPEN:
                raise ServiceError(
                    "INVALID_STATUS",
                    f"Cannot apply to task in '{task['status']}' status, must be '{OPEN}'",
                    409,
                    {},
                )

            if task["giver_id"] == applicant_id:
                raise ServiceError("FORBIDDEN", "Cannot apply to your own task", 403, {})

            if self._store.find_application(task_id, applicant_id) is not None:
                raise ServiceError(
                    "APPLICATION_EXISTS",
                    "You have already applied to this task",
                    409,
                    {},
                )

            timestamp = now_iso()
            application = {
                "application_id": new_application_id(),
                "task_id": task_id,
                "applicant_id": applicant_id,
                "status": PENDING,
                "reason": None,
                "applied_at": timestamp,
                "updated_at": timestamp,
            }
            try:
                self._store.insert_application(application)
            except DuplicateApplicationError as exc:
                raise ServiceError(
                    "APPLICATION_EXISTS",
                    "You have already applied to this task",
                    409,
                    {},
                ) from exc

        self._logger.info(
            "Application submitted",
            extra={"task_id": task_id, "applicant_id": applicant_id},
        )
        return application_to_response(application)

    def find(self, task_id: str, applicant_id: str) -> dict[str, Any] | None:
        """Most recent application of the pair, any status."""
        return self._store.find_application(task_id, applicant_id)

    def accepted_applicant(self, task: dict[str, Any]) -> dict[str, Any] | None:
        """The ACCEPTED application of the task's current acceptor, if any."""
        acceptor_id = task["acceptor_id"]
        if acceptor_id is None:
            return None
        return self._store.find_application(task["task_id"], acceptor_id, (ACCEPTED,))

    def application_history(self, task_id: str) -> list[dict[str, Any]]:
        """All applications of a task, most recent first."""
        return [
            application_to_response(row)
            for row in self._store.list_applications_for_task(task_id)
        ]

    def latest_exit(self, task_id: str, user_id: str) -> dict[str, Any] | None:
        """The most recent WITHDRAWN or REMOVED record for the pair."""
        return self._store.find_application(task_id, user_id, EXIT_APPLICATION_STATUSES)

    def applications_of(self, applicant_id: str) -> list[dict[str, Any]]:
        """All applications made by a user, most recent first."""
        return [
            application_to_response(row)
            for row in self._store.list_applications_for_applicant(applicant_id)
        ]

    def exits_of(self, user_id: str) -> list[dict[str, Any]]:
        """Withdrawal and removal records of a user, most recent first."""
        return [
            application_to_response(row)
            for row in self._store.list_applications_for_applicant(
                user_id, EXIT_APPLICATION_STATUSES
            )
        ]

    # ------------------------------------------------------------------
    # Status writers, called by the lifecycle engine only
    # ------------------------------------------------------------------

    def mark_accepted(self, application: dict[str, Any]) -> bool:
        """PENDING -> ACCEPTED. Returns False if the application moved meanwhile."""
        updated = self._store.update_application_status(
            application["application_id"], ACCEPTED, now_iso(), expected_status=PENDING
        )
        return updated == 1

    def reject_pending(self, task_id: str, except_applicant_id: str) -> int:
        """Reject every other PENDING application of the task."""
        return self._store.reject_pending_applications(task_id, except_applicant_id, now_iso())

    def reject(self, application: dict[str, Any]) -> bool:
        """PENDING -> REJECTED for a single application."""
        updated = self._store.update_application_status(
            application["application_id"], REJECTED, now_iso(), expected_status=PENDING
        )
        return updated == 1

    def record_withdrawal(self, task_id: str, applicant_id: str, reason: str) -> dict[str, Any]:
        """Create a fresh WITHDRAWN record; the original ACCEPTED record stays."""
        timestamp = now_iso()
        record = {
            "application_id": new_application_id(),
            "task_id": task_id,
            "applicant_id": applicant_id,
            "status": WITHDRAWN,
            "reason": reason,
            "applied_at": timestamp,
            "updated_at": timestamp,
        }
        self._store.insert_application(record)
        return application_to_response(record)

    def mark_removed(self, application: dict[str, Any], reason: str) -> bool:
        """ACCEPTED -> REMOVED, storing the giver's reason."""
        updated = self._store.update_application_status(
            application["application_id"],
            REMOVED,
            now_iso(),
            expected_status=ACCEPTED,
            reason=reason,
        )
        return updated == 1
