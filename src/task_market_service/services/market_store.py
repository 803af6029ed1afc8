"""SQLite-backed storage for tasks, applications, ratings and user reputation."""

from __future__ import annotations

import contextlib
import sqlite3
from pathlib import Path
from threading import RLock
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from collections.abc import Iterator

_EXPIRABLE_STATUS = "OPEN"


class DuplicateApplicationError(Exception):
    """Raised when a live application already exists for a task/applicant pair."""


class DuplicateRatingError(Exception):
    """Raised when a rater already rated the task."""


class MarketStore:
    """
    SQLite-backed storage with a re-entrant unit of work.

    Single statements outside ``transaction()`` autocommit. Inside
    ``transaction()`` every statement joins one ``BEGIN IMMEDIATE``
    transaction that commits when the outermost block exits cleanly and
    rolls back on any exception. The RLock is held for the whole unit, so
    in-process writers are serialised; SQLite's write lock covers other
    processes.
    """

    _TASK_COLUMNS: tuple[str, ...] = (
        "task_id",
        "giver_id",
        "acceptor_id",
        "title",
        "description",
        "reward",
        "deadline",
        "status",
        "created_at",
        "accepted_at",
        "completed_at",
        "cancelled_at",
    )
    _APPLICATION_COLUMNS: tuple[str, ...] = (
        "application_id",
        "task_id",
        "applicant_id",
        "status",
        "reason",
        "applied_at",
        "updated_at",
    )
    _RATING_COLUMNS: tuple[str, ...] = (
        "rating_id",
        "task_id",
        "rater_id",
        "ratee_id",
        "value",
        "category",
        "comment",
        "created_at",
    )
    _USER_COLUMNS: tuple[str, ...] = (
        "user_id",
        "display_name",
        "giving_rating",
        "accepting_rating",
        "giving_rating_count",
        "accepting_rating_count",
        "trophies",
        "created_at",
    )

    def __init__(self, db_path: str) -> None:
        self._lock = RLock()
        self._depth = 0
        Path(db_path).parent.mkdir(parents=True, exist_ok=True)
        self._db = sqlite3.connect(db_path, check_same_thread=False, isolation_level=None)
        self._db.row_factory = sqlite3.Row
        self._db.execute("PRAGMA journal_mode=WAL")
        self._db.execute("PRAGMA foreign_keys=ON")
        self._db.execute("PRAGMA busy_timeout=5000")
        self._init_schema()

    def _init_schema(self) -> None:
        with self._lock:
            self._db.executescript(
                """
                CREATE TABLE IF NOT EXISTS tasks (
                    task_id TEXT PRIMARY KEY,
                    giver_id TEXT NOT NULL,
                    acceptor_id TEXT,
                    title TEXT NOT NULL,
                    description TEXT NOT NULL,
                    reward TEXT NOT NULL,
                    deadline TEXT NOT NULL,
                    status TEXT NOT NULL DEFAULT 'OPEN'
                        CHECK (status IN ('OPEN', 'IN_PROGRESS', 'COMPLETED', 'CANCELLED')),
                    created_at TEXT NOT NULL,
                    accepted_at TEXT,
                    completed_at TEXT,
                    cancelled_at TEXT
                );

                CREATE INDEX IF NOT EXISTS ix_tasks_status_deadline
                    ON tasks (status, deadline);

                CREATE TABLE IF NOT EXISTS applications (
                    application_id TEXT PRIMARY KEY,
                    task_id TEXT NOT NULL REFERENCES tasks(task_id),
                    applicant_id TEXT NOT NULL,
                    status TEXT NOT NULL
                        CHECK (status IN
                            ('PENDING', 'ACCEPTED', 'REJECTED', 'REMOVED', 'WITHDRAWN')),
                    reason TEXT,
                    applied_at TEXT NOT NULL,
                    updated_at TEXT NOT NULL
                );

                CREATE UNIQUE INDEX IF NOT EXISTS ux_live_application
                    ON applications (task_id, applicant_id)
                    WHERE status IN ('PENDING', 'ACCEPTED');

                CREATE INDEX IF NOT EXISTS ix_applications_task
                    ON applications (task_id, applied_at);

                CREATE INDEX IF NOT EXISTS ix_applications_applicant
                    ON applications (applicant_id, applied_at);

                CREATE TABLE IF NOT EXISTS ratings (
                    rating_id TEXT PRIMARY KEY,
                    task_id TEXT NOT NULL REFERENCES tasks(task_id),
                    rater_id TEXT NOT NULL,
                    ratee_id TEXT NOT NULL,
                    value INTEGER NOT NULL CHECK (value BETWEEN 1 AND 5),
                    category TEXT NOT NULL CHECK (category IN ('GIVING', 'ACCEPTING')),
                    comment TEXT,
                    created_at TEXT NOT NULL
                );

                CREATE UNIQUE INDEX IF NOT EXISTS ux_rating_task_rater
                    ON ratings (task_id, rater_id);

                CREATE INDEX IF NOT EXISTS ix_ratings_ratee_category
                    ON ratings (ratee_id, category);

                CREATE TABLE IF NOT EXISTS users (
                    user_id TEXT PRIMARY KEY,
                    display_name TEXT,
                    giving_rating REAL NOT NULL DEFAULT 5.0,
                    accepting_rating REAL NOT NULL DEFAULT 5.0,
                    giving_rating_count INTEGER NOT NULL DEFAULT 0,
                    accepting_rating_count INTEGER NOT NULL DEFAULT 0,
                    trophies INTEGER NOT NULL DEFAULT 0,
                    created_at TEXT NOT NULL
                );
                """
            )

    # ------------------------------------------------------------------
    # Unit of work
    # ------------------------------------------------------------------

    @contextlib.contextmanager
    def transaction(self) -> Iterator[None]:
        """Run the enclosed statements as one atomic unit."""
        with self._lock:
            if self._depth > 0:
                self._depth += 1
                try:
                    yield
                finally:
                    self._depth -= 1
                return

            self._db.execute("BEGIN IMMEDIATE")
            self._depth = 1
            try:
                yield
                self._db.execute("COMMIT")
            except BaseException:
                with contextlib.suppress(sqlite3.Error):
                    self._db.execute("ROLLBACK")
                raise
            finally:
                self._depth = 0

    def _execute(self, query: str, params: tuple[Any, ...] | list[Any] = ()) -> sqlite3.Cursor:
        with self._lock:
            return self._db.execute(query, params)

    def _fetchone(
        self, query: str, params: tuple[Any, ...] | list[Any] = ()
    ) -> sqlite3.Row | None:
        # Rows are stepped while the lock is held so a concurrent unit of
        # work on the shared connection is never seen half-applied.
        with self._lock:
            row: sqlite3.Row | None = self._db.execute(query, params).fetchone()
            return row

    def _fetchall(self, query: str, params: tuple[Any, ...] | list[Any] = ()) -> list[sqlite3.Row]:
        with self._lock:
            return self._db.execute(query, params).fetchall()

    @staticmethod
    def _row_to_dict(row: sqlite3.Row, columns: tuple[str, ...]) -> dict[str, Any]:
        return {column: row[column] for column in columns}

    # ------------------------------------------------------------------
    # Tasks
    # ------------------------------------------------------------------

    def insert_task(self, task_data: dict[str, Any]) -> None:
        """Insert a new task row."""
        columns = ", ".join(self._TASK_COLUMNS)
        placeholders = ", ".join("?" for _ in self._TASK_COLUMNS)
        values = tuple(task_data[column] for column in self._TASK_COLUMNS)
        self._execute(
            f"INSERT INTO tasks ({columns}) VALUES ({placeholders})",  # nosec B608
            values,
        )

    def get_task(self, task_id: str) -> dict[str, Any] | None:
        """Fetch a task by ID."""
        row = self._fetchone("SELECT * FROM tasks WHERE task_id = ?", (task_id,))
        if row is None:
            return None
        return self._row_to_dict(row, self._TASK_COLUMNS)

    def update_task(
        self,
        task_id: str,
        updates: dict[str, Any],
        *,
        expected_status: str | tuple[str, ...] | None,
        expected_acceptor: str | None = None,
    ) -> int:
        """
        Update task columns and return the number of affected rows.

        ``expected_status`` and ``expected_acceptor`` turn the update into a
        compare-and-set: zero rows means another writer got there first.
        """
        if len(updates) == 0:
            return 0

        if any(column not in self._TASK_COLUMNS for column in updates):
            msg = "Attempted to update unknown task column"
            raise ValueError(msg)

        set_clause = ", ".join(f"{column} = ?" for column in updates)
        params: list[object] = list(updates.values())

        query = "UPDATE tasks SET " + set_clause + " WHERE task_id = ?"  # nosec B608
        params.append(task_id)
        if isinstance(expected_status, str):
            query += " AND status = ?"
            params.append(expected_status)
        elif expected_status is not None:
            query += " AND status IN (" + ", ".join("?" for _ in expected_status) + ")"
            params.extend(expected_status)
        if expected_acceptor is not None:
            query += " AND acceptor_id = ?"
            params.append(expected_acceptor)

        return int(self._execute(query, params).rowcount)

    def list_tasks(
        self,
        status: str | None,
        giver_id: str | None,
        acceptor_id: str | None,
        limit: int | None,
        offset: int | None,
    ) -> list[dict[str, Any]]:
        """List tasks with optional filters, newest first."""
        query = "SELECT * FROM tasks"
        clauses: list[str] = []
        params: list[object] = []

        if status is not None:
            clauses.append("status = ?")
            params.append(status)
        if giver_id is not None:
            clauses.append("giver_id = ?")
            params.append(giver_id)
        if acceptor_id is not None:
            clauses.append("acceptor_id = ?")
            params.append(acceptor_id)

        if len(clauses) > 0:
            query += " WHERE " + " AND ".join(clauses)

        query += " ORDER BY created_at DESC, rowid DESC"

        if limit is not None:
            query += " LIMIT ?"
            params.append(limit)
            if offset is not None:
                query += " OFFSET ?"
                params.append(offset)
        elif offset is not None:
            query += " LIMIT -1 OFFSET ?"
            params.append(offset)

        rows = self._fetchall(query, params)
        return [self._row_to_dict(row, self._TASK_COLUMNS) for row in rows]

    def cancel_open_tasks_past_deadline(self, now: str, cancelled_at: str) -> list[str]:
        """
        Cancel every OPEN task whose deadline is before ``now``.

        The status predicate is evaluated by the UPDATE itself, so a task
        accepted after the sweep started is left alone. Returns the IDs of
        the tasks that were cancelled.
        """
        with self.transaction():
            rows = self._fetchall(
                "SELECT task_id FROM tasks WHERE status = ? AND deadline < ?",
                (_EXPIRABLE_STATUS, now),
            )
            task_ids = [str(row["task_id"]) for row in rows]
            self._execute(
                "UPDATE tasks SET status = 'CANCELLED', cancelled_at = ? "
                "WHERE status = ? AND deadline < ?",
                (cancelled_at, _EXPIRABLE_STATUS, now),
            )
        return task_ids

    def count_tasks(self) -> int:
        """Count total tasks."""
        row = self._fetchone("SELECT COUNT(*) FROM tasks")
        return int(row[0]) if row is not None else 0

    def count_tasks_by_status(self) -> dict[str, int]:
        """Count tasks grouped by status."""
        rows = self._fetchall("SELECT status, COUNT(*) FROM tasks GROUP BY status")
        return {str(row[0]): int(row[1]) for row in rows}

    # ------------------------------------------------------------------
    # Applications
    # ------------------------------------------------------------------

    def insert_application(self, application_data: dict[str, Any]) -> None:
        """
        Insert an application row.

        Raises:
            DuplicateApplicationError: a PENDING/ACCEPTED record already exists
                for the same task and applicant.
        """
        columns = ", ".join(self._APPLICATION_COLUMNS)
        placeholders = ", ".join("?" for _ in self._APPLICATION_COLUMNS)
        values = tuple(application_data[column] for column in self._APPLICATION_COLUMNS)
        try:
            self._execute(
                f"INSERT INTO applications ({columns}) VALUES ({placeholders})",  # nosec B608
                values,
            )
        except sqlite3.IntegrityError as exc:
            if "unique" in str(exc).lower():
                raise DuplicateApplicationError(
                    f"A live application already exists for "
                    f"({application_data['task_id']}, {application_data['applicant_id']})"
                ) from exc
            raise

    def find_application(
        self,
        task_id: str,
        applicant_id: str,
        statuses: tuple[str, ...] | None = None,
    ) -> dict[str, Any] | None:
        """Return the most recent application for the pair, optionally filtered by status."""
        query = "SELECT * FROM applications WHERE task_id = ? AND applicant_id = ?"
        params: list[object] = [task_id, applicant_id]
        if statuses is not None:
            query += " AND status IN (" + ", ".join("?" for _ in statuses) + ")"
            params.extend(statuses)
        query += " ORDER BY applied_at DESC, rowid DESC LIMIT 1"
        row = self._fetchone(query, params)
        if row is None:
            return None
        return self._row_to_dict(row, self._APPLICATION_COLUMNS)

    def list_applications_for_task(self, task_id: str) -> list[dict[str, Any]]:
        """All applications for a task, most recent first."""
        rows = self._fetchall(
            "SELECT * FROM applications WHERE task_id = ? ORDER BY applied_at DESC, rowid DESC",
            (task_id,),
        )
        return [self._row_to_dict(row, self._APPLICATION_COLUMNS) for row in rows]

    def list_applications_for_applicant(
        self,
        applicant_id: str,
        statuses: tuple[str, ...] | None = None,
    ) -> list[dict[str, Any]]:
        """All applications made by a user, most recent first."""
        query = "SELECT * FROM applications WHERE applicant_id = ?"
        params: list[object] = [applicant_id]
        if statuses is not None:
            query += " AND status IN (" + ", ".join("?" for _ in statuses) + ")"
            params.extend(statuses)
        query += " ORDER BY applied_at DESC, rowid DESC"
        rows = self._fetchall(query, params)
        return [self._row_to_dict(row, self._APPLICATION_COLUMNS) for row in rows]

    def update_application_status(
        self,
        application_id: str,
        status: str,
        updated_at: str,
        *,
        expected_status: str,
        reason: str | None = None,
    ) -> int:
        """Move one application between statuses; zero rows means the guard failed."""
        cursor = self._execute(
            "UPDATE applications SET status = ?, updated_at = ?, reason = COALESCE(?, reason) "
            "WHERE application_id = ? AND status = ?",
            (status, updated_at, reason, application_id, expected_status),
        )
        return int(cursor.rowcount)

    def reject_pending_applications(
        self,
        task_id: str,
        except_applicant_id: str,
        updated_at: str,
    ) -> int:
        """Reject every PENDING application of the task except one applicant's."""
        cursor = self._execute(
            "UPDATE applications SET status = 'REJECTED', updated_at = ? "
            "WHERE task_id = ? AND applicant_id != ? AND status = 'PENDING'",
            (updated_at, task_id, except_applicant_id),
        )
        return int(cursor.rowcount)

    # ------------------------------------------------------------------
    # Ratings
    # ------------------------------------------------------------------

    def insert_rating(self, rating_data: dict[str, Any]) -> None:
        """
        Insert a rating row.

        Raises:
            DuplicateRatingError: the rater already rated this task.
        """
        columns = ", ".join(self._RATING_COLUMNS)
        placeholders = ", ".join("?" for _ in self._RATING_COLUMNS)
        values = tuple(rating_data[column] for column in self._RATING_COLUMNS)
        try:
            self._execute(
                f"INSERT INTO ratings ({columns}) VALUES ({placeholders})",  # nosec B608
                values,
            )
        except sqlite3.IntegrityError as exc:
            if "unique" in str(exc).lower():
                raise DuplicateRatingError(
                    f"Rating already exists for ({rating_data['task_id']}, "
                    f"{rating_data['rater_id']})"
                ) from exc
            raise

    def get_rating_by_rater(self, task_id: str, rater_id: str) -> dict[str, Any] | None:
        """Fetch the rating a user gave on a task."""
        row = self._fetchone(
            "SELECT * FROM ratings WHERE task_id = ? AND rater_id = ?",
            (task_id, rater_id),
        )
        if row is None:
            return None
        return self._row_to_dict(row, self._RATING_COLUMNS)

    def list_ratings_for_task(self, task_id: str) -> list[dict[str, Any]]:
        """Ratings submitted on a task, oldest first."""
        rows = self._fetchall(
            "SELECT * FROM ratings WHERE task_id = ? ORDER BY created_at, rowid",
            (task_id,),
        )
        return [self._row_to_dict(row, self._RATING_COLUMNS) for row in rows]

    def list_ratings_for_ratee(self, ratee_id: str) -> list[dict[str, Any]]:
        """Ratings received by a user, newest first."""
        rows = self._fetchall(
            "SELECT * FROM ratings WHERE ratee_id = ? ORDER BY created_at DESC, rowid DESC",
            (ratee_id,),
        )
        return [self._row_to_dict(row, self._RATING_COLUMNS) for row in rows]

    def rating_totals(self, ratee_id: str, category: str) -> tuple[int, int]:
        """Return (sum of values, number of ratings) for a ratee and category."""
        row = self._fetchone(
            "SELECT COALESCE(SUM(value), 0), COUNT(*) FROM ratings "
            "WHERE ratee_id = ? AND category = ?",
            (ratee_id, category),
        )
        return int(row[0]), int(row[1])

    def count_ratings(self) -> int:
        """Count total ratings."""
        row = self._fetchone("SELECT COUNT(*) FROM ratings")
        return int(row[0]) if row is not None else 0

    # ------------------------------------------------------------------
    # Users
    # ------------------------------------------------------------------

    def ensure_user(self, user_id: str, display_name: str | None, created_at: str) -> None:
        """Create the user's reputation row if missing; refresh a known display name."""
        self._execute(
            "INSERT INTO users (user_id, display_name, created_at) VALUES (?, ?, ?) "
            "ON CONFLICT(user_id) DO UPDATE SET "
            "display_name = COALESCE(excluded.display_name, users.display_name)",
            (user_id, display_name, created_at),
        )

    def get_user(self, user_id: str) -> dict[str, Any] | None:
        """Fetch a user's reputation row."""
        row = self._fetchone("SELECT * FROM users WHERE user_id = ?", (user_id,))
        if row is None:
            return None
        return self._row_to_dict(row, self._USER_COLUMNS)

    def get_users(self, user_ids: list[str]) -> dict[str, dict[str, Any]]:
        """Fetch several users keyed by user_id; unknown IDs are absent."""
        unique_ids = sorted(set(user_ids))
        if len(unique_ids) == 0:
            return {}
        placeholders = ", ".join("?" for _ in unique_ids)
        rows = self._fetchall(
            f"SELECT * FROM users WHERE user_id IN ({placeholders})",  # nosec B608
            unique_ids,
        )
        return {str(row["user_id"]): self._row_to_dict(row, self._USER_COLUMNS) for row in rows}

    def set_rating_aggregate(
        self,
        user_id: str,
        average_column: str,
        count_column: str,
        average: float,
        count: int,
    ) -> int:
        """Write one category's running average and count."""
        allowed = {
            ("giving_rating", "giving_rating_count"),
            ("accepting_rating", "accepting_rating_count"),
        }
        if (average_column, count_column) not in allowed:
            msg = "Attempted to update unknown rating columns"
            raise ValueError(msg)
        cursor = self._execute(
            f"UPDATE users SET {average_column} = ?, {count_column} = ? "  # nosec B608
            "WHERE user_id = ?",
            (average, count, user_id),
        )
        return int(cursor.rowcount)

    def increment_trophies(self, user_id: str) -> int:
        """Add one trophy to a user."""
        cursor = self._execute(
            "UPDATE users SET trophies = trophies + 1 WHERE user_id = ?",
            (user_id,),
        )
        return int(cursor.rowcount)

    def close(self) -> None:
        """Close the database connection."""
        with self._lock:
            self._db.close()
