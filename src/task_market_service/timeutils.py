"""UTC timestamp helpers.

All timestamps are stored as ISO 8601 strings with microsecond precision and
a ``Z`` suffix, so lexical order equals chronological order inside SQLite.
"""

from __future__ import annotations

from datetime import UTC, datetime


def to_iso(moment: datetime) -> str:
    """Render an aware datetime in the canonical storage format."""
    if moment.tzinfo is None:
        msg = "Timestamps must be timezone-aware"
        raise ValueError(msg)
    return moment.astimezone(UTC).isoformat(timespec="microseconds").replace("+00:00", "Z")


def now_iso() -> str:
    """Return current UTC time in the canonical storage format."""
    return to_iso(datetime.now(UTC))


def parse_timestamp(value: str) -> datetime:
    """
    Parse an ISO 8601 timestamp into an aware UTC datetime.

    Naive input is taken to be UTC.

    Raises:
        ValueError: if the value is not ISO 8601
    """
    parsed = datetime.fromisoformat(value.strip().replace("Z", "+00:00"))
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=UTC)
    return parsed.astimezone(UTC)
