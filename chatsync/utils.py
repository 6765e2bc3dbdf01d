"""Shared helpers for the chat core."""

from datetime import UTC, datetime

from backend.models.base import utcnow

__all__ = ["ensure_utc", "utcnow"]


def ensure_utc(value: datetime) -> datetime:
    """Attach UTC to naive datetimes read back from stores that drop the offset (SQLite)."""
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)
