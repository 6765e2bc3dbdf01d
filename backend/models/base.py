from datetime import UTC, datetime

from sqlalchemy import DateTime
from sqlmodel import Field


def utcnow() -> datetime:
    return datetime.now(UTC)


def timestamp_field(*, nullable: bool = False, index: bool = False):  # type: ignore[no-untyped-def]
    """Timezone-aware timestamp column; server time is always stored as UTC."""
    if nullable:
        return Field(default=None, sa_type=DateTime(timezone=True), index=index)
    return Field(default_factory=utcnow, sa_type=DateTime(timezone=True), index=index)
