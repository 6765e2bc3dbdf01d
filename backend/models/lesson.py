from datetime import datetime

from sqlmodel import Field, SQLModel

from backend.models.base import timestamp_field

LESSON_STATUSES = ("scheduled", "live", "completed")


class Lesson(SQLModel, table=True):
    """A scheduled class. Status only moves forward: scheduled -> live -> completed."""

    __tablename__ = "lessons"  # type: ignore[assignment]

    id: int | None = Field(default=None, primary_key=True)
    topic: str
    status: str = Field(default="scheduled", index=True)
    scheduled_at: datetime = timestamp_field(index=True)
    started_at: datetime | None = timestamp_field(nullable=True)
    ended_at: datetime | None = timestamp_field(nullable=True)
    created_by: int | None = Field(default=None, foreign_key="profiles.id")
    created_at: datetime = timestamp_field()
