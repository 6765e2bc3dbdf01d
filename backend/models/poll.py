from datetime import datetime

from sqlalchemy import JSON, Column, UniqueConstraint
from sqlmodel import Field, SQLModel

from backend.models.base import timestamp_field


class Poll(SQLModel, table=True):
    __tablename__ = "polls"  # type: ignore[assignment]

    id: int | None = Field(default=None, primary_key=True)
    lesson_id: int | None = Field(default=None, foreign_key="lessons.id", index=True)
    question: str
    options: list[str] = Field(default_factory=list, sa_column=Column(JSON, nullable=False))
    is_closed: bool = Field(default=False)
    created_by: int = Field(foreign_key="profiles.id")
    created_at: datetime = timestamp_field()


class PollVote(SQLModel, table=True):
    __tablename__ = "poll_votes"  # type: ignore[assignment]
    __table_args__ = (UniqueConstraint("poll_id", "user_id"),)

    id: int | None = Field(default=None, primary_key=True)
    poll_id: int = Field(foreign_key="polls.id", index=True)
    user_id: int = Field(foreign_key="profiles.id", index=True)
    option_index: int
    created_at: datetime = timestamp_field()
