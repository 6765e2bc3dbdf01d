from datetime import datetime

from sqlmodel import Field, SQLModel

from backend.models.base import timestamp_field

MESSAGE_KINDS = ("text", "image", "voice", "poll")


class _MessageFields(SQLModel):
    content: str = Field(default="")
    message_type: str = Field(default="text")  # one of MESSAGE_KINDS
    # Set iff message_type != "text": GCS object path, or the poll id for polls
    media_url: str | None = None
    # Same-table, same-room reference; no FK so deleting the target leaves a dangling id
    reply_to: int | None = Field(default=None, index=True)
    is_edited: bool = Field(default=False)
    created_at: datetime = timestamp_field(index=True)
    updated_at: datetime | None = timestamp_field(nullable=True)


class ClassMessage(_MessageFields, table=True):
    """Class-wide chat. ``lesson_id`` is NULL for the unscoped daily feed."""

    __tablename__ = "messages"  # type: ignore[assignment]

    id: int | None = Field(default=None, primary_key=True)
    lesson_id: int | None = Field(default=None, foreign_key="lessons.id", index=True)
    user_id: int = Field(foreign_key="profiles.id", index=True)


class DirectMessage(_MessageFields, table=True):
    __tablename__ = "direct_messages"  # type: ignore[assignment]

    id: int | None = Field(default=None, primary_key=True)
    sender_id: int = Field(foreign_key="profiles.id", index=True)
    receiver_id: int = Field(foreign_key="profiles.id", index=True)
    is_read: bool = Field(default=False)


class StudyGroupMessage(_MessageFields, table=True):
    __tablename__ = "study_group_messages"  # type: ignore[assignment]

    id: int | None = Field(default=None, primary_key=True)
    group_id: int = Field(foreign_key="study_groups.id", index=True)
    user_id: int = Field(foreign_key="profiles.id", index=True)
