from datetime import datetime

from sqlmodel import Field, SQLModel

from backend.models.base import timestamp_field


class PlatformSetting(SQLModel, table=True):
    """Process-wide key/value flags (e.g. ``chat_locked``). Values are stored as strings."""

    __tablename__ = "platform_settings"  # type: ignore[assignment]

    key: str = Field(primary_key=True)
    value: str = Field(default="")
    updated_at: datetime = timestamp_field()
