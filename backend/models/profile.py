from datetime import datetime

from sqlmodel import Field, SQLModel

from backend.models.base import timestamp_field


class Profile(SQLModel, table=True):
    """Platform identity mirrored from Clerk.

    ``is_unlocked`` is the per-student override of the global chat lock;
    ``is_premium`` is set by the payment flow, which lives outside this service.
    """

    __tablename__ = "profiles"  # type: ignore[assignment]

    id: int | None = Field(default=None, primary_key=True)
    clerk_user_id: str = Field(unique=True, index=True)
    email: str = Field(default="", index=True)
    full_name: str = Field(default="User")
    role: str = Field(default="student")  # "student" | "ta" | "admin"
    school: str | None = None
    course: str | None = None
    is_hand_raised: bool = Field(default=False)
    is_unlocked: bool = Field(default=False)
    is_premium: bool = Field(default=False)
    last_read_at: datetime | None = timestamp_field(nullable=True)
    created_at: datetime = timestamp_field()
