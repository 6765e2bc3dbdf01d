from datetime import datetime

from sqlmodel import Field, SQLModel

from backend.models.base import timestamp_field


class StudyGroup(SQLModel, table=True):
    # No unique constraint on (group_type, name): creation is look-up-then-insert
    # and a duplicate from two concurrent first joiners is tolerated.
    __tablename__ = "study_groups"  # type: ignore[assignment]

    id: int | None = Field(default=None, primary_key=True)
    group_type: str = Field(index=True)  # "school" | "course"
    school_name: str | None = Field(default=None, index=True)
    course_name: str | None = Field(default=None, index=True)
    created_at: datetime = timestamp_field()

    @property
    def name(self) -> str:
        return (self.school_name if self.group_type == "school" else self.course_name) or ""
