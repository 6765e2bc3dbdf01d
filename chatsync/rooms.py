"""Room abstraction: (message table, filter, real-time channel) per room kind.

A room knows three things about its scope and keeps them consistent:
``clause()`` for queries against the store, ``matches(row)`` for live change
rows, and a ``channel_id`` derived from the same scope so that reopening a
room lands on the same channel.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from datetime import UTC, date, datetime, time, timedelta
from typing import Any, ClassVar

from sqlalchemy import and_, or_
from sqlmodel import SQLModel

from backend.models.chat import ClassMessage, DirectMessage, StudyGroupMessage
from backend.models.study_group import StudyGroup
from chatsync.backbone import Backbone, Row
from chatsync.capabilities import Actor
from chatsync.errors import RoomAccessDenied, UnknownRoom
from chatsync.messages import ChatMessage
from chatsync.utils import ensure_utc

CLASS = "class"
DIRECT = "direct"
STUDY_GROUP = "study_group"
ROOM_KINDS = (CLASS, DIRECT, STUDY_GROUP)

_DATE_KEY = re.compile(r"^\d{4}-\d{2}-\d{2}$")
_PAIR_KEY = re.compile(r"^(\d+)-(\d+)$")


def _as_row(row: SQLModel | Row) -> Row:
    return row if isinstance(row, dict) else row.model_dump()


class Room:
    kind: ClassVar[str]
    model: ClassVar[type[SQLModel]]
    author_field: ClassVar[str] = "user_id"

    @property
    def table(self) -> str:
        return str(self.model.__tablename__)

    @property
    def key(self) -> str:
        raise NotImplementedError

    @property
    def channel_id(self) -> str:
        return f"{self.kind}:{self.key}"

    def clause(self) -> Any:
        raise NotImplementedError

    def matches(self, row: Row) -> bool:
        raise NotImplementedError

    def scope_fields(self, author_id: int) -> dict[str, Any]:
        """Room-scoping columns for a new row sent by ``author_id``."""
        raise NotImplementedError

    def new_row(
        self,
        author_id: int,
        content: str,
        kind: str,
        media_ref: str | None,
        reply_to: int | None,
    ) -> SQLModel:
        return self.model(
            **self.scope_fields(author_id),
            **{self.author_field: author_id},
            content=content,
            message_type=kind,
            media_url=media_ref,
            reply_to=reply_to,
        )

    def to_message(self, row: SQLModel | Row) -> ChatMessage:
        data = _as_row(row)
        return ChatMessage(
            id=data["id"],
            room_key=self.key,
            author_id=data[self.author_field],
            content=data.get("content") or "",
            kind=data.get("message_type") or "text",
            media_ref=data.get("media_url"),
            reply_to=data.get("reply_to"),
            created_at=ensure_utc(data["created_at"]),
            is_read=data.get("is_read"),
            is_edited=bool(data.get("is_edited")),
        )

    def describe(self) -> dict[str, str]:
        return {"kind": self.kind, "key": self.key, "table": self.table, "channel_id": self.channel_id}


@dataclass(frozen=True)
class ClassRoom(Room):
    """Lesson chat, or the unscoped daily feed when ``lesson_id`` is None."""

    kind: ClassVar[str] = CLASS
    model: ClassVar[type[SQLModel]] = ClassMessage

    lesson_id: int | None = None
    day: date | None = None

    def __post_init__(self) -> None:
        if (self.lesson_id is None) == (self.day is None):
            raise ValueError("ClassRoom needs exactly one of lesson_id or day")

    @property
    def is_feed(self) -> bool:
        return self.lesson_id is None

    @property
    def key(self) -> str:
        if self.lesson_id is not None:
            return str(self.lesson_id)
        assert self.day is not None
        return self.day.isoformat()

    @property
    def channel_id(self) -> str:
        if self.lesson_id is not None:
            return f"class:lesson:{self.lesson_id}"
        return f"class:feed:{self.key}"

    def _day_bounds(self) -> tuple[datetime, datetime]:
        assert self.day is not None
        start = datetime.combine(self.day, time.min, tzinfo=UTC)
        return start, start + timedelta(days=1)

    def clause(self) -> Any:
        if self.lesson_id is not None:
            return ClassMessage.lesson_id == self.lesson_id
        start, end = self._day_bounds()
        return and_(
            ClassMessage.lesson_id.is_(None),  # type: ignore[union-attr]
            ClassMessage.created_at >= start,
            ClassMessage.created_at < end,
        )

    def matches(self, row: Row) -> bool:
        if self.lesson_id is not None:
            return row.get("lesson_id") == self.lesson_id
        created = row.get("created_at")
        return (
            row.get("lesson_id") is None
            and created is not None
            and ensure_utc(created).date() == self.day
        )

    def scope_fields(self, author_id: int) -> dict[str, Any]:
        return {"lesson_id": self.lesson_id}


@dataclass(frozen=True)
class DirectRoom(Room):
    """Conversation between an unordered pair of profiles."""

    kind: ClassVar[str] = DIRECT
    model: ClassVar[type[SQLModel]] = DirectMessage
    author_field: ClassVar[str] = "sender_id"

    user_a: int
    user_b: int
    participants: tuple[int, int] = field(init=False)

    def __post_init__(self) -> None:
        if self.user_a == self.user_b:
            raise ValueError("A direct room needs two distinct participants")
        object.__setattr__(self, "participants", tuple(sorted((self.user_a, self.user_b))))

    @property
    def key(self) -> str:
        low, high = self.participants
        return f"{low}-{high}"

    def other(self, user_id: int) -> int:
        low, high = self.participants
        return high if user_id == low else low

    def clause(self) -> Any:
        low, high = self.participants
        return or_(
            and_(DirectMessage.sender_id == low, DirectMessage.receiver_id == high),
            and_(DirectMessage.sender_id == high, DirectMessage.receiver_id == low),
        )

    def matches(self, row: Row) -> bool:
        return {row.get("sender_id"), row.get("receiver_id")} == set(self.participants)

    def scope_fields(self, author_id: int) -> dict[str, Any]:
        return {"receiver_id": self.other(author_id)}


@dataclass(frozen=True)
class StudyGroupRoom(Room):
    kind: ClassVar[str] = STUDY_GROUP
    model: ClassVar[type[SQLModel]] = StudyGroupMessage

    group_id: int

    @property
    def key(self) -> str:
        return str(self.group_id)

    def clause(self) -> Any:
        return StudyGroupMessage.group_id == self.group_id

    def matches(self, row: Row) -> bool:
        return row.get("group_id") == self.group_id

    def scope_fields(self, author_id: int) -> dict[str, Any]:
        return {"group_id": self.group_id}


def room_for(kind: str, key: str, viewer_id: int, today: date) -> Room:
    """Parse a (kind, key) pair from the API into a room.

    Class keys: ``<lesson id>``, ``today`` or ``YYYY-MM-DD``.
    Direct keys: ``<other profile id>`` (paired with the viewer) or ``<a>-<b>``.
    Study-group keys: ``<group id>``.
    """
    key = key.strip()
    if kind == CLASS:
        if key == "today":
            return ClassRoom(day=today)
        if _DATE_KEY.match(key):
            try:
                return ClassRoom(day=date.fromisoformat(key))
            except ValueError as err:
                raise UnknownRoom(f"Invalid date {key!r}") from err
        if key.isdigit():
            return ClassRoom(lesson_id=int(key))
    elif kind == DIRECT:
        pair = _PAIR_KEY.match(key)
        try:
            if pair:
                return DirectRoom(int(pair.group(1)), int(pair.group(2)))
            if key.isdigit():
                return DirectRoom(viewer_id, int(key))
        except ValueError as err:
            raise UnknownRoom(str(err)) from err
    elif kind == STUDY_GROUP:
        if key.isdigit():
            return StudyGroupRoom(group_id=int(key))
    raise UnknownRoom(f"Unknown room {kind}/{key}")


def is_group_member(group: StudyGroup, actor: Actor) -> bool:
    profile = actor.profile
    if group.group_type == "school":
        return bool(profile.school) and profile.school == group.school_name
    return bool(profile.course) and profile.course == group.course_name


async def authorize(backbone: Backbone, room: Room, actor: Actor) -> None:
    """Raise unless ``actor`` may read (and, subject to send gating, write) ``room``."""
    if isinstance(room, DirectRoom):
        if actor.id not in room.participants and not actor.caps.can_view_all_dms:
            raise RoomAccessDenied("Not a participant in this conversation")
    elif isinstance(room, StudyGroupRoom):
        group = await backbone.get(StudyGroup, room.group_id)
        if group is None:
            raise UnknownRoom("Study group not found")
        if not actor.caps.can_moderate and not is_group_member(group, actor):
            raise RoomAccessDenied("Not a member of this study group")
