"""Composition/dispatch: turns send/edit/delete/read intents into single writes.

Gating here is advisory (the store's own access rules are authoritative) but
it always runs before any write is attempted, so a rejected send leaves no
trace.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterable
from datetime import datetime

from sqlmodel import SQLModel

from backend.models.chat import DirectMessage
from backend.models.lesson import Lesson
from backend.models.profile import Profile
from chatsync.backbone import Backbone
from chatsync.capabilities import Actor
from chatsync.errors import (
    ChatLocked,
    EmptyMessage,
    InvalidInput,
    InvalidReplyTarget,
    MissingMedia,
    NoActiveContext,
    NotFound,
    NotPermitted,
    PremiumRequired,
    RoomAccessDenied,
    RoomReadOnly,
)
from chatsync.lesson_state import LessonState, LessonStateResolver
from chatsync.messages import CLIENT_KINDS, PLACEHOLDERS, ChatMessage, owns_media_ref
from chatsync.replies import ReplyLinker
from chatsync.rooms import ClassRoom, DirectRoom, Room, authorize
from chatsync.utils import utcnow

logger = logging.getLogger(__name__)


class MessageDispatcher:
    def __init__(
        self,
        backbone: Backbone,
        linker: ReplyLinker,
        resolver: LessonStateResolver,
        *,
        premium_room_kinds: Iterable[str] = ("study_group",),
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.backbone = backbone
        self.linker = linker
        self.resolver = resolver
        self.premium_room_kinds = frozenset(premium_room_kinds)
        self.clock = clock

    # -----------------------------------------------------------------------
    # Send
    # -----------------------------------------------------------------------

    async def send(
        self,
        room: Room,
        actor: Actor,
        content: str,
        kind: str = "text",
        media_ref: str | None = None,
        reply_to: int | None = None,
        *,
        lesson_state: LessonState | None = None,
    ) -> ChatMessage:
        await authorize(self.backbone, room, actor)
        content, media_ref = self._validate_payload(content, kind, media_ref, actor.id)
        await self._check_room_gates(room, actor, lesson_state)
        if reply_to is not None:
            await self._check_reply_target(room, reply_to)
        return await self._post(room, actor, content, kind, media_ref, reply_to)

    async def check_writable(
        self, room: Room, actor: Actor, *, lesson_state: LessonState | None = None
    ) -> None:
        """Raise the error a send by ``actor`` would hit, without writing anything."""
        await authorize(self.backbone, room, actor)
        await self._check_room_gates(room, actor, lesson_state)

    async def announce_poll(
        self,
        room: ClassRoom,
        actor: Actor,
        poll_id: int,
        *,
        lesson_state: LessonState | None = None,
    ) -> ChatMessage:
        await self.check_writable(room, actor, lesson_state=lesson_state)
        return await self._post(room, actor, PLACEHOLDERS["poll"], "poll", str(poll_id), None)

    async def _post(
        self,
        room: Room,
        actor: Actor,
        content: str,
        kind: str,
        media_ref: str | None,
        reply_to: int | None,
    ) -> ChatMessage:
        row = await self.backbone.insert(room.new_row(actor.id, content, kind, media_ref, reply_to))
        if isinstance(room, ClassRoom):
            await self.backbone.update(
                Profile, Profile.id == actor.id, patch={"last_read_at": self.clock()}
            )
        message = room.to_message(row)
        logger.debug("Sent %s message %s to %s", kind, message.id, room.channel_id)
        return await self.linker.enrich_one(room, message)

    @staticmethod
    def _validate_payload(
        content: str, kind: str, media_ref: str | None, author_id: int
    ) -> tuple[str, str | None]:
        if kind not in CLIENT_KINDS:
            raise InvalidInput(f"Cannot send a {kind!r} message")
        if kind == "text":
            content = (content or "").strip()
            if not content:
                raise EmptyMessage("Message cannot be empty")
            return content, None
        if not media_ref:
            raise MissingMedia(f"A {kind} message needs a media reference")
        if not owns_media_ref(media_ref, kind, author_id):
            raise InvalidInput(f"Attach a {kind} uploaded from your own account")
        return (content or "").strip() or PLACEHOLDERS[kind], media_ref

    async def _check_room_gates(
        self, room: Room, actor: Actor, lesson_state: LessonState | None
    ) -> None:
        if isinstance(room, DirectRoom) and actor.id not in room.participants:
            raise RoomAccessDenied("Only participants can write to this conversation")
        if isinstance(room, ClassRoom):
            if lesson_state is None:
                lesson_state = await self.resolver.resolve(self.clock())
            await self._check_class_gate(room, actor, lesson_state)
        if (
            room.kind in self.premium_room_kinds
            and not actor.caps.is_staff
            and not actor.profile.is_premium
        ):
            raise PremiumRequired("Upgrade to premium to chat here")

    async def _check_class_gate(self, room: ClassRoom, actor: Actor, state: LessonState) -> None:
        active = state.active_lesson
        staff = actor.caps.can_unlock_self
        if room.is_feed:
            if room.day != self.clock().date():
                raise RoomReadOnly("Past chat days are read-only")
            if active is not None and state.is_effectively_live:
                raise NoActiveContext("A lesson is live; post in the lesson chat")
        else:
            if state.is_archive:
                raise RoomReadOnly("Archived lessons are read-only")
            if active is None or active.id != room.lesson_id:
                lesson = await self.backbone.get(Lesson, room.lesson_id)
                if lesson is None:
                    raise NotFound("Lesson not found")
                if lesson.status == "completed":
                    raise RoomReadOnly("This lesson has ended")
                raise NoActiveContext("This lesson is not the active class")
            if active.status == "completed":
                raise RoomReadOnly("This lesson has ended")
            if state.lesson_locked and not staff:
                raise ChatLocked("Chat opens when the lesson starts")
        if state.global_locked and not staff and not actor.profile.is_unlocked:
            raise ChatLocked("Chat is locked by staff")

    async def _check_reply_target(self, room: Room, reply_to: int) -> None:
        model = room.model
        target = await self.backbone.first(model, model.id == reply_to, room.clause())  # type: ignore[attr-defined]
        if target is None:
            raise InvalidReplyTarget("The message you are replying to is not in this room")

    # -----------------------------------------------------------------------
    # Edit / delete / read
    # -----------------------------------------------------------------------

    async def _load(self, room: Room, message_id: int) -> SQLModel:
        model = room.model
        row = await self.backbone.first(model, model.id == message_id, room.clause())  # type: ignore[attr-defined]
        if row is None:
            raise NotFound("Message not found")
        return row

    async def edit(self, room: Room, actor: Actor, message_id: int, content: str) -> ChatMessage:
        await authorize(self.backbone, room, actor)
        current = room.to_message(await self._load(room, message_id))
        if current.author_id != actor.id:
            raise NotPermitted("Only the author can edit a message")
        if current.kind != "text":
            raise InvalidInput("Only text messages can be edited")
        content = (content or "").strip()
        if not content:
            raise EmptyMessage("Message cannot be empty")
        model = room.model
        rows = await self.backbone.update(
            model,
            model.id == message_id,  # type: ignore[attr-defined]
            patch={"content": content, "is_edited": True, "updated_at": self.clock()},
        )
        return await self.linker.enrich_one(room, room.to_message(rows[0]))

    async def delete(self, room: Room, actor: Actor, message_id: int) -> None:
        await authorize(self.backbone, room, actor)
        current = room.to_message(await self._load(room, message_id))
        if current.author_id != actor.id and not actor.caps.can_moderate:
            raise NotPermitted("Only the author or a moderator can delete a message")
        model = room.model
        await self.backbone.delete(model, model.id == message_id)  # type: ignore[attr-defined]

    async def mark_read(self, room: DirectRoom, actor: Actor, message_id: int | None = None) -> int:
        """Acknowledge messages the actor received in ``room``; returns how many flipped."""
        if actor.id not in room.participants:
            return 0
        where = [
            DirectMessage.receiver_id == actor.id,
            DirectMessage.sender_id == room.other(actor.id),
            DirectMessage.is_read == False,  # noqa: E712
        ]
        if message_id is not None:
            where.append(DirectMessage.id == message_id)
        rows = await self.backbone.update(DirectMessage, *where, patch={"is_read": True})
        return len(rows)
