"""Lesson lifecycle intents and lesson read models.

Transitions are forward-only and each one is a single row update that stamps
the matching timestamp::

    scheduled --start--> live --end--> completed
    scheduled/live --delete--> removed

A scheduled lesson whose start time has passed is already live as far as
the views are concerned, so it can be ended directly.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from datetime import datetime
from typing import Any

from sqlmodel import col

from backend.models.chat import ClassMessage
from backend.models.lesson import Lesson
from backend.models.poll import Poll, PollVote
from chatsync.backbone import Backbone
from chatsync.capabilities import Actor
from chatsync.errors import InvalidInput, InvalidTransition, NotFound, NotPermitted
from chatsync.lesson_state import is_effectively_live, lesson_to_dict
from chatsync.utils import ensure_utc, utcnow

logger = logging.getLogger(__name__)


class LessonService:
    def __init__(self, backbone: Backbone, clock: Callable[[], datetime] = utcnow) -> None:
        self.backbone = backbone
        self.clock = clock

    @staticmethod
    def _require_manager(actor: Actor) -> None:
        if not actor.caps.can_manage_lessons:
            raise NotPermitted("Only staff can manage lessons")

    async def _get(self, lesson_id: int) -> Lesson:
        lesson = await self.backbone.get(Lesson, lesson_id)
        if lesson is None:
            raise NotFound("Lesson not found")
        return lesson

    async def schedule(self, actor: Actor, topic: str, scheduled_at: datetime) -> Lesson:
        self._require_manager(actor)
        topic = (topic or "").strip()
        if not topic:
            raise InvalidInput("Topic is required")
        lesson = await self.backbone.insert(
            Lesson(
                topic=topic,
                scheduled_at=ensure_utc(scheduled_at),
                status="scheduled",
                created_by=actor.id,
            )
        )
        logger.info("Lesson %s scheduled for %s by %s", lesson.id, lesson.scheduled_at, actor.id)
        return lesson

    async def start(self, actor: Actor, lesson_id: int) -> Lesson:
        self._require_manager(actor)
        lesson = await self._get(lesson_id)
        if lesson.status != "scheduled":
            raise InvalidTransition(f"Cannot start a {lesson.status} lesson")
        rows = await self.backbone.update(
            Lesson,
            Lesson.id == lesson_id,
            Lesson.status == "scheduled",
            patch={"status": "live", "started_at": self.clock()},
        )
        if not rows:
            raise InvalidTransition("Lesson changed state; reload and try again")
        logger.info("Lesson %s started by %s", lesson_id, actor.id)
        return rows[0]

    async def end(self, actor: Actor, lesson_id: int) -> Lesson:
        self._require_manager(actor)
        now = self.clock()
        lesson = await self._get(lesson_id)
        if not is_effectively_live(lesson, now):
            raise InvalidTransition(f"Cannot end a lesson that is not live ({lesson.status})")
        patch: dict[str, Any] = {"status": "completed", "ended_at": now}
        if lesson.started_at is None:
            # Auto-started lessons began at their scheduled time
            patch["started_at"] = lesson.scheduled_at
        rows = await self.backbone.update(
            Lesson,
            Lesson.id == lesson_id,
            Lesson.status == lesson.status,
            patch=patch,
        )
        if not rows:
            raise InvalidTransition("Lesson changed state; reload and try again")
        logger.info("Lesson %s ended by %s", lesson_id, actor.id)
        return rows[0]

    async def delete(self, actor: Actor, lesson_id: int) -> None:
        self._require_manager(actor)
        lesson = await self._get(lesson_id)
        if lesson.status == "completed":
            raise InvalidTransition("Completed lessons are archived and cannot be deleted")
        # Children first so live views receive DELETE events for each message.
        await self.backbone.delete(ClassMessage, ClassMessage.lesson_id == lesson_id)
        polls = await self.backbone.query(Poll, Poll.lesson_id == lesson_id)
        if polls:
            poll_ids = [p.id for p in polls]
            await self.backbone.delete(PollVote, col(PollVote.poll_id).in_(poll_ids))
            await self.backbone.delete(Poll, col(Poll.id).in_(poll_ids))
        await self.backbone.delete(Lesson, Lesson.id == lesson_id)
        logger.info("Lesson %s deleted by %s", lesson_id, actor.id)

    # -----------------------------------------------------------------------
    # Read models
    # -----------------------------------------------------------------------

    async def list_lessons(self) -> list[dict[str, Any]]:
        now = self.clock()
        lessons = await self.backbone.query(
            Lesson, order_by=[col(Lesson.scheduled_at).desc(), col(Lesson.id).desc()]
        )
        return [
            {**lesson_to_dict(lesson), "is_effectively_live": is_effectively_live(lesson, now)}
            for lesson in lessons
        ]

    async def archive(self, search: str | None = None) -> list[dict[str, Any]]:
        """Completed lessons, most recently ended first, optionally filtered by topic."""
        lessons = await self.backbone.query(
            Lesson,
            Lesson.status == "completed",
            order_by=[col(Lesson.ended_at).desc(), col(Lesson.id).desc()],
        )
        needle = (search or "").strip().lower()
        return [lesson_to_dict(lesson) for lesson in lessons if needle in lesson.topic.lower()]
