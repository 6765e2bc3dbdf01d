"""Lesson state resolution for class rooms.

``LessonStateResolver`` answers "which lesson is the class chat about right
now, and is chat locked?" from a single read pass. ``LessonStatePoller``
keeps that answer fresh from two sources: push events on the ``lessons``
and ``platform_settings`` tables, and a fixed-interval re-resolve. The
poll is what eventually catches a scheduled lesson crossing its start time
(no row changes, so no push) and any push event that was dropped.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from collections.abc import AsyncIterator, Callable
from dataclasses import dataclass
from datetime import datetime
from typing import Any

from sqlmodel import col

from backend.models.lesson import Lesson
from backend.models.platform_setting import PlatformSetting
from chatsync.backbone import Backbone, Subscription
from chatsync.errors import ChatSyncError, UnknownRoom
from chatsync.lock_settings import ChatLockSettings
from chatsync.utils import ensure_utc, utcnow

logger = logging.getLogger(__name__)


def is_due(lesson: Lesson, now: datetime) -> bool:
    return ensure_utc(lesson.scheduled_at) <= ensure_utc(now)


def is_effectively_live(lesson: Lesson, now: datetime) -> bool:
    """Live, or scheduled with its start time passed (view-level auto transition)."""
    return lesson.status == "live" or (lesson.status == "scheduled" and is_due(lesson, now))


@dataclass(frozen=True)
class LessonState:
    active_lesson: Lesson | None
    is_effectively_live: bool
    lesson_locked: bool
    global_locked: bool
    is_archive: bool = False

    @property
    def is_locked(self) -> bool:
        return self.is_archive or self.lesson_locked or self.global_locked

    @property
    def is_read_only(self) -> bool:
        return self.is_archive or (
            self.active_lesson is not None and self.active_lesson.status == "completed"
        )

    def to_dict(self) -> dict[str, Any]:
        lesson = self.active_lesson
        return {
            "active_lesson": lesson_to_dict(lesson) if lesson is not None else None,
            "is_effectively_live": self.is_effectively_live,
            "is_locked": self.is_locked,
            "lesson_locked": self.lesson_locked,
            "global_locked": self.global_locked,
            "is_archive": self.is_archive,
            "is_read_only": self.is_read_only,
        }


def lesson_to_dict(lesson: Lesson) -> dict[str, Any]:
    def _iso(value: datetime | None) -> str | None:
        return ensure_utc(value).isoformat() if value is not None else None

    return {
        "id": lesson.id,
        "topic": lesson.topic,
        "status": lesson.status,
        "scheduled_at": _iso(lesson.scheduled_at),
        "started_at": _iso(lesson.started_at),
        "ended_at": _iso(lesson.ended_at),
        "created_by": lesson.created_by,
    }


class LessonStateResolver:
    def __init__(self, backbone: Backbone, lock_settings: ChatLockSettings) -> None:
        self.backbone = backbone
        self.lock_settings = lock_settings

    async def resolve(
        self,
        now: datetime | None = None,
        *,
        is_archive_view: bool = False,
        archive_lesson_id: int | None = None,
    ) -> LessonState:
        now = now or utcnow()
        if is_archive_view:
            if archive_lesson_id is None:
                raise UnknownRoom("Archive view needs a lesson id")
            lesson = await self.backbone.get(Lesson, archive_lesson_id)
            if lesson is None:
                raise UnknownRoom("Lesson not found")
            return LessonState(
                active_lesson=lesson,
                is_effectively_live=False,
                lesson_locked=True,
                global_locked=await self.lock_settings.is_locked(),
                is_archive=True,
            )

        lesson = await self.backbone.first(
            Lesson,
            Lesson.status == "live",
            order_by=[col(Lesson.started_at).desc().nulls_last(), col(Lesson.id).desc()],
        )
        if lesson is None:
            lesson = await self.backbone.first(
                Lesson,
                Lesson.status == "scheduled",
                order_by=[col(Lesson.scheduled_at).asc(), col(Lesson.id).asc()],
            )

        live = lesson is not None and is_effectively_live(lesson, now)
        lesson_locked = lesson is not None and (
            lesson.status == "completed" or (lesson.status == "scheduled" and not live)
        )
        return LessonState(
            active_lesson=lesson,
            is_effectively_live=live,
            lesson_locked=lesson_locked,
            global_locked=await self.lock_settings.is_locked(),
        )


class LessonStatePoller:
    """Keeps a resolved ``LessonState`` current and emits it whenever it changes."""

    def __init__(
        self,
        resolver: LessonStateResolver,
        *,
        interval: float,
        clock: Callable[[], datetime] = utcnow,
        archive_lesson_id: int | None = None,
        channel_prefix: str = "lesson-state",
    ) -> None:
        self.resolver = resolver
        self.interval = interval
        self.clock = clock
        self.archive_lesson_id = archive_lesson_id
        self.channel_prefix = channel_prefix
        self.state: LessonState | None = None
        self._snapshot: dict[str, Any] | None = None
        self._updates: asyncio.Queue[LessonState] = asyncio.Queue()
        self._subscriptions: list[Subscription] = []
        self._tasks: list[asyncio.Task[None]] = []

    async def refresh(self) -> LessonState | None:
        """Re-resolve; on failure keep the previous state (stale but available)."""
        try:
            state = await self.resolver.resolve(
                self.clock(),
                is_archive_view=self.archive_lesson_id is not None,
                archive_lesson_id=self.archive_lesson_id,
            )
        except ChatSyncError as exc:
            logger.warning("Lesson state refresh failed; keeping previous state: %s", exc)
            return self.state
        snapshot = state.to_dict()
        if snapshot != self._snapshot:
            self.state = state
            self._snapshot = snapshot
            self._updates.put_nowait(state)
        return self.state

    async def start(self) -> LessonState | None:
        backbone = self.resolver.backbone
        self._subscriptions = [
            backbone.subscribe(Lesson, channel_id=f"{self.channel_prefix}:lessons"),
            backbone.subscribe(PlatformSetting, channel_id=f"{self.channel_prefix}:settings"),
        ]
        state = await self.refresh()
        self._tasks = [asyncio.create_task(self._poll_loop())]
        self._tasks += [asyncio.create_task(self._push_loop(sub)) for sub in self._subscriptions]
        return state

    async def stop(self) -> None:
        for sub in self._subscriptions:
            sub.close()
        for task in self._tasks:
            task.cancel()
        for task in self._tasks:
            with contextlib.suppress(asyncio.CancelledError):
                await task
        self._subscriptions = []
        self._tasks = []

    async def changes(self) -> AsyncIterator[LessonState]:
        while True:
            yield await self._updates.get()

    async def _poll_loop(self) -> None:
        while True:
            await asyncio.sleep(self.interval)
            await self.refresh()

    async def _push_loop(self, sub: Subscription) -> None:
        async for _event in sub:
            await self.refresh()
