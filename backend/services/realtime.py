from __future__ import annotations

from fastapi import Depends

from backend.core.database import get_session_factory
from backend.core.settings import settings
from chatsync.backbone import Backbone
from chatsync.dispatch import MessageDispatcher
from chatsync.lesson_state import LessonStatePoller, LessonStateResolver
from chatsync.lessons import LessonService
from chatsync.lock_settings import ChatLockSettings
from chatsync.moderation import ModerationService
from chatsync.polls import PollService
from chatsync.replies import ReplyLinker
from chatsync.synchronizer import RoomSynchronizer

# Singleton backbone: every request and WebSocket in this process must share
# one change feed, or writes from one connection never reach another.
_backbone: Backbone | None = None


def get_backbone() -> Backbone:
    global _backbone
    if _backbone is None:
        _backbone = Backbone(get_session_factory())
    return _backbone


class ChatServices:
    """The chat core wired to one backbone and the current settings."""

    def __init__(self, backbone: Backbone) -> None:
        self.backbone = backbone
        self.lock_settings = ChatLockSettings(backbone)
        self.resolver = LessonStateResolver(backbone, self.lock_settings)
        self.linker = ReplyLinker(backbone)
        self.dispatcher = MessageDispatcher(
            backbone,
            self.linker,
            self.resolver,
            premium_room_kinds=settings.premium_room_kinds,
        )
        self.lessons = LessonService(backbone)
        self.moderation = ModerationService(backbone, self.lock_settings)
        self.polls = PollService(backbone, self.dispatcher)

    def synchronizer(self) -> RoomSynchronizer:
        return RoomSynchronizer(
            self.backbone,
            self.linker,
            history_limit=settings.ROOM_HISTORY_LIMIT,
            feed_limit=settings.GLOBAL_FEED_LIMIT,
        )

    def poller(self, archive_lesson_id: int | None = None) -> LessonStatePoller:
        return LessonStatePoller(
            self.resolver,
            interval=settings.LESSON_POLL_INTERVAL_SECONDS,
            archive_lesson_id=archive_lesson_id,
        )


def get_services(backbone: Backbone = Depends(get_backbone)) -> ChatServices:
    return ChatServices(backbone)
