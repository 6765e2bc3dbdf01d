"""Moderation intents: hands, per-student unlocks and the global lock.

Each intent is one last-write-wins write; repeating it with the same value
changes nothing.
"""

from __future__ import annotations

import logging

from backend.models.profile import Profile
from chatsync.backbone import Backbone
from chatsync.capabilities import Actor
from chatsync.errors import NotFound, NotPermitted
from chatsync.lock_settings import ChatLockSettings

logger = logging.getLogger(__name__)


class ModerationService:
    def __init__(self, backbone: Backbone, lock_settings: ChatLockSettings) -> None:
        self.backbone = backbone
        self.lock_settings = lock_settings

    @staticmethod
    def _require_moderator(actor: Actor) -> None:
        if not actor.caps.can_moderate:
            raise NotPermitted("Only staff can moderate chat")

    async def set_hand_raised(self, actor: Actor, raised: bool) -> Profile:
        rows = await self.backbone.update(
            Profile, Profile.id == actor.id, patch={"is_hand_raised": raised}
        )
        if not rows:
            raise NotFound("Profile not found")
        return rows[0]

    async def set_student_unlocked(self, actor: Actor, student_id: int, unlocked: bool) -> Profile:
        self._require_moderator(actor)
        patch: dict[str, bool] = {"is_unlocked": unlocked}
        if unlocked:
            # Granting the floor answers the raised hand
            patch["is_hand_raised"] = False
        rows = await self.backbone.update(Profile, Profile.id == student_id, patch=patch)
        if not rows:
            raise NotFound("Student not found")
        logger.info("Student %s unlocked=%s by %s", student_id, unlocked, actor.id)
        return rows[0]

    async def reset_unlocks(self, actor: Actor) -> int:
        self._require_moderator(actor)
        rows = await self.backbone.update(
            Profile,
            Profile.is_unlocked == True,  # noqa: E712
            patch={"is_unlocked": False},
        )
        logger.info("Reset %d unlocked student(s) by %s", len(rows), actor.id)
        return len(rows)

    async def set_global_lock(self, actor: Actor, locked: bool) -> bool:
        self._require_moderator(actor)
        return await self.lock_settings.set_locked(locked)

    async def raised_hands(self, actor: Actor) -> list[Profile]:
        self._require_moderator(actor)
        return await self.backbone.query(
            Profile, Profile.is_hand_raised == True  # noqa: E712
        )
