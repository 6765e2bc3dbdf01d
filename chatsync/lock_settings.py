"""Global chat lock, stored as a ``platform_settings`` row and observable via the feed."""

from __future__ import annotations

import logging

from backend.models.platform_setting import PlatformSetting
from chatsync.backbone import Backbone, Subscription
from chatsync.utils import utcnow

logger = logging.getLogger(__name__)

CHAT_LOCK_KEY = "chat_locked"


def _parse_bool(value: str | None) -> bool:
    return (value or "").strip().lower() in {"true", "1", "yes", "on"}


class ChatLockSettings:
    def __init__(self, backbone: Backbone) -> None:
        self.backbone = backbone

    async def is_locked(self) -> bool:
        """Current lock flag; an absent row means unlocked."""
        row = await self.backbone.get(PlatformSetting, CHAT_LOCK_KEY)
        return _parse_bool(row.value) if row is not None else False

    async def set_locked(self, locked: bool) -> bool:
        await self.backbone.upsert(
            PlatformSetting(key=CHAT_LOCK_KEY, value=str(locked).lower(), updated_at=utcnow())
        )
        logger.info("Global chat lock set to %s", locked)
        return locked

    def subscribe(self, channel_id: str = "settings:chat_locked") -> Subscription:
        """Change events for the lock row only."""
        return self.backbone.subscribe(
            PlatformSetting,
            channel_id=channel_id,
            predicate=lambda row: row.get("key") == CHAT_LOCK_KEY,
        )
