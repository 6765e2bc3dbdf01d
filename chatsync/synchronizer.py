"""Message synchronizer: history fetch plus live merge into an ordered log.

One synchronizer serves one view and holds at most one open room. Opening a
room subscribes before reading history so nothing committed in between is
lost; an INSERT for a row already in the log is treated as an UPDATE.

Live inserts are appended at the tail. An insert that sorts before the tail
is placed with a bisect instead of re-sorting the whole log.

Editing or deleting a message also rewrites the quote carried by its replies
in the log; those follow-up UPDATEs come out of ``next_change`` right after
the change that caused them.
"""

from __future__ import annotations

import bisect
import logging
from collections import deque
from collections.abc import AsyncIterator, Callable, Iterable, Iterator
from dataclasses import dataclass
from datetime import datetime
from typing import Literal

from sqlmodel import col

from chatsync.backbone import Backbone, ChangeEvent, Subscription
from chatsync.messages import ChatMessage, ReplyQuote
from chatsync.replies import ReplyLinker
from chatsync.rooms import ClassRoom, Room
from chatsync.utils import utcnow

logger = logging.getLogger(__name__)


def _sort_key(message: ChatMessage) -> tuple[datetime, int]:
    return message.sort_key


class MessageLog:
    def __init__(self, messages: Iterable[ChatMessage] = ()) -> None:
        self._messages: list[ChatMessage] = sorted(messages, key=_sort_key)

    def __len__(self) -> int:
        return len(self._messages)

    def __iter__(self) -> Iterator[ChatMessage]:
        return iter(self._messages)

    def __contains__(self, message_id: object) -> bool:
        return any(m.id == message_id for m in self._messages)

    def snapshot(self) -> list[ChatMessage]:
        return list(self._messages)

    def by_id(self) -> dict[int, ChatMessage]:
        return {m.id: m for m in self._messages}

    def _index(self, message_id: int) -> int | None:
        # Recent messages are the usual targets, so scan from the tail.
        for i in range(len(self._messages) - 1, -1, -1):
            if self._messages[i].id == message_id:
                return i
        return None

    def append(self, message: ChatMessage) -> int:
        if not self._messages or _sort_key(self._messages[-1]) <= message.sort_key:
            self._messages.append(message)
            return len(self._messages) - 1
        index = bisect.bisect_right(self._messages, message.sort_key, key=_sort_key)
        self._messages.insert(index, message)
        return index

    def replace(self, message: ChatMessage) -> int | None:
        index = self._index(message.id)
        if index is not None:
            self._messages[index] = message
        return index

    def remove(self, message_id: int) -> ChatMessage | None:
        index = self._index(message_id)
        if index is None:
            return None
        return self._messages.pop(index)


@dataclass(frozen=True)
class LogChange:
    type: Literal["INSERT", "UPDATE", "DELETE"]
    message_id: int
    message: ChatMessage | None = None
    index: int | None = None


class RoomSynchronizer:
    def __init__(
        self,
        backbone: Backbone,
        linker: ReplyLinker,
        *,
        history_limit: int = 200,
        feed_limit: int = 50,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.backbone = backbone
        self.linker = linker
        self.history_limit = history_limit
        self.feed_limit = feed_limit
        self.clock = clock
        self.room: Room | None = None
        self.log = MessageLog()
        self._subscription: Subscription | None = None
        self._pending: deque[LogChange] = deque()

    async def open(self, room: Room) -> list[ChatMessage]:
        await self.close()
        self.room = room
        self._subscription = self.backbone.subscribe(room.model, channel_id=room.channel_id)
        history = await self.fetch_history(room)
        self.log = MessageLog(await self.linker.enrich(room, history))
        logger.debug("Opened %s with %d messages", room.channel_id, len(self.log))
        return self.log.snapshot()

    async def close(self) -> None:
        if self._subscription is not None:
            self._subscription.close()
            self._subscription = None
        self._pending.clear()
        self.room = None

    def _limit_for(self, room: Room) -> int | None:
        if isinstance(room, ClassRoom):
            # Only the live daily feed is bounded; lesson rooms and past days load in full.
            if room.is_feed and room.day == self.clock().date():
                return self.feed_limit
            return None
        return self.history_limit

    async def fetch_history(self, room: Room) -> list[ChatMessage]:
        model = room.model
        limit = self._limit_for(room)
        if limit is None:
            rows = await self.backbone.query(
                model,
                room.clause(),
                order_by=[col(model.created_at).asc(), col(model.id).asc()],  # type: ignore[attr-defined]
            )
        else:
            # Newest N, then back to chronological order for display.
            rows = await self.backbone.query(
                model,
                room.clause(),
                order_by=[col(model.created_at).desc(), col(model.id).desc()],  # type: ignore[attr-defined]
                limit=limit,
            )
            rows.reverse()
        return [room.to_message(row) for row in rows]

    async def apply(self, event: ChangeEvent) -> LogChange | None:
        """Merge one change event into the log; None when it does not concern the room."""
        room = self.room
        if room is None or event.table != room.table:
            return None
        record = event.record
        if event.type == "DELETE":
            removed = self.log.remove(record.get("id"))  # type: ignore[arg-type]
            if removed is None:
                return None
            self._requote(removed.id, None)
            return LogChange(type="DELETE", message_id=removed.id)

        if not room.matches(record):
            return None
        message = room.to_message(record)
        if event.type == "UPDATE" or message.id in self.log:
            current = self.log.by_id().get(message.id)
            if current is None:
                return None
            merged = message.model_copy(
                update={"reply_message": current.reply_message, "author": current.author}
            )
            index = self.log.replace(merged)
            self._requote(merged.id, merged.quote())
            return LogChange(type="UPDATE", message_id=merged.id, message=merged, index=index)

        message = await self.linker.enrich_one(room, message, known=self.log.by_id())
        index = self.log.append(message)
        return LogChange(type="INSERT", message_id=message.id, message=message, index=index)

    def _requote(self, parent_id: int, quote: ReplyQuote | None) -> None:
        for child in self.log.snapshot():
            if child.reply_to != parent_id or child.reply_message == quote:
                continue
            updated = child.model_copy(update={"reply_message": quote})
            index = self.log.replace(updated)
            self._pending.append(
                LogChange(type="UPDATE", message_id=updated.id, message=updated, index=index)
            )

    async def next_change(self) -> LogChange | None:
        """Wait for the next event that changes the log. None once the room is closed."""
        if self._pending:
            return self._pending.popleft()
        while self._subscription is not None:
            event = await self._subscription.get()
            if event is None:
                return None
            change = await self.apply(event)
            if change is not None:
                return change
        return None

    async def changes(self) -> AsyncIterator[LogChange]:
        while True:
            change = await self.next_change()
            if change is None:
                return
            yield change
