"""Reply/thread linking and author enrichment.

A read-side decorator applied to both batch loads (history) and point loads
(live inserts). Only the immediate parent is quoted, even when that parent is
itself a reply. Lookups are scoped to the message's own room, so a reference
into another room resolves to nothing rather than leaking content.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Mapping

from backend.models.profile import Profile
from chatsync.backbone import Backbone
from chatsync.errors import TransientReadFailure
from chatsync.messages import AuthorInfo, ChatMessage
from chatsync.rooms import Room

logger = logging.getLogger(__name__)


class ReplyLinker:
    def __init__(self, backbone: Backbone) -> None:
        self.backbone = backbone

    async def enrich(self, room: Room, messages: list[ChatMessage]) -> list[ChatMessage]:
        """Attach authors and reply quotes to a batch with one lookup per concern."""
        if not messages:
            return []
        local = {m.id: m for m in messages}
        wanted = {m.reply_to for m in messages if m.reply_to is not None}
        targets = {i: local[i] for i in wanted if i in local}
        targets.update(await self._lookup(room, wanted - targets.keys()))

        authors = await self._authors(
            [m.author_id for m in messages] + [t.author_id for t in targets.values()]
        )
        return [self._decorate(m, targets, authors) for m in messages]

    async def enrich_one(
        self,
        room: Room,
        message: ChatMessage,
        known: Mapping[int, ChatMessage] | None = None,
    ) -> ChatMessage:
        targets: dict[int, ChatMessage] = {}
        if message.reply_to is not None:
            if known is not None and message.reply_to in known:
                targets[message.reply_to] = known[message.reply_to]
            else:
                targets = await self._lookup(room, {message.reply_to})
        authors = await self._authors(
            [message.author_id] + [t.author_id for t in targets.values()]
        )
        return self._decorate(message, targets, authors)

    # -----------------------------------------------------------------------

    async def _lookup(self, room: Room, ids: set[int]) -> dict[int, ChatMessage]:
        if not ids:
            return {}
        model = room.model
        try:
            rows = await self.backbone.query(
                model,
                model.id.in_(sorted(ids)),  # type: ignore[attr-defined]
                room.clause(),
            )
        except TransientReadFailure as exc:
            logger.warning("Reply lookup failed for %s (%d ids): %s", room.channel_id, len(ids), exc)
            return {}
        return {row.id: room.to_message(row) for row in rows}  # type: ignore[attr-defined]

    async def _authors(self, ids: Iterable[int]) -> dict[int, AuthorInfo]:
        unique = sorted(set(ids))
        if not unique:
            return {}
        try:
            profiles = await self.backbone.query(Profile, Profile.id.in_(unique))  # type: ignore[union-attr]
        except TransientReadFailure as exc:
            logger.warning("Author lookup failed for %d profiles: %s", len(unique), exc)
            return {}
        return {
            p.id: AuthorInfo(full_name=p.full_name, role=p.role)
            for p in profiles
            if p.id is not None
        }

    @staticmethod
    def _decorate(
        message: ChatMessage,
        targets: Mapping[int, ChatMessage],
        authors: Mapping[int, AuthorInfo],
    ) -> ChatMessage:
        update: dict = {"author": authors.get(message.author_id)}
        target = targets.get(message.reply_to) if message.reply_to is not None else None
        if target is not None:
            quote = target.quote()
            quote.author = authors.get(target.author_id)
            update["reply_message"] = quote
        return message.model_copy(update=update)
