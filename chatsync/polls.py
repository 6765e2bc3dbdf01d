"""Class polls: a staff-created question announced as a ``poll`` message."""

from __future__ import annotations

import logging
from typing import Any

from backend.models.poll import Poll, PollVote
from chatsync.backbone import Backbone
from chatsync.capabilities import Actor
from chatsync.dispatch import MessageDispatcher
from chatsync.errors import (
    ChatSyncError,
    InvalidInput,
    InvalidTransition,
    NotFound,
    NotPermitted,
    WriteRejected,
)
from chatsync.lesson_state import LessonState
from chatsync.messages import ChatMessage
from chatsync.rooms import ClassRoom

logger = logging.getLogger(__name__)

MAX_OPTIONS = 10


class PollService:
    def __init__(self, backbone: Backbone, dispatcher: MessageDispatcher) -> None:
        self.backbone = backbone
        self.dispatcher = dispatcher

    async def _get(self, poll_id: int) -> Poll:
        poll = await self.backbone.get(Poll, poll_id)
        if poll is None:
            raise NotFound("Poll not found")
        return poll

    async def create(
        self,
        actor: Actor,
        room: ClassRoom,
        question: str,
        options: list[str],
        *,
        lesson_state: LessonState | None = None,
    ) -> tuple[Poll, ChatMessage]:
        if not actor.caps.can_moderate:
            raise NotPermitted("Only staff can create polls")
        question = (question or "").strip()
        options = [o.strip() for o in options if o and o.strip()]
        if not question:
            raise InvalidInput("A poll needs a question")
        if not 2 <= len(options) <= MAX_OPTIONS:
            raise InvalidInput(f"A poll needs between 2 and {MAX_OPTIONS} options")

        await self.dispatcher.check_writable(room, actor, lesson_state=lesson_state)
        poll = await self.backbone.insert(
            Poll(lesson_id=room.lesson_id, question=question, options=options, created_by=actor.id)
        )
        try:
            message = await self.dispatcher.announce_poll(
                room, actor, poll.id, lesson_state=lesson_state
            )
        except ChatSyncError:
            # The room closed between the check and the announcement
            await self.backbone.delete(Poll, Poll.id == poll.id)
            raise
        logger.info("Poll %s opened in %s by %s", poll.id, room.channel_id, actor.id)
        return poll, message

    async def vote(self, actor: Actor, poll_id: int, option_index: int) -> PollVote:
        poll = await self._get(poll_id)
        if poll.is_closed:
            raise InvalidTransition("This poll is closed")
        if not 0 <= option_index < len(poll.options):
            raise InvalidInput("No such option")
        existing = await self.backbone.first(
            PollVote, PollVote.poll_id == poll_id, PollVote.user_id == actor.id
        )
        if existing is not None:
            raise InvalidTransition("You have already voted")
        try:
            return await self.backbone.insert(
                PollVote(poll_id=poll_id, user_id=actor.id, option_index=option_index)
            )
        except WriteRejected as err:
            # Unique (poll_id, user_id) caught a concurrent double vote
            raise InvalidTransition("You have already voted") from err

    async def close(self, actor: Actor, poll_id: int) -> Poll:
        if not actor.caps.can_moderate:
            raise NotPermitted("Only staff can close polls")
        await self._get(poll_id)
        rows = await self.backbone.update(Poll, Poll.id == poll_id, patch={"is_closed": True})
        logger.info("Poll %s closed by %s", poll_id, actor.id)
        return rows[0]

    async def results(self, poll_id: int, viewer_id: int) -> dict[str, Any]:
        poll = await self._get(poll_id)
        votes = await self.backbone.query(PollVote, PollVote.poll_id == poll_id)
        total = len(votes)
        counts = [0] * len(poll.options)
        my_vote = None
        for vote in votes:
            if 0 <= vote.option_index < len(counts):
                counts[vote.option_index] += 1
            if vote.user_id == viewer_id:
                my_vote = vote.option_index
        return {
            "id": poll.id,
            "question": poll.question,
            "is_closed": poll.is_closed,
            "total_votes": total,
            "my_vote": my_vote,
            "options": [
                {
                    "index": i,
                    "text": option,
                    "votes": counts[i],
                    "percentage": round(counts[i] * 100 / total) if total else 0,
                }
                for i, option in enumerate(poll.options)
            ],
        }
