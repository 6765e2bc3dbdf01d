"""Room WebSocket: one synchronizer per connection.

Frames sent to the client::

    {"type": "history", "room": {...}, "messages": [...]}
    {"type": "insert" | "update", "message": {...}, "index": n}
    {"type": "delete", "id": n}
    {"type": "lesson_state", "state": {...}}          # class rooms only
    {"type": "ack", "action": ..., "id": n}
    {"type": "error", "detail": "..."}

Frames accepted from the client carry an ``action``: ``send``, ``edit``,
``delete`` or ``mark_read``. A sent message comes back to its author through
the same change feed as everyone else's, so the ack only carries the id.
"""

import asyncio
import contextlib
import json
import logging

from fastapi import APIRouter, Depends, Query, WebSocket, WebSocketDisconnect, status

from backend.core.auth import get_ws_user
from backend.models.profile import Profile
from backend.services.media import serialize_message, serialize_messages
from backend.services.realtime import ChatServices, get_services
from chatsync.capabilities import Actor
from chatsync.errors import ChatSyncError, TransientReadFailure
from chatsync.lesson_state import LessonStatePoller
from chatsync.rooms import ClassRoom, DirectRoom, Room, authorize, room_for
from chatsync.synchronizer import LogChange, RoomSynchronizer
from chatsync.utils import utcnow

logger = logging.getLogger(__name__)

router = APIRouter(tags=["live"])


@router.websocket("/ws/rooms/{kind}/{key}")
async def room_socket(
    websocket: WebSocket,
    kind: str,
    key: str,
    archive: bool = Query(False),
    profile: Profile = Depends(get_ws_user),
    services: ChatServices = Depends(get_services),
) -> None:
    actor = Actor.of(profile)
    try:
        room = room_for(kind, key, actor.id, utcnow().date())
        await authorize(services.backbone, room, actor)
    except ChatSyncError as err:
        await websocket.close(code=status.WS_1008_POLICY_VIOLATION, reason=str(err))
        return
    await websocket.accept()

    sync = services.synchronizer()
    poller: LessonStatePoller | None = None
    if isinstance(room, ClassRoom):
        archive_id = room.lesson_id if archive and room.lesson_id is not None else None
        poller = services.poller(archive_lesson_id=archive_id)

    try:
        try:
            history = await sync.open(room)
        except TransientReadFailure as exc:
            # Stay connected; live changes still arrive.
            logger.warning("History load failed for %s: %s", room.channel_id, exc)
            history = []
        await websocket.send_json(
            {
                "type": "history",
                "room": room.describe(),
                "messages": await serialize_messages(history),
            }
        )
        if poller is not None:
            # Queues the initial state; _forward_lesson_state sends it.
            await poller.start()
        if isinstance(room, DirectRoom):
            await services.dispatcher.mark_read(room, actor)

        tasks = [
            asyncio.create_task(_forward_changes(websocket, sync, room, actor, services)),
            asyncio.create_task(_receive_actions(websocket, room, actor, services, poller)),
        ]
        if poller is not None:
            tasks.append(asyncio.create_task(_forward_lesson_state(websocket, poller)))
        done, pending = await asyncio.wait(tasks, return_when=asyncio.FIRST_COMPLETED)
        for task in pending:
            task.cancel()
        for task in pending:
            with contextlib.suppress(asyncio.CancelledError):
                await task
        for task in done:
            exc = task.exception()
            if exc is not None and not isinstance(exc, WebSocketDisconnect):
                raise exc
    except WebSocketDisconnect:
        pass
    finally:
        if poller is not None:
            await poller.stop()
        await sync.close()
        logger.debug("Closed socket for %s (profile %s)", room.channel_id, actor.id)


def _change_frame(change: LogChange, message: dict | None) -> dict:
    if change.type == "DELETE":
        return {"type": "delete", "id": change.message_id}
    return {"type": change.type.lower(), "message": message, "index": change.index}


async def _forward_changes(
    websocket: WebSocket,
    sync: RoomSynchronizer,
    room: Room,
    actor: Actor,
    services: ChatServices,
) -> None:
    async for change in sync.changes():
        message = await serialize_message(change.message) if change.message is not None else None
        await websocket.send_json(_change_frame(change, message))
        if (
            change.type == "INSERT"
            and isinstance(room, DirectRoom)
            and change.message is not None
            and change.message.author_id != actor.id
        ):
            # The reader has the room open, so the new message is read on arrival.
            await services.dispatcher.mark_read(room, actor, change.message_id)


async def _forward_lesson_state(websocket: WebSocket, poller: LessonStatePoller) -> None:
    async for state in poller.changes():
        await websocket.send_json({"type": "lesson_state", "state": state.to_dict()})


async def _receive_actions(
    websocket: WebSocket,
    room: Room,
    actor: Actor,
    services: ChatServices,
    poller: LessonStatePoller | None,
) -> None:
    dispatcher = services.dispatcher
    while True:
        raw = await websocket.receive_text()
        try:
            data = json.loads(raw)
            if not isinstance(data, dict):
                raise TypeError("action frames are JSON objects")
            action = data.get("action")
            if action == "send":
                message = await dispatcher.send(
                    room,
                    actor,
                    data.get("content", ""),
                    kind=data.get("kind", "text"),
                    media_ref=data.get("media_ref"),
                    reply_to=data.get("reply_to"),
                    lesson_state=poller.state if poller is not None else None,
                )
                await websocket.send_json({"type": "ack", "action": action, "id": message.id})
            elif action == "edit":
                message = await dispatcher.edit(room, actor, int(data["id"]), data.get("content", ""))
                await websocket.send_json({"type": "ack", "action": action, "id": message.id})
            elif action == "delete":
                await dispatcher.delete(room, actor, int(data["id"]))
                await websocket.send_json({"type": "ack", "action": action, "id": int(data["id"])})
            elif action == "mark_read" and isinstance(room, DirectRoom):
                updated = await dispatcher.mark_read(room, actor, data.get("id"))
                await websocket.send_json({"type": "ack", "action": action, "updated": updated})
            else:
                await websocket.send_json({"type": "error", "detail": f"Unknown action {action!r}"})
        except ChatSyncError as err:
            await websocket.send_json({"type": "error", "detail": str(err)})
        except (KeyError, TypeError, ValueError):
            await websocket.send_json({"type": "error", "detail": "Malformed action"})
