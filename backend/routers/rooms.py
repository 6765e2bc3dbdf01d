from fastapi import APIRouter, Depends, status
from pydantic import BaseModel, Field

from backend.core.auth import get_actor
from backend.services.media import serialize_message, serialize_messages
from backend.services.realtime import ChatServices, get_services
from chatsync.capabilities import Actor
from chatsync.errors import UnknownRoom
from chatsync.rooms import DirectRoom, Room, authorize, room_for
from chatsync.utils import utcnow

router = APIRouter(prefix="/api/rooms", tags=["rooms"])


# ---------------------------------------------------------------------------
# Room resolution dependency
# ---------------------------------------------------------------------------


def get_room(kind: str, key: str, actor: Actor = Depends(get_actor)) -> Room:
    return room_for(kind, key, actor.id, utcnow().date())


def get_direct_room(key: str, actor: Actor = Depends(get_actor)) -> DirectRoom:
    room = room_for("direct", key, actor.id, utcnow().date())
    if not isinstance(room, DirectRoom):
        raise UnknownRoom(f"Unknown room direct/{key}")
    return room


# ---------------------------------------------------------------------------
# Request schemas
# ---------------------------------------------------------------------------


class SendMessageRequest(BaseModel):
    content: str = Field(default="", max_length=4000)
    kind: str = "text"
    media_ref: str | None = None
    reply_to: int | None = None


class EditMessageRequest(BaseModel):
    content: str = Field(max_length=4000)


class MarkReadRequest(BaseModel):
    message_id: int | None = None


# ---------------------------------------------------------------------------
# Endpoints
# ---------------------------------------------------------------------------


@router.get("/{kind}/{key}/messages/")
async def list_messages(
    room: Room = Depends(get_room),
    actor: Actor = Depends(get_actor),
    services: ChatServices = Depends(get_services),
) -> dict:
    await authorize(services.backbone, room, actor)
    history = await services.synchronizer().fetch_history(room)
    messages = await services.linker.enrich(room, history)
    return {"room": room.describe(), "messages": await serialize_messages(messages)}


@router.post("/{kind}/{key}/messages/", status_code=status.HTTP_201_CREATED)
async def send_message(
    body: SendMessageRequest,
    room: Room = Depends(get_room),
    actor: Actor = Depends(get_actor),
    services: ChatServices = Depends(get_services),
) -> dict:
    message = await services.dispatcher.send(
        room,
        actor,
        body.content,
        kind=body.kind,
        media_ref=body.media_ref,
        reply_to=body.reply_to,
    )
    return await serialize_message(message)


@router.patch("/{kind}/{key}/messages/{message_id}/")
async def edit_message(
    message_id: int,
    body: EditMessageRequest,
    room: Room = Depends(get_room),
    actor: Actor = Depends(get_actor),
    services: ChatServices = Depends(get_services),
) -> dict:
    message = await services.dispatcher.edit(room, actor, message_id, body.content)
    return await serialize_message(message)


@router.delete("/{kind}/{key}/messages/{message_id}/", status_code=status.HTTP_204_NO_CONTENT)
async def delete_message(
    message_id: int,
    room: Room = Depends(get_room),
    actor: Actor = Depends(get_actor),
    services: ChatServices = Depends(get_services),
) -> None:
    await services.dispatcher.delete(room, actor, message_id)


@router.post("/direct/{key}/read/")
async def mark_read(
    body: MarkReadRequest | None = None,
    room: DirectRoom = Depends(get_direct_room),
    actor: Actor = Depends(get_actor),
    services: ChatServices = Depends(get_services),
) -> dict:
    message_id = body.message_id if body is not None else None
    updated = await services.dispatcher.mark_read(room, actor, message_id)
    return {"updated": updated}
