from fastapi import APIRouter, Depends, status
from pydantic import BaseModel, Field

from backend.core.auth import get_actor
from backend.services.media import serialize_message
from backend.services.realtime import ChatServices, get_services
from chatsync.capabilities import Actor
from chatsync.rooms import ClassRoom, room_for
from chatsync.utils import utcnow

router = APIRouter(prefix="/api/polls", tags=["polls"])


class CreatePollRequest(BaseModel):
    room_key: str = "today"  # class room key: lesson id, "today" or a date
    question: str = Field(min_length=1, max_length=500)
    options: list[str] = Field(min_length=2)


class VoteRequest(BaseModel):
    option_index: int = Field(ge=0)


@router.post("/", status_code=status.HTTP_201_CREATED)
async def create_poll(
    body: CreatePollRequest,
    actor: Actor = Depends(get_actor),
    services: ChatServices = Depends(get_services),
) -> dict:
    room = room_for("class", body.room_key, actor.id, utcnow().date())
    assert isinstance(room, ClassRoom)
    poll, message = await services.polls.create(actor, room, body.question, body.options)
    assert poll.id is not None
    return {
        "poll": await services.polls.results(poll.id, actor.id),
        "message": await serialize_message(message),
    }


@router.get("/{poll_id}/")
async def get_poll(
    poll_id: int,
    actor: Actor = Depends(get_actor),
    services: ChatServices = Depends(get_services),
) -> dict:
    return await services.polls.results(poll_id, actor.id)


@router.post("/{poll_id}/votes/", status_code=status.HTTP_201_CREATED)
async def vote(
    poll_id: int,
    body: VoteRequest,
    actor: Actor = Depends(get_actor),
    services: ChatServices = Depends(get_services),
) -> dict:
    await services.polls.vote(actor, poll_id, body.option_index)
    return await services.polls.results(poll_id, actor.id)


@router.post("/{poll_id}/close/")
async def close_poll(
    poll_id: int,
    actor: Actor = Depends(get_actor),
    services: ChatServices = Depends(get_services),
) -> dict:
    await services.polls.close(actor, poll_id)
    return await services.polls.results(poll_id, actor.id)
