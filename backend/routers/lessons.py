from datetime import datetime

from fastapi import APIRouter, Depends, Query, status
from pydantic import BaseModel, Field

from backend.core.auth import get_actor
from backend.services.realtime import ChatServices, get_services
from chatsync.capabilities import Actor
from chatsync.lesson_state import lesson_to_dict

router = APIRouter(prefix="/api/lessons", tags=["lessons"])


class ScheduleLessonRequest(BaseModel):
    topic: str = Field(min_length=1, max_length=200)
    scheduled_at: datetime


@router.get("/")
async def list_lessons(
    actor: Actor = Depends(get_actor),  # noqa: ARG001
    services: ChatServices = Depends(get_services),
) -> list[dict]:
    return await services.lessons.list_lessons()


@router.post("/", status_code=status.HTTP_201_CREATED)
async def schedule_lesson(
    body: ScheduleLessonRequest,
    actor: Actor = Depends(get_actor),
    services: ChatServices = Depends(get_services),
) -> dict:
    lesson = await services.lessons.schedule(actor, body.topic, body.scheduled_at)
    return lesson_to_dict(lesson)


@router.get("/archive/")
async def lesson_archive(
    search: str | None = Query(None, max_length=200),
    actor: Actor = Depends(get_actor),  # noqa: ARG001
    services: ChatServices = Depends(get_services),
) -> list[dict]:
    return await services.lessons.archive(search)


@router.get("/state/")
async def lesson_state(
    archive_lesson_id: int | None = None,
    actor: Actor = Depends(get_actor),  # noqa: ARG001
    services: ChatServices = Depends(get_services),
) -> dict:
    state = await services.resolver.resolve(
        is_archive_view=archive_lesson_id is not None,
        archive_lesson_id=archive_lesson_id,
    )
    return state.to_dict()


@router.post("/{lesson_id}/start/")
async def start_lesson(
    lesson_id: int,
    actor: Actor = Depends(get_actor),
    services: ChatServices = Depends(get_services),
) -> dict:
    return lesson_to_dict(await services.lessons.start(actor, lesson_id))


@router.post("/{lesson_id}/end/")
async def end_lesson(
    lesson_id: int,
    actor: Actor = Depends(get_actor),
    services: ChatServices = Depends(get_services),
) -> dict:
    return lesson_to_dict(await services.lessons.end(actor, lesson_id))


@router.delete("/{lesson_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_lesson(
    lesson_id: int,
    actor: Actor = Depends(get_actor),
    services: ChatServices = Depends(get_services),
) -> None:
    await services.lessons.delete(actor, lesson_id)
