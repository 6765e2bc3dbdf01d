from fastapi import APIRouter, Depends, Query

from backend.core.auth import get_actor
from backend.services.realtime import get_backbone
from chatsync import inbox
from chatsync.backbone import Backbone
from chatsync.capabilities import Actor

router = APIRouter(prefix="/api/inbox", tags=["inbox"])


@router.get("/")
async def list_conversations(
    search: str | None = Query(None, max_length=200),
    actor: Actor = Depends(get_actor),
    backbone: Backbone = Depends(get_backbone),
) -> list[dict]:
    return await inbox.conversations(backbone, actor.id, search)


@router.get("/unread-count/")
async def unread_count(
    actor: Actor = Depends(get_actor),
    backbone: Backbone = Depends(get_backbone),
) -> dict:
    return {"unread": await inbox.unread_count(backbone, actor.id)}
