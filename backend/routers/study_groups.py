from fastapi import APIRouter, Depends
from pydantic import BaseModel

from backend.core.auth import get_actor
from backend.services.realtime import get_backbone
from chatsync.backbone import Backbone
from chatsync.capabilities import Actor
from chatsync.study_groups import (
    ensure_group,
    ensure_groups_for_profile,
    group_to_dict,
    groups_for_profile,
)

router = APIRouter(prefix="/api/study-groups", tags=["study-groups"])


class EnsureGroupRequest(BaseModel):
    group_type: str | None = None
    name: str | None = None


@router.post("/ensure/")
async def ensure_study_groups(
    body: EnsureGroupRequest | None = None,
    actor: Actor = Depends(get_actor),
    backbone: Backbone = Depends(get_backbone),
) -> list[dict]:
    """Ensure one named group, or (with no body) the caller's school and course groups."""
    if body is not None and body.group_type and body.name:
        groups = [await ensure_group(backbone, body.group_type, body.name)]
    else:
        groups = await ensure_groups_for_profile(backbone, actor.profile)
    return [group_to_dict(g) for g in groups]


@router.get("/mine/")
async def my_study_groups(
    actor: Actor = Depends(get_actor),
    backbone: Backbone = Depends(get_backbone),
) -> list[dict]:
    return [group_to_dict(g) for g in await groups_for_profile(backbone, actor.profile)]
