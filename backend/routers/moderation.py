from fastapi import APIRouter, Depends
from pydantic import BaseModel

from backend.core.auth import get_actor
from backend.models.profile import Profile
from backend.services.realtime import ChatServices, get_services
from chatsync.capabilities import Actor

router = APIRouter(prefix="/api/moderation", tags=["moderation"])


class HandRequest(BaseModel):
    raised: bool


class UnlockRequest(BaseModel):
    unlocked: bool


class LockRequest(BaseModel):
    locked: bool


def _student_dict(profile: Profile) -> dict:
    return {
        "id": profile.id,
        "full_name": profile.full_name,
        "school": profile.school,
        "is_hand_raised": profile.is_hand_raised,
        "is_unlocked": profile.is_unlocked,
    }


@router.post("/hand/")
async def set_hand(
    body: HandRequest,
    actor: Actor = Depends(get_actor),
    services: ChatServices = Depends(get_services),
) -> dict:
    return _student_dict(await services.moderation.set_hand_raised(actor, body.raised))


@router.get("/hands/")
async def raised_hands(
    actor: Actor = Depends(get_actor),
    services: ChatServices = Depends(get_services),
) -> list[dict]:
    return [_student_dict(p) for p in await services.moderation.raised_hands(actor)]


@router.post("/students/{student_id}/unlock/")
async def set_unlocked(
    student_id: int,
    body: UnlockRequest,
    actor: Actor = Depends(get_actor),
    services: ChatServices = Depends(get_services),
) -> dict:
    profile = await services.moderation.set_student_unlocked(actor, student_id, body.unlocked)
    return _student_dict(profile)


@router.post("/lock/")
async def set_global_lock(
    body: LockRequest,
    actor: Actor = Depends(get_actor),
    services: ChatServices = Depends(get_services),
) -> dict:
    return {"locked": await services.moderation.set_global_lock(actor, body.locked)}


@router.post("/unlocks/reset/")
async def reset_unlocks(
    actor: Actor = Depends(get_actor),
    services: ChatServices = Depends(get_services),
) -> dict:
    return {"reset": await services.moderation.reset_unlocks(actor)}
