import json
import logging

from cachetools import TTLCache
from fastapi import APIRouter, Depends, Header, HTTPException, Request, status
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlmodel import select
from svix.webhooks import Webhook, WebhookVerificationError

from backend.core.auth import get_current_user
from backend.core.database import get_async_session
from backend.core.settings import settings
from backend.models.profile import Profile
from backend.services.realtime import get_backbone
from chatsync.backbone import Backbone
from chatsync.capabilities import ROLES, Capabilities
from chatsync.study_groups import ensure_groups_for_profile

logger = logging.getLogger(__name__)

router = APIRouter()

# Bounded idempotency cache: max 10,000 IDs, 24-hour TTL.
# For multi-instance deployments, replace with Redis SET with TTL.
_processed_webhook_ids: TTLCache = TTLCache(maxsize=10_000, ttl=86400)

_PROFILE_EVENTS = {"user.created", "user.updated"}


def _primary_email(data: dict) -> str:
    email_addresses: list = data.get("email_addresses", [])
    primary_email_id: str = data.get("primary_email_address_id", "")
    return next(
        (
            e.get("email_address", "")
            for e in email_addresses
            if e.get("id") == primary_email_id
        ),
        email_addresses[0].get("email_address", "") if email_addresses else "",
    )


def _profile_fields(data: dict) -> dict:
    """Profile columns from a Clerk user payload.

    Role comes from ``public_metadata`` (staff-controlled); school and course
    may also come from ``unsafe_metadata`` since the sign-up form sets them.
    """
    public = data.get("public_metadata") or {}
    unsafe = data.get("unsafe_metadata") or {}
    role = public.get("role", "student")
    name = " ".join(p for p in (data.get("first_name"), data.get("last_name")) if p)
    return {
        "email": _primary_email(data),
        "full_name": name or data.get("username") or "User",
        "role": role if role in ROLES else "student",
        "school": public.get("school") or unsafe.get("school") or None,
        "course": public.get("course") or unsafe.get("course") or None,
    }


@router.post("/api/webhooks/clerk/", status_code=200)
async def clerk_webhook(
    request: Request,
    db: AsyncSession = Depends(get_async_session),
    backbone: Backbone = Depends(get_backbone),
    svix_id: str = Header(alias="svix-id"),
    svix_timestamp: str = Header(alias="svix-timestamp"),
    svix_signature: str = Header(alias="svix-signature"),
) -> dict:
    body = await request.body()

    # Verify signature first; the idempotency check comes after so forged
    # svix-id headers cannot poison the deduplication cache.
    wh = Webhook(settings.CLERK_WEBHOOK_SECRET)
    try:
        wh.verify(
            body,
            {
                "svix-id": svix_id,
                "svix-timestamp": svix_timestamp,
                "svix-signature": svix_signature,
            },
        )
    except WebhookVerificationError as err:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Invalid webhook signature",
        ) from err

    if svix_id in _processed_webhook_ids:
        return {"status": "already_processed"}

    try:
        payload = json.loads(body)
    except json.JSONDecodeError as err:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Invalid JSON body",
        ) from err

    event_type = payload.get("type")
    if event_type not in _PROFILE_EVENTS:
        _processed_webhook_ids[svix_id] = True
        return {"status": "ok"}

    data = payload.get("data", {})
    clerk_user_id: str = data.get("id", "")
    fields = _profile_fields(data)
    if not clerk_user_id or not fields["email"]:
        logger.warning(
            "%s webhook missing clerk_user_id or email; skipping. clerk_user_id=%r",
            event_type,
            clerk_user_id,
        )
        _processed_webhook_ids[svix_id] = True
        return {"status": "ok"}

    profile = (
        (await db.execute(select(Profile).where(Profile.clerk_user_id == clerk_user_id)))
        .scalars()
        .first()
    )
    if profile is None:
        profile = Profile(clerk_user_id=clerk_user_id, **fields)
    else:
        for key, value in fields.items():
            setattr(profile, key, value)
    db.add(profile)
    try:
        await db.commit()
    except IntegrityError:
        await db.rollback()
        # A concurrent delivery may have created the row; anything else is a
        # genuine failure and is re-raised so Clerk retries the webhook.
        profile = (
            (await db.execute(select(Profile).where(Profile.clerk_user_id == clerk_user_id)))
            .scalars()
            .first()
        )
        if profile is None:
            raise
        logger.info("%s race: profile already exists for clerk_user_id=%r", event_type, clerk_user_id)
    await db.refresh(profile)

    await ensure_groups_for_profile(backbone, profile)

    _processed_webhook_ids[svix_id] = True
    return {"status": "ok"}


@router.get("/api/auth/me/")
def get_me(current_user: Profile = Depends(get_current_user)) -> dict:
    caps = Capabilities.for_role(current_user.role)
    return {
        "id": current_user.id,
        "clerk_user_id": current_user.clerk_user_id,
        "email": current_user.email,
        "full_name": current_user.full_name,
        "role": caps.role,
        "school": current_user.school,
        "course": current_user.course,
        "is_hand_raised": current_user.is_hand_raised,
        "is_unlocked": current_user.is_unlocked,
        "is_premium": current_user.is_premium,
        "capabilities": caps.as_dict(),
        "created_at": current_user.created_at.isoformat(),
    }
