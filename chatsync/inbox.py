"""Direct-message inbox read models."""

from __future__ import annotations

from typing import Any

from sqlalchemy import or_
from sqlmodel import col

from backend.models.chat import DirectMessage
from backend.models.profile import Profile
from chatsync.backbone import Backbone
from chatsync.utils import ensure_utc


async def conversations(
    backbone: Backbone, viewer_id: int, search: str | None = None
) -> list[dict[str, Any]]:
    """One entry per conversation partner, most recent conversation first."""
    dms = await backbone.query(
        DirectMessage,
        or_(DirectMessage.sender_id == viewer_id, DirectMessage.receiver_id == viewer_id),
        order_by=[col(DirectMessage.created_at).desc(), col(DirectMessage.id).desc()],
    )
    latest: dict[int, DirectMessage] = {}
    unread: dict[int, int] = {}
    for dm in dms:
        partner = dm.receiver_id if dm.sender_id == viewer_id else dm.sender_id
        latest.setdefault(partner, dm)  # rows arrive newest first
        if dm.receiver_id == viewer_id and not dm.is_read:
            unread[partner] = unread.get(partner, 0) + 1
    if not latest:
        return []

    profiles = await backbone.query(Profile, col(Profile.id).in_(list(latest)))
    by_id = {p.id: p for p in profiles}
    needle = (search or "").strip().lower()

    items = []
    for partner, last in latest.items():
        profile = by_id.get(partner)
        full_name = profile.full_name if profile else "Unknown"
        school = profile.school if profile else None
        if needle and needle not in full_name.lower() and needle not in (school or "").lower():
            continue
        items.append(
            {
                "user_id": partner,
                "full_name": full_name,
                "school": school,
                "last_message": last.content,
                "last_message_at": ensure_utc(last.created_at).isoformat(),
                "unread_count": unread.get(partner, 0),
            }
        )
    items.sort(key=lambda item: item["last_message_at"], reverse=True)
    return items


async def unread_count(backbone: Backbone, viewer_id: int) -> int:
    return await backbone.count(
        DirectMessage,
        DirectMessage.receiver_id == viewer_id,
        DirectMessage.is_read == False,  # noqa: E712
    )
