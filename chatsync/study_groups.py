"""Study-group lazy creation.

Look up by (type, name), insert if absent. Two first joiners racing can both
miss the look-up and insert; the duplicate is tolerated, and every later
look-up settles on the oldest row so both converge on one group.
"""

from __future__ import annotations

import logging

from sqlmodel import col

from backend.models.profile import Profile
from backend.models.study_group import StudyGroup
from chatsync.backbone import Backbone
from chatsync.errors import InvalidInput

logger = logging.getLogger(__name__)

GROUP_TYPES = ("school", "course")
UNLISTED_SCHOOL = "Other / Not Listed"


def _name_column(group_type: str):  # type: ignore[no-untyped-def]
    return StudyGroup.school_name if group_type == "school" else StudyGroup.course_name


async def find_group(backbone: Backbone, group_type: str, name: str) -> StudyGroup | None:
    return await backbone.first(
        StudyGroup,
        StudyGroup.group_type == group_type,
        _name_column(group_type) == name,
        order_by=[col(StudyGroup.id).asc()],
    )


async def ensure_group(backbone: Backbone, group_type: str, name: str) -> StudyGroup:
    if group_type not in GROUP_TYPES:
        raise InvalidInput(f"Unknown group type {group_type!r}")
    name = (name or "").strip()
    if not name or (group_type == "school" and name == UNLISTED_SCHOOL):
        raise InvalidInput("A study group needs a listed school or course name")

    group = await find_group(backbone, group_type, name)
    if group is not None:
        return group
    field = "school_name" if group_type == "school" else "course_name"
    group = await backbone.insert(StudyGroup(group_type=group_type, **{field: name}))
    logger.info("Created %s study group %r (id=%s)", group_type, name, group.id)
    return group


def _profile_keys(profile: Profile) -> list[tuple[str, str]]:
    keys = []
    if profile.school and profile.school != UNLISTED_SCHOOL:
        keys.append(("school", profile.school))
    if profile.course:
        keys.append(("course", profile.course))
    return keys


async def ensure_groups_for_profile(backbone: Backbone, profile: Profile) -> list[StudyGroup]:
    return [await ensure_group(backbone, t, n) for t, n in _profile_keys(profile)]


async def groups_for_profile(backbone: Backbone, profile: Profile) -> list[StudyGroup]:
    groups = []
    for group_type, name in _profile_keys(profile):
        group = await find_group(backbone, group_type, name)
        if group is not None:
            groups.append(group)
    return groups


def group_to_dict(group: StudyGroup) -> dict:
    return {
        "id": group.id,
        "group_type": group.group_type,
        "name": group.name,
        "school_name": group.school_name,
        "course_name": group.course_name,
    }
