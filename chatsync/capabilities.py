"""Role -> capability resolution.

Resolved once per identity; the rest of the core asks ``actor.caps.can_*``
instead of comparing role strings.
"""

from __future__ import annotations

from dataclasses import dataclass

from backend.models.profile import Profile

STAFF_ROLES = frozenset({"ta", "admin"})
ROLES = frozenset({"student", "ta", "admin"})


@dataclass(frozen=True)
class Capabilities:
    role: str
    can_moderate: bool = False
    can_view_all_dms: bool = False
    can_unlock_self: bool = False
    can_manage_lessons: bool = False

    @property
    def is_staff(self) -> bool:
        return self.role in STAFF_ROLES

    @classmethod
    def for_role(cls, role: str) -> Capabilities:
        if role == "admin":
            return cls(
                role=role,
                can_moderate=True,
                can_view_all_dms=True,
                can_unlock_self=True,
                can_manage_lessons=True,
            )
        if role == "ta":
            return cls(role=role, can_moderate=True, can_unlock_self=True, can_manage_lessons=True)
        # Unknown roles get the least privilege
        return cls(role="student")

    def as_dict(self) -> dict[str, bool]:
        return {
            "can_moderate": self.can_moderate,
            "can_view_all_dms": self.can_view_all_dms,
            "can_unlock_self": self.can_unlock_self,
            "can_manage_lessons": self.can_manage_lessons,
        }


@dataclass(frozen=True)
class Actor:
    """The acting identity: a profile snapshot plus its resolved capabilities."""

    profile: Profile
    caps: Capabilities

    @classmethod
    def of(cls, profile: Profile) -> Actor:
        return cls(profile=profile, caps=Capabilities.for_role(profile.role))

    @property
    def id(self) -> int:
        assert self.profile.id is not None  # persisted profiles only
        return self.profile.id
