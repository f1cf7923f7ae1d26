"""Shapes returned by the external scheduling platform.

These are never stored locally: the platform is their source of truth.
Local rows only keep the integer ids.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum


class MembershipRole(str, Enum):
    OWNER = "OWNER"
    ADMIN = "ADMIN"
    MEMBER = "MEMBER"

    @classmethod
    def from_staff_role(cls, role: str) -> MembershipRole:
        return cls.ADMIN if role == "admin" else cls.MEMBER


@dataclass(frozen=True, slots=True)
class ExternalTeam:
    id: int
    name: str
    slug: str


@dataclass(frozen=True, slots=True)
class ExternalUser:
    id: int
    email: str
    username: str = ""


@dataclass(frozen=True, slots=True)
class ExternalMembership:
    id: int
    team_id: int
    user_id: int
    role: MembershipRole
    accepted: bool = True


@dataclass(frozen=True, slots=True)
class ExternalBookingResult:
    id: int
    status: str
