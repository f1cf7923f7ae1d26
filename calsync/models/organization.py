from __future__ import annotations

import re
from dataclasses import dataclass
from uuid import UUID, uuid4

_SLUG_RE = re.compile(r"^[a-z0-9]+(?:-[a-z0-9]+)*$")

STAFF_ROLES = ("member", "admin")


@dataclass(frozen=True, slots=True)
class Organization:
    """Local organization and its link into the external platform.

    Only an "active" organization has finished provisioning.  A pending
    row is an attempt in progress or one that failed; it may already
    carry an external_team_id (set at step 4, or left behind by a failed
    compensation) and must still never be offered for scheduling.
    """

    id: UUID
    name: str
    slug: str
    external_team_id: int | None = None
    tenant_id: str | None = None
    status: str = "pending"  # pending|active

    @staticmethod
    def new(*, name: str, slug: str) -> Organization:
        return Organization(id=uuid4(), name=name, slug=slug)

    @property
    def is_schedulable(self) -> bool:
        return self.status == "active" and self.external_team_id is not None


@dataclass(frozen=True, slots=True)
class OrganizationDraft:
    name: str
    slug: str

    def __post_init__(self) -> None:
        name = self.name.strip()
        slug = self.slug.strip().lower()
        if not name:
            raise ValueError("organization name must be non-empty")
        if not _SLUG_RE.match(slug):
            raise ValueError(f"invalid slug {self.slug!r}")
        # frozen dataclass: normalize via object.__setattr__
        object.__setattr__(self, "name", name)
        object.__setattr__(self, "slug", slug)


@dataclass(frozen=True, slots=True)
class Staff:
    id: UUID
    org_id: UUID
    email: str
    display_name: str = ""
    role: str = "member"  # member|admin
    external_user_id: int | None = None
    external_event_type_id: int | None = None

    @staticmethod
    def new(
        *, org_id: UUID, email: str, display_name: str = "", role: str = "member"
    ) -> Staff:
        return Staff(
            id=uuid4(),
            org_id=org_id,
            email=email,
            display_name=display_name,
            role=role,
        )


@dataclass(frozen=True, slots=True)
class StaffDraft:
    email: str
    display_name: str = ""
    role: str = "member"
    event_type_id: int | None = None

    def __post_init__(self) -> None:
        email = normalize_email(self.email)
        if self.role not in STAFF_ROLES:
            raise ValueError(f"staff role must be one of {STAFF_ROLES} (got {self.role!r})")
        object.__setattr__(self, "email", email)
        object.__setattr__(self, "display_name", self.display_name.strip())


def normalize_email(email: str) -> str:
    email = email.strip().lower()
    if not email:
        raise ValueError("email must be non-empty")
    if email.count("@") != 1 or email.startswith("@") or email.endswith("@"):
        raise ValueError(f"invalid email {email!r}")
    return email
