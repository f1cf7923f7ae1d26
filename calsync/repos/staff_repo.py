from __future__ import annotations

from dataclasses import replace
from typing import Protocol
from uuid import UUID

from calsync.models.organization import Staff


class StaffExistsError(ValueError):
    pass


class ExternalIdentityConflict(ValueError):
    """Attempt to relink a staff record to a different external account."""


class StaffRepo(Protocol):
    async def get_by_id(self, staff_id: UUID) -> Staff | None: ...
    async def get_by_email(self, org_id: UUID, email: str) -> Staff | None: ...
    async def add(self, staff: Staff) -> None: ...
    async def link_external(
        self,
        staff_id: UUID,
        external_user_id: int,
        event_type_id: int | None = None,
    ) -> Staff: ...
    async def list_by_org(self, org_id: UUID) -> list[Staff]: ...


def check_relink(existing: Staff, external_user_id: int) -> None:
    if (
        existing.external_user_id is not None
        and existing.external_user_id != external_user_id
    ):
        raise ExternalIdentityConflict(
            f"staff {existing.id} is linked to external user "
            f"{existing.external_user_id}, refusing {external_user_id}"
        )


class InMemoryStaffRepo:
    def __init__(self) -> None:
        self._by_id: dict[UUID, Staff] = {}

    async def get_by_id(self, staff_id: UUID) -> Staff | None:
        return self._by_id.get(staff_id)

    async def get_by_email(self, org_id: UUID, email: str) -> Staff | None:
        for s in self._by_id.values():
            if s.org_id == org_id and s.email == email:
                return s
        return None

    async def add(self, staff: Staff) -> None:
        if await self.get_by_email(staff.org_id, staff.email) is not None:
            raise StaffExistsError("email already exists in organization")
        self._by_id[staff.id] = staff

    async def link_external(
        self,
        staff_id: UUID,
        external_user_id: int,
        event_type_id: int | None = None,
    ) -> Staff:
        s = self._by_id.get(staff_id)
        if s is None:
            raise KeyError("staff not found")
        check_relink(s, external_user_id)

        updated = replace(
            s,
            external_user_id=external_user_id,
            external_event_type_id=(
                event_type_id if event_type_id is not None else s.external_event_type_id
            ),
        )
        self._by_id[staff_id] = updated
        return updated

    async def list_by_org(self, org_id: UUID) -> list[Staff]:
        return [s for s in self._by_id.values() if s.org_id == org_id]
