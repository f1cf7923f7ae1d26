from __future__ import annotations

from dataclasses import replace
from typing import Protocol
from uuid import UUID

from calsync.models.organization import Organization


class SlugTakenError(ValueError):
    """The registry's own uniqueness guarantee on slug was violated."""


class OrgRepo(Protocol):
    async def get_by_id(self, org_id: UUID) -> Organization | None: ...
    async def get_by_slug(self, slug: str) -> Organization | None: ...
    async def add(self, org: Organization) -> None: ...
    async def set_tenant(self, org_id: UUID, tenant_id: str | None) -> Organization: ...
    async def set_external_team(
        self, org_id: UUID, external_team_id: int | None
    ) -> Organization: ...
    async def mark_active(self, org_id: UUID) -> Organization: ...


class InMemoryOrgRepo:
    def __init__(self) -> None:
        self._by_id: dict[UUID, Organization] = {}
        self._by_slug: dict[str, UUID] = {}

    async def get_by_id(self, org_id: UUID) -> Organization | None:
        return self._by_id.get(org_id)

    async def get_by_slug(self, slug: str) -> Organization | None:
        org_id = self._by_slug.get(slug)
        return self._by_id.get(org_id) if org_id is not None else None

    async def add(self, org: Organization) -> None:
        if org.slug in self._by_slug:
            raise SlugTakenError(org.slug)
        self._by_id[org.id] = org
        self._by_slug[org.slug] = org.id

    async def set_tenant(self, org_id: UUID, tenant_id: str | None) -> Organization:
        return self._update(org_id, tenant_id=tenant_id)

    async def set_external_team(
        self, org_id: UUID, external_team_id: int | None
    ) -> Organization:
        # Clearing the team id also drops the org back to pending
        if external_team_id is None:
            return self._update(org_id, external_team_id=None, status="pending")
        return self._update(org_id, external_team_id=external_team_id)

    async def mark_active(self, org_id: UUID) -> Organization:
        return self._update(org_id, status="active")

    def _update(self, org_id: UUID, **changes: object) -> Organization:
        existing = self._by_id.get(org_id)
        if existing is None:
            raise KeyError("organization not found")
        updated = replace(existing, **changes)  # type: ignore[arg-type]
        self._by_id[org_id] = updated
        return updated
