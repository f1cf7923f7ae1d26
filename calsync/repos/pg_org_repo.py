"""PostgreSQL implementation of OrgRepo.

Every write commits immediately.  Provisioning spans two systems, so a
step that succeeded must stay recorded even if a later step (or the
HTTP request around it) fails; the saga's compensations undo it
explicitly instead of relying on a transaction rollback.
"""

from __future__ import annotations

from uuid import UUID

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from calsync.db.tables import OrganizationRow
from calsync.models.organization import Organization
from calsync.repos.org_repo import SlugTakenError


class PgOrgRepo:
    """Satisfies the OrgRepo Protocol using PostgreSQL via SQLAlchemy."""

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def get_by_id(self, org_id: UUID) -> Organization | None:
        stmt = select(OrganizationRow).where(OrganizationRow.id == org_id)
        row = (await self._session.execute(stmt)).scalar_one_or_none()
        if row is None:
            return None
        return _row_to_org(row)

    async def get_by_slug(self, slug: str) -> Organization | None:
        stmt = select(OrganizationRow).where(OrganizationRow.slug == slug)
        row = (await self._session.execute(stmt)).scalar_one_or_none()
        if row is None:
            return None
        return _row_to_org(row)

    async def add(self, org: Organization) -> None:
        row = OrganizationRow(
            id=org.id,
            name=org.name,
            slug=org.slug,
            external_team_id=org.external_team_id,
            tenant_id=org.tenant_id,
            status=org.status,
        )
        self._session.add(row)
        try:
            await self._session.commit()
        except IntegrityError:
            await self._session.rollback()
            raise SlugTakenError(org.slug) from None

    async def set_tenant(self, org_id: UUID, tenant_id: str | None) -> Organization:
        return await self._update(org_id, tenant_id=tenant_id)

    async def set_external_team(
        self, org_id: UUID, external_team_id: int | None
    ) -> Organization:
        if external_team_id is None:
            return await self._update(
                org_id, external_team_id=None, status="pending"
            )
        return await self._update(org_id, external_team_id=external_team_id)

    async def mark_active(self, org_id: UUID) -> Organization:
        return await self._update(org_id, status="active")

    async def _update(self, org_id: UUID, **values: object) -> Organization:
        stmt = update(OrganizationRow).where(OrganizationRow.id == org_id).values(**values)
        await self._session.execute(stmt)
        await self._session.commit()
        org = await self.get_by_id(org_id)
        if org is None:
            raise KeyError("organization not found")
        return org


def _row_to_org(row: OrganizationRow) -> Organization:
    return Organization(
        id=row.id,
        name=row.name,
        slug=row.slug,
        external_team_id=row.external_team_id,
        tenant_id=row.tenant_id,
        status=row.status,
    )
