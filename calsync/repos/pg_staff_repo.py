"""PostgreSQL implementation of StaffRepo."""

from __future__ import annotations

from uuid import UUID

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from calsync.db.tables import StaffRow
from calsync.models.organization import Staff
from calsync.repos.staff_repo import StaffExistsError, check_relink


class PgStaffRepo:
    """Satisfies the StaffRepo Protocol using PostgreSQL via SQLAlchemy."""

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def get_by_id(self, staff_id: UUID) -> Staff | None:
        stmt = select(StaffRow).where(StaffRow.id == staff_id)
        row = (await self._session.execute(stmt)).scalar_one_or_none()
        if row is None:
            return None
        return _row_to_staff(row)

    async def get_by_email(self, org_id: UUID, email: str) -> Staff | None:
        stmt = select(StaffRow).where(
            StaffRow.org_id == org_id, StaffRow.email == email
        )
        row = (await self._session.execute(stmt)).scalar_one_or_none()
        if row is None:
            return None
        return _row_to_staff(row)

    async def add(self, staff: Staff) -> None:
        row = StaffRow(
            id=staff.id,
            org_id=staff.org_id,
            email=staff.email,
            display_name=staff.display_name,
            role=staff.role,
            external_user_id=staff.external_user_id,
            external_event_type_id=staff.external_event_type_id,
        )
        self._session.add(row)
        try:
            await self._session.commit()
        except IntegrityError:
            await self._session.rollback()
            raise StaffExistsError("email already exists in organization") from None

    async def link_external(
        self,
        staff_id: UUID,
        external_user_id: int,
        event_type_id: int | None = None,
    ) -> Staff:
        existing = await self.get_by_id(staff_id)
        if existing is None:
            raise KeyError("staff not found")
        check_relink(existing, external_user_id)

        values: dict[str, object] = {"external_user_id": external_user_id}
        if event_type_id is not None:
            values["external_event_type_id"] = event_type_id
        # Guard in SQL as well: never overwrite a different linked id
        stmt = (
            update(StaffRow)
            .where(
                StaffRow.id == staff_id,
                (StaffRow.external_user_id.is_(None))
                | (StaffRow.external_user_id == external_user_id),
            )
            .values(**values)
        )
        await self._session.execute(stmt)
        await self._session.commit()
        updated = await self.get_by_id(staff_id)
        if updated is None:
            raise KeyError("staff not found")
        check_relink(updated, external_user_id)
        return updated

    async def list_by_org(self, org_id: UUID) -> list[Staff]:
        stmt = select(StaffRow).where(StaffRow.org_id == org_id)
        rows = (await self._session.execute(stmt)).scalars().all()
        return [_row_to_staff(r) for r in rows]


def _row_to_staff(row: StaffRow) -> Staff:
    return Staff(
        id=row.id,
        org_id=row.org_id,
        email=row.email,
        display_name=row.display_name or "",
        role=row.role,
        external_user_id=row.external_user_id,
        external_event_type_id=row.external_event_type_id,
    )
