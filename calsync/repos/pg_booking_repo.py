"""PostgreSQL implementation of BookingRepo."""

from __future__ import annotations

from datetime import UTC, datetime
from uuid import UUID

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from calsync.db.tables import BookingRow
from calsync.models.booking import Booking, BookingStatus
from calsync.repos.booking_repo import IdempotencyKeyTakenError


class PgBookingRepo:
    """Satisfies the BookingRepo Protocol using PostgreSQL via SQLAlchemy."""

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def get_by_id(self, booking_id: UUID) -> Booking | None:
        return await self._one(select(BookingRow).where(BookingRow.id == booking_id))

    async def get_by_external_id(self, external_booking_id: int) -> Booking | None:
        return await self._one(
            select(BookingRow).where(
                BookingRow.external_booking_id == external_booking_id
            )
        )

    async def get_by_idempotency_key(self, key: str) -> Booking | None:
        return await self._one(
            select(BookingRow).where(BookingRow.idempotency_key == key)
        )

    async def add(self, booking: Booking) -> None:
        row = BookingRow(
            id=booking.id,
            expert_staff_id=booking.expert_staff_id,
            start=booking.start,
            end=booking.end,
            attendee_email=booking.attendee_email,
            attendee_name=booking.attendee_name,
            status=booking.status.value,
            external_booking_id=booking.external_booking_id,
            idempotency_key=booking.idempotency_key,
            submitted_at=booking.submitted_at,
        )
        self._session.add(row)
        try:
            await self._session.commit()
        except IntegrityError:
            await self._session.rollback()
            raise IdempotencyKeyTakenError(booking.idempotency_key) from None

    async def mark_confirmed(
        self, booking_id: UUID, external_booking_id: int
    ) -> Booking:
        return await self._update(
            booking_id,
            external_booking_id=external_booking_id,
            status=BookingStatus.CONFIRMED.value,
        )

    async def mark_failed(self, booking_id: UUID) -> Booking:
        return await self._update(booking_id, status=BookingStatus.FAILED.value)

    async def mark_pending(self, booking_id: UUID) -> Booking:
        return await self._update(
            booking_id,
            status=BookingStatus.PENDING.value,
            submitted_at=datetime.now(UTC),
        )

    async def set_status(self, booking_id: UUID, status: BookingStatus) -> Booking:
        return await self._update(booking_id, status=status.value)

    async def _one(self, stmt) -> Booking | None:
        row = (await self._session.execute(stmt)).scalar_one_or_none()
        if row is None:
            return None
        return _row_to_booking(row)

    async def _update(self, booking_id: UUID, **values: object) -> Booking:
        stmt = update(BookingRow).where(BookingRow.id == booking_id).values(**values)
        await self._session.execute(stmt)
        await self._session.commit()
        booking = await self.get_by_id(booking_id)
        if booking is None:
            raise KeyError("booking not found")
        return booking


def _row_to_booking(row: BookingRow) -> Booking:
    return Booking(
        id=row.id,
        expert_staff_id=row.expert_staff_id,
        start=row.start,
        end=row.end,
        attendee_email=row.attendee_email,
        attendee_name=row.attendee_name or "",
        status=BookingStatus(row.status),
        external_booking_id=row.external_booking_id,
        idempotency_key=row.idempotency_key,
        submitted_at=row.submitted_at,
    )
