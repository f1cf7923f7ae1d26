from __future__ import annotations

from dataclasses import replace
from datetime import UTC, datetime
from typing import Protocol
from uuid import UUID

from calsync.models.booking import Booking, BookingStatus


class IdempotencyKeyTakenError(ValueError):
    pass


class BookingRepo(Protocol):
    async def get_by_id(self, booking_id: UUID) -> Booking | None: ...
    async def get_by_external_id(self, external_booking_id: int) -> Booking | None: ...
    async def get_by_idempotency_key(self, key: str) -> Booking | None: ...
    async def add(self, booking: Booking) -> None: ...
    async def mark_confirmed(
        self, booking_id: UUID, external_booking_id: int
    ) -> Booking: ...
    async def mark_failed(self, booking_id: UUID) -> Booking: ...
    async def mark_pending(self, booking_id: UUID) -> Booking: ...
    async def set_status(self, booking_id: UUID, status: BookingStatus) -> Booking: ...


class InMemoryBookingRepo:
    def __init__(self) -> None:
        self._by_id: dict[UUID, Booking] = {}

    async def get_by_id(self, booking_id: UUID) -> Booking | None:
        return self._by_id.get(booking_id)

    async def get_by_external_id(self, external_booking_id: int) -> Booking | None:
        for b in self._by_id.values():
            if b.external_booking_id == external_booking_id:
                return b
        return None

    async def get_by_idempotency_key(self, key: str) -> Booking | None:
        for b in self._by_id.values():
            if b.idempotency_key == key:
                return b
        return None

    async def add(self, booking: Booking) -> None:
        if (
            booking.idempotency_key is not None
            and await self.get_by_idempotency_key(booking.idempotency_key) is not None
        ):
            raise IdempotencyKeyTakenError(booking.idempotency_key)
        self._by_id[booking.id] = booking

    async def mark_confirmed(
        self, booking_id: UUID, external_booking_id: int
    ) -> Booking:
        return self._update(
            booking_id,
            external_booking_id=external_booking_id,
            status=BookingStatus.CONFIRMED,
        )

    async def mark_failed(self, booking_id: UUID) -> Booking:
        return self._update(booking_id, status=BookingStatus.FAILED)

    async def mark_pending(self, booking_id: UUID) -> Booking:
        return self._update(
            booking_id, status=BookingStatus.PENDING, submitted_at=datetime.now(UTC)
        )

    async def set_status(self, booking_id: UUID, status: BookingStatus) -> Booking:
        return self._update(booking_id, status=status)

    def _update(self, booking_id: UUID, **changes: object) -> Booking:
        existing = self._by_id.get(booking_id)
        if existing is None:
            raise KeyError("booking not found")
        updated = replace(existing, **changes)  # type: ignore[arg-type]
        self._by_id[booking_id] = updated
        return updated
