"""Availability and bookings against the external platform.

SYNCHRONOUS PATH
-----------------
  list_availability  read-only passthrough of the platform's slots.
  create_booking     pending row → platform call → one write of
                     (external_booking_id, confirmed), or → failed.

No retries happen in here.  A failed attempt leaves a ``failed`` row
with no external id and raises BookingFailed.

IDEMPOTENCY
------------
We do not know whether the platform deduplicates repeated requests, so
deduplication happens locally.  A caller-supplied idempotency key is
stored (uniquely) on the booking row:

  same key, row confirmed/cancelled  → return the row, no call
  same key, row pending, recent      → return the row, no call
  same key, row failed               → resubmit under the same row
  same key, row pending, stale       → resubmit under the same row

A row is marked failed on EVERY exit from the platform call that did
not confirm it, including the caller cancelling us (its own timeout).
Only a crash between the insert and the result write can leave a row
pending with nobody working on it; once its submitted_at is older than
pending_stale_after it is treated like a failed row.  Resubmitting
after an unknown outcome can book twice on the platform; the local row
stays single either way.

ASYNCHRONOUS PATH
------------------
The platform may later report a status change.  apply_external_status
finds the booking by its external id and overwrites the status.
Notifications carry no ordering guarantee, so the last one applied wins.
An unknown external id is logged and ignored, since it may belong to a
booking made outside this service.
"""

from __future__ import annotations

import logging
from datetime import UTC, datetime, timedelta
from typing import Any
from uuid import UUID

from calsync.clients.scheduling import ExternalPlatformError, SchedulingClient
from calsync.core.errors import (
    AvailabilityFailed,
    BookingFailed,
    ExpertNotSchedulable,
    StaffNotFound,
)
from calsync.core.metrics import BOOKING_STATUS_UPDATES, BOOKINGS
from calsync.models.booking import (
    Booking,
    BookingStatus,
    DateRange,
    Slot,
    SlotSelection,
)
from calsync.models.organization import Staff
from calsync.repos.booking_repo import BookingRepo, IdempotencyKeyTakenError
from calsync.repos.org_repo import OrgRepo
from calsync.repos.staff_repo import StaffRepo

logger = logging.getLogger(__name__)


class BookingProxy:
    def __init__(
        self,
        *,
        staff_repo: StaffRepo,
        org_repo: OrgRepo,
        booking_repo: BookingRepo,
        client: SchedulingClient,
        pending_stale_after: timedelta = timedelta(seconds=60),
    ) -> None:
        self._staff = staff_repo
        self._orgs = org_repo
        self._bookings = booking_repo
        self._client = client
        self._pending_stale_after = pending_stale_after

    async def _schedulable_expert(self, expert_staff_id: UUID) -> tuple[Staff, int]:
        staff = await self._staff.get_by_id(expert_staff_id)
        if staff is None:
            raise StaffNotFound(f"staff {expert_staff_id} not found")

        org = await self._orgs.get_by_id(staff.org_id)
        if org is None or not org.is_schedulable:
            raise ExpertNotSchedulable(
                f"staff {expert_staff_id} belongs to an organization that is not provisioned"
            )
        if staff.external_user_id is None or staff.external_event_type_id is None:
            raise ExpertNotSchedulable(
                f"staff {expert_staff_id} has no linked external user or event type"
            )
        return staff, staff.external_event_type_id

    async def list_availability(
        self, expert_staff_id: UUID, date_range: DateRange
    ) -> list[Slot]:
        _, event_type_id = await self._schedulable_expert(expert_staff_id)
        try:
            slots = await self._client.get_availability(
                event_type_id, date_range.start, date_range.end
            )
        except ExternalPlatformError as exc:
            raise AvailabilityFailed(
                f"availability for staff {expert_staff_id}: {exc}"
            ) from exc
        return [Slot(start=s.start, end=s.end) for s in slots]

    async def create_booking(
        self,
        expert_staff_id: UUID,
        selection: SlotSelection,
        idempotency_key: str | None = None,
    ) -> Booking:
        staff, event_type_id = await self._schedulable_expert(expert_staff_id)

        booking, submit = await self._booking_to_submit(staff, selection, idempotency_key)
        if not submit:
            BOOKINGS.labels(outcome="deduplicated").inc()
            return booking

        payload = _booking_payload(event_type_id, selection, booking.id)
        try:
            result = await self._client.create_booking(payload)
        except ExternalPlatformError as exc:
            await self._bookings.mark_failed(booking.id)
            BOOKINGS.labels(outcome="failed").inc()
            logger.warning(
                "Booking id=%s for staff=%s failed: %r",
                booking.id,
                staff.id,
                exc,
                extra={"booking_id": str(booking.id), "staff_id": str(staff.id)},
            )
            raise BookingFailed(f"booking {booking.id}: {exc}") from exc
        except BaseException:
            # Cancelled by the caller's timeout, or a bug: never leave it pending
            await self._bookings.mark_failed(booking.id)
            BOOKINGS.labels(outcome="failed").inc()
            logger.warning(
                "Booking id=%s for staff=%s abandoned before the platform answered",
                booking.id,
                staff.id,
                extra={"booking_id": str(booking.id), "staff_id": str(staff.id)},
            )
            raise

        confirmed = await self._bookings.mark_confirmed(booking.id, result.id)
        BOOKINGS.labels(outcome="confirmed").inc()
        logger.info(
            "Booking id=%s confirmed external_id=%d",
            booking.id,
            result.id,
            extra={"booking_id": str(booking.id), "staff_id": str(staff.id)},
        )
        return confirmed

    async def _booking_to_submit(
        self,
        staff: Staff,
        selection: SlotSelection,
        idempotency_key: str | None,
    ) -> tuple[Booking, bool]:
        """Return the pending row to submit under, or an existing duplicate with False."""
        if idempotency_key is not None:
            existing = await self._bookings.get_by_idempotency_key(idempotency_key)
            if existing is not None:
                return await self._reuse(existing)

        booking = Booking.new(
            expert_staff_id=staff.id,
            selection=selection,
            idempotency_key=idempotency_key,
        )
        try:
            await self._bookings.add(booking)
        except IdempotencyKeyTakenError:
            # Same key inserted concurrently
            if idempotency_key is None:
                raise
            existing = await self._bookings.get_by_idempotency_key(idempotency_key)
            if existing is None:
                raise
            return await self._reuse(existing)
        return booking, True

    async def _reuse(self, existing: Booking) -> tuple[Booking, bool]:
        if existing.status is BookingStatus.FAILED or self._is_stale(existing):
            logger.info(
                "Resubmitting %s booking id=%s",
                existing.status.value,
                existing.id,
                extra={"booking_id": str(existing.id)},
            )
            return await self._bookings.mark_pending(existing.id), True
        # A recent pending row is still in flight: never double-submit
        return existing, False

    def _is_stale(self, booking: Booking) -> bool:
        if booking.status is not BookingStatus.PENDING:
            return False
        if booking.submitted_at is None:
            return True
        return datetime.now(UTC) - booking.submitted_at > self._pending_stale_after

    async def apply_external_status(
        self, external_booking_id: int, new_status: BookingStatus
    ) -> Booking | None:
        booking = await self._bookings.get_by_external_id(external_booking_id)
        if booking is None:
            BOOKING_STATUS_UPDATES.labels(result="unmatched").inc()
            logger.warning(
                "Status %s for unknown external booking %d ignored",
                new_status.value,
                external_booking_id,
            )
            return None

        updated = await self._bookings.set_status(booking.id, new_status)
        BOOKING_STATUS_UPDATES.labels(result="applied").inc()
        logger.info(
            "Booking id=%s status %s → %s (external notification)",
            booking.id,
            booking.status.value,
            new_status.value,
            extra={"booking_id": str(booking.id)},
        )
        return updated


def _booking_payload(
    event_type_id: int, selection: SlotSelection, booking_id: UUID
) -> dict[str, Any]:
    return {
        "eventTypeId": event_type_id,
        "start": selection.start.isoformat(),
        "end": selection.end.isoformat(),
        "attendee": {
            "name": selection.attendee_name or selection.attendee_email,
            "email": selection.attendee_email,
            "timeZone": selection.attendee_time_zone,
        },
        "metadata": {"localBookingId": str(booking_id)},
    }
