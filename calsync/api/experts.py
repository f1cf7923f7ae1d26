"""Expert availability and booking endpoints.

Any authenticated caller may read an expert's free slots and book one.
Bookings accept an optional ``Idempotency-Key`` header: repeating a
request with the same key returns the original booking instead of
creating a second one on the platform.
"""

from __future__ import annotations

from datetime import datetime
from typing import Annotated
from uuid import UUID

from fastapi import APIRouter, Depends, Header, Query, status
from pydantic import BaseModel

from calsync.api.dependencies import get_services, require_user
from calsync.api.errors import http_error, validation_error
from calsync.core.errors import SyncError
from calsync.models.booking import Booking, DateRange, SlotSelection
from calsync.models.principal import Principal
from calsync.services.wiring import SyncServices

router = APIRouter(prefix="/v1/experts", tags=["experts"])


class SlotOut(BaseModel):
    start: datetime
    end: datetime


class BookingIn(BaseModel):
    start: datetime
    end: datetime
    attendee_email: str
    attendee_name: str = ""
    attendee_time_zone: str = "UTC"


class BookingOut(BaseModel):
    id: str
    expert_staff_id: str
    start: datetime
    end: datetime
    attendee_email: str
    status: str
    external_booking_id: int | None


def _booking_out(booking: Booking) -> BookingOut:
    return BookingOut(
        id=str(booking.id),
        expert_staff_id=str(booking.expert_staff_id),
        start=booking.start,
        end=booking.end,
        attendee_email=booking.attendee_email,
        status=booking.status.value,
        external_booking_id=booking.external_booking_id,
    )


@router.get("/{staff_id}/availability", response_model=list[SlotOut])
async def get_availability(
    staff_id: UUID,
    start: Annotated[datetime, Query()],
    end: Annotated[datetime, Query()],
    _principal: Annotated[Principal, Depends(require_user)],
    services: Annotated[SyncServices, Depends(get_services)],
) -> list[SlotOut]:
    try:
        date_range = DateRange(start=start, end=end)
    except ValueError as exc:
        raise validation_error(exc) from exc

    try:
        slots = await services.bookings.list_availability(staff_id, date_range)
    except SyncError as exc:
        raise http_error(exc) from exc
    return [SlotOut(start=s.start, end=s.end) for s in slots]


@router.post(
    "/{staff_id}/bookings",
    response_model=BookingOut,
    status_code=status.HTTP_201_CREATED,
)
async def create_booking(
    staff_id: UUID,
    body: BookingIn,
    _principal: Annotated[Principal, Depends(require_user)],
    services: Annotated[SyncServices, Depends(get_services)],
    idempotency_key: Annotated[str | None, Header(alias="Idempotency-Key")] = None,
) -> BookingOut:
    try:
        selection = SlotSelection(
            start=body.start,
            end=body.end,
            attendee_email=body.attendee_email,
            attendee_name=body.attendee_name,
            attendee_time_zone=body.attendee_time_zone,
        )
    except ValueError as exc:
        raise validation_error(exc) from exc

    try:
        booking = await services.bookings.create_booking(
            staff_id, selection, idempotency_key=idempotency_key or None
        )
    except SyncError as exc:
        raise http_error(exc) from exc
    return _booking_out(booking)
