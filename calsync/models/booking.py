from __future__ import annotations

from dataclasses import dataclass
from datetime import UTC, datetime
from enum import Enum
from uuid import UUID, uuid4


class BookingStatus(str, Enum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @classmethod
    def parse(cls, raw: str) -> BookingStatus:
        """Accept local values and the platform's upper-case spellings."""
        value = raw.strip().lower()
        aliases = {"accepted": "confirmed", "rejected": "failed", "canceled": "cancelled"}
        try:
            return cls(aliases.get(value, value))
        except ValueError:
            raise ValueError(f"unknown booking status {raw!r}") from None


@dataclass(frozen=True, slots=True)
class Booking:
    id: UUID
    expert_staff_id: UUID
    start: datetime
    end: datetime
    attendee_email: str
    attendee_name: str = ""
    status: BookingStatus = BookingStatus.PENDING
    external_booking_id: int | None = None
    idempotency_key: str | None = None
    # When the current attempt was handed to the platform
    submitted_at: datetime | None = None

    @staticmethod
    def new(
        *,
        expert_staff_id: UUID,
        selection: SlotSelection,
        idempotency_key: str | None = None,
    ) -> Booking:
        return Booking(
            id=uuid4(),
            expert_staff_id=expert_staff_id,
            start=selection.start,
            end=selection.end,
            attendee_email=selection.attendee_email,
            attendee_name=selection.attendee_name,
            idempotency_key=idempotency_key,
            submitted_at=datetime.now(UTC),
        )


@dataclass(frozen=True, slots=True)
class Slot:
    start: datetime
    end: datetime


@dataclass(frozen=True, slots=True)
class DateRange:
    start: datetime
    end: datetime

    def __post_init__(self) -> None:
        if self.start >= self.end:
            raise ValueError("date range start must precede end")


@dataclass(frozen=True, slots=True)
class SlotSelection:
    start: datetime
    end: datetime
    attendee_email: str
    attendee_name: str = ""
    attendee_time_zone: str = "UTC"

    def __post_init__(self) -> None:
        if self.start >= self.end:
            raise ValueError("slot start must precede end")
        if not self.attendee_email.strip():
            raise ValueError("attendee email must be non-empty")
