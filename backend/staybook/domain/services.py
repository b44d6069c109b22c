from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime
from decimal import Decimal
from typing import Iterable

from ..models import Booking, BookingStatus, PaymentStatus
from ..utils.time import CALENDAR_DATE_FORMAT
from .errors import InvalidInputError, InvalidStateError


@dataclass(frozen=True)
class DateRange:
    """Closed calendar-date interval; both ends are booked days."""

    start: date
    end: date

    @property
    def days(self) -> int:
        return (self.end - self.start).days + 1


def parse_calendar_date(value: str) -> date:
    try:
        return datetime.strptime(value, CALENDAR_DATE_FORMAT).date()
    except (TypeError, ValueError) as exc:
        raise InvalidInputError(f"invalid date {value!r}, expected MM.DD.YYYY") from exc


def parse_date_range(date_from: str, date_until: str) -> DateRange:
    return DateRange(parse_calendar_date(date_from), parse_calendar_date(date_until))


def ranges_conflict(requested: DateRange, existing: DateRange) -> bool:
    # Inclusive ends: a stay ending on the 15th blocks one starting on the 15th.
    return not (requested.end < existing.start or requested.start > existing.end)


def find_conflict(requested: DateRange, existing: Iterable[DateRange]) -> DateRange | None:
    for booked in existing:
        if ranges_conflict(requested, booked):
            return booked
    return None


def validate_requested_range(requested: DateRange, *, availability: DateRange, today: date) -> None:
    """
    Rejects ranges that are reversed, in the past, or outside the offer's availability window.
    Raises InvalidInputError; overlap with other bookings is checked separately.
    """
    if requested.start > requested.end:
        raise InvalidInputError("date_from must not be after date_until")
    if requested.start < today:
        raise InvalidInputError("booking dates cannot be in the past")
    if requested.start < availability.start or requested.end > availability.end:
        raise InvalidInputError(
            "booking must be within the offer's availability range "
            f"({availability.start.strftime(CALENDAR_DATE_FORMAT)} to "
            f"{availability.end.strftime(CALENDAR_DATE_FORMAT)})"
        )


def calculate_total_price(requested: DateRange, price_per_night: Decimal) -> Decimal:
    if requested.days <= 0:
        raise InvalidInputError("booking duration must be at least one day")
    return Decimal(price_per_night) * requested.days


def is_hold_expired(booking: Booking, now: datetime) -> bool:
    """Unpaid pending bookings lapse once now is strictly past expires_at."""
    return (
        booking.status == BookingStatus.PENDING
        and booking.payment_status == PaymentStatus.PENDING
        and booking.expires_at < now
    )


def ensure_cancellable(booking: Booking) -> None:
    if booking.status != BookingStatus.PENDING:
        raise InvalidStateError("only pending bookings can be cancelled")
    if booking.payment_status != PaymentStatus.PENDING:
        raise InvalidStateError("only unpaid bookings can be cancelled")


def ensure_payable(booking: Booking) -> None:
    if booking.payment_status != PaymentStatus.PENDING:
        raise InvalidStateError("booking already paid or failed")
