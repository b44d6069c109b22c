from __future__ import annotations

from typing import TYPE_CHECKING, Optional

if TYPE_CHECKING:
    from ..models import Booking


class BookingError(Exception):
    """Base class for booking engine failures."""


class NotFoundError(BookingError):
    """Offer or booking is absent, or the booking belongs to someone else."""


class DateConflictError(BookingError):
    pass


class InvalidStateError(BookingError):
    pass


class InvalidInputError(BookingError):
    pass


class ExpiredError(BookingError):
    """The holding window lapsed and the booking was released during this call."""

    def __init__(self, message: str, *, booking: Optional[Booking] = None) -> None:
        super().__init__(message)
        self.booking = booking
