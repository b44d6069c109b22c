from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from typing import Protocol

from ..models import BookedDates, Booking, Offer


class OfferRepository(Protocol):
    async def get_for_update(self, offer_id: str) -> Offer | None: ...


class BookingRepository(Protocol):
    async def create(
        self,
        *,
        offer_id: str,
        user_id: int,
        date_from: date,
        date_until: date,
        price: Decimal,
        created_at: datetime,
        expires_at: datetime,
    ) -> Booking: ...

    async def get_for_update(self, booking_id: str) -> Booking | None: ...

    async def get_for_user(self, booking_id: str, user_id: int) -> tuple[Booking, Offer] | None: ...

    async def list_by_user(self, user_id: int) -> list[tuple[Booking, Offer]]: ...

    async def list_expired_pending(self, now: datetime) -> list[Booking]: ...

    async def save(self, booking: Booking) -> Booking: ...

    async def delete(self, booking: Booking) -> None: ...


class BookedDatesRepository(Protocol):
    async def list_by_offer(self, offer_id: str) -> list[BookedDates]: ...

    async def create(self, *, offer_id: str, date_from: date, date_until: date) -> BookedDates: ...

    async def delete(self, entry: BookedDates) -> None: ...
