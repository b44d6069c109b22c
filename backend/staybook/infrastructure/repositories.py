from __future__ import annotations

import uuid
from dataclasses import dataclass
from datetime import date, datetime
from decimal import Decimal
from typing import List, Optional, Tuple, cast

from sqlalchemy import Select, select
from sqlalchemy.ext.asyncio import AsyncSession

from ..domain.repositories import BookedDatesRepository, BookingRepository, OfferRepository
from ..models import BookedDates, Booking, BookingStatus, Offer, PaymentStatus
from ..utils.time import utc_now


class SqlAlchemyOfferRepository(OfferRepository):
    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def get_for_update(self, offer_id: str) -> Offer | None:
        # The offer row is the per-offer lock for every booking mutation.
        result = await self.session.scalar(select(Offer).where(Offer.id == offer_id).with_for_update())
        return result if isinstance(result, Offer) else None


class SqlAlchemyBookingRepository(BookingRepository):
    def __init__(self, session: AsyncSession) -> None:
        self.session = session

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
    ) -> Booking:
        booking = Booking(
            id=str(uuid.uuid4()),
            offer_id=offer_id,
            user_id=user_id,
            date_from=date_from,
            date_until=date_until,
            status=BookingStatus.PENDING,
            price=price,
            created_at=created_at,
            expires_at=expires_at,
            payment_status=PaymentStatus.PENDING,
            paid_at=None,
        )
        self.session.add(booking)
        await self.session.flush()
        return booking

    async def get_for_update(self, booking_id: str) -> Booking | None:
        result = await self.session.scalar(select(Booking).where(Booking.id == booking_id).with_for_update())
        return result if isinstance(result, Booking) else None

    async def get_for_user(self, booking_id: str, user_id: int) -> Optional[Tuple[Booking, Offer]]:
        stmt: Select[Tuple[Booking, Offer]] = (
            select(Booking, Offer)
            .join(Offer, Booking.offer_id == Offer.id)
            .where(Booking.id == booking_id, Booking.user_id == user_id)
        )
        row = (await self.session.execute(stmt)).first()
        return cast(Optional[Tuple[Booking, Offer]], row)

    async def list_by_user(self, user_id: int) -> List[Tuple[Booking, Offer]]:
        stmt: Select[Tuple[Booking, Offer]] = (
            select(Booking, Offer)
            .join(Offer, Booking.offer_id == Offer.id)
            .where(Booking.user_id == user_id)
            .order_by(Booking.created_at.desc())
        )
        rows = await self.session.execute(stmt)
        return cast(List[Tuple[Booking, Offer]], list(rows.all()))

    async def list_expired_pending(self, now: datetime) -> List[Booking]:
        stmt = select(Booking).where(
            Booking.status == BookingStatus.PENDING,
            Booking.payment_status == PaymentStatus.PENDING,
            Booking.expires_at < now,
        )
        return list((await self.session.scalars(stmt)).all())

    async def save(self, booking: Booking) -> Booking:
        self.session.add(booking)
        await self.session.flush()
        return booking

    async def delete(self, booking: Booking) -> None:
        await self.session.delete(booking)
        await self.session.flush()


class SqlAlchemyBookedDatesRepository(BookedDatesRepository):
    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def list_by_offer(self, offer_id: str) -> List[BookedDates]:
        stmt = select(BookedDates).where(BookedDates.offer_id == offer_id)
        return list((await self.session.scalars(stmt)).all())

    async def create(self, *, offer_id: str, date_from: date, date_until: date) -> BookedDates:
        entry = BookedDates(
            id=str(uuid.uuid4()),
            offer_id=offer_id,
            date_from=date_from,
            date_until=date_until,
            created_at=utc_now(),
        )
        self.session.add(entry)
        await self.session.flush()
        return entry

    async def delete(self, entry: BookedDates) -> None:
        await self.session.delete(entry)
        await self.session.flush()


@dataclass(frozen=True)
class Repositories:
    offers: OfferRepository
    bookings: BookingRepository
    booked_dates: BookedDatesRepository


def build_repositories(session: AsyncSession) -> Repositories:
    return Repositories(
        offers=SqlAlchemyOfferRepository(session),
        bookings=SqlAlchemyBookingRepository(session),
        booked_dates=SqlAlchemyBookedDatesRepository(session),
    )
