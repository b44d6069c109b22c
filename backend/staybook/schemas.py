from datetime import date, datetime
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, Field, field_serializer

from .models import Booking, BookingStatus, Offer, PaymentStatus
from .utils.time import format_calendar_date, utc_naive_to_aware


class BookingCreate(BaseModel):
    offer_id: str = Field(min_length=1)
    date_from: str = Field(description="MM.DD.YYYY", examples=["04.10.2025"])
    date_until: str = Field(description="MM.DD.YYYY", examples=["04.15.2025"])


class PaymentRead(BaseModel):
    status: PaymentStatus
    paid_at: Optional[datetime] = None

    @field_serializer("paid_at")
    def _ser_datetime(self, dt: Optional[datetime]) -> Optional[str]:
        return dt.isoformat() if dt is not None else None


class BookingRead(BaseModel):
    booking_id: str
    offer_id: str
    offer_title: Optional[str] = None
    hotel_identifier: Optional[str] = None
    user_id: int
    date_from: date
    date_until: date
    status: BookingStatus
    price: Decimal
    created_at: datetime
    expires_at: datetime
    payment: PaymentRead

    @field_serializer("date_from", "date_until")
    def _ser_date(self, value: date) -> str:
        return format_calendar_date(value)

    @field_serializer("created_at", "expires_at")
    def _ser_datetime(self, dt: datetime) -> str:
        return dt.isoformat()

    @classmethod
    def from_db(cls, *, booking: Booking, offer: Optional[Offer] = None) -> "BookingRead":
        return cls(
            booking_id=booking.id,
            offer_id=booking.offer_id,
            offer_title=offer.title if offer is not None else None,
            hotel_identifier=offer.hotel_identifier if offer is not None else None,
            user_id=booking.user_id,
            date_from=booking.date_from,
            date_until=booking.date_until,
            status=booking.status,
            price=booking.price,
            created_at=utc_naive_to_aware(booking.created_at),
            expires_at=utc_naive_to_aware(booking.expires_at),
            payment=PaymentRead(
                status=booking.payment_status,
                paid_at=utc_naive_to_aware(booking.paid_at) if booking.paid_at is not None else None,
            ),
        )


class PaymentStatusRead(BaseModel):
    booking_id: str
    payment_status: PaymentStatus
