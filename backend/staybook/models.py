from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from enum import StrEnum
from typing import Optional

from sqlalchemy import CheckConstraint, Enum, ForeignKey, Index, UniqueConstraint
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship
from sqlalchemy.sql.sqltypes import BigInteger, Date, DateTime, Numeric, String


class Base(DeclarativeBase):
    pass


class BookingStatus(StrEnum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    CANCELLED = "cancelled"


class PaymentStatus(StrEnum):
    PENDING = "pending"
    PAID = "paid"
    FAILED = "failed"


def _str_enum(enum_cls: type[StrEnum]) -> Enum:
    return Enum(
        enum_cls,
        values_callable=lambda cls: [e.value for e in cls],
        native_enum=False,
    )


class Offer(Base):
    """Catalog entry; owned by the offer service, read-only here."""

    __tablename__ = "offers"
    __table_args__ = (CheckConstraint("date_from <= date_until", name="chk_offers_dates"),)

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    hotel_identifier: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    date_from: Mapped[date] = mapped_column(Date, nullable=False)
    date_until: Mapped[date] = mapped_column(Date, nullable=False)
    price_per_night: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False)

    bookings: Mapped[list["Booking"]] = relationship(back_populates="offer")


class Booking(Base):
    __tablename__ = "bookings"
    __table_args__ = (
        CheckConstraint("date_from <= date_until", name="chk_bookings_dates"),
        Index("idx_bookings_offer", "offer_id"),
        Index("idx_bookings_user", "user_id"),
        Index("idx_bookings_expiry", "status", "payment_status", "expires_at"),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    offer_id: Mapped[str] = mapped_column(ForeignKey("offers.id"), nullable=False)
    user_id: Mapped[int] = mapped_column(BigInteger, nullable=False)
    date_from: Mapped[date] = mapped_column(Date, nullable=False)
    date_until: Mapped[date] = mapped_column(Date, nullable=False)
    status: Mapped[BookingStatus] = mapped_column(
        _str_enum(BookingStatus),
        nullable=False,
        default=BookingStatus.PENDING,
    )
    price: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False)
    expires_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False)
    # Embedded payment record.
    payment_status: Mapped[PaymentStatus] = mapped_column(
        _str_enum(PaymentStatus),
        nullable=False,
        default=PaymentStatus.PENDING,
    )
    paid_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=False), nullable=True)

    offer: Mapped["Offer"] = relationship(back_populates="bookings")


class BookedDates(Base):
    __tablename__ = "booked_dates"
    __table_args__ = (
        CheckConstraint("date_from <= date_until", name="chk_booked_dates"),
        UniqueConstraint("offer_id", "date_from", "date_until", name="uq_booked_dates_range"),
        Index("idx_booked_dates_offer", "offer_id"),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    offer_id: Mapped[str] = mapped_column(ForeignKey("offers.id"), nullable=False)
    date_from: Mapped[date] = mapped_column(Date, nullable=False)
    date_until: Mapped[date] = mapped_column(Date, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False)
