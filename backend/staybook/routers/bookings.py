from datetime import timedelta
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Path, Response, status
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from ..config import Settings, get_settings
from ..deps import get_current_user_id, get_session
from ..domain.errors import (
    DateConflictError,
    ExpiredError,
    InvalidInputError,
    InvalidStateError,
    NotFoundError,
)
from ..infrastructure.repositories import (
    SqlAlchemyBookedDatesRepository,
    SqlAlchemyBookingRepository,
    SqlAlchemyOfferRepository,
)
from ..models import BookingStatus, PaymentStatus
from ..schemas import BookingCreate, BookingRead, PaymentStatusRead
from ..usecases import bookings as booking_usecase
from ..utils.audit_log import emit_audit_log

router = APIRouter(prefix="/bookings", tags=["bookings"])


def _audit(**kwargs: object) -> None:
    # Runs after commit.
    try:
        emit_audit_log(**kwargs)  # type: ignore[arg-type]
    except RuntimeError as exc:
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="audit log failed") from exc


def _gone(exc: ExpiredError, *, user_id: int) -> HTTPException:
    booking = exc.booking
    if booking is not None:
        _audit(
            action="booking.expired",
            initiator="user",
            booking_id=booking.id,
            offer_id=booking.offer_id,
            user_id=user_id,
            date_from=booking.date_from,
            date_until=booking.date_until,
            status_from=BookingStatus.PENDING,
            status_to=None,
            payment_status=booking.payment_status,
        )
    return HTTPException(status_code=status.HTTP_410_GONE, detail=str(exc))


@router.post("", response_model=BookingRead, status_code=status.HTTP_200_OK)
async def create_booking(
    payload: BookingCreate,
    session: AsyncSession = Depends(get_session),
    user_id: int = Depends(get_current_user_id),
    settings: Settings = Depends(get_settings),
) -> BookingRead:
    offer_repo = SqlAlchemyOfferRepository(session)
    booking_repo = SqlAlchemyBookingRepository(session)
    dates_repo = SqlAlchemyBookedDatesRepository(session)
    async with session.begin():
        try:
            booking, offer = await booking_usecase.create_booking(
                offer_repo,
                booking_repo,
                dates_repo,
                user_id=user_id,
                offer_id=payload.offer_id,
                date_from=payload.date_from,
                date_until=payload.date_until,
                hold=timedelta(minutes=settings.booking_hold_minutes),
            )
        except NotFoundError:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="offer not found")
        except (DateConflictError, InvalidInputError, InvalidStateError) as exc:
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=f"booking failed: {exc}")
        except IntegrityError:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail="booking failed: selected dates are already booked",
            )

    _audit(
        action="booking.created",
        initiator="user",
        booking_id=booking.id,
        offer_id=booking.offer_id,
        user_id=user_id,
        date_from=booking.date_from,
        date_until=booking.date_until,
        status_from=None,
        status_to=booking.status,
        payment_status=booking.payment_status,
    )
    return BookingRead.from_db(booking=booking, offer=offer)


@router.get("", response_model=List[BookingRead])
async def list_my_bookings(
    session: AsyncSession = Depends(get_session),
    user_id: int = Depends(get_current_user_id),
) -> list[BookingRead]:
    booking_repo = SqlAlchemyBookingRepository(session)
    rows = await booking_usecase.list_user_bookings(booking_repo, user_id=user_id)
    return [BookingRead.from_db(booking=booking, offer=offer) for booking, offer in rows]


@router.get("/{booking_id}", response_model=BookingRead)
async def get_my_booking(
    booking_id: str = Path(..., min_length=1),
    session: AsyncSession = Depends(get_session),
    user_id: int = Depends(get_current_user_id),
) -> BookingRead:
    booking_repo = SqlAlchemyBookingRepository(session)
    row = await booking_usecase.get_user_booking(booking_repo, booking_id=booking_id, user_id=user_id)
    if row is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="booking not found")
    booking, offer = row
    return BookingRead.from_db(booking=booking, offer=offer)


@router.delete("/{booking_id}", status_code=status.HTTP_204_NO_CONTENT)
async def cancel_booking(
    booking_id: str = Path(..., min_length=1),
    session: AsyncSession = Depends(get_session),
    user_id: int = Depends(get_current_user_id),
) -> Response:
    offer_repo = SqlAlchemyOfferRepository(session)
    booking_repo = SqlAlchemyBookingRepository(session)
    dates_repo = SqlAlchemyBookedDatesRepository(session)
    async with session.begin():
        try:
            cancelled = await booking_usecase.cancel_booking(
                offer_repo,
                booking_repo,
                dates_repo,
                booking_id=booking_id,
                user_id=user_id,
            )
        except NotFoundError:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="booking not found")
        except InvalidStateError as exc:
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc))

    _audit(
        action="booking.cancelled",
        initiator="user",
        booking_id=cancelled.id,
        offer_id=cancelled.offer_id,
        user_id=user_id,
        date_from=cancelled.date_from,
        date_until=cancelled.date_until,
        status_from=BookingStatus.PENDING,
        status_to=BookingStatus.CANCELLED,
        payment_status=cancelled.payment_status,
    )
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.post("/{booking_id}/pay", response_model=BookingRead)
async def simulate_payment(
    booking_id: str = Path(..., min_length=1),
    session: AsyncSession = Depends(get_session),
    user_id: int = Depends(get_current_user_id),
) -> BookingRead:
    offer_repo = SqlAlchemyOfferRepository(session)
    booking_repo = SqlAlchemyBookingRepository(session)
    dates_repo = SqlAlchemyBookedDatesRepository(session)
    expired: Optional[ExpiredError] = None
    async with session.begin():
        try:
            booking, offer = await booking_usecase.simulate_payment(
                offer_repo,
                booking_repo,
                dates_repo,
                booking_id=booking_id,
                user_id=user_id,
            )
        except ExpiredError as exc:
            # Leave the block normally so the release commits.
            expired = exc
        except NotFoundError:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="booking not found")
        except InvalidStateError as exc:
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc))

    # A lapsed hold answers 410 here, not the 400 used for other payment failures.
    if expired is not None:
        raise _gone(expired, user_id=user_id)

    _audit(
        action="booking.paid",
        initiator="user",
        booking_id=booking.id,
        offer_id=booking.offer_id,
        user_id=user_id,
        date_from=booking.date_from,
        date_until=booking.date_until,
        status_from=BookingStatus.PENDING,
        status_to=booking.status,
        payment_status=booking.payment_status,
    )
    return BookingRead.from_db(booking=booking, offer=offer)


@router.get("/{booking_id}/payment-status", response_model=PaymentStatusRead)
async def get_payment_status(
    booking_id: str = Path(..., min_length=1),
    session: AsyncSession = Depends(get_session),
    user_id: int = Depends(get_current_user_id),
) -> PaymentStatusRead:
    offer_repo = SqlAlchemyOfferRepository(session)
    booking_repo = SqlAlchemyBookingRepository(session)
    dates_repo = SqlAlchemyBookedDatesRepository(session)
    expired: Optional[ExpiredError] = None
    payment_status = PaymentStatus.PENDING
    async with session.begin():
        try:
            payment_status = await booking_usecase.get_payment_status(
                offer_repo,
                booking_repo,
                dates_repo,
                booking_id=booking_id,
                user_id=user_id,
            )
        except ExpiredError as exc:
            expired = exc
        except NotFoundError:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="booking not found")

    if expired is not None:
        raise _gone(expired, user_id=user_id)
    return PaymentStatusRead(booking_id=booking_id, payment_status=payment_status)
