import logging
from datetime import datetime, timedelta

from ..domain.errors import DateConflictError, ExpiredError, NotFoundError
from ..domain.repositories import BookedDatesRepository, BookingRepository, OfferRepository
from ..domain.services import (
    DateRange,
    calculate_total_price,
    ensure_cancellable,
    ensure_payable,
    find_conflict,
    is_hold_expired,
    parse_date_range,
    validate_requested_range,
)
from ..models import Booking, BookingStatus, Offer, PaymentStatus
from ..utils.time import format_calendar_date, utc_now

logger = logging.getLogger(__name__)

DEFAULT_HOLD = timedelta(hours=1)


async def create_booking(
    offer_repo: OfferRepository,
    booking_repo: BookingRepository,
    dates_repo: BookedDatesRepository,
    *,
    user_id: int,
    offer_id: str,
    date_from: str,
    date_until: str,
    hold: timedelta = DEFAULT_HOLD,
    now: datetime | None = None,
) -> tuple[Booking, Offer]:
    requested = parse_date_range(date_from, date_until)

    offer = await offer_repo.get_for_update(offer_id)
    if offer is None:
        raise NotFoundError("offer not found")

    now = now or utc_now()
    validate_requested_range(
        requested,
        availability=DateRange(offer.date_from, offer.date_until),
        today=now.date(),
    )

    booked = [DateRange(entry.date_from, entry.date_until) for entry in await dates_repo.list_by_offer(offer_id)]
    conflict = find_conflict(requested, booked)
    if conflict is not None:
        raise DateConflictError(
            "selected dates are already booked "
            f"({format_calendar_date(conflict.start)} to {format_calendar_date(conflict.end)})"
        )

    booking = await booking_repo.create(
        offer_id=offer.id,
        user_id=user_id,
        date_from=requested.start,
        date_until=requested.end,
        price=calculate_total_price(requested, offer.price_per_night),
        created_at=now,
        expires_at=now + hold,
    )
    await dates_repo.create(offer_id=offer.id, date_from=requested.start, date_until=requested.end)
    logger.info("booking %s created for offer %s by user %s", booking.id, offer.id, user_id)
    return booking, offer


async def release_booking(
    booking_repo: BookingRepository,
    dates_repo: BookedDatesRepository,
    booking: Booking,
) -> int:
    """
    Delete the booking and the booked-dates entries holding its exact range.
    Every path that frees dates goes through here. Returns the number of ledger entries removed.
    """
    removed = 0
    for entry in await dates_repo.list_by_offer(booking.offer_id):
        if entry.date_from == booking.date_from and entry.date_until == booking.date_until:
            await dates_repo.delete(entry)
            removed += 1
    if removed != 1:
        logger.warning(
            "booking %s released %d booked-dates entries for offer %s, expected 1",
            booking.id,
            removed,
            booking.offer_id,
        )
    await booking_repo.delete(booking)
    return removed


async def _lock_booking(
    offer_repo: OfferRepository,
    booking_repo: BookingRepository,
    *,
    booking_id: str,
    offer_id: str,
) -> Booking | None:
    # Offer first, then booking: the same order create_booking takes.
    await offer_repo.get_for_update(offer_id)
    return await booking_repo.get_for_update(booking_id)


async def _lock_user_booking(
    offer_repo: OfferRepository,
    booking_repo: BookingRepository,
    *,
    booking_id: str,
    user_id: int,
) -> tuple[Booking, Offer]:
    row = await booking_repo.get_for_user(booking_id, user_id)
    if row is None:
        raise NotFoundError("booking not found")
    _, offer = row
    booking = await _lock_booking(offer_repo, booking_repo, booking_id=booking_id, offer_id=offer.id)
    if booking is None:
        raise NotFoundError("booking not found")
    return booking, offer


async def cancel_booking(
    offer_repo: OfferRepository,
    booking_repo: BookingRepository,
    dates_repo: BookedDatesRepository,
    *,
    booking_id: str,
    user_id: int,
) -> Booking:
    booking, _ = await _lock_user_booking(offer_repo, booking_repo, booking_id=booking_id, user_id=user_id)
    ensure_cancellable(booking)
    await release_booking(booking_repo, dates_repo, booking)
    logger.info("booking %s cancelled by user %s", booking.id, user_id)
    return booking


async def _release_if_expired(
    booking_repo: BookingRepository,
    dates_repo: BookedDatesRepository,
    booking: Booking,
    now: datetime,
) -> None:
    if is_hold_expired(booking, now):
        await release_booking(booking_repo, dates_repo, booking)
        logger.info("booking %s expired at %s and was released", booking.id, booking.expires_at)
        raise ExpiredError("booking expired and was removed", booking=booking)


async def simulate_payment(
    offer_repo: OfferRepository,
    booking_repo: BookingRepository,
    dates_repo: BookedDatesRepository,
    *,
    booking_id: str,
    user_id: int,
    now: datetime | None = None,
) -> tuple[Booking, Offer]:
    """
    Mark a pending booking paid and confirmed.

    Raises InvalidStateError when the payment is no longer pending, and ExpiredError after
    releasing a booking whose hold has lapsed. The caller must commit the release before
    reporting the ExpiredError.
    """
    now = now or utc_now()
    booking, offer = await _lock_user_booking(offer_repo, booking_repo, booking_id=booking_id, user_id=user_id)
    ensure_payable(booking)
    await _release_if_expired(booking_repo, dates_repo, booking, now)

    booking.payment_status = PaymentStatus.PAID
    booking.paid_at = now
    booking.status = BookingStatus.CONFIRMED
    updated = await booking_repo.save(booking)
    logger.info("booking %s paid and confirmed", booking.id)
    return updated, offer


async def get_payment_status(
    offer_repo: OfferRepository,
    booking_repo: BookingRepository,
    dates_repo: BookedDatesRepository,
    *,
    booking_id: str,
    user_id: int,
    now: datetime | None = None,
) -> PaymentStatus:
    now = now or utc_now()
    booking, _ = await _lock_user_booking(offer_repo, booking_repo, booking_id=booking_id, user_id=user_id)
    await _release_if_expired(booking_repo, dates_repo, booking, now)
    return booking.payment_status


async def reclaim_booking(
    offer_repo: OfferRepository,
    booking_repo: BookingRepository,
    dates_repo: BookedDatesRepository,
    *,
    booking_id: str,
    offer_id: str,
    now: datetime,
) -> Booking | None:
    """Release one expired hold on behalf of the system. Returns the released booking, if any."""
    booking = await _lock_booking(offer_repo, booking_repo, booking_id=booking_id, offer_id=offer_id)
    # Paid, cancelled or already reclaimed since the scan.
    if booking is None or not is_hold_expired(booking, now):
        return None
    await release_booking(booking_repo, dates_repo, booking)
    return booking


async def list_expired_bookings(
    booking_repo: BookingRepository,
    *,
    now: datetime,
) -> list[Booking]:
    return await booking_repo.list_expired_pending(now)


async def list_user_bookings(
    booking_repo: BookingRepository,
    *,
    user_id: int,
) -> list[tuple[Booking, Offer]]:
    return await booking_repo.list_by_user(user_id)


async def get_user_booking(
    booking_repo: BookingRepository,
    *,
    booking_id: str,
    user_id: int,
) -> tuple[Booking, Offer] | None:
    return await booking_repo.get_for_user(booking_id, user_id)
