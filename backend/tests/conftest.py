import asyncio
import uuid
from datetime import date, datetime, timedelta
from decimal import Decimal
from types import ModuleType
from typing import Callable, Optional

import pytest
from staybook.infrastructure.repositories import Repositories
from staybook.models import BookedDates, Booking, BookingStatus, Offer, PaymentStatus

OFFER_ID = "offer-1"


class InMemoryStore:
    """Shared state behind the fake repositories; one instance per test."""

    def __init__(self) -> None:
        self.offers: dict[str, Offer] = {}
        self.bookings: dict[str, Booking] = {}
        self.booked_dates: dict[str, BookedDates] = {}
        self.events: list[str] = []
        self._offer_locks: dict[str, asyncio.Lock] = {}

    def offer_lock(self, offer_id: str) -> asyncio.Lock:
        return self._offer_locks.setdefault(offer_id, asyncio.Lock())

    def add_offer(
        self,
        offer_id: str = OFFER_ID,
        *,
        date_from: date = date(2025, 1, 1),
        date_until: date = date(2025, 12, 31),
        price_per_night: Decimal = Decimal("100.00"),
    ) -> Offer:
        offer = Offer(
            id=offer_id,
            title=f"Room {offer_id}",
            hotel_identifier="HTL-1",
            date_from=date_from,
            date_until=date_until,
            price_per_night=price_per_night,
            created_at=datetime(2024, 12, 1),
        )
        self.offers[offer_id] = offer
        return offer

    def add_booking(
        self,
        *,
        offer_id: str = OFFER_ID,
        user_id: int = 1,
        date_from: date,
        date_until: date,
        created_at: datetime,
        hold: timedelta = timedelta(hours=1),
        status: BookingStatus = BookingStatus.PENDING,
        payment_status: PaymentStatus = PaymentStatus.PENDING,
        with_ledger_entry: bool = True,
    ) -> Booking:
        booking = Booking(
            id=str(uuid.uuid4()),
            offer_id=offer_id,
            user_id=user_id,
            date_from=date_from,
            date_until=date_until,
            status=status,
            price=Decimal("100.00"),
            created_at=created_at,
            expires_at=created_at + hold,
            payment_status=payment_status,
            paid_at=None,
        )
        self.bookings[booking.id] = booking
        if with_ledger_entry:
            self.add_booked_dates(offer_id=offer_id, date_from=date_from, date_until=date_until)
        return booking

    def add_booked_dates(self, *, offer_id: str, date_from: date, date_until: date) -> BookedDates:
        entry = BookedDates(
            id=str(uuid.uuid4()),
            offer_id=offer_id,
            date_from=date_from,
            date_until=date_until,
            created_at=datetime(2025, 1, 1),
        )
        self.booked_dates[entry.id] = entry
        return entry

    def ledger_for(self, offer_id: str = OFFER_ID) -> list[tuple[date, date]]:
        return sorted(
            (entry.date_from, entry.date_until)
            for entry in self.booked_dates.values()
            if entry.offer_id == offer_id
        )

    def assert_consistent(self) -> None:
        """Every live booking has exactly one ledger entry with its range, and vice versa."""
        booking_ranges = sorted((b.offer_id, b.date_from, b.date_until) for b in self.bookings.values())
        ledger_ranges = sorted((e.offer_id, e.date_from, e.date_until) for e in self.booked_dates.values())
        assert booking_ranges == ledger_ranges
        per_offer: dict[str, list[Booking]] = {}
        for booking in self.bookings.values():
            per_offer.setdefault(booking.offer_id, []).append(booking)
        for bookings in per_offer.values():
            for i, a in enumerate(bookings):
                for b in bookings[i + 1 :]:
                    assert a.date_until < b.date_from or a.date_from > b.date_until


class DummySession:
    """Async session stub; offer locks taken inside a transaction are released when it ends."""

    def __init__(self, store: InMemoryStore) -> None:
        self.store = store
        self.held: list[asyncio.Lock] = []
        self.commits = 0

    async def __aenter__(self) -> "DummySession":
        return self

    async def __aexit__(self, exc_type: object, exc: object, tb: object) -> bool:
        self.release_locks()
        return False

    def begin(self) -> "_Transaction":
        return _Transaction(self)

    def release_locks(self) -> None:
        while self.held:
            self.held.pop().release()


class _Transaction:
    def __init__(self, session: DummySession) -> None:
        self.session = session

    async def __aenter__(self) -> DummySession:
        return self.session

    async def __aexit__(self, exc_type: object, exc: object, tb: object) -> bool:
        if exc_type is None:
            self.session.commits += 1
        self.session.release_locks()
        return False


class FakeOfferRepo:
    def __init__(self, store: InMemoryStore, session: Optional[DummySession] = None) -> None:
        self.store = store
        self.session = session

    async def get_for_update(self, offer_id: str) -> Optional[Offer]:
        self.store.events.append(f"lock offer {offer_id}")
        if self.session is not None:
            lock = self.store.offer_lock(offer_id)
            if lock not in self.session.held:
                await lock.acquire()
                self.session.held.append(lock)
        return self.store.offers.get(offer_id)


class FakeBookingRepo:
    def __init__(self, store: InMemoryStore, session: Optional[DummySession] = None) -> None:
        self.store = store
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
        self.store.events.append("create booking")
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
        self.store.bookings[booking.id] = booking
        return booking

    async def get_for_update(self, booking_id: str) -> Optional[Booking]:
        self.store.events.append(f"lock booking {booking_id}")
        return self.store.bookings.get(booking_id)

    async def get_for_user(self, booking_id: str, user_id: int) -> Optional[tuple[Booking, Offer]]:
        booking = self.store.bookings.get(booking_id)
        if booking is None or booking.user_id != user_id:
            return None
        return booking, self.store.offers[booking.offer_id]

    async def list_by_user(self, user_id: int) -> list[tuple[Booking, Offer]]:
        return [
            (booking, self.store.offers[booking.offer_id])
            for booking in self.store.bookings.values()
            if booking.user_id == user_id
        ]

    async def list_expired_pending(self, now: datetime) -> list[Booking]:
        return [
            booking
            for booking in self.store.bookings.values()
            if booking.status == BookingStatus.PENDING
            and booking.payment_status == PaymentStatus.PENDING
            and booking.expires_at < now
        ]

    async def save(self, booking: Booking) -> Booking:
        self.store.bookings[booking.id] = booking
        return booking

    async def delete(self, booking: Booking) -> None:
        self.store.events.append(f"delete booking {booking.id}")
        self.store.bookings.pop(booking.id, None)


class FakeBookedDatesRepo:
    def __init__(self, store: InMemoryStore, session: Optional[DummySession] = None) -> None:
        self.store = store
        self.session = session

    async def list_by_offer(self, offer_id: str) -> list[BookedDates]:
        self.store.events.append(f"list booked dates {offer_id}")
        # Yield so interleaved transactions would observe each other without the offer lock.
        await asyncio.sleep(0)
        return [entry for entry in self.store.booked_dates.values() if entry.offer_id == offer_id]

    async def create(self, *, offer_id: str, date_from: date, date_until: date) -> BookedDates:
        self.store.events.append("create booked dates")
        return self.store.add_booked_dates(offer_id=offer_id, date_from=date_from, date_until=date_until)

    async def delete(self, entry: BookedDates) -> None:
        self.store.booked_dates.pop(entry.id, None)


def fake_repositories(store: InMemoryStore) -> Callable[[DummySession], Repositories]:
    def build(session: DummySession) -> Repositories:
        return Repositories(
            offers=FakeOfferRepo(store, session),
            bookings=FakeBookingRepo(store, session),
            booked_dates=FakeBookedDatesRepo(store, session),
        )

    return build


@pytest.fixture
def store() -> InMemoryStore:
    s = InMemoryStore()
    s.add_offer()
    return s


@pytest.fixture
def session(store: InMemoryStore) -> DummySession:
    return DummySession(store)


@pytest.fixture
def repos(store: InMemoryStore, session: DummySession) -> Repositories:
    return fake_repositories(store)(session)


@pytest.fixture
def new_session(store: InMemoryStore) -> Callable[[], DummySession]:
    return lambda: DummySession(store)


@pytest.fixture
def build_repos(store: InMemoryStore) -> Callable[[DummySession], Repositories]:
    return fake_repositories(store)


@pytest.fixture
def install_fake_repositories(store: InMemoryStore, monkeypatch: pytest.MonkeyPatch) -> Callable[[ModuleType], None]:
    """Swap the SQLAlchemy repositories imported by a router module for the in-memory ones."""

    def install(module: ModuleType) -> None:
        monkeypatch.setattr(module, "SqlAlchemyOfferRepository", lambda s: FakeOfferRepo(store, s))
        monkeypatch.setattr(module, "SqlAlchemyBookingRepository", lambda s: FakeBookingRepo(store, s))
        monkeypatch.setattr(module, "SqlAlchemyBookedDatesRepository", lambda s: FakeBookedDatesRepo(store, s))

    return install
