"""
Background sweep that releases expired, unpaid bookings.

Runs on a single instance as one asyncio task. Each run scans for candidates,
then reclaims every candidate in its own transaction through the same release
path as user cancellation, so one bad record never stops the rest.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable

from sqlalchemy.ext.asyncio import AsyncSession

from .infrastructure.repositories import Repositories, build_repositories
from .models import BookingStatus
from .usecases import bookings as booking_usecase
from .utils.audit_log import emit_audit_log
from .utils.request_id import bound_request_id
from .utils.time import utc_now

log = logging.getLogger(__name__)

DEFAULT_INTERVAL_SECONDS = 600


@dataclass(frozen=True)
class ReclaimReport:
    scanned: int
    reclaimed: int
    failed: int


class ExpiryReclaimer:
    def __init__(
        self,
        session_factory: Callable[[], Any],
        *,
        interval_seconds: float = DEFAULT_INTERVAL_SECONDS,
        repositories: Callable[[AsyncSession], Repositories] = build_repositories,
    ) -> None:
        self._session_factory = session_factory
        self._interval = interval_seconds
        self._repositories = repositories
        self._task: asyncio.Task[None] | None = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def run_once(self, now: datetime | None = None) -> ReclaimReport:
        now = now or utc_now()
        with bound_request_id() as sweep_id:
            async with self._session_factory() as session:
                repos = self._repositories(session)
                candidates = [
                    (booking.id, booking.offer_id)
                    for booking in await booking_usecase.list_expired_bookings(repos.bookings, now=now)
                ]

            reclaimed = failed = 0
            for booking_id, offer_id in candidates:
                try:
                    if await self._reclaim(booking_id, offer_id, now):
                        reclaimed += 1
                except Exception:
                    failed += 1
                    log.exception("sweep %s: failed to reclaim booking %s", sweep_id, booking_id)

        report = ReclaimReport(scanned=len(candidates), reclaimed=reclaimed, failed=failed)
        if candidates:
            log.info(
                "sweep %s: %d expired booking(s), %d reclaimed, %d failed",
                sweep_id,
                report.scanned,
                report.reclaimed,
                report.failed,
            )
        return report

    async def _reclaim(self, booking_id: str, offer_id: str, now: datetime) -> bool:
        async with self._session_factory() as session:
            async with session.begin():
                repos = self._repositories(session)
                booking = await booking_usecase.reclaim_booking(
                    repos.offers,
                    repos.bookings,
                    repos.booked_dates,
                    booking_id=booking_id,
                    offer_id=offer_id,
                    now=now,
                )
        if booking is None:
            log.debug("booking %s no longer reclaimable", booking_id)
            return False

        try:
            emit_audit_log(
                action="booking.reclaimed",
                initiator="system",
                booking_id=booking.id,
                offer_id=booking.offer_id,
                user_id=booking.user_id,
                date_from=booking.date_from,
                date_until=booking.date_until,
                status_from=BookingStatus.PENDING,
                status_to=None,
                payment_status=booking.payment_status,
                extra={"expires_at": booking.expires_at.isoformat()},
            )
        except RuntimeError:
            log.exception("booking %s reclaimed but audit log failed", booking.id)
        return True

    async def run_forever(self) -> None:
        log.info("Expiry reclaimer started, interval=%ss", self._interval)
        while True:
            try:
                await self.run_once()
            except Exception:
                log.exception("expiry sweep failed")
            await asyncio.sleep(self._interval)

    def start(self) -> None:
        if self.running:
            return
        self._task = asyncio.create_task(self.run_forever(), name="expiry-reclaimer")

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        finally:
            self._task = None
        log.info("Expiry reclaimer stopped")
