"""
OTP-gated ride transitions.

* start code: driver_assigned -> ride_started
* end code:   ride_started -> ride_ended, then immediately completed

The end code is only looked at once the ride has started, i.e. after the
start code was consumed.  Wrong codes count against
``otp_max_attempts`` per ride; a correct start code resets the counter
for the end code.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from src.domain.entities import CompletionData, ServiceResult, utcnow
from src.domain.enums import PaymentStatus, QueueStatus, RideStatus
from src.domain.otp import verify_otp
from src.infrastructure.models import RideModel
from src.infrastructure.repositories import RideRepository
from src.realtime.notifications import NotificationService
from src.services.lifecycle import LifecycleService
from src.services.payloads import ride_summary
from src.services.queue_ledger import QueueLedgerService
from src.services.ride_events import RideEventTracker

logger = logging.getLogger(__name__)


class OtpService:
    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        notifications: NotificationService,
        queue: QueueLedgerService,
        lifecycle: LifecycleService,
        events: RideEventTracker,
        max_attempts: int = 5,
    ):
        self.session_factory = session_factory
        self.notifications = notifications
        self.queue = queue
        self.lifecycle = lifecycle
        self.events = events
        self.max_attempts = max_attempts

    def _precheck(
        self, ride: Optional[RideModel], driver_id: Optional[int]
    ) -> Optional[ServiceResult]:
        if ride is None:
            return ServiceResult.fail("Ride not found")
        if driver_id is not None and ride.driver_id != int(driver_id):
            return ServiceResult.fail("Ride is not assigned to this driver")
        if ride.otp_failed_attempts >= self.max_attempts:
            return ServiceResult.fail(
                "Too many incorrect OTP attempts; contact support", locked=True
            )
        return None

    async def _reject(
        self, session: AsyncSession, ride: RideModel, which: str
    ) -> ServiceResult:
        await RideRepository(session).record_failed_otp(ride.id)
        await session.commit()
        remaining = max(self.max_attempts - ride.otp_failed_attempts - 1, 0)
        self.events.log_event(ride.ride_code, f"{which}_otp_rejected", remaining=remaining)
        return ServiceResult.fail(f"Invalid {which} OTP", attempts_remaining=remaining)

    async def verify_start(
        self,
        ride_id: int,
        otp: str,
        driver_id: Optional[int] = None,
        now: Optional[datetime] = None,
    ) -> ServiceResult:
        now = now or utcnow()
        async with self.session_factory() as session:
            rides = RideRepository(session)
            ride = await rides.get_by_id(ride_id)
            problem = self._precheck(ride, driver_id)
            if problem is not None:
                return problem
            if RideStatus(ride.status) != RideStatus.DRIVER_ASSIGNED:
                return ServiceResult.fail(
                    f"Cannot start ride in status {RideStatus(ride.status).value}"
                )
            if not verify_otp(otp, ride.start_otp):
                return await self._reject(session, ride, "start")

            moved = await rides.transition(
                ride.id,
                RideStatus.DRIVER_ASSIGNED,
                status=RideStatus.RIDE_STARTED,
                started_at=now,
                updated_at=now,
                otp_failed_attempts=0,
            )
            if not moved:
                await session.rollback()
                return ServiceResult.fail("Ride is no longer waiting to start")
            await self.queue.update_status(ride.id, QueueStatus.IN_PROGRESS, session=session)
            await session.commit()
            ride = await rides.get_by_id(ride.id)

        summary = ride_summary(ride)
        self.events.log_event(ride.ride_code, "ride_started", driver_id=ride.driver_id)
        await self.notifications.notify_rider(ride.user_id, "ride_started", summary)
        await self.notifications.notify_driver(ride.driver_id, "ride_started", summary)
        self.notifications.notify_admins("ride_started", summary)
        return ServiceResult.ok("Ride started", ride=summary)

    async def verify_end(
        self,
        ride_id: int,
        otp: str,
        driver_id: Optional[int] = None,
        now: Optional[datetime] = None,
    ) -> ServiceResult:
        now = now or utcnow()
        async with self.session_factory() as session:
            rides = RideRepository(session)
            ride = await rides.get_by_id(ride_id)
            problem = self._precheck(ride, driver_id)
            if problem is not None:
                return problem
            status = RideStatus(ride.status)
            if status not in (RideStatus.RIDE_STARTED, RideStatus.RIDE_ENDED):
                return ServiceResult.fail(f"Cannot end ride in status {status.value}")
            if not verify_otp(otp, ride.end_otp):
                return await self._reject(session, ride, "end")

            if status == RideStatus.RIDE_STARTED:
                moved = await rides.transition(
                    ride.id,
                    RideStatus.RIDE_STARTED,
                    status=RideStatus.RIDE_ENDED,
                    ended_at=now,
                    updated_at=now,
                    actual_fare=ride.quoted_fare,
                    payment_status=PaymentStatus.COLLECTED,
                    payment_method="cash",
                    payment_collected_at=now,
                )
                if not moved:
                    await session.rollback()
                    return ServiceResult.fail("Ride is no longer in progress")
                await self.queue.update_status(ride.id, QueueStatus.COMPLETED, session=session)
                await session.commit()
                ride = await rides.get_by_id(ride.id)

                summary = ride_summary(ride)
                self.events.log_event(
                    ride.ride_code, "ride_ended", actual_fare=ride.actual_fare
                )
                await self.notifications.notify_rider(ride.user_id, "ride_ended", summary)
                await self.notifications.notify_driver(ride.driver_id, "ride_ended", summary)
                self.notifications.notify_admins("ride_ended", summary)
            else:
                logger.info("Ride %s already ended; retrying completion", ride.ride_code)

        return await self.lifecycle.complete(
            ride_id,
            CompletionData(
                status=RideStatus.COMPLETED,
                closed_by="driver",
                close_reason="End OTP verified",
                payment_method="cash",
            ),
            now=now,
        )
