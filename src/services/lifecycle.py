"""
Lifecycle Completion Service
============================

The single exit from the live ``rides`` table.  Normal completion, a
party's cancel, an operator override and the recovery sweep all end up
in ``complete``:

1. Read the live ride (status remembered as ``read_status``).
2. Backfill missing driver display fields from the driver record, or flag
   ``missing_driver_info`` when that record is gone too.
3. Insert the history row.  ``ride_history.ride_id`` is unique, so a
   second closer of the same ride fails here instead of duplicating it.
4. ``DELETE FROM rides WHERE id = :id AND status = :read_status``.  Zero
   rows means another writer moved the ride; everything rolls back.
5. Rolling rider / driver statistics, driver released, queue entry dropped.
6. After commit: ride event logged, both parties and admins notified.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from src.domain.entities import (
    CompletionData,
    InvalidStateTransition,
    ServiceResult,
    ensure_transition,
    utcnow,
)
from src.domain.enums import CancelledBy, PaymentStatus, RideStatus
from src.domain.journey import journey_stats
from src.infrastructure.models import RideHistoryModel, RideModel
from src.infrastructure.repositories import (
    DriverRepository,
    RideHistoryRepository,
    RideRepository,
    UserRepository,
)
from src.realtime.notifications import NotificationService
from src.services.payloads import history_summary
from src.services.queue_ledger import QueueLedgerService
from src.services.ride_events import RideEventTracker

logger = logging.getLogger(__name__)


class LifecycleService:
    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        notifications: NotificationService,
        queue: QueueLedgerService,
        events: RideEventTracker,
    ):
        self.session_factory = session_factory
        self.notifications = notifications
        self.queue = queue
        self.events = events

    async def complete(
        self,
        ride_id: int,
        data: Optional[CompletionData] = None,
        now: Optional[datetime] = None,
    ) -> ServiceResult:
        data = data or CompletionData()
        now = now or utcnow()
        target = RideStatus(data.status)
        if target not in (RideStatus.COMPLETED, RideStatus.CANCELLED):
            return ServiceResult.fail(f"Cannot close a ride as {target.value}")

        async with self.session_factory() as session:
            rides = RideRepository(session)
            history = RideHistoryRepository(session)

            ride = await rides.get_by_id(ride_id)
            if ride is None:
                if await history.get_by_ride_id(ride_id) is not None:
                    return ServiceResult.fail("Ride already closed", ride_id=ride_id)
                return ServiceResult.fail("Ride not found", ride_id=ride_id)

            read_status = RideStatus(ride.status)
            if data.expected_status is not None and read_status != data.expected_status:
                return ServiceResult.fail(
                    f"Ride is no longer {RideStatus(data.expected_status).value}",
                    ride_id=ride_id,
                    status=read_status.value,
                )
            if not data.force:
                try:
                    ensure_transition(read_status, target)
                except InvalidStateTransition as exc:
                    return ServiceResult.fail(
                        str(exc), ride_id=ride_id, status=read_status.value
                    )

            record = await self._build_history(session, ride, data, target, now)
            try:
                await history.create(record)
            except IntegrityError:
                await session.rollback()
                logger.info("Ride %s was archived by a concurrent closer", ride_id)
                return ServiceResult.fail("Ride already closed", ride_id=ride_id)

            if not await rides.delete_if_status(ride.id, read_status):
                await session.rollback()
                logger.warning(
                    "Ride %s left %s while closing; not archived", ride_id, read_status.value
                )
                return ServiceResult.fail("Ride changed while closing", ride_id=ride_id)

            await self._update_rider_stats(session, record, now)
            if ride.driver_id is not None:
                await self._update_driver_stats(session, record, now)
            await self.queue.remove(ride.id, session=session)
            await session.commit()

        summary = history_summary(record)
        event = "ride_completed" if target == RideStatus.COMPLETED else "ride_cancelled"
        self.events.log_event(
            record.ride_code,
            event,
            previous_status=read_status.value,
            cancelled_by=summary["cancelled_by"],
            reason=record.cancellation_reason or record.close_reason,
            closed_by=record.closed_by,
            auto_closed=record.auto_closed,
            duration_min=record.total_duration_min,
        )

        await self.notifications.notify_rider(record.user_id, event, summary)
        if record.driver_id is not None:
            await self.notifications.notify_driver(record.driver_id, event, summary)
        elif read_status == RideStatus.PENDING:
            await self.notifications.close_offer(record.ride_id, reason="cancelled")
        self.notifications.notify_admins(event, summary)

        return ServiceResult.ok(
            "Ride completed" if target == RideStatus.COMPLETED else "Ride cancelled",
            ride=summary,
        )

    async def cancel(
        self,
        ride_id: int,
        reason: str,
        cancelled_by: CancelledBy,
        closed_by: Optional[str] = None,
        force: bool = False,
        expected: Optional[RideStatus] = None,
        now: Optional[datetime] = None,
    ) -> ServiceResult:
        return await self.complete(
            ride_id,
            CompletionData(
                status=RideStatus.CANCELLED,
                cancellation_reason=reason,
                cancelled_by=cancelled_by,
                closed_by=closed_by or CancelledBy(cancelled_by).value,
                close_reason=reason,
                auto_closed=CancelledBy(cancelled_by) == CancelledBy.SYSTEM,
                force=force,
                expected_status=expected,
            ),
            now=now,
        )

    # ── History record ────────────────────────────────────────────

    async def _build_history(
        self,
        session: AsyncSession,
        ride: RideModel,
        data: CompletionData,
        target: RideStatus,
        now: datetime,
    ) -> RideHistoryModel:
        name, phone = ride.driver_name, ride.driver_phone
        vehicle_no, rating = ride.driver_vehicle_no, ride.driver_rating
        missing = False
        if ride.driver_id is not None and not (name and phone and vehicle_no):
            driver = await DriverRepository(session).get_by_id(ride.driver_id)
            if driver is None:
                missing = True
                logger.warning(
                    "Driver %s of ride %s no longer exists", ride.driver_id, ride.ride_code
                )
            else:
                name = name or driver.full_name
                phone = phone or driver.phone
                vehicle_no = vehicle_no or driver.vehicle_no
                rating = rating if rating is not None else driver.rating

        completed = target == RideStatus.COMPLETED
        actual_fare = ride.actual_fare
        payment_status = PaymentStatus(ride.payment_status)
        payment_collected_at = ride.payment_collected_at
        if completed:
            if actual_fare is None:
                actual_fare = ride.quoted_fare
            if payment_status != PaymentStatus.COLLECTED:
                payment_status = PaymentStatus.COLLECTED
                payment_collected_at = now

        stats = journey_stats(
            ride.created_at, ride.started_at, ride.ended_at, now, ride.distance_km
        )
        return RideHistoryModel(
            ride_id=ride.id,
            ride_code=ride.ride_code,
            user_id=ride.user_id,
            user_name=ride.user_name,
            user_phone=ride.user_phone,
            driver_id=ride.driver_id,
            driver_name=name,
            driver_phone=phone,
            driver_vehicle_no=vehicle_no,
            driver_rating=rating,
            missing_driver_info=missing,
            pickup_point=ride.pickup_point,
            pickup_lat=ride.pickup_lat,
            pickup_lng=ride.pickup_lng,
            drop_address=ride.drop_address,
            drop_lat=ride.drop_lat,
            drop_lng=ride.drop_lng,
            vehicle_type=ride.vehicle_type,
            distance_km=ride.distance_km,
            quoted_fare=ride.quoted_fare,
            driver_fare=ride.driver_fare,
            actual_fare=actual_fare,
            status=target,
            cancellation_reason=None if completed else data.cancellation_reason,
            cancelled_by=None if completed else data.cancelled_by,
            queue_number=ride.queue_number,
            booking_source=ride.booking_source,
            requested_at=ride.created_at,
            accepted_at=ride.accepted_at,
            started_at=ride.started_at,
            ended_at=ride.ended_at,
            completed_at=now if completed else None,
            cancelled_at=None if completed else now,
            payment_status=payment_status,
            payment_method=data.payment_method or ride.payment_method or "cash",
            payment_collected_at=payment_collected_at,
            total_duration_min=stats.total_duration_min,
            waiting_time_min=stats.waiting_time_min,
            ride_duration_min=stats.ride_duration_min,
            average_speed_kmh=stats.average_speed_kmh,
            closed_by=data.closed_by,
            close_reason=data.close_reason,
            auto_closed=data.auto_closed,
            archived_at=now,
        )

    # ── Rolling statistics ────────────────────────────────────────

    async def _update_rider_stats(
        self, session: AsyncSession, record: RideHistoryModel, now: datetime
    ) -> None:
        user = await UserRepository(session).get_by_id(record.user_id)
        if user is None:
            logger.warning("Rider %s of ride %s not found", record.user_id, record.ride_code)
            return
        user.total_rides = (user.total_rides or 0) + 1
        user.last_ride_at = now
        if RideStatus(record.status) == RideStatus.COMPLETED:
            user.completed_rides = (user.completed_rides or 0) + 1
            user.total_spent = (user.total_spent or 0.0) + (record.actual_fare or 0.0)
            if user.longest_ride_km is None or record.distance_km > user.longest_ride_km:
                user.longest_ride_km = record.distance_km
                user.longest_ride_fare = record.actual_fare
                user.longest_ride_at = now
        else:
            user.cancelled_rides = (user.cancelled_rides or 0) + 1
        user.favorite_vehicle_type = await RideHistoryRepository(
            session
        ).favorite_vehicle_type(record.user_id)

    async def _update_driver_stats(
        self, session: AsyncSession, record: RideHistoryModel, now: datetime
    ) -> None:
        drivers = DriverRepository(session)
        await drivers.release(record.driver_id, record.ride_id)
        if RideStatus(record.status) != RideStatus.COMPLETED:
            return
        driver = await drivers.get_by_id(record.driver_id)
        if driver is None:
            return
        driver.total_rides = (driver.total_rides or 0) + 1
        driver.total_earnings = (driver.total_earnings or 0.0) + (record.driver_fare or 0.0)
        driver.last_active_at = now
