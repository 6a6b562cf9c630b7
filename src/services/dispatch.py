"""
Dispatch / Broadcast Engine
===========================

Broadcast
---------
1. Fetch online drivers with no current ride.
2. Keep those whose declared pickup point matches the ride's
   (``pickup_points_match``).  Vehicle class is not filtered.
3. Nobody matches -> offer to every online free driver instead
   (``fallback=True``).
4. ``new_ride_offer`` goes out through the notification service.

Accept race
-----------
``UPDATE rides SET status='driver_assigned', ... WHERE id=:id AND
status='pending'``.  Exactly one concurrent accept sees ``rowcount == 1``;
every other caller gets ``"Ride is no longer available"``.  The driver is
then claimed with the same discipline (``current_ride_id IS NULL``).
"""

from __future__ import annotations

import dataclasses
import logging
from datetime import datetime
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from src.domain.entities import (
    DispatchError,
    DriverDisplay,
    OfferResult,
    ServiceResult,
    utcnow,
)
from src.domain.enums import RideStatus, VehicleType
from src.domain.pickup_points import pickup_points_match
from src.infrastructure.models import DriverModel, RideModel
from src.infrastructure.repositories import DriverRepository, RideRepository
from src.realtime.notifications import NotificationService
from src.services.payloads import ride_summary
from src.services.queue_ledger import QueueLedgerService
from src.services.ride_events import RideEventTracker

logger = logging.getLogger(__name__)

RIDE_UNAVAILABLE = "Ride is no longer available"


def _display(driver: DriverModel, display: Optional[DriverDisplay]) -> DriverDisplay:
    display = display or DriverDisplay()
    return DriverDisplay(
        name=display.name or driver.full_name,
        phone=display.phone or driver.phone,
        vehicle_no=display.vehicle_no or driver.vehicle_no,
        rating=display.rating if display.rating is not None else driver.rating,
    )


def _check_manual_driver(driver: Optional[DriverModel], ride: RideModel) -> None:
    """Raise ``DispatchError`` unless an operator may hand *ride* to *driver*."""
    if driver is None:
        raise DispatchError("Driver not found")
    if not driver.is_online:
        raise DispatchError("Driver is offline")
    if driver.current_ride_id is not None:
        raise DispatchError("Driver already has an active ride")
    if VehicleType(driver.vehicle_type) != VehicleType(ride.vehicle_type):
        raise DispatchError(
            f"Driver drives a {VehicleType(driver.vehicle_type).value}, "
            f"ride needs a {VehicleType(ride.vehicle_type).value}"
        )
    if driver.current_pickup_point and not pickup_points_match(
        driver.current_pickup_point, ride.pickup_point
    ):
        raise DispatchError(
            f"Driver is at {driver.current_pickup_point}, not {ride.pickup_point}"
        )


class DispatchEngine:
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

    # ── Broadcast ─────────────────────────────────────────────────

    async def broadcast(self, ride_id: int) -> OfferResult:
        async with self.session_factory() as session:
            ride = await RideRepository(session).get_by_id(ride_id)
            if ride is None or RideStatus(ride.status) != RideStatus.PENDING:
                return OfferResult(ride_id=ride_id)
            online = await DriverRepository(session).get_online_free()

        eligible = [
            d for d in online if pickup_points_match(d.current_pickup_point, ride.pickup_point)
        ]
        fallback = False
        if not eligible and online:
            logger.info(
                "No driver at %s for ride %s; offering to all %d online drivers",
                ride.pickup_point, ride.ride_code, len(online),
            )
            eligible, fallback = online, True

        result = OfferResult(
            ride_id=ride.id, driver_ids=[d.id for d in eligible], fallback=fallback
        )
        summary = ride_summary(ride)
        if not eligible:
            self.events.log_event(ride.ride_code, "no_drivers_available")
            self.notifications.notify_admins(
                "no_drivers_available", {**summary, "drivers_notified": 0}
            )
            return result

        result.delivered = await self.notifications.offer_ride(
            result.driver_ids, {**summary, "fallback": fallback}
        )
        self.events.log_event(
            ride.ride_code,
            "ride_offered",
            drivers=len(result.driver_ids),
            delivered=result.delivered,
            fallback=fallback,
        )
        self.notifications.notify_admins(
            "new_ride_request", {**summary, "drivers_notified": len(result.driver_ids)}
        )
        return result

    # ── Assignment ────────────────────────────────────────────────

    async def accept(
        self,
        ride_id: int,
        driver_id: int,
        display: Optional[DriverDisplay] = None,
        now: Optional[datetime] = None,
    ) -> ServiceResult:
        now = now or utcnow()
        async with self.session_factory() as session:
            drivers = DriverRepository(session)
            driver = await drivers.get_by_id(driver_id)
            if driver is None:
                return ServiceResult.fail("Driver not found")
            if driver.current_ride_id is not None:
                return ServiceResult.fail("Driver already has an active ride")

            shown = _display(driver, display)
            if not await self._assign(session, ride_id, driver_id, shown, now):
                await session.rollback()
                logger.info("Driver %s lost the race for ride %s", driver_id, ride_id)
                return ServiceResult.fail(RIDE_UNAVAILABLE, ride_id=ride_id)
            if not await drivers.claim(driver_id, ride_id):
                await session.rollback()
                return ServiceResult.fail("Driver already has an active ride")
            await session.commit()

        return await self._after_assignment(ride_id, driver_id, "accepted")

    async def manual_assign(
        self,
        ride_id: int,
        driver_id: int,
        operator_id: str,
        now: Optional[datetime] = None,
    ) -> ServiceResult:
        """Operator picks the driver; same conditional path as ``accept``."""
        now = now or utcnow()
        async with self.session_factory() as session:
            ride = await RideRepository(session).get_by_id(ride_id)
            if ride is None:
                return ServiceResult.fail("Ride not found")
            if RideStatus(ride.status) != RideStatus.PENDING:
                return ServiceResult.fail(RIDE_UNAVAILABLE, ride_id=ride_id)

            drivers = DriverRepository(session)
            driver = await drivers.get_by_id(driver_id)
            try:
                _check_manual_driver(driver, ride)
            except DispatchError as exc:
                return ServiceResult.fail(str(exc))
            if not driver.current_pickup_point:
                # tolerated: the driver is adopted at the ride's pickup point
                logger.info(
                    "Driver %s had no pickup point; setting %s", driver_id, ride.pickup_point
                )
                driver.current_pickup_point = ride.pickup_point

            assigned = await self._assign(
                session,
                ride_id,
                driver_id,
                _display(driver, None),
                now,
                override_by=operator_id,
                override_reason="manual assignment",
            )
            if not assigned or not await drivers.claim(driver_id, ride_id):
                await session.rollback()
                return ServiceResult.fail(RIDE_UNAVAILABLE, ride_id=ride_id)
            await session.commit()

        return await self._after_assignment(ride_id, driver_id, "manually_assigned")

    async def _assign(
        self,
        session: AsyncSession,
        ride_id: int,
        driver_id: int,
        shown: DriverDisplay,
        now: datetime,
        **extra,
    ) -> bool:
        return await RideRepository(session).transition(
            ride_id,
            RideStatus.PENDING,
            status=RideStatus.DRIVER_ASSIGNED,
            driver_id=driver_id,
            driver_name=shown.name,
            driver_phone=shown.phone,
            driver_vehicle_no=shown.vehicle_no,
            driver_rating=shown.rating,
            accepted_at=now,
            updated_at=now,
            **extra,
        )

    async def _after_assignment(self, ride_id: int, driver_id: int, how: str) -> ServiceResult:
        await self.notifications.close_offer(ride_id, accepted_by=driver_id)

        async with self.session_factory() as session:
            ride = await RideRepository(session).get_by_id(ride_id)
        if ride is None:
            # closed between the accept commit and here
            return ServiceResult.fail(RIDE_UNAVAILABLE, ride_id=ride_id)
        assignment = await self.queue.assign(ride.pickup_point, ride_id)

        async with self.session_factory() as session:
            ride = await RideRepository(session).get_by_id(ride_id) or ride

        summary = ride_summary(ride)
        queue_info = {"ride_id": ride.id, **dataclasses.asdict(assignment)}
        self.events.log_event(
            ride.ride_code,
            "driver_assigned",
            driver_id=driver_id,
            how=how,
            queue_number=assignment.queue_number,
            degraded_queue=assignment.degraded,
        )

        # riders hand both codes to the driver; drivers never receive them
        await self.notifications.notify_rider(
            ride.user_id,
            "ride_assigned",
            {**summary, "start_otp": ride.start_otp, "end_otp": ride.end_otp},
        )
        await self.notifications.notify_rider(ride.user_id, "queue_number_assigned", queue_info)
        await self.notifications.notify_driver(driver_id, "ride_assigned", summary)
        await self.notifications.notify_driver(driver_id, "queue_number_assigned", queue_info)
        self.notifications.notify_admins("driver_assigned", {**summary, "queue": queue_info})

        return ServiceResult.ok("Ride accepted", ride=summary, queue=queue_info)

    # ── Driver presence ───────────────────────────────────────────

    async def driver_online(
        self,
        driver_id: int,
        pickup_point: Optional[str] = None,
        lat: Optional[float] = None,
        lng: Optional[float] = None,
        now: Optional[datetime] = None,
    ) -> ServiceResult:
        now = now or utcnow()
        values = {"is_online": True, "last_seen_at": now}
        if pickup_point:
            values["current_pickup_point"] = pickup_point
        if lat is not None and lng is not None:
            values.update(last_lat=lat, last_lng=lng)

        async with self.session_factory() as session:
            drivers = DriverRepository(session)
            if not await drivers.set_presence(driver_id, **values):
                return ServiceResult.fail("Driver not found")
            await session.commit()
            driver = await drivers.get_by_id(driver_id)
            pending = await RideRepository(session).list_by_status(RideStatus.PENDING)

        # catch the driver up on rides already waiting at their point
        offered = 0
        if driver.current_ride_id is None:
            for ride in pending:
                if pickup_points_match(driver.current_pickup_point, ride.pickup_point):
                    offered += await self.notifications.offer_ride(
                        [driver_id], {**ride_summary(ride), "fallback": False}
                    )

        logger.info("Driver %s online at %s", driver_id, driver.current_pickup_point)
        self.notifications.notify_admins(
            "driver_online",
            {"driver_id": driver_id, "pickup_point": driver.current_pickup_point},
        )
        return ServiceResult.ok(
            "Driver online",
            driver_id=driver_id,
            pickup_point=driver.current_pickup_point,
            pending_offers=offered,
        )

    async def driver_offline(self, driver_id: int, now: Optional[datetime] = None) -> ServiceResult:
        now = now or utcnow()
        async with self.session_factory() as session:
            if not await DriverRepository(session).set_presence(
                driver_id, is_online=False, last_seen_at=now
            ):
                return ServiceResult.fail("Driver not found")
            await session.commit()
        logger.info("Driver %s offline", driver_id)
        self.notifications.notify_admins("driver_offline", {"driver_id": driver_id})
        return ServiceResult.ok("Driver offline", driver_id=driver_id)

    async def driver_location_update(
        self, driver_id: int, lat: float, lng: float, now: Optional[datetime] = None
    ) -> ServiceResult:
        """Store the position and relay it to the rider of the current ride."""
        now = now or utcnow()
        async with self.session_factory() as session:
            drivers = DriverRepository(session)
            if not await drivers.set_presence(
                driver_id, last_lat=lat, last_lng=lng, last_seen_at=now
            ):
                return ServiceResult.fail("Driver not found")
            await session.commit()
            driver = await drivers.get_by_id(driver_id)
            ride = None
            if driver.current_ride_id is not None:
                ride = await RideRepository(session).get_by_id(driver.current_ride_id)

        relayed = 0
        if ride is not None:
            relayed = await self.notifications.notify_rider(
                ride.user_id,
                "driver_location_updated",
                {
                    "ride_id": ride.id,
                    "driver_id": driver_id,
                    "lat": lat,
                    "lng": lng,
                    "at": now,
                },
            )
        return ServiceResult.ok("Location updated", driver_id=driver_id, relayed=relayed)
