"""
Booking entry points: create a ride (app or operator) and party cancels.

A new ride is written as ``pending`` with both OTPs already issued, then
handed to the dispatch engine for broadcast.  Riders and drivers may only
cancel before the trip starts; later cancels are an operator override.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from src.domain.entities import ServiceResult, utcnow
from src.domain.enums import (
    PARTY_CANCELLABLE,
    BookingSource,
    CancelledBy,
    RideStatus,
    VehicleType,
)
from src.domain.fares import FareSplitStrategy
from src.domain.otp import generate_ride_code, generate_ride_otps
from src.infrastructure.models import RideModel, UserModel
from src.infrastructure.repositories import (
    RideHistoryRepository,
    RideRepository,
    UserRepository,
)
from src.services.dispatch import DispatchEngine
from src.services.lifecycle import LifecycleService
from src.services.ride_events import RideEventTracker

logger = logging.getLogger(__name__)


@dataclass
class BookingRequest:
    pickup_point: str
    drop_address: str
    vehicle_type: VehicleType
    distance_km: float
    quoted_fare: float
    user_id: Optional[int] = None
    user_name: Optional[str] = None
    user_phone: Optional[str] = None
    driver_fare: Optional[float] = None
    pickup_lat: Optional[float] = None
    pickup_lng: Optional[float] = None
    drop_lat: Optional[float] = None
    drop_lng: Optional[float] = None
    payment_method: str = "cash"


class RideService:
    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        dispatch: DispatchEngine,
        lifecycle: LifecycleService,
        fare_split: FareSplitStrategy,
        events: RideEventTracker,
    ):
        self.session_factory = session_factory
        self.dispatch = dispatch
        self.lifecycle = lifecycle
        self.fare_split = fare_split
        self.events = events

    async def create(
        self,
        request: BookingRequest,
        source: BookingSource = BookingSource.APP,
        operator_id: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> ServiceResult:
        now = now or utcnow()
        async with self.session_factory() as session:
            user = await self._resolve_rider(session, request, source)
            if user is None:
                return ServiceResult.fail("Rider not found")

            driver_fare = request.driver_fare
            if driver_fare is None:
                driver_fare = self.fare_split.split(request.quoted_fare).driver_fare
            start_otp, end_otp = generate_ride_otps()

            ride = await RideRepository(session).create(
                RideModel(
                    ride_code=generate_ride_code(),
                    user_id=user.id,
                    user_name=user.name,
                    user_phone=user.phone,
                    pickup_point=request.pickup_point,
                    pickup_lat=request.pickup_lat,
                    pickup_lng=request.pickup_lng,
                    drop_address=request.drop_address,
                    drop_lat=request.drop_lat,
                    drop_lng=request.drop_lng,
                    vehicle_type=VehicleType(request.vehicle_type),
                    distance_km=request.distance_km,
                    quoted_fare=request.quoted_fare,
                    driver_fare=driver_fare,
                    status=RideStatus.PENDING,
                    start_otp=start_otp,
                    end_otp=end_otp,
                    otp_failed_attempts=0,
                    payment_method=request.payment_method,
                    booking_source=source,
                    override_by=operator_id,
                    created_at=now,
                    updated_at=now,
                )
            )
            await session.commit()

        self.events.log_event(
            ride.ride_code,
            "ride_requested",
            pickup_point=ride.pickup_point,
            vehicle_type=VehicleType(ride.vehicle_type).value,
            source=BookingSource(source).value,
        )
        return ServiceResult.ok(
            "Ride created",
            ride_id=ride.id,
            ride_code=ride.ride_code,
            quoted_fare=ride.quoted_fare,
            driver_fare=ride.driver_fare,
            start_otp=ride.start_otp,
            end_otp=ride.end_otp,
            status=RideStatus.PENDING.value,
        )

    async def _resolve_rider(
        self, session: AsyncSession, request: BookingRequest, source: BookingSource
    ) -> Optional[UserModel]:
        users = UserRepository(session)
        if request.user_id is not None:
            return await users.get_by_id(request.user_id)
        if source != BookingSource.MANUAL or not request.user_phone:
            return None
        # walk-up riders booked at the booth get a minimal record
        user = await users.get_by_phone(request.user_phone)
        if user is None:
            user = await users.create(
                UserModel(name=request.user_name or "Walk-in rider", phone=request.user_phone)
            )
            logger.info("Created walk-in rider %s", user.id)
        return user

    async def book(self, request: BookingRequest) -> ServiceResult:
        """App booking: create, then broadcast to drivers."""
        created = await self.create(request)
        if not created.success:
            return created
        offer = await self.dispatch.broadcast(created.data["ride_id"])
        created.data.update(
            drivers_notified=len(offer.driver_ids),
            fallback_broadcast=offer.fallback,
        )
        return created

    async def manual_booking(
        self,
        request: BookingRequest,
        operator_id: str,
        driver_id: Optional[int] = None,
    ) -> ServiceResult:
        """Operator booking; with a driver it is assigned directly, else broadcast."""
        created = await self.create(request, source=BookingSource.MANUAL, operator_id=operator_id)
        if not created.success:
            return created
        ride_id = created.data["ride_id"]
        if driver_id is None:
            offer = await self.dispatch.broadcast(ride_id)
            created.data.update(
                drivers_notified=len(offer.driver_ids), fallback_broadcast=offer.fallback
            )
            return created

        assigned = await self.dispatch.manual_assign(ride_id, driver_id, operator_id)
        if not assigned.success:
            # ride stays pending; fall back to a normal broadcast
            offer = await self.dispatch.broadcast(ride_id)
            created.data.update(
                drivers_notified=len(offer.driver_ids),
                fallback_broadcast=offer.fallback,
                assignment_error=assigned.message,
            )
            return created
        created.data.update(assigned.data)
        created.message = "Ride created and assigned"
        return created

    async def cancel_by_party(
        self,
        ride_id: int,
        cancelled_by: CancelledBy,
        reason: Optional[str] = None,
        requester_id: Optional[int] = None,
    ) -> ServiceResult:
        async with self.session_factory() as session:
            ride = await RideRepository(session).get_by_id(ride_id)
            archived = ride is None and (
                await RideHistoryRepository(session).get_by_ride_id(ride_id) is not None
            )
        if archived:
            return ServiceResult.fail("Ride already closed", ride_id=ride_id)
        if ride is None:
            return ServiceResult.fail("Ride not found")

        cancelled_by = CancelledBy(cancelled_by)
        if requester_id is not None:
            owner = ride.user_id if cancelled_by == CancelledBy.RIDER else ride.driver_id
            if owner != requester_id:
                return ServiceResult.fail("Ride does not belong to requester")

        status = RideStatus(ride.status)
        if status not in PARTY_CANCELLABLE:
            return ServiceResult.fail(
                f"Cannot cancel ride in status {status.value}", status=status.value
            )
        return await self.lifecycle.cancel(
            ride_id,
            reason or f"Cancelled by {cancelled_by.value}",
            cancelled_by,
            expected=status,
        )

    async def get(self, ride_id: int) -> Optional[RideModel]:
        async with self.session_factory() as session:
            return await RideRepository(session).get_by_id(ride_id)
