"""
Admin / operations endpoints
============================

POST /api/v1/admin/manual-booking                 -- operator booking, optional driver
GET  /api/v1/admin/stuck-rides                    -- current stuck candidates
POST /api/v1/admin/sweep                          -- run one recovery sweep now
POST /api/v1/admin/rides/{ride_id}/force-status   -- move a ride forward
POST /api/v1/admin/rides/{ride_id}/manual-complete
POST /api/v1/admin/rides/{ride_id}/manual-cancel
GET  /api/v1/admin/queues/{pickup_point}          -- today's queue for a point
GET  /api/v1/admin/notifications/stats            -- delivery counters, live load
GET  /api/v1/admin/health                         -- liveness + dependencies
"""

import logging

from fastapi import APIRouter, Depends, Request
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from src.api.dependencies import get_db, get_services, raise_for_result
from src.api.middleware import ADMIN_LIMIT, limiter
from src.api.schemas import (
    ForceStatusRequest,
    HealthResponse,
    ManualBookingRequest,
    OverrideRequest,
    ResultResponse,
)
from src.infrastructure.repositories import DriverRepository, RideRepository
from src.services.container import Services
from src.services.rides import BookingRequest

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/admin", tags=["admin"])


@router.post(
    "/manual-booking",
    status_code=201,
    response_model=ResultResponse,
    summary="Book a ride on behalf of a walk-in rider",
)
@limiter.limit(ADMIN_LIMIT)
async def manual_booking(
    request: Request,
    body: ManualBookingRequest,
    services: Services = Depends(get_services),
):
    booking = BookingRequest(
        **body.model_dump(exclude={"operator_id", "driver_id"})
    )
    result = await services.rides.manual_booking(
        booking, operator_id=body.operator_id, driver_id=body.driver_id
    )
    return raise_for_result(result, status_code=400)


@router.get("/stuck-rides", summary="Rides past a recovery threshold")
@limiter.limit(ADMIN_LIMIT)
async def stuck_rides(request: Request, services: Services = Depends(get_services)):
    rides = await services.overrides.stuck_rides()
    return {"count": len(rides), "rides": rides}


@router.post("/sweep", summary="Run one recovery sweep immediately")
@limiter.limit(ADMIN_LIMIT)
async def run_sweep(request: Request, services: Services = Depends(get_services)):
    return await services.sweep.run_cycle()


@router.post("/rides/{ride_id}/force-status", response_model=ResultResponse)
@limiter.limit(ADMIN_LIMIT)
async def force_status(
    request: Request,
    ride_id: int,
    body: ForceStatusRequest,
    services: Services = Depends(get_services),
):
    result = await services.overrides.force_status(
        ride_id, body.status, body.operator_id, body.reason
    )
    return raise_for_result(result)


@router.post("/rides/{ride_id}/manual-complete", response_model=ResultResponse)
@limiter.limit(ADMIN_LIMIT)
async def manual_complete(
    request: Request,
    ride_id: int,
    body: OverrideRequest,
    services: Services = Depends(get_services),
):
    result = await services.overrides.manual_complete(ride_id, body.operator_id, body.reason)
    return raise_for_result(result)


@router.post("/rides/{ride_id}/manual-cancel", response_model=ResultResponse)
@limiter.limit(ADMIN_LIMIT)
async def manual_cancel(
    request: Request,
    ride_id: int,
    body: OverrideRequest,
    services: Services = Depends(get_services),
):
    result = await services.overrides.manual_cancel(ride_id, body.operator_id, body.reason)
    return raise_for_result(result)


@router.get("/queues/{pickup_point}", summary="Queue snapshot for a pickup point")
@limiter.limit(ADMIN_LIMIT)
async def queue_status(
    request: Request,
    pickup_point: str,
    services: Services = Depends(get_services),
):
    return {
        **await services.queue.status(pickup_point),
        "active": await services.queue.list_active(pickup_point),
    }


@router.get("/notifications/stats", summary="Notification delivery counters")
@limiter.limit(ADMIN_LIMIT)
async def notification_stats(
    request: Request,
    services: Services = Depends(get_services),
    db: AsyncSession = Depends(get_db),
):
    return {
        "notifications": services.notifications.stats(),
        "ride_events": services.events.stats(),
        "live_rides": await RideRepository(db).count_by_status(),
        "online_drivers": await DriverRepository(db).count_online(),
    }


@router.get("/health", response_model=HealthResponse, summary="Health check")
async def health(
    services: Services = Depends(get_services),
    db: AsyncSession = Depends(get_db),
):
    database = "ok"
    try:
        await db.execute(text("SELECT 1"))
    except SQLAlchemyError:
        logger.exception("Health check could not reach the database")
        database = "unavailable"
    notifications = services.notifications.health()
    status = "ok" if database == "ok" and notifications["status"] == "ok" else "degraded"
    return HealthResponse(
        status=status,
        database=database,
        notifications=notifications,
        sweep_running=services.sweep.running,
        last_sweep=services.sweep.last_run,
    )
