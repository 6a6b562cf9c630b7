"""
Ride endpoints
==============

POST  /api/v1/rides                        -- book a ride and broadcast it
GET   /api/v1/rides/{ride_id}              -- live ride status
PATCH /api/v1/rides/{ride_id}/cancel       -- rider / driver cancel
POST  /api/v1/rides/{ride_id}/accept       -- driver accepts (race-safe)
POST  /api/v1/rides/{ride_id}/verify-start -- start OTP
POST  /api/v1/rides/{ride_id}/verify-end   -- end OTP, completes the ride
"""

from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Request
from sqlalchemy.ext.asyncio import AsyncSession

from src.api.dependencies import get_db, get_services, raise_for_result
from src.api.middleware import PUBLIC_LIMIT, limiter
from src.api.schemas import (
    AcceptRequest,
    CancelRequest,
    ErrorResponse,
    OtpRequest,
    ResultResponse,
    RideCreatedResponse,
    RideCreateRequest,
    RideResponse,
)
from src.domain.entities import DriverDisplay
from src.infrastructure.repositories import RideRepository
from src.services.container import Services
from src.services.rides import BookingRequest

router = APIRouter(prefix="/rides", tags=["rides"])


@router.post(
    "",
    status_code=201,
    response_model=RideCreatedResponse,
    summary="Book a ride",
    responses={404: {"model": ErrorResponse, "description": "Rider not found"}},
)
@limiter.limit(PUBLIC_LIMIT)
async def create_ride(
    request: Request,
    body: RideCreateRequest,
    services: Services = Depends(get_services),
):
    result = await services.rides.book(BookingRequest(**body.model_dump()))
    raise_for_result(result, status_code=400)
    return result.data


@router.get(
    "/{ride_id}",
    response_model=RideResponse,
    summary="Get live ride status",
    responses={404: {"model": ErrorResponse}},
)
@limiter.limit(PUBLIC_LIMIT)
async def get_ride(
    request: Request,
    ride_id: int,
    db: AsyncSession = Depends(get_db),
):
    ride = await RideRepository(db).get_by_id(ride_id)
    if not ride:
        raise HTTPException(status_code=404, detail="Ride not found")
    return ride


@router.patch(
    "/{ride_id}/cancel",
    response_model=ResultResponse,
    summary="Cancel a ride",
    description="Riders and drivers may cancel while the ride is pending or driver_assigned.",
)
@limiter.limit(PUBLIC_LIMIT)
async def cancel_ride(
    request: Request,
    ride_id: int,
    body: Optional[CancelRequest] = None,
    services: Services = Depends(get_services),
):
    body = body or CancelRequest()
    result = await services.rides.cancel_by_party(
        ride_id, body.cancelled_by, body.reason, body.requester_id
    )
    return raise_for_result(result)


@router.post("/{ride_id}/accept", response_model=ResultResponse, summary="Driver accepts a ride")
@limiter.limit(PUBLIC_LIMIT)
async def accept_ride(
    request: Request,
    ride_id: int,
    body: AcceptRequest,
    services: Services = Depends(get_services),
):
    display = DriverDisplay(
        name=body.driver_name,
        phone=body.driver_phone,
        vehicle_no=body.vehicle_no,
        rating=body.rating,
    )
    result = await services.dispatch.accept(ride_id, body.driver_id, display)
    return raise_for_result(result)


@router.post("/{ride_id}/verify-start", response_model=ResultResponse, summary="Verify start OTP")
@limiter.limit(PUBLIC_LIMIT)
async def verify_start(
    request: Request,
    ride_id: int,
    body: OtpRequest,
    services: Services = Depends(get_services),
):
    result = await services.otp.verify_start(ride_id, body.otp, body.driver_id)
    return raise_for_result(result, status_code=400)


@router.post("/{ride_id}/verify-end", response_model=ResultResponse, summary="Verify end OTP")
@limiter.limit(PUBLIC_LIMIT)
async def verify_end(
    request: Request,
    ride_id: int,
    body: OtpRequest,
    services: Services = Depends(get_services),
):
    result = await services.otp.verify_end(ride_id, body.otp, body.driver_id)
    return raise_for_result(result, status_code=400)
