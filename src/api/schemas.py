"""Pydantic request / response schemas for the REST API."""

from __future__ import annotations

from datetime import datetime
from typing import Any, Optional

from pydantic import BaseModel, Field

from src.domain.enums import CancelledBy, RideStatus, VehicleType


# ── Requests ──────────────────────────────────────────────────────────


class RideCreateRequest(BaseModel):
    user_id: int
    pickup_point: str = Field(..., min_length=2, max_length=120)
    pickup_lat: Optional[float] = Field(None, ge=-90, le=90)
    pickup_lng: Optional[float] = Field(None, ge=-180, le=180)
    drop_address: str = Field(..., min_length=2, max_length=255)
    drop_lat: Optional[float] = Field(None, ge=-90, le=90)
    drop_lng: Optional[float] = Field(None, ge=-180, le=180)
    vehicle_type: VehicleType
    distance_km: float = Field(..., gt=0, le=500)
    quoted_fare: float = Field(..., gt=0)
    driver_fare: Optional[float] = Field(
        None,
        gt=0,
        description="Driver payout; derived from the quoted fare when omitted.",
    )
    payment_method: str = Field("cash", max_length=20)


class ManualBookingRequest(BaseModel):
    operator_id: str = Field(..., min_length=1, max_length=64)
    user_id: Optional[int] = None
    user_name: Optional[str] = Field(None, max_length=120)
    user_phone: Optional[str] = Field(None, max_length=20)
    pickup_point: str = Field(..., min_length=2, max_length=120)
    drop_address: str = Field(..., min_length=2, max_length=255)
    vehicle_type: VehicleType
    distance_km: float = Field(..., gt=0, le=500)
    quoted_fare: float = Field(..., gt=0)
    driver_fare: Optional[float] = Field(None, gt=0)
    driver_id: Optional[int] = Field(
        None, description="Assign this driver directly instead of broadcasting."
    )


class CancelRequest(BaseModel):
    cancelled_by: CancelledBy = CancelledBy.RIDER
    requester_id: Optional[int] = None
    reason: Optional[str] = Field(None, max_length=255)


class AcceptRequest(BaseModel):
    driver_id: int
    driver_name: Optional[str] = None
    driver_phone: Optional[str] = None
    vehicle_no: Optional[str] = None
    rating: Optional[float] = None


class OtpRequest(BaseModel):
    otp: str = Field(..., min_length=1, max_length=8)
    driver_id: Optional[int] = None


class OverrideRequest(BaseModel):
    operator_id: str = Field(..., min_length=1, max_length=64)
    reason: str = Field(..., min_length=1, max_length=255)


class ForceStatusRequest(OverrideRequest):
    status: RideStatus


# ── Responses ─────────────────────────────────────────────────────────


class RideCreatedResponse(BaseModel):
    ride_id: int
    ride_code: str
    quoted_fare: float
    driver_fare: float
    start_otp: str
    end_otp: str
    status: str
    drivers_notified: int = 0
    fallback_broadcast: bool = False


class RideResponse(BaseModel):
    id: int
    ride_code: str
    user_id: int
    pickup_point: str
    drop_address: str
    vehicle_type: VehicleType
    distance_km: float
    quoted_fare: float
    driver_fare: float
    actual_fare: Optional[float] = None
    status: RideStatus
    driver_id: Optional[int] = None
    driver_name: Optional[str] = None
    driver_vehicle_no: Optional[str] = None
    queue_number: Optional[str] = None
    queue_position: Optional[int] = None
    created_at: Optional[datetime] = None
    accepted_at: Optional[datetime] = None
    started_at: Optional[datetime] = None
    ended_at: Optional[datetime] = None

    model_config = {"from_attributes": True}


class ResultResponse(BaseModel):
    success: bool
    message: str
    data: dict[str, Any] = {}


class HealthResponse(BaseModel):
    status: str = "ok"
    database: str = "ok"
    notifications: dict[str, Any] = {}
    sweep_running: bool = False
    last_sweep: Optional[dict[str, Any]] = None


class ErrorResponse(BaseModel):
    detail: str
