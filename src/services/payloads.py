"""Event payloads shared by the services (JSON-ready after ``jsonable_encoder``)."""

from __future__ import annotations

from src.domain.enums import RideStatus
from src.infrastructure.models import RideHistoryModel, RideModel


def _value(member):
    return getattr(member, "value", member)


def ride_summary(ride: RideModel) -> dict:
    """What riders, drivers and admins see about a live ride.  No OTPs."""
    return {
        "ride_id": ride.id,
        "ride_code": ride.ride_code,
        "status": RideStatus(ride.status).value,
        "user_id": ride.user_id,
        "user_name": ride.user_name,
        "pickup_point": ride.pickup_point,
        "pickup_lat": ride.pickup_lat,
        "pickup_lng": ride.pickup_lng,
        "drop_address": ride.drop_address,
        "drop_lat": ride.drop_lat,
        "drop_lng": ride.drop_lng,
        "vehicle_type": _value(ride.vehicle_type),
        "distance_km": ride.distance_km,
        "quoted_fare": ride.quoted_fare,
        "driver_fare": ride.driver_fare,
        "driver_id": ride.driver_id,
        "driver_name": ride.driver_name,
        "driver_phone": ride.driver_phone,
        "driver_vehicle_no": ride.driver_vehicle_no,
        "queue_number": ride.queue_number,
        "queue_position": ride.queue_position,
        "booking_source": _value(ride.booking_source),
        "created_at": ride.created_at,
    }


def history_summary(record: RideHistoryModel) -> dict:
    return {
        "ride_id": record.ride_id,
        "ride_code": record.ride_code,
        "status": RideStatus(record.status).value,
        "user_id": record.user_id,
        "driver_id": record.driver_id,
        "pickup_point": record.pickup_point,
        "drop_address": record.drop_address,
        "queue_number": record.queue_number,
        "quoted_fare": record.quoted_fare,
        "actual_fare": record.actual_fare,
        "driver_fare": record.driver_fare,
        "payment_status": _value(record.payment_status),
        "payment_method": record.payment_method,
        "cancellation_reason": record.cancellation_reason,
        "cancelled_by": _value(record.cancelled_by),
        "total_duration_min": record.total_duration_min,
        "waiting_time_min": record.waiting_time_min,
        "ride_duration_min": record.ride_duration_min,
        "average_speed_kmh": record.average_speed_kmh,
        "closed_by": record.closed_by,
        "close_reason": record.close_reason,
        "auto_closed": record.auto_closed,
        "archived_at": record.archived_at,
    }
