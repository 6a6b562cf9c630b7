"""
SQLAlchemy ORM models.

Tables
------
* ``users``          -- riders (display fields + rolling ride statistics)
* ``drivers``        -- driver presence and rolling earnings
* ``rides``          -- live, in-flight ride records
* ``ride_history``   -- immutable archive, one row per terminal ride
* ``queue_ledgers``  -- per pickup point, per calendar day sequence counter
* ``queue_entries``  -- active rides tracked by a ledger

Indexes
-------
* **Unique** ``rides.ride_code``, ``ride_history.ride_id`` /
  ``ride_history.ride_code`` and ``queue_ledgers (pickup_point, ledger_date)``
  back the at-most-once invariants.
* **B-Tree** on ``rides.status`` plus each timeout column for the recovery
  sweep, and on ``drivers.is_online`` for offer fan-out.
"""

from sqlalchemy import (
    Boolean,
    Column,
    Date,
    DateTime,
    Enum,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    UniqueConstraint,
    func,
)
from sqlalchemy.orm import relationship

from .database import Base
from src.domain.enums import (
    BookingSource,
    CancelledBy,
    PaymentStatus,
    QueueStatus,
    RideStatus,
    VehicleType,
)


def _enum(enum_cls, name: str) -> Enum:
    # store the lower-case values, not the member names
    return Enum(
        enum_cls,
        name=name,
        values_callable=lambda members: [m.value for m in members],
        native_enum=False,
        length=20,
    )


class UserModel(Base):
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(String(120), nullable=False)
    phone = Column(String(20), unique=True, nullable=False)

    total_rides = Column(Integer, default=0, nullable=False)
    completed_rides = Column(Integer, default=0, nullable=False)
    cancelled_rides = Column(Integer, default=0, nullable=False)
    total_spent = Column(Float, default=0.0, nullable=False)
    favorite_vehicle_type = Column(_enum(VehicleType, "vehicle_type"), nullable=True)
    last_ride_at = Column(DateTime, nullable=True)
    longest_ride_km = Column(Float, nullable=True)
    longest_ride_fare = Column(Float, nullable=True)
    longest_ride_at = Column(DateTime, nullable=True)

    created_at = Column(DateTime, server_default=func.now())


class DriverModel(Base):
    __tablename__ = "drivers"

    id = Column(Integer, primary_key=True, autoincrement=True)
    full_name = Column(String(120), nullable=False)
    phone = Column(String(20), unique=True, nullable=False)
    vehicle_no = Column(String(20), nullable=True)
    vehicle_type = Column(_enum(VehicleType, "vehicle_type"), nullable=False)
    rating = Column(Float, default=4.5)

    # presence
    is_online = Column(Boolean, default=False, nullable=False)
    current_pickup_point = Column(String(120), nullable=True)
    current_ride_id = Column(Integer, nullable=True)
    last_lat = Column(Float, nullable=True)
    last_lng = Column(Float, nullable=True)
    last_seen_at = Column(DateTime, nullable=True)

    total_rides = Column(Integer, default=0, nullable=False)
    total_earnings = Column(Float, default=0.0, nullable=False)
    last_active_at = Column(DateTime, nullable=True)

    created_at = Column(DateTime, server_default=func.now())

    __table_args__ = (
        Index("idx_drivers_online", "is_online"),
        Index("idx_drivers_current_ride", "current_ride_id"),
    )


class RideModel(Base):
    __tablename__ = "rides"

    id = Column(Integer, primary_key=True, autoincrement=True)
    ride_code = Column(String(40), unique=True, nullable=False)

    user_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    user_name = Column(String(120), nullable=False)
    user_phone = Column(String(20), nullable=False)

    pickup_point = Column(String(120), nullable=False)
    pickup_lat = Column(Float, nullable=True)
    pickup_lng = Column(Float, nullable=True)
    drop_address = Column(String(255), nullable=False)
    drop_lat = Column(Float, nullable=True)
    drop_lng = Column(Float, nullable=True)

    vehicle_type = Column(_enum(VehicleType, "vehicle_type"), nullable=False)
    distance_km = Column(Float, nullable=False)
    quoted_fare = Column(Float, nullable=False)
    driver_fare = Column(Float, nullable=False)
    actual_fare = Column(Float, nullable=True)

    status = Column(_enum(RideStatus, "ride_status"), default=RideStatus.PENDING, nullable=False)

    driver_id = Column(Integer, nullable=True)
    driver_name = Column(String(120), nullable=True)
    driver_phone = Column(String(20), nullable=True)
    driver_vehicle_no = Column(String(20), nullable=True)
    driver_rating = Column(Float, nullable=True)

    start_otp = Column(String(4), nullable=False)
    end_otp = Column(String(4), nullable=False)
    otp_failed_attempts = Column(Integer, default=0, nullable=False)

    queue_number = Column(String(40), nullable=True)
    queue_position = Column(Integer, nullable=True)
    queue_status = Column(_enum(QueueStatus, "queue_status"), nullable=True)

    created_at = Column(DateTime, nullable=False)
    accepted_at = Column(DateTime, nullable=True)
    started_at = Column(DateTime, nullable=True)
    ended_at = Column(DateTime, nullable=True)
    completed_at = Column(DateTime, nullable=True)
    cancelled_at = Column(DateTime, nullable=True)
    updated_at = Column(DateTime, nullable=True)

    cancellation_reason = Column(String(255), nullable=True)
    cancelled_by = Column(_enum(CancelledBy, "cancelled_by"), nullable=True)

    payment_status = Column(
        _enum(PaymentStatus, "payment_status"), default=PaymentStatus.PENDING, nullable=False
    )
    payment_method = Column(String(20), default="cash", nullable=False)
    payment_collected_at = Column(DateTime, nullable=True)

    booking_source = Column(
        _enum(BookingSource, "booking_source"), default=BookingSource.APP, nullable=False
    )
    override_by = Column(String(64), nullable=True)
    override_reason = Column(String(255), nullable=True)

    __table_args__ = (
        Index("idx_rides_status", "status"),
        Index("idx_rides_user", "user_id"),
        Index("idx_rides_driver", "driver_id"),
        Index("idx_rides_created", "created_at"),
        Index("idx_rides_accepted", "accepted_at"),
        Index("idx_rides_started", "started_at"),
        Index("idx_rides_ended", "ended_at"),
    )


class RideHistoryModel(Base):
    __tablename__ = "ride_history"

    id = Column(Integer, primary_key=True, autoincrement=True)
    ride_id = Column(Integer, unique=True, nullable=False)
    ride_code = Column(String(40), unique=True, nullable=False)

    user_id = Column(Integer, nullable=False)
    user_name = Column(String(120), nullable=True)
    user_phone = Column(String(20), nullable=True)
    driver_id = Column(Integer, nullable=True)
    driver_name = Column(String(120), nullable=True)
    driver_phone = Column(String(20), nullable=True)
    driver_vehicle_no = Column(String(20), nullable=True)
    driver_rating = Column(Float, nullable=True)
    missing_driver_info = Column(Boolean, default=False, nullable=False)

    pickup_point = Column(String(120), nullable=False)
    pickup_lat = Column(Float, nullable=True)
    pickup_lng = Column(Float, nullable=True)
    drop_address = Column(String(255), nullable=False)
    drop_lat = Column(Float, nullable=True)
    drop_lng = Column(Float, nullable=True)

    vehicle_type = Column(_enum(VehicleType, "vehicle_type"), nullable=False)
    distance_km = Column(Float, nullable=False)
    quoted_fare = Column(Float, nullable=False)
    driver_fare = Column(Float, nullable=False)
    actual_fare = Column(Float, nullable=True)

    status = Column(_enum(RideStatus, "ride_status"), nullable=False)
    cancellation_reason = Column(String(255), nullable=True)
    cancelled_by = Column(_enum(CancelledBy, "cancelled_by"), nullable=True)
    queue_number = Column(String(40), nullable=True)
    booking_source = Column(_enum(BookingSource, "booking_source"), nullable=False)

    requested_at = Column(DateTime, nullable=True)
    accepted_at = Column(DateTime, nullable=True)
    started_at = Column(DateTime, nullable=True)
    ended_at = Column(DateTime, nullable=True)
    completed_at = Column(DateTime, nullable=True)
    cancelled_at = Column(DateTime, nullable=True)

    payment_status = Column(_enum(PaymentStatus, "payment_status"), nullable=False)
    payment_method = Column(String(20), nullable=False)
    payment_collected_at = Column(DateTime, nullable=True)

    total_duration_min = Column(Integer, default=0, nullable=False)
    waiting_time_min = Column(Integer, default=0, nullable=False)
    ride_duration_min = Column(Integer, default=0, nullable=False)
    average_speed_kmh = Column(Float, default=0.0, nullable=False)

    closed_by = Column(String(64), nullable=True)
    close_reason = Column(String(255), nullable=True)
    auto_closed = Column(Boolean, default=False, nullable=False)
    archived_at = Column(DateTime, nullable=False)

    __table_args__ = (
        Index("idx_history_user", "user_id"),
        Index("idx_history_driver", "driver_id"),
        Index("idx_history_status", "status"),
    )


class QueueLedgerModel(Base):
    __tablename__ = "queue_ledgers"

    id = Column(Integer, primary_key=True, autoincrement=True)
    pickup_point = Column(String(120), nullable=False)
    code = Column(String(4), nullable=False)
    ledger_date = Column(Date, nullable=False)
    daily_counter = Column(Integer, default=0, nullable=False)
    total_today = Column(Integer, default=0, nullable=False)
    currently_serving = Column(Integer, default=0, nullable=False)
    updated_at = Column(DateTime, nullable=True)

    entries = relationship(
        "QueueEntryModel",
        cascade="all, delete-orphan",
        lazy="selectin",
        order_by="QueueEntryModel.queue_position",
    )

    __table_args__ = (
        UniqueConstraint("pickup_point", "ledger_date", name="uq_ledger_point_date"),
    )


class QueueEntryModel(Base):
    __tablename__ = "queue_entries"

    id = Column(Integer, primary_key=True, autoincrement=True)
    ledger_id = Column(Integer, ForeignKey("queue_ledgers.id"), nullable=False)
    ride_id = Column(Integer, unique=True, nullable=False)
    queue_number = Column(String(40), nullable=False)
    queue_position = Column(Integer, nullable=False)
    status = Column(_enum(QueueStatus, "queue_status"), default=QueueStatus.QUEUED, nullable=False)
    assigned_at = Column(DateTime, nullable=False)

    __table_args__ = (
        Index("idx_queue_entries_ledger", "ledger_id"),
        Index("idx_queue_entries_status", "status"),
    )
