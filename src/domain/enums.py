"""Domain enumerations and state-transition rules."""

import enum


class RideStatus(str, enum.Enum):
    PENDING = "pending"
    DRIVER_ASSIGNED = "driver_assigned"
    RIDE_STARTED = "ride_started"
    RIDE_ENDED = "ride_ended"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


# State machine: maps current status -> set of valid next statuses
RIDE_TRANSITIONS: dict[RideStatus, set[RideStatus]] = {
    RideStatus.PENDING: {RideStatus.DRIVER_ASSIGNED, RideStatus.CANCELLED},
    RideStatus.DRIVER_ASSIGNED: {RideStatus.RIDE_STARTED, RideStatus.CANCELLED},
    RideStatus.RIDE_STARTED: {RideStatus.RIDE_ENDED, RideStatus.CANCELLED},
    RideStatus.RIDE_ENDED: {RideStatus.COMPLETED},
    RideStatus.COMPLETED: set(),
    RideStatus.CANCELLED: set(),
}

TERMINAL_STATUSES = frozenset({RideStatus.COMPLETED, RideStatus.CANCELLED})

# Statuses a rider or driver may cancel from on their own
PARTY_CANCELLABLE = frozenset({RideStatus.PENDING, RideStatus.DRIVER_ASSIGNED})


class VehicleType(str, enum.Enum):
    BIKE = "bike"
    AUTO = "auto"
    CAR = "car"


class QueueStatus(str, enum.Enum):
    QUEUED = "queued"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"


class PaymentStatus(str, enum.Enum):
    PENDING = "pending"
    COLLECTED = "collected"


class CancelledBy(str, enum.Enum):
    RIDER = "rider"
    DRIVER = "driver"
    ADMIN = "admin"
    SYSTEM = "system"


class BookingSource(str, enum.Enum):
    APP = "app"
    MANUAL = "manual"
