"""
Domain entities and value objects.

Patterns used
-------------
- **State machine** (``can_transition`` / ``ensure_transition``): enforces
  valid lifecycle transitions (pending -> driver_assigned -> ride_started
  -> ride_ended -> completed, with cancelled reachable from the first
  three).
- ``ServiceResult`` is the structured success/failure outcome every core
  operation returns instead of raising for business-rule violations.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Optional

from .enums import RIDE_TRANSITIONS, CancelledBy, RideStatus


class InvalidStateTransition(Exception):
    """Raised when a ride status change violates the state machine."""


class DispatchError(Exception):
    """Raised when a ride cannot be offered or assigned."""


def utcnow() -> datetime:
    """Naive UTC timestamp, the format every table stores."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def can_transition(current: RideStatus, new: RideStatus) -> bool:
    return new in RIDE_TRANSITIONS.get(RideStatus(current), set())


def ensure_transition(current: RideStatus, new: RideStatus) -> None:
    if not can_transition(current, new):
        raise InvalidStateTransition(
            f"Cannot transition from {RideStatus(current).value} to {RideStatus(new).value}"
        )


# ── Value Objects ─────────────────────────────────────────────────────


@dataclass(frozen=True)
class DriverDisplay:
    """Denormalised driver fields copied onto a ride at assignment."""

    name: Optional[str] = None
    phone: Optional[str] = None
    vehicle_no: Optional[str] = None
    rating: Optional[float] = None


@dataclass
class ServiceResult:
    success: bool
    message: str = ""
    data: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def ok(cls, message: str = "", **data: Any) -> "ServiceResult":
        return cls(True, message, data)

    @classmethod
    def fail(cls, message: str, **data: Any) -> "ServiceResult":
        return cls(False, message, data)


@dataclass(frozen=True)
class QueueAssignment:
    queue_number: str
    queue_position: Optional[int]
    total_queued: int
    estimated_wait_minutes: int
    degraded: bool = False


@dataclass
class OfferResult:
    ride_id: int
    driver_ids: list[int] = field(default_factory=list)
    fallback: bool = False
    delivered: int = 0


@dataclass
class CompletionData:
    """What a closer knows about *how* a ride is leaving the live set."""

    status: RideStatus = RideStatus.COMPLETED
    cancellation_reason: Optional[str] = None
    cancelled_by: Optional[CancelledBy] = None
    closed_by: Optional[str] = None
    close_reason: Optional[str] = None
    auto_closed: bool = False
    payment_method: Optional[str] = None
    # close only if the ride is still in this status
    expected_status: Optional[RideStatus] = None
    # operator override: skip the state-machine check
    force: bool = False
