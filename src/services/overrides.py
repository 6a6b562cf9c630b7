"""
Operator overrides and stuck-ride detection.

Every override goes through the same conditional update as organic
traffic (keyed on the status that was read) and records who did it and
why in ``override_by`` / ``override_reason``.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from src.domain.entities import CompletionData, ServiceResult, utcnow
from src.domain.enums import (
    TERMINAL_STATUSES,
    CancelledBy,
    QueueStatus,
    RideStatus,
)
from src.infrastructure.models import RideModel
from src.infrastructure.repositories import RideRepository
from src.realtime.notifications import NotificationService
from src.services.lifecycle import LifecycleService
from src.services.payloads import ride_summary
from src.services.queue_ledger import QueueLedgerService
from src.services.ride_events import RideEventTracker

logger = logging.getLogger(__name__)

# forward order used by force_status
_ORDER = [
    RideStatus.PENDING,
    RideStatus.DRIVER_ASSIGNED,
    RideStatus.RIDE_STARTED,
    RideStatus.RIDE_ENDED,
]

_STAMP_FOR = {
    RideStatus.DRIVER_ASSIGNED: "accepted_at",
    RideStatus.RIDE_STARTED: "started_at",
    RideStatus.RIDE_ENDED: "ended_at",
}


@dataclass(frozen=True)
class StuckRule:
    status: RideStatus
    since: str  # timestamp column the age is measured from
    threshold: timedelta
    reason: str


def stuck_rules(
    pending_minutes: int = 30,
    assigned_minutes: int = 15,
    started_minutes: int = 60,
    ended_minutes: int = 60,
) -> list[StuckRule]:
    return [
        StuckRule(
            RideStatus.PENDING,
            "created_at",
            timedelta(minutes=pending_minutes),
            "No driver found within time limit",
        ),
        StuckRule(
            RideStatus.DRIVER_ASSIGNED,
            "accepted_at",
            timedelta(minutes=assigned_minutes),
            "Driver did not start ride within time limit",
        ),
        StuckRule(
            RideStatus.RIDE_STARTED,
            "started_at",
            timedelta(minutes=started_minutes),
            "Ride exceeded maximum duration",
        ),
        StuckRule(
            RideStatus.RIDE_ENDED,
            "ended_at",
            timedelta(minutes=ended_minutes),
            "Payment collection timeout",
        ),
    ]


class OverrideService:
    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        lifecycle: LifecycleService,
        notifications: NotificationService,
        queue: QueueLedgerService,
        events: RideEventTracker,
        rules: Optional[list[StuckRule]] = None,
    ):
        self.session_factory = session_factory
        self.lifecycle = lifecycle
        self.notifications = notifications
        self.queue = queue
        self.events = events
        self.rules = rules or stuck_rules()

    # ── Stuck rides ───────────────────────────────────────────────

    async def find_stuck(self, rule: StuckRule, now: Optional[datetime] = None) -> list[RideModel]:
        now = now or utcnow()
        async with self.session_factory() as session:
            return await RideRepository(session).find_stuck(
                rule.status, rule.since, now - rule.threshold
            )

    async def stuck_rides(self, now: Optional[datetime] = None) -> list[dict]:
        now = now or utcnow()
        report = []
        for rule in self.rules:
            for ride in await self.find_stuck(rule, now):
                since = getattr(ride, rule.since)
                report.append(
                    {
                        **ride_summary(ride),
                        "stuck_since": since,
                        "age_minutes": int((now - since).total_seconds() // 60),
                        "threshold_minutes": int(rule.threshold.total_seconds() // 60),
                        "reason": rule.reason,
                    }
                )
        return report

    # ── Overrides ─────────────────────────────────────────────────

    async def force_status(
        self,
        ride_id: int,
        new_status: RideStatus,
        operator_id: str,
        reason: str,
        now: Optional[datetime] = None,
    ) -> ServiceResult:
        new_status = RideStatus(new_status)
        if new_status == RideStatus.COMPLETED:
            return await self.manual_complete(ride_id, operator_id, reason, now=now)
        if new_status == RideStatus.CANCELLED:
            return await self.manual_cancel(ride_id, operator_id, reason, now=now)

        now = now or utcnow()
        async with self.session_factory() as session:
            rides = RideRepository(session)
            ride = await rides.get_by_id(ride_id)
            if ride is None:
                return ServiceResult.fail("Ride not found")
            current = RideStatus(ride.status)
            if _ORDER.index(new_status) <= _ORDER.index(current):
                return ServiceResult.fail(
                    f"Cannot force ride back from {current.value} to {new_status.value}"
                )
            if ride.driver_id is None:
                return ServiceResult.fail("Ride has no driver; assign one first")

            values = {
                "status": new_status,
                "updated_at": now,
                "override_by": operator_id,
                "override_reason": reason,
            }
            # fill every skipped timestamp so the timeline stays readable
            for status in _ORDER[_ORDER.index(current) + 1 : _ORDER.index(new_status) + 1]:
                column = _STAMP_FOR[status]
                if getattr(ride, column) is None:
                    values[column] = now
            if new_status == RideStatus.RIDE_ENDED and ride.actual_fare is None:
                values["actual_fare"] = ride.quoted_fare

            if not await rides.transition(ride.id, current, **values):
                await session.rollback()
                return ServiceResult.fail("Ride changed concurrently; try again")
            if new_status == RideStatus.RIDE_STARTED:
                await self.queue.update_status(ride.id, QueueStatus.IN_PROGRESS, session=session)
            elif new_status == RideStatus.RIDE_ENDED:
                await self.queue.update_status(ride.id, QueueStatus.COMPLETED, session=session)
            await session.commit()
            ride = await rides.get_by_id(ride.id)

        summary = ride_summary(ride)
        self.events.log_event(
            ride.ride_code,
            "status_forced",
            previous_status=current.value,
            new_status=new_status.value,
            operator=operator_id,
            reason=reason,
        )
        event = new_status.value
        await self.notifications.notify_rider(ride.user_id, event, summary)
        await self.notifications.notify_driver(ride.driver_id, event, summary)
        self.notifications.notify_admins(
            "status_forced", {**summary, "previous_status": current.value, "operator": operator_id}
        )
        return ServiceResult.ok(f"Ride forced to {new_status.value}", ride=summary)

    async def force_end(
        self,
        ride_id: int,
        expected: RideStatus,
        actor: str,
        reason: str,
        now: Optional[datetime] = None,
    ) -> bool:
        """ride_started (or earlier) -> ride_ended at the quoted fare, cash."""
        now = now or utcnow()
        async with self.session_factory() as session:
            rides = RideRepository(session)
            ride = await rides.get_by_id(ride_id)
            if ride is None or RideStatus(ride.status) != expected:
                return False
            moved = await rides.transition(
                ride.id,
                expected,
                status=RideStatus.RIDE_ENDED,
                started_at=ride.started_at or now,
                ended_at=now,
                updated_at=now,
                actual_fare=ride.actual_fare if ride.actual_fare is not None else ride.quoted_fare,
                payment_method="cash",
                override_by=actor,
                override_reason=reason,
            )
            if not moved:
                await session.rollback()
                return False
            await self.queue.update_status(ride.id, QueueStatus.COMPLETED, session=session)
            await session.commit()
            ride = await rides.get_by_id(ride.id)

        summary = ride_summary(ride)
        self.events.log_event(ride.ride_code, "ride_ended", forced_by=actor, reason=reason)
        await self.notifications.notify_rider(ride.user_id, "ride_ended", summary)
        if ride.driver_id is not None:
            await self.notifications.notify_driver(ride.driver_id, "ride_ended", summary)
        self.notifications.notify_admins("ride_ended", {**summary, "forced_by": actor})
        return True

    async def manual_complete(
        self,
        ride_id: int,
        operator_id: str,
        reason: str,
        now: Optional[datetime] = None,
    ) -> ServiceResult:
        now = now or utcnow()
        async with self.session_factory() as session:
            ride = await RideRepository(session).get_by_id(ride_id)
        if ride is None:
            return ServiceResult.fail("Ride not found")
        status = RideStatus(ride.status)
        if ride.driver_id is None:
            return ServiceResult.fail("Ride has no driver; cancel it instead")
        if status in (RideStatus.DRIVER_ASSIGNED, RideStatus.RIDE_STARTED):
            if not await self.force_end(ride_id, status, operator_id, reason, now=now):
                return ServiceResult.fail("Ride changed concurrently; try again")
        return await self.lifecycle.complete(
            ride_id,
            CompletionData(
                status=RideStatus.COMPLETED,
                closed_by=operator_id,
                close_reason=reason,
                payment_method="cash",
            ),
            now=now,
        )

    async def manual_cancel(
        self,
        ride_id: int,
        operator_id: str,
        reason: str,
        now: Optional[datetime] = None,
    ) -> ServiceResult:
        async with self.session_factory() as session:
            ride = await RideRepository(session).get_by_id(ride_id)
        if ride is None:
            return ServiceResult.fail("Ride not found")
        if RideStatus(ride.status) in TERMINAL_STATUSES:
            return ServiceResult.fail("Ride already closed")
        return await self.lifecycle.cancel(
            ride_id,
            reason,
            CancelledBy.ADMIN,
            closed_by=operator_id,
            force=True,
            now=now,
        )
