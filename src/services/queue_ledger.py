"""
Queue Ledger Service
====================

One ledger row per (pickup point, local calendar day), created lazily by
the first accepted ride of the day.  ``assign`` bumps the daily counter
with an in-database increment (``SET daily_counter = daily_counter + 1``)
and reads it back inside the same transaction, so two concurrent accepts
at the same pickup point can never be handed the same number.

Ledger trouble never blocks an assignment: the caller gets a *degraded*
``QueueAssignment`` carrying ``{code}-{last 6 digits of epoch ms}``.
"""

from __future__ import annotations

import logging
from datetime import date, datetime
from typing import Optional

from sqlalchemy import update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from src.domain.entities import QueueAssignment, utcnow
from src.domain.enums import QueueStatus
from src.domain.pickup_points import (
    canonical_pickup_point,
    normalize_pickup_point,
    pickup_point_code,
)
from src.domain.queueing import (
    estimate_wait_minutes,
    fallback_queue_number,
    format_queue_number,
    ledger_date,
)
from src.infrastructure.models import QueueEntryModel, QueueLedgerModel
from src.infrastructure.repositories import QueueLedgerRepository, RideRepository

logger = logging.getLogger(__name__)


def ledger_key(pickup_point: str) -> str:
    """Spelling variants of one station share a ledger."""
    return canonical_pickup_point(pickup_point) or normalize_pickup_point(pickup_point)


class QueueLedgerService:
    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        timezone: str = "Asia/Kolkata",
        minutes_per_ride: int = 3,
    ):
        self.session_factory = session_factory
        self.timezone = timezone
        self.minutes_per_ride = minutes_per_ride

    def today(self, now: Optional[datetime] = None) -> date:
        return ledger_date(self.timezone, now)

    # ── Assignment ────────────────────────────────────────────────

    async def assign(
        self, pickup_point: str, ride_id: int, now: Optional[datetime] = None
    ) -> QueueAssignment:
        code = pickup_point_code(pickup_point)
        try:
            return await self._assign(pickup_point, code, ride_id, now)
        except SQLAlchemyError:
            logger.exception(
                "Queue ledger unavailable for %s; issuing fallback number", pickup_point
            )
        number = fallback_queue_number(code)
        try:
            async with self.session_factory() as session:
                await RideRepository(session).set_queue_fields(
                    ride_id, number, None, QueueStatus.QUEUED
                )
                await session.commit()
        except SQLAlchemyError:
            logger.exception("Could not store fallback queue number on ride %s", ride_id)
        return QueueAssignment(
            queue_number=number,
            queue_position=None,
            total_queued=0,
            estimated_wait_minutes=0,
            degraded=True,
        )

    async def _assign(
        self, pickup_point: str, code: str, ride_id: int, now: Optional[datetime]
    ) -> QueueAssignment:
        key = ledger_key(pickup_point)
        day = self.today(now)
        stamp = now or utcnow()
        await self._ensure_ledger(key, code, day, stamp)

        async with self.session_factory() as session:
            repo = QueueLedgerRepository(session)

            existing = await repo.get_entry(ride_id)
            if existing is not None:
                # assigned once; repeated calls report the original number
                ledger = await session.get(QueueLedgerModel, existing.ledger_id)
                return self._assignment(ledger, existing)

            ledger = await repo.get_for_update(key, day)
            await session.execute(
                update(QueueLedgerModel)
                .where(QueueLedgerModel.id == ledger.id)
                .values(
                    daily_counter=QueueLedgerModel.daily_counter + 1,
                    total_today=QueueLedgerModel.total_today + 1,
                    updated_at=stamp,
                )
                .execution_options(synchronize_session=False)
            )
            await session.refresh(ledger)

            counter = ledger.daily_counter
            entry = QueueEntryModel(
                ledger_id=ledger.id,
                ride_id=ride_id,
                queue_number=format_queue_number(ledger.code, day, counter),
                queue_position=counter,
                status=QueueStatus.QUEUED,
                assigned_at=stamp,
            )
            session.add(entry)
            await session.flush()
            await RideRepository(session).set_queue_fields(
                ride_id, entry.queue_number, entry.queue_position, QueueStatus.QUEUED
            )
            await session.commit()

            await session.refresh(ledger, ["entries"])
            assignment = self._assignment(ledger, entry)

        logger.info(
            "Queue %s issued for ride %s at %s", assignment.queue_number, ride_id, key
        )
        return assignment

    async def _ensure_ledger(self, key: str, code: str, day: date, stamp: datetime) -> None:
        async with self.session_factory() as session:
            repo = QueueLedgerRepository(session)
            if await repo.get(key, day) is not None:
                return
            try:
                await repo.create(
                    QueueLedgerModel(
                        pickup_point=key, code=code, ledger_date=day, updated_at=stamp
                    )
                )
                await session.commit()
                logger.info("Opened queue ledger %s for %s", code, day.isoformat())
            except IntegrityError:
                # a concurrent accept opened it first
                await session.rollback()

    def _assignment(self, ledger: QueueLedgerModel, entry: QueueEntryModel) -> QueueAssignment:
        queued = sum(1 for e in ledger.entries if e.status == QueueStatus.QUEUED)
        return QueueAssignment(
            queue_number=entry.queue_number,
            queue_position=entry.queue_position,
            total_queued=queued,
            estimated_wait_minutes=estimate_wait_minutes(queued, self.minutes_per_ride),
        )

    # ── Entry maintenance ─────────────────────────────────────────

    async def update_status(
        self, ride_id: int, sub_status: QueueStatus, session: Optional[AsyncSession] = None
    ) -> bool:
        if session is None:
            async with self.session_factory() as own:
                changed = await self._update_status(own, ride_id, sub_status)
                await own.commit()
                return changed
        return await self._update_status(session, ride_id, sub_status)

    async def _update_status(
        self, session: AsyncSession, ride_id: int, sub_status: QueueStatus
    ) -> bool:
        entry = await QueueLedgerRepository(session).get_entry(ride_id)
        if entry is None:
            return False
        ledger = await session.get(QueueLedgerModel, entry.ledger_id)
        entry.status = sub_status
        if sub_status == QueueStatus.IN_PROGRESS:
            ledger.currently_serving = entry.queue_position
        ledger.updated_at = utcnow()
        await RideRepository(session).update_fields(ride_id, queue_status=sub_status)
        return True

    async def remove(self, ride_id: int, session: Optional[AsyncSession] = None) -> bool:
        if session is None:
            async with self.session_factory() as own:
                removed = await self._remove(own, ride_id)
                await own.commit()
                return removed
        return await self._remove(session, ride_id)

    async def _remove(self, session: AsyncSession, ride_id: int) -> bool:
        entry = await QueueLedgerRepository(session).get_entry(ride_id)
        if entry is None:
            return False
        await session.delete(entry)
        await session.flush()
        return True

    # ── Read side ─────────────────────────────────────────────────

    async def status(self, pickup_point: str, now: Optional[datetime] = None) -> dict:
        """Snapshot of today's ledger for one pickup point."""
        key = ledger_key(pickup_point)
        day = self.today(now)
        async with self.session_factory() as session:
            ledger = await QueueLedgerRepository(session).get(key, day)
            if ledger is None:
                return {
                    "pickup_point": key,
                    "code": pickup_point_code(pickup_point),
                    "date": day.isoformat(),
                    "total_today": 0,
                    "currently_serving": 0,
                    "queued_count": 0,
                    "in_progress_count": 0,
                    "total_active": 0,
                    "next_queue_number": format_queue_number(
                        pickup_point_code(pickup_point), day, 1
                    ),
                    "estimated_wait_minutes": 0,
                }
            queued = [e for e in ledger.entries if e.status == QueueStatus.QUEUED]
            in_progress = [e for e in ledger.entries if e.status == QueueStatus.IN_PROGRESS]
            return {
                "pickup_point": ledger.pickup_point,
                "code": ledger.code,
                "date": day.isoformat(),
                "total_today": ledger.total_today,
                "currently_serving": ledger.currently_serving,
                "queued_count": len(queued),
                "in_progress_count": len(in_progress),
                "total_active": len(ledger.entries),
                "next_queue_number": format_queue_number(
                    ledger.code, day, ledger.daily_counter + 1
                ),
                "estimated_wait_minutes": estimate_wait_minutes(
                    len(queued), self.minutes_per_ride
                ),
            }

    async def list_active(self, pickup_point: str, now: Optional[datetime] = None) -> list[dict]:
        key = ledger_key(pickup_point)
        async with self.session_factory() as session:
            ledger = await QueueLedgerRepository(session).get(key, self.today(now))
            if ledger is None:
                return []
            return [
                {
                    "ride_id": e.ride_id,
                    "queue_number": e.queue_number,
                    "queue_position": e.queue_position,
                    "status": QueueStatus(e.status).value,
                    "assigned_at": e.assigned_at,
                }
                for e in ledger.entries
            ]
