"""
Background Recovery Sweep
=========================

Runs every ``SWEEP_INTERVAL_SECONDS`` (default 600 s) and closes rides
that got stuck:

=================  ============  =====  ======================================
status             measured on   after  action
=================  ============  =====  ======================================
pending            created_at    30 m   cancel (system)
driver_assigned    accepted_at   15 m   cancel (system)
ride_started       started_at    60 m   force end at quoted fare, complete
ride_ended         ended_at      60 m   complete (payment collection timeout)
=================  ============  =====  ======================================

Concurrency safety
------------------
* **Redis distributed lock** so only one API process sweeps per interval.
  If Redis is unreachable the cycle still runs: every action below is a
  conditional update, so a duplicate sweeper can only lose races.
* Each action re-checks the status it read, so a driver entering the
  start OTP while the sweep is looking at the ride wins cleanly.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime
from typing import Awaitable, Callable, Optional

import redis.asyncio as aioredis
from redis.exceptions import RedisError

from src.domain.entities import CompletionData, utcnow
from src.domain.enums import CancelledBy, RideStatus
from src.infrastructure.locks import DistributedLock
from src.services.lifecycle import LifecycleService
from src.services.overrides import OverrideService, StuckRule

logger = logging.getLogger(__name__)

SWEEPER = "recovery_sweep"


class RecoverySweep:
    def __init__(
        self,
        overrides: OverrideService,
        lifecycle: LifecycleService,
        redis_factory: Callable[[], Awaitable[aioredis.Redis]],
        interval_seconds: int = 600,
        lock_ttl_seconds: int = 300,
    ):
        self.overrides = overrides
        self.lifecycle = lifecycle
        self.redis_factory = redis_factory
        self.interval_seconds = interval_seconds
        self.lock_ttl_seconds = lock_ttl_seconds
        self._task: Optional[asyncio.Task] = None
        self._stop_event: Optional[asyncio.Event] = None
        self.last_run: Optional[dict] = None

    # ── Public API ────────────────────────────────────────────────

    async def start(self) -> None:
        self._stop_event = asyncio.Event()
        self._task = asyncio.create_task(self._loop())
        logger.info("Recovery sweep started (interval=%ds)", self.interval_seconds)

    async def stop(self) -> None:
        if self._stop_event:
            self._stop_event.set()
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
        logger.info("Recovery sweep stopped")

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    # ── Internals ─────────────────────────────────────────────────

    async def _loop(self) -> None:
        assert self._stop_event is not None
        while not self._stop_event.is_set():
            try:
                await self.run_cycle()
            except Exception:
                logger.exception("Unhandled error in recovery sweep")
            try:
                await asyncio.wait_for(
                    self._stop_event.wait(), timeout=self.interval_seconds
                )
                break
            except asyncio.TimeoutError:
                pass

    async def run_cycle(self, now: Optional[datetime] = None) -> dict:
        """One sweep.  Returns per-rule counts of rides closed."""
        now = now or utcnow()
        lock = None
        try:
            lock = DistributedLock(
                await self.redis_factory(), SWEEPER, ttl_seconds=self.lock_ttl_seconds
            )
            if not await lock.acquire():
                logger.debug("Sweep lock held by another instance; skipping")
                return {"skipped": True}
        except RedisError:
            logger.warning("Redis unavailable; sweeping without the lock", exc_info=True)
            lock = None

        counts: dict = {"skipped": False}
        try:
            for rule in self.overrides.rules:
                closed = 0
                for ride in await self.overrides.find_stuck(rule, now):
                    if await self._recover(ride.id, rule, now):
                        closed += 1
                if lock is not None:
                    await lock.extend()
                counts[rule.status.value] = closed
        finally:
            if lock is not None:
                try:
                    await lock.release()
                except RedisError:
                    logger.warning("Could not release sweep lock", exc_info=True)

        total = sum(v for k, v in counts.items() if k != "skipped")
        if total:
            logger.info("Recovery sweep closed %d stuck rides: %s", total, counts)
        self.last_run = {"at": now.isoformat(), **counts}
        return counts

    async def _recover(self, ride_id: int, rule: StuckRule, now: datetime) -> bool:
        if rule.status in (RideStatus.PENDING, RideStatus.DRIVER_ASSIGNED):
            result = await self.lifecycle.cancel(
                ride_id,
                rule.reason,
                CancelledBy.SYSTEM,
                closed_by=SWEEPER,
                expected=rule.status,
                now=now,
            )
            return result.success

        if rule.status == RideStatus.RIDE_STARTED:
            if not await self.overrides.force_end(
                ride_id, RideStatus.RIDE_STARTED, SWEEPER, rule.reason, now=now
            ):
                return False

        result = await self.lifecycle.complete(
            ride_id,
            CompletionData(
                status=RideStatus.COMPLETED,
                closed_by=SWEEPER,
                close_reason=rule.reason,
                auto_closed=True,
                payment_method="cash",
                expected_status=RideStatus.RIDE_ENDED,
            ),
            now=now,
        )
        if not result.success:
            logger.info("Sweep could not close ride %s: %s", ride_id, result.message)
        return result.success
