"""Wires the services together.  One container per application (or test)."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Awaitable, Callable

import redis.asyncio as aioredis
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from src.config import Settings
from src.domain.fares import CommissionSplit
from src.realtime.hub import ConnectionHub
from src.realtime.notifications import NotificationService
from src.services.dispatch import DispatchEngine
from src.services.lifecycle import LifecycleService
from src.services.otp import OtpService
from src.services.overrides import OverrideService, stuck_rules
from src.services.queue_ledger import QueueLedgerService
from src.services.ride_events import RideEventTracker
from src.services.rides import RideService
from src.workers.recovery_sweep import RecoverySweep


@dataclass
class Services:
    session_factory: async_sessionmaker[AsyncSession]
    hub: ConnectionHub
    notifications: NotificationService
    events: RideEventTracker
    queue: QueueLedgerService
    lifecycle: LifecycleService
    dispatch: DispatchEngine
    otp: OtpService
    rides: RideService
    overrides: OverrideService
    sweep: RecoverySweep

    async def aclose(self) -> None:
        await self.sweep.stop()
        await self.notifications.aclose()


def build_services(
    session_factory: async_sessionmaker[AsyncSession],
    config: Settings,
    redis_factory: Callable[[], Awaitable[aioredis.Redis]],
) -> Services:
    hub = ConnectionHub()
    notifications = NotificationService(
        hub,
        ack_timeout=config.ack_timeout_seconds,
        max_attempts=config.admin_max_attempts,
        retry_delay=config.admin_retry_delay_seconds,
        offline_queue_size=config.offline_queue_size,
        failed_kept=config.failed_notifications_kept,
    )
    events = RideEventTracker()
    queue = QueueLedgerService(
        session_factory,
        timezone=config.queue_timezone,
        minutes_per_ride=config.minutes_per_ride,
    )
    lifecycle = LifecycleService(session_factory, notifications, queue, events)
    dispatch = DispatchEngine(session_factory, notifications, queue, events)
    otp = OtpService(
        session_factory,
        notifications,
        queue,
        lifecycle,
        events,
        max_attempts=config.otp_max_attempts,
    )
    rides = RideService(
        session_factory,
        dispatch,
        lifecycle,
        CommissionSplit(config.commission_rate, config.gst_rate),
        events,
    )
    overrides = OverrideService(
        session_factory,
        lifecycle,
        notifications,
        queue,
        events,
        rules=stuck_rules(
            config.pending_timeout_minutes,
            config.assigned_timeout_minutes,
            config.started_timeout_minutes,
            config.ended_timeout_minutes,
        ),
    )
    sweep = RecoverySweep(
        overrides,
        lifecycle,
        redis_factory,
        interval_seconds=config.sweep_interval_seconds,
    )
    return Services(
        session_factory=session_factory,
        hub=hub,
        notifications=notifications,
        events=events,
        queue=queue,
        lifecycle=lifecycle,
        dispatch=dispatch,
        otp=otp,
        rides=rides,
        overrides=overrides,
        sweep=sweep,
    )
