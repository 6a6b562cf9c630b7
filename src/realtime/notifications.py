"""
Notification Delivery Service
=============================

Rider and driver messages are best-effort: whoever is connected gets
the frame, nobody waits.

Admin messages are tracked:

1. Build ``{id, type, data, timestamp, attempt}``.
2. No admin connected -> append to the bounded offline queue (oldest
   evicted) and stop; the whole queue is replayed as one
   ``offline_notifications`` frame to the next admin that connects.
3. Otherwise emit ``ride_update`` with acknowledgment plus the
   type-specific event, wait up to ``ack_timeout`` for acks.
4. Zero acks -> wait ``retry_delay`` and resend with the same id and
   ``attempt + 1``, up to ``max_attempts``; then record it as failed.

Admin delivery always runs in a tracked background task so the state
transition that triggered it never waits on a socket.
"""

from __future__ import annotations

import asyncio
import logging
import uuid
from collections import deque
from typing import Any, Iterable, Optional

from .audiences import AudienceResolver
from .hub import Connection, ConnectionHub
from src.domain.entities import utcnow

logger = logging.getLogger(__name__)


class NotificationService:
    def __init__(
        self,
        hub: ConnectionHub,
        *,
        ack_timeout: float = 5.0,
        max_attempts: int = 3,
        retry_delay: float = 1.0,
        offline_queue_size: int = 50,
        failed_kept: int = 100,
    ):
        self.hub = hub
        self.audiences = AudienceResolver(hub)
        self.ack_timeout = ack_timeout
        self.max_attempts = max_attempts
        self.retry_delay = retry_delay

        self.offline_queue: deque[dict] = deque(maxlen=offline_queue_size)
        self.failed: deque[dict] = deque(maxlen=failed_kept)
        self._tasks: set[asyncio.Task] = set()
        self._counters = {
            "sent": 0,
            "acknowledged": 0,
            "retried": 0,
            "queued_offline": 0,
            "failed": 0,
            "replayed": 0,
        }

    # ── Riders / drivers (best-effort) ────────────────────────────

    async def notify_rider(self, user_id: object, event: str, data: Any) -> int:
        return await self.hub.emit(self.audiences.rider(user_id), event, data)

    async def notify_driver(self, driver_id: object, event: str, data: Any) -> int:
        return await self.hub.emit(self.audiences.driver(driver_id), event, data)

    async def offer_ride(self, driver_ids: Iterable[object], offer: dict) -> int:
        """``new_ride_offer`` to each driver's private and shared channel."""
        return await self.hub.emit(self.audiences.drivers(driver_ids), "new_ride_offer", offer)

    async def close_offer(
        self, ride_id: int, accepted_by: Optional[object] = None, reason: str = "accepted"
    ) -> int:
        """``offer_closed`` to every driver except the one who took the ride."""
        exclude = [] if accepted_by is None else [accepted_by]
        return await self.hub.emit(
            self.audiences.all_drivers(exclude=exclude),
            "offer_closed",
            {"ride_id": ride_id, "accepted_by": accepted_by, "reason": reason},
        )

    # ── Admins (tracked) ──────────────────────────────────────────

    def notify_admins(self, notification_type: str, data: dict) -> str:
        """Schedule tracked delivery and return the notification id."""
        notification = {
            "id": uuid.uuid4().hex,
            "type": notification_type,
            "data": data,
            "timestamp": utcnow().isoformat(),
            "attempt": 0,
        }
        task = asyncio.create_task(self.deliver_admin_notification(notification))
        self._tasks.add(task)
        task.add_done_callback(self._task_done)
        return notification["id"]

    def _task_done(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if not task.cancelled() and task.exception() is not None:
            logger.error(
                "Admin notification task crashed", exc_info=task.exception()
            )

    async def deliver_admin_notification(self, notification: dict) -> bool:
        for attempt in range(notification["attempt"] + 1, self.max_attempts + 1):
            admins = self.audiences.admins()
            if not admins:
                self._queue_offline(notification)
                return False

            notification["attempt"] = attempt
            if attempt > 1:
                self._counters["retried"] += 1
            self._counters["sent"] += 1

            acked, total = await self.hub.emit_with_ack(
                admins, "ride_update", notification, self.ack_timeout
            )
            await self.hub.emit(admins, notification["type"], notification["data"])

            if acked:
                self._counters["acknowledged"] += 1
                logger.debug(
                    "Admin notification %s (%s) acked by %d/%d",
                    notification["id"], notification["type"], acked, total,
                )
                return True

            logger.warning(
                "Admin notification %s (%s) not acknowledged (attempt %d/%d)",
                notification["id"], notification["type"], attempt, self.max_attempts,
            )
            if attempt < self.max_attempts:
                await asyncio.sleep(self.retry_delay)

        self._record_failure(notification)
        return False

    def _queue_offline(self, notification: dict) -> None:
        if len(self.offline_queue) == self.offline_queue.maxlen:
            evicted = self.offline_queue[0]
            logger.warning("Offline queue full; evicting notification %s", evicted["id"])
        self.offline_queue.append(notification)
        self._counters["queued_offline"] += 1
        logger.info(
            "No admin connected; queued %s (%d waiting)",
            notification["type"], len(self.offline_queue),
        )

    def _record_failure(self, notification: dict) -> None:
        self._counters["failed"] += 1
        self.failed.append({**notification, "failed_at": utcnow().isoformat()})
        logger.error(
            "Admin notification %s (%s) failed after %d attempts",
            notification["id"], notification["type"], notification["attempt"],
        )

    async def on_admin_connected(self, conn: Connection) -> int:
        """Replay the offline queue, as one batch, to a newly connected admin."""
        if not self.offline_queue:
            return 0
        batch = list(self.offline_queue)
        sent = await self.hub.emit(
            [conn], "offline_notifications", {"count": len(batch), "notifications": batch}
        )
        if not sent:
            return 0
        for _ in batch:
            self.offline_queue.popleft()
        self._counters["replayed"] += len(batch)
        logger.info("Replayed %d offline notifications to %r", len(batch), conn)
        return len(batch)

    # ── Observability ─────────────────────────────────────────────

    def stats(self) -> dict:
        return {
            **self._counters,
            "offline_queue_size": len(self.offline_queue),
            "pending_deliveries": len(self._tasks),
            "connected_admins": len(self.audiences.admins()),
            "connected_drivers": self.hub.count("driver"),
            "connected_riders": self.hub.count("rider"),
            "recent_failures": list(self.failed)[-5:],
        }

    def health(self) -> dict:
        admins = len(self.audiences.admins())
        status = "ok" if admins or not self.offline_queue else "degraded"
        return {
            "status": status,
            "connections": self.hub.count(),
            "connected_admins": admins,
            "offline_queue_size": len(self.offline_queue),
        }

    async def aclose(self, timeout: Optional[float] = None) -> None:
        """Let in-flight admin deliveries finish, then cancel stragglers."""
        if not self._tasks:
            return
        pending = set(self._tasks)
        _, still_running = await asyncio.wait(
            pending, timeout=timeout if timeout is not None else self.ack_timeout
        )
        for task in still_running:
            task.cancel()
        if still_running:
            await asyncio.gather(*still_running, return_exceptions=True)
            logger.warning("Cancelled %d undelivered admin notifications", len(still_running))
