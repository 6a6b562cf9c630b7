"""Structured ride event log plus a per-ride timeline kept for admin stats."""

from __future__ import annotations

import logging
from collections import OrderedDict
from typing import Any

from src.domain.entities import utcnow

event_logger = logging.getLogger("ride_events")

# events after which a ride leaves the live timeline
CLOSING_EVENTS = frozenset({"ride_completed", "ride_cancelled"})


class RideEventTracker:
    def __init__(self, max_tracked: int = 1000):
        self.max_tracked = max_tracked
        self._timelines: OrderedDict[str, list[dict]] = OrderedDict()
        self.events_logged = 0
        self.closed_rides = 0

    def log_event(self, ride_code: str, event: str, **details: Any) -> dict:
        record = {"event": event, "at": utcnow().isoformat(), **details}
        event_logger.info(
            "ride=%s event=%s %s",
            ride_code,
            event,
            " ".join(f"{k}={v}" for k, v in details.items()),
        )
        self.events_logged += 1

        if event in CLOSING_EVENTS:
            self._timelines.pop(ride_code, None)
            self.closed_rides += 1
            return record

        timeline = self._timelines.setdefault(ride_code, [])
        timeline.append(record)
        self._timelines.move_to_end(ride_code)
        while len(self._timelines) > self.max_tracked:
            self._timelines.popitem(last=False)
        return record

    def timeline(self, ride_code: str) -> list[dict]:
        return list(self._timelines.get(ride_code, ()))

    def stats(self) -> dict:
        return {
            "active_rides": len(self._timelines),
            "events_logged": self.events_logged,
            "closed_rides": self.closed_rides,
        }
