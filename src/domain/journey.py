"""
Journey statistics computed when a ride is archived.

All durations are whole minutes.  ``average_speed_kmh`` uses the quoted
trip distance over the in-ride duration; it stays 0 when the ride never
started or ended within the same minute.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Optional


@dataclass(frozen=True)
class JourneyStats:
    total_duration_min: int = 0
    waiting_time_min: int = 0
    ride_duration_min: int = 0
    average_speed_kmh: float = 0.0


def _minutes(start: Optional[datetime], end: Optional[datetime]) -> int:
    if start is None or end is None:
        return 0
    return max(0, round((end - start).total_seconds() / 60))


def journey_stats(
    requested_at: Optional[datetime],
    started_at: Optional[datetime],
    ended_at: Optional[datetime],
    closed_at: datetime,
    distance_km: float,
) -> JourneyStats:
    ride_minutes = _minutes(started_at, ended_at)
    speed = 0.0
    if ride_minutes > 0 and distance_km:
        speed = round(distance_km / (ride_minutes / 60), 2)
    return JourneyStats(
        total_duration_min=_minutes(requested_at, closed_at),
        waiting_time_min=_minutes(requested_at, started_at),
        ride_duration_min=ride_minutes,
        average_speed_kmh=speed,
    )
