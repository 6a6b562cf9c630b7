"""Queue-number formatting and the flat wait-time heuristic."""

from __future__ import annotations

import time
from datetime import date, datetime
from typing import Optional
from zoneinfo import ZoneInfo


def ledger_date(tz_name: str, now: Optional[datetime] = None) -> date:
    """Calendar day the ledger belongs to, in the service's local zone."""
    tz = ZoneInfo(tz_name)
    if now is None:
        return datetime.now(tz).date()
    if now.tzinfo is None:
        now = now.replace(tzinfo=ZoneInfo("UTC"))
    return now.astimezone(tz).date()


def format_queue_number(code: str, day: date, counter: int) -> str:
    """``{code}-{YYYYMMDD}-Q{counter:03d}``."""
    return f"{code}-{day.strftime('%Y%m%d')}-Q{counter:03d}"


def fallback_queue_number(code: str) -> str:
    """Non-sequential number used when the ledger is unavailable."""
    return f"{code}-{str(int(time.time() * 1000))[-6:]}"


def estimate_wait_minutes(queued_count: int, minutes_per_ride: int) -> int:
    return max(queued_count, 0) * minutes_per_ride
