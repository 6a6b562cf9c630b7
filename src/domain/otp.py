"""One-time codes and ride identifiers."""

from __future__ import annotations

import secrets
import time
from typing import Optional


def generate_otp() -> str:
    """Random 4-digit code in 1000..9999."""
    return str(1000 + secrets.randbelow(9000))


def generate_ride_otps() -> tuple[str, str]:
    """Independent (start, end) codes for a new ride."""
    return generate_otp(), generate_otp()


def verify_otp(provided: Optional[object], stored: Optional[object]) -> bool:
    if provided is None or stored is None:
        return False
    provided_s, stored_s = str(provided), str(stored)
    if not provided_s or not stored_s:
        return False
    return secrets.compare_digest(provided_s.encode(), stored_s.encode())


def generate_ride_code(prefix: str = "RIDE") -> str:
    return f"{prefix}-{int(time.time() * 1000)}-{generate_otp()}"
