"""
Pickup-point name matching
==========================

Drivers declare the pickup point they are waiting at as free text, riders
book against the canonical pickup-point name.  A driver is eligible for a
ride when the two names refer to the same place:

1. **Exact** match after normalisation (case, punctuation, whitespace).
2. **Containment** either direction ("Hauz Khas" vs "Hauz Khas Gate 1").
   The shorter side must be at least ``MIN_CONTAINMENT_LENGTH`` characters
   so that stray abbreviations do not match everything.
3. **Alias table**: both names resolve to the same canonical station.

The same alias table derives the short queue code used in queue numbers.
"""

from __future__ import annotations

import re
from typing import Optional

MIN_CONTAINMENT_LENGTH = 4

# canonical name -> (queue code, known aliases / abbreviations)
PICKUP_ALIASES: dict[str, tuple[str, tuple[str, ...]]] = {
    "kashmere gate": ("KASH", ("kashmere", "kashmiri gate", "isbt kashmere gate")),
    "rajiv chowk": ("RAJV", ("rajiv", "rc metro", "rajiv chowk metro")),
    "connaught place": ("CP", ("cp", "connaught")),
    "new delhi": ("NDLS", ("ndls", "new delhi railway station")),
    "central secretariat": ("CSEC", ("central sectt", "cs metro")),
    "hauz khas": ("HAUZ", ("hkm", "hauz khas metro", "hauzkhas")),
    "dwarka sector 21": ("DWRK", ("dwarka", "dwarka sec 21", "dwarka 21")),
    "noida city centre": ("NOID", ("noida", "noida city center", "ncc")),
    "chandni chowk": ("CCHK", ("chandni", "chandni chowk metro")),
    "indira gandhi international airport": ("IGIA", ("igi airport", "igia", "t3 airport")),
    "airport": ("AIRP", ("airport express",)),
    "anand vihar": ("ANVH", ("anand vihar isbt", "anand vihar terminal")),
    "sarai kale khan": ("SSKH", ("sarai kale khan nizamuddin", "skk")),
}

_NON_ALNUM = re.compile(r"[^a-z0-9]+")


def normalize_pickup_point(name: Optional[str]) -> str:
    """Lower-case, punctuation to spaces, collapsed whitespace."""
    if not name:
        return ""
    return _NON_ALNUM.sub(" ", name.lower()).strip()


def canonical_pickup_point(name: Optional[str]) -> Optional[str]:
    """Resolve *name* to an alias-table key, or ``None`` if unknown."""
    norm = normalize_pickup_point(name)
    if not norm:
        return None
    if norm in PICKUP_ALIASES:
        return norm
    for canonical, (_, aliases) in PICKUP_ALIASES.items():
        if norm in aliases:
            return canonical
    # Longest key first so "indira gandhi international airport" beats "airport"
    for canonical in sorted(PICKUP_ALIASES, key=len, reverse=True):
        if canonical in norm:
            return canonical
    return None


def _contains(a: str, b: str) -> bool:
    shorter, longer = (a, b) if len(a) <= len(b) else (b, a)
    return len(shorter) >= MIN_CONTAINMENT_LENGTH and shorter in longer


def pickup_points_match(driver_point: Optional[str], ride_point: Optional[str]) -> bool:
    a, b = normalize_pickup_point(driver_point), normalize_pickup_point(ride_point)
    if not a or not b:
        return False
    if a == b:
        return True
    if _contains(a, b):
        return True
    ca, cb = canonical_pickup_point(a), canonical_pickup_point(b)
    return ca is not None and ca == cb


def pickup_point_code(name: str) -> str:
    """Short (<= 4 char) upper-case code for queue numbers."""
    canonical = canonical_pickup_point(name)
    if canonical is not None:
        return PICKUP_ALIASES[canonical][0]
    letters = re.sub(r"[^A-Z]", "", name.upper())
    return letters[:4] or "UNKN"
