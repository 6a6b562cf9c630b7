"""
Audience resolution.

A driver may be reachable twice: through its private ``driver_{id}`` room
and through the shared ``drivers`` room.  Offers are addressed to both so
a client that only listens on one still sees them, but resolution returns
each socket once, and the shared room is filtered down to the addressed
driver ids so nobody else is offered the ride.
"""

from __future__ import annotations

from typing import Iterable

from .hub import (
    ADMINS_ROOM,
    ALL_DRIVERS_ROOM,
    Connection,
    ConnectionHub,
    driver_room,
    rider_room,
)


def _unique(connections: Iterable[Connection]) -> list[Connection]:
    seen: dict[str, Connection] = {}
    for conn in connections:
        seen.setdefault(conn.id, conn)
    return list(seen.values())


class AudienceResolver:
    def __init__(self, hub: ConnectionHub):
        self.hub = hub

    def rider(self, user_id: object) -> list[Connection]:
        return _unique(self.hub.members(rider_room(user_id)))

    def driver(self, driver_id: object) -> list[Connection]:
        return self.drivers([driver_id])

    def drivers(self, driver_ids: Iterable[object]) -> list[Connection]:
        wanted = {str(d) for d in driver_ids}
        private = [c for d in wanted for c in self.hub.members(driver_room(d))]
        shared = [
            c for c in self.hub.members(ALL_DRIVERS_ROOM) if c.user_id in wanted
        ]
        return _unique(private + shared)

    def all_drivers(self, exclude: Iterable[object] = ()) -> list[Connection]:
        skip = {str(d) for d in exclude}
        return _unique(
            c for c in self.hub.members(ALL_DRIVERS_ROOM) if c.user_id not in skip
        )

    def admins(self) -> list[Connection]:
        return _unique(self.hub.members(ADMINS_ROOM))
