"""
WebSocket connection hub.

Keeps every live socket in named rooms and sends JSON frames shaped
``{"event": ..., "data": ..., "ack_id"?: ...}``.  ``emit_with_ack`` waits
(bounded) for clients to answer with ``{"event": "ack", "ack_id": ...}``;
the gateway feeds those answers back through ``resolve_ack``.

A failed send drops the connection: the client is expected to reconnect
and the next emit will simply not see it.
"""

from __future__ import annotations

import asyncio
import logging
import uuid
from typing import Any, Iterable

from fastapi.encoders import jsonable_encoder
from fastapi.websockets import WebSocketState

logger = logging.getLogger(__name__)

ALL_DRIVERS_ROOM = "drivers"
ADMINS_ROOM = "admins"


def rider_room(user_id: object) -> str:
    return f"user_{user_id}"


def driver_room(driver_id: object) -> str:
    return f"driver_{driver_id}"


def admin_room(admin_id: object) -> str:
    return f"admin_{admin_id}"


class Connection:
    """One accepted socket plus the identity it registered with."""

    def __init__(self, websocket, role: str, user_id: str):
        self.id = uuid.uuid4().hex
        self.websocket = websocket
        self.role = role
        self.user_id = str(user_id)
        self.rooms: set[str] = set()

    @property
    def is_open(self) -> bool:
        return self.websocket.application_state == WebSocketState.CONNECTED

    async def send(self, message: dict) -> None:
        await self.websocket.send_json(message)

    def __repr__(self) -> str:
        return f"<Connection {self.role}:{self.user_id} {self.id[:8]}>"


class ConnectionHub:
    def __init__(self):
        self._connections: dict[str, Connection] = {}
        self._rooms: dict[str, set[str]] = {}
        self._pending_acks: dict[str, tuple[str, asyncio.Future]] = {}

    # ── Membership ────────────────────────────────────────────────

    def register(self, websocket, role: str, user_id: object) -> Connection:
        conn = Connection(websocket, role, str(user_id))
        self._connections[conn.id] = conn
        if role == "driver":
            self.join(conn, driver_room(user_id))
            self.join(conn, ALL_DRIVERS_ROOM)
        elif role == "admin":
            self.join(conn, ADMINS_ROOM)
            self.join(conn, admin_room(user_id))
        else:
            self.join(conn, rider_room(user_id))
        logger.info("Connected %r (%d open)", conn, len(self._connections))
        return conn

    def unregister(self, conn: Connection) -> None:
        if self._connections.pop(conn.id, None) is None:
            return
        for room in list(conn.rooms):
            self.leave(conn, room)
        for ack_id, (owner, future) in list(self._pending_acks.items()):
            if owner == conn.id and not future.done():
                future.set_result(False)
        logger.info("Disconnected %r (%d open)", conn, len(self._connections))

    def join(self, conn: Connection, room: str) -> None:
        self._rooms.setdefault(room, set()).add(conn.id)
        conn.rooms.add(room)

    def leave(self, conn: Connection, room: str) -> None:
        members = self._rooms.get(room)
        if members is not None:
            members.discard(conn.id)
            if not members:
                del self._rooms[room]
        conn.rooms.discard(room)

    def members(self, room: str) -> list[Connection]:
        ids = self._rooms.get(room, ())
        return [self._connections[cid] for cid in ids if cid in self._connections]

    def count(self, role: str | None = None) -> int:
        if role is None:
            return len(self._connections)
        return sum(1 for c in self._connections.values() if c.role == role)

    # ── Sending ───────────────────────────────────────────────────

    async def emit(
        self, connections: Iterable[Connection], event: str, data: Any
    ) -> int:
        """Fire-and-forget.  Returns how many sockets accepted the frame."""
        frame = {"event": event, "data": jsonable_encoder(data)}
        sent = 0
        for conn in list(connections):
            if await self._send(conn, frame):
                sent += 1
        return sent

    async def emit_with_ack(
        self,
        connections: Iterable[Connection],
        event: str,
        data: Any,
        timeout: float,
    ) -> tuple[int, int]:
        """Send with an ack id per socket and wait up to *timeout* seconds.

        Returns ``(acknowledged, attempted)``.
        """
        loop = asyncio.get_running_loop()
        payload = jsonable_encoder(data)
        waiting: dict[str, asyncio.Future] = {}
        attempted = 0

        for conn in list(connections):
            ack_id = uuid.uuid4().hex
            future = loop.create_future()
            self._pending_acks[ack_id] = (conn.id, future)
            attempted += 1
            frame = {"event": event, "data": payload, "ack_id": ack_id}
            if await self._send(conn, frame):
                waiting[ack_id] = future
            else:
                self._pending_acks.pop(ack_id, None)

        acknowledged = 0
        try:
            if waiting:
                await asyncio.wait(waiting.values(), timeout=timeout)
            for future in waiting.values():
                if future.done() and not future.cancelled() and future.result():
                    acknowledged += 1
        finally:
            for ack_id in waiting:
                _, future = self._pending_acks.pop(ack_id, (None, None))
                if future is not None and not future.done():
                    future.cancel()
        return acknowledged, attempted

    def resolve_ack(self, ack_id: str, received: bool = True) -> bool:
        entry = self._pending_acks.get(ack_id)
        if entry is None:
            return False
        _, future = entry
        if not future.done():
            future.set_result(bool(received))
        return True

    async def _send(self, conn: Connection, frame: dict) -> bool:
        if not conn.is_open:
            self.unregister(conn)
            return False
        try:
            await conn.send(frame)
        except Exception:
            logger.warning("Send to %r failed; dropping connection", conn, exc_info=True)
            self.unregister(conn)
            return False
        return True
