"""
WebSocket gateway: ``/ws/{role}/{user_id}?api_key=...``

Frames are JSON ``{"event": str, "data": {...}, "ack_id"?: str}``.  Every
inbound request gets a ``{event}_result`` reply carrying the service
outcome (and echoing ``ack_id`` when one was sent); ``ack`` frames answer
server-side ``emit_with_ack`` calls and get no reply.
"""

from __future__ import annotations

import dataclasses
import json
import logging
import secrets
from typing import Awaitable, Callable

from fastapi import APIRouter, WebSocket, WebSocketDisconnect

from src.config import settings
from src.domain.entities import DriverDisplay, ServiceResult
from src.domain.enums import CancelledBy
from src.realtime.hub import Connection
from src.services.container import Services

logger = logging.getLogger(__name__)

router = APIRouter()

ROLES = ("rider", "driver", "admin")

Handler = Callable[[Services, Connection, dict], Awaitable[ServiceResult]]


# ── Inbound handlers ──────────────────────────────────────────────────


async def _driver_online(services: Services, conn: Connection, data: dict) -> ServiceResult:
    return await services.dispatch.driver_online(
        int(conn.user_id),
        pickup_point=data.get("pickup_point"),
        lat=data.get("lat"),
        lng=data.get("lng"),
    )


async def _driver_offline(services: Services, conn: Connection, data: dict) -> ServiceResult:
    return await services.dispatch.driver_offline(int(conn.user_id))


async def _accept_ride(services: Services, conn: Connection, data: dict) -> ServiceResult:
    display = DriverDisplay(
        name=data.get("driver_name"),
        phone=data.get("driver_phone"),
        vehicle_no=data.get("vehicle_no"),
        rating=data.get("rating"),
    )
    return await services.dispatch.accept(int(data["ride_id"]), int(conn.user_id), display)


async def _verify_start(services: Services, conn: Connection, data: dict) -> ServiceResult:
    return await services.otp.verify_start(
        int(data["ride_id"]), str(data["otp"]), driver_id=int(conn.user_id)
    )


async def _verify_end(services: Services, conn: Connection, data: dict) -> ServiceResult:
    return await services.otp.verify_end(
        int(data["ride_id"]), str(data["otp"]), driver_id=int(conn.user_id)
    )


async def _cancel_ride(services: Services, conn: Connection, data: dict) -> ServiceResult:
    by = CancelledBy.DRIVER if conn.role == "driver" else CancelledBy.RIDER
    return await services.rides.cancel_by_party(
        int(data["ride_id"]), by, data.get("reason"), requester_id=int(conn.user_id)
    )


async def _location_update(services: Services, conn: Connection, data: dict) -> ServiceResult:
    return await services.dispatch.driver_location_update(
        int(conn.user_id), float(data["lat"]), float(data["lng"])
    )


# event -> (roles allowed, handler)
HANDLERS: dict[str, tuple[tuple[str, ...], Handler]] = {
    "driver_online": (("driver",), _driver_online),
    "driver_offline": (("driver",), _driver_offline),
    "accept_ride": (("driver",), _accept_ride),
    "verify_start_otp": (("driver",), _verify_start),
    "verify_end_otp": (("driver",), _verify_end),
    "cancel_ride": (("rider", "driver"), _cancel_ride),
    "driver_location_update": (("driver",), _location_update),
}


async def handle_frame(services: Services, conn: Connection, frame: dict) -> None:
    event = frame.get("event")
    data = frame.get("data")
    if not isinstance(data, dict):
        data = {}

    if event == "ack":
        ack_id = frame.get("ack_id") or data.get("ack_id")
        if ack_id:
            services.hub.resolve_ack(str(ack_id), bool(data.get("received", True)))
        return

    entry = HANDLERS.get(event)
    if entry is None:
        result = ServiceResult.fail(f"Unknown event: {event}")
    elif conn.role not in entry[0]:
        result = ServiceResult.fail(f"{event} is not allowed for {conn.role}s")
    else:
        try:
            result = await entry[1](services, conn, data)
        except (KeyError, TypeError, ValueError) as exc:
            logger.info("Rejected %s from %r: %s", event, conn, exc)
            result = ServiceResult.fail(f"Invalid payload for {event}")

    reply = dataclasses.asdict(result)
    if frame.get("ack_id"):
        reply["ack_id"] = frame["ack_id"]
    await services.hub.emit([conn], f"{event}_result", reply)


# ── Endpoint ──────────────────────────────────────────────────────────


def _authorised(websocket: WebSocket, role: str, user_id: str) -> bool:
    api_key = websocket.query_params.get("api_key")
    if not api_key or not secrets.compare_digest(api_key.encode(), settings.ws_api_key.encode()):
        return False
    if role not in ROLES:
        return False
    return role == "admin" or user_id.isdigit()


@router.websocket("/ws/{role}/{user_id}")
async def realtime_endpoint(websocket: WebSocket, role: str, user_id: str):
    if not _authorised(websocket, role, user_id):
        await websocket.close(code=1008)
        return

    services: Services = websocket.app.state.services
    await websocket.accept()
    conn = services.hub.register(websocket, role, user_id)
    await services.hub.emit(
        [conn],
        "connection_ack",
        {"connection_id": conn.id, "role": role, "user_id": conn.user_id, "rooms": sorted(conn.rooms)},
    )
    if role == "admin":
        await services.notifications.on_admin_connected(conn)

    try:
        while True:
            raw = await websocket.receive_text()
            try:
                frame = json.loads(raw)
            except ValueError:
                await services.hub.emit([conn], "error", {"message": "Frames must be JSON"})
                continue
            if not isinstance(frame, dict):
                await services.hub.emit([conn], "error", {"message": "Frames must be objects"})
                continue
            await handle_frame(services, conn, frame)
    except WebSocketDisconnect:
        pass
    finally:
        services.hub.unregister(conn)
        if role == "driver" and not services.notifications.audiences.driver(user_id):
            # last socket gone: stop offering rides until it reconnects
            await services.dispatch.driver_offline(int(user_id))
