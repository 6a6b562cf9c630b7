"""
Integration tests for the REST API endpoints.

Uses the file-backed SQLite database from ``conftest`` and an app built
with ``run_sweep=False``; the Redis client behind the sweep lock is an
``AsyncMock``.
"""

import pytest
from httpx import AsyncClient

from tests.conftest import add_driver

RIDE = {
    "pickup_point": "Hauz Khas Gate 1",
    "drop_address": "Saket Select Citywalk",
    "vehicle_type": "auto",
    "distance_km": 6.0,
    "quoted_fare": 120.0,
}


async def _book(client: AsyncClient, user_id: int) -> dict:
    resp = await client.post("/api/v1/rides", json={"user_id": user_id, **RIDE})
    assert resp.status_code == 201, resp.text
    return resp.json()


async def _accept(client: AsyncClient, ride_id: int, driver_id: int):
    return await client.post(f"/api/v1/rides/{ride_id}/accept", json={"driver_id": driver_id})


# ── Health ────────────────────────────────────────────────────────────


@pytest.mark.asyncio
async def test_health(client: AsyncClient):
    resp = await client.get("/api/v1/admin/health")
    assert resp.status_code == 200
    body = resp.json()
    assert body["status"] == "ok"
    assert body["database"] == "ok"
    assert body["sweep_running"] is False


# ── Rides ─────────────────────────────────────────────────────────────


@pytest.mark.asyncio
async def test_create_ride_returns_201(client: AsyncClient, rider_id, driver_id):
    data = await _book(client, rider_id)

    assert data["status"] == "pending"
    assert data["ride_id"] is not None
    assert data["ride_code"].startswith("RIDE-")
    assert len(data["start_otp"]) == 4
    assert data["driver_fare"] == 104.35
    assert data["drivers_notified"] == 1
    assert data["fallback_broadcast"] is False


@pytest.mark.asyncio
async def test_create_ride_keeps_given_driver_fare(client: AsyncClient, rider_id):
    resp = await client.post(
        "/api/v1/rides", json={"user_id": rider_id, **RIDE, "driver_fare": 100.0}
    )
    assert resp.status_code == 201
    assert resp.json()["driver_fare"] == 100.0


@pytest.mark.asyncio
async def test_create_ride_unknown_rider(client: AsyncClient):
    resp = await client.post("/api/v1/rides", json={"user_id": 9999, **RIDE})
    assert resp.status_code == 404
    assert resp.json()["detail"] == "Rider not found"


@pytest.mark.asyncio
async def test_create_ride_validation(client: AsyncClient, rider_id):
    resp = await client.post(
        "/api/v1/rides", json={"user_id": rider_id, **RIDE, "distance_km": 0}
    )
    assert resp.status_code == 422


@pytest.mark.asyncio
async def test_get_ride(client: AsyncClient, rider_id):
    created = await _book(client, rider_id)

    resp = await client.get(f"/api/v1/rides/{created['ride_id']}")

    assert resp.status_code == 200
    body = resp.json()
    assert body["id"] == created["ride_id"]
    assert body["status"] == "pending"
    assert body["vehicle_type"] == "auto"
    assert "start_otp" not in body


@pytest.mark.asyncio
async def test_get_ride_not_found(client: AsyncClient):
    resp = await client.get("/api/v1/rides/9999")
    assert resp.status_code == 404


@pytest.mark.asyncio
async def test_cancel_pending_ride(client: AsyncClient, rider_id):
    created = await _book(client, rider_id)

    resp = await client.patch(
        f"/api/v1/rides/{created['ride_id']}/cancel",
        json={"cancelled_by": "rider", "requester_id": rider_id, "reason": "Plans changed"},
    )

    assert resp.status_code == 200
    assert resp.json()["data"]["ride"]["status"] == "cancelled"
    assert (await client.get(f"/api/v1/rides/{created['ride_id']}")).status_code == 404


@pytest.mark.asyncio
async def test_cancel_already_cancelled_ride_fails(client: AsyncClient, rider_id):
    created = await _book(client, rider_id)
    await client.patch(f"/api/v1/rides/{created['ride_id']}/cancel")

    resp = await client.patch(f"/api/v1/rides/{created['ride_id']}/cancel")

    assert resp.status_code == 409
    assert resp.json()["detail"] == "Ride already closed"


@pytest.mark.asyncio
async def test_accept_and_lose_the_race(
    client: AsyncClient, session_factory, rider_id, driver_id
):
    other = await add_driver(session_factory, name="Vikram Singh", phone="+919820000003")
    created = await _book(client, rider_id)

    first = await client.post(
        f"/api/v1/rides/{created['ride_id']}/accept",
        json={"driver_id": driver_id, "driver_name": "Ramesh K."},
    )
    second = await _accept(client, created["ride_id"], other)

    assert first.status_code == 200
    assert first.json()["data"]["ride"]["driver_name"] == "Ramesh K."
    assert first.json()["data"]["queue"]["queue_position"] == 1
    assert second.status_code == 409
    assert second.json()["detail"] == "Ride is no longer available"


@pytest.mark.asyncio
async def test_otp_flow(client: AsyncClient, rider_id, driver_id):
    created = await _book(client, rider_id)
    ride_id = created["ride_id"]
    await _accept(client, ride_id, driver_id)

    wrong = await client.post(
        f"/api/v1/rides/{ride_id}/verify-start", json={"otp": "0000", "driver_id": driver_id}
    )
    started = await client.post(
        f"/api/v1/rides/{ride_id}/verify-start",
        json={"otp": created["start_otp"], "driver_id": driver_id},
    )
    ended = await client.post(
        f"/api/v1/rides/{ride_id}/verify-end",
        json={"otp": created["end_otp"], "driver_id": driver_id},
    )

    assert wrong.status_code == 400
    assert wrong.json()["detail"] == "Invalid start OTP"
    assert started.status_code == 200
    assert ended.status_code == 200
    assert ended.json()["data"]["ride"]["status"] == "completed"
    assert (await client.get(f"/api/v1/rides/{ride_id}")).status_code == 404


# ── Admin ─────────────────────────────────────────────────────────────


@pytest.mark.asyncio
async def test_manual_booking_for_walk_in_rider(client: AsyncClient, driver_id):
    resp = await client.post(
        "/api/v1/admin/manual-booking",
        json={
            "operator_id": "ops-1",
            "user_name": "Walk-in Rider",
            "user_phone": "+919810000099",
            "driver_id": driver_id,
            **RIDE,
        },
    )

    assert resp.status_code == 201, resp.text
    body = resp.json()
    assert body["message"] == "Ride created and assigned"
    ride = await client.get(f"/api/v1/rides/{body['data']['ride_id']}")
    assert ride.json()["status"] == "driver_assigned"
    assert ride.json()["driver_id"] == driver_id


@pytest.mark.asyncio
async def test_manual_booking_needs_a_rider(client: AsyncClient):
    resp = await client.post(
        "/api/v1/admin/manual-booking", json={"operator_id": "ops-1", **RIDE}
    )
    assert resp.status_code == 404


@pytest.mark.asyncio
async def test_stuck_rides_endpoint(client: AsyncClient):
    resp = await client.get("/api/v1/admin/stuck-rides")
    assert resp.status_code == 200
    assert resp.json() == {"count": 0, "rides": []}


@pytest.mark.asyncio
async def test_force_status(client: AsyncClient, rider_id, driver_id):
    created = await _book(client, rider_id)
    await _accept(client, created["ride_id"], driver_id)
    url = f"/api/v1/admin/rides/{created['ride_id']}/force-status"

    forward = await client.post(
        url, json={"operator_id": "ops-1", "reason": "OTP SMS lost", "status": "ride_started"}
    )
    backward = await client.post(
        url, json={"operator_id": "ops-1", "reason": "undo", "status": "driver_assigned"}
    )

    assert forward.status_code == 200
    assert forward.json()["data"]["ride"]["status"] == "ride_started"
    assert backward.status_code == 409


@pytest.mark.asyncio
async def test_manual_complete_and_cancel(client: AsyncClient, rider_id, driver_id):
    completed = await _book(client, rider_id)
    await _accept(client, completed["ride_id"], driver_id)
    cancelled = await _book(client, rider_id)
    override = {"operator_id": "ops-1", "reason": "closed at booth"}

    done = await client.post(
        f"/api/v1/admin/rides/{completed['ride_id']}/manual-complete", json=override
    )
    gone = await client.post(
        f"/api/v1/admin/rides/{cancelled['ride_id']}/manual-cancel", json=override
    )
    missing = await client.post("/api/v1/admin/rides/9999/manual-cancel", json=override)

    assert done.status_code == 200
    assert done.json()["data"]["ride"]["closed_by"] == "ops-1"
    assert gone.status_code == 200
    assert gone.json()["data"]["ride"]["cancelled_by"] == "admin"
    assert missing.status_code == 404


@pytest.mark.asyncio
async def test_queue_snapshot(client: AsyncClient, rider_id, driver_id):
    created = await _book(client, rider_id)
    await _accept(client, created["ride_id"], driver_id)

    resp = await client.get("/api/v1/admin/queues/HKM")

    assert resp.status_code == 200
    body = resp.json()
    assert body["code"] == "HAUZ"
    assert body["total_today"] == 1
    assert [e["ride_id"] for e in body["active"]] == [created["ride_id"]]


@pytest.mark.asyncio
async def test_notification_stats(client: AsyncClient, rider_id, driver_id):
    await _book(client, rider_id)

    resp = await client.get("/api/v1/admin/notifications/stats")

    assert resp.status_code == 200
    body = resp.json()
    assert body["live_rides"] == {"pending": 1}
    assert body["online_drivers"] == 1
    assert body["ride_events"]["active_rides"] == 1
    assert "offline_queue_size" in body["notifications"]


@pytest.mark.asyncio
async def test_sweep_endpoint(client: AsyncClient, redis_client):
    resp = await client.post("/api/v1/admin/sweep")

    assert resp.status_code == 200
    assert resp.json()["skipped"] is False
    redis_client.set.assert_awaited_once()
    redis_client.eval.assert_awaited()
