"""
Recovery sweep tests.

Each stuck rule is exercised against a fixed ``NOW`` with rides whose
timestamps sit either side of the threshold.  Redis is the ``AsyncMock``
from ``conftest``.
"""

import asyncio
from datetime import datetime, timedelta
from unittest.mock import AsyncMock

import pytest
from redis.exceptions import RedisError

from src.domain.enums import CancelledBy, RideStatus
from src.infrastructure.repositories import DriverRepository, RideHistoryRepository
from tests.conftest import add_driver, assigned_ride, booking, connect

NOW = datetime(2026, 10, 19, 12, 0)


def ago(minutes: int) -> datetime:
    return NOW - timedelta(minutes=minutes)


async def _history(session_factory, ride_id):
    async with session_factory() as session:
        return await RideHistoryRepository(session).get_by_ride_id(ride_id)


async def _started(services, rider_id, driver_id, started_minutes_ago: int) -> dict:
    ride = await assigned_ride(services, rider_id, driver_id)
    result = await services.otp.verify_start(
        ride["ride_id"], ride["start_otp"], driver_id, now=ago(started_minutes_ago)
    )
    assert result.success
    return ride


async def _ended(services, rider_id, driver_id, ended_minutes_ago: int) -> dict:
    ride = await _started(services, rider_id, driver_id, ended_minutes_ago + 20)
    result = await services.overrides.force_status(
        ride["ride_id"], RideStatus.RIDE_ENDED, "ops-1", "end OTP lost", now=ago(ended_minutes_ago)
    )
    assert result.success
    return ride


class TestStuckRules:
    @pytest.mark.asyncio
    async def test_pending_timeout_cancels_as_system(self, services, session_factory, rider_id):
        stale = await services.rides.create(booking(rider_id), now=ago(31))
        fresh = await services.rides.create(booking(rider_id), now=ago(29))

        counts = await services.sweep.run_cycle(now=NOW)

        assert counts["pending"] == 1
        record = await _history(session_factory, stale.data["ride_id"])
        assert record.status == RideStatus.CANCELLED
        assert record.cancelled_by == CancelledBy.SYSTEM
        assert record.cancellation_reason == "No driver found within time limit"
        assert record.closed_by == "recovery_sweep"
        assert record.auto_closed
        assert await services.rides.get(fresh.data["ride_id"]) is not None

    @pytest.mark.asyncio
    async def test_assigned_timeout_frees_driver(
        self, services, session_factory, rider_id, driver_id
    ):
        ride = await assigned_ride(services, rider_id, driver_id, accepted_at=ago(16))
        _, driver_ws = connect(services, "driver", driver_id)

        counts = await services.sweep.run_cycle(now=NOW)

        assert counts["driver_assigned"] == 1
        record = await _history(session_factory, ride["ride_id"])
        assert record.cancellation_reason == "Driver did not start ride within time limit"
        async with session_factory() as session:
            driver = await DriverRepository(session).get_by_id(driver_id)
        assert driver.current_ride_id is None
        assert driver_ws.events("ride_cancelled")[0]["data"]["cancelled_by"] == "system"

    @pytest.mark.asyncio
    async def test_overlong_ride_is_ended_and_completed(
        self, services, session_factory, rider_id, driver_id
    ):
        ride = await _started(services, rider_id, driver_id, started_minutes_ago=61)

        counts = await services.sweep.run_cycle(now=NOW)

        assert counts["ride_started"] == 1
        record = await _history(session_factory, ride["ride_id"])
        assert record.status == RideStatus.COMPLETED
        assert record.close_reason == "Ride exceeded maximum duration"
        assert record.closed_by == "recovery_sweep"
        assert record.auto_closed
        assert record.ended_at == NOW
        assert record.actual_fare == 120.0
        assert record.payment_method == "cash"

    @pytest.mark.asyncio
    async def test_unpaid_ride_is_completed(self, services, session_factory, rider_id, driver_id):
        ride = await _ended(services, rider_id, driver_id, ended_minutes_ago=61)

        counts = await services.sweep.run_cycle(now=NOW)

        assert counts["ride_ended"] == 1
        record = await _history(session_factory, ride["ride_id"])
        assert record.status == RideStatus.COMPLETED
        assert record.close_reason == "Payment collection timeout"

    @pytest.mark.asyncio
    async def test_all_rules_in_one_cycle(self, services, session_factory, rider_id):
        drivers = [
            await add_driver(
                session_factory, name=f"Driver {i}", phone=f"+91982000020{i}", vehicle_no=f"DL1RB{i}"
            )
            for i in range(3)
        ]
        await services.rides.create(booking(rider_id), now=ago(45))
        await assigned_ride(services, rider_id, drivers[0], accepted_at=ago(20))
        await _started(services, rider_id, drivers[1], started_minutes_ago=90)
        await _ended(services, rider_id, drivers[2], ended_minutes_ago=70)
        within_limits = await services.rides.create(booking(rider_id), now=ago(10))

        first = await services.sweep.run_cycle(now=NOW)
        second = await services.sweep.run_cycle(now=NOW)

        assert first == {
            "skipped": False,
            "pending": 1,
            "driver_assigned": 1,
            "ride_started": 1,
            "ride_ended": 1,
        }
        assert sum(v for k, v in second.items() if k != "skipped") == 0
        assert await services.rides.get(within_limits.data["ride_id"]) is not None
        assert services.sweep.last_run["pending"] == 0

    @pytest.mark.asyncio
    async def test_ride_started_meanwhile_is_left_alone(
        self, services, rider_id, driver_id, monkeypatch
    ):
        ride = await assigned_ride(services, rider_id, driver_id, accepted_at=ago(16))
        assigned_rule = services.overrides.rules[1]
        stale = await services.overrides.find_stuck(assigned_rule, NOW)
        await services.otp.verify_start(ride["ride_id"], ride["start_otp"], driver_id)

        async def stale_read(rule, now=None):
            return stale if rule is assigned_rule else []

        monkeypatch.setattr(services.overrides, "find_stuck", stale_read)
        counts = await services.sweep.run_cycle(now=NOW)

        assert counts["driver_assigned"] == 0
        live = await services.rides.get(ride["ride_id"])
        assert live.status == RideStatus.RIDE_STARTED


class TestSweepLock:
    @pytest.mark.asyncio
    async def test_skips_when_another_instance_holds_lock(
        self, services, redis_client, rider_id
    ):
        redis_client.set = AsyncMock(return_value=False)
        created = await services.rides.create(booking(rider_id), now=ago(45))

        assert await services.sweep.run_cycle(now=NOW) == {"skipped": True}
        assert await services.rides.get(created.data["ride_id"]) is not None

    @pytest.mark.asyncio
    async def test_lock_extended_per_rule_and_released(self, services, redis_client):
        await services.sweep.run_cycle(now=NOW)

        redis_client.set.assert_awaited_once()
        # one extend per rule, then the release
        assert redis_client.eval.await_count == 5

    @pytest.mark.asyncio
    async def test_sweeps_without_redis(self, services, redis_factory, rider_id):
        redis_factory.side_effect = RedisError("connection refused")
        created = await services.rides.create(booking(rider_id), now=ago(45))

        counts = await services.sweep.run_cycle(now=NOW)

        assert counts["skipped"] is False
        assert counts["pending"] == 1
        assert await services.rides.get(created.data["ride_id"]) is None

    @pytest.mark.asyncio
    async def test_release_failure_is_not_fatal(self, services, redis_client):
        redis_client.eval = AsyncMock(side_effect=[1, 1, 1, 1, RedisError("gone")])

        counts = await services.sweep.run_cycle(now=NOW)

        assert counts["skipped"] is False


class TestSweepLoop:
    @pytest.mark.asyncio
    async def test_start_and_stop(self, services):
        await services.sweep.start()
        for _ in range(100):
            if services.sweep.last_run is not None:
                break
            await asyncio.sleep(0.02)

        assert services.sweep.running
        assert services.sweep.last_run is not None

        await services.sweep.stop()
        assert not services.sweep.running
