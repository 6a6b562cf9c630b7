"""Operator overrides and the stuck-ride report."""

from datetime import datetime, timedelta

import pytest

from src.domain.enums import CancelledBy, QueueStatus, RideStatus
from src.infrastructure.repositories import RideHistoryRepository
from tests.conftest import assigned_ride, booking, connect

NOW = datetime(2026, 10, 19, 12, 0)


def ago(minutes: int) -> datetime:
    return NOW - timedelta(minutes=minutes)


class TestForceStatus:
    @pytest.mark.asyncio
    async def test_forward_fills_skipped_timestamps(self, services, rider_id, driver_id):
        ride = await assigned_ride(services, rider_id, driver_id)

        result = await services.overrides.force_status(
            ride["ride_id"], RideStatus.RIDE_ENDED, "ops-1", "driver app crashed", now=NOW
        )

        assert result.success
        live = await services.rides.get(ride["ride_id"])
        assert live.status == RideStatus.RIDE_ENDED
        assert live.started_at == NOW
        assert live.ended_at == NOW
        assert live.actual_fare == 120.0
        assert live.override_by == "ops-1"
        assert live.override_reason == "driver app crashed"
        assert live.queue_status == QueueStatus.COMPLETED

    @pytest.mark.asyncio
    async def test_start_marks_queue_in_progress(self, services, rider_id, driver_id):
        ride = await assigned_ride(services, rider_id, driver_id)
        _, rider_ws = connect(services, "rider", rider_id)

        await services.overrides.force_status(
            ride["ride_id"], RideStatus.RIDE_STARTED, "ops-1", "code mix-up"
        )

        live = await services.rides.get(ride["ride_id"])
        assert live.queue_status == QueueStatus.IN_PROGRESS
        assert rider_ws.names() == ["ride_started"]

    @pytest.mark.asyncio
    async def test_never_backwards(self, services, rider_id, driver_id):
        ride = await assigned_ride(services, rider_id, driver_id)

        result = await services.overrides.force_status(
            ride["ride_id"], RideStatus.PENDING, "ops-1", "oops"
        )

        assert not result.success
        assert result.message == "Cannot force ride back from driver_assigned to pending"

    @pytest.mark.asyncio
    async def test_needs_a_driver(self, services, rider_id):
        created = await services.rides.create(booking(rider_id))

        result = await services.overrides.force_status(
            created.data["ride_id"], RideStatus.RIDE_STARTED, "ops-1", "skip"
        )

        assert result.message == "Ride has no driver; assign one first"

    @pytest.mark.asyncio
    async def test_assignment_goes_through_manual_assign(self, services, rider_id):
        created = await services.rides.create(booking(rider_id))

        result = await services.overrides.force_status(
            created.data["ride_id"], RideStatus.DRIVER_ASSIGNED, "ops-1", "skip"
        )

        assert not result.success
        assert result.message == "Ride has no driver; assign one first"
        live = await services.rides.get(created.data["ride_id"])
        assert live.status == RideStatus.PENDING

    @pytest.mark.asyncio
    async def test_terminal_targets_route_to_close(
        self, services, session_factory, rider_id, driver_id
    ):
        ride = await assigned_ride(services, rider_id, driver_id)

        result = await services.overrides.force_status(
            ride["ride_id"], RideStatus.CANCELLED, "ops-1", "duplicate booking"
        )

        assert result.success
        async with session_factory() as session:
            record = await RideHistoryRepository(session).get_by_ride_id(ride["ride_id"])
        assert record.cancelled_by == CancelledBy.ADMIN
        assert record.closed_by == "ops-1"


class TestManualClose:
    @pytest.mark.asyncio
    async def test_complete_from_assigned_ends_first(
        self, services, session_factory, rider_id, driver_id
    ):
        ride = await assigned_ride(services, rider_id, driver_id)

        result = await services.overrides.manual_complete(
            ride["ride_id"], "ops-1", "paid at booth", now=NOW
        )

        assert result.success
        async with session_factory() as session:
            record = await RideHistoryRepository(session).get_by_ride_id(ride["ride_id"])
        assert record.status == RideStatus.COMPLETED
        assert record.started_at == NOW
        assert record.ended_at == NOW
        assert record.actual_fare == 120.0
        assert record.payment_method == "cash"
        assert record.closed_by == "ops-1"
        assert record.close_reason == "paid at booth"

    @pytest.mark.asyncio
    async def test_complete_needs_a_driver(self, services, rider_id):
        created = await services.rides.create(booking(rider_id))

        result = await services.overrides.manual_complete(created.data["ride_id"], "ops-1", "x")

        assert result.message == "Ride has no driver; cancel it instead"

    @pytest.mark.asyncio
    async def test_cancel_after_ride_ended(self, services, session_factory, rider_id, driver_id):
        ride = await assigned_ride(services, rider_id, driver_id)
        await services.overrides.force_status(
            ride["ride_id"], RideStatus.RIDE_ENDED, "ops-1", "meter broke"
        )

        result = await services.overrides.manual_cancel(ride["ride_id"], "ops-2", "fare dispute")

        assert result.success
        async with session_factory() as session:
            record = await RideHistoryRepository(session).get_by_ride_id(ride["ride_id"])
        assert record.status == RideStatus.CANCELLED
        assert record.cancellation_reason == "fare dispute"

    @pytest.mark.asyncio
    async def test_cancel_unknown(self, services):
        result = await services.overrides.manual_cancel(9999, "ops-1", "x")
        assert result.message == "Ride not found"


class TestStuckRides:
    @pytest.mark.asyncio
    async def test_report_lists_each_rule(self, services, session_factory, rider_id, driver_id):
        old_pending = await services.rides.create(booking(rider_id), now=ago(45))
        await services.rides.create(booking(rider_id), now=ago(5))
        await assigned_ride(
            services, rider_id, driver_id, created_at=ago(30), accepted_at=ago(20)
        )

        report = await services.overrides.stuck_rides(now=NOW)

        by_status = {r["status"]: r for r in report}
        assert set(by_status) == {"pending", "driver_assigned"}
        assert by_status["pending"]["ride_id"] == old_pending.data["ride_id"]
        assert by_status["pending"]["age_minutes"] == 45
        assert by_status["pending"]["threshold_minutes"] == 30
        assert by_status["pending"]["reason"] == "No driver found within time limit"
        assert by_status["driver_assigned"]["age_minutes"] == 20

    @pytest.mark.asyncio
    async def test_nothing_stuck(self, services, rider_id):
        await services.rides.create(booking(rider_id), now=ago(1))
        assert await services.overrides.stuck_rides(now=NOW) == []
