"""OTP generation / verification and the OTP-gated ride transitions."""

import re

import pytest

from src.domain.enums import PaymentStatus, QueueStatus, RideStatus
from src.domain.otp import generate_otp, generate_ride_code, generate_ride_otps, verify_otp
from src.infrastructure.repositories import RideHistoryRepository
from tests.conftest import add_driver, assigned_ride, booking


class TestOtpCodes:
    def test_codes_are_four_digits(self):
        for _ in range(200):
            code = generate_otp()
            assert len(code) == 4
            assert 1000 <= int(code) <= 9999

    def test_ride_gets_two_codes(self):
        start, end = generate_ride_otps()
        assert re.fullmatch(r"\d{4}", start)
        assert re.fullmatch(r"\d{4}", end)

    def test_verify_equal_strings(self):
        assert verify_otp("4821", "4821")

    def test_verify_accepts_numeric_input(self):
        assert verify_otp(4821, "4821")

    def test_verify_rejects_padded_code(self):
        assert not verify_otp(" 4821 ", "4821")
        assert not verify_otp("4821", "4821 ")

    @pytest.mark.parametrize(
        "provided,stored",
        [("4821", "4822"), (None, "4821"), ("4821", None), ("", "4821"), ("4821", "")],
    )
    def test_verify_rejects(self, provided, stored):
        assert not verify_otp(provided, stored)

    def test_ride_code_format(self):
        assert re.fullmatch(r"RIDE-\d{13}-\d{4}", generate_ride_code())


class TestVerifyStart:
    @pytest.mark.asyncio
    async def test_wrong_code_counts_attempt(self, services, rider_id, driver_id):
        ride = await assigned_ride(services, rider_id, driver_id)
        wrong = "0000"  # issued codes start at 1000

        result = await services.otp.verify_start(ride["ride_id"], wrong, driver_id)

        assert not result.success
        assert result.message == "Invalid start OTP"
        assert result.data["attempts_remaining"] == 4
        live = await services.rides.get(ride["ride_id"])
        assert live.status == RideStatus.DRIVER_ASSIGNED
        assert live.otp_failed_attempts == 1

    @pytest.mark.asyncio
    async def test_correct_code_starts_ride(self, services, rider_id, driver_id):
        ride = await assigned_ride(services, rider_id, driver_id)

        result = await services.otp.verify_start(ride["ride_id"], ride["start_otp"], driver_id)

        assert result.success
        live = await services.rides.get(ride["ride_id"])
        assert live.status == RideStatus.RIDE_STARTED
        assert live.started_at is not None
        assert live.queue_status == QueueStatus.IN_PROGRESS
        snapshot = await services.queue.status("Hauz Khas Gate 1")
        assert snapshot["currently_serving"] == live.queue_position

    @pytest.mark.asyncio
    async def test_end_code_does_not_start_ride(self, services, rider_id, driver_id):
        ride = await assigned_ride(services, rider_id, driver_id)
        if ride["end_otp"] == ride["start_otp"]:
            pytest.skip("codes collided")

        result = await services.otp.verify_start(ride["ride_id"], ride["end_otp"], driver_id)
        assert not result.success

    @pytest.mark.asyncio
    async def test_other_driver_rejected(self, services, session_factory, rider_id, driver_id):
        other = await add_driver(session_factory, name="Suresh Yadav", phone="+919820000002")
        ride = await assigned_ride(services, rider_id, driver_id)

        result = await services.otp.verify_start(ride["ride_id"], ride["start_otp"], other)

        assert not result.success
        assert result.message == "Ride is not assigned to this driver"

    @pytest.mark.asyncio
    async def test_locked_after_max_attempts(self, services, rider_id, driver_id):
        ride = await assigned_ride(services, rider_id, driver_id)
        wrong = "0000"  # issued codes start at 1000
        for _ in range(5):
            await services.otp.verify_start(ride["ride_id"], wrong, driver_id)

        result = await services.otp.verify_start(ride["ride_id"], ride["start_otp"], driver_id)

        assert not result.success
        assert result.data["locked"] is True

    @pytest.mark.asyncio
    async def test_cannot_start_pending_ride(self, services, rider_id):
        created = await services.rides.create(booking(rider_id))
        result = await services.otp.verify_start(
            created.data["ride_id"], created.data["start_otp"]
        )
        assert not result.success
        assert result.message == "Cannot start ride in status pending"


class TestVerifyEnd:
    @pytest.mark.asyncio
    async def test_end_code_only_after_start(self, services, rider_id, driver_id):
        ride = await assigned_ride(services, rider_id, driver_id)

        result = await services.otp.verify_end(ride["ride_id"], ride["end_otp"], driver_id)

        assert not result.success
        assert result.message == "Cannot end ride in status driver_assigned"

    @pytest.mark.asyncio
    async def test_correct_end_code_completes_ride(
        self, services, session_factory, rider_id, driver_id
    ):
        ride = await assigned_ride(services, rider_id, driver_id)
        await services.otp.verify_start(ride["ride_id"], ride["start_otp"], driver_id)

        result = await services.otp.verify_end(ride["ride_id"], ride["end_otp"], driver_id)

        assert result.success
        assert result.message == "Ride completed"
        assert await services.rides.get(ride["ride_id"]) is None
        async with session_factory() as session:
            record = await RideHistoryRepository(session).get_by_ride_id(ride["ride_id"])
        assert record.status == RideStatus.COMPLETED
        assert record.actual_fare == 120.0
        assert record.payment_status == PaymentStatus.COLLECTED
        assert record.payment_method == "cash"
        assert record.closed_by == "driver"

    @pytest.mark.asyncio
    async def test_wrong_end_code_keeps_ride_started(self, services, rider_id, driver_id):
        ride = await assigned_ride(services, rider_id, driver_id)
        await services.otp.verify_start(ride["ride_id"], ride["start_otp"], driver_id)
        wrong = "0000"

        result = await services.otp.verify_end(ride["ride_id"], wrong, driver_id)

        assert not result.success
        assert result.message == "Invalid end OTP"
        live = await services.rides.get(ride["ride_id"])
        assert live.status == RideStatus.RIDE_STARTED
