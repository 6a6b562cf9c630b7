"""
Repository Pattern -- abstracts DB access so domain logic stays DB-agnostic.

Each repository receives an ``AsyncSession`` (unit-of-work) and exposes
domain-relevant queries only.  Every status change on a live ride goes
through ``RideRepository.transition`` -- a single conditional ``UPDATE ...
WHERE status = :expected`` whose row count is the success signal.  There
is deliberately no "read, check in Python, write" path for statuses.
"""

from __future__ import annotations

from datetime import date, datetime
from typing import Any, Optional

from sqlalchemy import delete, func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from .models import (
    DriverModel,
    QueueEntryModel,
    QueueLedgerModel,
    RideHistoryModel,
    RideModel,
    UserModel,
)
from src.domain.enums import RideStatus, VehicleType


class RideRepository:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def create(self, ride: RideModel) -> RideModel:
        self.session.add(ride)
        await self.session.flush()
        return ride

    async def get_by_id(self, ride_id: int) -> Optional[RideModel]:
        return await self.session.get(RideModel, ride_id, populate_existing=True)

    async def transition(
        self,
        ride_id: int,
        expected: RideStatus | tuple[RideStatus, ...],
        **values: Any,
    ) -> bool:
        """Atomic conditional update.  Returns False when no row matched."""
        allowed = expected if isinstance(expected, tuple) else (expected,)
        result = await self.session.execute(
            update(RideModel)
            .where(RideModel.id == ride_id, RideModel.status.in_(allowed))
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    async def set_queue_fields(
        self, ride_id: int, queue_number: str, queue_position: Optional[int], queue_status
    ) -> bool:
        """Write queue fields only if the ride has none yet (assigned once)."""
        result = await self.session.execute(
            update(RideModel)
            .where(RideModel.id == ride_id, RideModel.queue_number.is_(None))
            .values(
                queue_number=queue_number,
                queue_position=queue_position,
                queue_status=queue_status,
            )
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    async def update_fields(self, ride_id: int, **values: Any) -> None:
        await self.session.execute(
            update(RideModel)
            .where(RideModel.id == ride_id)
            .values(**values)
            .execution_options(synchronize_session=False)
        )

    async def record_failed_otp(self, ride_id: int) -> None:
        await self.update_fields(
            ride_id, otp_failed_attempts=RideModel.otp_failed_attempts + 1
        )

    async def delete_if_status(self, ride_id: int, status: RideStatus) -> bool:
        result = await self.session.execute(
            delete(RideModel)
            .where(RideModel.id == ride_id, RideModel.status == status)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    async def find_stuck(
        self, status: RideStatus, since_column: str, cutoff: datetime
    ) -> list[RideModel]:
        column = getattr(RideModel, since_column)
        result = await self.session.execute(
            select(RideModel)
            .where(RideModel.status == status, column < cutoff)
            .order_by(column)
        )
        return list(result.scalars().all())

    async def list_by_status(self, status: RideStatus) -> list[RideModel]:
        result = await self.session.execute(
            select(RideModel)
            .where(RideModel.status == status)
            .order_by(RideModel.created_at)
        )
        return list(result.scalars().all())

    async def count_by_status(self) -> dict[str, int]:
        result = await self.session.execute(
            select(RideModel.status, func.count()).group_by(RideModel.status)
        )
        return {RideStatus(status).value: count for status, count in result.all()}


class RideHistoryRepository:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def create(self, record: RideHistoryModel) -> RideHistoryModel:
        self.session.add(record)
        await self.session.flush()
        return record

    async def get_by_ride_id(self, ride_id: int) -> Optional[RideHistoryModel]:
        result = await self.session.execute(
            select(RideHistoryModel).where(RideHistoryModel.ride_id == ride_id)
        )
        return result.scalar_one_or_none()

    async def count_for_ride(self, ride_id: int) -> int:
        result = await self.session.execute(
            select(func.count())
            .select_from(RideHistoryModel)
            .where(RideHistoryModel.ride_id == ride_id)
        )
        return result.scalar() or 0

    async def favorite_vehicle_type(self, user_id: int) -> Optional[VehicleType]:
        result = await self.session.execute(
            select(RideHistoryModel.vehicle_type, func.count().label("n"))
            .where(RideHistoryModel.user_id == user_id)
            .group_by(RideHistoryModel.vehicle_type)
            .order_by(func.count().desc())
            .limit(1)
        )
        row = result.first()
        return VehicleType(row[0]) if row else None


class DriverRepository:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def get_by_id(self, driver_id: int) -> Optional[DriverModel]:
        return await self.session.get(DriverModel, driver_id, populate_existing=True)

    async def get_online_free(self) -> list[DriverModel]:
        result = await self.session.execute(
            select(DriverModel)
            .where(DriverModel.is_online.is_(True), DriverModel.current_ride_id.is_(None))
            .order_by(DriverModel.id)
        )
        return list(result.scalars().all())

    async def count_online(self) -> int:
        result = await self.session.execute(
            select(func.count())
            .select_from(DriverModel)
            .where(DriverModel.is_online.is_(True))
        )
        return result.scalar() or 0

    async def set_presence(self, driver_id: int, **values: Any) -> bool:
        result = await self.session.execute(
            update(DriverModel)
            .where(DriverModel.id == driver_id)
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    async def claim(self, driver_id: int, ride_id: int) -> bool:
        """Mark the driver busy, only if currently free."""
        result = await self.session.execute(
            update(DriverModel)
            .where(DriverModel.id == driver_id, DriverModel.current_ride_id.is_(None))
            .values(current_ride_id=ride_id)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    async def release(self, driver_id: int, ride_id: int) -> None:
        await self.session.execute(
            update(DriverModel)
            .where(DriverModel.id == driver_id, DriverModel.current_ride_id == ride_id)
            .values(current_ride_id=None)
            .execution_options(synchronize_session=False)
        )


class UserRepository:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def get_by_id(self, user_id: int) -> Optional[UserModel]:
        return await self.session.get(UserModel, user_id, populate_existing=True)

    async def get_by_phone(self, phone: str) -> Optional[UserModel]:
        result = await self.session.execute(
            select(UserModel).where(UserModel.phone == phone)
        )
        return result.scalar_one_or_none()

    async def create(self, user: UserModel) -> UserModel:
        self.session.add(user)
        await self.session.flush()
        return user


class QueueLedgerRepository:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def get_for_update(
        self, pickup_point: str, day: date
    ) -> Optional[QueueLedgerModel]:
        """SELECT ... FOR UPDATE so concurrent assigns serialise on the row."""
        result = await self.session.execute(
            select(QueueLedgerModel)
            .where(
                QueueLedgerModel.pickup_point == pickup_point,
                QueueLedgerModel.ledger_date == day,
            )
            .with_for_update()
        )
        return result.scalar_one_or_none()

    async def get(self, pickup_point: str, day: date) -> Optional[QueueLedgerModel]:
        result = await self.session.execute(
            select(QueueLedgerModel).where(
                QueueLedgerModel.pickup_point == pickup_point,
                QueueLedgerModel.ledger_date == day,
            )
        )
        return result.scalar_one_or_none()

    async def create(self, ledger: QueueLedgerModel) -> QueueLedgerModel:
        self.session.add(ledger)
        await self.session.flush()
        return ledger

    async def get_entry(self, ride_id: int) -> Optional[QueueEntryModel]:
        result = await self.session.execute(
            select(QueueEntryModel).where(QueueEntryModel.ride_id == ride_id)
        )
        return result.scalar_one_or_none()

