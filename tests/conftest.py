"""
Shared test fixtures.

Uses a file-backed SQLite database per test (via aiosqlite) so tests run
without Docker / PostgreSQL / Redis.  A file rather than ``:memory:`` lets
concurrent sessions see each other's commits, which the accept-race and
queue-numbering tests depend on.  Redis is an ``AsyncMock`` and WebSocket
clients are ``FakeWebSocket`` objects registered straight on the hub.
"""

from datetime import datetime
from typing import AsyncGenerator, Optional
from unittest.mock import AsyncMock

import pytest
import pytest_asyncio
from fastapi.websockets import WebSocketState
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from src.config import Settings
from src.domain.enums import VehicleType
from src.infrastructure.database import Base, build_engine, build_session_factory
from src.infrastructure.models import DriverModel, UserModel
from src.realtime.hub import Connection
from src.services.container import Services, build_services
from src.services.rides import BookingRequest


# ── Fake sockets ──────────────────────────────────────────────────────


class FakeWebSocket:
    """Records frames; optionally answers every ack request straight away."""

    def __init__(self, hub=None, auto_ack: bool = False, fail: bool = False):
        self.hub = hub
        self.auto_ack = auto_ack
        self.fail = fail
        self.application_state = WebSocketState.CONNECTED
        self.sent: list[dict] = []

    async def send_json(self, message: dict) -> None:
        if self.fail:
            raise RuntimeError("socket is gone")
        self.sent.append(message)
        if self.auto_ack and "ack_id" in message:
            self.hub.resolve_ack(message["ack_id"])

    def events(self, name: Optional[str] = None) -> list[dict]:
        return [m for m in self.sent if name is None or m["event"] == name]

    def names(self) -> list[str]:
        return [m["event"] for m in self.sent]


def connect(services: Services, role: str, user_id, **kwargs) -> tuple[Connection, FakeWebSocket]:
    ws = FakeWebSocket(services.hub, **kwargs)
    return services.hub.register(ws, role, user_id), ws


# ── Seed helpers ──────────────────────────────────────────────────────


async def add_rider(
    factory: async_sessionmaker[AsyncSession],
    name: str = "Priya Patel",
    phone: str = "+919810000002",
) -> int:
    async with factory() as session:
        user = UserModel(name=name, phone=phone)
        session.add(user)
        await session.commit()
        return user.id


async def add_driver(
    factory: async_sessionmaker[AsyncSession],
    name: str = "Ramesh Kumar",
    phone: str = "+919820000001",
    vehicle_type: VehicleType = VehicleType.AUTO,
    pickup_point: Optional[str] = "Hauz Khas Gate 1",
    online: bool = True,
    vehicle_no: str = "DL1RA1234",
) -> int:
    async with factory() as session:
        driver = DriverModel(
            full_name=name,
            phone=phone,
            vehicle_no=vehicle_no,
            vehicle_type=vehicle_type,
            rating=4.7,
            is_online=online,
            current_pickup_point=pickup_point,
        )
        session.add(driver)
        await session.commit()
        return driver.id


def booking(user_id: int, **overrides) -> BookingRequest:
    values = dict(
        pickup_point="Hauz Khas Gate 1",
        drop_address="Saket Select Citywalk",
        vehicle_type=VehicleType.AUTO,
        distance_km=6.0,
        quoted_fare=120.0,
        user_id=user_id,
    )
    values.update(overrides)
    return BookingRequest(**values)


async def assigned_ride(
    services: Services,
    rider_id: int,
    driver_id: int,
    created_at: Optional[datetime] = None,
    accepted_at: Optional[datetime] = None,
    **overrides,
) -> dict:
    """Create a ride and have *driver_id* accept it.  Returns the create data."""
    created = await services.rides.create(booking(rider_id, **overrides), now=created_at)
    assert created.success, created.message
    accepted = await services.dispatch.accept(
        created.data["ride_id"], driver_id, now=accepted_at
    )
    assert accepted.success, accepted.message
    return created.data


async def settle(services: Services) -> None:
    """Wait for in-flight admin deliveries."""
    await services.notifications.aclose(timeout=2)


# ── Fixtures ──────────────────────────────────────────────────────────


@pytest_asyncio.fixture
async def session_factory(tmp_path) -> AsyncGenerator[async_sessionmaker[AsyncSession], None]:
    """Create tables in a fresh database file, yield a factory, dispose."""
    engine = build_engine(f"sqlite+aiosqlite:///{tmp_path / 'dispatch.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield build_session_factory(engine)

    await engine.dispose()


@pytest.fixture
def test_settings() -> Settings:
    return Settings(
        ack_timeout_seconds=0.05,
        admin_max_attempts=3,
        admin_retry_delay_seconds=0.01,
        offline_queue_size=50,
        ws_api_key="test-key",
    )


@pytest.fixture
def redis_client():
    client = AsyncMock()
    client.set = AsyncMock(return_value=True)
    client.eval = AsyncMock(return_value=1)
    return client


@pytest.fixture
def redis_factory(redis_client):
    return AsyncMock(return_value=redis_client)


@pytest_asyncio.fixture
async def services(session_factory, test_settings, redis_factory) -> AsyncGenerator[Services, None]:
    services = build_services(session_factory, test_settings, redis_factory)
    yield services
    await services.aclose()


@pytest_asyncio.fixture
async def rider_id(session_factory) -> int:
    return await add_rider(session_factory)


@pytest_asyncio.fixture
async def driver_id(session_factory) -> int:
    return await add_driver(session_factory)


@pytest_asyncio.fixture
async def app(session_factory, redis_factory):
    from src.api.app import create_app
    from src.api.dependencies import get_db
    from src.api.middleware import limiter

    async def _test_db():
        async with session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    app = create_app(
        session_factory=session_factory, redis_factory=redis_factory, run_sweep=False
    )
    app.dependency_overrides[get_db] = _test_db
    limiter.reset()

    yield app

    await app.state.services.aclose()


@pytest_asyncio.fixture
async def client(app) -> AsyncGenerator[AsyncClient, None]:
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac
