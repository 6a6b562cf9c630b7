"""
FastAPI application factory.

* Registers routes for rides, admin and the WebSocket gateway.
* Builds the service container (hub, notifications, dispatch, ...) per app
  and stores it on ``app.state.services``.
* Starts / stops the background recovery sweep via lifespan events and
  drains in-flight admin notifications on shutdown.
* Applies rate-limiting middleware.
* Swagger / OpenAPI UI available at ``/docs``.
"""

from contextlib import asynccontextmanager
import logging
from typing import Awaitable, Callable, Optional

import redis.asyncio as aioredis
from fastapi import FastAPI
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from src.api.middleware import limiter
from src.api.routes import admin, rides
from src.config import settings
from src.infrastructure.database import async_session_factory
from src.infrastructure.redis_client import close_redis, get_redis
from src.realtime import gateway
from src.services.container import build_services

logging.basicConfig(
    level=getattr(logging, settings.log_level.upper(), logging.INFO),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Start the recovery sweep on startup; stop it and drain on shutdown."""
    services = app.state.services
    if app.state.run_sweep:
        await services.sweep.start()
    yield
    await services.aclose()
    await close_redis()


def create_app(
    session_factory: Optional[async_sessionmaker[AsyncSession]] = None,
    redis_factory: Optional[Callable[[], Awaitable[aioredis.Redis]]] = None,
    run_sweep: bool = True,
) -> FastAPI:
    app = FastAPI(
        title="Pickup-Point Dispatch API",
        description=(
            "Matches riders waiting at fixed pickup points with drivers, "
            "issues daily queue numbers, gates trips with start / end OTPs "
            "and recovers stuck rides in the background."
        ),
        version="1.0.0",
        lifespan=lifespan,
    )

    app.state.services = build_services(
        session_factory or async_session_factory,
        settings,
        redis_factory or get_redis,
    )
    app.state.run_sweep = run_sweep

    # Rate limiter
    app.state.limiter = limiter
    app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)

    # Routers
    app.include_router(rides.router, prefix="/api/v1")
    app.include_router(admin.router, prefix="/api/v1")
    app.include_router(gateway.router)

    return app
