"""FastAPI dependency injection helpers."""

from fastapi import HTTPException, Request
from sqlalchemy.ext.asyncio import AsyncSession

from src.domain.entities import ServiceResult
from src.infrastructure.database import async_session_factory
from src.services.container import Services


async def get_db() -> AsyncSession:  # type: ignore[misc]
    """Yield an async DB session; commit on success, rollback on error."""
    async with async_session_factory() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise


def get_services(request: Request) -> Services:
    return request.app.state.services


def raise_for_result(result: ServiceResult, status_code: int = 409) -> ServiceResult:
    """Map a failed business outcome onto an HTTP error."""
    if result.success:
        return result
    if result.message.endswith("not found"):
        status_code = 404
    raise HTTPException(status_code=status_code, detail=result.message)
