"""FastAPI dependency injection helpers."""

from fastapi import Depends
from sqlalchemy.ext.asyncio import AsyncSession

from tripguard.infrastructure.database import async_session_factory
from tripguard.services.reconciliation import ReconciliationOrchestrator


async def get_db() -> AsyncSession:  # type: ignore[misc]
    """Yield an async DB session; commit on success, rollback on error."""
    async with async_session_factory() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise


async def get_orchestrator(
    db: AsyncSession = Depends(get_db),
) -> ReconciliationOrchestrator:
    return ReconciliationOrchestrator(db)
