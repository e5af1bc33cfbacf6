from collections.abc import AsyncGenerator

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from backend.app.core.config import settings
from backend.app.db.store import SqlCourtStore


engine = create_async_engine(
    settings.DATABASE_URL,
    pool_pre_ping=True,
    pool_size=settings.DB_POOL_SIZE,
    max_overflow=settings.DB_MAX_OVERFLOW,
)

SessionLocal = async_sessionmaker(
    bind=engine,
    class_=AsyncSession,
    expire_on_commit=False,
)


async def get_store() -> AsyncGenerator[SqlCourtStore, None]:
    """One unit of work per request; anything left uncommitted is rolled back.

    Rolling back also releases the per-day advisory lock taken by bookings.
    """
    async with SessionLocal() as session:
        try:
            yield SqlCourtStore(session)
        finally:
            if session.in_transaction():
                await session.rollback()
