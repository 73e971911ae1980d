from typing import AsyncGenerator
from sqlalchemy.ext.asyncio import create_async_engine, AsyncEngine, AsyncSession, async_sessionmaker
from sqlalchemy.orm import declarative_base
from telecare.core.config import settings


def is_sqlite(database_url: str) -> bool:
    return "sqlite" in database_url.lower()


def build_engine(database_url: str, echo: bool = False) -> AsyncEngine:
    """Create the async engine for the configured database"""
    if is_sqlite(database_url):
        # Local development and tests run on aiosqlite without a server pool
        return create_async_engine(database_url, echo=echo)

    return create_async_engine(
        database_url,
        pool_size=settings.DATABASE_POOL_SIZE,
        max_overflow=settings.DATABASE_MAX_OVERFLOW,
        pool_pre_ping=True,
        pool_recycle=3600,
        echo=echo
    )


def build_sessionmaker(bind: AsyncEngine) -> async_sessionmaker:
    return async_sessionmaker(
        bind=bind,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False
    )


engine = build_engine(settings.DATABASE_URL, echo=settings.DEBUG)
AsyncSessionLocal = build_sessionmaker(engine)

# Base model
Base = declarative_base()


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """Dependency to get database session"""
    async with AsyncSessionLocal() as session:
        try:
            yield session
        finally:
            await session.close()


async def init_db(bind: AsyncEngine = engine) -> None:
    """Initialize database tables"""
    # Tables register themselves on Base when the models module is imported
    from telecare.domain.auth import models  # noqa: F401

    async with bind.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def close_db(bind: AsyncEngine = engine) -> None:
    """Close database connections"""
    await bind.dispose()
