from collections.abc import AsyncGenerator

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import DeclarativeBase

from beacon.config import Settings, get_settings

settings = get_settings()


def engine_options(settings: Settings) -> dict:
    """Pool options for the Beacon engine.

    Connections are pinged on checkout. SQL echo is opt-in via
    ``DATABASE_ECHO`` and independent of ``APP_ENV``.
    """
    return {
        "pool_size": settings.database_pool_size,
        "max_overflow": settings.database_max_overflow,
        "pool_timeout": settings.database_pool_timeout_seconds,
        "pool_recycle": settings.database_pool_recycle_seconds,
        "pool_pre_ping": True,
        "echo": settings.database_echo,
    }


engine = create_async_engine(settings.database_url, **engine_options(settings))

async_session = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False,
)


class Base(DeclarativeBase):
    """Declarative base for schedules, escalation and delivery tables."""
    pass


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """Request-scoped session. Commits on success, rolls back on any error."""
    async with async_session() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise
        finally:
            await session.close()
