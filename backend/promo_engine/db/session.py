from collections.abc import AsyncIterator
from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from promo_engine.core.config import settings


def _engine_options(database_url: str) -> dict[str, Any]:
    if database_url.startswith("sqlite"):
        return {"connect_args": {"check_same_thread": False}}
    # Bulk pricing batches hold a connection per chunk; keep the pool honest.
    return {"pool_size": settings.database_pool_size, "max_overflow": 0, "pool_pre_ping": True}


engine = create_async_engine(
    settings.database_url, future=True, echo=settings.database_echo, **_engine_options(settings.database_url)
)
SessionLocal = async_sessionmaker(engine, expire_on_commit=False, autoflush=False, class_=AsyncSession)


async def get_session() -> AsyncIterator[AsyncSession]:
    async with SessionLocal() as session:
        yield session


async def init_models() -> None:
    """Create tables directly from the models; deployed databases use Alembic."""
    from promo_engine.models import Base

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def dispose_engine() -> None:
    await engine.dispose()
