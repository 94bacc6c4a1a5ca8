"""Cross-task and cross-replica locks for pricing batches and the expiry loop.

On PostgreSQL the locks are session advisory locks held on a small dedicated
engine, so a long batch never pins a connection from the request pool. Other
backends (SQLite in tests and local runs) only get in-process locking.
"""

from __future__ import annotations

import asyncio
import hashlib
import logging
import weakref
from collections.abc import AsyncIterator, Awaitable, Callable
from contextlib import asynccontextmanager, suppress

from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncConnection, AsyncEngine, create_async_engine

from promo_engine.core.config import settings
from promo_engine.db.session import engine

logger = logging.getLogger(__name__)

_LOCK_NAMESPACE = "promo_engine"
_lock_engine: AsyncEngine | None = None
_local_locks: "weakref.WeakValueDictionary[str, asyncio.Lock]" = weakref.WeakValueDictionary()


def _is_postgres(bind=None) -> bool:
    dialect = getattr(bind if bind is not None else engine, "dialect", None)
    return getattr(dialect, "name", "") == "postgresql"


def advisory_key(name: str) -> int:
    """Stable signed 64-bit key for ``pg_advisory_lock``."""
    digest = hashlib.blake2b(f"{_LOCK_NAMESPACE}:{name}".encode("utf-8"), digest_size=8).digest()
    return int.from_bytes(digest, "big", signed=True)


def _get_lock_engine() -> AsyncEngine:
    global _lock_engine
    if _lock_engine is None:
        _lock_engine = create_async_engine(
            settings.database_url,
            future=True,
            pool_size=settings.advisory_lock_pool_size,
            max_overflow=0,
            pool_pre_ping=True,
        )
    return _lock_engine


async def _try_lock(conn: AsyncConnection, key: int) -> bool:
    result = await conn.execute(text("SELECT pg_try_advisory_lock(:key)"), {"key": key})
    return bool(result.scalar())


async def _unlock(conn: AsyncConnection, key: int) -> None:
    await conn.execute(text("SELECT pg_advisory_unlock(:key)"), {"key": key})


async def _sleep_unless_stopped(stop: asyncio.Event, seconds: float) -> None:
    with suppress(asyncio.TimeoutError):
        await asyncio.wait_for(stop.wait(), timeout=seconds)


@asynccontextmanager
async def target_lock(ref, *, bind=None) -> AsyncIterator[None]:
    """Hold the lock for one rule or promo code while its prices are rewritten.

    Two batches for the same ref never interleave; batches for different refs
    run freely and are kept apart by compare-and-set writes instead.
    """
    name = f"pricing:{ref}"
    local = _local_locks.get(name)
    if local is None:
        local = _local_locks[name] = asyncio.Lock()

    async with local:
        if not _is_postgres(bind):
            yield
            return
        key = advisory_key(name)
        async with _get_lock_engine().connect() as conn:
            await conn.execute(text("SELECT pg_advisory_lock(:key)"), {"key": key})
            try:
                yield
            finally:
                await _unlock(conn, key)


async def run_as_leader(
    *,
    name: str,
    stop: asyncio.Event,
    work: Callable[[asyncio.Event], Awaitable[None]],
    retry_seconds: float | None = None,
) -> None:
    """Run ``work`` on exactly one replica.

    Replicas that lose the election poll again every ``retry_seconds`` until
    ``stop`` is set. Without PostgreSQL there is nothing to elect and ``work``
    runs directly.
    """
    if not _is_postgres():
        await work(stop)
        return

    key = advisory_key(f"leader:{name}")
    retry = max(5.0, float(retry_seconds or settings.leader_retry_seconds))
    while not stop.is_set():
        try:
            async with _get_lock_engine().connect() as conn:
                if not await _try_lock(conn, key):
                    await _sleep_unless_stopped(stop, retry)
                    continue
                logger.info("leader_elected", extra={"leader_name": name})
                try:
                    await work(stop)
                finally:
                    await _unlock(conn, key)
                return
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            logger.warning("leader_election_failed", extra={"leader_name": name, "error": str(exc)})
            await _sleep_unless_stopped(stop, retry)
