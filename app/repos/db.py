"""Database connection pool management.

A single asyncpg pool per event loop, wrapped so that the shorthand query
methods transparently retry when a pooled connection turns out to be dead
(idle reapers, PostgreSQL restarts).  Builds checkpoint after every step,
so a reset connection must not surface as a failed checkpoint.
"""

import asyncio
import logging
from typing import Any

import asyncpg

from app.config import settings

logger = logging.getLogger(__name__)

# Connection-level failures worth a retry on a fresh connection.
_RETRY_EXCEPTIONS = (
    asyncpg.ConnectionDoesNotExistError,
    asyncpg.InterfaceError,
    ConnectionResetError,
    OSError,
)

_MAX_RETRIES = 3


class _ResilientPool:
    """Proxy for :class:`asyncpg.Pool` whose fetch/execute helpers retry.

    Anything other than the four shorthand methods is forwarded untouched.
    """

    __slots__ = ("_pool",)

    def __init__(self, pool: asyncpg.Pool) -> None:
        self._pool = pool

    async def fetch(self, query: str, *args: Any, **kw: Any) -> list:
        return await self._retry(self._pool.fetch, query, *args, **kw)

    async def fetchrow(self, query: str, *args: Any, **kw: Any):
        return await self._retry(self._pool.fetchrow, query, *args, **kw)

    async def fetchval(self, query: str, *args: Any, **kw: Any):
        return await self._retry(self._pool.fetchval, query, *args, **kw)

    async def execute(self, query: str, *args: Any, **kw: Any) -> str:
        return await self._retry(self._pool.execute, query, *args, **kw)

    @staticmethod
    async def _retry(func, *args: Any, **kw: Any):
        for attempt in range(_MAX_RETRIES + 1):
            try:
                return await func(*args, **kw)
            except _RETRY_EXCEPTIONS as exc:
                if attempt >= _MAX_RETRIES:
                    _reset_pool()
                    raise
                wait = min(0.5 * (2 ** attempt), 5.0)
                logger.warning(
                    "DB connection lost (attempt %d/%d): %s, retrying in %.1fs",
                    attempt + 1, _MAX_RETRIES + 1, exc, wait,
                )
                await asyncio.sleep(wait)

    def __getattr__(self, name: str):
        return getattr(self._pool, name)


_pool: asyncpg.Pool | None = None
_pool_loop: asyncio.AbstractEventLoop | None = None
_wrapper: _ResilientPool | None = None


def _reset_pool() -> None:
    """Forget the current pool so the next get_pool() builds a new one."""
    global _pool, _pool_loop, _wrapper
    _pool = None
    _pool_loop = None
    _wrapper = None


async def get_pool() -> _ResilientPool:
    """Get or create the connection pool for the running event loop.

    A pool created on another loop (test suites, reloads) is terminated
    and replaced.
    """
    global _pool, _pool_loop, _wrapper
    loop = asyncio.get_running_loop()
    if _pool is not None and _pool_loop is not loop:
        _pool.terminate()
        _reset_pool()
    if _pool is None:
        _pool = await asyncio.wait_for(
            asyncpg.create_pool(
                dsn=settings.DATABASE_URL,
                min_size=settings.DB_POOL_MIN_SIZE,
                max_size=settings.DB_POOL_MAX_SIZE,
                command_timeout=60,
                server_settings={"statement_timeout": "30000"},
            ),
            timeout=20,
        )
        _pool_loop = loop
        _wrapper = _ResilientPool(_pool)
    return _wrapper


async def close_pool() -> None:
    """Close the connection pool.  Called during app shutdown."""
    if _pool is not None:
        await _pool.close()
    _reset_pool()
