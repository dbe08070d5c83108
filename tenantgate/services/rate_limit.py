"""Fixed-window rate limiter keyed by (action, identifier).

Every call to :meth:`RateLimiter.check` counts as an attempt, including
attempts that are rejected, so an observer cannot tell a throttled attempt
from one that failed validation. The window starts at the first attempt and
resets ``window_seconds`` later; bursts straddling a boundary can reach
twice the nominal rate.

Two store kinds sit behind :class:`RateLimiter`:

- ``LimitsCounterStore``: the ``limits`` fixed-window strategy over one of
  its async storages (in-process memory or Redis).
- ``DatabaseCounterStore``: optimistic compare-and-swap on a version column
  in ``rate_limit_counters``, for deployments without Redis.
"""

import logging
from dataclasses import dataclass
from datetime import timedelta
from typing import Protocol

from limits import RateLimitItemPerSecond
from limits.aio.storage import MemoryStorage
from limits.aio.strategies import FixedWindowRateLimiter
from limits.storage import storage_from_string
from sqlalchemy import delete, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import sessionmaker

from tenantgate.core.config import get_settings
from tenantgate.core.errors import ConflictError
from tenantgate.models.base import utcnow
from tenantgate.models.rate_limit import RateLimitCounter

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RateRule:
    action: str
    limit: int
    window_seconds: int


def invite_rule() -> RateRule:
    settings = get_settings()
    return RateRule("invite", settings.invite_rate_limit, settings.invite_rate_window)


def login_rule() -> RateRule:
    settings = get_settings()
    return RateRule("login", settings.login_rate_limit, settings.login_rate_window)


def counter_key(action: str, identifier: str) -> str:
    return f"{action}:{identifier}"


class CounterStore(Protocol):
    async def hit(self, action: str, identifier: str, limit: int, window_seconds: int) -> bool: ...

    async def remaining(
        self, action: str, identifier: str, limit: int, window_seconds: int
    ) -> int: ...


class LimitsCounterStore:
    """Fixed windows kept in a ``limits`` async storage."""

    def __init__(self, storage) -> None:
        self.storage = storage
        self._strategy = FixedWindowRateLimiter(storage)

    async def hit(self, action: str, identifier: str, limit: int, window_seconds: int) -> bool:
        item = RateLimitItemPerSecond(limit, window_seconds)
        return await self._strategy.hit(item, action, identifier)

    async def remaining(self, action: str, identifier: str, limit: int, window_seconds: int) -> int:
        item = RateLimitItemPerSecond(limit, window_seconds)
        stats = await self._strategy.get_window_stats(item, action, identifier)
        return stats.remaining


class DatabaseCounterStore:
    """Counters in the ``rate_limit_counters`` table.

    Uses its own sessions so a counter commit never mixes with the caller's
    transaction. Each increment reads the row, then writes it back only if
    ``version`` is unchanged; a lost race re-reads and retries.
    """

    def __init__(self, session_factory: sessionmaker, max_retries: int = 5) -> None:
        self._session_factory = session_factory
        self._max_retries = max_retries

    async def hit(self, action: str, identifier: str, limit: int, window_seconds: int) -> bool:
        count = await self.increment(counter_key(action, identifier), window_seconds)
        return count <= limit

    async def remaining(self, action: str, identifier: str, limit: int, window_seconds: int) -> int:
        return max(0, limit - await self.current(counter_key(action, identifier)))

    async def increment(self, key: str, window_seconds: int) -> int:
        for _ in range(self._max_retries):
            async with self._session_factory() as session:
                count = await self._try_increment(session, key, window_seconds)
            if count is not None:
                return count
        logger.error("Rate limit counter %s: gave up after %d conflicts", key, self._max_retries)
        raise ConflictError("Too much contention on a rate limit counter", code="counter_contention")

    async def _try_increment(
        self, session: AsyncSession, key: str, window_seconds: int
    ) -> int | None:
        now = utcnow()
        window_end = now + timedelta(seconds=window_seconds)
        row = await session.get(RateLimitCounter, key)

        if row is None:
            session.add(RateLimitCounter(key=key, count=1, window_expires_at=window_end))
            try:
                await session.commit()
            except IntegrityError:
                # Another writer created the row first
                await session.rollback()
                return None
            return 1

        if row.window_expires_at <= now:
            new_count, expires_at = 1, window_end
        else:
            new_count, expires_at = row.count + 1, row.window_expires_at

        result = await session.execute(
            update(RateLimitCounter)
            .where(
                RateLimitCounter.key == key,
                RateLimitCounter.version == row.version,
            )
            .values(count=new_count, window_expires_at=expires_at, version=row.version + 1)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            await session.rollback()
            return None
        await session.commit()
        return new_count

    async def current(self, key: str) -> int:
        async with self._session_factory() as session:
            row = await session.get(RateLimitCounter, key)
        if row is None or row.window_expires_at <= utcnow():
            return 0
        return row.count


async def purge_expired_counters(session: AsyncSession) -> int:
    """Delete database counters whose window has closed. Returns the row count."""
    result = await session.execute(
        delete(RateLimitCounter).where(RateLimitCounter.window_expires_at <= utcnow())
    )
    await session.commit()
    deleted = result.rowcount or 0
    logger.info("Purged %d expired rate limit counters", deleted)
    return deleted


class RateLimiter:
    def __init__(self, store: CounterStore) -> None:
        self.store = store

    async def check(self, action: str, identifier: str, limit: int, window_seconds: int) -> bool:
        """Count this attempt; True while the count is within ``limit``."""
        return await self.store.hit(action, identifier, limit, window_seconds)

    async def remaining(self, action: str, identifier: str, limit: int, window_seconds: int) -> int:
        """Attempts left in the current window. Does not count as an attempt."""
        return await self.store.remaining(action, identifier, limit, window_seconds)


# ── Process-wide storages ────────────────────────────────────

memory_storage = MemoryStorage()
_redis = None


def _redis_storage():
    global _redis
    if _redis is None:
        _redis = storage_from_string(f"async+{get_settings().redis_url}")
    return _redis


def build_rate_limiter() -> RateLimiter:
    """Limiter for the configured ``rate_limit_backend``."""
    backend = get_settings().rate_limit_backend
    if backend == "redis":
        return RateLimiter(LimitsCounterStore(_redis_storage()))
    if backend == "database":
        from tenantgate.core.database import async_session_factory

        return RateLimiter(DatabaseCounterStore(async_session_factory))
    if backend != "memory":
        logger.warning("Unknown rate_limit_backend %r, using memory", backend)
    return RateLimiter(LimitsCounterStore(memory_storage))
