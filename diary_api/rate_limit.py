from __future__ import annotations

from datetime import datetime, timedelta

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from .clock import Clock, SystemClock, as_utc
from .config import DB_OPERATION_TIMEOUT, RATE_LIMIT_MAX_REQUESTS, RATE_LIMIT_WINDOW_SECONDS
from .database import run_in_transaction
from .models import WriteRateLimit


def is_rate_limited(count: int, max_requests: int = RATE_LIMIT_MAX_REQUESTS) -> bool:
    return count >= max_requests


class WriteRateLimiter:
    """Fixed-window counter of accepted writes per client."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        *,
        clock: Clock | None = None,
        max_requests: int = RATE_LIMIT_MAX_REQUESTS,
        window_seconds: int = RATE_LIMIT_WINDOW_SECONDS,
        operation_timeout: float = DB_OPERATION_TIMEOUT,
    ):
        self._session_factory = session_factory
        self._clock = clock or SystemClock()
        self._max_requests = max_requests
        self._window = timedelta(seconds=window_seconds)
        self._operation_timeout = operation_timeout

    def _window_open(self, record: WriteRateLimit | None, now: datetime) -> bool:
        return record is not None and as_utc(record.window_started_at) + self._window > now

    async def _load(self, session: AsyncSession, client_key: str) -> WriteRateLimit | None:
        result = await session.execute(
            select(WriteRateLimit).where(WriteRateLimit.client_key == client_key)
        )
        return result.scalar_one_or_none()

    async def is_limited(self, client_key: str) -> bool:
        now = as_utc(self._clock.now())
        record = await run_in_transaction(
            self._session_factory,
            lambda session: self._load(session, client_key),
            timeout=self._operation_timeout,
        )
        if not self._window_open(record, now):
            return False
        return is_rate_limited(record.count, self._max_requests)

    async def record(self, client_key: str) -> int:
        now = as_utc(self._clock.now())

        async def increment(session: AsyncSession) -> int:
            record = await self._load(session, client_key)
            if record is None:
                record = WriteRateLimit(client_key=client_key, window_started_at=now, count=1)
                session.add(record)
            elif self._window_open(record, now):
                record.count += 1
            else:
                record.window_started_at = now
                record.count = 1
            return record.count

        return await run_in_transaction(
            self._session_factory, increment, write=True, timeout=self._operation_timeout
        )
