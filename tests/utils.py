from contextlib import asynccontextmanager
from datetime import datetime, timedelta, timezone

import httpx

from diary_api.auth import AccessPolicy
from diary_api.engine import DiaryEngine
from diary_api.main import (
    app,
    get_access_policy,
    get_engine,
    get_rate_limiter,
    get_turnstile_client,
    get_turnstile_secret,
)
from diary_api.rate_limit import WriteRateLimiter

ADMIN_TOKEN = "correct horse battery staple"


def jst(
    year: int, month: int, day: int, hour: int = 12, minute: int = 0, second: int = 0
) -> datetime:
    """A UTC instant given as Tokyo wall-clock time."""
    local = datetime(year, month, day, hour, minute, second, tzinfo=timezone.utc)
    return local - timedelta(hours=9)


class FakeClock:
    def __init__(self, now: datetime):
        self._now = now

    def now(self) -> datetime:
        return self._now

    def set(self, now: datetime) -> None:
        self._now = now

    def advance(self, **kwargs) -> None:
        self._now += timedelta(**kwargs)


class SteppingClock(FakeClock):
    """Moves forward by ``step`` after every reading."""

    def __init__(self, now: datetime, step: timedelta):
        super().__init__(now)
        self._step = step

    def now(self) -> datetime:
        current = self._now
        self._now += self._step
        return current


def build_mock_transport(handler):
    return httpx.MockTransport(handler)


@asynccontextmanager
async def app_client(
    session_factory,
    clock,
    *,
    max_requests: int = 60,
    turnstile_secret: str | None = None,
    turnstile_transport: httpx.MockTransport | None = None,
):
    access_policy = AccessPolicy(session_factory, clock=clock, admin_token=ADMIN_TOKEN)
    turnstile_client = (
        httpx.AsyncClient(transport=turnstile_transport) if turnstile_transport else None
    )

    app.dependency_overrides[get_access_policy] = lambda: access_policy
    app.dependency_overrides[get_engine] = lambda: DiaryEngine(
        session_factory, clock=clock, access_policy=access_policy
    )
    app.dependency_overrides[get_rate_limiter] = lambda: WriteRateLimiter(
        session_factory, clock=clock, max_requests=max_requests
    )
    app.dependency_overrides[get_turnstile_client] = lambda: turnstile_client
    app.dependency_overrides[get_turnstile_secret] = lambda: turnstile_secret
    asgi_transport = httpx.ASGITransport(app=app)
    try:
        async with httpx.AsyncClient(transport=asgi_transport, base_url="http://test") as client:
            yield client
    finally:
        app.dependency_overrides.clear()
        if turnstile_client is not None:
            await turnstile_client.aclose()
