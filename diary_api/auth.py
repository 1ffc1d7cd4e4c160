from __future__ import annotations

import hashlib
import hmac
import secrets
from datetime import timedelta
from typing import Any

from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from .clock import Clock, SystemClock, as_utc
from .config import ADMIN_SESSION_TTL_SECONDS, ADMIN_TOKEN, DB_OPERATION_TIMEOUT
from .database import run_in_transaction
from .errors import Conflict, StorageUnavailable, Unauthorized
from .models import AdminSession


def hash_token(token: str) -> str:
    return hashlib.sha256(token.encode("utf-8")).hexdigest()


class AccessPolicy:
    """Decides whether a caller may read version history.

    Credentials are opaque session tokens; only their digests are stored,
    each with an expiry.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        *,
        clock: Clock | None = None,
        admin_token: str | None = ADMIN_TOKEN,
        session_ttl: int = ADMIN_SESSION_TTL_SECONDS,
        operation_timeout: float = DB_OPERATION_TIMEOUT,
    ):
        self._session_factory = session_factory
        self._clock = clock or SystemClock()
        self._admin_token = admin_token
        self._session_ttl = timedelta(seconds=session_ttl)
        self._operation_timeout = operation_timeout

    async def is_privileged(self, credential: str | None) -> bool:
        if not credential:
            return False
        token_hash = hash_token(credential)
        now = as_utc(self._clock.now())

        async def lookup(session: AsyncSession) -> AdminSession | None:
            result = await session.execute(
                select(AdminSession).where(AdminSession.token_hash == token_hash)
            )
            return result.scalar_one_or_none()

        record = await run_in_transaction(
            self._session_factory, lookup, timeout=self._operation_timeout
        )
        return record is not None and as_utc(record.expires_at) > now

    async def require_privileged(self, credential: str | None) -> None:
        if not await self.is_privileged(credential):
            raise Unauthorized()

    async def create_session(self, admin_token: str | None) -> dict[str, Any]:
        if not self._admin_token or not admin_token:
            raise Unauthorized()
        if not hmac.compare_digest(admin_token.encode("utf-8"), self._admin_token.encode("utf-8")):
            raise Unauthorized()

        token = secrets.token_urlsafe(32)
        now = as_utc(self._clock.now())
        expires_at = now + self._session_ttl

        async def insert(session: AsyncSession) -> None:
            # Expired sessions are dropped whenever a new one is issued.
            await session.execute(delete(AdminSession).where(AdminSession.expires_at <= now))
            session.add(AdminSession(token_hash=hash_token(token), created_at=now, expires_at=expires_at))

        try:
            await run_in_transaction(
                self._session_factory, insert, write=True, timeout=self._operation_timeout
            )
        except Conflict as exc:
            raise StorageUnavailable() from exc
        return {"token": token, "expires_at": expires_at}

    async def revoke_session(self, credential: str | None) -> bool:
        if not credential:
            return False
        token_hash = hash_token(credential)

        async def remove(session: AsyncSession) -> int:
            result = await session.execute(
                delete(AdminSession).where(AdminSession.token_hash == token_hash)
            )
            return result.rowcount

        try:
            removed = await run_in_transaction(
                self._session_factory, remove, write=True, timeout=self._operation_timeout
            )
        except Conflict as exc:
            raise StorageUnavailable() from exc
        return removed > 0
