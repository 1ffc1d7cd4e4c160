"""Diary engine: the edit window, versioned writes and entry listings.

The engine keeps no state between calls beyond its collaborators. "Today" is
recomputed from the clock on every call, and the only write path targets that
computed date, so there is no way to address a past entry for writing.
"""

from __future__ import annotations

import asyncio
import base64
import binascii
import logging
from datetime import date
from typing import Any
from zoneinfo import ZoneInfo

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from . import db
from .auth import AccessPolicy
from .clock import Clock, SystemClock, as_utc, civil_date, format_date, load_timezone, parse_date
from .config import (
    DB_OPERATION_TIMEOUT,
    DB_RETRY_BACKOFF,
    DB_WRITE_RETRIES,
    DEFAULT_PAGE_SIZE,
    DIARY_TIMEZONE,
    MAX_CONTENT_LENGTH,
    MAX_PAGE_SIZE,
    PREVIEW_LENGTH,
)
from .database import run_in_transaction
from .errors import Conflict, StorageUnavailable, ValidationError

_logger = logging.getLogger(__name__)


def make_preview(content: str, length: int = PREVIEW_LENGTH) -> str:
    if len(content) > length:
        return content[:length] + "..."
    return content


def normalize_content(content: str) -> str:
    return content.replace("\r", "")


def encode_cursor(value: date) -> str:
    return base64.urlsafe_b64encode(format_date(value).encode("ascii")).decode("ascii").rstrip("=")


def decode_cursor(cursor: str) -> date:
    try:
        raw = base64.urlsafe_b64decode(cursor + "=" * (-len(cursor) % 4)).decode("ascii")
    except (binascii.Error, UnicodeDecodeError, ValueError) as exc:
        raise ValidationError("Invalid cursor.") from exc
    try:
        return parse_date(raw)
    except ValidationError as exc:
        raise ValidationError("Invalid cursor.") from exc


class DiaryEngine:
    """Reads and writes diary entries for the current civil date."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        *,
        clock: Clock | None = None,
        timezone: ZoneInfo | str = DIARY_TIMEZONE,
        access_policy: AccessPolicy | None = None,
        max_content_length: int = MAX_CONTENT_LENGTH,
        write_retries: int = DB_WRITE_RETRIES,
        retry_backoff: float = DB_RETRY_BACKOFF,
        operation_timeout: float = DB_OPERATION_TIMEOUT,
    ):
        if write_retries < 1:
            raise ValueError("write_retries must be at least 1")
        self._session_factory = session_factory
        self._clock = clock or SystemClock()
        self._tz = load_timezone(timezone) if isinstance(timezone, str) else timezone
        self._access = access_policy or AccessPolicy(
            session_factory, clock=self._clock, operation_timeout=operation_timeout
        )
        self._max_content_length = max_content_length
        self._write_retries = write_retries
        self._retry_backoff = retry_backoff
        self._operation_timeout = operation_timeout

    def today(self) -> date:
        return civil_date(self._clock.now(), self._tz)

    def can_edit(self, entry_date: date | str) -> bool:
        return parse_date(entry_date) == self.today()

    async def _read(self, work):
        return await run_in_transaction(
            self._session_factory, work, timeout=self._operation_timeout
        )

    async def read_today(self) -> tuple[date, dict[str, Any] | None]:
        """Today's civil date together with its entry, from a single clock reading."""
        today = self.today()
        entry = await self._read(lambda session: db.get_entry(session, today))
        return today, entry

    async def get_today(self) -> dict[str, Any] | None:
        _, entry = await self.read_today()
        return entry

    async def get_by_date(self, entry_date: date | str) -> dict[str, Any] | None:
        target = parse_date(entry_date)
        return await self._read(lambda session: db.get_entry(session, target))

    def validate_content(self, content: str) -> str:
        if not isinstance(content, str):
            raise ValidationError("Content must be a string.")
        content = normalize_content(content)
        if len(content) > self._max_content_length:
            raise ValidationError(
                f"Content too long. Maximum {self._max_content_length} characters allowed."
            )
        return content

    async def _write_today(self, session: AsyncSession, content: str) -> dict[str, Any]:
        now = as_utc(self._clock.now())
        today = civil_date(now, self._tz)
        entry = await db.upsert_entry(session, entry_date=today, content=content, now=now)
        version = await db.append_version(session, entry_date=today, content=content, now=now)
        entry["version_number"] = version["version_number"]
        return entry

    async def submit_today(self, content: str) -> dict[str, Any]:
        """Create or overwrite today's entry and snapshot it as a new version.

        Conflicting concurrent writers are retried up to ``write_retries``
        attempts in total; after that the write fails with
        ``StorageUnavailable`` and nothing from it is persisted.
        """
        content = self.validate_content(content)
        last_error: Conflict | None = None
        for attempt in range(1, self._write_retries + 1):
            try:
                return await run_in_transaction(
                    self._session_factory,
                    lambda session: self._write_today(session, content),
                    write=True,
                    timeout=self._operation_timeout,
                )
            except Conflict as exc:
                last_error = exc
                if attempt == self._write_retries:
                    break
                _logger.warning(
                    "Write conflict on attempt %s/%s; retrying in %ss",
                    attempt,
                    self._write_retries,
                    self._retry_backoff * attempt,
                )
                await asyncio.sleep(self._retry_backoff * attempt)
        _logger.error("Giving up on write after %s conflicting attempts", self._write_retries)
        raise StorageUnavailable("The entry is busy; try again.") from last_error

    async def list_entries(
        self,
        cursor: str | None = None,
        limit: int = DEFAULT_PAGE_SIZE,
        *,
        exclude_today: bool = False,
    ) -> dict[str, Any]:
        if not 1 <= limit <= MAX_PAGE_SIZE:
            raise ValidationError(f"limit must be between 1 and {MAX_PAGE_SIZE}.")
        before = decode_cursor(cursor) if cursor else None
        if exclude_today:
            today = self.today()
            before = today if before is None else min(before, today)

        rows = await self._read(
            lambda session: db.list_entries(session, limit=limit + 1, before=before)
        )
        page = rows[:limit]
        next_cursor = None
        if len(rows) > limit:
            next_cursor = encode_cursor(parse_date(page[-1]["date"]))
        return {
            "items": [
                {
                    "date": row["date"],
                    "preview": make_preview(row["content"]),
                    "updated_at": row["updated_at"],
                }
                for row in page
            ],
            "next_cursor": next_cursor,
        }

    async def list_versions(
        self, entry_date: date | str, credential: str | None
    ) -> list[dict[str, Any]]:
        await self._access.require_privileged(credential)
        target = parse_date(entry_date)
        return await self._read(lambda session: db.list_versions(session, target))

    async def get_version(
        self, entry_date: date | str, version_number: int, credential: str | None
    ) -> dict[str, Any] | None:
        await self._access.require_privileged(credential)
        target = parse_date(entry_date)
        return await self._read(
            lambda session: db.get_version(session, target, version_number)
        )
