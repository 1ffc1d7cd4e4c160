"""Entry and version store access.

Every function runs inside the session it is given and never commits; the
caller owns the transaction so that the entry upsert and the version append
land together or not at all.
"""

from __future__ import annotations

from datetime import date, datetime
from typing import Any

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from .clock import as_utc, format_date
from .models import DiaryEntry, DiaryVersion


def _entry_to_dict(entry: DiaryEntry) -> dict[str, Any]:
    return {
        "date": format_date(entry.date),
        "content": entry.content,
        "created_at": as_utc(entry.created_at),
        "updated_at": as_utc(entry.updated_at),
    }


def _version_to_dict(version: DiaryVersion) -> dict[str, Any]:
    return {
        "id": version.id,
        "entry_date": format_date(version.entry_date),
        "content": version.content,
        "version_number": version.version_number,
        "created_at": as_utc(version.created_at),
    }


async def get_entry(session: AsyncSession, entry_date: date) -> dict[str, Any] | None:
    result = await session.execute(
        select(DiaryEntry).where(DiaryEntry.date == entry_date)
    )
    entry = result.scalar_one_or_none()
    return _entry_to_dict(entry) if entry else None


async def upsert_entry(
    session: AsyncSession,
    *,
    entry_date: date,
    content: str,
    now: datetime,
) -> dict[str, Any]:
    result = await session.execute(
        select(DiaryEntry).where(DiaryEntry.date == entry_date)
    )
    entry = result.scalar_one_or_none()
    if entry is None:
        entry = DiaryEntry(date=entry_date, content=content, created_at=now, updated_at=now)
        session.add(entry)
    else:
        entry.content = content
        entry.updated_at = max(now, as_utc(entry.created_at))
    await session.flush()
    return _entry_to_dict(entry)


async def latest_version_number(session: AsyncSession, entry_date: date) -> int:
    result = await session.execute(
        select(func.max(DiaryVersion.version_number)).where(
            DiaryVersion.entry_date == entry_date
        )
    )
    return result.scalar_one_or_none() or 0


async def append_version(
    session: AsyncSession,
    *,
    entry_date: date,
    content: str,
    now: datetime,
) -> dict[str, Any]:
    version = DiaryVersion(
        entry_date=entry_date,
        content=content,
        version_number=await latest_version_number(session, entry_date) + 1,
        created_at=now,
    )
    session.add(version)
    await session.flush()
    return _version_to_dict(version)


async def list_entries(
    session: AsyncSession,
    *,
    limit: int,
    before: date | None = None,
) -> list[dict[str, Any]]:
    query = select(DiaryEntry)
    if before is not None:
        query = query.where(DiaryEntry.date < before)
    result = await session.execute(query.order_by(DiaryEntry.date.desc()).limit(limit))
    return [_entry_to_dict(entry) for entry in result.scalars().all()]


async def list_versions(session: AsyncSession, entry_date: date) -> list[dict[str, Any]]:
    result = await session.execute(
        select(DiaryVersion)
        .where(DiaryVersion.entry_date == entry_date)
        .order_by(DiaryVersion.version_number.desc())
    )
    return [_version_to_dict(version) for version in result.scalars().all()]


async def get_version(
    session: AsyncSession, entry_date: date, version_number: int
) -> dict[str, Any] | None:
    result = await session.execute(
        select(DiaryVersion).where(
            DiaryVersion.entry_date == entry_date,
            DiaryVersion.version_number == version_number,
        )
    )
    version = result.scalar_one_or_none()
    return _version_to_dict(version) if version else None
