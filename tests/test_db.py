import asyncio
import sqlite3
from datetime import date

import pytest
from sqlalchemy.exc import DBAPIError, IntegrityError, OperationalError

from diary_api import db
from diary_api.database import is_conflict, run_in_transaction, to_async_url
from diary_api.errors import Conflict, StorageUnavailable
from diary_api.models import DiaryVersion
from tests.utils import jst

DAY = date(2025, 1, 15)


class FakeDriverError(Exception):
    def __init__(self, message: str, sqlstate: str | None = None):
        super().__init__(message)
        self.sqlstate = sqlstate


def test_to_async_url():
    assert to_async_url("postgresql://u:p@h:5432/d") == "postgresql+asyncpg://u:p@h:5432/d"
    assert to_async_url("postgres://u:p@h:5432/d") == "postgresql+asyncpg://u:p@h:5432/d"
    assert to_async_url("sqlite:///diary.db") == "sqlite+aiosqlite:///diary.db"
    assert to_async_url("sqlite+aiosqlite:///diary.db") == "sqlite+aiosqlite:///diary.db"


def test_is_conflict():
    assert is_conflict(IntegrityError("INSERT", {}, FakeDriverError("duplicate key")))
    assert is_conflict(DBAPIError("UPDATE", {}, FakeDriverError("could not serialize", "40001")))
    assert is_conflict(DBAPIError("UPDATE", {}, FakeDriverError("deadlock detected", "40P01")))
    assert is_conflict(OperationalError("BEGIN", {}, FakeDriverError("database is locked")))
    assert not is_conflict(OperationalError("SELECT", {}, FakeDriverError("connection refused")))


@pytest.mark.asyncio
async def test_entry_and_version_share_one_transaction(session_factory):
    now = jst(2025, 1, 15)

    async def write(session):
        await db.upsert_entry(session, entry_date=DAY, content="first", now=now)
        return await db.append_version(session, entry_date=DAY, content="first", now=now)

    version = await run_in_transaction(session_factory, write, write=True)
    assert version["version_number"] == 1

    async def read(session):
        return await db.get_entry(session, DAY), await db.list_versions(session, DAY)

    entry, versions = await run_in_transaction(session_factory, read)
    assert entry["content"] == "first"
    assert [v["content"] for v in versions] == ["first"]


@pytest.mark.asyncio
async def test_failed_unit_of_work_leaves_nothing_behind(session_factory):
    now = jst(2025, 1, 15)

    async def half_write(session):
        await db.upsert_entry(session, entry_date=DAY, content="partial", now=now)
        raise RuntimeError("crashed before the version was appended")

    with pytest.raises(RuntimeError):
        await run_in_transaction(session_factory, half_write, write=True)

    async def read(session):
        return await db.get_entry(session, DAY), await db.list_versions(session, DAY)

    entry, versions = await run_in_transaction(session_factory, read)
    assert entry is None
    assert versions == []


@pytest.mark.asyncio
async def test_duplicate_version_number_is_a_conflict(session_factory):
    now = jst(2025, 1, 15)

    async def first(session):
        await db.upsert_entry(session, entry_date=DAY, content="one", now=now)
        await db.append_version(session, entry_date=DAY, content="one", now=now)

    await run_in_transaction(session_factory, first, write=True)

    async def stale_writer(session):
        # A writer that read the max before the first one committed.
        session.add(
            DiaryVersion(entry_date=DAY, content="stale", version_number=1, created_at=now)
        )
        await session.flush()

    with pytest.raises(Conflict):
        await run_in_transaction(session_factory, stale_writer, write=True)


@pytest.mark.asyncio
async def test_lock_timeouts_conflict_only_for_writes(session_factory):
    async def locked(session):
        raise OperationalError("SELECT", {}, FakeDriverError("database is locked"))

    with pytest.raises(Conflict):
        await run_in_transaction(session_factory, locked, write=True)
    with pytest.raises(StorageUnavailable):
        await run_in_transaction(session_factory, locked)


@pytest.mark.asyncio
async def test_reads_proceed_while_another_writer_holds_the_lock(session_factory, tmp_path):
    now = jst(2025, 1, 15)

    async def write(session):
        await db.upsert_entry(session, entry_date=DAY, content="committed", now=now)

    await run_in_transaction(session_factory, write, write=True)

    other = sqlite3.connect(tmp_path / "diary.db", isolation_level=None)
    try:
        other.execute("BEGIN IMMEDIATE")
        other.execute("UPDATE diary_entries SET content = 'uncommitted'")
        entry = await run_in_transaction(
            session_factory, lambda session: db.get_entry(session, DAY), timeout=1
        )
    finally:
        other.execute("ROLLBACK")
        other.close()

    assert entry["content"] == "committed"


@pytest.mark.asyncio
async def test_slow_store_times_out(session_factory):
    async def slow(session):
        await asyncio.sleep(1)

    with pytest.raises(StorageUnavailable):
        await run_in_transaction(session_factory, slow, timeout=0.05)


@pytest.mark.asyncio
async def test_list_entries_before_bound(session_factory):
    async def seed(session):
        for day in (13, 14, 15):
            await db.upsert_entry(
                session, entry_date=date(2025, 1, day), content=str(day), now=jst(2025, 1, day)
            )

    await run_in_transaction(session_factory, seed, write=True)

    rows = await run_in_transaction(
        session_factory, lambda session: db.list_entries(session, limit=10, before=DAY)
    )
    assert [row["date"] for row in rows] == ["2025-01-14", "2025-01-13"]
