import sys
from pathlib import Path

PROJECT_ROOT = Path(__file__).resolve().parents[1]
sys.path.insert(0, str(PROJECT_ROOT))

import pytest
import pytest_asyncio

from diary_api.database import create_engine, create_schema, create_session_factory
from tests.utils import FakeClock, jst


@pytest_asyncio.fixture
async def db_engine(tmp_path):
    engine = create_engine(f"sqlite:///{tmp_path / 'diary.db'}")
    await create_schema(engine)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(db_engine):
    return create_session_factory(db_engine)


@pytest.fixture
def clock():
    return FakeClock(jst(2025, 1, 15, 9, 30))
