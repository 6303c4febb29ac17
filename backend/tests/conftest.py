import os
import sys
import asyncio

import pytest

sys.path.append(os.path.abspath(os.path.join(os.path.dirname(__file__), "..")))

# Importing models registers the game tables on Base.metadata.
from darts_tracker import db, models  # noqa: F401

# CI may point DATABASE_URL at a file-backed database; local runs stay in memory.
DEFAULT_DB_URL = os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")


@pytest.fixture(scope="session")
def session_loop():
    """Event loop shared by the sync fixtures that drive the database."""

    loop = asyncio.new_event_loop()
    asyncio.set_event_loop(loop)
    yield loop
    loop.close()


@pytest.fixture(autouse=True)
def no_sentry(monkeypatch):
    """Keep error reports from leaving the test run."""
    monkeypatch.delenv("SENTRY_DSN", raising=False)
    yield


def _forget_engine() -> None:
    db.engine = None
    db.AsyncSessionLocal = None


@pytest.fixture(autouse=True, scope="session")
def ensure_database(session_loop):
    """Start from an empty database and drop the shared engine afterwards."""

    url = os.getenv("DATABASE_URL") or DEFAULT_DB_URL
    if url.startswith("sqlite") and ":memory:" not in url:
        stale = url.split("///")[-1]
        if os.path.exists(stale):
            os.remove(stale)

    _forget_engine()
    yield
    if db.engine is not None:
        session_loop.run_until_complete(db.engine.dispose())
    _forget_engine()


async def _recreate_tables(engine) -> None:
    async with engine.begin() as conn:
        await conn.run_sync(db.Base.metadata.drop_all)
        await conn.run_sync(db.Base.metadata.create_all)


@pytest.fixture
def reset_schema(session_loop):
    """Give a test empty game tables on the shared engine."""

    session_loop.run_until_complete(_recreate_tables(db.get_engine()))
    yield
