"""Test configuration and fixtures for vqlkit."""

import asyncio
import os
import sys

import pytest
from dotenv import load_dotenv
from sqlalchemy import event
from sqlalchemy.ext.asyncio import create_async_engine

from vqlkit.config import DatabaseConfig, create_engine
from vqlkit.database import Database
from tests.models import build_schemas

# Try to load environment variables from .env file
load_dotenv()


@pytest.fixture(scope="session", autouse=True)
def event_loop_policy():
    """Set event loop policy for Windows compatibility."""
    if sys.platform.startswith("win"):
        # Use SelectorEventLoop instead of ProactorEventLoop on Windows
        asyncio.set_event_loop_policy(asyncio.WindowsSelectorEventLoopPolicy())
    yield


@pytest.fixture(scope="function")
async def engine(tmp_path):
    """Create a test database engine for each test function.

    ``VQLKIT_TEST_DATABASE_URL`` points the suite at an external database;
    otherwise a throwaway SQLite file is used (a file rather than ``:memory:``
    so every pooled connection sees the same data).
    """
    test_db_url = os.getenv('VQLKIT_TEST_DATABASE_URL')
    if test_db_url:
        engine = create_engine(DatabaseConfig(url=test_db_url, pool_size=1, max_overflow=0, pool_pre_ping=False))
        print(f"Using external database: {test_db_url}")
    else:
        engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'vqlkit_test.db'}")
    yield engine
    await engine.dispose()


@pytest.fixture(scope="function")
async def db(engine):
    """Connected facade with every test table dropped and recreated."""
    database = Database(schemas=build_schemas(), engine=engine)
    await database.connect()
    await database.init()
    yield database


@pytest.fixture(scope="function")
def sql_log(engine):
    """Capture every statement sent to the driver."""
    statements = []

    def _capture(conn, cursor, statement, parameters, context, executemany):  # noqa: ANN001
        statements.append(str(statement))

    event.listen(engine.sync_engine, "before_cursor_execute", _capture)
    yield statements
    event.remove(engine.sync_engine, "before_cursor_execute", _capture)


# Import fixtures from fixtures module
from tests.fixtures import (  # noqa: E402,F401
    sample_tags,
    sample_users,
    sample_posts,
    populated_db,
)
