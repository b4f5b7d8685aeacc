"""Pytest configuration and fixtures."""

import logging

import pytest
import pytest_asyncio

from skill_runtime.database import Database

# Configure pytest-asyncio to auto-detect async tests
pytest_plugins = ("pytest_asyncio",)


def pytest_configure(config: pytest.Config) -> None:
    """Keep SQLAlchemy/aiosqlite chatter out of captured test logs."""

    for name in ["sqlalchemy.engine", "aiosqlite"]:
        logging.getLogger(name).setLevel(logging.WARNING)


@pytest_asyncio.fixture
async def test_db(tmp_path):
    """Create a fresh file-backed SQLite database for each test."""
    db = Database(f"sqlite+aiosqlite:///{tmp_path / 'runtime.db'}")
    await db.init_db()
    yield db
    await db.close()
