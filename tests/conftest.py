"""Shared fixtures: a fresh file-backed SQLite database per test."""

import os

# Keep test runs from writing daily log files
os.environ["LOG_DIR"] = ""

import pytest
import pytest_asyncio

from gitrank.database.database import Database
from gitrank.services.leaderboard import LeaderboardService


@pytest_asyncio.fixture
async def db(tmp_path):
    database = Database(f"sqlite+aiosqlite:///{tmp_path / 'gitrank_test.db'}")
    await database.initialize()
    yield database
    await database.close()


@pytest.fixture
def leaderboard(db):
    return LeaderboardService(db.session_factory)
