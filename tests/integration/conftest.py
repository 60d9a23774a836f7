"""Integration-test conftest — real Postgres and Redis fixtures.

Integration tests require:
    TASKSCOUT_TEST_INTEGRATION=1   (set in shell before running)
    Redis on localhost:6379
    Postgres on localhost:5432 with a taskscout_test DB

Run with:
    TASKSCOUT_TEST_INTEGRATION=1 pytest tests/integration/ -v
"""

from __future__ import annotations

import os

import pytest

from taskscout.storage.postgres import create_postgres_storage

_TABLES = (
    "webhook_subscriptions",
    "oauth_credentials",
    "calendar_events",
    "research_results",
    "research_plans",
    "research_tracking",
    "user_profiles",
    "tasks",
)


@pytest.fixture
def postgres_url() -> str:
    return os.getenv("TASKSCOUT_TEST_POSTGRES_URL", "postgresql://postgres@localhost:5432/taskscout_test")


@pytest.fixture
def redis_url() -> str:
    return os.getenv("TASKSCOUT_TEST_REDIS_URL", "redis://localhost:6379/15")


@pytest.fixture
async def pg_storage(postgres_url):
    """PostgresStorage on an emptied schema."""
    storage = await create_postgres_storage(postgres_url)
    await storage.pg.execute("test.truncate", f"TRUNCATE {', '.join(_TABLES)} CASCADE")
    yield storage
    await storage.close()
