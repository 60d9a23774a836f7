"""Root conftest — shared pytest markers and global settings.

Markers
-------
unit        fast, no I/O, pure logic
integration requires Redis and/or Postgres (set TASKSCOUT_TEST_INTEGRATION=1)
e2e         requires live Google / search / LLM credentials (set TASKSCOUT_TEST_E2E=1)
slow        expected to take > 5 seconds
"""

from __future__ import annotations

import os

import pytest


def pytest_configure(config):
    config.addinivalue_line("markers", "unit: fast, no I/O tests")
    config.addinivalue_line("markers", "integration: requires Redis / Postgres")
    config.addinivalue_line("markers", "e2e: requires live provider credentials")
    config.addinivalue_line("markers", "slow: test is expected to take > 5 s")


# ── Skip guards ───────────────────────────────────────────────────────────────

_GUARDS = {
    "integration": ("TASKSCOUT_TEST_INTEGRATION", "Set TASKSCOUT_TEST_INTEGRATION=1 to run integration tests"),
    "e2e": ("TASKSCOUT_TEST_E2E", "Set TASKSCOUT_TEST_E2E=1 to run end-to-end tests"),
}


def pytest_collection_modifyitems(config, items):
    for item in items:
        for marker, (env, reason) in _GUARDS.items():
            if marker in item.keywords and not os.getenv(env):
                item.add_marker(pytest.mark.skip(reason=reason))
