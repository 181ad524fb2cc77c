"""Pytest configuration and fixtures shared across all test modules.

This file is automatically loaded by pytest before running any tests.
It pins the environment so settings never pick up a developer's .env file
or a real database.
"""

import os

# CRITICAL: Set this before any imports that might load settings
os.environ["APP_ENV"] = "testing"
os.environ.setdefault("STORE_BACKEND", "memory")
os.environ.setdefault("GUARD_OPEN_ON_STORE_ERROR", "true")
os.environ.setdefault("GUARD_STORE_TIMEOUT_SECONDS", "2.0")

import pytest

from bruteguard.adapters.attempt_store.in_memory import InMemoryAttemptStore
from bruteguard.adapters.attempt_store.sql import SqlAttemptStore
from bruteguard.core.clock import ManualClock

START = 1_700_000_000.0


@pytest.fixture
def clock() -> ManualClock:
    return ManualClock(START)


@pytest.fixture
def memory_store() -> InMemoryAttemptStore:
    return InMemoryAttemptStore()


@pytest.fixture
def sql_store(tmp_path):
    """SQLite file database, so every pooled connection sees the same table."""
    store = SqlAttemptStore.from_url(f"sqlite:///{tmp_path / 'attempts.db'}")
    yield store
    store.close()
