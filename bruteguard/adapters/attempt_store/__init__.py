"""Attempt store adapters.

This package provides a small abstraction layer so the guard can run on an
in-memory store in a single process and on a shared SQL database in
production without changing the backoff or error-policy code.
"""

from bruteguard.adapters.attempt_store.base import AbstractAttemptStore, AttemptRecord
from bruteguard.adapters.attempt_store.factory import create_attempt_store
from bruteguard.adapters.attempt_store.in_memory import InMemoryAttemptStore
from bruteguard.adapters.attempt_store.sql import SqlAttemptStore

__all__ = [
    "AbstractAttemptStore",
    "AttemptRecord",
    "InMemoryAttemptStore",
    "SqlAttemptStore",
    "create_attempt_store",
]
