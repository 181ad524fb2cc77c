"""Contract tests run against every attempt store adapter."""

import threading
from concurrent.futures import ThreadPoolExecutor

import pytest

from bruteguard.adapters.attempt_store.base import AbstractAttemptStore
from bruteguard.adapters.attempt_store.sql import SqlAttemptStore

LIFETIME = 3600.0
T0 = 1_000.0


@pytest.fixture(params=["memory", "sql", "sql_in_memory"])
def store(request, memory_store, sql_store):
    if request.param == "memory":
        yield memory_store
    elif request.param == "sql":
        yield sql_store
    else:
        shared = SqlAttemptStore.from_url("sqlite://")
        yield shared
        shared.close()


def test_get_missing_key_returns_none(store: AbstractAttemptStore) -> None:
    assert store.get("login:nobody") is None


def test_first_increment_creates_record(store: AbstractAttemptStore) -> None:
    record = store.increment_and_get("k", T0, LIFETIME)

    assert record.key == "k"
    assert record.count == 1
    assert record.first_request == T0
    assert record.last_request == T0
    assert record.expires_at == T0 + LIFETIME
    assert store.get("k") == record


def test_increment_updates_count_and_last_request_only(store: AbstractAttemptStore) -> None:
    store.increment_and_get("k", T0, LIFETIME)
    record = store.increment_and_get("k", T0 + 10, LIFETIME)

    assert record.count == 2
    assert record.first_request == T0
    assert record.last_request == T0 + 10
    assert record.expires_at == T0 + LIFETIME


def test_expired_record_restarts_window(store: AbstractAttemptStore) -> None:
    for offset in range(3):
        store.increment_and_get("k", T0 + offset, LIFETIME)

    record = store.increment_and_get("k", T0 + LIFETIME, LIFETIME)

    assert record.count == 1
    assert record.first_request == T0 + LIFETIME
    assert record.expires_at == T0 + 2 * LIFETIME


def test_refresh_lifetime_extends_expiry(store: AbstractAttemptStore) -> None:
    store.increment_and_get("k", T0, LIFETIME, refresh_lifetime=True)
    record = store.increment_and_get("k", T0 + 100, LIFETIME, refresh_lifetime=True)

    assert record.count == 2
    assert record.expires_at == T0 + 100 + LIFETIME


def test_reset_deletes_record_and_ignores_missing(store: AbstractAttemptStore) -> None:
    store.increment_and_get("k", T0, LIFETIME)

    store.reset("k")
    store.reset("k")

    assert store.get("k") is None
    assert store.increment_and_get("k", T0 + 1, LIFETIME).count == 1


def test_keys_are_isolated(store: AbstractAttemptStore) -> None:
    store.increment_and_get("login:a", T0, LIFETIME)
    store.increment_and_get("login:a", T0, LIFETIME)
    store.increment_and_get("login:b", T0, LIFETIME)

    assert store.get("login:a").count == 2
    assert store.get("login:b").count == 1


def test_purge_expired_removes_only_expired(store: AbstractAttemptStore) -> None:
    store.increment_and_get("old", T0, 10)
    store.increment_and_get("fresh", T0, LIFETIME)

    assert store.purge_expired(T0 + 10) == 1
    assert store.get("old") is None
    assert store.get("fresh") is not None
    assert store.purge_expired(T0 + 10) == 0


def test_empty_key_rejected(store: AbstractAttemptStore) -> None:
    with pytest.raises(ValueError):
        store.increment_and_get("", T0, LIFETIME)


def test_concurrent_increments_are_not_lost(store: AbstractAttemptStore) -> None:
    workers = 8
    per_worker = 10
    barrier = threading.Barrier(workers)

    def _hammer() -> None:
        barrier.wait()
        for _ in range(per_worker):
            store.increment_and_get("login:race", T0, LIFETIME)

    with ThreadPoolExecutor(max_workers=workers) as pool:
        futures = [pool.submit(_hammer) for _ in range(workers)]
        for future in futures:
            future.result()

    assert store.get("login:race").count == workers * per_worker
