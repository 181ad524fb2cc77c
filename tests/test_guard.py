"""Tests for the Guard service: decisions, persistence flow and error policy."""

import asyncio
import logging
import time
from unittest.mock import Mock

import pytest

from bruteguard.adapters.attempt_store.in_memory import InMemoryAttemptStore
from bruteguard.adapters.attempt_store.sql import SqlAttemptStore
from bruteguard.core.clock import ManualClock
from bruteguard.core.errors import ConfigError, StoreError
from bruteguard.core.tiers import HOUR, MINUTE, TierConfig
from bruteguard.services.guard import Guard

KEY = "login:1.2.3.4"


class FailingStore(InMemoryAttemptStore):
    """Store whose backend is down."""

    def _fail(self, *args, **kwargs):
        raise StoreError(code="store_unavailable", message="connection refused")

    get = _fail
    increment_and_get = _fail
    reset = _fail
    purge_expired = _fail


class SlowStore(InMemoryAttemptStore):
    """Store that hangs longer than any sane timeout."""

    def get(self, key):
        time.sleep(0.5)
        return super().get(key)


@pytest.fixture
def guard(memory_store: InMemoryAttemptStore, clock: ManualClock) -> Guard:
    return Guard(memory_store, clock=clock)


async def _fail_times(guard: Guard, times: int, tier: str = "login") -> None:
    for _ in range(times):
        await guard.record_failure(KEY, tier)


class TestLoginScenario:
    """Login tier: 5 free retries, 5m min wait, 1h max wait, 24h lifetime."""

    @pytest.mark.asyncio
    async def test_free_retries_are_allowed(self, guard: Guard) -> None:
        for _ in range(5):
            await guard.record_failure(KEY, "login")
            decision = await guard.check(KEY, "login")
            assert decision.blocked is False
            assert decision.retry_after_seconds is None

    @pytest.mark.asyncio
    async def test_sixth_failure_blocks_for_five_minutes(self, guard: Guard, clock: ManualClock) -> None:
        await _fail_times(guard, 6)

        decision = await guard.check(KEY, "login")

        assert decision.blocked is True
        assert decision.tier == "login"
        assert decision.retry_after_seconds == 5 * MINUTE
        assert decision.next_valid_at == clock() + 5 * MINUTE
        assert decision.message == "Too many failed login attempts. Please try again in 5 minute(s)."

    @pytest.mark.asyncio
    async def test_full_escalation(self, guard: Guard, clock: ManualClock, memory_store) -> None:
        await _fail_times(guard, 6)
        t0 = clock()

        clock.advance(4 * MINUTE)
        still_blocked = await guard.check(KEY, "login")
        assert still_blocked.blocked is True
        assert still_blocked.retry_after_seconds == 1 * MINUTE

        clock.advance(2 * MINUTE)
        assert (await guard.check(KEY, "login")).blocked is False
        assert memory_store.get(KEY).count == 6

        await guard.record_failure(KEY, "login")
        seventh = await guard.check(KEY, "login")
        assert seventh.blocked is True
        assert seventh.next_valid_at == t0 + 6 * MINUTE + 10 * MINUTE

        for _ in range(10):
            clock.advance(seventh.retry_after_seconds or 0)
            await guard.record_failure(KEY, "login")
            seventh = await guard.check(KEY, "login")

        assert seventh.retry_after_seconds == 1 * HOUR

    @pytest.mark.asyncio
    async def test_check_does_not_mutate(self, guard: Guard, memory_store) -> None:
        await _fail_times(guard, 6)

        for _ in range(5):
            await guard.check(KEY, "login")

        assert memory_store.get(KEY).count == 6

    @pytest.mark.asyncio
    async def test_success_clears_penalty(self, guard: Guard, memory_store) -> None:
        await _fail_times(guard, 20)

        await guard.record_success(KEY)

        decision = await guard.check(KEY, "login")
        assert decision.blocked is False
        assert memory_store.get(KEY) is None

    @pytest.mark.asyncio
    async def test_expiry_forgets_failures(self, guard: Guard, clock: ManualClock, memory_store) -> None:
        await _fail_times(guard, 20)

        clock.advance(24 * HOUR)

        assert (await guard.check(KEY, "login")).blocked is False
        await guard.record_failure(KEY, "login")
        assert memory_store.get(KEY).count == 1


@pytest.mark.asyncio
async def test_keys_do_not_share_penalties(guard: Guard) -> None:
    await _fail_times(guard, 6)

    assert (await guard.check("login:5.6.7.8", "login")).blocked is False


@pytest.mark.asyncio
async def test_accepts_tier_config_directly(guard: Guard) -> None:
    strict = TierConfig(name="otp", free_retries=0, min_wait_seconds=30, max_wait_seconds=60, lifetime_seconds=600)

    await guard.record_failure(KEY, strict)
    decision = await guard.check(KEY, strict)

    assert decision.blocked is True
    assert decision.tier == "otp"
    assert decision.retry_after_seconds == 30


@pytest.mark.asyncio
async def test_retry_after_is_ceil_rounded(guard: Guard, clock: ManualClock) -> None:
    await _fail_times(guard, 6)

    clock.advance(0.4)
    decision = await guard.check(KEY, "login")

    assert decision.retry_after_seconds == 5 * MINUTE


@pytest.mark.asyncio
async def test_unknown_tier_is_fatal_even_when_failing_open(clock: ManualClock) -> None:
    guard = Guard(FailingStore(), clock=clock)

    with pytest.raises(ConfigError):
        await guard.check(KEY, "nope")
    with pytest.raises(ConfigError):
        await guard.record_failure(KEY, "nope")


class TestPrevent:
    """Check-then-count for tiers that count every attempt."""

    TIER = TierConfig(name="api", free_retries=2, min_wait_seconds=60, max_wait_seconds=240, lifetime_seconds=3600)

    @pytest.mark.asyncio
    async def test_counts_allowed_attempts_until_blocked(self, guard: Guard, memory_store) -> None:
        decisions = [await guard.prevent(KEY, self.TIER) for _ in range(4)]

        assert [d.blocked for d in decisions] == [False, False, False, True]
        assert decisions[-1].retry_after_seconds == 60
        assert memory_store.get(KEY).count == 3

    @pytest.mark.asyncio
    async def test_allowed_again_after_wait_and_counted(self, guard: Guard, clock: ManualClock, memory_store) -> None:
        for _ in range(3):
            await guard.prevent(KEY, self.TIER)

        clock.advance(60)
        assert (await guard.prevent(KEY, self.TIER)).blocked is False
        assert memory_store.get(KEY).count == 4

        blocked = await guard.prevent(KEY, self.TIER)
        assert blocked.blocked is True
        assert blocked.retry_after_seconds == 120


class TestStoreErrors:
    """Fail-open default and strict mode."""

    @pytest.mark.asyncio
    async def test_fail_open_allows_and_reports(self, clock: ManualClock, caplog) -> None:
        hook = Mock()
        guard = Guard(FailingStore(), clock=clock, on_store_error=hook)

        with caplog.at_level(logging.ERROR, logger="bruteguard.services.guard"):
            decision = await guard.check(KEY, "login")
            await guard.record_failure(KEY, "login")
            await guard.record_success(KEY)
            prevented = await guard.prevent(KEY, "login")
            purged = await guard.purge_expired()

        assert decision.blocked is False
        assert decision.degraded is True
        assert prevented.blocked is False
        assert prevented.degraded is True
        assert purged == 0
        assert [call.args[1] for call in hook.call_args_list] == [
            "check",
            "record_failure",
            "record_success",
            "prevent",
            "purge_expired",
        ]
        assert all(isinstance(call.args[0], StoreError) for call in hook.call_args_list)
        assert sum(r.getMessage() == "guard.store_error" for r in caplog.records) == 5

    @pytest.mark.asyncio
    async def test_strict_mode_propagates(self, clock: ManualClock) -> None:
        hook = Mock()
        guard = Guard(FailingStore(), clock=clock, open_on_store_error=False, on_store_error=hook)

        with pytest.raises(StoreError):
            await guard.check(KEY, "login")
        with pytest.raises(StoreError):
            await guard.record_failure(KEY, "login")
        with pytest.raises(StoreError):
            await guard.record_success(KEY)

        assert hook.call_count == 3

    @pytest.mark.asyncio
    async def test_timeout_is_a_store_error(self, clock: ManualClock) -> None:
        guard = Guard(SlowStore(), clock=clock, open_on_store_error=False, store_timeout_seconds=0.05)

        with pytest.raises(StoreError) as exc_info:
            await guard.check(KEY, "login")

        assert exc_info.value.code == "store_timeout"
        assert exc_info.value.details["timeout_seconds"] == 0.05

    @pytest.mark.asyncio
    async def test_timeout_fails_open_by_default(self, clock: ManualClock) -> None:
        guard = Guard(SlowStore(), clock=clock, store_timeout_seconds=0.05)

        decision = await guard.check(KEY, "login")

        assert decision.blocked is False
        assert decision.degraded is True

    @pytest.mark.asyncio
    async def test_failing_hook_does_not_break_fail_open(self, clock: ManualClock, caplog) -> None:
        hook = Mock(side_effect=RuntimeError("metrics backend down"))
        guard = Guard(FailingStore(), clock=clock, on_store_error=hook)

        with caplog.at_level(logging.ERROR, logger="bruteguard.services.guard"):
            decision = await guard.check(KEY, "login")
            await guard.record_failure(KEY, "login")
            prevented = await guard.prevent(KEY, "login")

        assert decision.blocked is False
        assert decision.degraded is True
        assert prevented.degraded is True
        assert hook.call_count == 3
        assert sum(r.getMessage() == "guard.store_error_hook_failed" for r in caplog.records) == 3

    @pytest.mark.asyncio
    async def test_failing_hook_keeps_strict_error(self, clock: ManualClock) -> None:
        hook = Mock(side_effect=RuntimeError("metrics backend down"))
        guard = Guard(FailingStore(), clock=clock, open_on_store_error=False, on_store_error=hook)

        with pytest.raises(StoreError):
            await guard.check(KEY, "login")

    def test_timeout_must_be_positive(self, memory_store) -> None:
        with pytest.raises(ValueError):
            Guard(memory_store, store_timeout_seconds=0)


@pytest.mark.asyncio
async def test_parallel_failures_are_all_counted(guard: Guard, memory_store) -> None:
    await asyncio.gather(*(guard.record_failure(KEY, "login") for _ in range(50)))

    assert memory_store.get(KEY).count == 50


@pytest.mark.asyncio
async def test_parallel_failures_on_sql_store(sql_store, clock: ManualClock) -> None:
    guard = Guard(sql_store, clock=clock, store_timeout_seconds=10)

    await asyncio.gather(*(guard.record_failure(KEY, "login") for _ in range(30)))

    assert sql_store.get(KEY).count == 30
    assert (await guard.check(KEY, "login")).blocked is True


@pytest.mark.asyncio
async def test_parallel_failures_on_in_memory_sqlite(clock: ManualClock) -> None:
    store = SqlAttemptStore.from_url("sqlite://")
    errors = Mock()
    guard = Guard(store, clock=clock, store_timeout_seconds=10, on_store_error=errors)

    try:
        await asyncio.gather(*(guard.record_failure(KEY, "login") for _ in range(40)))
        assert store.get(KEY).count == 40
    finally:
        store.close()

    errors.assert_not_called()


@pytest.mark.asyncio
async def test_purge_expired_uses_clock(guard: Guard, clock: ManualClock, memory_store) -> None:
    await guard.record_failure("global:1.1.1.1", "global")
    await guard.record_failure(KEY, "login")

    clock.advance(1 * HOUR)

    assert await guard.purge_expired() == 1
    assert memory_store.get("global:1.1.1.1") is None
    assert memory_store.get(KEY) is not None
