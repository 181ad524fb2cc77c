"""Brute-force guard service.

Coordinates the attempt store, the backoff policy and the clock, and owns
the error policy for store failures.

Flow:
- ``check`` reads the key's record and evaluates the backoff policy. Read-only.
- ``record_failure`` atomically counts one failure in the store.
- ``record_success`` clears the key so earlier failures stop counting.
- ``prevent`` is check-then-count in one call, for tiers that count every
  attempt rather than only failures (e.g. the global request tier).

Store calls run in the default executor, bounded by ``store_timeout_seconds``.
A timeout is a ``StoreError``. With ``open_on_store_error`` (the default) a
store error is logged, reported to ``on_store_error`` and the attempt is
allowed; otherwise it propagates to the caller. Exceptions raised by the
hook itself are logged and never change the outcome.
"""

from __future__ import annotations

import asyncio
import functools
import logging
import math
import time
from typing import Any, Callable, TypeVar

from bruteguard.adapters.attempt_store.base import AbstractAttemptStore, AttemptRecord
from bruteguard.core.clock import Clock
from bruteguard.core.errors import StoreError
from bruteguard.core.tiers import TierConfig, TierRegistry, default_registry
from bruteguard.schemas.decision import GuardDecision
from bruteguard.services.backoff import Block, decide
from bruteguard.utils.keys import hash_key

logger = logging.getLogger(__name__)

T = TypeVar("T")

StoreErrorHook = Callable[[StoreError, str], None]


class Guard:
    """Allow/block decisions for repeated attempts, backed by an attempt store."""

    def __init__(
        self,
        store: AbstractAttemptStore,
        *,
        registry: TierRegistry | None = None,
        clock: Clock = time.time,
        open_on_store_error: bool = True,
        store_timeout_seconds: float = 2.0,
        on_store_error: StoreErrorHook | None = None,
    ) -> None:
        """Initialize the guard.

        Args:
            store: Attempt store holding per-key failure records.
            registry: Tier registry; defaults to the built-in tiers.
            clock: Time source returning UNIX time in seconds.
            open_on_store_error: Allow attempts when the store fails (fail-open).
                When False, store errors propagate to the caller.
            store_timeout_seconds: Upper bound for a single store call.
            on_store_error: Called with (error, operation) on every store failure,
                before the error policy applies.

        Raises:
            ValueError: If store_timeout_seconds is not positive.
        """
        if store_timeout_seconds <= 0:
            raise ValueError("store_timeout_seconds must be > 0")

        self._store = store
        self._registry = registry if registry is not None else default_registry()
        self._clock = clock
        self._open_on_store_error = open_on_store_error
        self._store_timeout = store_timeout_seconds
        self._on_store_error = on_store_error

    @property
    def store(self) -> AbstractAttemptStore:
        return self._store

    @property
    def registry(self) -> TierRegistry:
        return self._registry

    @property
    def open_on_store_error(self) -> bool:
        return self._open_on_store_error

    def resolve_tier(self, tier: str | TierConfig) -> TierConfig:
        """Return the TierConfig for a name (or pass one through).

        Raises:
            ConfigError: If the name is not registered.
        """
        if isinstance(tier, TierConfig):
            return tier
        return self._registry.get(tier)

    async def check(self, key: str, tier: str | TierConfig) -> GuardDecision:
        """Decide whether an attempt for ``key`` may proceed. Never mutates state.

        Returns:
            GuardDecision; blocked decisions carry retry_after_seconds and the
            tier's rendered message.

        Raises:
            ConfigError: If the tier is unknown.
            StoreError: On store failure when fail-open is disabled.
        """
        cfg = self.resolve_tier(tier)
        try:
            record = await self._call_store(self._store.get, key)
        except StoreError as exc:
            self._handle_store_error(exc, "check", key, cfg)
            return GuardDecision(blocked=False, tier=cfg.name, degraded=True)

        return self._evaluate(key, cfg, record)

    async def record_failure(self, key: str, tier: str | TierConfig) -> None:
        """Count one failed attempt for ``key``.

        Raises:
            ConfigError: If the tier is unknown.
            StoreError: On store failure when fail-open is disabled.
        """
        cfg = self.resolve_tier(tier)
        try:
            record = await self._increment(key, cfg)
        except StoreError as exc:
            self._handle_store_error(exc, "record_failure", key, cfg)
            return

        logger.info(
            "guard.failure_recorded",
            extra={
                "tier": cfg.name,
                "key_hash": hash_key(key),
                "count": record.count,
                "free_retries": cfg.free_retries,
            },
        )

    async def record_success(self, key: str) -> None:
        """Clear every recorded failure for ``key``.

        Raises:
            StoreError: On store failure when fail-open is disabled.
        """
        try:
            await self._call_store(self._store.reset, key)
        except StoreError as exc:
            self._handle_store_error(exc, "record_success", key)
            return

        logger.debug("guard.reset", extra={"key_hash": hash_key(key)})

    async def prevent(self, key: str, tier: str | TierConfig) -> GuardDecision:
        """Check ``key`` and, when allowed, count this attempt.

        Blocked attempts are not counted, so a client waiting out its backoff
        does not extend it by retrying early.

        Raises:
            ConfigError: If the tier is unknown.
            StoreError: On store failure when fail-open is disabled.
        """
        cfg = self.resolve_tier(tier)
        try:
            record = await self._call_store(self._store.get, key)
            decision = self._evaluate(key, cfg, record)
            if decision.blocked:
                return decision
            await self._increment(key, cfg)
        except StoreError as exc:
            self._handle_store_error(exc, "prevent", key, cfg)
            return GuardDecision(blocked=False, tier=cfg.name, degraded=True)

        return decision

    async def purge_expired(self) -> int:
        """Physically delete expired records; returns how many were removed.

        Raises:
            StoreError: On store failure when fail-open is disabled.
        """
        try:
            return await self._call_store(self._store.purge_expired, self._clock())
        except StoreError as exc:
            self._handle_store_error(exc, "purge_expired")
            return 0

    async def _increment(self, key: str, cfg: TierConfig) -> AttemptRecord:
        return await self._call_store(
            self._store.increment_and_get,
            key,
            self._clock(),
            cfg.lifetime_seconds,
            refresh_lifetime=cfg.refresh_lifetime,
        )

    def _evaluate(self, key: str, cfg: TierConfig, record: AttemptRecord | None) -> GuardDecision:
        now = self._clock()
        result = decide(record, cfg, now)
        if not isinstance(result, Block):
            return GuardDecision(blocked=False, tier=cfg.name)

        retry_after = max(1, math.ceil(result.next_valid_at - now))
        logger.warning(
            "guard.blocked",
            extra={
                "tier": cfg.name,
                "key_hash": hash_key(key),
                "count": record.count if record else 0,
                "retry_after_s": retry_after,
            },
        )
        return GuardDecision(
            blocked=True,
            tier=cfg.name,
            retry_after_seconds=retry_after,
            next_valid_at=result.next_valid_at,
            message=cfg.render_message(retry_after),
        )

    async def _call_store(self, fn: Callable[..., T], *args: Any, **kwargs: Any) -> T:
        """Run a blocking store call in the executor with the configured timeout.

        Raises:
            StoreError: If the call raises StoreError or exceeds the timeout.
        """
        loop = asyncio.get_running_loop()
        try:
            return await asyncio.wait_for(
                loop.run_in_executor(None, functools.partial(fn, *args, **kwargs)),
                timeout=self._store_timeout,
            )
        except asyncio.TimeoutError:
            raise StoreError(
                code="store_timeout",
                message=f"Attempt store call exceeded {self._store_timeout}s",
                details={
                    "operation": getattr(fn, "__name__", "store_call"),
                    "timeout_seconds": self._store_timeout,
                },
            ) from None

    def _handle_store_error(
        self,
        exc: StoreError,
        operation: str,
        key: str | None = None,
        cfg: TierConfig | None = None,
    ) -> None:
        """Log and report a store failure, then apply the error policy.

        Raises:
            StoreError: The original error, when fail-open is disabled.
        """
        logger.error(
            "guard.store_error",
            extra={
                "operation": operation,
                "error_code": exc.code,
                "error_message": exc.message,
                "tier": cfg.name if cfg else None,
                "key_hash": hash_key(key) if key else None,
                "fail_open": self._open_on_store_error,
            },
            exc_info=exc,
        )
        if self._on_store_error is not None:
            # Hook failures never change the outcome
            try:
                self._on_store_error(exc, operation)
            except Exception:
                logger.exception(
                    "guard.store_error_hook_failed",
                    extra={"operation": operation, "error_code": exc.code},
                )
        if not self._open_on_store_error:
            raise exc
