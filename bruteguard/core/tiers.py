"""Named guard tiers.

A tier bundles the backoff parameters for one class of protected operation
(login, registration, ...). Tiers are plain data: adding a new one means
registering another ``TierConfig``, never writing another code path.
"""

from __future__ import annotations

import math
from dataclasses import dataclass, fields
from typing import Any, Iterator, Mapping

from bruteguard.core.errors import ConfigError

MINUTE = 60
HOUR = 60 * MINUTE


@dataclass(frozen=True)
class TierConfig:
    """Backoff parameters for a tier.

    Attributes:
        name: Registry name of the tier.
        free_retries: Failures permitted before any backoff applies.
        min_wait_seconds: Wait after the first failure beyond the free retries.
        max_wait_seconds: Ceiling for the exponentially growing wait.
        lifetime_seconds: How long a key's failures are tracked.
        message: Block message template. May reference ``{minutes}`` and ``{seconds}``.
        refresh_lifetime: Extend the record's expiry on every failure instead of
            expiring ``lifetime_seconds`` after the first one.
    """

    name: str
    free_retries: int
    min_wait_seconds: float
    max_wait_seconds: float
    lifetime_seconds: float
    message: str = "Too many attempts. Please try again in {minutes} minute(s)."
    refresh_lifetime: bool = False

    def __post_init__(self) -> None:
        if not self.name:
            self._fail("name", "tier name must be a non-empty string")
        if isinstance(self.free_retries, bool) or not isinstance(self.free_retries, int):
            self._fail("free_retries", "free_retries must be an integer")
        if self.free_retries < 0:
            self._fail("free_retries", "free_retries must be >= 0")
        for field_name in ("min_wait_seconds", "max_wait_seconds", "lifetime_seconds"):
            value = getattr(self, field_name)
            if not isinstance(value, (int, float)) or isinstance(value, bool) or not math.isfinite(value):
                self._fail(field_name, f"{field_name} must be a finite number")
            if value <= 0:
                self._fail(field_name, f"{field_name} must be > 0")
        if self.max_wait_seconds < self.min_wait_seconds:
            self._fail("max_wait_seconds", "max_wait_seconds must be >= min_wait_seconds")

    def _fail(self, field_name: str, message: str) -> None:
        raise ConfigError(
            code="invalid_tier",
            message=f"Invalid tier '{self.name}': {message}",
            details={"tier": self.name, "field": field_name},
        )

    def render_message(self, retry_after_seconds: int) -> str:
        """Render the block message for a given retry-after."""
        minutes = math.ceil(retry_after_seconds / MINUTE)
        return self.message.format(minutes=minutes, seconds=retry_after_seconds)


LOGIN = TierConfig(
    name="login",
    free_retries=5,
    min_wait_seconds=5 * MINUTE,
    max_wait_seconds=1 * HOUR,
    lifetime_seconds=24 * HOUR,
    message="Too many failed login attempts. Please try again in {minutes} minute(s).",
)

GLOBAL = TierConfig(
    name="global",
    free_retries=100,
    min_wait_seconds=1 * MINUTE,
    max_wait_seconds=15 * MINUTE,
    lifetime_seconds=1 * HOUR,
    message="Too many requests from this IP. Please slow down.",
)

REGISTRATION = TierConfig(
    name="registration",
    free_retries=3,
    min_wait_seconds=10 * MINUTE,
    max_wait_seconds=2 * HOUR,
    lifetime_seconds=24 * HOUR,
    message="Too many registration attempts. Please try again in {minutes} minute(s).",
)

PAYMENT = TierConfig(
    name="payment",
    free_retries=10,
    min_wait_seconds=5 * MINUTE,
    max_wait_seconds=30 * MINUTE,
    lifetime_seconds=1 * HOUR,
    message="Payment creation rate limit exceeded. Please wait before creating another payment.",
)

DEFAULT_TIERS: tuple[TierConfig, ...] = (LOGIN, GLOBAL, REGISTRATION, PAYMENT)

_TIER_FIELDS = {f.name for f in fields(TierConfig)}


class TierRegistry:
    """Mapping of tier name to ``TierConfig``."""

    def __init__(self, tiers: Mapping[str, TierConfig] | None = None) -> None:
        self._tiers: dict[str, TierConfig] = {}
        for tier in (tiers or {}).values():
            self.register(tier)

    def __contains__(self, name: object) -> bool:
        return name in self._tiers

    def __iter__(self) -> Iterator[TierConfig]:
        return iter(self._tiers.values())

    def __len__(self) -> int:
        return len(self._tiers)

    def names(self) -> list[str]:
        return sorted(self._tiers)

    def get(self, name: str) -> TierConfig:
        """Look up a tier by name.

        Raises:
            ConfigError: If no tier is registered under ``name``.
        """
        try:
            return self._tiers[name]
        except KeyError:
            raise ConfigError(
                code="unknown_tier",
                message=f"Unknown tier '{name}'. Registered tiers: {', '.join(self.names())}",
                details={"tier": name},
            ) from None

    def register(self, tier: TierConfig, *, replace: bool = False) -> None:
        """Add a tier.

        Raises:
            ConfigError: If the name is taken and ``replace`` is False.
        """
        if tier.name in self._tiers and not replace:
            raise ConfigError(
                code="duplicate_tier",
                message=f"Tier '{tier.name}' is already registered",
                details={"tier": tier.name},
            )
        self._tiers[tier.name] = tier

    def merge_options(self, overrides: Mapping[str, Mapping[str, Any]]) -> None:
        """Apply option overrides, creating tiers that do not exist yet.

        Existing tiers keep every option not mentioned in the override; new
        tiers must supply all required options.
        """
        for name, options in overrides.items():
            unknown = set(options) - _TIER_FIELDS
            if unknown:
                raise ConfigError(
                    code="invalid_tier",
                    message=f"Invalid tier '{name}': unknown options {sorted(unknown)}",
                    details={"tier": name},
                )
            base: dict[str, Any] = {}
            if name in self._tiers:
                current = self._tiers[name]
                base = {f: getattr(current, f) for f in _TIER_FIELDS}
            base.update(options)
            base["name"] = name
            try:
                tier = TierConfig(**base)
            except TypeError as exc:
                raise ConfigError(
                    code="invalid_tier",
                    message=f"Invalid tier '{name}': {exc}",
                    details={"tier": name},
                ) from exc
            self.register(tier, replace=True)

    @classmethod
    def from_mapping(cls, data: Mapping[str, Mapping[str, Any]]) -> "TierRegistry":
        """Build a registry from plain data (e.g. parsed JSON)."""
        registry = cls()
        registry.merge_options(data)
        return registry


def default_registry() -> TierRegistry:
    """Return a fresh registry holding the login, global, registration and payment tiers."""
    return TierRegistry({tier.name: tier for tier in DEFAULT_TIERS})
