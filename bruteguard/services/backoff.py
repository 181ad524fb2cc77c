"""Exponential backoff decisions.

Pure functions: no I/O, no clock. Given an attempt record, a tier and the
current time they say whether the next attempt may proceed.

Algorithm:
- No record, an expired record, or count <= free_retries: allow.
- Otherwise overage = count - free_retries and
  wait = min(max_wait, min_wait * 2 ** (overage - 1)).
- The next attempt is allowed from last_request + wait onwards. Reaching
  that point does not reset the count; only success or expiry does.
"""

from __future__ import annotations

from dataclasses import dataclass

from bruteguard.adapters.attempt_store.base import AttemptRecord
from bruteguard.core.tiers import TierConfig

# Largest power of two a float can represent
_MAX_EXPONENT = 1023


@dataclass(frozen=True)
class Allow:
    """The attempt may proceed."""

    blocked = False


@dataclass(frozen=True)
class Block:
    """The attempt must wait until next_valid_at (UNIX seconds)."""

    next_valid_at: float

    blocked = True


Decision = Allow | Block

ALLOW = Allow()


def compute_wait(overage: int, tier: TierConfig) -> float:
    """Return the wait in seconds for the given number of failures beyond the free retries.

    Non-decreasing in ``overage`` and saturates at ``tier.max_wait_seconds``.

    Raises:
        ValueError: If overage < 1.
    """
    if overage < 1:
        raise ValueError("overage must be >= 1")
    exponent = min(overage - 1, _MAX_EXPONENT)
    return min(tier.max_wait_seconds, tier.min_wait_seconds * 2.0**exponent)


def next_valid_at(record: AttemptRecord, tier: TierConfig) -> float | None:
    """Earliest time the next attempt is allowed, or None while within free retries."""
    overage = record.count - tier.free_retries
    if overage < 1:
        return None
    return record.last_request + compute_wait(overage, tier)


def decide(record: AttemptRecord | None, tier: TierConfig, now: float) -> Decision:
    """Decide whether an attempt at ``now`` may proceed."""
    if record is None or record.is_expired(now):
        return ALLOW

    valid_at = next_valid_at(record, tier)
    if valid_at is None or now >= valid_at:
        return ALLOW
    return Block(next_valid_at=valid_at)
