"""Attempt store interfaces.

The guard depends on this abstraction (not the concrete implementation) so
the backend can be swapped (in-memory, SQL) without touching the backoff or
error-policy code.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass


@dataclass(frozen=True)
class AttemptRecord:
    """Failed-attempt state for a single key.

    Attributes:
        key: Identity of the protected subject (e.g. "login:1.2.3.4").
        count: Failures recorded since first_request.
        first_request: UNIX epoch seconds of the first failure in the window.
        last_request: UNIX epoch seconds of the most recent failure.
        expires_at: UNIX epoch seconds after which the record is void.
    """

    key: str
    count: int
    first_request: float
    last_request: float
    expires_at: float

    def is_expired(self, now: float) -> bool:
        return self.expires_at <= now


class AbstractAttemptStore(ABC):
    """Interface for attempt stores.

    Implementations must be thread-safe. ``increment_and_get`` must be atomic
    per key: concurrent increments for the same key are all counted.
    Backend failures are raised as ``StoreError``.
    """

    @abstractmethod
    def get(self, key: str) -> AttemptRecord | None:
        """Return the record for ``key`` or None.

        The record may already be expired if it has not been purged yet;
        callers must treat an expired record as absent.
        """
        raise NotImplementedError

    @abstractmethod
    def increment_and_get(
        self,
        key: str,
        now: float,
        lifetime_seconds: float,
        *,
        refresh_lifetime: bool = False,
    ) -> AttemptRecord:
        """Atomically record one failure for ``key``.

        Args:
            key: Identity of the protected subject.
            now: Current UNIX time in seconds.
            lifetime_seconds: How long the window lives after it starts.
            refresh_lifetime: Push expires_at to now + lifetime on every increment.

        Returns:
            The record after the increment. A missing or expired record
            restarts the window with count=1.
        """
        raise NotImplementedError

    @abstractmethod
    def reset(self, key: str) -> None:
        """Delete the record for ``key``. Missing keys are ignored."""
        raise NotImplementedError

    @abstractmethod
    def purge_expired(self, now: float) -> int:
        """Delete every record with expires_at <= now and return how many were removed."""
        raise NotImplementedError

    def close(self) -> None:
        """Release backend resources."""
        return None
