"""In-memory attempt store.

Notes:
- Per-process only: state is lost on restart and not shared between workers.
- Thread-safe: uses a lock around shared state.
"""

from __future__ import annotations

import logging
import threading

from bruteguard.adapters.attempt_store.base import AbstractAttemptStore, AttemptRecord

logger = logging.getLogger(__name__)


class InMemoryAttemptStore(AbstractAttemptStore):
    """Attempt store backed by a dict guarded by a re-entrant lock.

    Records are immutable; every increment swaps in a new ``AttemptRecord``
    under the lock, so readers never observe a half-updated record.

    Important:
        This store is per-process only. Use the SQL store when protection
        must survive restarts or be shared by several workers.
    """

    def __init__(self) -> None:
        self._lock = threading.RLock()
        self._records: dict[str, AttemptRecord] = {}

    def __len__(self) -> int:
        with self._lock:
            return len(self._records)

    def get(self, key: str) -> AttemptRecord | None:
        with self._lock:
            return self._records.get(key)

    def increment_and_get(
        self,
        key: str,
        now: float,
        lifetime_seconds: float,
        *,
        refresh_lifetime: bool = False,
    ) -> AttemptRecord:
        if not key:
            raise ValueError("key must be a non-empty string")

        with self._lock:
            current = self._records.get(key)
            if current is None or current.is_expired(now):
                record = AttemptRecord(
                    key=key,
                    count=1,
                    first_request=now,
                    last_request=now,
                    expires_at=now + lifetime_seconds,
                )
            else:
                record = AttemptRecord(
                    key=key,
                    count=current.count + 1,
                    first_request=current.first_request,
                    last_request=max(now, current.last_request),
                    expires_at=now + lifetime_seconds if refresh_lifetime else current.expires_at,
                )
            self._records[key] = record
            return record

    def reset(self, key: str) -> None:
        with self._lock:
            self._records.pop(key, None)

    def purge_expired(self, now: float) -> int:
        with self._lock:
            expired_keys = [k for k, record in self._records.items() if record.is_expired(now)]
            for key in expired_keys:
                del self._records[key]

        if expired_keys:
            logger.debug("store.purged", extra={"backend": "memory", "purged": len(expired_keys)})
        return len(expired_keys)
