"""SQLAlchemy-backed attempt store.

Records persist in a single table so protection survives process restarts
and is shared by every worker pointed at the same database.

Atomicity:
  - ``increment_and_get`` is one ``INSERT ... ON CONFLICT (key) DO UPDATE ...
    RETURNING`` statement, so creation, increment and window restart happen
    inside the database in a single step. Concurrent callers never lose an
    update, whether they share a process or not.
  - In-memory SQLite runs on one shared connection, so the store takes a
    lock around every statement there.
  - Supported dialects: SQLite (>= 3.35) and PostgreSQL.
"""

from __future__ import annotations

import logging
import threading
from contextlib import contextmanager, nullcontext
from typing import Iterator

from sqlalchemy import Column, Float, Integer, String, case, create_engine, delete, select
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.engine import Engine
from sqlalchemy.exc import OperationalError, SQLAlchemyError
from sqlalchemy.orm import DeclarativeBase
from sqlalchemy.pool import StaticPool

from bruteguard.adapters.attempt_store.base import AbstractAttemptStore, AttemptRecord
from bruteguard.core.errors import ConfigError, StoreError
from bruteguard.utils.keys import hash_key

logger = logging.getLogger(__name__)

MAX_KEY_LENGTH = 255


class Base(DeclarativeBase):
    pass


class AttemptModel(Base):
    __tablename__ = "bruteguard_attempts"

    key = Column(String(MAX_KEY_LENGTH), primary_key=True)
    count = Column(Integer, nullable=False, default=1)
    first_request = Column(Float, nullable=False)
    last_request = Column(Float, nullable=False)
    # Purge target; an expired row is ignored even before it is deleted
    expires_at = Column(Float, nullable=False, index=True)


_attempts = AttemptModel.__table__

_INSERT_BY_DIALECT = {
    "sqlite": sqlite_insert,
    "postgresql": pg_insert,
}

_RECORD_COLUMNS = (
    _attempts.c.key,
    _attempts.c.count,
    _attempts.c.first_request,
    _attempts.c.last_request,
    _attempts.c.expires_at,
)


def build_engine(
    url: str,
    *,
    pool_size: int = 5,
    pool_timeout_seconds: float = 5.0,
    echo: bool = False,
) -> Engine:
    """Create a SQLAlchemy engine suited to the attempt store.

    In-memory SQLite databases share one connection across threads so every
    caller sees the same table; file-based SQLite and server databases use
    the regular connection pool.
    """
    if url.startswith("sqlite"):
        if ":memory:" in url or url.rstrip("/") in ("sqlite:", "sqlite+pysqlite:"):
            return create_engine(
                url,
                connect_args={"check_same_thread": False},
                poolclass=StaticPool,
                echo=echo,
            )
        return create_engine(
            url,
            connect_args={"check_same_thread": False, "timeout": pool_timeout_seconds},
            echo=echo,
        )

    return create_engine(
        url,
        pool_size=pool_size,
        max_overflow=pool_size,
        pool_timeout=pool_timeout_seconds,
        pool_recycle=1800,
        pool_pre_ping=True,
        echo=echo,
    )


class SqlAttemptStore(AbstractAttemptStore):
    """Attempt store on a relational database via SQLAlchemy Core."""

    def __init__(self, engine: Engine, *, create_schema: bool = False) -> None:
        """Initialize the store.

        Args:
            engine: SQLAlchemy engine bound to the target database.
            create_schema: Create the attempts table if it does not exist.

        Raises:
            ConfigError: If the engine's dialect has no atomic upsert support here.
        """
        dialect = engine.dialect.name
        if dialect not in _INSERT_BY_DIALECT:
            raise ConfigError(
                code="unsupported_dialect",
                message=(
                    f"Unsupported database dialect '{dialect}'. "
                    f"Supported: {', '.join(sorted(_INSERT_BY_DIALECT))}"
                ),
                details={"backend": dialect},
            )

        self._engine = engine
        self._insert = _INSERT_BY_DIALECT[dialect]
        # StaticPool hands every thread the same DBAPI connection, so
        # transactions from different threads would interleave on it
        self._statement_lock = (
            threading.Lock() if isinstance(engine.pool, StaticPool) else nullcontext()
        )
        if create_schema:
            self.create_schema()

    @classmethod
    def from_url(
        cls,
        url: str,
        *,
        pool_size: int = 5,
        pool_timeout_seconds: float = 5.0,
        echo: bool = False,
        create_schema: bool = True,
    ) -> "SqlAttemptStore":
        engine = build_engine(
            url,
            pool_size=pool_size,
            pool_timeout_seconds=pool_timeout_seconds,
            echo=echo,
        )
        return cls(engine, create_schema=create_schema)

    @property
    def engine(self) -> Engine:
        return self._engine

    @contextmanager
    def _guarded(self, operation: str, key: str | None = None) -> Iterator[None]:
        """Serialize access to a shared connection and re-raise SQLAlchemy failures as StoreError."""
        try:
            with self._statement_lock:
                yield
        except OperationalError as exc:
            raise StoreError(
                code="store_unavailable",
                message=f"Attempt store unavailable during {operation}",
                details={
                    "operation": operation,
                    "backend": self._engine.dialect.name,
                    **({"key_hash": hash_key(key)} if key else {}),
                },
            ) from exc
        except SQLAlchemyError as exc:
            raise StoreError(
                code="store_failure",
                message=f"Attempt store failed during {operation}: {exc.__class__.__name__}",
                details={
                    "operation": operation,
                    "backend": self._engine.dialect.name,
                    **({"key_hash": hash_key(key)} if key else {}),
                },
            ) from exc

    def create_schema(self) -> None:
        """Create the attempts table and index (idempotent)."""
        with self._guarded("create_schema"):
            Base.metadata.create_all(bind=self._engine)

    def get(self, key: str) -> AttemptRecord | None:
        stmt = select(*_RECORD_COLUMNS).where(_attempts.c.key == key)
        with self._guarded("get", key):
            with self._engine.connect() as conn:
                row = conn.execute(stmt).one_or_none()
        if row is None:
            return None
        return _to_record(row)

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
        if len(key) > MAX_KEY_LENGTH:
            raise ValueError(f"key must be at most {MAX_KEY_LENGTH} characters")

        new_expiry = now + lifetime_seconds
        expired = _attempts.c.expires_at <= now

        if refresh_lifetime:
            expires_at = new_expiry
        else:
            expires_at = case((expired, new_expiry), else_=_attempts.c.expires_at)

        stmt = self._insert(_attempts).values(
            key=key,
            count=1,
            first_request=now,
            last_request=now,
            expires_at=new_expiry,
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=[_attempts.c.key],
            set_={
                "count": case((expired, 1), else_=_attempts.c.count + 1),
                "first_request": case((expired, now), else_=_attempts.c.first_request),
                "last_request": now,
                "expires_at": expires_at,
            },
        ).returning(*_RECORD_COLUMNS)

        with self._guarded("increment", key):
            with self._engine.begin() as conn:
                row = conn.execute(stmt).one()
        return _to_record(row)

    def reset(self, key: str) -> None:
        stmt = delete(_attempts).where(_attempts.c.key == key)
        with self._guarded("reset", key):
            with self._engine.begin() as conn:
                conn.execute(stmt)

    def purge_expired(self, now: float) -> int:
        stmt = delete(_attempts).where(_attempts.c.expires_at <= now)
        with self._guarded("purge_expired"):
            with self._engine.begin() as conn:
                purged = conn.execute(stmt).rowcount or 0

        if purged:
            logger.info(
                "store.purged",
                extra={"backend": self._engine.dialect.name, "purged": purged},
            )
        return purged

    def close(self) -> None:
        self._engine.dispose()


def _to_record(row) -> AttemptRecord:
    # Row.count is the tuple method, so go through the mapping view
    data = row._mapping
    return AttemptRecord(
        key=data["key"],
        count=int(data["count"]),
        first_request=float(data["first_request"]),
        last_request=float(data["last_request"]),
        expires_at=float(data["expires_at"]),
    )
