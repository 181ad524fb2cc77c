"""Structured logging for the guard.

Log records carry guard fields (tier, key_hash, count, operation) as extras.
Handlers installed by ``configure_logging`` redact identity-bearing fields,
attach the caller's request id and render one JSON object per line.
"""

from __future__ import annotations

import json
import logging
import sys
from contextlib import contextmanager
from contextvars import ContextVar
from datetime import datetime, timezone
from logging import LogRecord
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Any, Iterable, Iterator, Mapping

from bruteguard.core.config import LogSettings, settings
from bruteguard.utils.keys import hash_key

REDACTED = "[REDACTED]"
DEFAULT_LOG_FILE = "logs/bruteguard.log"

_request_id_var: ContextVar[str | None] = ContextVar("bruteguard_request_id", default=None)

# Guard keys embed IPs and account identifiers
SENSITIVE_KEYS_DEFAULT: frozenset[str] = frozenset(
    {
        "authorization",
        "password",
        "secret",
        "token",
        "cookie",
        "database_url",
        "raw_key",
        "identity",
        "email",
        "ip",
    }
)

# Attributes every LogRecord has; anything else arrived through ``extra``
_STANDARD_ATTRS = frozenset(logging.makeLogRecord({}).__dict__) | {"message", "asctime", "taskName"}


def set_request_id(request_id: str | None) -> None:
    _request_id_var.set(request_id)


def get_request_id() -> str | None:
    return _request_id_var.get()


def clear_request_id() -> None:
    _request_id_var.set(None)


@contextmanager
def request_id_scope(request_id: str | None) -> Iterator[None]:
    """Attach ``request_id`` to guard logs emitted inside the block."""
    token = _request_id_var.set(request_id)
    try:
        yield
    finally:
        _request_id_var.reset(token)


def _redact(value: Any, sensitive: frozenset[str]) -> Any:
    if isinstance(value, Mapping):
        return {
            k: REDACTED if str(k).lower() in sensitive else _redact(v, sensitive)
            for k, v in value.items()
        }
    if isinstance(value, (list, tuple)):
        return type(value)(_redact(v, sensitive) for v in value)
    return value


def _extra_fields(record: LogRecord, sensitive: frozenset[str]) -> dict[str, Any]:
    """Return the record's ``extra`` fields with identities removed.

    A raw ``key`` field is replaced by its ``key_hash`` so the line still
    correlates with other logs for the same key.
    """
    fields: dict[str, Any] = {}
    for name, value in record.__dict__.items():
        if name in _STANDARD_ATTRS or name.startswith("_"):
            continue
        if name == "key" and isinstance(value, str):
            fields.setdefault("key_hash", hash_key(value))
            continue
        fields[name] = REDACTED if name.lower() in sensitive else _redact(value, sensitive)
    return fields


class RequestIdFilter(logging.Filter):
    """Copy the context request id onto records that lack one."""

    def filter(self, record: LogRecord) -> bool:
        if getattr(record, "request_id", None) is None:
            request_id = get_request_id()
            if request_id:
                record.request_id = request_id
        return True


class SensitiveDataFilter(logging.Filter):
    """Scrub identity-bearing extras in place, before any formatter sees them."""

    def __init__(self, sensitive_keys: Iterable[str] | None = None) -> None:
        super().__init__()
        self.sensitive_keys = frozenset(k.lower() for k in (sensitive_keys or SENSITIVE_KEYS_DEFAULT))

    def filter(self, record: LogRecord) -> bool:
        if isinstance(getattr(record, "key", None), str):
            record.key_hash = getattr(record, "key_hash", None) or hash_key(record.key)
            del record.key
        for name, value in _extra_fields(record, self.sensitive_keys).items():
            setattr(record, name, value)
        return True


class JsonFormatter(logging.Formatter):
    """One JSON object per record: timestamp, level, logger, message, extras."""

    def __init__(
        self,
        *,
        sensitive_keys: Iterable[str] | None = None,
        ensure_ascii: bool = True,
    ) -> None:
        super().__init__()
        self.sensitive_keys = frozenset(k.lower() for k in (sensitive_keys or SENSITIVE_KEYS_DEFAULT))
        self.ensure_ascii = ensure_ascii

    def format(self, record: LogRecord) -> str:
        payload: dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "level": record.levelname.lower(),
            "logger": record.name,
            "message": record.getMessage(),
        }
        request_id = getattr(record, "request_id", None) or get_request_id()
        if request_id:
            payload["request_id"] = request_id

        payload.update(_extra_fields(record, self.sensitive_keys))

        if record.exc_info:
            payload["exc_info"] = self.formatException(record.exc_info)

        return json.dumps(payload, default=str, ensure_ascii=self.ensure_ascii)


def _build_handler(cfg: LogSettings) -> logging.Handler:
    if cfg.output != "file":
        return logging.StreamHandler(sys.stdout)

    path = Path(cfg.file_path or DEFAULT_LOG_FILE)
    path.parent.mkdir(parents=True, exist_ok=True)
    if cfg.max_bytes:
        return RotatingFileHandler(
            path,
            maxBytes=cfg.max_bytes,
            backupCount=cfg.backup_count,
            encoding="utf-8",
        )
    return logging.FileHandler(path, encoding="utf-8")


def configure_logging(log_settings: LogSettings | None = None) -> None:
    """Install a single redacting handler on the root logger.

    Args:
        log_settings: Logging settings; the global ``settings.log`` when omitted.
    """
    cfg = log_settings or settings.log

    handler = _build_handler(cfg)
    handler.addFilter(RequestIdFilter())
    handler.addFilter(SensitiveDataFilter())
    if cfg.format == "plain":
        handler.setFormatter(logging.Formatter("%(asctime)s %(levelname)s %(name)s %(message)s"))
    else:
        handler.setFormatter(JsonFormatter())

    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(getattr(logging, cfg.level.upper(), logging.INFO))

    # SQL echo goes through the engine's own logger; keep it out of the root stream
    logging.getLogger("sqlalchemy.engine").propagate = cfg.level.upper() == "DEBUG"
