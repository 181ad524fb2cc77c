"""Guard-level exception types.

This module defines the errors raised across the guard, its stores and the
tier registry, enabling consistent error handling and logging.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, NotRequired, TypedDict


class ErrorDetails(TypedDict, total=False):
    """Structured error context for observability and callers.

    Fields are optional to keep backward compatibility while encouraging
    consistent shapes across the codebase.
    """

    code: str
    message: str
    hint: str
    tier: str
    field: str
    operation: str
    backend: str
    key_hash: str
    timeout_seconds: float
    context: NotRequired[dict[str, Any]]


@dataclass
class AppError(Exception):
    """Base error for guard failures.

    Attributes:
        code: Stable, machine-readable error code.
        message: Human-readable error message.
        details: Optional structured details for debugging/observability.
    """

    code: str
    message: str
    details: ErrorDetails | None = None

    def __post_init__(self) -> None:
        # Populate Exception args so str(error) is useful in logs/tracebacks.
        super().__init__(self.message)


class ConfigError(AppError):
    """Raised when tier or store configuration is invalid. Always fatal."""


@dataclass
class StoreError(AppError):
    """Raised when the attempt store is unavailable, times out or fails.

    Attributes:
        retryable: Whether the caller may retry the operation later.
    """

    retryable: bool = True
