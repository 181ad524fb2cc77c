"""Factory pattern for creating attempt store instances."""

from bruteguard.adapters.attempt_store.base import AbstractAttemptStore
from bruteguard.adapters.attempt_store.in_memory import InMemoryAttemptStore
from bruteguard.adapters.attempt_store.sql import SqlAttemptStore
from bruteguard.core.config import StoreSettings, settings
from bruteguard.core.errors import ConfigError


def create_attempt_store(store_settings: StoreSettings | None = None) -> AbstractAttemptStore:
    """Factory function to instantiate attempt stores based on backend.

    Reads configuration from bruteguard.core.config.settings unless explicit
    settings are passed. Validates backend-specific requirements.

    Returns:
        AbstractAttemptStore: Configured store instance.

    Raises:
        ConfigError: If backend-specific requirements are not met.
    """
    cfg = store_settings or settings.store
    backend = cfg.backend.lower()

    if backend == "memory":
        return InMemoryAttemptStore()

    if backend == "sql":
        if not cfg.database_url:
            raise ConfigError(
                code="store_missing_database_url",
                message="sql store backend requires STORE_DATABASE_URL environment variable",
                details={"backend": backend},
            )
        return SqlAttemptStore.from_url(
            cfg.database_url,
            pool_size=cfg.pool_size,
            pool_timeout_seconds=cfg.pool_timeout_seconds,
            echo=cfg.echo,
            create_schema=cfg.create_schema,
        )

    raise ConfigError(
        code="store_unknown_backend",
        message=f"Unknown attempt store backend: '{backend}'. Supported backends: memory, sql",
        details={"backend": backend},
    )
