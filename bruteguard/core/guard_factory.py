"""Guard factory.

Centralizes guard construction (logging, store, tiers, error policy) so the
calling application builds its guard in one place from settings.
"""

from __future__ import annotations

from bruteguard.adapters.attempt_store.base import AbstractAttemptStore
from bruteguard.adapters.attempt_store.factory import create_attempt_store
from bruteguard.core.clock import Clock, system_clock
from bruteguard.core.config import GuardSettings, Settings, settings
from bruteguard.core.logging import configure_logging
from bruteguard.core.tiers import TierRegistry, default_registry
from bruteguard.services.guard import Guard, StoreErrorHook


def build_registry(guard_settings: GuardSettings | None = None) -> TierRegistry:
    """Return the default tiers with any configured overrides applied.

    Raises:
        ConfigError: If an override produces an invalid tier.
    """
    cfg = guard_settings or settings.guard
    registry = default_registry()
    if cfg.tiers:
        registry.merge_options(cfg.tiers)
    return registry


def create_guard(
    app_settings: Settings | None = None,
    *,
    store: AbstractAttemptStore | None = None,
    clock: Clock = system_clock,
    on_store_error: StoreErrorHook | None = None,
    setup_logging: bool = False,
) -> Guard:
    """Create a configured Guard.

    Args:
        app_settings: Settings to build from; defaults to the global settings.
        store: Use this store instead of creating one from the store settings.
        clock: Time source.
        on_store_error: Observability hook for store failures.
        setup_logging: Configure the root logger from the log settings first.

    Returns:
        Guard ready for use.
    """
    cfg = app_settings or settings

    # Logging first so subsequent init logs are formatted as desired
    if setup_logging:
        configure_logging(cfg.log)

    return Guard(
        store if store is not None else create_attempt_store(cfg.store),
        registry=build_registry(cfg.guard),
        clock=clock,
        open_on_store_error=cfg.guard.open_on_store_error,
        store_timeout_seconds=cfg.guard.store_timeout_seconds,
        on_store_error=on_store_error,
    )
