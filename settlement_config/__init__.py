"""
settlement_config -- single public entrypoint for settlement configuration.

Responsibility:
    ``get_active_config()`` is the only way settlement modules obtain
    configuration.  It loads ``defaults.yaml``, merges the overlay file
    named by the argument or the ``SETTLEMENT_CONFIG`` environment variable,
    validates the result and caches it per overlay path.

Architecture position:
    Configuration -- sits above ``settlement_kernel`` and below
    ``settlement_modules``.  The kernel never imports from here.

Failure modes:
    - ``ConfigError`` for a missing, malformed or invalid file.

Audit relevance:
    Every fresh load emits a ``SETTLEMENT_CONFIG_TRACE`` log entry with the
    checksum of the merged settings, tying each settlement to the exact
    configuration that governed it.
"""

from __future__ import annotations

import logging
import os
import threading
from pathlib import Path

from settlement_config.loader import ConfigError, load_config
from settlement_config.schema import (
    BillingConfig,
    NumberingConfig,
    PurchasingConfig,
    ReconciliationConfig,
    SettlementConfig,
)

_logger = logging.getLogger("settlement_kernel.config")

CONFIG_ENV_VAR = "SETTLEMENT_CONFIG"

_cache: dict[str, SettlementConfig] = {}
_cache_lock = threading.Lock()


def get_active_config(path: Path | str | None = None) -> SettlementConfig:
    """The active configuration.

    Args:
        path: Overlay file.  Defaults to ``$SETTLEMENT_CONFIG``; with
            neither, the packaged defaults apply unchanged.
    """
    if path is None:
        path = os.environ.get(CONFIG_ENV_VAR) or None
    key = str(Path(path).resolve()) if path is not None else ""

    with _cache_lock:
        config = _cache.get(key)
        if config is not None:
            return config
        config = load_config(path)
        _cache[key] = config

    _logger.info(
        "SETTLEMENT_CONFIG_TRACE",
        extra={
            "trace_type": "SETTLEMENT_CONFIG_TRACE",
            "config_path": key or "defaults",
            "checksum": config.checksum,
            "value_ceiling": str(config.billing.value_ceiling),
            "volume_ceiling_ml": config.billing.volume_ceiling_ml,
        },
    )
    return config


def clear_config_cache() -> None:
    """Forget cached configurations. FOR TESTING ONLY."""
    with _cache_lock:
        _cache.clear()


__all__ = [
    "BillingConfig",
    "CONFIG_ENV_VAR",
    "ConfigError",
    "NumberingConfig",
    "PurchasingConfig",
    "ReconciliationConfig",
    "SettlementConfig",
    "clear_config_cache",
    "get_active_config",
    "load_config",
]
