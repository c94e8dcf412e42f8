"""
steeltrack_config -- single public entrypoint for tracker settings.

Responsibility:
    ``get_active_settings()`` is the way runtime code obtains settings.
    The kernel never imports this package; the composition root (the
    FieldTracker facade's builder, scripts, tests) reads settings here and
    passes plain values into ``steeltrack_kernel.db.Database``.
"""

from __future__ import annotations

import logging
import threading

from steeltrack_config.loader import load_settings, load_yaml_file
from steeltrack_config.schema import TrackerSettings

_logger = logging.getLogger("steeltrack_kernel.config")

_lock = threading.Lock()
_active: TrackerSettings | None = None


def get_active_settings() -> TrackerSettings:
    """Load settings once per process and return the cached instance."""
    global _active
    with _lock:
        if _active is None:
            _active = load_settings()
            _logger.info(
                "settings_loaded",
                extra={
                    "log_level": _active.log_level,
                    "broadcast_enabled": _active.broadcast_enabled,
                    "pool_size": _active.pool_size,
                },
            )
        return _active


def reset_active_settings() -> None:
    """Drop the cached settings (tests, reconfiguration)."""
    global _active
    with _lock:
        _active = None


__all__ = [
    "TrackerSettings",
    "get_active_settings",
    "load_settings",
    "load_yaml_file",
    "reset_active_settings",
]
