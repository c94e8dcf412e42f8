"""
Settings schema.

``TrackerSettings`` is the single typed configuration artifact.  It is
frozen; a running process never mutates its settings.
"""

from __future__ import annotations

from dataclasses import dataclass, fields

LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")


@dataclass(frozen=True)
class TrackerSettings:
    """Runtime settings for the tracker and its database handle."""

    database_url: str = "sqlite:///steeltrack.db"
    echo: bool = False
    pool_size: int = 20
    max_overflow: int = 10
    pool_timeout: int = 30
    pool_recycle: int = 1800
    log_level: str = "INFO"
    broadcast_enabled: bool = True

    def __post_init__(self) -> None:
        if not isinstance(self.database_url, str) or not self.database_url:
            raise ValueError("database_url must be a non-empty string")
        for name in ("pool_size", "max_overflow", "pool_timeout", "pool_recycle"):
            value = getattr(self, name)
            if isinstance(value, bool) or not isinstance(value, int) or value < 0:
                raise ValueError(f"{name} must be a non-negative integer, got {value!r}")
        for name in ("echo", "broadcast_enabled"):
            if not isinstance(getattr(self, name), bool):
                raise ValueError(f"{name} must be a boolean, got {getattr(self, name)!r}")
        if self.log_level not in LOG_LEVELS:
            raise ValueError(f"log_level must be one of {LOG_LEVELS}, got {self.log_level!r}")

    @classmethod
    def field_names(cls) -> frozenset[str]:
        return frozenset(f.name for f in fields(cls))
