"""
SQLite durability/performance tuning.

A policy table keyed by platform durability class, with run-mode
overrides applied on top. Produces a DatabaseConfiguration value; the
initialization guard applies it to the live handle.

Invariants:
    - No I/O; tune() is a pure lookup
    - Ephemeral platforms get relaxed durability (synchronous=OFF)
    - Persistent platforms and unknown production get synchronous=FULL
    - Test mode keeps no on-disk write-ahead log
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from enum import Enum

from ..config import RunMode
from .detector import DeploymentEnvironment, PlatformKind


class SyncMode(Enum):
    """SQLite synchronous setting."""

    FULL = "FULL"
    NORMAL = "NORMAL"
    OFF = "OFF"


class JournalMode(Enum):
    """SQLite journal mode."""

    WAL = "WAL"
    DELETE = "DELETE"
    MEMORY = "MEMORY"


class TempStore(Enum):
    """SQLite temp_store setting."""

    DEFAULT = "DEFAULT"
    FILE = "FILE"
    MEMORY = "MEMORY"


@dataclass(frozen=True)
class DatabaseConfiguration:
    """Engine settings applied once per process start.

    Attributes:
        journal_mode: Journal mode (WAL everywhere except test)
        synchronous: Durability mode
        cache_size: Page cache size (pages, negative = KiB)
        temp_store: Temporary table storage location
        busy_timeout_ms: Lock wait timeout
        wal_autocheckpoint: Pages between automatic WAL checkpoints
        mmap_size: Memory-mapped I/O size in bytes
    """

    journal_mode: JournalMode = JournalMode.WAL
    synchronous: SyncMode = SyncMode.FULL
    cache_size: int = 10000
    temp_store: TempStore = TempStore.MEMORY
    busy_timeout_ms: int = 30000
    wal_autocheckpoint: int = 1000
    mmap_size: int = 256 * 1024 * 1024

    @property
    def relaxed_durability(self) -> bool:
        return self.synchronous != SyncMode.FULL

    def pragmas(self) -> list[tuple[str, str | int]]:
        """Ordered PRAGMA assignments for this configuration."""
        statements: list[tuple[str, str | int]] = [
            ("busy_timeout", self.busy_timeout_ms),
            ("journal_mode", self.journal_mode.value),
            ("synchronous", self.synchronous.value),
            ("cache_size", self.cache_size),
            ("temp_store", self.temp_store.value),
            ("mmap_size", self.mmap_size),
        ]
        if self.journal_mode == JournalMode.WAL:
            statements.append(("wal_autocheckpoint", self.wal_autocheckpoint))
        return statements

    def to_dict(self) -> dict[str, object]:
        return {
            "journal_mode": self.journal_mode.value,
            "synchronous": self.synchronous.value,
            "cache_size": self.cache_size,
            "temp_store": self.temp_store.value,
            "busy_timeout_ms": self.busy_timeout_ms,
            "wal_autocheckpoint": self.wal_autocheckpoint,
            "mmap_size": self.mmap_size,
        }


_PLATFORM_POLICY: dict[PlatformKind, DatabaseConfiguration] = {
    PlatformKind.MANAGED_EPHEMERAL: DatabaseConfiguration(
        synchronous=SyncMode.OFF,
        busy_timeout_ms=5000,
        wal_autocheckpoint=100,
    ),
    PlatformKind.MANAGED_PERSISTENT: DatabaseConfiguration(
        synchronous=SyncMode.FULL,
        busy_timeout_ms=30000,
        wal_autocheckpoint=1000,
    ),
    PlatformKind.UNKNOWN_PRODUCTION: DatabaseConfiguration(
        synchronous=SyncMode.FULL,
        busy_timeout_ms=30000,
        wal_autocheckpoint=1000,
    ),
    PlatformKind.LOCAL: DatabaseConfiguration(
        synchronous=SyncMode.NORMAL,
        busy_timeout_ms=30000,
        wal_autocheckpoint=1000,
    ),
}

_RUN_MODE_OVERRIDES: dict[RunMode, dict[str, object]] = {
    RunMode.DEVELOPMENT: {"cache_size": 5000, "busy_timeout_ms": 10000},
    RunMode.TEST: {
        "journal_mode": JournalMode.MEMORY,
        "synchronous": SyncMode.OFF,
        "cache_size": 2000,
        "busy_timeout_ms": 5000,
        "mmap_size": 0,
    },
}


def tune(env: DeploymentEnvironment, run_mode: RunMode) -> DatabaseConfiguration:
    """Select engine settings for a deployment environment and run mode.

    Run-mode overrides only apply off managed platforms, except test mode,
    which always wins.

    Args:
        env: Detected deployment environment
        run_mode: Declared run mode

    Returns:
        DatabaseConfiguration to apply
    """
    config = _PLATFORM_POLICY[env.platform]
    overrides = _RUN_MODE_OVERRIDES.get(run_mode)
    if overrides is None:
        return config
    if run_mode == RunMode.TEST or env.platform == PlatformKind.LOCAL:
        return replace(config, **overrides)
    return config
