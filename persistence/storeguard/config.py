"""
Configuration management for the storage guard.

All configuration is done via environment variables - no config files.
This module provides typed configuration classes with validation.

Invariants:
    - All settings have sensible defaults for local development
    - Configuration is loaded once at boot and passed explicitly to
      every component; nothing reads it from module-level state
    - The database path itself is resolved by the environment detector,
      since the right default depends on the platform

How to change safely:
    - Add new settings with defaults that maintain backward compatibility
    - Never change BACKUP_PREFIX defaults: restoration depends on the
      on-disk naming convention being stable across versions
"""

from __future__ import annotations

import logging
import os
from collections.abc import Mapping
from dataclasses import dataclass, field
from enum import Enum

logger = logging.getLogger(__name__)

DEFAULT_DATABASE_URL = "./data/fitness_challenge.db"
DEFAULT_BACKUP_PREFIX = "fitness_challenge_backup"


class RunMode(Enum):
    """Declared run mode of the surrounding application."""

    DEVELOPMENT = "development"
    PRODUCTION = "production"
    TEST = "test"

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> RunMode:
        """Parse APP_ENV, defaulting to development."""
        env = os.environ if environ is None else environ
        value = env.get("APP_ENV", "development").strip().lower()
        try:
            return cls(value)
        except ValueError:
            raise ValueError(
                f"Invalid APP_ENV '{value}'. Must be one of: development, production, test"
            )


def _flag(env: Mapping[str, str], name: str, default: str) -> bool:
    return env.get(name, default).strip().lower() in ("1", "true", "yes", "on")


@dataclass(frozen=True)
class StorageConfig:
    """Database location as declared by the operator.

    Attributes:
        database_url: Raw DATABASE_URL value, None when unset
    """

    database_url: str | None = None

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> StorageConfig:
        """Load configuration from environment variables."""
        env = os.environ if environ is None else environ
        return cls(database_url=env.get("DATABASE_URL") or None)


@dataclass(frozen=True)
class BackupConfig:
    """Snapshot configuration.

    Attributes:
        backup_dir: Explicit backup directory (platform default when None)
        prefix: File name prefix of snapshot files
        retention_count: Regular snapshots to keep
        emergency_retention_count: Emergency snapshots to keep
        frequency_hours: Interval of scheduled snapshots
        min_plausible_size_bytes: Snapshots smaller than this are never restored
        schedule_enabled: Whether the periodic snapshotter runs
    """

    backup_dir: str | None = None
    prefix: str = DEFAULT_BACKUP_PREFIX
    retention_count: int = 7
    emergency_retention_count: int = 5
    frequency_hours: float = 24.0
    min_plausible_size_bytes: int = 1024
    schedule_enabled: bool = True

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> BackupConfig:
        """Load configuration from environment variables."""
        env = os.environ if environ is None else environ
        return cls(
            backup_dir=env.get("BACKUP_PATH") or None,
            prefix=env.get("BACKUP_PREFIX", DEFAULT_BACKUP_PREFIX),
            retention_count=int(env.get("BACKUP_RETENTION_COUNT", "7")),
            emergency_retention_count=int(env.get("BACKUP_EMERGENCY_RETENTION", "5")),
            frequency_hours=float(env.get("BACKUP_FREQUENCY_HOURS", "24")),
            min_plausible_size_bytes=int(env.get("BACKUP_MIN_SIZE_BYTES", "1024")),
            schedule_enabled=_flag(env, "BACKUP_SCHEDULE_ENABLED", "true"),
        )


@dataclass(frozen=True)
class RecoveryConfig:
    """Restoration policy.

    Attributes:
        auto_restore: Attempt automatic restoration on detected data loss
        fail_on_restore_failure: Raise instead of booting into DEGRADED
    """

    auto_restore: bool = True
    fail_on_restore_failure: bool = False

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> RecoveryConfig:
        """Load configuration from environment variables."""
        env = os.environ if environ is None else environ
        return cls(
            auto_restore=_flag(env, "GUARD_AUTO_RESTORE", "true"),
            fail_on_restore_failure=_flag(env, "GUARD_FAIL_ON_RESTORE_FAILURE", "false"),
        )


@dataclass(frozen=True)
class ObservabilityConfig:
    """Logging configuration.

    Attributes:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR)
        log_format: Log format (json, text)
        log_file: Optional file receiving a copy of all records
    """

    log_level: str = "INFO"
    log_format: str = "json"
    log_file: str | None = None

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> ObservabilityConfig:
        """Load configuration from environment variables."""
        env = os.environ if environ is None else environ
        return cls(
            log_level=env.get("LOG_LEVEL", "INFO"),
            log_format=env.get("LOG_FORMAT", "json"),
            log_file=env.get("LOG_FILE") or None,
        )


@dataclass
class GuardConfig:
    """Complete guard configuration.

    Attributes:
        run_mode: Declared run mode
        storage: Database location
        backup: Snapshot configuration
        recovery: Restoration policy
        observability: Logging configuration
    """

    run_mode: RunMode = RunMode.DEVELOPMENT
    storage: StorageConfig = field(default_factory=StorageConfig)
    backup: BackupConfig = field(default_factory=BackupConfig)
    recovery: RecoveryConfig = field(default_factory=RecoveryConfig)
    observability: ObservabilityConfig = field(default_factory=ObservabilityConfig)

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> GuardConfig:
        """Load complete configuration from environment variables.

        Args:
            environ: Mapping to read instead of os.environ

        Returns:
            GuardConfig with all sections populated from environment.

        Raises:
            ValueError: If configuration is missing or invalid.
        """
        try:
            config = cls(
                run_mode=RunMode.from_env(environ),
                storage=StorageConfig.from_env(environ),
                backup=BackupConfig.from_env(environ),
                recovery=RecoveryConfig.from_env(environ),
                observability=ObservabilityConfig.from_env(environ),
            )
        except ValueError as e:
            raise ValueError(f"Invalid guard configuration: {e}") from e

        config.validate()
        return config

    def validate(self) -> None:
        """Validate configuration consistency.

        Raises:
            ValueError: If configuration is invalid.
        """
        if self.backup.retention_count < 1:
            raise ValueError("BACKUP_RETENTION_COUNT must be at least 1")
        if self.backup.emergency_retention_count < 1:
            raise ValueError("BACKUP_EMERGENCY_RETENTION must be at least 1")
        if self.backup.frequency_hours < 0:
            raise ValueError("BACKUP_FREQUENCY_HOURS must not be negative")
        if self.backup.min_plausible_size_bytes < 0:
            raise ValueError("BACKUP_MIN_SIZE_BYTES must not be negative")
        if not self.backup.prefix or "/" in self.backup.prefix:
            raise ValueError("BACKUP_PREFIX must be a non-empty file name prefix")
        if self.observability.log_format not in ("json", "text"):
            raise ValueError("LOG_FORMAT must be one of: json, text")

        if self.run_mode == RunMode.PRODUCTION and self.storage.database_url is None:
            logger.warning("DATABASE_URL is not set; the platform default path will be used")

    def log_config(self) -> None:
        """Log configuration."""
        logger.info(
            "Guard configuration loaded",
            extra={
                "run_mode": self.run_mode.value,
                "database_url": self.storage.database_url,
                "backup_dir": self.backup.backup_dir,
                "backup_retention": self.backup.retention_count,
                "backup_frequency_hours": self.backup.frequency_hours,
                "auto_restore": self.recovery.auto_restore,
                "fail_on_restore_failure": self.recovery.fail_on_restore_failure,
                "log_level": self.observability.log_level,
            },
        )
