"""
Component wiring for one guarded process.

bootstrap() runs the initialization guard and returns a GuardRuntime
holding everything the serving side needs: the live handle, the
snapshot manager, the environment and the boot result. Nothing here is
module-level state; the runtime is passed explicitly to the HTTP app.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from dataclasses import dataclass

from .boot.guard import BootResult, InitializationGuard
from .config import GuardConfig, RunMode
from .environment.detector import DeploymentEnvironment
from .health.reporter import HealthReporter
from .integrity.verifier import IntegrityVerifier
from .snapshot.manager import SnapshotManager
from .snapshot.scheduler import PeriodicSnapshotter
from .store.database import FitnessDatabase

logger = logging.getLogger(__name__)


@dataclass
class GuardRuntime:
    """Booted components of one process.

    Attributes:
        config: Guard configuration
        environment: Detected deployment environment
        database: Live handle (open after a successful boot)
        snapshots: SnapshotManager of the live database
        verifier: Shared integrity verifier
        boot_result: Outcome of the boot
    """

    config: GuardConfig
    environment: DeploymentEnvironment
    database: FitnessDatabase
    snapshots: SnapshotManager
    verifier: IntegrityVerifier
    boot_result: BootResult

    @property
    def snapshots_scheduled(self) -> bool:
        """Whether the periodic snapshotter should run for this process."""
        return (
            self.boot_result.is_ready
            and self.config.backup.schedule_enabled
            and self.config.backup.frequency_hours > 0
            and self.config.run_mode != RunMode.TEST
        )

    def health_reporter(self, backup_max_age_hours: float | None = None) -> HealthReporter:
        if backup_max_age_hours is None:
            backup_max_age_hours = max(self.config.backup.frequency_hours * 2, 1.0)
        return HealthReporter(
            self.environment,
            self.snapshots,
            verifier=self.verifier,
            boot_result=self.boot_result,
            backup_max_age_hours=backup_max_age_hours,
        )

    def snapshotter(self) -> PeriodicSnapshotter:
        return PeriodicSnapshotter(
            self.snapshots,
            interval_seconds=self.config.backup.frequency_hours * 3600,
            retention_count=self.config.backup.retention_count,
            verifier=self.verifier,
        )

    def close(self) -> None:
        self.database.checkpoint()
        self.database.close()


def bootstrap(config: GuardConfig, environ: Mapping[str, str] | None = None) -> GuardRuntime:
    """Boot the guard and return the wired runtime.

    Args:
        config: Guard configuration
        environ: Mapping to read instead of os.environ

    Raises:
        FatalConfigurationError, SchemaCreationError, RestorationFailed:
            As raised by InitializationGuard.initialize()
    """
    guard = InitializationGuard(config, environ=environ)
    result = guard.initialize()
    assert guard.environment is not None
    assert guard.database is not None and guard.snapshots is not None

    return GuardRuntime(
        config=config,
        environment=guard.environment,
        database=guard.database,
        snapshots=guard.snapshots,
        verifier=guard.verifier,
        boot_result=result,
    )
