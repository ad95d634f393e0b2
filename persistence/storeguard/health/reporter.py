"""
Health reporting for external monitoring.

The HealthReporter aggregates environment, integrity, backup and boot
state into one fixed payload. It is read-only: it never takes a
snapshot, never restores and never touches the live handle, so it can
be called concurrently with request handling.

Status rules:
    - healthy: the live file is valid (exists, readable, writable, no
      integrity issues) and the boot did not end DEGRADED
    - unhealthy: anything else

A missing or stale backup adds a backup warning but does not change the
status on its own.
"""

from __future__ import annotations

import time
from datetime import datetime, timezone

from pydantic import BaseModel, Field

from ..boot.guard import BootResult
from ..environment.detector import DeploymentEnvironment
from ..integrity.verifier import IntegrityVerifier
from ..snapshot.manager import SnapshotManager

HEALTHY = "healthy"
UNHEALTHY = "unhealthy"


class DatabaseStatus(BaseModel):
    """Live database file."""

    path: str
    exists: bool
    size_bytes: int
    age_seconds: float | None = None
    readable: bool
    writable: bool
    wal_mode: bool


class PersistenceStatus(BaseModel):
    """Whether storage survives a redeploy."""

    is_configured: bool
    warnings: list[str] = Field(default_factory=list)


class DataStatus(BaseModel):
    """Row counts of the domain tables."""

    accounts: int
    scans: int
    scores: int


class BackupStatus(BaseModel):
    """Regular snapshots on disk."""

    count: int
    most_recent_name: str | None = None
    most_recent_age_hours: float | None = None
    warning: str | None = None


class EnvironmentStatus(BaseModel):
    """Detected deployment platform."""

    platform: str
    provider: str
    is_persistent: bool


class BootStatus(BaseModel):
    """Outcome of the last boot of this process."""

    state: str
    restored: bool
    reason: str | None = None


class HealthReport(BaseModel):
    """Monitoring payload."""

    status: str = Field(..., description="healthy or unhealthy")
    database: DatabaseStatus
    persistence: PersistenceStatus
    data: DataStatus
    backup: BackupStatus
    environment: EnvironmentStatus
    boot: BootStatus | None = None
    issues: list[str] = Field(default_factory=list)
    timestamp: str


class HealthReporter:
    """Builds HealthReports on demand.

    Example:
        >>> reporter = HealthReporter(env, snapshots, boot_result=result)
        >>> reporter.report().status
        'healthy'
    """

    def __init__(
        self,
        environment: DeploymentEnvironment,
        snapshots: SnapshotManager,
        verifier: IntegrityVerifier | None = None,
        boot_result: BootResult | None = None,
        backup_max_age_hours: float = 48.0,
    ) -> None:
        """Initialize the reporter.

        Args:
            environment: Detected deployment environment
            snapshots: SnapshotManager of the live database
            verifier: Verifier for the live file
            boot_result: Outcome of this process's boot, if known
            backup_max_age_hours: Newest backup older than this is flagged
        """
        self.environment = environment
        self.snapshots = snapshots
        self.verifier = verifier or snapshots.verifier
        self.boot_result = boot_result
        self.backup_max_age_hours = backup_max_age_hours

    def report(self) -> HealthReport:
        env = self.environment
        integrity = self.verifier.verify(env.database_path)
        counts = integrity.counts
        now = time.time()

        backups = self.snapshots.list_snapshots()
        backup = BackupStatus(count=len(backups))
        if backups:
            newest = backups[0]
            backup.most_recent_name = newest.name
            backup.most_recent_age_hours = newest.age_hours(now)
            if backup.most_recent_age_hours > self.backup_max_age_hours:
                backup.warning = (
                    f"Most recent backup is {backup.most_recent_age_hours} hours old"
                )
        else:
            backup.warning = "No backups found"

        boot = None
        degraded = False
        if self.boot_result is not None:
            boot = BootStatus(**self.boot_result.to_dict())
            degraded = self.boot_result.is_degraded

        issues = list(integrity.issues)
        if degraded:
            issues.append("Boot ended DEGRADED; manual recovery required")

        status = HEALTHY if integrity.is_valid and not degraded else UNHEALTHY

        return HealthReport(
            status=status,
            database=DatabaseStatus(
                path=integrity.path,
                exists=integrity.exists,
                size_bytes=integrity.size_bytes,
                age_seconds=integrity.age_seconds,
                readable=integrity.readable,
                writable=integrity.writable,
                wal_mode=integrity.wal_mode_enabled,
            ),
            persistence=PersistenceStatus(
                is_configured=env.is_persistent,
                warnings=list(env.warnings),
            ),
            data=DataStatus(**counts.to_dict()),
            backup=backup,
            environment=EnvironmentStatus(
                platform=env.platform.value,
                provider=env.provider,
                is_persistent=env.is_persistent,
            ),
            boot=boot,
            issues=issues,
            timestamp=datetime.now(timezone.utc).isoformat(),
        )
