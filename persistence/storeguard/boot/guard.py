"""
Initialization guard: the boot state machine.

The guard runs once per process start, before the application serves
anything. It walks these states:

    DETECTING_ENV -> VALIDATING_CONFIG -> INSPECTING_EXISTING_DATA
        -> SKIP_SCHEMA_OPS | CREATE_SCHEMA
        -> APPLYING_TUNING -> POST_INIT_CHECK
        -> READY | RESTORING -> READY | DEGRADED

Each state has one handler returning the next state; READY and DEGRADED
are terminal. There are no retry loops: a boot makes at most one
restoration attempt.

Invariants:
    - Row counts are captured before any schema statement runs
    - Production boots with existing data never execute schema statements
      unless a domain table is actually missing
    - A safety snapshot is taken whenever existing data is found
    - Only FatalConfigurationError and SchemaCreationError escape by
      default; RestorationFailed only under the strict policy

How to change safely:
    - New states need a handler and a test covering their transitions
    - Never add a path that drops or recreates a table
"""

from __future__ import annotations

import logging
import sqlite3
import time
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from ..config import GuardConfig, RunMode
from ..environment.detector import DeploymentEnvironment, PlatformKind, detect
from ..environment.tuner import DatabaseConfiguration, tune
from ..errors import FatalConfigurationError, RestorationFailed, SchemaCreationError, SnapshotFailed
from ..integrity.verifier import IntegrityReport, IntegrityVerifier
from ..snapshot.manager import BackupRecord, SnapshotManager
from ..store.database import DOMAIN_TABLES, DomainCounts, FitnessDatabase
from .failsafe import RestorationFailsafe, RestoreOutcome
from .state import BootState, InitializationState, RestoreReason

logger = logging.getLogger(__name__)


@dataclass
class BootResult:
    """Outcome of one boot.

    Attributes:
        state: Terminal state (READY or DEGRADED)
        transitions: States entered, in order
        pre_state: Counts captured before schema operations
        post_counts: Live counts at the end of boot
        integrity: Last integrity report of the live file
        restore_outcome: Restoration attempt, if one was made
        safety_snapshot: Snapshot taken because existing data was found
        duration_ms: Total boot duration
    """

    state: BootState
    transitions: list[BootState] = field(default_factory=list)
    pre_state: InitializationState | None = None
    post_counts: DomainCounts | None = None
    integrity: IntegrityReport | None = None
    restore_outcome: RestoreOutcome | None = None
    safety_snapshot: BackupRecord | None = None
    duration_ms: int = 0

    @property
    def is_ready(self) -> bool:
        return self.state == BootState.READY

    @property
    def is_degraded(self) -> bool:
        return self.state == BootState.DEGRADED

    def to_dict(self) -> dict[str, Any]:
        outcome = self.restore_outcome
        return {
            "state": self.state.value,
            "restored": bool(outcome and outcome.restored),
            "reason": outcome.reason.value if outcome and outcome.reason else None,
        }


class InitializationGuard:
    """Runs the boot state machine for one process start.

    Components not passed in are built from the configuration once the
    environment is known.

    Example:
        >>> guard = InitializationGuard(GuardConfig.from_env())
        >>> result = guard.initialize()
        >>> result.state
        <BootState.READY: 'ready'>
        >>> guard.database.counts()
        DomainCounts(accounts=3, scans=5, scores=3)
    """

    def __init__(
        self,
        config: GuardConfig,
        environ: Mapping[str, str] | None = None,
        environment: DeploymentEnvironment | None = None,
        database: FitnessDatabase | None = None,
        snapshots: SnapshotManager | None = None,
        verifier: IntegrityVerifier | None = None,
        failsafe: RestorationFailsafe | None = None,
    ) -> None:
        self.config = config
        self.environ = environ
        self.environment = environment
        self.database = database
        self.snapshots = snapshots
        self.verifier = verifier or IntegrityVerifier()
        self.failsafe = failsafe
        self.db_config: DatabaseConfiguration | None = None

        self._result: BootResult | None = None
        self._handlers: dict[BootState, Callable[[], BootState]] = {
            BootState.DETECTING_ENV: self._detect_env,
            BootState.VALIDATING_CONFIG: self._validate_config,
            BootState.INSPECTING_EXISTING_DATA: self._inspect_existing_data,
            BootState.SKIP_SCHEMA_OPS: self._skip_schema_ops,
            BootState.CREATE_SCHEMA: self._create_schema,
            BootState.APPLYING_TUNING: self._apply_tuning,
            BootState.POST_INIT_CHECK: self._post_init_check,
            BootState.RESTORING: self._restore,
        }

    @property
    def result(self) -> BootResult | None:
        return self._result

    @property
    def database_path(self) -> Path:
        assert self.environment is not None
        return Path(self.environment.database_path)

    def initialize(self) -> BootResult:
        """Run the state machine to a terminal state.

        Returns:
            BootResult in READY or DEGRADED

        Raises:
            FatalConfigurationError: Path outside the persistent mount in
                production, or database directory cannot be created
            SchemaCreationError: Domain tables missing after creation
            RestorationFailed: Restoration failed under the strict policy
        """
        start_time = time.time()
        self._result = BootResult(state=BootState.DETECTING_ENV)

        state = BootState.DETECTING_ENV
        while True:
            self._enter(state)
            if state.is_terminal:
                break
            state = self._handlers[state]()

        self._result.duration_ms = int((time.time() - start_time) * 1000)
        if state == BootState.DEGRADED:
            self._on_degraded()
        else:
            logger.info(
                "Database initialization complete",
                extra={
                    "boot_state": state.value,
                    "counts": self._result.post_counts.to_dict() if self._result.post_counts else None,
                    "duration_ms": self._result.duration_ms,
                },
            )
        return self._result

    def _enter(self, state: BootState) -> None:
        assert self._result is not None
        self._result.state = state
        self._result.transitions.append(state)
        logger.debug(f"Boot state: {state.value}")

    # --- states ---

    def _detect_env(self) -> BootState:
        if self.environment is None:
            self.environment = detect(self.environ, self.config)
        env = self.environment
        self.db_config = tune(env, self.config.run_mode)

        logger.info(
            "Deployment environment detected",
            extra={"environment": env.to_dict(), "database_configuration": self.db_config.to_dict()},
        )

        if self.database is None:
            self.database = FitnessDatabase(
                env.database_path, busy_timeout_ms=self.db_config.busy_timeout_ms
            )
        if self.snapshots is None:
            self.snapshots = SnapshotManager(
                env.database_path,
                self.config.backup.backup_dir or env.recommended_backup_path,
                prefix=self.config.backup.prefix,
                verifier=self.verifier,
            )
        if self.failsafe is None:
            self.failsafe = RestorationFailsafe(
                self.database,
                self.snapshots,
                verifier=self.verifier,
                min_plausible_size_bytes=self.config.backup.min_plausible_size_bytes,
                emergency_retention_count=self.config.backup.emergency_retention_count,
            )
        return BootState.VALIDATING_CONFIG

    def _validate_config(self) -> BootState:
        env = self.environment
        assert env is not None and self.snapshots is not None

        for warning in env.warnings:
            logger.warning(warning, extra={"provider": env.provider})

        if (
            self.config.run_mode == RunMode.PRODUCTION
            and env.platform == PlatformKind.MANAGED_PERSISTENT
            and not env.path_in_persistent_mount
        ):
            logger.critical(
                "Refusing to start: database outside persistent storage",
                extra={
                    "database_path": env.database_path,
                    "persistent_mount": env.persistent_mount,
                    "recommended_path": env.recommended_storage_path,
                },
            )
            raise FatalConfigurationError(
                f"Database path {env.database_path} is outside the {env.provider} persistent "
                f"mount {env.persistent_mount}; set DATABASE_URL={env.recommended_storage_path}",
                database_path=env.database_path,
                recommended_path=env.recommended_storage_path,
            )

        try:
            self.database_path.parent.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise FatalConfigurationError(
                f"Cannot create database directory {self.database_path.parent}: {e}",
                database_path=env.database_path,
                recommended_path=env.recommended_storage_path,
            ) from e

        try:
            self.snapshots.backup_dir.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            logger.error(f"Cannot create backup directory {self.snapshots.backup_dir}: {e}")

        return BootState.INSPECTING_EXISTING_DATA

    def _inspect_existing_data(self) -> BootState:
        assert self._result is not None and self.snapshots is not None
        report = self.verifier.verify(self.database_path)
        pre_state = InitializationState.from_counts(report.counts)
        self._result.pre_state = pre_state

        if not pre_state.had_existing_data:
            logger.info(
                "No existing data found",
                extra={"database_path": str(self.database_path), "exists": report.exists},
            )
            return BootState.CREATE_SCHEMA

        logger.info("Existing data found", extra={"pre_state": pre_state.to_dict()})
        try:
            self._result.safety_snapshot = self.snapshots.create_snapshot(
                "pre-initialization safety snapshot"
            )
            self.snapshots.prune(self.config.backup.retention_count)
        except SnapshotFailed as e:
            logger.error(f"Safety snapshot failed: {e}", extra={"details": e.details})

        if self.config.run_mode == RunMode.PRODUCTION:
            return BootState.SKIP_SCHEMA_OPS
        return BootState.CREATE_SCHEMA

    def _skip_schema_ops(self) -> BootState:
        self._open_database()
        assert self.database is not None
        missing = sorted(set(DOMAIN_TABLES) - self.database.existing_tables())
        if missing:
            logger.warning(
                "Existing data found but domain tables are missing; creating absent tables",
                extra={"missing_tables": missing},
            )
            return BootState.CREATE_SCHEMA

        logger.info("Existing data found in production, skipping schema operations")
        return BootState.APPLYING_TUNING

    def _create_schema(self) -> BootState:
        self._open_database()
        assert self.database is not None
        try:
            self.database.create_schema()
            present = self.database.existing_tables()
        except sqlite3.Error as e:
            raise SchemaCreationError(
                f"Schema creation failed: {e}", missing_tables=list(DOMAIN_TABLES)
            ) from e

        missing = [table for table in DOMAIN_TABLES if table not in present]
        if missing:
            raise SchemaCreationError(
                f"Tables missing after schema creation: {', '.join(missing)}",
                missing_tables=missing,
            )
        return BootState.APPLYING_TUNING

    def _apply_tuning(self) -> BootState:
        assert self.database is not None and self.db_config is not None
        try:
            self.database.apply_configuration(self.db_config)
        except sqlite3.Error as e:
            logger.error(
                f"Failed to apply database configuration: {e}",
                extra={"database_configuration": self.db_config.to_dict()},
            )
        return BootState.POST_INIT_CHECK

    def _post_init_check(self) -> BootState:
        assert self._result is not None and self._result.pre_state is not None
        assert self.database is not None
        report = self.verifier.verify(self.database_path)
        self._result.integrity = report
        for issue in report.issues:
            logger.warning(f"Integrity issue: {issue}", extra={"database_path": report.path})

        try:
            counts = self.database.counts()
        except sqlite3.Error as e:
            logger.error(f"Cannot count rows through the live handle: {e}")
            counts = report.counts
        self._result.post_counts = counts

        pre_state = self._result.pre_state
        if not pre_state.had_existing_data:
            return BootState.READY

        if counts.is_empty:
            logger.critical(
                "DATA LOSS DETECTED: database had data before boot and is empty now",
                extra={"pre_state": pre_state.to_dict(), "counts": counts.to_dict()},
            )
            return BootState.RESTORING

        if (counts.accounts, counts.scans) != (
            pre_state.user_count_before,
            pre_state.scan_count_before,
        ):
            logger.warning(
                "Row counts changed during initialization",
                extra={"pre_state": pre_state.to_dict(), "counts": counts.to_dict()},
            )
        return BootState.READY

    def _restore(self) -> BootState:
        assert self._result is not None and self._result.pre_state is not None
        assert self.failsafe is not None

        if not self.config.recovery.auto_restore:
            logger.error("Automatic restoration disabled; manual recovery required")
            self._result.restore_outcome = RestoreOutcome(
                restored=False, reason=RestoreReason.AUTO_RESTORE_DISABLED
            )
            return BootState.DEGRADED

        outcome = self.failsafe.attempt_restore(self._result.pre_state)
        self._result.restore_outcome = outcome
        if not outcome.restored:
            return BootState.DEGRADED

        self._result.post_counts = outcome.restored_counts
        self._result.integrity = self.verifier.verify(self.database_path)
        return BootState.READY

    # --- helpers ---

    def _open_database(self) -> None:
        assert self.database is not None
        try:
            self.database.open()
        except sqlite3.Error as e:
            raise SchemaCreationError(
                f"Cannot open database {self.database_path}: {e}",
                missing_tables=list(DOMAIN_TABLES),
            ) from e

    def _on_degraded(self) -> None:
        assert self._result is not None
        outcome = self._result.restore_outcome
        reason = outcome.reason.value if outcome and outcome.reason else "unknown"
        backups = [r.name for r in self.snapshots.list_snapshots()] if self.snapshots else []

        logger.critical(
            "Booted DEGRADED: data loss detected and not restored; manual recovery required",
            extra={
                "reason": reason,
                "database_path": str(self.database_path),
                "backup_dir": str(self.snapshots.backup_dir) if self.snapshots else None,
                "available_backups": backups,
                "pre_state": self._result.pre_state.to_dict() if self._result.pre_state else None,
            },
        )

        if self.config.recovery.fail_on_restore_failure:
            raise RestorationFailed(
                f"Automatic restoration failed: {reason}",
                reason=reason,
                details={"available_backups": backups},
            )
