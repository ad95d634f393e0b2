"""
Automatic restoration after detected data loss.

The failsafe runs at most once per boot, when the initialization guard
sees a database that had rows before boot and has none after it. It
restores the newest plausible snapshot, but only after verifying it
independently of the live file.

Restore steps:
    1. No data before boot            -> no_previous_data
    2. Live counts non-zero again     -> data_still_present
    3. Newest plausible snapshot      -> no_backup_found when none
    4. Verify candidate independently -> backup_integrity_failed
    5. Emergency snapshot of the empty live file (forensics)
    6. Close handle, replace file set, reopen
    7. Re-count                       -> restoration_failed when still empty

Invariants:
    - Exactly one candidate is tried; no retry against the same or an
      older snapshot
    - No live file is replaced before the candidate passed verification
    - Every step lands in the audit trail, which is logged, returned on
      the outcome and appended to restore_audit.jsonl

How to change safely:
    - Keep the reasons in RestoreReason stable; monitoring keys on them
    - Test any new step against the empty-snapshot and tiny-snapshot cases
"""

from __future__ import annotations

import json
import logging
import sqlite3
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from ..errors import SnapshotFailed
from ..integrity.verifier import IntegrityVerifier
from ..snapshot.manager import BackupRecord, SnapshotKind, SnapshotManager
from ..store.database import DomainCounts, FitnessDatabase
from .state import InitializationState, RestoreReason

logger = logging.getLogger(__name__)

AUDIT_LOG_NAME = "restore_audit.jsonl"


@dataclass
class RestoreOutcome:
    """Result of one restoration attempt.

    Attributes:
        restored: Whether data was restored
        reason: Why nothing was restored (None on success)
        backup_used: Snapshot that was (or would have been) restored
        counts_before: Live counts when the attempt started
        restored_counts: Live counts after restoration
        emergency_snapshot: Forensic copy of the live file taken before replacing it
        audit: Ordered audit trail entries
        duration_ms: Total duration
        error: Error message of an unexpected failure
    """

    restored: bool
    reason: RestoreReason | None = None
    backup_used: BackupRecord | None = None
    counts_before: DomainCounts | None = None
    restored_counts: DomainCounts | None = None
    emergency_snapshot: BackupRecord | None = None
    audit: list[dict[str, Any]] = field(default_factory=list)
    duration_ms: int = 0
    error: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "restored": self.restored,
            "reason": self.reason.value if self.reason else None,
            "backup_used": self.backup_used.name if self.backup_used else None,
            "counts_before": self.counts_before.to_dict() if self.counts_before else None,
            "restored_counts": self.restored_counts.to_dict() if self.restored_counts else None,
            "emergency_snapshot": (
                self.emergency_snapshot.name if self.emergency_snapshot else None
            ),
            "duration_ms": self.duration_ms,
            "error": self.error,
        }


class RestorationFailsafe:
    """Restores the live database from the newest verified snapshot.

    Attributes:
        database: Live handle (closed and reopened during restoration)
        snapshots: SnapshotManager for the live database
        verifier: Verifier used on the candidate snapshot
        min_plausible_size_bytes: Smaller snapshots are never candidates

    Example:
        >>> failsafe = RestorationFailsafe(database, snapshots)
        >>> outcome = failsafe.attempt_restore(pre_state)
        >>> outcome.restored, outcome.reason
        (False, <RestoreReason.NO_BACKUP_FOUND: 'no_backup_found'>)
    """

    def __init__(
        self,
        database: FitnessDatabase,
        snapshots: SnapshotManager,
        verifier: IntegrityVerifier | None = None,
        min_plausible_size_bytes: int = 1024,
        emergency_retention_count: int = 5,
        audit_log_path: str | Path | None = None,
    ) -> None:
        self.database = database
        self.snapshots = snapshots
        self.verifier = verifier or snapshots.verifier
        self.min_plausible_size_bytes = min_plausible_size_bytes
        self.emergency_retention_count = emergency_retention_count
        if audit_log_path is None:
            audit_log_path = snapshots.backup_dir / AUDIT_LOG_NAME
        self.audit_log_path = Path(audit_log_path)

    def attempt_restore(self, pre_state: InitializationState) -> RestoreOutcome:
        """Attempt one automatic restoration.

        Args:
            pre_state: Counts captured before boot touched the schema

        Returns:
            RestoreOutcome; never raises for expected failure modes
        """
        start_time = time.time()
        outcome = RestoreOutcome(restored=False)
        try:
            self._attempt(pre_state, outcome)
        finally:
            outcome.duration_ms = int((time.time() - start_time) * 1000)
            self._write_audit_log(outcome)
        return outcome

    def _attempt(self, pre_state: InitializationState, outcome: RestoreOutcome) -> None:
        self._audit(
            outcome,
            "start",
            logging.WARNING,
            "Automatic restoration started",
            pre_state=pre_state.to_dict(),
            database=str(self.database.path),
        )

        # Step 1
        if not pre_state.had_existing_data:
            self._fail(outcome, RestoreReason.NO_PREVIOUS_DATA, "No data before boot; nothing to restore")
            return

        # Step 2
        try:
            self.database.open()
            outcome.counts_before = self.database.counts()
        except sqlite3.Error as e:
            self._audit(
                outcome,
                "recount",
                logging.ERROR,
                f"Cannot count live rows, continuing as empty: {e}",
            )
        if outcome.counts_before is not None and not outcome.counts_before.is_empty:
            self._fail(
                outcome,
                RestoreReason.DATA_STILL_PRESENT,
                "Live database is no longer empty; restoration not needed",
                counts=outcome.counts_before.to_dict(),
            )
            return

        # Step 3
        candidate = self.snapshots.find_restore_candidate(self.min_plausible_size_bytes)
        if candidate is None:
            self._fail(
                outcome,
                RestoreReason.NO_BACKUP_FOUND,
                "No plausible snapshot found; manual intervention required",
                backup_dir=str(self.snapshots.backup_dir),
                min_size_bytes=self.min_plausible_size_bytes,
            )
            return
        outcome.backup_used = candidate
        self._audit(
            outcome,
            "candidate",
            logging.WARNING,
            f"Selected snapshot {candidate.name}",
            snapshot=candidate.name,
            snapshot_age_hours=candidate.age_hours(),
            size_bytes=candidate.size_bytes,
            companions=list(candidate.companions),
        )

        # Step 4
        report = self.verifier.verify(
            candidate.path, expected_companions=candidate.companions, require_writable=False
        )
        backup_counts = report.counts
        if report.issues or backup_counts.is_empty:
            self._fail(
                outcome,
                RestoreReason.BACKUP_INTEGRITY_FAILED,
                f"Snapshot {candidate.name} failed verification; not restoring",
                snapshot=candidate.name,
                issues=report.issues,
                backup_counts=backup_counts.to_dict(),
            )
            return
        self._audit(
            outcome,
            "verified",
            logging.WARNING,
            f"Snapshot {candidate.name} verified",
            snapshot=candidate.name,
            backup_counts=backup_counts.to_dict(),
        )

        # Step 5
        try:
            outcome.emergency_snapshot = self.snapshots.create_snapshot(
                f"before restoring {candidate.name}", kind=SnapshotKind.EMERGENCY
            )
            self._audit(
                outcome,
                "emergency_snapshot",
                logging.WARNING,
                f"Preserved live file as {outcome.emergency_snapshot.name}",
                snapshot=outcome.emergency_snapshot.name,
            )
            self.snapshots.prune(self.emergency_retention_count, kind=SnapshotKind.EMERGENCY)
        except SnapshotFailed as e:
            self._audit(
                outcome,
                "emergency_snapshot",
                logging.ERROR,
                f"Emergency snapshot failed, continuing without it: {e}",
                details=e.details,
            )

        # Step 6
        try:
            self.database.close()
            self.snapshots.restore_into(candidate, self.database.path)
        except OSError as e:
            outcome.error = str(e)
            self._reopen_quietly(outcome)
            self._fail(
                outcome,
                RestoreReason.RESTORATION_FAILED,
                f"Replacing live files failed: {e}",
                snapshot=candidate.name,
            )
            return

        # Step 7
        try:
            self.database.reopen()
            outcome.restored_counts = self.database.counts()
        except sqlite3.Error as e:
            outcome.error = str(e)
            self._fail(
                outcome,
                RestoreReason.RESTORATION_FAILED,
                f"Restored database cannot be read: {e}",
                snapshot=candidate.name,
            )
            return

        if outcome.restored_counts.is_empty:
            self._fail(
                outcome,
                RestoreReason.RESTORATION_FAILED,
                "Database still empty after restoration",
                snapshot=candidate.name,
                restored_counts=outcome.restored_counts.to_dict(),
            )
            return

        outcome.restored = True
        self._audit(
            outcome,
            "restored",
            logging.WARNING,
            f"Restored database from {candidate.name}",
            snapshot=candidate.name,
            snapshot_age_hours=candidate.age_hours(),
            counts_before=outcome.counts_before.to_dict() if outcome.counts_before else None,
            restored_counts=outcome.restored_counts.to_dict(),
            expected_counts=pre_state.to_dict(),
        )

    def _reopen_quietly(self, outcome: RestoreOutcome) -> None:
        try:
            self.database.reopen()
        except sqlite3.Error as e:
            self._audit(outcome, "reopen", logging.CRITICAL, f"Reopening live database failed: {e}")

    def _fail(
        self,
        outcome: RestoreOutcome,
        reason: RestoreReason,
        message: str,
        **fields: Any,
    ) -> None:
        outcome.restored = False
        outcome.reason = reason
        self._audit(outcome, reason.value, logging.ERROR, message, reason=reason.value, **fields)

    def _audit(
        self,
        outcome: RestoreOutcome,
        step: str,
        level: int,
        message: str,
        **fields: Any,
    ) -> None:
        entry = {
            "ts": datetime.now(timezone.utc).isoformat(),
            "step": step,
            "message": message,
            **fields,
        }
        outcome.audit.append(entry)
        logger.log(level, message, extra={"restore_step": step, **fields})

    def _write_audit_log(self, outcome: RestoreOutcome) -> None:
        """Append the audit trail as JSON lines next to the snapshots."""
        try:
            self.audit_log_path.parent.mkdir(parents=True, exist_ok=True)
            with open(self.audit_log_path, "a", encoding="utf-8") as f:
                for entry in outcome.audit:
                    f.write(json.dumps(entry, default=str) + "\n")
                f.write(json.dumps({"outcome": outcome.to_dict()}, default=str) + "\n")
        except OSError as e:
            logger.error(f"Failed to write restore audit log {self.audit_log_path}: {e}")
