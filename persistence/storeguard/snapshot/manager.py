"""
Local SQLite snapshot management.

The SnapshotManager creates point-in-time copies of the live database in
the backup directory, lists and prunes them, and copies a chosen one back
over the live file.

Snapshot format:
    <backup_dir>/<prefix>_<YYYY-MM-DD_HH-MM-SS-ffffff>.db
    <backup_dir>/<prefix>_emergency_<YYYY-MM-DD_HH-MM-SS-ffffff>.db

Each snapshot may carry companions next to it:
    <name>-wal, <name>-shm, <name>-journal    engine log files
    <name>.manifest.json                      reason, counts, checksum

Timestamps are UTC. Names written by older releases without the
microsecond part are still recognized.

Invariants:
    - Snapshots are atomic: SQLite backup API into a temporary file,
      verified, then renamed into place; never a byte copy of a live file
    - The directory is the source of truth; manifests are informational
      and listing never depends on them
    - A snapshot and its companion log files are always moved together
    - Emergency snapshots are never restore candidates

How to change safely:
    - Never change the naming convention; restoration orders by the
      timestamp embedded in the name
    - Add manifest fields, don't remove existing ones
"""

from __future__ import annotations

import hashlib
import json
import logging
import os
import re
import shutil
import sqlite3
import threading
import time
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from enum import Enum
from pathlib import Path
from typing import Any

from ..config import DEFAULT_BACKUP_PREFIX
from ..errors import SnapshotFailed
from ..integrity.verifier import COMPANION_SUFFIXES, IntegrityVerifier, present_companions
from ..store.database import DOMAIN_TABLES, count_rows, list_domain_tables

logger = logging.getLogger(__name__)

TIMESTAMP_FORMAT = "%Y-%m-%d_%H-%M-%S-%f"
SNAPSHOT_EXTENSION = ".db"
MANIFEST_SUFFIX = ".manifest.json"


class SnapshotKind(Enum):
    """Regular snapshots are restore candidates; emergency ones are evidence."""

    REGULAR = "regular"
    EMERGENCY = "emergency"


@dataclass(frozen=True)
class BackupRecord:
    """One snapshot file on disk.

    Attributes:
        name: File name (embeds the creation timestamp)
        path: Absolute path
        kind: Regular or emergency
        created_at: Creation time parsed from the name (UTC)
        modified_at: Filesystem mtime (Unix seconds)
        size_bytes: Size of the main file
        companions: Companion log suffixes present next to it
    """

    name: str
    path: str
    kind: SnapshotKind
    created_at: datetime
    modified_at: float
    size_bytes: int
    companions: tuple[str, ...] = ()

    def age_seconds(self, now: float | None = None) -> float:
        now = time.time() if now is None else now
        return max(0.0, now - self.created_at.timestamp())

    def age_hours(self, now: float | None = None) -> float:
        return round(self.age_seconds(now) / 3600, 1)

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "path": self.path,
            "kind": self.kind.value,
            "created_at": self.created_at.isoformat(),
            "modified_at": self.modified_at,
            "size_bytes": self.size_bytes,
            "companions": list(self.companions),
        }


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class SnapshotManager:
    """Creates, lists, prunes and restores snapshots of one database.

    Thread safety:
        create_snapshot, prune and restore_into are serialized by a lock,
        so the periodic snapshotter and an operator tool can share one
        manager.

    Example:
        >>> manager = SnapshotManager(db_path, backup_dir)
        >>> record = manager.create_snapshot("pre-deployment")
        >>> manager.prune(retain=7)
    """

    def __init__(
        self,
        database_path: str | Path,
        backup_dir: str | Path,
        prefix: str = DEFAULT_BACKUP_PREFIX,
        verifier: IntegrityVerifier | None = None,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        """Initialize the manager.

        Args:
            database_path: Live database file
            backup_dir: Directory holding snapshots
            prefix: Snapshot file name prefix
            verifier: Verifier used to check fresh snapshots
            clock: Returns the current UTC time (injectable for tests)
        """
        self.database_path = Path(database_path)
        self.backup_dir = Path(backup_dir)
        self.prefix = prefix
        self.verifier = verifier or IntegrityVerifier()
        self._clock = clock
        self._lock = threading.Lock()
        self._pattern = re.compile(
            rf"^{re.escape(prefix)}_(?:(emergency)_)?"
            r"(\d{4}-\d{2}-\d{2}_\d{2}-\d{2}-\d{2})(?:-(\d{6}))?"
            rf"{re.escape(SNAPSHOT_EXTENSION)}$"
        )

    # --- naming ---

    def snapshot_name(self, kind: SnapshotKind, created_at: datetime) -> str:
        stamp = created_at.astimezone(timezone.utc).strftime(TIMESTAMP_FORMAT)
        if kind == SnapshotKind.EMERGENCY:
            return f"{self.prefix}_emergency_{stamp}{SNAPSHOT_EXTENSION}"
        return f"{self.prefix}_{stamp}{SNAPSHOT_EXTENSION}"

    def parse_name(self, name: str) -> tuple[SnapshotKind, datetime] | None:
        """Extract kind and creation time from a snapshot file name."""
        match = self._pattern.match(name)
        if not match:
            return None
        emergency, stamp, micros = match.groups()
        try:
            created_at = datetime.strptime(stamp, "%Y-%m-%d_%H-%M-%S").replace(
                microsecond=int(micros or 0), tzinfo=timezone.utc
            )
        except ValueError:
            return None
        kind = SnapshotKind.EMERGENCY if emergency else SnapshotKind.REGULAR
        return kind, created_at

    # --- creation ---

    def create_snapshot(
        self,
        reason: str,
        kind: SnapshotKind = SnapshotKind.REGULAR,
    ) -> BackupRecord:
        """Create a verified snapshot of the live database.

        Args:
            reason: Why the snapshot is taken (recorded in the manifest)
            kind: Regular or emergency

        Returns:
            BackupRecord of the new snapshot

        Raises:
            SnapshotFailed: If the source is missing or the copy is not
                consistent with the source
        """
        with self._lock:
            return self._create_snapshot(reason, kind)

    def _create_snapshot(self, reason: str, kind: SnapshotKind) -> BackupRecord:
        if not self.database_path.exists():
            raise SnapshotFailed(
                f"Source database not found: {self.database_path}",
                reason=reason,
                source_path=str(self.database_path),
            )

        try:
            self.backup_dir.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise SnapshotFailed(
                f"Cannot create backup directory {self.backup_dir}: {e}",
                reason=reason,
                source_path=str(self.database_path),
            ) from e

        created_at = self._clock()
        final_path = self.backup_dir / self.snapshot_name(kind, created_at)
        while final_path.exists():
            created_at += timedelta(microseconds=1)
            final_path = self.backup_dir / self.snapshot_name(kind, created_at)
        tmp_path = final_path.with_name(final_path.name + ".tmp")

        start_time = time.time()
        try:
            source_counts = self._backup_database(self.database_path, tmp_path)
            copy_report = self.verifier.verify(tmp_path)

            if copy_report.quick_check != "ok":
                raise SnapshotFailed(
                    f"Snapshot verification failed: {copy_report.issues}",
                    reason=reason,
                    source_path=str(self.database_path),
                )
            if copy_report.table_counts != source_counts:
                raise SnapshotFailed(
                    "Snapshot data mismatch - "
                    f"source: {source_counts}, copy: {copy_report.table_counts}",
                    reason=reason,
                    source_path=str(self.database_path),
                )

            os.replace(tmp_path, final_path)
        except (sqlite3.Error, OSError) as e:
            raise SnapshotFailed(
                f"Snapshot of {self.database_path} failed: {e}",
                reason=reason,
                source_path=str(self.database_path),
            ) from e
        finally:
            if tmp_path.exists():
                tmp_path.unlink()

        record = self._record_for(final_path, kind, created_at)
        self._write_manifest(record, reason, copy_report.table_counts)

        logger.info(
            "Created snapshot",
            extra={
                "snapshot": record.name,
                "kind": kind.value,
                "reason": reason,
                "size_bytes": record.size_bytes,
                "table_counts": copy_report.table_counts,
                "duration_ms": int((time.time() - start_time) * 1000),
            },
        )
        return record

    def _backup_database(self, source_path: Path, dest_path: Path) -> dict[str, int | None]:
        """Create consistent database backup using SQLite backup API.

        The source rows are counted and copied inside one read transaction,
        so the returned counts describe exactly the data in the copy even
        while the application keeps committing.

        Returns:
            Row count per domain table of the copied data, None when missing
        """
        source_conn = sqlite3.connect(
            f"{source_path.resolve().as_uri()}?mode=ro", uri=True, isolation_level=None
        )
        dest_conn = sqlite3.connect(str(dest_path))

        try:
            source_conn.execute("BEGIN")
            present = list_domain_tables(source_conn)
            counts = {
                table: count_rows(source_conn, table) if table in present else None
                for table in DOMAIN_TABLES
            }
            source_conn.backup(dest_conn)
            source_conn.execute("COMMIT")
            # Leave a single self-contained file with no WAL companion.
            dest_conn.execute("PRAGMA journal_mode = DELETE")
        finally:
            source_conn.close()
            dest_conn.close()

        return counts

    def _compute_checksum(self, file_path: Path) -> str:
        """Compute SHA-256 checksum of file."""
        sha256 = hashlib.sha256()
        with open(file_path, "rb") as f:
            for chunk in iter(lambda: f.read(8192), b""):
                sha256.update(chunk)
        return f"sha256:{sha256.hexdigest()}"

    def _write_manifest(
        self,
        record: BackupRecord,
        reason: str,
        table_counts: dict[str, int | None],
    ) -> None:
        manifest = {
            "name": record.name,
            "kind": record.kind.value,
            "reason": reason,
            "created_at": record.created_at.isoformat(),
            "size_bytes": record.size_bytes,
            "checksum": self._compute_checksum(Path(record.path)),
            "table_counts": table_counts,
            "companions": list(record.companions),
            "source_path": str(self.database_path),
        }
        manifest_path = Path(record.path + MANIFEST_SUFFIX)
        try:
            manifest_path.write_text(json.dumps(manifest, indent=2), encoding="utf-8")
        except OSError as e:
            logger.warning(f"Failed to write manifest for {record.name}: {e}")

    def read_manifest(self, record: BackupRecord) -> dict[str, Any] | None:
        """Load a snapshot's manifest, None when absent or unreadable."""
        manifest_path = Path(record.path + MANIFEST_SUFFIX)
        try:
            return json.loads(manifest_path.read_text(encoding="utf-8"))
        except FileNotFoundError:
            return None
        except (OSError, ValueError) as e:
            logger.warning(f"Unreadable manifest for {record.name}: {e}")
            return None

    # --- listing ---

    def _record_for(
        self,
        path: Path,
        kind: SnapshotKind,
        created_at: datetime,
    ) -> BackupRecord:
        stat = path.stat()
        return BackupRecord(
            name=path.name,
            path=str(path.resolve()),
            kind=kind,
            created_at=created_at,
            modified_at=stat.st_mtime,
            size_bytes=stat.st_size,
            companions=tuple(present_companions(path)),
        )

    def list_snapshots(self, kind: SnapshotKind = SnapshotKind.REGULAR) -> list[BackupRecord]:
        """List snapshots of one kind, newest first.

        Ordering uses the timestamp embedded in the name; the filesystem
        mtime only breaks ties.
        """
        if not self.backup_dir.is_dir():
            return []

        records = []
        for entry in self.backup_dir.iterdir():
            parsed = self.parse_name(entry.name)
            if parsed is None or parsed[0] != kind or not entry.is_file():
                continue
            try:
                records.append(self._record_for(entry, parsed[0], parsed[1]))
            except OSError as e:
                logger.warning(f"Skipping unreadable snapshot {entry.name}: {e}")

        return sorted(records, key=lambda r: (r.created_at, r.modified_at), reverse=True)

    def latest(self, kind: SnapshotKind = SnapshotKind.REGULAR) -> BackupRecord | None:
        snapshots = self.list_snapshots(kind)
        return snapshots[0] if snapshots else None

    def find_restore_candidate(self, min_size_bytes: int) -> BackupRecord | None:
        """Newest regular snapshot of at least the minimum plausible size."""
        for record in self.list_snapshots(SnapshotKind.REGULAR):
            if record.size_bytes >= min_size_bytes:
                return record
            logger.warning(
                "Skipping implausibly small snapshot",
                extra={
                    "snapshot": record.name,
                    "size_bytes": record.size_bytes,
                    "min_size_bytes": min_size_bytes,
                },
            )
        return None

    # --- retention ---

    def prune(self, retain: int, kind: SnapshotKind = SnapshotKind.REGULAR) -> list[str]:
        """Delete the oldest snapshots beyond the retention count.

        Failures are logged and skipped, never raised.

        Args:
            retain: Number of newest snapshots to keep
            kind: Which kind of snapshot to prune

        Returns:
            Names of snapshots deleted
        """
        with self._lock:
            snapshots = self.list_snapshots(kind)
            deleted = []
            for record in snapshots[max(retain, 0):]:
                try:
                    self._delete_snapshot_files(Path(record.path))
                    deleted.append(record.name)
                    logger.info(f"Deleted old snapshot: {record.name}")
                except OSError as e:
                    logger.warning(f"Failed to delete snapshot {record.name}: {e}")

            if deleted:
                logger.info(
                    f"Cleaned up {len(deleted)} old snapshot(s)",
                    extra={"kind": kind.value, "retain": retain},
                )
            return deleted

    def _delete_snapshot_files(self, path: Path) -> None:
        for suffix in COMPANION_SUFFIXES + (MANIFEST_SUFFIX,):
            Path(f"{path}{suffix}").unlink(missing_ok=True)
        path.unlink()

    # --- restoration ---

    def restore_into(self, record: BackupRecord, target_path: str | Path | None = None) -> None:
        """Replace a database file and its companions with a snapshot's file set.

        The caller must have closed every handle on the target. Target
        companions that are not part of the snapshot set are removed, so
        a stale write-ahead log is never replayed over the restored file.

        Args:
            record: Snapshot to restore
            target_path: File to replace (defaults to the live database)

        Raises:
            OSError: If a copy or rename fails
        """
        target = Path(target_path) if target_path is not None else self.database_path
        source = Path(record.path)
        staged: list[tuple[Path, Path]] = []

        with self._lock:
            target.parent.mkdir(parents=True, exist_ok=True)
            try:
                for suffix in ("",) + tuple(record.companions):
                    stage = Path(f"{target}.restore-tmp{suffix}")
                    shutil.copyfile(f"{source}{suffix}", stage)
                    staged.append((stage, Path(f"{target}{suffix}")))

                for suffix in COMPANION_SUFFIXES:
                    if suffix not in record.companions:
                        Path(f"{target}{suffix}").unlink(missing_ok=True)

                # Companions first, main file last.
                for stage, final in reversed(staged):
                    os.replace(stage, final)
            finally:
                for stage, _ in staged:
                    stage.unlink(missing_ok=True)

        logger.info(
            "Restored snapshot files",
            extra={
                "snapshot": record.name,
                "target": str(target),
                "companions": list(record.companions),
            },
        )
