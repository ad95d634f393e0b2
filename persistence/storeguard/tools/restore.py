"""
Backup and restore CLI tool for the storage guard.

This tool works offline against the live database and its snapshots:
- list: Show regular (and optionally emergency) snapshots
- create: Take a snapshot of the live database now
- verify: Check a snapshot (or the live file) with the integrity verifier
- restore: Replace the live database with a snapshot

Usage:
    storeguard-restore list [--emergency] [--json]
    storeguard-restore create [--reason TEXT]
    storeguard-restore verify [NAME | --live]
    storeguard-restore restore [NAME] [--force] [--dry-run]

The database path and backup directory are resolved exactly as at boot
(APP_ENV, DATABASE_URL, BACKUP_PATH and platform variables) unless
--database / --backup-dir are given.

Invariants:
    - The application must not be running during restore
    - The live database is preserved as an emergency snapshot first
    - Restore refuses to run outside development without --force
    - The restored file is verified against the snapshot's row counts

How to change safely:
    - Add new commands, don't modify existing ones
    - Keep exit codes stable: 0 success, 1 failure, 2 usage error
"""

from __future__ import annotations

import argparse
import json
import logging
import sys
import time
from collections.abc import Mapping
from dataclasses import dataclass
from pathlib import Path

from ..config import GuardConfig, RunMode
from ..environment.detector import detect, resolve_database_path
from ..errors import SnapshotFailed
from ..integrity.verifier import IntegrityReport, IntegrityVerifier
from ..snapshot.manager import BackupRecord, SnapshotKind, SnapshotManager

logger = logging.getLogger(__name__)


@dataclass
class RestoreResult:
    """Result of a manual restore.

    Attributes:
        success: Whether restore succeeded
        snapshot_used: Snapshot that was restored
        emergency_snapshot: Copy of the live file taken before restoring
        counts: Row counts of the restored live file
        duration_ms: Total restore duration
        error: Error message if failed
    """

    success: bool
    snapshot_used: str | None = None
    emergency_snapshot: str | None = None
    counts: dict[str, int] | None = None
    duration_ms: int = 0
    error: str | None = None


class RestoreTool:
    """Operator tool for snapshots of one database.

    Example:
        >>> tool = RestoreTool(manager, run_mode=RunMode.PRODUCTION)
        >>> result = tool.restore(force=True)
        >>> print(f"Restored {result.snapshot_used}")
    """

    def __init__(
        self,
        snapshots: SnapshotManager,
        run_mode: RunMode = RunMode.DEVELOPMENT,
        min_plausible_size_bytes: int = 1024,
        verifier: IntegrityVerifier | None = None,
    ) -> None:
        self.snapshots = snapshots
        self.run_mode = run_mode
        self.min_plausible_size_bytes = min_plausible_size_bytes
        self.verifier = verifier or snapshots.verifier

    def list_backups(self, include_emergency: bool = False) -> list[BackupRecord]:
        records = self.snapshots.list_snapshots(SnapshotKind.REGULAR)
        if include_emergency:
            records += self.snapshots.list_snapshots(SnapshotKind.EMERGENCY)
        return records

    def find(self, name: str) -> BackupRecord:
        """Look up a snapshot of either kind by file name.

        Raises:
            ValueError: If no snapshot has that name
        """
        for record in self.list_backups(include_emergency=True):
            if record.name == name:
                return record
        raise ValueError(f"Snapshot not found: {name}")

    def create_backup(self, reason: str = "manual") -> BackupRecord:
        return self.snapshots.create_snapshot(reason)

    def verify_backup(self, name: str | None = None) -> IntegrityReport:
        """Verify a snapshot by name, or the live database when name is None."""
        if name is None:
            return self.verifier.verify(self.snapshots.database_path)
        record = self.find(name)
        return self.verifier.verify(
            record.path, expected_companions=record.companions, require_writable=False
        )

    def restore(
        self,
        name: str | None = None,
        force: bool = False,
        dry_run: bool = False,
    ) -> RestoreResult:
        """Replace the live database with a snapshot.

        Args:
            name: Snapshot file name (newest plausible one when None)
            force: Required outside development
            dry_run: Select and verify only; change nothing

        Returns:
            RestoreResult indicating success/failure
        """
        start_time = time.time()

        def failed(error: str, **kwargs: object) -> RestoreResult:
            logger.error(f"Restore failed: {error}")
            return RestoreResult(
                success=False,
                duration_ms=int((time.time() - start_time) * 1000),
                error=error,
                **kwargs,
            )

        if self.run_mode != RunMode.DEVELOPMENT and not force:
            return failed(f"Refusing to restore in {self.run_mode.value} mode without --force")

        try:
            record = (
                self.find(name)
                if name
                else self.snapshots.find_restore_candidate(self.min_plausible_size_bytes)
            )
        except ValueError as e:
            return failed(str(e))
        if record is None:
            return failed(f"No plausible snapshot found in {self.snapshots.backup_dir}")

        logger.info(
            f"Restoring from snapshot {record.name}",
            extra={"snapshot": record.name, "snapshot_age_hours": record.age_hours()},
        )

        report = self.verifier.verify(
            record.path, expected_companions=record.companions, require_writable=False
        )
        if report.issues:
            return failed(
                f"Snapshot {record.name} failed verification: {'; '.join(report.issues)}",
                snapshot_used=record.name,
            )
        expected = report.counts

        if dry_run:
            return RestoreResult(
                success=True,
                snapshot_used=record.name,
                counts=expected.to_dict(),
                duration_ms=int((time.time() - start_time) * 1000),
            )

        emergency = None
        if self.snapshots.database_path.exists():
            try:
                emergency = self.snapshots.create_snapshot(
                    f"before manual restore of {record.name}", kind=SnapshotKind.EMERGENCY
                )
            except SnapshotFailed as e:
                return failed(
                    f"Could not preserve the live database, not restoring: {e}",
                    snapshot_used=record.name,
                )

        emergency_name = emergency.name if emergency else None
        try:
            self.snapshots.restore_into(record)
        except OSError as e:
            return failed(
                f"Replacing live files failed: {e}",
                snapshot_used=record.name,
                emergency_snapshot=emergency_name,
            )

        restored = self.verifier.verify(self.snapshots.database_path)
        if restored.table_counts != report.table_counts:
            return failed(
                f"Restored counts {restored.table_counts} differ from snapshot "
                f"{report.table_counts}",
                snapshot_used=record.name,
                emergency_snapshot=emergency_name,
            )

        logger.info(
            "Restore completed",
            extra={"snapshot": record.name, "counts": restored.counts.to_dict()},
        )
        return RestoreResult(
            success=True,
            snapshot_used=record.name,
            emergency_snapshot=emergency_name,
            counts=restored.counts.to_dict(),
            duration_ms=int((time.time() - start_time) * 1000),
        )


def build_tool(
    args: argparse.Namespace,
    environ: Mapping[str, str] | None = None,
) -> RestoreTool:
    """Resolve paths like the boot does, applying command-line overrides."""
    config = GuardConfig.from_env(environ)
    env = detect(environ, config)

    database_path = resolve_database_path(args.database) if args.database else env.database_path
    if args.backup_dir:
        backup_dir = args.backup_dir
    elif config.backup.backup_dir:
        backup_dir = config.backup.backup_dir
    elif args.database:
        backup_dir = str(Path(database_path).parent / "backups")
    else:
        backup_dir = env.recommended_backup_path

    manager = SnapshotManager(database_path, backup_dir, prefix=config.backup.prefix)
    return RestoreTool(
        manager,
        run_mode=config.run_mode,
        min_plausible_size_bytes=config.backup.min_plausible_size_bytes,
    )


def _print_report(report: IntegrityReport) -> None:
    print(f"{report.path}: {'VALID' if report.is_valid else 'INVALID'}")
    print(f"  Size: {report.size_bytes} bytes")
    print(f"  Quick check: {report.quick_check or 'not run'}")
    for table, count in report.table_counts.items():
        print(f"  {table}: {'missing' if count is None else count}")
    for issue in report.issues:
        print(f"  - {issue}")


def main(argv: list[str] | None = None) -> None:
    """CLI entry point for backup and restore tool."""
    parser = argparse.ArgumentParser(description="storeguard backup and restore tool")
    parser.add_argument("--database", help="Database path (default: resolved like the boot)")
    parser.add_argument("--backup-dir", help="Backup directory (default: resolved like the boot)")
    parser.add_argument("-v", "--verbose", action="store_true", help="Verbose output")
    subparsers = parser.add_subparsers(dest="command", required=True)

    # list command
    list_parser = subparsers.add_parser("list", help="List snapshots, newest first")
    list_parser.add_argument("--emergency", action="store_true", help="Include emergency snapshots")
    list_parser.add_argument("--json", action="store_true", help="JSON output")

    # create command
    create_parser = subparsers.add_parser("create", help="Snapshot the live database")
    create_parser.add_argument("--reason", default="manual", help="Reason recorded in the manifest")

    # verify command
    verify_parser = subparsers.add_parser("verify", help="Verify a snapshot or the live database")
    verify_parser.add_argument("name", nargs="?", help="Snapshot file name")
    verify_parser.add_argument("--live", action="store_true", help="Verify the live database")

    # restore command
    restore_parser = subparsers.add_parser("restore", help="Restore the live database")
    restore_parser.add_argument("name", nargs="?", help="Snapshot file name (default: newest)")
    restore_parser.add_argument("--force", action="store_true", help="Required outside development")
    restore_parser.add_argument("--dry-run", action="store_true", help="Don't make changes")

    args = parser.parse_args(argv)

    # Configure logging
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s - %(levelname)s - %(message)s",
    )

    try:
        tool = build_tool(args)
    except ValueError as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        sys.exit(2)

    if args.command == "list":
        records = tool.list_backups(include_emergency=args.emergency)
        if args.json:
            print(json.dumps([r.to_dict() for r in records], indent=2))
        elif not records:
            print(f"No snapshots in {tool.snapshots.backup_dir}")
        else:
            print(f"Found {len(records)} snapshot(s) in {tool.snapshots.backup_dir}:")
            for record in records:
                print(
                    f"  {record.name}  {record.size_bytes} bytes  "
                    f"{record.age_hours()}h old  [{record.kind.value}]"
                )
        sys.exit(0)

    elif args.command == "create":
        try:
            record = tool.create_backup(args.reason)
        except SnapshotFailed as e:
            print(f"Snapshot failed: {e}")
            sys.exit(1)
        print(f"Created snapshot {record.name} ({record.size_bytes} bytes)")
        sys.exit(0)

    elif args.command == "verify":
        if not args.name and not args.live:
            print("Give a snapshot name or --live", file=sys.stderr)
            sys.exit(2)
        try:
            report = tool.verify_backup(None if args.live else args.name)
        except ValueError as e:
            print(str(e))
            sys.exit(1)
        _print_report(report)
        sys.exit(0 if report.is_valid else 1)

    elif args.command == "restore":
        result = tool.restore(args.name, force=args.force, dry_run=args.dry_run)
        if result.success:
            print("Dry run: snapshot verified" if args.dry_run else "Restore completed successfully")
            print(f"  Snapshot: {result.snapshot_used}")
            print(f"  Emergency snapshot: {result.emergency_snapshot or 'none'}")
            print(f"  Counts: {result.counts}")
            print(f"  Duration: {result.duration_ms}ms")
            sys.exit(0)
        else:
            print(f"Restore failed: {result.error}")
            sys.exit(1)


if __name__ == "__main__":
    main()
