"""
Read-only integrity verification of a SQLite database file.

The verifier answers "is this file usable?" for the live database, for
backup candidates and for freshly written snapshots. It never answers
"is this data complete?": an empty but well-formed database is valid.
Callers that know the history (the initialization guard, the failsafe)
decide whether emptiness is abnormal.

Checks performed independently (one failing never skips the others):
    - file presence, read and write permission, size, age
    - companion log files (expected ones present, no orphan WAL)
    - engine open in read-only mode
    - existence and row count of each domain table
    - PRAGMA quick_check
    - journal mode in effect

Invariants:
    - Never writes to the database: connections use mode=ro
    - Never raises for database problems; they become report issues
"""

from __future__ import annotations

import logging
import os
import sqlite3
import time
from collections.abc import Callable, Iterable
from dataclasses import dataclass, field
from pathlib import Path

from ..store.database import (
    ACCOUNTS_TABLE,
    DOMAIN_TABLES,
    SCANS_TABLE,
    SCORES_TABLE,
    DomainCounts,
    count_rows,
    list_domain_tables,
)

logger = logging.getLogger(__name__)

COMPANION_SUFFIXES: tuple[str, ...] = ("-wal", "-shm", "-journal")


def companion_paths(path: str | Path) -> dict[str, Path]:
    """Map each companion suffix to its path next to a database file."""
    return {suffix: Path(f"{path}{suffix}") for suffix in COMPANION_SUFFIXES}


def present_companions(path: str | Path) -> list[str]:
    """Companion suffixes that currently exist next to a database file."""
    return [suffix for suffix, p in companion_paths(path).items() if p.exists()]


@dataclass
class IntegrityReport:
    """Point-in-time health of one database file.

    Attributes:
        path: Database path checked
        exists: File exists
        readable: Process may read the file
        writable: Process may write the file
        size_bytes: Size of the main file
        age_seconds: Seconds since last modification
        table_counts: Row count per domain table, None when the table is missing
        wal_mode_enabled: Journal mode in effect is WAL
        quick_check: Result of PRAGMA quick_check ("ok" when healthy)
        companions: Companion suffixes present on disk
        issues: Problems found, empty when valid
        checked_at: Unix time of the check
    """

    path: str
    exists: bool = False
    readable: bool = False
    writable: bool = False
    size_bytes: int = 0
    age_seconds: float | None = None
    table_counts: dict[str, int | None] = field(default_factory=dict)
    wal_mode_enabled: bool = False
    quick_check: str | None = None
    companions: list[str] = field(default_factory=list)
    issues: list[str] = field(default_factory=list)
    checked_at: float = field(default_factory=time.time)

    @property
    def is_valid(self) -> bool:
        """No issues found. Says nothing about whether the data is non-empty."""
        return not self.issues and self.exists and self.readable

    @property
    def counts(self) -> DomainCounts:
        return DomainCounts(
            accounts=self.table_counts.get(ACCOUNTS_TABLE) or 0,
            scans=self.table_counts.get(SCANS_TABLE) or 0,
            scores=self.table_counts.get(SCORES_TABLE) or 0,
        )

    @property
    def missing_tables(self) -> list[str]:
        return [t for t in DOMAIN_TABLES if self.table_counts.get(t) is None]

    def to_dict(self) -> dict[str, object]:
        return {
            "path": self.path,
            "exists": self.exists,
            "readable": self.readable,
            "writable": self.writable,
            "size_bytes": self.size_bytes,
            "age_seconds": self.age_seconds,
            "table_counts": dict(self.table_counts),
            "wal_mode_enabled": self.wal_mode_enabled,
            "quick_check": self.quick_check,
            "companions": list(self.companions),
            "issues": list(self.issues),
            "is_valid": self.is_valid,
        }


class IntegrityVerifier:
    """Produces IntegrityReports.

    Example:
        >>> report = IntegrityVerifier().verify("/data/fitness_challenge.db")
        >>> report.is_valid, report.counts
        (True, DomainCounts(accounts=3, scans=5, scores=3))
    """

    def __init__(self, clock: Callable[[], float] = time.time) -> None:
        self._clock = clock

    def verify(
        self,
        path: str | Path,
        expected_companions: Iterable[str] = (),
        require_writable: bool = True,
    ) -> IntegrityReport:
        """Check a database file.

        Args:
            path: Database file to check
            expected_companions: Companion suffixes that must exist with it
                (taken from a snapshot's recorded file set)
            require_writable: Record a read-only file as an issue (off for
                snapshots)

        Returns:
            IntegrityReport; problems are recorded as issues, never raised
        """
        db_path = Path(path)
        report = IntegrityReport(path=str(db_path), checked_at=self._clock())
        report.companions = present_companions(db_path)

        for suffix in expected_companions:
            if suffix not in report.companions:
                report.issues.append(f"Companion log file missing: {db_path.name}{suffix}")

        if not db_path.exists():
            report.issues.append("Database file does not exist")
            if "-wal" in report.companions:
                report.issues.append("Write-ahead log present without database file")
            return report

        report.exists = True
        try:
            stat = db_path.stat()
            report.size_bytes = stat.st_size
            report.age_seconds = round(max(0.0, report.checked_at - stat.st_mtime), 1)
        except OSError as e:
            report.issues.append(f"Cannot stat database file: {e}")

        report.readable = os.access(db_path, os.R_OK)
        if not report.readable:
            report.issues.append("Database file is not readable")
        report.writable = os.access(db_path, os.W_OK)
        if require_writable and not report.writable:
            report.issues.append("Database file is not writable")

        if report.readable:
            self._inspect_engine(db_path, report)

        if report.issues:
            logger.debug(
                "Integrity issues found",
                extra={"path": str(db_path), "issues": report.issues},
            )
        return report

    def _inspect_engine(self, db_path: Path, report: IntegrityReport) -> None:
        """Open read-only and run table, quick_check and journal checks."""
        try:
            conn = sqlite3.connect(f"{db_path.resolve().as_uri()}?mode=ro", uri=True)
        except sqlite3.Error as e:
            report.issues.append(f"Database connection failed: {e}")
            return

        try:
            try:
                present = list_domain_tables(conn)
            except sqlite3.Error as e:
                report.issues.append(f"Database connection failed: {e}")
                return

            for table in DOMAIN_TABLES:
                if table not in present:
                    report.table_counts[table] = None
                    report.issues.append(f"Table {table} does not exist")
                    continue
                try:
                    report.table_counts[table] = count_rows(conn, table)
                except sqlite3.Error as e:
                    report.table_counts[table] = None
                    report.issues.append(f"Cannot count rows in {table}: {e}")

            try:
                rows = conn.execute("PRAGMA quick_check").fetchall()
                report.quick_check = "; ".join(str(r[0]) for r in rows) or None
                if report.quick_check != "ok":
                    report.issues.append(f"Quick check failed: {report.quick_check}")
            except sqlite3.Error as e:
                report.issues.append(f"Quick check failed: {e}")

            try:
                row = conn.execute("PRAGMA journal_mode").fetchone()
                report.wal_mode_enabled = bool(row) and str(row[0]).lower() == "wal"
            except sqlite3.Error as e:
                report.issues.append(f"Cannot read journal mode: {e}")
        finally:
            conn.close()


def verify(
    path: str | Path,
    expected_companions: Iterable[str] = (),
    require_writable: bool = True,
) -> IntegrityReport:
    """Verify a database file with a default IntegrityVerifier."""
    return IntegrityVerifier().verify(path, expected_companions, require_writable)
