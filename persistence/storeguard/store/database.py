"""
Live SQLite handle for the fitness-competition database.

This module owns the single long-lived connection the application uses,
and the three domain tables the guard protects:
- users: competitor accounts
- dexa_scans: body-composition measurement scans
- scoring_data: computed competition scores

Invariants:
    - Schema creation is idempotent (CREATE ... IF NOT EXISTS only);
      nothing in this module drops or recreates a table
    - Only one connection is open at a time; restoration closes it,
      replaces the files and reopens
    - The last applied DatabaseConfiguration is re-applied on reopen

How to change safely:
    - New columns must be added with ALTER TABLE migrations, never by
      editing the CREATE statements of an existing table
    - Keep DOMAIN_TABLES in sync with what the integrity verifier counts

Table schema:
    users:
        - id TEXT PRIMARY KEY
        - username TEXT UNIQUE, email TEXT UNIQUE, password TEXT
        - profile fields, verification tokens
        - created_at / updated_at INTEGER (Unix ms)

    dexa_scans:
        - id TEXT PRIMARY KEY
        - user_id TEXT -> users.id
        - scan_date INTEGER, body_fat_percent REAL, lean_mass REAL,
          total_weight REAL, fat_mass REAL, rmr REAL
        - is_baseline / is_final INTEGER flags

    scoring_data:
        - id TEXT PRIMARY KEY
        - user_id TEXT UNIQUE -> users.id
        - fat_loss_score, muscle_gain_score, total_score REAL
"""

from __future__ import annotations

import logging
import os
import sqlite3
from dataclasses import dataclass
from pathlib import Path

from ..environment.tuner import DatabaseConfiguration, JournalMode

logger = logging.getLogger(__name__)

ACCOUNTS_TABLE = "users"
SCANS_TABLE = "dexa_scans"
SCORES_TABLE = "scoring_data"
DOMAIN_TABLES: tuple[str, ...] = (ACCOUNTS_TABLE, SCANS_TABLE, SCORES_TABLE)

SCHEMA_STATEMENTS: dict[str, str] = {
    ACCOUNTS_TABLE: """
        CREATE TABLE IF NOT EXISTS users (
            id TEXT PRIMARY KEY,
            username TEXT UNIQUE,
            email TEXT UNIQUE,
            password TEXT NOT NULL,
            name TEXT,
            first_name TEXT,
            last_name TEXT,
            gender TEXT CHECK(gender IN ('male', 'female')),
            height TEXT,
            starting_weight REAL,
            target_body_fat_percent REAL,
            target_lean_mass REAL,
            profile_image_url TEXT,
            is_active INTEGER DEFAULT 1,
            is_email_verified INTEGER DEFAULT 0,
            email_verification_token TEXT,
            email_verification_expires INTEGER,
            password_reset_token TEXT,
            password_reset_expires INTEGER,
            created_at INTEGER DEFAULT (strftime('%s', 'now') * 1000),
            updated_at INTEGER DEFAULT (strftime('%s', 'now') * 1000)
        );
    """,
    SCANS_TABLE: """
        CREATE TABLE IF NOT EXISTS dexa_scans (
            id TEXT PRIMARY KEY,
            user_id TEXT NOT NULL,
            scan_date INTEGER NOT NULL,
            body_fat_percent REAL NOT NULL,
            lean_mass REAL NOT NULL,
            total_weight REAL NOT NULL,
            fat_mass REAL,
            rmr REAL,
            scan_name TEXT,
            scan_image_path TEXT,
            is_baseline INTEGER DEFAULT 0,
            is_final INTEGER DEFAULT 0,
            notes TEXT,
            created_at INTEGER DEFAULT (strftime('%s', 'now') * 1000),
            updated_at INTEGER DEFAULT (strftime('%s', 'now') * 1000),
            FOREIGN KEY (user_id) REFERENCES users(id) ON DELETE CASCADE
        );

        CREATE INDEX IF NOT EXISTS idx_dexa_scans_user ON dexa_scans(user_id, scan_date);
    """,
    SCORES_TABLE: """
        CREATE TABLE IF NOT EXISTS scoring_data (
            id TEXT PRIMARY KEY,
            user_id TEXT NOT NULL UNIQUE,
            fat_loss_score REAL DEFAULT 0,
            muscle_gain_score REAL DEFAULT 0,
            total_score REAL DEFAULT 0,
            fat_loss_raw REAL DEFAULT 0,
            muscle_gain_raw REAL DEFAULT 0,
            last_calculated INTEGER DEFAULT (strftime('%s', 'now') * 1000),
            created_at INTEGER DEFAULT (strftime('%s', 'now') * 1000),
            updated_at INTEGER DEFAULT (strftime('%s', 'now') * 1000),
            FOREIGN KEY (user_id) REFERENCES users(id) ON DELETE CASCADE
        );
    """,
}


class DatabaseClosedError(Exception):
    """The live handle is not open."""

    pass


@dataclass(frozen=True)
class DomainCounts:
    """Row counts of the three domain tables.

    A table that does not exist counts as zero rows.
    """

    accounts: int = 0
    scans: int = 0
    scores: int = 0

    @property
    def is_empty(self) -> bool:
        """True when both accounts and scans are zero (the data-loss signature)."""
        return self.accounts == 0 and self.scans == 0

    @property
    def has_data(self) -> bool:
        """Accounts or scans present; scores alone never count as data."""
        return not self.is_empty

    def to_dict(self) -> dict[str, int]:
        return {"accounts": self.accounts, "scans": self.scans, "scores": self.scores}


def list_domain_tables(conn: sqlite3.Connection) -> set[str]:
    """Return which domain tables exist on a connection."""
    placeholders = ", ".join("?" for _ in DOMAIN_TABLES)
    cursor = conn.execute(
        f"SELECT name FROM sqlite_master WHERE type = 'table' AND name IN ({placeholders})",
        DOMAIN_TABLES,
    )
    return {row[0] for row in cursor.fetchall()}


def count_rows(conn: sqlite3.Connection, table: str) -> int:
    """Count rows of one domain table."""
    if table not in DOMAIN_TABLES:
        raise ValueError(f"Not a domain table: {table}")
    return int(conn.execute(f'SELECT COUNT(*) FROM "{table}"').fetchone()[0])


class FitnessDatabase:
    """The application's live SQLite handle.

    Example:
        >>> db = FitnessDatabase("/opt/render/persistent/data/fitness_challenge.db")
        >>> db.open()
        >>> db.create_schema()
        >>> db.apply_configuration(tune(env, run_mode))
        >>> db.counts()
        DomainCounts(accounts=0, scans=0, scores=0)
    """

    def __init__(self, path: str, busy_timeout_ms: int = 30000) -> None:
        """Initialize the handle without opening it.

        Args:
            path: Absolute database path
            busy_timeout_ms: Lock timeout used until a configuration is applied
        """
        self.path = Path(path)
        self.busy_timeout_ms = busy_timeout_ms
        self._conn: sqlite3.Connection | None = None
        self._configuration: DatabaseConfiguration | None = None

    @property
    def is_open(self) -> bool:
        return self._conn is not None

    @property
    def connection(self) -> sqlite3.Connection:
        if self._conn is None:
            raise DatabaseClosedError(f"Database handle is closed: {self.path}")
        return self._conn

    @property
    def configuration(self) -> DatabaseConfiguration | None:
        return self._configuration

    def open(self) -> sqlite3.Connection:
        """Open the live connection, creating the file and directory if needed."""
        if self._conn is not None:
            return self._conn

        self.path.parent.mkdir(parents=True, exist_ok=True)
        timeout_ms = (
            self._configuration.busy_timeout_ms if self._configuration else self.busy_timeout_ms
        )
        conn = sqlite3.connect(
            str(self.path),
            timeout=timeout_ms / 1000.0,
            isolation_level=None,  # Autocommit by default, explicit transactions
            check_same_thread=False,
        )
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA foreign_keys = ON")
        self._conn = conn
        logger.debug(f"Opened database handle: {self.path}")
        return conn

    def close(self) -> None:
        """Close the live connection. Safe to call when already closed."""
        if self._conn is None:
            return
        try:
            self._conn.close()
        finally:
            self._conn = None
            logger.debug(f"Closed database handle: {self.path}")

    def reopen(self) -> sqlite3.Connection:
        """Close, open again and re-apply the last configuration."""
        self.close()
        conn = self.open()
        if self._configuration is not None:
            self.apply_configuration(self._configuration)
        return conn

    def apply_configuration(self, config: DatabaseConfiguration) -> str:
        """Apply tuning pragmas to the live connection.

        Args:
            config: Settings produced by the tuner

        Returns:
            Journal mode reported by the engine after applying
        """
        conn = self.connection
        journal_mode = ""
        for name, value in config.pragmas():
            row = conn.execute(f"PRAGMA {name} = {value}").fetchone()
            if name == "journal_mode" and row is not None:
                journal_mode = str(row[0]).lower()

        self._configuration = config
        if config.journal_mode == JournalMode.WAL and journal_mode != "wal":
            logger.warning(
                "WAL mode may not be active",
                extra={"path": str(self.path), "journal_mode": journal_mode},
            )
        else:
            logger.info(
                "Applied database configuration",
                extra={"path": str(self.path), **config.to_dict()},
            )
        return journal_mode

    def create_schema(self) -> None:
        """Create the domain tables if absent."""
        conn = self.connection
        for table, statement in SCHEMA_STATEMENTS.items():
            conn.executescript(statement)
            logger.info(f"Ensured table exists: {table}")

    def existing_tables(self) -> set[str]:
        """Domain tables present in the live database."""
        return list_domain_tables(self.connection)

    def counts(self) -> DomainCounts:
        """Row counts of the domain tables through the live handle."""
        conn = self.connection
        present = list_domain_tables(conn)
        values = {
            table: count_rows(conn, table) if table in present else 0 for table in DOMAIN_TABLES
        }
        return DomainCounts(
            accounts=values[ACCOUNTS_TABLE],
            scans=values[SCANS_TABLE],
            scores=values[SCORES_TABLE],
        )

    def checkpoint(self) -> None:
        """Merge the write-ahead log into the main file."""
        if self._conn is not None and os.path.exists(f"{self.path}-wal"):
            self._conn.execute("PRAGMA wal_checkpoint(TRUNCATE)")
