"""
Shared fixtures for storeguard tests.

Provides temporary directories and a seeding helper that writes a
database with a known number of accounts, scans and scores.
"""

import sqlite3
import tempfile
from pathlib import Path

import pytest

from persistence.storeguard.store.database import FitnessDatabase

PLATFORM_VARIABLES = (
    "APP_ENV",
    "DATABASE_URL",
    "BACKUP_PATH",
    "RENDER",
    "RAILWAY_ENVIRONMENT",
    "RAILWAY_VOLUME_MOUNT_PATH",
    "FLY_APP_NAME",
    "VERCEL",
    "HEROKU_APP_NAME",
    "DYNO",
)


def seed_database(path, accounts=3, scans=5, scores=None):
    """Create the schema at path and insert rows.

    Scans are spread over the accounts; scores default to one per account.
    """
    scores = accounts if scores is None else scores
    db = FitnessDatabase(str(path))
    db.open()
    db.create_schema()
    conn = db.connection
    for i in range(accounts):
        conn.execute(
            "INSERT INTO users (id, username, email, password, name, gender) "
            "VALUES (?, ?, ?, ?, ?, ?)",
            (f"user-{i}", f"user{i}", f"user{i}@example.com", "hashed", f"User {i}", "female"),
        )
    for i in range(scans):
        conn.execute(
            "INSERT INTO dexa_scans "
            "(id, user_id, scan_date, body_fat_percent, lean_mass, total_weight, is_baseline) "
            "VALUES (?, ?, ?, ?, ?, ?, ?)",
            (f"scan-{i}", f"user-{i % accounts}", 1700000000000 + i, 20.0 + i, 60.0, 80.0, 1),
        )
    for i in range(scores):
        conn.execute(
            "INSERT INTO scoring_data (id, user_id, total_score) VALUES (?, ?, ?)",
            (f"score-{i}", f"user-{i}", 50.0 + i),
        )
    db.close()
    return Path(path)


def wipe_rows(conn):
    """Delete every domain row, leaving the tables in place."""
    conn.execute("DELETE FROM scoring_data")
    conn.execute("DELETE FROM dexa_scans")
    conn.execute("DELETE FROM users")


def read_counts(path):
    """Count domain rows with a plain connection."""
    conn = sqlite3.connect(str(path))
    try:
        return tuple(
            conn.execute(f"SELECT COUNT(*) FROM {table}").fetchone()[0]
            for table in ("users", "dexa_scans", "scoring_data")
        )
    finally:
        conn.close()


@pytest.fixture
def tmp_dir():
    """Create temporary directory."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


@pytest.fixture
def clean_env(monkeypatch):
    """Remove platform and guard variables from os.environ."""
    for name in PLATFORM_VARIABLES:
        monkeypatch.delenv(name, raising=False)
    return monkeypatch


@pytest.fixture
def seed():
    """Seeding helper."""
    return seed_database


@pytest.fixture
def wipe():
    """Row-wiping helper."""
    return wipe_rows


@pytest.fixture
def counts_of():
    """Plain-connection row counter."""
    return read_counts
