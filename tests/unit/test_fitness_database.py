"""
Unit tests for the live database handle.
"""

import sqlite3

import pytest

from persistence.storeguard.config import RunMode
from persistence.storeguard.environment import detect, tune
from persistence.storeguard.store import DatabaseClosedError, DomainCounts, FitnessDatabase


class TestFitnessDatabase:
    """Tests for FitnessDatabase."""

    @pytest.fixture
    def db(self, tmp_dir):
        database = FitnessDatabase(str(tmp_dir / "nested" / "app.db"))
        yield database
        database.close()

    def test_open_creates_directory(self, db):
        db.open()

        assert db.is_open
        assert db.path.parent.is_dir()

    def test_closed_handle_raises(self, db):
        with pytest.raises(DatabaseClosedError):
            db.counts()

    def test_schema_creation_is_idempotent(self, db):
        """Creating twice leaves exactly one copy of each table."""
        db.open()
        db.create_schema()
        db.create_schema()

        rows = db.connection.execute(
            "SELECT name, COUNT(*) FROM sqlite_master WHERE type = 'table' GROUP BY name"
        ).fetchall()
        tables = {row[0]: row[1] for row in rows}
        assert tables["users"] == 1
        assert tables["dexa_scans"] == 1
        assert tables["scoring_data"] == 1

    def test_schema_creation_keeps_rows(self, tmp_dir, seed):
        path = seed(tmp_dir / "app.db", accounts=3, scans=5)
        db = FitnessDatabase(str(path))
        db.open()
        db.create_schema()

        assert db.counts() == DomainCounts(accounts=3, scans=5, scores=3)
        db.close()

    def test_counts_without_tables(self, db):
        db.open()

        assert db.counts() == DomainCounts(0, 0, 0)
        assert db.existing_tables() == set()

    def test_apply_configuration_enables_wal(self, db):
        db.open()
        config = tune(detect({}), RunMode.DEVELOPMENT)

        journal_mode = db.apply_configuration(config)

        assert journal_mode == "wal"
        assert db.configuration == config
        assert db.connection.execute("PRAGMA synchronous").fetchone()[0] == 1  # NORMAL

    def test_reopen_reapplies_configuration(self, db):
        db.open()
        db.create_schema()
        db.apply_configuration(tune(detect({}), RunMode.DEVELOPMENT))

        db.reopen()

        assert db.connection.execute("PRAGMA busy_timeout").fetchone()[0] == 10000
        assert db.connection.execute("PRAGMA foreign_keys").fetchone()[0] == 1

    def test_foreign_keys_enforced(self, db):
        db.open()
        db.create_schema()

        with pytest.raises(sqlite3.IntegrityError):
            db.connection.execute(
                "INSERT INTO dexa_scans (id, user_id, scan_date, body_fat_percent, "
                "lean_mass, total_weight) VALUES ('s', 'nobody', 0, 1, 1, 1)"
            )
