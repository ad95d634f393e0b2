"""
Integration tests for the automatic restoration failsafe.

Tests cover:
- Each early exit reason
- The backup integrity gate (no file replaced)
- Successful restoration with emergency snapshot and audit trail
"""

import json
import os
import sqlite3
import stat

import pytest

from persistence.storeguard.boot import InitializationState, RestorationFailsafe, RestoreReason
from persistence.storeguard.integrity import verifier as verifier_module
from persistence.storeguard.snapshot import SnapshotKind, SnapshotManager
from persistence.storeguard.store import DomainCounts, FitnessDatabase

HAD_DATA = InitializationState(
    had_existing_data=True, user_count_before=3, scan_count_before=5, score_count_before=3
)


class TestRestorationFailsafe:
    """Tests for RestorationFailsafe.attempt_restore()."""

    @pytest.fixture
    def live_path(self, tmp_dir, seed):
        return seed(tmp_dir / "app.db", accounts=3, scans=5)

    @pytest.fixture
    def snapshots(self, tmp_dir, live_path):
        return SnapshotManager(live_path, tmp_dir / "backups")

    @pytest.fixture
    def database(self, live_path):
        db = FitnessDatabase(str(live_path))
        db.open()
        yield db
        db.close()

    @pytest.fixture
    def failsafe(self, database, snapshots):
        return RestorationFailsafe(database, snapshots)

    def test_no_previous_data(self, failsafe):
        outcome = failsafe.attempt_restore(InitializationState(had_existing_data=False))

        assert outcome.restored is False
        assert outcome.reason == RestoreReason.NO_PREVIOUS_DATA

    def test_data_still_present(self, failsafe):
        outcome = failsafe.attempt_restore(HAD_DATA)

        assert outcome.restored is False
        assert outcome.reason == RestoreReason.DATA_STILL_PRESENT
        assert outcome.counts_before == DomainCounts(3, 5, 3)

    def test_no_backup_found(self, failsafe, database, wipe):
        wipe(database.connection)

        outcome = failsafe.attempt_restore(HAD_DATA)

        assert outcome.reason == RestoreReason.NO_BACKUP_FOUND
        assert outcome.backup_used is None

    def test_empty_backup_is_rejected(self, failsafe, database, snapshots, wipe, live_path):
        """A 0/0 candidate fails the integrity gate and nothing is replaced."""
        wipe(database.connection)
        empty = snapshots.create_snapshot("empty")
        before = live_path.read_bytes()

        outcome = failsafe.attempt_restore(HAD_DATA)

        assert outcome.restored is False
        assert outcome.reason == RestoreReason.BACKUP_INTEGRITY_FAILED
        assert outcome.backup_used.name == empty.name
        assert outcome.emergency_snapshot is None
        assert snapshots.list_snapshots(SnapshotKind.EMERGENCY) == []
        assert live_path.read_bytes() == before

    def test_corrupt_backup_is_rejected(self, failsafe, database, snapshots, wipe):
        good = snapshots.create_snapshot("good")
        with open(good.path, "r+b") as f:
            f.seek(0)
            f.write(b"garbage garbage garbage!")
        wipe(database.connection)

        outcome = failsafe.attempt_restore(HAD_DATA)

        assert outcome.reason == RestoreReason.BACKUP_INTEGRITY_FAILED
        assert database.counts().is_empty

    def test_only_newest_candidate_is_tried(self, failsafe, database, snapshots, wipe):
        """An older good snapshot is not used when the newest one fails."""
        snapshots.create_snapshot("good")
        wipe(database.connection)
        snapshots.create_snapshot("empty")

        outcome = failsafe.attempt_restore(HAD_DATA)

        assert outcome.reason == RestoreReason.BACKUP_INTEGRITY_FAILED
        assert database.counts().is_empty

    def test_successful_restore(self, failsafe, database, snapshots, wipe, live_path):
        record = snapshots.create_snapshot("before loss")
        wipe(database.connection)

        outcome = failsafe.attempt_restore(HAD_DATA)

        assert outcome.restored is True
        assert outcome.reason is None
        assert outcome.backup_used.name == record.name
        assert outcome.counts_before == DomainCounts(0, 0, 0)
        assert outcome.restored_counts == DomainCounts(3, 5, 3)
        assert outcome.emergency_snapshot is not None
        assert outcome.emergency_snapshot.kind == SnapshotKind.EMERGENCY
        assert database.is_open
        assert database.counts() == DomainCounts(3, 5, 3)

        conn = sqlite3.connect(str(live_path))
        try:
            names = [r[0] for r in conn.execute("SELECT username FROM users ORDER BY id")]
        finally:
            conn.close()
        assert names == ["user0", "user1", "user2"]

    def test_read_only_snapshot_is_restored(
        self, failsafe, database, snapshots, wipe, live_path, monkeypatch
    ):
        record = snapshots.create_snapshot("before loss")
        os.chmod(record.path, 0o444)
        real_access = os.access

        def access(target, mode):
            if mode == os.W_OK and str(target) == record.path:
                return False
            return real_access(target, mode)

        monkeypatch.setattr(verifier_module.os, "access", access)
        wipe(database.connection)

        outcome = failsafe.attempt_restore(HAD_DATA)

        assert outcome.restored is True
        assert outcome.backup_used.name == record.name
        assert database.counts() == DomainCounts(3, 5, 3)
        assert os.stat(live_path).st_mode & stat.S_IWUSR

    def test_audit_trail(self, failsafe, database, snapshots, wipe):
        snapshots.create_snapshot("before loss")
        wipe(database.connection)

        outcome = failsafe.attempt_restore(HAD_DATA)

        steps = [entry["step"] for entry in outcome.audit]
        assert steps == ["start", "candidate", "verified", "emergency_snapshot", "restored"]

        lines = failsafe.audit_log_path.read_text().splitlines()
        entries = [json.loads(line) for line in lines]
        assert [e.get("step") for e in entries[:-1]] == steps
        assert entries[-1]["outcome"]["restored"] is True
        assert failsafe.audit_log_path.name == "restore_audit.jsonl"

    def test_failed_attempt_is_audited(self, failsafe, database, wipe):
        wipe(database.connection)

        failsafe.attempt_restore(HAD_DATA)

        entries = [json.loads(line) for line in failsafe.audit_log_path.read_text().splitlines()]
        assert entries[-1]["outcome"]["reason"] == "no_backup_found"

    def test_replacement_failure_reopens_handle(
        self, failsafe, database, snapshots, wipe, monkeypatch
    ):
        snapshots.create_snapshot("before loss")
        wipe(database.connection)

        def broken(record, target_path=None):
            raise OSError("disk full")

        monkeypatch.setattr(snapshots, "restore_into", broken)

        outcome = failsafe.attempt_restore(HAD_DATA)

        assert outcome.reason == RestoreReason.RESTORATION_FAILED
        assert outcome.error == "disk full"
        assert database.is_open
