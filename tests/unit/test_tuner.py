"""
Unit tests for the configuration tuner.
"""

from persistence.storeguard.config import RunMode
from persistence.storeguard.environment import JournalMode, SyncMode, detect, tune


class TestTune:
    """Tests for tune()."""

    def test_ephemeral_relaxes_durability(self):
        """Ephemeral disks trade durability for speed."""
        config = tune(detect({"VERCEL": "1"}), RunMode.PRODUCTION)

        assert config.synchronous == SyncMode.OFF
        assert config.busy_timeout_ms == 5000
        assert config.wal_autocheckpoint == 100
        assert config.relaxed_durability is True

    def test_persistent_production_is_full_sync(self):
        """Persistent disks in production get full durability."""
        env = detect({"RENDER": "true", "APP_ENV": "production"})
        config = tune(env, RunMode.PRODUCTION)

        assert config.journal_mode == JournalMode.WAL
        assert config.synchronous == SyncMode.FULL
        assert config.busy_timeout_ms == 30000
        assert config.wal_autocheckpoint == 1000

    def test_unknown_production_is_full_sync(self):
        config = tune(detect({"APP_ENV": "production"}), RunMode.PRODUCTION)

        assert config.synchronous == SyncMode.FULL

    def test_local_development(self):
        """Local development uses NORMAL sync and a smaller cache."""
        config = tune(detect({}), RunMode.DEVELOPMENT)

        assert config.synchronous == SyncMode.NORMAL
        assert config.busy_timeout_ms == 10000
        assert config.cache_size == 5000

    def test_development_on_managed_platform_keeps_platform_policy(self):
        config = tune(detect({"RENDER": "true"}), RunMode.DEVELOPMENT)

        assert config.synchronous == SyncMode.FULL
        assert config.cache_size == 10000

    def test_test_mode_has_no_wal(self):
        """Test mode never writes a write-ahead log."""
        config = tune(detect({"APP_ENV": "test"}), RunMode.TEST)

        assert config.journal_mode == JournalMode.MEMORY
        assert config.synchronous == SyncMode.OFF

    def test_pragmas_skip_checkpoint_without_wal(self):
        """wal_autocheckpoint is only emitted in WAL mode."""
        wal = dict(tune(detect({}), RunMode.DEVELOPMENT).pragmas())
        memory = dict(tune(detect({}), RunMode.TEST).pragmas())

        assert wal["journal_mode"] == "WAL"
        assert "wal_autocheckpoint" in wal
        assert "wal_autocheckpoint" not in memory
