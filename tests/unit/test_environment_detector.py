"""
Unit tests for deployment environment detection.

Tests cover:
- Local and unknown-production defaults
- Managed persistent platforms (mount containment, auto-selected path)
- Managed ephemeral platforms
- Robustness against bad input
"""

import os

import pytest

from persistence.storeguard.config import GuardConfig, RunMode, StorageConfig
from persistence.storeguard.environment import PlatformKind, detect, resolve_database_path


class TestLocalDetection:
    """Tests without any platform signal."""

    def test_empty_environment_is_local(self):
        """No signal and no run mode means local development."""
        env = detect({})

        assert env.platform == PlatformKind.LOCAL
        assert env.provider == "local"
        assert env.run_mode == RunMode.DEVELOPMENT
        assert env.is_persistent is True
        assert env.warnings == ()
        assert env.database_path == os.path.abspath("./data/fitness_challenge.db")

    def test_local_backups_live_beside_database(self, tmp_dir):
        """Backup directory defaults to a sibling of the database file."""
        db_path = tmp_dir / "app.db"
        env = detect({"DATABASE_URL": str(db_path)})

        assert env.database_path == str(db_path)
        assert env.recommended_backup_path == str(tmp_dir / "backups")

    def test_production_without_signal_is_unknown(self):
        """Production run mode without a platform signal is flagged."""
        env = detect({"APP_ENV": "production"})

        assert env.platform == PlatformKind.UNKNOWN_PRODUCTION
        assert env.provider == "generic"
        assert env.is_persistent is True
        assert any("platform unknown" in w for w in env.warnings)

    def test_invalid_run_mode_never_raises(self):
        """Detection falls back to development on a bad APP_ENV."""
        env = detect({"APP_ENV": "staging"})

        assert env.run_mode == RunMode.DEVELOPMENT
        assert env.platform == PlatformKind.LOCAL

    def test_detection_is_pure(self):
        """Same input, same result."""
        environ = {"RENDER": "true", "DATABASE_URL": "/tmp/x.db"}
        assert detect(environ) == detect(environ)


class TestPersistentPlatforms:
    """Tests for platforms with a persistent volume."""

    def test_path_outside_mount_warns(self):
        """A database outside the persistent mount is not persistent."""
        env = detect({"RENDER": "true", "DATABASE_URL": "/tmp/fitness.db"})

        assert env.platform == PlatformKind.MANAGED_PERSISTENT
        assert env.provider == "render"
        assert env.is_persistent is False
        assert env.path_in_persistent_mount is False
        assert len(env.warnings) == 1
        assert "/opt/render/persistent" in env.warnings[0]
        assert "DATABASE_URL=/opt/render/persistent/data/fitness_challenge.db" in env.warnings[0]

    def test_path_inside_mount_is_persistent(self):
        """A database inside the persistent mount produces no warnings."""
        env = detect(
            {
                "RENDER": "true",
                "APP_ENV": "production",
                "DATABASE_URL": "/opt/render/persistent/data/fitness_challenge.db",
            }
        )

        assert env.is_persistent is True
        assert env.path_in_persistent_mount is True
        assert env.warnings == ()

    def test_production_without_url_selects_recommended_path(self):
        """Unset DATABASE_URL in production uses the platform path."""
        env = detect({"RENDER": "true", "APP_ENV": "production"})

        assert env.database_path == "/opt/render/persistent/data/fitness_challenge.db"
        assert env.recommended_backup_path == "/opt/render/persistent/data/backups"
        assert env.is_persistent is True

    def test_explicit_url_is_never_rewritten(self):
        """A configured path stays as configured even when misplaced."""
        env = detect({"RENDER": "true", "APP_ENV": "production", "DATABASE_URL": "/srv/app.db"})

        assert env.database_path == "/srv/app.db"
        assert env.is_persistent is False

    def test_mount_prefix_is_not_containment(self):
        """A sibling directory sharing the mount's prefix is outside it."""
        env = detect({"FLY_APP_NAME": "app", "DATABASE_URL": "/data2/fitness.db"})

        assert env.is_persistent is False

    def test_railway_volume_mount_override(self):
        """Railway honours RAILWAY_VOLUME_MOUNT_PATH."""
        env = detect(
            {
                "RAILWAY_ENVIRONMENT": "production",
                "RAILWAY_VOLUME_MOUNT_PATH": "/volume",
                "APP_ENV": "production",
            }
        )

        assert env.provider == "railway"
        assert env.persistent_mount == "/volume"
        assert env.database_path == "/volume/fitness_challenge.db"

    def test_railway_default_mount(self):
        """Railway without a volume variable uses /app/data."""
        env = detect({"RAILWAY_ENVIRONMENT": "production", "APP_ENV": "production"})

        assert env.persistent_mount == "/app/data"

    def test_fly_mount(self):
        """Fly.io volumes are mounted at /data."""
        env = detect({"FLY_APP_NAME": "app", "DATABASE_URL": "/data/fitness.db"})

        assert env.provider == "fly"
        assert env.is_persistent is True


class TestEphemeralPlatforms:
    """Tests for platforms whose disk is reset on deploy."""

    @pytest.mark.parametrize(
        "environ,provider",
        [
            ({"VERCEL": "1"}, "vercel"),
            ({"HEROKU_APP_NAME": "app"}, "heroku"),
            ({"DYNO": "web.1"}, "heroku"),
        ],
    )
    def test_ephemeral_is_never_persistent(self, environ, provider):
        """Ephemeral platforms always warn."""
        env = detect(environ)

        assert env.platform == PlatformKind.MANAGED_EPHEMERAL
        assert env.provider == provider
        assert env.is_persistent is False
        assert env.persistent_mount is None
        assert env.database_path == "/tmp/fitness_challenge.db"
        assert any("ephemeral" in w for w in env.warnings)


class TestResolveDatabasePath:
    """Tests for DATABASE_URL resolution."""

    def test_file_prefix_stripped(self):
        assert resolve_database_path("file:/srv/app.db") == "/srv/app.db"

    def test_relative_path_resolved(self):
        assert resolve_database_path("db/app.db") == os.path.abspath("db/app.db")


class TestConfigOverride:
    """Tests for detect() with a loaded GuardConfig."""

    def test_config_run_mode_replaces_app_env(self):
        env = detect({"RENDER": "true"}, GuardConfig(run_mode=RunMode.PRODUCTION))

        assert env.run_mode == RunMode.PRODUCTION
        assert env.database_path == "/opt/render/persistent/data/fitness_challenge.db"
        assert env.is_persistent is True

    def test_config_database_url_replaces_environment(self):
        config = GuardConfig(storage=StorageConfig(database_url="/srv/configured.db"))

        env = detect({"APP_ENV": "production", "DATABASE_URL": "/srv/other.db"}, config)

        assert env.run_mode == RunMode.DEVELOPMENT
        assert env.platform == PlatformKind.LOCAL
        assert env.database_path == "/srv/configured.db"

    def test_unset_config_url_is_not_read_from_environment(self):
        env = detect({"DATABASE_URL": "/srv/other.db"}, GuardConfig())

        assert env.database_path == resolve_database_path("./data/fitness_challenge.db")
