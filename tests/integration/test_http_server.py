"""
Integration tests for the health HTTP server.

Uses httpx with the ASGI transport; no network.
"""

import asyncio

import httpx
import pytest

from persistence.storeguard.api import Settings, create_app
from persistence.storeguard.config import GuardConfig
from persistence.storeguard.runtime import bootstrap
from persistence.storeguard.store import FitnessDatabase


def make_runtime(environ):
    return bootstrap(GuardConfig.from_env(environ), environ)


def client_for(app):
    return httpx.AsyncClient(transport=httpx.ASGITransport(app=app), base_url="http://test")


class TestHealthEndpoints:
    """Tests for /health and /api/health/database."""

    @pytest.fixture
    def runtime(self, tmp_dir, seed):
        db_path = seed(tmp_dir / "app.db", accounts=3, scans=5)
        runtime = make_runtime({"APP_ENV": "development", "DATABASE_URL": str(db_path)})
        yield runtime
        runtime.database.close()

    @pytest.mark.asyncio
    async def test_liveness(self, runtime):
        async with client_for(create_app(runtime, Settings())) as client:
            response = await client.get("/health")

        assert response.status_code == 200
        assert response.json() == {"status": "ok", "service": "storeguard", "boot_state": "ready"}

    @pytest.mark.asyncio
    async def test_database_health_payload(self, runtime, tmp_dir):
        async with client_for(create_app(runtime, Settings())) as client:
            response = await client.get("/api/health/database")

        assert response.status_code == 200
        payload = response.json()
        assert payload["status"] == "healthy"
        assert payload["database"]["path"] == str(tmp_dir / "app.db")
        assert payload["database"]["exists"] is True
        assert payload["database"]["wal_mode"] is True
        assert payload["data"] == {"accounts": 3, "scans": 5, "scores": 3}
        assert payload["persistence"]["is_configured"] is True
        assert payload["environment"] == {
            "platform": "local",
            "provider": "local",
            "is_persistent": True,
        }
        assert payload["backup"]["count"] == 1
        assert payload["backup"]["most_recent_name"].startswith("fitness_challenge_backup_")
        assert payload["backup"]["warning"] is None
        assert payload["boot"] == {"state": "ready", "restored": False, "reason": None}
        assert payload["issues"] == []
        assert payload["timestamp"]

    @pytest.mark.asyncio
    async def test_degraded_boot_still_answers_200(self, tmp_dir, seed, wipe, monkeypatch):
        db_path = seed(tmp_dir / "app.db", accounts=3, scans=5)
        original = FitnessDatabase.apply_configuration

        def apply_and_wipe(self, config):
            journal_mode = original(self, config)
            wipe(self.connection)
            return journal_mode

        monkeypatch.setattr(FitnessDatabase, "apply_configuration", apply_and_wipe)
        runtime = make_runtime(
            {
                "APP_ENV": "production",
                "DATABASE_URL": str(db_path),
                "GUARD_AUTO_RESTORE": "false",
            }
        )

        try:
            async with client_for(create_app(runtime, Settings())) as client:
                response = await client.get("/api/health/database")
        finally:
            runtime.database.close()

        assert response.status_code == 200
        payload = response.json()
        assert payload["status"] == "unhealthy"
        assert payload["boot"] == {
            "state": "degraded",
            "restored": False,
            "reason": "auto_restore_disabled",
        }
        assert payload["data"]["accounts"] == 0


class TestLifespan:
    """Tests for the periodic snapshotter lifecycle."""

    @pytest.mark.asyncio
    async def test_snapshotter_started_when_ready(self, tmp_dir, seed):
        db_path = seed(tmp_dir / "app.db")
        runtime = make_runtime({"APP_ENV": "development", "DATABASE_URL": str(db_path)})
        app = create_app(runtime, Settings())

        async with app.router.lifespan_context(app):
            await asyncio.sleep(0)
            assert app.state.snapshotter is not None
            assert app.state.snapshotter.stats["running"] is True

        assert app.state.snapshotter.stats["running"] is False
        assert not runtime.database.is_open

    @pytest.mark.asyncio
    async def test_snapshotter_not_started_in_test_mode(self, tmp_dir, seed):
        db_path = seed(tmp_dir / "app.db")
        runtime = make_runtime({"APP_ENV": "test", "DATABASE_URL": str(db_path)})
        app = create_app(runtime, Settings())

        async with app.router.lifespan_context(app):
            assert app.state.snapshotter is None


class TestSettings:
    """Tests for the health server settings."""

    def test_bind_address_from_environment(self, monkeypatch):
        monkeypatch.setenv("HEALTH_HOST", "127.0.0.1")
        monkeypatch.setenv("HEALTH_PORT", "9090")

        settings = Settings()

        assert settings.port == 9090
        assert settings.bind_address == "127.0.0.1:9090"
