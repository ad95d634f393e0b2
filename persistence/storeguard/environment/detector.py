"""
Deployment environment detection.

Infers which platform the process runs on, and whether the configured
database path survives a redeploy, purely from environment variables.

Recognized platforms:
    local                    No platform signal, development or test
    managed-persistent-disk  Render, Railway, Fly.io (dedicated volume mount)
    managed-ephemeral-disk   Vercel, Heroku (filesystem reset on deploy)
    unknown-production       Production run mode without a platform signal

Invariants:
    - detect() never raises and performs no I/O besides reading the
      environment mapping and the working directory
    - A path outside the persistent mount produces a warning and
      is_persistent=False, never an exception (VALIDATING_CONFIG decides
      whether that is fatal)
    - An explicitly configured DATABASE_URL is never rewritten

How to change safely:
    - Add providers to _PROVIDERS; keep the recommended paths stable,
      backups written by older releases live under them
"""

from __future__ import annotations

import os
from collections.abc import Mapping
from dataclasses import dataclass
from enum import Enum

from ..config import DEFAULT_DATABASE_URL, GuardConfig, RunMode

DATABASE_FILENAME = "fitness_challenge.db"


class PlatformKind(Enum):
    """Durability class of the deployment platform."""

    LOCAL = "local"
    MANAGED_PERSISTENT = "managed-persistent-disk"
    MANAGED_EPHEMERAL = "managed-ephemeral-disk"
    UNKNOWN_PRODUCTION = "unknown-production"


@dataclass(frozen=True)
class _Provider:
    name: str
    kind: PlatformKind
    signals: tuple[str, ...]
    mount: str
    data_subdir: str = ""
    mount_env: str | None = None


_PROVIDERS: tuple[_Provider, ...] = (
    _Provider(
        "render",
        PlatformKind.MANAGED_PERSISTENT,
        ("RENDER",),
        "/opt/render/persistent",
        data_subdir="data",
    ),
    _Provider(
        "railway",
        PlatformKind.MANAGED_PERSISTENT,
        ("RAILWAY_ENVIRONMENT",),
        "/app/data",
        mount_env="RAILWAY_VOLUME_MOUNT_PATH",
    ),
    _Provider("fly", PlatformKind.MANAGED_PERSISTENT, ("FLY_APP_NAME",), "/data"),
    _Provider("vercel", PlatformKind.MANAGED_EPHEMERAL, ("VERCEL",), "/tmp"),
    _Provider("heroku", PlatformKind.MANAGED_EPHEMERAL, ("HEROKU_APP_NAME", "DYNO"), "/tmp"),
)


@dataclass(frozen=True)
class DeploymentEnvironment:
    """Where the process runs and how durable its disk is.

    Computed once at boot and passed to every component that needs it.

    Attributes:
        platform: Durability class of the platform
        provider: Provider name (render, railway, fly, vercel, heroku, local, generic)
        run_mode: Declared run mode
        is_persistent: Whether the database path survives a redeploy
        database_path: Effective absolute database path
        persistent_mount: Persistent volume mount point, if the platform has one
        recommended_storage_path: Canonical database path for this platform
        recommended_backup_path: Canonical backup directory for this platform
        warnings: Ordered human-readable warnings
    """

    platform: PlatformKind
    provider: str
    run_mode: RunMode
    is_persistent: bool
    database_path: str
    persistent_mount: str | None
    recommended_storage_path: str
    recommended_backup_path: str
    warnings: tuple[str, ...] = ()

    @property
    def path_in_persistent_mount(self) -> bool:
        """True when the database lives inside the platform's persistent mount."""
        if self.persistent_mount is None:
            return False
        return _is_within(self.database_path, self.persistent_mount)

    def to_dict(self) -> dict[str, object]:
        return {
            "platform": self.platform.value,
            "provider": self.provider,
            "run_mode": self.run_mode.value,
            "is_persistent": self.is_persistent,
            "database_path": self.database_path,
            "persistent_mount": self.persistent_mount,
            "recommended_storage_path": self.recommended_storage_path,
            "recommended_backup_path": self.recommended_backup_path,
            "warnings": list(self.warnings),
        }


def _is_within(path: str, directory: str) -> bool:
    path = os.path.normpath(path)
    directory = os.path.normpath(directory)
    try:
        return os.path.commonpath([path, directory]) == directory
    except ValueError:
        return False


def resolve_database_path(database_url: str) -> str:
    """Turn a DATABASE_URL value into an absolute filesystem path."""
    if database_url.startswith("file:"):
        database_url = database_url[len("file:"):]
    return os.path.abspath(os.path.expanduser(database_url))


def _find_provider(env: Mapping[str, str]) -> _Provider | None:
    for provider in _PROVIDERS:
        if any(env.get(signal) for signal in provider.signals):
            return provider
    return None


def detect(
    environ: Mapping[str, str] | None = None,
    config: GuardConfig | None = None,
) -> DeploymentEnvironment:
    """Infer the deployment environment from process environment variables.

    Args:
        environ: Mapping to read instead of os.environ
        config: Loaded configuration; when given, its run mode and
            DATABASE_URL are used instead of re-reading APP_ENV and
            DATABASE_URL from environ

    Returns:
        DeploymentEnvironment for this process
    """
    env = os.environ if environ is None else environ
    if config is not None:
        run_mode = config.run_mode
        configured_url = config.storage.database_url
    else:
        try:
            run_mode = RunMode.from_env(env)
        except ValueError:
            run_mode = RunMode.DEVELOPMENT
        configured_url = env.get("DATABASE_URL") or None

    provider = _find_provider(env)
    warnings: list[str] = []

    if provider is None:
        database_path = resolve_database_path(configured_url or DEFAULT_DATABASE_URL)
        backup_path = os.path.join(os.path.dirname(database_path), "backups")
        if run_mode == RunMode.PRODUCTION:
            warnings.append("Production environment detected but platform unknown")
            platform, name = PlatformKind.UNKNOWN_PRODUCTION, "generic"
        else:
            platform, name = PlatformKind.LOCAL, "local"
        return DeploymentEnvironment(
            platform=platform,
            provider=name,
            run_mode=run_mode,
            is_persistent=True,
            database_path=database_path,
            persistent_mount=None,
            recommended_storage_path=resolve_database_path(DEFAULT_DATABASE_URL),
            recommended_backup_path=backup_path,
            warnings=tuple(warnings),
        )

    mount = (env.get(provider.mount_env) if provider.mount_env else None) or provider.mount
    recommended = os.path.join(mount, provider.data_subdir, DATABASE_FILENAME)
    recommended_backups = os.path.join(os.path.dirname(recommended), "backups")

    if configured_url is None and (
        provider.kind == PlatformKind.MANAGED_EPHEMERAL or run_mode == RunMode.PRODUCTION
    ):
        database_path = recommended
    else:
        database_path = resolve_database_path(configured_url or DEFAULT_DATABASE_URL)

    if provider.kind == PlatformKind.MANAGED_EPHEMERAL:
        is_persistent = False
        warnings.append(
            f"{provider.name} has an ephemeral filesystem - data will be lost on "
            "deployment; consider an external database"
        )
        persistent_mount = None
    else:
        persistent_mount = mount
        is_persistent = _is_within(database_path, mount)
        if not is_persistent:
            warnings.append(
                f"Database not in {provider.name} persistent storage ({mount}) - data will "
                f"be lost on deployment; set DATABASE_URL={recommended}"
            )

    return DeploymentEnvironment(
        platform=provider.kind,
        provider=provider.name,
        run_mode=run_mode,
        is_persistent=is_persistent,
        database_path=database_path,
        persistent_mount=persistent_mount,
        recommended_storage_path=recommended,
        recommended_backup_path=recommended_backups,
        warnings=tuple(warnings),
    )
