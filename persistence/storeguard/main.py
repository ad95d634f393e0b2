"""
storeguard - Main entry point.

This module boots the guarded database and serves its health endpoints:
- Initialization guard (environment, schema, tuning, restoration)
- Health HTTP server (liveness + database health payload)
- Periodic snapshotter (started by the HTTP app lifespan)

Usage:
    storeguard
    python -m persistence.storeguard.main

Configuration is entirely via environment variables.
See config.py and api/config.py for all available settings.

Invariants:
    - Boot completes before the HTTP server accepts requests
    - FatalConfigurationError and SchemaCreationError exit non-zero
    - A DEGRADED boot still serves health (status unhealthy)
"""

from __future__ import annotations

import logging
import sys
from collections.abc import Mapping

import json_log_formatter
import uvicorn

from .api import Settings, create_app
from .config import GuardConfig, RunMode
from .errors import GuardError
from .runtime import GuardRuntime, bootstrap

logger = logging.getLogger(__name__)

TEXT_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


def setup_logging(config: GuardConfig) -> None:
    """Configure logging based on configuration.

    Args:
        config: Guard configuration
    """
    level = getattr(logging, config.observability.log_level.upper(), logging.INFO)

    if config.observability.log_format == "json":
        formatter: logging.Formatter = json_log_formatter.JSONFormatter()
    else:
        formatter = logging.Formatter(TEXT_FORMAT)

    handler = logging.StreamHandler()
    handler.setFormatter(formatter)
    handlers: list[logging.Handler] = [handler]

    if config.observability.log_file and config.run_mode != RunMode.TEST:
        file_handler = logging.FileHandler(config.observability.log_file, encoding="utf-8")
        file_handler.setFormatter(formatter)
        handlers.append(file_handler)

    root_logger = logging.getLogger()
    root_logger.setLevel(level)
    root_logger.handlers = handlers

    # Reduce noise from libraries
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)


def boot(config: GuardConfig, environ: Mapping[str, str] | None = None) -> GuardRuntime:
    """Run the initialization guard.

    Raises:
        GuardError: If boot refuses to continue
    """
    logger.info("Starting storeguard boot")
    config.log_config()
    runtime = bootstrap(config, environ)
    logger.info(
        "Boot finished",
        extra={
            "boot_state": runtime.boot_result.state.value,
            "transitions": [s.value for s in runtime.boot_result.transitions],
            "duration_ms": runtime.boot_result.duration_ms,
        },
    )
    return runtime


def main() -> None:
    """Main entry point."""
    # Load configuration
    try:
        config = GuardConfig.from_env()
        settings = Settings()
    except ValueError as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        sys.exit(1)

    # Setup logging
    setup_logging(config)

    try:
        runtime = boot(config)
    except GuardError as e:
        logger.critical(f"Boot failed: {e}", extra={"code": e.code, "details": e.details})
        sys.exit(1)

    app = create_app(runtime, settings)
    logger.info(f"Serving health endpoints on {settings.bind_address}")
    uvicorn.run(app, host=settings.host, port=settings.port, log_config=None)


if __name__ == "__main__":
    main()
