"""
storeguard - Persistent storage guard for an embedded SQLite database.

This package keeps a file-backed SQLite database safe across repeated
deployments on hosts whose local disk may or may not survive a redeploy:
- Infers the deployment platform and whether its disk is durable
- Tunes engine durability for that platform
- Initializes schema without touching existing data
- Snapshots before risky operations and on a schedule
- Detects a database that came back empty and restores it from the
  newest verified snapshot, or boots DEGRADED for manual recovery

Architecture:
    ┌──────────────┐     ┌──────────────┐
    │ Environment  │────▶│    Tuner     │
    │  Detector    │     └──────┬───────┘
    └──────┬───────┘            │
           │                    ▼
           │        ┌──────────────────────┐     ┌──────────────┐
           └───────▶│ Initialization Guard │────▶│  Failsafe    │
                    └─────┬──────────┬─────┘     └──────┬───────┘
                          │          │                  │
                          ▼          ▼                  ▼
                   ┌──────────┐ ┌──────────┐     ┌──────────────┐
                   │ Verifier │ │ Database │     │  Snapshot    │
                   └──────────┘ │  Handle  │     │  Manager     │
                                └──────────┘     └──────────────┘

Invariants:
    - Boot never drops or recreates a table holding data
    - Every restoration is preceded by independent verification of the
      snapshot and by an emergency copy of the live file
    - At most one restoration attempt per boot
    - Environment and configuration are values passed explicitly,
      never module-level singletons

How to change safely:
    - Never change the snapshot naming convention
    - Keep the health payload fields stable; add optional ones only
"""

from ._version import __version__

__all__ = ["__version__"]
