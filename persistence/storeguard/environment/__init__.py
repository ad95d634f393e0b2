"""
Environment module for the storage guard.

This module handles:
- Deployment platform detection from environment variables
- SQLite durability/performance tuning per platform

Invariants:
    - Both steps are pure and run once per process, before any database I/O
    - Their results are values passed explicitly to other components
"""

from .detector import DeploymentEnvironment, PlatformKind, detect, resolve_database_path
from .tuner import DatabaseConfiguration, JournalMode, SyncMode, TempStore, tune

__all__ = [
    "DeploymentEnvironment",
    "PlatformKind",
    "detect",
    "resolve_database_path",
    "DatabaseConfiguration",
    "JournalMode",
    "SyncMode",
    "TempStore",
    "tune",
]
