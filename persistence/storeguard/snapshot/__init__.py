"""
Snapshot module for the storage guard.

This module handles local SQLite snapshots for:
- Safety copies before risky boot operations
- Scheduled backups while serving traffic
- Automatic and manual restoration

Invariants:
    - Snapshots are taken with the SQLite backup API, never byte-copied
    - A snapshot and its companion log files move together
    - The backup directory listing is the only index
"""

from .manager import BackupRecord, SnapshotKind, SnapshotManager
from .scheduler import PeriodicSnapshotter

__all__ = ["BackupRecord", "PeriodicSnapshotter", "SnapshotKind", "SnapshotManager"]
