"""
Scheduled snapshots while the application serves traffic.

The PeriodicSnapshotter runs as a background loop that:
1. Checks the live database is non-empty
2. Creates a snapshot through the SnapshotManager (in the executor)
3. Prunes regular snapshots to the retention count

Invariants:
    - An empty live database is never snapshotted on schedule, so a lost
      database cannot rotate good snapshots out of retention
    - Snapshot I/O runs off the event loop
    - A failed cycle is logged; the loop keeps running
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any

from ..errors import SnapshotFailed
from ..integrity.verifier import IntegrityVerifier
from .manager import BackupRecord, SnapshotManager

logger = logging.getLogger(__name__)


class PeriodicSnapshotter:
    """Background loop taking a snapshot every interval.

    Attributes:
        manager: SnapshotManager for the live database
        interval_seconds: Interval between snapshots
        retention_count: Regular snapshots kept after each cycle

    Example:
        >>> snapshotter = PeriodicSnapshotter(manager, interval_seconds=86400)
        >>> task = asyncio.create_task(snapshotter.start())
        >>> await snapshotter.stop()
    """

    def __init__(
        self,
        manager: SnapshotManager,
        interval_seconds: float,
        retention_count: int = 7,
        verifier: IntegrityVerifier | None = None,
    ) -> None:
        self.manager = manager
        self.interval_seconds = interval_seconds
        self.retention_count = retention_count
        self.verifier = verifier or manager.verifier

        self._running = False
        self._snapshot_count = 0
        self._skipped_count = 0
        self._stop_event = asyncio.Event()

    async def start(self) -> None:
        """Start the snapshot loop."""
        if self._running:
            logger.warning("Periodic snapshotter already running")
            return
        if self.interval_seconds <= 0:
            logger.info("Periodic snapshots disabled (interval is zero)")
            return

        self._running = True
        logger.info(
            "Starting periodic snapshotter",
            extra={
                "backup_dir": str(self.manager.backup_dir),
                "interval_seconds": self.interval_seconds,
            },
        )

        try:
            while self._running:
                try:
                    await asyncio.wait_for(self._stop_event.wait(), timeout=self.interval_seconds)
                    break
                except asyncio.TimeoutError:
                    pass
                await self.snapshot_cycle()

        except asyncio.CancelledError:
            logger.info("Periodic snapshotter cancelled")
        finally:
            self._running = False

    async def stop(self) -> None:
        """Stop the snapshot loop."""
        self._running = False
        self._stop_event.set()
        logger.info("Stopping periodic snapshotter")

    async def snapshot_cycle(self) -> BackupRecord | None:
        """Run one snapshot + prune cycle.

        Returns:
            BackupRecord if a snapshot was created, None otherwise
        """
        loop = asyncio.get_running_loop()

        report = await loop.run_in_executor(None, self.verifier.verify, self.manager.database_path)
        if report.counts.is_empty:
            self._skipped_count += 1
            logger.warning(
                "Skipping scheduled snapshot of empty database",
                extra={"path": report.path, "issues": report.issues},
            )
            return None

        try:
            record = await loop.run_in_executor(None, self.manager.create_snapshot, "scheduled")
        except SnapshotFailed as e:
            logger.error(f"Scheduled snapshot failed: {e}", extra={"details": e.details})
            return None

        self._snapshot_count += 1
        await loop.run_in_executor(None, self.manager.prune, self.retention_count)
        return record

    @property
    def stats(self) -> dict[str, Any]:
        """Get snapshotter statistics."""
        return {
            "running": self._running,
            "snapshot_count": self._snapshot_count,
            "skipped_count": self._skipped_count,
        }
