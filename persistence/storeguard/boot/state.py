"""
Boot state machine vocabulary shared by the guard and the failsafe.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum

from ..store.database import DomainCounts


class BootState(Enum):
    """States of the initialization guard."""

    DETECTING_ENV = "detecting_env"
    VALIDATING_CONFIG = "validating_config"
    INSPECTING_EXISTING_DATA = "inspecting_existing_data"
    SKIP_SCHEMA_OPS = "skip_schema_ops"
    CREATE_SCHEMA = "create_schema"
    APPLYING_TUNING = "applying_tuning"
    POST_INIT_CHECK = "post_init_check"
    RESTORING = "restoring"
    READY = "ready"
    DEGRADED = "degraded"

    @property
    def is_terminal(self) -> bool:
        return self in (BootState.READY, BootState.DEGRADED)


class RestoreReason(Enum):
    """Why an automatic restoration did not restore anything."""

    NO_PREVIOUS_DATA = "no_previous_data"
    DATA_STILL_PRESENT = "data_still_present"
    NO_BACKUP_FOUND = "no_backup_found"
    BACKUP_INTEGRITY_FAILED = "backup_integrity_failed"
    RESTORATION_FAILED = "restoration_failed"
    AUTO_RESTORE_DISABLED = "auto_restore_disabled"


@dataclass(frozen=True)
class InitializationState:
    """Counts captured before any schema operation of one boot.

    Attributes:
        had_existing_data: Accounts or scans had rows
        user_count_before: Accounts before boot
        scan_count_before: Scans before boot
        score_count_before: Scores before boot
    """

    had_existing_data: bool
    user_count_before: int = 0
    scan_count_before: int = 0
    score_count_before: int = 0

    @classmethod
    def from_counts(cls, counts: DomainCounts) -> InitializationState:
        return cls(
            had_existing_data=counts.has_data,
            user_count_before=counts.accounts,
            scan_count_before=counts.scans,
            score_count_before=counts.scores,
        )

    def to_dict(self) -> dict[str, object]:
        return {
            "had_existing_data": self.had_existing_data,
            "user_count_before": self.user_count_before,
            "scan_count_before": self.scan_count_before,
            "score_count_before": self.score_count_before,
        }
