"""
Boot module for the storage guard.

This module runs once per process start:
- InitializationGuard walks the boot state machine
- RestorationFailsafe restores the newest verified snapshot on data loss

Invariants:
    - Boot completes before the application serves traffic
    - At most one restoration attempt per boot
"""

from .failsafe import RestorationFailsafe, RestoreOutcome
from .guard import BootResult, InitializationGuard
from .state import BootState, InitializationState, RestoreReason

__all__ = [
    "BootResult",
    "BootState",
    "InitializationGuard",
    "InitializationState",
    "RestorationFailsafe",
    "RestoreOutcome",
    "RestoreReason",
]
