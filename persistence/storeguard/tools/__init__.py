"""
CLI tools for storage guard administration.

This module provides command-line tools for:
- restore: List, create, verify and restore local snapshots

Invariants:
    - Tools work offline (the application must not be running)
    - The live database is preserved before it is replaced
    - All operations are logged for audit
"""

from .restore import RestoreResult, RestoreTool

__all__ = ["RestoreResult", "RestoreTool"]
