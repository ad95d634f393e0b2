"""
Error types for the storage guard.

This module defines all exception types raised by the guard:
- GuardError: Base exception
- FatalConfigurationError: Boot refuses to continue
- SchemaCreationError: Domain tables missing after creation
- SnapshotFailed: A snapshot could not be produced (non-fatal)
- RestorationFailed: Automatic restoration gave up (non-fatal by default)

Invariants:
    - All errors inherit from GuardError
    - Errors carry structured details for manual recovery
    - Error messages are actionable
"""

from __future__ import annotations

from typing import Any


class GuardError(Exception):
    """Base exception for all storage guard errors.

    Attributes:
        message: Error message
        code: Error code for programmatic handling
        details: Additional error context
    """

    def __init__(
        self,
        message: str,
        code: str | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.code = code or "GUARD_ERROR"
        self.details = details or {}


class FatalConfigurationError(GuardError):
    """Boot refused because starting would risk silent data loss.

    Raised when:
    - Production run mode on a persistent-disk platform with the
      database path outside the persistent mount
    - The database directory cannot be created
    """

    def __init__(
        self,
        message: str,
        database_path: str | None = None,
        recommended_path: str | None = None,
    ) -> None:
        super().__init__(
            message,
            code="FATAL_CONFIGURATION",
            details={
                "database_path": database_path,
                "recommended_path": recommended_path,
            },
        )
        self.database_path = database_path
        self.recommended_path = recommended_path


class SchemaCreationError(GuardError):
    """Expected domain tables are missing after schema creation."""

    def __init__(self, message: str, missing_tables: list[str] | None = None) -> None:
        super().__init__(
            message,
            code="SCHEMA_CREATION_FAILED",
            details={"missing_tables": missing_tables or []},
        )
        self.missing_tables = missing_tables or []


class SnapshotFailed(GuardError):
    """A snapshot could not be created.

    Logged and tolerated by callers: it degrades backup coverage but
    never blocks boot.
    """

    def __init__(
        self,
        message: str,
        reason: str | None = None,
        source_path: str | None = None,
    ) -> None:
        super().__init__(
            message,
            code="SNAPSHOT_FAILED",
            details={"reason": reason, "source_path": source_path},
        )
        self.reason = reason
        self.source_path = source_path


class RestorationFailed(GuardError):
    """Automatic restoration did not restore any data.

    Only raised when the strict policy is enabled; by default the guard
    records the outcome and boots into DEGRADED instead.
    """

    def __init__(
        self,
        message: str,
        reason: str,
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(
            message,
            code="RESTORATION_FAILED",
            details={"reason": reason, **(details or {})},
        )
        self.reason = reason
