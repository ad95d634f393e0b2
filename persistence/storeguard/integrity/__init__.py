"""
Integrity module for the storage guard.

This module produces read-only health reports of database files: the
live database, snapshot candidates and fresh snapshots alike.

Invariants:
    - Verification never mutates the file it inspects
    - Emptiness is not an issue at this layer
"""

from .verifier import (
    COMPANION_SUFFIXES,
    IntegrityReport,
    IntegrityVerifier,
    companion_paths,
    present_companions,
    verify,
)

__all__ = [
    "COMPANION_SUFFIXES",
    "IntegrityReport",
    "IntegrityVerifier",
    "companion_paths",
    "present_companions",
    "verify",
]
