"""
Store module for the storage guard.

This module handles the live SQLite handle and the three domain tables
(users, dexa_scans, scoring_data) whose contents the guard protects.

Invariants:
    - Table creation is idempotent and never destructive
    - A single live connection exists per process
"""

from .database import (
    ACCOUNTS_TABLE,
    DOMAIN_TABLES,
    SCANS_TABLE,
    SCORES_TABLE,
    DatabaseClosedError,
    DomainCounts,
    FitnessDatabase,
    count_rows,
    list_domain_tables,
)

__all__ = [
    "ACCOUNTS_TABLE",
    "DOMAIN_TABLES",
    "SCANS_TABLE",
    "SCORES_TABLE",
    "DatabaseClosedError",
    "DomainCounts",
    "FitnessDatabase",
    "count_rows",
    "list_domain_tables",
]
