"""
Health module for the storage guard.

Read-only aggregation of environment, integrity, backup and boot state
for external monitoring.
"""

from .reporter import HEALTHY, UNHEALTHY, HealthReport, HealthReporter

__all__ = ["HEALTHY", "UNHEALTHY", "HealthReport", "HealthReporter"]
