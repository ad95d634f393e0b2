"""
HTTP API module for the storage guard.

Exposes liveness and the database health payload over FastAPI.
"""

from .config import Settings
from .http_server import create_app

__all__ = ["Settings", "create_app"]
