"""
Configuration for the health HTTP server.

Uses pydantic-settings for environment variable loading.
"""

from pydantic import Field
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Health server configuration loaded from environment."""

    host: str = Field(default="0.0.0.0", description="Health server bind host")
    port: int = Field(default=8080, description="Health server bind port")

    # Backup freshness threshold; derived from BACKUP_FREQUENCY_HOURS when unset
    backup_max_age_hours: float | None = Field(
        default=None, description="Newest backup older than this is flagged"
    )

    model_config = {"env_prefix": "HEALTH_"}

    @property
    def bind_address(self) -> str:
        return f"{self.host}:{self.port}"
