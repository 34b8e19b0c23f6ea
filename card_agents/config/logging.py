"""Logging configuration."""

import logging

from pydantic import Field
from pydantic_settings import BaseSettings


class LoggingConfig(BaseSettings):
    """Log level, renderer and optional rotating file output."""

    level: str = Field(default="INFO", alias="log_level")
    format: str = Field(default="json", alias="log_format")
    file: str | None = Field(default=None, alias="log_file")
    max_size_mb: int = Field(default=100, ge=1, alias="log_max_size_mb")
    backup_count: int = Field(default=5, ge=1, alias="log_backup_count")

    class Config:
        env_prefix = ""
        extra = "ignore"

    @property
    def level_value(self) -> int:
        """Numeric level, INFO for unknown names."""
        return getattr(logging, self.level.upper(), logging.INFO)

    @property
    def max_bytes(self) -> int:
        return self.max_size_mb * 1024 * 1024
