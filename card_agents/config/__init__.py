"""Configuration management for the card agents runtime.

This module provides a unified Settings class with flat, environment-driven
fields and grouped views over them.

Usage:
    from card_agents.config import settings

    # Access grouped settings
    settings.cluster.namespace
    settings.watch.backoff_ms

    # Or the flat fields
    settings.cluster_namespace
    settings.watch_backoff_ms
"""

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from .cluster import ClusterConfig
from .logging import LoggingConfig
from .watch import WatchConfig


class Settings(BaseSettings):
    """Application settings with environment variable support."""

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", case_sensitive=False, extra="ignore")

    # Cluster Configuration
    cluster_url: str = Field(default="", description="Base URL of the cluster API server")
    cluster_namespace: str = Field(default="automation", min_length=1, description="Namespace holding agent pods")
    cluster_token: str | None = Field(default=None, description="Bearer token for the cluster API")
    cluster_ca_bundle: str | None = Field(default=None, description="PEM CA bundle trusted for the cluster API")
    cluster_ignore_ssl: bool = Field(default=False, description="Skip TLS verification (development clusters only)")
    card_label_key: str = Field(
        default="card-agents/card-id",
        description="Pod label carrying the Trello card id",
    )

    # Watch Configuration
    watch_backoff_ms: int = Field(default=750, ge=1, description="Base reconnect delay for pod watches")
    watch_backoff_max_ms: int = Field(default=30000, ge=1, description="Reconnect delay ceiling")
    watcher_stale_seconds: float = Field(
        default=120,
        gt=0,
        description="Evict shared watchers untouched for this long",
    )
    badge_refresh_seconds: int = Field(default=15, ge=1)

    # Log Streaming Configuration
    log_tail_lines: int = Field(default=10000, ge=1, description="Lines of history requested when tailing logs")
    log_follow_grace_ms: int = Field(default=150, ge=0)
    log_follow_bottom_threshold: int = Field(default=8, ge=0)

    # Pod Actions
    stop_pod_delay_seconds: float = Field(
        default=1.0,
        ge=0,
        description="Pause between deleting a job and deleting its pod",
    )

    # Serve an in-memory cluster instead of a real one
    preview_mode: bool = Field(default=False)

    # Logging Configuration
    log_level: str = Field(default="INFO")
    log_format: str = Field(default="json")
    log_file: str | None = Field(default=None)
    log_max_size_mb: int = Field(default=100, ge=1)
    log_backup_count: int = Field(default=5, ge=1)

    @field_validator("cluster_url")
    @classmethod
    def validate_cluster_url(cls, v):
        """Ensure the cluster URL carries a protocol and no trailing slash."""
        if not v:
            return v
        if not v.startswith(("http://", "https://")):
            raise ValueError("Cluster URL must start with http:// or https://")
        return v.rstrip("/")

    @field_validator("log_format")
    @classmethod
    def validate_log_format(cls, v):
        """Restrict log output to the supported renderers."""
        if v.lower() not in ("json", "console"):
            raise ValueError("Log format must be 'json' or 'console'")
        return v.lower()

    @property
    def cluster(self) -> ClusterConfig:
        """Access cluster configuration group."""
        return ClusterConfig(
            url=self.cluster_url,
            namespace=self.cluster_namespace,
            token=self.cluster_token,
            ca_bundle=self.cluster_ca_bundle,
            ignore_ssl=self.cluster_ignore_ssl,
        )

    @property
    def watch(self) -> WatchConfig:
        """Access watch and streaming configuration group."""
        return WatchConfig(
            watch_backoff_ms=self.watch_backoff_ms,
            watch_backoff_max_ms=self.watch_backoff_max_ms,
            watcher_stale_seconds=self.watcher_stale_seconds,
            badge_refresh_seconds=self.badge_refresh_seconds,
            log_tail_lines=self.log_tail_lines,
            log_follow_grace_ms=self.log_follow_grace_ms,
            log_follow_bottom_threshold=self.log_follow_bottom_threshold,
            stop_pod_delay_seconds=self.stop_pod_delay_seconds,
        )

    @property
    def logging(self) -> LoggingConfig:
        """Access logging configuration group."""
        return LoggingConfig(
            log_level=self.log_level,
            log_format=self.log_format,
            log_file=self.log_file,
            log_max_size_mb=self.log_max_size_mb,
            log_backup_count=self.log_backup_count,
        )


# Global settings instance
settings = Settings()

__all__ = [
    "Settings",
    "settings",
    "ClusterConfig",
    "LoggingConfig",
    "WatchConfig",
]
