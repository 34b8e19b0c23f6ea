"""Watch, registry and log streaming configuration."""

from pydantic import Field
from pydantic_settings import BaseSettings


class WatchConfig(BaseSettings):
    """Streaming behaviour settings."""

    backoff_ms: int = Field(default=750, ge=1, alias="watch_backoff_ms")
    backoff_max_ms: int = Field(default=30000, ge=1, alias="watch_backoff_max_ms")
    watcher_stale_seconds: float = Field(default=120, gt=0, alias="watcher_stale_seconds")
    badge_refresh_seconds: int = Field(default=15, ge=1, alias="badge_refresh_seconds")

    log_tail_lines: int = Field(default=10000, ge=1, alias="log_tail_lines")
    log_follow_grace_ms: int = Field(default=150, ge=0, alias="log_follow_grace_ms")
    log_follow_bottom_threshold: int = Field(default=8, ge=0, alias="log_follow_bottom_threshold")

    stop_pod_delay_seconds: float = Field(default=1.0, ge=0, alias="stop_pod_delay_seconds")

    class Config:
        env_prefix = ""
        extra = "ignore"
