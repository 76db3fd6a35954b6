from __future__ import annotations

from pydantic_settings import BaseSettings, SettingsConfigDict


class RedisSettings(BaseSettings):
    """Redis Streams connection for background fee sync jobs (REDIS_ prefix)."""

    model_config = SettingsConfigDict(
        env_prefix="REDIS_",
        env_file=".env",
        extra="ignore",
    )

    url: str = "redis://localhost:6379/0"
    stream: str = "feeledger:fee-sync:stream"
    consumer_group: str = "feeledger:fee-sync:workers"
    consumer_name: str = "fee-sync-worker-1"
    max_stream_length: int = 10000
