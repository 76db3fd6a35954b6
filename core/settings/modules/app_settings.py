from __future__ import annotations

from functools import lru_cache

from pydantic import BaseModel, ConfigDict

from core.infrastructure.database.config import DatabaseSettings
from core.settings.modules.amazon_settings import AmazonSettings
from core.settings.modules.fee_sync_settings import FeeSyncSettings
from core.settings.modules.redis_settings import RedisSettings


class AppSettings(BaseModel):
    """Application settings aggregator."""

    model_config = ConfigDict(arbitrary_types_allowed=True, extra="ignore")

    amazon: AmazonSettings
    fee_sync: FeeSyncSettings
    database: DatabaseSettings
    redis: RedisSettings


@lru_cache()
def get_app_settings() -> AppSettings:
    return AppSettings(
        amazon=AmazonSettings(),
        fee_sync=FeeSyncSettings(),
        database=DatabaseSettings(),
        redis=RedisSettings(),
    )
