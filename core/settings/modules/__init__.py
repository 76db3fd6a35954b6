# Settings modules
from .amazon_settings import AmazonSettings
from .app_settings import AppSettings, get_app_settings
from .fee_sync_settings import FeeSyncSettings
from .redis_settings import RedisSettings

__all__ = [
    "AppSettings",
    "get_app_settings",
    "AmazonSettings",
    "FeeSyncSettings",
    "RedisSettings",
]
