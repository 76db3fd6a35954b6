# Settings package
from core.settings.modules import AppSettings, FeeSyncSettings, get_app_settings

__all__ = ["get_app_settings", "AppSettings", "FeeSyncSettings"]
