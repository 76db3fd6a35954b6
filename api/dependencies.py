"""
FastAPI Dependencies.

Provides dependency injection for the fee sync service and the job publisher.
"""
from __future__ import annotations

import logging
from pathlib import Path
from typing import TYPE_CHECKING

from dotenv import load_dotenv

# Load environment variables ONCE before any settings objects are created
_PROJECT_ROOT = Path(__file__).resolve().parents[1]
load_dotenv(dotenv_path=_PROJECT_ROOT / ".env")

from core.settings import get_app_settings
from core.settings.modules import FeeSyncSettings

if TYPE_CHECKING:
    from core.application.services.fee_sync_service import FeeSyncService
    from core.infrastructure.bus.redis_stream_publisher import RedisStreamPublisher

logger = logging.getLogger(__name__)


# =============================================================================
# SINGLETON INSTANCES
# =============================================================================

_fee_sync_service = None
_stream_publisher = None


# =============================================================================
# DEPENDENCIES
# =============================================================================

def get_fee_sync_settings() -> FeeSyncSettings:
    return get_app_settings().fee_sync


def get_fee_sync_service() -> FeeSyncService:
    global _fee_sync_service

    if _fee_sync_service is None:
        from core.infrastructure.bootstrap import create_fee_sync_service
        _fee_sync_service = create_fee_sync_service(get_app_settings())
        logger.info("Created FeeSyncService instance")

    return _fee_sync_service


def get_stream_publisher() -> RedisStreamPublisher:
    global _stream_publisher

    if _stream_publisher is None:
        from core.infrastructure.bus.redis_stream_publisher import RedisStreamPublisher
        redis = get_app_settings().redis
        _stream_publisher = RedisStreamPublisher(
            redis_url=redis.url,
            stream_name=redis.stream,
            max_length=redis.max_stream_length,
        )
        logger.info(f"Created RedisStreamPublisher for stream {redis.stream}")

    return _stream_publisher


# =============================================================================
# RESET (for testing)
# =============================================================================

def reset_dependencies():
    global _fee_sync_service, _stream_publisher

    _fee_sync_service = None
    _stream_publisher = None

    logger.info("Dependencies reset")
