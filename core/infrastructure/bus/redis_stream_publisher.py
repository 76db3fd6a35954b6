"""
Redis Streams Publisher for background fee sync jobs.

Enqueues fee sync requests so long backfills run in a worker instead
of inside an HTTP request.
"""
import json
import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

import redis.asyncio as aioredis

from core.domain.enums import SyncKind


logger = logging.getLogger(__name__)


class RedisStreamPublisher:
    """
    Publishes fee sync jobs to a Redis Stream.

    Message format (all values strings): {
        "event_type": "FeeSyncRequested",
        "user_id": str,
        "kind": "settlement" | "ledger" | "estimate",
        "credential_ref": str,
        "marketplace_ids": str,  # JSON list
        "months_back": str,
        "requested_at": str,  # ISO format
    }
    """

    def __init__(
        self,
        redis_url: str = "redis://localhost:6379/0",
        stream_name: str = "feeledger:fee-sync:stream",
        max_length: int = 10000,
    ):
        """
        Initialize Redis Stream Publisher.

        Args:
            redis_url: Redis connection URL
            stream_name: Redis Stream name
            max_length: Approximate number of messages the stream keeps
        """
        self.redis_url = redis_url
        self.stream_name = stream_name
        self.max_length = max_length
        self._redis_client: Optional[aioredis.Redis] = None

    async def connect(self) -> None:
        """Establish Redis connection."""
        if self._redis_client is None:
            try:
                self._redis_client = aioredis.from_url(
                    self.redis_url,
                    encoding="utf-8",
                    decode_responses=True,
                )
                await self._redis_client.ping()
                logger.info(f"✅ Connected to Redis: {self.redis_url}")
            except Exception as e:
                logger.error(f"Failed to connect to Redis: {e}")
                self._redis_client = None
                raise

    async def disconnect(self) -> None:
        """Close Redis connection."""
        if self._redis_client:
            await self._redis_client.aclose()
            self._redis_client = None
            logger.info("✅ Disconnected from Redis")

    async def publish_sync_requested(
        self,
        user_id: str,
        kind: SyncKind,
        credential_ref: str = "default",
        marketplace_ids: Optional[List[str]] = None,
        months_back: Optional[int] = None,
    ) -> str:
        """
        Publish a FeeSyncRequested job.

        Args:
            user_id: Seller to sync
            kind: Run kind
            credential_ref: Credential reference for the seller's token
            marketplace_ids: Marketplaces (worker default when empty)
            months_back: Backfill depth (worker default when None)

        Returns:
            Message ID from Redis Stream
        """
        if self._redis_client is None:
            await self.connect()

        message: Dict[str, Any] = {
            "event_type": "FeeSyncRequested",
            "user_id": user_id,
            "kind": kind.value,
            "credential_ref": credential_ref,
            "marketplace_ids": json.dumps(marketplace_ids or []),
            "months_back": "" if months_back is None else str(months_back),
            "requested_at": datetime.now(timezone.utc).isoformat(),
        }

        try:
            msg_id = await self._redis_client.xadd(
                self.stream_name,
                message,
                maxlen=self.max_length,
                approximate=True,
            )
            logger.info(
                f"✅ Published FeeSyncRequested: user={user_id}, kind={kind.value}, "
                f"months_back={months_back}, msg_id={msg_id}"
            )
            return msg_id

        except Exception as e:
            logger.error(f"Failed to publish to Redis Stream: {e}", exc_info=True)
            raise

    async def __aenter__(self):
        await self.connect()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.disconnect()


# Global publisher instance (lazy initialization)
_global_publisher: Optional[RedisStreamPublisher] = None


def get_redis_stream_publisher(
    redis_url: Optional[str] = None,
    stream_name: Optional[str] = None,
) -> RedisStreamPublisher:
    """
    Get or create global Redis Stream Publisher instance.

    Args:
        redis_url: Optional Redis URL (REDIS_URL setting if None)
        stream_name: Optional stream name (REDIS_STREAM setting if None)

    Returns:
        Global RedisStreamPublisher instance
    """
    global _global_publisher

    if _global_publisher is None:
        from core.settings.modules.redis_settings import RedisSettings

        settings = RedisSettings()
        _global_publisher = RedisStreamPublisher(
            redis_url=redis_url or settings.url,
            stream_name=stream_name or settings.stream,
            max_length=settings.max_stream_length,
        )

    return _global_publisher
