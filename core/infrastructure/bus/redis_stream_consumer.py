"""
Redis Streams Consumer for background fee sync jobs.

Consumes FeeSyncRequested messages and runs them through FeeSyncService.
"""
import asyncio
import json
import logging
from typing import Any, Dict, List, Optional

import redis.asyncio as aioredis

from core.application.services.fee_sync_service import FeeSyncService
from core.domain.enums import SyncKind
from core.domain.exceptions import SyncAlreadyRunningError
from core.infrastructure.logging import configure_logging
from core.settings.modules.redis_settings import RedisSettings


logger = logging.getLogger(__name__)


class RedisStreamConsumer:
    """
    Consumes fee sync jobs from a Redis Stream.

    Features:
    - Consumer groups (several workers share one stream)
    - Message acknowledgment (ACK) after the run finished
    - Failed runs stay pending for inspection; unparseable messages are dropped
    """

    def __init__(
        self,
        redis_url: str = "redis://localhost:6379/0",
        stream_name: str = "feeledger:fee-sync:stream",
        consumer_group: str = "feeledger:fee-sync:workers",
        consumer_name: str = "fee-sync-worker-1",
    ):
        """
        Initialize Redis Stream Consumer.

        Args:
            redis_url: Redis connection URL
            stream_name: Redis Stream name
            consumer_group: Consumer group name
            consumer_name: Unique consumer name within the group
        """
        self.redis_url = redis_url
        self.stream_name = stream_name
        self.consumer_group = consumer_group
        self.consumer_name = consumer_name
        self._redis_client: Optional[aioredis.Redis] = None

    @classmethod
    def from_settings(cls, settings: RedisSettings) -> "RedisStreamConsumer":
        return cls(
            redis_url=settings.url,
            stream_name=settings.stream,
            consumer_group=settings.consumer_group,
            consumer_name=settings.consumer_name,
        )

    async def connect(self) -> None:
        """Establish Redis connection and create the consumer group."""
        if self._redis_client is not None:
            return

        self._redis_client = aioredis.from_url(
            self.redis_url,
            encoding="utf-8",
            decode_responses=True,
        )
        try:
            await self._redis_client.ping()
            logger.info(f"✅ Connected to Redis: {self.redis_url}")
            await self._redis_client.xgroup_create(
                name=self.stream_name,
                groupname=self.consumer_group,
                id="0",
                mkstream=True,
            )
            logger.info(f"✅ Created consumer group: {self.consumer_group}")
        except aioredis.ResponseError as e:
            if "BUSYGROUP" not in str(e):
                raise
            logger.info(f"Consumer group {self.consumer_group} already exists")

    async def disconnect(self) -> None:
        """Close Redis connection."""
        if self._redis_client:
            await self._redis_client.aclose()
            self._redis_client = None
            logger.info("✅ Disconnected from Redis")

    async def consume_messages(self, batch_size: int = 10, block_ms: int = 1000) -> List[Dict[str, Any]]:
        """
        Read new messages for this consumer.

        Returns:
            List of message dictionaries with 'id' and 'data' keys
        """
        if self._redis_client is None:
            await self.connect()

        messages = await self._redis_client.xreadgroup(
            groupname=self.consumer_group,
            consumername=self.consumer_name,
            streams={self.stream_name: ">"},
            count=batch_size,
            block=block_ms,
        )
        if not messages:
            return []

        return [
            {"id": msg_id, "data": msg_data}
            for _, stream_messages in messages
            for msg_id, msg_data in stream_messages
        ]

    async def acknowledge_message(self, message_id: str) -> None:
        """Acknowledge a processed message so it leaves the pending list."""
        if self._redis_client is None:
            await self.connect()
        await self._redis_client.xack(self.stream_name, self.consumer_group, message_id)
        logger.debug(f"✅ Acknowledged message: {message_id}")

    async def __aenter__(self):
        await self.connect()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.disconnect()


def parse_sync_job(data: Dict[str, str]) -> Dict[str, Any]:
    """
    Decode a FeeSyncRequested message.

    Raises:
        ValueError: If user_id or kind is missing or invalid
    """
    user_id = data.get("user_id")
    if not user_id:
        raise ValueError("FeeSyncRequested message without user_id")

    months_back = data.get("months_back")
    return {
        "kind": SyncKind(data.get("kind", SyncKind.SETTLEMENT.value)),
        "user_id": user_id,
        "credential_ref": data.get("credential_ref") or "default",
        "marketplace_ids": json.loads(data.get("marketplace_ids") or "[]") or None,
        "months_back": int(months_back) if months_back else None,
    }


async def process_fee_sync_job(
    message: Dict[str, Any],
    consumer: RedisStreamConsumer,
    service: FeeSyncService,
) -> None:
    """
    Run one fee sync job from a Redis Stream message.

    The message is acknowledged once the run finished (DONE or FAILED;
    the outcome is on the SyncRun row), when the same run is already
    in progress, or when the message cannot be decoded into a job.

    Raises:
        Exception: If the job could not be run (message stays pending)
    """
    message_id = message["id"]
    try:
        job = parse_sync_job(message["data"])
    except ValueError as e:
        # would fail the same way on every redelivery
        logger.error(f"❌ Dropping unparseable job {message_id}: {e}")
        await consumer.acknowledge_message(message_id)
        return

    logger.info(
        f"📨 Processing FeeSyncRequested: user={job['user_id']}, kind={job['kind'].value}, "
        f"msg_id={message_id}"
    )

    try:
        result = await service.run(**job)
    except SyncAlreadyRunningError as e:
        logger.warning(f"⚠️ {e}; dropping duplicate job {message_id}")
        await consumer.acknowledge_message(message_id)
        return

    await consumer.acknowledge_message(message_id)
    logger.info(
        f"✅ Job {message_id} finished: run={result.execution_id}, state={result.state.value}, "
        f"counters={result.counters.to_dict()}"
    )


async def start_fee_sync_worker(
    service: Optional[FeeSyncService] = None,
    settings: Optional[RedisSettings] = None,
    poll_interval: float = 1.0,
) -> None:
    """
    Start fee sync worker (long-running process).

    Args:
        service: FeeSyncService (built from settings if None)
        settings: Redis settings (loaded from env if None)
        poll_interval: Time to wait between empty polls (seconds)
    """
    if service is None:
        from core.infrastructure.bootstrap import create_fee_sync_service
        service = create_fee_sync_service()

    consumer = RedisStreamConsumer.from_settings(settings or RedisSettings())

    logger.info("🚀 Starting Fee Sync Worker...")
    logger.info(f"   Stream: {consumer.stream_name}")
    logger.info(f"   Consumer Group: {consumer.consumer_group}")
    logger.info(f"   Consumer Name: {consumer.consumer_name}")

    try:
        await consumer.connect()

        while True:
            try:
                messages = await consumer.consume_messages(batch_size=1, block_ms=1000)
                if not messages:
                    await asyncio.sleep(poll_interval)
                    continue

                for message in messages:
                    try:
                        await process_fee_sync_job(message, consumer, service)
                    except Exception as e:
                        logger.error(f"Failed to process message {message['id']}: {e}", exc_info=True)

            except aioredis.ConnectionError as e:
                logger.error(f"Worker lost Redis connection: {e}")
                await asyncio.sleep(poll_interval)

    finally:
        await consumer.disconnect()
        logger.info("✅ Fee Sync Worker stopped")


def main() -> None:
    """Console entry point of the worker."""
    configure_logging()
    try:
        asyncio.run(start_fee_sync_worker())
    except KeyboardInterrupt:
        logger.info("🛑 Fee Sync Worker interrupted")
