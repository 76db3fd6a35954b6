"""Message bus infrastructure - Redis Streams integration."""
from .redis_stream_publisher import (
    RedisStreamPublisher,
    get_redis_stream_publisher,
)
from .redis_stream_consumer import (
    RedisStreamConsumer,
    parse_sync_job,
    process_fee_sync_job,
    start_fee_sync_worker,
)

__all__ = [
    "RedisStreamPublisher",
    "get_redis_stream_publisher",
    "RedisStreamConsumer",
    "parse_sync_job",
    "process_fee_sync_job",
    "start_fee_sync_worker",
]
