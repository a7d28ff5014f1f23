"""
Redis Streams broker.

Thin async wrapper around the stream commands the queues and topics need:
append, consumer groups, acknowledgement and recovery of stuck deliveries.
"""

from typing import Any

import redis.asyncio as redis
import structlog

logger = structlog.get_logger(__name__)

StreamEntry = tuple[str, dict[str, str]]


class EventBroker:
    """Wrapper around Redis Streams used as durable queues."""

    def __init__(self, redis_client: redis.Redis, max_len: int = 100000):
        """
        Initialize broker.

        Args:
            redis_client: Redis client created with ``decode_responses=True``
            max_len: Approximate maximum length of every stream
        """
        self.redis = redis_client
        self.max_len = max_len

    async def publish(self, stream_key: str, fields: dict[str, str]) -> str:
        """
        Append an entry to a stream.

        Returns:
            The stream entry ID
        """
        try:
            return await self.redis.xadd(stream_key, fields, maxlen=self.max_len, approximate=True)
        except redis.RedisError as e:
            logger.error("stream_publish_failed", stream=stream_key, error=str(e))
            raise

    async def create_group(self, stream_key: str, group_name: str, start_id: str = "0") -> bool:
        """
        Create a consumer group if it doesn't exist.

        Returns:
            True if created, False if it already existed
        """
        try:
            await self.redis.xgroup_create(stream_key, group_name, id=start_id, mkstream=True)
            return True
        except redis.ResponseError as e:
            if "BUSYGROUP" in str(e):
                return False
            raise

    async def consume_group(
        self,
        group_name: str,
        consumer_name: str,
        stream_key: str,
        count: int = 10,
        block: int = 1000,
    ) -> list[StreamEntry]:
        """Read new entries for this consumer (XREADGROUP with ``>``)."""
        response = await self.redis.xreadgroup(
            groupname=group_name,
            consumername=consumer_name,
            streams={stream_key: ">"},
            count=count,
            block=block,
        )
        entries: list[StreamEntry] = []
        for _stream, messages in response or []:
            entries.extend((message_id, data) for message_id, data in messages if data)
        return entries

    async def ack(self, stream_key: str, group_name: str, *message_ids: str) -> None:
        """Acknowledge processed entries."""
        if message_ids:
            await self.redis.xack(stream_key, group_name, *message_ids)

    async def claim_stuck_messages(
        self,
        stream_key: str,
        group_name: str,
        consumer_name: str,
        min_idle_time: int = 60000,
        count: int = 10,
    ) -> list[StreamEntry]:
        """
        Claim entries pending longer than ``min_idle_time`` ms (XAUTOCLAIM).

        Claiming counts as a new delivery of the entry.
        """
        response = await self.redis.xautoclaim(
            stream_key,
            group_name,
            consumer_name,
            min_idle_time,
            start_id="0-0",
            count=count,
        )
        messages = response[1]
        return [(message_id, data) for message_id, data in messages if data]

    async def delivery_count(self, stream_key: str, group_name: str, message_id: str) -> int:
        """Number of times an entry has been delivered to the group."""
        pending: list[dict[str, Any]] = await self.redis.xpending_range(
            stream_key,
            group_name,
            min=message_id,
            max=message_id,
            count=1,
        )
        if not pending:
            return 0
        return int(pending[0]["times_delivered"])
