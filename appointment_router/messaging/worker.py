"""
Queue worker for Redis Streams consumer groups.

Delivery is at-least-once:
- a handled message is acknowledged
- a non-retryable failure (``AppException`` other than ``InfrastructureError``)
  is logged and acknowledged, so poison messages are consumed
- a retryable failure stays pending; it is reclaimed after ``claim_idle_ms``
  and redelivered, and after ``max_receive_count`` deliveries it is moved to
  the dead-letter stream
"""

import asyncio
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import Any

import structlog

from appointment_router.core.exceptions import AppException, InfrastructureError
from appointment_router.domain.appointment import utc_now
from appointment_router.messaging.broker import EventBroker

logger = structlog.get_logger(__name__)

MessageHandler = Callable[[dict[str, str]], Awaitable[None]]
DeadLetterCallback = Callable[[dict[str, str], str], Awaitable[None]]


class RetryableMessageError(Exception):
    """Raised by a handler to leave the message pending for redelivery."""


@dataclass
class WorkerConfig:
    """Configuration for a queue worker."""

    stream_key: str
    group_name: str
    consumer_name: str
    max_receive_count: int = 3
    batch_size: int = 10
    block_ms: int = 1000
    claim_idle_ms: int = 30000
    claim_interval: float = 30.0
    dlq_stream_key: str | None = None

    def __post_init__(self) -> None:
        if not self.dlq_stream_key:
            self.dlq_stream_key = f"{self.stream_key}:dlq"


@dataclass
class WorkerMetrics:
    """Counters for a queue worker."""

    messages_processed: int = 0
    messages_succeeded: int = 0
    messages_retried: int = 0
    messages_discarded: int = 0
    messages_dead_lettered: int = 0
    messages_claimed: int = 0
    loop_errors: int = 0
    started_at: float = field(default_factory=time.time)

    def to_dict(self) -> dict[str, Any]:
        return {
            "messages_processed": self.messages_processed,
            "messages_succeeded": self.messages_succeeded,
            "messages_retried": self.messages_retried,
            "messages_discarded": self.messages_discarded,
            "messages_dead_lettered": self.messages_dead_lettered,
            "messages_claimed": self.messages_claimed,
            "loop_errors": self.loop_errors,
            "uptime_seconds": time.time() - self.started_at,
        }


class QueueWorker:
    """
    Consumes one queue with a consumer group.

    Usage:
        worker = QueueWorker(broker, config, handler)
        await worker.run()
    """

    def __init__(
        self,
        broker: EventBroker,
        config: WorkerConfig,
        handler: MessageHandler,
        on_dead_letter: DeadLetterCallback | None = None,
    ):
        self.broker = broker
        self.config = config
        self.handler = handler
        self.on_dead_letter = on_dead_letter
        self.metrics = WorkerMetrics()
        self.log = logger.bind(queue=config.stream_key, consumer=config.consumer_name)

        self._running = False
        self._tasks: list[asyncio.Task] = []

    async def start(self) -> None:
        """Create the consumer group and start the consume and claim loops."""
        if self._running:
            self.log.warning("worker_already_running")
            return

        created = await self.broker.create_group(self.config.stream_key, self.config.group_name)
        self.log.info("worker_started", group=self.config.group_name, group_created=created)

        self._running = True
        self._tasks = [
            asyncio.create_task(self._consume_loop(), name=f"consume_{self.config.consumer_name}"),
            asyncio.create_task(self._claim_loop(), name=f"claim_{self.config.consumer_name}"),
        ]

    async def stop(self) -> None:
        """Stop both loops; pending messages stay in the group."""
        if not self._running:
            return

        self._running = False
        for task in self._tasks:
            task.cancel()
        await asyncio.gather(*self._tasks, return_exceptions=True)
        self._tasks = []

        self.log.info("worker_stopped", metrics=self.metrics.to_dict())

    async def run(self) -> None:
        """Start and block until the loops end or the worker is cancelled."""
        await self.start()
        try:
            await asyncio.gather(*self._tasks)
        finally:
            await self.stop()

    async def process_batch(self) -> int:
        """Read and handle one batch of new messages; returns how many were read."""
        entries = await self.broker.consume_group(
            group_name=self.config.group_name,
            consumer_name=self.config.consumer_name,
            stream_key=self.config.stream_key,
            count=self.config.batch_size,
            block=self.config.block_ms,
        )
        for message_id, fields in entries:
            await self.process_message(message_id, fields)
        return len(entries)

    async def reclaim(self) -> int:
        """Claim and handle messages left pending past the idle timeout."""
        entries = await self.broker.claim_stuck_messages(
            stream_key=self.config.stream_key,
            group_name=self.config.group_name,
            consumer_name=self.config.consumer_name,
            min_idle_time=self.config.claim_idle_ms,
            count=self.config.batch_size,
        )
        if entries:
            self.metrics.messages_claimed += len(entries)
            self.log.info("worker_messages_claimed", count=len(entries))

        for message_id, fields in entries:
            await self.process_message(message_id, fields)
        return len(entries)

    async def process_message(self, message_id: str, fields: dict[str, str]) -> None:
        """Run the handler for one message and settle it."""
        self.metrics.messages_processed += 1
        log = self.log.bind(message_id=message_id)

        try:
            await self.handler(fields)
        except (RetryableMessageError, InfrastructureError) as e:
            await self._handle_retryable(message_id, fields, str(e))
            return
        except AppException as e:
            log.warning("worker_message_discarded", code=e.code, error=e.message)
            self.metrics.messages_discarded += 1
            await self._ack(message_id)
            return
        except Exception as e:
            log.exception("worker_message_unexpected_error", error=str(e))
            await self._handle_retryable(message_id, fields, str(e))
            return

        self.metrics.messages_succeeded += 1
        await self._ack(message_id)
        log.debug("worker_message_acknowledged")

    async def _handle_retryable(self, message_id: str, fields: dict[str, str], reason: str) -> None:
        deliveries = await self.broker.delivery_count(
            self.config.stream_key,
            self.config.group_name,
            message_id,
        )

        if deliveries >= self.config.max_receive_count:
            await self._dead_letter(message_id, fields, reason, deliveries)
            return

        self.metrics.messages_retried += 1
        self.log.warning(
            "worker_message_left_pending",
            message_id=message_id,
            deliveries=deliveries,
            max_receive_count=self.config.max_receive_count,
            error=reason,
        )

    async def _dead_letter(
        self,
        message_id: str,
        fields: dict[str, str],
        reason: str,
        deliveries: int,
    ) -> None:
        log = self.log.bind(message_id=message_id, deliveries=deliveries)

        if self.on_dead_letter is not None:
            try:
                await self.on_dead_letter(fields, reason)
            except Exception as e:
                log.exception("worker_dead_letter_callback_failed", error=str(e))

        await self.broker.publish(
            self.config.dlq_stream_key,
            {
                **fields,
                "dlq_reason": reason,
                "original_message_id": message_id,
                "delivery_count": str(deliveries),
                "consumer": self.config.consumer_name,
                "dead_lettered_at": utc_now().isoformat(),
            },
        )
        await self._ack(message_id)

        self.metrics.messages_dead_lettered += 1
        log.error("worker_message_dead_lettered", dlq=self.config.dlq_stream_key, reason=reason)

    async def _ack(self, message_id: str) -> None:
        await self.broker.ack(self.config.stream_key, self.config.group_name, message_id)

    async def _consume_loop(self) -> None:
        while self._running:
            try:
                await self.process_batch()
            except asyncio.CancelledError:
                break
            except Exception as e:
                self.metrics.loop_errors += 1
                self.log.error("worker_consume_error", error=str(e))
                await asyncio.sleep(1.0)

    async def _claim_loop(self) -> None:
        while self._running:
            try:
                await asyncio.sleep(self.config.claim_interval)
                await self.reclaim()
            except asyncio.CancelledError:
                break
            except Exception as e:
                self.metrics.loop_errors += 1
                self.log.error("worker_claim_error", error=str(e))
                await asyncio.sleep(5.0)
