"""
Worker entry point.

Usage:
    python -m appointment_router.workers.run pe
    python -m appointment_router.workers.run cl
    python -m appointment_router.workers.run completed
    python -m appointment_router.workers.run reconcile [--interval SECONDS]
    python -m appointment_router.workers.run pe --log-level debug --log-format console
"""

import argparse
import asyncio
from datetime import timedelta

import structlog

from appointment_router.config import Settings, settings
from appointment_router.container import Container, build_container, queue_for
from appointment_router.domain.appointment import CountryISO, utc_now
from appointment_router.messaging.worker import QueueWorker, WorkerConfig
from appointment_router.middleware.logging import configure_logging
from appointment_router.workers.handlers import (
    completed_queue_handler,
    country_dead_letter_handler,
    country_queue_handler,
)

logger = structlog.get_logger(__name__)


def worker_config(app_settings: Settings, stream_key: str) -> WorkerConfig:
    return WorkerConfig(
        stream_key=stream_key,
        group_name=app_settings.consumer_group,
        consumer_name=app_settings.consumer_name,
        max_receive_count=app_settings.max_receive_count,
        batch_size=app_settings.batch_size,
        block_ms=app_settings.block_ms,
        claim_idle_ms=app_settings.claim_idle_ms,
    )


def build_worker(container: Container, target: str) -> QueueWorker:
    """
    Build the worker for a queue.

    Args:
        container: Wired dependencies
        target: ``pe``, ``cl`` or ``completed``
    """
    service = container.service

    if target == "completed":
        return QueueWorker(
            container.broker,
            worker_config(container.settings, container.settings.queue_completed),
            completed_queue_handler(service),
        )

    country = CountryISO(target.upper())
    return QueueWorker(
        container.broker,
        worker_config(container.settings, queue_for(container.settings, country)),
        country_queue_handler(service, country),
        on_dead_letter=country_dead_letter_handler(service),
    )


async def reconcile(container: Container, interval: float | None) -> None:
    """Republish stale pending appointments once, or every ``interval`` seconds."""
    while True:
        cutoff = utc_now() - timedelta(seconds=container.settings.reconcile_pending_after_seconds)
        await container.service.republish_pending(cutoff)
        if interval is None:
            return
        await asyncio.sleep(interval)


async def main(target: str, interval: float | None = None) -> None:
    container = build_container(settings)
    try:
        if target == "reconcile":
            await reconcile(container, interval)
        else:
            await build_worker(container, target).run()
    finally:
        await container.close()


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Run an appointment queue worker")
    parser.add_argument("target", choices=["pe", "cl", "completed", "reconcile"])
    parser.add_argument(
        "--interval",
        type=float,
        default=None,
        help="Repeat reconciliation every N seconds instead of running once",
    )
    parser.add_argument("--log-level", default=None, help="Overrides LOG_LEVEL")
    parser.add_argument("--log-format", choices=["json", "console"], default=None, help="Overrides LOG_FORMAT")
    return parser.parse_args(argv)


if __name__ == "__main__":
    args = parse_args()
    configure_logging(args.log_level, args.log_format)
    logger.info("worker_process_starting", target=args.target)
    try:
        asyncio.run(main(args.target, args.interval))
    except KeyboardInterrupt:
        logger.info("worker_process_interrupted", target=args.target)
