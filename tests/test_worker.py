"""Tests for the queue worker and the queue handlers."""

import json
from datetime import UTC, datetime

import pytest
import structlog

from appointment_router.core.exceptions import DomainError, InfrastructureError, ValidationError
from appointment_router.domain.appointment import Appointment, AppointmentStatus, CountryISO
from appointment_router.domain.events import create_appointment_confirmed_event
from appointment_router.messaging.mapper import MessageMapper
from appointment_router.messaging.worker import QueueWorker, RetryableMessageError, WorkerConfig
from appointment_router.middleware.logging import configure_logging
from appointment_router.use_cases.create_appointment import creation_event
from appointment_router.workers.handlers import (
    completed_queue_handler,
    country_dead_letter_handler,
    country_queue_handler,
)
from appointment_router.workers.run import parse_args

QUEUE = "appointments:pe"
GROUP = "workers"


def config(**overrides) -> WorkerConfig:
    return WorkerConfig(stream_key=QUEUE, group_name=GROUP, consumer_name="worker-1", **overrides)


class ScriptedHandler:
    """Handler that raises the queued errors in order, then succeeds."""

    def __init__(self, *errors: Exception):
        self.errors = list(errors)
        self.calls: list[dict[str, str]] = []

    async def __call__(self, fields: dict[str, str]) -> None:
        self.calls.append(fields)
        if self.errors:
            raise self.errors.pop(0)


async def start_with(broker, *messages: dict[str, str]) -> None:
    await broker.create_group(QUEUE, GROUP)
    for fields in messages:
        await broker.publish(QUEUE, fields)


def test_dead_letter_stream_defaults_to_queue_name() -> None:
    assert config().dlq_stream_key == "appointments:pe:dlq"
    assert config(dlq_stream_key="dead").dlq_stream_key == "dead"


@pytest.mark.asyncio
async def test_handled_message_is_acknowledged(broker) -> None:
    await start_with(broker, {"n": "1"}, {"n": "2"})
    handler = ScriptedHandler()
    worker = QueueWorker(broker, config(), handler)

    assert await worker.process_batch() == 2

    assert [c["n"] for c in handler.calls] == ["1", "2"]
    assert broker.pending(QUEUE, GROUP) == {}
    assert worker.metrics.messages_succeeded == 2


@pytest.mark.asyncio
async def test_non_retryable_failure_is_discarded(broker) -> None:
    await start_with(broker, {"n": "1"})
    worker = QueueWorker(broker, config(), ScriptedHandler(ValidationError("bad message")))

    await worker.process_batch()

    assert broker.pending(QUEUE, GROUP) == {}
    assert worker.metrics.messages_discarded == 1
    assert broker.streams["appointments:pe:dlq"] == []


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "error",
    [
        RetryableMessageError("try again"),
        InfrastructureError("PE appointment write", "connection refused"),
        RuntimeError("boom"),
    ],
)
async def test_retryable_failure_stays_pending(broker, error: Exception) -> None:
    await start_with(broker, {"n": "1"})
    worker = QueueWorker(broker, config(), ScriptedHandler(error))

    await worker.process_batch()

    assert broker.pending(QUEUE, GROUP) == {"1-0": 1}
    assert worker.metrics.messages_retried == 1


@pytest.mark.asyncio
async def test_reclaimed_message_succeeds_on_redelivery(broker) -> None:
    await start_with(broker, {"n": "1"})
    handler = ScriptedHandler(RetryableMessageError("try again"))
    worker = QueueWorker(broker, config(), handler)

    await worker.process_batch()
    assert await worker.reclaim() == 1

    assert len(handler.calls) == 2
    assert broker.pending(QUEUE, GROUP) == {}
    assert worker.metrics.messages_claimed == 1


@pytest.mark.asyncio
async def test_message_is_dead_lettered_after_max_receive_count(broker) -> None:
    await start_with(broker, {"n": "1"})
    dead_letters: list[tuple[dict, str]] = []

    async def on_dead_letter(fields: dict[str, str], reason: str) -> None:
        dead_letters.append((fields, reason))

    handler = ScriptedHandler(*(RetryableMessageError("still down") for _ in range(5)))
    worker = QueueWorker(broker, config(max_receive_count=3), handler, on_dead_letter)

    await worker.process_batch()
    await worker.reclaim()
    assert dead_letters == []
    await worker.reclaim()

    assert len(handler.calls) == 3
    assert broker.pending(QUEUE, GROUP) == {}
    assert dead_letters == [({"n": "1"}, "still down")]

    [(_, dlq_fields)] = broker.streams["appointments:pe:dlq"]
    assert dlq_fields["n"] == "1"
    assert dlq_fields["dlq_reason"] == "still down"
    assert dlq_fields["original_message_id"] == "1-0"
    assert dlq_fields["delivery_count"] == "3"
    assert dlq_fields["consumer"] == "worker-1"
    assert worker.metrics.messages_dead_lettered == 1


@pytest.mark.asyncio
async def test_dead_letter_callback_failure_still_moves_message(broker) -> None:
    await start_with(broker, {"n": "1"})

    async def on_dead_letter(fields: dict[str, str], reason: str) -> None:
        raise RuntimeError("callback failed")

    worker = QueueWorker(broker, config(max_receive_count=1), ScriptedHandler(RuntimeError("boom")), on_dead_letter)

    await worker.process_batch()

    assert broker.pending(QUEUE, GROUP) == {}
    assert len(broker.streams["appointments:pe:dlq"]) == 1


def creation_fields(appointment: Appointment) -> dict[str, str]:
    event = creation_event(appointment)
    return MessageMapper().to_creation_message(event, appointment.country_iso.value).to_fields()


@pytest.mark.asyncio
async def test_country_handler_processes_message(service, repository, publisher, pe_store, pending_appointment) -> None:
    await repository.save(pending_appointment)

    await country_queue_handler(service, CountryISO.PE)(creation_fields(pending_appointment))

    assert pending_appointment.appointment_id in pe_store.records
    assert len(publisher.confirmed) == 1


@pytest.mark.asyncio
async def test_country_handler_raises_retryable_on_infrastructure_failure(
    service, repository, pe_store, pending_appointment
) -> None:
    await repository.save(pending_appointment)
    pe_store.fail_with = InfrastructureError("PE appointment write", "connection refused")

    with pytest.raises(RetryableMessageError):
        await country_queue_handler(service, CountryISO.PE)(creation_fields(pending_appointment))

    assert (await repository.find_by_id(pending_appointment.appointment_id)).is_pending()


@pytest.mark.asyncio
async def test_country_handler_fails_rejected_appointment(service, repository, cl_store) -> None:
    appointment = Appointment.create(
        insured_id="12345",
        schedule_id=100,
        country_iso="CL",
        slot_datetime=datetime(2026, 10, 24, 10, 0, tzinfo=UTC),
    )
    await repository.save(appointment)

    with pytest.raises(DomainError) as exc_info:
        await country_queue_handler(service, CountryISO.CL)(creation_fields(appointment))

    assert exc_info.value.code == "PROCESSING_REJECTED"
    assert (await repository.find_by_id(appointment.appointment_id)).status is AppointmentStatus.FAILED
    assert cl_store.records == {}


@pytest.mark.asyncio
async def test_country_handler_rejects_malformed_message(service) -> None:
    with pytest.raises(ValidationError):
        await country_queue_handler(service, CountryISO.PE)({"message": "{}"})


@pytest.mark.asyncio
async def test_dead_letter_handler_marks_appointment_failed(service, repository, pending_appointment) -> None:
    await repository.save(pending_appointment)

    await country_dead_letter_handler(service)(creation_fields(pending_appointment), "connection refused")

    assert (await repository.find_by_id(pending_appointment.appointment_id)).is_failed()


@pytest.mark.asyncio
async def test_completed_handler_confirms_appointment(service, repository, pending_appointment) -> None:
    await repository.save(pending_appointment)
    event = create_appointment_confirmed_event(
        appointment_id=pending_appointment.appointment_id,
        insured_id=pending_appointment.insured_id,
        schedule_id=pending_appointment.schedule_id,
        country_iso=CountryISO.PE,
        source="appointment_pe",
    )

    await completed_queue_handler(service)({"event": json.dumps(event.to_wire())})

    assert (await repository.find_by_id(pending_appointment.appointment_id)).is_completed()


@pytest.mark.asyncio
@pytest.mark.parametrize("fields", [{}, {"event": "not json"}])
async def test_completed_handler_rejects_malformed_event(service, fields: dict) -> None:
    with pytest.raises(ValidationError):
        await completed_queue_handler(service)(fields)


@pytest.mark.asyncio
async def test_misrouted_message_leaves_appointment_pending(service, repository, cl_store, pending_appointment) -> None:
    await repository.save(pending_appointment)

    with pytest.raises(DomainError):
        await country_queue_handler(service, CountryISO.CL)(creation_fields(pending_appointment))

    assert (await repository.find_by_id(pending_appointment.appointment_id)).is_pending()
    assert cl_store.records == {}


@pytest.mark.asyncio
async def test_invalid_message_for_known_appointment_leaves_it_pending(
    service, repository, pending_appointment
) -> None:
    await repository.save(pending_appointment)
    fields = creation_fields(pending_appointment)
    message = json.loads(fields["message"])
    message["data"]["insuredId"] = "1234"

    with pytest.raises(DomainError):
        await country_queue_handler(service, CountryISO.PE)({**fields, "message": json.dumps(message)})

    assert (await repository.find_by_id(pending_appointment.appointment_id)).is_pending()


@pytest.mark.parametrize(
    ("argv", "level", "log_format"),
    [
        (["pe"], None, None),
        (["cl", "--log-level", "debug", "--log-format", "console"], "debug", "console"),
    ],
)
def test_worker_cli_logging_options(argv: list[str], level: str | None, log_format: str | None) -> None:
    args = parse_args(argv)

    assert args.log_level == level
    assert args.log_format == log_format


def test_configure_logging_overrides_settings() -> None:
    try:
        configure_logging("debug", "console")
        assert isinstance(structlog.get_config()["processors"][-1], structlog.dev.ConsoleRenderer)
    finally:
        configure_logging(log_format="json")

    assert isinstance(structlog.get_config()["processors"][-1], structlog.processors.JSONRenderer)
