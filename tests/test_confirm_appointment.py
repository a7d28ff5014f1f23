"""Tests for confirmation, failure and the reconciliation sweep."""

from datetime import timedelta

import pytest

from appointment_router.core.exceptions import (
    ConflictError,
    DomainError,
    InfrastructureError,
    NotFoundError,
    ValidationError,
)
from appointment_router.domain.appointment import Appointment, AppointmentStatus, CountryISO, utc_now
from appointment_router.domain.events import create_appointment_confirmed_event
from appointment_router.use_cases.confirm_appointment import ConfirmAppointment


def confirmed_event(appointment: Appointment, **overrides) -> dict:
    values = {
        "appointment_id": appointment.appointment_id,
        "insured_id": appointment.insured_id,
        "schedule_id": appointment.schedule_id,
        "country_iso": appointment.country_iso,
        "source": "appointment_pe",
        **overrides,
    }
    return create_appointment_confirmed_event(**values).to_wire()


@pytest.mark.asyncio
async def test_confirm_completes_pending_appointment(service, repository, pending_appointment) -> None:
    await repository.save(pending_appointment)

    result = await service.confirm_appointment_from_event(confirmed_event(pending_appointment))

    assert result.previous_status is AppointmentStatus.PENDING
    assert result.new_status is AppointmentStatus.COMPLETED
    assert result.processed_by == "appointment_pe"
    stored = await repository.find_by_id(pending_appointment.appointment_id)
    assert stored.is_completed()
    assert stored.updated_at >= pending_appointment.updated_at


@pytest.mark.asyncio
async def test_replayed_confirmation_is_idempotent(service, repository, pending_appointment) -> None:
    await repository.save(pending_appointment)
    event = confirmed_event(pending_appointment)
    first = await service.confirm_appointment_from_event(event)
    writes = repository.update_calls

    replay = await service.confirm_appointment_from_event(event)

    assert replay.previous_status is AppointmentStatus.COMPLETED
    assert replay.updated_at == first.updated_at
    assert repository.update_calls == writes


@pytest.mark.asyncio
async def test_confirm_unknown_appointment(service, pending_appointment) -> None:
    with pytest.raises(NotFoundError):
        await service.confirm_appointment_from_event(confirmed_event(pending_appointment))


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "overrides",
    [
        {"insured_id": "54321"},
        {"country_iso": CountryISO.CL, "source": "appointment_cl"},
        {"source": "appointment_cl"},
    ],
)
async def test_confirm_rejects_event_for_other_subject(service, repository, pending_appointment, overrides) -> None:
    await repository.save(pending_appointment)

    with pytest.raises(ValidationError):
        await service.confirm_appointment_from_event(confirmed_event(pending_appointment, **overrides))

    assert (await repository.find_by_id(pending_appointment.appointment_id)).is_pending()


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "event",
    [
        None,
        {"source": "other", "detail-type": "AppointmentConfirmed", "detail": {}},
        {"source": "rimac.appointment", "detail-type": "AppointmentCreated", "detail": {}},
        {"source": "rimac.appointment", "detail-type": "AppointmentConfirmed"},
        {"source": "rimac.appointment", "detail-type": "AppointmentConfirmed", "detail": {"appointmentId": "x"}},
    ],
)
async def test_confirm_rejects_malformed_events(service, event) -> None:
    with pytest.raises(ValidationError):
        await service.confirm_appointment_from_event(event)


@pytest.mark.asyncio
async def test_confirm_failed_appointment(service, repository, pending_appointment) -> None:
    await repository.save(pending_appointment)
    await service.fail_appointment(pending_appointment.appointment_id, "retries exhausted")

    result = await service.confirm_appointment_from_event(confirmed_event(pending_appointment))

    assert result.previous_status is AppointmentStatus.FAILED
    assert (await repository.find_by_id(pending_appointment.appointment_id)).is_completed()


@pytest.mark.asyncio
async def test_confirmation_that_loses_a_race(repository, pending_appointment) -> None:
    await repository.save(pending_appointment)

    class RacingRepository(type(repository)):
        async def update_status(self, appointment, expected_status):
            # Another consumer confirms first
            self.items[appointment.appointment_id] = appointment
            return None

    racing = RacingRepository()
    racing.items = dict(repository.items)
    event = confirmed_event(pending_appointment)

    result = await ConfirmAppointment(racing).execute_from_event(event)

    assert result.previous_status is AppointmentStatus.COMPLETED


@pytest.mark.asyncio
async def test_confirmation_overrides_concurrent_failure(repository, pending_appointment) -> None:
    await repository.save(pending_appointment)

    class RacingRepository(type(repository)):
        raced = False

        async def update_status(self, appointment, expected_status):
            if not self.raced:
                # Retries run out on another consumer just before the write
                self.raced = True
                self.items[appointment.appointment_id] = self.items[appointment.appointment_id].mark_as_failed()
                return None
            return await super().update_status(appointment, expected_status)

    racing = RacingRepository()
    racing.items = dict(repository.items)

    result = await ConfirmAppointment(racing).execute_from_event(confirmed_event(pending_appointment))

    assert result.previous_status is AppointmentStatus.FAILED
    assert result.new_status is AppointmentStatus.COMPLETED
    assert racing.items[pending_appointment.appointment_id].is_completed()


@pytest.mark.asyncio
async def test_confirmation_conflict_when_status_keeps_changing(repository, pending_appointment) -> None:
    await repository.save(pending_appointment)

    class RacingRepository(type(repository)):
        async def update_status(self, appointment, expected_status):
            self.items[appointment.appointment_id] = self.items[appointment.appointment_id].mark_as_failed()
            return None

    racing = RacingRepository()
    racing.items = dict(repository.items)

    with pytest.raises(ConflictError):
        await ConfirmAppointment(racing).execute_from_event(confirmed_event(pending_appointment))


@pytest.mark.asyncio
async def test_batch_confirmation_collects_failures(service, repository) -> None:
    first = Appointment.create(insured_id="12345", schedule_id=1, country_iso="PE")
    second = Appointment.create(insured_id="12345", schedule_id=2, country_iso="PE")
    await repository.save(first)
    await repository.save(second)
    unknown = Appointment.create(insured_id="12345", schedule_id=3, country_iso="PE")

    batch = await service.confirm_appointments_batch(
        [confirmed_event(first), {"source": "nope"}, confirmed_event(unknown), confirmed_event(second)]
    )

    assert [r.appointment_id for r in batch.succeeded] == [first.appointment_id, second.appointment_id]
    assert [(f.index, f.code) for f in batch.failed] == [(1, "VALIDATION_ERROR"), (2, "NOT_FOUND")]
    assert batch.failed[1].appointment_id == unknown.appointment_id


@pytest.mark.asyncio
async def test_fail_appointment(service, repository, pending_appointment) -> None:
    await repository.save(pending_appointment)

    result = await service.fail_appointment(pending_appointment.appointment_id, "rejected by country")

    assert result.previous_status is AppointmentStatus.PENDING
    assert result.new_status is AppointmentStatus.FAILED
    assert result.reason == "rejected by country"
    assert (await repository.find_by_id(pending_appointment.appointment_id)).is_failed()


@pytest.mark.asyncio
async def test_fail_unknown_appointment(service, pending_appointment) -> None:
    with pytest.raises(NotFoundError):
        await service.fail_appointment(pending_appointment.appointment_id, "gone")


@pytest.mark.asyncio
async def test_completed_appointment_cannot_fail(service, repository, pending_appointment) -> None:
    await repository.save(pending_appointment)
    await service.confirm_appointment_from_event(confirmed_event(pending_appointment))

    with pytest.raises(DomainError) as exc_info:
        await service.fail_appointment(pending_appointment.appointment_id, "too late")

    assert exc_info.value.code == "CANNOT_FAIL_COMPLETED"


@pytest.mark.asyncio
async def test_republish_pending_appointments(service, repository, publisher) -> None:
    stale = Appointment.create(insured_id="12345", schedule_id=1, country_iso="PE")
    done = Appointment.create(insured_id="12345", schedule_id=2, country_iso="CL")
    await repository.save(stale)
    await repository.save(done)
    await repository.update_status(done.mark_as_completed(), AppointmentStatus.PENDING)

    republished = await service.republish_pending(utc_now() + timedelta(seconds=1))

    assert republished == 1
    [event] = publisher.events
    assert event["detail"]["appointmentId"] == stale.appointment_id
    assert await service.republish_pending(stale.created_at - timedelta(seconds=1)) == 0


@pytest.mark.asyncio
async def test_republish_skips_failed_publishes(service, repository, publisher, pending_appointment) -> None:
    await repository.save(pending_appointment)
    publisher.fail_with = InfrastructureError("appointment publish", "connection refused")

    assert await service.republish_pending(utc_now() + timedelta(seconds=1)) == 0
