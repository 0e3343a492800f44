from datetime import time

import pytest

from medbook.models.appointment import CANCELLED, COMPLETED, CONFIRMED, PENDING
from medbook.models.user import ADMIN_ROLE, DOCTOR_ROLE, PATIENT_ROLE
from medbook.services.appointments import AppointmentStateMachine
from medbook.services.errors import AppointmentNotFound, InvalidTransition, Unauthorized
from medbook.services.slot_registry import SlotRegistry


@pytest.fixture
def booked(db, patient, doctor, slot):
    SlotRegistry(db).reserve(slot.id)
    appointment = AppointmentStateMachine(db).create(patient.id, doctor.id, slot.id)
    db.commit()
    return appointment


def test_create_defaults_to_confirmed(booked) -> None:
    assert booked.status == CONFIRMED


def test_create_rejects_terminal_status(db, patient, doctor, slot) -> None:
    with pytest.raises(InvalidTransition):
        AppointmentStateMachine(db).create(patient.id, doctor.id, slot.id, status=COMPLETED)


def test_get_missing_appointment(db) -> None:
    with pytest.raises(AppointmentNotFound):
        AppointmentStateMachine(db).get(42)


def test_patient_cancel_releases_slot(db, booked, patient, slot) -> None:
    cancelled = AppointmentStateMachine(db).cancel(booked.id, patient.id, PATIENT_ROLE)

    assert cancelled.status == CANCELLED
    db.refresh(slot)
    assert slot.is_booked is False


def test_doctor_can_cancel_own_appointment(db, booked, doctor) -> None:
    cancelled = AppointmentStateMachine(db).cancel(booked.id, doctor.id, DOCTOR_ROLE)

    assert cancelled.status == CANCELLED


@pytest.mark.parametrize(
    ('actor_id', 'actor_role'),
    [
        (999, PATIENT_ROLE),
        (999, DOCTOR_ROLE),
        (1, ADMIN_ROLE),
    ],
)
def test_cancel_rejects_non_owner(db, booked, slot, actor_id: int, actor_role: str) -> None:
    with pytest.raises(Unauthorized):
        AppointmentStateMachine(db).cancel(booked.id, actor_id, actor_role)

    db.refresh(booked)
    db.refresh(slot)
    assert booked.status == CONFIRMED
    assert slot.is_booked is True


def test_cancel_twice_is_invalid(db, booked, patient) -> None:
    machine = AppointmentStateMachine(db)
    machine.cancel(booked.id, patient.id, PATIENT_ROLE)

    with pytest.raises(InvalidTransition):
        machine.cancel(booked.id, patient.id, PATIENT_ROLE)


def test_completed_appointment_cannot_be_cancelled(db, booked, patient, slot) -> None:
    machine = AppointmentStateMachine(db)
    machine.complete(booked.id)

    with pytest.raises(InvalidTransition):
        machine.cancel(booked.id, patient.id, PATIENT_ROLE)

    db.refresh(slot)
    assert slot.is_booked is True


def test_confirm_moves_pending_to_confirmed(db, patient, doctor, slot) -> None:
    machine = AppointmentStateMachine(db)
    appointment = machine.create(patient.id, doctor.id, slot.id, status=PENDING)
    db.commit()

    assert machine.confirm(appointment.id).status == CONFIRMED


def test_confirm_rejects_confirmed_appointment(db, booked) -> None:
    with pytest.raises(InvalidTransition):
        AppointmentStateMachine(db).confirm(booked.id)


def test_complete_requires_confirmed(db, patient, doctor, slot) -> None:
    machine = AppointmentStateMachine(db)
    appointment = machine.create(patient.id, doctor.id, slot.id, status=PENDING)
    db.commit()

    with pytest.raises(InvalidTransition):
        machine.complete(appointment.id)


def test_list_for_patient_is_newest_first(db, patient, doctor, make_slot) -> None:
    morning = make_slot(doctor.id, start=time(9, 0), end=time(9, 30))
    noon = make_slot(doctor.id, start=time(12, 0), end=time(12, 30))

    machine = AppointmentStateMachine(db)
    first = machine.create(patient.id, doctor.id, morning.id)
    second = machine.create(patient.id, doctor.id, noon.id)
    db.commit()

    assert [appointment.id for appointment in machine.list_for_patient(patient.id)] == [second.id, first.id]
    assert [appointment.id for appointment in machine.list_for_doctor(doctor.id)] == [second.id, first.id]


def test_list_all_spans_patients_newest_first(db, patient, doctor, make_patient, make_slot) -> None:
    other = make_patient(email='another@example.com')
    morning = make_slot(doctor.id, start=time(9, 0), end=time(9, 30))
    noon = make_slot(doctor.id, start=time(12, 0), end=time(12, 30))

    machine = AppointmentStateMachine(db)
    first = machine.create(patient.id, doctor.id, morning.id)
    second = machine.create(other.id, doctor.id, noon.id)
    db.commit()

    assert [appointment.id for appointment in machine.list_all()] == [second.id, first.id]
