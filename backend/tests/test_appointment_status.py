# tests/test_appointment_status.py
from datetime import date

import pytest

from hms.config.constants import AppointmentStatus as S, Role
from hms.core.errors import Conflict, Forbidden
from hms.db.crud.appointment import get_appointment
from hms.services import scheduling

DAY = date(2026, 11, 3)


@pytest.mark.parametrize(
    "current, target",
    [
        (S.SCHEDULED, S.IN_PROGRESS),
        (S.SCHEDULED, S.CANCELLED),
        (S.IN_PROGRESS, S.COMPLETED),
        (S.IN_PROGRESS, S.CANCELLED),
    ],
)
def test_allowed_transitions(current, target):
    assert scheduling.transition_status(current, target) == target


@pytest.mark.parametrize(
    "current, target",
    [
        (S.SCHEDULED, S.COMPLETED),
        (S.SCHEDULED, S.SCHEDULED),
        (S.IN_PROGRESS, S.SCHEDULED),
        (S.COMPLETED, S.CANCELLED),
        (S.COMPLETED, S.IN_PROGRESS),
        (S.CANCELLED, S.SCHEDULED),
        (S.CANCELLED, S.IN_PROGRESS),
    ],
)
def test_rejected_transitions(current, target):
    with pytest.raises(Conflict):
        scheduling.transition_status(current, target)


def test_transition_accepts_stored_strings():
    assert scheduling.transition_status("Scheduled", "InProgress") == S.IN_PROGRESS


async def _booked(db, doctor, patient, index=0):
    slots = await scheduling.ensure_default_slots(db, doctor.id, DAY)
    return await scheduling.book_slot(db, slots[index].id, doctor.id, patient.id, "Headache")


async def test_change_status_walks_the_lifecycle(db, doctor, patient):
    appointment = await _booked(db, doctor, patient)

    started = await scheduling.change_status(db, appointment.id, S.IN_PROGRESS)
    done = await scheduling.change_status(db, appointment.id, S.COMPLETED)

    assert started.status == S.IN_PROGRESS
    assert done.status == S.COMPLETED
    with pytest.raises(Conflict):
        await scheduling.cancel(db, appointment.id)


async def test_cancelling_through_change_status_frees_the_slot(db, doctor, patient):
    appointment = await _booked(db, doctor, patient)

    await scheduling.change_status(db, appointment.id, S.CANCELLED)

    available = await scheduling.get_available_slots(db, doctor.id, DAY)
    assert appointment.schedule_id in {s.id for s in available}


async def test_cancelling_twice_conflicts(db, doctor, patient):
    appointment = await _booked(db, doctor, patient)
    await scheduling.cancel(db, appointment.id)

    with pytest.raises(Conflict):
        await scheduling.cancel(db, appointment.id)


async def test_list_appointments_is_scoped_by_role(db, doctor, other_doctor, patient, make_patient, make_user):
    other = await make_patient("other@cityhospital.pk", "Hamza Butt")
    receptionist = await make_user(Role.RECEPTIONIST, "desk@cityhospital.pk")
    await _booked(db, doctor, patient, 0)
    await _booked(db, doctor, other, 1)
    await _booked(db, other_doctor, patient, 0)

    as_patient = await scheduling.list_appointments(db, patient.user_id, Role.PATIENT.value)
    as_doctor = await scheduling.list_appointments(db, doctor.id, Role.DOCTOR.value)
    as_desk = await scheduling.list_appointments(db, receptionist.id, Role.RECEPTIONIST.value)

    assert as_patient.total_count == 2
    assert {a.patient_id for a in as_patient.appointments} == {patient.id}
    assert as_doctor.total_count == 2
    assert {a.doctor_id for a in as_doctor.appointments} == {doctor.id}
    assert as_desk.total_count == 3


async def test_list_appointments_filters_status_and_pages(db, doctor, patient, make_user):
    admin = await make_user(Role.ADMIN, "admin@cityhospital.pk")
    first = await _booked(db, doctor, patient, 0)
    await _booked(db, doctor, patient, 1)
    await scheduling.cancel(db, first.id)

    cancelled = await scheduling.list_appointments(db, admin.id, Role.ADMIN.value, status=S.CANCELLED.value)
    page = await scheduling.list_appointments(db, admin.id, Role.ADMIN.value, skip=0, limit=1)

    assert [a.id for a in cancelled.appointments] == [first.id]
    assert page.total_count == 2
    assert len(page.appointments) == 1


async def test_get_appointment_hides_other_patients(db, doctor, patient, make_patient):
    other = await make_patient("other@cityhospital.pk", "Hamza Butt")
    appointment = await _booked(db, doctor, patient)

    with pytest.raises(Forbidden):
        await get_appointment(db, appointment.id, other.user_id, Role.PATIENT.value)
    found = await get_appointment(db, appointment.id, patient.user_id, Role.PATIENT.value)
    assert found.id == appointment.id
