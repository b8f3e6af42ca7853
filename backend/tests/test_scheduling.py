# tests/test_scheduling.py
import asyncio
from datetime import date, datetime, time

import pytest
from sqlalchemy import func, select

from hms.config.constants import AppointmentStatus
from hms.core.errors import Conflict, NotFound, ValidationFailed
from hms.db.models import AppointmentModel, ScheduleSlotModel
from hms.services import scheduling

DAY = date(2026, 11, 2)


async def _slot_count(db, doctor_id, day=DAY):
    return await db.scalar(
        select(func.count(ScheduleSlotModel.id)).where(
            ScheduleSlotModel.doctor_id == doctor_id, ScheduleSlotModel.slot_date == day
        )
    )


def test_default_slot_times_cover_the_working_day():
    times = scheduling.default_slot_times(time(9, 0), time(17, 0), 30)
    assert len(times) == 16
    assert times[0] == (time(9, 0), time(9, 30))
    assert times[-1] == (time(16, 30), time(17, 0))


async def test_ensure_default_slots_creates_sixteen_half_hour_slots(db, doctor):
    slots = await scheduling.ensure_default_slots(db, doctor.id, DAY)

    assert len(slots) == 16
    assert all(s.is_available for s in slots)
    assert [s.start_time for s in slots] == sorted(s.start_time for s in slots)
    assert slots[0].display_time == "09:00 - 09:30"
    assert slots[-1].end_time == time(17, 0)


async def test_ensure_default_slots_is_idempotent(db, doctor):
    await scheduling.ensure_default_slots(db, doctor.id, DAY)
    again = await scheduling.ensure_default_slots(db, doctor.id, DAY)

    assert len(again) == 16
    assert await _slot_count(db, doctor.id) == 16


async def test_ensure_default_slots_keeps_a_manually_started_day(db, doctor):
    await scheduling.create_slot(db, doctor.id, DAY, time(18, 0), time(18, 30))

    slots = await scheduling.ensure_default_slots(db, doctor.id, DAY)

    assert [s.start_time for s in slots] == [time(18, 0)]


async def test_ensure_default_slots_requires_a_doctor(db, doctor, patient):
    with pytest.raises(NotFound):
        await scheduling.ensure_default_slots(db, 9999, DAY)
    with pytest.raises(NotFound):
        await scheduling.ensure_default_slots(db, patient.user_id, DAY)


async def test_concurrent_first_calls_create_a_single_set_of_slots(db, session_factory, doctor):
    async def ensure():
        async with session_factory() as session:
            return await scheduling.ensure_default_slots(session, doctor.id, DAY)

    first, second = await asyncio.gather(ensure(), ensure())

    assert len(first) == len(second) == 16
    assert await _slot_count(db, doctor.id) == 16


async def test_available_slots_skip_booked_and_unavailable(db, doctor, patient):
    slots = await scheduling.ensure_default_slots(db, doctor.id, DAY)
    await scheduling.book_slot(db, slots[1].id, doctor.id, patient.id, "Fever")
    await scheduling.create_slot(db, doctor.id, DAY, time(8, 0), time(8, 30), is_available=False)

    available = await scheduling.get_available_slots(db, doctor.id, DAY)

    assert len(available) == 15
    assert slots[1].id not in {s.id for s in available}
    assert available[0].start_time == time(9, 0)
    assert available[1].start_time == time(10, 0)


async def test_doctor_schedule_flags_booked_slots(db, doctor, patient):
    slots = await scheduling.ensure_default_slots(db, doctor.id, DAY)
    await scheduling.book_slot(db, slots[0].id, doctor.id, patient.id)

    schedule = await scheduling.get_doctor_schedule(db, doctor.id, DAY)

    assert len(schedule) == 16
    assert schedule[0].has_appointment is True
    assert not any(entry.has_appointment for entry in schedule[1:])


async def test_create_slot_rejects_duplicates_and_inverted_times(db, doctor):
    await scheduling.create_slot(db, doctor.id, DAY, time(9, 0), time(9, 30))

    with pytest.raises(Conflict):
        await scheduling.create_slot(db, doctor.id, DAY, time(9, 0), time(9, 45))
    with pytest.raises(ValidationFailed):
        await scheduling.create_slot(db, doctor.id, DAY, time(10, 0), time(10, 0))


async def test_book_slot_creates_a_scheduled_appointment(db, doctor, patient):
    slots = await scheduling.ensure_default_slots(db, doctor.id, DAY)

    appointment = await scheduling.book_slot(db, slots[2].id, doctor.id, patient.id, "Back pain")

    assert appointment.status == AppointmentStatus.SCHEDULED
    assert appointment.scheduled_time == datetime(2026, 11, 2, 10, 0)
    assert appointment.schedule_id == slots[2].id
    assert appointment.reason == "Back pain"
    slot = await db.get(ScheduleSlotModel, slots[2].id, populate_existing=True)
    assert slot.is_available is False


async def test_booking_a_taken_slot_conflicts(db, doctor, patient, make_patient):
    other = await make_patient("other@cityhospital.pk", "Hamza Butt")
    slots = await scheduling.ensure_default_slots(db, doctor.id, DAY)
    await scheduling.book_slot(db, slots[0].id, doctor.id, patient.id)

    with pytest.raises(Conflict):
        await scheduling.book_slot(db, slots[0].id, doctor.id, other.id)


async def test_booking_with_another_doctor_conflicts(db, doctor, other_doctor, patient):
    # a failed claim rolls the session back and expires the fixtures
    doctor_id, other_doctor_id, patient_id = doctor.id, other_doctor.id, patient.id
    slots = await scheduling.ensure_default_slots(db, doctor_id, DAY)

    with pytest.raises(Conflict):
        await scheduling.book_slot(db, slots[0].id, other_doctor_id, patient_id)

    # the slot stays bookable for its own doctor
    assert len(await scheduling.get_available_slots(db, doctor_id, DAY)) == 16


async def test_booking_unknown_slot_or_patient_is_not_found(db, doctor, patient):
    doctor_id, patient_id = doctor.id, patient.id
    slots = await scheduling.ensure_default_slots(db, doctor_id, DAY)

    with pytest.raises(NotFound):
        await scheduling.book_slot(db, 9999, doctor_id, patient_id)
    with pytest.raises(NotFound):
        await scheduling.book_slot(db, slots[0].id, doctor_id, 9999)


async def test_concurrent_bookings_for_one_slot_have_one_winner(db, session_factory, doctor, patient, make_patient):
    other = await make_patient("other@cityhospital.pk", "Hamza Butt")
    slots = await scheduling.ensure_default_slots(db, doctor.id, DAY)

    async def book(patient_id):
        async with session_factory() as session:
            return await scheduling.book_slot(session, slots[0].id, doctor.id, patient_id)

    results = await asyncio.gather(book(patient.id), book(other.id), return_exceptions=True)

    winners = [r for r in results if not isinstance(r, Exception)]
    losers = [r for r in results if isinstance(r, Exception)]
    assert len(winners) == 1
    assert len(losers) == 1 and isinstance(losers[0], Conflict)

    active = await db.scalar(
        select(func.count(AppointmentModel.id)).where(
            AppointmentModel.schedule_id == slots[0].id,
            AppointmentModel.status != AppointmentStatus.CANCELLED.value,
        )
    )
    assert active == 1


async def test_cancel_frees_only_its_own_slot(db, doctor, patient):
    slots = await scheduling.ensure_default_slots(db, doctor.id, DAY)
    first = await scheduling.book_slot(db, slots[0].id, doctor.id, patient.id)
    await scheduling.book_slot(db, slots[1].id, doctor.id, patient.id)

    cancelled = await scheduling.cancel(db, first.id)

    assert cancelled.status == AppointmentStatus.CANCELLED
    available = {s.id for s in await scheduling.get_available_slots(db, doctor.id, DAY)}
    assert slots[0].id in available
    assert slots[1].id not in available


async def test_cancelled_slot_can_be_booked_again(db, doctor, patient, make_patient):
    other = await make_patient("other@cityhospital.pk", "Hamza Butt")
    slots = await scheduling.ensure_default_slots(db, doctor.id, DAY)
    first = await scheduling.book_slot(db, slots[0].id, doctor.id, patient.id)
    await scheduling.cancel(db, first.id)

    rebooked = await scheduling.book_slot(db, slots[0].id, doctor.id, other.id)

    assert rebooked.patient_id == other.id
    assert rebooked.status == AppointmentStatus.SCHEDULED
