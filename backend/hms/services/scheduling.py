"""Slot allocation and the appointment lifecycle.

Slots are (doctor, date, start, end) rows. A slot is bookable while
``is_available`` is set and no active appointment points at it. Booking
claims the slot with a single conditional UPDATE, so two concurrent
bookers cannot both win: the loser sees zero affected rows and gets a
conflict.
"""
import logging
from datetime import date, datetime, time, timedelta
from typing import Dict, List, Optional, Tuple

from sqlalchemy import exists, func, select, update
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from hms.config.constants import AppointmentStatus
from hms.config.settings import settings
from hms.core.errors import Conflict, NotFound, ValidationFailed, rollback_and_raise
from hms.db.crud.appointment import get_appointments
from hms.db.crud.user import get_active_doctor
from hms.db.models import AppointmentModel, PatientModel, ScheduleSlotModel
from hms.schemas.scheduling import AppointmentOut, AppointmentPage, SlotOut, SlotScheduleEntry

logger = logging.getLogger(__name__)

SLOT_KEY = ["doctor_id", "slot_date", "start_time"]

ALLOWED_TRANSITIONS: Dict[AppointmentStatus, set] = {
    AppointmentStatus.SCHEDULED: {AppointmentStatus.IN_PROGRESS, AppointmentStatus.CANCELLED},
    AppointmentStatus.IN_PROGRESS: {AppointmentStatus.COMPLETED, AppointmentStatus.CANCELLED},
    AppointmentStatus.COMPLETED: set(),
    AppointmentStatus.CANCELLED: set(),
}


def transition_status(current, target) -> AppointmentStatus:
    """
    Validate an appointment status change.

    Scheduled -> InProgress | Cancelled, InProgress -> Completed | Cancelled.
    Completed and Cancelled are terminal.

    Raises:
        Conflict: when the move is not allowed.
    """
    current = AppointmentStatus(current)
    target = AppointmentStatus(target)
    if target not in ALLOWED_TRANSITIONS[current]:
        logger.warning(f"Rejected appointment transition {current.value} -> {target.value}")
        raise Conflict(
            f"Cannot change an appointment from {current.value} to {target.value}."
        )
    return target


def default_slot_times(
    day_start: time, day_end: time, minutes: int
) -> List[Tuple[time, time]]:
    """Back-to-back windows of ``minutes`` between ``day_start`` and ``day_end``."""
    slots = []
    cur = datetime.combine(date.min, day_start)
    end_dt = datetime.combine(date.min, day_end)
    delta = timedelta(minutes=minutes)
    while cur + delta <= end_dt:
        slots.append((cur.time(), (cur + delta).time()))
        cur += delta
    return slots


def _active_appointment_for_slot():
    return exists().where(
        AppointmentModel.schedule_id == ScheduleSlotModel.id,
        AppointmentModel.status != AppointmentStatus.CANCELLED.value,
    )


async def _require_doctor(db: AsyncSession, doctor_id: int) -> None:
    if not await get_active_doctor(db, doctor_id):
        logger.warning(f"Doctor validation failed for doctor_id={doctor_id}")
        raise NotFound("Doctor not found or the specified user is not a doctor.")


async def _insert_slots_ignoring_duplicates(db: AsyncSession, rows: List[dict]) -> None:
    dialect = db.get_bind().dialect.name
    if dialect == "postgresql":
        stmt = postgresql.insert(ScheduleSlotModel).values(rows)
    elif dialect == "sqlite":
        stmt = sqlite.insert(ScheduleSlotModel).values(rows)
    else:
        # no portable upsert: one savepoint per row, duplicates are skipped
        for row in rows:
            try:
                async with db.begin_nested():
                    db.add(ScheduleSlotModel(**row))
            except IntegrityError:
                logger.debug(f"Slot {row['slot_date']} {row['start_time']} already exists")
        return
    await db.execute(stmt.on_conflict_do_nothing(index_elements=SLOT_KEY))


async def _slots_for_day(db: AsyncSession, doctor_id: int, slot_date: date) -> List[ScheduleSlotModel]:
    result = await db.execute(
        select(ScheduleSlotModel)
        .where(
            ScheduleSlotModel.doctor_id == doctor_id,
            ScheduleSlotModel.slot_date == slot_date,
        )
        .order_by(ScheduleSlotModel.start_time)
    )
    return list(result.scalars().all())


async def ensure_default_slots(
    db: AsyncSession, doctor_id: int, slot_date: date
) -> List[SlotOut]:
    """
    Make sure the doctor has bookable slots on ``slot_date``.

    When the day is empty the default working day (09:00-17:00 in 30 minute
    steps unless configured otherwise) is inserted. The insert skips rows that
    already exist, so racing first calls still end with a single set of slots.

    Returns:
        Every slot of the day ordered by start time.
    """
    await _require_doctor(db, doctor_id)

    existing = await db.scalar(
        select(func.count(ScheduleSlotModel.id)).where(
            ScheduleSlotModel.doctor_id == doctor_id,
            ScheduleSlotModel.slot_date == slot_date,
        )
    )
    if not existing:
        rows = [
            {
                "doctor_id": doctor_id,
                "slot_date": slot_date,
                "start_time": start,
                "end_time": end,
                "is_available": True,
            }
            for start, end in default_slot_times(
                settings.slot_day_start, settings.slot_day_end, settings.slot_minutes
            )
        ]
        try:
            await _insert_slots_ignoring_duplicates(db, rows)
            await db.commit()
        except SQLAlchemyError as e:
            await rollback_and_raise(db, e, f"creating default slots for doctor {doctor_id} on {slot_date}")
        logger.info(f"Generated default slots for doctor_id={doctor_id} on {slot_date}")

    slots = await _slots_for_day(db, doctor_id, slot_date)
    return [SlotOut.model_validate(s) for s in slots]


async def create_slot(
    db: AsyncSession,
    doctor_id: int,
    slot_date: date,
    start_time: time,
    end_time: time,
    is_available: bool = True,
) -> SlotOut:
    """Manually add one slot. Conflict when the doctor already has a slot at that start time."""
    if end_time <= start_time:
        raise ValidationFailed("End time must be after start time.", fields=["end_time"])
    await _require_doctor(db, doctor_id)

    already = await db.scalar(
        select(
            exists().where(
                ScheduleSlotModel.doctor_id == doctor_id,
                ScheduleSlotModel.slot_date == slot_date,
                ScheduleSlotModel.start_time == start_time,
            )
        )
    )
    if already:
        raise Conflict("Schedule slot already exists")

    slot = ScheduleSlotModel(
        doctor_id=doctor_id,
        slot_date=slot_date,
        start_time=start_time,
        end_time=end_time,
        is_available=is_available,
    )
    db.add(slot)
    try:
        await db.commit()
    except IntegrityError:
        await db.rollback()
        raise Conflict("Schedule slot already exists")
    except SQLAlchemyError as e:
        await rollback_and_raise(db, e, f"creating slot for doctor {doctor_id}")
    await db.refresh(slot)
    logger.info(f"Created slot_id={slot.id} for doctor_id={doctor_id} at {slot_date} {start_time}")
    return SlotOut.model_validate(slot)


async def get_available_slots(
    db: AsyncSession, doctor_id: int, slot_date: date
) -> List[SlotOut]:
    """Open slots (available and not held by an active appointment), earliest first."""
    result = await db.execute(
        select(ScheduleSlotModel)
        .where(
            ScheduleSlotModel.doctor_id == doctor_id,
            ScheduleSlotModel.slot_date == slot_date,
            ScheduleSlotModel.is_available.is_(True),
            ~_active_appointment_for_slot(),
        )
        .order_by(ScheduleSlotModel.start_time)
    )
    return [SlotOut.model_validate(s) for s in result.scalars().all()]


async def get_doctor_schedule(
    db: AsyncSession, doctor_id: int, slot_date: date
) -> List[SlotScheduleEntry]:
    result = await db.execute(
        select(ScheduleSlotModel, _active_appointment_for_slot().label("has_appointment"))
        .where(
            ScheduleSlotModel.doctor_id == doctor_id,
            ScheduleSlotModel.slot_date == slot_date,
        )
        .order_by(ScheduleSlotModel.start_time)
    )
    schedule = []
    for slot, has_appointment in result.all():
        entry = SlotScheduleEntry.model_validate(slot)
        entry.has_appointment = bool(has_appointment)
        schedule.append(entry)
    return schedule


async def book_slot(
    db: AsyncSession,
    slot_id: int,
    doctor_id: int,
    patient_id: int,
    reason: Optional[str] = None,
) -> AppointmentOut:
    """
    Claim a slot for a patient and create the appointment.

    The slot is taken with ``UPDATE ... WHERE is_available`` and the booking
    only continues when exactly one row changed. Slot claim and appointment
    insert are committed together.

    Raises:
        NotFound: unknown slot or patient.
        Conflict: slot belongs to another doctor, is unavailable or already booked.
    """
    logger.info(
        f"Attempting to book slot_id={slot_id} with doctor_id={doctor_id} for patient_id={patient_id}"
    )
    if not await db.get(PatientModel, patient_id):
        raise NotFound("Patient not found")

    try:
        claimed = await db.execute(
            update(ScheduleSlotModel)
            .where(
                ScheduleSlotModel.id == slot_id,
                ScheduleSlotModel.doctor_id == doctor_id,
                ScheduleSlotModel.is_available.is_(True),
            )
            .values(is_available=False)
            .execution_options(synchronize_session=False)
        )
        if claimed.rowcount != 1:
            await db.rollback()
            if not await db.get(ScheduleSlotModel, slot_id):
                raise NotFound("Slot not found")
            logger.warning(f"Slot {slot_id} unavailable for doctor_id={doctor_id}")
            raise Conflict("Slot unavailable. Please choose another slot.")

        held = await db.scalar(
            select(
                exists().where(
                    AppointmentModel.schedule_id == slot_id,
                    AppointmentModel.status != AppointmentStatus.CANCELLED.value,
                )
            )
        )
        if held:
            await db.rollback()
            logger.warning(f"Slot {slot_id} was flagged available but already has an active appointment")
            raise Conflict("Slot unavailable. Please choose another slot.")

        slot_row = (
            await db.execute(
                select(ScheduleSlotModel.slot_date, ScheduleSlotModel.start_time).where(
                    ScheduleSlotModel.id == slot_id
                )
            )
        ).one()

        appointment = AppointmentModel(
            patient_id=patient_id,
            doctor_id=doctor_id,
            schedule_id=slot_id,
            scheduled_time=datetime.combine(slot_row.slot_date, slot_row.start_time),
            reason=reason,
            status=AppointmentStatus.SCHEDULED.value,
        )
        db.add(appointment)
        await db.commit()
    except IntegrityError:
        await db.rollback()
        logger.warning(f"Integrity error while booking slot_id={slot_id}", exc_info=True)
        raise Conflict("Slot unavailable. Please choose another slot.")
    except SQLAlchemyError as e:
        await rollback_and_raise(db, e, f"booking slot {slot_id}")

    await db.refresh(appointment)
    logger.info(f"Booked appointment_id={appointment.id} on slot_id={slot_id}")
    return AppointmentOut.model_validate(appointment)


async def cancel(db: AsyncSession, appointment_id: int) -> AppointmentOut:
    """Cancel an appointment and hand its slot back to the pool."""
    appointment = await db.get(AppointmentModel, appointment_id)
    if not appointment:
        raise NotFound("Appointment not found")

    appointment.status = transition_status(
        appointment.status, AppointmentStatus.CANCELLED
    ).value

    try:
        if appointment.schedule_id is not None:
            await db.execute(
                update(ScheduleSlotModel)
                .where(ScheduleSlotModel.id == appointment.schedule_id)
                .values(is_available=True)
                .execution_options(synchronize_session=False)
            )
        await db.commit()
    except SQLAlchemyError as e:
        await rollback_and_raise(db, e, f"cancelling appointment {appointment_id}")

    logger.info(f"Cancelled appointment_id={appointment_id}, freed slot_id={appointment.schedule_id}")
    return AppointmentOut.model_validate(appointment)


async def change_status(
    db: AsyncSession, appointment_id: int, target: AppointmentStatus
) -> AppointmentOut:
    """Move an appointment along its lifecycle; cancelling also frees the slot."""
    if AppointmentStatus(target) == AppointmentStatus.CANCELLED:
        return await cancel(db, appointment_id)

    appointment = await db.get(AppointmentModel, appointment_id)
    if not appointment:
        raise NotFound("Appointment not found")

    appointment.status = transition_status(appointment.status, target).value
    try:
        await db.commit()
    except SQLAlchemyError as e:
        await rollback_and_raise(db, e, f"updating appointment {appointment_id}")

    logger.info(f"Appointment {appointment_id} is now {appointment.status}")
    return AppointmentOut.model_validate(appointment)


async def list_appointments(
    db: AsyncSession,
    user_id: int,
    role: str,
    status: Optional[str] = None,
    skip: int = 0,
    limit: int = 20,
    doctor_id: Optional[int] = None,
    target_date: Optional[date] = None,
) -> AppointmentPage:
    appointments, total = await get_appointments(
        db,
        user_id=user_id,
        role=role,
        skip=skip,
        limit=limit,
        status=status,
        doctor_id=doctor_id,
        target_date=target_date,
    )
    return AppointmentPage(
        appointments=[AppointmentOut.model_validate(a) for a in appointments],
        total_count=total,
        skip=skip,
        limit=limit,
    )
