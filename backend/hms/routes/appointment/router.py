from fastapi import APIRouter, Depends, Query
from typing import List, Optional
from datetime import date
from sqlalchemy.ext.asyncio import AsyncSession
import logging

from hms.config.constants import FRONT_DESK_ROLES, Role
from hms.core.errors import Forbidden, ValidationFailed
from hms.core.middleware import get_current_user, get_db, require_roles
from hms.db.crud.appointment import get_appointment
from hms.db.crud.patient import get_patient_id_for_user
from hms.schemas.scheduling import (
    AppointmentOut,
    AppointmentPage,
    BookingRequest,
    EnsureSlotsRequest,
    SlotCreate,
    SlotOut,
    SlotScheduleEntry,
    StatusChangeRequest,
)
from hms.services import scheduling

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/appointments", tags=["appointments"])

BOOKING_ROLES = FRONT_DESK_ROLES + [Role.PATIENT.value]
SLOT_ADMIN_ROLES = [Role.ADMIN.value, Role.DOCTOR.value]


@router.get("/slots/available", response_model=List[SlotOut])
async def available_slots_route(
    doctor_id: int,
    slot_date: date = Query(..., alias="date"),
    db: AsyncSession = Depends(get_db),
    current_user: dict = Depends(get_current_user)
):
    """Open slots for a doctor on a day. The default day is generated on first look."""
    await scheduling.ensure_default_slots(db, doctor_id, slot_date)
    return await scheduling.get_available_slots(db, doctor_id, slot_date)


@router.post("/slots/ensure", response_model=List[SlotOut])
async def ensure_slots_route(
    request: EnsureSlotsRequest,
    db: AsyncSession = Depends(get_db),
    current_user: dict = Depends(require_roles(SLOT_ADMIN_ROLES + FRONT_DESK_ROLES))
):
    return await scheduling.ensure_default_slots(db, request.doctor_id, request.slot_date)


@router.post("/slots", response_model=SlotOut, status_code=201)
async def create_slot_route(
    slot: SlotCreate,
    db: AsyncSession = Depends(get_db),
    current_user: dict = Depends(require_roles(SLOT_ADMIN_ROLES))
):
    if current_user["role"] == Role.DOCTOR.value and int(current_user["user_id"]) != slot.doctor_id:
        raise Forbidden("Doctors can only manage their own slots")
    return await scheduling.create_slot(
        db,
        doctor_id=slot.doctor_id,
        slot_date=slot.slot_date,
        start_time=slot.start_time,
        end_time=slot.end_time,
        is_available=slot.is_available,
    )


@router.get("/schedule/{doctor_id}", response_model=List[SlotScheduleEntry])
async def doctor_schedule_route(
    doctor_id: int,
    slot_date: date = Query(..., alias="date"),
    db: AsyncSession = Depends(get_db),
    current_user: dict = Depends(require_roles(SLOT_ADMIN_ROLES + FRONT_DESK_ROLES))
):
    return await scheduling.get_doctor_schedule(db, doctor_id, slot_date)


@router.post("/", response_model=AppointmentOut, status_code=201)
async def book_appointment_route(
    booking: BookingRequest,
    db: AsyncSession = Depends(get_db),
    current_user: dict = Depends(require_roles(BOOKING_ROLES))
):
    """Book a slot. Patients always book for themselves."""
    if current_user["role"] == Role.PATIENT.value:
        patient_id = await get_patient_id_for_user(db, int(current_user["user_id"]))
        if patient_id is None:
            raise Forbidden("No patient record is linked to this account.")
    elif booking.patient_id is None:
        raise ValidationFailed("patient_id is required when booking for a patient.", fields=["patient_id"])
    else:
        patient_id = booking.patient_id

    return await scheduling.book_slot(
        db,
        slot_id=booking.slot_id,
        doctor_id=booking.doctor_id,
        patient_id=patient_id,
        reason=booking.reason,
    )


@router.get("/", response_model=AppointmentPage)
async def get_appointments_route(
    skip: int = 0,
    limit: int = Query(20, le=100),
    status: Optional[str] = None,
    doctor_id: Optional[int] = None,
    target_date: Optional[date] = Query(None, alias="date"),
    db: AsyncSession = Depends(get_db),
    current_user: dict = Depends(get_current_user)
):
    """Get appointments visible to the caller"""
    return await scheduling.list_appointments(
        db,
        user_id=int(current_user["user_id"]),
        role=current_user["role"],
        status=status,
        skip=skip,
        limit=limit,
        doctor_id=doctor_id,
        target_date=target_date,
    )


@router.get("/{appointment_id}", response_model=AppointmentOut)
async def get_appointment_route(
    appointment_id: int,
    db: AsyncSession = Depends(get_db),
    current_user: dict = Depends(get_current_user)
):
    """Get a specific appointment by ID"""
    return await get_appointment(
        db=db,
        appointment_id=appointment_id,
        user_id=int(current_user["user_id"]),
        role=current_user["role"]
    )


@router.post("/{appointment_id}/cancel", response_model=AppointmentOut)
async def cancel_appointment_route(
    appointment_id: int,
    db: AsyncSession = Depends(get_db),
    current_user: dict = Depends(get_current_user)
):
    logger.info(f"Attempting to cancel appointment {appointment_id} by user: {current_user}")
    # permission check: patients and doctors may only touch their own appointments
    await get_appointment(db, appointment_id, int(current_user["user_id"]), current_user["role"])
    return await scheduling.cancel(db, appointment_id)


@router.patch("/{appointment_id}/status", response_model=AppointmentOut)
async def change_status_route(
    appointment_id: int,
    change: StatusChangeRequest,
    db: AsyncSession = Depends(get_db),
    current_user: dict = Depends(require_roles(SLOT_ADMIN_ROLES + FRONT_DESK_ROLES))
):
    await get_appointment(db, appointment_id, int(current_user["user_id"]), current_user["role"])
    return await scheduling.change_status(db, appointment_id, change.status)
