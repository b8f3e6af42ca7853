import logging
from datetime import date, datetime, time
from typing import List, Optional, Tuple

from sqlalchemy import select, func
from sqlalchemy.ext.asyncio import AsyncSession

from hms.config.constants import Role
from hms.core.errors import Forbidden, NotFound
from hms.db.crud.patient import get_patient_id_for_user
from hms.db.models.appointment import AppointmentModel

logger = logging.getLogger(__name__)


async def get_appointments(
    db: AsyncSession,
    user_id: int,  # ID of the user making the request
    role: str,  # Role of the user making the request
    skip: int = 0,
    limit: int = 20,
    status: Optional[str] = None,
    doctor_id: Optional[int] = None,  # Optional filter: for which doctor's appointments
    target_date: Optional[date] = None,
) -> Tuple[List[AppointmentModel], int]:
    """
    Get appointments based on filters with role-based access control.

    Patients only see their own appointments, doctors only see appointments where they
    are the doctor, every other staff role sees all of them.

    Returns:
        The requested page (newest first) and the total number of matching rows.
    """
    logger.debug(
        f"CRUD get_appointments: user_id={user_id}, role='{role}', status={status}, "
        f"doctor_id={doctor_id}, target_date={target_date}, skip={skip}, limit={limit}"
    )

    query = select(AppointmentModel)

    # Apply primary role-based filtering (who is asking and what they can see by default)
    if role == Role.PATIENT.value:
        patient_id = await get_patient_id_for_user(db, int(user_id))
        if patient_id is None:
            logger.warning(f"Patient user {user_id} has no patient record; returning nothing.")
            return [], 0
        query = query.where(AppointmentModel.patient_id == patient_id)
    elif role == Role.DOCTOR.value:
        query = query.where(AppointmentModel.doctor_id == int(user_id))
    elif doctor_id is not None:
        query = query.where(AppointmentModel.doctor_id == int(doctor_id))

    if status and status != "All":
        query = query.where(AppointmentModel.status == status)

    if target_date:
        query = query.where(
            AppointmentModel.scheduled_time >= datetime.combine(target_date, time.min),
            AppointmentModel.scheduled_time <= datetime.combine(target_date, time.max),
        )

    total = await db.scalar(select(func.count()).select_from(query.subquery()))

    query = (
        query.order_by(AppointmentModel.scheduled_time.desc(), AppointmentModel.id.desc())
        .offset(skip)
        .limit(limit)
    )
    result = await db.execute(query)
    appointments = list(result.scalars().all())

    logger.info(
        f"CRUD get_appointments: Found {len(appointments)} of {total} appointments matching criteria."
    )
    return appointments, total or 0


async def get_appointment(
    db: AsyncSession, appointment_id: int, user_id: int, role: str
) -> AppointmentModel:
    """
    Get a specific appointment by ID with permission checks.
    Returns the AppointmentModel instance if found and user has access.
    """
    appointment = await db.get(AppointmentModel, appointment_id)

    if not appointment:
        raise NotFound("Appointment not found")

    if role == Role.PATIENT.value:
        patient_id = await get_patient_id_for_user(db, int(user_id))
        if appointment.patient_id != patient_id:
            raise Forbidden("Not authorized to access this appointment")
    elif role == Role.DOCTOR.value and appointment.doctor_id != int(user_id):
        raise Forbidden("Not authorized to access this appointment")

    return appointment
