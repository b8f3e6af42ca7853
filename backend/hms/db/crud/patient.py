import logging
from typing import List, Optional
from sqlalchemy import select, or_
from sqlalchemy.ext.asyncio import AsyncSession

from hms.db.models import PatientModel
from hms.schemas.shared import PatientIn

logger = logging.getLogger(__name__)


async def get_patient(db: AsyncSession, patient_id: int) -> Optional[PatientModel]:
    return await db.get(PatientModel, patient_id)


async def get_patient_id_for_user(db: AsyncSession, user_id: int) -> Optional[int]:
    """
    Resolves the patient record linked to a login.

    Args:
        db (AsyncSession): the database session
        user_id (int): id of a user with the patient role

    Returns:
        Optional[int]: the linked patient id, None for users without a patient record
    """
    result = await db.execute(
        select(PatientModel.id).where(PatientModel.user_id == user_id)
    )
    return result.scalar_one_or_none()


async def create_patient(db: AsyncSession, data: PatientIn) -> PatientModel:
    """Registers a standalone (walk-in) patient record."""
    patient = PatientModel(**data.model_dump())
    db.add(patient)
    await db.commit()
    await db.refresh(patient)
    logger.info(f"CRUD: Registered patient_id={patient.id}")
    return patient


async def search_patients(db: AsyncSession, term: str, limit: int = 10) -> List[PatientModel]:
    """Matches name, phone or CNIC, case-insensitively."""
    if not term or not term.strip():
        return []

    pattern = f"%{term.strip()}%"
    result = await db.execute(
        select(PatientModel)
        .where(
            or_(
                PatientModel.full_name.ilike(pattern),
                PatientModel.phone.ilike(pattern),
                PatientModel.cnic.ilike(pattern),
            )
        )
        .order_by(PatientModel.full_name)
        .limit(limit)
    )
    patients = list(result.scalars().all())
    logger.debug(f"CRUD: Found {len(patients)} patients matching '{term}'")
    return patients
