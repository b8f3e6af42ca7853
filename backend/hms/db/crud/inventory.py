# hms/db/crud/inventory.py
import logging
from typing import List, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from hms.db.models import LabTestModel, MedicationModel
from hms.schemas.clinical import LabTestIn
from hms.schemas.pharmacy import MedicationIn

logger = logging.getLogger(__name__)


async def create_medication(db: AsyncSession, data: MedicationIn) -> MedicationModel:
    medication = MedicationModel(**data.model_dump())
    db.add(medication)
    await db.commit()
    await db.refresh(medication)
    logger.info(
        f"CRUD: Added medication '{medication.name}' (id={medication.id}) with stock {medication.stock_quantity}"
    )
    return medication


async def get_medication(db: AsyncSession, medication_id: int) -> Optional[MedicationModel]:
    return await db.get(MedicationModel, medication_id)


async def list_medications(
    db: AsyncSession, search: str = "", skip: int = 0, limit: int = 50
) -> List[MedicationModel]:
    query = select(MedicationModel)
    if search:
        query = query.where(MedicationModel.name.ilike(f"%{search}%"))
    query = query.order_by(MedicationModel.name).offset(skip).limit(limit)
    result = await db.execute(query)
    return list(result.scalars().all())


async def create_lab_test(db: AsyncSession, data: LabTestIn) -> LabTestModel:
    lab_test = LabTestModel(**data.model_dump())
    db.add(lab_test)
    await db.commit()
    await db.refresh(lab_test)
    logger.info(f"CRUD: Added lab test '{lab_test.test_name}' (id={lab_test.id})")
    return lab_test


async def list_lab_tests(db: AsyncSession) -> List[LabTestModel]:
    result = await db.execute(select(LabTestModel).order_by(LabTestModel.test_name))
    return list(result.scalars().all())
