from typing import List

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from hms.config.constants import Role
from hms.core.errors import NotFound
from hms.core.middleware import get_db, require_roles
from hms.db.crud.inventory import create_medication, get_medication, list_medications
from hms.schemas.pharmacy import (
    DispenseOutcome,
    LowStockEntry,
    MedicationIn,
    MedicationOut,
    PendingPrescription,
    RestockRequest,
)
from hms.services import pharmacy

router = APIRouter(prefix="/pharmacy", tags=["pharmacy"])

PHARMACY_ROLES = [Role.ADMIN.value, Role.PHARMACIST.value]


@router.get("/medications", response_model=List[MedicationOut])
async def list_medications_route(
    search: str = "",
    skip: int = 0,
    limit: int = 50,
    db: AsyncSession = Depends(get_db),
    _: dict = Depends(require_roles(PHARMACY_ROLES + [Role.DOCTOR.value])),
):
    return await list_medications(db, search=search, skip=skip, limit=limit)


@router.post("/medications", response_model=MedicationOut, status_code=201)
async def create_medication_route(
    medication: MedicationIn,
    db: AsyncSession = Depends(get_db),
    _: dict = Depends(require_roles(PHARMACY_ROLES)),
):
    return await create_medication(db, medication)


@router.get("/medications/low-stock", response_model=List[LowStockEntry])
async def low_stock_route(
    db: AsyncSession = Depends(get_db),
    _: dict = Depends(require_roles(PHARMACY_ROLES)),
):
    return await pharmacy.low_stock(db)


@router.get("/medications/{medication_id}", response_model=MedicationOut)
async def get_medication_route(
    medication_id: int,
    db: AsyncSession = Depends(get_db),
    _: dict = Depends(require_roles(PHARMACY_ROLES + [Role.DOCTOR.value])),
):
    medication = await get_medication(db, medication_id)
    if not medication:
        raise NotFound("Medication not found")
    return medication


@router.post("/medications/{medication_id}/restock", response_model=MedicationOut)
async def restock_route(
    medication_id: int,
    request: RestockRequest,
    db: AsyncSession = Depends(get_db),
    _: dict = Depends(require_roles(PHARMACY_ROLES)),
):
    return await pharmacy.restock(db, medication_id, request.quantity)


@router.post("/prescriptions/{prescription_id}/dispense", response_model=DispenseOutcome, status_code=201)
async def dispense_route(
    prescription_id: int,
    db: AsyncSession = Depends(get_db),
    _: dict = Depends(require_roles(PHARMACY_ROLES)),
):
    return await pharmacy.dispense_prescription(db, prescription_id)


@router.get("/prescriptions/pending", response_model=List[PendingPrescription])
async def pending_prescriptions_route(
    skip: int = 0,
    limit: int = 50,
    db: AsyncSession = Depends(get_db),
    _: dict = Depends(require_roles(PHARMACY_ROLES)),
):
    return await pharmacy.list_pending_prescriptions(db, skip=skip, limit=limit)
