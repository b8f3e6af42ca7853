import logging
from typing import List, Optional

from fastapi import APIRouter, Depends, status
from sqlalchemy.ext.asyncio import AsyncSession

from hms.config.constants import Role
from hms.core.middleware import get_current_user, get_db, require_roles
from hms.db.crud.appointment import get_appointment
from hms.db.crud.inventory import create_lab_test, list_lab_tests
from hms.schemas.clinical import (
    LabOrderCreate,
    LabOrderOut,
    LabResultIn,
    LabResultOut,
    LabStatusUpdate,
    LabTestIn,
    LabTestOut,
    PendingLabOrder,
    PrescriptionCreate,
    PrescriptionOut,
    VisitCompletion,
    VisitHistoryEntry,
    VisitOut,
)
from hms.services import clinical

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/clinical", tags=["clinical"])

CLINICIAN_ROLES = [Role.ADMIN.value, Role.DOCTOR.value]
LAB_ROLES = [Role.ADMIN.value, Role.LAB_TECHNICIAN.value]


@router.post("/appointments/{appointment_id}/visit", response_model=VisitOut, status_code=201)
async def start_visit_route(
    appointment_id: int,
    db: AsyncSession = Depends(get_db),
    current_user: dict = Depends(require_roles(CLINICIAN_ROLES)),
):
    await get_appointment(db, appointment_id, int(current_user["user_id"]), current_user["role"])
    return await clinical.start_visit(db, appointment_id)


@router.post("/visits/{visit_id}/complete", response_model=VisitOut)
async def complete_visit_route(
    visit_id: int,
    completion: VisitCompletion,
    db: AsyncSession = Depends(get_db),
    _: dict = Depends(require_roles(CLINICIAN_ROLES)),
):
    return await clinical.complete_visit(db, visit_id, completion.diagnosis, completion.notes)


@router.post("/prescriptions", response_model=PrescriptionOut, status_code=201)
async def create_prescription_route(
    prescription: PrescriptionCreate,
    db: AsyncSession = Depends(get_db),
    current_user: dict = Depends(require_roles(CLINICIAN_ROLES)),
):
    return await clinical.create_prescription(
        db, prescription.visit_id, int(current_user["user_id"]), prescription.items
    )


@router.delete("/prescriptions/{prescription_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_prescription_route(
    prescription_id: int,
    db: AsyncSession = Depends(get_db),
    current_user: dict = Depends(require_roles(CLINICIAN_ROLES)),
):
    logger.info(f"User {current_user['user_id']} deleting prescription {prescription_id}")
    await clinical.delete_prescription(db, prescription_id)
    return None


@router.get("/lab-tests", response_model=List[LabTestOut])
async def list_lab_tests_route(
    db: AsyncSession = Depends(get_db),
    _: dict = Depends(require_roles(CLINICIAN_ROLES + LAB_ROLES)),
):
    return await list_lab_tests(db)


@router.post("/lab-tests", response_model=LabTestOut, status_code=201)
async def create_lab_test_route(
    lab_test: LabTestIn,
    db: AsyncSession = Depends(get_db),
    _: dict = Depends(require_roles(LAB_ROLES)),
):
    return await create_lab_test(db, lab_test)


@router.post("/lab-orders", response_model=LabOrderOut, status_code=201)
async def create_lab_order_route(
    order: LabOrderCreate,
    db: AsyncSession = Depends(get_db),
    _: dict = Depends(require_roles(CLINICIAN_ROLES)),
):
    return await clinical.create_lab_order(db, order.visit_id, order.lab_test_id, order.priority)


@router.get("/lab-orders/pending", response_model=List[PendingLabOrder])
async def pending_lab_orders_route(
    skip: int = 0,
    limit: int = 50,
    db: AsyncSession = Depends(get_db),
    _: dict = Depends(require_roles(CLINICIAN_ROLES + LAB_ROLES)),
):
    return await clinical.list_pending_lab_orders(db, skip=skip, limit=limit)


@router.patch("/lab-orders/{order_id}/status", response_model=LabOrderOut)
async def update_lab_order_status_route(
    order_id: int,
    update: LabStatusUpdate,
    db: AsyncSession = Depends(get_db),
    _: dict = Depends(require_roles(LAB_ROLES)),
):
    return await clinical.update_lab_order_status(db, order_id, update.status)


@router.post("/lab-orders/{order_id}/result", response_model=LabResultOut, status_code=201)
async def upload_lab_result_route(
    order_id: int,
    result: LabResultIn,
    db: AsyncSession = Depends(get_db),
    current_user: dict = Depends(require_roles(LAB_ROLES)),
):
    return await clinical.upload_lab_result(
        db,
        order_id,
        result_text=result.result_text,
        file_path=result.file_path,
        uploaded_by=int(current_user["user_id"]),
    )


@router.get("/patients/{patient_id}/visits", response_model=List[VisitHistoryEntry])
async def patient_visits_route(
    patient_id: int,
    limit: Optional[int] = None,
    db: AsyncSession = Depends(get_db),
    current_user: dict = Depends(get_current_user),
):
    return await clinical.list_patient_visits(
        db, patient_id, int(current_user["user_id"]), current_user["role"], limit=limit
    )
