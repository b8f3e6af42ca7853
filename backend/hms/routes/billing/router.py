import logging
from typing import Optional

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession

from hms.config.constants import FRONT_DESK_ROLES, PaymentMethod, Role
from hms.core.middleware import get_db, require_roles
from hms.schemas.billing import (
    BillCreate,
    BillDetail,
    BillPage,
    BillSummary,
    PaymentIn,
    PaymentOutcome,
)
from hms.services import billing

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/billing", tags=["billing"])

BILL_READERS = FRONT_DESK_ROLES + [Role.PATIENT.value]


class PayOutstandingRequest(BaseModel):
    method: PaymentMethod = PaymentMethod.CASH


@router.get("/", response_model=BillPage)
async def list_bills_route(
    status: Optional[str] = None,
    patient_id: Optional[int] = None,
    skip: int = 0,
    limit: int = Query(20, le=100),
    db: AsyncSession = Depends(get_db),
    current_user: dict = Depends(require_roles(BILL_READERS)),
):
    return await billing.list_bills(
        db,
        user_id=int(current_user["user_id"]),
        role=current_user["role"],
        status=status,
        skip=skip,
        limit=limit,
        patient_id=patient_id,
    )


@router.get("/draft/{visit_id}", response_model=BillCreate)
async def draft_bill_route(
    visit_id: int,
    db: AsyncSession = Depends(get_db),
    _: dict = Depends(require_roles(FRONT_DESK_ROLES + [Role.DOCTOR.value])),
):
    """Pre-filled bill for a visit; edit and POST it to create the bill."""
    return await billing.draft_bill_for_visit(db, visit_id)


@router.post("/", response_model=BillSummary, status_code=201)
async def create_bill_route(
    bill: BillCreate,
    db: AsyncSession = Depends(get_db),
    _: dict = Depends(require_roles(FRONT_DESK_ROLES)),
):
    return await billing.create_bill(db, bill.patient_id, bill.items)


@router.get("/{bill_id}", response_model=BillDetail)
async def get_bill_route(
    bill_id: int,
    db: AsyncSession = Depends(get_db),
    current_user: dict = Depends(require_roles(BILL_READERS)),
):
    return await billing.get_bill_detail(
        db, bill_id, user_id=int(current_user["user_id"]), role=current_user["role"]
    )


@router.post("/{bill_id}/payments", response_model=PaymentOutcome, status_code=201)
async def record_payment_route(
    bill_id: int,
    payment: PaymentIn,
    db: AsyncSession = Depends(get_db),
    current_user: dict = Depends(require_roles(FRONT_DESK_ROLES)),
):
    logger.info(f"User {current_user['user_id']} recording {payment.amount} on bill {bill_id}")
    return await billing.record_payment(db, bill_id, payment.amount, payment.method)


@router.post("/{bill_id}/pay", response_model=PaymentOutcome, status_code=201)
async def pay_outstanding_route(
    bill_id: int,
    request: PayOutstandingRequest,
    db: AsyncSession = Depends(get_db),
    current_user: dict = Depends(require_roles(BILL_READERS)),
):
    """Settle the whole remaining balance. Patients may only pay their own bills."""
    # raises Forbidden when a patient reaches for someone else's bill
    await billing.get_bill_detail(
        db, bill_id, user_id=int(current_user["user_id"]), role=current_user["role"]
    )
    return await billing.pay_outstanding(db, bill_id, request.method)
