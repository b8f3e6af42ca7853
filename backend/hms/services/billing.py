"""Bills, payments and the stock deduction that follows a settled prescription bill."""
import logging
from datetime import datetime, timezone
from decimal import Decimal, ROUND_HALF_UP
from typing import Iterable, List, Optional, Tuple

from sqlalchemy import func, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from hms.config.constants import BillItemType, BillStatus, PaymentMethod, Role, StockPolicy
from hms.config.settings import settings
from hms.core.errors import Conflict, Forbidden, NotFound, ValidationFailed, rollback_and_raise
from hms.db.crud.patient import get_patient, get_patient_id_for_user
from hms.db.models import (
    BillItemModel,
    BillModel,
    LabOrderModel,
    MedicationModel,
    PaymentModel,
    PrescriptionItemModel,
    PrescriptionModel,
    VisitModel,
)
from hms.schemas.billing import (
    BillCreate,
    BillDetail,
    BillItemIn,
    BillItemOut,
    BillPage,
    BillSummary,
    PaymentOut,
    PaymentOutcome,
    StockWarning,
)

logger = logging.getLogger(__name__)

CENT = Decimal("0.01")


def D(x) -> Decimal:
    return Decimal(str(x or 0))


def money2(x) -> Decimal:
    return D(x).quantize(CENT, rounding=ROUND_HALF_UP)


def total_paid(bill: BillModel) -> Decimal:
    return money2(sum((D(p.amount_paid) for p in bill.payments), Decimal("0")))


def compute_balance(bill: BillModel) -> Decimal:
    """Total minus everything paid so far. Negative after an overpayment."""
    return money2(bill.total_amount) - total_paid(bill)


def derive_status(total, paid) -> BillStatus:
    """
    Paid once payments cover the total (a zero total is Paid straight away),
    Partial while something but not everything is paid, Unpaid otherwise.
    """
    total, paid = money2(total), money2(paid)
    if paid >= total:
        return BillStatus.PAID
    if paid > 0:
        return BillStatus.PARTIAL
    return BillStatus.UNPAID


def summarize(bill: BillModel) -> BillSummary:
    paid = total_paid(bill)
    total = money2(bill.total_amount)
    return BillSummary(
        bill_id=bill.id,
        patient_id=bill.patient_id,
        total_amount=total,
        total_paid=paid,
        balance=total - paid,
        status=derive_status(total, paid),
        item_count=len(bill.items),
        created_at=bill.created_at,
    )


def _bill_query():
    return select(BillModel).options(
        selectinload(BillModel.items), selectinload(BillModel.payments)
    )


async def load_bill(
    db: AsyncSession, bill_id: int, for_update: bool = False
) -> BillModel:
    """Bill with items and payments. ``for_update`` locks the row where the backend supports it."""
    stmt = _bill_query().where(BillModel.id == bill_id).execution_options(
        populate_existing=True
    )
    if for_update:
        stmt = stmt.with_for_update(of=BillModel)
    bill = (await db.execute(stmt)).scalar_one_or_none()
    if bill is None:
        raise NotFound("Bill not found")
    return bill


def build_bill(patient_id: Optional[int], items: Iterable[BillItemIn]) -> BillModel:
    """Unsaved bill whose total is the sum of its item amounts."""
    items = list(items)
    if not items:
        raise ValidationFailed("A bill needs at least one item.", fields=["items"])
    bad = [f"items.{i}.amount" for i, item in enumerate(items) if D(item.amount) < 0]
    if bad:
        raise ValidationFailed("Item amounts cannot be negative.", fields=bad)

    total = money2(sum((D(item.amount) for item in items), Decimal("0")))
    bill = BillModel(
        patient_id=patient_id,
        total_amount=total,
        status=derive_status(total, 0).value,
    )
    bill.items = [
        BillItemModel(
            item_type=BillItemType(item.item_type).value,
            reference_id=item.reference_id,
            description=item.description,
            quantity=item.quantity,
            amount=money2(item.amount),
        )
        for item in items
    ]
    bill.payments = []
    return bill


async def create_bill(
    db: AsyncSession, patient_id: int, items: List[BillItemIn]
) -> BillSummary:
    """
    Front-desk bill. Prescription lines are only ever written by the pharmacy
    when it dispenses, so they are refused here.
    """
    dispensed_lines = [
        f"items.{i}.item_type"
        for i, item in enumerate(items)
        if BillItemType(item.item_type) == BillItemType.PRESCRIPTION
    ]
    if dispensed_lines:
        raise ValidationFailed(
            "Prescriptions are billed by the pharmacy when they are dispensed.",
            fields=dispensed_lines,
        )
    bill = build_bill(patient_id, items)
    if not await get_patient(db, patient_id):
        raise NotFound("Patient not found")

    db.add(bill)
    try:
        await db.commit()
    except SQLAlchemyError as e:
        await rollback_and_raise(db, e, f"creating bill for patient {patient_id}")

    bill = await load_bill(db, bill.id)

    logger.info(f"Created bill_id={bill.id} for patient_id={patient_id}, total={bill.total_amount}")
    return summarize(bill)


async def draft_bill_for_visit(db: AsyncSession, visit_id: int) -> BillCreate:
    """
    Pre-filled bill for a visit: the consultation fee, one Medication line per
    prescribed item and one LabTest line per lab order. Nothing is saved.
    """
    visit = await db.get(VisitModel, visit_id)
    if not visit:
        raise NotFound("Visit not found")

    items = [
        BillItemIn(
            item_type=BillItemType.CONSULTATION,
            reference_id=visit.id,
            description="Consultation fee",
            quantity=1,
            amount=money2(settings.consultation_fee),
        )
    ]

    prescribed = await db.execute(
        select(PrescriptionItemModel)
        .join(PrescriptionModel, PrescriptionItemModel.prescription_id == PrescriptionModel.id)
        .where(PrescriptionModel.visit_id == visit_id)
        .options(selectinload(PrescriptionItemModel.medication))
        .order_by(PrescriptionItemModel.id)
    )
    for line in prescribed.scalars().all():
        med = line.medication
        if med is None:
            continue
        items.append(
            BillItemIn(
                item_type=BillItemType.MEDICATION,
                reference_id=med.id,
                description=med.name,
                quantity=line.quantity,
                amount=money2(D(med.unit_price) * line.quantity),
            )
        )

    orders = await db.execute(
        select(LabOrderModel)
        .where(LabOrderModel.visit_id == visit_id)
        .options(selectinload(LabOrderModel.lab_test))
        .order_by(LabOrderModel.id)
    )
    for order in orders.scalars().all():
        if order.lab_test is None:
            continue
        items.append(
            BillItemIn(
                item_type=BillItemType.LAB_TEST,
                reference_id=order.id,
                description=order.lab_test.test_name,
                quantity=1,
                amount=money2(order.lab_test.cost),
            )
        )

    return BillCreate(patient_id=visit.patient_id, items=items)


async def claim_prescription_stock(
    db: AsyncSession, prescription_ids: Iterable[int]
) -> List[int]:
    """
    Stamp ``stock_deducted_at`` on each prescription that has not had its
    stock taken yet. Returns the ids this call claimed. Does not commit.
    """
    now = datetime.now(timezone.utc)
    claimed = []
    for prescription_id in sorted(set(prescription_ids)):
        result = await db.execute(
            update(PrescriptionModel)
            .where(
                PrescriptionModel.id == prescription_id,
                PrescriptionModel.stock_deducted_at.is_(None),
            )
            .values(stock_deducted_at=now)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 1:
            claimed.append(prescription_id)
        else:
            logger.info(f"Stock for prescription_id={prescription_id} was already deducted")
    return claimed


async def deduct_prescription_stock(
    db: AsyncSession, prescription_ids: Iterable[int]
) -> List[StockWarning]:
    """
    Take every prescribed quantity out of stock, once per prescription. A line
    that cannot be covered is left untouched and reported instead.
    """
    prescription_ids = await claim_prescription_stock(db, prescription_ids)
    if not prescription_ids:
        return []

    result = await db.execute(
        select(PrescriptionItemModel)
        .where(PrescriptionItemModel.prescription_id.in_(prescription_ids))
        .options(selectinload(PrescriptionItemModel.medication))
        .order_by(PrescriptionItemModel.prescription_id, PrescriptionItemModel.id)
    )
    warnings = []
    for line in result.scalars().all():
        taken = await db.execute(
            update(MedicationModel)
            .where(
                MedicationModel.id == line.medication_id,
                MedicationModel.stock_quantity >= line.quantity,
            )
            .values(stock_quantity=MedicationModel.stock_quantity - line.quantity)
            .execution_options(synchronize_session=False)
        )
        if taken.rowcount == 1:
            continue

        available = await db.scalar(
            select(MedicationModel.stock_quantity).where(MedicationModel.id == line.medication_id)
        )
        warning = StockWarning(
            prescription_id=line.prescription_id,
            medication_id=line.medication_id,
            medication_name=line.medication.name if line.medication else None,
            required=line.quantity,
            available=available or 0,
        )
        logger.warning(
            f"Insufficient stock for medication_id={warning.medication_id}: "
            f"required {warning.required}, available {warning.available}"
        )
        warnings.append(warning)
    return warnings


async def deduct_stock_for_bill(
    db: AsyncSession, bill: BillModel
) -> Tuple[bool, List[StockWarning]]:
    """
    Deduct the stock of every prescription billed on ``bill``, at most once
    per bill. Does not commit.

    Returns:
        Whether this call performed the deduction, and the lines that could not be covered.
    """
    prescription_ids = {
        item.reference_id
        for item in bill.items
        if item.item_type == BillItemType.PRESCRIPTION.value and item.reference_id is not None
    }
    if not prescription_ids:
        return False, []

    now = datetime.now(timezone.utc)
    claimed = await db.execute(
        update(BillModel)
        .where(BillModel.id == bill.id, BillModel.stock_deducted_at.is_(None))
        .values(stock_deducted_at=now)
        .execution_options(synchronize_session=False)
    )
    if claimed.rowcount != 1:
        logger.info(f"Stock for bill_id={bill.id} was already deducted")
        return False, []
    bill.stock_deducted_at = now

    warnings = await deduct_prescription_stock(db, prescription_ids)
    logger.info(
        f"Deducted stock for prescriptions {sorted(prescription_ids)} on bill_id={bill.id} "
        f"({len(warnings)} warnings)"
    )
    return True, warnings


async def on_fully_paid(
    db: AsyncSession, bill: BillModel
) -> Tuple[bool, List[StockWarning]]:
    """Hook for a bill that just became Paid."""
    if settings.stock_deduction_policy != StockPolicy.ON_PAYMENT:
        return False, []
    if bill.stock_deducted_at is not None:
        return False, []
    return await deduct_stock_for_bill(db, bill)


async def record_payment(
    db: AsyncSession, bill_id: int, amount, method: PaymentMethod
) -> PaymentOutcome:
    """
    Record a payment against a bill.

    The bill row is locked, the payment added, the cached status refreshed and,
    when this payment settles the bill, prescription stock deducted. All of it
    is committed together.

    Raises:
        ValidationFailed: amount is not positive.
        NotFound: unknown bill.
    """
    amount = money2(amount)
    if amount <= 0:
        raise ValidationFailed("Payment amount must be greater than zero.", fields=["amount"])
    method = PaymentMethod(method)

    deducted, warnings = False, []
    try:
        bill = await load_bill(db, bill_id, for_update=True)
        before = derive_status(bill.total_amount, total_paid(bill))

        payment = PaymentModel(
            amount_paid=amount,
            payment_method=method.value,
            payment_time=datetime.now(timezone.utc),
        )
        bill.payments.append(payment)
        after = derive_status(bill.total_amount, total_paid(bill))
        bill.status = after.value

        if after == BillStatus.PAID and before != BillStatus.PAID:
            deducted, warnings = await on_fully_paid(db, bill)

        await db.commit()
    except SQLAlchemyError as e:
        await rollback_and_raise(db, e, f"recording payment on bill {bill_id}")

    logger.info(
        f"Recorded payment_id={payment.id} of {amount} ({method.value}) on bill_id={bill_id}, "
        f"status {before.value} -> {after.value}"
    )
    return PaymentOutcome(
        payment=PaymentOut.model_validate(payment),
        bill=summarize(bill),
        stock_deducted=deducted,
        stock_warnings=warnings,
    )


async def pay_outstanding(
    db: AsyncSession, bill_id: int, method: PaymentMethod
) -> PaymentOutcome:
    """Settle whatever is left on the bill in a single payment."""
    bill = await load_bill(db, bill_id)
    balance = compute_balance(bill)
    if balance <= 0:
        raise Conflict("This bill is already fully paid.")
    return await record_payment(db, bill_id, balance, method)


async def patient_scope(db: AsyncSession, user_id: int, role: str) -> Optional[int]:
    if role != Role.PATIENT.value:
        return None
    patient_id = await get_patient_id_for_user(db, int(user_id))
    if patient_id is None:
        raise Forbidden("No patient record is linked to this account.")
    return patient_id


async def list_bills(
    db: AsyncSession,
    user_id: int,
    role: str,
    status: Optional[str] = None,
    skip: int = 0,
    limit: int = 20,
    patient_id: Optional[int] = None,
) -> BillPage:
    """Newest bills first. Patients only ever see their own."""
    own_patient_id = await patient_scope(db, user_id, role)
    if own_patient_id is not None:
        patient_id = own_patient_id

    query = select(BillModel)
    if patient_id is not None:
        query = query.where(BillModel.patient_id == patient_id)
    if status and status != "All":
        query = query.where(BillModel.status == status)

    total = await db.scalar(select(func.count()).select_from(query.subquery()))
    result = await db.execute(
        query.options(selectinload(BillModel.items), selectinload(BillModel.payments))
        .order_by(BillModel.created_at.desc(), BillModel.id.desc())
        .offset(skip)
        .limit(limit)
    )
    return BillPage(
        bills=[summarize(b) for b in result.scalars().all()],
        total_count=total or 0,
        skip=skip,
        limit=limit,
    )


async def get_bill_detail(
    db: AsyncSession,
    bill_id: int,
    user_id: Optional[int] = None,
    role: Optional[str] = None,
) -> BillDetail:
    bill = await load_bill(db, bill_id)
    if role is not None:
        own_patient_id = await patient_scope(db, user_id, role)
        if own_patient_id is not None and bill.patient_id != own_patient_id:
            raise Forbidden("Not authorized to access this bill")

    return BillDetail(
        **summarize(bill).model_dump(),
        items=[BillItemOut.model_validate(i) for i in bill.items],
        payments=[PaymentOut.model_validate(p) for p in bill.payments],
    )
