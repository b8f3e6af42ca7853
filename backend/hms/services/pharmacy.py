import logging
from datetime import datetime, timezone
from decimal import Decimal
from typing import List

from sqlalchemy import exists, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from hms.config.constants import BillItemType, BillStatus, StockPolicy
from hms.config.settings import settings
from hms.core.errors import Conflict, NotFound, ValidationFailed, rollback_and_raise
from hms.db.models import (
    MedicationModel,
    PrescriptionItemModel,
    PrescriptionModel,
    VisitModel,
)
from hms.schemas.billing import BillItemIn
from hms.schemas.clinical import PrescriptionItemOut
from hms.schemas.pharmacy import (
    DispenseOutcome,
    LowStockEntry,
    MedicationOut,
    PendingPrescription,
)
from hms.services.billing import (
    D,
    build_bill,
    deduct_stock_for_bill,
    load_bill,
    money2,
    on_fully_paid,
    summarize,
)

logger = logging.getLogger(__name__)


async def is_dispensed(db: AsyncSession, prescription_id: int) -> bool:
    return bool(
        await db.scalar(
            select(
                exists().where(
                    PrescriptionModel.id == prescription_id,
                    PrescriptionModel.dispensed_at.is_not(None),
                )
            )
        )
    )


async def dispense_prescription(db: AsyncSession, prescription_id: int) -> DispenseOutcome:
    """
    Bill a prescription at the pharmacy counter.

    The prescription is claimed with a conditional update before anything
    else is written, so only one counter can dispense it. Creates an Unpaid
    bill with one Prescription line per prescribed item. Stock leaves the
    inventory now under the ``on_dispense`` policy, otherwise when the bill
    is fully paid (at once, for a bill that costs nothing).

    Raises:
        NotFound: unknown prescription.
        Conflict: already dispensed, or a medication is short on stock.
    """
    result = await db.execute(
        select(PrescriptionModel)
        .where(PrescriptionModel.id == prescription_id)
        .options(selectinload(PrescriptionModel.items).selectinload(PrescriptionItemModel.medication))
    )
    prescription = result.scalar_one_or_none()
    if prescription is None:
        raise NotFound("Prescription not found")

    patient_id = None
    if prescription.visit_id is not None:
        visit = await db.get(VisitModel, prescription.visit_id)
        patient_id = visit.patient_id if visit else None

    lines, short = [], None
    for item in sorted(prescription.items, key=lambda i: i.id):
        med = item.medication
        if med is None:
            raise NotFound(f"Medication {item.medication_id} not found")
        if short is None and med.stock_quantity < item.quantity:
            short = (med.id, med.name, item.quantity, med.stock_quantity)
        description = med.name if not item.dosage else f"{med.name} ({item.dosage})"
        lines.append(
            BillItemIn(
                item_type=BillItemType.PRESCRIPTION,
                reference_id=prescription_id,
                description=description,
                quantity=item.quantity,
                amount=money2(D(med.unit_price) * item.quantity),
            )
        )
    bill = build_bill(patient_id, lines)

    deducted, warnings = False, []
    try:
        claimed = await db.execute(
            update(PrescriptionModel)
            .where(PrescriptionModel.id == prescription_id, PrescriptionModel.dispensed_at.is_(None))
            .values(dispensed_at=datetime.now(timezone.utc))
            .execution_options(synchronize_session=False)
        )
        if claimed.rowcount != 1:
            await db.rollback()
            logger.warning(f"Prescription {prescription_id} was already dispensed")
            raise Conflict("Prescription already dispensed")

        if short is not None:
            await db.rollback()
            medication_id, name, required, available = short
            logger.warning(
                f"Cannot dispense prescription {prescription_id}: {name} "
                f"needs {required}, {available} in stock"
            )
            raise Conflict(
                f"Insufficient stock for {name}: required {required}, available {available}",
                medication_id=medication_id,
            )

        db.add(bill)
        await db.flush()
        if settings.stock_deduction_policy == StockPolicy.ON_DISPENSE:
            deducted, warnings = await deduct_stock_for_bill(db, bill)
        elif bill.status == BillStatus.PAID.value:
            deducted, warnings = await on_fully_paid(db, bill)
        await db.commit()
    except SQLAlchemyError as e:
        await rollback_and_raise(db, e, f"dispensing prescription {prescription_id}")

    bill = await load_bill(db, bill.id)
    logger.info(
        f"Dispensed prescription {prescription_id} on bill_id={bill.id} "
        f"(stock deducted: {deducted})"
    )
    return DispenseOutcome(
        prescription_id=prescription_id,
        bill=summarize(bill),
        stock_deducted=deducted,
        stock_warnings=warnings,
    )


async def restock(db: AsyncSession, medication_id: int, quantity: int) -> MedicationOut:
    if quantity is None or quantity <= 0:
        raise ValidationFailed("Restock quantity must be greater than zero.", fields=["quantity"])

    try:
        result = await db.execute(
            update(MedicationModel)
            .where(MedicationModel.id == medication_id)
            .values(stock_quantity=MedicationModel.stock_quantity + quantity)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            await db.rollback()
            raise NotFound("Medication not found")
        await db.commit()
    except SQLAlchemyError as e:
        await rollback_and_raise(db, e, f"restocking medication {medication_id}")

    medication = (
        await db.execute(
            select(MedicationModel)
            .where(MedicationModel.id == medication_id)
            .execution_options(populate_existing=True)
        )
    ).scalar_one()
    logger.info(f"Restocked {medication.name} by {quantity}, now {medication.stock_quantity}")
    return MedicationOut.model_validate(medication)


async def low_stock(db: AsyncSession) -> List[LowStockEntry]:
    """Medications at or under their threshold, scarcest first."""
    result = await db.execute(
        select(MedicationModel)
        .where(MedicationModel.stock_quantity <= MedicationModel.low_stock_threshold)
        .order_by(MedicationModel.stock_quantity, MedicationModel.name)
    )
    ratio = Decimal(str(settings.low_stock_alert_ratio))
    entries = []
    for med in result.scalars().all():
        entry = LowStockEntry.model_validate(med)
        entry.is_critical = Decimal(med.stock_quantity) < Decimal(med.low_stock_threshold) * ratio
        entries.append(entry)
    return entries


async def list_pending_prescriptions(
    db: AsyncSession, skip: int = 0, limit: int = 50
) -> List[PendingPrescription]:
    """
    The dispensing queue: undispensed prescriptions, newest first, each
    priced and flagged when the shelf cannot cover it.
    """
    result = await db.execute(
        select(PrescriptionModel)
        .where(PrescriptionModel.dispensed_at.is_(None))
        .options(
            selectinload(PrescriptionModel.items).selectinload(PrescriptionItemModel.medication),
            selectinload(PrescriptionModel.visit).selectinload(VisitModel.patient),
        )
        .order_by(PrescriptionModel.created_at.desc(), PrescriptionModel.id.desc())
        .offset(skip)
        .limit(limit)
        .execution_options(populate_existing=True)
    )

    queue = []
    for prescription in result.scalars().all():
        items = sorted(prescription.items, key=lambda i: i.id)
        short = [
            i.medication.name
            for i in items
            if i.medication is not None and i.medication.stock_quantity < (i.quantity or 0)
        ]
        visit = prescription.visit
        queue.append(
            PendingPrescription(
                id=prescription.id,
                visit_id=prescription.visit_id,
                doctor_id=prescription.doctor_id,
                patient_id=visit.patient_id if visit else None,
                patient_name=visit.patient.full_name if visit and visit.patient else None,
                created_at=prescription.created_at,
                items=[PrescriptionItemOut.model_validate(i) for i in items],
                total_amount=money2(
                    sum(
                        (D(i.medication.unit_price) * (i.quantity or 0) for i in items if i.medication),
                        Decimal("0"),
                    )
                ),
                can_dispense=not short,
                issue=f"Insufficient stock for {', '.join(short)}" if short else None,
            )
        )
    return queue
