"""Visits, prescriptions and lab orders: what happens between booking and billing."""
import logging
from datetime import datetime, timezone
from typing import Dict, List, Optional

from sqlalchemy import case, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from hms.config.constants import AppointmentStatus, LabOrderStatus, LabPriority
from hms.core.errors import Conflict, Forbidden, NotFound, ValidationFailed, rollback_and_raise
from hms.db.crud.patient import get_patient
from hms.db.models import (
    AppointmentModel,
    LabOrderModel,
    LabResultModel,
    LabTestModel,
    MedicationModel,
    PrescriptionItemModel,
    PrescriptionModel,
    VisitModel,
)
from hms.schemas.clinical import (
    LabOrderOut,
    LabResultOut,
    PendingLabOrder,
    PrescriptionItemIn,
    PrescriptionOut,
    VisitHistoryEntry,
    VisitOut,
)
from hms.services.billing import patient_scope
from hms.services.pharmacy import is_dispensed
from hms.services.scheduling import transition_status

logger = logging.getLogger(__name__)

LAB_TRANSITIONS: Dict[LabOrderStatus, set] = {
    LabOrderStatus.PENDING: {LabOrderStatus.IN_PROGRESS},
    LabOrderStatus.IN_PROGRESS: {LabOrderStatus.COMPLETED},
    LabOrderStatus.COMPLETED: set(),
}


def _now() -> datetime:
    return datetime.now(timezone.utc)


async def _get_visit(db: AsyncSession, visit_id: int) -> VisitModel:
    visit = await db.get(VisitModel, visit_id)
    if not visit:
        raise NotFound("Visit not found")
    return visit


async def start_visit(db: AsyncSession, appointment_id: int) -> VisitOut:
    """
    Open the visit for an appointment and mark the appointment InProgress.

    The appointment reason becomes the visit's symptoms. Starting twice
    returns the visit created the first time.
    """
    appointment = await db.get(AppointmentModel, appointment_id)
    if not appointment:
        raise NotFound("Appointment not found")

    existing = (
        await db.execute(
            select(VisitModel)
            .where(VisitModel.appointment_id == appointment_id)
            .order_by(VisitModel.id)
            .limit(1)
        )
    ).scalar_one_or_none()
    if existing:
        return VisitOut.model_validate(existing)

    appointment.status = transition_status(
        appointment.status, AppointmentStatus.IN_PROGRESS
    ).value
    visit = VisitModel(
        appointment_id=appointment.id,
        patient_id=appointment.patient_id,
        doctor_id=appointment.doctor_id,
        visit_time=datetime.now(),
        symptoms=appointment.reason,
    )
    db.add(visit)
    try:
        await db.commit()
    except SQLAlchemyError as e:
        await rollback_and_raise(db, e, f"starting visit for appointment {appointment_id}")

    await db.refresh(visit)
    logger.info(f"Started visit_id={visit.id} for appointment_id={appointment_id}")
    return VisitOut.model_validate(visit)


async def complete_visit(
    db: AsyncSession,
    visit_id: int,
    diagnosis: Optional[str] = None,
    notes: Optional[str] = None,
) -> VisitOut:
    visit = await _get_visit(db, visit_id)
    if diagnosis is not None:
        visit.diagnosis = diagnosis
    if notes is not None:
        visit.notes = notes

    if visit.appointment_id is not None:
        appointment = await db.get(AppointmentModel, visit.appointment_id)
        # a finished visit may still get its notes amended
        if appointment and appointment.status != AppointmentStatus.COMPLETED.value:
            appointment.status = transition_status(
                appointment.status, AppointmentStatus.COMPLETED
            ).value

    try:
        await db.commit()
    except SQLAlchemyError as e:
        await rollback_and_raise(db, e, f"completing visit {visit_id}")

    logger.info(f"Completed visit_id={visit_id}")
    return VisitOut.model_validate(visit)


async def _load_prescription(db: AsyncSession, prescription_id: int) -> Optional[PrescriptionModel]:
    result = await db.execute(
        select(PrescriptionModel)
        .where(PrescriptionModel.id == prescription_id)
        .options(selectinload(PrescriptionModel.items))
        .execution_options(populate_existing=True)
    )
    return result.scalar_one_or_none()


async def create_prescription(
    db: AsyncSession,
    visit_id: int,
    doctor_id: int,
    items: List[PrescriptionItemIn],
) -> PrescriptionOut:
    await _get_visit(db, visit_id)
    if not items:
        raise ValidationFailed("A prescription needs at least one item.", fields=["items"])
    bad = [f"items.{i}.quantity" for i, item in enumerate(items) if not item.quantity or item.quantity <= 0]
    if bad:
        raise ValidationFailed("Prescribed quantities must be greater than zero.", fields=bad)

    wanted = {item.medication_id for item in items}
    found = set(
        (
            await db.execute(select(MedicationModel.id).where(MedicationModel.id.in_(wanted)))
        ).scalars().all()
    )
    missing = sorted(wanted - found)
    if missing:
        raise NotFound(f"Medication not found: {', '.join(str(m) for m in missing)}")

    prescription = PrescriptionModel(
        visit_id=visit_id,
        doctor_id=doctor_id,
        items=[PrescriptionItemModel(**item.model_dump()) for item in items],
    )
    db.add(prescription)
    try:
        await db.commit()
    except SQLAlchemyError as e:
        await rollback_and_raise(db, e, f"creating prescription for visit {visit_id}")

    prescription = await _load_prescription(db, prescription.id)
    logger.info(
        f"Created prescription_id={prescription.id} with {len(prescription.items)} items for visit_id={visit_id}"
    )
    return PrescriptionOut.model_validate(prescription)


async def delete_prescription(db: AsyncSession, prescription_id: int) -> None:
    """Hard delete. A dispensed prescription is part of a bill and stays."""
    prescription = await _load_prescription(db, prescription_id)
    if prescription is None:
        raise NotFound("Prescription not found")
    if await is_dispensed(db, prescription_id):
        raise Conflict("Cannot delete a prescription that has already been dispensed")

    try:
        await db.delete(prescription)
        await db.commit()
    except SQLAlchemyError as e:
        await rollback_and_raise(db, e, f"deleting prescription {prescription_id}")
    logger.info(f"Deleted prescription_id={prescription_id}")


async def create_lab_order(
    db: AsyncSession,
    visit_id: int,
    lab_test_id: int,
    priority: LabPriority = LabPriority.ROUTINE,
) -> LabOrderOut:
    visit = await _get_visit(db, visit_id)
    if not await db.get(LabTestModel, lab_test_id):
        raise NotFound("Lab test not found")

    order = LabOrderModel(
        visit_id=visit.id,
        patient_id=visit.patient_id,
        doctor_id=visit.doctor_id,
        lab_test_id=lab_test_id,
        priority=LabPriority(priority).value,
        status=LabOrderStatus.PENDING.value,
        order_time=_now(),
    )
    db.add(order)
    try:
        await db.commit()
    except SQLAlchemyError as e:
        await rollback_and_raise(db, e, f"ordering lab test {lab_test_id} for visit {visit_id}")

    await db.refresh(order)
    logger.info(f"Created lab_order_id={order.id} ({order.priority}) for visit_id={visit_id}")
    return LabOrderOut.model_validate(order)


def _apply_lab_status(order: LabOrderModel, target: LabOrderStatus) -> None:
    current = LabOrderStatus(order.status)
    target = LabOrderStatus(target)
    if target not in LAB_TRANSITIONS[current]:
        raise Conflict(f"Cannot change a lab order from {current.value} to {target.value}.")
    order.status = target.value
    if target == LabOrderStatus.IN_PROGRESS:
        order.sample_time = _now()
    elif target == LabOrderStatus.COMPLETED:
        order.completed_time = _now()


async def update_lab_order_status(
    db: AsyncSession, order_id: int, status: LabOrderStatus
) -> LabOrderOut:
    order = await db.get(LabOrderModel, order_id)
    if not order:
        raise NotFound("Lab order not found")

    _apply_lab_status(order, status)
    try:
        await db.commit()
    except SQLAlchemyError as e:
        await rollback_and_raise(db, e, f"updating lab order {order_id}")

    logger.info(f"Lab order {order_id} is now {order.status}")
    return LabOrderOut.model_validate(order)


async def upload_lab_result(
    db: AsyncSession,
    order_id: int,
    result_text: Optional[str],
    file_path: Optional[str],
    uploaded_by: Optional[int],
) -> LabResultOut:
    """
    Attach a result to a lab order and complete it. A Pending order is
    treated as sampled at the same moment.
    """
    if not result_text and not file_path:
        raise ValidationFailed(
            "A lab result needs result text or a file.", fields=["result_text", "file_path"]
        )
    order = await db.get(LabOrderModel, order_id)
    if not order:
        raise NotFound("Lab order not found")
    if order.status == LabOrderStatus.COMPLETED.value:
        raise Conflict("This lab order is already completed")

    if order.status == LabOrderStatus.PENDING.value:
        _apply_lab_status(order, LabOrderStatus.IN_PROGRESS)
    _apply_lab_status(order, LabOrderStatus.COMPLETED)

    lab_result = LabResultModel(
        lab_order_id=order.id,
        result_text=result_text,
        file_path=file_path,
        uploaded_by=uploaded_by,
        uploaded_at=_now(),
    )
    db.add(lab_result)
    try:
        await db.commit()
    except SQLAlchemyError as e:
        await rollback_and_raise(db, e, f"uploading result for lab order {order_id}")

    logger.info(f"Uploaded result_id={lab_result.id} for lab_order_id={order_id}")
    return LabResultOut.model_validate(lab_result)


async def list_pending_lab_orders(
    db: AsyncSession, skip: int = 0, limit: int = 50
) -> List[PendingLabOrder]:
    """The lab worklist: orders not yet completed, STAT first, then Urgent, then by order time."""
    urgency = case(
        (LabOrderModel.priority == LabPriority.STAT.value, 1),
        (LabOrderModel.priority == LabPriority.URGENT.value, 2),
        else_=3,
    )
    result = await db.execute(
        select(LabOrderModel)
        .where(LabOrderModel.status != LabOrderStatus.COMPLETED.value)
        .options(selectinload(LabOrderModel.lab_test))
        .order_by(urgency, LabOrderModel.order_time, LabOrderModel.id)
        .offset(skip)
        .limit(limit)
    )
    return [
        PendingLabOrder(
            **LabOrderOut.model_validate(order).model_dump(),
            test_name=order.lab_test.test_name if order.lab_test else None,
        )
        for order in result.scalars().all()
    ]


async def list_patient_visits(
    db: AsyncSession,
    patient_id: int,
    user_id: int,
    role: str,
    limit: Optional[int] = None,
) -> List[VisitHistoryEntry]:
    """
    A patient's visits, newest first, with what was prescribed and ordered at
    each one. Patients may only read their own history.
    """
    own_patient_id = await patient_scope(db, user_id, role)
    if own_patient_id is not None and own_patient_id != patient_id:
        raise Forbidden("Not authorized to view this patient's history")
    if not await get_patient(db, patient_id):
        raise NotFound("Patient not found")

    query = (
        select(VisitModel)
        .where(VisitModel.patient_id == patient_id)
        .options(
            selectinload(VisitModel.prescriptions).selectinload(PrescriptionModel.items),
            selectinload(VisitModel.lab_orders),
        )
        .order_by(VisitModel.visit_time.desc(), VisitModel.id.desc())
        .execution_options(populate_existing=True)
    )
    if limit:
        query = query.limit(limit)
    result = await db.execute(query)

    history = []
    for visit in result.scalars().all():
        history.append(
            VisitHistoryEntry(
                **VisitOut.model_validate(visit).model_dump(),
                prescriptions=[
                    PrescriptionOut.model_validate(p) for p in sorted(visit.prescriptions, key=lambda p: p.id)
                ],
                lab_orders=[
                    LabOrderOut.model_validate(o) for o in sorted(visit.lab_orders, key=lambda o: o.id)
                ],
            )
        )
    return history
