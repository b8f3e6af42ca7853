# tests/test_pharmacy.py
import asyncio
from decimal import Decimal

import pytest
from sqlalchemy import func, select

from hms.config.constants import BillItemType, BillStatus, StockPolicy
from hms.config.settings import settings
from hms.core.errors import Conflict, NotFound, ValidationFailed
from hms.db.models import BillItemModel, MedicationModel, VisitModel
from hms.schemas.clinical import PrescriptionItemIn
from hms.services import billing, clinical, pharmacy


async def _prescribe(db, patient, doctor, *lines):
    visit = VisitModel(patient_id=patient.id, doctor_id=doctor.id)
    db.add(visit)
    await db.commit()
    await db.refresh(visit)
    items = [PrescriptionItemIn(medication_id=med.id, quantity=qty, dosage="1 tab twice daily") for med, qty in lines]
    return await clinical.create_prescription(db, visit.id, doctor.id, items)


async def _stock(db, medication_id):
    return await db.scalar(select(MedicationModel.stock_quantity).where(MedicationModel.id == medication_id))


async def test_dispense_creates_an_unpaid_prescription_bill(db, patient, doctor, make_medication):
    med = await make_medication("Augmentin 625mg", "45.00", stock=60)
    prescription = await _prescribe(db, patient, doctor, (med, 3))

    outcome = await pharmacy.dispense_prescription(db, prescription.id)

    assert outcome.prescription_id == prescription.id
    assert outcome.bill.status == BillStatus.UNPAID
    assert outcome.bill.patient_id == patient.id
    assert outcome.bill.total_amount == Decimal("135.00")
    assert outcome.stock_deducted is False

    detail = await billing.get_bill_detail(db, outcome.bill.bill_id)
    [line] = detail.items
    assert line.item_type == BillItemType.PRESCRIPTION.value
    assert line.reference_id == prescription.id
    assert line.quantity == 3
    assert line.description == "Augmentin 625mg (1 tab twice daily)"


async def test_dispensing_twice_conflicts(db, patient, doctor, make_medication):
    med = await make_medication("Panadol 500mg", "5.00", stock=100)
    prescription = await _prescribe(db, patient, doctor, (med, 10))
    await pharmacy.dispense_prescription(db, prescription.id)

    with pytest.raises(Conflict):
        await pharmacy.dispense_prescription(db, prescription.id)


async def test_dispense_names_the_short_medication(db, patient, doctor, make_medication):
    plenty = await make_medication("Panadol 500mg", "5.00", stock=100)
    short = await make_medication("Brufen 400mg", "8.00", stock=2)
    prescription = await _prescribe(db, patient, doctor, (plenty, 10), (short, 5))

    short_id, prescription_id = short.id, prescription.id

    with pytest.raises(Conflict) as exc:
        await pharmacy.dispense_prescription(db, prescription_id)

    assert "Brufen 400mg" in exc.value.message
    assert exc.value.detail["medication_id"] == short_id
    assert not await pharmacy.is_dispensed(db, prescription_id)


async def test_dispense_unknown_prescription(db):
    with pytest.raises(NotFound):
        await pharmacy.dispense_prescription(db, 9999)


async def test_restock(db, make_medication):
    med = await make_medication("Omeprazole 20mg", "15.00", stock=3)

    restocked = await pharmacy.restock(db, med.id, 47)

    assert restocked.stock_quantity == 50
    with pytest.raises(ValidationFailed):
        await pharmacy.restock(db, med.id, 0)
    with pytest.raises(NotFound):
        await pharmacy.restock(db, 9999, 5)


async def test_low_stock_lists_scarcest_first_and_flags_critical(db, make_medication):
    await make_medication("Panadol 500mg", "5.00", stock=500, threshold=50)
    await make_medication("Brufen 400mg", "8.00", stock=8, threshold=20)
    await make_medication("Omeprazole 20mg", "15.00", stock=1, threshold=25)
    await make_medication("Amoxicillin 250mg", "12.50", stock=30, threshold=30)

    entries = await pharmacy.low_stock(db)

    assert [e.name for e in entries] == ["Omeprazole 20mg", "Brufen 400mg", "Amoxicillin 250mg"]
    assert [e.is_critical for e in entries] == [True, False, False]


async def test_free_medication_is_settled_at_the_counter(db, patient, doctor, make_medication):
    med = await make_medication("ORS sachet", "0.00", stock=50)
    prescription = await _prescribe(db, patient, doctor, (med, 5))

    outcome = await pharmacy.dispense_prescription(db, prescription.id)

    assert outcome.bill.total_amount == Decimal("0.00")
    assert outcome.bill.status == BillStatus.PAID
    assert outcome.stock_deducted is True
    assert await _stock(db, med.id) == 45


async def test_concurrent_dispenses_of_one_prescription_have_one_winner(
    db, session_factory, patient, doctor, make_medication, monkeypatch
):
    monkeypatch.setattr(settings, "stock_deduction_policy", StockPolicy.ON_DISPENSE)
    med = await make_medication("Panadol 500mg", "5.00", stock=100)
    prescription = await _prescribe(db, patient, doctor, (med, 10))

    async def dispense():
        async with session_factory() as session:
            return await pharmacy.dispense_prescription(session, prescription.id)

    results = await asyncio.gather(dispense(), dispense(), return_exceptions=True)

    winners = [r for r in results if not isinstance(r, Exception)]
    losers = [r for r in results if isinstance(r, Exception)]
    assert len(winners) == 1
    assert len(losers) == 1 and isinstance(losers[0], Conflict)

    lines = await db.scalar(
        select(func.count(BillItemModel.id)).where(
            BillItemModel.item_type == BillItemType.PRESCRIPTION.value,
            BillItemModel.reference_id == prescription.id,
        )
    )
    assert lines == 1
    assert await _stock(db, med.id) == 90


async def test_pending_queue_lists_undispensed_prescriptions(db, patient, doctor, make_medication):
    panadol = await make_medication("Panadol 500mg", "5.00", stock=100)
    brufen = await make_medication("Brufen 400mg", "8.00", stock=2)
    done = await _prescribe(db, patient, doctor, (panadol, 10))
    waiting = await _prescribe(db, patient, doctor, (panadol, 4), (brufen, 5))
    await pharmacy.dispense_prescription(db, done.id)

    [entry] = await pharmacy.list_pending_prescriptions(db)

    assert entry.id == waiting.id
    assert entry.patient_id == patient.id
    assert entry.patient_name == "Fatima Sheikh"
    assert len(entry.items) == 2
    assert entry.total_amount == Decimal("60.00")
    assert entry.can_dispense is False
    assert "Brufen 400mg" in entry.issue
