# tests/test_billing.py
from decimal import Decimal

import pytest
from sqlalchemy import select

from hms.config.constants import BillItemType, BillStatus, PaymentMethod, Role, StockPolicy
from hms.config.settings import settings
from hms.core.errors import Conflict, Forbidden, NotFound, ValidationFailed
from hms.db.models import BillModel, MedicationModel, VisitModel
from hms.schemas.billing import BillItemIn
from hms.schemas.clinical import PrescriptionItemIn
from hms.services import billing, clinical, pharmacy


@pytest.mark.parametrize(
    "total, paid, expected",
    [
        ("0", "0", BillStatus.PAID),
        ("1000", "0", BillStatus.UNPAID),
        ("1000", "0.01", BillStatus.PARTIAL),
        ("1000", "400", BillStatus.PARTIAL),
        ("1000", "999.99", BillStatus.PARTIAL),
        ("1000", "1000", BillStatus.PAID),
        ("1000", "1200", BillStatus.PAID),
    ],
)
def test_derive_status(total, paid, expected):
    assert billing.derive_status(Decimal(total), Decimal(paid)) == expected


def test_money_rounds_half_up():
    assert billing.money2("2.345") == Decimal("2.35")
    assert billing.money2(None) == Decimal("0.00")


def _item(amount, item_type=BillItemType.CONSULTATION, reference_id=None):
    return BillItemIn(item_type=item_type, amount=Decimal(amount), reference_id=reference_id)


async def _visit(db, patient, doctor):
    visit = VisitModel(patient_id=patient.id, doctor_id=doctor.id, symptoms="Fever")
    db.add(visit)
    await db.commit()
    await db.refresh(visit)
    return visit


async def _stock(db, medication_id):
    return await db.scalar(select(MedicationModel.stock_quantity).where(MedicationModel.id == medication_id))


@pytest.fixture
def on_dispense(monkeypatch):
    monkeypatch.setattr(settings, "stock_deduction_policy", StockPolicy.ON_DISPENSE)


async def test_create_bill_totals_its_items(db, patient):
    summary = await billing.create_bill(db, patient.id, [_item("1000"), _item("250.50", BillItemType.LAB_TEST)])

    assert summary.total_amount == Decimal("1250.50")
    assert summary.total_paid == Decimal("0")
    assert summary.balance == Decimal("1250.50")
    assert summary.status == BillStatus.UNPAID
    assert summary.item_count == 2


async def test_create_bill_validation(db, patient):
    with pytest.raises(ValidationFailed):
        await billing.create_bill(db, patient.id, [])
    with pytest.raises(ValidationFailed) as exc:
        await billing.create_bill(db, patient.id, [_item("100"), _item("-1")])
    assert exc.value.fields == ["items.1.amount"]
    with pytest.raises(NotFound):
        await billing.create_bill(db, 9999, [_item("100")])


async def test_balance_and_status_follow_every_payment(db, patient):
    bill = await billing.create_bill(db, patient.id, [_item("1000")])
    paid = Decimal("0")

    for amount in ("100", "250.25", "649.75"):
        outcome = await billing.record_payment(db, bill.bill_id, Decimal(amount), PaymentMethod.CASH)
        paid += Decimal(amount)
        assert outcome.bill.total_paid == paid
        assert outcome.bill.balance == Decimal("1000") - paid
        assert outcome.bill.status == billing.derive_status(Decimal("1000"), paid)

    assert outcome.bill.status == BillStatus.PAID
    assert outcome.bill.balance == Decimal("0")


async def test_record_payment_rejects_non_positive_amounts(db, patient):
    bill = await billing.create_bill(db, patient.id, [_item("1000")])

    for amount in ("0", "-5"):
        with pytest.raises(ValidationFailed):
            await billing.record_payment(db, bill.bill_id, Decimal(amount), PaymentMethod.CASH)
    with pytest.raises(NotFound):
        await billing.record_payment(db, 9999, Decimal("10"), PaymentMethod.CASH)


async def test_overpayment_reports_paid_with_negative_balance(db, patient):
    bill = await billing.create_bill(db, patient.id, [_item("500")])

    outcome = await billing.record_payment(db, bill.bill_id, Decimal("600"), PaymentMethod.CARD)

    assert outcome.bill.status == BillStatus.PAID
    assert outcome.bill.balance == Decimal("-100")


async def test_stock_leaves_inventory_once_when_the_bill_is_settled(db, patient, doctor, make_medication):
    med = await make_medication("Augmentin 625mg", "100.00", stock=50)
    visit = await _visit(db, patient, doctor)
    prescription = await clinical.create_prescription(
        db, visit.id, doctor.id, [PrescriptionItemIn(medication_id=med.id, quantity=10, dosage="1 tab")]
    )
    dispensed = await pharmacy.dispense_prescription(db, prescription.id)
    bill_id = dispensed.bill.bill_id
    assert dispensed.bill.total_amount == Decimal("1000")
    assert await _stock(db, med.id) == 50

    first = await billing.record_payment(db, bill_id, Decimal("400"), PaymentMethod.CASH)
    assert first.bill.status == BillStatus.PARTIAL
    assert first.bill.balance == Decimal("600")
    assert first.stock_deducted is False
    assert await _stock(db, med.id) == 50

    second = await billing.record_payment(db, bill_id, Decimal("600"), PaymentMethod.JAZZCASH)
    assert second.bill.status == BillStatus.PAID
    assert second.bill.balance == Decimal("0")
    assert second.stock_deducted is True
    assert second.stock_warnings == []
    assert await _stock(db, med.id) == 40

    extra = await billing.record_payment(db, bill_id, Decimal("50"), PaymentMethod.CASH)
    assert extra.stock_deducted is False
    assert await _stock(db, med.id) == 40

    bill = await db.scalar(select(BillModel).where(BillModel.id == bill_id).execution_options(populate_existing=True))
    assert bill.stock_deducted_at is not None


async def test_each_prescription_line_is_deducted_once(db, patient, doctor, make_medication):
    panadol = await make_medication("Panadol 500mg", "5.00", stock=100)
    brufen = await make_medication("Brufen 400mg", "8.00", stock=30)
    visit = await _visit(db, patient, doctor)
    prescription = await clinical.create_prescription(
        db,
        visit.id,
        doctor.id,
        [
            PrescriptionItemIn(medication_id=panadol.id, quantity=20),
            PrescriptionItemIn(medication_id=brufen.id, quantity=10),
        ],
    )
    dispensed = await pharmacy.dispense_prescription(db, prescription.id)
    assert dispensed.bill.item_count == 2

    await billing.pay_outstanding(db, dispensed.bill.bill_id, PaymentMethod.CASH)

    assert await _stock(db, panadol.id) == 80
    assert await _stock(db, brufen.id) == 20


async def test_short_stock_at_payment_is_reported(db, patient, doctor, make_medication):
    med = await make_medication("Omeprazole 20mg", "15.00", stock=10)
    visit = await _visit(db, patient, doctor)
    prescription = await clinical.create_prescription(
        db, visit.id, doctor.id, [PrescriptionItemIn(medication_id=med.id, quantity=6)]
    )
    dispensed = await pharmacy.dispense_prescription(db, prescription.id)
    # stock sold elsewhere between dispensing and payment
    db_med = await db.get(MedicationModel, med.id)
    db_med.stock_quantity = 4
    await db.commit()

    outcome = await billing.pay_outstanding(db, dispensed.bill.bill_id, PaymentMethod.CASH)

    assert outcome.bill.status == BillStatus.PAID
    assert outcome.stock_deducted is True
    [warning] = outcome.stock_warnings
    assert warning.medication_id == med.id
    assert warning.prescription_id == prescription.id
    assert warning.required == 6
    assert warning.available == 4
    assert await _stock(db, med.id) == 4


async def test_on_dispense_policy_deducts_at_the_counter_only(db, patient, doctor, make_medication, on_dispense):
    med = await make_medication("Amoxicillin 250mg", "12.50", stock=30)
    visit = await _visit(db, patient, doctor)
    prescription = await clinical.create_prescription(
        db, visit.id, doctor.id, [PrescriptionItemIn(medication_id=med.id, quantity=8)]
    )

    dispensed = await pharmacy.dispense_prescription(db, prescription.id)
    assert dispensed.stock_deducted is True
    assert await _stock(db, med.id) == 22

    paid = await billing.pay_outstanding(db, dispensed.bill.bill_id, PaymentMethod.CARD)
    assert paid.stock_deducted is False
    assert await _stock(db, med.id) == 22


async def test_pay_outstanding_settles_the_balance(db, patient):
    bill = await billing.create_bill(db, patient.id, [_item("1000")])
    await billing.record_payment(db, bill.bill_id, Decimal("300"), PaymentMethod.CASH)

    outcome = await billing.pay_outstanding(db, bill.bill_id, PaymentMethod.EASYPAISA)

    assert outcome.payment.amount_paid == Decimal("700")
    assert outcome.payment.payment_method == "Easypaisa"
    assert outcome.bill.status == BillStatus.PAID
    with pytest.raises(Conflict):
        await billing.pay_outstanding(db, bill.bill_id, PaymentMethod.CASH)


async def test_draft_bill_for_visit(db, patient, doctor, make_medication, lab_test):
    med = await make_medication("Panadol 500mg", "5.00", stock=100)
    visit = await _visit(db, patient, doctor)
    await clinical.create_prescription(db, visit.id, doctor.id, [PrescriptionItemIn(medication_id=med.id, quantity=4)])
    await clinical.create_lab_order(db, visit.id, lab_test.id)

    draft = await billing.draft_bill_for_visit(db, visit.id)

    assert draft.patient_id == patient.id
    assert [i.item_type for i in draft.items] == [
        BillItemType.CONSULTATION,
        BillItemType.MEDICATION,
        BillItemType.LAB_TEST,
    ]
    assert [i.amount for i in draft.items] == [Decimal("1000.00"), Decimal("20.00"), Decimal("800.00")]


async def test_list_bills_and_detail_are_scoped_to_the_patient(db, patient, make_patient, make_user):
    other = await make_patient("other@cityhospital.pk", "Hamza Butt")
    clerk = await make_user(Role.BILLING, "billing@cityhospital.pk")
    mine = await billing.create_bill(db, patient.id, [_item("100")])
    theirs = await billing.create_bill(db, other.id, [_item("200")])
    await billing.record_payment(db, mine.bill_id, Decimal("100"), PaymentMethod.CASH)

    own = await billing.list_bills(db, patient.user_id, Role.PATIENT.value)
    everything = await billing.list_bills(db, clerk.id, Role.BILLING.value)
    unpaid = await billing.list_bills(db, clerk.id, Role.BILLING.value, status=BillStatus.UNPAID.value)

    assert [b.bill_id for b in own.bills] == [mine.bill_id]
    assert everything.total_count == 2
    assert [b.bill_id for b in unpaid.bills] == [theirs.bill_id]

    detail = await billing.get_bill_detail(db, mine.bill_id, patient.user_id, Role.PATIENT.value)
    assert len(detail.payments) == 1
    assert detail.status == BillStatus.PAID
    with pytest.raises(Forbidden):
        await billing.get_bill_detail(db, theirs.bill_id, patient.user_id, Role.PATIENT.value)


async def test_compute_balance_matches_the_summary(db, patient):
    created = await billing.create_bill(db, patient.id, [_item("750")])
    await billing.record_payment(db, created.bill_id, Decimal("200"), PaymentMethod.CARD)

    bill = await billing.load_bill(db, created.bill_id)

    assert billing.compute_balance(bill) == Decimal("550")
    assert billing.summarize(bill).balance == billing.compute_balance(bill)


async def test_front_desk_bills_cannot_carry_prescription_lines(db, patient, doctor, make_medication):
    med = await make_medication("Augmentin 625mg", "100.00", stock=50)
    visit = await _visit(db, patient, doctor)
    prescription = await clinical.create_prescription(
        db, visit.id, doctor.id, [PrescriptionItemIn(medication_id=med.id, quantity=5)]
    )
    dispensed = await pharmacy.dispense_prescription(db, prescription.id)

    with pytest.raises(ValidationFailed) as exc:
        await billing.create_bill(
            db,
            patient.id,
            [_item("1000"), _item("500", BillItemType.PRESCRIPTION, prescription.id)],
        )
    assert exc.value.fields == ["items.1.item_type"]

    await billing.pay_outstanding(db, dispensed.bill.bill_id, PaymentMethod.CASH)
    assert await _stock(db, med.id) == 45


async def test_prescription_stock_is_only_ever_taken_once(db, patient, doctor, make_medication):
    med = await make_medication("Augmentin 625mg", "100.00", stock=50)
    visit = await _visit(db, patient, doctor)
    prescription = await clinical.create_prescription(
        db, visit.id, doctor.id, [PrescriptionItemIn(medication_id=med.id, quantity=5)]
    )
    dispensed = await pharmacy.dispense_prescription(db, prescription.id)
    await billing.pay_outstanding(db, dispensed.bill.bill_id, PaymentMethod.CASH)
    assert await _stock(db, med.id) == 45

    warnings = await billing.deduct_prescription_stock(db, [prescription.id])
    await db.commit()

    assert warnings == []
    assert await _stock(db, med.id) == 45
