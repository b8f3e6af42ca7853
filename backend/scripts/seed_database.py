# backend/scripts/seed_database.py
import asyncio
import logging
import random
from datetime import date, timedelta
from decimal import Decimal

from sqlalchemy import delete, select

# Add project root to sys.path to allow importing hms without installing it
import sys
from pathlib import Path

backend_dir = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(backend_dir))

from hms.config.constants import Role
from hms.config.settings import settings as app_settings
from hms.core.auth import get_password_hash
from hms.core.errors import HMSError
from hms.db.crud.user import get_user_by_email
from hms.db.base import get_engine, get_session_factory
from hms.db.models import (
    AppointmentModel,
    BillItemModel,
    BillModel,
    LabOrderModel,
    LabResultModel,
    LabTestModel,
    MedicationModel,
    PatientModel,
    PaymentModel,
    PrescriptionItemModel,
    PrescriptionModel,
    ScheduleSlotModel,
    UserModel,
    VisitModel,
)
from hms.db.session import script_db_session, set_global_session_factory
from hms.services.scheduling import book_slot, get_available_slots, ensure_default_slots

logging.basicConfig(
    level=logging.INFO, format="%(asctime)s - %(levelname)s - %(message)s"
)
logger = logging.getLogger("seed_database")

# --- Configuration for Seed Data ---
NUM_DOCTORS = 5
NUM_PATIENTS = 20
BOOKING_DAYS = 3
COMMON_PASSWORD = "TestPassword123!"
COMMON_PASSWORD_HASH = get_password_hash(COMMON_PASSWORD)

STAFF = [
    ("Hospital Admin", "admin@cityhospital.pk", Role.ADMIN),
    ("Front Desk", "reception@cityhospital.pk", Role.RECEPTIONIST),
    ("Billing Clerk", "billing@cityhospital.pk", Role.BILLING),
    ("Pharmacy Counter", "pharmacy@cityhospital.pk", Role.PHARMACIST),
    ("Lab Bench", "lab@cityhospital.pk", Role.LAB_TECHNICIAN),
]

DOCTOR_NAMES = ["Ayesha Khan", "Bilal Ahmed", "Sana Malik", "Usman Tariq", "Hira Siddiqui", "Omar Farooq"]
PATIENT_FIRST_NAMES = ["Ali", "Fatima", "Hamza", "Zainab", "Ahmed", "Maryam", "Hassan", "Amna", "Saad", "Iqra"]
PATIENT_LAST_NAMES = ["Raza", "Butt", "Chaudhry", "Sheikh", "Qureshi", "Javed", "Iqbal", "Mirza"]
VISIT_REASONS = ["Fever and cough", "Follow-up", "Back pain", "Routine check-up", "Headache", "Skin rash"]

MEDICATIONS = [
    # name, unit price, stock, threshold
    ("Panadol 500mg", "5.00", 500, 50),
    ("Amoxicillin 250mg", "12.50", 120, 30),
    ("Brufen 400mg", "8.00", 8, 20),
    ("Augmentin 625mg", "45.00", 60, 15),
    ("Omeprazole 20mg", "15.00", 1, 25),
]

LAB_TESTS = [
    ("Complete Blood Count", "Hematology", "800.00"),
    ("Lipid Profile", "Chemistry", "1500.00"),
    ("Urine R/E", "Pathology", "400.00"),
    ("Chest X-Ray", "Radiology", "1200.00"),
]


async def clear_data(db):
    logger.info("Clearing existing data...")
    for model in (
        PaymentModel,
        BillItemModel,
        BillModel,
        LabResultModel,
        LabOrderModel,
        PrescriptionItemModel,
        PrescriptionModel,
        VisitModel,
        AppointmentModel,
        ScheduleSlotModel,
        PatientModel,
        LabTestModel,
        MedicationModel,
        UserModel,
    ):
        await db.execute(delete(model))
    await db.commit()
    logger.info("Existing data cleared.")


async def _get_or_create_user(db, full_name: str, email: str, role: Role) -> UserModel:
    existing = await get_user_by_email(db, email)
    if existing:
        logger.info(f"User {email} already exists with ID {existing.id}, using existing.")
        return existing
    user = UserModel(full_name=full_name, email=email, password_hash=COMMON_PASSWORD_HASH, role=role.value)
    db.add(user)
    await db.flush()
    return user


async def seed_all_data(db):
    # 1. Staff and doctors
    for full_name, email, role in STAFF:
        await _get_or_create_user(db, full_name, email, role)

    doctor_ids = []
    for i, name in enumerate(DOCTOR_NAMES[:NUM_DOCTORS]):
        doctor = await _get_or_create_user(db, f"Dr. {name}", f"doctor{i + 1}@cityhospital.pk", Role.DOCTOR)
        doctor_ids.append(doctor.id)
    await db.commit()
    logger.info(f"Seeded {len(STAFF)} staff accounts and {len(doctor_ids)} doctors.")

    # 2. Patients, each with a login
    patient_ids = []
    for i in range(NUM_PATIENTS):
        full_name = f"{random.choice(PATIENT_FIRST_NAMES)} {random.choice(PATIENT_LAST_NAMES)}"
        user = await _get_or_create_user(db, full_name, f"patient{i + 1}@cityhospital.pk", Role.PATIENT)
        patient = (await db.execute(select(PatientModel).where(PatientModel.user_id == user.id))).scalar_one_or_none()
        if not patient:
            patient = PatientModel(
                user_id=user.id,
                full_name=full_name,
                gender=random.choice(["M", "F"]),
                dob=date(random.randint(1950, 2015), random.randint(1, 12), random.randint(1, 28)),
                phone=f"03{random.randint(0, 4)}{random.randint(1000000, 9999999)}",
                cnic=f"{random.randint(10000, 99999)}-{random.randint(1000000, 9999999)}-{random.randint(1, 9)}",
            )
            db.add(patient)
            await db.flush()
        patient_ids.append(patient.id)
    await db.commit()
    logger.info(f"Seeded {len(patient_ids)} patients.")

    # 3. Pharmacy and lab catalog
    for name, price, stock, threshold in MEDICATIONS:
        exists = await db.scalar(select(MedicationModel.id).where(MedicationModel.name == name))
        if not exists:
            db.add(MedicationModel(
                name=name, unit_price=Decimal(price), stock_quantity=stock, low_stock_threshold=threshold
            ))
    for test_name, category, cost in LAB_TESTS:
        exists = await db.scalar(select(LabTestModel.id).where(LabTestModel.test_name == test_name))
        if not exists:
            db.add(LabTestModel(test_name=test_name, category=category, cost=Decimal(cost)))
    await db.commit()
    logger.info(f"Seeded {len(MEDICATIONS)} medications and {len(LAB_TESTS)} lab tests.")

    # 4. Slots and bookings through the regular allocator
    booked, skipped = 0, 0
    for offset in range(BOOKING_DAYS):
        day = date.today() + timedelta(days=offset)
        for doctor_id in doctor_ids:
            await ensure_default_slots(db, doctor_id, day)
            open_slots = await get_available_slots(db, doctor_id, day)
            for slot in random.sample(open_slots, k=min(4, len(open_slots))):
                try:
                    await book_slot(
                        db,
                        slot_id=slot.id,
                        doctor_id=doctor_id,
                        patient_id=random.choice(patient_ids),
                        reason=random.choice(VISIT_REASONS),
                    )
                    booked += 1
                except HMSError as e:
                    logger.warning(f"Skipped booking slot {slot.id}: {e.message}")
                    skipped += 1

    logger.info(f"Booked {booked} appointments ({skipped} skipped).")
    logger.info(f"Database seeding completed. Every account uses the password '{COMMON_PASSWORD}'.")


async def main(should_clear: bool):
    logger.info(f"Connecting to database at: {app_settings.database_url}")
    engine = await get_engine(str(app_settings.database_url))
    set_global_session_factory(await get_session_factory(engine))

    async with script_db_session() as db:
        if should_clear:
            await clear_data(db)
        await seed_all_data(db)

    await engine.dispose()
    logger.info("Database connection closed.")


if __name__ == "__main__":
    import argparse

    parser = argparse.ArgumentParser(
        description="Seed the database with demo staff, patients, catalog and bookings."
    )
    parser.add_argument(
        "--clear", action="store_true", help="Clear existing data before seeding."
    )
    args = parser.parse_args()
    asyncio.run(main(should_clear=args.clear))
