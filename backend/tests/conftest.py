# tests/conftest.py
import os

# settings are read at import time
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:////tmp/hms-test.db")
os.environ.setdefault("SECRET_KEY", "test-secret-key-not-for-production")

from decimal import Decimal

import pytest
from sqlalchemy.ext.asyncio import create_async_engine

from hms.config.constants import Role
from hms.core.auth import get_password_hash
from hms.db.base import Base, get_session_factory
from hms.db.models import (
    LabTestModel,
    MedicationModel,
    PatientModel,
    UserModel,
)

PASSWORD = "CorrectHorse42"
PASSWORD_HASH = get_password_hash(PASSWORD)


@pytest.fixture
async def engine(tmp_path):
    # a file database so concurrent sessions get their own connections
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'hms.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
async def session_factory(engine):
    return await get_session_factory(engine)


@pytest.fixture
async def db(session_factory):
    async with session_factory() as session:
        yield session


@pytest.fixture
def make_user(db):
    async def _make_user(role: Role, email: str, full_name: str = "Test User", is_active: bool = True):
        user = UserModel(
            full_name=full_name,
            email=email,
            password_hash=PASSWORD_HASH,
            role=role.value,
            is_active=is_active,
        )
        db.add(user)
        await db.commit()
        await db.refresh(user)
        return user

    return _make_user


@pytest.fixture
def make_patient(db, make_user):
    async def _make_patient(email: str, full_name: str = "Ali Raza"):
        user = await make_user(Role.PATIENT, email, full_name)
        patient = PatientModel(user_id=user.id, full_name=full_name)
        db.add(patient)
        await db.commit()
        await db.refresh(patient)
        return patient

    return _make_patient


@pytest.fixture
async def doctor(make_user):
    return await make_user(Role.DOCTOR, "doctor@cityhospital.pk", "Dr. Ayesha Khan")


@pytest.fixture
async def other_doctor(make_user):
    return await make_user(Role.DOCTOR, "doctor2@cityhospital.pk", "Dr. Bilal Ahmed")


@pytest.fixture
async def patient(make_patient):
    return await make_patient("patient@cityhospital.pk", "Fatima Sheikh")


@pytest.fixture
def make_medication(db):
    async def _make_medication(name: str, unit_price: str, stock: int, threshold: int = 10):
        med = MedicationModel(
            name=name,
            unit_price=Decimal(unit_price),
            stock_quantity=stock,
            low_stock_threshold=threshold,
        )
        db.add(med)
        await db.commit()
        await db.refresh(med)
        return med

    return _make_medication


@pytest.fixture
async def lab_test(db):
    test = LabTestModel(test_name="Complete Blood Count", category="Hematology", cost=Decimal("800.00"))
    db.add(test)
    await db.commit()
    await db.refresh(test)
    return test
