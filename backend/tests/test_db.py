# tests/test_db.py
import pytest

from hms.db import session as db_session
from hms.db.models import BillItemModel, PatientModel, PrescriptionItemModel


def _fk_names(model):
    return {fk.name for fk in model.__table__.foreign_key_constraints}


def test_foreign_keys_follow_the_migration_names():
    assert _fk_names(PatientModel) == {"fk_patients_user_id_users"}
    assert _fk_names(PrescriptionItemModel) == {
        "fk_prescription_items_prescription_id_prescriptions",
        "fk_prescription_items_medication_id_medications",
    }
    assert _fk_names(BillItemModel) == {"fk_bill_items_bill_id_bills"}


async def test_script_session_needs_a_registered_factory(session_factory, monkeypatch):
    monkeypatch.setattr(db_session, "_session_factory", None)
    with pytest.raises(RuntimeError):
        async with db_session.script_db_session():
            pass

    db_session.set_global_session_factory(session_factory)
    async with db_session.script_db_session() as session:
        assert session.bind is not None
