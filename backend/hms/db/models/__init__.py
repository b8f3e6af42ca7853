from hms.db.models.user import UserModel
from hms.db.models.patient import PatientModel
from hms.db.models.schedule_slot import ScheduleSlotModel
from hms.db.models.appointment import AppointmentModel
from hms.db.models.visit import VisitModel
from hms.db.models.medication import MedicationModel
from hms.db.models.prescription import PrescriptionModel, PrescriptionItemModel
from hms.db.models.lab import LabTestModel, LabOrderModel, LabResultModel
from hms.db.models.bill import BillModel, BillItemModel, PaymentModel

__all__ = [
    "UserModel",
    "PatientModel",
    "ScheduleSlotModel",
    "AppointmentModel",
    "VisitModel",
    "MedicationModel",
    "PrescriptionModel",
    "PrescriptionItemModel",
    "LabTestModel",
    "LabOrderModel",
    "LabResultModel",
    "BillModel",
    "BillItemModel",
    "PaymentModel",
]
