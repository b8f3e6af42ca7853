from enum import Enum


class Role(str, Enum):
    ADMIN = "admin"
    DOCTOR = "doctor"
    PATIENT = "patient"
    PHARMACIST = "pharmacist"
    LAB_TECHNICIAN = "lab_technician"
    RECEPTIONIST = "receptionist"
    BILLING = "billing"


class AppointmentStatus(str, Enum):
    SCHEDULED = "Scheduled"
    IN_PROGRESS = "InProgress"
    COMPLETED = "Completed"
    CANCELLED = "Cancelled"


class BillStatus(str, Enum):
    UNPAID = "Unpaid"
    PARTIAL = "Partial"
    PAID = "Paid"


class BillItemType(str, Enum):
    CONSULTATION = "Consultation"
    MEDICATION = "Medication"
    LAB_TEST = "LabTest"
    # one line per prescribed item, reference_id points at the prescription
    PRESCRIPTION = "Prescription"


class LabOrderStatus(str, Enum):
    PENDING = "Pending"
    IN_PROGRESS = "InProgress"
    COMPLETED = "Completed"


class LabPriority(str, Enum):
    ROUTINE = "Routine"
    URGENT = "Urgent"
    STAT = "STAT"


class PaymentMethod(str, Enum):
    CASH = "Cash"
    CARD = "Card"
    JAZZCASH = "JazzCash"
    EASYPAISA = "Easypaisa"


class StockPolicy(str, Enum):
    """When prescription stock leaves the inventory."""

    ON_PAYMENT = "on_payment"
    ON_DISPENSE = "on_dispense"


# Roles allowed to work the front desk (bills, payments, bookings for others)
FRONT_DESK_ROLES = [Role.ADMIN.value, Role.RECEPTIONIST.value, Role.BILLING.value]
