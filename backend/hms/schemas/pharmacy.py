# hms/schemas/pharmacy.py
from datetime import datetime
from decimal import Decimal
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field

from hms.schemas.billing import BillSummary, StockWarning
from hms.schemas.clinical import PrescriptionItemOut


class MedicationIn(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)
    description: Optional[str] = None
    unit_price: Decimal = Field(..., ge=0)
    stock_quantity: int = Field(0, ge=0)
    low_stock_threshold: int = Field(10, ge=0)


class MedicationOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    name: str
    description: Optional[str] = None
    unit_price: Decimal
    stock_quantity: int
    low_stock_threshold: int


class RestockRequest(BaseModel):
    quantity: int = Field(..., gt=0)


class LowStockEntry(MedicationOut):
    is_critical: bool = False


class DispenseOutcome(BaseModel):
    prescription_id: int
    bill: BillSummary
    stock_deducted: bool = False
    stock_warnings: List[StockWarning] = []


class PendingPrescription(BaseModel):
    id: int
    visit_id: Optional[int] = None
    doctor_id: Optional[int] = None
    patient_id: Optional[int] = None
    patient_name: Optional[str] = None
    created_at: Optional[datetime] = None
    items: List[PrescriptionItemOut] = []
    total_amount: Decimal
    can_dispense: bool
    issue: Optional[str] = None
