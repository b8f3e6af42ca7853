# hms/schemas/billing.py
from datetime import datetime
from decimal import Decimal
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field

from hms.config.constants import BillItemType, BillStatus, PaymentMethod


class BillItemIn(BaseModel):
    item_type: BillItemType
    reference_id: Optional[int] = None
    description: Optional[str] = None
    quantity: int = Field(1, ge=1)
    amount: Decimal


class BillItemOut(BillItemIn):
    model_config = ConfigDict(from_attributes=True)

    id: int
    item_type: str
    quantity: Optional[int] = None


class BillCreate(BaseModel):
    patient_id: int
    items: List[BillItemIn]


class PaymentIn(BaseModel):
    amount: Decimal
    method: PaymentMethod


class PaymentOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    bill_id: int
    amount_paid: Decimal
    payment_method: Optional[str] = None
    payment_time: Optional[datetime] = None


class BillSummary(BaseModel):
    bill_id: int
    patient_id: Optional[int] = None
    total_amount: Decimal
    total_paid: Decimal
    balance: Decimal
    status: BillStatus
    item_count: int
    created_at: Optional[datetime] = None


class BillDetail(BillSummary):
    items: List[BillItemOut] = []
    payments: List[PaymentOut] = []


class StockWarning(BaseModel):
    """A prescribed quantity that could not be taken out of stock."""

    prescription_id: int
    medication_id: int
    medication_name: Optional[str] = None
    required: int
    available: int


class PaymentOutcome(BaseModel):
    payment: PaymentOut
    bill: BillSummary
    stock_deducted: bool = False
    stock_warnings: List[StockWarning] = []


class BillPage(BaseModel):
    bills: List[BillSummary]
    total_count: int
    skip: int
    limit: int
