# hms/schemas/clinical.py
from datetime import datetime
from decimal import Decimal
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field

from hms.config.constants import LabOrderStatus, LabPriority


class VisitOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    appointment_id: Optional[int] = None
    patient_id: Optional[int] = None
    doctor_id: Optional[int] = None
    visit_time: Optional[datetime] = None
    symptoms: Optional[str] = None
    diagnosis: Optional[str] = None
    notes: Optional[str] = None


class VisitCompletion(BaseModel):
    diagnosis: Optional[str] = None
    notes: Optional[str] = None


class PrescriptionItemIn(BaseModel):
    medication_id: int
    dosage: Optional[str] = None
    frequency: Optional[str] = None
    duration: Optional[str] = None
    quantity: int = Field(..., gt=0)


class PrescriptionItemOut(PrescriptionItemIn):
    model_config = ConfigDict(from_attributes=True)

    id: int


class PrescriptionCreate(BaseModel):
    visit_id: int
    items: List[PrescriptionItemIn] = Field(..., min_length=1)


class PrescriptionOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    visit_id: Optional[int] = None
    doctor_id: Optional[int] = None
    created_at: Optional[datetime] = None
    items: List[PrescriptionItemOut] = []


class LabTestIn(BaseModel):
    test_name: str = Field(..., min_length=1, max_length=100)
    category: Optional[str] = None
    cost: Decimal = Field(..., ge=0)
    description: Optional[str] = None


class LabTestOut(LabTestIn):
    model_config = ConfigDict(from_attributes=True)

    id: int


class LabOrderCreate(BaseModel):
    visit_id: int
    lab_test_id: int
    priority: LabPriority = LabPriority.ROUTINE


class LabOrderOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    visit_id: Optional[int] = None
    patient_id: Optional[int] = None
    doctor_id: Optional[int] = None
    lab_test_id: Optional[int] = None
    priority: Optional[str] = None
    status: LabOrderStatus
    order_time: Optional[datetime] = None
    sample_time: Optional[datetime] = None
    completed_time: Optional[datetime] = None


class LabStatusUpdate(BaseModel):
    status: LabOrderStatus


class LabResultIn(BaseModel):
    result_text: Optional[str] = None
    file_path: Optional[str] = Field(None, max_length=255)


class LabResultOut(LabResultIn):
    model_config = ConfigDict(from_attributes=True)

    id: int
    lab_order_id: int
    uploaded_by: Optional[int] = None
    uploaded_at: Optional[datetime] = None


class PendingLabOrder(LabOrderOut):
    test_name: Optional[str] = None


class VisitHistoryEntry(VisitOut):
    prescriptions: List[PrescriptionOut] = []
    lab_orders: List[LabOrderOut] = []
