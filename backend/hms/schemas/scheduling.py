# hms/schemas/scheduling.py
from datetime import date, datetime, time
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field, computed_field, model_validator

from hms.config.constants import AppointmentStatus


class SlotOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    doctor_id: int
    slot_date: date
    start_time: time
    end_time: time
    is_available: bool

    @computed_field
    @property
    def display_time(self) -> str:
        return f"{self.start_time:%H:%M} - {self.end_time:%H:%M}"


class SlotScheduleEntry(SlotOut):
    has_appointment: bool = False


class SlotCreate(BaseModel):
    doctor_id: int
    slot_date: date
    start_time: time
    end_time: time
    is_available: bool = True

    @model_validator(mode="after")
    def _end_after_start(self):
        if self.end_time <= self.start_time:
            raise ValueError("end_time must be after start_time")
        return self


class EnsureSlotsRequest(BaseModel):
    doctor_id: int
    slot_date: date


class BookingRequest(BaseModel):
    slot_id: int
    doctor_id: int
    # staff book for a patient, patients book for themselves
    patient_id: Optional[int] = None
    reason: Optional[str] = Field(None, max_length=500)


class StatusChangeRequest(BaseModel):
    status: AppointmentStatus


class AppointmentOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    patient_id: Optional[int] = None
    doctor_id: Optional[int] = None
    schedule_id: Optional[int] = None
    scheduled_time: Optional[datetime] = None
    reason: Optional[str] = None
    status: AppointmentStatus
    created_at: Optional[datetime] = None


class AppointmentPage(BaseModel):
    appointments: List[AppointmentOut]
    total_count: int
    skip: int
    limit: int
