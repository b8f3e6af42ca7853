# hms/db/models/schedule_slot.py
from sqlalchemy import (
    Boolean,
    Column,
    Date,
    ForeignKey,
    Integer,
    Time,
    UniqueConstraint,
    true,
)
from sqlalchemy.orm import relationship
from hms.db.base import Base


class ScheduleSlotModel(Base):
    __tablename__ = "schedule_slots"

    id = Column(Integer, primary_key=True)
    doctor_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    slot_date = Column(Date, nullable=False)
    start_time = Column(Time, nullable=False)
    end_time = Column(Time, nullable=False)
    is_available = Column(Boolean, nullable=False, default=True, server_default=true())

    # One slot per doctor per start time; the upsert in ensure_default_slots relies on it
    __table_args__ = (
        UniqueConstraint("doctor_id", "slot_date", "start_time", name="uq_slot_doctor_date_start"),
    )

    doctor = relationship("UserModel", back_populates="slots")
    appointments = relationship("AppointmentModel", back_populates="slot")
