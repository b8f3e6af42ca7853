# hms/db/models/appointment.py
from sqlalchemy import (
    Column,
    Integer,
    DateTime,
    String,
    Text,
    ForeignKey,
    Index,
    text,
)
from sqlalchemy.orm import relationship
from hms.db.base import Base
from sqlalchemy.sql import func


class AppointmentModel(Base):
    __tablename__ = "appointments"

    id = Column(Integer, primary_key=True)
    patient_id = Column(Integer, ForeignKey("patients.id"), nullable=True, index=True)
    doctor_id = Column(Integer, ForeignKey("users.id"), nullable=True, index=True)
    schedule_id = Column(Integer, ForeignKey("schedule_slots.id"), nullable=True)
    scheduled_time = Column(DateTime, nullable=True)
    reason = Column(Text, nullable=True)
    status = Column(
        String(20), default="Scheduled", nullable=False
    )  # Scheduled, InProgress, Completed, Cancelled
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    # At most one active (non-cancelled) appointment per slot
    __table_args__ = (
        Index(
            "uq_appointments_active_slot",
            "schedule_id",
            unique=True,
            postgresql_where=text("status <> 'Cancelled'"),
            sqlite_where=text("status <> 'Cancelled'"),
        ),
    )

    # Relationships
    patient = relationship("PatientModel", back_populates="appointments")
    doctor = relationship("UserModel", foreign_keys=[doctor_id])
    slot = relationship("ScheduleSlotModel", back_populates="appointments")
    visits = relationship("VisitModel", back_populates="appointment")
