# hms/db/models/visit.py
from sqlalchemy import Column, Integer, DateTime, Text, ForeignKey, func
from sqlalchemy.orm import relationship
from hms.db.base import Base


class VisitModel(Base):
    __tablename__ = "visits"

    id = Column(Integer, primary_key=True)
    appointment_id = Column(Integer, ForeignKey("appointments.id"), nullable=True, index=True)
    patient_id = Column(Integer, ForeignKey("patients.id"), nullable=True, index=True)
    doctor_id = Column(Integer, ForeignKey("users.id"), nullable=True)
    visit_time = Column(DateTime, nullable=True)
    symptoms = Column(Text)
    diagnosis = Column(Text)
    notes = Column(Text)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    appointment = relationship("AppointmentModel", back_populates="visits")
    patient = relationship("PatientModel")
    prescriptions = relationship("PrescriptionModel", back_populates="visit")
    lab_orders = relationship("LabOrderModel", back_populates="visit")
