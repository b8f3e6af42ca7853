# hms/db/models/prescription.py
from sqlalchemy import Column, Integer, String, DateTime, ForeignKey, func
from sqlalchemy.orm import relationship
from hms.db.base import Base


class PrescriptionModel(Base):
    __tablename__ = "prescriptions"

    id = Column(Integer, primary_key=True)
    visit_id = Column(Integer, ForeignKey("visits.id"), nullable=True, index=True)
    doctor_id = Column(Integer, ForeignKey("users.id"), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    # claimed once by the pharmacy counter
    dispensed_at = Column(DateTime(timezone=True), nullable=True)
    # claimed once when the prescribed quantities leave the inventory
    stock_deducted_at = Column(DateTime(timezone=True), nullable=True)

    visit = relationship("VisitModel", back_populates="prescriptions")
    items = relationship(
        "PrescriptionItemModel",
        back_populates="prescription",
        cascade="all, delete-orphan",
    )


class PrescriptionItemModel(Base):
    __tablename__ = "prescription_items"

    id = Column(Integer, primary_key=True)
    prescription_id = Column(
        Integer, ForeignKey("prescriptions.id", ondelete="CASCADE"), nullable=True, index=True
    )
    medication_id = Column(Integer, ForeignKey("medications.id"), nullable=True)
    dosage = Column(String(50))
    frequency = Column(String(50))
    duration = Column(String(50))
    quantity = Column(Integer)

    prescription = relationship("PrescriptionModel", back_populates="items")
    medication = relationship("MedicationModel")
