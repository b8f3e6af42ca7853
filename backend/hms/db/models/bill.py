# hms/db/models/bill.py
from sqlalchemy import Column, Integer, Numeric, String, DateTime, ForeignKey, func
from sqlalchemy.orm import relationship
from hms.db.base import Base


class BillModel(Base):
    __tablename__ = "bills"

    id = Column(Integer, primary_key=True)
    patient_id = Column(Integer, ForeignKey("patients.id"), nullable=True, index=True)
    total_amount = Column(Numeric(12, 2), nullable=False, default=0)
    # derived from payments by hms.services.billing.derive_status, cached here for listing
    status = Column(String(20), nullable=False, default="Unpaid")
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    # set once, when prescription stock for this bill left the inventory
    stock_deducted_at = Column(DateTime(timezone=True), nullable=True)

    patient = relationship("PatientModel", back_populates="bills")
    items = relationship(
        "BillItemModel", back_populates="bill", cascade="all, delete-orphan"
    )
    payments = relationship(
        "PaymentModel",
        back_populates="bill",
        cascade="all, delete-orphan",
        order_by="PaymentModel.payment_time",
    )

    def __repr__(self):
        return f"<BillModel(id={self.id}, total={self.total_amount}, status={self.status})>"


class BillItemModel(Base):
    __tablename__ = "bill_items"

    id = Column(Integer, primary_key=True)
    bill_id = Column(Integer, ForeignKey("bills.id", ondelete="CASCADE"), nullable=True, index=True)
    item_type = Column(String(20))  # Consultation, Medication, LabTest, Prescription
    reference_id = Column(Integer, nullable=True, index=True)
    description = Column(String(255))
    quantity = Column(Integer, default=1)
    amount = Column(Numeric(12, 2), nullable=False, default=0)

    bill = relationship("BillModel", back_populates="items")


class PaymentModel(Base):
    __tablename__ = "payments"

    id = Column(Integer, primary_key=True)
    bill_id = Column(Integer, ForeignKey("bills.id", ondelete="CASCADE"), nullable=True, index=True)
    amount_paid = Column(Numeric(12, 2), nullable=False)
    payment_method = Column(String(20))
    payment_time = Column(DateTime(timezone=True))

    bill = relationship("BillModel", back_populates="payments")
