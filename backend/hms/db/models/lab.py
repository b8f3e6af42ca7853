# hms/db/models/lab.py
from sqlalchemy import Column, Integer, Numeric, String, Text, DateTime, ForeignKey
from sqlalchemy.orm import relationship
from hms.db.base import Base


class LabTestModel(Base):
    __tablename__ = "lab_tests"

    id = Column(Integer, primary_key=True)
    test_name = Column(String(100), nullable=False)
    category = Column(String(50))
    cost = Column(Numeric(12, 2), nullable=False, default=0)
    description = Column(Text)


class LabOrderModel(Base):
    __tablename__ = "lab_orders"

    id = Column(Integer, primary_key=True)
    visit_id = Column(Integer, ForeignKey("visits.id"), nullable=True, index=True)
    patient_id = Column(Integer, ForeignKey("patients.id"), nullable=True)
    doctor_id = Column(Integer, ForeignKey("users.id"), nullable=True)
    lab_test_id = Column(Integer, ForeignKey("lab_tests.id"), nullable=True)
    priority = Column(String(20))
    status = Column(String(20), nullable=False, default="Pending")  # Pending, InProgress, Completed
    order_time = Column(DateTime(timezone=True))
    sample_time = Column(DateTime(timezone=True))
    completed_time = Column(DateTime(timezone=True))

    visit = relationship("VisitModel", back_populates="lab_orders")
    lab_test = relationship("LabTestModel")
    results = relationship("LabResultModel", back_populates="lab_order")


class LabResultModel(Base):
    __tablename__ = "lab_results"

    id = Column(Integer, primary_key=True)
    lab_order_id = Column(Integer, ForeignKey("lab_orders.id"), nullable=True, index=True)
    result_text = Column(Text)
    file_path = Column(String(255))  # the attachment itself lives in external storage
    uploaded_by = Column(Integer, ForeignKey("users.id"), nullable=True)
    uploaded_at = Column(DateTime(timezone=True))

    lab_order = relationship("LabOrderModel", back_populates="results")
