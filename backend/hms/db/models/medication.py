# hms/db/models/medication.py
from sqlalchemy import Column, Integer, Numeric, String, Text
from hms.db.base import Base


class MedicationModel(Base):
    __tablename__ = "medications"

    id = Column(Integer, primary_key=True)
    name = Column(String(100), nullable=False, index=True)
    description = Column(Text)
    unit_price = Column(Numeric(12, 2), nullable=False, default=0)
    stock_quantity = Column(Integer, nullable=False, default=0)
    low_stock_threshold = Column(Integer, nullable=False, default=10)

    def __repr__(self):
        return f"<MedicationModel(id={self.id}, name={self.name!r}, stock={self.stock_quantity})>"
