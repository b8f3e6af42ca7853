# hms/db/models/patient.py
from sqlalchemy import Column, Integer, String, Date, DateTime, ForeignKey, Text, func
from sqlalchemy.orm import relationship
from hms.db.base import Base

class PatientModel(Base):
    __tablename__ = "patients"

    id         = Column(Integer, primary_key=True)
    # set for patients who can log in, empty for walk-ins registered by staff
    user_id    = Column(Integer,
                        ForeignKey("users.id", ondelete="SET NULL"),
                        unique=True, nullable=True)

    full_name  = Column(String(100), nullable=False)
    gender     = Column(String(10))
    dob        = Column(Date)
    phone      = Column(String(30))
    cnic       = Column(String(20), index=True)
    address    = Column(String(255))
    allergies  = Column(Text)
    chronic_conditions = Column(Text)
    emergency_contact  = Column(String(100))
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    user = relationship("UserModel", back_populates="patient_profile")
    appointments = relationship("AppointmentModel", back_populates="patient")
    bills = relationship("BillModel", back_populates="patient")
