# hms/db/models/user.py
from sqlalchemy import Boolean, Column, Integer, String, DateTime, func, true
from sqlalchemy.orm import relationship
from hms.db.base import Base


class UserModel(Base):
    __tablename__ = "users"

    id = Column(Integer, primary_key=True)
    full_name = Column(String(100), nullable=False)
    email = Column(String, unique=True, nullable=False, index=True)
    password_hash = Column(String, nullable=False)
    role = Column(String, nullable=False)  # see hms.config.constants.Role
    # soft delete: deactivated users keep their history but cannot log in
    is_active = Column(Boolean, nullable=False, default=True, server_default=true())
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    # one-to-one link for patients who can log in
    patient_profile = relationship(
        "PatientModel",
        back_populates="user",
        uselist=False,
    )
    slots = relationship("ScheduleSlotModel", back_populates="doctor")
