# hms/schemas/register_request.py
from pydantic import BaseModel, EmailStr, model_validator, Field
from typing    import Optional, Annotated

from hms.config.constants import Role
from hms.schemas.shared import PatientIn


class RegisterRequest(BaseModel):
    """Admin-side user creation. Patients may carry their patient record."""

    full_name: Annotated[str, Field(min_length=1, max_length=100)]
    email:    EmailStr
    password: Annotated[str, Field(min_length=8, max_length=72)]
    role: Role
    is_active: bool = True

    patient_profile: Optional[PatientIn] = None

    @model_validator(mode="after")
    def _profile_only_for_patients(self):
        if self.patient_profile is not None and self.role != Role.PATIENT:
            raise ValueError("patient_profile is only accepted for role 'patient'")
        return self
