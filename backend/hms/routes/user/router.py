import logging
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession

from hms.config.constants import FRONT_DESK_ROLES, Role
from hms.core.errors import NotFound
from hms.core.middleware import get_db, require_roles
from hms.db.crud.auth import create_user
from hms.db.crud.patient import create_patient, get_patient, search_patients
from hms.db.crud.user import deactivate_user, get_users
from hms.schemas.register_request import RegisterRequest
from hms.schemas.shared import PatientIn, PatientOut, UserOut

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/users", tags=["users"])

# Roles that look patients up at the desk or in the consultation room
PATIENT_LOOKUP_ROLES = FRONT_DESK_ROLES + [Role.DOCTOR.value, Role.PHARMACIST.value, Role.LAB_TECHNICIAN.value]


@router.get("/", response_model=List[UserOut])
async def list_users_route(
    role: Optional[Role] = None,
    is_active: Optional[bool] = None,
    skip: int = 0,
    limit: int = 100,
    db: AsyncSession = Depends(get_db),
    _: dict = Depends(require_roles([Role.ADMIN.value])),
):
    return await get_users(
        db, skip=skip, limit=limit, role=role.value if role else None, is_active=is_active
    )


@router.get("/doctors", response_model=List[UserOut])
async def list_doctors_route(
    db: AsyncSession = Depends(get_db),
    _: dict = Depends(require_roles([r.value for r in Role])),
):
    """Active doctors, for booking forms."""
    return await get_users(db, role=Role.DOCTOR.value, is_active=True)


@router.post("/", response_model=UserOut, status_code=status.HTTP_201_CREATED)
async def create_user_route(
    user_data: RegisterRequest,
    db: AsyncSession = Depends(get_db),
    current_user: dict = Depends(require_roles([Role.ADMIN.value])),
):
    logger.info(f"Admin {current_user['user_id']} creating a '{user_data.role.value}' account")
    return await create_user(db, user_data)


@router.delete("/{user_id}", status_code=status.HTTP_204_NO_CONTENT)
async def deactivate_user_route(
    user_id: int,
    db: AsyncSession = Depends(get_db),
    current_user: dict = Depends(require_roles([Role.ADMIN.value])),
):
    """Soft delete: the account stays for history but can no longer log in."""
    if int(current_user["user_id"]) == user_id:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="You cannot deactivate your own account")
    if not await deactivate_user(db, user_id):
        raise NotFound("User not found")
    return None


@router.post("/patients", response_model=PatientOut, status_code=status.HTTP_201_CREATED)
async def register_walk_in_patient_route(
    patient: PatientIn,
    db: AsyncSession = Depends(get_db),
    _: dict = Depends(require_roles(FRONT_DESK_ROLES)),
):
    return await create_patient(db, patient)


@router.get("/patients/search", response_model=List[PatientOut])
async def search_patients_route(
    q: str,
    limit: int = 10,
    db: AsyncSession = Depends(get_db),
    _: dict = Depends(require_roles(PATIENT_LOOKUP_ROLES)),
):
    return await search_patients(db, q, limit=limit)


@router.get("/patients/{patient_id}", response_model=PatientOut)
async def get_patient_route(
    patient_id: int,
    db: AsyncSession = Depends(get_db),
    _: dict = Depends(require_roles(PATIENT_LOOKUP_ROLES)),
):
    patient = await get_patient(db, patient_id)
    if not patient:
        raise NotFound("Patient not found")
    return patient
