# hms/db/crud/user.py
import logging
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select
from sqlalchemy.orm import selectinload
from typing import List, Optional

from hms.config.constants import Role
from hms.db.models.user import UserModel

logger = logging.getLogger(__name__)


async def get_users(
    db: AsyncSession,
    skip: int = 0,
    limit: int = 100,
    role: Optional[str] = None,
    is_active: Optional[bool] = None,
) -> List[UserModel]:
    """
    Get a list of users with optional filtering by role and active flag.

    Args:
        db: Database session
        skip: Number of records to skip
        limit: Maximum number of records to return
        role: Filter by user role (optional)
        is_active: Filter by active flag (optional)

    Returns:
        List of UserModel objects
    """
    query = select(UserModel)

    if role:
        query = query.where(UserModel.role == role)
    if is_active is not None:
        query = query.where(UserModel.is_active.is_(is_active))

    query = query.order_by(UserModel.id).offset(skip).limit(limit)
    result = await db.execute(query)
    return list(result.scalars().all())


async def get_user(db: AsyncSession, user_id: int) -> Optional[UserModel]:
    """Get a user by ID with the patient profile loaded."""
    query = select(UserModel).options(
        selectinload(UserModel.patient_profile),
    ).where(UserModel.id == user_id)

    result = await db.execute(query)
    return result.scalar_one_or_none()


async def get_user_by_email(db: AsyncSession, email: str) -> Optional[UserModel]:
    query = select(UserModel).where(UserModel.email == email)
    result = await db.execute(query)
    return result.scalar_one_or_none()


async def get_active_doctor(db: AsyncSession, doctor_id: int) -> Optional[UserModel]:
    """Return the user if it is an active doctor, otherwise None."""
    result = await db.execute(
        select(UserModel).where(
            UserModel.id == doctor_id,
            UserModel.role == Role.DOCTOR.value,
            UserModel.is_active.is_(True),
        )
    )
    return result.scalar_one_or_none()


async def deactivate_user(db: AsyncSession, user_id: int) -> bool:
    """
    Soft-delete a user by clearing the active flag.

    Returns:
        True if the user was deactivated, False if the user wasn't found
    """
    user = await db.get(UserModel, user_id)
    if not user:
        return False

    user.is_active = False
    await db.commit()
    logger.info(f"CRUD: Deactivated user_id={user_id}")
    return True
