import logging

from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from jose import JWTError

from hms.config.constants import Role
from hms.core.errors import Conflict, rollback_and_raise
from hms.db.models.user import UserModel
from hms.db.models.patient import PatientModel
from hms.schemas.register_request import RegisterRequest
from hms.schemas.login_request import LoginRequest
from hms.schemas.shared import UserOut as User
from hms.schemas.auth_response import AuthResponse
from hms.core.auth import get_password_hash, verify_password, decode_access_token, create_tokens_for_user
from fastapi import HTTPException, status

logger = logging.getLogger(__name__)


async def create_user(db: AsyncSession, data: RegisterRequest) -> User:
    """Insert user and, for patients, its patient record in one transaction."""
    hashed = get_password_hash(data.password)
    user = UserModel(
        full_name=data.full_name,
        email=data.email,
        password_hash=hashed,
        role=data.role.value,
        is_active=data.is_active,
    )
    db.add(user)

    if data.patient_profile:
        db.add(PatientModel(user=user, **data.patient_profile.model_dump()))
    elif data.role == Role.PATIENT:
        db.add(PatientModel(user=user, full_name=data.full_name))

    try:
        await db.commit()
    except IntegrityError:
        await db.rollback()
        logger.warning(f"CRUD: Email already registered: {data.email}")
        raise Conflict("Email already registered")
    except SQLAlchemyError as e:
        await rollback_and_raise(db, e, f"creating user {data.email}")

    await db.refresh(user)
    logger.info(f"CRUD: Created user_id={user.id} with role '{user.role}'")
    return User.model_validate(user, from_attributes=True)


async def authenticate_user(db: AsyncSession, login_data: LoginRequest) -> UserModel | None:
    result = await db.execute(select(UserModel).where(UserModel.email == login_data.email))
    user = result.scalar_one_or_none()
    if not user:
        return None
    if not verify_password(login_data.password, user.password_hash):
        return None
    if not user.is_active:
        logger.warning(f"Login attempt by deactivated user_id={user.id}")
        return None
    return user


async def refresh_user_token(db: AsyncSession, refresh_token: str) -> AuthResponse:
    """Refreshes user tokens using a refresh token."""
    if not refresh_token:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Missing refresh token")
    try:
        payload = decode_access_token(refresh_token)
    except JWTError:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid refresh token")
    if payload.get("type") != "refresh":
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid refresh token")

    user = await db.get(UserModel, int(payload.get("sub")))
    if not user or not user.is_active:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="User not found")

    return create_tokens_for_user(user)
