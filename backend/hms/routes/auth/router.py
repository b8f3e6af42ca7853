from fastapi import APIRouter, Depends, HTTPException, status, Response, Cookie
from sqlalchemy.ext.asyncio import AsyncSession

from hms.config.constants import Role
from hms.config.settings import env, settings
from hms.core.auth import create_tokens_for_user
from hms.core.errors import Forbidden
from hms.core.middleware import get_current_user, get_db
from hms.db.crud.auth import authenticate_user, create_user, refresh_user_token
from hms.db.crud.user import get_user
from hms.schemas.auth_response import AuthResponse
from hms.schemas.login_request import LoginRequest
from hms.schemas.register_request import RegisterRequest
from hms.schemas.shared import UserOut as User

router = APIRouter(
    prefix="/auth",
    tags=["auth"],
)

# determine secure flag
secure_cookie = env == "production"


def _set_auth_cookies(response: Response, tokens: AuthResponse) -> None:
    response.set_cookie(
        key="session",
        value=tokens.access_token,
        httponly=True,
        secure=secure_cookie,
        samesite="lax",
        max_age=settings.access_token_expire_minutes * 60
    )
    response.set_cookie(
        key="refresh",
        value=tokens.refresh_token,
        httponly=True,
        secure=secure_cookie,
        samesite="lax",
        max_age=settings.refresh_token_expire_days * 86400
    )


@router.post("/register", response_model=AuthResponse, status_code=status.HTTP_201_CREATED)
async def register(
    user_data: RegisterRequest,
    response: Response,
    db: AsyncSession = Depends(get_db)
):
    """Patient self-registration. Staff accounts are created by an admin under /users."""
    if user_data.role != Role.PATIENT:
        raise Forbidden("Only patient accounts can self-register")
    new_user = await create_user(db, user_data)
    tokens = create_tokens_for_user(new_user)
    _set_auth_cookies(response, tokens)
    return tokens


@router.post("/login", response_model=AuthResponse)
async def login(
    login_data: LoginRequest,
    response: Response,
    db: AsyncSession = Depends(get_db)
):
    user = await authenticate_user(db, login_data)
    if not user:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid credentials",
            headers={"WWW-Authenticate": "Bearer"},
        )
    tokens = create_tokens_for_user(user)
    _set_auth_cookies(response, tokens)
    return tokens


@router.post("/refresh", response_model=AuthResponse)
async def refresh(
    response: Response,
    refresh_token: str = Cookie(None, alias="refresh"),
    db: AsyncSession = Depends(get_db)
):
    tokens = await refresh_user_token(db, refresh_token)
    _set_auth_cookies(response, tokens)
    return tokens


@router.post("/logout", status_code=status.HTTP_204_NO_CONTENT)
async def logout(response: Response):
    response.delete_cookie(key="session")
    response.delete_cookie(key="refresh")
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.get("/me", response_model=User)
async def me(
    current_user: dict = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    user = await get_user(db, int(current_user["user_id"]))
    if not user or not user.is_active:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Not authenticated")
    return user
