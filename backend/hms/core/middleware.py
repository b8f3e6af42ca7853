import logging

from fastapi import Request, HTTPException, Depends
from jose import JWTError

from .auth import decode_access_token
from .errors import Forbidden
from hms.db.session import get_db_session

logger = logging.getLogger(__name__)

# List of paths that should be excluded from authentication checks
PUBLIC_PATHS = [
    "/auth/login",
    "/auth/refresh",
    "/auth/register",
    "/health",
    "/docs",
    "/openapi.json",
    "/redoc"
]


def _user_from_token(token: str):
    token_data = decode_access_token(token)
    if token_data.get("type") == "refresh":
        # refresh tokens only work on /auth/refresh
        return None
    return {
        "user_id": token_data.get("sub"),
        "role": token_data.get("role")
    }


async def verify_token_middleware(request: Request, call_next):
    """
    Middleware to check the session cookie and add the authenticated user to request state.
    This doesn't block unauthenticated requests, but just adds user info if authenticated.
    """
    request.state.user = None

    # Skip authentication for public paths
    if any(request.url.path.startswith(public_path) for public_path in PUBLIC_PATHS):
        return await call_next(request)

    token = request.cookies.get("session")
    # Fall back to the Authorization header if the session cookie is not present
    if not token:
        auth_header = request.headers.get("Authorization")
        if auth_header and auth_header.startswith("Bearer "):
            token = auth_header.split(" ")[1]

    if token:
        try:
            request.state.user = _user_from_token(token)
        except JWTError:
            # Continue without user info if token is invalid
            logger.debug(f"Ignoring invalid token on {request.url.path}")

    response = await call_next(request)
    return response

# FastAPI dependency for protected routes
def get_current_user(request: Request):
    """
    Dependency to use in FastAPI route functions that require authentication.
    This will raise an HTTPException if the user is not authenticated.
    """
    user = getattr(request.state, "user", None)
    if not user:
        raise HTTPException(status_code=401, detail="Not authenticated")
    return user

def require_roles(roles: list):
    """
    Factory function to create a dependency that requires specific roles.
    Usage: @router.post("/slots", dependencies=[Depends(require_roles(["admin", "doctor"]))])
    """
    def _require_roles(user: dict = Depends(get_current_user)):
        if user["role"] not in roles:
            raise Forbidden("Not enough permissions")
        return user

    return _require_roles

# Get a database session dependency
async def get_db(request: Request):
    """Yield an async SQLAlchemy session (dependency)."""
    async for session in get_db_session(request):
        yield session
