from __future__ import annotations
from enum import Enum

from pydantic import BaseModel, ConfigDict

from hms.config.constants import Role

class TokenType(Enum):
    bearer = 'bearer'

class AuthResponse(BaseModel):
    """Tokens plus the role, so the client can pick the matching dashboard."""
    model_config = ConfigDict(
        extra='forbid',
    )
    access_token: str
    refresh_token: str
    token_type: TokenType
    expires_in: int
    user_id: int
    role: Role
