from __future__ import annotations
from typing import Annotated

from pydantic import BaseModel, ConfigDict, EmailStr, Field


class LoginRequest(BaseModel):
    model_config = ConfigDict(extra='forbid')

    email: EmailStr
    # bcrypt only looks at the first 72 bytes
    password: Annotated[str, Field(min_length=8, max_length=72)]
