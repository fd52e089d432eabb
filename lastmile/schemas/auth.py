"""Pydantic schemas for authentication."""
from pydantic import Field

from lastmile.schemas.base import BaseCreateSchema, BaseResponseSchema


class LoginRequest(BaseCreateSchema):
    email: str = Field(..., min_length=3, max_length=255)
    password: str = Field(..., min_length=1)


class TokenResponse(BaseResponseSchema):
    access_token: str
    token_type: str = "bearer"
    expires_in: int = Field(..., description="Seconds until the token expires")
