from fastapi import APIRouter, HTTPException, status

from lastmile.api.deps import DB, CurrentUser
from lastmile.config import settings
from lastmile.core.security import create_access_token
from lastmile.schemas.auth import LoginRequest, TokenResponse
from lastmile.schemas.user import UserResponse
from lastmile.services.user_service import UserService

router = APIRouter(tags=["Authentication"])


@router.post("/login", response_model=TokenResponse)
async def login(
    data: LoginRequest,
    db: DB,
):
    """
    Authenticate user and return an access token.
    """
    user = await UserService(db).authenticate(data.email, data.password)

    if not user:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid email or password",
            headers={"WWW-Authenticate": "Bearer"},
        )

    access_token = create_access_token(user.id, roles=user.roles or [])

    return TokenResponse(
        access_token=access_token,
        token_type="bearer",
        expires_in=settings.ACCESS_TOKEN_EXPIRE_MINUTES * 60,
    )


@router.get("/me", response_model=UserResponse)
async def get_me(current_user: CurrentUser):
    """Get the current authenticated user."""
    return current_user
