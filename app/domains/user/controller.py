"""User authentication controller endpoints."""

import logging

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.dependencies import get_current_user
from app.core.security import create_access_token
from app.database import get_db
from app.domains.user.service import UserService
from app.schemas.user import (
    PersonalPromptUpdate,
    TokenResponse,
    UserInfoResponse,
    UserLoginRequest,
)
from models.user import User

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/auth", tags=["Authentication"])


def _user_info(user: User) -> UserInfoResponse:
    return UserInfoResponse(
        username=user.username,
        tokens_remaining=user.max_tokens - (user.tokens_used_today or 0),
        max_tokens=user.max_tokens,
        personal_prompt=user.personal_prompt or "",
    )


@router.post("/login", response_model=TokenResponse)
async def login(login_data: UserLoginRequest, db: AsyncSession = Depends(get_db)):
    """Exchange a username and password for a bearer token.

    The token is what a websocket client sends with its ``authenticate`` event.
    """
    user = await UserService(db).authenticate(login_data.username, login_data.password)
    if not user or not user.is_active:
        logger.info(f"Failed login for {login_data.username}")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid username or password",
            headers={"WWW-Authenticate": "Bearer"},
        )
    logger.info(f"User {user.username} logged in")
    return TokenResponse(access_token=create_access_token(user.username))


@router.get("/me", response_model=UserInfoResponse)
async def get_current_user_info(current_user: User = Depends(get_current_user)):
    """Get the current user's profile and remaining daily tokens."""
    return _user_info(current_user)


@router.put("/personal-prompt", response_model=UserInfoResponse)
async def update_personal_prompt(
    update_data: PersonalPromptUpdate,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """Replace the text appended to the system prompt of every chat."""
    updated_user = await UserService(db).update_personal_prompt(
        current_user.username, update_data.personal_prompt
    )
    return _user_info(updated_user)
