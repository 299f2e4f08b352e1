# app/core/dependencies.py
import logging
import secrets

from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBasic, HTTPBasicCredentials, HTTPBearer
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import settings
from app.core.security import decode_access_token
from app.database import get_db
from app.domains.user.service import UserService
from app.exceptions.base import AppPermissionError
from app.exceptions.relay import UnauthenticatedError
from models import User

logger = logging.getLogger(__name__)

security = HTTPBearer(auto_error=False)
admin_security = HTTPBasic(auto_error=False)


async def validate_token(
    token: HTTPAuthorizationCredentials | None = Depends(security),
) -> str:
    """Validate the bearer token.

    Returns:
        str: Username carried in the token

    Raises:
        HTTPException: If token is missing, invalid or expired
    """
    if not token or not token.credentials:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Authentication token is required",
            headers={"WWW-Authenticate": "Bearer"},
        )

    try:
        return decode_access_token(token.credentials)
    except UnauthenticatedError as e:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=e.message,
            headers={"WWW-Authenticate": "Bearer"},
        ) from e


async def get_current_user(
    request: Request,
    username: str = Depends(validate_token),
    db: AsyncSession = Depends(get_db),
) -> User:
    """Get current authenticated user.

    Raises:
        HTTPException: If user not found or inactive
    """
    user = await UserService(db).get_user(username)

    if not user:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="User no longer exists",
            headers={"WWW-Authenticate": "Bearer"},
        )

    if not user.is_active:
        raise AppPermissionError("User account is inactive")

    # Add user info to request state for logging
    request.state.username = user.username

    return user


async def require_admin(
    credentials: HTTPBasicCredentials | None = Depends(admin_security),
) -> str:
    """Guard the admin area with HTTP Basic credentials from the settings.

    The admin area is closed when no admin password is configured.
    """
    challenge = {"WWW-Authenticate": 'Basic realm="Admin Area"'}

    if not settings.has_admin_access:
        logger.warning("Admin request rejected: ADMIN_PASSWORD is not configured")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED, detail="Admin area disabled", headers=challenge
        )

    if credentials is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Authentication required",
            headers=challenge,
        )

    username_ok = secrets.compare_digest(
        credentials.username.encode(), settings.admin_username.encode()
    )
    password_ok = secrets.compare_digest(
        credentials.password.encode(), settings.admin_password.encode()
    )
    if not (username_ok and password_ok):
        logger.warning(f"Failed admin login attempt for {credentials.username!r}")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid credentials", headers=challenge
        )

    return credentials.username
