"""Security related functions: password hashing and access tokens."""

from datetime import UTC, datetime, timedelta

import bcrypt
import jwt
from jwt import InvalidTokenError

from app.core.config import settings
from app.exceptions.relay import UnauthenticatedError


def hash_password(password: str) -> str:
    """Hash a password using bcrypt."""
    return bcrypt.hashpw(password.encode(), bcrypt.gensalt()).decode()


def verify_password(password: str, stored_hash: str | None) -> bool:
    """Verify a password against a stored bcrypt hash."""
    if not stored_hash:
        return False
    try:
        return bcrypt.checkpw(password.encode(), stored_hash.encode())
    except (ValueError, UnicodeDecodeError):
        return False


def create_access_token(username: str, expires_delta: timedelta | None = None) -> str:
    """
    Issue a signed JWT for *username*.

    :param username: Subject of the token.
    :param expires_delta: Optional lifetime, defaults to the configured expiry.
    :return: Encoded token string.
    """
    expire = datetime.now(UTC) + (
        expires_delta or timedelta(minutes=settings.access_token_expire_minutes)
    )
    payload = {"sub": username, "exp": expire}
    return jwt.encode(payload, settings.secret_key, algorithm=settings.algorithm)


def decode_access_token(token: str) -> str:
    """
    Verify a token and return its subject.

    Raises UnauthenticatedError when the token is missing, expired, tampered
    with, or carries no subject.
    """
    if not token:
        raise UnauthenticatedError("Authentication token is required")
    try:
        payload = jwt.decode(token, settings.secret_key, algorithms=[settings.algorithm])
    except InvalidTokenError as e:
        raise UnauthenticatedError(f"Invalid authentication token: {str(e)}") from e

    username = payload.get("sub")
    if not username:
        raise UnauthenticatedError("Invalid token payload - missing subject")
    return username
