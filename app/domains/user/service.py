# app/domains/user/service.py
import logging
from datetime import UTC, datetime
from typing import Optional

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.core.security import hash_password, verify_password
from app.exceptions.relay import UserAlreadyExistsError, UserNotFoundError
from app.schemas.user import UserProfile
from models import User

logger = logging.getLogger(__name__)


class UserService:
    def __init__(self, db: AsyncSession):
        self.db = db

    async def get_user(self, username: str) -> Optional[User]:
        """Get a user by username."""
        return await self.db.get(User, username)

    async def list_users(self) -> list[User]:
        """List all users ordered by name."""
        result = await self.db.execute(select(User).order_by(User.username))
        return list(result.scalars().all())

    async def create_user(self, username: str, password: str, max_tokens: int) -> User:
        """Create a new user with an empty quota."""
        if await self.get_user(username):
            raise UserAlreadyExistsError(f"User '{username}' already exists")

        user = User(
            username=username,
            password_hash=hash_password(password),
            max_tokens=max_tokens,
            tokens_used_today=0,
            personal_prompt="",
            quota_reset_at=datetime.now(UTC),
        )

        try:
            self.db.add(user)
            await self.db.commit()
            await self.db.refresh(user)
            logger.info(f"Created user {username} with a cap of {max_tokens} tokens")
            return user
        except SQLAlchemyError as e:
            await self.db.rollback()
            raise e

    async def delete_user(self, username: str) -> None:
        """Delete a user and all their conversations."""
        user = await self.get_user(username)
        if not user:
            raise UserNotFoundError(f"User '{username}' not found")

        try:
            await self.db.delete(user)
            await self.db.commit()
            logger.info(f"Deleted user {username}")
        except SQLAlchemyError as e:
            await self.db.rollback()
            raise e

    async def authenticate(self, username: str, password: str) -> Optional[User]:
        """Return the user if the credentials match, otherwise None."""
        user = await self.get_user(username)
        if not user or not verify_password(password, user.password_hash):
            return None
        return user

    async def get_profile(self, username: str) -> Optional[UserProfile]:
        user = await self.get_user(username)
        if user is None:
            return None
        return UserProfile(
            username=user.username,
            personal_prompt=user.personal_prompt or "",
            is_active=bool(user.is_active),
        )

    async def update_personal_prompt(self, username: str, personal_prompt: str) -> User:
        """Replace the user's personal prompt."""
        user = await self.get_user(username)
        if not user:
            raise UserNotFoundError(f"User '{username}' not found")

        try:
            user.personal_prompt = personal_prompt
            await self.db.commit()
            await self.db.refresh(user)
            return user
        except SQLAlchemyError as e:
            await self.db.rollback()
            raise e


async def load_user_profile(
    session_factory: async_sessionmaker[AsyncSession], username: str
) -> Optional[UserProfile]:
    """Look a user up outside a request, for long-lived websocket sessions."""
    async with session_factory() as db:
        return await UserService(db).get_profile(username)
