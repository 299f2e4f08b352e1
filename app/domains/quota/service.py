"""Quota ledger: per-user daily token accounting."""

import logging
from datetime import UTC, datetime, timedelta

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.core.config import settings
from app.exceptions.relay import UserNotFoundError
from app.schemas.quota import QuotaState
from app.shared.locks import KeyedLock
from models.user import User

logger = logging.getLogger(__name__)


def _as_utc(value: datetime) -> datetime:
    # SQLite hands back naive datetimes
    return value if value.tzinfo else value.replace(tzinfo=UTC)


def current_window_start(now: datetime, hour: int, minute: int) -> datetime:
    """Return the most recent scheduled reset boundary at or before *now*."""
    now = _as_utc(now)
    boundary = now.replace(hour=hour, minute=minute, second=0, microsecond=0)
    if boundary > now:
        boundary -= timedelta(days=1)
    return boundary


class QuotaLedger:
    """Tracks token consumption against each user's daily cap.

    Every mutation is committed in its own transaction as soon as it is
    made. Writes for one user are serialized through the shared ``KeyedLock``.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        locks: KeyedLock | None = None,
        reset_hour: int | None = None,
        reset_minute: int | None = None,
    ):
        self._session_factory = session_factory
        self._locks = locks or KeyedLock()
        self.reset_hour = settings.quota_reset_hour if reset_hour is None else reset_hour
        self.reset_minute = settings.quota_reset_minute if reset_minute is None else reset_minute

    async def state(self, username: str) -> QuotaState:
        """Return the quota view of *username*.

        Raises:
            UserNotFoundError: If the user is unknown.
        """
        async with self._session_factory() as db:
            user = await self._get_user(db, username)
            return QuotaState(
                username=user.username,
                max_tokens=user.max_tokens,
                tokens_used_today=user.tokens_used_today or 0,
            )

    async def remaining(self, username: str) -> int:
        """Cap minus consumed-today. May be negative after an over-cap generation."""
        return (await self.state(username)).remaining

    async def charge(self, username: str, amount: int) -> int:
        """Add *amount* to the user's consumption and persist it immediately.

        Returns:
            The user's new remaining balance.
        """
        if amount < 0:
            raise ValueError("Charge amount cannot be negative")

        async with self._locks.acquire(username):
            async with self._session_factory() as db:
                user = await self._get_user(db, username)
                user.tokens_used_today = (user.tokens_used_today or 0) + amount
                await db.commit()
                remaining = user.max_tokens - user.tokens_used_today

        logger.debug(f"Charged {amount} tokens to {username}, {remaining} remaining")
        return remaining

    async def reset_all(self, now: datetime | None = None) -> int:
        """Zero today's consumption for every user not yet reset in the current window.

        Invoking it twice within one window resets nobody the second time.

        Returns:
            Number of users whose consumption was reset.
        """
        now = _as_utc(now or datetime.now(UTC))
        window_start = current_window_start(now, self.reset_hour, self.reset_minute)

        async with self._session_factory() as db:
            result = await db.execute(select(User.username))
            usernames = list(result.scalars().all())

        reset_count = 0
        for username in usernames:
            async with self._locks.acquire(username):
                async with self._session_factory() as db:
                    user = await db.get(User, username)
                    if user is None:
                        continue
                    if user.quota_reset_at and _as_utc(user.quota_reset_at) >= window_start:
                        continue
                    user.tokens_used_today = 0
                    user.quota_reset_at = now
                    await db.commit()
                    reset_count += 1

        logger.info(f"🔄 Daily quota reset: {reset_count} of {len(usernames)} users reset")
        return reset_count

    @staticmethod
    async def _get_user(db: AsyncSession, username: str) -> User:
        user = await db.get(User, username)
        if user is None:
            raise UserNotFoundError(f"User '{username}' not found")
        return user
