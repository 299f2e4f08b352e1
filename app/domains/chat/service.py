"""Conversation store: per-user chat history."""

import logging
import uuid
from datetime import UTC, datetime

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.core.config import settings
from app.schemas.chat import Conversation, ConversationSummary, Turn
from app.shared.locks import KeyedLock
from models.conversation import Conversation as ConversationRow

logger = logging.getLogger(__name__)

DEFAULT_CHAT_NAME = "New chat"


class ConversationStore:
    """Holds ordered turn history per (user, conversation) pair.

    Each conversation is one document: writes load the row, replace the
    whole turn list and commit. Writes for one user hold that user's lock
    for the full read-modify-write.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        locks: KeyedLock | None = None,
        title_length: int | None = None,
    ):
        self._session_factory = session_factory
        self._locks = locks or KeyedLock()
        self.title_length = title_length or settings.conversation_title_length

    async def load(self, user_id: str, conversation_id: str) -> Conversation:
        """Return the conversation, or a fresh empty one if it does not exist."""
        async with self._session_factory() as db:
            row = await db.get(ConversationRow, (user_id, conversation_id))
            if row is None:
                return Conversation(id=conversation_id, user_id=user_id)
            return self._to_schema(row)

    async def create(self, user_id: str) -> Conversation:
        """Create an empty, named conversation with a new short id."""
        async with self._locks.acquire(user_id):
            async with self._session_factory() as db:
                conversation_id = uuid.uuid4().hex[:8]
                while await db.get(ConversationRow, (user_id, conversation_id)) is not None:
                    conversation_id = uuid.uuid4().hex[:8]

                row = ConversationRow(
                    user_id=user_id, id=conversation_id, name=DEFAULT_CHAT_NAME, turns=[]
                )
                db.add(row)
                await db.commit()
                await db.refresh(row)
                return self._to_schema(row)

    async def append(self, user_id: str, conversation_id: str, turn: Turn) -> Conversation:
        """Append one turn, creating the conversation on its first message."""
        async with self._locks.acquire(user_id):
            async with self._session_factory() as db:
                row = await db.get(ConversationRow, (user_id, conversation_id))
                if row is None:
                    row = ConversationRow(user_id=user_id, id=conversation_id, turns=[])
                    db.add(row)

                turns = list(row.turns or [])
                if not turns:
                    row.name = self._generate_conversation_title(turn.content)
                turns.append(turn.model_dump(mode="json", exclude_none=True))
                row.turns = turns
                row.updated_at = datetime.now(UTC)

                await db.commit()
                await db.refresh(row)
                return self._to_schema(row)

    async def reset(self, user_id: str, conversation_id: str) -> None:
        """Clear all turns. Unknown conversations are left alone."""
        async with self._locks.acquire(user_id):
            async with self._session_factory() as db:
                row = await db.get(ConversationRow, (user_id, conversation_id))
                if row is None:
                    return
                row.turns = []
                row.updated_at = datetime.now(UTC)
                await db.commit()

    async def delete(self, user_id: str, conversation_id: str) -> bool:
        """Remove the conversation entirely.

        Returns:
            True if something was deleted
        """
        async with self._locks.acquire(user_id):
            async with self._session_factory() as db:
                row = await db.get(ConversationRow, (user_id, conversation_id))
                if row is None:
                    return False
                await db.delete(row)
                await db.commit()
                return True

    async def list(self, user_id: str) -> list[ConversationSummary]:
        """List a user's conversations, most recently updated first."""
        async with self._session_factory() as db:
            query = (
                select(ConversationRow)
                .where(ConversationRow.user_id == user_id)
                .order_by(ConversationRow.updated_at.desc())
            )
            result = await db.execute(query)
            rows = result.scalars().all()

        return [
            ConversationSummary(
                id=row.id,
                name=row.name or f"Chat {row.id}",
                updated_at=row.updated_at or row.created_at,
            )
            for row in rows
        ]

    # Private helper methods

    def _generate_conversation_title(self, first_message: str) -> str:
        """Generate conversation title from first message."""
        title = first_message[: self.title_length]
        if len(first_message) > self.title_length:
            title += "..."
        return title

    @staticmethod
    def _to_schema(row: ConversationRow) -> Conversation:
        return Conversation(
            id=row.id,
            user_id=row.user_id,
            name=row.name,
            turns=[Turn.model_validate(turn) for turn in row.turns or []],
            created_at=row.created_at,
            updated_at=row.updated_at,
        )
