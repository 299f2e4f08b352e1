"""Chat schemas for conversation documents and streaming deltas."""

from __future__ import annotations

from datetime import datetime
from enum import Enum

from pydantic import ConfigDict, Field

from .base import BaseSchema


class MessageRole(str, Enum):
    """Message role enumeration."""

    USER = "user"
    ASSISTANT = "assistant"
    SYSTEM = "system"


class TurnStats(BaseSchema):
    """Generation statistics attached to assistant turns."""

    tokens: int = Field(..., ge=0, description="Streamed chunks received (approximate token count)")
    duration: float = Field(..., ge=0, description="Wall-clock seconds until the final delta")

    model_config = ConfigDict(frozen=True)


class Turn(BaseSchema):
    """One message within a conversation. Immutable once appended."""

    role: MessageRole
    content: str
    stats: TurnStats | None = Field(None, description="Only set on assistant turns")

    model_config = ConfigDict(frozen=True, use_enum_values=True)

    def as_message(self) -> dict[str, str]:
        """Shape used in the backend's ``messages`` array."""
        return {"role": self.role, "content": self.content}


class Conversation(BaseSchema):
    """Ordered turn history owned by one user."""

    id: str
    user_id: str
    name: str | None = None
    turns: list[Turn] = Field(default_factory=list)
    created_at: datetime | None = None
    updated_at: datetime | None = None

    def to_wire(self) -> dict:
        return {
            "messages": [turn.model_dump(mode="json", exclude_none=True) for turn in self.turns],
            "name": self.name,
            "createdAt": self.created_at.isoformat() if self.created_at else None,
            "updatedAt": self.updated_at.isoformat() if self.updated_at else None,
        }


class ConversationSummary(BaseSchema):
    """Sidebar entry for a conversation."""

    id: str
    name: str
    updated_at: datetime

    def to_wire(self) -> dict:
        return {"id": self.id, "name": self.name, "updatedAt": self.updated_at.isoformat()}


class Delta(BaseSchema):
    """One incremental fragment of generated text."""

    text: str = ""
    is_final: bool = False

    model_config = ConfigDict(frozen=True)


class SendMessagePayload(BaseSchema):
    """Inbound ``send_message`` event data."""

    message: str = Field(..., min_length=1, max_length=10000)
    selected_model: str | None = Field(None, alias="selectedModel")
    chat_id: str = Field(..., min_length=1, max_length=64, alias="chatId")

    model_config = ConfigDict(populate_by_name=True)


class ChatIdPayload(BaseSchema):
    """Inbound event data carrying only a chat id."""

    chat_id: str = Field(..., min_length=1, max_length=64, alias="chatId")

    model_config = ConfigDict(populate_by_name=True)
