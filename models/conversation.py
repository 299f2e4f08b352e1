"""
Conversation model for chat history.

The turn list is stored as one JSON document and rewritten as a whole on
every change.
"""

from sqlalchemy import JSON, Column, ForeignKey, String
from sqlalchemy.orm import relationship

from .base import TimestampedModel


class Conversation(TimestampedModel):
    """
    Represents a chat conversation owned by exactly one user.
    """

    __tablename__ = "conversations"

    user_id = Column(
        String(100), ForeignKey("users.username", ondelete="CASCADE"), primary_key=True
    )
    id = Column(String(64), primary_key=True)
    name = Column(String(255), nullable=True)  # Derived from the first message
    turns = Column(JSON, nullable=False, default=list)

    user = relationship("User", back_populates="conversations")
