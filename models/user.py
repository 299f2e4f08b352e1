"""
Provides the User model for the application's database schema.

A user owns a daily token cap and the running consumption against it. The
quota fields are mutated by the quota ledger on every completed generation
and by the scheduled daily reset.

Attributes
----------
username : sqlalchemy.Column
    Unique login name, also the primary key.
password_hash : sqlalchemy.Column
    bcrypt hash of the user's password.
max_tokens : sqlalchemy.Column
    Daily token cap.
tokens_used_today : sqlalchemy.Column
    Tokens consumed since the last reset.
personal_prompt : sqlalchemy.Column
    Optional text appended to the system prompt.
quota_reset_at : sqlalchemy.Column
    When ``tokens_used_today`` was last reset.
"""

from sqlalchemy import Boolean, Column, DateTime, Integer, String, Text
from sqlalchemy.orm import relationship

from .base import TimestampedModel


class User(TimestampedModel):
    """
    Represents a chat user with a daily token quota.

    :ivar username: Unique login name.
    :type username: str
    :ivar max_tokens: Daily token cap.
    :type max_tokens: int
    :ivar tokens_used_today: Tokens consumed in the current reset window.
    :type tokens_used_today: int
    """

    __tablename__ = "users"

    username = Column(String(100), primary_key=True)
    password_hash = Column(String(255), nullable=False)
    max_tokens = Column(Integer, nullable=False, default=0)
    tokens_used_today = Column(Integer, nullable=False, default=0)
    personal_prompt = Column(Text, nullable=False, default="")
    quota_reset_at = Column(DateTime(timezone=True), nullable=True)
    is_active = Column(Boolean, default=True)

    conversations = relationship(
        "Conversation", back_populates="user", cascade="all, delete-orphan"
    )
