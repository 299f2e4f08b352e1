"""
Models package initialization.
"""

from .base import Base, TimestampedModel
from .conversation import Conversation
from .user import User

__all__ = [
    "Base",
    "TimestampedModel",
    "User",
    "Conversation",
]
