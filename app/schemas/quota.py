"""Quota schemas."""

from pydantic import Field

from .base import BaseSchema


class QuotaState(BaseSchema):
    """Derived view of a user's daily token budget."""

    username: str
    max_tokens: int
    tokens_used_today: int = Field(..., ge=0)

    @property
    def remaining(self) -> int:
        return self.max_tokens - self.tokens_used_today
