"""Registry of live relay sessions, keyed by connection id."""

import logging

from app.domains.relay.session import RelaySession

logger = logging.getLogger(__name__)


class ConnectionRegistry:
    """Owned by the running app; torn down in its lifespan."""

    def __init__(self) -> None:
        self._sessions: dict[str, RelaySession] = {}

    def add(self, session: RelaySession) -> None:
        if session.connection_id in self._sessions:
            raise ValueError(f"Connection {session.connection_id} is already registered")
        self._sessions[session.connection_id] = session

    def remove(self, connection_id: str) -> RelaySession | None:
        return self._sessions.pop(connection_id, None)

    def get(self, connection_id: str) -> RelaySession | None:
        return self._sessions.get(connection_id)

    def active_users(self) -> set[str]:
        return {s.user_id for s in self._sessions.values() if s.user_id}

    async def close_all(self) -> None:
        """Cancel every in-flight generation and forget all sessions."""
        sessions = list(self._sessions.values())
        self._sessions.clear()
        for session in sessions:
            await session.on_disconnect()
        if sessions:
            logger.info(f"Closed {len(sessions)} relay sessions")

    def __len__(self) -> int:
        return len(self._sessions)

    def __contains__(self, connection_id: object) -> bool:
        return connection_id in self._sessions
