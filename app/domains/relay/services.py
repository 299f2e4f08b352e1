"""Wiring of the long-lived relay collaborators."""

from dataclasses import dataclass, field

from fastapi.requests import HTTPConnection
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.core.config import settings
from app.domains.chat.service import ConversationStore
from app.domains.quota.service import QuotaLedger
from app.domains.relay.model_client import OllamaClient
from app.domains.relay.registry import ConnectionRegistry
from app.domains.relay.session import Emitter, RelaySession
from app.domains.user.service import load_user_profile
from app.schemas.user import UserProfile
from app.shared.locks import KeyedLock


@dataclass
class RelayServices:
    session_factory: async_sessionmaker[AsyncSession]
    locks: KeyedLock
    store: ConversationStore
    ledger: QuotaLedger
    model_client: OllamaClient
    registry: ConnectionRegistry = field(default_factory=ConnectionRegistry)
    system_prompt: str = ""
    default_model: str = "llama2"

    async def lookup_user(self, username: str) -> UserProfile | None:
        return await load_user_profile(self.session_factory, username)

    def create_session(self, connection_id: str, emit: Emitter) -> RelaySession:
        return RelaySession(
            connection_id,
            emit,
            store=self.store,
            ledger=self.ledger,
            model_client=self.model_client,
            user_lookup=self.lookup_user,
            system_prompt=self.system_prompt,
            default_model=self.default_model,
        )

    async def aclose(self) -> None:
        await self.registry.close_all()
        await self.model_client.aclose()


def build_relay_services(
    session_factory: async_sessionmaker[AsyncSession],
    model_client: OllamaClient | None = None,
) -> RelayServices:
    """Build the relay collaborators; the store and the ledger share one per-user lock table."""
    locks = KeyedLock()
    return RelayServices(
        session_factory=session_factory,
        locks=locks,
        store=ConversationStore(session_factory, locks),
        ledger=QuotaLedger(session_factory, locks),
        model_client=model_client or OllamaClient(),
        system_prompt=settings.system_prompt,
        default_model=settings.ollama_default_model,
    )


def get_relay_services(connection: HTTPConnection) -> RelayServices:
    """FastAPI dependency returning the services built in the app lifespan."""
    return connection.app.state.relay_services
