"""Relay session: bridges one client connection to the model backend."""

import asyncio
import logging
import time
import uuid
from collections.abc import Awaitable, Callable
from contextlib import aclosing
from typing import Any

from fastapi import WebSocketDisconnect
from pydantic import ValidationError

from app.core.security import decode_access_token
from app.domains.chat.service import ConversationStore
from app.domains.quota.service import QuotaLedger
from app.domains.relay.model_client import OllamaClient
from app.exceptions.relay import (
    BackendUnavailableError,
    NoResponseError,
    QuotaExceededError,
    RelayError,
    UnauthenticatedError,
)
from app.schemas.chat import ChatIdPayload, MessageRole, SendMessagePayload, Turn, TurnStats
from app.schemas.user import UserProfile

logger = logging.getLogger(__name__)

Emitter = Callable[[str, Any], Awaitable[None]]
UserLookup = Callable[[str], Awaitable[UserProfile | None]]


class StreamingSession:
    """State of the one in-flight generation of a connection.

    The task is the cancellation handle and is only touched by the owning
    RelaySession.
    """

    def __init__(self, chat_id: str, started_at: float):
        self.response_id = str(uuid.uuid4())
        self.chat_id = chat_id
        self.started_at = started_at
        self.task: asyncio.Task | None = None
        self.parts: list[str] = []
        self.token_count = 0
        self.completing = False

    @property
    def content(self) -> str:
        return "".join(self.parts)


class RelaySession:
    """Owns one client connection.

    States are Idle (no ``StreamingSession``) and Generating. A new message
    or a stop request cancels the running generation before anything else
    happens, so output of two generations never interleaves. Completion
    persists the assistant turn, then charges the ledger, then notifies the
    client.
    """

    def __init__(
        self,
        connection_id: str,
        emit: Emitter,
        *,
        store: ConversationStore,
        ledger: QuotaLedger,
        model_client: OllamaClient,
        user_lookup: UserLookup,
        system_prompt: str = "",
        default_model: str = "llama2",
        clock: Callable[[], float] = time.monotonic,
    ):
        self.connection_id = connection_id
        self.user_id: str | None = None
        self._emit = emit
        self._store = store
        self._ledger = ledger
        self._model_client = model_client
        self._user_lookup = user_lookup
        self._system_prompt = system_prompt
        self._default_model = default_model
        self._clock = clock
        self._active: StreamingSession | None = None
        self._closed = False

    @property
    def is_generating(self) -> bool:
        return self._active is not None

    @property
    def active_generation(self) -> StreamingSession | None:
        return self._active

    async def handle(self, event: str, data: Any = None) -> None:
        """Dispatch one inbound event, converting failures into client notices."""
        handlers = {
            "authenticate": self._handle_authenticate,
            "send_message": self._handle_send_message,
            "load_chat": self._handle_load_chat,
            "create_chat": self._handle_create_chat,
            "delete_chat": self._handle_delete_chat,
            "reset_chat": self._handle_reset_chat,
            "stop_generation": self._handle_stop,
        }
        handler = handlers.get(event)
        if handler is None:
            logger.warning(f"Connection {self.connection_id} sent unknown event {event!r}")
            await self._emit("error", {"message": f"Unknown event: {event}"})
            return

        try:
            await handler(data)
        except QuotaExceededError as e:
            await self._emit("token_limit_exceeded", {"remaining": e.details.get("remaining")})
        except RelayError as e:
            logger.info(f"{event} rejected for connection {self.connection_id}: {e.message}")
            await self._emit("error", {"message": e.message})
        except ValidationError as e:
            await self._emit("error", {"message": f"Invalid {event} payload: {e.errors()[0]['msg']}"})
        except Exception:
            logger.exception(f"Unexpected error handling {event} for connection {self.connection_id}")
            await self._emit("error", {"message": "An unexpected error occurred"})

    # Event handlers

    async def on_authenticate(self, token: str) -> None:
        username = decode_access_token(token)
        profile = await self._user_lookup(username)
        if profile is None or not profile.is_active:
            raise UnauthenticatedError("Unknown or inactive user")

        self.user_id = username
        logger.info(f"Connection {self.connection_id} authenticated as {username}")
        await self._emit("authenticated", {"username": username})

    async def on_message(self, message: str, model: str | None, chat_id: str) -> None:
        user_id = self._require_user()
        await self.cancel_generation()

        remaining = await self._ledger.remaining(user_id)
        if remaining <= 0:
            raise QuotaExceededError(remaining=remaining)

        profile = await self._user_lookup(user_id)
        system_prompt = self._build_system_prompt(profile)

        conversation = await self._store.append(
            user_id, chat_id, Turn(role=MessageRole.USER, content=message)
        )

        stream = StreamingSession(chat_id=chat_id, started_at=self._clock())
        stream.task = asyncio.create_task(
            self._run_generation(
                stream, user_id, conversation.turns, system_prompt, model or self._default_model
            ),
            name=f"relay-{self.connection_id}-{stream.response_id[:8]}",
        )
        stream.task.add_done_callback(self._log_task_failure)
        self._active = stream

    async def on_stop(self) -> None:
        await self.cancel_generation()

    async def on_disconnect(self) -> None:
        self._closed = True
        await self.cancel_generation(notify=False)

    async def on_load_chat(self, chat_id: str) -> None:
        user_id = self._require_user()
        conversation = await self._store.load(user_id, chat_id)
        summaries = await self._store.list(user_id)
        await self._emit(
            "chat_loaded",
            {
                "chatId": chat_id,
                "chatData": conversation.to_wire(),
                "chatList": [summary.to_wire() for summary in summaries],
            },
        )

    async def on_create_chat(self) -> None:
        user_id = self._require_user()
        conversation = await self._store.create(user_id)
        await self._emit("chat_created", {"chatId": conversation.id})

    async def on_delete_chat(self, chat_id: str) -> None:
        user_id = self._require_user()
        await self._cancel_if_streaming_into(chat_id)
        if await self._store.delete(user_id, chat_id):
            await self._emit("chat_deleted", {"chatId": chat_id})

    async def on_reset_chat(self, chat_id: str) -> None:
        user_id = self._require_user()
        await self._cancel_if_streaming_into(chat_id)
        await self._store.reset(user_id, chat_id)
        await self._emit("chat_reset", {"chatId": chat_id})

    async def send_models(self) -> None:
        models = await self._model_client.list_models()
        await self._emit("models_loaded", models)

    async def cancel_generation(self, notify: bool = True) -> bool:
        """Cancel the in-flight generation, if any.

        Tokens already relayed are charged. A generation that already
        received its final delta is allowed to finish instead.

        Returns:
            True if a generation was stopped
        """
        stream = self._active
        if stream is None or stream.task is None:
            return False
        self._active = None

        if stream.completing:
            await asyncio.wait({stream.task})
            return False

        stream.task.cancel()
        await asyncio.wait({stream.task})
        logger.info(
            f"Generation {stream.response_id} on connection {self.connection_id} stopped "
            f"after {stream.token_count} chunks"
        )

        if stream.token_count and self.user_id:
            await self._ledger.charge(self.user_id, stream.token_count)
        if notify:
            await self._notify("streaming_stopped", {"responseId": stream.response_id})
        return True

    async def join(self) -> None:
        """Wait for the current generation, if any, to finish."""
        stream = self._active
        if stream is not None and stream.task is not None:
            await asyncio.wait({stream.task})

    # Generation

    async def _run_generation(
        self,
        stream: StreamingSession,
        user_id: str,
        history: list[Turn],
        system_prompt: str,
        model: str,
    ) -> None:
        abandoned = False
        try:
            async with aclosing(self._model_client.generate(history, system_prompt, model)) as deltas:
                async for delta in deltas:
                    if delta.text:
                        stream.parts.append(delta.text)
                        stream.token_count += 1
                        delivered = await self._notify(
                            "message_streaming",
                            {"responseId": stream.response_id, "content": stream.content},
                        )
                        if not delivered:
                            stream.completing = abandoned = True
                            break
                    if delta.is_final:
                        stream.completing = True

            if abandoned:
                await self._abandon(stream, user_id)
                return
            if not stream.completing:
                raise NoResponseError()
            await self._complete(stream, user_id)

        except RelayError as e:
            logger.warning(f"Generation {stream.response_id} failed: {e.message}")
            await self._fail(stream, user_id, e)
        except asyncio.CancelledError:
            raise
        except Exception:
            logger.exception(f"Generation {stream.response_id} crashed")
            await self._fail(stream, user_id, RelayError("Generation failed unexpectedly"))
        finally:
            if self._active is stream:
                self._active = None

    async def _complete(self, stream: StreamingSession, user_id: str) -> None:
        stats = TurnStats(
            tokens=stream.token_count,
            duration=round(max(self._clock() - stream.started_at, 0.0), 1),
        )
        content = stream.content

        await self._store.append(
            user_id,
            stream.chat_id,
            Turn(role=MessageRole.ASSISTANT, content=content, stats=stats),
        )
        await self._ledger.charge(user_id, stream.token_count)
        await self._notify("message_completed", {"content": content, "stats": stats.model_dump()})
        logger.info(
            f"Generation {stream.response_id} for {user_id} completed: "
            f"{stats.tokens} chunks in {stats.duration}s"
        )

    async def _fail(self, stream: StreamingSession, user_id: str, error: RelayError) -> None:
        stream.completing = True
        try:
            # Keep partial text of an interrupted stream; a stream without
            # a terminal marker leaves the conversation untouched.
            if isinstance(error, BackendUnavailableError) and stream.parts:
                stats = TurnStats(
                    tokens=stream.token_count,
                    duration=round(max(self._clock() - stream.started_at, 0.0), 1),
                )
                await self._store.append(
                    user_id,
                    stream.chat_id,
                    Turn(role=MessageRole.ASSISTANT, content=stream.content, stats=stats),
                )
            if stream.token_count:
                await self._ledger.charge(user_id, stream.token_count)
        except Exception:
            logger.exception(f"Could not record usage of failed generation {stream.response_id}")

        await self._notify("error", {"message": error.message})

    async def _abandon(self, stream: StreamingSession, user_id: str) -> None:
        logger.info(
            f"Connection {self.connection_id} went away during generation {stream.response_id} "
            f"after {stream.token_count} chunks"
        )
        if stream.token_count:
            try:
                await self._ledger.charge(user_id, stream.token_count)
            except Exception:
                logger.exception(f"Could not record usage of abandoned generation {stream.response_id}")

    async def _notify(self, event: str, data: Any = None) -> bool:
        """Emit from the generation side; a failed send marks the session closed.

        Returns:
            True if the event was handed to the connection
        """
        if self._closed:
            return False
        try:
            await self._emit(event, data)
        except (WebSocketDisconnect, RuntimeError) as e:
            logger.info(f"Connection {self.connection_id} dropped while sending {event}: {e!r}")
            self._closed = True
            return False
        return True

    # Payload adapters

    async def _handle_authenticate(self, data: Any) -> None:
        token = data.get("token") if isinstance(data, dict) else data
        await self.on_authenticate(token or "")

    async def _handle_send_message(self, data: Any) -> None:
        payload = SendMessagePayload.model_validate(data or {})
        await self.on_message(payload.message, payload.selected_model, payload.chat_id)

    async def _handle_load_chat(self, data: Any) -> None:
        await self.on_load_chat(self._parse_chat_id(data))

    async def _handle_create_chat(self, _data: Any) -> None:
        await self.on_create_chat()

    async def _handle_delete_chat(self, data: Any) -> None:
        await self.on_delete_chat(self._parse_chat_id(data))

    async def _handle_reset_chat(self, data: Any) -> None:
        await self.on_reset_chat(self._parse_chat_id(data))

    async def _handle_stop(self, _data: Any) -> None:
        await self.on_stop()

    # Private helper methods

    def _require_user(self) -> str:
        if not self.user_id:
            raise UnauthenticatedError()
        return self.user_id

    def _build_system_prompt(self, profile: UserProfile | None) -> str:
        prompt = self._system_prompt or ""
        if profile and profile.personal_prompt:
            prompt += "\n\nPersonal Context:\n" + profile.personal_prompt
        return prompt

    async def _cancel_if_streaming_into(self, chat_id: str) -> None:
        if self._active is not None and self._active.chat_id == chat_id:
            await self.cancel_generation()

    @staticmethod
    def _log_task_failure(task: asyncio.Task) -> None:
        if not task.cancelled() and task.exception() is not None:
            logger.error(f"Relay task {task.get_name()} ended with an error", exc_info=task.exception())

    @staticmethod
    def _parse_chat_id(data: Any) -> str:
        if isinstance(data, str):
            data = {"chatId": data}
        return ChatIdPayload.model_validate(data or {}).chat_id
