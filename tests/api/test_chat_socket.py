"""
API tests for the /ws/chat websocket.

Runs the real relay stack against a SQLite file and a mocked Ollama server.
"""

import asyncio
import json
from datetime import UTC, datetime
from unittest.mock import patch

import httpx
import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine as create_sync_engine
from sqlalchemy.ext.asyncio import create_async_engine
from sqlalchemy.orm import Session
from sqlalchemy.pool import NullPool
from starlette.websockets import WebSocketDisconnect, WebSocketState

from app.core.security import create_access_token, hash_password
from app.database import create_session_factory
from app.domains.relay.controller import make_emitter
from app.domains.relay.model_client import OllamaClient
from app.domains.relay.services import build_relay_services, get_relay_services
from app.main import app
from models import Base, User


def ollama_handler(request: httpx.Request) -> httpx.Response:
    if request.url.path == "/api/tags":
        return httpx.Response(200, json={"models": [{"name": "llama2"}]})
    lines = [
        {"message": {"content": "Hel"}, "done": False},
        {"message": {"content": "lo"}, "done": False},
        {"done": True},
    ]
    return httpx.Response(200, content="".join(json.dumps(line) + "\n" for line in lines))


@pytest.fixture
def services(tmp_path):
    db_path = tmp_path / "relay.db"
    sync_engine = create_sync_engine(f"sqlite:///{db_path}")
    Base.metadata.create_all(sync_engine)
    with Session(sync_engine) as db:
        db.add(
            User(
                username="alice",
                password_hash=hash_password("secret"),
                max_tokens=100,
                tokens_used_today=0,
                personal_prompt="",
                quota_reset_at=datetime.now(UTC),
            )
        )
        db.commit()
    sync_engine.dispose()

    engine = create_async_engine(f"sqlite+aiosqlite:///{db_path}", poolclass=NullPool)
    return build_relay_services(
        create_session_factory(engine),
        model_client=OllamaClient(
            base_url="http://ollama.test", transport=httpx.MockTransport(ollama_handler)
        ),
    )


@pytest.fixture
def ws_client(services):
    app.dependency_overrides[get_relay_services] = lambda: services
    yield TestClient(app)
    app.dependency_overrides.clear()


def send(ws, event, data=None):
    ws.send_text(json.dumps({"event": event, "data": data}))


def receive_until(ws, event):
    received = []
    while True:
        message = ws.receive_json()
        received.append(message)
        if message["event"] == event:
            return received


class TestChatSocket:
    def test_models_sent_on_connect(self, ws_client):
        with ws_client.websocket_connect("/ws/chat") as ws:
            assert ws.receive_json() == {"event": "models_loaded", "data": {"llama2": "llama2"}}

    def test_full_conversation(self, ws_client, services):
        with ws_client.websocket_connect("/ws/chat") as ws:
            ws.receive_json()
            send(ws, "authenticate", {"token": create_access_token("alice")})
            assert ws.receive_json() == {"event": "authenticated", "data": {"username": "alice"}}

            send(ws, "send_message", {"message": "Hi", "chatId": "c1", "selectedModel": "llama2"})
            received = receive_until(ws, "message_completed")

            streaming = [m["data"]["content"] for m in received if m["event"] == "message_streaming"]
            assert streaming == ["Hel", "Hello"]
            completed = received[-1]["data"]
            assert completed["content"] == "Hello"
            assert completed["stats"]["tokens"] == 2

            send(ws, "load_chat", {"chatId": "c1"})
            loaded = receive_until(ws, "chat_loaded")[-1]["data"]
            assert [m["content"] for m in loaded["chatData"]["messages"]] == ["Hi", "Hello"]
            assert loaded["chatList"][0]["id"] == "c1"

        assert len(services.registry) == 0

    def test_send_before_authenticate(self, ws_client):
        with ws_client.websocket_connect("/ws/chat") as ws:
            ws.receive_json()
            send(ws, "send_message", {"message": "Hi", "chatId": "c1"})

            assert ws.receive_json() == {"event": "error", "data": {"message": "Not authenticated"}}

    def test_malformed_frames(self, ws_client):
        with ws_client.websocket_connect("/ws/chat") as ws:
            ws.receive_json()

            ws.send_text("{not json")
            assert ws.receive_json()["event"] == "error"

            ws.send_text(json.dumps(["no", "event"]))
            assert ws.receive_json() == {"event": "error", "data": {"message": "Malformed message"}}

    def test_registered_while_connected(self, ws_client, services):
        with ws_client.websocket_connect("/ws/chat") as ws:
            ws.receive_json()
            send(ws, "authenticate", {"token": create_access_token("alice")})
            ws.receive_json()

            assert len(services.registry) == 1
            assert services.registry.active_users() == {"alice"}

    def test_disconnect_event_closes_socket(self, ws_client, services):
        with ws_client.websocket_connect("/ws/chat") as ws:
            ws.receive_json()
            send(ws, "disconnect")

            with pytest.raises(WebSocketDisconnect):
                ws.receive_json()

        assert len(services.registry) == 0

    def test_connection_limit(self, ws_client):
        with patch("app.domains.relay.controller.settings.websocket_max_connections", 0):
            with pytest.raises(WebSocketDisconnect) as exc_info:
                with ws_client.websocket_connect("/ws/chat") as ws:
                    ws.receive_json()

        assert exc_info.value.code == 1013


class RecordingSocket:
    def __init__(self):
        self.client_state = WebSocketState.CONNECTED
        self.sent = []
        self.in_flight = 0
        self.max_in_flight = 0

    async def send_json(self, data):
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        await asyncio.sleep(0.01)
        self.sent.append(data)
        self.in_flight -= 1


@pytest.mark.asyncio
class TestEmitter:
    async def test_concurrent_sends_are_serialized(self):
        socket = RecordingSocket()
        emit = make_emitter(socket)

        await asyncio.gather(*(emit("message_streaming", {"content": str(i)}) for i in range(5)))

        assert socket.max_in_flight == 1
        assert sorted(m["data"]["content"] for m in socket.sent) == ["0", "1", "2", "3", "4"]

    async def test_skips_closed_socket(self):
        socket = RecordingSocket()
        socket.client_state = WebSocketState.DISCONNECTED
        emit = make_emitter(socket)

        await emit("error", {"message": "late"})

        assert socket.sent == []
