"""
Ollama Client - Streaming interface for the Ollama API.

Handles:
- Model listing
- Streaming chat responses decoded from newline-delimited JSON
- Mapping transport failures to relay errors
"""

import asyncio
import json
import logging
from collections.abc import AsyncIterator, Sequence

import httpx

from app.core.config import settings
from app.exceptions.relay import BackendUnavailableError, NoResponseError
from app.schemas.chat import Delta, Turn

logger = logging.getLogger(__name__)

FALLBACK_MODELS = {"llama2": "Llama 2"}


def decode_line(line: str) -> dict | None:
    """Parse one NDJSON line, returning None for blanks and fragments."""
    if not line.strip():
        return None
    try:
        chunk = json.loads(line)
    except json.JSONDecodeError:
        return None
    return chunk if isinstance(chunk, dict) else None


def extract_content(chunk: dict) -> str:
    """Pull the text fragment out of a chat (``message.content``) or generate (``response``) chunk."""
    message = chunk.get("message")
    if isinstance(message, dict):
        content = message.get("content")
        if isinstance(content, str):
            return content
    response = chunk.get("response")
    return response if isinstance(response, str) else ""


class OllamaClient:
    """Client for the Ollama HTTP API."""

    def __init__(
        self,
        base_url: str | None = None,
        timeout: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.base_url = (base_url or settings.ollama_host).rstrip("/")
        self.timeout = timeout or settings.ollama_request_timeout
        self._client = httpx.AsyncClient(
            base_url=self.base_url,
            timeout=httpx.Timeout(self.timeout, connect=min(self.timeout, 10.0)),
            transport=transport,
        )

    async def list_models(self) -> dict[str, str]:
        """List installed models as ``{name: label}``; falls back when Ollama is unreachable."""
        try:
            response = await self._client.get("/api/tags")
            response.raise_for_status()
            data = response.json()
        except (httpx.HTTPError, ValueError) as e:
            logger.error(f"Failed to list Ollama models: {e}. Make sure Ollama is running")
            return dict(FALLBACK_MODELS)

        models = {m["name"]: m["name"] for m in data.get("models", []) if m.get("name")}
        logger.info(f"Fetched {len(models)} models from Ollama")
        return models or dict(FALLBACK_MODELS)

    def build_payload(
        self, history: Sequence[Turn], system_prompt: str | None, model: str
    ) -> dict:
        messages = []
        if system_prompt:
            messages.append({"role": "system", "content": system_prompt})
        messages.extend(turn.as_message() for turn in history)
        return {"model": model, "messages": messages, "stream": True}

    async def generate(
        self, history: Sequence[Turn], system_prompt: str | None, model: str
    ) -> AsyncIterator[Delta]:
        """Stream a chat completion as Deltas.

        Yields one Delta per decoded line carrying text, then a final
        ``Delta(is_final=True)`` when the backend sends ``done: true``.
        Closing the generator, or cancelling the task consuming it, closes the
        HTTP response so the backend stops generating.

        Raises:
            BackendUnavailableError: network error, non-2xx status or timeout
            NoResponseError: the stream ended without a ``done`` marker
        """
        payload = self.build_payload(history, system_prompt, model)
        loop = asyncio.get_running_loop()
        deadline = loop.time() + self.timeout

        try:
            async with self._client.stream("POST", "/api/chat", json=payload) as response:
                if response.is_error:
                    await response.aread()
                    raise BackendUnavailableError(
                        f"Model backend returned HTTP {response.status_code}",
                        details={"status_code": response.status_code, "body": response.text[:500]},
                    )

                lines = response.aiter_lines()
                while True:
                    # Only the read is bounded; time spent by the consumer
                    # between yields still counts against the deadline.
                    try:
                        async with asyncio.timeout_at(deadline):
                            line = await anext(lines)
                    except StopAsyncIteration:
                        break
                    except TimeoutError as e:
                        raise BackendUnavailableError(
                            f"Model backend exceeded {self.timeout:g}s generation limit"
                        ) from e

                    chunk = decode_line(line)
                    if chunk is None:
                        continue

                    if "error" in chunk and not chunk.get("done"):
                        raise BackendUnavailableError(f"Model backend error: {chunk['error']}")

                    content = extract_content(chunk)
                    if content:
                        yield Delta(text=content)

                    if chunk.get("done") is True:
                        yield Delta(is_final=True)
                        return

        except httpx.TimeoutException as e:
            raise BackendUnavailableError(f"Model backend timed out: {str(e) or type(e).__name__}") from e
        except httpx.HTTPError as e:
            raise BackendUnavailableError(f"Failed to reach model backend: {str(e)}") from e

        raise NoResponseError()

    async def aclose(self) -> None:
        await self._client.aclose()
