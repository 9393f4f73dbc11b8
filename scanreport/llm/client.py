"""HTTP client for OpenAI-compatible chat-completion endpoints.

Used by the text enhancement service and by both vision OCR backends.
Uses httpx with explicit timeouts and tenacity for retry with
exponential backoff on rate limiting, 5xx gateway errors and
connection failures. Vendor JSON is validated into pydantic models as
soon as it arrives; anything malformed becomes a ChatCompletionError.
"""

import json
from collections.abc import AsyncIterator
from dataclasses import dataclass
from typing import Any, Protocol

import httpx
from pydantic import BaseModel, Field, SecretStr, ValidationError
from tenacity import (
    AsyncRetrying,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from scanreport.utils.logger import get_logger

logger = get_logger(__name__)

_RETRYABLE_STATUS = {429, 502, 503, 504}


class ChatCompletionError(Exception):
    """The endpoint failed or answered with something unusable (non-retryable)."""


class ChatServiceUnavailable(ChatCompletionError):
    """The endpoint is temporarily unavailable (retryable: 429, 5xx gateway, network)."""


class ChatMessage(BaseModel):
    role: str | None = None
    content: str | None = None


class ChatChoice(BaseModel):
    message: ChatMessage


class ChatCompletionResponse(BaseModel):
    """Successful non-streaming response body."""

    model: str | None = None
    choices: list[ChatChoice]


class StreamDelta(BaseModel):
    content: str | None = None


class StreamChoice(BaseModel):
    delta: StreamDelta = Field(default_factory=StreamDelta)


class ChatCompletionChunk(BaseModel):
    """One server-sent event of a streamed completion."""

    choices: list[StreamChoice] = Field(default_factory=list)


@dataclass(frozen=True)
class ChatRequest:
    """A single system + user prompt completion request."""

    model: str
    system_prompt: str
    user_prompt: str
    max_tokens: int
    temperature: float

    def messages(self) -> list[dict[str, Any]]:
        return [
            {"role": "system", "content": self.system_prompt},
            {"role": "user", "content": self.user_prompt},
        ]


class ChatBackend(Protocol):
    """What the enhancement service needs from a chat-completion vendor."""

    async def complete(self, request: ChatRequest) -> str: ...

    def stream(self, request: ChatRequest) -> AsyncIterator[str]: ...


def error_message_from_body(body: Any, status_code: int) -> str:
    """Pull a human-readable message out of a vendor error payload."""
    if isinstance(body, dict):
        error = body.get("error")
        if isinstance(error, dict):
            return str(error.get("message") or error)
        if error:
            return str(error)
        if body.get("detail"):
            return str(body["detail"])
    return f"HTTP {status_code}"


class ChatCompletionClient:
    """Async client for ``POST {base_url}/chat/completions``.

    Args:
        base_url: API root, e.g. ``https://api.together.xyz/v1``.
        api_key: Bearer token.
        timeout_seconds: Per-request read timeout.
        retry_attempts: Total attempts for retryable failures; 1 disables retries
            so callers can move on to their next candidate.
        retry_delay: Backoff multiplier in seconds.
        transport: Optional httpx transport (tests use ``httpx.MockTransport``).
    """

    def __init__(
        self,
        base_url: str,
        api_key: SecretStr | str,
        timeout_seconds: float = 60.0,
        retry_attempts: int = 1,
        retry_delay: float = 1.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        key = api_key.get_secret_value() if isinstance(api_key, SecretStr) else api_key
        self._retry_attempts = max(1, retry_attempts)
        self._retry_delay = retry_delay
        self._client = httpx.AsyncClient(
            base_url=base_url.rstrip("/"),
            headers={"Authorization": f"Bearer {key}"},
            timeout=httpx.Timeout(timeout_seconds, connect=min(10.0, timeout_seconds)),
            transport=transport,
        )

    async def aclose(self) -> None:
        await self._client.aclose()

    async def complete(self, request: ChatRequest) -> str:
        """Run a blocking completion and return the message content."""
        return await self.complete_messages(
            request.model,
            request.messages(),
            max_tokens=request.max_tokens,
            temperature=request.temperature,
        )

    async def complete_messages(
        self,
        model: str,
        messages: list[dict[str, Any]],
        max_tokens: int,
        temperature: float | None = None,
    ) -> str:
        """Send raw chat messages (text or multimodal) and return the content.

        Raises:
            ChatServiceUnavailable: Retryable failure persisted after all attempts.
            ChatCompletionError: Non-retryable failure or unusable body.
        """
        payload: dict[str, Any] = {
            "model": model,
            "messages": messages,
            "max_tokens": max_tokens,
        }
        if temperature is not None:
            payload["temperature"] = temperature

        async for attempt in AsyncRetrying(
            retry=retry_if_exception_type(ChatServiceUnavailable),
            stop=stop_after_attempt(self._retry_attempts),
            wait=wait_exponential(multiplier=self._retry_delay, max=30),
            reraise=True,
            before_sleep=lambda state: logger.warning(
                "Chat endpoint unavailable for %s, retrying (attempt %d/%d)",
                model,
                state.attempt_number,
                self._retry_attempts,
            ),
        ):
            with attempt:
                return await self._send(payload)
        raise ChatCompletionError("No attempt was made")  # pragma: no cover

    async def _send(self, payload: dict[str, Any]) -> str:
        try:
            resp = await self._client.post("/chat/completions", json=payload)
        except (httpx.ConnectError, httpx.TimeoutException) as exc:
            raise ChatServiceUnavailable(f"Cannot reach chat endpoint: {exc}") from exc
        except httpx.HTTPError as exc:
            raise ChatCompletionError(f"Chat endpoint HTTP error: {exc}") from exc

        try:
            body = resp.json()
        except ValueError:
            body = None

        if resp.status_code in _RETRYABLE_STATUS:
            raise ChatServiceUnavailable(error_message_from_body(body, resp.status_code))
        if not resp.is_success:
            raise ChatCompletionError(error_message_from_body(body, resp.status_code))
        if body is None:
            raise ChatCompletionError("Failed to parse API response")

        try:
            parsed = ChatCompletionResponse.model_validate(body)
        except ValidationError as exc:
            raise ChatCompletionError(f"Malformed completion response: {exc}") from exc

        content = parsed.choices[0].message.content if parsed.choices else None
        if not content or not content.strip():
            raise ChatCompletionError("Empty response from model")
        return content

    async def stream(self, request: ChatRequest) -> AsyncIterator[str]:
        """Stream a completion as text chunks (no retries once bytes flow).

        Raises:
            ChatServiceUnavailable: Network failure before or during the stream.
            ChatCompletionError: Non-success status or malformed event.
        """
        payload = {
            "model": request.model,
            "messages": request.messages(),
            "max_tokens": request.max_tokens,
            "temperature": request.temperature,
            "stream": True,
        }
        try:
            async with self._client.stream("POST", "/chat/completions", json=payload) as resp:
                if not resp.is_success:
                    raw = await resp.aread()
                    raise ChatCompletionError(_stream_error(raw, resp.status_code))
                async for line in resp.aiter_lines():
                    if not line.startswith("data:"):
                        continue
                    data = line[len("data:"):].strip()
                    if data == "[DONE]":
                        break
                    try:
                        chunk = ChatCompletionChunk.model_validate_json(data)
                    except ValidationError as exc:
                        raise ChatCompletionError(f"Malformed stream event: {exc}") from exc
                    for choice in chunk.choices:
                        if choice.delta.content:
                            yield choice.delta.content
        except (httpx.ConnectError, httpx.TimeoutException) as exc:
            raise ChatServiceUnavailable(f"Stream interrupted: {exc}") from exc
        except httpx.HTTPError as exc:
            raise ChatCompletionError(f"Chat endpoint HTTP error: {exc}") from exc


def _stream_error(raw: bytes, status_code: int) -> str:
    try:
        body = json.loads(raw)
    except ValueError:
        body = None
    return error_message_from_body(body, status_code)
