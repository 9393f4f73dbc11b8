"""Text enhancement: restructure raw OCR text into a sectioned report.

Models are tried strictly in configured order; the first non-empty
answer wins. Missing credentials short-circuit to the offline mock and
exhausting every model routes into the paragraph-numbering fallback,
so :meth:`TextEnhancementService.enhance` always returns a Document.
"""

from collections.abc import AsyncIterator
from dataclasses import dataclass, field, replace
from enum import StrEnum

import httpx

from scanreport.utils.config import AppConfig, EnhancementConfig
from scanreport.utils.logger import get_logger

from .client import ChatBackend, ChatCompletionClient, ChatCompletionError, ChatRequest
from .fallback import fallback_document, format_text_as_fallback, mock_document, mock_enhance_text
from .prompts import build_enhancement_prompt
from .sections import Document

logger = get_logger(__name__)

EMPTY_RESPONSE = "Empty response from model"


@dataclass(frozen=True)
class EnhancementOptions:
    """Caller choices for one enhancement run."""

    language: str = "english"
    report_type: str = "general"
    additional_instructions: str = ""
    use_streaming: bool = False


class AttemptState(StrEnum):
    NOT_STARTED = "not_started"
    TRYING = "trying"
    SUCCESS = "success"
    ALL_FAILED = "all_failed"


@dataclass
class ModelAttempt:
    model: str
    error: str | None = None


@dataclass
class ModelAttemptLedger:
    """History of one enhancement call across the candidate models."""

    candidates: list[str]
    attempts: list[ModelAttempt] = field(default_factory=list)
    state: AttemptState = AttemptState.NOT_STARTED
    current: str | None = None
    last_error: str | None = None
    winner: str | None = None

    def start(self, model: str) -> None:
        self.state = AttemptState.TRYING
        self.current = model

    def record_failure(self, model: str, error: str) -> None:
        self.attempts.append(ModelAttempt(model, error))
        self.last_error = error

    def record_success(self, model: str) -> None:
        self.attempts.append(ModelAttempt(model))
        self.winner = model
        self.state = AttemptState.SUCCESS

    def exhaust(self) -> None:
        self.current = None
        self.state = AttemptState.ALL_FAILED


class TextEnhancementService:
    """Turn raw OCR text into a structured :class:`Document`.

    Args:
        config: Candidate models, prompt and sampling settings.
        backend: Chat-completion backend; ``None`` means no credential is
            configured and every call returns the offline mock.
    """

    def __init__(
        self,
        config: EnhancementConfig | None = None,
        backend: ChatBackend | None = None,
    ) -> None:
        self.config = config or EnhancementConfig()
        self.backend = backend
        self.last_ledger: ModelAttemptLedger | None = None
        self._warned_unconfigured = False

    @property
    def is_configured(self) -> bool:
        return self.backend is not None

    def _warn_unconfigured(self) -> None:
        if not self._warned_unconfigured:
            logger.warning("No chat-completion credential configured, using mock enhancement")
            self._warned_unconfigured = True

    def _request(self, model: str, text: str, options: EnhancementOptions) -> ChatRequest:
        prompt = build_enhancement_prompt(
            text,
            options.language,
            options.report_type,
            options.additional_instructions,
            structured_locales=self.config.structured_locales,
        )
        return ChatRequest(
            model=model,
            system_prompt=self.config.system_prompt,
            user_prompt=prompt,
            max_tokens=self.config.max_tokens,
            temperature=self.config.temperature,
        )

    async def enhance(self, text: str, options: EnhancementOptions | None = None) -> Document:
        """Enhance ``text``; failures come back as a Document with ``error`` set.

        Raises:
            ValueError: ``text`` is blank.
        """
        if not text.strip():
            raise ValueError("Text is required")
        options = options or EnhancementOptions()

        if self.backend is None:
            self._warn_unconfigured()
            return mock_document(text)

        if options.use_streaming:
            if self.config.streaming_enabled:
                return await self._enhance_streaming(text, options)
            logger.info("Streaming requested but disabled, using blocking completion")

        # the prompt does not depend on the model
        base = self._request(self.config.models[0], text, options)
        ledger = ModelAttemptLedger(candidates=list(self.config.models))
        self.last_ledger = ledger

        for model in ledger.candidates:
            ledger.start(model)
            logger.info("Enhancing %d characters with %s", len(text), model)
            try:
                content = await self.backend.complete(replace(base, model=model))
            except ChatCompletionError as exc:
                error = str(exc)
            except Exception as exc:
                logger.exception("Unexpected error from model %s", model)
                error = str(exc) or type(exc).__name__
            else:
                if content and content.strip():
                    ledger.record_success(model)
                    logger.info("Enhancement succeeded with %s", model)
                    return Document.from_text(content, model=model)
                error = EMPTY_RESPONSE

            ledger.record_failure(model, error)
            logger.warning("Model %s failed: %s", model, error)

        ledger.exhaust()
        logger.error(
            "All %d enhancement models failed, using fallback formatting",
            len(ledger.candidates),
        )
        return fallback_document(text, ledger.last_error)

    async def _enhance_streaming(self, text: str, options: EnhancementOptions) -> Document:
        model = self.config.streaming_model
        ledger = ModelAttemptLedger(candidates=[model])
        self.last_ledger = ledger
        ledger.start(model)

        chunks: list[str] = []
        try:
            async for chunk in self.backend.stream(self._request(model, text, options)):
                chunks.append(chunk)
        except ChatCompletionError as exc:
            error = str(exc)
        except Exception as exc:
            logger.exception("Unexpected streaming error from %s", model)
            error = str(exc) or type(exc).__name__
        else:
            content = "".join(chunks)
            if content.strip():
                ledger.record_success(model)
                return Document.from_text(content, model=model)
            error = EMPTY_RESPONSE

        ledger.record_failure(model, error)
        ledger.exhaust()
        logger.error("Streaming enhancement with %s failed: %s", model, error)
        return fallback_document(text, error)

    async def stream_chunks(
        self, text: str, options: EnhancementOptions | None = None
    ) -> AsyncIterator[str]:
        """Yield enhanced text as it is generated by the streaming model.

        Without a credential the mock text is yielded as a single chunk. A
        failure before the first chunk yields the fallback text instead; a
        failure mid-stream ends the stream.

        Raises:
            ValueError: ``text`` is blank.
        """
        if not text.strip():
            raise ValueError("Text is required")
        options = options or EnhancementOptions()
        if self.backend is None:
            self._warn_unconfigured()
            yield mock_enhance_text(text)
            return

        started = False
        model = self.config.streaming_model
        try:
            async for chunk in self.backend.stream(self._request(model, text, options)):
                started = True
                yield chunk
        except ChatCompletionError as exc:
            logger.error("Streaming enhancement with %s failed: %s", model, exc)
            if not started:
                yield format_text_as_fallback(text)
        except Exception:
            logger.exception("Unexpected streaming error from %s", model)
            if not started:
                yield format_text_as_fallback(text)

    async def aclose(self) -> None:
        if isinstance(self.backend, ChatCompletionClient):
            await self.backend.aclose()


def build_enhancement_service(
    config: AppConfig, transport: httpx.AsyncBaseTransport | None = None
) -> TextEnhancementService:
    """Create the service, with a live backend only when a credential exists."""
    backend = None
    if config.credentials.has_together:
        settings = config.enhancement
        backend = ChatCompletionClient(
            settings.base_url,
            config.credentials.together_api_key,
            timeout_seconds=settings.timeout_seconds,
            retry_attempts=settings.retry_attempts,
            retry_delay=settings.retry_delay,
            transport=transport,
        )
    return TextEnhancementService(config.enhancement, backend)
