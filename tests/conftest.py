"""Shared test fixtures for the scan-report test suite."""

import io
from collections.abc import AsyncIterator
from pathlib import Path

import numpy as np
import pytest
from PIL import Image

from scanreport.llm.client import ChatCompletionError, ChatRequest
from scanreport.ocr.types import (
    BackendName,
    ExtractionBackend,
    ExtractionRequest,
    ExtractionResult,
    ProgressCallback,
    notify,
)


class FakeBackend(ExtractionBackend):
    """Extraction backend returning canned text, recording every call."""

    def __init__(
        self,
        name: BackendName,
        text: str = "extracted",
        configured: bool = True,
        error: str | None = None,
    ) -> None:
        self.name = name
        self.text = text
        self.configured = configured
        self.error = error
        self.calls: list[ExtractionRequest] = []

    def is_configured(self) -> bool:
        return self.configured

    async def extract(
        self,
        request: ExtractionRequest,
        on_progress: ProgressCallback | None = None,
    ) -> ExtractionResult:
        self.calls.append(request)
        notify(on_progress, "started", 0.0)
        if self.error:
            return ExtractionResult.failure(self.error, request.language, self.name.value)
        notify(on_progress, "completed", 1.0)
        return ExtractionResult(
            text=self.text,
            confidence=90.0,
            language=request.language,
            backend=self.name.value,
        )


class ScriptedChatBackend:
    """Chat backend replaying a list of outcomes: a string or an exception."""

    def __init__(self, outcomes: list[str | Exception], chunks: list[str] | None = None) -> None:
        self.outcomes = list(outcomes)
        self.chunks = chunks or []
        self.requests: list[ChatRequest] = []

    async def complete(self, request: ChatRequest) -> str:
        self.requests.append(request)
        if not self.outcomes:
            raise AssertionError("unexpected extra completion call")
        outcome = self.outcomes.pop(0)
        if isinstance(outcome, Exception):
            raise outcome
        return outcome

    async def stream(self, request: ChatRequest) -> AsyncIterator[str]:
        self.requests.append(request)
        for chunk in self.chunks:
            if isinstance(chunk, Exception):
                raise chunk
            yield chunk


@pytest.fixture
def fake_backends() -> dict[BackendName, FakeBackend]:
    """One configured fake per backend name, each with distinct text."""
    return {name: FakeBackend(name, text=f"text from {name.value}") for name in BackendName}


@pytest.fixture
def failing_chat() -> ScriptedChatBackend:
    """Chat backend whose three candidates all answer HTTP 500."""
    return ScriptedChatBackend(
        [
            ChatCompletionError("HTTP 500"),
            ChatCompletionError("Internal error from model two"),
            ChatCompletionError("Internal error from model three"),
        ]
    )


@pytest.fixture
def sample_image() -> np.ndarray:
    """Create a simple synthetic grayscale test image."""
    image = np.zeros((200, 300), dtype=np.uint8)
    image[50:150, 50:250] = 255
    return image


@pytest.fixture
def sample_color_image() -> np.ndarray:
    """Create a simple synthetic RGB test image."""
    image = np.zeros((200, 300, 3), dtype=np.uint8)
    image[50:150, 50:250] = (255, 255, 255)
    return image


@pytest.fixture
def png_bytes() -> bytes:
    """A minimal PNG image as bytes."""
    img = Image.fromarray(np.zeros((100, 200, 3), dtype=np.uint8))
    buf = io.BytesIO()
    img.save(buf, format="PNG")
    return buf.getvalue()


@pytest.fixture
def project_root() -> Path:
    """Return the project root directory."""
    return Path(__file__).parent.parent


@pytest.fixture
def config_dir(project_root: Path) -> Path:
    """Return the configs directory path."""
    return project_root / "configs"


@pytest.fixture
def scripted_chat() -> type[ScriptedChatBackend]:
    """Factory for chat backends replaying scripted outcomes."""
    return ScriptedChatBackend
