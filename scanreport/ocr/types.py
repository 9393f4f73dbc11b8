"""Data types shared by the OCR backends and the strategy selector."""

from abc import ABC, abstractmethod
from collections.abc import Callable
from dataclasses import dataclass, field
from enum import StrEnum

ProgressCallback = Callable[[str, float], None]
"""Observer receiving ``(stage, fraction)`` with fraction in ``[0, 1]``."""

ImageRef = str | bytes
"""An http(s) URL, a ``data:`` URL, a filesystem path, or raw image bytes."""


class OCRLanguage(StrEnum):
    """Languages the local Tesseract engine is provisioned for."""

    ENGLISH = "eng"
    FRENCH = "fra"
    ENGLISH_FRENCH = "eng+fra"


class BackendName(StrEnum):
    """Identifiers of the interchangeable text-extraction backends."""

    LOCAL = "local"
    VISION_A = "vision_a"
    VISION_B = "vision_b"
    MOCK = "mock"


@dataclass(frozen=True)
class BoundingBox:
    """Axis-aligned bounding box in pixel coordinates."""

    x: int
    y: int
    width: int
    height: int


@dataclass(frozen=True)
class OCRWord:
    """A single recognized word with position and confidence (0-100)."""

    text: str
    bbox: BoundingBox
    confidence: float


@dataclass(frozen=True)
class ExtractionRequest:
    """One image to extract text from, created per image at processing time."""

    image: ImageRef
    language: str = OCRLanguage.ENGLISH.value
    preferred_backend: BackendName | None = None


@dataclass
class ExtractionResult:
    """Outcome of running OCR on one image.

    A populated ``error`` marks the result as a failure placeholder rather
    than a zero-confidence success; ``text`` is then usually empty.
    """

    text: str
    confidence: float
    words: list[OCRWord] = field(default_factory=list)
    paragraphs: list[str] = field(default_factory=list)
    language: str | None = None
    processed_with_ai: bool = False
    backend: str | None = None
    model: str | None = None
    image_width: int | None = None
    image_height: int | None = None
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.error is None

    @classmethod
    def failure(
        cls,
        message: str,
        language: str | None = None,
        backend: str | None = None,
        model: str | None = None,
    ) -> "ExtractionResult":
        """Build the placeholder returned when extraction did not succeed."""
        return cls(
            text="",
            confidence=0.0,
            language=language,
            backend=backend,
            model=model,
            error=message,
        )


def split_paragraphs(text: str) -> list[str]:
    """Split extracted text on blank lines, dropping empty paragraphs."""
    return [p.strip() for p in text.split("\n\n") if p.strip()]


def notify(on_progress: ProgressCallback | None, stage: str, fraction: float) -> None:
    """Forward a progress update to an optional observer."""
    if on_progress is not None:
        on_progress(stage, fraction)


class ExtractionBackend(ABC):
    """Capability shared by every text-extraction strategy.

    Implementations never raise past ``extract``: any failure is returned
    as :meth:`ExtractionResult.failure`.
    """

    name: BackendName

    def is_configured(self) -> bool:
        """Whether the backend has what it needs (credentials, binaries)."""
        return True

    @abstractmethod
    async def extract(
        self,
        request: ExtractionRequest,
        on_progress: ProgressCallback | None = None,
    ) -> ExtractionResult:
        """Extract text from ``request.image``."""

    async def aclose(self) -> None:
        """Release network resources held by the backend."""
