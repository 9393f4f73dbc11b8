"""OCR strategy selection and batch extraction.

Picks the extraction backend for each image, bounds every call with a
timeout and aggregates per-image progress into one batch fraction.
Results come back in input order whatever the per-image latency.
"""

import asyncio
from collections.abc import Callable, Mapping, Sequence

import httpx

from scanreport.utils.config import AppConfig, OCRConfig
from scanreport.utils.logger import get_logger

from .tesseract_engine import TesseractEngine
from .types import (
    BackendName,
    ExtractionBackend,
    ExtractionRequest,
    ExtractionResult,
    ImageRef,
    ProgressCallback,
    notify,
)
from .vision_backends import MistralVisionBackend, MockOCRBackend, TogetherVisionBackend

logger = get_logger(__name__)

CANCELLED_MESSAGE = "Processing cancelled"


class OCRStrategySelector:
    """Route images to extraction backends.

    Policy, in order:

    1. An explicitly requested backend (per call, else ``ocr.default_backend``).
    2. A handwriting-associated language, or ``prefer_ai``: vision backend A.
    3. :meth:`is_likely_handwritten`: vision backend A if true, local otherwise.

    Backends chosen by policy (not by explicit request) that lack credentials
    are replaced by the mock backend when ``ocr.mock_when_unconfigured`` is set.

    Args:
        backends: Available backends keyed by name.
        config: Selection, timeout and concurrency settings.
    """

    def __init__(
        self,
        backends: Mapping[BackendName, ExtractionBackend],
        config: OCRConfig | None = None,
    ) -> None:
        self.backends = dict(backends)
        self.config = config or OCRConfig()

    def is_likely_handwritten(self, image: ImageRef) -> bool:
        """Handwriting classifier.

        There is no image analysis: the answer is ``ocr.assume_handwritten``
        (true by default), so every unrouted image goes to the AI path.
        """
        return self.config.assume_handwritten

    def choose_backend(self, request: ExtractionRequest, prefer_ai: bool = False) -> BackendName:
        """Apply the selection policy to one request.

        Raises:
            ValueError: The requested backend name is unknown.
        """
        if request.preferred_backend is not None:
            return BackendName(request.preferred_backend)
        if self.config.default_backend:
            return BackendName(self.config.default_backend)
        if request.language in self.config.handwriting_languages or prefer_ai:
            return BackendName.VISION_A
        if self.is_likely_handwritten(request.image):
            return BackendName.VISION_A
        return BackendName.LOCAL

    def _resolve(self, name: BackendName, explicit: bool) -> ExtractionBackend | None:
        backend = self.backends.get(name)
        if explicit or backend is None or backend.is_configured():
            return backend
        mock = self.backends.get(BackendName.MOCK)
        if self.config.mock_when_unconfigured and mock is not None:
            logger.warning("Backend %s is not configured, using mock OCR", name.value)
            return mock
        return backend

    async def extract_one(
        self,
        image: ImageRef,
        language: str | None = None,
        prefer_ai: bool = False,
        preferred_backend: BackendName | str | None = None,
        on_progress: ProgressCallback | None = None,
    ) -> ExtractionResult:
        """Extract text from a single image.

        Args:
            image: URL, data URL, path or raw bytes.
            language: Language tag; defaults to ``ocr.default_lang``.
            prefer_ai: Route to the handwriting vision backend.
            preferred_backend: Use this backend unconditionally.
            on_progress: Optional ``(stage, fraction)`` observer.

        Returns:
            The backend's result, or a failure result on timeout.

        Raises:
            ValueError: ``preferred_backend`` is not a known backend name.
        """
        preferred = BackendName(preferred_backend) if preferred_backend else None
        request = ExtractionRequest(
            image=image,
            language=language or self.config.default_lang,
            preferred_backend=preferred,
        )
        name = self.choose_backend(request, prefer_ai=prefer_ai)
        explicit = preferred is not None or bool(self.config.default_backend)
        backend = self._resolve(name, explicit)
        if backend is None:
            return ExtractionResult.failure(
                f"OCR backend {name.value} is not available",
                language=request.language,
                backend=name.value,
            )

        logger.info(
            "Extracting text with backend %s (language=%s)", backend.name.value, request.language
        )
        try:
            return await asyncio.wait_for(
                backend.extract(request, on_progress),
                timeout=self.config.call_timeout_seconds,
            )
        except TimeoutError:
            logger.error(
                "Backend %s timed out after %.0fs",
                backend.name.value,
                self.config.call_timeout_seconds,
            )
            return ExtractionResult.failure(
                f"OCR timed out after {self.config.call_timeout_seconds:g} seconds",
                language=request.language,
                backend=backend.name.value,
            )

    async def extract_batch(
        self,
        images: Sequence[ImageRef],
        language: str | None = None,
        prefer_ai: bool = False,
        preferred_backend: BackendName | str | None = None,
        on_progress: ProgressCallback | None = None,
        cancel_event: asyncio.Event | None = None,
        on_result: Callable[[int, ExtractionResult], None] | None = None,
    ) -> list[ExtractionResult]:
        """Extract text from several images, preserving input order.

        At most ``ocr.batch_concurrency`` extractions are in flight (one by
        default, i.e. strictly sequential). A failed image does not stop the
        batch. Once ``cancel_event`` is set no further extraction starts and
        the remaining slots hold a "Processing cancelled" failure.

        Overall progress is ``sum(per-image fractions) / len(images)``, never
        decreasing. ``on_result(index, result)`` fires as each extraction
        finishes, before the whole batch is done.
        """
        total = len(images)
        if total == 0:
            return []

        results: list[ExtractionResult | None] = [None] * total
        fractions = [0.0] * total
        reported = 0.0
        semaphore = asyncio.Semaphore(self.config.batch_concurrency)

        def report(stage: str) -> None:
            nonlocal reported
            reported = max(reported, sum(fractions) / total)
            notify(on_progress, stage, reported)

        async def run(index: int) -> None:
            async with semaphore:
                if cancel_event is not None and cancel_event.is_set():
                    results[index] = ExtractionResult.failure(
                        CANCELLED_MESSAGE, language=language or self.config.default_lang
                    )
                    return

                report(f"Processing image {index + 1} of {total}")

                def item_progress(stage: str, fraction: float) -> None:
                    fractions[index] = max(fractions[index], min(max(fraction, 0.0), 1.0))
                    report(stage)

                result = await self.extract_one(
                    images[index],
                    language=language,
                    prefer_ai=prefer_ai,
                    preferred_backend=preferred_backend,
                    on_progress=item_progress,
                )
                if not result.ok:
                    logger.warning("Image %d of %d failed: %s", index + 1, total, result.error)
                results[index] = result
                if on_result is not None:
                    on_result(index, result)
                fractions[index] = 1.0
                report(f"Completed image {index + 1} of {total}")

        await asyncio.gather(*(run(i) for i in range(total)))
        return [r for r in results if r is not None]

    async def aclose(self) -> None:
        for backend in self.backends.values():
            await backend.aclose()


def build_selector(
    config: AppConfig, transport: httpx.AsyncBaseTransport | None = None
) -> OCRStrategySelector:
    """Wire every backend from the application configuration."""
    backends: dict[BackendName, ExtractionBackend] = {
        BackendName.LOCAL: TesseractEngine(config.ocr, config.preprocessing),
        BackendName.VISION_A: TogetherVisionBackend(
            config.vision_a, config.credentials.together_api_key, transport=transport
        ),
        BackendName.VISION_B: MistralVisionBackend(
            config.vision_b, config.credentials.mistral_api_key, transport=transport
        ),
        BackendName.MOCK: MockOCRBackend(),
    }
    return OCRStrategySelector(backends, config.ocr)
