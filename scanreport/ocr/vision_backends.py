"""Hosted vision-model OCR backends and the offline mock backend.

Backend A (Together AI, Llama vision) is tuned for handwriting; backend
B (Mistral Pixtral) preserves layout. Neither vendor exposes a real
confidence score, so each reports the fixed value from its config.
"""

import hashlib

import httpx
from pydantic import SecretStr

from scanreport.llm.client import ChatCompletionClient, ChatCompletionError
from scanreport.utils.config import VisionBackendConfig
from scanreport.utils.logger import get_logger

from .images import ImageLoadError, to_image_url
from .types import (
    BackendName,
    ExtractionBackend,
    ExtractionRequest,
    ExtractionResult,
    OCRLanguage,
    ProgressCallback,
    notify,
    split_paragraphs,
)

logger = get_logger(__name__)


class VisionLLMBackend(ExtractionBackend):
    """Literal text extraction through a vision-capable chat model.

    Args:
        config: Endpoint, model, instruction and fixed confidence.
        api_key: Vendor credential; ``None`` leaves the backend unconfigured.
        transport: Optional httpx transport for the underlying client.
    """

    vendor: str = "vision"

    def __init__(
        self,
        config: VisionBackendConfig,
        api_key: SecretStr | None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.config = config
        self._client: ChatCompletionClient | None = None
        if api_key is not None and api_key.get_secret_value():
            self._client = ChatCompletionClient(
                config.base_url,
                api_key,
                timeout_seconds=config.timeout_seconds,
                retry_attempts=config.retry_attempts,
                retry_delay=config.retry_delay,
                transport=transport,
            )

    def is_configured(self) -> bool:
        return self._client is not None

    def image_part(self, url: str) -> dict:
        """Vendor-specific shape of the image entry in the message content."""
        return {"type": "image_url", "image_url": {"url": url}}

    async def extract(
        self,
        request: ExtractionRequest,
        on_progress: ProgressCallback | None = None,
    ) -> ExtractionResult:
        language = request.language
        notify(on_progress, f"Initializing {self.vendor} OCR", 0.1)

        if self._client is None:
            return ExtractionResult.failure(
                f"{self.vendor} API key is not configured",
                language=language,
                backend=self.name.value,
                model=self.config.model,
            )

        try:
            image_url = await to_image_url(request.image)
            notify(on_progress, f"Processing with {self.config.model}", 0.3)
            text = await self._client.complete_messages(
                self.config.model,
                [
                    {
                        "role": "user",
                        "content": [
                            {"type": "text", "text": self.config.instruction},
                            self.image_part(image_url),
                        ],
                    }
                ],
                max_tokens=self.config.max_tokens,
            )
        except (ChatCompletionError, ImageLoadError) as exc:
            logger.error("%s OCR failed: %s", self.vendor, exc)
            return self._failure(str(exc), language)
        except Exception as exc:
            logger.exception("Unexpected %s OCR error", self.vendor)
            return self._failure(str(exc) or "Unknown OCR processing error", language)

        notify(on_progress, "finalizing", 0.9)
        result = ExtractionResult(
            text=text,
            confidence=self.config.confidence,
            paragraphs=split_paragraphs(text),
            language=language,
            processed_with_ai=True,
            backend=self.name.value,
            model=self.config.model,
        )
        logger.info("%s OCR extracted %d characters", self.vendor, len(text))
        notify(on_progress, "completed", 1.0)
        return result

    def _failure(self, message: str, language: str) -> ExtractionResult:
        return ExtractionResult.failure(
            message, language=language, backend=self.name.value, model=self.config.model
        )

    async def aclose(self) -> None:
        if self._client is not None:
            await self._client.aclose()


class TogetherVisionBackend(VisionLLMBackend):
    """Vision backend A: handwriting-oriented Llama vision model on Together AI."""

    name = BackendName.VISION_A
    vendor = "Together AI"


class MistralVisionBackend(VisionLLMBackend):
    """Vision backend B: Mistral Pixtral, which takes the image URL as a plain string."""

    name = BackendName.VISION_B
    vendor = "Mistral"

    def image_part(self, url: str) -> dict:
        return {"type": "image_url", "image_url": url}


_MOCK_TEXT = {
    "fra": (
        "Exemple de texte en français extrait de l'image.\n\n"
        "Ceci est un paragraphe généré automatiquement pour simuler l'OCR.\n\n"
        "Le texte contient plusieurs paragraphes pour tester le formatage.\n\n"
        "Image ID: {image_id}"
    ),
    "eng": (
        "Sample text extracted from the image.\n\n"
        "This is an automatically generated paragraph to simulate OCR.\n\n"
        "The text contains multiple paragraphs to test formatting.\n\n"
        "Image ID: {image_id}"
    ),
}


class MockOCRBackend(ExtractionBackend):
    """Offline stand-in that returns stable placeholder text per image."""

    name = BackendName.MOCK

    async def extract(
        self,
        request: ExtractionRequest,
        on_progress: ProgressCallback | None = None,
    ) -> ExtractionResult:
        notify(on_progress, "initializing", 0.1)
        image = request.image
        digest = hashlib.sha1(image if isinstance(image, bytes) else image.encode()).hexdigest()

        french = request.language in (OCRLanguage.FRENCH, OCRLanguage.ENGLISH_FRENCH)
        text = _MOCK_TEXT["fra" if french else "eng"].format(image_id=digest[:8])
        notify(on_progress, "completed", 1.0)
        return ExtractionResult(
            text=text,
            confidence=85.0,
            paragraphs=split_paragraphs(text),
            language=request.language,
            processed_with_ai=False,
            backend=self.name.value,
        )
