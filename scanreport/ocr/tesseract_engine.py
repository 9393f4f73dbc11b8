"""Local Tesseract OCR backend with word-level bounding boxes.

Runs fully offline. Recognition is CPU-bound, so it is pushed to a
worker thread to keep the event loop free. Any failure is returned as
an error result instead of being raised.
"""

import asyncio

import numpy as np
import pytesseract
from PIL import Image

from scanreport.utils.config import OCRConfig, PreprocessingConfig
from scanreport.utils.logger import get_logger

from .images import decode_image, read_image_bytes
from .preprocess import prepare_for_ocr
from .types import (
    BackendName,
    BoundingBox,
    ExtractionBackend,
    ExtractionRequest,
    ExtractionResult,
    OCRLanguage,
    OCRWord,
    ProgressCallback,
    notify,
    split_paragraphs,
)

logger = get_logger(__name__)

_SUPPORTED_LANGUAGES = {lang.value for lang in OCRLanguage}


class TesseractEngine(ExtractionBackend):
    """Wrapper around Tesseract for deterministic local text extraction.

    Args:
        config: OCR settings (binary path, page segmentation mode).
        preprocessing: Image cleanup settings, applied when ``config.preprocess``.
    """

    name = BackendName.LOCAL

    def __init__(
        self,
        config: OCRConfig | None = None,
        preprocessing: PreprocessingConfig | None = None,
    ) -> None:
        self.config = config or OCRConfig()
        self.preprocessing = preprocessing or PreprocessingConfig()
        if self.config.tesseract_cmd:
            pytesseract.pytesseract.tesseract_cmd = self.config.tesseract_cmd

    async def extract(
        self,
        request: ExtractionRequest,
        on_progress: ProgressCallback | None = None,
    ) -> ExtractionResult:
        language = request.language or self.config.default_lang
        notify(on_progress, "initializing", 0.0)

        if language not in _SUPPORTED_LANGUAGES:
            return ExtractionResult.failure(
                f"Unsupported OCR language: {language}",
                language=language,
                backend=self.name.value,
            )

        try:
            data = await read_image_bytes(request.image)
            image = decode_image(data)
            notify(on_progress, "recognizing text", 0.3)
            result = await asyncio.to_thread(self.extract_text, image, language)
        except Exception as exc:
            logger.error("Local OCR failed: %s", exc)
            return ExtractionResult.failure(
                str(exc) or "Unknown OCR processing error",
                language=language,
                backend=self.name.value,
            )

        notify(on_progress, "completed", 1.0)
        return result

    def extract_text(self, image: np.ndarray, language: str) -> ExtractionResult:
        """Run Tesseract on a decoded image.

        Args:
            image: Page image as a numpy array.
            language: Tesseract language code (``eng``, ``fra``, ``eng+fra``).

        Returns:
            Result with full text, word boxes, paragraphs and mean confidence,
            or a failure result when the page holds no text.
        """
        height, width = image.shape[:2]
        if self.config.preprocess:
            image = prepare_for_ocr(image, self.preprocessing)

        tess_config = f"--psm {self.config.psm}"
        pil_image = Image.fromarray(image)
        text = pytesseract.image_to_string(pil_image, lang=language, config=tess_config)
        data = pytesseract.image_to_data(
            pil_image,
            lang=language,
            config=tess_config,
            output_type=pytesseract.Output.DICT,
        )

        words: list[OCRWord] = []
        for i in range(len(data["text"])):
            conf = float(data["conf"][i])
            word_text = str(data["text"][i]).strip()
            if conf >= 0 and word_text:
                words.append(
                    OCRWord(
                        text=word_text,
                        bbox=BoundingBox(
                            x=data["left"][i],
                            y=data["top"][i],
                            width=data["width"][i],
                            height=data["height"][i],
                        ),
                        confidence=conf,
                    )
                )

        text = text.strip()
        if not text:
            logger.warning("Local OCR found no text in %dx%d image", width, height)
            return ExtractionResult.failure(
                "No text detected", language=language, backend=self.name.value
            )

        confidence = sum(w.confidence for w in words) / len(words) if words else 0.0
        logger.info(
            "Local OCR extracted %d words with average confidence %.1f",
            len(words),
            confidence,
        )
        return ExtractionResult(
            text=text,
            confidence=confidence,
            words=words,
            paragraphs=split_paragraphs(text),
            language=language,
            processed_with_ai=False,
            backend=self.name.value,
            image_width=width,
            image_height=height,
        )
