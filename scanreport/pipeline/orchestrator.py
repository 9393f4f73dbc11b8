"""Upload to OCR to human edit to enhancement to preview.

:class:`ReportPipeline` owns the per-session state: the uploaded images
in order, their extraction results, which ids were processed, and the
current report document. Backend failures never raise out of it; they
show up as failed results, documents with ``error`` set, or entries in
:attr:`ReportPipeline.notices`. Only invalid input is rejected with
:class:`PipelineValidationError`.
"""

import asyncio
from dataclasses import replace
from enum import StrEnum
from typing import Protocol

from scanreport.llm.enhancer import EnhancementOptions, TextEnhancementService
from scanreport.llm.sections import Document
from scanreport.ocr.selector import OCRStrategySelector
from scanreport.ocr.types import (
    BackendName,
    ExtractionResult,
    ImageRef,
    ProgressCallback,
    notify,
    split_paragraphs,
)
from scanreport.utils.logger import get_logger

from .repository import ExtractionRepository, InMemoryExtractionRepository

logger = get_logger(__name__)


class PipelineValidationError(ValueError):
    """Input rejected before any backend call was made."""


class PipelineStatus(StrEnum):
    IDLE = "idle"
    EXTRACTING = "extracting"
    EXTRACTED = "extracted"
    CANCELLED = "cancelled"
    ENHANCING = "enhancing"
    ENHANCED = "enhanced"


class ReportRenderer(Protocol):
    """Turns a finished document into a downloadable file."""

    media_type: str

    def render(self, document: Document) -> bytes: ...


class MarkdownRenderer:
    media_type = "text/markdown"

    def render(self, document: Document) -> bytes:
        return document.to_markdown().encode("utf-8")


class ReportPipeline:
    """Drive one report from uploaded images to a rendered document.

    Args:
        selector: OCR strategy selector used for every image.
        enhancer: Text enhancement service.
        repository: Where successful extraction results are saved.
        language: OCR language tag for all images.
        prefer_ai: Route images to the handwriting vision backend.
        preferred_backend: Force one OCR backend.
    """

    def __init__(
        self,
        selector: OCRStrategySelector,
        enhancer: TextEnhancementService,
        repository: ExtractionRepository | None = None,
        language: str | None = None,
        prefer_ai: bool = False,
        preferred_backend: BackendName | str | None = None,
    ) -> None:
        self.selector = selector
        self.enhancer = enhancer
        self.repository = repository or InMemoryExtractionRepository()
        self.language = language
        self.prefer_ai = prefer_ai
        self.preferred_backend = preferred_backend

        self.images: dict[str, ImageRef] = {}
        self.results: dict[str, ExtractionResult] = {}
        self.processed_ids: set[str] = set()
        self.unsaved_ids: set[str] = set()
        self.notices: list[str] = []
        self.document: Document | None = None
        self.status = PipelineStatus.IDLE
        self.stage = ""
        self.progress = 0.0

        self._generation = 0
        self._cancel_event: asyncio.Event | None = None

    def add_image(self, image_id: str, image: ImageRef | None) -> None:
        """Register an uploaded image; order of addition is report order.

        Replacing the image of a known id discards its earlier result so
        the next :meth:`run_ocr` extracts the new one.

        Raises:
            PipelineValidationError: Missing id or image reference.
        """
        if not image_id or not image_id.strip():
            raise PipelineValidationError("Image id is required")
        if not image:
            raise PipelineValidationError(f"Image reference is missing for {image_id}")
        if image_id in self.images and self.images[image_id] != image:
            self.results.pop(image_id, None)
            self.processed_ids.discard(image_id)
            self.unsaved_ids.discard(image_id)
            logger.info("Image %s replaced, previous result discarded", image_id)
        self.images[image_id] = image
        logger.debug("Added image %s", image_id)

    async def run_ocr(self, on_progress: ProgressCallback | None = None) -> list[ExtractionResult]:
        """Extract text from every image not yet processed successfully.

        Images whose earlier extraction failed are retried. Results are
        recorded (and saved) as each image finishes; anything that arrives
        after :meth:`cancel` is discarded.

        Returns:
            Results of this run in upload order.

        Raises:
            PipelineValidationError: No images were added.
        """
        if not self.images:
            raise PipelineValidationError("No images to process")

        pending = [image_id for image_id in self.images if image_id not in self.processed_ids]
        if not pending:
            logger.info("All %d images already processed", len(self.images))
            return []

        self._generation += 1
        generation = self._generation
        self._cancel_event = asyncio.Event()
        self.status = PipelineStatus.EXTRACTING
        self.progress = 0.0

        def track(stage: str, fraction: float) -> None:
            if generation != self._generation:
                return
            self.stage = stage
            self.progress = fraction
            notify(on_progress, stage, fraction)

        def record(index: int, result: ExtractionResult) -> None:
            if generation == self._generation:
                self._record(pending[index], result)

        results = await self.selector.extract_batch(
            [self.images[image_id] for image_id in pending],
            language=self.language,
            prefer_ai=self.prefer_ai,
            preferred_backend=self.preferred_backend,
            on_progress=track,
            cancel_event=self._cancel_event,
            on_result=record,
        )

        if generation != self._generation:
            logger.info("OCR run cancelled, %d images recorded", len(self.processed_ids))
            return [self.results[i] for i in pending if i in self.results]

        self.status = PipelineStatus.EXTRACTED
        self.progress = 1.0
        failed = sum(1 for r in results if not r.ok)
        if failed:
            self.notices.append(f"{failed} of {len(results)} images could not be processed")
        return results

    async def process_image(self, image_id: str) -> ExtractionResult:
        """Run (or re-run) OCR on one uploaded image.

        Raises:
            PipelineValidationError: Unknown image id.
        """
        if image_id not in self.images:
            raise PipelineValidationError(f"Unknown image: {image_id}")

        generation = self._generation
        result = await self.selector.extract_one(
            self.images[image_id],
            language=self.language,
            prefer_ai=self.prefer_ai,
            preferred_backend=self.preferred_backend,
        )
        if generation == self._generation:
            self._record(image_id, result)
        return result

    def cancel(self) -> None:
        """Stop starting new extractions and ignore in-flight ones."""
        self._generation += 1
        if self._cancel_event is not None:
            self._cancel_event.set()
        if self.status == PipelineStatus.EXTRACTING:
            self.status = PipelineStatus.CANCELLED
        logger.info("Processing cancelled")

    def _record(self, image_id: str, result: ExtractionResult) -> None:
        self.results[image_id] = result
        if result.ok:
            self.processed_ids.add(image_id)
            self._save(image_id, result)
        else:
            logger.warning("OCR failed for %s: %s", image_id, result.error)

    def _save(self, image_id: str, result: ExtractionResult) -> bool:
        try:
            self.repository.save(image_id, result)
        except Exception as exc:
            logger.error("Failed to save OCR result for %s: %s", image_id, exc)
            self.unsaved_ids.add(image_id)
            self.notices.append(f"Could not save OCR result for {image_id}: {exc}")
            return False
        self.unsaved_ids.discard(image_id)
        return True

    def retry_save(self, image_id: str) -> bool:
        """Save the in-memory result again without recomputing it.

        Raises:
            PipelineValidationError: No result held for ``image_id``.
        """
        if image_id not in self.results:
            raise PipelineValidationError(f"No OCR result for {image_id}")
        return self._save(image_id, self.results[image_id])

    def edit_text(self, image_id: str, text: str) -> ExtractionResult:
        """Replace the extracted text of one image with a corrected version.

        The edited result counts as processed and is saved again.

        Raises:
            PipelineValidationError: No result held for ``image_id``.
        """
        if image_id not in self.results:
            raise PipelineValidationError(f"No OCR result for {image_id}")
        edited = replace(
            self.results[image_id],
            text=text,
            paragraphs=split_paragraphs(text),
            error=None,
        )
        self._record(image_id, edited)
        return edited

    def combined_text(self) -> str:
        """Text of all successful results in upload order, one block per image."""
        parts = [
            self.results[image_id].text.strip()
            for image_id in self.images
            if image_id in self.results and self.results[image_id].ok
        ]
        return "\n\n".join(p for p in parts if p)

    async def enhance(self, options: EnhancementOptions | None = None) -> Document:
        """Turn the combined OCR text into the report document.

        Raises:
            PipelineValidationError: There is no text to enhance.
        """
        text = self.combined_text()
        if not text:
            raise PipelineValidationError("No extracted text to enhance")

        self.status = PipelineStatus.ENHANCING
        document = await self.enhancer.enhance(text, options)
        self.document = document
        self.status = PipelineStatus.ENHANCED
        if document.error:
            self.notices.append(f"AI enhancement did not run: {document.error}")
        return document

    def edit_section(self, index: int, title: str, content: str) -> Document:
        """Replace one section of the report; returns the new document.

        Raises:
            PipelineValidationError: No document yet, or no such section.
        """
        if self.document is None:
            raise PipelineValidationError("Report has not been generated yet")
        try:
            self.document = self.document.with_section(index, title, content)
        except IndexError as exc:
            raise PipelineValidationError(str(exc)) from exc
        return self.document

    def preview(self) -> str:
        if self.document is None:
            raise PipelineValidationError("Report has not been generated yet")
        return self.document.to_markdown()

    def export(self, renderer: ReportRenderer) -> bytes:
        if self.document is None:
            raise PipelineValidationError("Report has not been generated yet")
        return renderer.render(self.document)
