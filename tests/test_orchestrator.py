"""Tests for the report pipeline orchestrator."""

import asyncio
from unittest.mock import MagicMock

import pytest

from scanreport.llm.enhancer import EnhancementOptions, TextEnhancementService
from scanreport.ocr.selector import OCRStrategySelector
from scanreport.ocr.types import (
    BackendName,
    ExtractionBackend,
    ExtractionRequest,
    ExtractionResult,
    ProgressCallback,
)
from scanreport.pipeline.orchestrator import (
    MarkdownRenderer,
    PipelineStatus,
    PipelineValidationError,
    ReportPipeline,
)
from scanreport.pipeline.repository import InMemoryExtractionRepository, PersistenceError
from scanreport.utils.config import EnhancementConfig


class EchoBackend(ExtractionBackend):
    """Returns ``text of <image>``; fails for images named in ``failing``."""

    name = BackendName.VISION_A

    def __init__(self, failing: tuple[str, ...] = (), on_extract=None) -> None:
        self.failing = failing
        self.on_extract = on_extract
        self.calls: list[str] = []

    async def extract(
        self, request: ExtractionRequest, on_progress: ProgressCallback | None = None
    ) -> ExtractionResult:
        self.calls.append(request.image)
        if self.on_extract is not None:
            self.on_extract(request.image)
        if request.image in self.failing:
            return ExtractionResult.failure("unreadable", request.language, self.name.value)
        return ExtractionResult(
            text=f"text of {request.image}", confidence=95.0, language=request.language
        )


def _pipeline(backend: ExtractionBackend, enhancer=None, repository=None) -> ReportPipeline:
    selector = OCRStrategySelector({BackendName.VISION_A: backend})
    pipeline = ReportPipeline(
        selector,
        enhancer or TextEnhancementService(EnhancementConfig(), backend=None),
        repository=repository,
        language="fra",
    )
    for image in ("a", "b", "c"):
        pipeline.add_image(f"id-{image}", image)
    return pipeline


class TestUpload:
    def test_missing_reference_rejected(self) -> None:
        pipeline = _pipeline(EchoBackend())
        with pytest.raises(PipelineValidationError):
            pipeline.add_image("id-x", None)
        with pytest.raises(PipelineValidationError):
            pipeline.add_image("", "x")

    def test_validation_error_is_value_error(self) -> None:
        assert issubclass(PipelineValidationError, ValueError)

    def test_no_images(self) -> None:
        selector = OCRStrategySelector({BackendName.VISION_A: EchoBackend()})
        pipeline = ReportPipeline(selector, TextEnhancementService())
        with pytest.raises(PipelineValidationError):
            asyncio.run(pipeline.run_ocr())


class TestRunOCR:
    """Tests for batch OCR through the pipeline."""

    def test_results_recorded_in_order_and_saved(self) -> None:
        repo = InMemoryExtractionRepository()
        pipeline = _pipeline(EchoBackend(), repository=repo)
        updates: list[float] = []

        results = asyncio.run(pipeline.run_ocr(lambda s, f: updates.append(f)))

        assert [r.text for r in results] == ["text of a", "text of b", "text of c"]
        assert pipeline.processed_ids == {"id-a", "id-b", "id-c"}
        assert repo.list_ids() == ["id-a", "id-b", "id-c"]
        assert pipeline.status == PipelineStatus.EXTRACTED
        assert pipeline.progress == 1.0
        assert updates == sorted(updates)

    def test_failed_image_retried_on_next_run(self) -> None:
        backend = EchoBackend(failing=("b",))
        pipeline = _pipeline(backend)

        asyncio.run(pipeline.run_ocr())
        assert pipeline.processed_ids == {"id-a", "id-c"}
        assert pipeline.results["id-b"].error == "unreadable"
        assert pipeline.notices == ["1 of 3 images could not be processed"]

        backend.failing = ()
        results = asyncio.run(pipeline.run_ocr())
        assert [r.text for r in results] == ["text of b"]
        assert backend.calls == ["a", "b", "c", "b"]

    def test_persistence_failure_keeps_state(self) -> None:
        repo = MagicMock()
        repo.save.side_effect = PersistenceError("disk full")
        pipeline = _pipeline(EchoBackend(), repository=repo)

        asyncio.run(pipeline.run_ocr())

        assert pipeline.results["id-a"].text == "text of a"
        assert pipeline.processed_ids == {"id-a", "id-b", "id-c"}
        assert pipeline.unsaved_ids == {"id-a", "id-b", "id-c"}
        assert any("disk full" in n for n in pipeline.notices)

        repo.save.side_effect = None
        assert pipeline.retry_save("id-a") is True
        assert pipeline.unsaved_ids == {"id-b", "id-c"}

    def test_retry_save_unknown(self) -> None:
        with pytest.raises(PipelineValidationError):
            _pipeline(EchoBackend()).retry_save("id-a")

    def test_cancel_discards_in_flight_result(self) -> None:
        holder: dict[str, ReportPipeline] = {}
        backend = EchoBackend(on_extract=lambda image: holder["p"].cancel() if image == "b" else None)
        pipeline = _pipeline(backend)
        holder["p"] = pipeline

        asyncio.run(pipeline.run_ocr())

        assert backend.calls == ["a", "b"]
        assert set(pipeline.results) == {"id-a"}
        assert pipeline.processed_ids == {"id-a"}
        assert pipeline.status == PipelineStatus.CANCELLED

    def test_replaced_image_is_extracted_again(self) -> None:
        backend = EchoBackend()
        pipeline = _pipeline(backend)
        asyncio.run(pipeline.run_ocr())

        pipeline.add_image("id-b", "b2")
        assert "id-b" not in pipeline.processed_ids
        assert "id-b" not in pipeline.results

        results = asyncio.run(pipeline.run_ocr())

        assert [r.text for r in results] == ["text of b2"]
        assert pipeline.combined_text() == "text of a\n\ntext of b2\n\ntext of c"

    def test_re_adding_same_image_keeps_result(self) -> None:
        pipeline = _pipeline(EchoBackend())
        asyncio.run(pipeline.run_ocr())
        pipeline.add_image("id-a", "a")
        assert "id-a" in pipeline.processed_ids

    def test_process_single_image(self) -> None:
        pipeline = _pipeline(EchoBackend())
        result = asyncio.run(pipeline.process_image("id-b"))
        assert result.text == "text of b"
        assert pipeline.processed_ids == {"id-b"}

    def test_process_unknown_image(self) -> None:
        with pytest.raises(PipelineValidationError):
            asyncio.run(_pipeline(EchoBackend()).process_image("nope"))


class TestEditing:
    """Tests for the human edit step."""

    def test_edit_text_creates_new_result(self) -> None:
        repo = InMemoryExtractionRepository()
        pipeline = _pipeline(EchoBackend(), repository=repo)
        asyncio.run(pipeline.run_ocr())
        original = pipeline.results["id-a"]

        edited = pipeline.edit_text("id-a", "Corrected\n\nText")

        assert edited is not original
        assert original.text == "text of a"
        assert edited.paragraphs == ["Corrected", "Text"]
        assert repo.get("id-a").text == "Corrected\n\nText"

    def test_edit_fixes_failed_result(self) -> None:
        pipeline = _pipeline(EchoBackend(failing=("a",)))
        asyncio.run(pipeline.run_ocr())
        pipeline.edit_text("id-a", "typed by hand")
        assert "id-a" in pipeline.processed_ids
        assert pipeline.combined_text().startswith("typed by hand")

    def test_edit_unknown(self) -> None:
        with pytest.raises(PipelineValidationError):
            _pipeline(EchoBackend()).edit_text("id-a", "x")

    def test_combined_text_in_upload_order_without_failures(self) -> None:
        pipeline = _pipeline(EchoBackend(failing=("b",)))
        asyncio.run(pipeline.run_ocr())
        assert pipeline.combined_text() == "text of a\n\ntext of c"


class TestEnhancement:
    """Tests for enhancement, section edits and output."""

    def test_enhance_without_text_rejected(self) -> None:
        pipeline = _pipeline(EchoBackend())
        with pytest.raises(PipelineValidationError):
            asyncio.run(pipeline.enhance())

    def test_enhance_builds_document(self) -> None:
        pipeline = _pipeline(EchoBackend())
        asyncio.run(pipeline.run_ocr())

        doc = asyncio.run(pipeline.enhance(EnhancementOptions(language="french")))

        assert pipeline.document is doc
        assert pipeline.status == PipelineStatus.ENHANCED
        assert doc.sections[0].title == "Introduction"
        assert pipeline.notices == []

    def test_degraded_enhancement_adds_notice(self, failing_chat) -> None:
        enhancer = TextEnhancementService(
            EnhancementConfig(models=["m1", "m2", "m3"]), failing_chat
        )
        pipeline = _pipeline(EchoBackend(), enhancer=enhancer)
        asyncio.run(pipeline.run_ocr())

        doc = asyncio.run(pipeline.enhance())

        assert doc.error == "Internal error from model three"
        assert pipeline.notices == ["AI enhancement did not run: Internal error from model three"]

    def test_edit_section_and_export(self) -> None:
        pipeline = _pipeline(EchoBackend())
        asyncio.run(pipeline.run_ocr())
        before = asyncio.run(pipeline.enhance())

        after = pipeline.edit_section(0, "Overview", "Rewritten")

        assert after is not before
        assert pipeline.document is after
        assert pipeline.preview().startswith("## Overview\n\nRewritten\n\n")
        assert pipeline.export(MarkdownRenderer()) == pipeline.preview().encode("utf-8")

    def test_edit_section_out_of_range(self) -> None:
        pipeline = _pipeline(EchoBackend())
        asyncio.run(pipeline.run_ocr())
        asyncio.run(pipeline.enhance())
        with pytest.raises(PipelineValidationError):
            pipeline.edit_section(99, "x", "y")

    def test_output_before_enhancement_rejected(self) -> None:
        pipeline = _pipeline(EchoBackend())
        with pytest.raises(PipelineValidationError):
            pipeline.preview()
        with pytest.raises(PipelineValidationError):
            pipeline.export(MarkdownRenderer())
        with pytest.raises(PipelineValidationError):
            pipeline.edit_section(0, "x", "y")
