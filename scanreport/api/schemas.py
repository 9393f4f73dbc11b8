"""Pydantic request/response schemas for the FastAPI endpoints."""

from pydantic import BaseModel, Field

from scanreport.llm.sections import Document
from scanreport.ocr.types import ExtractionResult


class WordResponse(BaseModel):
    """A recognized word with its bounding box."""

    text: str
    x: int
    y: int
    width: int
    height: int
    confidence: float


class OCRResponse(BaseModel):
    """Response schema for text extraction from one image."""

    success: bool
    image_id: str
    filename: str
    text: str
    confidence: float
    words: list[WordResponse] = Field(default_factory=list)
    paragraphs: list[str] = Field(default_factory=list)
    language: str | None = None
    processed_with_ai: bool = False
    backend: str | None = None
    model: str | None = None
    error: str | None = None
    processing_time_ms: float = 0.0

    @classmethod
    def from_result(
        cls,
        result: ExtractionResult,
        image_id: str,
        filename: str,
        processing_time_ms: float = 0.0,
    ) -> "OCRResponse":
        return cls(
            success=result.ok,
            image_id=image_id,
            filename=filename,
            text=result.text,
            confidence=result.confidence,
            words=[
                WordResponse(
                    text=w.text,
                    x=w.bbox.x,
                    y=w.bbox.y,
                    width=w.bbox.width,
                    height=w.bbox.height,
                    confidence=w.confidence,
                )
                for w in result.words
            ],
            paragraphs=result.paragraphs,
            language=result.language,
            processed_with_ai=result.processed_with_ai,
            backend=result.backend,
            model=result.model,
            error=result.error,
            processing_time_ms=processing_time_ms,
        )


class BatchOCRResponse(BaseModel):
    """Response schema for batch extraction; ``results`` follow upload order."""

    total_images: int
    successful: int
    failed: int
    results: list[OCRResponse]


class EnhanceRequest(BaseModel):
    """Request schema for text enhancement."""

    text: str
    language: str = "english"
    report_type: str = "general"
    additional_instructions: str = ""
    use_streaming: bool = False


class SectionResponse(BaseModel):
    title: str
    content: str


class EnhanceResponse(BaseModel):
    """Enhanced report; ``error`` is set when AI enhancement did not run."""

    enhanced_text: str
    sections: list[SectionResponse]
    model: str | None = None
    error: str | None = None

    @classmethod
    def from_document(cls, document: Document) -> "EnhanceResponse":
        return cls(
            enhanced_text=document.text,
            sections=[SectionResponse(title=s.title, content=s.content) for s in document.sections],
            model=document.model,
            error=document.error,
        )


class HealthResponse(BaseModel):
    """Response schema for the health check endpoint."""

    status: str
    version: str
    tesseract_available: bool
    enhancement_configured: bool
    vision_a_configured: bool
    vision_b_configured: bool
    streaming_enabled: bool
