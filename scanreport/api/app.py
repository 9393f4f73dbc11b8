"""FastAPI application for the scan-to-report API.

Provides REST endpoints for single and batch OCR, report enhancement
(blocking and streamed), and health checks. Backend failures are
reported inside the response bodies; only invalid input is rejected
with a 4xx status.
"""

import shutil
import time
import uuid
from functools import lru_cache
from typing import Annotated

from fastapi import FastAPI, File, HTTPException, Query, UploadFile
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import StreamingResponse

from scanreport import __version__
from scanreport.llm.enhancer import (
    EnhancementOptions,
    TextEnhancementService,
    build_enhancement_service,
)
from scanreport.ocr.selector import OCRStrategySelector, build_selector
from scanreport.ocr.types import BackendName
from scanreport.utils.config import AppConfig, load_config
from scanreport.utils.logger import get_logger

from .schemas import (
    BatchOCRResponse,
    EnhanceRequest,
    EnhanceResponse,
    HealthResponse,
    OCRResponse,
)

logger = get_logger(__name__)

app = FastAPI(
    title="Scan Report API",
    description="Turn photographed or scanned pages into structured reports",
    version=__version__,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@lru_cache(maxsize=1)
def _get_components() -> tuple[AppConfig, OCRStrategySelector, TextEnhancementService]:
    """Initialize and return shared processing components.

    Returns:
        Tuple of (config, ocr_selector, enhancement_service).
    """
    config = load_config()
    return config, build_selector(config), build_enhancement_service(config)


_ALLOWED_CONTENT_TYPES = {
    "image/png",
    "image/jpeg",
    "image/tiff",
    "image/webp",
    "image/bmp",
    "image/gif",
    "application/octet-stream",
}


def _check_content_type(file: UploadFile) -> None:
    if file.content_type and file.content_type not in _ALLOWED_CONTENT_TYPES:
        raise HTTPException(
            status_code=400,
            detail=f"Unsupported file type: {file.content_type}",
        )


def _options(request: EnhanceRequest) -> EnhancementOptions:
    return EnhancementOptions(
        language=request.language,
        report_type=request.report_type,
        additional_instructions=request.additional_instructions,
        use_streaming=request.use_streaming,
    )


@app.get("/health", response_model=HealthResponse)
async def health_check() -> HealthResponse:
    """Return system health status and which backends are configured."""
    config, selector, enhancer = _get_components()
    vision_a = selector.backends.get(BackendName.VISION_A)
    vision_b = selector.backends.get(BackendName.VISION_B)
    return HealthResponse(
        status="healthy",
        version=__version__,
        tesseract_available=shutil.which(config.ocr.tesseract_cmd or "tesseract") is not None,
        enhancement_configured=enhancer.is_configured,
        vision_a_configured=vision_a is not None and vision_a.is_configured(),
        vision_b_configured=vision_b is not None and vision_b.is_configured(),
        streaming_enabled=config.enhancement.streaming_enabled,
    )


@app.post("/ocr", response_model=OCRResponse)
async def extract_text(
    file: Annotated[UploadFile, File(...)],
    language: Annotated[str | None, Query()] = None,
    prefer_ai: Annotated[bool, Query()] = False,
    backend: Annotated[BackendName | None, Query()] = None,
) -> OCRResponse:
    """Extract text from an uploaded image.

    Args:
        file: Uploaded image (PNG, JPEG, TIFF, WebP, BMP, GIF).
        language: OCR language tag (``eng``, ``fra``, ``eng+fra``).
        prefer_ai: Route to the handwriting vision backend.
        backend: Force a specific backend.

    Returns:
        The extraction result; ``success`` is false when OCR failed.
    """
    _check_content_type(file)
    start_time = time.time()

    _, selector, _ = _get_components()
    content = await file.read()
    if not content:
        raise HTTPException(status_code=400, detail="Uploaded file is empty")

    result = await selector.extract_one(
        content, language=language, prefer_ai=prefer_ai, preferred_backend=backend
    )
    return OCRResponse.from_result(
        result,
        image_id=str(uuid.uuid4()),
        filename=file.filename or "image",
        processing_time_ms=(time.time() - start_time) * 1000,
    )


@app.post("/ocr/batch", response_model=BatchOCRResponse)
async def extract_batch(
    files: Annotated[list[UploadFile], File(...)],
    language: Annotated[str | None, Query()] = None,
    prefer_ai: Annotated[bool, Query()] = False,
    backend: Annotated[BackendName | None, Query()] = None,
) -> BatchOCRResponse:
    """Extract text from several images; results keep the upload order."""
    for file in files:
        _check_content_type(file)

    _, selector, _ = _get_components()
    contents = [await file.read() for file in files]
    empty = [f.filename or "image" for f, c in zip(files, contents) if not c]
    if empty:
        raise HTTPException(status_code=400, detail=f"Empty files: {', '.join(empty)}")

    results = await selector.extract_batch(
        contents, language=language, prefer_ai=prefer_ai, preferred_backend=backend
    )
    responses = [
        OCRResponse.from_result(result, image_id=str(uuid.uuid4()), filename=f.filename or "image")
        for f, result in zip(files, results)
    ]
    successful = sum(1 for r in responses if r.success)
    return BatchOCRResponse(
        total_images=len(files),
        successful=successful,
        failed=len(files) - successful,
        results=responses,
    )


@app.post("/enhance", response_model=EnhanceResponse)
async def enhance_text(request: EnhanceRequest) -> EnhanceResponse:
    """Restructure raw OCR text into a sectioned report.

    Returns:
        The report; ``error`` is set when the offline fallback was used.
    """
    if not request.text.strip():
        raise HTTPException(status_code=400, detail="Text is required")

    _, _, enhancer = _get_components()
    document = await enhancer.enhance(request.text, _options(request))
    return EnhanceResponse.from_document(document)


@app.post("/enhance/stream")
async def enhance_text_stream(request: EnhanceRequest) -> StreamingResponse:
    """Stream the enhanced report text as it is generated."""
    if not request.text.strip():
        raise HTTPException(status_code=400, detail="Text is required")

    config, _, enhancer = _get_components()
    if not config.enhancement.streaming_enabled:
        raise HTTPException(
            status_code=400,
            detail="Streaming is not available. Set enhancement.streaming_enabled to true.",
        )

    return StreamingResponse(
        enhancer.stream_chunks(request.text, _options(request)),
        media_type="text/plain; charset=utf-8",
    )
