"""Command-line interface for OCR, enhancement and full report generation.

Provides subcommands to extract text from images to JSON, enhance a
text file into a Markdown report, and run a folder of page images
through the whole pipeline.
"""

import argparse
import asyncio
import json
import re
import sys
from dataclasses import asdict
from pathlib import Path

from scanreport.llm.enhancer import EnhancementOptions, build_enhancement_service
from scanreport.llm.sections import Document
from scanreport.ocr.selector import build_selector
from scanreport.ocr.types import BackendName
from scanreport.pipeline.orchestrator import MarkdownRenderer, ReportPipeline
from scanreport.pipeline.repository import (
    ExtractionRepository,
    InMemoryExtractionRepository,
    JsonFileExtractionRepository,
)
from scanreport.utils.config import AppConfig, load_config
from scanreport.utils.logger import get_logger, setup_logging

logger = get_logger(__name__)

_SUPPORTED_EXTENSIONS = ("*.png", "*.jpg", "*.jpeg", "*.tiff", "*.tif", "*.webp", "*.bmp")


def _find_images(input_dir: Path) -> list[Path]:
    """Find all supported image files in a directory, sorted by name.

    Args:
        input_dir: Directory to scan.

    Returns:
        Sorted list of image paths.
    """
    files: list[Path] = []
    for ext in _SUPPORTED_EXTENSIONS:
        files.extend(input_dir.glob(ext))
        files.extend(input_dir.glob(ext.upper()))
    return sorted(set(files))


def _image_id(index: int, path: Path) -> str:
    stem = re.sub(r"[^A-Za-z0-9._-]+", "-", path.stem).strip("-.") or "page"
    return f"{index:03d}-{stem}"


def _print_progress(stage: str, fraction: float) -> None:
    print(f"[{fraction * 100:5.1f}%] {stage}")


async def _extract_files(
    files: list[Path],
    config: AppConfig,
    language: str | None,
    prefer_ai: bool,
    backend: str | None,
    verbose: bool,
) -> list[dict[str, object]]:
    selector = build_selector(config)
    try:
        results = await selector.extract_batch(
            [str(f) for f in files],
            language=language,
            prefer_ai=prefer_ai,
            preferred_backend=backend,
            on_progress=_print_progress if verbose else None,
        )
    finally:
        await selector.aclose()
    return [{"filename": f.name, **asdict(r)} for f, r in zip(files, results)]


def extract_files(
    files: list[Path],
    config: AppConfig,
    language: str | None = None,
    prefer_ai: bool = False,
    backend: str | None = None,
    verbose: bool = False,
) -> list[dict[str, object]]:
    """Run OCR on image files and return JSON-ready results in input order.

    Args:
        files: Image files to process.
        config: Application configuration.
        language: OCR language tag; defaults to the configured one.
        prefer_ai: Route images to the handwriting vision backend.
        backend: Force a specific backend.
        verbose: Print batch progress.

    Returns:
        One dict per file with the filename and extraction result fields.
    """
    return asyncio.run(_extract_files(files, config, language, prefer_ai, backend, verbose))


async def _enhance(text: str, config: AppConfig, options: EnhancementOptions) -> Document:
    service = build_enhancement_service(config)
    try:
        return await service.enhance(text, options)
    finally:
        await service.aclose()


def enhance_file(
    text_file: Path,
    config: AppConfig,
    options: EnhancementOptions,
) -> Document:
    """Enhance the contents of a text file into a report document.

    Raises:
        ValueError: The file holds no text.
    """
    text = text_file.read_text(encoding="utf-8")
    return asyncio.run(_enhance(text, config, options))


async def _build_report(
    files: list[Path],
    config: AppConfig,
    repository: ExtractionRepository,
    options: EnhancementOptions,
    language: str | None,
    prefer_ai: bool,
    backend: str | None,
    verbose: bool,
) -> ReportPipeline:
    selector = build_selector(config)
    enhancer = build_enhancement_service(config)
    pipeline = ReportPipeline(
        selector,
        enhancer,
        repository=repository,
        language=language,
        prefer_ai=prefer_ai,
        preferred_backend=backend,
    )
    try:
        for i, path in enumerate(files, 1):
            pipeline.add_image(_image_id(i, path), str(path))
        await pipeline.run_ocr(on_progress=_print_progress if verbose else None)
        if pipeline.combined_text():
            await pipeline.enhance(options)
    finally:
        await selector.aclose()
        await enhancer.aclose()
    return pipeline


def build_report(
    input_dir: Path,
    output: Path,
    config: AppConfig,
    options: EnhancementOptions,
    results_dir: Path | None = None,
    language: str | None = None,
    prefer_ai: bool = False,
    backend: str | None = None,
    verbose: bool = False,
) -> dict[str, int]:
    """Turn a folder of page images into a Markdown report.

    Args:
        input_dir: Directory with page images, processed in name order.
        output: Markdown file to write.
        config: Application configuration.
        options: Enhancement options.
        results_dir: Where to save per-image OCR results as JSON; falls
            back to ``storage.results_dir``, else results stay in memory.
        language: OCR language tag.
        prefer_ai: Route images to the handwriting vision backend.
        backend: Force a specific OCR backend.
        verbose: Print progress.

    Returns:
        Summary with total, successful and failed image counts.
    """
    files = _find_images(input_dir)
    if not files:
        logger.warning("No images found in %s", input_dir)
        return {"total": 0, "successful": 0, "failed": 0}

    directory = results_dir or config.storage.results_dir
    repository: ExtractionRepository = (
        JsonFileExtractionRepository(directory) if directory else InMemoryExtractionRepository()
    )
    logger.info("Found %d images to process", len(files))

    pipeline = asyncio.run(
        _build_report(files, config, repository, options, language, prefer_ai, backend, verbose)
    )

    successful = len(pipeline.processed_ids)
    summary = {"total": len(files), "successful": successful, "failed": len(files) - successful}
    if pipeline.document is not None:
        output.parent.mkdir(parents=True, exist_ok=True)
        output.write_bytes(pipeline.export(MarkdownRenderer()))
        logger.info("Report written to %s", output)
    else:
        logger.error("No text was extracted, report not written")

    _print_summary(summary, output if pipeline.document is not None else None, pipeline.notices)
    return summary


def _print_summary(summary: dict[str, int], output: Path | None, notices: list[str]) -> None:
    """Print report generation summary to stdout."""
    print(f"\n{'=' * 50}")
    print("Report Generation Complete")
    print(f"{'=' * 50}")
    print(f"Images:     {summary['total']}")
    print(f"Successful: {summary['successful']}")
    print(f"Failed:     {summary['failed']}")
    print(f"Output:     {output or '-'}")
    for notice in notices:
        print(f"Warning:    {notice}")


def _write_or_print(content: str, output: Path | None) -> None:
    if output:
        output.parent.mkdir(parents=True, exist_ok=True)
        output.write_text(content, encoding="utf-8")
        print(f"Output written to {output}")
    else:
        print(content)


def _add_ocr_arguments(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "-l", "--language", help="OCR language: eng, fra or eng+fra (default: from config)"
    )
    parser.add_argument(
        "--prefer-ai", action="store_true", help="Use the handwriting vision model"
    )
    parser.add_argument(
        "-b",
        "--backend",
        choices=[b.value for b in BackendName],
        help="Force an OCR backend",
    )


def _add_enhance_arguments(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "--report-language", default="french", help="Report language (default: french)"
    )
    parser.add_argument(
        "--report-type", default="general", help="Report type label (default: general)"
    )
    parser.add_argument("--instructions", default="", help="Additional instructions")


def _enhancement_options(args: argparse.Namespace) -> EnhancementOptions:
    return EnhancementOptions(
        language=args.report_language,
        report_type=args.report_type,
        additional_instructions=args.instructions,
    )


def main(argv: list[str] | None = None) -> None:
    """Parse CLI arguments and dispatch to the appropriate command.

    Args:
        argv: Command-line arguments (defaults to sys.argv).
    """
    parser = argparse.ArgumentParser(
        description="Scan Report: OCR and report generation",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument("-c", "--config", type=Path, help="YAML configuration file")

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    ocr_parser = subparsers.add_parser("ocr", help="Extract text from images")
    ocr_parser.add_argument("files", type=Path, nargs="+", help="Image files")
    _add_ocr_arguments(ocr_parser)
    ocr_parser.add_argument("-o", "--output", type=Path, help="Output JSON file")
    ocr_parser.add_argument("-v", "--verbose", action="store_true", help="Verbose output")

    enhance_parser = subparsers.add_parser("enhance", help="Enhance a text file into a report")
    enhance_parser.add_argument("file", type=Path, help="Text file with raw OCR text")
    _add_enhance_arguments(enhance_parser)
    enhance_parser.add_argument("-o", "--output", type=Path, help="Output Markdown file")

    report_parser = subparsers.add_parser("report", help="Build a report from a folder of images")
    report_parser.add_argument("input_dir", type=Path, help="Directory with page images")
    _add_ocr_arguments(report_parser)
    _add_enhance_arguments(report_parser)
    report_parser.add_argument(
        "-o",
        "--output",
        type=Path,
        default=Path("report.md"),
        help="Output Markdown file (default: report.md)",
    )
    report_parser.add_argument(
        "--results-dir", type=Path, help="Directory for per-image OCR results (JSON)"
    )
    report_parser.add_argument("-v", "--verbose", action="store_true", help="Verbose output")

    args = parser.parse_args(argv)

    config = load_config(args.config)
    setup_logging(config.log_level)

    if args.command == "ocr":
        missing = [str(f) for f in args.files if not f.exists()]
        if missing:
            print(f"Error: {', '.join(missing)} does not exist", file=sys.stderr)
            sys.exit(1)
        results = extract_files(
            args.files, config, args.language, args.prefer_ai, args.backend, args.verbose
        )
        _write_or_print(json.dumps(results, indent=2, ensure_ascii=False), args.output)
    elif args.command == "enhance":
        if not args.file.exists():
            print(f"Error: {args.file} does not exist", file=sys.stderr)
            sys.exit(1)
        try:
            document = enhance_file(args.file, config, _enhancement_options(args))
        except ValueError as exc:
            print(f"Error: {exc}", file=sys.stderr)
            sys.exit(1)
        if document.error:
            print(f"Warning: AI enhancement did not run: {document.error}", file=sys.stderr)
        _write_or_print(document.to_markdown(), args.output)
    elif args.command == "report":
        if not args.input_dir.is_dir():
            print(f"Error: {args.input_dir} is not a directory", file=sys.stderr)
            sys.exit(1)
        build_report(
            args.input_dir,
            args.output,
            config,
            _enhancement_options(args),
            results_dir=args.results_dir,
            language=args.language,
            prefer_ai=args.prefer_ai,
            backend=args.backend,
            verbose=args.verbose,
        )
    else:
        parser.print_help()
        sys.exit(0)


if __name__ == "__main__":
    main()
