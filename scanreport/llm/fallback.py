"""Offline substitutes for AI enhancement.

Both turn paragraphs into numbered sections. The mock is used when no
chat credential is configured. The fallback is used when every model
attempt failed and carries the last error so the user can be warned.
"""

import re

from .sections import Document

_PARAGRAPH_BREAK = re.compile(r"\n\s*\n")

MOCK_INTRODUCTION = (
    "# Introduction\n\n"
    "This report provides a comprehensive analysis based on the provided information.\n\n"
)
MOCK_CONCLUSION = (
    "\n\n# Conclusion\n\n"
    "Based on the analysis presented in this report, several key findings have been "
    "identified. These findings provide valuable insights for future decision-making "
    "and strategic planning."
)
FALLBACK_CONCLUSION = (
    "## Conclusion\n\nThis concludes the report based on the provided information."
)


def mock_enhance_text(text: str) -> str:
    """Dress raw text up as an enhanced report without calling any model.

    The first paragraph joins the introduction, later paragraphs become
    "Section N", and a fixed conclusion closes the report.
    """
    paragraphs = _PARAGRAPH_BREAK.split(text)
    body = "\n\n".join(
        para if i == 0 else f"# Section {i}\n\n{para.strip()}"
        for i, para in enumerate(paragraphs)
    )
    return MOCK_INTRODUCTION + body + MOCK_CONCLUSION


def format_text_as_fallback(text: str) -> str:
    """Number the non-empty paragraphs of ``text`` under a "Report" heading."""
    paragraphs = [p for p in _PARAGRAPH_BREAK.split(text) if p.strip()]
    if not paragraphs:
        return "# Report\n\n" + text

    result = f"# Report\n\n{paragraphs[0]}\n\n"
    for i, para in enumerate(paragraphs[1:], start=1):
        result += f"## Section {i}\n\n{para}\n\n"
    return result + FALLBACK_CONCLUSION


def mock_document(text: str) -> Document:
    return Document.from_text(mock_enhance_text(text))


def fallback_document(text: str, error: str | None) -> Document:
    """Paragraph-numbered document carrying the error that caused the fallback."""
    return Document.from_text(
        format_text_as_fallback(text),
        error=error or "Unknown error enhancing text",
    )
