"""Split model output into titled sections and wrap it in a Document."""

import re
from dataclasses import dataclass, field, replace

_HEADING_RE = re.compile(r"^#+[ \t]+(.+)$|^(.+)\n[=\-]+$", re.MULTILINE)

INTRODUCTION_TITLE = "Introduction"
UNTITLED_TITLE = "Report"


@dataclass(frozen=True)
class Section:
    """A titled block of report content."""

    title: str
    content: str


def parse_sections(text: str) -> list[Section]:
    """Parse heading-delimited text into ordered sections.

    Headings are line-start ``#`` markers or a line underlined with ``=`` or
    ``-``. Text before the first heading becomes an "Introduction" section.
    Headings with nothing under them produce no section. Non-empty text
    that yields no section at all is returned whole under "Report".

    Args:
        text: Markdown-ish text, typically a model response.

    Returns:
        Sections in document order; empty only for blank input.
    """
    sections: list[Section] = []
    title = INTRODUCTION_TITLE
    last_end = 0

    for match in _HEADING_RE.finditer(text):
        content = text[last_end : match.start()].strip()
        if content:
            sections.append(Section(title, content))
        title = (match.group(1) or match.group(2)).strip()
        last_end = match.end()

    if last_end == 0:
        # no heading at all
        return [Section(UNTITLED_TITLE, text.strip())] if text.strip() else []

    content = text[last_end:].strip()
    if content:
        sections.append(Section(title, content))

    if not sections:
        return [Section(UNTITLED_TITLE, text.strip())]
    return sections


def sections_to_markdown(sections: list[Section]) -> str:
    """Serialize sections in the ``## title`` form the parser reads back."""
    return "".join(f"## {s.title}\n\n{s.content}\n\n" for s in sections)


@dataclass(frozen=True)
class Document:
    """Output of the enhancement stage.

    Holds the text the document was built from and its parsed sections.
    ``model`` names the chat model that produced the text, ``None`` for
    the offline substitutes. ``error`` carries the warning from a degraded
    path. Documents are never edited in place.

    Raises:
        ValueError: Both ``sections`` and ``text`` are empty.
    """

    text: str
    sections: list[Section] = field(default_factory=list)
    model: str | None = None
    error: str | None = None

    def __post_init__(self) -> None:
        if not self.sections and not self.text.strip():
            raise ValueError("Document needs at least one section or non-empty text")

    @classmethod
    def from_text(
        cls, text: str, model: str | None = None, error: str | None = None
    ) -> "Document":
        return cls(text=text, sections=parse_sections(text), model=model, error=error)

    def to_markdown(self) -> str:
        if not self.sections:
            return self.text
        return sections_to_markdown(self.sections)

    def with_section(self, index: int, title: str, content: str) -> "Document":
        """Return a copy with section ``index`` replaced.

        Raises:
            IndexError: No section at ``index``.
        """
        if not 0 <= index < len(self.sections):
            raise IndexError(f"No section at index {index}")
        sections = list(self.sections)
        sections[index] = Section(title.strip(), content.strip())
        return replace(self, sections=sections, text=sections_to_markdown(sections))
