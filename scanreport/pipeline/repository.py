"""Storage for extraction results, keyed by image id.

The in-memory adapter backs tests and single-process runs; the JSON
adapter writes one ``<image_id>.json`` file per result.
"""

import json
import re
from abc import ABC, abstractmethod
from dataclasses import asdict
from pathlib import Path

from scanreport.ocr.types import BoundingBox, ExtractionResult, OCRWord
from scanreport.utils.logger import get_logger

logger = get_logger(__name__)

_SAFE_ID = re.compile(r"^[A-Za-z0-9][A-Za-z0-9._-]*$")


class PersistenceError(Exception):
    """A result could not be saved or loaded."""


class ExtractionRepository(ABC):
    """Get/set-by-id contract shared by every storage adapter."""

    @abstractmethod
    def save(self, image_id: str, result: ExtractionResult) -> None:
        """Store ``result`` under ``image_id``, replacing any previous one."""

    @abstractmethod
    def get(self, image_id: str) -> ExtractionResult | None:
        """Return the stored result or ``None``."""

    @abstractmethod
    def delete(self, image_id: str) -> bool:
        """Remove a result; returns whether one existed."""

    @abstractmethod
    def list_ids(self) -> list[str]:
        """Ids of all stored results, sorted."""


class InMemoryExtractionRepository(ExtractionRepository):
    def __init__(self) -> None:
        self._results: dict[str, ExtractionResult] = {}

    def save(self, image_id: str, result: ExtractionResult) -> None:
        self._results[image_id] = result

    def get(self, image_id: str) -> ExtractionResult | None:
        return self._results.get(image_id)

    def delete(self, image_id: str) -> bool:
        return self._results.pop(image_id, None) is not None

    def list_ids(self) -> list[str]:
        return sorted(self._results)


def result_from_dict(data: dict) -> ExtractionResult:
    """Rebuild a result from its ``dataclasses.asdict`` form."""
    words = [
        OCRWord(text=w["text"], bbox=BoundingBox(**w["bbox"]), confidence=w["confidence"])
        for w in data.get("words", [])
    ]
    return ExtractionResult(**{**data, "words": words})


class JsonFileExtractionRepository(ExtractionRepository):
    """One JSON document per image under ``directory``.

    Args:
        directory: Created on first use if missing.
    """

    def __init__(self, directory: str | Path) -> None:
        self.directory = Path(directory)

    def _path(self, image_id: str) -> Path:
        if not _SAFE_ID.match(image_id):
            raise PersistenceError(f"Invalid image id for file storage: {image_id!r}")
        return self.directory / f"{image_id}.json"

    def save(self, image_id: str, result: ExtractionResult) -> None:
        path = self._path(image_id)
        try:
            self.directory.mkdir(parents=True, exist_ok=True)
            with open(path, "w", encoding="utf-8") as f:
                json.dump(asdict(result), f, ensure_ascii=False, indent=2)
        except OSError as exc:
            raise PersistenceError(f"Failed to save result for {image_id}: {exc}") from exc
        logger.debug("Saved extraction result to %s", path)

    def get(self, image_id: str) -> ExtractionResult | None:
        path = self._path(image_id)
        if not path.exists():
            return None
        try:
            with open(path, encoding="utf-8") as f:
                return result_from_dict(json.load(f))
        except (OSError, ValueError, TypeError, KeyError) as exc:
            raise PersistenceError(f"Failed to load result for {image_id}: {exc}") from exc

    def delete(self, image_id: str) -> bool:
        path = self._path(image_id)
        if not path.exists():
            return False
        path.unlink()
        return True

    def list_ids(self) -> list[str]:
        if not self.directory.exists():
            return []
        return sorted(p.stem for p in self.directory.glob("*.json"))
