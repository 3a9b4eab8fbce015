"""Helpers for turning PDFs (via pdfplumber) or text dumps into plain text."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path

from depot_cli.shared.exceptions import ExtractionError

from ..parser import split_lines

_log = logging.getLogger(__name__)

try:  # pragma: no cover - import guarded for optional dependency
    import pdfplumber
except ModuleNotFoundError:  # pragma: no cover - handled at runtime
    pdfplumber = None  # type: ignore[assignment]

_TEXT_SUFFIXES = (".txt", ".text")


@dataclass(slots=True)
class TextDocument:
    text: str
    source: Path | None = None

    @property
    def lines(self) -> list[str]:
        return split_lines(self.text)


def load_document(path: str | Path, engine: str = "auto") -> TextDocument:
    """Load a document using the configured engine.

    Args:
        path: Path to a PDF or a plain-text dump of one.
        engine: "auto" (by file suffix), "text", or "pdfplumber".

    Raises:
        ExtractionError: If the file is missing or an unknown engine is requested.
    """

    doc_path = Path(path)
    if not doc_path.exists():
        raise ExtractionError(f"Document does not exist: {doc_path}")

    if engine == "auto":
        engine = "text" if doc_path.suffix.lower() in _TEXT_SUFFIXES else "pdfplumber"
        _log.debug("Using %s engine (auto mode) for %s", engine, doc_path.name)

    if engine == "text":
        return load_text_document(doc_path)
    if engine == "pdfplumber":
        return load_pdf_document(doc_path)

    raise ExtractionError(f"Invalid engine: {engine}. Must be one of: auto, text, pdfplumber")


def load_text_document(path: Path) -> TextDocument:
    try:
        text = path.read_text(encoding="utf-8")
    except UnicodeDecodeError:
        # Older exports are Latin-1.
        text = path.read_text(encoding="latin-1")
    return TextDocument(text=text.replace("\r\n", "\n"), source=path)


def load_pdf_document(path: Path) -> TextDocument:
    if pdfplumber is None:
        raise ExtractionError(
            "pdfplumber is not installed. Install depot-cli with its default dependencies to read PDFs."
        )

    text_chunks: list[str] = []
    try:
        with pdfplumber.open(path) as pdf:
            for page in pdf.pages:
                text_chunks.append(page.extract_text() or "")
    except Exception as exc:  # pragma: no cover - defensive guard
        raise ExtractionError(f"Failed to read PDF with pdfplumber: {exc}") from exc

    return TextDocument(text="\n".join(text_chunks), source=path)
