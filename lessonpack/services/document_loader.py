"""
Input discovery and text extraction for debate notes.

Turns files in the input directory into PreparedDocument objects: plain,
length-capped text plus the detected kind and a short context hint.
PDF text comes from PyMuPDF, DOCX paragraphs from python-docx, everything
else is read as UTF-8 text.
"""
from __future__ import annotations

import asyncio
import logging
import re
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional

import fitz  # PyMuPDF
from docx import Document as DocxDocument

from lessonpack.config import settings
from lessonpack.models.lesson_pack import InputKind

logger = logging.getLogger(__name__)

TRUNCATION_MARKER = "\n\n[TRUNCATED]"


@dataclass
class PreparedDocument:
    """One input file, ready for the generation pipeline."""

    absolute_path: str
    filename: str
    kind: InputKind
    text: str
    context_hint: Optional[str] = None


def discover_input_files(input_dir: str) -> List[str]:
    """All supported files below *input_dir*, sorted, skipping dot-files."""
    root = Path(input_dir).expanduser().resolve()
    if not root.is_dir():
        logger.warning("Input directory %s does not exist", root)
        return []

    suffixes = {s.lower() for s in settings.SUPPORTED_FILE_TYPES}
    files = [
        path
        for path in root.rglob("*")
        if path.is_file()
        and path.suffix.lower() in suffixes
        and not any(part.startswith(".") for part in path.relative_to(root).parts)
    ]
    return sorted(str(path) for path in files)


def detect_kind(file_path: str) -> InputKind:
    path = Path(file_path)
    suffix = path.suffix.lower()
    if suffix == ".pdf":
        return InputKind.PDF
    if suffix in (".md", ".markdown"):
        return InputKind.MARKDOWN
    if "transcript" in path.stem.lower():
        return InputKind.TRANSCRIPT
    return InputKind.RAW_NOTES


def _read_pdf(file_path: str) -> str:
    try:
        doc = fitz.open(file_path)
    except Exception as exc:
        raise RuntimeError(f"Cannot open PDF file: {exc}") from exc

    try:
        if doc.needs_pass:
            raise RuntimeError("PDF is password-protected. Please provide an unlocked copy.")
        return "\n".join(page.get_text("text") for page in doc)
    finally:
        doc.close()


def _read_docx(file_path: str) -> str:
    document = DocxDocument(file_path)
    lines: List[str] = []
    for paragraph in document.paragraphs:
        text = paragraph.text.strip()
        if not text:
            continue
        style = (paragraph.style.name if paragraph.style is not None else "") or ""
        match = re.match(r"Heading (\d)", style)
        if match:
            lines.append(f"{'#' * int(match.group(1))} {text}")
        elif style.startswith("List"):
            lines.append(f"- {text}")
        else:
            lines.append(text)
    return "\n\n".join(lines)


def read_document(file_path: str) -> str:
    suffix = Path(file_path).suffix.lower()
    if suffix == ".pdf":
        return _read_pdf(file_path)
    if suffix == ".docx":
        return _read_docx(file_path)
    return Path(file_path).read_text(encoding="utf-8", errors="replace")


def preprocess_text(raw_text: str, max_chars: Optional[int] = None) -> str:
    """Normalise newlines, collapse blank runs and cap the length."""
    limit = max_chars or settings.MAX_TEXT_CHARS
    cleaned = re.sub(r"\r\n?", "\n", raw_text)
    cleaned = re.sub(r"\n{3,}", "\n\n", cleaned)
    if len(cleaned) <= limit:
        return cleaned
    return cleaned[:limit] + TRUNCATION_MARKER


def extract_context_hint(text: str) -> Optional[str]:
    """First markdown heading, else the opening sentence if it says anything."""
    heading = re.search(r"^#\s{0,3}(.+)$", text, flags=re.MULTILINE)
    if heading and heading.group(1).strip():
        return heading.group(1).strip()

    stripped = text.strip()
    if not stripped:
        return None
    first_line = stripped.splitlines()[0]
    first_sentence = re.split(r"(?<=[.!?])\s+", first_line)[0].rstrip(".").strip()
    return first_sentence[:120] if len(first_sentence) > 5 else None


async def prepare_document(file_path: str) -> PreparedDocument:
    """Read, normalise and annotate a single input file."""
    path = Path(file_path).expanduser().resolve()
    raw = await asyncio.to_thread(read_document, str(path))
    text = preprocess_text(raw)
    return PreparedDocument(
        absolute_path=str(path),
        filename=path.name,
        kind=detect_kind(str(path)),
        text=text,
        context_hint=extract_context_hint(text),
    )
