"""Text extraction from uploaded files (PDF, DOCX, TXT, MD, CSV, SRT, VTT)."""

from __future__ import annotations

import re
from io import BytesIO
from pathlib import Path

ALLOWED_EXTENSIONS = {".txt", ".md", ".csv", ".pdf", ".docx", ".srt", ".vtt"}
SUBTITLE_EXTENSIONS = {".srt", ".vtt"}
MAX_FILE_SIZE = 10 * 1024 * 1024  # 10 MB

# 00:00:01,000 --> 00:00:04,000 (SRT) / 00:01.000 --> 00:04.000 (VTT short form)
_CUE_TIMING = re.compile(r"^(\d{2}:)?\d{2}:\d{2}[,.]\d{3}\s*-->\s*(\d{2}:)?\d{2}:\d{2}[,.]\d{3}")
_CUE_TAG = re.compile(r"<[^>]+>")


def extract_text(filename: str, content: bytes) -> str:
    """Extract plain text from file bytes based on the file extension.

    Args:
        filename: Original filename (used to determine type).
        content: Raw file bytes.

    Returns:
        Extracted text as a string.

    Raises:
        ValueError: If the file extension is not supported or the bytes
            cannot be decoded.
    """
    ext = Path(filename).suffix.lower()

    if ext in {".txt", ".md", ".csv"}:
        return content.decode("utf-8")

    if ext in SUBTITLE_EXTENSIONS:
        return parse_subtitles(content.decode("utf-8-sig"))

    if ext == ".pdf":
        return _extract_pdf(content)

    if ext == ".docx":
        return _extract_docx(content)

    raise ValueError(f"Unsupported file type: {ext}")


def parse_subtitles(raw: str) -> str:
    """Keep only the spoken text of an SRT or WebVTT file.

    Cue numbers, identifiers, timings, the WEBVTT header and NOTE/STYLE
    blocks are dropped; voice and styling tags are stripped.
    """
    lines: list[str] = []
    for block in re.split(r"\n\s*\n", raw.replace("\r\n", "\n")):
        rows = [r.strip() for r in block.strip().split("\n")]
        timing = next((i for i, r in enumerate(rows) if _CUE_TIMING.match(r)), None)
        if timing is None:
            continue
        for row in rows[timing + 1:]:
            text = _CUE_TAG.sub("", row).strip()
            if text:
                lines.append(text)
    return " ".join(lines)


def _extract_pdf(content: bytes) -> str:
    from pypdf import PdfReader

    reader = PdfReader(BytesIO(content))
    pages = [page.extract_text() or "" for page in reader.pages]
    return "\n".join(pages)


def _extract_docx(content: bytes) -> str:
    from docx import Document

    doc = Document(BytesIO(content))
    return "\n".join(p.text for p in doc.paragraphs)
