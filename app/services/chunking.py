"""Text normalization and offset-preserving chunking.

Chunks are always verbatim slices of the input (``text[start:end]``), so an
excerpt selected for a prompt can be quoted back exactly.
"""

from __future__ import annotations

import re
import unicodedata
from dataclasses import dataclass


@dataclass
class TextChunk:
    """A contiguous slice of a text with its position."""
    index: int
    start: int
    end: int
    content: str

    @property
    def char_count(self) -> int:
        return self.end - self.start


def normalize_text(text: str) -> str:
    """Normalize unicode, collapse whitespace, strip control characters."""
    # Normalize unicode to NFC form
    text = unicodedata.normalize("NFC", text)
    # Remove control characters (except newlines and tabs)
    text = re.sub(r"[^\S \n\t]+", "", text)
    # Collapse multiple blank lines into at most two newlines
    text = re.sub(r"\n{3,}", "\n\n", text)
    # Collapse multiple spaces/tabs into a single space
    text = re.sub(r"[^\S\n]+", " ", text)
    # Strip trailing/leading spaces on each line
    text = re.sub(r" *\n *", "\n", text)
    return text.strip()


def count_words(text: str | None) -> int:
    if not text:
        return 0
    return len(text.split())


# Break points ordered by preference — semantic boundaries first
_SEPARATORS = [
    "\n\n",   # paragraph breaks
    "\n",     # line breaks
    ". ",     # sentence boundaries
    "? ",
    "! ",
    "; ",
    ", ",
    " ",      # word boundaries
]


def chunk_text(
    text: str,
    chunk_size: int = 512,
    chunk_overlap: int = 64,
    separators: list[str] | None = None,
) -> list[TextChunk]:
    """Split text into overlapping chunks of at most ``chunk_size`` characters.

    Each chunk ends on the most preferred separator found in the second half
    of its window; when none is found the chunk is cut at exactly
    ``chunk_size``. Leading/trailing whitespace is trimmed from every chunk.

    Args:
        text: The input text. It is not normalized; offsets refer to it as given.
        chunk_size: Maximum characters per chunk.
        chunk_overlap: Characters shared between consecutive chunks.
        separators: Ordered break points. Defaults to paragraph → word.

    Returns:
        List of TextChunk objects with offsets into ``text``.
    """
    if chunk_size <= 0 or not text.strip():
        return []

    seps = separators or _SEPARATORS
    overlap = max(0, min(chunk_overlap, chunk_size // 4))
    chunks: list[TextChunk] = []
    pos = 0
    length = len(text)

    while pos < length:
        end = min(pos + chunk_size, length)
        if end < length:
            end = _break_point(text, pos, end, seps)

        start, stop = _trim(text, pos, end)
        if stop > start:
            chunks.append(TextChunk(
                index=len(chunks),
                start=start,
                end=stop,
                content=text[start:stop],
            ))

        if end >= length:
            break
        next_pos = end - overlap if overlap else end
        if overlap:
            # Do not restart mid-word
            space = text.find(" ", next_pos, end)
            if space != -1:
                next_pos = space + 1
        pos = max(next_pos, pos + 1)

    return chunks


def _break_point(text: str, start: int, end: int, separators: list[str]) -> int:
    """Return the preferred cut position in ``text[start:end]``."""
    floor = start + (end - start) // 2
    for sep in separators:
        idx = text.rfind(sep, floor, end)
        if idx != -1:
            return idx + len(sep)
    return end


def _trim(text: str, start: int, end: int) -> tuple[int, int]:
    while start < end and text[start].isspace():
        start += 1
    while end > start and text[end - 1].isspace():
        end -= 1
    return start, end
