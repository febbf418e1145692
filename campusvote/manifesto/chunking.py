# campusvote/manifesto/chunking.py

import logging
import math
from typing import List

logger = logging.getLogger(__name__)

DEFAULT_CHUNK_SIZE = 1000
DEFAULT_OVERLAP = 200
MAX_TEXT_LENGTH = 100000
MAX_CHUNKS = 50
MIN_CHUNK_LENGTH = 10
TRUNCATION_MARKER = '... (truncated)'


def prepare_manifesto_text(text: str) -> str:
    """Cap a manifesto at MAX_TEXT_LENGTH characters, marking the cut."""
    if len(text) > MAX_TEXT_LENGTH:
        return text[:MAX_TEXT_LENGTH] + TRUNCATION_MARKER
    return text


def split_text(text: str, chunk_size: int = DEFAULT_CHUNK_SIZE, overlap: int = DEFAULT_OVERLAP) -> List[str]:
    """Split text into overlapping chunks, preferring word boundaries.

    Each window of ``chunk_size`` characters is cut back to its last space or
    newline when that boundary lies past the middle of the window. Chunks are
    trimmed and anything of MIN_CHUNK_LENGTH characters or fewer is dropped.
    The loop always advances and is capped, so it terminates for any input.
    """
    if not text or not isinstance(text, str):
        return []

    if chunk_size <= 0 or chunk_size > 10000:
        chunk_size = DEFAULT_CHUNK_SIZE
    if overlap < 0 or overlap >= chunk_size:
        overlap = min(DEFAULT_OVERLAP, chunk_size // 5)

    try:
        return _split_on_boundaries(text, chunk_size, overlap)
    except Exception:
        logger.exception("Boundary split failed; falling back to fixed-size slicing")
        if len(text) <= chunk_size:
            stripped = text.strip()
            return [stripped] if len(stripped) > MIN_CHUNK_LENGTH else []
        return _split_fixed(text, chunk_size)


def _split_on_boundaries(text, chunk_size, overlap):
    chunks = []
    start = 0
    iterations = 0
    max_iterations = math.ceil(len(text) / (chunk_size - overlap)) + 10

    while start < len(text) and iterations < max_iterations:
        iterations += 1
        end = min(start + chunk_size, len(text))
        chunk = text[start:end]

        if end < len(text):
            boundary = max(chunk.rfind(' '), chunk.rfind('\n'))
            if boundary > chunk_size * 0.5:
                chunk = chunk[:boundary]

        chunk = chunk.strip()
        if len(chunk) > MIN_CHUNK_LENGTH:
            chunks.append(chunk)

        next_start = end - overlap
        if next_start <= start:
            start += max(1, chunk_size // 2)
        else:
            start = next_start

    logger.debug("Split text into %d chunks (%d iterations)", len(chunks), iterations)
    return chunks


def _split_fixed(text, chunk_size):
    chunks = []
    for i in range(0, len(text), chunk_size):
        chunk = text[i:i + chunk_size].strip()
        if len(chunk) > MIN_CHUNK_LENGTH:
            chunks.append(chunk)
        if len(chunks) > 100:
            logger.warning("Fixed-size split produced too many chunks, stopping")
            break
    return chunks
