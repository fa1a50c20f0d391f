# =============================================================================
# Text Chunker — Overlapping Character Windows
# =============================================================================
#
# Splits extracted document text into fixed-size windows that overlap by a
# configured number of characters. Chunks are the atomic retrieval unit:
# each one is embedded once and scored independently.
#
# ALGORITHM:
#   offset = 0
#   emit text[offset : offset + size]
#   stop if that window reached the end of the text
#   offset += size - overlap
#
# The last chunk may be shorter than `size`. Consecutive chunks share
# exactly `overlap` characters, except where the last window is short.
# =============================================================================

from __future__ import annotations

import logging

logger = logging.getLogger(__name__)


def chunk_text(text: str, size: int = 2000, overlap: int = 200) -> list[str]:
    """
    Split text into overlapping fixed-size chunks.

    Args:
        text: Full document text.
        size: Maximum characters per chunk.
        overlap: Characters shared by consecutive chunks.

    Returns:
        Chunks in document order; empty list for empty text.

    Raises:
        ValueError: If size is not positive, overlap is negative, or
            overlap >= size (the window would never advance).
    """
    if size <= 0:
        raise ValueError(f"chunk size must be positive, got {size}")
    if overlap < 0:
        raise ValueError(f"chunk overlap must be non-negative, got {overlap}")
    if overlap >= size:
        raise ValueError(
            f"chunk overlap ({overlap}) must be smaller than chunk size ({size})"
        )

    if not text:
        return []

    step = size - overlap
    chunks: list[str] = []
    offset = 0
    while True:
        chunks.append(text[offset : offset + size])
        if offset + size >= len(text):
            break
        offset += step

    logger.debug(
        "Chunked %d chars into %d chunks (size=%d, overlap=%d)",
        len(text), len(chunks), size, overlap,
    )
    return chunks
