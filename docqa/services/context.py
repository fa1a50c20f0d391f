# =============================================================================
# Context Assembler — Byte-Budgeted Context Packing
# =============================================================================
#
# Packs ranked pieces into the single context string handed to the model:
#
#   Source: a.md
#   <text>
#   ---
#   Source: b.txt
#   <text>
#
# Packing is greedy in rank order. The first piece that does not fit ends
# assembly, even if a later, smaller piece would fit, so the context is
# always a rank prefix. Accepted pieces are never truncated.
#
# Sizes are UTF-8 byte lengths; the separator between pieces counts too.
# =============================================================================

from __future__ import annotations

import logging
from collections.abc import Iterable
from dataclasses import dataclass

logger = logging.getLogger(__name__)

PIECE_SEPARATOR = "\n---\n"


@dataclass(frozen=True)
class ContextPiece:
    """One attributed block of text."""

    source: str
    text: str

    def render(self) -> str:
        return f"Source: {self.source}\n{self.text}"


@dataclass
class ContextBudget:
    """Running byte counter against a fixed cap."""

    limit: int
    used: int = 0

    @property
    def remaining(self) -> int:
        return self.limit - self.used

    def try_consume(self, size: int) -> bool:
        """Reserve `size` bytes; False (and nothing reserved) if over the cap."""
        if self.used + size > self.limit:
            return False
        self.used += size
        return True


def byte_length(text: str) -> int:
    return len(text.encode("utf-8"))


def pack_context(pieces: Iterable[ContextPiece], budget: int) -> str:
    """
    Join rendered pieces under a byte budget.

    Args:
        pieces: Pieces in rank order.
        budget: Maximum UTF-8 byte length of the returned string.

    Returns:
        The packed context; empty if the first piece alone exceeds budget.
    """
    tracker = ContextBudget(limit=budget)
    separator_size = byte_length(PIECE_SEPARATOR)
    parts: list[str] = []

    for piece in pieces:
        rendered = piece.render()
        cost = byte_length(rendered) + (separator_size if parts else 0)
        if not tracker.try_consume(cost):
            logger.debug(
                "Context budget reached after %d piece(s) (%d/%d bytes)",
                len(parts), tracker.used, tracker.limit,
            )
            break
        parts.append(rendered)

    return PIECE_SEPARATOR.join(parts)
