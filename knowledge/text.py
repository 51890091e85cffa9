"""Token estimation and boundary-aware text chunking.

The estimate is a deliberate over-approximation used to keep embedding
requests under the model's input limit without a tokenizer dependency.
"""

from __future__ import annotations

import math
import re
from typing import List

_PUNCTUATION = frozenset(".,;:!?()[]{}\"'-")

# (splitter, joiner) from the coarsest boundary to the finest
_LEVELS: tuple[tuple[re.Pattern[str], str], ...] = (
    (re.compile(r"\n\s*\n"), "\n\n"),
    (re.compile(r"(?<=[.!?])\s+"), " "),
    (re.compile(r"\s+"), " "),
)


def estimate_tokens(text: str) -> int:
    """Return a conservative token estimate for ``text``.

    Words and punctuation marks count one token each, whitespace characters a
    quarter token each.
    """

    if not text:
        return 0
    words = len(text.split())
    punctuation = sum(1 for ch in text if ch in _PUNCTUATION)
    whitespace = sum(1 for ch in text if ch.isspace())
    return math.ceil(words + punctuation + whitespace / 4)


def _pack(text: str, level: int, max_tokens: int) -> List[str]:
    if level >= len(_LEVELS):
        # a single word over the bound is kept whole
        return [text]

    splitter, joiner = _LEVELS[level]
    pieces = [piece.strip() for piece in splitter.split(text)]
    chunks: List[str] = []
    current = ""
    for piece in pieces:
        if not piece:
            continue
        candidate = f"{current}{joiner}{piece}" if current else piece
        if estimate_tokens(candidate) <= max_tokens:
            current = candidate
            continue
        if current:
            chunks.append(current)
            current = ""
        if estimate_tokens(piece) <= max_tokens:
            current = piece
            continue
        nested = _pack(piece, level + 1, max_tokens)
        if nested:
            chunks.extend(nested[:-1])
            current = nested[-1]
    if current:
        chunks.append(current)
    return chunks


def chunk_text(text: str, max_tokens: int) -> List[str]:
    """Split ``text`` into chunks whose estimate stays within ``max_tokens``.

    Paragraphs are packed first, then sentences, then words. Text that already
    fits is returned unchanged as a single chunk.
    """

    if estimate_tokens(text) <= max_tokens:
        return [text]
    chunks = [chunk for chunk in _pack(text, 0, max_tokens) if chunk.strip()]
    return chunks or [text.strip()]
