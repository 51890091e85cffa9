"""Text helpers shared by the crawler and the embedding client."""

from .text import chunk_text, estimate_tokens

__all__ = ["chunk_text", "estimate_tokens"]
