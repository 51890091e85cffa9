"""Lightweight package init for retrieval utilities.

Avoid importing the OpenAI SDK at import time. ``EmbeddingClient`` and
``search_pages`` are imported lazily on first use.
"""

from __future__ import annotations

from typing import Any


def get_embedding_client(settings: Any = None):
    """Lazily import ``embedder`` and build a client from settings."""
    from .embedder import EmbeddingClient  # local import

    if settings is None:
        from settings import get_settings

        settings = get_settings().embeddings
    return EmbeddingClient.from_settings(settings)


async def search_pages(query: str, **kwargs: Any):
    """Lazily import and delegate to ``search.search_pages``."""
    from .search import search_pages as _search_pages  # local import

    return await _search_pages(query, **kwargs)
