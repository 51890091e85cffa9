"""Search over crawled pages, by embedding when available."""

from __future__ import annotations

from typing import List

import structlog

from crawler.errors import EmbeddingFailed
from models import SearchResult

logger = structlog.get_logger(__name__)


async def search_pages(
    query: str,
    *,
    store,
    embedder=None,
    limit: int = 10,
) -> List[SearchResult]:
    """Return up to ``limit`` pages matching ``query``.

    The query is embedded when ``embedder`` is configured; otherwise, or when
    embedding fails, the store runs a text search.
    """

    vector = None
    if embedder is not None and embedder.configured:
        try:
            vector = await embedder.embed(query)
        except EmbeddingFailed as exc:
            logger.warning("search_embedding_failed", error=str(exc))
    results = await store.search_pages(query, vector=vector, limit=limit)
    logger.info("search_completed", matched=len(results), vector=vector is not None)
    return results
