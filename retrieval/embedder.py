"""OpenAI embedding client with chunk averaging."""

from __future__ import annotations

from typing import Any, List, Sequence

import numpy as np
import structlog
from openai import AsyncOpenAI

from crawler.errors import EmbeddingFailed, NotConfigured
from knowledge.text import chunk_text, estimate_tokens

logger = structlog.get_logger(__name__)

DEFAULT_MODEL = "text-embedding-3-small"
CHUNK_TOKENS = 4500
SAFETY_TOKENS = 7000
TRUNCATE_CHARS = 18000
PROBE_TEXT = "connection test"


class EmbeddingClient:
    """Produce one vector per text using the OpenAI embeddings API.

    Texts longer than ``chunk_tokens`` are split with :func:`chunk_text`,
    embedded one request per chunk and averaged component-wise. ``client``
    may be any object exposing ``embeddings.create`` and is used by tests.
    """

    def __init__(
        self,
        api_key: str | None,
        *,
        model: str = DEFAULT_MODEL,
        chunk_tokens: int = CHUNK_TOKENS,
        safety_tokens: int = SAFETY_TOKENS,
        truncate_chars: int = TRUNCATE_CHARS,
        client: Any | None = None,
    ) -> None:
        self.model = model
        self.chunk_tokens = chunk_tokens
        self.safety_tokens = safety_tokens
        self.truncate_chars = truncate_chars
        if client is not None:
            self._client = client
        elif api_key:
            self._client = AsyncOpenAI(api_key=api_key)
        else:
            self._client = None

    @classmethod
    def from_settings(cls, settings) -> "EmbeddingClient":
        return cls(
            settings.api_key,
            model=settings.model,
            chunk_tokens=settings.chunk_tokens,
            safety_tokens=settings.max_tokens,
            truncate_chars=settings.truncate_chars,
        )

    @property
    def configured(self) -> bool:
        return self._client is not None

    def _require_client(self) -> Any:
        if self._client is None:
            raise NotConfigured("OpenAI API key is not configured")
        return self._client

    def _guard(self, piece: str) -> str:
        if estimate_tokens(piece) > self.safety_tokens:
            logger.warning(
                "embedding_input_truncated",
                estimated_tokens=estimate_tokens(piece),
                truncate_chars=self.truncate_chars,
            )
            return piece[: self.truncate_chars]
        return piece

    async def _create(self, inputs: List[str]) -> List[List[float]]:
        client = self._require_client()
        try:
            response = await client.embeddings.create(model=self.model, input=inputs)
        except Exception as exc:  # noqa: BLE001
            logger.warning("embedding_request_failed", model=self.model, error=str(exc))
            raise EmbeddingFailed(exc) from exc
        return [list(item.embedding) for item in response.data]

    async def embed(self, text: str) -> List[float]:
        """Return one embedding vector for ``text``."""

        self._require_client()
        pieces = [self._guard(piece) for piece in chunk_text(text, self.chunk_tokens)]
        if len(pieces) == 1:
            vectors = await self._create(pieces)
            return vectors[0]

        logger.debug("embedding_chunked", chunks=len(pieces), length=len(text))
        vectors: List[List[float]] = []
        for piece in pieces:
            vectors.extend(await self._create([piece]))

        dimensions = {len(vector) for vector in vectors}
        if len(dimensions) != 1:
            raise EmbeddingFailed(f"mixed embedding dimensions: {sorted(dimensions)}")
        return np.mean(np.asarray(vectors, dtype=float), axis=0).tolist()

    async def embed_many(self, texts: Sequence[str]) -> List[List[float]]:
        """Embed ``texts`` with a single request, one vector per input."""

        self._require_client()
        if not texts:
            return []
        vectors = await self._create([self._guard(text) for text in texts])
        if len(vectors) != len(texts):
            raise EmbeddingFailed(
                f"expected {len(texts)} embeddings, received {len(vectors)}"
            )
        return vectors

    async def test_connection(self) -> dict[str, Any]:
        """Embed a probe string and report the vector dimensionality."""

        vector = await self.embed(PROBE_TEXT)
        return {"ok": True, "model": self.model, "dimensions": len(vector)}
