"""MongoDB client helpers used by the crawler."""

from __future__ import annotations

import re
from typing import Any
from urllib.parse import quote_plus

import structlog
from motor.motor_asyncio import AsyncIOMotorClient
from pymongo.errors import ConfigurationError

from models import PageRecord, SearchResult

logger = structlog.get_logger(__name__)

DEFAULT_PAGES_COLLECTION = "crawled_pages"
DEFAULT_VECTOR_INDEX = "crawled_pages_vector"


class MongoClient:
    """Wrapper around the asynchronous MongoDB client.

    Parameters
    ----------
    host, port, username, password, database, auth_database:
        Connection parameters used when an explicit ``uri`` is not provided.
    uri:
        Optional full MongoDB URI. When supplied, connection parameters are
        derived from it.
    pages_collection, vector_index:
        Collection crawled pages are stored in and the Atlas vector search
        index defined on its ``embedding`` field.

    Notes
    -----
    All database operations log exceptions before re-raising so the caller can
    decide whether a failure aborts the run.
    """

    def __init__(
        self,
        host: str,
        port: int,
        username: str | None,
        password: str | None,
        database: str,
        auth_database: str,
        *,
        uri: str | None = None,
        pages_collection: str = DEFAULT_PAGES_COLLECTION,
        vector_index: str = DEFAULT_VECTOR_INDEX,
    ):
        try:
            if uri:
                self.url = uri
                self.client = AsyncIOMotorClient(uri)
                try:
                    db = self.client.get_default_database()
                except ConfigurationError:
                    db = self.client[database]
                self.database_name = db.name
                self.db = db
            else:
                has_user = username is not None and str(username) != ""
                has_pass = password is not None and str(password) != ""
                if has_user and has_pass:
                    u = quote_plus(str(username))
                    p = quote_plus(str(password))
                    auth_part = f"{u}:{p}@"
                    auth_db = f"/{auth_database}"
                else:
                    auth_part = ""
                    auth_db = ""

                self.url = f"mongodb://{auth_part}{host}:{port}{auth_db}"
                self.client = AsyncIOMotorClient(self.url)
                self.database_name = database
                self.db = self.client[database]
        except Exception as exc:
            logger.error("mongo_client_init_failed", uri=uri or getattr(self, "url", uri), error=str(exc))
            raise
        self.pages_collection = pages_collection
        self.vector_index = vector_index
        self._indexes_ready = False

    @classmethod
    def from_settings(cls, settings) -> "MongoClient":
        """Create a client from :class:`settings.MongoSettings`."""

        return cls(
            settings.host,
            settings.port,
            settings.username,
            settings.password,
            settings.database,
            settings.auth,
            uri=settings.uri,
            pages_collection=settings.pages,
            vector_index=settings.vector_index,
        )

    @property
    def pages(self):
        return self.db[self.pages_collection]

    async def close(self) -> None:
        self.client.close()

    async def test_connection(self) -> bool:
        """Return ``True`` when the server answers a ``ping``."""

        try:
            await self.db.command("ping")
        except Exception as exc:  # noqa: BLE001
            logger.warning("mongo_ping_failed", error=str(exc))
            return False
        return True

    async def ensure_indexes(self) -> None:
        """Create the unique ``(url, chunk_number)`` index if it is missing."""

        if self._indexes_ready:
            return
        try:
            await self.pages.create_index(
                [("url", 1), ("chunk_number", 1)],
                name="pages_url_chunk_unique",
                unique=True,
            )
        except Exception as exc:  # noqa: BLE001
            logger.debug(
                "mongo_index_create_failed",
                collection=self.pages_collection,
                index="pages_url_chunk_unique",
                error=str(exc),
            )
            return
        self._indexes_ready = True

    async def upsert_page(self, record: PageRecord) -> None:
        """Insert or replace the document stored for ``record``.

        Writes are keyed by ``(url, chunk_number)`` so repeating the same
        record leaves exactly one document behind. The stored document is
        replaced whole, so fields the new record lacks (an embedding, an
        error) do not survive from an earlier crawl.
        """

        doc = record.to_document()
        key = {"url": doc["url"], "chunk_number": doc["chunk_number"]}
        try:
            await self.pages.replace_one(key, doc, upsert=True)
        except Exception as exc:
            logger.error(
                "mongo_upsert_page_failed",
                collection=self.pages_collection,
                url=record.url,
                error=str(exc),
            )
            raise

    async def count_pages(self, query: dict | None = None) -> int:
        try:
            return await self.pages.count_documents(query or {})
        except Exception as exc:
            logger.error("mongo_count_failed", collection=self.pages_collection, error=str(exc))
            raise

    async def get_pages(self, limit: int = 100) -> list[dict[str, Any]]:
        """Return up to ``limit`` stored pages, newest first."""

        try:
            cursor = (
                self.pages.find({}, {"_id": False, "embedding": False})
                .sort("created_at", -1)
                .limit(limit)
            )
            return [doc async for doc in cursor]
        except Exception as exc:
            logger.error("mongo_get_pages_failed", collection=self.pages_collection, error=str(exc))
            raise

    async def _vector_search(self, vector: list[float], limit: int) -> list[SearchResult]:
        pipeline = [
            {
                "$vectorSearch": {
                    "index": self.vector_index,
                    "path": "embedding",
                    "queryVector": list(vector),
                    "numCandidates": max(limit * 10, limit),
                    "limit": limit,
                }
            },
            {
                "$project": {
                    "_id": 1,
                    "url": 1,
                    "content": 1,
                    "chunk_number": 1,
                    "metadata": 1,
                    "score": {"$meta": "vectorSearchScore"},
                }
            },
        ]
        cursor = self.pages.aggregate(pipeline)
        return [_to_result(doc, similarity=doc.get("score")) async for doc in cursor]

    async def _text_search(self, query: str, limit: int) -> list[SearchResult]:
        pattern = {"$regex": re.escape(query), "$options": "i"}
        cursor = (
            self.pages.find(
                {"$or": [{"content": pattern}, {"metadata.title": pattern}]},
                {"embedding": False},
            )
            .sort("created_at", -1)
            .limit(limit)
        )
        return [_to_result(doc) async for doc in cursor]

    async def search_pages(
        self,
        query: str,
        *,
        vector: list[float] | None = None,
        limit: int = 10,
    ) -> list[SearchResult]:
        """Search stored pages by vector similarity or by text.

        A vector search failure (e.g. a missing Atlas index) falls back to a
        case-insensitive text match on content and title.
        """

        if vector is not None:
            try:
                return await self._vector_search(vector, limit)
            except Exception as exc:  # noqa: BLE001
                logger.warning(
                    "mongo_vector_search_failed",
                    collection=self.pages_collection,
                    index=self.vector_index,
                    error=str(exc),
                )
        try:
            return await self._text_search(query, limit)
        except Exception as exc:
            logger.error(
                "mongo_search_failed",
                collection=self.pages_collection,
                query=query,
                error=str(exc),
            )
            raise


def _to_result(doc: dict[str, Any], *, similarity: float | None = None) -> SearchResult:
    metadata = doc.get("metadata") or {}
    url = doc.get("url", "")
    return SearchResult(
        id=str(doc["_id"]) if doc.get("_id") is not None else None,
        url=url,
        title=metadata.get("title") or url,
        content=doc.get("content", ""),
        chunk_number=doc.get("chunk_number"),
        similarity=similarity,
        metadata=metadata,
    )
