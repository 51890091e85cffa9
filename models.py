"""Pydantic models used throughout the crawler.

Adds a compatibility shim for ``enum.StrEnum`` on Python < 3.11.
"""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
try:  # Python 3.11+
    from enum import StrEnum as _StrEnum
except ImportError:  # Python 3.10 fallback
    class _StrEnum(str, Enum):
        pass
from typing import Any
from urllib.parse import urlsplit
from uuid import uuid4

from pydantic import BaseModel, Field, ConfigDict, field_validator


SUMMARY_NOTE = "Individual pages saved separately. This is an aggregated summary."


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _new_id() -> str:
    return str(uuid4())


class CrawlMode(_StrEnum):
    """How much of the site a crawl request covers."""

    single = "single"
    smart_site = "smart_site"


class CrawlState(_StrEnum):
    """Lifecycle of one orchestration run."""

    idle = "idle"
    discovering = "discovering"
    crawling = "crawling"
    completed = "completed"
    failed = "failed"
    cancelled = "cancelled"


class PageStatus(_StrEnum):
    """Outcome of crawling a single address."""

    completed = "completed"
    failed = "failed"


class CrawlRequest(BaseModel):
    """Seed address and crawl mode supplied by the caller."""

    seed_url: str = Field(alias="url")
    mode: CrawlMode = Field(default=CrawlMode.single, alias="crawlType")

    model_config = ConfigDict(
        frozen=True,
        populate_by_name=True,
        json_schema_extra={
            "example": {
                "url": "https://example.com/docs",
                "crawlType": CrawlMode.smart_site.value,
            }
        },
    )

    @field_validator("seed_url")
    @classmethod
    def _require_http_url(cls, value: str) -> str:
        candidate = (value or "").strip()
        parts = urlsplit(candidate)
        if parts.scheme not in {"http", "https"} or not parts.hostname:
            raise ValueError(f"seed url must be an absolute http(s) address: {value!r}")
        return candidate


class PageRecord(BaseModel):
    """Content record produced for one crawled address.

    Records are immutable once built; the embedding is attached before the
    record is created so the stored document and the in-memory record always
    agree.
    """

    id: str = Field(default_factory=_new_id)
    url: str
    chunk_number: int = Field(default=1, ge=1)
    status: PageStatus = PageStatus.completed
    content: str = ""
    markdown: str = ""
    raw_markdown: str = ""
    fit_markdown: str = ""
    html: str = ""
    links_found: list[str] = Field(default_factory=list)
    embedding: list[float] | None = None
    metadata: dict[str, Any] = Field(default_factory=dict)
    created_at: datetime = Field(default_factory=_utcnow)
    completed_at: datetime | None = None
    error: str | None = None

    model_config = ConfigDict(frozen=True)

    @property
    def ok(self) -> bool:
        return self.status == PageStatus.completed

    @property
    def title(self) -> str:
        title = self.metadata.get("title")
        if title:
            return str(title)
        return urlsplit(self.url).hostname or self.url

    @classmethod
    def failed(cls, url: str, error: str, **metadata: Any) -> "PageRecord":
        """Return a failed record for ``url`` carrying ``error``."""

        now = _utcnow()
        return cls(
            url=url,
            status=PageStatus.failed,
            error=error,
            metadata=metadata,
            created_at=now,
            completed_at=now,
        )

    def to_document(self) -> dict[str, Any]:
        """Return the storage document keyed by ``(url, chunk_number)``."""

        metadata: dict[str, Any] = {
            "title": self.title,
            "record_id": self.id,
            "crawl_status": self.status.value,
            "links_found": len(self.links_found),
            "crawled_at": self.created_at.isoformat(),
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
            "source": "crawl4ai",
        }
        metadata.update(self.metadata)
        metadata["title"] = self.title
        if self.raw_markdown:
            metadata["raw_markdown"] = self.raw_markdown
        if self.fit_markdown:
            metadata["fit_markdown"] = self.fit_markdown
        if self.markdown:
            metadata["markdown"] = self.markdown
        if self.error:
            metadata["error"] = self.error

        doc: dict[str, Any] = {
            "url": self.url,
            "chunk_number": self.chunk_number,
            "content": self.content,
            "links": list(self.links_found),
            "metadata": metadata,
            "created_at": self.created_at,
        }
        if self.embedding is not None:
            doc["embedding"] = list(self.embedding)
        return doc


class CrawlSummary(BaseModel):
    """Aggregate outcome of one orchestration run.

    Bulk page content is deliberately absent: every page has already been
    stored on its own.
    """

    id: str = Field(default_factory=_new_id)
    url: str
    mode: CrawlMode
    status: CrawlState
    strategy: str | None = None
    total_pages_attempted: int = 0
    total_pages_crawled: int = 0
    total_pages_stored: int = 0
    total_batches: int = 0
    success_rate: int = 0
    first_url: str | None = None
    last_url: str | None = None
    crawled_urls: list[str] = Field(default_factory=list)
    failed_urls: list[str] = Field(default_factory=list)
    error: str | None = None
    note: str = SUMMARY_NOTE
    created_at: datetime = Field(default_factory=_utcnow)
    completed_at: datetime | None = None

    @staticmethod
    def rate(successful: int, attempted: int) -> int:
        """Return ``successful / attempted`` as a percentage rounded half up."""

        if attempted <= 0:
            return 0
        return (successful * 200 + attempted) // (2 * attempted)


class SearchResult(BaseModel):
    """Stored page returned by a similarity or text search."""

    id: str | None = None
    url: str
    title: str
    content: str = ""
    chunk_number: int | None = None
    similarity: float | None = None
    metadata: dict[str, Any] = Field(default_factory=dict)

    model_config = ConfigDict(extra="ignore")
