"""Application settings models."""

from __future__ import annotations

from functools import lru_cache
from pydantic import ConfigDict, Field
from pydantic_settings import BaseSettings


class Crawl4AISettings(BaseSettings):
    """Settings for the remote crawl backend and the batch crawler.

    Environment variables follow the ``CRAWL4AI_`` prefix. For example,
    ``CRAWL4AI_API_URL`` and ``CRAWL4AI_API_KEY`` point the client at the
    backend while ``CRAWL4AI_BATCH_SIZE`` and ``CRAWL4AI_COOL_OFF_DELAY``
    shape the batch schedule of smart site crawls.
    """

    api_url: str = ""
    api_key: str | None = None

    max_depth: int = 3
    max_pages: int = 5000
    strategy: str = "bfs"

    batch_size: int = 50
    cool_off_delay: float = 5.0
    max_retries: int = 3
    concurrency: int = 3

    request_timeout: float = 300.0
    health_timeout: float = 15.0
    poll_attempts: int = 15
    poll_delay: float = 2.0

    model_config = ConfigDict(extra="ignore", env_prefix="CRAWL4AI_")


class EmbeddingSettings(BaseSettings):
    """OpenAI embedding parameters.

    The credential is read from ``OPENAI_API_KEY``; the remaining knobs use
    the ``EMBEDDINGS_`` prefix.
    """

    api_key: str | None = Field(default=None, alias="OPENAI_API_KEY")
    model: str = "text-embedding-3-small"
    chunk_tokens: int = 4500
    max_tokens: int = 7000
    truncate_chars: int = 18000

    model_config = ConfigDict(extra="ignore", env_prefix="EMBEDDINGS_", populate_by_name=True)


class MongoSettings(BaseSettings):
    """Settings for MongoDB connection.

    Environment variables follow the ``MONGO_`` prefix. ``MONGO_URI`` takes
    precedence over the discrete host/port/credential settings.
    ``MONGO_PAGES`` names the collection crawled pages are stored in.
    """

    uri: str | None = None
    host: str = "localhost"
    port: int = 27017
    username: str | None = None
    password: str | None = None
    database: str = "crawler"
    auth: str = "admin"

    pages: str = "crawled_pages"
    vector_index: str = "crawled_pages_vector"

    model_config = ConfigDict(extra="ignore", env_prefix="MONGO_")


class Settings(BaseSettings):
    """Top level application settings loaded from ``.env``.

    Nested models use environment prefixes such as ``CRAWL4AI_`` and ``MONGO_``.
    The :class:`pydantic_settings.BaseSettings` machinery automatically reads these
    variables when the application starts.
    """

    debug: bool = False
    log_level: str = Field(default="INFO", alias="LOG_LEVEL")

    crawl4ai: Crawl4AISettings = Field(default_factory=Crawl4AISettings)
    embeddings: EmbeddingSettings = Field(default_factory=EmbeddingSettings)
    mongo: MongoSettings = Field(default_factory=MongoSettings)

    model_config = ConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_nested_delimiter="__",
        case_sensitive=False,
        extra="ignore",
        populate_by_name=True,
    )


@lru_cache(maxsize=1)
def get_settings() -> "Settings":
    """Return cached application settings."""

    return Settings()
