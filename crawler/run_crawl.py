"""Command line entry point for crawl runs.

Example::

    crawl-site --url https://example.com/docs --mode smart_site --max-pages 200
"""

from __future__ import annotations

import argparse
import asyncio
import json
import signal
import sys
from contextlib import suppress
from dataclasses import replace

import structlog

from models import CrawlMode, CrawlRequest, CrawlSummary
from mongo import MongoClient
from observability.logging import configure_logging
from retrieval.embedder import EmbeddingClient
from settings import Settings, get_settings

from .cancellation import CancellationToken
from .client import Crawl4AIClient
from .errors import NotConfigured
from .events import WILDCARD, ProgressEvent, event_payload
from .orchestrator import CrawlOrchestrator, OrchestratorConfig

logger = structlog.get_logger(__name__)


def _log_event(event: ProgressEvent) -> None:
    payload = event_payload(event)
    name = payload.pop("event")
    logger.info(name, **payload)


def _install_signal_handlers(token: CancellationToken) -> None:
    loop = asyncio.get_running_loop()
    for signum in (signal.SIGINT, signal.SIGTERM):
        # not available on every platform (e.g. Windows event loops)
        with suppress(NotImplementedError, RuntimeError):
            loop.add_signal_handler(signum, token.cancel, f"Received {signal.Signals(signum).name}")


async def run(
    request: CrawlRequest,
    settings: Settings,
    *,
    config: OrchestratorConfig,
    embeddings: bool = True,
) -> CrawlSummary:
    """Wire settings into the orchestrator and crawl ``request``."""

    store = MongoClient.from_settings(settings.mongo)
    embedder = EmbeddingClient.from_settings(settings.embeddings) if embeddings else None
    if embedder is not None and not embedder.configured:
        logger.warning("embeddings_disabled", reason="OPENAI_API_KEY not set")
        embedder = None

    token = CancellationToken()
    _install_signal_handlers(token)
    try:
        await store.ensure_indexes()
        async with Crawl4AIClient.from_settings(settings.crawl4ai) as client:
            orchestrator = CrawlOrchestrator(client, store, embedder, config=config)
            orchestrator.on(WILDCARD, _log_event)
            return await orchestrator.crawl(request, token)
    finally:
        await store.close()


def main() -> None:  # pragma: no cover - convenience CLI
    parser = argparse.ArgumentParser(description="Crawl a page or a whole site through Crawl4AI")
    parser.add_argument("--url", required=True, help="Seed URL to crawl")
    parser.add_argument(
        "--mode",
        choices=[mode.value for mode in CrawlMode],
        default=CrawlMode.single.value,
    )
    parser.add_argument("--max-pages", type=int, default=None)
    parser.add_argument("--batch-size", type=int, default=None)
    parser.add_argument("--cool-off", type=float, default=None, help="Seconds between batches")
    parser.add_argument(
        "--no-embeddings",
        action="store_true",
        help="Store pages without computing embeddings",
    )
    args = parser.parse_args()

    settings = get_settings()
    configure_logging(settings.log_level)

    try:
        request = CrawlRequest(url=args.url, crawlType=args.mode)
    except ValueError as exc:
        sys.exit(f"Invalid request: {exc}")

    config = OrchestratorConfig.from_settings(settings.crawl4ai)
    overrides = {
        "max_pages": args.max_pages,
        "batch_size": args.batch_size,
        "cool_off_delay": args.cool_off,
    }
    config = replace(config, **{k: v for k, v in overrides.items() if v is not None})

    try:
        summary = asyncio.run(
            run(request, settings, config=config, embeddings=not args.no_embeddings)
        )
    except NotConfigured as exc:
        sys.exit(str(exc))

    print(json.dumps(summary.model_dump(mode="json"), ensure_ascii=False, indent=2))
    if summary.status.value != "completed":
        sys.exit(1)


if __name__ == "__main__":  # pragma: no cover
    main()
