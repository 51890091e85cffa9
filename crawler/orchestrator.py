"""Crawl orchestration: single pages and whole sites.

A smart-site run walks an ordered chain of discovery strategies. The first
strategy that discovers the site yields a :class:`CrawlPlan` (candidate links
plus a batch callback); the plan is then filtered, prioritised and handed to
:func:`crawl_in_batches`. Pages are embedded before they reach the store and
stored as soon as their batch resolves.
"""

from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Mapping, Sequence
from urllib.parse import urlsplit
from uuid import uuid4

import structlog

from models import CrawlMode, CrawlRequest, CrawlState, CrawlSummary, PageRecord
from observability import metrics

from .batching import BatchCallback, BatchConfig, crawl_in_batches
from .cancellation import CancellationToken
from .client import DEFAULT_BROWSER_CONFIG
from .errors import (
    Cancelled,
    CrawlServiceError,
    EmbeddingFailed,
    StrategyExhausted,
    TransportError,
)
from .events import (
    CrawlCompleted,
    CrawlError,
    EventEmitter,
    Listener,
    LinksDiscovered,
    ProgressEvent,
    StatusChanged,
    UrlCrawled,
    UrlFailed,
    UrlSkipped,
)
from .extraction import (
    extract_content,
    extract_internal_links,
    extract_metadata,
    extract_results,
    extract_title,
    result_error,
    result_succeeded,
)
from .links import extract_links, filter_links, normalize_url

logger = structlog.get_logger(__name__)

NO_CONTENT_ERROR = "no content extracted"


@dataclass(frozen=True, slots=True)
class OrchestratorConfig:
    max_pages: int = 5000
    max_depth: int = 3
    strategy: str = "bfs"
    batch_size: int = 50
    cool_off_delay: float = 5.0
    max_retries: int = 3
    concurrency: int = 3

    @classmethod
    def from_settings(cls, settings) -> "OrchestratorConfig":
        """Build from :class:`settings.Crawl4AISettings`."""

        return cls(
            max_pages=settings.max_pages,
            max_depth=settings.max_depth,
            strategy=settings.strategy,
            batch_size=settings.batch_size,
            cool_off_delay=settings.cool_off_delay,
            max_retries=settings.max_retries,
            concurrency=settings.concurrency,
        )

    @property
    def batch(self) -> BatchConfig:
        return BatchConfig(
            batch_size=self.batch_size,
            cool_off_delay=self.cool_off_delay,
            max_retries=self.max_retries,
        )


@dataclass(slots=True)
class CrawlPlan:
    """Links discovered by a strategy and the callback crawling its batches."""

    links: list[str]
    crawl_batch: BatchCallback


Strategy = Callable[[str, CancellationToken], Awaitable[CrawlPlan]]


@dataclass(slots=True)
class _Run:
    request: CrawlRequest
    summary_id: str
    records: list[PageRecord] = field(default_factory=list)
    stored: int = 0
    total_batches: int = 0
    strategy: str | None = None
    error: str | None = None
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def summary(self, status: CrawlState) -> CrawlSummary:
        crawled = [record.url for record in self.records if record.ok]
        failed = [record.url for record in self.records if not record.ok]
        attempted = len(self.records)
        return CrawlSummary(
            id=self.summary_id,
            url=self.request.seed_url,
            mode=self.request.mode,
            status=status,
            strategy=self.strategy,
            total_pages_attempted=attempted,
            total_pages_crawled=len(crawled),
            total_pages_stored=self.stored,
            total_batches=self.total_batches,
            success_rate=CrawlSummary.rate(len(crawled), attempted),
            first_url=crawled[0] if crawled else None,
            last_url=crawled[-1] if crawled else None,
            crawled_urls=crawled,
            failed_urls=failed,
            error=self.error,
            created_at=self.created_at,
            completed_at=datetime.now(timezone.utc),
        )


class CrawlOrchestrator:
    """Run crawl requests against a crawl backend, a store and an embedder.

    Each instance owns its observers; register them with :meth:`on` before
    calling :meth:`crawl`.
    """

    def __init__(
        self,
        client,
        store=None,
        embedder=None,
        *,
        config: OrchestratorConfig | None = None,
    ) -> None:
        self.client = client
        self.store = store
        self.embedder = embedder
        self.config = config or OrchestratorConfig()
        self._emitter = EventEmitter()
        self._state = CrawlState.idle
        self.strategies: tuple[tuple[str, Strategy], ...] = (
            ("native_deep_crawl", self._native_deep_crawl),
            ("manual_discovery", self._manual_discovery),
        )

    @property
    def state(self) -> CrawlState:
        return self._state

    def on(self, event_name: str, callback: Listener) -> None:
        self._emitter.on(event_name, callback)

    def off(self, event_name: str, callback: Listener) -> None:
        self._emitter.off(event_name, callback)

    def _emit(self, event: ProgressEvent) -> None:
        self._emitter.emit(event)

    def _set_state(self, state: CrawlState, message: str) -> None:
        self._state = state
        self._emit(StatusChanged(state, message))

    # ------------------------------------------------------------------ #
    # entry point
    # ------------------------------------------------------------------ #

    async def crawl(
        self, request: CrawlRequest, token: CancellationToken | None = None
    ) -> CrawlSummary:
        """Crawl ``request`` and return the run summary.

        Crawl failures and cancellation never propagate: they are reported
        through the summary status and ``CrawlError`` events.
        """

        token = token or CancellationToken()
        run = _Run(request=request, summary_id=str(uuid4()))
        started = time.perf_counter()
        structlog.contextvars.bind_contextvars(crawl_id=run.summary_id, seed_url=request.seed_url)
        try:
            self._set_state(
                CrawlState.discovering,
                f"Starting {request.mode.value} crawl of {request.seed_url}",
            )
            health = await self.client.health_check()
            if not health.ok:
                logger.warning("crawl_backend_unhealthy", message=health.message)
                self._emit(
                    StatusChanged(
                        self._state,
                        f"Warning: {health.message}. Attempting crawl anyway.",
                    )
                )
            token.raise_if_cancelled()

            if request.mode == CrawlMode.single:
                await self._crawl_single(run, token)
            else:
                await self._crawl_site(run, token)
        except Cancelled as exc:
            run.error = exc.reason
            logger.info("crawl_cancelled", reason=exc.reason, pages=len(run.records))
            self._set_state(CrawlState.cancelled, exc.reason)
            self._emit(CrawlError(exc.reason, cancelled=True))
        except CrawlServiceError as exc:
            run.error = str(exc)
            logger.error("crawl_failed", error=str(exc))
            self._set_state(CrawlState.failed, str(exc))
            self._emit(CrawlError(str(exc)))
        finally:
            structlog.contextvars.unbind_contextvars("crawl_id", "seed_url")

        summary = run.summary(self._state)
        metrics.record_run(request.mode.value, summary.status.value, time.perf_counter() - started)
        logger.info(
            "crawl_finished",
            crawl_id=summary.id,
            status=summary.status.value,
            attempted=summary.total_pages_attempted,
            crawled=summary.total_pages_crawled,
            stored=summary.total_pages_stored,
            success_rate=summary.success_rate,
        )
        return summary

    # ------------------------------------------------------------------ #
    # single page
    # ------------------------------------------------------------------ #

    async def _crawl_single(self, run: _Run, token: CancellationToken) -> None:
        url = run.request.seed_url
        self._set_state(CrawlState.crawling, f"Crawling {url}")
        try:
            payload = await self.client.crawl(
                [url],
                browser_config=DEFAULT_BROWSER_CONFIG,
                crawler_config=self._page_config(extract_links=True),
                token=token,
            )
        except Cancelled:
            raise
        except CrawlServiceError as exc:
            record = PageRecord.failed(url, str(exc), page_index=1)
        else:
            token.raise_if_cancelled()
            results = extract_results(payload)
            if results:
                record = await self._build_record(url, results[0], 1)
            else:
                record = PageRecord.failed(url, "no result returned", page_index=1)

        metrics.record_page(record.ok)
        await self._persist(run, record)
        if not record.ok:
            self._emit(UrlFailed(record.url, record.error or "Unknown error"))
            raise CrawlServiceError(f"Failed to crawl {url}: {record.error}")

        self._emit(UrlCrawled(record.url, len(record.content), record.title))
        self._emit(CrawlCompleted(1, 1, 100, 0))
        self._set_state(CrawlState.completed, f"Crawled {url}")

    # ------------------------------------------------------------------ #
    # whole site
    # ------------------------------------------------------------------ #

    async def _crawl_site(self, run: _Run, token: CancellationToken) -> None:
        seed = run.request.seed_url
        failures: list[tuple[str, BaseException]] = []
        for name, strategy in self.strategies:
            token.raise_if_cancelled()
            logger.info("strategy_started", strategy=name)
            try:
                plan = await strategy(seed, token)
            except Cancelled:
                raise
            except Exception as exc:  # noqa: BLE001
                logger.warning("strategy_failed", strategy=name, error=str(exc))
                failures.append((name, exc))
                continue
            run.strategy = name
            await self._execute_plan(run, plan, token)
            return
        raise StrategyExhausted(failures)

    async def _execute_plan(self, run: _Run, plan: CrawlPlan, token: CancellationToken) -> None:
        seed = run.request.seed_url
        report = filter_links([seed, *plan.links], seed, self.config.max_pages)
        for url, reason in report.rejected:
            self._emit(UrlSkipped(url, reason))
        self._emit(LinksDiscovered(len(plan.links), len(report.accepted), tuple(report.accepted)))
        logger.info(
            "links_discovered",
            strategy=run.strategy,
            total=len(plan.links),
            accepted=len(report.accepted),
            rejected=len(report.rejected),
        )
        token.raise_if_cancelled()

        self._set_state(
            CrawlState.crawling,
            f"Crawling {len(report.accepted)} pages with {run.strategy}",
        )

        async def on_record(record: PageRecord) -> None:
            await self._persist(run, record)

        result = await crawl_in_batches(
            report.accepted,
            plan.crawl_batch,
            self.config.batch,
            emitter=self._emitter,
            token=token,
            on_record=on_record,
        )
        run.total_batches = result.total_batches
        attempted = len(result.records)
        rate = CrawlSummary.rate(result.succeeded, attempted)
        self._emit(CrawlCompleted(attempted, result.succeeded, rate, result.total_batches))
        self._set_state(
            CrawlState.completed,
            f"Crawled {result.succeeded} of {attempted} pages ({rate}%)",
        )

    async def _native_deep_crawl(self, seed: str, token: CancellationToken) -> CrawlPlan:
        payload = await self.client.crawl(
            [seed],
            browser_config=DEFAULT_BROWSER_CONFIG,
            crawler_config={
                "cache_mode": "bypass",
                "extract_links": True,
                "same_domain_only": True,
                "verbose": True,
                "max_depth": self.config.max_depth,
                "max_pages": self.config.max_pages,
                "crawl_strategy": self.config.strategy,
            },
            token=token,
        )
        if payload.get("success") is False:
            raise CrawlServiceError(
                f"Native deep crawl reported failure: {result_error(payload)}"
            )
        results = extract_results(payload)
        if not results:
            raise CrawlServiceError("Native deep crawl returned no results")

        links = extract_internal_links(results[0])

        async def crawl_batch(urls: list[str]) -> list[PageRecord]:
            reply = await self.client.crawl(
                urls,
                browser_config=DEFAULT_BROWSER_CONFIG,
                crawler_config=self._page_config(extract_links=False),
                token=token,
            )
            return await self._records_for(urls, extract_results(reply))

        return CrawlPlan(links=links, crawl_batch=crawl_batch)

    async def _manual_discovery(self, seed: str, token: CancellationToken) -> CrawlPlan:
        payload = await self.client.crawl(
            [seed],
            browser_config=DEFAULT_BROWSER_CONFIG,
            crawler_config=self._page_config(extract_links=True),
            token=token,
        )
        results = extract_results(payload)
        if not results or not result_succeeded(results[0]):
            detail = result_error(results[0]) if results else "no result returned"
            raise CrawlServiceError(f"Manual discovery could not fetch {seed}: {detail}")

        seed_result = results[0]
        links = extract_internal_links(seed_result)
        if not links:
            links = extract_links(extract_content(seed_result).html, seed)

        semaphore = asyncio.Semaphore(max(1, self.config.concurrency))

        async def crawl_one(url: str, index: int) -> tuple[PageRecord, bool]:
            async with semaphore:
                token.raise_if_cancelled()
                try:
                    reply = await self.client.crawl(
                        [url],
                        browser_config=DEFAULT_BROWSER_CONFIG,
                        crawler_config=self._page_config(extract_links=False),
                        token=token,
                    )
                except Cancelled:
                    raise
                except TransportError as exc:
                    return PageRecord.failed(url, str(exc), page_index=index), True
                except CrawlServiceError as exc:
                    return PageRecord.failed(url, str(exc), page_index=index), False
            found = extract_results(reply)
            if not found:
                return PageRecord.failed(url, "no result returned", page_index=index), False
            return await self._build_record(url, found[0], index), False

        async def crawl_batch(urls: list[str]) -> list[PageRecord]:
            tasks = [
                asyncio.ensure_future(crawl_one(url, index))
                for index, url in enumerate(urls, start=1)
            ]
            try:
                outcomes = await asyncio.gather(*tasks)
            finally:
                # siblings of a cancelled page must not issue further requests
                for task in tasks:
                    task.cancel()
                await asyncio.gather(*tasks, return_exceptions=True)
            if outcomes and all(transport for _, transport in outcomes):
                raise TransportError(
                    f"Every request of the batch failed: {outcomes[0][0].error}"
                )
            return [record for record, _ in outcomes]

        return CrawlPlan(links=links, crawl_batch=crawl_batch)

    # ------------------------------------------------------------------ #
    # records
    # ------------------------------------------------------------------ #

    @staticmethod
    def _page_config(*, extract_links: bool) -> dict[str, Any]:
        return {"cache_mode": "bypass", "extract_links": extract_links, "verbose": True}

    async def _records_for(
        self, urls: Sequence[str], results: Sequence[Mapping[str, Any]]
    ) -> list[PageRecord]:
        """Match backend results to the requested ``urls``.

        Results are matched by normalised address; when they carry no usable
        address but the counts agree they are matched by position.
        """

        wanted = {normalize_url(url) or url: url for url in urls}
        matched: dict[str, Mapping[str, Any]] = {}
        for result in results:
            key = normalize_url(str(result.get("url") or ""))
            if key in wanted and wanted[key] not in matched:
                matched[wanted[key]] = result
        if not matched and len(results) == len(urls):
            matched = dict(zip(urls, results))

        records: list[PageRecord] = []
        for index, url in enumerate(urls, start=1):
            result = matched.get(url)
            if result is not None:
                records.append(await self._build_record(url, result, index))
        return records

    async def _build_record(
        self, url: str, result: Mapping[str, Any], index: int
    ) -> PageRecord:
        if not result_succeeded(result):
            return PageRecord.failed(url, result_error(result), page_index=index)

        extracted = extract_content(result)
        if not extracted.content.strip():
            return PageRecord.failed(url, NO_CONTENT_ERROR, page_index=index)

        metadata = extract_metadata(result)
        title = extract_title(result)
        if title:
            metadata["title"] = title
        metadata["page_index"] = index
        metadata["content_source"] = extracted.source

        embedding = None
        if self.embedder is not None and self.embedder.configured:
            heading = title or urlsplit(url).hostname or url
            try:
                embedding = await self.embedder.embed(f"{heading}\n\n{extracted.embedding_text}")
            except EmbeddingFailed as exc:
                metrics.embedding_failures_total.inc()
                logger.warning("page_embedding_failed", url=url, error=str(exc))
                metadata["embedding_error"] = str(exc)

        return PageRecord(
            url=url,
            content=extracted.content,
            markdown=extracted.markdown,
            raw_markdown=extracted.raw_markdown,
            fit_markdown=extracted.fit_markdown,
            html=extracted.html,
            links_found=extract_internal_links(result),
            embedding=embedding,
            metadata=metadata,
            completed_at=datetime.now(timezone.utc),
        )

    async def _persist(self, run: _Run, record: PageRecord) -> None:
        run.records.append(record)
        if not record.ok or self.store is None:
            return
        record = record.model_copy(
            update={"metadata": {**record.metadata, "crawl_id": run.summary_id}}
        )
        try:
            await self.store.upsert_page(record)
        except Exception as exc:  # noqa: BLE001
            logger.warning("page_store_failed", url=record.url, error=str(exc))
            return
        run.stored += 1
