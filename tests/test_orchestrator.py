"""End-to-end tests for the crawl orchestrator against a mocked backend."""

import asyncio
import json

import httpx
import pytest

from crawler.cancellation import CancellationToken
from crawler.client import Crawl4AIClient
from crawler.events import CrawlError, StatusChanged
from crawler.orchestrator import CrawlOrchestrator, OrchestratorConfig
from models import CrawlMode, CrawlRequest, CrawlState
from retrieval.embedder import EmbeddingClient

BASE = "http://crawl4ai.local"
SEED = "https://example.com/"


def _page(url, text=None, **extra):
    result = {
        "url": url,
        "success": True,
        "markdown": {"raw_markdown": text or f"Content of {url}", "fit_markdown": ""},
        "metadata": {"title": f"Title {url}"},
    }
    result.update(extra)
    return result


class Backend:
    """Scriptable stand-in for the Crawl4AI HTTP API."""

    def __init__(
        self,
        *,
        links=(),
        html="",
        native=True,
        manual=True,
        healthy=True,
        pages=None,
        on_batch=None,
    ):
        self.links = list(links)
        self.html = html
        self.native = native
        self.manual = manual
        self.healthy = healthy
        self.pages = dict(pages or {})
        self.on_batch = on_batch
        self.requests = []

    @property
    def batches(self):
        return [urls for kind, urls in self.requests if kind == "batch"]

    @staticmethod
    def _kind(config):
        if config.get("same_domain_only"):
            return "native"
        if config.get("extract_links"):
            return "discover"
        return "batch"

    def _result(self, url, **extra):
        if url in self.pages:
            return self.pages[url]
        return _page(url, **extra)

    def __call__(self, request: httpx.Request) -> httpx.Response:
        if request.url.path == "/health":
            return httpx.Response(200 if self.healthy else 503)
        body = json.loads(request.content)
        urls = body["urls"]
        kind = self._kind(body["crawler_config"])
        self.requests.append((kind, urls))

        if kind == "native":
            if not self.native:
                return httpx.Response(500, text="deep crawl unsupported")
            internal = [{"href": link} for link in self.links]
            return httpx.Response(
                200,
                json={"success": True, "results": [self._result(urls[0], links={"internal": internal})]},
            )
        if kind == "discover":
            if not self.manual:
                return httpx.Response(500, text="manual fetch failed")
            extra = {"cleaned_html": self.html} if self.html else {}
            return httpx.Response(200, json={"success": True, "results": [self._result(urls[0], **extra)]})

        if self.on_batch is not None:
            self.on_batch(urls, len(self.batches))
        return httpx.Response(200, json={"success": True, "results": [self._result(url) for url in urls]})


def _orchestrator(backend, store, embedder=None, **overrides):
    transport = httpx.MockTransport(backend)
    client = Crawl4AIClient(
        BASE,
        "key",
        poll_delay=0,
        client_factory=lambda: httpx.AsyncClient(transport=transport),
    )
    config = dict(max_pages=10, batch_size=5, cool_off_delay=0, max_retries=2, concurrency=2)
    config.update(overrides)
    orchestrator = CrawlOrchestrator(client, store, embedder, config=OrchestratorConfig(**config))
    events = []
    orchestrator.on("*", events.append)
    return orchestrator, events


def _statuses(events):
    return [event.status for event in events if isinstance(event, StatusChanged)]


@pytest.mark.asyncio
async def test_single_page_crawl(fake_store):
    backend = Backend(pages={"https://example.com/a": _page("https://example.com/a", "hello")})
    orchestrator, events = _orchestrator(backend, fake_store)

    summary = await orchestrator.crawl(CrawlRequest(url="https://example.com/a"))

    assert summary.status == CrawlState.completed
    assert (summary.total_pages_attempted, summary.total_pages_crawled) == (1, 1)
    assert summary.success_rate == 100
    doc = fake_store.docs[("https://example.com/a", 1)]
    assert doc["content"] == "hello"
    assert doc["metadata"]["title"] == "Title https://example.com/a"
    assert _statuses(events) == [CrawlState.discovering, CrawlState.crawling, CrawlState.completed]
    assert [e.event_name for e in events][-2:] == ["crawl_completed", "status_changed"]
    assert orchestrator.state == CrawlState.completed


@pytest.mark.asyncio
async def test_stored_pages_carry_the_run_id(fake_store):
    orchestrator, _ = _orchestrator(Backend(links=["https://example.com/p0"]), fake_store)

    summary = await orchestrator.crawl(CrawlRequest(url=SEED, crawlType="smart_site"))

    assert len(fake_store.docs) == 2
    for doc in fake_store.docs.values():
        assert doc["metadata"]["crawl_id"] == summary.id
        assert doc["metadata"]["record_id"] != summary.id


@pytest.mark.asyncio
async def test_single_page_transport_failure_reports_failed(fake_store):
    backend = Backend(manual=False)
    orchestrator, events = _orchestrator(backend, fake_store)

    summary = await orchestrator.crawl(CrawlRequest(url="https://example.com/a"))

    assert summary.status == CrawlState.failed
    assert summary.failed_urls == ["https://example.com/a"]
    assert summary.success_rate == 0
    assert fake_store.docs == {}
    assert isinstance(events[-1], CrawlError)
    assert events[-1].cancelled is False


@pytest.mark.asyncio
async def test_smart_site_prioritises_and_batches(fake_store):
    links = [f"https://example.com/page-{i}" for i in range(12)]
    backend = Backend(links=links)
    orchestrator, events = _orchestrator(backend, fake_store, max_pages=10, batch_size=5)

    summary = await orchestrator.crawl(CrawlRequest(url=SEED, crawlType=CrawlMode.smart_site))

    assert summary.status == CrawlState.completed
    assert summary.strategy == "native_deep_crawl"
    assert [len(batch) for batch in backend.batches] == [5, 5]
    crawled = [url for batch in backend.batches for url in batch]
    assert crawled == ["https://example.com"] + links[:9]
    assert summary.total_pages_attempted == 10
    assert summary.total_batches == 2
    assert summary.success_rate == 100
    assert summary.total_pages_stored == 10
    assert len(fake_store.docs) == 10
    discovered = next(e for e in events if e.event_name == "links_discovered")
    assert (discovered.total, discovered.internal) == (12, 10)
    completed = next(e for e in events if e.event_name == "crawl_completed")
    assert (completed.total_urls, completed.successful_urls, completed.total_batches) == (10, 10, 2)


@pytest.mark.asyncio
async def test_success_rate_counts_failed_pages(fake_store):
    links = ["https://example.com/ok", "https://example.com/broken", "https://example.com/empty"]
    backend = Backend(
        links=links,
        pages={
            "https://example.com/broken": {"url": "https://example.com/broken", "success": False, "error_message": "404"},
            "https://example.com/empty": {"url": "https://example.com/empty", "success": True, "markdown": ""},
        },
    )
    orchestrator, _ = _orchestrator(backend, fake_store)

    summary = await orchestrator.crawl(CrawlRequest(url=SEED, crawlType="smart_site"))

    assert summary.total_pages_attempted == 4
    assert summary.total_pages_crawled == 2
    assert summary.success_rate == 50
    assert set(summary.failed_urls) == {"https://example.com/broken", "https://example.com/empty"}
    assert ("https://example.com/broken", 1) not in fake_store.docs


@pytest.mark.asyncio
async def test_native_failure_falls_back_to_manual_discovery(fake_store):
    html = '<a href="/docs">Docs</a><a href="/about">About</a><a href="https://other.org/x">x</a>'
    backend = Backend(native=False, html=html)
    orchestrator, events = _orchestrator(backend, fake_store)

    summary = await orchestrator.crawl(CrawlRequest(url=SEED, crawlType="smart_site"))

    assert summary.status == CrawlState.completed
    assert summary.strategy == "manual_discovery"
    assert summary.error is None
    assert summary.crawled_urls == [
        "https://example.com",
        "https://example.com/docs",
        "https://example.com/about",
    ]
    # manual discovery crawls each page with its own request
    assert all(len(batch) == 1 for batch in backend.batches)
    skipped = [e for e in events if e.event_name == "url_skipped"]
    assert [(e.url, e.reason) for e in skipped] == [("https://other.org/x", "different_domain")]


@pytest.mark.asyncio
async def test_all_strategies_failing_reports_exhaustion(fake_store):
    backend = Backend(native=False, manual=False)
    orchestrator, events = _orchestrator(backend, fake_store)

    summary = await orchestrator.crawl(CrawlRequest(url=SEED, crawlType="smart_site"))

    assert summary.status == CrawlState.failed
    assert summary.error.startswith("All crawl methods failed.")
    assert "native_deep_crawl" in summary.error
    assert "manual_discovery" in summary.error
    assert isinstance(events[-1], CrawlError)
    assert orchestrator.state == CrawlState.failed


@pytest.mark.asyncio
async def test_cancellation_mid_second_batch(fake_store):
    token = CancellationToken()
    links = [f"https://example.com/p{i}" for i in range(5)]

    def on_batch(urls, number):
        if number == 2:
            token.cancel("stopped by user")

    backend = Backend(links=links, on_batch=on_batch)
    orchestrator, events = _orchestrator(backend, fake_store, batch_size=2, max_pages=6)

    summary = await orchestrator.crawl(CrawlRequest(url=SEED, crawlType="smart_site"), token)

    assert len(backend.batches) == 2
    assert summary.status == CrawlState.cancelled
    assert set(fake_store.docs) == {("https://example.com", 1), ("https://example.com/p0", 1)}
    assert summary.total_pages_attempted == 2
    assert isinstance(events[-1], CrawlError)
    assert events[-1].cancelled is True
    assert "batch_started" in [e.event_name for e in events]


@pytest.mark.asyncio
async def test_cancellation_stops_pending_manual_pages(fake_store):
    token = CancellationToken()
    html = "".join(f'<a href="/p{i}">p{i}</a>' for i in range(4))

    def on_batch(urls, number):
        if number == 2:
            token.cancel("stopped by user")

    backend = Backend(native=False, html=html, on_batch=on_batch)
    orchestrator, events = _orchestrator(backend, fake_store, concurrency=1)

    summary = await orchestrator.crawl(CrawlRequest(url=SEED, crawlType="smart_site"), token)
    requests_at_return = len(backend.requests)
    await asyncio.sleep(0)

    assert summary.status == CrawlState.cancelled
    assert len(backend.batches) == 2
    assert len(backend.requests) == requests_at_return
    assert fake_store.docs == {}
    assert events[-1].cancelled is True


@pytest.mark.asyncio
async def test_embedding_outage_still_persists_content(fake_store, fake_openai):
    embedder = EmbeddingClient("key", client=fake_openai(error=RuntimeError("embeddings down")))
    orchestrator, _ = _orchestrator(Backend(), fake_store, embedder)

    summary = await orchestrator.crawl(CrawlRequest(url="https://example.com/a"))

    assert summary.status == CrawlState.completed
    doc = fake_store.docs[("https://example.com/a", 1)]
    assert "embedding" not in doc
    assert "embeddings down" in doc["metadata"]["embedding_error"]


@pytest.mark.asyncio
async def test_embedding_is_attached_before_storage(fake_store, fake_openai):
    openai = fake_openai(vectors=[[0.1, 0.2, 0.3]])
    embedder = EmbeddingClient("key", client=openai)
    orchestrator, _ = _orchestrator(Backend(), fake_store, embedder)

    await orchestrator.crawl(CrawlRequest(url="https://example.com/a"))

    doc = fake_store.docs[("https://example.com/a", 1)]
    assert doc["embedding"] == [0.1, 0.2, 0.3]
    (request,) = openai.embeddings.requests
    assert request[0].startswith("Title https://example.com/a\n\n")


@pytest.mark.asyncio
async def test_unhealthy_backend_only_warns(fake_store):
    backend = Backend(healthy=False)
    orchestrator, events = _orchestrator(backend, fake_store)

    summary = await orchestrator.crawl(CrawlRequest(url="https://example.com/a"))

    assert summary.status == CrawlState.completed
    warnings = [e for e in events if isinstance(e, StatusChanged) and e.message.startswith("Warning")]
    assert len(warnings) == 1


@pytest.mark.asyncio
async def test_store_failure_does_not_abort_run(fake_store_factory):
    store = fake_store_factory(fail_urls={"https://example.com/p0"})
    backend = Backend(links=["https://example.com/p0", "https://example.com/p1"])
    orchestrator, _ = _orchestrator(backend, store)

    summary = await orchestrator.crawl(CrawlRequest(url=SEED, crawlType="smart_site"))

    assert summary.status == CrawlState.completed
    assert summary.total_pages_crawled == 3
    assert summary.total_pages_stored == 2


@pytest.mark.asyncio
async def test_manual_batch_transport_failures_are_retried(fake_store):
    class FlakyBackend(Backend):
        def __call__(self, request):
            body = json.loads(request.content) if request.content else {}
            if body and self._kind(body["crawler_config"]) == "batch":
                self.requests.append(("batch", body["urls"]))
                return httpx.Response(503, text="overloaded")
            return super().__call__(request)

    backend = FlakyBackend(native=False, html='<a href="/x">x</a>')
    orchestrator, _ = _orchestrator(backend, fake_store, max_retries=3, concurrency=1)

    summary = await orchestrator.crawl(CrawlRequest(url=SEED, crawlType="smart_site"))

    # two urls in one batch, three attempts each
    assert len(backend.batches) == 6
    assert summary.status == CrawlState.completed
    assert summary.total_pages_crawled == 0
    assert summary.success_rate == 0


@pytest.mark.asyncio
async def test_listeners_can_be_removed(fake_store):
    orchestrator, _ = _orchestrator(Backend(), fake_store)
    seen = []
    orchestrator.on("url_crawled", seen.append)
    orchestrator.off("url_crawled", seen.append)

    await orchestrator.crawl(CrawlRequest(url="https://example.com/a"))

    assert seen == []
