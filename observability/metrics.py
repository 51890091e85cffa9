"""Prometheus metrics for crawl runs."""

from __future__ import annotations

from prometheus_client import Counter, Histogram

pages_total = Counter("crawl_pages_total", "Crawled pages by outcome", ["status"])
batch_attempts_total = Counter("crawl_batch_attempts_total", "Batch crawl attempts", ["outcome"])
batches_exhausted_total = Counter(
    "crawl_batches_exhausted_total", "Batches that failed after every retry"
)
embedding_failures_total = Counter(
    "crawl_embedding_failures_total", "Pages stored without an embedding"
)
runs_total = Counter("crawl_runs_total", "Finished crawl runs", ["mode", "status"])
run_duration_seconds = Histogram(
    "crawl_run_duration_seconds",
    "Wall clock duration of a crawl run",
    buckets=(1, 5, 15, 60, 300, 900, 1800, 3600, 7200),
)


def record_page(ok: bool) -> None:
    pages_total.labels("completed" if ok else "failed").inc()


def record_run(mode: str, status: str, duration: float) -> None:
    """Count a finished run and observe its duration in seconds."""
    runs_total.labels(mode, status).inc()
    run_duration_seconds.observe(duration)
