"""Sequential batch scheduling with cool-off delays and retry back-off."""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from typing import Awaitable, Callable, List, Optional, Sequence

import structlog

from models import PageRecord
from observability import metrics

from .cancellation import CancellationToken
from .errors import Cancelled
from .events import BatchCompleted, BatchStarted, EventEmitter, UrlCrawled, UrlFailed

logger = structlog.get_logger(__name__)

BatchCallback = Callable[[List[str]], Awaitable[Sequence[PageRecord]]]
RecordHook = Callable[[PageRecord], Awaitable[None]]
Sleeper = Callable[[float], Awaitable[None]]

NO_RESULT_ERROR = "no result returned"


@dataclass(frozen=True, slots=True)
class BatchConfig:
    batch_size: int = 50
    cool_off_delay: float = 5.0
    max_retries: int = 3


@dataclass(slots=True)
class BatchRunResult:
    """Records of every batch in completion order."""

    records: list[PageRecord] = field(default_factory=list)
    total_batches: int = 0
    exhausted_batches: int = 0

    @property
    def succeeded(self) -> int:
        return sum(1 for record in self.records if record.ok)


def partition(urls: Sequence[str], batch_size: int) -> list[list[str]]:
    """Split ``urls`` into ``ceil(len(urls) / batch_size)`` contiguous batches."""

    if batch_size < 1:
        raise ValueError("batch_size must be positive")
    count = math.ceil(len(urls) / batch_size)
    return [list(urls[i * batch_size : (i + 1) * batch_size]) for i in range(count)]


def _resolve_batch(batch: list[str], returned: Sequence[PageRecord]) -> list[PageRecord]:
    by_url: dict[str, PageRecord] = {}
    for record in returned:
        by_url.setdefault(record.url, record)
    resolved: list[PageRecord] = []
    for url in batch:
        record = by_url.get(url)
        resolved.append(record if record is not None else PageRecord.failed(url, NO_RESULT_ERROR))
    return resolved


async def _attempt_batch(
    batch: list[str],
    crawl_one_batch: BatchCallback,
    config: BatchConfig,
    token: CancellationToken,
    sleep: Sleeper,
    batch_number: int,
) -> tuple[Optional[Sequence[PageRecord]], int, Optional[BaseException]]:
    max_attempts = max(1, config.max_retries)
    last_error: Optional[BaseException] = None
    for attempt in range(1, max_attempts + 1):
        try:
            returned = await crawl_one_batch(list(batch))
        except Cancelled:
            raise
        except Exception as exc:  # noqa: BLE001
            last_error = exc
            metrics.batch_attempts_total.labels("failed").inc()
            logger.warning(
                "batch_attempt_failed",
                batch=batch_number,
                attempt=attempt,
                max_attempts=max_attempts,
                error=str(exc),
            )
            if attempt < max_attempts:
                await sleep(config.cool_off_delay * attempt)
                token.raise_if_cancelled()
            continue
        metrics.batch_attempts_total.labels("succeeded").inc()
        return returned, attempt, None
    return None, max_attempts, last_error


async def crawl_in_batches(
    urls: Sequence[str],
    crawl_one_batch: BatchCallback,
    config: BatchConfig,
    *,
    emitter: EventEmitter | None = None,
    token: CancellationToken | None = None,
    on_record: RecordHook | None = None,
    sleep: Sleeper | None = None,
) -> BatchRunResult:
    """Crawl ``urls`` batch by batch, strictly one batch at a time.

    Each batch gets ``config.max_retries`` attempts; once exhausted every URL
    of the batch becomes a failed record and the next batch still runs.
    ``on_record`` is awaited for each record as soon as its batch resolves.
    A batch whose call returned after cancellation was requested is discarded
    and :class:`Cancelled` is raised.
    """

    token = token or CancellationToken()
    sleep = sleep or token.sleep
    emit = emitter.emit if emitter is not None else (lambda event: None)

    batches = partition(urls, config.batch_size)
    result = BatchRunResult(total_batches=len(batches))

    for number, batch in enumerate(batches, start=1):
        token.raise_if_cancelled()
        emit(BatchStarted(number, result.total_batches, tuple(batch)))
        logger.info("batch_started", batch=number, total=result.total_batches, size=len(batch))

        returned, attempts, error = await _attempt_batch(
            batch, crawl_one_batch, config, token, sleep, number
        )
        if token.cancelled:
            logger.info("batch_discarded", batch=number, reason=token.reason)
            raise Cancelled(token.reason)

        if returned is None:
            result.exhausted_batches += 1
            metrics.batches_exhausted_total.inc()
            message = f"Batch {number} failed after {attempts} attempts: {error}"
            records = [PageRecord.failed(url, message) for url in batch]
        else:
            records = _resolve_batch(batch, returned)

        for record in records:
            result.records.append(record)
            metrics.record_page(record.ok)
            if on_record is not None:
                await on_record(record)
            if record.ok:
                emit(UrlCrawled(record.url, len(record.content), record.title))
            else:
                emit(UrlFailed(record.url, record.error or "Unknown error"))

        succeeded = sum(1 for record in records if record.ok)
        emit(
            BatchCompleted(
                number,
                result.total_batches,
                succeeded,
                len(records) - succeeded,
                attempts,
            )
        )
        logger.info(
            "batch_completed",
            batch=number,
            succeeded=succeeded,
            failed=len(records) - succeeded,
            attempts=attempts,
        )

        if number < result.total_batches:
            await sleep(config.cool_off_delay)
            token.raise_if_cancelled()

    return result
