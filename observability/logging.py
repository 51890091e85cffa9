"""Logging configuration utilities with in-memory ring buffer.

Provides ``get_recent_logs(limit)`` so observers of a running crawl can show
the last N log lines without touching files. The buffer captures standard
library logging records as plain text in FIFO order while automatically
dropping entries older than seven days.
"""

from __future__ import annotations

import json
import logging
from collections import deque
from datetime import datetime, timedelta
from functools import partial
from typing import List

import structlog

get_logger = structlog.get_logger


_ring: deque[str] | None = None

LOG_RETENTION_DAYS = 7
RING_CAPACITY = 2000
_TIMESTAMP_FORMAT = "%Y-%m-%d %H:%M:%S,%f"


def _extract_timestamp(entry: str) -> datetime | None:
    """Parse the ``logging`` timestamp prefix from a log entry."""

    try:
        date_part, time_part, *_ = entry.split(" ", 2)
    except ValueError:
        return None
    stamp = f"{date_part} {time_part}"
    try:
        return datetime.strptime(stamp, _TIMESTAMP_FORMAT)
    except ValueError:
        return None


class _RingBufferHandler(logging.Handler):
    def __init__(self, capacity: int = RING_CAPACITY) -> None:
        super().__init__()
        self.buffer: deque[str] = deque(maxlen=capacity)

    def emit(self, record: logging.LogRecord) -> None:  # noqa: D401
        try:
            msg = self.format(record)
        except Exception:  # pragma: no cover - best-effort formatting
            msg = record.getMessage()
        self.buffer.append(msg)


def _resolve_level(level: str | int) -> int:
    if isinstance(level, int):
        return level
    resolved = logging.getLevelName(str(level).upper())
    return resolved if isinstance(resolved, int) else logging.INFO


def configure_logging(level: str | int = "INFO") -> None:
    """Configure stdlib logging and structlog.

    Context variables bound with ``structlog.contextvars`` (the crawl id and
    seed address of the current run) are merged into every entry.
    """

    numeric_level = _resolve_level(level)
    logging.basicConfig(level=numeric_level, format="%(message)s")
    logging.getLogger().setLevel(numeric_level)
    # Attach in-memory ring buffer handler (idempotent)
    global _ring
    if _ring is None:
        handler = _RingBufferHandler(capacity=RING_CAPACITY)
        handler.setFormatter(logging.Formatter("%(asctime)s %(levelname)s %(message)s"))
        root = logging.getLogger()
        root.addHandler(handler)
        _ring = handler.buffer
    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.stdlib.filter_by_level,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.stdlib.add_log_level,
            structlog.processors.JSONRenderer(
                serializer=partial(json.dumps, ensure_ascii=False, default=str)
            ),
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=False,
    )


def get_recent_logs(limit: int = 200) -> List[str]:
    """Return up to ``limit`` log lines from the last seven days.

    Entries older than ``LOG_RETENTION_DAYS`` are ignored to keep the
    in-memory buffer small.
    """

    buf = _ring or deque()
    if limit <= 0:
        return []

    cutoff = datetime.now() - timedelta(days=LOG_RETENTION_DAYS)
    selected: list[str] = []

    for entry in reversed(buf):
        ts = _extract_timestamp(entry)
        if ts is not None and ts < cutoff:
            continue
        selected.append(entry)
        if len(selected) >= limit:
            break

    return list(reversed(selected))
