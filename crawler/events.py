"""Progress events and the synchronous observer surface.

Each event is a small frozen dataclass with an ``event_name`` class
attribute. :class:`EventEmitter` delivers events to the callbacks registered
for that name (plus the ``"*"`` wildcard) in emission order. Nothing is
queued: listeners registered after an event was emitted never see it.
"""

from __future__ import annotations

from collections import defaultdict
from dataclasses import asdict, dataclass
from typing import Any, Callable, ClassVar, Union

import structlog

from models import CrawlState

logger = structlog.get_logger(__name__)

WILDCARD = "*"


@dataclass(frozen=True, slots=True)
class StatusChanged:
    event_name: ClassVar[str] = "status_changed"

    status: CrawlState
    message: str


@dataclass(frozen=True, slots=True)
class LinksDiscovered:
    event_name: ClassVar[str] = "links_discovered"

    total: int
    internal: int
    urls: tuple[str, ...]


@dataclass(frozen=True, slots=True)
class BatchStarted:
    event_name: ClassVar[str] = "batch_started"

    batch_number: int
    total_batches: int
    urls: tuple[str, ...]


@dataclass(frozen=True, slots=True)
class BatchCompleted:
    event_name: ClassVar[str] = "batch_completed"

    batch_number: int
    total_batches: int
    succeeded: int
    failed: int
    attempts: int


@dataclass(frozen=True, slots=True)
class UrlCrawled:
    event_name: ClassVar[str] = "url_crawled"

    url: str
    content_length: int
    title: str


@dataclass(frozen=True, slots=True)
class UrlSkipped:
    event_name: ClassVar[str] = "url_skipped"

    url: str
    reason: str


@dataclass(frozen=True, slots=True)
class UrlFailed:
    event_name: ClassVar[str] = "url_failed"

    url: str
    error: str


@dataclass(frozen=True, slots=True)
class CrawlCompleted:
    event_name: ClassVar[str] = "crawl_completed"

    total_urls: int
    successful_urls: int
    success_rate: int
    total_batches: int


@dataclass(frozen=True, slots=True)
class CrawlError:
    event_name: ClassVar[str] = "crawl_error"

    error: str
    cancelled: bool = False


ProgressEvent = Union[
    StatusChanged,
    LinksDiscovered,
    BatchStarted,
    BatchCompleted,
    UrlCrawled,
    UrlSkipped,
    UrlFailed,
    CrawlCompleted,
    CrawlError,
]

Listener = Callable[[ProgressEvent], Any]

EVENT_NAMES: frozenset[str] = frozenset(
    cls.event_name
    for cls in (
        StatusChanged,
        LinksDiscovered,
        BatchStarted,
        BatchCompleted,
        UrlCrawled,
        UrlSkipped,
        UrlFailed,
        CrawlCompleted,
        CrawlError,
    )
)


def event_payload(event: ProgressEvent) -> dict[str, Any]:
    """Return ``event`` as a plain dict tagged with its name."""

    payload = asdict(event)
    payload["event"] = event.event_name
    return payload


class EventEmitter:
    """Per-instance publish/subscribe registry for :data:`ProgressEvent`."""

    def __init__(self) -> None:
        self._listeners: dict[str, list[Listener]] = defaultdict(list)

    def on(self, event_name: str, callback: Listener) -> None:
        if event_name != WILDCARD and event_name not in EVENT_NAMES:
            raise ValueError(f"unknown event name: {event_name!r}")
        self._listeners[event_name].append(callback)

    def off(self, event_name: str, callback: Listener) -> None:
        listeners = self._listeners.get(event_name)
        if not listeners:
            return
        # equality rather than identity so bound methods can be removed
        self._listeners[event_name] = [cb for cb in listeners if cb != callback]

    def emit(self, event: ProgressEvent) -> None:
        """Deliver ``event`` synchronously to every matching listener."""

        targets = list(self._listeners.get(event.event_name, ()))
        targets.extend(self._listeners.get(WILDCARD, ()))
        for callback in targets:
            try:
                callback(event)
            except Exception as exc:  # noqa: BLE001
                logger.warning(
                    "event_listener_failed",
                    event_name=event.event_name,
                    listener=getattr(callback, "__qualname__", repr(callback)),
                    error=str(exc),
                )
