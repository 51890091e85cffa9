"""Exceptions raised by the crawl client, poller, embedder and orchestrator."""

from __future__ import annotations

from typing import Sequence


class CrawlServiceError(Exception):
    """Base class for every crawl related failure."""

    pass


class NotConfigured(CrawlServiceError):
    """Raised when a required address or credential is missing."""

    pass


class TransportError(CrawlServiceError):
    """Raised when a single remote call fails at the network or HTTP level."""

    def __init__(self, message: str, *, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class PollingTransportError(TransportError):
    """Raised when every poll attempt failed before reaching the backend."""

    pass


class TaskFailed(CrawlServiceError):
    """Raised when an asynchronous crawl task reports ``failed``."""

    def __init__(self, task_id: str, cause: str | None = None) -> None:
        self.task_id = task_id
        self.cause = cause or "Unknown error"
        super().__init__(f"Task {task_id} failed: {self.cause}")


class PollingExhausted(CrawlServiceError):
    """Raised when a task is still running after the last poll attempt."""

    def __init__(self, task_id: str, attempts: int) -> None:
        self.task_id = task_id
        self.attempts = attempts
        super().__init__(f"Task {task_id} still running after {attempts} polling attempts")


class EmbeddingFailed(CrawlServiceError):
    """Raised when the embedding backend could not produce a vector."""

    def __init__(self, cause: BaseException | str) -> None:
        self.cause = cause
        detail = str(cause) or type(cause).__name__
        super().__init__(f"Embedding generation failed: {detail}")


class StrategyExhausted(CrawlServiceError):
    """Raised when every smart-site strategy failed.

    ``failures`` keeps ``(strategy_name, exception)`` pairs in the order the
    strategies were attempted.
    """

    def __init__(self, failures: Sequence[tuple[str, BaseException]]) -> None:
        self.failures = list(failures)
        parts = [f"{name}: {exc}" for name, exc in self.failures]
        super().__init__("All crawl methods failed. " + ". ".join(parts))


class Cancelled(CrawlServiceError):
    """Raised at a phase boundary once cancellation has been requested."""

    def __init__(self, reason: str | None = None) -> None:
        self.reason = reason or "Crawl was cancelled"
        super().__init__(self.reason)
