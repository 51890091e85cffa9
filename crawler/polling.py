"""Polling helper for asynchronous crawl tasks."""

from __future__ import annotations

import asyncio
from typing import Any, Awaitable, Callable

import structlog

from .cancellation import CancellationToken
from .errors import PollingExhausted, PollingTransportError, TaskFailed, TransportError

logger = structlog.get_logger(__name__)

DEFAULT_MAX_ATTEMPTS = 15
DEFAULT_DELAY_SECONDS = 2.0

TERMINAL_COMPLETED = "completed"
TERMINAL_FAILED = "failed"


def task_state(payload: dict[str, Any]) -> str:
    """Return the normalised task state reported in ``payload``."""

    for key in ("status", "state"):
        value = payload.get(key)
        if isinstance(value, str) and value.strip():
            return value.strip().lower()
    return "pending"


async def poll_until_done(
    fetch_status: Callable[[str], Awaitable[dict[str, Any]]],
    task_id: str,
    *,
    max_attempts: int = DEFAULT_MAX_ATTEMPTS,
    delay: float = DEFAULT_DELAY_SECONDS,
    token: CancellationToken | None = None,
) -> dict[str, Any]:
    """Query ``fetch_status(task_id)`` until the task reaches a terminal state.

    The delay between attempts is constant. A ``completed`` payload is
    returned as is; a ``failed`` payload raises :class:`TaskFailed`. When
    every attempt failed at the transport level :class:`PollingTransportError`
    is raised, otherwise :class:`PollingExhausted`.
    """

    attempts = max(1, max_attempts)
    transport_failures = 0
    last_error: TransportError | None = None

    for attempt in range(1, attempts + 1):
        if token is not None:
            token.raise_if_cancelled()
        try:
            payload = await fetch_status(task_id)
        except TransportError as exc:
            transport_failures += 1
            last_error = exc
            logger.warning(
                "task_poll_transport_failed",
                task_id=task_id,
                attempt=attempt,
                max_attempts=attempts,
                error=str(exc),
            )
        else:
            state = task_state(payload)
            if state == TERMINAL_COMPLETED:
                logger.info("task_completed", task_id=task_id, attempt=attempt)
                return payload
            if state == TERMINAL_FAILED:
                raise TaskFailed(task_id, payload.get("error") or payload.get("error_message"))
            logger.debug("task_pending", task_id=task_id, attempt=attempt, state=state)

        if attempt < attempts:
            if token is not None:
                await token.sleep(delay)
            else:
                await asyncio.sleep(delay)

    if transport_failures == attempts:
        raise PollingTransportError(
            f"Polling task {task_id} failed on every attempt: {last_error}",
            status_code=last_error.status_code if last_error else None,
        )
    raise PollingExhausted(task_id, attempts)
