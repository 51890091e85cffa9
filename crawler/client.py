"""Async HTTP client for a remote Crawl4AI service.

The service exposes ``POST /crawl``, ``GET /task/{id}`` and ``GET /health``.
A crawl request either answers with results inline or with a ``task_id``
that is polled until the task reaches a terminal state.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Callable, Optional, Sequence

import httpx
import structlog

from .cancellation import CancellationToken
from .errors import NotConfigured, TransportError
from .polling import DEFAULT_DELAY_SECONDS, DEFAULT_MAX_ATTEMPTS, poll_until_done

logger = structlog.get_logger(__name__)

DEFAULT_TIMEOUT = 300.0
HEALTH_TIMEOUT = 15.0

DEFAULT_BROWSER_CONFIG: dict[str, Any] = {
    "headless": True,
    "ignore_https_errors": True,
    "viewport_width": 1920,
    "viewport_height": 1080,
}


@dataclass(frozen=True, slots=True)
class HealthStatus:
    """Outcome of a reachability probe."""

    ok: bool
    message: str


def auth_header(api_key: str) -> str:
    """Return the ``Authorization`` value for ``api_key``.

    Keys that already carry a scheme (``"Bearer abc"``, ``"Token abc"``) are
    sent unchanged.
    """

    key = api_key.strip()
    if " " in key:
        return key
    return f"Bearer {key}"


class Crawl4AIClient:
    """Thin wrapper around :class:`httpx.AsyncClient` for the crawl backend.

    Accepts an optional ``client_factory`` for tests to inject a custom
    ``httpx.AsyncClient`` (e.g., with ``MockTransport``).
    """

    def __init__(
        self,
        base_url: str,
        api_key: str | None = None,
        *,
        timeout: float = DEFAULT_TIMEOUT,
        health_timeout: float = HEALTH_TIMEOUT,
        poll_attempts: int = DEFAULT_MAX_ATTEMPTS,
        poll_delay: float = DEFAULT_DELAY_SECONDS,
        client_factory: Optional[Callable[[], httpx.AsyncClient]] = None,
    ) -> None:
        base = (base_url or "").strip().rstrip("/")
        if not base:
            raise NotConfigured("Crawl4AI API URL is not configured")
        self.base_url = base
        self.timeout = timeout
        self.health_timeout = health_timeout
        self.poll_attempts = poll_attempts
        self.poll_delay = poll_delay

        headers = {"Content-Type": "application/json"}
        if api_key and api_key.strip():
            headers["Authorization"] = auth_header(api_key)
        self._headers = headers

        if client_factory is None:
            self._client = httpx.AsyncClient(
                base_url=self.base_url,
                headers=headers,
                timeout=timeout,
            )
        else:
            self._client = client_factory()

    @classmethod
    def from_settings(cls, settings, **kwargs: Any) -> "Crawl4AIClient":
        """Create a client from :class:`settings.Crawl4AISettings`."""

        return cls(
            settings.api_url,
            settings.api_key,
            timeout=settings.request_timeout,
            health_timeout=settings.health_timeout,
            poll_attempts=settings.poll_attempts,
            poll_delay=settings.poll_delay,
            **kwargs,
        )

    async def __aenter__(self) -> "Crawl4AIClient":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self._client.aclose()

    def _url(self, path: str) -> str:
        return f"{self.base_url}{path}"

    async def _request(
        self,
        method: str,
        path: str,
        *,
        json: dict[str, Any] | None = None,
        timeout: float | None = None,
    ) -> dict[str, Any]:
        try:
            response = await self._client.request(
                method,
                self._url(path),
                json=json,
                headers=self._headers,
                timeout=timeout if timeout is not None else self.timeout,
            )
        except httpx.HTTPError as exc:
            logger.warning("crawl4ai_request_failed", method=method, path=path, error=str(exc))
            raise TransportError(f"{method} {path} failed: {exc}") from exc

        if response.status_code >= 400:
            detail = response.text[:500]
            logger.warning(
                "crawl4ai_http_error",
                method=method,
                path=path,
                status_code=response.status_code,
                detail=detail,
            )
            raise TransportError(
                f"Crawl4AI API error: {response.status_code} {detail}".strip(),
                status_code=response.status_code,
            )

        try:
            payload = response.json()
        except ValueError as exc:
            raise TransportError(
                f"{method} {path} returned invalid JSON", status_code=response.status_code
            ) from exc
        if not isinstance(payload, dict):
            raise TransportError(
                f"{method} {path} returned unexpected payload", status_code=response.status_code
            )
        return payload

    async def fetch_task(self, task_id: str) -> dict[str, Any]:
        """Return the current status payload of ``task_id``."""

        return await self._request("GET", f"/task/{task_id}", timeout=self.health_timeout)

    async def poll_task(
        self, task_id: str, *, token: CancellationToken | None = None
    ) -> dict[str, Any]:
        """Poll ``task_id`` until it completes or fails."""

        return await poll_until_done(
            self.fetch_task,
            task_id,
            max_attempts=self.poll_attempts,
            delay=self.poll_delay,
            token=token,
        )

    async def crawl(
        self,
        urls: Sequence[str],
        *,
        browser_config: dict[str, Any] | None = None,
        crawler_config: dict[str, Any] | None = None,
        token: CancellationToken | None = None,
    ) -> dict[str, Any]:
        """Submit ``urls`` for crawling and return the backend reply.

        Replies carrying a ``task_id`` without inline results are polled until
        the task completes.
        """

        body = {
            "urls": list(urls),
            "browser_config": dict(browser_config or DEFAULT_BROWSER_CONFIG),
            "crawler_config": dict(crawler_config or {}),
        }
        logger.debug("crawl4ai_submit", urls=len(body["urls"]))
        payload = await self._request("POST", "/crawl", json=body)

        task_id = payload.get("task_id")
        if task_id and not payload.get("results"):
            logger.info("crawl4ai_task_submitted", task_id=task_id)
            payload = await self.poll_task(str(task_id), token=token)
        return payload

    async def health_check(self) -> HealthStatus:
        """Probe ``GET /health``.

        Any reply below 500 counts as reachable; server errors, timeouts and
        connection failures do not.
        """

        try:
            response = await self._client.get(
                self._url("/health"),
                headers=self._headers,
                timeout=self.health_timeout,
            )
        except httpx.TimeoutException:
            return HealthStatus(False, "Crawl4AI health check timed out")
        except httpx.HTTPError as exc:
            return HealthStatus(False, f"Crawl4AI unreachable: {exc}")

        if response.status_code >= 500:
            return HealthStatus(False, f"Crawl4AI returned {response.status_code}")
        return HealthStatus(True, f"Crawl4AI reachable ({response.status_code})")
