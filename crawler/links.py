"""Link discovery helpers: normalisation, filtering and prioritisation.

Everything here is pure: no I/O, no events, deterministic for identical
input. The orchestrator turns :class:`LinkReport` rejections into
``UrlSkipped`` events itself.
"""

from __future__ import annotations

import re
import urllib.parse as urlparse
from dataclasses import dataclass, field
from typing import Iterable, List

from bs4 import BeautifulSoup

SKIP_EXTENSIONS: tuple[str, ...] = (
    ".pdf",
    ".doc",
    ".docx",
    ".xls",
    ".xlsx",
    ".ppt",
    ".pptx",
    ".zip",
    ".rar",
    ".tar",
    ".gz",
    ".exe",
    ".dmg",
    ".pkg",
    ".jpg",
    ".jpeg",
    ".png",
    ".gif",
    ".svg",
    ".webp",
    ".mp3",
    ".mp4",
    ".avi",
    ".mov",
    ".wav",
    ".flv",
)

LOW_VALUE_PATTERNS: tuple[re.Pattern[str], ...] = (
    re.compile(r"/(login|register|signup|signin|auth)\b", re.IGNORECASE),
    re.compile(r"/(cart|checkout|payment|billing)\b", re.IGNORECASE),
    re.compile(r"/(admin|wp-admin)\b", re.IGNORECASE),
    re.compile(r"\.(css|js|json|txt|xml)$", re.IGNORECASE),
)

PRIORITY_KEYWORDS = re.compile(
    r"/(docs|documentation|api|guide|tutorial|blog|news|product|reference)",
    re.IGNORECASE,
)

DROP_QUERY_PARAMS = {
    "utm_source",
    "utm_medium",
    "utm_campaign",
    "utm_term",
    "utm_content",
    "utm_referrer",
    "yclid",
    "gclid",
    "fbclid",
}

REASON_DIFFERENT_DOMAIN = "different_domain"
REASON_FRAGMENT = "fragment"
REASON_FILE_EXTENSION = "file_extension"
REASON_LOW_VALUE = "low_value_pattern"


@dataclass(slots=True)
class LinkReport:
    """Accepted links in priority order plus ``(url, reason)`` rejections."""

    accepted: list[str] = field(default_factory=list)
    rejected: list[tuple[str, str]] = field(default_factory=list)


def normalize_url(raw_url: str) -> str | None:
    """Return a canonical representation of ``raw_url`` suitable for deduplication."""

    if not raw_url:
        return None
    candidate = raw_url.strip()
    if not candidate:
        return None

    try:
        parsed = urlparse.urlsplit(candidate)
        port = parsed.port
    except ValueError:
        return None
    scheme = (parsed.scheme or "").lower()
    host = (parsed.hostname or "").lower()
    if scheme not in {"http", "https"} or not host:
        return None

    if port and not ((scheme == "https" and port == 443) or (scheme == "http" and port == 80)):
        netloc = f"{host}:{port}"
    else:
        netloc = host

    path = parsed.path or ""
    if path:
        path = re.sub(r"/{2,}", "/", path)
    if path.endswith("/") and path not in {"", "/"}:
        path = path.rstrip("/")
    if path == "/":
        path = ""

    query_pairs = urlparse.parse_qsl(parsed.query, keep_blank_values=False)
    filtered_pairs = sorted(
        (k, v) for k, v in query_pairs if k and k.lower() not in DROP_QUERY_PARAMS
    )
    query = urlparse.urlencode(filtered_pairs, doseq=True)

    return urlparse.urlunsplit((scheme, netloc, path, query, ""))


def path_depth(url: str) -> int:
    """Return the number of non-empty path segments of ``url``."""

    return len([segment for segment in urlparse.urlsplit(url).path.split("/") if segment])


def priority_of(url: str) -> int:
    """Return the crawl priority of ``url``; lower values are crawled sooner."""

    depth = path_depth(url)
    if PRIORITY_KEYWORDS.search(urlparse.urlsplit(url).path):
        return depth - 1
    return depth


def _rejection_reason(url: str, parts: urlparse.SplitResult, base_host: str) -> str | None:
    if (parts.hostname or "").lower() != base_host:
        return REASON_DIFFERENT_DOMAIN
    if "#" in url:
        return REASON_FRAGMENT
    path = parts.path.lower()
    if any(path.endswith(ext) for ext in SKIP_EXTENSIONS):
        return REASON_FILE_EXTENSION
    if any(pattern.search(path) for pattern in LOW_VALUE_PATTERNS):
        return REASON_LOW_VALUE
    return None


def filter_links(links: Iterable[str], base_url: str, max_results: int) -> LinkReport:
    """Filter, deduplicate, prioritise and truncate ``links``.

    Relative links are resolved against ``base_url``. Unparsable links are
    dropped without a rejection entry; every other rejected link is reported
    with a short reason tag.
    """

    report = LinkReport()
    base_host = (urlparse.urlsplit(base_url).hostname or "").lower()
    if not base_host or max_results <= 0:
        return report

    seen: set[str] = set()
    candidates: list[str] = []
    for raw in links:
        if not isinstance(raw, str) or not raw.strip():
            continue
        try:
            absolute = urlparse.urljoin(base_url, raw.strip())
            parts = urlparse.urlsplit(absolute)
            parts.port  # raises ValueError on a malformed port
        except ValueError:
            continue
        if parts.scheme.lower() not in {"http", "https"} or not parts.hostname:
            continue

        reason = _rejection_reason(absolute, parts, base_host)
        if reason is not None:
            report.rejected.append((absolute, reason))
            continue

        normalized = normalize_url(absolute)
        if not normalized or normalized in seen:
            continue
        seen.add(normalized)
        candidates.append(normalized)

    # sorted() is stable: equal priorities keep discovery order
    prioritized = sorted(candidates, key=priority_of)
    report.accepted = prioritized[:max_results]
    return report


def filter_and_prioritize(links: Iterable[str], base_url: str, max_results: int) -> List[str]:
    """Return deduplicated same-host links ordered by crawl priority."""

    return filter_links(links, base_url, max_results).accepted


def extract_links(html: str, base_url: str) -> List[str]:
    """Extract absolute links from anchors in ``html`` relative to ``base_url``."""

    if not html:
        return []
    soup = BeautifulSoup(html, "html.parser")
    links: list[str] = []
    for anchor in soup.find_all("a", href=True):
        href = str(anchor["href"]).strip()
        if not href or href.startswith("#"):
            continue
        candidate = urlparse.urljoin(base_url, href)
        if not candidate.lower().startswith(("http://", "https://")):
            continue
        links.append(candidate)
    return links
