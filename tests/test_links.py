"""Tests for link normalisation, filtering and prioritisation."""

import random
from urllib.parse import urlsplit

import pytest

from crawler.links import (
    REASON_DIFFERENT_DOMAIN,
    REASON_FILE_EXTENSION,
    REASON_FRAGMENT,
    REASON_LOW_VALUE,
    extract_links,
    filter_and_prioritize,
    filter_links,
    normalize_url,
    priority_of,
)

BASE = "https://example.com/"


def test_normalize_url_canonicalises_host_port_and_query():
    assert (
        normalize_url("HTTPS://Example.COM:443//docs//intro/?b=2&utm_source=x&a=1#top")
        == "https://example.com/docs/intro?a=1&b=2"
    )
    assert normalize_url("http://example.com:8080/") == "http://example.com:8080"
    assert normalize_url("mailto:someone@example.com") is None
    assert normalize_url("https://example.com:abc/") is None
    assert normalize_url("") is None


def test_priority_prefers_keywords_then_depth():
    assert priority_of("https://example.com/docs/intro") == 1
    assert priority_of("https://example.com/about/team") == 2
    assert priority_of("https://example.com") == 0


def test_filter_links_reports_rejections_with_reasons():
    links = [
        "https://other.org/page",
        "/page#section",
        "/files/report.pdf",
        "/login",
        "/static/app.js",
        "/about",
    ]
    report = filter_links(links, BASE, 10)

    assert report.accepted == ["https://example.com/about"]
    reasons = dict(report.rejected)
    assert reasons["https://other.org/page"] == REASON_DIFFERENT_DOMAIN
    assert reasons["https://example.com/page#section"] == REASON_FRAGMENT
    assert reasons["https://example.com/files/report.pdf"] == REASON_FILE_EXTENSION
    assert reasons["https://example.com/login"] == REASON_LOW_VALUE
    assert reasons["https://example.com/static/app.js"] == REASON_LOW_VALUE


def test_filter_links_drops_unparsable_and_non_http_silently():
    report = filter_links(
        ["javascript:void(0)", "mailto:a@example.com", "http://[::1", "", "/ok"],
        BASE,
        10,
    )
    assert report.accepted == ["https://example.com/ok"]
    assert report.rejected == []


def test_filter_links_orders_by_priority_and_keeps_discovery_order_for_ties():
    links = [
        "/a/b/c",
        "/blog/post",
        "/x",
        "/y",
        "/docs",
    ]
    assert filter_and_prioritize(links, BASE, 10) == [
        "https://example.com/docs",
        "https://example.com/blog/post",
        "https://example.com/x",
        "https://example.com/y",
        "https://example.com/a/b/c",
    ]


def test_filter_links_deduplicates_normalised_urls():
    links = ["/docs/", "/docs", "https://EXAMPLE.com/docs?utm_campaign=x", "/docs?b=1&a=2", "/docs?a=2&b=1"]
    assert filter_and_prioritize(links, BASE, 10) == [
        "https://example.com/docs",
        "https://example.com/docs?a=2&b=1",
    ]


def test_filter_links_respects_limit_and_empty_inputs():
    links = [f"/page-{i}" for i in range(20)]
    assert len(filter_and_prioritize(links, BASE, 7)) == 7
    assert filter_and_prioritize(links, BASE, 0) == []
    assert filter_and_prioritize([], BASE, 5) == []
    assert filter_and_prioritize(links, "not a url", 5) == []


@pytest.mark.parametrize("seed", range(5))
def test_filter_links_properties_hold_for_random_input(seed):
    rng = random.Random(seed)
    hosts = ["https://example.com", "https://Example.com", "http://other.net", ""]
    paths = ["", "/", "/docs", "/docs/", "/a/b", "/blog/x", "/img.png", "/cart", "/q?x=1"]
    links = [rng.choice(hosts) + rng.choice(paths) for _ in range(60)]
    limit = rng.randint(1, 8)

    result = filter_and_prioritize(links, BASE, limit)

    assert len(result) <= limit
    assert len(result) == len(set(result))
    assert all(urlsplit(url).hostname == "example.com" for url in result)
    assert result == filter_and_prioritize(links, BASE, limit)


def test_extract_links_resolves_relative_anchors():
    html = """
    <a href="/docs">Docs</a>
    <a href="#top">Top</a>
    <a href="mailto:x@example.com">Mail</a>
    <a href="guide.html">Guide</a>
    <a>missing</a>
    """
    assert extract_links(html, "https://example.com/start/") == [
        "https://example.com/docs",
        "https://example.com/start/guide.html",
    ]
    assert extract_links("", BASE) == []
