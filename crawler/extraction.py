"""Resolvers that pull content out of loosely shaped crawl backend replies.

Crawl4AI replies differ between versions: ``markdown`` may be a string or a
mapping of variants, results may arrive inline or wrapped in a task payload,
links may be strings or ``{"href": ...}`` objects. Every lookup is expressed
as an ordered list of ``(name, resolver)`` pairs tried in turn.
"""

from __future__ import annotations

import json
from dataclasses import dataclass
from typing import Any, Callable, Iterable, Mapping, Sequence

Resolver = Callable[[Mapping[str, Any]], Any]


def _text(value: Any) -> str | None:
    if value is None:
        return None
    if isinstance(value, str):
        return value if value.strip() else None
    if isinstance(value, (list, dict)):
        if not value:
            return None
        return json.dumps(value, ensure_ascii=False)
    return str(value)


def field_resolver(name: str) -> Resolver:
    """Return a resolver reading the top-level text field ``name``."""

    def resolve(result: Mapping[str, Any]) -> str | None:
        return _text(result.get(name))

    return resolve


def markdown_resolver(variant: str) -> Resolver:
    """Return a resolver for one markdown ``variant``.

    A plain string ``markdown`` field counts as the raw variant.
    """

    def resolve(result: Mapping[str, Any]) -> str | None:
        markdown = result.get("markdown")
        if isinstance(markdown, Mapping):
            return _text(markdown.get(variant))
        if variant == "raw_markdown":
            return _text(markdown)
        return None

    return resolve


CONTENT_RESOLVERS: tuple[tuple[str, Resolver], ...] = (
    ("extracted_content", field_resolver("extracted_content")),
    ("raw_markdown", markdown_resolver("raw_markdown")),
    ("fit_markdown", markdown_resolver("fit_markdown")),
    ("cleaned_html", field_resolver("cleaned_html")),
    ("content", field_resolver("content")),
    ("html", field_resolver("html")),
)

HTML_RESOLVERS: tuple[tuple[str, Resolver], ...] = (
    ("cleaned_html", field_resolver("cleaned_html")),
    ("html", field_resolver("html")),
)


def _results_list(payload: Mapping[str, Any]) -> list[dict] | None:
    results = payload.get("results")
    if isinstance(results, list):
        return [item for item in results if isinstance(item, Mapping)]
    return None


def _nested_results(payload: Mapping[str, Any]) -> list[dict] | None:
    nested = payload.get("result")
    if isinstance(nested, Mapping):
        inner = _results_list(nested)
        if inner is not None:
            return inner
        return [dict(nested)]
    if isinstance(nested, list):
        return [item for item in nested if isinstance(item, Mapping)]
    return None


def _bare_result(payload: Mapping[str, Any]) -> list[dict] | None:
    if any(key in payload for key in ("markdown", "html", "cleaned_html", "extracted_content")):
        return [dict(payload)]
    return None


RESULT_RESOLVERS: tuple[tuple[str, Resolver], ...] = (
    ("results", _results_list),
    ("result", _nested_results),
    ("bare", _bare_result),
)


def resolve_first(
    resolvers: Sequence[tuple[str, Resolver]], payload: Mapping[str, Any]
) -> tuple[str | None, Any]:
    """Return ``(name, value)`` of the first resolver yielding a value."""

    for name, resolver in resolvers:
        value = resolver(payload)
        if value is not None:
            return name, value
    return None, None


@dataclass(frozen=True, slots=True)
class ExtractedContent:
    """Best available page content and the variants it was chosen from."""

    content: str
    source: str | None
    raw_markdown: str
    fit_markdown: str
    markdown: str
    html: str

    @property
    def embedding_text(self) -> str:
        """Markdown-first text used for the page embedding."""

        return self.fit_markdown or self.raw_markdown or self.markdown or self.content


def extract_content(result: Mapping[str, Any]) -> ExtractedContent:
    """Resolve the content hierarchy of a single crawl result."""

    source, content = resolve_first(CONTENT_RESOLVERS, result)
    raw_markdown = markdown_resolver("raw_markdown")(result) or ""
    fit_markdown = markdown_resolver("fit_markdown")(result) or ""
    _, html = resolve_first(HTML_RESOLVERS, result)
    return ExtractedContent(
        content=content or "",
        source=source,
        raw_markdown=raw_markdown,
        fit_markdown=fit_markdown,
        markdown=raw_markdown or fit_markdown,
        html=html or "",
    )


def extract_results(payload: Mapping[str, Any]) -> list[dict]:
    """Return the per-URL result entries carried by ``payload``."""

    _, results = resolve_first(RESULT_RESOLVERS, payload)
    return list(results or [])


def extract_internal_links(result: Mapping[str, Any]) -> list[str]:
    """Return absolute internal links reported for ``result``."""

    links = result.get("links")
    if isinstance(links, Mapping):
        entries: Iterable[Any] = links.get("internal") or []
    elif isinstance(links, list):
        entries = links
    else:
        entries = []

    hrefs: list[str] = []
    for entry in entries:
        href = entry.get("href") if isinstance(entry, Mapping) else entry
        if isinstance(href, str) and href.startswith(("http://", "https://")):
            hrefs.append(href)
    return hrefs


def extract_title(result: Mapping[str, Any]) -> str | None:
    metadata = result.get("metadata")
    if isinstance(metadata, Mapping):
        title = metadata.get("title")
        if isinstance(title, str) and title.strip():
            return title.strip()
    return None


def extract_metadata(result: Mapping[str, Any]) -> dict[str, Any]:
    metadata = result.get("metadata")
    return dict(metadata) if isinstance(metadata, Mapping) else {}


def result_succeeded(result: Mapping[str, Any]) -> bool:
    """Return ``False`` only when the backend explicitly reported failure."""

    return result.get("success") is not False


def result_error(result: Mapping[str, Any]) -> str:
    for key in ("error_message", "error"):
        value = result.get(key)
        if isinstance(value, str) and value.strip():
            return value.strip()
    return "Unknown error"
