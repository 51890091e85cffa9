"""Pytest configuration with basic asyncio support and in-process fakes."""

import asyncio
import types

import pytest


def pytest_configure(config):
    """Register the ``asyncio`` marker for asynchronous tests."""
    config.addinivalue_line(
        "markers", "asyncio: mark async test to run in event loop"
    )


@pytest.hookimpl(tryfirst=True)
def pytest_pyfunc_call(pyfuncitem):
    """Run functions marked with ``asyncio`` in a new event loop."""
    if pyfuncitem.get_closest_marker("asyncio"):
        loop = asyncio.new_event_loop()
        asyncio.set_event_loop(loop)
        try:
            funcargs = {
                name: pyfuncitem.funcargs[name]
                for name in pyfuncitem._fixtureinfo.argnames
            }
            loop.run_until_complete(pyfuncitem.obj(**funcargs))
        finally:
            loop.close()
            asyncio.set_event_loop(None)
        return True


class FakeStore:
    """In-memory stand-in for :class:`mongo.MongoClient` keyed like the real one."""

    def __init__(self, fail_urls=()):
        self.docs: dict[tuple[str, int], dict] = {}
        self.calls: list[str] = []
        self.fail_urls = set(fail_urls)

    async def upsert_page(self, record):
        self.calls.append(record.url)
        if record.url in self.fail_urls:
            raise RuntimeError("write refused")
        doc = record.to_document()
        self.docs[(doc["url"], doc["chunk_number"])] = doc

    async def search_pages(self, query, *, vector=None, limit=10):
        self.calls.append(("search", query, vector, limit))
        return []


class FakeEmbeddings:
    """Replacement for ``AsyncOpenAI.embeddings`` returning canned vectors."""

    def __init__(self, vectors=None, error=None):
        self.vectors = list(vectors or [])
        self.error = error
        self.requests: list[list[str]] = []

    async def create(self, *, model, input):
        self.requests.append(list(input))
        if self.error is not None:
            raise self.error
        data = []
        for index, _ in enumerate(input):
            if self.vectors:
                vector = self.vectors.pop(0)
            else:
                vector = [float(index), 1.0, 0.0]
            data.append(types.SimpleNamespace(embedding=vector))
        return types.SimpleNamespace(data=data)


@pytest.fixture
def fake_store():
    return FakeStore()


@pytest.fixture
def fake_store_factory():
    return FakeStore


@pytest.fixture
def fake_openai():
    """Return a factory building objects shaped like ``AsyncOpenAI``."""

    def build(vectors=None, error=None):
        return types.SimpleNamespace(embeddings=FakeEmbeddings(vectors, error))

    return build
