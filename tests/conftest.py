"""Pytest configuration and fixtures for the NodeRef search tests."""

import asyncio
from datetime import datetime, timedelta, timezone

import pytest

from noderef.backends.base import PageInfo, SearchPage, SourceQueryError
from noderef.models.result import RawResultItem
from noderef.models.source import SourceTarget

BASE_TIME = datetime(2025, 3, 1, 12, 0, tzinfo=timezone.utc)


class FakeBackend:
    """Scripted backend: pages keyed by (source_id, query_text, skip_count).

    A gate registered for (source_id, query_text) holds that request until
    the test sets the event.
    """

    name = "Fake"

    def __init__(self):
        self.pages: dict[tuple[int, str, int], SearchPage | Exception] = {}
        self.gates: dict[tuple[int, str], asyncio.Event] = {}
        self.calls: list[tuple[int, str, int, int]] = []

    def add_page(self, source_id, items, *, query="q", skip_count=0, **pagination):
        self.pages[(source_id, query, skip_count)] = SearchPage(
            items=list(items), pagination=PageInfo(**pagination)
        )

    def fail(self, source_id, *, query="q", skip_count=0, exc=None):
        self.pages[(source_id, query, skip_count)] = exc or ConnectionError("connection refused")

    def gate(self, source_id, query="q") -> asyncio.Event:
        event = asyncio.Event()
        self.gates[(source_id, query)] = event
        return event

    async def query(self, source, query_text, *, max_items, skip_count):
        self.calls.append((source.id, query_text, skip_count, max_items))
        gate = self.gates.get((source.id, query_text))
        if gate is not None:
            await gate.wait()
        result = self.pages.get((source.id, query_text, skip_count))
        if result is None:
            raise SourceQueryError(source, "no page scripted")
        if isinstance(result, Exception):
            raise result
        return result


def make_raw(item_id: str, minutes: int = 0, **fields) -> RawResultItem:
    """Raw hit modified ``minutes`` after BASE_TIME."""
    fields.setdefault("name", f"{item_id}.txt")
    fields.setdefault("modified_at", BASE_TIME + timedelta(minutes=minutes))
    return RawResultItem(id=item_id, **fields)


@pytest.fixture
def raw_item():
    return make_raw


@pytest.fixture
def fake_backend() -> FakeBackend:
    return FakeBackend()


@pytest.fixture
def source_a() -> SourceTarget:
    return SourceTarget(id=1, address="http://repo-a.example", display_name="Repo A")


@pytest.fixture
def source_b() -> SourceTarget:
    return SourceTarget(id=2, address="http://repo-b.example", display_name="Repo B")
