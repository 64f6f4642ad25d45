"""Base protocol for all search backends."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Protocol, runtime_checkable

from pydantic import BaseModel

from noderef.models.result import RawResultItem
from noderef.models.source import SourceTarget


class SourceQueryError(RuntimeError):
    """A remote source could not answer a page request."""

    def __init__(self, source: SourceTarget, detail: str) -> None:
        super().__init__(detail)
        self.source = source
        self.detail = detail


class PageInfo(BaseModel):
    """Pagination metadata as reported by the remote source. Every field is optional."""

    count: int | None = None
    has_more_items: bool | None = None
    total_items: int | None = None
    skip_count: int | None = None
    max_items: int | None = None


@dataclass
class SearchPage:
    """One page of results returned by a backend."""

    items: list[RawResultItem] = field(default_factory=list)
    pagination: PageInfo = field(default_factory=PageInfo)


@runtime_checkable
class SearchBackend(Protocol):
    """Interface that every repository search backend must implement."""

    name: str

    async def query(
        self,
        source: SourceTarget,
        query_text: str,
        *,
        max_items: int,
        skip_count: int,
    ) -> SearchPage:
        """Fetch one page of results for ``query_text`` from ``source``."""
        ...
