"""Aggregate search state data models."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum

from noderef.models.result import SearchResultItem


class SearchStatus(Enum):
    IDLE = "idle"
    LOADING = "loading"
    READY = "ready"
    LOADING_MORE = "loading_more"


@dataclass(frozen=True)
class PageWindow:
    """A page request into one source."""

    skip_count: int
    max_items: int


@dataclass(frozen=True)
class PerSourcePaginationState:
    """Last page window seen for one source, as reported by that source."""

    source_id: int
    address: str
    display_name: str
    window_size: int
    skip_count: int
    has_more_items: bool
    total_items: int | None = None

    @property
    def exhausted(self) -> bool:
        return not self.has_more_items


@dataclass(frozen=True)
class CombinedPagination:
    """Pagination summary across every active source."""

    count: int = 0
    has_more_items: bool = False
    total_items: int | None = 0
    window_size: int = 0


@dataclass(frozen=True)
class AggregateSearchState:
    """Everything a consumer needs to render one federated query session.

    ``items`` is kept in the global order (newest first). ``per_source`` only
    holds sources that returned at least one page; ``source_errors`` holds the
    last failure per source for diagnostics.
    """

    query_text: str = ""
    items: tuple[SearchResultItem, ...] = ()
    status: SearchStatus = SearchStatus.IDLE
    error: str | None = None
    combined_pagination: CombinedPagination = field(default_factory=CombinedPagination)
    per_source: dict[int, PerSourcePaginationState] = field(default_factory=dict)
    source_errors: dict[int, str] = field(default_factory=dict)
    generation: int = 0

    @property
    def is_loading(self) -> bool:
        return self.status is SearchStatus.LOADING

    @property
    def is_loading_more(self) -> bool:
        return self.status is SearchStatus.LOADING_MORE
