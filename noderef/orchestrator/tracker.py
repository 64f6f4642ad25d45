"""Per-source pagination tracking and the combined pagination summary."""

from __future__ import annotations

from collections.abc import Mapping

from noderef.backends.base import SearchPage
from noderef.models.source import SourceTarget
from noderef.models.state import CombinedPagination, PageWindow, PerSourcePaginationState


def track(
    source: SourceTarget, page: SearchPage, window: PageWindow
) -> PerSourcePaginationState:
    """Build a source's tracker from the page it just returned.

    The remote source is authoritative: its reported window replaces whatever
    was tracked before. The request window only fills fields it left out.
    """
    meta = page.pagination
    return PerSourcePaginationState(
        source_id=source.id,
        address=source.address,
        display_name=source.display_name,
        window_size=meta.max_items or window.max_items,
        skip_count=meta.skip_count if meta.skip_count is not None else window.skip_count,
        has_more_items=bool(meta.has_more_items),
        total_items=meta.total_items,
    )


def next_window(tracker: PerSourcePaginationState) -> PageWindow:
    return PageWindow(
        skip_count=tracker.skip_count + tracker.window_size,
        max_items=tracker.window_size,
    )


def combine(
    per_source: Mapping[int, PerSourcePaginationState],
    count: int,
    default_window: int = 50,
) -> CombinedPagination:
    """Summarize every active tracker into one pagination record.

    ``total_items`` is only reported when every tracker knows its own total.
    """
    trackers = list(per_source.values())
    if not trackers:
        return CombinedPagination(count=count, has_more_items=False, total_items=0, window_size=0)

    has_more = any(t.has_more_items for t in trackers)
    if all(t.total_items is not None for t in trackers):
        total: int | None = sum(t.total_items for t in trackers)
    else:
        total = None
    window_size = sum(t.window_size for t in trackers) or len(trackers) * default_window

    return CombinedPagination(
        count=count,
        has_more_items=has_more,
        total_items=total,
        window_size=window_size,
    )
