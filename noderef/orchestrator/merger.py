"""Result merger — combines per-source pages into one time-ordered feed."""

from __future__ import annotations

from collections.abc import Iterable
from typing import TYPE_CHECKING

from noderef.models.result import RawResultItem, SearchResultItem
from noderef.models.source import SourceTarget

if TYPE_CHECKING:
    from noderef.orchestrator.dispatcher import SourceOutcome


def sort_key(item: SearchResultItem) -> tuple[float, int, str]:
    """Newest first; ties broken by (source_id, id)."""
    return (-item.modified_at.timestamp(), item.source_id, item.id)


def tag(raw: RawResultItem, source: SourceTarget) -> SearchResultItem:
    """Attach the originating source to a raw hit."""
    return SearchResultItem(
        id=raw.id,
        name=raw.name,
        is_folder=raw.is_folder,
        is_file=raw.is_file,
        canonical_ref=raw.canonical_ref,
        resource_type=raw.resource_type,
        path=raw.path,
        modified_at=raw.modified_at,
        modified_by=raw.modified_by,
        source_id=source.id,
        source_name=source.display_name,
        created_at=raw.created_at,
        created_by=raw.created_by,
        parent_id=raw.parent_id,
        mime_type=raw.mime_type,
        attributes=dict(raw.attributes),
    )


def collect(outcomes: Iterable[SourceOutcome]) -> list[SearchResultItem]:
    """Tag the items of every successful outcome."""
    fresh: list[SearchResultItem] = []
    for outcome in outcomes:
        if outcome.page is None:
            continue
        fresh.extend(tag(raw, outcome.source) for raw in outcome.page.items)
    return fresh


def merge(
    existing: Iterable[SearchResultItem], fresh: Iterable[SearchResultItem]
) -> tuple[SearchResultItem, ...]:
    """Union of ``existing`` and ``fresh`` keyed by (source_id, id), fully re-sorted.

    An entry already present wins over a re-delivered copy. Pages from
    different sources are not aligned in time, so the whole union is sorted
    rather than merge-inserted.
    """
    seen: dict[tuple[int, str], SearchResultItem] = {}
    for item in existing:
        seen.setdefault(item.key, item)
    for item in fresh:
        seen.setdefault(item.key, item)
    return tuple(sorted(seen.values(), key=sort_key))
