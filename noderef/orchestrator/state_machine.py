"""Pure state transitions for a federated search session.

Every change to an ``AggregateSearchState`` goes through ``reduce``. Events
carry the generation they were issued under; settle events from an older
generation are ignored, which is how a superseded dispatch is kept from
overwriting a newer query.
"""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass, replace

from noderef.models.state import AggregateSearchState, SearchStatus
from noderef.orchestrator.dispatcher import SourceOutcome
from noderef.orchestrator.merger import collect, merge
from noderef.orchestrator.tracker import combine, track


@dataclass(frozen=True)
class QueryStarted:
    query_text: str
    generation: int


@dataclass(frozen=True)
class QuerySettled:
    generation: int
    outcomes: Sequence[SourceOutcome]


@dataclass(frozen=True)
class LoadMoreStarted:
    generation: int


@dataclass(frozen=True)
class LoadMoreSettled:
    generation: int
    outcomes: Sequence[SourceOutcome]


@dataclass(frozen=True)
class Reset:
    generation: int


Event = QueryStarted | QuerySettled | LoadMoreStarted | LoadMoreSettled | Reset


def reduce(
    state: AggregateSearchState, event: Event, *, default_window: int = 50
) -> AggregateSearchState:
    """Return the state that follows ``state`` after ``event``."""
    if isinstance(event, QueryStarted):
        return AggregateSearchState(
            query_text=event.query_text,
            status=SearchStatus.LOADING,
            generation=event.generation,
        )

    if isinstance(event, Reset):
        return AggregateSearchState(generation=event.generation)

    if not isinstance(event, (QuerySettled, LoadMoreStarted, LoadMoreSettled)):
        raise TypeError(f"Unknown search event: {event!r}")
    if event.generation != state.generation:
        return state

    if isinstance(event, QuerySettled):
        if state.status is not SearchStatus.LOADING:
            return state
        return _settle_query(state, event.outcomes, default_window)

    if isinstance(event, LoadMoreStarted):
        if state.status is not SearchStatus.READY:
            return state
        return replace(state, status=SearchStatus.LOADING_MORE)

    if state.status is not SearchStatus.LOADING_MORE:
        return state
    return _settle_more(state, event.outcomes, default_window)


def _settle_query(
    state: AggregateSearchState, outcomes: Sequence[SourceOutcome], default_window: int
) -> AggregateSearchState:
    succeeded = [o for o in outcomes if o.ok]
    failed = [o for o in outcomes if not o.ok]
    source_errors = {o.source.id: o.error or "failed" for o in failed}

    if failed and not succeeded:
        return replace(
            state,
            items=(),
            status=SearchStatus.READY,
            error=_all_failed_message(failed),
            combined_pagination=combine({}, 0, default_window),
            per_source={},
            source_errors=source_errors,
        )

    per_source = {o.source.id: track(o.source, o.page, o.window) for o in succeeded}
    items = merge((), collect(succeeded))
    return replace(
        state,
        items=items,
        status=SearchStatus.READY,
        error=None,
        combined_pagination=combine(per_source, len(items), default_window),
        per_source=per_source,
        source_errors=source_errors,
    )


def _settle_more(
    state: AggregateSearchState, outcomes: Sequence[SourceOutcome], default_window: int
) -> AggregateSearchState:
    per_source = dict(state.per_source)
    source_errors = dict(state.source_errors)
    for outcome in outcomes:
        if outcome.ok:
            per_source[outcome.source.id] = track(outcome.source, outcome.page, outcome.window)
            source_errors.pop(outcome.source.id, None)
        else:
            # tracker left as-is so the next load-more retries this window
            source_errors[outcome.source.id] = outcome.error or "failed"

    items = merge(state.items, collect(outcomes))
    return replace(
        state,
        items=items,
        status=SearchStatus.READY,
        combined_pagination=combine(per_source, len(items), default_window),
        per_source=per_source,
        source_errors=source_errors,
    )


def _all_failed_message(failed: Sequence[SourceOutcome]) -> str:
    reasons = "; ".join(f"{o.source.display_name}: {o.error}" for o in failed)
    return f"All sources failed: {reasons}"
