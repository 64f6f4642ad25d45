"""Search session — drives the dispatcher and owns one aggregate state."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable, Sequence
from typing import Protocol

from noderef.models.source import SourceTarget
from noderef.models.state import AggregateSearchState
from noderef.orchestrator.dispatcher import Dispatcher
from noderef.orchestrator.state_machine import (
    Event,
    LoadMoreSettled,
    LoadMoreStarted,
    QueryStarted,
    QuerySettled,
    Reset,
    reduce,
)

logger = logging.getLogger(__name__)

StateObserver = Callable[[AggregateSearchState], None]


class HistoryRecorder(Protocol):
    """Receives completed queries for the search history listing."""

    async def record_history(self, query_text: str, result_count: int) -> object: ...


class SearchSession:
    """Runs federated queries and incremental "load more" over one state.

    Only one caller drives a session. A new ``query`` supersedes whatever is
    in flight; ``load_more`` is rejected while anything is in flight.
    """

    def __init__(
        self,
        dispatcher: Dispatcher,
        history: HistoryRecorder | None = None,
    ) -> None:
        self.dispatcher = dispatcher
        self.history = history
        self._state = AggregateSearchState()
        self._generation = 0
        self._observers: list[StateObserver] = []
        self._pending: set[asyncio.Task] = set()

    @property
    def state(self) -> AggregateSearchState:
        return self._state

    def subscribe(self, observer: StateObserver) -> Callable[[], None]:
        """Call ``observer`` after every state change. Returns an unsubscribe function."""
        self._observers.append(observer)

        def unsubscribe() -> None:
            if observer in self._observers:
                self._observers.remove(observer)

        return unsubscribe

    async def query(
        self, query_text: str, sources: Sequence[SourceTarget]
    ) -> AggregateSearchState:
        """Start a new query against ``sources``, discarding all previous results."""
        if not sources:
            logger.info("Search skipped: no sources selected")
            return self._state

        self._generation += 1
        generation = self._generation
        self._apply(QueryStarted(query_text, generation))

        try:
            outcomes = await self.dispatcher.dispatch(list(sources), query_text)
        except asyncio.CancelledError:
            self._apply(QuerySettled(generation, ()))
            raise

        if generation != self._generation:
            logger.info("Discarding results of superseded query %r", query_text)
            return self._state

        self._apply(QuerySettled(generation, outcomes))
        if self._state.error is None:
            self._record_history(self._state)
        else:
            logger.warning("Search failed: %s", self._state.error)
        return self._state

    async def load_more(self) -> bool:
        """Fetch the next page from every source that has more items.

        Returns False without dispatching anything when a fetch is already in
        flight or no source reports more items.
        """
        state = self._state
        if state.is_loading or state.is_loading_more:
            return False
        trackers = [t for t in state.per_source.values() if t.has_more_items]
        if not trackers:
            return False

        generation = self._generation
        self._apply(LoadMoreStarted(generation))
        try:
            outcomes = await self.dispatcher.dispatch_more(trackers, state.query_text)
        except asyncio.CancelledError:
            self._apply(LoadMoreSettled(generation, ()))
            raise

        if generation != self._generation:
            logger.info("Discarding load-more results for superseded query %r", state.query_text)
            return True

        self._apply(LoadMoreSettled(generation, outcomes))
        if outcomes and not any(o.ok for o in outcomes):
            logger.warning("Load more failed for every source")
        return True

    def reset(self) -> None:
        """Drop all results; anything still in flight is discarded when it settles."""
        self._generation += 1
        self._apply(Reset(self._generation))

    async def drain(self) -> None:
        """Wait for outstanding history writes."""
        if self._pending:
            await asyncio.gather(*self._pending, return_exceptions=True)

    def _apply(self, event: Event) -> None:
        new_state = reduce(self._state, event, default_window=self.dispatcher.page_size)
        if new_state is self._state:
            return
        self._state = new_state
        for observer in list(self._observers):
            try:
                observer(new_state)
            except Exception:
                logger.exception("Search state observer failed")

    def _record_history(self, state: AggregateSearchState) -> None:
        """Fire-and-forget: history failures never reach the search state."""
        if self.history is None:
            return
        text = state.query_text.strip()
        if not text:
            return
        pagination = state.combined_pagination
        count = pagination.total_items if pagination.total_items is not None else pagination.count

        task = asyncio.create_task(self._save_history(text, count))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    async def _save_history(self, query_text: str, result_count: int) -> None:
        try:
            await self.history.record_history(query_text, result_count)
        except Exception as exc:
            logger.error("Failed to save search history: %s", exc)
