"""Search dispatcher — fans one query out to every selected source."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass

from noderef.backends.base import SearchBackend, SearchPage
from noderef.models.source import SourceTarget
from noderef.models.state import PageWindow, PerSourcePaginationState
from noderef.orchestrator.tracker import next_window

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SourceOutcome:
    """The settled result of one page request: either a page or an error."""

    source: SourceTarget
    window: PageWindow
    page: SearchPage | None = None
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.page is not None


class Dispatcher:
    """Dispatches page requests to many sources in parallel.

    Every request settles independently; one slow or failing source never
    prevents the others from producing a page.
    """

    def __init__(
        self,
        backend: SearchBackend,
        *,
        page_size: int = 50,
        timeout: float | None = None,
    ) -> None:
        if page_size <= 0:
            raise ValueError("page_size must be positive")
        self.backend = backend
        self.page_size = page_size
        self.timeout = timeout

    async def dispatch(
        self, sources: list[SourceTarget], query_text: str
    ) -> list[SourceOutcome]:
        """Request the first page from every source."""
        first = PageWindow(skip_count=0, max_items=self.page_size)
        return await self._fan_out([(s, first) for s in sources], query_text)

    async def dispatch_more(
        self, trackers: list[PerSourcePaginationState], query_text: str
    ) -> list[SourceOutcome]:
        """Request the next page from every tracker that still reports more items."""
        requests = [
            (SourceTarget(t.source_id, t.address, t.display_name), next_window(t))
            for t in trackers
            if t.has_more_items
        ]
        return await self._fan_out(requests, query_text)

    async def _fan_out(
        self, requests: list[tuple[SourceTarget, PageWindow]], query_text: str
    ) -> list[SourceOutcome]:
        if not requests:
            return []

        tasks = [self._run_source(source, window, query_text) for source, window in requests]
        settled = await asyncio.gather(*tasks, return_exceptions=True)

        outcomes: list[SourceOutcome] = []
        for (source, window), result in zip(requests, settled):
            if isinstance(result, BaseException):
                if not isinstance(result, Exception):
                    raise result
                reason = _describe(result)
                logger.error("Source %s failed: %s", source.display_name, reason)
                outcomes.append(SourceOutcome(source, window, error=reason))
            else:
                outcomes.append(SourceOutcome(source, window, page=result))
        return outcomes

    async def _run_source(
        self, source: SourceTarget, window: PageWindow, query_text: str
    ) -> SearchPage:
        """Run a single page request under the per-source timeout."""
        logger.info(
            "Dispatching to %s (skip=%d, max=%d)",
            source.display_name,
            window.skip_count,
            window.max_items,
        )
        page = await asyncio.wait_for(
            self.backend.query(
                source,
                query_text,
                max_items=window.max_items,
                skip_count=window.skip_count,
            ),
            timeout=self.timeout,
        )
        logger.info(
            "Source %s returned %d items (has_more=%s)",
            source.display_name,
            len(page.items),
            page.pagination.has_more_items,
        )
        return page


def _describe(exc: Exception) -> str:
    if isinstance(exc, asyncio.TimeoutError):
        return "timed out"
    return str(exc) or exc.__class__.__name__
