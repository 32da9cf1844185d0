"""
Hybrid Search - Chooses between index, live scan, or both.

    INDEX_ONLY: delegate to the IndexManager; raise if it is not available
    LIVE_ONLY:  delegate to the LiveScanner
    HYBRID:     index first; when the index is unavailable or returned
                fewer than max_results hits, add live results for paths
                the index did not return, re-rank and truncate

The index is fast but can be stale or scoped narrower than the live
filesystem; the live scan fills those gaps without double-counting.
"""

import logging
import threading
import time
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Dict, List, Optional

from .errors import IndexUnavailableError
from .live import LiveScanner
from .manager import IndexManager, sort_results
from .models import SearchMode, SearchOptions, SearchPerformanceStats, SearchResult


logger = logging.getLogger(__name__)


@dataclass
class _ModeCounter:
    count: int = 0
    total_seconds: float = 0.0

    def average(self) -> timedelta:
        if not self.count:
            return timedelta(0)
        return timedelta(seconds=self.total_seconds / self.count)


@dataclass
class _Counters:
    per_mode: Dict[SearchMode, _ModeCounter] = field(
        default_factory=lambda: {mode: _ModeCounter() for mode in SearchMode}
    )
    index_queries: int = 0
    index_hits: int = 0
    live_scans: int = 0
    live_hits: int = 0
    last_updated: Optional[datetime] = None


class HybridSearchEngine:
    """
    Search front end over an IndexManager and a LiveScanner.

    Usage:
        engine = HybridSearchEngine(manager, LiveScanner(roots=[docs]))
        results = await engine.search(SearchOptions(search_term="budget"))
        engine.switch_mode(SearchMode.LIVE_ONLY)
    """

    def __init__(
        self,
        index_manager: IndexManager,
        live_scanner: LiveScanner,
        mode: SearchMode = SearchMode.HYBRID,
    ):
        self.index_manager = index_manager
        self.live_scanner = live_scanner
        self._mode = mode
        self._counters = _Counters()
        self._stats_lock = threading.Lock()

    @property
    def current_mode(self) -> SearchMode:
        return self._mode

    def switch_mode(self, mode: SearchMode) -> None:
        """Change strategy for subsequent searches."""
        if mode is not self._mode:
            logger.info(f"Search mode: {self._mode.value} -> {mode.value}")
        self._mode = mode

    async def search(
        self,
        options: SearchOptions,
        mode: Optional[SearchMode] = None,
        cancel: Optional[threading.Event] = None,
    ) -> List[SearchResult]:
        """
        Run one query under `mode` (default: the current mode).

        Raises:
            IndexUnavailableError: INDEX_ONLY against an index that is not available
            InvalidQueryError: the regex does not compile
        """
        mode = mode or self._mode
        start = time.monotonic()

        if mode is SearchMode.INDEX_ONLY:
            if not self.index_manager.is_available:
                raise IndexUnavailableError(self.index_manager.state.value)
            results = await self.index_manager.search_index(options, cancel)
            self._record_source("index", bool(results))
        elif mode is SearchMode.LIVE_ONLY:
            results = await self.live_scanner.search(options, cancel)
            self._record_source("live", bool(results))
        else:
            results = await self._hybrid_search(options, cancel)

        results = results[:max(0, options.max_results)]
        self._record(mode, time.monotonic() - start)
        return results

    async def _hybrid_search(
        self,
        options: SearchOptions,
        cancel: Optional[threading.Event],
    ) -> List[SearchResult]:
        results: List[SearchResult] = []
        if self.index_manager.is_available:
            try:
                results = await self.index_manager.search_index(options, cancel)
                self._record_source("index", bool(results))
            except IndexUnavailableError:
                # Deleted or rebuilding between the check and the query
                logger.debug("Index became unavailable; using live scan only")
                results = []

        if len(results) >= options.max_results:
            return results
        if cancel is not None and cancel.is_set():
            return results

        seen = {r.path for r in results}
        # Score live hits on the index scale so the merged order is consistent
        averages = self.index_manager.average_lengths()
        live_results = await self.live_scanner.search(options, cancel, averages)
        added = [r for r in live_results if r.path not in seen]
        self._record_source("live", bool(added))
        logger.debug(f"Hybrid: {len(results)} index hits, {len(added)} added by live scan")

        return sort_results(results + added)[:max(0, options.max_results)]

    def _record(self, mode: SearchMode, seconds: float) -> None:
        with self._stats_lock:
            counter = self._counters.per_mode[mode]
            counter.count += 1
            counter.total_seconds += seconds
            self._counters.last_updated = datetime.now()

    def _record_source(self, source: str, hit: bool) -> None:
        with self._stats_lock:
            if source == "index":
                self._counters.index_queries += 1
                self._counters.index_hits += int(hit)
            else:
                self._counters.live_scans += 1
                self._counters.live_hits += int(hit)

    def get_performance_stats(self) -> SearchPerformanceStats:
        """Read-only snapshot of per-mode counts and average latency."""
        with self._stats_lock:
            per_mode = self._counters.per_mode
            return SearchPerformanceStats(
                total_searches=sum(c.count for c in per_mode.values()),
                index_search_count=per_mode[SearchMode.INDEX_ONLY].count,
                live_search_count=per_mode[SearchMode.LIVE_ONLY].count,
                hybrid_search_count=per_mode[SearchMode.HYBRID].count,
                average_index_search_time=per_mode[SearchMode.INDEX_ONLY].average(),
                average_live_search_time=per_mode[SearchMode.LIVE_ONLY].average(),
                average_hybrid_search_time=per_mode[SearchMode.HYBRID].average(),
                index_hit_rate=_rate(self._counters.index_hits, self._counters.index_queries),
                live_hit_rate=_rate(self._counters.live_hits, self._counters.live_scans),
                last_index_update=self.index_manager.get_status().last_updated,
                last_updated=self._counters.last_updated,
            )


def _rate(hits: int, total: int) -> float:
    return hits / total if total else 0.0
