"""
Live Scanner - On-demand search with no persistence.

Walks the roots, filters each file by the SearchOptions, runs the same
ParserRegistry the indexer uses and scores name/content matches with the
shared Matcher. Publishes the same IndexProgress events as the
IndexManager so callers can render one progress surface for both.
"""

import asyncio
import logging
import threading
import time
from collections import Counter
from pathlib import Path
from typing import Callable, List, Optional, Tuple

from .config import get_config
from .events import EventBus, progress_event
from .extractor import Extractor
from .manager import BOTH_BONUS, combine_scores, field_score, match_type_for, saturate, sort_results
from .matching import Matcher
from .models import FileInfo, SearchOptions, SearchResult
from .parsers import ParserRegistry, default_registry
from .scanner import ScanFilter, Scanner, index_storage_files
from .tokenizer import query_terms, tokenize


logger = logging.getLogger(__name__)

NAME_MATCH_SCORE = 1.0
NAME_OCCURRENCE_BONUS = 0.1
MAX_NAME_BONUS = 0.4
CONTENT_MATCH_CAP = 10


def name_relevance(count: int) -> float:
    """A name match outranks any single content match."""
    if count <= 0:
        return 0.0
    return NAME_MATCH_SCORE + min((count - 1) * NAME_OCCURRENCE_BONUS, MAX_NAME_BONUS)


def content_relevance(count: int) -> float:
    if count <= 0:
        return 0.0
    return min(count, CONTENT_MATCH_CAP) / CONTENT_MATCH_CAP * 0.8 + 0.2


def index_scale_relevance(
    options: SearchOptions,
    name: str,
    text: str,
    name_count: int,
    content_count: int,
    averages: Tuple[float, float],
) -> float:
    """
    Score a live match the way the index would score the same file.

    Used when live results are merged with index results, so a file's
    rank does not depend on whether it happened to be indexed.
    """
    avg_content, avg_name = averages
    name_tokens = tokenize(name) if name_count else []
    content_tokens = tokenize(text) if content_count else []

    if options.use_regex:
        name_score = saturate(name_count, len(name_tokens), avg_name)
        content_score = saturate(content_count, len(content_tokens), avg_content)
    else:
        terms = query_terms(options.search_term)
        name_score = field_score(Counter(name_tokens), terms, len(name_tokens), avg_name)
        content_score = field_score(Counter(content_tokens), terms, len(content_tokens), avg_content)

    return combine_scores(name_score, content_score, bool(name_count and content_count))


class LiveScanner:
    """
    Filesystem search without an index.

    Usage:
        scanner = LiveScanner(roots=[Path.home() / "Documents"])
        results = await scanner.search(SearchOptions(search_term="invoice"))
    """

    def __init__(
        self,
        registry: ParserRegistry | None = None,
        roots: Optional[List[Path]] = None,
        concurrency: int = 8,
        max_file_size: int = 50 * 1024 * 1024,
        index_path: Optional[Path] = None,
    ):
        self.registry = registry or default_registry()
        self.roots = [Path(r).expanduser().resolve() for r in roots] if roots else None
        self.concurrency = max(1, concurrency)
        self.max_file_size = max_file_size
        self.index_path = Path(index_path).expanduser().resolve() if index_path is not None else None
        self._extractor = Extractor(self.registry, self.concurrency)
        self._events = EventBus()

    def subscribe(self, handler: Callable, *event_types) -> Callable[[], None]:
        """Subscribe to per-file IndexProgress events."""
        return self._events.subscribe(handler, *event_types)

    def default_roots(self) -> List[Path]:
        if self.roots:
            return self.roots
        return get_config().indexed_directories

    async def search(
        self,
        options: SearchOptions,
        cancel: Optional[threading.Event] = None,
        averages: Optional[Tuple[float, float]] = None,
    ) -> List[SearchResult]:
        """
        Scan and match.

        Cancellation returns whatever was matched so far. With `averages`
        (the index's mean content and name lengths) results are scored on
        the index scale instead of the live one.

        Raises:
            InvalidQueryError: the regex does not compile
        """
        matcher = Matcher(options)
        if matcher.is_empty or not (options.search_in_name or options.search_in_content):
            return []

        cancel = cancel or threading.Event()
        roots = list(options.include_directories) or self.default_roots()
        index_path = self.index_path or get_config().index_path
        scanner = Scanner(ScanFilter.for_search(options, index_storage_files(index_path)))
        queue: asyncio.Queue = asyncio.Queue(maxsize=self.concurrency * 4)
        results: List[SearchResult] = []
        counters = {"discovered": 0, "processed": 0}
        start = time.monotonic()

        async def produce():
            async for info in scanner.scan_iter(roots, cancel):
                if not options.accepts_directory(info.path):
                    continue
                counters["discovered"] += 1
                await queue.put(info)
            for _ in range(self.concurrency):
                await queue.put(None)

        async def work():
            while True:
                info = await queue.get()
                if info is None:
                    return
                if cancel.is_set():
                    continue
                result = await self._match_file(info, options, matcher, averages)
                if result is not None:
                    results.append(result)
                counters["processed"] += 1
                self._events.emit(progress_event(
                    processed=counters["processed"],
                    total=counters["discovered"],
                    current_file=str(info.path),
                    elapsed_seconds=time.monotonic() - start,
                ))

        tasks = [asyncio.create_task(produce())] + [
            asyncio.create_task(work()) for _ in range(self.concurrency)
        ]
        try:
            await asyncio.gather(*tasks)
        finally:
            for task in tasks:
                if not task.done():
                    task.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)

        ranked = sort_results(results)[:max(0, options.max_results)]
        logger.info(
            f"Live scan {options.search_term!r}: {len(results)} matches in "
            f"{counters['processed']} files ({time.monotonic() - start:.1f}s)"
            + (" [cancelled]" if cancel.is_set() else "")
        )
        return ranked

    async def _match_file(
        self,
        info: FileInfo,
        options: SearchOptions,
        matcher: Matcher,
        averages: Optional[Tuple[float, float]] = None,
    ) -> Optional[SearchResult]:
        name_count = matcher.count(info.name) if options.search_in_name else 0

        text = ""
        content_count = 0
        if options.search_in_content:
            extracted = await self._extractor.extract(
                info, self.max_file_size, options.max_content_length
            )
            # Diagnostics never count as content
            text = extracted.searchable_text
            content_count = matcher.count(text)

        if not name_count and not content_count:
            return None

        if averages is not None:
            score = index_scale_relevance(options, info.name, text, name_count, content_count, averages)
        else:
            score = name_relevance(name_count) + content_relevance(content_count)
            if name_count and content_count:
                score += BOTH_BONUS

        return SearchResult(
            path=str(info.path),
            name=info.name,
            directory=info.directory,
            size=info.size,
            modified=info.mtime,
            extension=info.extension,
            match_type=match_type_for(name_count > 0, content_count > 0),
            relevance_score=score,
            match_count=name_count + content_count,
            matching_lines=matcher.matching_lines(text) if content_count else [],
            content=matcher.excerpt(text, options.max_content_length) if content_count else "",
            source="live",
        )

    def close(self):
        """Shutdown the extraction pool."""
        self._extractor.close()
