"""
Index Manager - Build, update and query the persistent index.

Pipeline for build and update:

    Scanner (one producer) -> bounded asyncio.Queue -> N workers
        worker: fingerprint -> unchanged? done
                           -> extract in thread pool (if index_content)
                           -> DocumentStore.upsert -> progress event

An update re-walks the same scope and removes every previously indexed
path the walk no longer produced. Correctness depends only on that
walk-and-diff being run, not on timers or watchers.

State machine:
    EMPTY -> BUILDING -> AVAILABLE -> UPDATING -> AVAILABLE
    any -> ERROR on storage failure; delete_index() -> EMPTY
"""

import asyncio
import dataclasses
import logging
import sqlite3
import threading
import time
from datetime import datetime, timedelta
from pathlib import Path
from typing import Callable, Dict, List, Mapping, Optional, Sequence, Set, Tuple

from .config import IndexConfiguration, get_config
from .errors import IndexStorageError, IndexUnavailableError, IndexVersionError, handle_error
from .events import EventBus, IndexCompleted, IndexFailed, progress_event
from .extractor import Extractor
from .hasher import Fingerprinter
from .matching import Matcher
from .models import (
    Document, FileInfo, IndexingStats, IndexState, IndexStatus, MatchType,
    Posting, SearchOptions, SearchResult, is_hidden_name, is_system_name,
)
from .parsers import ParserRegistry, default_registry
from .scanner import ScanFilter, Scanner, index_storage_files
from .store import SCHEMA_VERSION, DocumentStore, UpsertOutcome
from .tokenizer import query_terms, query_words, surface_tokens


logger = logging.getLogger(__name__)

# Ranking constants. Only the ordering is meaningful:
# name+content > content-only ~ name-only, more occurrences > fewer.
K1 = 1.2
LENGTH_B = 0.75
NAME_WEIGHT = 1.0
CONTENT_WEIGHT = 1.0
# Field scores are below their weights, so this puts every two-field
# match above every one-field match
BOTH_BONUS = NAME_WEIGHT + CONTENT_WEIGHT


def saturate(tf: int, length: int, average: float) -> float:
    """Saturated, length-normalized term frequency in [0, 1)."""
    if tf <= 0:
        return 0.0
    norm = 1.0
    if average > 0:
        norm = 1.0 - LENGTH_B + LENGTH_B * (length / average)
    return tf / (tf + K1 * norm)


def field_score(counts: Mapping[str, int], terms: Sequence[str], length: int, average: float) -> float:
    """Saturated frequency of the query terms in one field, averaged over terms."""
    if not terms:
        return 0.0
    return sum(saturate(counts.get(term, 0), length, average) for term in terms) / len(terms)


def combine_scores(name_score: float, content_score: float, both: bool) -> float:
    score = NAME_WEIGHT * name_score + CONTENT_WEIGHT * content_score
    if both:
        score += BOTH_BONUS
    return score


def match_type_for(name_hit: bool, content_hit: bool) -> MatchType:
    if name_hit and content_hit:
        return MatchType.BOTH
    return MatchType.NAME if name_hit else MatchType.CONTENT


def sort_results(results: List[SearchResult]) -> List[SearchResult]:
    """Score desc, then most recently modified, then path."""
    return sorted(
        results,
        key=lambda r: (-r.relevance_score, -r.modified.timestamp(), r.path),
    )


@dataclasses.dataclass
class _Hit:
    """A candidate document while a query is being scored."""
    document: Document
    name_score: float = 0.0
    content_score: float = 0.0
    name_hit: bool = False
    content_hit: bool = False
    match_count: int = 0


class IndexManager:
    """
    Owns the lifecycle of the DocumentStore.

    Usage:
        manager = IndexManager(IndexConfiguration(indexed_directories=[docs]))
        await manager.build_index()
        results = await manager.search_index(SearchOptions(search_term="revenue"))
        manager.close()
    """

    def __init__(
        self,
        config: IndexConfiguration | None = None,
        registry: ParserRegistry | None = None,
    ):
        self._config = config or get_config()
        self._registry = registry or default_registry()
        self._extractor = Extractor(self._registry, self._config.extractor_concurrency)
        self._events = EventBus()
        self._store: Optional[DocumentStore] = None
        self._operation_lock = asyncio.Lock()

        # Status is an immutable snapshot, swapped under a tiny lock
        self._status_lock = threading.Lock()
        self._status = IndexStatus()

        self._load_existing()

    # --- Properties ---

    @property
    def configuration(self) -> IndexConfiguration:
        return self._config

    @property
    def state(self) -> IndexState:
        return self._status.state

    @property
    def is_available(self) -> bool:
        return self._status.is_available

    @property
    def store(self) -> Optional[DocumentStore]:
        return self._store

    def get_status(self) -> IndexStatus:
        """Last published snapshot; never blocks behind a build."""
        with self._status_lock:
            return self._status

    def subscribe(self, handler: Callable, *event_types) -> Callable[[], None]:
        """Subscribe to IndexProgress / IndexCompleted / IndexFailed events."""
        return self._events.subscribe(handler, *event_types)

    def _publish(self, **changes) -> IndexStatus:
        with self._status_lock:
            self._status = dataclasses.replace(self._status, **changes)
            return self._status

    # --- Storage ---

    def _load_existing(self) -> None:
        """Pick up an index left by a previous process, if any."""
        if not self._config.index_path.exists():
            return
        try:
            store = self._open_store()
            last_updated = store.get_meta("last_updated")
            count = store.document_count()
        except (IndexStorageError, sqlite3.Error) as e:
            logger.error(f"Cannot load index {self._config.index_path}: {e}")
            self._publish(state=IndexState.ERROR, error_message=str(e))
            return

        if last_updated is None and count == 0:
            return

        self._publish(
            state=IndexState.AVAILABLE,
            document_count=count,
            directory_count=store.directory_count(),
            index_size=store.size_bytes(),
            created=store.created,
            last_updated=datetime.fromisoformat(last_updated) if last_updated else None,
            version=SCHEMA_VERSION,
        )
        logger.info(f"Loaded index with {count} documents from {self._config.index_path}")

    def _open_store(self) -> DocumentStore:
        """Open the configured store, discarding it on a schema mismatch."""
        if self._store is None:
            store = DocumentStore(self._config.index_path, compress=self._config.enable_compression)
            try:
                store.open()
            except IndexVersionError as e:
                logger.warning(f"{e}; discarding {self._config.index_path}")
                self._discard_files()
                store.open()
            self._store = store
        self._store.compress = self._config.enable_compression
        return self._store

    def _discard_files(self) -> None:
        for path in index_storage_files(self._config.index_path):
            path.unlink(missing_ok=True)

    def _fail(self, error: BaseException, file_path: Optional[str] = None) -> IndexStorageError:
        """Record a structural failure: ERROR state plus exactly one IndexFailed."""
        message = str(error)
        logger.error(f"Index operation failed: {message}")
        self._publish(state=IndexState.ERROR, error_message=message, current_file=None)
        self._events.emit(IndexFailed(message=message, exception=error, file_path=file_path))
        if isinstance(error, IndexStorageError):
            return error
        return IndexStorageError(message)

    # --- Lifecycle ---

    async def build_index(
        self,
        config: IndexConfiguration | None = None,
        cancel: Optional[threading.Event] = None,
    ) -> IndexingStats:
        """
        Rebuild the index from scratch.

        Args:
            config: Replaces the current configuration first (optional)
            cancel: Stops the build early when set; the partial index stays

        Returns:
            Statistics about the run
        """
        async with self._operation_lock:
            if config is not None:
                self.reconfigure(config)
            return await self._run(rebuild=True, cancel=cancel)

    async def update_index(self, cancel: Optional[threading.Event] = None) -> IndexingStats:
        """
        Re-walk the configured scope and apply only the differences.

        Falls back to a full build when no index is available yet or
        incremental indexing is disabled.
        """
        async with self._operation_lock:
            rebuild = not self.is_available or not self._config.enable_incremental_indexing
            return await self._run(rebuild=rebuild, cancel=cancel)

    async def delete_index(self) -> None:
        """Discard all persisted state and return to EMPTY."""
        async with self._operation_lock:
            if self._store is not None:
                self._store.close()
                self._store = None
            try:
                self._discard_files()
            except OSError as e:
                raise self._fail(e) from e
            with self._status_lock:
                self._status = IndexStatus()
            logger.info(f"Deleted index {self._config.index_path}")

    async def compact(self) -> int:
        """Purge tombstones and reclaim space. Returns documents purged."""
        async with self._operation_lock:
            if self._store is None:
                return 0
            try:
                purged = self._store.compact()
                size = self._store.size_bytes()
            except (sqlite3.Error, OSError) as e:
                raise self._fail(e) from e
            self._publish(index_size=size)
            return purged

    def reconfigure(self, config: IndexConfiguration) -> None:
        """Replace the configuration wholesale; applies from the next cycle."""
        old = self._config
        self._config = config
        if config.extractor_concurrency != old.extractor_concurrency:
            self._extractor.close()
            self._extractor = Extractor(self._registry, config.extractor_concurrency)
        if config.index_path != old.index_path:
            if self._store is not None:
                self._store.close()
                self._store = None
            with self._status_lock:
                self._status = IndexStatus()
            self._load_existing()
        logger.info("Index configuration replaced")

    async def _run(self, rebuild: bool, cancel: Optional[threading.Event]) -> IndexingStats:
        config = self._config
        cancel = cancel or threading.Event()
        start = time.monotonic()
        stats = IndexingStats()
        state = IndexState.BUILDING if rebuild else IndexState.UPDATING
        fingerprinter = Fingerprinter(config.fingerprint_content)

        self._publish(
            state=state,
            files_processed=0,
            progress_percentage=0,
            current_file=None,
            indexing_speed=0.0,
            estimated_time_remaining=timedelta(0),
            error_message=None,
        )
        logger.info(
            f"{'Building' if rebuild else 'Updating'} index over "
            f"{len(config.indexed_directories)} directories"
        )

        try:
            store = self._open_store()
            if rebuild:
                store.clear()
            previously_indexed = set() if rebuild else store.indexed_paths()

            seen = await self._index_files(store, config, fingerprinter, cancel, stats, start)

            if not stats.cancelled:
                for path in sorted(previously_indexed - seen):
                    if store.remove(path):
                        stats.files_removed += 1
                if stats.files_removed:
                    logger.info(f"Removed {stats.files_removed} stale documents")

            now = datetime.now()
            store.set_meta("last_updated", now.isoformat())
            document_count = store.document_count()
            directory_count = store.directory_count()
            index_size = store.size_bytes()
            created = store.created
        except (sqlite3.Error, OSError, IndexStorageError) as e:
            raise self._fail(e) from e
        finally:
            fingerprinter.close()

        stats.duration_seconds = time.monotonic() - start
        self._publish(
            state=IndexState.AVAILABLE,
            document_count=document_count,
            directory_count=directory_count,
            index_size=index_size,
            created=created,
            last_updated=now,
            version=SCHEMA_VERSION,
            build_time=timedelta(seconds=stats.duration_seconds),
            progress_percentage=100 if not stats.cancelled else self._status.progress_percentage,
            current_file=None,
            estimated_time_remaining=timedelta(0),
        )

        if stats.cancelled:
            logger.info(f"Indexing cancelled after {self._status.files_processed} files: {stats}")
            return stats

        logger.info(f"Indexing complete: {stats}")
        self._events.emit(IndexCompleted(
            total_documents=document_count,
            total_time=timedelta(seconds=stats.duration_seconds),
            index_size=index_size,
        ))
        return stats

    async def _index_files(
        self,
        store: DocumentStore,
        config: IndexConfiguration,
        fingerprinter: Fingerprinter,
        cancel: threading.Event,
        stats: IndexingStats,
        start: float,
    ) -> Set[str]:
        """Run the producer/worker pipeline. Returns every path the walk produced."""
        queue: asyncio.Queue = asyncio.Queue(maxsize=config.queue_size)
        scanner = Scanner(ScanFilter.for_index(config))
        seen: Set[str] = set()
        counters = {"discovered": 0, "processed": 0, "documents": store.document_count()}
        cap_logged = False

        async def produce():
            async for info in scanner.scan_iter(config.indexed_directories, cancel):
                seen.add(str(info.path))
                counters["discovered"] += 1
                await queue.put(info)
            for _ in range(config.extractor_concurrency):
                await queue.put(None)

        async def work():
            nonlocal cap_logged
            while True:
                info = await queue.get()
                if info is None:
                    return
                if cancel.is_set():
                    continue   # drain so the producer never blocks

                path = str(info.path)
                try:
                    existing = store.fingerprint_of(path)
                    if existing is None and counters["documents"] >= config.max_documents:
                        stats.files_skipped += 1
                        if not cap_logged:
                            logger.warning(
                                f"max_documents ({config.max_documents}) reached; "
                                f"new files are no longer added"
                            )
                            cap_logged = True
                    else:
                        outcome = await self._index_file(store, config, fingerprinter, info, existing, stats)
                        if outcome is UpsertOutcome.ADDED:
                            counters["documents"] += 1
                except OSError as e:
                    # Per-file I/O (vanished, unreadable); the store itself raises sqlite3.Error
                    handle_error(e, info.path, "index_file")
                    stats.errors += 1
                    seen.discard(path)

                counters["processed"] += 1
                self._file_done(path, counters, start)

        tasks = [asyncio.create_task(produce())] + [
            asyncio.create_task(work()) for _ in range(config.extractor_concurrency)
        ]
        try:
            await asyncio.gather(*tasks)
        finally:
            for task in tasks:
                if not task.done():
                    task.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)

        stats.files_scanned = counters["discovered"]
        stats.cancelled = cancel.is_set()
        return seen

    async def _index_file(
        self,
        store: DocumentStore,
        config: IndexConfiguration,
        fingerprinter: Fingerprinter,
        info: FileInfo,
        existing: Optional[str],
        stats: IndexingStats,
    ) -> UpsertOutcome:
        fingerprint = await fingerprinter.fingerprint_file(info)
        if fingerprint == existing:
            stats.files_unchanged += 1
            return UpsertOutcome.UNCHANGED

        content = None
        if config.index_content:
            extracted = await self._extractor.extract(
                info, config.max_file_size, config.max_content_length
            )
            if extracted.skipped:
                stats.content_skipped += 1
            elif extracted.is_diagnostic:
                stats.errors += 1
            content = extracted.searchable_text

        outcome = store.upsert(info, fingerprint, content)
        if outcome is UpsertOutcome.UNCHANGED:
            stats.files_unchanged += 1
        else:
            stats.files_indexed += 1
        return outcome

    def _file_done(self, path: str, counters: Dict[str, int], start: float) -> None:
        event = progress_event(
            processed=counters["processed"],
            total=counters["discovered"],
            current_file=path,
            elapsed_seconds=time.monotonic() - start,
        )
        self._publish(
            files_processed=event.documents_processed,
            document_count=counters["documents"],
            progress_percentage=event.percentage,
            current_file=path,
            indexing_speed=event.speed,
            estimated_time_remaining=event.estimated_time_remaining,
        )
        self._events.emit(event)

    # --- Query ---

    async def search_index(
        self,
        options: SearchOptions,
        cancel: Optional[threading.Event] = None,
    ) -> List[SearchResult]:
        """
        Query the index.

        Raises:
            IndexUnavailableError: the index is not AVAILABLE/UPDATING
            InvalidQueryError: the regex does not compile
        """
        if not self.is_available or self._store is None:
            raise IndexUnavailableError(self.state.value)

        matcher = Matcher(options)
        if matcher.is_empty or not (options.search_in_name or options.search_in_content):
            return []

        loop = asyncio.get_running_loop()
        start = time.monotonic()
        results = await loop.run_in_executor(
            None, self._search_sync, self._store, options, matcher, cancel
        )
        logger.debug(
            f"Index search {options.search_term!r}: {len(results)} results "
            f"in {(time.monotonic() - start) * 1000:.1f}ms"
        )
        return results

    def average_lengths(self) -> Optional[Tuple[float, float]]:
        """(content, name) mean term counts of the index, or None when it cannot be queried."""
        if not self.is_available or self._store is None:
            return None
        return self._store.average_lengths()

    def _search_sync(
        self,
        store: DocumentStore,
        options: SearchOptions,
        matcher: Matcher,
        cancel: Optional[threading.Event],
    ) -> List[SearchResult]:
        scope: Optional[Dict[int, Document]] = None
        if options.include_directories:
            scope = {}
            for root in options.include_directories:
                scope.update((d.id, d) for d in store.documents_under(root))

        avg_content, avg_name = store.average_lengths()
        if options.use_regex:
            hits = self._regex_hits(store, options, matcher, scope, avg_content, avg_name, cancel)
        else:
            hits = self._term_hits(store, options, scope, avg_content, avg_name, cancel)

        results = [
            hit for hit in hits
            if self._passes_filters(hit.document, options)
        ]
        results.sort(key=lambda h: (
            -combine_scores(h.name_score, h.content_score, h.name_hit and h.content_hit),
            -h.document.mtime.timestamp(),
            h.document.path,
        ))
        return [
            self._to_result(store, hit, options, matcher)
            for hit in results[:max(0, options.max_results)]
        ]

    def _term_hits(
        self,
        store: DocumentStore,
        options: SearchOptions,
        scope: Optional[Dict[int, Document]],
        avg_content: float,
        avg_name: float,
        cancel: Optional[threading.Event],
    ) -> List[_Hit]:
        """AND of query terms over postings, restricted to the enabled fields."""
        terms = query_terms(options.search_term)
        if not terms:
            return []
        words = query_words(options.search_term)

        candidates: Optional[Dict[int, List[Posting]]] = None
        for term in terms:
            if cancel is not None and cancel.is_set():
                return []
            matched: Dict[int, Posting] = {}
            for posting in store.lookup(term):
                if scope is not None and posting.document_id not in scope:
                    continue
                in_name = options.search_in_name and posting.name_frequency > 0
                in_content = options.search_in_content and posting.frequency > 0
                if in_name or in_content:
                    matched[posting.document_id] = posting
            if candidates is None:
                candidates = {doc_id: [p] for doc_id, p in matched.items()}
            else:
                candidates = {
                    doc_id: postings + [matched[doc_id]]
                    for doc_id, postings in candidates.items()
                    if doc_id in matched
                }
            if not candidates:
                return []

        hits: List[_Hit] = []
        for doc_id, postings in (candidates or {}).items():
            if cancel is not None and cancel.is_set():
                break
            document = scope[doc_id] if scope is not None else store.get_document(doc_id)
            if document is None:
                continue

            hit = _Hit(document=document)
            if options.search_in_name:
                name_tf = [p.name_frequency for p in postings]
                hit.name_hit = any(name_tf)
                hit.name_score = sum(
                    saturate(tf, document.name_term_count, avg_name) for tf in name_tf
                ) / len(terms)
            if options.search_in_content:
                content_tf = [p.frequency for p in postings]
                hit.content_hit = any(content_tf)
                hit.content_score = sum(
                    saturate(tf, document.term_count, avg_content) for tf in content_tf
                ) / len(terms)
            if options.search_in_name:
                hit.match_count += sum(p.name_frequency for p in postings)
            if options.search_in_content:
                hit.match_count += sum(p.frequency for p in postings)

            if options.case_sensitive:
                # Postings are case-folded; every query word must appear with
                # its exact case in at least one enabled field
                name_words = surface_tokens(document.name) if hit.name_hit else set()
                content_words = surface_tokens(store.content_of(doc_id)) if hit.content_hit else set()
                if not all(w in name_words or w in content_words for w in words):
                    continue
                if not any(w in name_words for w in words):
                    hit.name_hit, hit.name_score = False, 0.0
                if not any(w in content_words for w in words):
                    hit.content_hit, hit.content_score = False, 0.0
            hits.append(hit)
        return hits

    def _regex_hits(
        self,
        store: DocumentStore,
        options: SearchOptions,
        matcher: Matcher,
        scope: Optional[Dict[int, Document]],
        avg_content: float,
        avg_name: float,
        cancel: Optional[threading.Event],
    ) -> List[_Hit]:
        """Regexes cannot use the term dictionary: verify every live document."""
        documents = list(scope.values()) if scope is not None else store.documents()
        hits: List[_Hit] = []
        for document in documents:
            if cancel is not None and cancel.is_set():
                break
            hit = _Hit(document=document)
            if options.search_in_name:
                name_count = matcher.count(document.name)
                hit.name_hit = name_count > 0
                hit.name_score = saturate(name_count, document.name_term_count, avg_name)
                hit.match_count += name_count
            if options.search_in_content:
                content_count = matcher.count(store.content_of(document.id))
                hit.content_hit = content_count > 0
                hit.content_score = saturate(content_count, document.term_count, avg_content)
                hit.match_count += content_count
            if hit.name_hit or hit.content_hit:
                hits.append(hit)
        return hits

    @staticmethod
    def _passes_filters(document: Document, options: SearchOptions) -> bool:
        if not options.include_hidden and is_hidden_name(document.name):
            return False
        if not options.include_system and is_system_name(document.name):
            return False
        if not options.accepts_metadata(document.size, document.mtime, document.extension):
            return False
        return options.accepts_directory(Path(document.path))

    @staticmethod
    def _to_result(
        store: DocumentStore,
        hit: _Hit,
        options: SearchOptions,
        matcher: Matcher,
    ) -> SearchResult:
        document = hit.document
        content = store.content_of(document.id) if hit.content_hit else ""
        return SearchResult(
            path=document.path,
            name=document.name,
            directory=document.directory,
            size=document.size,
            modified=document.mtime,
            extension=document.extension,
            match_type=match_type_for(hit.name_hit, hit.content_hit),
            relevance_score=combine_scores(hit.name_score, hit.content_score, hit.name_hit and hit.content_hit),
            match_count=hit.match_count,
            matching_lines=matcher.matching_lines(content),
            content=matcher.excerpt(content, options.max_content_length),
            source="index",
        )

    def close(self):
        """Clean up resources."""
        self._extractor.close()
        if self._store is not None:
            self._store.close()
            self._store = None


async def build_index(config: IndexConfiguration | None = None) -> IndexingStats:
    """
    Convenience function to build an index once.

    Usage:
        stats = await build_index(IndexConfiguration(indexed_directories=[docs]))
        print(stats)
    """
    manager = IndexManager(config)
    try:
        return await manager.build_index()
    finally:
        manager.close()
