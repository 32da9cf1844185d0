"""
filesearch - Local full-text file search with a persistent index.

Modules:
    - config: IndexConfiguration and environment overrides
    - parsers: content extraction (text, PDF, office, archives)
    - extractor: bounded parallel extraction
    - scanner: file system traversal with scope filtering
    - hasher: xxHash change-detection fingerprints
    - store: SQLite documents + inverted index
    - manager: build / update / delete / query lifecycle
    - live: on-demand scan without an index
    - hybrid: index + live merge under one result budget
    - watcher: watchdog and interval driven updates

Flow:
    Scan -> Fingerprint -> Extract (changed only) -> Upsert postings
    Query -> Index hits (+ live scan to fill gaps) -> Rank -> Truncate

Usage:
    from filesearch import HybridSearchEngine, IndexManager, LiveScanner, SearchOptions

    manager = IndexManager()
    await manager.build_index()
    engine = HybridSearchEngine(manager, LiveScanner())
    results = await engine.search(SearchOptions(search_term="invoice"))
"""

from .config import IndexConfiguration
from .errors import (
    IndexStorageError,
    IndexUnavailableError,
    IndexVersionError,
    InvalidQueryError,
    SearchEngineError,
)
from .events import IndexCompleted, IndexFailed, IndexProgress
from .hybrid import HybridSearchEngine
from .live import LiveScanner
from .manager import IndexManager
from .models import (
    IndexState,
    IndexStatus,
    MatchType,
    SearchMode,
    SearchOptions,
    SearchPerformanceStats,
    SearchResult,
)
from .parsers import ParserRegistry, default_registry

__all__ = [
    "HybridSearchEngine",
    "IndexCompleted",
    "IndexConfiguration",
    "IndexFailed",
    "IndexManager",
    "IndexProgress",
    "IndexState",
    "IndexStatus",
    "IndexStorageError",
    "IndexUnavailableError",
    "IndexVersionError",
    "InvalidQueryError",
    "LiveScanner",
    "MatchType",
    "ParserRegistry",
    "SearchEngineError",
    "SearchMode",
    "SearchOptions",
    "SearchPerformanceStats",
    "SearchResult",
    "default_registry",
]
