"""
Data Models - Type definitions for indexing and search.

These dataclasses represent the data flowing between the scanner, the
parsers, the document store and the search front ends. Query-side types
are frozen: a SearchOptions is immutable per query and an IndexStatus is
a snapshot, never a live view.
"""

import stat as stat_module
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from enum import Enum
from pathlib import Path
from typing import FrozenSet, Optional, List, Tuple

from .config import SYSTEM_FILE_NAMES, normalize_extension


class MatchType(Enum):
    """Where a search term was found."""
    NAME = "name"
    CONTENT = "content"
    BOTH = "both"


class SearchMode(Enum):
    """Strategy used by the hybrid orchestrator."""
    INDEX_ONLY = "index"
    LIVE_ONLY = "live"
    HYBRID = "hybrid"


class IndexState(Enum):
    """Lifecycle state of the persistent index."""
    EMPTY = "empty"
    BUILDING = "building"
    AVAILABLE = "available"
    UPDATING = "updating"
    ERROR = "error"


_HIDDEN_ATTR = getattr(stat_module, "FILE_ATTRIBUTE_HIDDEN", 0x2)
_SYSTEM_ATTR = getattr(stat_module, "FILE_ATTRIBUTE_SYSTEM", 0x4)


def is_hidden_name(name: str, attributes: int = 0) -> bool:
    """Dot-files, or the Windows hidden attribute."""
    return name.startswith(".") or bool(attributes & _HIDDEN_ATTR)


def is_system_name(name: str, attributes: int = 0) -> bool:
    """Well-known OS droppings, or the Windows system attribute."""
    return name in SYSTEM_FILE_NAMES or bool(attributes & _SYSTEM_ATTR)


@dataclass
class FileInfo:
    """
    Basic file information from the scanner.

    This is the lightest-weight representation, containing only
    what we get from stat() without reading file content.
    """
    path: Path
    name: str
    extension: str
    size: int
    mtime: datetime
    mtime_ns: int = 0
    is_hidden: bool = False
    is_system: bool = False

    @property
    def directory(self) -> str:
        return str(self.path.parent)

    @classmethod
    def from_path(
        cls,
        path: Path,
        mtime: float,
        size: int,
        mtime_ns: Optional[int] = None,
        attributes: int = 0,
    ) -> "FileInfo":
        """Create FileInfo from a path and stat result."""
        name = path.name
        return cls(
            path=path,
            name=name,
            extension=normalize_extension(path.suffix),
            size=size,
            mtime=datetime.fromtimestamp(mtime),
            mtime_ns=mtime_ns if mtime_ns is not None else int(mtime * 1_000_000_000),
            is_hidden=is_hidden_name(name, attributes),
            is_system=is_system_name(name, attributes),
        )

    @classmethod
    def from_stat(cls, path: Path) -> "FileInfo":
        """Stat a path and build its FileInfo (raises OSError)."""
        st = path.stat()
        return cls.from_path(
            path,
            st.st_mtime,
            st.st_size,
            mtime_ns=st.st_mtime_ns,
            attributes=getattr(st, "st_file_attributes", 0),
        )


@dataclass(frozen=True)
class SearchOptions:
    """
    Everything that describes one query. Immutable per query.

    Empty include sets mean "no restriction"; exclusions always apply.
    """
    search_term: str = ""
    search_in_name: bool = True
    search_in_content: bool = True
    use_regex: bool = False
    case_sensitive: bool = False
    whole_word: bool = False

    include_extensions: FrozenSet[str] = frozenset()
    exclude_extensions: FrozenSet[str] = frozenset()
    include_directories: Tuple[Path, ...] = ()
    exclude_directories: FrozenSet[str] = frozenset()

    min_file_size: Optional[int] = None
    max_file_size: Optional[int] = None
    modified_after: Optional[datetime] = None
    modified_before: Optional[datetime] = None

    max_results: int = 1000
    max_content_length: int = 10_000
    include_hidden: bool = False
    include_system: bool = False

    def __post_init__(self):
        # frozen: normalize through object.__setattr__
        object.__setattr__(self, "include_extensions",
                           frozenset(normalize_extension(e) for e in self.include_extensions if e))
        object.__setattr__(self, "exclude_extensions",
                           frozenset(normalize_extension(e) for e in self.exclude_extensions if e))
        object.__setattr__(self, "include_directories",
                           tuple(Path(d).expanduser().resolve() for d in self.include_directories))
        object.__setattr__(self, "exclude_directories", frozenset(self.exclude_directories))

    def accepts_metadata(self, size: int, mtime: datetime, extension: str) -> bool:
        """Size, date and extension filters shared by index and live search."""
        if self.min_file_size is not None and size < self.min_file_size:
            return False
        if self.max_file_size is not None and size > self.max_file_size:
            return False
        if self.modified_after is not None and mtime < self.modified_after:
            return False
        if self.modified_before is not None and mtime > self.modified_before:
            return False
        if extension in self.exclude_extensions:
            return False
        if self.include_extensions and extension not in self.include_extensions:
            return False
        return True

    def accepts_directory(self, path: Path) -> bool:
        """Directory include/exclude filters for a file path."""
        if self.exclude_directories and is_excluded_directory(path.parent, self.exclude_directories):
            return False
        if self.include_directories:
            return any(_is_within(path, root) for root in self.include_directories)
        return True


def is_excluded_directory(directory: Path, excluded) -> bool:
    """
    Match a directory against exclusions given either as bare folder names
    ("node_modules", matched against any path component) or as absolute
    paths (matched as prefixes).
    """
    parts = set(directory.parts)
    for entry in excluded:
        candidate = Path(entry)
        if candidate.is_absolute():
            if _is_within(directory, candidate):
                return True
        elif entry in parts:
            return True
    return False


def _is_within(path: Path, root: Path) -> bool:
    try:
        path.relative_to(root)
        return True
    except ValueError:
        return False


@dataclass
class SearchResult:
    """
    One hit. Created fresh per query; never persisted.

    relevance_score is non-negative and only comparable within one query.
    """
    path: str
    name: str
    directory: str
    size: int
    modified: datetime
    extension: str
    match_type: MatchType
    relevance_score: float = 0.0
    match_count: int = 0
    matching_lines: List[str] = field(default_factory=list)
    content: str = ""
    source: str = "index"


@dataclass(frozen=True)
class Document:
    """An index-resident record for one file; the path is the natural key."""
    id: int
    path: str
    name: str
    directory: str
    extension: str
    size: int
    mtime: datetime
    fingerprint: str
    term_count: int = 0              # content tokens
    name_term_count: int = 0         # file name tokens
    deleted: bool = False
    indexed_at: Optional[datetime] = None


@dataclass(frozen=True)
class Posting:
    """A term's occurrence record inside one document."""
    term: str
    document_id: int
    frequency: int                   # occurrences in extracted content
    name_frequency: int = 0          # occurrences in the file name
    positions: Tuple[int, ...] = ()  # content token offsets


@dataclass(frozen=True)
class IndexStatus:
    """Read-only snapshot of the index; replaced, never mutated."""
    state: IndexState = IndexState.EMPTY
    document_count: int = 0
    directory_count: int = 0
    index_size: int = 0
    created: Optional[datetime] = None
    last_updated: Optional[datetime] = None
    version: str = ""
    files_processed: int = 0
    build_time: timedelta = timedelta(0)
    progress_percentage: int = 0
    current_file: Optional[str] = None
    indexing_speed: float = 0.0
    estimated_time_remaining: timedelta = timedelta(0)
    error_message: Optional[str] = None

    @property
    def is_available(self) -> bool:
        return self.state in (IndexState.AVAILABLE, IndexState.UPDATING)

    @property
    def is_building(self) -> bool:
        return self.state in (IndexState.BUILDING, IndexState.UPDATING)


@dataclass
class ScanResult:
    """Result of scanning a directory tree."""
    files: List[FileInfo]
    skipped_count: int
    error_count: int
    duration_seconds: float


@dataclass
class IndexingStats:
    """Statistics from a build or update run."""
    files_scanned: int = 0
    files_indexed: int = 0
    files_unchanged: int = 0
    files_removed: int = 0
    files_skipped: int = 0
    content_skipped: int = 0     # over max_file_size or no parser
    errors: int = 0
    cancelled: bool = False
    duration_seconds: float = 0.0

    def __str__(self) -> str:
        return (
            f"Indexed {self.files_indexed} files "
            f"({self.files_unchanged} unchanged, "
            f"{self.files_removed} removed, "
            f"{self.files_skipped} skipped, "
            f"{self.errors} errors) "
            f"in {self.duration_seconds:.1f}s"
        )


@dataclass(frozen=True)
class SearchPerformanceStats:
    """Bookkeeping snapshot for the hybrid orchestrator."""
    total_searches: int = 0
    index_search_count: int = 0
    live_search_count: int = 0
    hybrid_search_count: int = 0
    average_index_search_time: timedelta = timedelta(0)
    average_live_search_time: timedelta = timedelta(0)
    average_hybrid_search_time: timedelta = timedelta(0)
    # Fraction of index queries / live scans that produced at least one result
    index_hit_rate: float = 0.0
    live_hit_rate: float = 0.0
    last_index_update: Optional[datetime] = None
    last_updated: Optional[datetime] = None
