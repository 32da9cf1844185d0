"""
Scanner - File system traversal with scope filtering.

Used by both the IndexManager (scope from IndexConfiguration) and the
LiveScanner (scope from SearchOptions). Yields FileInfo objects as they
are found so the walk can feed a worker pool without waiting for the
full tree.
"""

import asyncio
import logging
import os
import threading
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import AsyncGenerator, Iterable, List, Optional, Set

from .config import IndexConfiguration
from .errors import handle_error
from .models import FileInfo, ScanResult, SearchOptions, is_hidden_name, is_system_name


logger = logging.getLogger(__name__)


def index_storage_files(index_path: Path) -> Set[Path]:
    """The index database and its SQLite side files."""
    return {index_path} | {
        index_path.with_name(index_path.name + suffix)
        for suffix in ("-wal", "-shm", "-journal")
    }


@dataclass
class ScanFilter:
    """
    Which directories to descend into and which files to yield.

    `options` carries the per-query size/date/extension filters for live
    scans; index scans leave it unset because oversize files are still
    indexed by name.
    """
    excluded_directories: Set[str] = field(default_factory=set)
    included_extensions: Set[str] = field(default_factory=set)   # empty = all
    excluded_extensions: Set[str] = field(default_factory=set)
    include_hidden: bool = False
    include_system: bool = False
    excluded_files: Set[Path] = field(default_factory=set)
    options: Optional[SearchOptions] = None

    @classmethod
    def for_index(cls, config: IndexConfiguration) -> "ScanFilter":
        return cls(
            excluded_directories=set(config.excluded_directories),
            included_extensions=set(config.indexed_extensions),
            excluded_extensions=set(config.excluded_extensions),
            include_hidden=config.include_hidden,
            include_system=config.include_system,
            excluded_files=index_storage_files(config.index_path),
        )

    @classmethod
    def for_search(cls, options: SearchOptions, excluded_files: Iterable[Path] = ()) -> "ScanFilter":
        return cls(
            excluded_directories=set(options.exclude_directories),
            include_hidden=options.include_hidden,
            include_system=options.include_system,
            excluded_files=set(excluded_files),
            options=options,
        )

    def should_skip_dir(self, path: Path, attributes: int = 0) -> bool:
        """Check if a directory should be skipped."""
        name = path.name
        if not self.include_hidden and is_hidden_name(name, attributes):
            return True
        if not self.include_system and is_system_name(name, attributes):
            return True
        # Bare names match this folder only; its ancestors were checked on the way down
        for excluded in self.excluded_directories:
            candidate = Path(excluded)
            if candidate.is_absolute():
                if path == candidate or candidate in path.parents:
                    return True
            elif name == excluded:
                return True
        return False

    def accepts(self, info: FileInfo) -> bool:
        """Check if a file belongs to the scope."""
        if info.path in self.excluded_files:
            return False
        if not self.include_hidden and info.is_hidden:
            return False
        if not self.include_system and info.is_system:
            return False
        if info.extension in self.excluded_extensions:
            return False
        if self.included_extensions and info.extension not in self.included_extensions:
            return False
        if self.options is not None:
            return self.options.accepts_metadata(info.size, info.mtime, info.extension)
        return True


class Scanner:
    """
    File system scanner.

    Yields FileInfo objects for each file found, filtering out
    directories and files that fall outside the ScanFilter.
    """

    def __init__(self, scan_filter: ScanFilter | None = None):
        self.filter = scan_filter or ScanFilter()
        self.skipped_count = 0
        self.error_count = 0

    async def scan(
        self,
        roots: List[Path],
        cancel: Optional[threading.Event] = None,
    ) -> ScanResult:
        """
        Scan directories and return all found files.

        Args:
            roots: Directories to scan
            cancel: Stops the walk early when set

        Returns:
            ScanResult with list of FileInfo and statistics
        """
        start_time = time.monotonic()
        files: List[FileInfo] = []

        async for file_info in self.scan_iter(roots, cancel):
            files.append(file_info)

        duration = time.monotonic() - start_time
        logger.info(f"Scanned {len(files)} files in {duration:.1f}s")

        return ScanResult(
            files=files,
            skipped_count=self.skipped_count,
            error_count=self.error_count,
            duration_seconds=duration,
        )

    async def scan_iter(
        self,
        roots: List[Path],
        cancel: Optional[threading.Event] = None,
    ) -> AsyncGenerator[FileInfo, None]:
        """
        Iterate over files in directories.

        This is a streaming interface that yields files as they're found,
        useful for immediate processing without waiting for full scan.
        """
        self.skipped_count = 0
        self.error_count = 0
        seen_roots: Set[Path] = set()

        for root in roots:
            root = Path(root).expanduser().resolve()
            if root in seen_roots:
                continue
            seen_roots.add(root)

            if not root.is_dir():
                logger.warning(f"Root directory not found: {root}")
                continue

            async for file_info in self._scan_directory(root, cancel):
                yield file_info

    async def _scan_directory(
        self,
        directory: Path,
        cancel: Optional[threading.Event],
    ) -> AsyncGenerator[FileInfo, None]:
        """
        Walk one tree depth-first, files before subdirectories.

        Uses an explicit stack instead of recursion so deep trees cannot
        exhaust the interpreter stack.
        """
        stack: List[Path] = [directory]

        while stack:
            if cancel is not None and cancel.is_set():
                return

            current = stack.pop()
            # Use os.scandir for efficiency (returns DirEntry with cached stat)
            try:
                with os.scandir(current) as it:
                    entries = sorted(it, key=lambda e: e.name)
            except OSError as e:
                handle_error(e, current, "scan_directory")
                self.error_count += 1
                continue

            subdirs: List[Path] = []

            for entry in entries:
                if cancel is not None and cancel.is_set():
                    return
                try:
                    if entry.is_dir(follow_symlinks=False):
                        attrs = getattr(entry.stat(follow_symlinks=False), "st_file_attributes", 0)
                        if self.filter.should_skip_dir(Path(entry.path), attrs):
                            self.skipped_count += 1
                            continue
                        subdirs.append(Path(entry.path))

                    elif entry.is_file(follow_symlinks=False):
                        file_info = self._get_file_info(entry)
                        if file_info is None:
                            continue
                        if not self.filter.accepts(file_info):
                            self.skipped_count += 1
                            continue
                        yield file_info

                except OSError as e:
                    handle_error(e, Path(entry.path), "scan_entry")
                    self.error_count += 1
                    continue

            # Give consumers a turn between directories
            await asyncio.sleep(0)

            # Reverse so subdirectories are visited in name order
            stack.extend(reversed(subdirs))

    def _get_file_info(self, entry: os.DirEntry) -> FileInfo | None:
        """
        Get FileInfo from a directory entry.

        This runs stat() which may block briefly on network filesystems.
        """
        try:
            st = entry.stat(follow_symlinks=False)
            return FileInfo.from_path(
                path=Path(entry.path),
                mtime=st.st_mtime,
                size=st.st_size,
                mtime_ns=st.st_mtime_ns,
                attributes=getattr(st, "st_file_attributes", 0),
            )
        except OSError as e:
            handle_error(e, Path(entry.path), "stat")
            self.error_count += 1
            return None


async def scan_directories(
    roots: List[Path],
    scan_filter: ScanFilter | None = None,
) -> ScanResult:
    """
    Convenience function to scan directories.

    Usage:
        result = await scan_directories([Path.home() / "Documents"])
        for file in result.files:
            print(file.path)
    """
    scanner = Scanner(scan_filter)
    return await scanner.scan(roots)
