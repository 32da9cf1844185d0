"""
Watcher - Keeps the index fresh between explicit updates.

Two drivers, both of which only ever call IndexManager.update_index():
    - IndexWatcher: watchdog observer whose events are collapsed per path
      and flushed once the tree has been quiet for debounce_ms
    - run_periodic_updates: interval loop driven by
      auto_update_interval_minutes

Index correctness never depends on these; a missed event is picked up by
the next update's walk.
"""

import asyncio
import logging
import time
from collections import Counter
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Dict, Iterable, List, Optional

from watchdog.events import FileSystemEvent, FileSystemEventHandler
from watchdog.observers import Observer

from .errors import SearchEngineError
from .manager import IndexManager
from .models import is_hidden_name, is_system_name
from .scanner import index_storage_files


logger = logging.getLogger(__name__)


class ChangeKind(Enum):
    CREATED = "created"
    MODIFIED = "modified"
    DELETED = "deleted"
    MOVED = "moved"


@dataclass(frozen=True)
class PathChange:
    """Latest observed change for one path."""
    path: Path
    kind: ChangeKind
    previous: Optional[Path] = None


def describe_changes(changes: Iterable[PathChange]) -> str:
    """Per-kind tally such as "created=2, deleted=1"."""
    tally = Counter(change.kind.value for change in changes)
    return ", ".join(f"{kind}={count}" for kind, count in sorted(tally.items()))


class _Forwarder(FileSystemEventHandler):
    """Observer-thread handler that hands file events to the watcher's loop."""

    def __init__(self, watcher: "IndexWatcher", loop: asyncio.AbstractEventLoop):
        self.watcher = watcher
        self.loop = loop

    def on_any_event(self, event: FileSystemEvent):
        if event.is_directory:
            return
        try:
            kind = ChangeKind(event.event_type)
        except ValueError:
            # opened / closed notifications carry no content change
            return

        if kind is ChangeKind.MOVED:
            path, previous = Path(event.dest_path), Path(event.src_path)
        else:
            path, previous = Path(event.src_path), None
        self.loop.call_soon_threadsafe(self.watcher.note_change, path, kind, previous)


class IndexWatcher:
    """
    Turns filesystem events into incremental index updates.

    Every event pushes the flush deadline out by debounce_ms, so a burst
    of saves costs a single update once the burst is over.

        watcher = IndexWatcher(manager)
        watcher.start()
        ...
        watcher.stop()
    """

    def __init__(self, manager: IndexManager, debounce_ms: Optional[int] = None):
        self.manager = manager
        if debounce_ms is None:
            debounce_ms = manager.configuration.debounce_ms
        self.debounce_ms = debounce_ms
        self.updates_run = 0

        self._observer: Optional[Observer] = None
        self._changes: Dict[Path, PathChange] = {}
        self._deadline = 0.0
        self._timer: Optional[asyncio.Task] = None

    @property
    def is_running(self) -> bool:
        return self._observer is not None

    @property
    def pending_count(self) -> int:
        return len(self._changes)

    def start(self, roots: List[Path] | None = None):
        """Begin observing `roots` (default: the indexed directories). Call from the loop."""
        if self._observer is not None:
            return

        forwarder = _Forwarder(self, asyncio.get_running_loop())
        observer = Observer()
        watched = 0
        for root in roots or self.manager.configuration.indexed_directories:
            if not root.is_dir():
                logger.warning(f"Not watching missing directory {root}")
                continue
            observer.schedule(forwarder, str(root), recursive=True)
            watched += 1
            logger.debug(f"Watching {root}")

        observer.start()
        self._observer = observer
        logger.info(f"Watcher started on {watched} directories")

    def stop(self):
        """Stop observing. Changes not yet flushed stay pending."""
        observer, self._observer = self._observer, None
        if observer is not None:
            observer.stop()
            observer.join(timeout=2)
            logger.info("Watcher stopped")

        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

    def note_change(self, path: Path, kind: ChangeKind, previous: Optional[Path] = None):
        """Record a change on the loop thread and push the flush deadline out."""
        if self.ignores(path):
            return

        self._changes[path] = PathChange(path=path, kind=kind, previous=previous)
        self._deadline = time.monotonic() + self.debounce_ms / 1000.0

        if self._timer is None or self._timer.done():
            self._timer = asyncio.get_running_loop().create_task(self._flush_when_quiet())

    async def _flush_when_quiet(self):
        while True:
            remaining = self._deadline - time.monotonic()
            if remaining <= 0:
                break
            await asyncio.sleep(remaining)
        await self.flush()

    async def flush(self):
        """Run one incremental update covering every pending change."""
        if not self._changes:
            return

        changes, self._changes = self._changes, {}
        logger.info(f"Updating index for {len(changes)} changed paths ({describe_changes(changes.values())})")
        for change in changes.values():
            if change.previous is not None:
                logger.debug(f"Moved: {change.previous} -> {change.path}")

        try:
            stats = await self.manager.update_index()
        except SearchEngineError as e:
            # The manager has already emitted IndexFailed
            logger.error(f"Update after file changes failed: {e}")
            return
        self.updates_run += 1
        logger.info(f"Watcher update: {stats}")

    def ignores(self, path: Path) -> bool:
        """True when a change to `path` could never alter the index."""
        config = self.manager.configuration
        if path in index_storage_files(config.index_path):
            return True
        if path.suffix.lower() in config.excluded_extensions:
            return True
        if not config.include_system and is_system_name(path.name):
            return True

        hidden_ok = config.include_hidden
        if not hidden_ok and is_hidden_name(path.name):
            return True
        return any(
            part in config.excluded_directories or (not hidden_ok and is_hidden_name(part))
            for part in path.parts[:-1]
        )


async def run_periodic_updates(
    manager: IndexManager,
    interval_minutes: Optional[float] = None,
    stop: Optional[asyncio.Event] = None,
) -> int:
    """
    Call update_index() every interval until `stop` is set.

        stop = asyncio.Event()
        task = asyncio.create_task(run_periodic_updates(manager, stop=stop))
        ...
        stop.set()
        await task

    Returns:
        Number of updates run
    """
    if interval_minutes is None:
        interval_minutes = manager.configuration.auto_update_interval_minutes
    interval = max(0.0, float(interval_minutes) * 60.0)
    stop = stop or asyncio.Event()
    updates = 0

    while not stop.is_set():
        try:
            await asyncio.wait_for(stop.wait(), timeout=interval)
            break
        except asyncio.TimeoutError:
            pass

        try:
            stats = await manager.update_index()
            updates += 1
            logger.info(f"Scheduled update: {stats}")
        except SearchEngineError as e:
            logger.error(f"Scheduled update failed: {e}")

    return updates
