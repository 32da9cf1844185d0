"""
Events - Progress, completion and failure notifications.

Both the IndexManager and the LiveScanner publish the same event types so
a caller can render one progress surface regardless of search mode.
Handlers may be invoked from any thread and must not assume ordering
beyond "progress for file N precedes the final completion event".
"""

import logging
from dataclasses import dataclass
from datetime import timedelta
from typing import Callable, List, Optional, Tuple, Type


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class IndexProgress:
    """Published after every file processed."""
    documents_processed: int
    total_documents: int            # estimate; grows while the walk runs
    current_file: str
    elapsed: timedelta
    speed: float                    # files per second
    estimated_time_remaining: timedelta

    @property
    def percentage(self) -> int:
        if self.total_documents <= 0:
            return 0
        return min(100, int(self.documents_processed * 100 / self.total_documents))


@dataclass(frozen=True)
class IndexCompleted:
    """Published exactly once when a build or update finishes."""
    total_documents: int
    total_time: timedelta
    index_size: int
    success: bool = True


@dataclass(frozen=True)
class IndexFailed:
    """Published exactly once when a build or update fails."""
    message: str
    exception: Optional[BaseException] = None
    file_path: Optional[str] = None


Event = object
Handler = Callable[[Event], None]


class EventBus:
    """
    Minimal synchronous publish/subscribe.

    Usage:
        bus = EventBus()
        bus.subscribe(lambda e: print(e.percentage), IndexProgress)
        bus.emit(progress)
    """

    def __init__(self):
        self._handlers: List[Tuple[Handler, Tuple[Type, ...]]] = []

    def subscribe(self, handler: Handler, *event_types: Type) -> Callable[[], None]:
        """
        Register a handler for some (default: all) event types.

        Returns:
            A callable that removes the subscription
        """
        entry = (handler, tuple(event_types))
        self._handlers.append(entry)

        def unsubscribe():
            if entry in self._handlers:
                self._handlers.remove(entry)

        return unsubscribe

    def emit(self, event: Event) -> None:
        for handler, event_types in list(self._handlers):
            if event_types and not isinstance(event, event_types):
                continue
            try:
                handler(event)
            except Exception as e:
                logger.error(f"Event handler error: {e}")

    def handler_count(self) -> int:
        return len(self._handlers)


def progress_event(
    processed: int,
    total: int,
    current_file: str,
    elapsed_seconds: float,
) -> IndexProgress:
    """Build a progress event, deriving speed and ETA from the counts."""
    speed = processed / elapsed_seconds if elapsed_seconds > 0 else 0.0
    remaining = max(0, total - processed)
    eta = remaining / speed if speed > 0 else 0.0
    return IndexProgress(
        documents_processed=processed,
        total_documents=total,
        current_file=current_file,
        elapsed=timedelta(seconds=elapsed_seconds),
        speed=speed,
        estimated_time_remaining=timedelta(seconds=eta),
    )
