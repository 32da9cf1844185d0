"""
Errors - Exception hierarchy and the per-file skip policy.

Structural failures (an unavailable or unreadable index, a malformed
query) are raised to the caller. Problems with a single file or
directory during a walk are logged by ``handle_error`` and that entry is
skipped.
"""

import errno
import logging
from pathlib import Path
from typing import Optional


logger = logging.getLogger(__name__)


class SearchEngineError(Exception):
    """Base exception for search engine errors."""
    pass


class IndexUnavailableError(SearchEngineError):
    """An index-only search was requested but the index is not available."""

    def __init__(self, state: str):
        self.state = state
        super().__init__(f"Index unavailable (state: {state})")


class IndexStorageError(SearchEngineError):
    """The index storage itself is unreadable or unwritable."""
    pass


class IndexVersionError(IndexStorageError):
    """Persisted index was written with an incompatible schema version."""

    def __init__(self, found: str, expected: str):
        self.found = found
        self.expected = expected
        super().__init__(f"Index schema version {found!r} is not {expected!r}; rebuild required")


class InvalidQueryError(SearchEngineError):
    """The search term cannot be compiled (e.g. a malformed regex)."""
    pass


class ExtractionError(SearchEngineError):
    """Raised by parsers; converted to diagnostic text by the registry."""
    pass


# (exception type, log level, reason); first isinstance match wins
SKIP_REASONS: list[tuple[type, int, str]] = [
    (PermissionError, logging.WARNING, "permission denied"),
    (FileNotFoundError, logging.DEBUG, "vanished before it could be read"),
    (IsADirectoryError, logging.DEBUG, "is a directory"),
    (NotADirectoryError, logging.DEBUG, "is not a directory"),
    (ExtractionError, logging.DEBUG, "content could not be extracted"),
    (OSError, logging.WARNING, "I/O error"),
]

# Link loops and dangling mounts are routine on real trees
_QUIET_ERRNOS = {errno.ELOOP, errno.ENAMETOOLONG, errno.ESTALE}


def skip_level(error: Exception) -> tuple[int, str]:
    """Log level and short reason for skipping an entry after ``error``."""
    if isinstance(error, OSError) and error.errno in _QUIET_ERRNOS:
        return logging.DEBUG, "unreachable path"
    for error_type, level, reason in SKIP_REASONS:
        if isinstance(error, error_type):
            return level, reason
    return logging.ERROR, "unexpected error"


def handle_error(
    error: Exception,
    file_path: Optional[Path] = None,
    context: str = ""
) -> int:
    """
    Log a per-entry failure so the caller can skip the entry and go on.

    Returns the level the message was logged at, so callers can tell a
    routine skip (DEBUG) from one worth counting.
    """
    level, reason = skip_level(error)
    where = str(file_path) if file_path else "<unknown>"
    prefix = f"[{context}] " if context else ""
    logger.log(level, f"{prefix}Skipping {where}: {reason} ({error})")
    return level
