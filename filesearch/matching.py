"""
Matching - Compiled search term shared by live scans and index verification.

The same Matcher decides regex / whole-word / case-sensitivity for both
paths so a file scores the same way whether it came from the index or
from a live scan.
"""

import re
from typing import List, Optional

from .errors import InvalidQueryError
from .models import SearchOptions


MAX_MATCHING_LINES = 10
MAX_LINE_LENGTH = 200


class Matcher:
    """A search term compiled once per query."""

    def __init__(self, options: SearchOptions):
        self.term = options.search_term
        self.pattern = self._compile(options)

    @staticmethod
    def _compile(options: SearchOptions) -> Optional[re.Pattern]:
        term = options.search_term
        if not term:
            return None

        source = term if options.use_regex else re.escape(term)
        if options.whole_word:
            source = rf"\b(?:{source})\b"
        flags = 0 if options.case_sensitive else re.IGNORECASE

        try:
            return re.compile(source, flags)
        except re.error as e:
            raise InvalidQueryError(f"Invalid regular expression {term!r}: {e}") from e

    @property
    def is_empty(self) -> bool:
        return self.pattern is None

    def matches(self, text: str) -> bool:
        if self.pattern is None or not text:
            return False
        return self.pattern.search(text) is not None

    def count(self, text: str) -> int:
        """Number of non-overlapping matches (empty matches ignored)."""
        if self.pattern is None or not text:
            return 0
        return sum(1 for m in self.pattern.finditer(text) if m.end() > m.start())

    def matching_lines(self, text: str, limit: int = MAX_MATCHING_LINES) -> List[str]:
        """The first `limit` lines containing a match, stripped and shortened."""
        if self.pattern is None or not text:
            return []
        lines: List[str] = []
        for line in text.splitlines():
            if self.pattern.search(line):
                lines.append(line.strip()[:MAX_LINE_LENGTH])
                if len(lines) >= limit:
                    break
        return lines

    def excerpt(self, text: str, max_length: int) -> str:
        """A window of `text` around the first match, at most max_length chars."""
        if not text or max_length <= 0:
            return ""
        if len(text) <= max_length:
            return text
        start = 0
        if self.pattern is not None:
            m = self.pattern.search(text)
            if m:
                start = max(0, m.start() - max_length // 4)
        return text[start:start + max_length]
