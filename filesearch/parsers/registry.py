"""
Parser Registry - Maps a file to the best-suited content parser.

Selection: among parsers that list the file's extension and whose
can_parse() accepts it, the highest priority wins; equal priorities go to
the parser registered first.

The registry is also the failure boundary. extract() never raises for
parser problems: exceptions become a short diagnostic string flagged as
such, so callers can keep it out of term indexing and match scoring.
Both size limits are enforced here rather than trusted to the parser.
"""

import logging
from pathlib import Path
from typing import List, Optional

from ..config import normalize_extension
from .base import ContentParser, ExtractedContent


logger = logging.getLogger(__name__)

MAX_DIAGNOSTIC_LENGTH = 200


class ParserRegistry:
    """Ordered collection of content parsers."""

    def __init__(self):
        self._parsers: List[ContentParser] = []

    def register(self, parser: ContentParser) -> None:
        """Add a parser; registration order breaks priority ties."""
        if parser is None:
            raise ValueError("parser must not be None")
        self._parsers.append(parser)
        logger.debug(f"Registered parser {parser.name} (priority {parser.priority})")

    def parsers(self) -> List[ContentParser]:
        """All parsers, highest priority first (stable for ties)."""
        return sorted(self._parsers, key=lambda p: -p.priority)

    def select(self, file_path: Path) -> Optional[ContentParser]:
        """Pick the parser for a file, or None when it is unsupported."""
        ext = normalize_extension(Path(file_path).suffix)
        if not ext:
            return None

        best: Optional[ContentParser] = None
        for parser in self._parsers:
            if ext not in parser.supported_extensions:
                continue
            if best is not None and parser.priority <= best.priority:
                continue
            if parser.can_parse(Path(file_path)):
                best = parser
        return best

    def extract(
        self,
        file_path: Path,
        max_file_size: Optional[int] = None,
        max_content_length: Optional[int] = None,
    ) -> ExtractedContent:
        """
        Extract bounded text from one file.

        Returns a skipped result when the file is unsupported or larger
        than max_file_size, and a diagnostic result when the parser fails.
        """
        path = Path(file_path)
        parser = self.select(path)
        if parser is None:
            return ExtractedContent(text="", skipped=True)

        if max_file_size is not None:
            try:
                size = path.stat().st_size
            except OSError as e:
                return self._diagnostic(parser, e)
            if size > max_file_size:
                logger.debug(f"Skipping content of {path.name}: {size} > {max_file_size} bytes")
                return ExtractedContent(text="", parser=parser.name, skipped=True)

        try:
            text = parser.extract(path) or ""
        except Exception as e:
            logger.debug(f"{parser.name} parser failed for {path}: {e}")
            return self._diagnostic(parser, e)

        truncated = False
        if max_content_length is not None and len(text) > max_content_length:
            text = text[:max_content_length]
            truncated = True

        return ExtractedContent(text=text, parser=parser.name, truncated=truncated)

    @staticmethod
    def _diagnostic(parser: ContentParser, error: Exception) -> ExtractedContent:
        message = f"[{parser.name} extraction failed: {error}]"
        return ExtractedContent(
            text=message[:MAX_DIAGNOSTIC_LENGTH],
            parser=parser.name,
            is_diagnostic=True,
        )


def default_registry() -> ParserRegistry:
    """Registry with every built-in parser."""
    from .archive import ArchiveParser
    from .office import OfficeParser
    from .pdf import PdfParser
    from .text import TextFileParser

    registry = ParserRegistry()
    registry.register(TextFileParser())
    registry.register(PdfParser())
    registry.register(OfficeParser())
    registry.register(ArchiveParser())
    return registry
