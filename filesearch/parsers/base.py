"""
Base class for all content parsers.
Each parser turns one family of file formats into plain searchable text.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Set

from ..config import normalize_extension


@dataclass(frozen=True)
class ExtractedContent:
    """Outcome of running the registry on one file."""

    text: str                       # Extracted text, or a diagnostic line
    parser: Optional[str] = None    # Name of the parser that ran
    is_diagnostic: bool = False     # True: text describes a failure, not content
    truncated: bool = False         # Output was cut at max_content_length
    skipped: bool = False           # Not attempted (too large / no parser)

    @property
    def searchable_text(self) -> str:
        """Text that may be tokenized or matched; never diagnostics."""
        return "" if self.is_diagnostic or self.skipped else self.text


class ContentParser(ABC):
    """
    Base class for all content parsers.

    To add a new format:
    1. Create a new class extending ContentParser
    2. Implement name, supported_extensions, priority and extract
    3. Register an instance with ParserRegistry (see default_registry)
    """

    @property
    @abstractmethod
    def name(self) -> str:
        """Short identifier used in logs and diagnostics."""
        pass

    @property
    @abstractmethod
    def supported_extensions(self) -> Set[str]:
        """
        File extensions this parser handles (e.g., {'.pdf'}).
        Include the dot.
        """
        pass

    @property
    @abstractmethod
    def priority(self) -> int:
        """Higher wins when several parsers accept the same file."""
        pass

    def can_parse(self, file_path: Path) -> bool:
        """
        Check if this parser should process the given file.

        Defaults to an extension check; override to sniff content.
        """
        return normalize_extension(Path(file_path).suffix) in self.supported_extensions

    @abstractmethod
    def extract(self, file_path: Path) -> str:
        """
        Extract plain text from a file.

        Implementations may raise; the registry converts any exception
        into diagnostic text.
        """
        pass
