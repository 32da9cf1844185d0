"""
PDF parser.

Uses the pdftotext CLI (5-10x faster than pypdf) when it is on PATH,
with fallback to pypdf. Page text is emitted in page order; the only
separators are the line breaks the extractor itself produces.
"""

import logging
import shutil
import subprocess
from pathlib import Path
from typing import Set

from ..errors import ExtractionError
from .base import ContentParser


logger = logging.getLogger(__name__)

PDFTOTEXT_TIMEOUT_SEC = 30

# Check for pdftotext availability at module load
_PDFTOTEXT_AVAILABLE = shutil.which("pdftotext") is not None
if not _PDFTOTEXT_AVAILABLE:
    logger.debug(
        "pdftotext not found. PDF extraction will use pypdf. "
        "Install poppler for faster extraction."
    )


class PdfParser(ContentParser):
    """Extracts page text from PDF files."""

    def __init__(self, use_cli: bool | None = None):
        self.use_cli = _PDFTOTEXT_AVAILABLE if use_cli is None else use_cli

    @property
    def name(self) -> str:
        return "pdf"

    @property
    def supported_extensions(self) -> Set[str]:
        return {".pdf"}

    @property
    def priority(self) -> int:
        return 200

    def can_parse(self, file_path: Path) -> bool:
        if not super().can_parse(file_path):
            return False
        try:
            with open(file_path, "rb") as f:
                return f.read(1024).lstrip().startswith(b"%PDF")
        except OSError:
            # Let extract() report the read failure as a diagnostic
            return True

    def extract(self, file_path: Path) -> str:
        path = Path(file_path)
        if self.use_cli:
            text = self._extract_cli(path)
            if text is not None:
                return text
        return self._extract_pypdf(path)

    def _extract_cli(self, path: Path) -> str | None:
        """Extract PDF text using pdftotext; None means "try pypdf"."""
        try:
            result = subprocess.run(
                ["pdftotext", "-layout", "-nopgbrk", str(path), "-"],
                capture_output=True,
                text=True,
                timeout=PDFTOTEXT_TIMEOUT_SEC,
            )
        except subprocess.TimeoutExpired as e:
            raise ExtractionError(f"pdftotext timed out after {PDFTOTEXT_TIMEOUT_SEC}s") from e
        except OSError as e:
            logger.debug(f"pdftotext error for {path.name}: {e}")
            return None

        if result.returncode != 0:
            logger.debug(f"pdftotext failed for {path.name}: {result.stderr.strip()}")
            return None
        return result.stdout.strip()

    def _extract_pypdf(self, path: Path) -> str:
        """Extract PDF text using pypdf (pure Python fallback)."""
        from pypdf import PdfReader

        reader = PdfReader(str(path))
        text_parts = []
        for page in reader.pages:
            if text := page.extract_text():
                text_parts.append(text)
        return "\n".join(text_parts)
