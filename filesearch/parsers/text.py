"""
Text parser for plain-text documents and code files.

Decoding is probed in a fixed order and the first strict decode wins;
a file that none of them accepts is still read, lossily, as UTF-8.
"""

import codecs
import logging
from pathlib import Path
from typing import Set

from ..config import TEXT_EXTENSIONS
from .base import ContentParser


logger = logging.getLogger(__name__)

ENCODING_PROBE_ORDER = ("utf-8", "ascii", "utf-16-le", "utf-16-be")


def decode_bytes(data: bytes) -> str:
    """
    Decode raw bytes using the encoding probe.

    BOMs short-circuit the probe: a UTF-8 BOM is stripped and a UTF-16 BOM
    selects the matching byte order.
    """
    if data.startswith(codecs.BOM_UTF8):
        return data[len(codecs.BOM_UTF8):].decode("utf-8", errors="replace")
    if data.startswith(codecs.BOM_UTF16_LE):
        return data[2:].decode("utf-16-le", errors="replace")
    if data.startswith(codecs.BOM_UTF16_BE):
        return data[2:].decode("utf-16-be", errors="replace")

    for encoding in ENCODING_PROBE_ORDER:
        try:
            return data.decode(encoding)
        except UnicodeDecodeError:
            continue

    logger.debug("No strict decode succeeded; falling back to lossy UTF-8")
    return data.decode("utf-8", errors="replace")


class TextFileParser(ContentParser):
    """Extracts text from plain-text documents and code files."""

    @property
    def name(self) -> str:
        return "text"

    @property
    def supported_extensions(self) -> Set[str]:
        return set(TEXT_EXTENSIONS)

    @property
    def priority(self) -> int:
        return 50

    def extract(self, file_path: Path) -> str:
        return decode_bytes(Path(file_path).read_bytes())
