"""
Content parsers - turn file formats into searchable text.

Modules:
    - base: ContentParser interface and ExtractedContent result
    - registry: extension + priority selection, failure boundary
    - text: multi-encoding plain text
    - pdf: pdftotext CLI / pypdf
    - office: docx / xlsx / pptx
    - archive: zip / tar / 7z / rar listings
"""

from .base import ContentParser, ExtractedContent
from .registry import ParserRegistry, default_registry

__all__ = ["ContentParser", "ExtractedContent", "ParserRegistry", "default_registry"]
