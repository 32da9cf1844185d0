"""
Office parser for Word, Excel and PowerPoint (OOXML) files.

Only human-visible text is extracted: paragraph and table text for
documents, cell display values for spreadsheets, run text per slide for
presentations. Images and embedded objects are ignored.
"""

import logging
from pathlib import Path
from typing import List, Set

from ..errors import ExtractionError
from .base import ContentParser


logger = logging.getLogger(__name__)


class OfficeParser(ContentParser):
    """Extracts visible text from .docx, .xlsx and .pptx files."""

    @property
    def name(self) -> str:
        return "office"

    @property
    def supported_extensions(self) -> Set[str]:
        return {".docx", ".xlsx", ".pptx"}

    @property
    def priority(self) -> int:
        return 150

    def extract(self, file_path: Path) -> str:
        path = Path(file_path)
        ext = path.suffix.lower()

        # Route to appropriate extractor
        if ext == ".docx":
            return self._extract_docx(path)
        if ext == ".xlsx":
            return self._extract_xlsx(path)
        if ext == ".pptx":
            return self._extract_pptx(path)
        raise ExtractionError(f"Unsupported office format: {ext}")

    def _extract_docx(self, path: Path) -> str:
        """Paragraph text, then table cell text, in document order per block."""
        from docx import Document

        doc = Document(str(path))
        lines: List[str] = [p.text for p in doc.paragraphs if p.text.strip()]
        for table in doc.tables:
            for row in table.rows:
                cells = [cell.text.strip() for cell in row.cells if cell.text.strip()]
                if cells:
                    lines.append(" ".join(cells))
        return "\n".join(lines)

    def _extract_xlsx(self, path: Path) -> str:
        """
        Cell display values, one line per non-empty row.

        openpyxl resolves shared-string indirection; data_only returns the
        cached value of formula cells rather than the formula text.
        """
        from openpyxl import load_workbook

        wb = load_workbook(str(path), read_only=True, data_only=True)
        try:
            lines: List[str] = []
            for ws in wb.worksheets:
                for row in ws.iter_rows(values_only=True):
                    values = [str(cell) for cell in row if cell is not None and str(cell).strip()]
                    if values:
                        lines.append(" ".join(values))
            return "\n".join(lines)
        finally:
            wb.close()

    def _extract_pptx(self, path: Path) -> str:
        """Run text of every text frame, one line per slide paragraph."""
        from pptx import Presentation

        prs = Presentation(str(path))
        lines: List[str] = []
        for slide in prs.slides:
            for shape in slide.shapes:
                if not shape.has_text_frame:
                    continue
                for paragraph in shape.text_frame.paragraphs:
                    text = "".join(run.text for run in paragraph.runs)
                    if text.strip():
                        lines.append(text)
        return "\n".join(lines)
