"""
Parser Tests - Verify parser selection, failure policy and per-format extraction.

Tests:
- Registry selection (priority, ties, can_parse, unsupported files)
- Failure boundary (diagnostics, size and length caps)
- Text encodings
- Archives (entry cap, corrupt entries, tar/gz, 7z)
- Office and PDF documents
"""

import codecs
import io
import tarfile
import gzip
import zipfile
from pathlib import Path
from typing import Set

import py7zr
import pytest

from filesearch.parsers import ContentParser, ParserRegistry, default_registry
from filesearch.parsers.archive import MAX_ARCHIVE_ENTRIES, ArchiveParser
from filesearch.parsers.office import OfficeParser
from filesearch.parsers.pdf import PdfParser
from filesearch.parsers.registry import MAX_DIAGNOSTIC_LENGTH
from filesearch.parsers.text import TextFileParser, decode_bytes


class StubParser(ContentParser):
    """Configurable parser for registry tests."""

    def __init__(self, name, extensions, priority, accept=True, text="", error=None):
        self._name = name
        self._extensions = set(extensions)
        self._priority = priority
        self.accept = accept
        self.text = text
        self.error = error
        self.calls = 0

    @property
    def name(self) -> str:
        return self._name

    @property
    def supported_extensions(self) -> Set[str]:
        return self._extensions

    @property
    def priority(self) -> int:
        return self._priority

    def can_parse(self, file_path: Path) -> bool:
        return super().can_parse(file_path) and self.accept

    def extract(self, file_path: Path) -> str:
        self.calls += 1
        if self.error is not None:
            raise self.error
        return self.text


class TestRegistrySelection:
    """Tests for ParserRegistry.select."""

    def test_highest_priority_wins(self, temp_dir):
        """The higher priority parser is selected."""
        registry = ParserRegistry()
        low = StubParser("low", {".dat"}, 10)
        high = StubParser("high", {".dat"}, 90)
        registry.register(low)
        registry.register(high)

        assert registry.select(temp_dir / "a.dat") is high

    def test_tie_goes_to_first_registered(self, temp_dir):
        """Equal priorities resolve to registration order."""
        registry = ParserRegistry()
        first = StubParser("first", {".dat"}, 50)
        second = StubParser("second", {".dat"}, 50)
        registry.register(first)
        registry.register(second)

        assert registry.select(temp_dir / "a.dat") is first

    def test_can_parse_rejection_falls_back(self, temp_dir):
        """A parser that declines the file is passed over."""
        registry = ParserRegistry()
        fallback = StubParser("fallback", {".dat"}, 10)
        picky = StubParser("picky", {".dat"}, 90, accept=False)
        registry.register(fallback)
        registry.register(picky)

        assert registry.select(temp_dir / "a.dat") is fallback

    def test_extension_is_case_insensitive(self, registry, temp_dir):
        """Upper-case extensions select the same parser."""
        assert registry.select(temp_dir / "NOTES.TXT").name == "text"

    def test_unsupported_extension(self, registry, temp_dir):
        """Unknown formats have no parser and extraction is skipped."""
        path = temp_dir / "image.xyz"
        path.write_bytes(b"\x00\x01")

        assert registry.select(path) is None
        result = registry.extract(path)
        assert result.skipped
        assert result.searchable_text == ""

    def test_register_none_rejected(self):
        """Registering None is an error."""
        with pytest.raises(ValueError):
            ParserRegistry().register(None)

    def test_default_registry_priorities(self, registry):
        """Built-in parsers are ordered pdf > office > archive > text."""
        assert [p.name for p in registry.parsers()] == ["pdf", "office", "archive", "text"]


class TestFailurePolicy:
    """Tests for the registry failure boundary."""

    def test_exception_becomes_diagnostic(self, temp_dir):
        """A parser exception never escapes the registry."""
        registry = ParserRegistry()
        registry.register(StubParser("broken", {".dat"}, 10, error=RuntimeError("boom")))
        path = temp_dir / "a.dat"
        path.write_text("irrelevant")

        result = registry.extract(path)

        assert result.is_diagnostic
        assert result.text == "[broken extraction failed: boom]"
        assert result.searchable_text == ""

    def test_diagnostic_is_short(self, temp_dir):
        """Diagnostics are capped in length."""
        registry = ParserRegistry()
        registry.register(StubParser("broken", {".dat"}, 10, error=RuntimeError("x" * 5000)))
        path = temp_dir / "a.dat"
        path.write_text("irrelevant")

        assert len(registry.extract(path).text) <= MAX_DIAGNOSTIC_LENGTH

    def test_oversize_file_not_opened(self, temp_dir):
        """Files above max_file_size are skipped before the parser runs."""
        registry = ParserRegistry()
        parser = StubParser("stub", {".dat"}, 10, text="content")
        registry.register(parser)
        path = temp_dir / "big.dat"
        path.write_bytes(b"x" * 2048)

        result = registry.extract(path, max_file_size=1024)

        assert result.skipped
        assert result.parser == "stub"
        assert parser.calls == 0

    def test_output_truncated(self, temp_dir):
        """Parser output is cut to max_content_length by the registry."""
        registry = ParserRegistry()
        registry.register(StubParser("stub", {".dat"}, 10, text="a" * 500))
        path = temp_dir / "a.dat"
        path.write_text("irrelevant")

        result = registry.extract(path, max_content_length=100)

        assert len(result.text) == 100
        assert result.truncated

    def test_missing_file_is_diagnostic(self, registry, temp_dir):
        """A file that vanished before extraction degrades to a diagnostic."""
        result = registry.extract(temp_dir / "gone.txt")
        assert result.is_diagnostic


class TestTextParser:
    """Tests for multi-encoding text decoding."""

    def test_utf8(self):
        assert decode_bytes("naïve café".encode("utf-8")) == "naïve café"

    def test_utf8_bom_stripped(self):
        assert decode_bytes(codecs.BOM_UTF8 + b"hello") == "hello"

    def test_utf16_le_bom(self):
        assert decode_bytes(codecs.BOM_UTF16_LE + "hello".encode("utf-16-le")) == "hello"

    def test_utf16_be_bom(self):
        assert decode_bytes(codecs.BOM_UTF16_BE + "hello".encode("utf-16-be")) == "hello"

    def test_invalid_bytes_fall_back_lossy(self):
        """Undecodable input is still returned, with replacement characters."""
        assert decode_bytes(b"ok \x80 done") == "ok � done"

    def test_extract_file(self, sample_files):
        text = TextFileParser().extract(sample_files["txt"])
        assert "multiple lines" in text


class TestArchiveParser:
    """Tests for archive listing and decoding."""

    def test_text_and_binary_entries(self, make_zip):
        """Text entries are decoded under a header; binary entries are named only."""
        path = make_zip("bundle.zip", {
            "docs/readme.txt": b"archive readme text",
            "docs/": b"",
            "logo.png": b"\x89PNG\r\n\x1a\n",
        })

        text = ArchiveParser().extract(path)

        assert "=== docs/readme.txt ===\narchive readme text" in text
        assert "=== logo.png (binary) ===" in text
        assert "=== docs/ ===" not in text

    def test_entry_cap_on_huge_archive(self, make_zip):
        """Only the first MAX_ARCHIVE_ENTRIES entries are processed."""
        entries = {f"entry{i:05d}.txt": b"x" for i in range(10_000)}
        path = make_zip("huge.zip", entries, compression=zipfile.ZIP_STORED)

        text = ArchiveParser().extract(path)

        assert text.count("=== entry") == MAX_ARCHIVE_ENTRIES
        assert "entry00049.txt" in text
        assert "entry00050.txt" not in text

    def test_corrupt_entry_becomes_placeholder(self, make_zip):
        """A CRC failure on one entry does not abort the archive."""
        path = make_zip("damaged.zip", {
            "good.txt": b"alpha content",
            "bad.txt": b"UNIQUEPAYLOAD123",
            "after.txt": b"omega content",
        }, compression=zipfile.ZIP_STORED)
        data = path.read_bytes()
        path.write_bytes(data.replace(b"UNIQUEPAYLOAD123", b"XNIQUEPAYLOAD123"))

        result = default_registry().extract(path)

        assert not result.is_diagnostic
        assert "=== bad.txt (read error) ===" in result.text
        assert "alpha content" in result.text
        assert "omega content" in result.text

    def test_tar_gz(self, temp_dir):
        """Tar family archives are read member by member."""
        path = temp_dir / "backup.tar.gz"
        payload = b"tarred notes about budgets"
        with tarfile.open(path, "w:gz") as tf:
            info = tarfile.TarInfo("notes.md")
            info.size = len(payload)
            tf.addfile(info, io.BytesIO(payload))

        text = ArchiveParser().extract(path)

        assert "=== notes.md ===\ntarred notes about budgets" in text

    def test_single_gzip_stream(self, temp_dir):
        """A bare .gz file is one entry named after its stem."""
        path = temp_dir / "server.log.gz"
        with gzip.open(path, "wb") as f:
            f.write(b"error at startup")

        text = ArchiveParser().extract(path)

        assert "=== server.log ===\nerror at startup" in text

    def test_sevenzip_damaged_member(self, temp_dir):
        """A checksum failure in one 7z member leaves the other members readable."""
        path = temp_dir / "bundle.7z"
        with py7zr.SevenZipFile(path, "w", filters=[{"id": py7zr.FILTER_COPY}]) as archive:
            archive.writestr(b"alpha content", "a.txt")
            archive.writestr(b"UNIQUEPAYLOAD123", "b.txt")
        path.write_bytes(path.read_bytes().replace(b"UNIQUEPAYLOAD123", b"XNIQUEPAYLOAD123"))

        result = default_registry().extract(path)

        assert not result.is_diagnostic
        assert "=== a.txt ===\nalpha content" in result.text
        assert "=== b.txt (read error) ===" in result.text

    def test_not_an_archive(self, temp_dir):
        """Garbage with an archive extension degrades to a diagnostic."""
        path = temp_dir / "fake.zip"
        path.write_bytes(b"definitely not a zip file")

        result = default_registry().extract(path)

        assert result.is_diagnostic
        assert result.parser == "archive"


class TestOfficeParser:
    """Tests for docx / xlsx / pptx extraction."""

    def test_docx(self, temp_dir):
        from docx import Document

        doc = Document()
        doc.add_paragraph("Quarterly planning memo")
        table = doc.add_table(rows=1, cols=2)
        table.rows[0].cells[0].text = "Region"
        table.rows[0].cells[1].text = "Revenue"
        path = temp_dir / "memo.docx"
        doc.save(str(path))

        text = OfficeParser().extract(path)

        assert "Quarterly planning memo" in text
        assert "Region Revenue" in text

    def test_xlsx(self, temp_dir):
        from openpyxl import Workbook

        wb = Workbook()
        ws = wb.active
        ws.append(["Product", "Units"])
        ws.append(["Widget", 42])
        path = temp_dir / "sales.xlsx"
        wb.save(str(path))

        text = OfficeParser().extract(path)

        assert "Product Units" in text
        assert "Widget 42" in text

    def test_pptx(self, temp_dir):
        from pptx import Presentation
        from pptx.util import Inches

        prs = Presentation()
        slide = prs.slides.add_slide(prs.slide_layouts[6])
        box = slide.shapes.add_textbox(Inches(1), Inches(1), Inches(4), Inches(1))
        box.text_frame.text = "Roadmap for next year"
        path = temp_dir / "deck.pptx"
        prs.save(str(path))

        text = OfficeParser().extract(path)

        assert "Roadmap for next year" in text

    def test_corrupt_docx_is_diagnostic(self, registry, temp_dir):
        path = temp_dir / "broken.docx"
        path.write_bytes(b"not really a document")

        result = registry.extract(path)

        assert result.is_diagnostic
        assert result.text.startswith("[office extraction failed:")


class TestPdfParser:
    """Tests for PDF extraction."""

    def test_pypdf_extraction(self, make_pdf):
        path = make_pdf("notes.pdf", "revenue projections")

        text = PdfParser(use_cli=False).extract(path)

        assert "revenue projections" in text

    def test_registry_uses_pdf_parser(self, registry, make_pdf):
        path = make_pdf("notes.pdf", "revenue projections")

        result = registry.extract(path)

        assert result.parser == "pdf"
        assert "revenue" in result.searchable_text

    def test_non_pdf_bytes_not_accepted(self, registry, temp_dir):
        """A .pdf without the PDF signature has no parser."""
        path = temp_dir / "fake.pdf"
        path.write_text("plain text pretending")

        assert registry.select(path) is None
