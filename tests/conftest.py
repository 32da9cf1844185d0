"""
Test Configuration - Shared fixtures for filesearch tests.

Uses pytest fixtures to create isolated test environments, plus small
builders for binary formats (PDF, zip) so no fixture files are checked in.
"""

import zipfile
from pathlib import Path
from typing import Callable, Dict, Generator

import pytest

from filesearch.config import IndexConfiguration, set_config
from filesearch.manager import IndexManager
from filesearch.parsers import ParserRegistry, default_registry


def build_pdf(text: str) -> bytes:
    """A minimal single-page PDF showing `text` in Helvetica."""
    stream = f"BT /F1 12 Tf 72 720 Td ({text}) Tj ET".encode("latin-1")
    objects = [
        b"<< /Type /Catalog /Pages 2 0 R >>",
        b"<< /Type /Pages /Kids [3 0 R] /Count 1 >>",
        b"<< /Type /Page /Parent 2 0 R /MediaBox [0 0 612 792] "
        b"/Contents 4 0 R /Resources << /Font << /F1 5 0 R >> >> >>",
        b"<< /Length %d >>\nstream\n" % len(stream) + stream + b"\nendstream",
        b"<< /Type /Font /Subtype /Type1 /BaseFont /Helvetica >>",
    ]

    out = bytearray(b"%PDF-1.4\n")
    offsets = []
    for number, body in enumerate(objects, start=1):
        offsets.append(len(out))
        out += b"%d 0 obj\n" % number + body + b"\nendobj\n"

    xref_offset = len(out)
    out += b"xref\n0 %d\n" % (len(objects) + 1)
    out += b"0000000000 65535 f \n"
    for offset in offsets:
        out += b"%010d 00000 n \n" % offset
    out += b"trailer\n<< /Size %d /Root 1 0 R >>\nstartxref\n%d\n%%%%EOF\n" % (
        len(objects) + 1, xref_offset
    )
    return bytes(out)


@pytest.fixture
def temp_dir(tmp_path: Path) -> Path:
    """Per-test directory, resolved so symlinked temp roots compare equal."""
    return tmp_path.resolve()


@pytest.fixture
def test_config(temp_dir: Path) -> IndexConfiguration:
    """Create an isolated test configuration."""
    config = IndexConfiguration(
        indexed_directories=[temp_dir],
        index_path=temp_dir / "test.db",
        extractor_concurrency=2,
        queue_size=8,
        debounce_ms=50,
    )
    set_config(config)
    return config


@pytest.fixture
def registry() -> ParserRegistry:
    return default_registry()


@pytest.fixture
def manager(test_config: IndexConfiguration) -> Generator[IndexManager, None, None]:
    m = IndexManager(test_config)
    yield m
    m.close()


@pytest.fixture
def sample_files(temp_dir: Path) -> Dict[str, Path]:
    """
    A small tree: four indexable files plus two that every scan leaves out.

    Keys: txt, md, py, nested (indexed); hidden, node_modules (skipped).
    """
    nested_dir = temp_dir / "subdir" / "nested"
    nested_dir.mkdir(parents=True)
    (temp_dir / "node_modules").mkdir()

    contents = {
        "txt": ("sample.txt", "Meeting notes for the team.\nThey span multiple lines.\nKept for reference purposes."),
        "md": ("notes.md", "# Project Notes\n\nOpen items for the launch.\n\n## Owners\n\nTo be assigned."),
        "py": ("tool.py", '"""Command line helper."""\n\ndef main():\n    return 0\n'),
        "nested": ("subdir/nested/deep.txt", "An archived memo, deeply nested file."),
        "hidden": (".hidden", "Dotfiles stay out of every scan."),
        "node_modules": ("node_modules/package.json", '{"name": "fixture"}'),
    }

    files = {}
    for key, (relative, text) in contents.items():
        files[key] = temp_dir / relative
        files[key].write_text(text)
    return files


@pytest.fixture
def make_pdf(temp_dir: Path) -> Callable[..., Path]:
    """Write a one-page PDF containing the given text."""
    def _make(name: str, text: str) -> Path:
        path = temp_dir / name
        path.write_bytes(build_pdf(text))
        return path
    return _make


@pytest.fixture
def make_zip(temp_dir: Path) -> Callable[..., Path]:
    """Write a zip archive from a {entry name: bytes} mapping."""
    def _make(name: str, entries: Dict[str, bytes], compression=zipfile.ZIP_DEFLATED) -> Path:
        path = temp_dir / name
        with zipfile.ZipFile(path, "w", compression=compression) as zf:
            for entry_name, data in entries.items():
                zf.writestr(entry_name, data)
        return path
    return _make
