"""
Archive parser for zip, tar, 7z and rar containers.

Entries are visited in archive order up to MAX_ARCHIVE_ENTRIES so a
pathological archive costs bounded work. Text entries are decoded and
written under an "=== name ===" header; binary entries contribute only
their name. A failure reading one entry becomes a placeholder line for
that entry and the rest of the archive is still processed.
"""

import bz2
import gzip
import logging
import lzma
import tarfile
import tempfile
import zipfile
import zlib
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Iterator, List, Set

from ..config import TEXT_EXTENSIONS, normalize_extension
from ..errors import ExtractionError
from .base import ContentParser
from .text import decode_bytes


logger = logging.getLogger(__name__)

MAX_ARCHIVE_ENTRIES = 50
MAX_ENTRY_BYTES = 1024 * 1024
# 7z members are extracted whole, so large ones are refused outright
MAX_SEVENZIP_MEMBER_BYTES = 32 * MAX_ENTRY_BYTES

_SINGLE_STREAM_OPENERS = {
    ".gz": gzip.open,
    ".bz2": bz2.open,
    ".xz": lzma.open,
}


@dataclass
class ArchiveEntry:
    """One member of an archive, read lazily."""
    name: str
    is_dir: bool
    read: Callable[[], bytes]


def is_text_entry(name: str) -> bool:
    return normalize_extension(Path(name).suffix) in TEXT_EXTENSIONS


class ArchiveParser(ContentParser):
    """Lists and decodes entries of archive containers."""

    def __init__(self, max_entries: int = MAX_ARCHIVE_ENTRIES):
        self.max_entries = max_entries

    @property
    def name(self) -> str:
        return "archive"

    @property
    def supported_extensions(self) -> Set[str]:
        return {".zip", ".tar", ".tgz", ".gz", ".bz2", ".xz", ".7z", ".rar"}

    @property
    def priority(self) -> int:
        return 100

    def extract(self, file_path: Path) -> str:
        path = Path(file_path)
        parts: List[str] = []
        processed = 0

        for entry in self._iter_entries(path):
            if processed >= self.max_entries:
                logger.debug(f"{path.name}: stopped after {self.max_entries} entries")
                break
            if entry.is_dir:
                continue
            processed += 1

            if not is_text_entry(entry.name):
                parts.append(f"=== {entry.name} (binary) ===")
                continue

            try:
                text = decode_bytes(entry.read())
            except Exception as e:
                logger.debug(f"{path.name}: cannot read entry {entry.name}: {e}")
                parts.append(f"=== {entry.name} (read error) ===")
                continue

            if text:
                parts.append(f"=== {entry.name} ===\n{text}")

        return "\n\n".join(parts)

    def _iter_entries(self, path: Path) -> Iterator[ArchiveEntry]:
        """Dispatch on container type, sniffing before trusting the extension."""
        ext = path.suffix.lower()

        if zipfile.is_zipfile(path):
            yield from self._zip_entries(path)
        elif ext == ".7z":
            yield from self._sevenzip_entries(path)
        elif ext == ".rar":
            yield from self._rar_entries(path)
        elif tarfile.is_tarfile(path):
            yield from self._tar_entries(path)
        elif ext in _SINGLE_STREAM_OPENERS:
            yield from self._single_stream_entries(path, _SINGLE_STREAM_OPENERS[ext])
        else:
            raise ExtractionError(f"Not a recognized archive: {path.name}")

    def _zip_entries(self, path: Path) -> Iterator[ArchiveEntry]:
        with zipfile.ZipFile(path) as zf:
            for info in zf.infolist():
                yield ArchiveEntry(
                    name=info.filename,
                    is_dir=info.is_dir(),
                    read=lambda info=info: _read_zip_member(zf, info),
                )

    def _tar_entries(self, path: Path) -> Iterator[ArchiveEntry]:
        # Streaming iteration: only members actually visited are parsed
        with tarfile.open(path, mode="r:*") as tf:
            for member in tf:
                yield ArchiveEntry(
                    name=member.name,
                    is_dir=not member.isfile(),
                    read=lambda member=member: _read_tar_member(tf, member),
                )

    def _single_stream_entries(self, path: Path, opener) -> Iterator[ArchiveEntry]:
        inner_name = path.stem

        def read() -> bytes:
            with opener(path, "rb") as f:
                return f.read(MAX_ENTRY_BYTES)

        yield ArchiveEntry(name=inner_name, is_dir=False, read=read)

    def _sevenzip_entries(self, path: Path) -> Iterator[ArchiveEntry]:
        import py7zr

        with py7zr.SevenZipFile(path, mode="r") as archive:
            listing = archive.list()

        # Each member is extracted on its own when read, so one damaged
        # member cannot take the others down with it
        for info in listing:
            yield ArchiveEntry(
                name=info.filename,
                is_dir=info.is_directory,
                read=lambda info=info: _read_sevenzip_member(path, info),
            )

    def _rar_entries(self, path: Path) -> Iterator[ArchiveEntry]:
        import rarfile

        with rarfile.RarFile(str(path)) as rf:
            for info in rf.infolist():
                yield ArchiveEntry(
                    name=info.filename,
                    is_dir=info.is_dir(),
                    read=lambda info=info: rf.read(info)[:MAX_ENTRY_BYTES],
                )


def _read_zip_member(zf: zipfile.ZipFile, info: zipfile.ZipInfo) -> bytes:
    # Reading to EOF is what triggers zipfile's CRC check
    with zf.open(info) as f:
        data = f.read(MAX_ENTRY_BYTES)
        if info.file_size <= MAX_ENTRY_BYTES:
            f.read()
        return data


def _read_tar_member(tf: tarfile.TarFile, member: tarfile.TarInfo) -> bytes:
    f = tf.extractfile(member)
    if f is None:
        raise ExtractionError(f"Tar member has no data: {member.name}")
    with f:
        return f.read(MAX_ENTRY_BYTES)


def _read_sevenzip_member(path: Path, info) -> bytes:
    import py7zr
    from py7zr.exceptions import Bad7zFile, CrcError

    if info.uncompressed is not None and info.uncompressed > MAX_SEVENZIP_MEMBER_BYTES:
        raise ExtractionError(f"7z member too large to extract: {info.filename}")

    with tempfile.TemporaryDirectory(prefix="filesearch_7z_") as tmp:
        root = Path(tmp)
        try:
            with py7zr.SevenZipFile(path, mode="r") as archive:
                archive.extract(path=tmp, targets=[info.filename])
        except (CrcError, Bad7zFile) as e:
            # In a solid block a later member can fail after this one was written
            if not _extracted_intact(root, info):
                raise ExtractionError(f"Damaged 7z member {info.filename}: {e}") from e
        return _read_extracted(root, info.filename)


def _extracted_intact(root: Path, info) -> bool:
    target = root / info.filename
    if info.crc32 is None or not target.is_file():
        return False
    return zlib.crc32(target.read_bytes()) == info.crc32


def _read_extracted(root: Path, name: str) -> bytes:
    target = (root / name).resolve()
    if not target.is_relative_to(root.resolve()):
        raise ExtractionError(f"Entry escapes archive root: {name}")
    with open(target, "rb") as f:
        return f.read(MAX_ENTRY_BYTES)
