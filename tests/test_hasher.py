"""
Hasher Tests - Verify change-detection fingerprints.

Tests:
- Stat fingerprints (size + mtime)
- Content digests (xxh64 over bytes)
- Async fingerprinting and error handling for vanished files
"""

import os

import pytest

from filesearch.hasher import Fingerprinter, content_digest, stat_fingerprint
from filesearch.models import FileInfo


class TestStatFingerprint:
    """Tests for stat_fingerprint."""

    def test_same_stat_same_fingerprint(self, sample_files):
        info = FileInfo.from_stat(sample_files["txt"])

        assert stat_fingerprint(info) == stat_fingerprint(FileInfo.from_stat(sample_files["txt"]))
        assert stat_fingerprint(info).startswith("s:")

    def test_mtime_change_changes_fingerprint(self, sample_files):
        path = sample_files["txt"]
        before = stat_fingerprint(FileInfo.from_stat(path))
        st = path.stat()
        os.utime(path, ns=(st.st_atime_ns, st.st_mtime_ns + 1_000_000_000))

        assert stat_fingerprint(FileInfo.from_stat(path)) != before

    def test_size_change_changes_fingerprint(self, sample_files):
        path = sample_files["txt"]
        before = stat_fingerprint(FileInfo.from_stat(path))
        st = path.stat()
        path.write_text(path.read_text() + " more")
        os.utime(path, ns=(st.st_atime_ns, st.st_mtime_ns))

        assert stat_fingerprint(FileInfo.from_stat(path)) != before


class TestContentDigest:
    """Tests for content_digest."""

    def test_identical_content_same_digest(self, temp_dir):
        """Files with identical content have the same digest."""
        a = temp_dir / "a.txt"
        b = temp_dir / "b.txt"
        a.write_text("same bytes")
        b.write_text("same bytes")

        assert content_digest(a) == content_digest(b)
        assert content_digest(a).startswith("c:")

    def test_different_content_different_digest(self, sample_files):
        assert content_digest(sample_files["txt"]) != content_digest(sample_files["md"])

    def test_large_file_chunks(self, temp_dir):
        """Files larger than one chunk hash all of their bytes."""
        a = temp_dir / "a.bin"
        b = temp_dir / "b.bin"
        a.write_bytes(b"\x00" * 200_000)
        b.write_bytes(b"\x00" * 199_999 + b"\x01")

        assert content_digest(a) != content_digest(b)

    def test_missing_file_raises(self, temp_dir):
        with pytest.raises(OSError):
            content_digest(temp_dir / "gone.txt")


class TestFingerprinter:
    """Tests for the Fingerprinter class."""

    @pytest.mark.asyncio
    async def test_stat_strategy(self, sample_files):
        info = FileInfo.from_stat(sample_files["txt"])
        fingerprinter = Fingerprinter()

        result = await fingerprinter.fingerprint_file(info)
        fingerprinter.close()

        assert result == stat_fingerprint(info)

    @pytest.mark.asyncio
    async def test_content_strategy(self, sample_files):
        info = FileInfo.from_stat(sample_files["txt"])
        fingerprinter = Fingerprinter(use_content=True)

        result = await fingerprinter.fingerprint_file(info)
        fingerprinter.close()

        assert result == content_digest(sample_files["txt"])

    @pytest.mark.asyncio
    async def test_handles_deleted_file(self, temp_dir):
        """Content fingerprints of vanished files raise OSError for the caller."""
        path = temp_dir / "temporary.txt"
        path.write_text("Will be deleted")
        info = FileInfo.from_stat(path)
        path.unlink()

        fingerprinter = Fingerprinter(use_content=True)
        try:
            with pytest.raises(OSError):
                await fingerprinter.fingerprint_file(info)
        finally:
            fingerprinter.close()
