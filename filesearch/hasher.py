"""
Hasher - Change-detection fingerprints using xxHash.

A fingerprint is only ever compared for equality to decide whether a
file's indexed postings are stale. It never feeds into ranking.

Two strategies:
    - stat (default): xxh64 over size + mtime_ns, no file read at all
    - content: xxh64 over the raw bytes, read in 64KB chunks
"""

import asyncio
import logging
from concurrent.futures import ThreadPoolExecutor
from pathlib import Path

import xxhash

from .models import FileInfo


logger = logging.getLogger(__name__)

CHUNK_SIZE = 65536


def stat_fingerprint(file_info: FileInfo) -> str:
    """Fingerprint from size and modification time."""
    hasher = xxhash.xxh64()
    hasher.update(f"{file_info.size}:{file_info.mtime_ns}".encode("ascii"))
    return "s:" + hasher.hexdigest()


def content_digest(path: Path) -> str:
    """
    Compute xxh64 of file bytes.

    Raises OSError if the file cannot be read.
    """
    hasher = xxhash.xxh64()
    with open(path, "rb") as f:
        while chunk := f.read(CHUNK_SIZE):
            hasher.update(chunk)
    return "c:" + hasher.hexdigest()


class Fingerprinter:
    """
    Chooses the fingerprint strategy once per build cycle.

    Content digests read the whole file, so the async entry point runs
    them in a small thread pool; stat fingerprints are computed inline.
    """

    def __init__(self, use_content: bool = False, max_workers: int = 4):
        self.use_content = use_content
        self.max_workers = max(1, max_workers)
        self._executor: ThreadPoolExecutor | None = None

    def _get_executor(self) -> ThreadPoolExecutor:
        if self._executor is None:
            self._executor = ThreadPoolExecutor(
                max_workers=self.max_workers,
                thread_name_prefix="hasher"
            )
        return self._executor

    async def fingerprint_file(self, file_info: FileInfo) -> str:
        """Fingerprint one file without blocking the event loop."""
        if not self.use_content:
            return stat_fingerprint(file_info)
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(
            self._get_executor(), content_digest, file_info.path
        )

    def close(self):
        """Shutdown the thread pool."""
        if self._executor:
            self._executor.shutdown(wait=False)
            self._executor = None
