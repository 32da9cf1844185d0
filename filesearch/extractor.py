"""
Extractor - Bounded parallel text extraction.

Wraps the ParserRegistry in a fixed-size thread pool so parsing (the
dominant cost) runs off the event loop while the directory walk keeps
producing paths. Pool size is independent of directory fan-out.
"""

import asyncio
import logging
from concurrent.futures import ThreadPoolExecutor
from typing import Optional

from .models import FileInfo
from .parsers import ExtractedContent, ParserRegistry, default_registry


logger = logging.getLogger(__name__)


class Extractor:
    """
    Fast parallel text extractor.

    Every call goes through the registry, so size/length caps and the
    diagnostic-on-failure policy apply uniformly.
    """

    def __init__(
        self,
        registry: Optional[ParserRegistry] = None,
        max_workers: int = 8,
    ):
        self.registry = registry or default_registry()
        self.max_workers = max(1, max_workers)
        self._executor: ThreadPoolExecutor | None = None

    def _get_executor(self) -> ThreadPoolExecutor:
        if self._executor is None:
            self._executor = ThreadPoolExecutor(
                max_workers=self.max_workers,
                thread_name_prefix="extractor"
            )
            logger.debug(f"Extraction pool started with {self.max_workers} workers")
        return self._executor

    async def extract(
        self,
        file_info: FileInfo,
        max_file_size: Optional[int] = None,
        max_content_length: Optional[int] = None,
    ) -> ExtractedContent:
        """Extract one file in the pool."""
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(
            self._get_executor(),
            self.registry.extract,
            file_info.path,
            max_file_size,
            max_content_length,
        )

    def close(self):
        """Shutdown the thread pool."""
        if self._executor:
            self._executor.shutdown(wait=False)
            self._executor = None
