"""
Search Configuration - Centralized settings for indexing and searching.

Uses environment variables with sensible defaults. All paths are resolved
to absolute paths and all extensions are normalized to lowercase with a
leading dot, so the rest of the package can compare them directly.
"""

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Set


# Files that are never user content, regardless of location
SYSTEM_FILE_NAMES: Set[str] = {
    ".DS_Store", "Thumbs.db", "desktop.ini", "ehthumbs.db",
    "pagefile.sys", "hiberfil.sys", "swapfile.sys",
}

TEXT_EXTENSIONS: Set[str] = {
    ".txt", ".log", ".csv", ".json", ".xml", ".html", ".css", ".js",
    ".ts", ".cs", ".vb", ".cpp", ".h", ".py", ".java", ".php",
    ".rb", ".go", ".rs", ".swift", ".kt", ".scala", ".sh", ".bat",
    ".ps1", ".sql", ".yaml", ".yml", ".ini", ".cfg", ".conf",
    ".md", ".rst", ".tex", ".rtf",
}


def normalize_extension(ext: str) -> str:
    """Lowercase an extension and make sure it has a leading dot."""
    ext = ext.strip().lower()
    if ext and not ext.startswith("."):
        ext = "." + ext
    return ext


def default_index_path() -> Path:
    return Path.home() / ".filesearch" / "index.db"


@dataclass
class IndexConfiguration:
    """
    Configuration for the persistent index.

    The IndexManager treats an instance as read-only for the duration of a
    build or update; reconfiguring replaces it wholesale.
    """

    # --- Scope ---
    indexed_directories: List[Path] = field(default_factory=lambda: [Path.home()])
    excluded_directories: Set[str] = field(default_factory=lambda: {
        # Version control
        ".git", ".svn", ".hg",
        # Dependencies
        "node_modules", "__pycache__", ".venv", "venv",
        # OS folders
        "System Volume Information", "$Recycle.Bin", ".Trash",
        "AppData", "Temp", "Tmp",
        # Cache
        ".cache", ".npm", ".yarn",
    })
    indexed_extensions: Set[str] = field(default_factory=set)  # empty = all
    excluded_extensions: Set[str] = field(default_factory=lambda: {
        ".exe", ".dll", ".sys", ".tmp", ".temp", ".cache",
        ".bin", ".obj", ".pdb", ".ilk", ".exp", ".lib", ".so", ".dylib",
    })
    include_hidden: bool = False
    include_system: bool = False

    # --- Limits ---
    max_file_size: int = 50 * 1024 * 1024      # bytes of source read per file
    max_content_length: int = 100_000          # characters of text kept per file
    max_documents: int = 1_000_000

    # --- Behaviour ---
    index_content: bool = True
    enable_compression: bool = True
    enable_incremental_indexing: bool = True
    fingerprint_content: bool = False          # False: size+mtime, True: xxHash of bytes
    auto_update_interval_minutes: int = 60

    # --- Storage ---
    index_path: Path = field(default_factory=default_index_path)

    # --- Concurrency Limits ---
    extractor_concurrency: int = 8   # Parallel parser workers
    queue_size: int = 256            # Producer -> worker backpressure

    # --- Watcher ---
    debounce_ms: int = 2000          # Batch rapid changes within this window

    def __post_init__(self):
        """Ensure paths are absolute and extensions are normalized."""
        self.indexed_directories = [
            Path(p).expanduser().resolve() for p in self.indexed_directories
        ]
        self.index_path = Path(self.index_path).expanduser().resolve()
        self.indexed_extensions = {normalize_extension(e) for e in self.indexed_extensions if e}
        self.excluded_extensions = {normalize_extension(e) for e in self.excluded_extensions if e}
        self.excluded_directories = set(self.excluded_directories)
        self.extractor_concurrency = max(1, int(self.extractor_concurrency))
        self.queue_size = max(1, int(self.queue_size))

    @classmethod
    def from_env(cls) -> "IndexConfiguration":
        """
        Create config from environment variables.

        Supported env vars:
            FILESEARCH_DIRECTORIES: Comma-separated list of directories to index
            FILESEARCH_INDEX_PATH: Path to the SQLite index file
            FILESEARCH_MAX_FILE_SIZE: Max bytes read per file
            FILESEARCH_CONCURRENCY: Parallel parser workers
            FILESEARCH_INDEX_CONTENT: "0" to index file names only
        """
        config = cls()

        if directories := os.environ.get("FILESEARCH_DIRECTORIES"):
            config.indexed_directories = [
                Path(p.strip()) for p in directories.split(",") if p.strip()
            ]

        if index_path := os.environ.get("FILESEARCH_INDEX_PATH"):
            config.index_path = Path(index_path)

        if max_size := os.environ.get("FILESEARCH_MAX_FILE_SIZE"):
            config.max_file_size = int(max_size)

        if concurrency := os.environ.get("FILESEARCH_CONCURRENCY"):
            config.extractor_concurrency = int(concurrency)

        if index_content := os.environ.get("FILESEARCH_INDEX_CONTENT"):
            config.index_content = index_content.strip().lower() not in {"0", "false", "no"}

        config.__post_init__()
        return config


# Singleton default config
_default_config: IndexConfiguration | None = None


def get_config() -> IndexConfiguration:
    """Get the default configuration (singleton)."""
    global _default_config
    if _default_config is None:
        _default_config = IndexConfiguration.from_env()
    return _default_config


def set_config(config: IndexConfiguration) -> None:
    """Override the default configuration (for testing)."""
    global _default_config
    _default_config = config
