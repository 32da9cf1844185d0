"""
Document Store - SQLite-backed documents and inverted index.

One file holds everything:
    - meta: schema version and creation time
    - documents: one row per path (metadata is never compressed)
    - terms: term dictionary with document frequency
    - postings: (term, document) -> frequencies and token positions
    - contents: extracted text kept for excerpts and re-verification

Each upsert/remove is a single transaction under the store lock, so a
reader never sees half of a document's postings. Removed documents are
tombstoned and only physically deleted by compact().
"""

import logging
import sqlite3
import threading
import zlib
from array import array
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Dict, List, Optional, Set, Tuple

from .errors import IndexStorageError, IndexVersionError
from .models import Document, FileInfo, Posting
from .tokenizer import name_terms, term_positions


logger = logging.getLogger(__name__)

SCHEMA_VERSION = "1"

_RAW = b"\x00"
_ZLIB = b"\x01"

_SCHEMA = """
    CREATE TABLE IF NOT EXISTS meta (
        key TEXT PRIMARY KEY,
        value TEXT NOT NULL
    );

    CREATE TABLE IF NOT EXISTS documents (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        path TEXT NOT NULL UNIQUE,
        name TEXT NOT NULL,
        directory TEXT NOT NULL,
        extension TEXT NOT NULL,
        size INTEGER NOT NULL,
        mtime_ns INTEGER NOT NULL,
        fingerprint TEXT NOT NULL,
        term_count INTEGER NOT NULL DEFAULT 0,
        name_term_count INTEGER NOT NULL DEFAULT 0,
        deleted INTEGER NOT NULL DEFAULT 0,
        indexed_at INTEGER NOT NULL
    );

    CREATE INDEX IF NOT EXISTS idx_documents_directory ON documents(directory);

    -- Term dictionary
    CREATE TABLE IF NOT EXISTS terms (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        term TEXT NOT NULL UNIQUE,
        doc_frequency INTEGER NOT NULL DEFAULT 0
    );

    CREATE TABLE IF NOT EXISTS postings (
        term_id INTEGER NOT NULL,
        doc_id INTEGER NOT NULL,
        frequency INTEGER NOT NULL,
        name_frequency INTEGER NOT NULL,
        positions BLOB,
        PRIMARY KEY (term_id, doc_id)
    ) WITHOUT ROWID;

    CREATE INDEX IF NOT EXISTS idx_postings_doc ON postings(doc_id);

    -- Extracted text for excerpts
    CREATE TABLE IF NOT EXISTS contents (
        doc_id INTEGER PRIMARY KEY,
        body BLOB NOT NULL
    );
"""

_DOCUMENT_COLUMNS = (
    "id, path, name, directory, extension, size, mtime_ns, fingerprint, "
    "term_count, name_term_count, deleted, indexed_at"
)


class UpsertOutcome(Enum):
    """What an upsert did to the store."""
    ADDED = "added"
    UPDATED = "updated"
    UNCHANGED = "unchanged"


class DocumentStore:
    """
    Persistent document table plus term -> postings mapping.

    Usage:
        store = DocumentStore(Path("index.db"))
        store.upsert(file_info, fingerprint, "extracted text")
        postings = store.lookup("revenue")
        store.close()
    """

    def __init__(self, db_path: Path, compress: bool = True):
        self.db_path = Path(db_path)
        self.compress = compress
        self._conn: Optional[sqlite3.Connection] = None
        self._lock = threading.RLock()

    # --- Connection ---

    def open(self) -> None:
        """Open (or create) the index file, validating its schema version."""
        self._get_connection()

    def _get_connection(self) -> sqlite3.Connection:
        """Get or create database connection."""
        with self._lock:
            if self._conn is None:
                self.db_path.parent.mkdir(parents=True, exist_ok=True)
                conn = sqlite3.connect(str(self.db_path), check_same_thread=False)
                try:
                    conn.row_factory = sqlite3.Row
                    # Performance optimizations
                    conn.execute("PRAGMA journal_mode = WAL")
                    conn.execute("PRAGMA synchronous = NORMAL")
                    conn.execute("PRAGMA cache_size = -64000")  # 64MB cache
                    self._init_tables(conn)
                except IndexVersionError:
                    conn.close()
                    raise
                except sqlite3.Error as e:
                    conn.close()
                    raise IndexStorageError(f"Cannot open index {self.db_path}: {e}") from e
                self._conn = conn
            return self._conn

    def _init_tables(self, conn: sqlite3.Connection) -> None:
        """Create tables, refusing files written by another schema version."""
        has_meta = conn.execute(
            "SELECT name FROM sqlite_master WHERE type = 'table' AND name = 'meta'"
        ).fetchone()
        if has_meta:
            row = conn.execute(
                "SELECT value FROM meta WHERE key = 'schema_version'"
            ).fetchone()
            found = row[0] if row else ""
            if found != SCHEMA_VERSION:
                raise IndexVersionError(found, SCHEMA_VERSION)

        conn.executescript(_SCHEMA)
        with conn:
            conn.execute(
                "INSERT OR IGNORE INTO meta (key, value) VALUES ('schema_version', ?)",
                (SCHEMA_VERSION,),
            )
            conn.execute(
                "INSERT OR IGNORE INTO meta (key, value) VALUES ('created', ?)",
                (datetime.now().isoformat(),),
            )

    def close(self):
        """Close database connection."""
        with self._lock:
            if self._conn:
                self._conn.close()
                self._conn = None

    # --- Metadata ---

    def get_meta(self, key: str) -> Optional[str]:
        with self._lock:
            row = self._get_connection().execute(
                "SELECT value FROM meta WHERE key = ?", (key,)
            ).fetchone()
            return row[0] if row else None

    def set_meta(self, key: str, value: str) -> None:
        with self._lock:
            conn = self._get_connection()
            with conn:
                conn.execute(
                    "INSERT INTO meta (key, value) VALUES (?, ?) "
                    "ON CONFLICT(key) DO UPDATE SET value = excluded.value",
                    (key, value),
                )

    @property
    def created(self) -> Optional[datetime]:
        value = self.get_meta("created")
        return datetime.fromisoformat(value) if value else None

    # --- Writes ---

    def upsert(
        self,
        file_info: FileInfo,
        fingerprint: str,
        content: Optional[str] = None,
    ) -> UpsertOutcome:
        """
        Insert or refresh one document.

        A live row with the same fingerprint is left untouched. Otherwise
        the old postings are dropped and the new ones (content terms plus
        file name terms) written in the same transaction as the row.
        """
        path = str(file_info.path)
        name_counts = name_terms(file_info.name)
        positions = term_positions(content) if content else {}
        term_count = sum(len(p) for p in positions.values())
        now = int(datetime.now().timestamp())

        with self._lock:
            conn = self._get_connection()
            row = conn.execute(
                "SELECT id, fingerprint, deleted FROM documents WHERE path = ?",
                (path,),
            ).fetchone()
            if row is not None and not row["deleted"] and row["fingerprint"] == fingerprint:
                return UpsertOutcome.UNCHANGED

            values = (
                file_info.name,
                file_info.directory,
                file_info.extension,
                file_info.size,
                file_info.mtime_ns,
                fingerprint,
                term_count,
                sum(name_counts.values()),
                now,
            )

            with conn:
                if row is None:
                    cursor = conn.execute(
                        """
                        INSERT INTO documents (path, name, directory, extension, size, mtime_ns,
                                               fingerprint, term_count, name_term_count, indexed_at)
                        VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                        """,
                        (path,) + values,
                    )
                    doc_id = cursor.lastrowid
                    outcome = UpsertOutcome.ADDED
                else:
                    doc_id = row["id"]
                    self._drop_postings(conn, doc_id)
                    conn.execute(
                        """
                        UPDATE documents SET name = ?, directory = ?, extension = ?, size = ?,
                               mtime_ns = ?, fingerprint = ?, term_count = ?, name_term_count = ?,
                               indexed_at = ?, deleted = 0
                        WHERE id = ?
                        """,
                        values + (doc_id,),
                    )
                    outcome = UpsertOutcome.ADDED if row["deleted"] else UpsertOutcome.UPDATED

                self._write_postings(conn, doc_id, name_counts, positions)
                if content:
                    conn.execute(
                        "INSERT INTO contents (doc_id, body) VALUES (?, ?)",
                        (doc_id, self._pack(content.encode("utf-8"))),
                    )

        logger.debug(f"{outcome.value}: {path} ({len(positions)} content terms)")
        return outcome

    def remove(self, path) -> bool:
        """Tombstone a document and drop its postings. False if not indexed."""
        with self._lock:
            conn = self._get_connection()
            row = conn.execute(
                "SELECT id FROM documents WHERE path = ? AND deleted = 0",
                (str(path),),
            ).fetchone()
            if row is None:
                return False
            with conn:
                self._drop_postings(conn, row["id"])
                conn.execute("UPDATE documents SET deleted = 1 WHERE id = ?", (row["id"],))
        logger.debug(f"removed: {path}")
        return True

    def _drop_postings(self, conn: sqlite3.Connection, doc_id: int) -> None:
        conn.execute(
            """
            UPDATE terms SET doc_frequency = doc_frequency - 1
            WHERE id IN (SELECT term_id FROM postings WHERE doc_id = ?)
            """,
            (doc_id,),
        )
        conn.execute("DELETE FROM postings WHERE doc_id = ?", (doc_id,))
        conn.execute("DELETE FROM contents WHERE doc_id = ?", (doc_id,))

    def _write_postings(
        self,
        conn: sqlite3.Connection,
        doc_id: int,
        name_counts: Dict[str, int],
        positions: Dict[str, List[int]],
    ) -> None:
        rows = []
        for term in sorted(set(name_counts) | set(positions)):
            conn.execute(
                "INSERT INTO terms (term, doc_frequency) VALUES (?, 1) "
                "ON CONFLICT(term) DO UPDATE SET doc_frequency = doc_frequency + 1",
                (term,),
            )
            term_id = conn.execute("SELECT id FROM terms WHERE term = ?", (term,)).fetchone()[0]
            offsets = positions.get(term, [])
            rows.append((
                term_id,
                doc_id,
                len(offsets),
                name_counts.get(term, 0),
                self._pack(array("I", offsets).tobytes()) if offsets else None,
            ))
        conn.executemany(
            "INSERT INTO postings (term_id, doc_id, frequency, name_frequency, positions) "
            "VALUES (?, ?, ?, ?, ?)",
            rows,
        )

    # --- Reads ---

    def lookup(self, term: str) -> List[Posting]:
        """Postings of live documents for one exact (case-folded) term."""
        with self._lock:
            rows = self._get_connection().execute(
                """
                SELECT t.term, p.doc_id, p.frequency, p.name_frequency, p.positions
                FROM terms t
                JOIN postings p ON p.term_id = t.id
                JOIN documents d ON d.id = p.doc_id
                WHERE t.term = ? AND d.deleted = 0
                ORDER BY p.doc_id
                """,
                (term,),
            ).fetchall()
        return [self._row_to_posting(row) for row in rows]

    def postings_for(self, doc_id: int) -> List[Posting]:
        """Every posting of one document, ordered by term."""
        with self._lock:
            rows = self._get_connection().execute(
                """
                SELECT t.term, p.doc_id, p.frequency, p.name_frequency, p.positions
                FROM postings p
                JOIN terms t ON t.id = p.term_id
                WHERE p.doc_id = ?
                ORDER BY t.term
                """,
                (doc_id,),
            ).fetchall()
        return [self._row_to_posting(row) for row in rows]

    def get_document(self, doc_id: int) -> Optional[Document]:
        with self._lock:
            row = self._get_connection().execute(
                f"SELECT {_DOCUMENT_COLUMNS} FROM documents WHERE id = ?", (doc_id,)
            ).fetchone()
        return self._row_to_document(row) if row else None

    def get_by_path(self, path) -> Optional[Document]:
        """Live document for a path, or None."""
        with self._lock:
            row = self._get_connection().execute(
                f"SELECT {_DOCUMENT_COLUMNS} FROM documents WHERE path = ? AND deleted = 0",
                (str(path),),
            ).fetchone()
        return self._row_to_document(row) if row else None

    def fingerprint_of(self, path) -> Optional[str]:
        with self._lock:
            row = self._get_connection().execute(
                "SELECT fingerprint FROM documents WHERE path = ? AND deleted = 0",
                (str(path),),
            ).fetchone()
        return row[0] if row else None

    def documents(self) -> List[Document]:
        """All live documents."""
        with self._lock:
            rows = self._get_connection().execute(
                f"SELECT {_DOCUMENT_COLUMNS} FROM documents WHERE deleted = 0 ORDER BY id"
            ).fetchall()
        return [self._row_to_document(row) for row in rows]

    def documents_under(self, prefix) -> List[Document]:
        """Live documents whose directory is `prefix` or below it."""
        directory = str(Path(prefix))
        pattern = _escape_like(directory.rstrip("/\\")) + _escape_like(_separator(directory)) + "%"
        with self._lock:
            rows = self._get_connection().execute(
                f"""
                SELECT {_DOCUMENT_COLUMNS} FROM documents
                WHERE deleted = 0 AND (directory = ? OR directory LIKE ? ESCAPE '\\')
                ORDER BY id
                """,
                (directory, pattern),
            ).fetchall()
        return [self._row_to_document(row) for row in rows]

    def indexed_paths(self) -> Set[str]:
        """Get all live file paths currently in the database."""
        with self._lock:
            cursor = self._get_connection().execute(
                "SELECT path FROM documents WHERE deleted = 0"
            )
            return {row[0] for row in cursor.fetchall()}

    def content_of(self, doc_id: int) -> str:
        with self._lock:
            row = self._get_connection().execute(
                "SELECT body FROM contents WHERE doc_id = ?", (doc_id,)
            ).fetchone()
        if row is None:
            return ""
        return self._unpack(row[0]).decode("utf-8", errors="replace")

    def document_count(self) -> int:
        with self._lock:
            return self._get_connection().execute(
                "SELECT COUNT(*) FROM documents WHERE deleted = 0"
            ).fetchone()[0]

    def directory_count(self) -> int:
        with self._lock:
            return self._get_connection().execute(
                "SELECT COUNT(DISTINCT directory) FROM documents WHERE deleted = 0"
            ).fetchone()[0]

    def average_lengths(self) -> Tuple[float, float]:
        """Mean (content, file name) token counts over live documents."""
        with self._lock:
            row = self._get_connection().execute(
                "SELECT AVG(term_count), AVG(name_term_count) FROM documents WHERE deleted = 0"
            ).fetchone()
        return float(row[0] or 0.0), float(row[1] or 0.0)

    def tombstone_count(self) -> int:
        with self._lock:
            return self._get_connection().execute(
                "SELECT COUNT(*) FROM documents WHERE deleted = 1"
            ).fetchone()[0]

    def size_bytes(self) -> int:
        """Bytes on disk, including the write-ahead log."""
        total = 0
        for suffix in ("", "-wal"):
            candidate = self.db_path.with_name(self.db_path.name + suffix)
            if candidate.exists():
                total += candidate.stat().st_size
        return total

    # --- Maintenance ---

    def compact(self) -> int:
        """
        Physically delete tombstoned documents and unused terms, then VACUUM.

        Returns:
            Number of documents purged
        """
        with self._lock:
            conn = self._get_connection()
            with conn:
                purged = conn.execute("DELETE FROM documents WHERE deleted = 1").rowcount
                conn.execute("DELETE FROM terms WHERE doc_frequency <= 0")
            conn.execute("VACUUM")
        logger.info(f"Compacted index: purged {purged} tombstoned documents")
        return purged

    def clear(self) -> None:
        """Drop every document, term and posting; the schema stays."""
        with self._lock:
            conn = self._get_connection()
            with conn:
                conn.execute("DELETE FROM postings")
                conn.execute("DELETE FROM contents")
                conn.execute("DELETE FROM terms")
                conn.execute("DELETE FROM documents")
                conn.execute(
                    "UPDATE meta SET value = ? WHERE key = 'created'",
                    (datetime.now().isoformat(),),
                )
                conn.execute("DELETE FROM meta WHERE key = 'last_updated'")

    # --- Encoding ---

    def _pack(self, data: bytes) -> bytes:
        if self.compress:
            return _ZLIB + zlib.compress(data)
        return _RAW + data

    @staticmethod
    def _unpack(blob: bytes) -> bytes:
        # The flag byte is per blob, so toggling compression needs no rebuild
        if blob[:1] == _ZLIB:
            return zlib.decompress(blob[1:])
        return blob[1:]

    def _row_to_posting(self, row: sqlite3.Row) -> Posting:
        positions: tuple = ()
        if row["positions"]:
            offsets = array("I")
            offsets.frombytes(self._unpack(row["positions"]))
            positions = tuple(offsets)
        return Posting(
            term=row["term"],
            document_id=row["doc_id"],
            frequency=row["frequency"],
            name_frequency=row["name_frequency"],
            positions=positions,
        )

    @staticmethod
    def _row_to_document(row: sqlite3.Row) -> Document:
        return Document(
            id=row["id"],
            path=row["path"],
            name=row["name"],
            directory=row["directory"],
            extension=row["extension"],
            size=row["size"],
            mtime=datetime.fromtimestamp(row["mtime_ns"] / 1_000_000_000),
            fingerprint=row["fingerprint"],
            term_count=row["term_count"],
            name_term_count=row["name_term_count"],
            deleted=bool(row["deleted"]),
            indexed_at=datetime.fromtimestamp(row["indexed_at"]),
        )


def _separator(directory: str) -> str:
    return "\\" if "\\" in directory and "/" not in directory else "/"


def _escape_like(value: str) -> str:
    return value.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
