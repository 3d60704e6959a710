"""SQLite document store with FTS5 and sqlite-vec indexes.

Documents are chunks of crawled pages keyed by library and version. The
``documents_fts`` lexical index is kept in step by triggers and the
``documents_vec`` vector index is written alongside each chunk using
``rowid = documents.id``. All writes for a page happen in one
``BEGIN IMMEDIATE`` transaction.
"""

import json
import logging
import re
import sqlite3
import time
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import datetime
from typing import TYPE_CHECKING, Any, Dict, Iterator, List, Optional, Sequence, Tuple

import sqlite_vec
from sqlite_vec import serialize_float32

from observability.prometheus_metrics import record_indexing_metrics

from .embeddings import pad_embedding
from .errors import StoreError
from .migrations import apply_migrations
from .versions import find_best_version, sort_versions

if TYPE_CHECKING:
    from config.settings import StoreConfig

logger = logging.getLogger(__name__)

# sqlite-vec refuses larger k values
MAX_KNN_K = 4096
FTS_TOKEN_RE = re.compile(r"\w+", re.UNICODE)


@dataclass
class DocumentChunk:
    """A chunk ready to be written to the store."""
    content: str
    sort_order: int
    metadata: Dict[str, Any] = field(default_factory=dict)


@dataclass
class StoredDocument:
    id: int
    library: str
    version: str
    url: str
    content: str
    metadata: Dict[str, Any]
    sort_order: int
    indexed_at: Optional[str] = None


@dataclass
class VersionSummary:
    version: str
    document_count: int
    unique_url_count: int
    indexed_at: Optional[str] = None


@dataclass
class LibrarySummary:
    name: str
    versions: List[VersionSummary] = field(default_factory=list)


def normalize_library(name: str) -> str:
    normalized = (name or "").strip().lower()
    if not normalized:
        raise ValueError("Library name must not be empty")
    return normalized


def normalize_version(version: Optional[str]) -> str:
    return (version or "").strip().lower()


def build_fts_query(query: str) -> Optional[str]:
    """Quote each word of a free-text query and OR them together."""
    tokens = FTS_TOKEN_RE.findall(query or "")
    if not tokens:
        return None
    return " OR ".join(f'"{token}"' for token in tokens)


class DocumentStore:
    """Versioned document store backed by a single SQLite database."""

    def __init__(self, db_path: str = ":memory:", enable_wal: bool = True):
        self.db_path = db_path
        self.enable_wal = enable_wal
        self.conn: Optional[sqlite3.Connection] = None

    @classmethod
    def from_config(cls, config: "StoreConfig") -> "DocumentStore":
        return cls(config.db_path, enable_wal=config.enable_wal)

    def initialize(self) -> None:
        """Open the database, load sqlite-vec and apply pending migrations.

        Raises:
            MigrationError: if the schema could not be brought up to date
        """
        conn = sqlite3.connect(self.db_path, isolation_level=None, check_same_thread=False)
        try:
            conn.row_factory = sqlite3.Row
            conn.enable_load_extension(True)
            sqlite_vec.load(conn)
            conn.enable_load_extension(False)
            conn.execute("PRAGMA foreign_keys = ON")
            if self.enable_wal and self.db_path != ":memory:":
                conn.execute("PRAGMA journal_mode = WAL")
                conn.execute("PRAGMA synchronous = NORMAL")
            apply_migrations(conn)
        except Exception:
            conn.close()
            raise
        self.conn = conn
        logger.info(f"Document store initialized: {self.db_path}")

    def close(self) -> None:
        if self.conn:
            self.conn.close()
            self.conn = None
            logger.info("Document store connection closed")

    def __enter__(self):
        if self.conn is None:
            self.initialize()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()

    def _require_conn(self) -> sqlite3.Connection:
        if self.conn is None:
            raise StoreError("Document store is not initialized")
        return self.conn

    @contextmanager
    def transaction(self) -> Iterator[sqlite3.Connection]:
        """Run a block in a write transaction, rolling back on any error."""
        conn = self._require_conn()
        conn.execute("BEGIN IMMEDIATE")
        try:
            yield conn
        except BaseException:
            conn.execute("ROLLBACK")
            raise
        else:
            conn.execute("COMMIT")

    # Libraries

    def _ensure_library(self, conn: sqlite3.Connection, library: str) -> int:
        conn.execute("INSERT OR IGNORE INTO libraries (name) VALUES (?)", (library,))
        row = conn.execute("SELECT id FROM libraries WHERE name = ?", (library,)).fetchone()
        return row["id"]

    def get_library_id(self, library: str) -> Optional[int]:
        row = self._require_conn().execute(
            "SELECT id FROM libraries WHERE name = ?", (normalize_library(library),)
        ).fetchone()
        return row["id"] if row else None

    def list_library_names(self) -> List[str]:
        rows = self._require_conn().execute("SELECT name FROM libraries ORDER BY name").fetchall()
        return [row["name"] for row in rows]

    # Writes

    def _delete_vectors(self, conn: sqlite3.Connection, doc_ids: Sequence[int]) -> None:
        conn.executemany("DELETE FROM documents_vec WHERE rowid = ?", [(doc_id,) for doc_id in doc_ids])

    def _delete_rows(self, conn: sqlite3.Connection, where: str, params: Tuple) -> int:
        ids = [row["id"] for row in conn.execute(f"SELECT id FROM documents WHERE {where}", params)]
        if not ids:
            return 0
        self._delete_vectors(conn, ids)
        conn.execute(f"DELETE FROM documents WHERE {where}", params)
        return len(ids)

    def add_page(self,
                 library: str,
                 version: Optional[str],
                 url: str,
                 chunks: Sequence[DocumentChunk],
                 embeddings: Optional[Sequence[Sequence[float]]] = None) -> List[int]:
        """Replace all chunks of a page in one transaction.

        Args:
            library: Library name, normalized before storage
            version: Library version, ``""`` or ``None`` for unversioned
            url: Page URL
            chunks: Ordered chunks of the page
            embeddings: One vector per chunk, or ``None`` to skip the vector index

        Returns:
            Ids of the inserted documents, in chunk order

        Raises:
            StoreError: if the write failed; nothing from this call is persisted
        """
        library = normalize_library(library)
        version = normalize_version(version)
        if embeddings is not None and len(embeddings) != len(chunks):
            raise StoreError(f"Got {len(embeddings)} embeddings for {len(chunks)} chunks of {url}")

        try:
            vectors = [serialize_float32(pad_embedding(e)) for e in embeddings] if embeddings is not None else None
        except ValueError as e:
            raise StoreError(f"Invalid embedding for {url}: {e}", cause=e) from e

        start_time = time.time()
        indexed_at = datetime.now().isoformat()
        doc_ids: List[int] = []
        try:
            with self.transaction() as conn:
                library_id = self._ensure_library(conn, library)
                removed = self._delete_rows(conn, "library_id = ? AND version = ? AND url = ?",
                                            (library_id, version, url))
                for index, chunk in enumerate(chunks):
                    metadata = dict(chunk.metadata)
                    metadata.setdefault("url", url)
                    cursor = conn.execute(
                        """
                        INSERT INTO documents (library_id, version, url, content, metadata, sort_order, indexed_at)
                        VALUES (?, ?, ?, ?, ?, ?, ?)
                        """,
                        (library_id, version, url, chunk.content, json.dumps(metadata), chunk.sort_order, indexed_at)
                    )
                    doc_id = cursor.lastrowid
                    doc_ids.append(doc_id)
                    if vectors is not None:
                        conn.execute(
                            "INSERT INTO documents_vec (rowid, library_id, version, embedding) VALUES (?, ?, ?, ?)",
                            (doc_id, library_id, version, vectors[index])
                        )
        except sqlite3.Error as e:
            logger.error(f"Failed to store {url} for {library}@{version or 'unversioned'}: {e}")
            record_indexing_metrics(library, time.time() - start_time, 0, error=str(e))
            raise StoreError(f"Failed to store page {url}: {e}", cause=e) from e

        record_indexing_metrics(library, time.time() - start_time, len(doc_ids))
        logger.debug(f"Stored {len(doc_ids)} chunks for {url} ({library}@{version or 'unversioned'}), "
                     f"replaced {removed}")
        return doc_ids

    def delete_page(self, library: str, version: Optional[str], url: str) -> int:
        """Delete every chunk of one page. Returns the number removed."""
        library_id = self.get_library_id(library)
        if library_id is None:
            return 0
        try:
            with self.transaction() as conn:
                return self._delete_rows(conn, "library_id = ? AND version = ? AND url = ?",
                                         (library_id, normalize_version(version), url))
        except sqlite3.Error as e:
            raise StoreError(f"Failed to delete page {url}: {e}", cause=e) from e

    def delete_documents(self, library: str, version: Optional[str]) -> int:
        """Delete all documents of a library version. Returns the number removed."""
        library_id = self.get_library_id(library)
        if library_id is None:
            return 0
        version = normalize_version(version)
        try:
            with self.transaction() as conn:
                removed = self._delete_rows(conn, "library_id = ? AND version = ?", (library_id, version))
        except sqlite3.Error as e:
            raise StoreError(f"Failed to delete {library}@{version}: {e}", cause=e) from e
        logger.info(f"Deleted {removed} documents for {normalize_library(library)}@{version or 'unversioned'}")
        return removed

    def remove_library(self, library: str) -> bool:
        """Delete a library with all of its documents and vectors."""
        library_id = self.get_library_id(library)
        if library_id is None:
            return False
        try:
            with self.transaction() as conn:
                ids = [row["id"] for row in conn.execute("SELECT id FROM documents WHERE library_id = ?",
                                                          (library_id,))]
                self._delete_vectors(conn, ids)
                # Documents and their FTS rows go with the cascade
                conn.execute("DELETE FROM libraries WHERE id = ?", (library_id,))
        except sqlite3.Error as e:
            raise StoreError(f"Failed to remove library {library}: {e}", cause=e) from e
        logger.info(f"Removed library {normalize_library(library)} ({len(ids)} documents)")
        return True

    # Reads

    def check_document_exists(self, library: str, version: Optional[str]) -> bool:
        row = self._require_conn().execute(
            """
            SELECT 1 FROM documents d JOIN libraries l ON l.id = d.library_id
            WHERE l.name = ? AND d.version = ? LIMIT 1
            """,
            (normalize_library(library), normalize_version(version))
        ).fetchone()
        return row is not None

    def query_unique_versions(self, library: str) -> List[str]:
        rows = self._require_conn().execute(
            """
            SELECT DISTINCT d.version FROM documents d JOIN libraries l ON l.id = d.library_id
            WHERE l.name = ?
            """,
            (normalize_library(library),)
        ).fetchall()
        return sort_versions(row["version"] for row in rows)

    def list_libraries(self) -> List[LibrarySummary]:
        """Per-library version summaries, latest version first."""
        rows = self._require_conn().execute(
            """
            SELECT l.name AS name, d.version AS version,
                   COUNT(*) AS document_count,
                   COUNT(DISTINCT d.url) AS unique_url_count,
                   MIN(d.indexed_at) AS indexed_at
            FROM documents d JOIN libraries l ON l.id = d.library_id
            GROUP BY l.name, d.version
            ORDER BY l.name
            """
        ).fetchall()

        summaries: Dict[str, LibrarySummary] = {}
        for row in rows:
            summary = summaries.setdefault(row["name"], LibrarySummary(row["name"]))
            summary.versions.append(VersionSummary(row["version"], row["document_count"],
                                                   row["unique_url_count"], row["indexed_at"]))
        for summary in summaries.values():
            order = sort_versions(v.version for v in summary.versions)[::-1]
            summary.versions.sort(key=lambda v: order.index(v.version))
        return list(summaries.values())

    def _row_to_document(self, row: sqlite3.Row) -> StoredDocument:
        return StoredDocument(
            id=row["id"],
            library=row["library"],
            version=row["version"],
            url=row["url"],
            content=row["content"] or "",
            metadata=json.loads(row["metadata"]) if row["metadata"] else {},
            sort_order=row["sort_order"],
            indexed_at=row["indexed_at"],
        )

    _SELECT_DOCUMENTS = """
        SELECT d.id, l.name AS library, d.version, d.url, d.content, d.metadata, d.sort_order, d.indexed_at
        FROM documents d JOIN libraries l ON l.id = d.library_id
    """

    def get_by_id(self, doc_id: int) -> Optional[StoredDocument]:
        row = self._require_conn().execute(self._SELECT_DOCUMENTS + " WHERE d.id = ?", (doc_id,)).fetchone()
        return self._row_to_document(row) if row else None

    def get_documents_by_ids(self, ids: Sequence[int]) -> Dict[int, StoredDocument]:
        if not ids:
            return {}
        placeholders = ",".join("?" * len(ids))
        rows = self._require_conn().execute(
            self._SELECT_DOCUMENTS + f" WHERE d.id IN ({placeholders})", tuple(ids)
        ).fetchall()
        return {row["id"]: self._row_to_document(row) for row in rows}

    def find_chunks_by_ids(self, library: str, version: Optional[str], ids: Sequence[int]) -> List[StoredDocument]:
        """Chunks of a library version among ``ids``, in page order."""
        if not ids:
            return []
        placeholders = ",".join("?" * len(ids))
        rows = self._require_conn().execute(
            self._SELECT_DOCUMENTS + f" WHERE l.name = ? AND d.version = ? AND d.id IN ({placeholders})"
            " ORDER BY d.url, d.sort_order",
            (normalize_library(library), normalize_version(version), *ids)
        ).fetchall()
        return [self._row_to_document(row) for row in rows]

    def find_best_version(self, library: str, target: Optional[str] = None,
                          exact_match: bool = False) -> Tuple[Optional[str], bool]:
        """Best indexed version of a library for ``target``.

        Returns:
            ``(best_match, has_unversioned)``
        """
        return find_best_version(self.query_unique_versions(library), target, exact_match)

    # Ranked retrieval

    def fts_search(self, library_id: int, version: str, query: str, limit: int) -> List[Tuple[int, float]]:
        """Lexical candidates as ``(doc_id, bm25)``, best first."""
        fts_query = build_fts_query(query)
        if fts_query is None or limit <= 0:
            return []
        rows = self._require_conn().execute(
            """
            SELECT d.id AS id, bm25(documents_fts) AS score
            FROM documents_fts
            JOIN documents d ON d.id = documents_fts.rowid
            WHERE documents_fts MATCH ? AND d.library_id = ? AND d.version = ?
            ORDER BY score, d.id
            LIMIT ?
            """,
            (fts_query, library_id, version, limit)
        ).fetchall()
        return [(row["id"], row["score"]) for row in rows]

    def vector_search(self, library_id: int, version: str, embedding: Sequence[float],
                      limit: int) -> List[Tuple[int, float]]:
        """Nearest neighbours as ``(doc_id, distance)``, closest first."""
        if limit <= 0:
            return []
        rows = self._require_conn().execute(
            """
            SELECT rowid, distance
            FROM documents_vec
            WHERE embedding MATCH ? AND k = ? AND library_id = ? AND version = ?
            ORDER BY distance
            """,
            (serialize_float32(pad_embedding(embedding)), min(limit, MAX_KNN_K), library_id, version)
        ).fetchall()
        # vec0 allows only ORDER BY distance; equal distances are ordered by id here
        return sorted(((row["rowid"], row["distance"]) for row in rows), key=lambda hit: (hit[1], hit[0]))
