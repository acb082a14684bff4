"""Shared gateway contract and SQLite helpers for vector stores."""

from __future__ import annotations

import asyncio
import json
import sqlite3
import threading
from pathlib import Path
from typing import TYPE_CHECKING, Any, Protocol

from kbengine.config import config
from kbengine.errors import LoggingError, StoreError
from kbengine.models import Match, StoredRecord

if TYPE_CHECKING:
    import numpy as np

logger = config.get_logger(__name__)

LOG_TABLES: dict[str, tuple[str, ...]] = {
    "upload_logs": (
        "file_name",
        "total_chunks",
        "success_chunks",
        "failed_chunks",
        "duration_seconds",
        "avg_seconds_per_chunk",
        "failed_segments",
        "status",
        "timestamp",
    ),
    "query_logs": (
        "question",
        "matched_count",
        "threshold",
        "top_k",
        "answer_preview",
        "timestamp",
    ),
}


class VectorStoreGateway(Protocol):
    """Persistence and similarity search for embedded chunks."""

    async def exists(self, document_name: str) -> bool: ...

    async def insert(
        self, document_name: str, content: str, vector: np.ndarray
    ) -> None: ...

    async def similarity_search(
        self, vector: np.ndarray, threshold: float, top_k: int
    ) -> list[Match]: ...

    async def append_log(self, table: str, record: dict[str, Any]) -> None: ...


class BaseSQLiteStore:
    """Common schema management and gateway plumbing for SQLite-backed stores.

    Subclasses keep the vectors themselves and implement ``_persist_vector``,
    ``_search_vectors``, ``_forget_vectors`` and ``load``. Blocking work runs
    in a worker thread; mutations are serialised by ``self._lock``.
    """

    backend = "base"

    def __init__(self, db_path: Path, dimension: int | None = None) -> None:
        """Initialize metadata store and ensure schema exists."""
        self.db_path = Path(db_path)
        self.db_path.parent.mkdir(exist_ok=True, parents=True)
        self.dimension = dimension
        self._lock = threading.Lock()
        self._create_tables()

    def _connect(self) -> sqlite3.Connection:
        return sqlite3.connect(str(self.db_path), timeout=30)

    def _create_tables(self) -> None:
        """Create document, chunk and log tables if they don't exist."""
        with self._connect() as conn:
            cursor = conn.cursor()

            cursor.execute("""
                CREATE TABLE IF NOT EXISTS documents (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    name TEXT NOT NULL UNIQUE,
                    processed_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
                )
            """)

            cursor.execute("""
                CREATE TABLE IF NOT EXISTS chunks (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    document_id INTEGER NOT NULL,
                    content TEXT NOT NULL,
                    length INTEGER,
                    vector_file TEXT,
                    created_at DATETIME DEFAULT CURRENT_TIMESTAMP,
                    FOREIGN KEY (document_id) REFERENCES documents (id)
                )
            """)

            cursor.execute("""
                CREATE TABLE IF NOT EXISTS upload_logs (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    file_name TEXT NOT NULL,
                    total_chunks INTEGER,
                    success_chunks INTEGER,
                    failed_chunks INTEGER,
                    duration_seconds REAL,
                    avg_seconds_per_chunk REAL,
                    failed_segments TEXT,
                    status TEXT CHECK(status IN ('success','partial','failed')),
                    timestamp TEXT
                )
            """)

            cursor.execute("""
                CREATE TABLE IF NOT EXISTS query_logs (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    question TEXT NOT NULL,
                    matched_count INTEGER,
                    threshold REAL,
                    top_k INTEGER,
                    answer_preview TEXT,
                    timestamp TEXT
                )
            """)

            cursor.execute(
                "CREATE INDEX IF NOT EXISTS idx_chunks_document ON chunks(document_id)",
            )
            conn.commit()

    # Gateway operations

    async def exists(self, document_name: str) -> bool:
        """Check whether any chunk is stored under ``document_name``.

        Returns:
            True if the document has at least one stored chunk.
        """
        return await asyncio.to_thread(self._exists_sync, document_name)

    async def insert(
        self, document_name: str, content: str, vector: np.ndarray
    ) -> None:
        """Persist one chunk and its embedding."""
        await asyncio.to_thread(self._insert_sync, document_name, content, vector)

    async def similarity_search(
        self, vector: np.ndarray, threshold: float, top_k: int
    ) -> list[Match]:
        """Find stored chunks with cosine similarity >= ``threshold``.

        Returns:
            At most ``top_k`` matches in descending similarity; equal scores
            keep insertion order.
        """
        if top_k <= 0:
            return []
        return await asyncio.to_thread(self._search_sync, vector, threshold, top_k)

    async def append_log(self, table: str, record: dict[str, Any]) -> None:
        """Write one audit record to ``upload_logs`` or ``query_logs``."""
        await asyncio.to_thread(self._append_log_sync, table, record)

    async def list_documents(self) -> list[str]:
        """Return distinct stored document names in first-insertion order."""  # noqa: DOC201
        return await asyncio.to_thread(self._list_documents_sync)

    async def delete_document(self, document_name: str) -> int:
        """Remove a document and all of its chunks.

        Returns:
            Number of chunks removed.
        """
        return await asyncio.to_thread(self._delete_document_sync, document_name)

    async def get_records(self, document_name: str) -> list[StoredRecord]:
        """Return the stored records of one document in insertion order."""  # noqa: DOC201
        return await asyncio.to_thread(self._get_records_sync, document_name)

    async def count_chunks(self, document_name: str | None = None) -> int:
        """Count stored chunks, optionally for one document."""  # noqa: DOC201
        return await asyncio.to_thread(self._count_chunks_sync, document_name)

    # Synchronous implementations

    def _exists_sync(self, document_name: str) -> bool:
        try:
            with self._connect() as conn:
                row = conn.execute(
                    """
                    SELECT 1 FROM chunks c
                    JOIN documents d ON c.document_id = d.id
                    WHERE d.name = ?
                    LIMIT 1
                    """,
                    (document_name,),
                ).fetchone()
        except sqlite3.Error as exc:
            msg = f"Existence check failed for {document_name}: {exc}"
            raise StoreError(msg) from exc
        return row is not None

    def _insert_sync(self, document_name: str, content: str, vector: np.ndarray) -> None:
        with self._lock:
            self._check_dimension(vector)
            try:
                with self._connect() as conn:
                    cursor = conn.cursor()
                    document_id = self._upsert_document(cursor, document_name)
                    cursor.execute(
                        "INSERT INTO chunks (document_id, content, length) VALUES (?, ?, ?)",
                        (document_id, content, len(content)),
                    )
                    row_id = cursor.lastrowid
                    if row_id is None:
                        msg = "Failed to insert chunk row"
                        raise StoreError(msg)
                    vector_file = self._persist_vector(document_id, int(row_id), vector)
                    if vector_file is not None:
                        cursor.execute(
                            "UPDATE chunks SET vector_file = ? WHERE id = ?",
                            (vector_file, int(row_id)),
                        )
                    conn.commit()
            except (sqlite3.Error, OSError) as exc:
                msg = f"Insert failed for {document_name}: {exc}"
                raise StoreError(msg) from exc
            self._register_vector(int(row_id), vector)
            if self.dimension is None:
                self.dimension = int(vector.shape[0])

    def _search_sync(
        self, vector: np.ndarray, threshold: float, top_k: int
    ) -> list[Match]:
        with self._lock:
            scored = self._search_vectors(vector, threshold, top_k)
        if not scored:
            return []
        try:
            with self._connect() as conn:
                matches = []
                for row_id, score in scored:
                    row = conn.execute(
                        """
                        SELECT c.content, d.name FROM chunks c
                        JOIN documents d ON c.document_id = d.id
                        WHERE c.id = ?
                        """,
                        (row_id,),
                    ).fetchone()
                    if row is None:
                        logger.warning("Vector %d has no chunk row", row_id)
                        continue
                    matches.append(
                        Match(document_name=row[1], content=row[0], similarity=score)
                    )
        except sqlite3.Error as exc:
            msg = f"Similarity search failed: {exc}"
            raise StoreError(msg) from exc
        return matches

    def _append_log_sync(self, table: str, record: dict[str, Any]) -> None:
        columns = LOG_TABLES.get(table)
        if columns is None:
            msg = f"Unknown log table: {table}"
            raise LoggingError(msg)

        values = []
        for column in columns:
            value = record.get(column)
            if isinstance(value, (list, dict)):
                value = json.dumps(value, ensure_ascii=False)
            values.append(value)

        placeholders = ", ".join("?" for _ in columns)
        try:
            with self._connect() as conn:
                conn.execute(
                    f"INSERT INTO {table} ({', '.join(columns)}) VALUES ({placeholders})",  # noqa: S608
                    values,
                )
                conn.commit()
        except sqlite3.Error as exc:
            msg = f"Failed to write {table}: {exc}"
            raise LoggingError(msg) from exc

    def _list_documents_sync(self) -> list[str]:
        try:
            with self._connect() as conn:
                rows = conn.execute(
                    """
                    SELECT d.name FROM documents d
                    WHERE EXISTS (SELECT 1 FROM chunks c WHERE c.document_id = d.id)
                    ORDER BY d.id
                    """
                ).fetchall()
        except sqlite3.Error as exc:
            msg = f"Listing documents failed: {exc}"
            raise StoreError(msg) from exc
        return [row[0] for row in rows]

    def _delete_document_sync(self, document_name: str) -> int:
        with self._lock:
            try:
                with self._connect() as conn:
                    cursor = conn.cursor()
                    cursor.execute(
                        """
                        SELECT c.id, c.vector_file FROM chunks c
                        JOIN documents d ON c.document_id = d.id
                        WHERE d.name = ?
                        """,
                        (document_name,),
                    )
                    rows = [(int(row[0]), row[1]) for row in cursor.fetchall()]
                    cursor.execute(
                        """
                        DELETE FROM chunks WHERE document_id IN
                        (SELECT id FROM documents WHERE name = ?)
                        """,
                        (document_name,),
                    )
                    cursor.execute(
                        "DELETE FROM documents WHERE name = ?", (document_name,)
                    )
                    conn.commit()
            except sqlite3.Error as exc:
                msg = f"Delete failed for {document_name}: {exc}"
                raise StoreError(msg) from exc
            self._forget_vectors(rows)
        logger.info("Deleted %d chunks of %s", len(rows), document_name)
        return len(rows)

    def _get_records_sync(self, document_name: str) -> list[StoredRecord]:
        try:
            with self._connect() as conn:
                rows = conn.execute(
                    """
                    SELECT c.id, c.content, c.vector_file, c.created_at FROM chunks c
                    JOIN documents d ON c.document_id = d.id
                    WHERE d.name = ?
                    ORDER BY c.id
                    """,
                    (document_name,),
                ).fetchall()
        except sqlite3.Error as exc:
            msg = f"Reading records of {document_name} failed: {exc}"
            raise StoreError(msg) from exc
        return [
            StoredRecord(
                document_name=document_name,
                content=content,
                embedding=self._load_vector(int(row_id), vector_file),
                created_at=created_at,
            )
            for row_id, content, vector_file, created_at in rows
        ]

    def _count_chunks_sync(self, document_name: str | None) -> int:
        query = "SELECT COUNT(*) FROM chunks"
        params: tuple[str, ...] = ()
        if document_name is not None:
            query = (
                "SELECT COUNT(*) FROM chunks c JOIN documents d "
                "ON c.document_id = d.id WHERE d.name = ?"
            )
            params = (document_name,)
        try:
            with self._connect() as conn:
                return int(conn.execute(query, params).fetchone()[0])
        except sqlite3.Error as exc:
            msg = f"Counting chunks failed: {exc}"
            raise StoreError(msg) from exc

    # Helpers

    def _check_dimension(self, vector: np.ndarray) -> None:
        if vector.ndim != 1:
            msg = f"Embedding must be one-dimensional, got shape {vector.shape}"
            raise StoreError(msg)
        if self.dimension is not None and vector.shape[0] != self.dimension:
            msg = (
                f"Embedding dimension {vector.shape[0]} does not match "
                f"store dimension {self.dimension}"
            )
            raise StoreError(msg)

    @staticmethod
    def _upsert_document(cursor: sqlite3.Cursor, name: str) -> int:
        """Insert document metadata if missing and return its id.

        Raises:
            StoreError: If the document id cannot be retrieved.

        Returns:
            Document id from the metadata store.
        """
        cursor.execute("INSERT OR IGNORE INTO documents (name) VALUES (?)", (name,))
        cursor.execute("SELECT id FROM documents WHERE name = ?", (name,))
        row = cursor.fetchone()
        if row is None:
            msg = f"Failed to upsert document '{name}'"
            raise StoreError(msg)
        return int(row[0])

    def _persist_vector(
        self, document_id: int, row_id: int, vector: np.ndarray
    ) -> str | None:
        """Write the vector to backend storage; return a vector file name if any."""
        raise NotImplementedError

    def _register_vector(self, row_id: int, vector: np.ndarray) -> None:
        """Make a committed vector searchable."""
        raise NotImplementedError

    def _search_vectors(
        self, vector: np.ndarray, threshold: float, top_k: int
    ) -> list[tuple[int, float]]:
        """Return (chunk row id, similarity) pairs, best first."""
        raise NotImplementedError

    def _forget_vectors(self, rows: list[tuple[int, str | None]]) -> None:
        """Drop vectors of deleted (row id, vector file) pairs."""
        raise NotImplementedError

    def _load_vector(self, row_id: int, vector_file: str | None) -> np.ndarray | None:
        """Read back a stored vector, or None if the backend cannot."""
        raise NotImplementedError

    def save(self) -> None:
        """Persist in-memory backend state."""

    def load(self) -> None:
        """Load backend state from disk."""
        raise NotImplementedError
