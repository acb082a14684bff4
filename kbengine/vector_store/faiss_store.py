"""FAISS-backed vector storage with SQLite metadata."""

from __future__ import annotations

import sqlite3
from pathlib import Path

import faiss
import numpy as np

from kbengine.config import config
from kbengine.errors import StoreError
from kbengine.vector_store.base import BaseSQLiteStore

logger = config.get_logger(__name__)


class FaissVectorStore(BaseSQLiteStore):
    """Vector storage using FAISS for embeddings and SQLite for metadata."""

    backend = "faiss"

    def __init__(
        self,
        db_path: Path = Path("data/vector_store.db"),
        index_path: Path = Path("data/faiss/index.faiss"),
        raw_top_k_multiplier: int = 2,
        dimension: int | None = None,
    ) -> None:
        """Configure FAISS-backed vector store."""
        self.index_path = Path(index_path)
        self.index_path.parent.mkdir(exist_ok=True, parents=True)

        self.index: faiss.IndexIDMap | None = None
        self.raw_top_k_multiplier = max(1, raw_top_k_multiplier)

        super().__init__(db_path, dimension)

    @staticmethod
    def _normalize_embedding(embedding: np.ndarray) -> np.ndarray:
        """Normalize embedding for cosine similarity using inner product search.

        Returns:
            Normalized float32 row vector of shape (1, d).
        """
        vector = np.array(embedding, dtype="float32").reshape(1, -1)
        if np.linalg.norm(vector) == 0:
            return vector
        faiss.normalize_L2(vector)
        return vector

    def _init_index(self, dimension: int) -> None:
        base_index = faiss.IndexFlatIP(dimension)
        self.index = faiss.IndexIDMap(base_index)
        logger.info("Initialized FAISS IndexIDMap with dimension %d", dimension)

    def _persist_vector(
        self, document_id: int, row_id: int, vector: np.ndarray
    ) -> str | None:
        # vectors live in the FAISS index, keyed by chunk row id
        return None

    def _register_vector(self, row_id: int, vector: np.ndarray) -> None:
        normalized = self._normalize_embedding(vector)
        if self.index is None:
            self._init_index(normalized.shape[1])
        ids_array = np.asarray([row_id], dtype="int64")
        self.index.add_with_ids(normalized, ids_array)  # pyright: ignore[reportCallIssue,reportOptionalMemberAccess]

    def _search_vectors(
        self, vector: np.ndarray, threshold: float, top_k: int
    ) -> list[tuple[int, float]]:
        index = self.index
        if index is None or index.ntotal == 0:
            return []
        if vector.shape[0] != index.d:
            msg = (
                f"Query dimension {vector.shape[0]} does not match "
                f"FAISS index dimension {index.d}"
            )
            raise StoreError(msg)

        raw_top_k = min(max(top_k, self.raw_top_k_multiplier * top_k), index.ntotal)
        scores, vector_ids = index.search(self._normalize_embedding(vector), raw_top_k)  # pyright: ignore[reportCallIssue]

        hits = [
            (int(vector_id), float(score))
            for score, vector_id in zip(scores[0], vector_ids[0], strict=True)
            if int(vector_id) != -1 and float(score) >= threshold
        ]
        # row ids grow with insertion, so they break ties in insertion order
        hits.sort(key=lambda hit: (-hit[1], hit[0]))
        return hits[:top_k]

    def _forget_vectors(self, rows: list[tuple[int, str | None]]) -> None:
        if self.index is None or not rows:
            return
        ids_array = np.asarray([row_id for row_id, _ in rows], dtype="int64")
        removed = self.index.remove_ids(ids_array)
        logger.info("Removed %d vectors from FAISS index", removed)

    def _load_vector(self, row_id: int, vector_file: str | None) -> np.ndarray | None:  # noqa: ARG002
        # IndexIDMap keeps no id -> offset map, so vectors are not read back
        return None

    def save(self) -> None:
        """Persist FAISS index to disk."""
        index = self.index
        if index is None:
            logger.warning("No FAISS index to save")
            return

        self.index_path.parent.mkdir(exist_ok=True, parents=True)
        with self._lock:
            faiss.write_index(index, str(self.index_path))
        logger.info("Saved FAISS index to %s", self.index_path)

    def load(self) -> None:
        """Load the FAISS index from disk, starting empty when none exists.

        Chunk rows committed after the last save are dropped, so their
        documents read as absent and can be uploaded again.
        """
        if not self.index_path.exists():
            logger.warning(
                "FAISS index not found at %s. Start with an empty index.",
                self.index_path,
            )
            self.index = None
            self._drop_unindexed_rows()
            return

        loaded_index = faiss.read_index(str(self.index_path))
        if not isinstance(loaded_index, (faiss.IndexIDMap, faiss.IndexIDMap2)):
            logger.warning(
                "Loaded FAISS index is %s; wrapping with IndexIDMap to enable IDs",
                type(loaded_index).__name__,
            )
            loaded_index = faiss.IndexIDMap(loaded_index)

        with self._lock:
            self.index = loaded_index
            if self.dimension is None:
                self.dimension = int(loaded_index.d)
        logger.info(
            "Loaded FAISS index from %s with %d vectors",
            self.index_path,
            loaded_index.ntotal,
        )
        self._drop_unindexed_rows()

    def _drop_unindexed_rows(self) -> int:
        """Delete FAISS-backed chunk rows whose ids are absent from the index.

        Raises:
            StoreError: If the metadata cannot be read or updated.

        Returns:
            Number of chunk rows removed.
        """
        index = self.index
        indexed: set[int] = set()
        if index is not None and index.ntotal > 0:
            indexed = {int(row_id) for row_id in faiss.vector_to_array(index.id_map)}

        with self._lock:
            try:
                with self._connect() as conn:
                    cursor = conn.cursor()
                    cursor.execute("SELECT id FROM chunks WHERE vector_file IS NULL")
                    stale = [
                        (int(row[0]),)
                        for row in cursor.fetchall()
                        if int(row[0]) not in indexed
                    ]
                    if stale:
                        cursor.executemany("DELETE FROM chunks WHERE id = ?", stale)
                        conn.commit()
            except sqlite3.Error as exc:
                msg = f"Reconciling chunks with FAISS index failed: {exc}"
                raise StoreError(msg) from exc

        if stale:
            logger.warning(
                "Dropped %d chunk rows missing from FAISS index %s",
                len(stale),
                self.index_path,
            )
        return len(stale)
