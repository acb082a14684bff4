"""SQLite-based vector storage with numpy file backend."""

from __future__ import annotations

import sqlite3
from pathlib import Path

import numpy as np

from kbengine.config import config
from kbengine.errors import StoreError
from kbengine.vector_store.base import BaseSQLiteStore

logger = config.get_logger(__name__)


class SQLiteVectorStore(BaseSQLiteStore):
    """Vector storage using SQLite for metadata and numpy files for embeddings."""

    backend = "sqlite"

    def __init__(
        self,
        db_path: Path = Path("data/vector_store.db"),
        vectors_dir: Path = Path("data/vectors"),
        dimension: int | None = None,
    ) -> None:
        """Initialize the SQLiteVectorStore with database and vector directory paths.

        Args:
            db_path: Path to the SQLite database file.
            vectors_dir: Directory to store numpy vector files.
            dimension: Required embedding dimension. If None, the first
                inserted vector fixes it.
        """
        self.vectors_dir = Path(vectors_dir)
        self.vectors_dir.mkdir(exist_ok=True, parents=True)

        self.row_ids: list[int] = []
        self.embeddings: np.ndarray | None = None

        super().__init__(db_path, dimension)

    def _persist_vector(
        self, document_id: int, row_id: int, vector: np.ndarray
    ) -> str | None:
        vector_filename = f"doc{document_id:06d}_chunk{row_id:08d}.npy"
        np.save(self.vectors_dir / vector_filename, np.asarray(vector, dtype="float32"))
        return vector_filename

    def _register_vector(self, row_id: int, vector: np.ndarray) -> None:
        row = np.asarray(vector, dtype="float32").reshape(1, -1)
        self.embeddings = row if self.embeddings is None else np.vstack([self.embeddings, row])
        self.row_ids.append(row_id)

    @staticmethod
    def cosine_similarity(
        query_embedding: np.ndarray,
        embeddings: np.ndarray,
    ) -> np.ndarray:
        """Calculate cosine similarity between query and document embeddings.

        Zero-norm vectors score 0.

        Returns:
            np.ndarray: Array of cosine similarity scores
                    between the query and each document embedding.
        """
        query = np.asarray(query_embedding, dtype="float64")
        docs = np.asarray(embeddings, dtype="float64")
        dots = docs @ query
        denominator = np.linalg.norm(docs, axis=1) * np.linalg.norm(query)
        return np.divide(
            dots,
            denominator,
            out=np.zeros_like(dots),
            where=denominator != 0,
        )

    def _search_vectors(
        self, vector: np.ndarray, threshold: float, top_k: int
    ) -> list[tuple[int, float]]:
        if self.embeddings is None or not self.row_ids:
            return []
        if vector.shape[0] != self.embeddings.shape[1]:
            msg = (
                f"Query dimension {vector.shape[0]} does not match "
                f"store dimension {self.embeddings.shape[1]}"
            )
            raise StoreError(msg)

        similarities = self.cosine_similarity(vector, self.embeddings)
        # stable sort keeps insertion order between equal scores
        order = np.argsort(-similarities, kind="stable")
        results: list[tuple[int, float]] = []
        for idx in order:
            score = float(similarities[idx])
            if score < threshold:
                break
            results.append((self.row_ids[idx], score))
            if len(results) == top_k:
                break
        return results

    def _forget_vectors(self, rows: list[tuple[int, str | None]]) -> None:
        removed = {row_id for row_id, _ in rows}
        for _, vector_file in rows:
            if vector_file:
                (self.vectors_dir / vector_file).unlink(missing_ok=True)

        keep = [i for i, row_id in enumerate(self.row_ids) if row_id not in removed]
        self.row_ids = [self.row_ids[i] for i in keep]
        if self.embeddings is not None and keep:
            self.embeddings = self.embeddings[keep]
        else:
            self.embeddings = None

    def _load_vector(self, row_id: int, vector_file: str | None) -> np.ndarray | None:
        if not vector_file:
            return None
        vector_path = self.vectors_dir / vector_file
        if not vector_path.exists():
            logger.warning("Vector file not found for chunk %d: %s", row_id, vector_path)
            return None
        return np.load(vector_path)

    def save(self) -> None:
        """Save operation - data is already persisted in SQLite and files."""
        logger.info("Data already persisted in SQLite database and vector files")

    def load(self) -> None:
        """Load the embeddings matrix from SQLite rows and vector files.

        Raises:
            StoreError: If the metadata cannot be read.
        """
        try:
            with self._connect() as conn:
                rows = conn.execute(
                    """
                    SELECT id, vector_file FROM chunks
                    WHERE vector_file IS NOT NULL
                    ORDER BY id
                    """
                ).fetchall()
        except sqlite3.Error as exc:
            logger.exception("Error loading from SQLite vector store")
            msg = f"Loading vector store failed: {exc}"
            raise StoreError(msg) from exc

        row_ids: list[int] = []
        vectors: list[np.ndarray] = []
        for row_id, vector_file in rows:
            vector_path = self.vectors_dir / vector_file
            if not vector_path.exists():
                logger.warning("Vector file not found: %s", vector_path)
                continue
            vectors.append(np.load(vector_path))
            row_ids.append(int(row_id))

        with self._lock:
            self.row_ids = row_ids
            self.embeddings = np.vstack(vectors).astype("float32") if vectors else None
            if self.embeddings is not None and self.dimension is None:
                self.dimension = int(self.embeddings.shape[1])

        logger.info("Loaded %d vectors from SQLite vector store", len(row_ids))
