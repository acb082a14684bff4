"""Vector store adapters and factory."""

from __future__ import annotations

from typing import TYPE_CHECKING, Literal

from kbengine.config import config

from .base import VectorStoreGateway
from .faiss_store import FaissVectorStore
from .sqlite_store import SQLiteVectorStore

if TYPE_CHECKING:
    from pathlib import Path

VectorBackend = Literal["faiss", "sqlite"]


def get_vector_store(
    store: VectorBackend = "sqlite",
    *,
    db_path: Path | None = None,
    vectors_dir: Path | None = None,
    index_path: Path | None = None,
    dimension: int | None = None,
) -> FaissVectorStore | SQLiteVectorStore:
    """Return a configured vector store instance.

    Raises:
        ValueError: If an unsupported backend is requested.
    """
    if db_path is None:
        db_path = config.VECTOR_STORE_DB_PATH
    backend = store.lower()

    if backend == "faiss":
        return FaissVectorStore(
            db_path=db_path,
            index_path=(
                index_path if index_path is not None else config.FAISS_INDEX_PATH
            ),
            dimension=dimension,
        )

    if backend == "sqlite":
        return SQLiteVectorStore(
            db_path=db_path,
            vectors_dir=(
                vectors_dir if vectors_dir is not None else config.VECTOR_STORE_DIR
            ),
            dimension=dimension,
        )

    msg = f"Unsupported vector store backend: {store}"
    raise ValueError(msg)


__all__ = [
    "FaissVectorStore",
    "SQLiteVectorStore",
    "VectorBackend",
    "VectorStoreGateway",
    "get_vector_store",
]
