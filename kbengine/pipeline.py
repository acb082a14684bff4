"""Main pipeline orchestrating Load -> Chunk -> Embed -> Store and Ask."""

from __future__ import annotations

from pathlib import Path
from typing import TYPE_CHECKING, cast

from .answering import AnswerService
from .audit import AuditRecorder
from .config import config
from .document_processing import DocumentLoader, RecordChunker, normalize_text
from .embeddings import EmbeddingService
from .errors import ValidationError
from .ingestion import IngestionExecutor
from .models import Document, RetrievalResult, UploadResult
from .retrieval import RetrievalEngine
from .vector_store import VectorBackend, get_vector_store

if TYPE_CHECKING:
    from .answering import AnswerGateway
    from .embeddings import EmbeddingGateway
    from .vector_store import FaissVectorStore, SQLiteVectorStore

logger = config.get_logger(__name__)


class RAGPipeline:
    """Knowledge base facade: ingest documents and answer questions."""

    def __init__(  # noqa: PLR0913
        self,
        embedder: EmbeddingGateway | None = None,
        store: SQLiteVectorStore | FaissVectorStore | None = None,
        answerer: AnswerGateway | None = None,
        *,
        openai_api_key: str | None = None,
        vector_backend: str | None = None,
        sqlite_db_path: Path | None = None,
        vectors_dir: Path | None = None,
        faiss_index_path: Path | None = None,
        chunker: RecordChunker | None = None,
        executor_options: dict | None = None,
        retrieval_options: dict | None = None,
    ) -> None:
        """Initialize the pipeline, building any gateway not injected.

        Args:
            embedder: Embedding gateway. If None, an EmbeddingService is built.
            store: Vector store. If None, one is built for ``vector_backend``.
            answerer: Answer gateway. If None, an AnswerService is built.
            openai_api_key: OpenAI API key for the default services.
            vector_backend: "sqlite" or "faiss". Defaults to config.VECTOR_BACKEND.
            sqlite_db_path: SQLite metadata path. Defaults to
                config.VECTOR_STORE_DB_PATH.
            vectors_dir: Numpy vector directory (SQLite backend).
            faiss_index_path: FAISS index file (FAISS backend).
            chunker: Chunker. If None, a RecordChunker with config defaults.
            executor_options: Keyword overrides for IngestionExecutor.
            retrieval_options: Keyword overrides for RetrievalEngine.
        """
        self.embedder = embedder or EmbeddingService(api_key=openai_api_key)
        self.answerer = answerer or AnswerService(api_key=openai_api_key)

        if store is None:
            backend_value = (
                vector_backend if vector_backend is not None else config.VECTOR_BACKEND
            )
            store = get_vector_store(
                cast("VectorBackend", backend_value.lower()),
                db_path=sqlite_db_path,
                vectors_dir=vectors_dir,
                index_path=faiss_index_path,
                dimension=self.embedder.dimension,
            )
            store.load()
        self.vector_store = store
        logger.info("Using %s vector storage", getattr(store, "backend", "custom"))

        self.chunker = chunker or RecordChunker()
        self.audit = AuditRecorder(self.vector_store)
        self.executor = IngestionExecutor(
            self.embedder,
            self.vector_store,
            self.audit,
            **(executor_options or {}),
        )
        self.retriever = RetrievalEngine(
            self.embedder,
            self.vector_store,
            self.answerer,
            self.audit,
            **(retrieval_options or {}),
        )

    async def ingest_text(self, document_name: str, text: str) -> UploadResult:
        """Chunk, embed and store a document unless its name is already stored.

        Returns:
            The upload result; ``skipped`` is set for duplicate names.

        Raises:
            ValidationError: If the name or the normalized text is empty.
        """
        name = (document_name or "").strip()
        if not name:
            msg = "document name must not be empty"
            raise ValidationError(msg)
        normalized = normalize_text(text or "")
        if not normalized:
            msg = f"document {name} is empty"
            raise ValidationError(msg)

        # point-in-time check; concurrent uploads of one name can both pass
        if await self.vector_store.exists(name):
            logger.info("Document %s already exists, skipping", name)
            return UploadResult(document_name=name, skipped=True)

        document = Document(name=name, text=normalized)
        chunks = self.chunker.chunk_text(document.text, source=document.name)
        try:
            run = await self.executor.ingest(document.name, chunks)
        finally:
            # chunk rows are already committed; keep the index in step with them
            self.save()
        return UploadResult(document_name=name, run=run)

    async def process_document(self, file_path: Path) -> UploadResult:
        """Load a TXT/PDF file and ingest it under its file name."""  # noqa: DOC201
        logger.info("Starting ingestion for document: %s", file_path)
        text = DocumentLoader.load_document(Path(file_path))
        return await self.ingest_text(Path(file_path).name, text)

    async def ask(
        self,
        question: str,
        threshold: float | None = None,
        top_k: int | None = None,
    ) -> RetrievalResult:
        """Answer a question from the knowledge base."""  # noqa: DOC201
        return await self.retriever.retrieve(question, threshold=threshold, top_k=top_k)

    async def document_exists(self, document_name: str) -> bool:
        return await self.vector_store.exists(document_name.strip())

    async def list_documents(self) -> list[str]:
        return await self.vector_store.list_documents()

    async def delete_document(self, document_name: str) -> int:
        """Delete a document so it can be re-ingested.

        Returns:
            Number of chunks removed.
        """
        removed = await self.vector_store.delete_document(document_name.strip())
        self.save()
        return removed

    def save(self) -> None:
        """Persist backend state such as the FAISS index."""
        self.vector_store.save()
