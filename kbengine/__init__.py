"""KBEngine - record-aware knowledge base ingestion and question answering."""

from .answering import AnswerService
from .audit import AuditRecorder
from .document_processing import DocumentLoader, RecordChunker, chunk_text
from .embeddings import EmbeddingService
from .errors import (
    KBEngineError,
    LoggingError,
    StoreError,
    UpstreamError,
    ValidationError,
)
from .ingestion import IngestionExecutor
from .models import (
    Chunk,
    Document,
    IngestionRun,
    IngestionStatus,
    Match,
    QueryLog,
    RetrievalResult,
    StoredRecord,
    UploadResult,
)
from .pipeline import RAGPipeline
from .retrieval import RetrievalEngine
from .vector_store import FaissVectorStore, SQLiteVectorStore, get_vector_store

__all__ = [
    "AnswerService",
    "AuditRecorder",
    "Chunk",
    "Document",
    "DocumentLoader",
    "EmbeddingService",
    "FaissVectorStore",
    "IngestionExecutor",
    "IngestionRun",
    "IngestionStatus",
    "KBEngineError",
    "LoggingError",
    "Match",
    "QueryLog",
    "RAGPipeline",
    "RecordChunker",
    "RetrievalEngine",
    "RetrievalResult",
    "SQLiteVectorStore",
    "StoreError",
    "StoredRecord",
    "UploadResult",
    "UpstreamError",
    "ValidationError",
    "chunk_text",
    "get_vector_store",
]
