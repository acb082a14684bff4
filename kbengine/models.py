"""Data models for the knowledge base pipeline."""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    import numpy as np

MATCH_PREVIEW_LENGTH = 100
ANSWER_PREVIEW_LENGTH = 120


class IngestionStatus(str, Enum):
    """Outcome of one ingestion run."""

    SUCCESS = "success"
    PARTIAL = "partial"
    FAILED = "failed"

    @classmethod
    def from_counts(cls, total: int, failures: int) -> IngestionStatus:
        """Derive the run status from its chunk totals.

        Returns:
            SUCCESS with no failures, FAILED when every chunk failed,
            PARTIAL otherwise.
        """
        if failures == 0:
            return cls.SUCCESS
        if failures < total:
            return cls.PARTIAL
        return cls.FAILED


@dataclass(frozen=True)
class Document:
    """A raw document keyed by its unique name."""

    name: str
    text: str
    document_id: int | None = None


@dataclass(frozen=True)
class Chunk:
    """A bounded segment of a document's text, the unit of embedding."""

    index: int
    content: str
    document_name: str


@dataclass
class StoredRecord:
    """A persisted chunk with its embedding."""

    document_name: str
    content: str
    embedding: np.ndarray | None = None
    created_at: str | None = None


@dataclass(frozen=True)
class Match:
    """A stored chunk returned by similarity search."""

    document_name: str
    content: str
    similarity: float

    def to_dict(self) -> dict[str, Any]:
        return {
            "file": self.document_name,
            "similarity": round(self.similarity, 3),
            "preview": self.content[:MATCH_PREVIEW_LENGTH],
        }


@dataclass
class IngestionRun:
    """Summary of one document upload, written once at the end of ingestion."""

    document_name: str
    total_chunks: int
    success_count: int
    failure_count: int
    duration_seconds: float
    avg_seconds_per_chunk: float
    status: IngestionStatus
    failed_segments: list[str] = field(default_factory=list)
    timestamp: str | None = None

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["status"] = self.status.value
        return data


@dataclass
class QueryLog:
    """Summary of one answered question."""

    question: str
    matched_count: int
    threshold: float
    top_k: int
    answer_preview: str
    timestamp: str

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass
class RetrievalResult:
    """Answer and supporting matches for a question."""

    question: str
    answer: str
    matches: list[Match]
    threshold: float
    top_k: int
    widened: bool = False

    def to_dict(self) -> dict[str, Any]:
        return {
            "question": self.question,
            "answer": self.answer,
            "matches": [match.to_dict() for match in self.matches],
        }


@dataclass
class UploadResult:
    """Outcome of submitting a document to the pipeline."""

    document_name: str
    skipped: bool = False
    run: IngestionRun | None = None

    @property
    def status(self) -> str:
        if self.skipped or self.run is None:
            return "skipped"
        return self.run.status.value

    @property
    def message(self) -> str:
        if self.skipped or self.run is None:
            return f"Document {self.document_name} already exists, skipped."
        run = self.run
        if run.status is IngestionStatus.SUCCESS:
            return (
                f"Uploaded {run.success_count} chunks "
                f"in {run.duration_seconds:.2f}s"
            )
        return (
            f"Uploaded {run.success_count}/{run.total_chunks} chunks "
            f"in {run.duration_seconds:.2f}s"
        )

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "file_name": self.document_name,
            "status": self.status,
            "message": self.message,
        }
        if self.run is not None and self.run.failed_segments:
            data["failed"] = list(self.run.failed_segments)
        return data
