"""Wave-parallel embed-and-store execution with per-chunk retry."""

from __future__ import annotations

import asyncio
import time
from collections.abc import Awaitable, Callable, Sequence
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from .audit import utc_now
from .config import config
from .errors import UpstreamError, ValidationError
from .models import Chunk, IngestionRun, IngestionStatus

if TYPE_CHECKING:
    from .audit import AuditRecorder
    from .embeddings import EmbeddingGateway
    from .vector_store import VectorStoreGateway

logger = config.get_logger(__name__)


@dataclass
class _RunTally:
    """Counters shared by the chunk units of one run.

    Units only touch it between suspension points, so no lock is needed.
    """

    max_samples: int
    success_count: int = 0
    failure_count: int = 0
    failed_segments: list[str] = field(default_factory=list)

    def record_failure(self, message: str) -> None:
        self.failure_count += 1
        if len(self.failed_segments) < self.max_samples:
            self.failed_segments.append(message)


class IngestionExecutor:
    """Drives chunks through embedding and storage under bounded concurrency.

    Chunks are processed in waves of ``concurrency``; a wave settles
    completely, retries included, before the next one starts. Each chunk is
    attempted up to ``max_retries`` times with a backoff of
    ``attempt * backoff_seconds`` between attempts.
    """

    def __init__(  # noqa: PLR0913
        self,
        embedder: EmbeddingGateway,
        store: VectorStoreGateway,
        audit: AuditRecorder | None = None,
        *,
        concurrency: int | None = None,
        max_retries: int | None = None,
        backoff_seconds: float | None = None,
        max_failure_samples: int | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        clock: Callable[[], float] = time.perf_counter,
        now: Callable[[], str] = utc_now,
    ) -> None:
        """Initialize the executor.

        Raises:
            ValueError: If concurrency or max_retries is below 1.
        """
        self.embedder = embedder
        self.store = store
        self.audit = audit
        self.concurrency = (
            concurrency if concurrency is not None else config.INGEST_CONCURRENCY
        )
        self.max_retries = (
            max_retries if max_retries is not None else config.INGEST_MAX_RETRIES
        )
        self.backoff_seconds = (
            backoff_seconds
            if backoff_seconds is not None
            else config.INGEST_BACKOFF_SECONDS
        )
        self.max_failure_samples = (
            max_failure_samples
            if max_failure_samples is not None
            else config.MAX_FAILURE_SAMPLES
        )
        self.sleep = sleep
        self.clock = clock
        self.now = now

        if self.concurrency < 1:
            msg = "concurrency must be >= 1"
            raise ValueError(msg)
        if self.max_retries < 1:
            msg = "max_retries must be >= 1"
            raise ValueError(msg)

    def waves(self, chunks: Sequence[Chunk]) -> list[list[Chunk]]:
        """Partition chunks into consecutive groups of ``concurrency``."""  # noqa: DOC201
        return [
            list(chunks[start : start + self.concurrency])
            for start in range(0, len(chunks), self.concurrency)
        ]

    async def ingest(self, document_name: str, chunks: Sequence[Chunk]) -> IngestionRun:
        """Embed and store every chunk of a document.

        Returns:
            The run summary; it is also handed to the audit recorder.

        Raises:
            ValidationError: If the document name is blank or there are no chunks.
        """
        if not document_name or not document_name.strip():
            msg = "document name must not be empty"
            raise ValidationError(msg)
        if not chunks:
            msg = f"document {document_name} produced no chunks"
            raise ValidationError(msg)

        total = len(chunks)
        tally = _RunTally(max_samples=self.max_failure_samples)
        start = self.clock()

        for wave_number, wave in enumerate(self.waves(chunks), start=1):
            logger.debug("Starting wave %d with %d chunks", wave_number, len(wave))
            await asyncio.gather(
                *(self.process_chunk(chunk, total, tally) for chunk in wave)
            )

        duration = round(self.clock() - start, 2)
        run = IngestionRun(
            document_name=document_name,
            total_chunks=total,
            success_count=tally.success_count,
            failure_count=tally.failure_count,
            duration_seconds=duration,
            avg_seconds_per_chunk=round(duration / total, 2),
            status=IngestionStatus.from_counts(total, tally.failure_count),
            failed_segments=tally.failed_segments,
            timestamp=self.now(),
        )
        logger.info(
            "Ingested %s: %d/%d chunks in %.2fs (%s)",
            document_name,
            run.success_count,
            total,
            duration,
            run.status.value,
        )

        if self.audit is not None:
            await self.audit.record_ingestion(run)
        return run

    async def process_chunk(self, chunk: Chunk, total: int, tally: _RunTally) -> bool:
        """Embed and store one chunk, retrying until success or exhaustion.

        Returns:
            True if the chunk was stored.
        """
        last_error = ""
        for attempt in range(1, self.max_retries + 1):
            try:
                vector = await self.embedder.embed(chunk.content)
                if vector is None or len(vector) == 0:
                    msg = "embedding returned no vector"
                    raise UpstreamError(msg)
                await self.store.insert(chunk.document_name, chunk.content, vector)
            except Exception as exc:  # noqa: BLE001
                last_error = str(exc) or type(exc).__name__
                logger.warning(
                    "Chunk %d failed (attempt %d/%d): %s",
                    chunk.index + 1,
                    attempt,
                    self.max_retries,
                    last_error,
                )
                if attempt < self.max_retries:
                    await self.sleep(attempt * self.backoff_seconds)
                continue

            tally.success_count += 1
            logger.info("Chunk %d/%d stored", chunk.index + 1, total)
            return True

        logger.warning(
            "Chunk %d/%d gave up after %d attempts", chunk.index + 1, total, self.max_retries
        )
        tally.record_failure(f"chunk {chunk.index + 1}: {last_error}")
        return False
