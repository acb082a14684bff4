"""Best-effort audit logging of ingestion runs and queries."""

from __future__ import annotations

import datetime
from collections.abc import Callable
from typing import TYPE_CHECKING, Any

from .config import config
from .errors import LoggingError, StoreError
from .models import ANSWER_PREVIEW_LENGTH, IngestionRun, QueryLog

if TYPE_CHECKING:
    from .vector_store import VectorStoreGateway

logger = config.get_logger(__name__)

UPLOAD_LOG_TABLE = "upload_logs"
QUERY_LOG_TABLE = "query_logs"


def utc_now() -> str:
    return datetime.datetime.now(tz=datetime.UTC).isoformat()


class AuditRecorder:
    """Writes one structured record per ingestion run and per query.

    Failures are warned about and never propagate to the caller.
    """

    def __init__(
        self,
        store: VectorStoreGateway,
        clock: Callable[[], str] = utc_now,
    ) -> None:
        self.store = store
        self.clock = clock

    async def record_ingestion(self, run: IngestionRun) -> bool:
        """Persist an ingestion run summary.

        Returns:
            True if the record was written.
        """
        record = {
            "file_name": run.document_name,
            "total_chunks": run.total_chunks,
            "success_chunks": run.success_count,
            "failed_chunks": run.failure_count,
            "duration_seconds": run.duration_seconds,
            "avg_seconds_per_chunk": run.avg_seconds_per_chunk,
            "failed_segments": list(run.failed_segments) or None,
            "status": run.status.value,
            "timestamp": run.timestamp or self.clock(),
        }
        return await self._write(UPLOAD_LOG_TABLE, record)

    async def record_query(
        self,
        question: str,
        matched_count: int,
        threshold: float,
        top_k: int,
        answer: str,
    ) -> bool:
        """Persist a query summary.

        Returns:
            True if the record was written.
        """
        entry = QueryLog(
            question=question,
            matched_count=matched_count,
            threshold=threshold,
            top_k=top_k,
            answer_preview=answer[:ANSWER_PREVIEW_LENGTH],
            timestamp=self.clock(),
        )
        return await self._write(QUERY_LOG_TABLE, entry.to_dict())

    async def _write(self, table: str, record: dict[str, Any]) -> bool:
        try:
            await self.store.append_log(table, record)
        except (LoggingError, StoreError) as exc:
            logger.warning("Audit write to %s failed: %s", table, exc)
            return False
        logger.debug("Audit record written to %s", table)
        return True
