"""Tests for AuditRecorder."""

import datetime

import pytest
from conftest import InMemoryVectorStore

from kbengine import AuditRecorder, IngestionRun, IngestionStatus, StoreError
from kbengine.audit import utc_now

FIXED_TIME = "2026-03-01T08:00:00+00:00"


def make_run(**overrides):
    values = {
        "document_name": "staff.txt",
        "total_chunks": 4,
        "success_count": 3,
        "failure_count": 1,
        "duration_seconds": 2.5,
        "avg_seconds_per_chunk": 0.62,
        "status": IngestionStatus.PARTIAL,
        "failed_segments": ["chunk 4: timeout"],
    }
    values.update(overrides)
    return IngestionRun(**values)


@pytest.mark.asyncio
async def test_record_ingestion_writes_upload_log(memory_store):
    audit = AuditRecorder(memory_store, clock=lambda: FIXED_TIME)
    run = make_run()

    assert await audit.record_ingestion(run)

    assert memory_store.logs == [
        (
            "upload_logs",
            {
                "file_name": "staff.txt",
                "total_chunks": 4,
                "success_chunks": 3,
                "failed_chunks": 1,
                "duration_seconds": 2.5,
                "avg_seconds_per_chunk": 0.62,
                "failed_segments": ["chunk 4: timeout"],
                "status": "partial",
                "timestamp": FIXED_TIME,
            },
        )
    ]
    assert run.timestamp is None


@pytest.mark.asyncio
async def test_record_ingestion_keeps_run_timestamp(memory_store):
    audit = AuditRecorder(memory_store, clock=lambda: FIXED_TIME)
    run = make_run(timestamp="2026-02-28T23:59:00+00:00")

    await audit.record_ingestion(run)

    _table, record = memory_store.logs[0]
    assert record["timestamp"] == "2026-02-28T23:59:00+00:00"
    assert run.timestamp == "2026-02-28T23:59:00+00:00"


@pytest.mark.asyncio
async def test_record_query_truncates_answer_preview(memory_store):
    audit = AuditRecorder(memory_store, clock=lambda: FIXED_TIME)

    await audit.record_query("Who?", 2, 0.3, 5, "z" * 500)

    _table, record = memory_store.logs[0]
    assert record["answer_preview"] == "z" * 120
    assert record["matched_count"] == 2


@pytest.mark.asyncio
async def test_logging_failure_is_swallowed_with_warning(caplog):
    audit = AuditRecorder(InMemoryVectorStore(fail_logs=True))

    with caplog.at_level("WARNING"):
        written = await audit.record_query("Who?", 0, 0.3, 5, "none")

    assert not written
    assert "Audit write to query_logs failed" in caplog.text


@pytest.mark.asyncio
async def test_store_failure_is_swallowed():
    class BrokenStore(InMemoryVectorStore):
        async def append_log(self, table, record):
            msg = "disk full"
            raise StoreError(msg)

    audit = AuditRecorder(BrokenStore())

    assert not await audit.record_ingestion(make_run(status=IngestionStatus.FAILED))


@pytest.mark.asyncio
async def test_audit_rows_reach_sqlite(temp_vector_store):
    audit = AuditRecorder(temp_vector_store)

    assert await audit.record_ingestion(make_run(failed_segments=[]))
    assert await audit.record_query("Who?", 1, 0.3, 5, "Alice")


def test_utc_now_is_timezone_aware():
    parsed = datetime.datetime.fromisoformat(utc_now())

    assert parsed.tzinfo is not None
    assert parsed.utcoffset() == datetime.timedelta(0)
