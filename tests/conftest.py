"""Test configuration and fixtures for KBEngine tests.

This module provides reusable test fixtures organized by functionality:
- Constants and test data
- Fake gateways (embedding, answer, vector store)
- OpenAI response factories
- Vector store and pipeline fixtures
"""

import asyncio
import hashlib
from collections.abc import Iterable
from unittest.mock import Mock

import numpy as np
import pytest

from kbengine import (
    Chunk,
    FaissVectorStore,
    LoggingError,
    Match,
    RAGPipeline,
    SQLiteVectorStore,
    StoreError,
    UpstreamError,
)


class TestConstants:
    """Centralized test constants shared across the test suite."""

    TEST_API_KEY = "test-key"
    TEST_EMBEDDING_MODEL = "text-embedding-3-small"
    DEFAULT_EMBEDDING_DIMENSION = 384

    SMALL_CHUNK_LENGTH = 20
    DEFAULT_CHUNK_LENGTH = 900

    MAX_RETRIES = 3
    CONCURRENCY = 3


class MockEmbeddingService:
    """Deterministic embedding gateway for tests without API calls.

    Embeddings are seeded from the text hash, so equal texts get equal
    vectors and different texts are close to orthogonal. Texts listed in
    ``fail_on`` always fail; ``fail_times`` makes a text fail that many
    times before succeeding.
    """

    def __init__(
        self,
        dimension: int = TestConstants.DEFAULT_EMBEDDING_DIMENSION,
        *,
        fail_on: Iterable[str] = (),
        fail_times: dict[str, int] | None = None,
        return_empty_for: Iterable[str] = (),
    ) -> None:
        self.dimension = dimension
        self.fail_on = set(fail_on)
        self.fail_times = dict(fail_times or {})
        self.return_empty_for = set(return_empty_for)
        self.calls: list[str] = []
        self.in_flight = 0
        self.max_in_flight = 0

    def vector_for(self, text: str) -> np.ndarray:
        seed = int.from_bytes(
            hashlib.sha256(text.lower().encode("utf-8")).digest()[:8],
            byteorder="big",
            signed=False,
        )
        rng = np.random.default_rng(seed)
        embedding = rng.normal(0, 1, self.dimension)
        return (embedding / np.linalg.norm(embedding)).astype(np.float32)

    async def embed(self, text: str) -> np.ndarray:
        self.calls.append(text)
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            # yield so sibling chunk units of a wave overlap
            await asyncio.sleep(0)
            if text in self.fail_on:
                msg = f"embedding failed for {text!r}"
                raise UpstreamError(msg)
            if self.fail_times.get(text, 0) > 0:
                self.fail_times[text] -= 1
                msg = f"transient failure for {text!r}"
                raise UpstreamError(msg)
            if text in self.return_empty_for:
                return np.array([], dtype=np.float32)
            return self.vector_for(text)
        finally:
            self.in_flight -= 1


class FakeAnswerService:
    """Answer gateway that records prompts and returns a fixed reply."""

    def __init__(self, reply: str | None = "Test answer", error: Exception | None = None):
        self.reply = reply
        self.error = error
        self.calls: list[tuple[str, str]] = []

    async def complete(self, system_instruction: str, user_prompt: str) -> str | None:
        self.calls.append((system_instruction, user_prompt))
        if self.error is not None:
            raise self.error
        return self.reply


class InMemoryVectorStore:
    """Vector store gateway keeping records in lists.

    ``search_results`` scripts successive similarity_search responses;
    when it is exhausted an empty list is returned.
    """

    def __init__(
        self,
        *,
        fail_inserts_for: Iterable[str] = (),
        fail_logs: bool = False,
        search_results: list[list[Match]] | None = None,
        search_error: Exception | None = None,
    ) -> None:
        self.records: list[tuple[str, str, np.ndarray]] = []
        self.logs: list[tuple[str, dict]] = []
        self.fail_inserts_for = set(fail_inserts_for)
        self.fail_logs = fail_logs
        self.search_results = list(search_results or [])
        self.search_error = search_error
        self.search_calls: list[tuple[float, int]] = []
        self.insert_attempts = 0

    async def exists(self, document_name: str) -> bool:
        return any(name == document_name for name, _, _ in self.records)

    async def insert(self, document_name: str, content: str, vector: np.ndarray) -> None:
        self.insert_attempts += 1
        if content in self.fail_inserts_for:
            msg = f"insert rejected for {content!r}"
            raise StoreError(msg)
        self.records.append((document_name, content, vector))

    async def similarity_search(
        self, vector: np.ndarray, threshold: float, top_k: int
    ) -> list[Match]:
        self.search_calls.append((threshold, top_k))
        if self.search_error is not None:
            raise self.search_error
        if self.search_results:
            return self.search_results.pop(0)
        return []

    async def append_log(self, table: str, record: dict) -> None:
        if self.fail_logs:
            msg = "log table unavailable"
            raise LoggingError(msg)
        self.logs.append((table, record))


def create_mock_openai_response(embeddings: list[list[float]]) -> Mock:
    """Create a mock OpenAI embeddings API response."""  # noqa: DOC201
    mock_response = Mock()
    mock_response.data = [Mock(embedding=emb) for emb in embeddings]
    return mock_response


def create_mock_chat_response(content: str | None) -> Mock:
    """Create a mock OpenAI chat completion response."""  # noqa: DOC201
    mock_response = Mock()
    mock_response.choices = [Mock(message=Mock(content=content))]
    return mock_response


def make_chunks(texts: list[str], document_name: str = "doc.txt") -> list[Chunk]:
    return [
        Chunk(index=index, content=text, document_name=document_name)
        for index, text in enumerate(texts)
    ]


async def no_sleep(_seconds: float) -> None:
    return None


@pytest.fixture
def mock_embedding_service():
    return MockEmbeddingService()


@pytest.fixture
def fake_answerer():
    return FakeAnswerService()


@pytest.fixture
def memory_store():
    return InMemoryVectorStore()


@pytest.fixture
def sample_record_text():
    """Personnel-style document with one record per person."""
    return (
        "Name: Alice Zhang\n"
        "Department: Engineering\n"
        "Skills: Python, distributed systems\n"
        "\n"
        "Name: Bob Li\n"
        "Department: Finance\r\n"
        "Skills: budgeting\n"
        "Person: Carol Wu\n"
        "Department: Legal\n"
    )


@pytest.fixture
def temp_vector_store(tmp_path) -> SQLiteVectorStore:
    """Create temporary SQLite vector store for testing."""
    return SQLiteVectorStore(
        tmp_path / "test_store.db",
        tmp_path / "vectors",
        dimension=TestConstants.DEFAULT_EMBEDDING_DIMENSION,
    )


@pytest.fixture
def temp_faiss_store(tmp_path) -> FaissVectorStore:
    """Create temporary FAISS vector store for testing."""
    return FaissVectorStore(
        db_path=tmp_path / "faiss_meta.db",
        index_path=tmp_path / "faiss" / "index.faiss",
        dimension=TestConstants.DEFAULT_EMBEDDING_DIMENSION,
    )


@pytest.fixture
def pipeline_factory(tmp_path, mock_embedding_service, fake_answerer):
    """Factory for RAGPipeline instances backed by a temporary SQLite store."""

    def _create_pipeline(
        *,
        embedder=None,
        answerer=None,
        store=None,
        **kwargs,
    ) -> RAGPipeline:
        if store is None:
            store = SQLiteVectorStore(
                tmp_path / "pipeline.db",
                tmp_path / "pipeline_vectors",
                dimension=TestConstants.DEFAULT_EMBEDDING_DIMENSION,
            )
        kwargs.setdefault("executor_options", {"sleep": no_sleep})
        return RAGPipeline(
            embedder=embedder or mock_embedding_service,
            store=store,
            answerer=answerer or fake_answerer,
            **kwargs,
        )

    return _create_pipeline
