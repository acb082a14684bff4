"""Unit tests for FaissVectorStore."""

import numpy as np
import pytest

from kbengine import FaissVectorStore, Match, StoreError


@pytest.mark.asyncio
async def test_faiss_insert_and_search(temp_faiss_store, mock_embedding_service):
    store = temp_faiss_store
    contents = ["Name: Alice", "Name: Bob", "Name: Carol"]
    for content in contents:
        await store.insert("staff.txt", content, mock_embedding_service.vector_for(content))

    assert store.index is not None
    assert store.index.ntotal == 3

    results = await store.similarity_search(
        mock_embedding_service.vector_for("Name: Bob"), 0.5, 2
    )

    assert len(results) == 1
    assert isinstance(results[0], Match)
    assert results[0].content == "Name: Bob"
    assert results[0].document_name == "staff.txt"
    assert results[0].similarity == pytest.approx(1.0, abs=1e-5)


@pytest.mark.asyncio
async def test_faiss_persistence_roundtrip(temp_faiss_store, mock_embedding_service):
    store = temp_faiss_store
    await store.insert("staff.txt", "Name: Alice", mock_embedding_service.vector_for("Name: Alice"))
    store.save()

    reloaded = FaissVectorStore(db_path=store.db_path, index_path=store.index_path)
    reloaded.load()

    assert reloaded.index is not None
    assert reloaded.index.ntotal == 1
    assert reloaded.dimension == mock_embedding_service.dimension
    assert await reloaded.exists("staff.txt")
    results = await reloaded.similarity_search(
        mock_embedding_service.vector_for("Name: Alice"), 0.9, 1
    )
    assert [m.content for m in results] == ["Name: Alice"]


@pytest.mark.asyncio
async def test_faiss_ties_keep_insertion_order(tmp_path):
    store = FaissVectorStore(
        db_path=tmp_path / "meta.db", index_path=tmp_path / "index.faiss"
    )
    for content in ["first", "second", "third"]:
        await store.insert("doc.txt", content, np.array([1.0, 0.0], dtype=np.float32))

    results = await store.similarity_search(np.array([1.0, 0.0]), 0.0, 2)

    assert [m.content for m in results] == ["first", "second"]


@pytest.mark.asyncio
async def test_faiss_search_caps_at_stored_vectors(temp_faiss_store, mock_embedding_service):
    store = temp_faiss_store
    for content in ["Chunk one", "Chunk two"]:
        await store.insert("raw_topk.txt", content, mock_embedding_service.vector_for(content))

    results = await store.similarity_search(mock_embedding_service.vector_for("Chunk one"), -1.0, 5)

    assert len(results) == 2
    assert results[0].content == "Chunk one"


@pytest.mark.asyncio
async def test_faiss_delete_document_removes_vectors(temp_faiss_store, mock_embedding_service):
    store = temp_faiss_store
    await store.insert("a.txt", "alpha", mock_embedding_service.vector_for("alpha"))
    await store.insert("b.txt", "beta", mock_embedding_service.vector_for("beta"))

    removed = await store.delete_document("a.txt")

    assert removed == 1
    assert store.index.ntotal == 1
    assert await store.list_documents() == ["b.txt"]
    results = await store.similarity_search(mock_embedding_service.vector_for("alpha"), 0.9, 5)
    assert results == []


@pytest.mark.asyncio
async def test_faiss_rejects_dimension_mismatch(temp_faiss_store):
    with pytest.raises(StoreError):
        await temp_faiss_store.insert("doc.txt", "text", np.ones(7, dtype=np.float32))


def test_faiss_load_without_index_starts_empty(temp_faiss_store):
    temp_faiss_store.load()

    assert temp_faiss_store.index is None


@pytest.mark.asyncio
async def test_faiss_records_have_no_embedding(temp_faiss_store, mock_embedding_service):
    await temp_faiss_store.insert("a.txt", "alpha", mock_embedding_service.vector_for("alpha"))

    records = await temp_faiss_store.get_records("a.txt")

    assert [record.content for record in records] == ["alpha"]
    assert records[0].embedding is None


@pytest.mark.asyncio
async def test_faiss_reload_drops_rows_written_after_last_save(
    temp_faiss_store, mock_embedding_service
):
    store = temp_faiss_store
    await store.insert("saved.txt", "Name: Alice", mock_embedding_service.vector_for("Name: Alice"))
    store.save()
    await store.insert("unsaved.txt", "Name: Bob", mock_embedding_service.vector_for("Name: Bob"))

    restarted = FaissVectorStore(db_path=store.db_path, index_path=store.index_path)
    restarted.load()

    assert await restarted.exists("saved.txt")
    assert not await restarted.exists("unsaved.txt")
    assert await restarted.count_chunks() == 1
    assert await restarted.list_documents() == ["saved.txt"]

    await restarted.insert("unsaved.txt", "Name: Bob", mock_embedding_service.vector_for("Name: Bob"))
    results = await restarted.similarity_search(
        mock_embedding_service.vector_for("Name: Bob"), 0.9, 1
    )
    assert [(m.document_name, m.content) for m in results] == [("unsaved.txt", "Name: Bob")]


@pytest.mark.asyncio
async def test_faiss_reload_without_index_file_forgets_rows(
    temp_faiss_store, mock_embedding_service
):
    store = temp_faiss_store
    await store.insert("a.txt", "alpha", mock_embedding_service.vector_for("alpha"))

    restarted = FaissVectorStore(db_path=store.db_path, index_path=store.index_path)
    restarted.load()

    assert restarted.index is None
    assert not await restarted.exists("a.txt")
    assert await restarted.count_chunks() == 0
