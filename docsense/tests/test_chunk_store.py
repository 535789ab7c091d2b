from __future__ import annotations

import pytest

from docsense.rag.errors import ConfigurationError, ValidationError
from docsense.rag.types import Chunk
from docsense.tests.fakes import make_document
from docsense.vectorstore.inmemory import InMemoryChunkStore
from docsense.vectorstore.sql import SQLChunkStore


@pytest.fixture(params=["memory", "sqlite"])
def store(request, tmp_path):
    if request.param == "memory":
        return InMemoryChunkStore()
    return SQLChunkStore(f"sqlite:///{tmp_path / 'chunks.db'}")


def make_chunks(document_id: str, count: int, dimension: int = 3) -> list[Chunk]:
    return [
        Chunk(
            document_id=document_id,
            chunk_index=idx,
            content=f"{document_id} chunk {idx}",
            embedding=[float(idx + 1)] + [0.0] * (dimension - 1),
        )
        for idx in range(count)
    ]


def test_put_and_read_back(store) -> None:
    stored = store.put_chunks(make_document("doc-a"), make_chunks("doc-a", 3))

    assert stored == 3
    chunks = store.get_chunks(["doc-a"], "alice")
    assert [chunk.chunk_index for chunk in chunks] == [0, 1, 2]
    assert chunks[2].embedding == [3.0, 0.0, 0.0]
    record = store.get_document("doc-a", "alice")
    assert record is not None
    assert record.metadata == {"source": "test"}
    assert record.created_at.tzinfo is not None


def test_owner_scope_hides_foreign_documents(store) -> None:
    store.put_chunks(make_document("doc-a", "alice"), make_chunks("doc-a", 1))
    store.put_chunks(make_document("doc-b", "bob"), make_chunks("doc-b", 2))

    assert store.get_document("doc-b", "alice") is None
    assert [doc.document_id for doc in store.list_documents("alice")] == ["doc-a"]
    assert store.get_chunks(["doc-a", "doc-b"], "alice") == store.get_chunks(["doc-a"], "alice")
    assert len(store.get_chunks(None)) == 3


@pytest.mark.parametrize(
    "chunks",
    [
        [],
        make_chunks("doc-a", 2)[1:],
        make_chunks("other", 1),
        [make_chunks("doc-a", 1)[0], Chunk("doc-a", 1, "short", [1.0])],
    ],
    ids=["empty", "gap", "foreign", "mixed-dimension"],
)
def test_invalid_batches_store_nothing(store, chunks) -> None:
    with pytest.raises(ValidationError):
        store.put_chunks(make_document("doc-a"), chunks)

    assert store.get_document("doc-a") is None
    assert store.get_chunks(["doc-a"]) == []
    assert store.stats()["chunk_count"] == 0


def test_duplicate_document_rejected(store) -> None:
    store.put_chunks(make_document("doc-a"), make_chunks("doc-a", 2))
    with pytest.raises(ValidationError):
        store.put_chunks(make_document("doc-a"), make_chunks("doc-a", 1))
    assert len(store.get_chunks(["doc-a"])) == 2


def test_delete_removes_chunks(store) -> None:
    store.put_chunks(make_document("doc-a"), make_chunks("doc-a", 2))

    assert store.delete_document("doc-a") is True
    assert store.delete_document("doc-a") is False
    assert store.get_chunks(["doc-a"]) == []
    assert store.stats()["document_count"] == 0


def test_health_reports_ok(store) -> None:
    assert store.health()["ok"] is True


def test_embedding_dimension_change_rejected(store) -> None:
    assert store.embedding_dimension() is None
    store.put_chunks(make_document("doc-a"), make_chunks("doc-a", 2, dimension=3))

    with pytest.raises(ConfigurationError):
        store.put_chunks(make_document("doc-b"), make_chunks("doc-b", 2, dimension=4))

    assert store.embedding_dimension() == 3
    assert store.get_document("doc-b") is None
    assert store.get_chunks(["doc-b"]) == []
