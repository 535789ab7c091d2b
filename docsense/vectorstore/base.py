from __future__ import annotations

"""Chunk store protocol and shared batch validation."""

from typing import Iterable, Protocol, Sequence

from docsense.rag.errors import ConfigurationError, ValidationError
from docsense.rag.types import Chunk, DocumentRecord


class ChunkStore(Protocol):
    """Persistence for documents and their embedded chunks."""

    def put_chunks(self, document: DocumentRecord, chunks: Sequence[Chunk]) -> int:
        """Store a document with all of its chunks atomically."""
        raise NotImplementedError

    def get_document(self, document_id: str, owner_id: str | None = None) -> DocumentRecord | None:
        raise NotImplementedError

    def list_documents(self, owner_id: str) -> list[DocumentRecord]:
        raise NotImplementedError

    def get_chunks(
        self, document_ids: Iterable[str] | None, owner_id: str | None = None
    ) -> list[Chunk]:
        """Return chunks ordered by (document_id, chunk_index)."""
        raise NotImplementedError

    def delete_document(self, document_id: str) -> bool:
        raise NotImplementedError

    def embedding_dimension(self) -> int | None:
        """Dimension of stored embeddings, or None when the store is empty."""
        raise NotImplementedError

    def stats(self) -> dict[str, int | str]:
        raise NotImplementedError

    def health(self) -> dict[str, str | bool]:
        raise NotImplementedError


def validate_chunk_batch(document: DocumentRecord, chunks: Sequence[Chunk]) -> None:
    """Reject batches that would leave a document partially or inconsistently stored."""
    if not chunks:
        raise ValidationError(f"Document {document.document_id} has no chunks to store")
    dimension = len(chunks[0].embedding)
    if dimension == 0:
        raise ValidationError("Chunk embeddings must not be empty")
    for expected_index, chunk in enumerate(chunks):
        if chunk.document_id != document.document_id:
            raise ValidationError(
                f"Chunk belongs to {chunk.document_id}, expected {document.document_id}"
            )
        if chunk.chunk_index != expected_index:
            raise ValidationError("Chunk indices must be contiguous from 0")
        if len(chunk.embedding) != dimension:
            raise ValidationError("All chunk embeddings must share one dimension")


def check_store_dimension(stored_dimension: int | None, chunks: Sequence[Chunk]) -> None:
    """Reject a batch whose embeddings differ from what the store already holds."""
    if stored_dimension is None or not chunks:
        return
    dimension = len(chunks[0].embedding)
    if dimension != stored_dimension:
        raise ConfigurationError(
            f"Embedding dimension {dimension} does not match stored dimension "
            f"{stored_dimension}; re-ingest documents after changing the embedding model"
        )
