from __future__ import annotations

"""In-memory chunk store for local testing and small datasets."""

import threading
from dataclasses import dataclass, field
from typing import Iterable, Sequence

from docsense.rag.errors import ValidationError
from docsense.rag.types import Chunk, DocumentRecord
from docsense.vectorstore.base import check_store_dimension, validate_chunk_batch


@dataclass
class InMemoryChunkStore:
    """Dictionary-backed chunk store.

    A document and its chunks are published under one lock acquisition after
    the whole batch validates, so readers never see a partial document.
    """
    documents: dict[str, DocumentRecord] = field(default_factory=dict)
    chunks: dict[str, tuple[Chunk, ...]] = field(default_factory=dict)
    _lock: threading.Lock = field(default_factory=threading.Lock, repr=False)

    def put_chunks(self, document: DocumentRecord, chunks: Sequence[Chunk]) -> int:
        """Validate and store a document with its chunks."""
        validate_chunk_batch(document, chunks)
        ordered = tuple(chunks)
        with self._lock:
            if document.document_id in self.documents:
                raise ValidationError(f"Document {document.document_id} already exists")
            check_store_dimension(self._stored_dimension(), ordered)
            self.documents[document.document_id] = document
            self.chunks[document.document_id] = ordered
        return len(ordered)

    def get_document(self, document_id: str, owner_id: str | None = None) -> DocumentRecord | None:
        document = self.documents.get(document_id)
        if document is None:
            return None
        if owner_id is not None and document.owner_id != owner_id:
            return None
        return document

    def list_documents(self, owner_id: str) -> list[DocumentRecord]:
        owned = [doc for doc in self.documents.values() if doc.owner_id == owner_id]
        return sorted(owned, key=lambda doc: (doc.created_at, doc.document_id))

    def get_chunks(
        self, document_ids: Iterable[str] | None, owner_id: str | None = None
    ) -> list[Chunk]:
        """Return chunks for the requested documents within the owner scope."""
        with self._lock:
            if document_ids is None:
                candidates = list(self.documents)
            else:
                candidates = [doc_id for doc_id in set(document_ids) if doc_id in self.documents]
            selected = [
                doc_id
                for doc_id in candidates
                if owner_id is None or self.documents[doc_id].owner_id == owner_id
            ]
            result: list[Chunk] = []
            for doc_id in sorted(selected):
                result.extend(self.chunks[doc_id])
        return result

    def delete_document(self, document_id: str) -> bool:
        """Delete a document and its chunks."""
        with self._lock:
            removed = self.documents.pop(document_id, None)
            self.chunks.pop(document_id, None)
        return removed is not None

    def embedding_dimension(self) -> int | None:
        with self._lock:
            return self._stored_dimension()

    def _stored_dimension(self) -> int | None:
        for stored in self.chunks.values():
            if stored:
                return len(stored[0].embedding)
        return None

    def stats(self) -> dict[str, int | str]:
        """Return basic stats for the chunk store."""
        return {
            "backend": "memory",
            "document_count": len(self.documents),
            "chunk_count": sum(len(chunks) for chunks in self.chunks.values()),
        }

    def health(self) -> dict[str, str | bool]:
        """Return health information for the chunk store."""
        return {
            "backend": "memory",
            "ok": True,
        }
