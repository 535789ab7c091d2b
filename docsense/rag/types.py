from __future__ import annotations

"""Core data types for documents, chunks and retrieval."""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any


@dataclass(frozen=True)
class DocumentRecord:
    """Uploaded document owned by a single user."""
    document_id: str
    owner_id: str
    file_name: str
    file_type: str
    file_size: int
    created_at: datetime
    metadata: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class Chunk:
    """Embedded span of a document's text."""
    document_id: str
    chunk_index: int
    content: str
    embedding: list[float]
    token_count: int | None = None
    metadata: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class ScoredChunk:
    """Chunk returned by similarity retrieval."""
    chunk: Chunk
    similarity: float
    document_name: str

    @property
    def document_id(self) -> str:
        return self.chunk.document_id

    @property
    def chunk_index(self) -> int:
        return self.chunk.chunk_index

    @property
    def content(self) -> str:
        return self.chunk.content
