from __future__ import annotations

"""Cosine similarity retrieval over stored chunks."""

import logging
import threading
from dataclasses import dataclass, field
from typing import Iterable, Sequence

import numpy as np

from docsense.rag.errors import ConfigurationError, ValidationError
from docsense.rag.types import Chunk, ScoredChunk
from docsense.vectorstore.base import ChunkStore

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class _DocumentMatrix:
    """Row-normalized embeddings for one document, aligned with its chunks."""
    chunks: tuple[Chunk, ...]
    matrix: np.ndarray


def normalize_rows(matrix: np.ndarray) -> np.ndarray:
    """L2-normalize each row, leaving zero rows as zeros."""
    norms = np.linalg.norm(matrix, axis=1, keepdims=True)
    safe = np.where(norms == 0.0, 1.0, norms)
    return matrix / safe


@dataclass
class SimilarityRetriever:
    """Rank chunks in an explicit document scope by cosine similarity.

    Chunks never change after ingestion, so each document's normalized
    embedding matrix is built once and reused until the document is evicted.
    """
    store: ChunkStore
    _matrices: dict[str, _DocumentMatrix] = field(default_factory=dict, repr=False)
    _lock: threading.Lock = field(default_factory=threading.Lock, repr=False)

    def retrieve(
        self,
        query_embedding: Sequence[float],
        scope: Iterable[str] | None,
        limit: int,
        threshold: float,
        owner_id: str | None = None,
    ) -> list[ScoredChunk]:
        """Return chunks with similarity >= threshold, best first.

        ``scope=None`` searches every document the owner can see. An empty
        scope returns no results.
        """
        if limit < 1:
            raise ValidationError("limit must be at least 1")
        if not 0.0 <= threshold <= 1.0:
            raise ValidationError("similarity threshold must be between 0 and 1")
        document_names = self._resolve_scope(scope, owner_id)
        if not document_names:
            return []

        query = np.asarray(query_embedding, dtype=np.float64)
        query_norm = float(np.linalg.norm(query))
        matrices = self._load_matrices(sorted(document_names))

        scored: list[ScoredChunk] = []
        for document_id, entry in matrices.items():
            if entry.matrix.shape[1] != query.shape[0]:
                raise ConfigurationError(
                    f"Embedding dimension {query.shape[0]} does not match stored "
                    f"dimension {entry.matrix.shape[1]}; re-ingest documents after "
                    "changing the embedding model"
                )
            if query_norm == 0.0:
                similarities = np.zeros(len(entry.chunks))
            else:
                similarities = np.clip(entry.matrix @ (query / query_norm), -1.0, 1.0)
            for position in np.flatnonzero(similarities >= threshold):
                scored.append(
                    ScoredChunk(
                        chunk=entry.chunks[position],
                        similarity=float(similarities[position]),
                        document_name=document_names[document_id],
                    )
                )

        scored.sort(key=lambda item: (-item.similarity, item.document_id, item.chunk_index))
        results = scored[:limit]
        logger.info(
            "retrieval_complete",
            extra={
                "documents": len(matrices),
                "candidates": len(scored),
                "returned": len(results),
                "threshold": threshold,
            },
        )
        return results

    def evict(self, document_id: str) -> bool:
        """Drop the cached matrix for a document."""
        with self._lock:
            return self._matrices.pop(document_id, None) is not None

    def cached_documents(self) -> int:
        return len(self._matrices)

    def _resolve_scope(
        self, scope: Iterable[str] | None, owner_id: str | None
    ) -> dict[str, str]:
        if scope is None:
            if owner_id is None:
                raise ValidationError("An owner is required when no document scope is given")
            documents = self.store.list_documents(owner_id)
        else:
            requested = set(scope)
            if not requested:
                return {}
            documents = [
                document
                for document in (
                    self.store.get_document(document_id, owner_id)
                    for document_id in requested
                )
                if document is not None
            ]
        return {document.document_id: document.file_name for document in documents}

    def _load_matrices(self, document_ids: list[str]) -> dict[str, _DocumentMatrix]:
        with self._lock:
            missing = [doc_id for doc_id in document_ids if doc_id not in self._matrices]
        if missing:
            grouped: dict[str, list[Chunk]] = {}
            for chunk in self.store.get_chunks(missing):
                grouped.setdefault(chunk.document_id, []).append(chunk)
            built = {
                doc_id: _DocumentMatrix(
                    chunks=tuple(chunks),
                    matrix=normalize_rows(
                        np.asarray([chunk.embedding for chunk in chunks], dtype=np.float64)
                    ),
                )
                for doc_id, chunks in grouped.items()
            }
            with self._lock:
                self._matrices.update(built)
        with self._lock:
            return {
                doc_id: self._matrices[doc_id]
                for doc_id in document_ids
                if doc_id in self._matrices
            }
