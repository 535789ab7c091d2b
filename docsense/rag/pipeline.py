from __future__ import annotations

import logging
import mimetypes
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any

from docsense.analysis.cache import AnalysisCache
from docsense.analysis.insights import InsightGenerator
from docsense.analysis.summary import DocumentSummarizer
from docsense.analysis.validation import ContradictionAnalyzer
from docsense.loaders.chunking import chunk_document
from docsense.rag.answerer import AnswerSynthesizer, ChatAnswer
from docsense.rag.embeddings import EmbeddingClient
from docsense.rag.errors import NotFoundError, ValidationError
from docsense.rag.retriever import SimilarityRetriever
from docsense.rag.types import Chunk, DocumentRecord, ScoredChunk
from docsense.vectorstore.base import ChunkStore

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class IngestResult:
    document: DocumentRecord
    chunk_count: int


@dataclass(frozen=True)
class DeleteResult:
    deleted: bool
    evicted_analyses: int


@dataclass
class DocumentPipeline:
    store: ChunkStore
    embedder: EmbeddingClient
    retriever: SimilarityRetriever
    synthesizer: AnswerSynthesizer
    cache: AnalysisCache
    analyzer: ContradictionAnalyzer
    insights: InsightGenerator
    summarizer: DocumentSummarizer
    chunk_size: int = 1200
    chunk_overlap: int = 150
    use_tokenizer: bool = True
    tiktoken_encoding: str = "cl100k_base"
    default_limit: int = 5
    default_threshold: float = 0.15
    max_limit: int = 50
    search_default_top_k: int = 8
    search_default_min_similarity: float = 0.2

    async def ingest(
        self,
        owner_id: str,
        file_name: str,
        content: str,
        file_type: str | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> IngestResult:
        """Chunk, embed and store a document. Nothing is stored if any step fails."""
        if not file_name.strip():
            raise ValidationError("fileName is required")
        text_chunks = chunk_document(
            content,
            max_size=self.chunk_size,
            overlap=self.chunk_overlap,
            use_tokenizer=self.use_tokenizer,
            encoding_name=self.tiktoken_encoding,
        )
        if not text_chunks:
            raise ValidationError("Document content is empty")
        embeddings = await self.embedder.embed([chunk.content for chunk in text_chunks])
        document = DocumentRecord(
            document_id=uuid.uuid4().hex,
            owner_id=owner_id,
            file_name=file_name.strip(),
            file_type=file_type or mimetypes.guess_type(file_name)[0] or "text/plain",
            file_size=len(content.encode("utf-8")),
            created_at=datetime.now(timezone.utc),
            metadata=dict(metadata or {}),
        )
        chunks = [
            Chunk(
                document_id=document.document_id,
                chunk_index=text_chunk.chunk_index,
                content=text_chunk.content,
                embedding=embedding,
                token_count=text_chunk.token_count,
                metadata=text_chunk.metadata,
            )
            for text_chunk, embedding in zip(text_chunks, embeddings)
        ]
        stored = self.store.put_chunks(document, chunks)
        logger.info(
            "document_ingested",
            extra={
                "document_id": document.document_id,
                "owner_id": owner_id,
                "chunks": stored,
            },
        )
        return IngestResult(document=document, chunk_count=stored)

    def list_documents(self, owner_id: str) -> list[DocumentRecord]:
        return self.store.list_documents(owner_id)

    def delete_document(self, document_id: str, owner_id: str) -> DeleteResult:
        """Delete a document and evict every cached analysis that includes it."""
        if self.store.get_document(document_id, owner_id) is None:
            raise NotFoundError(f"Document {document_id} not found")
        deleted = self.store.delete_document(document_id)
        evicted = self.cache.invalidate_documents([document_id])
        self.retriever.evict(document_id)
        logger.info(
            "document_deleted",
            extra={"document_id": document_id, "evicted_analyses": evicted},
        )
        return DeleteResult(deleted=deleted, evicted_analyses=evicted)

    async def chat(
        self,
        question: str,
        owner_id: str,
        limit: int | None = None,
        threshold: float | None = None,
        document_ids: list[str] | None = None,
    ) -> ChatAnswer:
        """Answer a question from the owner's documents.

        ``document_ids=None`` searches every owned document; an empty list
        searches nothing.
        """
        if not question.strip():
            raise ValidationError("question is required")
        resolved_limit = self.default_limit if limit is None else limit
        resolved_threshold = self.default_threshold if threshold is None else threshold
        if not 1 <= resolved_limit <= self.max_limit:
            raise ValidationError(f"limit must be between 1 and {self.max_limit}")
        if not 0.0 <= resolved_threshold <= 1.0:
            raise ValidationError("similarityThreshold must be between 0 and 1")
        if document_ids is not None and not document_ids:
            return await self.synthesizer.synthesize(question, [])
        query_embedding = await self.embedder.embed_one(question)
        ranked = self.retriever.retrieve(
            query_embedding,
            scope=document_ids,
            limit=resolved_limit,
            threshold=resolved_threshold,
            owner_id=owner_id,
        )
        return await self.synthesizer.synthesize(question, ranked)

    async def search(
        self,
        query: str,
        owner_id: str,
        top_k: int | None = None,
        min_similarity: float | None = None,
        document_ids: list[str] | None = None,
    ) -> list[ScoredChunk]:
        """Rank the owner's chunks against a query without calling the LLM."""
        if not query.strip():
            raise ValidationError("query is required")
        resolved_top_k = self.search_default_top_k if top_k is None else top_k
        resolved_min = (
            self.search_default_min_similarity if min_similarity is None else min_similarity
        )
        if not 1 <= resolved_top_k <= self.max_limit:
            raise ValidationError(f"topK must be between 1 and {self.max_limit}")
        if not 0.0 <= resolved_min <= 1.0:
            raise ValidationError("minSimilarity must be between 0 and 1")
        if document_ids is not None and not document_ids:
            return []
        query_embedding = await self.embedder.embed_one(query)
        return self.retriever.retrieve(
            query_embedding,
            scope=document_ids,
            limit=resolved_top_k,
            threshold=resolved_min,
            owner_id=owner_id,
        )

    def stats(self) -> dict[str, Any]:
        return {
            "store": self.store.stats(),
            "analysis_cache": self.cache.stats(),
            "retriever": {"cached_documents": self.retriever.cached_documents()},
            "embedding_dimension": self.embedder.dimension,
        }
