from __future__ import annotations

"""Cached per-document summaries."""

import logging
import math
from dataclasses import dataclass, replace
from datetime import datetime, timezone

from docsense.analysis.cache import AnalysisCache, make_fingerprint
from docsense.analysis.prompts import SUMMARY_SYSTEM_PROMPT, summary_prompt
from docsense.rag.errors import NotFoundError
from docsense.rag.llm import ChatModel, LLMError, complete_json
from docsense.vectorstore.base import ChunkStore

logger = logging.getLogger(__name__)

WORDS_PER_MINUTE = 200


@dataclass(frozen=True)
class DocumentSummary:
    document_id: str
    overview: str
    key_findings: tuple[str, ...]
    keywords: tuple[str, ...]
    word_count: int
    reading_time_minutes: int
    chunks_used: int
    generated_at: datetime
    cached: bool = False


def reading_stats(text: str) -> tuple[int, int]:
    """Return (word count, reading time in minutes)."""
    word_count = len(text.split())
    return word_count, math.ceil(word_count / WORDS_PER_MINUTE)


@dataclass
class DocumentSummarizer:
    store: ChunkStore
    model: ChatModel
    cache: AnalysisCache
    temperature: float = 0.3
    max_tokens: int = 1200
    max_chars: int = 40000

    async def summarize(
        self, document_id: str, *, owner_id: str, force_regenerate: bool = False
    ) -> DocumentSummary:
        if self.store.get_document(document_id, owner_id) is None:
            raise NotFoundError(f"Document {document_id} not found")
        lookup = await self.cache.get_or_compute(
            make_fingerprint([document_id], "summary"),
            lambda: self._compute(document_id, owner_id),
            force_regenerate=force_regenerate,
        )
        if lookup.cached:
            return replace(lookup.value, cached=True)
        return lookup.value

    async def _compute(self, document_id: str, owner_id: str) -> DocumentSummary:
        chunks = self.store.get_chunks([document_id], owner_id)
        if not chunks:
            raise NotFoundError("No document content found")
        text = "\n\n".join(chunk.content for chunk in chunks)
        word_count, reading_time = reading_stats(text)
        payload = await complete_json(
            self.model,
            SUMMARY_SYSTEM_PROMPT,
            summary_prompt(text, self.max_chars),
            temperature=self.temperature,
            max_tokens=self.max_tokens,
            purpose="summary",
        )
        if not isinstance(payload, dict):
            raise LLMError("Summary response must be a JSON object")
        overview = payload.get("overview")
        if not isinstance(overview, str) or not overview.strip():
            raise LLMError("Summary response is missing an overview")

        def _strings(value: object) -> tuple[str, ...]:
            if not isinstance(value, list):
                return ()
            return tuple(item.strip() for item in value if isinstance(item, str) and item.strip())

        logger.info("summary_generated", extra={"document_id": document_id, "words": word_count})
        return DocumentSummary(
            document_id=document_id,
            overview=overview.strip(),
            key_findings=_strings(payload.get("keyFindings")),
            keywords=_strings(payload.get("keywords")),
            word_count=word_count,
            reading_time_minutes=reading_time,
            chunks_used=len(chunks),
            generated_at=datetime.now(timezone.utc),
        )
