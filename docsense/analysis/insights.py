from __future__ import annotations

"""Categorized insight discovery over one or more documents."""

import logging
from dataclasses import dataclass, replace
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Iterable

from docsense.analysis.cache import AnalysisCache, make_fingerprint
from docsense.analysis.prompts import (
    INSIGHT_SYSTEM_PROMPT,
    cross_document_insights_prompt,
    document_insights_prompt,
)
from docsense.rag.errors import NotFoundError, ValidationError
from docsense.rag.llm import ChatModel, LLMError, complete_json
from docsense.rag.types import Chunk, DocumentRecord
from docsense.vectorstore.base import ChunkStore

logger = logging.getLogger(__name__)


class InsightCategory(str, Enum):
    RISK = "risk"
    OPPORTUNITY = "opportunity"
    ANOMALY = "anomaly"
    PATTERN = "pattern"


class Confidence(str, Enum):
    HIGH = "High"
    MEDIUM = "Medium"
    LOW = "Low"


CATEGORY_PRIORITY = {
    InsightCategory.RISK: 0,
    InsightCategory.OPPORTUNITY: 1,
    InsightCategory.ANOMALY: 2,
    InsightCategory.PATTERN: 3,
}

CONFIDENCE_PRIORITY = {
    Confidence.HIGH: 0,
    Confidence.MEDIUM: 1,
    Confidence.LOW: 2,
}


@dataclass(frozen=True)
class Insight:
    title: str
    description: str
    category: InsightCategory
    confidence: Confidence
    evidence: tuple[str, ...]
    impact: str


@dataclass(frozen=True)
class InsightReport:
    insights: tuple[Insight, ...]
    generated_at: datetime
    document_count: int
    cached: bool = False


def order_insights(insights: Iterable[Insight]) -> list[Insight]:
    """Order by category priority, then confidence, keeping input order for ties."""
    return sorted(
        insights,
        key=lambda insight: (
            CATEGORY_PRIORITY[insight.category],
            CONFIDENCE_PRIORITY[insight.confidence],
        ),
    )


def _parse_category(value: Any) -> InsightCategory | None:
    if not isinstance(value, str):
        return None
    try:
        return InsightCategory(value.strip().lower())
    except ValueError:
        return None


def _parse_confidence(value: Any) -> Confidence | None:
    if not isinstance(value, str):
        return None
    try:
        return Confidence(value.strip().capitalize())
    except ValueError:
        return None


def parse_insights(payload: dict[str, Any] | list[Any]) -> list[Insight]:
    """Extract valid insights from a model response.

    Accepts a bare array or an object with an ``insights`` array. Items with
    an unknown category (including ``correlation``), an unknown confidence or
    no title are dropped.
    """
    if isinstance(payload, dict):
        items = payload.get("insights")
    else:
        items = payload
    if not isinstance(items, list):
        raise LLMError("Insight response does not contain an insights array")

    insights: list[Insight] = []
    dropped = 0
    for item in items:
        if not isinstance(item, dict):
            dropped += 1
            continue
        category = _parse_category(item.get("category"))
        confidence = _parse_confidence(item.get("confidence"))
        title = item.get("title")
        if category is None or confidence is None or not isinstance(title, str) or not title.strip():
            dropped += 1
            continue
        evidence = item.get("evidence")
        if isinstance(evidence, str):
            evidence = [evidence]
        insights.append(
            Insight(
                title=title.strip(),
                description=str(item.get("description") or "").strip(),
                category=category,
                confidence=confidence,
                evidence=tuple(
                    entry.strip()
                    for entry in (evidence if isinstance(evidence, list) else [])
                    if isinstance(entry, str) and entry.strip()
                ),
                impact=str(item.get("impact") or "").strip(),
            )
        )
    if dropped:
        logger.info("insights_dropped", extra={"dropped": dropped, "kept": len(insights)})
    return insights


class InsightGenerator:
    """Generate and cache categorized insights for a document set."""

    def __init__(
        self,
        store: ChunkStore,
        model: ChatModel,
        cache: AnalysisCache,
        temperature: float = 0.6,
        max_tokens: int = 5500,
        cross_max_tokens: int = 3000,
        max_chars: int = 100000,
    ) -> None:
        self.store = store
        self.model = model
        self.cache = cache
        self.temperature = temperature
        self.max_tokens = max_tokens
        self.cross_max_tokens = cross_max_tokens
        self.max_chars = max_chars

    async def generate(
        self,
        document_ids: Iterable[str],
        *,
        owner_id: str,
        force_regenerate: bool = False,
    ) -> InsightReport:
        ids = sorted({document_id for document_id in document_ids if document_id})
        if not ids:
            raise ValidationError("documentIds must contain at least one document")
        documents = []
        for document_id in ids:
            document = self.store.get_document(document_id, owner_id)
            if document is None:
                raise NotFoundError(f"Document {document_id} not found")
            documents.append(document)
        fingerprint = make_fingerprint(ids, "insights")
        lookup = await self.cache.get_or_compute(
            fingerprint,
            lambda: self._compute(documents, owner_id),
            force_regenerate=force_regenerate,
        )
        report: InsightReport = lookup.value
        if lookup.cached:
            return replace(report, cached=True)
        return report

    async def _compute(self, documents: list[DocumentRecord], owner_id: str) -> InsightReport:
        grouped: dict[str, list[Chunk]] = {}
        for chunk in self.store.get_chunks([doc.document_id for doc in documents], owner_id):
            grouped.setdefault(chunk.document_id, []).append(chunk)
        texts = [
            (doc.file_name, "\n\n".join(chunk.content for chunk in grouped[doc.document_id]))
            for doc in documents
            if grouped.get(doc.document_id)
        ]
        if not texts:
            raise NotFoundError("No document content found")
        if len(texts) == 1:
            prompt = document_insights_prompt(texts[0][0], texts[0][1], self.max_chars)
            max_tokens = self.max_tokens
        else:
            prompt = cross_document_insights_prompt(texts, self.max_chars)
            max_tokens = self.cross_max_tokens
        payload = await complete_json(
            self.model,
            INSIGHT_SYSTEM_PROMPT,
            prompt,
            temperature=self.temperature,
            max_tokens=max_tokens,
            purpose="insights",
        )
        insights = order_insights(parse_insights(payload))
        logger.info(
            "insights_generated",
            extra={"documents": len(texts), "insights": len(insights)},
        )
        return InsightReport(
            insights=tuple(insights),
            generated_at=datetime.now(timezone.utc),
            document_count=len(texts),
        )
