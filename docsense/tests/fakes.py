from __future__ import annotations

"""Scripted stand-ins for upstream model providers used across tests."""

import asyncio
import json
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

from docsense.analysis.cache import AnalysisCache
from docsense.analysis.insights import InsightGenerator
from docsense.analysis.summary import DocumentSummarizer
from docsense.analysis.validation import ContradictionAnalyzer
from docsense.rag.answerer import AnswerSynthesizer, ExtractiveAnswerer
from docsense.rag.embeddings import EmbeddingClient, HashEmbedder, IndexedEmbedding
from docsense.rag.pipeline import DocumentPipeline
from docsense.rag.retriever import SimilarityRetriever
from docsense.rag.retry import NO_RETRY
from docsense.rag.types import DocumentRecord
from docsense.vectorstore.inmemory import InMemoryChunkStore


@dataclass
class ScriptedChatModel:
    """Chat model that replays queued responses and records every call.

    When the queue runs dry the last response is repeated. ``gate`` lets a
    test hold completions open until it decides to release them.
    """
    responses: list[Any] = field(default_factory=list)
    gate: asyncio.Event | None = None
    error: Exception | None = None
    calls: list[dict[str, Any]] = field(default_factory=list)

    async def complete(
        self,
        system_prompt: str,
        user_prompt: str,
        *,
        temperature: float,
        max_tokens: int,
        json_mode: bool = False,
    ) -> str:
        self.calls.append(
            {
                "system_prompt": system_prompt,
                "user_prompt": user_prompt,
                "temperature": temperature,
                "max_tokens": max_tokens,
                "json_mode": json_mode,
            }
        )
        if self.gate is not None:
            await self.gate.wait()
        if self.error is not None:
            raise self.error
        if not self.responses:
            return "{}"
        response = self.responses.pop(0) if len(self.responses) > 1 else self.responses[0]
        if isinstance(response, str):
            return response
        return json.dumps(response)


@dataclass
class ReversedEmbedder:
    """Hash embedder that returns each batch in reverse index order."""
    dimension: int = 64
    max_batch_size: int = 3
    batches: list[list[str]] = field(default_factory=list)

    async def embed_batch(self, texts: list[str]) -> list[IndexedEmbedding]:
        self.batches.append(list(texts))
        hasher = HashEmbedder(dimension=self.dimension)
        items = [
            IndexedEmbedding(index=idx, embedding=hasher.embed_text(text))
            for idx, text in enumerate(texts)
        ]
        # Later batches finish first.
        await asyncio.sleep(0.001 * (10 - min(len(self.batches), 10)))
        return list(reversed(items))


@dataclass
class TrackingEmbedder:
    """Embedder that counts batches in flight.

    Batches whose text starts with ``fail_prefix`` raise ``error`` at once;
    the others hold for ``delay`` seconds so siblings overlap.
    """
    dimension: int = 16
    max_batch_size: int = 1
    delay: float = 0.01
    fail_prefix: str | None = None
    error: Exception | None = None
    started: int = 0
    finished: int = 0
    in_flight: int = 0
    peak: int = 0

    async def embed_batch(self, texts: list[str]) -> list[IndexedEmbedding]:
        self.started += 1
        self.in_flight += 1
        self.peak = max(self.peak, self.in_flight)
        try:
            if self.fail_prefix is not None and texts[0].startswith(self.fail_prefix):
                raise self.error or RuntimeError("embedding failed")
            await asyncio.sleep(self.delay)
        finally:
            self.in_flight -= 1
        self.finished += 1
        hasher = HashEmbedder(dimension=self.dimension)
        return [
            IndexedEmbedding(index=idx, embedding=hasher.embed_text(text))
            for idx, text in enumerate(texts)
        ]


def make_document(document_id: str, owner_id: str = "alice") -> DocumentRecord:
    return DocumentRecord(
        document_id=document_id,
        owner_id=owner_id,
        file_name=f"{document_id}.txt",
        file_type="text/plain",
        file_size=42,
        created_at=datetime(2024, 5, 1, tzinfo=timezone.utc),
        metadata={"source": "test"},
    )


NUMBER_WORDS = (
    "zero", "ten", "twenty", "thirty", "forty", "fifty", "sixty", "seventy", "eighty", "ninety",
)


def timeout_document(segments: int = 10, width: int = 200) -> str:
    """Document whose char-chunked form yields exactly ``segments`` chunks of ``width``."""
    return "".join(
        f"Section {idx} notes: the timeout value is {NUMBER_WORDS[idx]} seconds. ".ljust(width, "-")
        for idx in range(segments)
    )


def within_payload(**overrides: Any) -> dict[str, Any]:
    payload: dict[str, Any] = {
        "contradictions": [
            {
                "claim": "The timeout is 30 seconds",
                "evidence": "The timeout is 60 seconds",
                "claimExcerpt": "timeout value is thirty seconds",
                "evidenceExcerpt": "timeout value is sixty seconds",
                "severity": "high",
                "confidence": "medium",
                "explanation": "Two different timeout values are stated.",
                "impact": "Clients may disconnect early.",
            }
        ],
        "gaps": [
            {
                "area": "Retries",
                "description": "Retry behaviour is not described.",
                "severity": "low",
                "expectedInformation": "Retry count and backoff",
            }
        ],
        "keyClaims": [
            {
                "claim": "Timeouts are configurable",
                "importance": "high",
                "type": "fact",
                "excerpt": "timeout value is twenty seconds",
            }
        ],
        "recommendations": [
            {
                "title": "Pick one timeout",
                "description": "Align the timeout values.",
                "priority": "high",
                "actionItems": ["Update section 6"],
                "relatedIssues": ["timeout mismatch"],
            }
        ],
        "riskAssessment": {
            "overallRisk": "medium",
            "summary": "Conflicting timeout values.",
            "criticalItems": ["timeout mismatch"],
            "nextSteps": ["Confirm the intended timeout"],
        },
    }
    payload.update(overrides)
    return payload


def insights_payload() -> dict[str, Any]:
    return {
        "insights": [
            {
                "title": "Timeouts grow linearly",
                "description": "Each section adds ten seconds.",
                "category": "pattern",
                "confidence": "High",
                "evidence": ["Section 1 notes", "Section 2 notes"],
                "impact": "Predictable tuning.",
            },
            {
                "title": "Long timeouts",
                "description": "Later sections allow long waits.",
                "category": "risk",
                "confidence": "Medium",
                "evidence": "Section 9 notes",
                "impact": "Slow failure detection.",
            },
            {
                "title": "Linked values",
                "description": "Values correlate with section numbers.",
                "category": "correlation",
                "confidence": "High",
                "evidence": [],
                "impact": "None",
            },
            {
                "title": "Unused budget",
                "description": "Early sections finish quickly.",
                "category": "opportunity",
                "confidence": "Low",
                "evidence": [],
                "impact": "Room to tighten limits.",
            },
        ]
    }


def build_test_pipeline(
    model: ScriptedChatModel | None = None,
    cache: AnalysisCache | None = None,
    chunk_size: int = 200,
) -> DocumentPipeline:
    """In-memory pipeline with hash embeddings and character chunking."""
    model = model or ScriptedChatModel()
    cache = cache or AnalysisCache()
    store = InMemoryChunkStore()
    return DocumentPipeline(
        store=store,
        embedder=EmbeddingClient(backend=HashEmbedder(dimension=256), retry_policy=NO_RETRY),
        retriever=SimilarityRetriever(store=store),
        synthesizer=AnswerSynthesizer(composer=ExtractiveAnswerer()),
        cache=cache,
        analyzer=ContradictionAnalyzer(store=store, model=model, cache=cache),
        insights=InsightGenerator(store=store, model=model, cache=cache),
        summarizer=DocumentSummarizer(store=store, model=model, cache=cache),
        chunk_size=chunk_size,
        chunk_overlap=0,
        use_tokenizer=False,
    )
