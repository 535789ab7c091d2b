from __future__ import annotations

"""Answer synthesis with per-document source attribution."""

import logging
from dataclasses import dataclass, field
from typing import Protocol

from docsense.rag.guardrails import INSUFFICIENT_INFORMATION, require_context
from docsense.rag.llm import ChatModel
from docsense.rag.types import ScoredChunk

logger = logging.getLogger(__name__)

_SYSTEM_PROMPT = (
    "You are a helpful assistant that answers questions based on provided document excerpts. "
    "Answer only from the provided context and do not use external knowledge. "
    "Always cite which document your information comes from."
)


@dataclass(frozen=True)
class SourceAttribution:
    """Chunks contributed by one document to an answer."""
    document_id: str
    document_name: str
    chunks_used: int
    top_similarity: float
    chunk_indices: list[int] = field(default_factory=list)


@dataclass(frozen=True)
class ChatAnswer:
    """Grounded answer with its sources."""
    answer: str
    sources: list[SourceAttribution]
    chunks_used: int
    refusal_reason: str | None = None


class AnswerComposer(Protocol):
    async def compose(self, question: str, contexts: list[ScoredChunk]) -> str:
        raise NotImplementedError


def build_context_block(contexts: list[ScoredChunk], max_chars: int) -> str:
    """Build a context block annotated with source metadata."""
    chunks: list[str] = []
    total = 0
    for idx, chunk in enumerate(contexts, start=1):
        header = (
            f"[{idx}] {chunk.document_name} (chunk {chunk.chunk_index}, "
            f"similarity {chunk.similarity * 100:.1f}%):\n"
        )
        content = chunk.content.strip()
        snippet = header + content
        if total + len(snippet) > max_chars:
            remaining = max_chars - total
            if remaining <= len(header):
                break
            snippet = header + content[: remaining - len(header)]
        chunks.append(snippet)
        total += len(snippet)
        if total >= max_chars:
            break
    return "\n---\n".join(chunks)


@dataclass(frozen=True)
class LLMAnswerComposer:
    """Compose answers with a chat model conditioned on retrieved chunks."""
    model: ChatModel
    temperature: float = 0.7
    max_tokens: int = 1000
    context_max_chars: int = 12000
    system_prompt: str = _SYSTEM_PROMPT

    async def compose(self, question: str, contexts: list[ScoredChunk]) -> str:
        context_block = build_context_block(contexts, self.context_max_chars)
        user_prompt = (
            "Based on the following document excerpts, answer this question:\n\n"
            f"Question: {question}\n\n"
            f"Context:\n{context_block}\n\n"
            "Provide a comprehensive answer based on the provided context."
        )
        content = await self.model.complete(
            self.system_prompt,
            user_prompt,
            temperature=self.temperature,
            max_tokens=self.max_tokens,
        )
        return content.strip()


@dataclass
class ExtractiveAnswerer:
    """Return a short extract from the highest scoring chunk."""
    max_chars: int = 480

    async def compose(self, question: str, contexts: list[ScoredChunk]) -> str:
        """Generate an extractive answer from context."""
        if not contexts:
            return ""
        best = max(contexts, key=lambda chunk: chunk.similarity)
        snippet = self._truncate(best.content.strip())
        return f"Based on the provided context: {snippet}"

    def _truncate(self, text: str) -> str:
        """Trim text to the max character budget without cutting words."""
        if len(text) <= self.max_chars:
            return text
        return text[: self.max_chars].rsplit(" ", 1)[0] + "..."


def attribute_sources(ranked: list[ScoredChunk]) -> list[SourceAttribution]:
    """Group ranked chunks per document, best-scoring document first."""
    grouped: dict[str, list[ScoredChunk]] = {}
    for item in ranked:
        grouped.setdefault(item.document_id, []).append(item)
    sources = [
        SourceAttribution(
            document_id=document_id,
            document_name=items[0].document_name,
            chunks_used=len(items),
            top_similarity=max(item.similarity for item in items),
            chunk_indices=sorted(item.chunk_index for item in items),
        )
        for document_id, items in grouped.items()
    ]
    sources.sort(key=lambda source: (-source.top_similarity, source.document_id))
    return sources


@dataclass(frozen=True)
class AnswerSynthesizer:
    """Turn ranked chunks into a grounded answer.

    Without usable context the synthesizer answers with a fixed
    insufficient-information message and never consults the composer.
    """
    composer: AnswerComposer

    async def synthesize(self, question: str, ranked: list[ScoredChunk]) -> ChatAnswer:
        guardrail = require_context(ranked)
        if not guardrail.allowed:
            logger.info("chat_refused", extra={"reason": guardrail.reason})
            return ChatAnswer(
                answer=INSUFFICIENT_INFORMATION,
                sources=[],
                chunks_used=0,
                refusal_reason=guardrail.reason,
            )
        answer = await self.composer.compose(question, ranked)
        sources = attribute_sources(ranked)
        logger.info(
            "chat_answered",
            extra={"chunks_used": len(ranked), "sources": len(sources)},
        )
        return ChatAnswer(answer=answer, sources=sources, chunks_used=len(ranked))
