from __future__ import annotations

from dataclasses import dataclass

from docsense.rag.types import ScoredChunk


INSUFFICIENT_INFORMATION = (
    "I could not find relevant information in the selected documents. "
    "Try adjusting your selection or rephrasing your question."
)


@dataclass(frozen=True)
class GuardrailResult:
    allowed: bool
    reason: str


def require_context(contexts: list[ScoredChunk]) -> GuardrailResult:
    if not contexts:
        return GuardrailResult(allowed=False, reason="no_context")
    if all(not chunk.content.strip() for chunk in contexts):
        return GuardrailResult(allowed=False, reason="empty_context")
    return GuardrailResult(allowed=True, reason="ok")
