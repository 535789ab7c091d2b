from __future__ import annotations

"""Typed analysis results for contradiction and validation reviews."""

from dataclasses import dataclass, field, replace
from datetime import datetime
from enum import Enum
from typing import Any, Union


NOT_COMPARABLE_MARKER = "Documents are not comparable"


class Level(str, Enum):
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"

    @classmethod
    def parse(cls, value: object, default: Level | None = None) -> Level:
        """Coerce free-form model output, falling back to ``default``."""
        fallback = default or cls.MEDIUM
        if isinstance(value, str):
            try:
                return cls(value.strip().lower())
            except ValueError:
                return fallback
        return fallback


class AnalysisMode(str, Enum):
    WITHIN = "within"
    ACROSS = "across"


class Comparability(str, Enum):
    COMPARABLE = "comparable"
    NOT_COMPARABLE = "not_comparable"
    NOT_APPLICABLE = "not_applicable"


@dataclass(frozen=True)
class SourceReference:
    """Location of an excerpt inside a document."""
    document_id: str
    document_name: str
    excerpt: str
    chunk_index: int | None = None


@dataclass(frozen=True)
class LegacyContradiction:
    """Claim/evidence pair with exactly one source on each side."""
    claim: str
    evidence: str
    severity: Level
    confidence: Level
    explanation: str
    impact: str
    claim_source: SourceReference
    evidence_source: SourceReference
    kind: str = field(default="legacy", init=False)


@dataclass(frozen=True)
class StructuredContradiction:
    """Contradiction described once and backed by one or more sources."""
    description: str
    severity: Level
    confidence: Level
    explanation: str
    impact: str
    sources: tuple[SourceReference, ...]
    kind: str = field(default="structured", init=False)


Contradiction = Union[LegacyContradiction, StructuredContradiction]


@dataclass(frozen=True)
class InformationGap:
    area: str
    description: str
    severity: Level
    expected_information: str


@dataclass(frozen=True)
class Agreement:
    statement: str
    confidence: Level
    significance: str
    sources: tuple[SourceReference, ...] = ()


@dataclass(frozen=True)
class KeyClaim:
    claim: str
    importance: Level
    claim_type: str
    source: SourceReference


@dataclass(frozen=True)
class Recommendation:
    title: str
    description: str
    priority: Level
    action_items: tuple[str, ...] = ()
    related_issues: tuple[str, ...] = ()


@dataclass(frozen=True)
class RiskAssessment:
    overall_risk: Level
    summary: str
    critical_items: tuple[str, ...] = ()
    next_steps: tuple[str, ...] = ()


@dataclass(frozen=True)
class AnalysisMetadata:
    mode: AnalysisMode
    documents_analyzed: int
    total_chunks_reviewed: int
    analysis_timestamp: datetime
    comparability: Comparability
    comparability_reason: str | None = None
    cached: bool = False


@dataclass(frozen=True)
class AnalysisResult:
    """Findings of one within- or across-document analysis."""
    contradictions: tuple[Contradiction, ...]
    gaps: tuple[InformationGap, ...]
    agreements: tuple[Agreement, ...]
    key_claims: tuple[KeyClaim, ...]
    recommendations: tuple[Recommendation, ...]
    risk_assessment: RiskAssessment
    metadata: AnalysisMetadata

    @property
    def comparable(self) -> bool:
        return self.metadata.comparability is not Comparability.NOT_COMPARABLE

    def with_cached(self, cached: bool) -> AnalysisResult:
        if self.metadata.cached == cached:
            return self
        return replace(self, metadata=replace(self.metadata, cached=cached))


def to_structured(contradiction: Contradiction) -> StructuredContradiction:
    """Convert either contradiction shape to the multi-source shape."""
    if isinstance(contradiction, StructuredContradiction):
        return contradiction
    return StructuredContradiction(
        description=f"{contradiction.claim} / {contradiction.evidence}",
        severity=contradiction.severity,
        confidence=contradiction.confidence,
        explanation=contradiction.explanation,
        impact=contradiction.impact,
        sources=(contradiction.claim_source, contradiction.evidence_source),
    )


def present_source(source: SourceReference) -> dict[str, Any]:
    return {
        "document_id": source.document_id,
        "document_name": source.document_name,
        "excerpt": source.excerpt,
        "chunk_index": source.chunk_index,
    }


def present_contradiction(contradiction: Contradiction) -> dict[str, Any]:
    """Render a contradiction for clients.

    Every contradiction is presented with structured ``sources``. Legacy
    contradictions additionally keep their claim and evidence fields.
    """
    structured = to_structured(contradiction)
    payload: dict[str, Any] = {
        "kind": contradiction.kind,
        "description": structured.description,
        "severity": structured.severity.value,
        "confidence": structured.confidence.value,
        "explanation": structured.explanation,
        "impact": structured.impact,
        "sources": [present_source(source) for source in structured.sources],
    }
    if isinstance(contradiction, LegacyContradiction):
        payload["claim"] = contradiction.claim
        payload["evidence"] = contradiction.evidence
    return payload
