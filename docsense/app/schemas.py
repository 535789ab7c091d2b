from __future__ import annotations

from datetime import datetime
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from docsense.analysis.insights import InsightReport
from docsense.analysis.models import (
    AnalysisResult,
    SourceReference,
    present_contradiction,
)
from docsense.analysis.summary import DocumentSummary
from docsense.rag.answerer import ChatAnswer
from docsense.rag.types import DocumentRecord, ScoredChunk


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class ChatRequest(CamelModel):
    question: str = Field(min_length=1)
    limit: int | None = Field(default=None, ge=1)
    similarity_threshold: float | None = Field(default=None, ge=0.0, le=1.0)
    selected_document_ids: list[str] | None = None


class ChatSource(BaseModel):
    document_id: str
    document_name: str
    chunks_used: int
    top_similarity: float
    chunk_indices: list[int]


class ChatResponse(CamelModel):
    answer: str
    sources: list[ChatSource]
    chunks_used: int
    refusal_reason: str | None = None

    @classmethod
    def from_answer(cls, answer: ChatAnswer) -> ChatResponse:
        return cls(
            answer=answer.answer,
            sources=[ChatSource(**source.__dict__) for source in answer.sources],
            chunks_used=answer.chunks_used,
            refusal_reason=answer.refusal_reason,
        )


class SearchRequest(CamelModel):
    query: str = Field(min_length=1)
    top_k: int | None = Field(default=None, ge=1)
    min_similarity: float | None = Field(default=None, ge=0.0, le=1.0)
    selected_document_ids: list[str] | None = None


class SearchResult(BaseModel):
    document_id: str
    document_name: str
    chunk_index: int
    content: str
    similarity: float

    @classmethod
    def from_scored(cls, item: ScoredChunk) -> SearchResult:
        return cls(
            document_id=item.document_id,
            document_name=item.document_name,
            chunk_index=item.chunk_index,
            content=item.content,
            similarity=item.similarity,
        )


class SearchResponse(CamelModel):
    results: list[SearchResult]


class AnalyzeWithinRequest(CamelModel):
    document_id: str = Field(min_length=1)
    force_regenerate: bool = False


class AnalyzeAcrossRequest(CamelModel):
    primary_document_id: str = Field(min_length=1)
    compare_document_ids: list[str] = Field(default_factory=list)
    force_regenerate: bool = False


class CheckCacheRequest(CamelModel):
    document_id: str | None = None
    validation_type: Literal["within", "across"] | None = None
    compare_document_ids: list[str] | None = None


class CheckCacheResponse(CamelModel):
    has_cached: bool


class SourceOut(CamelModel):
    document_id: str
    document_name: str
    excerpt: str
    chunk_index: int | None = None

    @classmethod
    def from_reference(cls, source: SourceReference) -> SourceOut:
        return cls(
            document_id=source.document_id,
            document_name=source.document_name,
            excerpt=source.excerpt,
            chunk_index=source.chunk_index,
        )


class ContradictionOut(CamelModel):
    kind: Literal["legacy", "structured"]
    description: str
    severity: str
    confidence: str
    explanation: str
    impact: str
    sources: list[SourceOut]
    claim: str | None = None
    evidence: str | None = None


class GapOut(CamelModel):
    area: str
    description: str
    severity: str
    expected_information: str


class AgreementOut(CamelModel):
    statement: str
    confidence: str
    significance: str
    sources: list[SourceOut]


class KeyClaimOut(CamelModel):
    claim: str
    importance: str
    type: str
    source: SourceOut


class RecommendationOut(CamelModel):
    title: str
    description: str
    priority: str
    action_items: list[str]
    related_issues: list[str]


class RiskAssessmentOut(CamelModel):
    overall_risk: str
    summary: str
    critical_items: list[str]
    next_steps: list[str]


class AnalysisMetadataOut(CamelModel):
    mode: str
    documents_analyzed: int
    total_chunks_reviewed: int
    analysis_timestamp: datetime
    cached: bool
    comparability: str
    comparability_reason: str | None = None


class AnalysisResponse(CamelModel):
    contradictions: list[ContradictionOut]
    gaps: list[GapOut]
    agreements: list[AgreementOut]
    key_claims: list[KeyClaimOut]
    recommendations: list[RecommendationOut]
    risk_assessment: RiskAssessmentOut
    analysis_metadata: AnalysisMetadataOut

    @classmethod
    def from_result(cls, result: AnalysisResult) -> AnalysisResponse:
        metadata = result.metadata
        risk = result.risk_assessment
        return cls(
            contradictions=[
                ContradictionOut.model_validate(present_contradiction(item))
                for item in result.contradictions
            ],
            gaps=[
                GapOut(
                    area=gap.area,
                    description=gap.description,
                    severity=gap.severity.value,
                    expected_information=gap.expected_information,
                )
                for gap in result.gaps
            ],
            agreements=[
                AgreementOut(
                    statement=agreement.statement,
                    confidence=agreement.confidence.value,
                    significance=agreement.significance,
                    sources=[SourceOut.from_reference(source) for source in agreement.sources],
                )
                for agreement in result.agreements
            ],
            key_claims=[
                KeyClaimOut(
                    claim=claim.claim,
                    importance=claim.importance.value,
                    type=claim.claim_type,
                    source=SourceOut.from_reference(claim.source),
                )
                for claim in result.key_claims
            ],
            recommendations=[
                RecommendationOut(
                    title=item.title,
                    description=item.description,
                    priority=item.priority.value,
                    action_items=list(item.action_items),
                    related_issues=list(item.related_issues),
                )
                for item in result.recommendations
            ],
            risk_assessment=RiskAssessmentOut(
                overall_risk=risk.overall_risk.value,
                summary=risk.summary,
                critical_items=list(risk.critical_items),
                next_steps=list(risk.next_steps),
            ),
            analysis_metadata=AnalysisMetadataOut(
                mode=metadata.mode.value,
                documents_analyzed=metadata.documents_analyzed,
                total_chunks_reviewed=metadata.total_chunks_reviewed,
                analysis_timestamp=metadata.analysis_timestamp,
                cached=metadata.cached,
                comparability=metadata.comparability.value,
                comparability_reason=metadata.comparability_reason,
            ),
        )


class InsightRequest(CamelModel):
    force_regenerate: bool = False


class CrossDocumentInsightRequest(CamelModel):
    document_ids: list[str] = Field(default_factory=list)
    force_regenerate: bool = False


class InsightOut(CamelModel):
    title: str
    description: str
    category: str
    confidence: str
    evidence: list[str]
    impact: str


class InsightResponse(CamelModel):
    insights: list[InsightOut]
    generated_at: datetime
    document_count: int
    cached: bool

    @classmethod
    def from_report(cls, report: InsightReport) -> InsightResponse:
        return cls(
            insights=[
                InsightOut(
                    title=insight.title,
                    description=insight.description,
                    category=insight.category.value,
                    confidence=insight.confidence.value,
                    evidence=list(insight.evidence),
                    impact=insight.impact,
                )
                for insight in report.insights
            ],
            generated_at=report.generated_at,
            document_count=report.document_count,
            cached=report.cached,
        )


class DocumentCreateRequest(CamelModel):
    file_name: str = Field(min_length=1)
    content: str = Field(min_length=1)
    file_type: str | None = None
    metadata: dict[str, Any] = Field(default_factory=dict)


class DocumentOut(CamelModel):
    document_id: str
    file_name: str
    file_type: str
    file_size: int
    created_at: datetime
    metadata: dict[str, Any] = Field(default_factory=dict)

    @classmethod
    def from_record(cls, record: DocumentRecord) -> DocumentOut:
        return cls(
            document_id=record.document_id,
            file_name=record.file_name,
            file_type=record.file_type,
            file_size=record.file_size,
            created_at=record.created_at,
            metadata=dict(record.metadata),
        )


class DocumentCreateResponse(CamelModel):
    document: DocumentOut
    chunk_count: int


class DocumentListResponse(CamelModel):
    documents: list[DocumentOut]


class DocumentDeleteResponse(CamelModel):
    deleted: bool
    evicted_analyses: int


class SummaryRequest(CamelModel):
    force_regenerate: bool = False


class SummaryResponse(CamelModel):
    document_id: str
    overview: str
    key_findings: list[str]
    keywords: list[str]
    word_count: int
    reading_time: int
    chunks_used: int
    generated_at: datetime
    cached: bool

    @classmethod
    def from_summary(cls, summary: DocumentSummary) -> SummaryResponse:
        return cls(
            document_id=summary.document_id,
            overview=summary.overview,
            key_findings=list(summary.key_findings),
            keywords=list(summary.keywords),
            word_count=summary.word_count,
            reading_time=summary.reading_time_minutes,
            chunks_used=summary.chunks_used,
            generated_at=summary.generated_at,
            cached=summary.cached,
        )


class StatsResponse(BaseModel):
    store: dict[str, Any]
    analysis_cache: dict[str, int]
    retriever: dict[str, int]
    embedding_dimension: int


class StatsHealthResponse(BaseModel):
    backend: str
    ok: bool
    error: str | None = None


class EmbeddingHealthResponse(BaseModel):
    provider: str
    model: str | None
    configured_dimension: int
    expected_dimension: int | None = None
    ok: bool
    status: str
    detail: str | None = None
    action: str | None = None


class ErrorBody(BaseModel):
    kind: str
    message: str
    detail: str | None = None


class ErrorResponse(BaseModel):
    error: ErrorBody
