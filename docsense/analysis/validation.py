from __future__ import annotations

"""Within- and across-document contradiction analysis."""

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Iterable, Sequence

from docsense.analysis.cache import AnalysisCache, Fingerprint, make_fingerprint
from docsense.analysis.models import (
    NOT_COMPARABLE_MARKER,
    Agreement,
    AnalysisMetadata,
    AnalysisMode,
    AnalysisResult,
    Comparability,
    Contradiction,
    InformationGap,
    KeyClaim,
    LegacyContradiction,
    Level,
    Recommendation,
    RiskAssessment,
    SourceReference,
    StructuredContradiction,
)
from docsense.analysis.prompts import (
    VALIDATION_SYSTEM_PROMPT,
    across_documents_prompt,
    within_document_prompt,
)
from docsense.rag.errors import NotFoundError, ValidationError
from docsense.rag.llm import ChatModel, LLMError, complete_json
from docsense.rag.types import Chunk, DocumentRecord
from docsense.vectorstore.base import ChunkStore

logger = logging.getLogger(__name__)


def find_chunk_for_excerpt(excerpt: str, chunks: Sequence[Chunk]) -> Chunk | None:
    """Return the chunk sharing the most significant words with ``excerpt``.

    Words of three characters or fewer are ignored. Ties keep the earliest
    chunk, and the first chunk is returned when nothing overlaps.
    """
    if not chunks:
        return None
    words = [word for word in excerpt.lower().split() if len(word) > 3]
    best = chunks[0]
    best_score = 0
    for chunk in chunks:
        content = chunk.content.lower()
        score = sum(1 for word in words if word in content)
        if score > best_score:
            best, best_score = chunk, score
    return best


@dataclass(frozen=True)
class AnalysisRequest:
    """Validated analysis request with its resolved documents."""
    mode: AnalysisMode
    primary: DocumentRecord
    comparisons: tuple[DocumentRecord, ...]
    fingerprint: Fingerprint
    owner_id: str

    @property
    def document_ids(self) -> list[str]:
        return [self.primary.document_id, *(doc.document_id for doc in self.comparisons)]


@dataclass
class _DocumentText:
    document: DocumentRecord
    chunks: list[Chunk]

    @property
    def text(self) -> str:
        return "\n\n".join(chunk.content for chunk in self.chunks)

    def reference(self, excerpt: Any) -> SourceReference:
        excerpt_text = _text(excerpt)
        chunk = find_chunk_for_excerpt(excerpt_text, self.chunks)
        return SourceReference(
            document_id=self.document.document_id,
            document_name=self.document.file_name,
            excerpt=excerpt_text,
            chunk_index=chunk.chunk_index if chunk is not None else None,
        )


def _text(value: Any, default: str = "") -> str:
    if isinstance(value, str) and value.strip():
        return value.strip()
    return default


def _str_tuple(value: Any) -> tuple[str, ...]:
    if not isinstance(value, list):
        return ()
    return tuple(item.strip() for item in value if isinstance(item, str) and item.strip())


def _dict_items(value: Any) -> list[dict[str, Any]]:
    if not isinstance(value, list):
        return []
    return [item for item in value if isinstance(item, dict)]


class ContradictionAnalyzer:
    """Run cached contradiction and consistency reviews over stored chunks."""

    def __init__(
        self,
        store: ChunkStore,
        model: ChatModel,
        cache: AnalysisCache,
        temperature: float = 0.3,
        max_tokens: int = 4000,
        within_max_chars: int = 20000,
        primary_max_chars: int = 15000,
        comparison_max_chars: int = 10000,
    ) -> None:
        self.store = store
        self.model = model
        self.cache = cache
        self.temperature = temperature
        self.max_tokens = max_tokens
        self.within_max_chars = within_max_chars
        self.primary_max_chars = primary_max_chars
        self.comparison_max_chars = comparison_max_chars

    def prepare(
        self,
        mode: AnalysisMode | str,
        primary_document_id: str,
        compare_document_ids: Iterable[str] | None,
        owner_id: str,
    ) -> AnalysisRequest:
        """Validate inputs and resolve owned documents. No LLM work happens here."""
        try:
            resolved_mode = AnalysisMode(mode)
        except ValueError as exc:
            raise ValidationError(f"Unknown validation type: {mode}") from exc
        if not primary_document_id:
            raise ValidationError("documentId is required")
        compare_ids: list[str] = []
        for document_id in compare_document_ids or []:
            if document_id and document_id != primary_document_id and document_id not in compare_ids:
                compare_ids.append(document_id)

        if resolved_mode is AnalysisMode.ACROSS and not compare_ids:
            raise ValidationError(
                "Compare document IDs are required for across-document analysis"
            )
        if resolved_mode is AnalysisMode.WITHIN and compare_ids:
            raise ValidationError("Within-document analysis does not accept compare document IDs")

        primary = self._owned_document(primary_document_id, owner_id)
        comparisons = tuple(self._owned_document(doc_id, owner_id) for doc_id in compare_ids)
        if resolved_mode is AnalysisMode.WITHIN:
            fingerprint = make_fingerprint([primary_document_id], "within")
        else:
            fingerprint = make_fingerprint(
                [primary_document_id, *compare_ids], "across", primary=primary_document_id
            )
        return AnalysisRequest(
            mode=resolved_mode,
            primary=primary,
            comparisons=comparisons,
            fingerprint=fingerprint,
            owner_id=owner_id,
        )

    async def analyze(
        self,
        mode: AnalysisMode | str,
        primary_document_id: str,
        compare_document_ids: Iterable[str] | None = None,
        *,
        owner_id: str,
        force_regenerate: bool = False,
    ) -> AnalysisResult:
        request = self.prepare(mode, primary_document_id, compare_document_ids, owner_id)
        lookup = await self.cache.get_or_compute(
            request.fingerprint,
            lambda: self._compute(request),
            force_regenerate=force_regenerate,
        )
        return lookup.value.with_cached(lookup.cached)

    def has_cached(
        self,
        mode: AnalysisMode | str,
        primary_document_id: str,
        compare_document_ids: Iterable[str] | None,
        *,
        owner_id: str,
    ) -> bool:
        request = self.prepare(mode, primary_document_id, compare_document_ids, owner_id)
        return self.cache.contains(request.fingerprint)

    def _owned_document(self, document_id: str, owner_id: str) -> DocumentRecord:
        document = self.store.get_document(document_id, owner_id)
        if document is None:
            raise NotFoundError(f"Document {document_id} not found")
        return document

    def _load(self, request: AnalysisRequest) -> tuple[_DocumentText, list[_DocumentText]]:
        grouped: dict[str, list[Chunk]] = {}
        for chunk in self.store.get_chunks(request.document_ids, request.owner_id):
            grouped.setdefault(chunk.document_id, []).append(chunk)
        primary = _DocumentText(request.primary, grouped.get(request.primary.document_id, []))
        if not primary.chunks:
            raise NotFoundError("Document not found or no content available")
        comparisons = [
            _DocumentText(document, grouped[document.document_id])
            for document in request.comparisons
            if grouped.get(document.document_id)
        ]
        if request.mode is AnalysisMode.ACROSS and not comparisons:
            raise NotFoundError("Comparison documents not found or no content available")
        return primary, comparisons

    async def _compute(self, request: AnalysisRequest) -> AnalysisResult:
        primary, comparisons = self._load(request)
        if request.mode is AnalysisMode.WITHIN:
            prompt = within_document_prompt(
                primary.document.file_name, primary.text, self.within_max_chars
            )
        else:
            prompt = across_documents_prompt(
                primary.document.file_name,
                primary.text,
                [(doc.document.file_name, doc.text) for doc in comparisons],
                self.primary_max_chars,
                self.comparison_max_chars,
            )
        payload = await complete_json(
            self.model,
            VALIDATION_SYSTEM_PROMPT,
            prompt,
            temperature=self.temperature,
            max_tokens=self.max_tokens,
            purpose=f"validation_{request.mode.value}",
        )
        if not isinstance(payload, dict):
            raise LLMError("Analysis response must be a JSON object")
        result = _AnalysisMapper(request.mode, primary, comparisons).map(payload)
        logger.info(
            "analysis_complete",
            extra={
                "mode": request.mode.value,
                "documents": result.metadata.documents_analyzed,
                "chunks": result.metadata.total_chunks_reviewed,
                "contradictions": len(result.contradictions),
                "comparability": result.metadata.comparability.value,
            },
        )
        return result


class _AnalysisMapper:
    """Map raw model JSON onto typed findings with located excerpts."""

    def __init__(
        self, mode: AnalysisMode, primary: _DocumentText, comparisons: list[_DocumentText]
    ) -> None:
        self.mode = mode
        self.primary = primary
        self.comparisons = comparisons

    def map(self, payload: dict[str, Any]) -> AnalysisResult:
        if self.mode is AnalysisMode.ACROSS and payload.get("documentsComparable") is False:
            return self._not_comparable(_text(payload.get("comparabilityReason")))
        comparability = (
            Comparability.COMPARABLE
            if self.mode is AnalysisMode.ACROSS
            else Comparability.NOT_APPLICABLE
        )
        risk = payload.get("riskAssessment")
        risk = risk if isinstance(risk, dict) else {}
        return AnalysisResult(
            contradictions=tuple(
                self._contradiction(item) for item in _dict_items(payload.get("contradictions"))
            ),
            gaps=tuple(
                InformationGap(
                    area=_text(item.get("area"), "General"),
                    description=_text(item.get("description")),
                    severity=Level.parse(item.get("severity")),
                    expected_information=_text(item.get("expectedInformation")),
                )
                for item in _dict_items(payload.get("gaps"))
            ),
            agreements=tuple(
                self._agreement(item) for item in _dict_items(payload.get("agreements"))
            )
            if self.mode is AnalysisMode.ACROSS
            else (),
            key_claims=tuple(
                KeyClaim(
                    claim=_text(item.get("claim")),
                    importance=Level.parse(item.get("importance")),
                    claim_type=_text(item.get("type"), "fact"),
                    source=self.primary.reference(item.get("excerpt")),
                )
                for item in _dict_items(payload.get("keyClaims"))
            ),
            recommendations=tuple(
                Recommendation(
                    title=_text(item.get("title")),
                    description=_text(item.get("description")),
                    priority=Level.parse(item.get("priority")),
                    action_items=_str_tuple(item.get("actionItems")),
                    related_issues=_str_tuple(item.get("relatedIssues")),
                )
                for item in _dict_items(payload.get("recommendations"))
            ),
            risk_assessment=RiskAssessment(
                overall_risk=Level.parse(risk.get("overallRisk")),
                summary=_text(risk.get("summary"), "Analysis complete"),
                critical_items=_str_tuple(risk.get("criticalItems")),
                next_steps=_str_tuple(risk.get("nextSteps")),
            ),
            metadata=self._metadata(comparability, _text(payload.get("comparabilityReason")) or None),
        )

    def _metadata(self, comparability: Comparability, reason: str | None) -> AnalysisMetadata:
        documents = [self.primary, *self.comparisons]
        return AnalysisMetadata(
            mode=self.mode,
            documents_analyzed=len(documents),
            total_chunks_reviewed=sum(len(doc.chunks) for doc in documents),
            analysis_timestamp=datetime.now(timezone.utc),
            comparability=comparability,
            comparability_reason=reason,
        )

    def _not_comparable(self, reason: str) -> AnalysisResult:
        summary = f"{NOT_COMPARABLE_MARKER}. {reason}".strip()
        return AnalysisResult(
            contradictions=(),
            gaps=(),
            agreements=(),
            key_claims=(),
            recommendations=(),
            risk_assessment=RiskAssessment(
                overall_risk=Level.LOW,
                summary=summary,
                next_steps=(
                    "Select documents from the same topic or domain for meaningful comparison",
                ),
            ),
            metadata=self._metadata(Comparability.NOT_COMPARABLE, reason or None),
        )

    def _document_named(self, name: Any) -> _DocumentText:
        """Resolve a model-reported document name, defaulting to the first comparison."""
        wanted = _text(name).lower()
        candidates = [self.primary, *self.comparisons]
        if wanted:
            for candidate in candidates:
                file_name = candidate.document.file_name.lower()
                if wanted == file_name or wanted in file_name or file_name in wanted:
                    return candidate
        return self.comparisons[0] if self.comparisons else self.primary

    def _contradiction(self, item: dict[str, Any]) -> Contradiction:
        severity = Level.parse(item.get("severity"))
        confidence = Level.parse(item.get("confidence"))
        explanation = _text(item.get("explanation"))
        impact = _text(item.get("impact"), "Impact not specified")
        sources = _dict_items(item.get("sources"))
        if sources:
            return StructuredContradiction(
                description=_text(item.get("description")) or _text(item.get("claim")),
                severity=severity,
                confidence=confidence,
                explanation=explanation,
                impact=impact,
                sources=tuple(
                    self._document_named(source.get("documentName")).reference(
                        source.get("excerpt")
                    )
                    for source in sources
                ),
            )
        if self.mode is AnalysisMode.ACROSS:
            evidence_document = self._document_named(item.get("evidenceDocumentName"))
        else:
            evidence_document = self.primary
        return LegacyContradiction(
            claim=_text(item.get("claim")),
            evidence=_text(item.get("evidence")),
            severity=severity,
            confidence=confidence,
            explanation=explanation,
            impact=impact,
            claim_source=self.primary.reference(item.get("claimExcerpt")),
            evidence_source=evidence_document.reference(item.get("evidenceExcerpt")),
        )

    def _agreement(self, item: dict[str, Any]) -> Agreement:
        names = item.get("sources") if isinstance(item.get("sources"), list) else []
        excerpts = item.get("excerpts") if isinstance(item.get("excerpts"), list) else []
        references: list[SourceReference] = []
        for idx, excerpt in enumerate(excerpts):
            if idx == 0:
                document = self.primary
            else:
                document = self._document_named(names[idx] if idx < len(names) else None)
            references.append(document.reference(excerpt))
        return Agreement(
            statement=_text(item.get("statement")),
            confidence=Level.parse(item.get("confidence")),
            significance=_text(item.get("significance")),
            sources=tuple(references),
        )
