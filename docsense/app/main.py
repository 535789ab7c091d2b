from __future__ import annotations

"""FastAPI application entrypoint for the document retrieval and analysis service."""

import logging
import uuid

from fastapi import Depends, FastAPI, Request

from docsense.analysis.models import AnalysisMode
from docsense.app.dependencies import get_embedding_config_report, get_pipeline
from docsense.app.errors import install_error_handlers
from docsense.app.metrics import metrics_middleware, metrics_response, record_analysis
from docsense.app.schemas import (
    AnalysisResponse,
    AnalyzeAcrossRequest,
    AnalyzeWithinRequest,
    ChatRequest,
    ChatResponse,
    CheckCacheRequest,
    CheckCacheResponse,
    CrossDocumentInsightRequest,
    DocumentCreateRequest,
    DocumentCreateResponse,
    DocumentDeleteResponse,
    DocumentListResponse,
    DocumentOut,
    EmbeddingHealthResponse,
    InsightRequest,
    InsightResponse,
    SearchRequest,
    SearchResponse,
    SearchResult,
    StatsHealthResponse,
    StatsResponse,
    SummaryRequest,
    SummaryResponse,
)
from docsense.app.security import AuthContext, require_api_key
from docsense.app.settings import settings
from docsense.rag.errors import ValidationError
from docsense.rag.pipeline import DocumentPipeline

logger = logging.getLogger(__name__)

app = FastAPI(title="DocSense", version="0.1.0")
install_error_handlers(app)


def _configure_logging() -> None:
    """Configure root logging using environment settings."""
    level_name = settings.log_level.strip().upper()
    level = getattr(logging, level_name, logging.INFO)
    root_logger = logging.getLogger()
    if not root_logger.handlers:
        logging.basicConfig(
            level=level,
            format="%(asctime)s %(levelname)s %(name)s %(message)s",
        )
    logger.setLevel(level)


_configure_logging()


def _request_id(request: Request) -> str:
    return getattr(request.state, "request_id", None) or str(uuid.uuid4())


@app.middleware("http")
async def add_request_id(request: Request, call_next):
    """Attach or create a request ID for traceability."""
    request_id = request.headers.get("x-request-id") or str(uuid.uuid4())
    request.state.request_id = request_id
    response = await call_next(request)
    response.headers["X-Request-ID"] = request_id
    return response


@app.middleware("http")
async def record_metrics(request: Request, call_next):
    """Capture request metrics before returning the response."""
    return await metrics_middleware(request, call_next)


@app.get("/metrics")
async def metrics():
    """Expose Prometheus-style metrics."""
    return metrics_response()


@app.get("/health")
async def health() -> dict[str, str]:
    """Simple liveness check for uptime monitoring."""
    return {"status": "ok"}


@app.get("/stats", response_model=StatsResponse)
async def stats(
    auth: AuthContext = Depends(require_api_key),
    pipeline: DocumentPipeline = Depends(get_pipeline),
) -> StatsResponse:
    """Return chunk store, retriever and analysis cache counters."""
    return StatsResponse(**pipeline.stats())


@app.get("/stats/health", response_model=StatsHealthResponse)
async def stats_health(
    auth: AuthContext = Depends(require_api_key),
    pipeline: DocumentPipeline = Depends(get_pipeline),
) -> StatsHealthResponse:
    """Return chunk store health status."""
    return StatsHealthResponse(**pipeline.store.health())


@app.get("/stats/embedding", response_model=EmbeddingHealthResponse)
async def embedding_health(
    auth: AuthContext = Depends(require_api_key),
) -> EmbeddingHealthResponse:
    """Return embedding configuration health checks."""
    report = get_embedding_config_report()
    return EmbeddingHealthResponse(**report.__dict__)


@app.post("/api/documents", response_model=DocumentCreateResponse)
async def create_document(
    request: DocumentCreateRequest,
    http_request: Request,
    auth: AuthContext = Depends(require_api_key),
    pipeline: DocumentPipeline = Depends(get_pipeline),
) -> DocumentCreateResponse:
    """Chunk, embed and store a text document for the caller."""
    result = await pipeline.ingest(
        owner_id=auth.user_id,
        file_name=request.file_name,
        content=request.content,
        file_type=request.file_type,
        metadata=request.metadata,
    )
    logger.info(
        "document_created",
        extra={
            "request_id": _request_id(http_request),
            "document_id": result.document.document_id,
            "chunks": result.chunk_count,
        },
    )
    return DocumentCreateResponse(
        document=DocumentOut.from_record(result.document),
        chunk_count=result.chunk_count,
    )


@app.get("/api/documents", response_model=DocumentListResponse)
async def list_documents(
    auth: AuthContext = Depends(require_api_key),
    pipeline: DocumentPipeline = Depends(get_pipeline),
) -> DocumentListResponse:
    """List the caller's documents."""
    records = pipeline.list_documents(auth.user_id)
    return DocumentListResponse(documents=[DocumentOut.from_record(record) for record in records])


@app.delete("/api/documents/{document_id}", response_model=DocumentDeleteResponse)
async def delete_document(
    document_id: str,
    auth: AuthContext = Depends(require_api_key),
    pipeline: DocumentPipeline = Depends(get_pipeline),
) -> DocumentDeleteResponse:
    """Delete a document and every cached analysis that references it."""
    result = pipeline.delete_document(document_id, auth.user_id)
    return DocumentDeleteResponse(deleted=result.deleted, evicted_analyses=result.evicted_analyses)


@app.post("/api/documents/{document_id}/summary", response_model=SummaryResponse)
async def summarize_document(
    document_id: str,
    request: SummaryRequest | None = None,
    auth: AuthContext = Depends(require_api_key),
    pipeline: DocumentPipeline = Depends(get_pipeline),
) -> SummaryResponse:
    """Summarize one document, reusing a cached summary unless regeneration is forced."""
    force = request.force_regenerate if request else False
    summary = await pipeline.summarizer.summarize(
        document_id, owner_id=auth.user_id, force_regenerate=force
    )
    record_analysis("summary", summary.cached)
    return SummaryResponse.from_summary(summary)


@app.post("/api/chat", response_model=ChatResponse)
async def chat(
    request: ChatRequest,
    http_request: Request,
    auth: AuthContext = Depends(require_api_key),
    pipeline: DocumentPipeline = Depends(get_pipeline),
) -> ChatResponse:
    """Answer a question grounded in the caller's documents."""
    request_id = _request_id(http_request)
    logger.info(
        "chat_received",
        extra={
            "request_id": request_id,
            "question_length": len(request.question),
            "limit": request.limit,
            "threshold": request.similarity_threshold,
            "scoped": request.selected_document_ids is not None,
        },
    )
    answer = await pipeline.chat(
        request.question,
        owner_id=auth.user_id,
        limit=request.limit,
        threshold=request.similarity_threshold,
        document_ids=request.selected_document_ids,
    )
    logger.info(
        "chat_completed",
        extra={
            "request_id": request_id,
            "refusal_reason": answer.refusal_reason,
            "sources": len(answer.sources),
            "chunks_used": answer.chunks_used,
        },
    )
    return ChatResponse.from_answer(answer)


@app.post("/api/search", response_model=SearchResponse)
async def search(
    request: SearchRequest,
    http_request: Request,
    auth: AuthContext = Depends(require_api_key),
    pipeline: DocumentPipeline = Depends(get_pipeline),
) -> SearchResponse:
    """Return the caller's chunks ranked by similarity to the query."""
    results = await pipeline.search(
        request.query,
        owner_id=auth.user_id,
        top_k=request.top_k,
        min_similarity=request.min_similarity,
        document_ids=request.selected_document_ids,
    )
    logger.info(
        "search_completed",
        extra={"request_id": _request_id(http_request), "results": len(results)},
    )
    return SearchResponse(results=[SearchResult.from_scored(item) for item in results])


@app.post("/api/contradictions/analyze/within", response_model=AnalysisResponse)
async def analyze_within(
    request: AnalyzeWithinRequest,
    auth: AuthContext = Depends(require_api_key),
    pipeline: DocumentPipeline = Depends(get_pipeline),
) -> AnalysisResponse:
    """Find contradictions, gaps and claims inside one document."""
    result = await pipeline.analyzer.analyze(
        AnalysisMode.WITHIN,
        request.document_id,
        owner_id=auth.user_id,
        force_regenerate=request.force_regenerate,
    )
    record_analysis("within", result.metadata.cached)
    return AnalysisResponse.from_result(result)


@app.post("/api/contradictions/analyze/across", response_model=AnalysisResponse)
async def analyze_across(
    request: AnalyzeAcrossRequest,
    auth: AuthContext = Depends(require_api_key),
    pipeline: DocumentPipeline = Depends(get_pipeline),
) -> AnalysisResponse:
    """Compare a primary document against one or more other documents."""
    result = await pipeline.analyzer.analyze(
        AnalysisMode.ACROSS,
        request.primary_document_id,
        request.compare_document_ids,
        owner_id=auth.user_id,
        force_regenerate=request.force_regenerate,
    )
    record_analysis("across", result.metadata.cached)
    return AnalysisResponse.from_result(result)


@app.post("/api/contradictions/check-cache", response_model=CheckCacheResponse)
async def check_cache(
    request: CheckCacheRequest,
    auth: AuthContext = Depends(require_api_key),
    pipeline: DocumentPipeline = Depends(get_pipeline),
) -> CheckCacheResponse:
    """Report whether a completed analysis exists without computing one."""
    if not request.document_id or not request.validation_type:
        raise ValidationError("Document ID and validation type are required")
    has_cached = pipeline.analyzer.has_cached(
        request.validation_type,
        request.document_id,
        request.compare_document_ids,
        owner_id=auth.user_id,
    )
    return CheckCacheResponse(has_cached=has_cached)


@app.post("/api/insights/document/{document_id}", response_model=InsightResponse)
async def document_insights(
    document_id: str,
    request: InsightRequest | None = None,
    auth: AuthContext = Depends(require_api_key),
    pipeline: DocumentPipeline = Depends(get_pipeline),
) -> InsightResponse:
    """Generate categorized insights for a single document."""
    force = request.force_regenerate if request else False
    report = await pipeline.insights.generate(
        [document_id], owner_id=auth.user_id, force_regenerate=force
    )
    record_analysis("insights", report.cached)
    return InsightResponse.from_report(report)


@app.post("/api/insights/cross-document", response_model=InsightResponse)
async def cross_document_insights(
    request: CrossDocumentInsightRequest,
    auth: AuthContext = Depends(require_api_key),
    pipeline: DocumentPipeline = Depends(get_pipeline),
) -> InsightResponse:
    """Generate insights that span several documents."""
    report = await pipeline.insights.generate(
        request.document_ids,
        owner_id=auth.user_id,
        force_regenerate=request.force_regenerate,
    )
    record_analysis("insights", report.cached)
    return InsightResponse.from_report(report)
