from __future__ import annotations

from datetime import datetime, timezone

import pytest

from docsense.analysis.insights import (
    Confidence,
    Insight,
    InsightCategory,
    order_insights,
    parse_insights,
)
from docsense.rag.errors import NotFoundError, ValidationError
from docsense.rag.llm import LLMError
from docsense.tests.fakes import (
    ScriptedChatModel,
    build_test_pipeline,
    insights_payload,
    timeout_document,
)

pytestmark = pytest.mark.anyio


def make_insight(title: str, category: InsightCategory, confidence: Confidence) -> Insight:
    return Insight(
        title=title,
        description="",
        category=category,
        confidence=confidence,
        evidence=(),
        impact="",
    )


def test_order_by_category_then_confidence_stable() -> None:
    ordered = order_insights(
        [
            make_insight("p", InsightCategory.PATTERN, Confidence.HIGH),
            make_insight("r-low", InsightCategory.RISK, Confidence.LOW),
            make_insight("a", InsightCategory.ANOMALY, Confidence.MEDIUM),
            make_insight("r-high-1", InsightCategory.RISK, Confidence.HIGH),
            make_insight("o", InsightCategory.OPPORTUNITY, Confidence.HIGH),
            make_insight("r-high-2", InsightCategory.RISK, Confidence.HIGH),
        ]
    )

    assert [insight.title for insight in ordered] == [
        "r-high-1",
        "r-high-2",
        "r-low",
        "o",
        "a",
        "p",
    ]


def test_parse_drops_unknown_categories() -> None:
    insights = parse_insights(insights_payload())

    assert [insight.title for insight in insights] == [
        "Timeouts grow linearly",
        "Long timeouts",
        "Unused budget",
    ]
    assert insights[1].evidence == ("Section 9 notes",)


def test_parse_accepts_bare_array() -> None:
    insights = parse_insights(
        [{"title": "Spike", "category": "Anomaly", "confidence": "high", "evidence": []}]
    )
    assert insights[0].category is InsightCategory.ANOMALY
    assert insights[0].confidence is Confidence.HIGH


def test_parse_rejects_missing_array() -> None:
    with pytest.raises(LLMError):
        parse_insights({"summary": "no insights here"})


async def test_document_insights_ordered_and_cached() -> None:
    model = ScriptedChatModel(responses=[insights_payload()])
    pipeline = build_test_pipeline(model)
    ingested = await pipeline.ingest("alice", "policy.txt", timeout_document())
    document_id = ingested.document.document_id

    report = await pipeline.insights.generate([document_id], owner_id="alice")
    again = await pipeline.insights.generate([document_id], owner_id="alice")

    assert [insight.category for insight in report.insights] == [
        InsightCategory.RISK,
        InsightCategory.OPPORTUNITY,
        InsightCategory.PATTERN,
    ]
    assert report.cached is False
    assert report.document_count == 1
    assert again.cached is True
    assert again.generated_at == report.generated_at
    assert len(model.calls) == 1
    assert model.calls[0]["temperature"] == 0.6
    assert model.calls[0]["max_tokens"] == 5500


async def test_cross_document_insights_use_cross_budget() -> None:
    model = ScriptedChatModel(responses=[insights_payload()])
    pipeline = build_test_pipeline(model)
    first = await pipeline.ingest("alice", "policy.txt", timeout_document())
    second = await pipeline.ingest("alice", "runbook.txt", "Runbook: retries happen twice.")
    ids = [first.document.document_id, second.document.document_id]

    report = await pipeline.insights.generate(ids, owner_id="alice")
    reordered = await pipeline.insights.generate(list(reversed(ids)), owner_id="alice")

    assert report.document_count == 2
    assert reordered.cached is True
    assert model.calls[0]["max_tokens"] == 3000


async def test_insights_validate_inputs() -> None:
    pipeline = build_test_pipeline()
    ingested = await pipeline.ingest("alice", "policy.txt", timeout_document())

    with pytest.raises(ValidationError):
        await pipeline.insights.generate([], owner_id="alice")
    with pytest.raises(NotFoundError):
        await pipeline.insights.generate([ingested.document.document_id], owner_id="bob")


async def test_unparseable_insights_raise_and_are_not_cached() -> None:
    model = ScriptedChatModel(responses=["definitely not json"])
    pipeline = build_test_pipeline(model)
    ingested = await pipeline.ingest("alice", "policy.txt", timeout_document())

    with pytest.raises(LLMError):
        await pipeline.insights.generate([ingested.document.document_id], owner_id="alice")

    assert len(model.calls) == 2
    assert pipeline.cache.stats()["entries"] == 0


async def test_summary_reports_reading_stats_and_caches() -> None:
    model = ScriptedChatModel(
        responses=[
            {
                "overview": "Timeout values per section.",
                "keyFindings": ["Timeouts grow by ten seconds", ""],
                "keywords": ["timeout", 7],
            }
        ]
    )
    pipeline = build_test_pipeline(model)
    ingested = await pipeline.ingest("alice", "policy.txt", timeout_document())
    document_id = ingested.document.document_id

    summary = await pipeline.summarizer.summarize(document_id, owner_id="alice")
    again = await pipeline.summarizer.summarize(document_id, owner_id="alice")

    assert summary.overview == "Timeout values per section."
    assert summary.key_findings == ("Timeouts grow by ten seconds",)
    assert summary.keywords == ("timeout",)
    assert summary.chunks_used == 10
    assert summary.reading_time_minutes == 1
    assert summary.generated_at <= datetime.now(timezone.utc)
    assert again.cached is True
    assert len(model.calls) == 1


async def test_summary_without_overview_fails() -> None:
    model = ScriptedChatModel(responses=[{"keywords": ["x"]}])
    pipeline = build_test_pipeline(model)
    ingested = await pipeline.ingest("alice", "policy.txt", timeout_document())

    with pytest.raises(LLMError):
        await pipeline.summarizer.summarize(ingested.document.document_id, owner_id="alice")
