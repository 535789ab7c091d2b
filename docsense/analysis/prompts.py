from __future__ import annotations

"""Prompt builders for document analysis requests."""

import json
from typing import Sequence

VALIDATION_SYSTEM_PROMPT = (
    "You are an expert document validator. Provide comprehensive analysis with evidence. "
    "Always return complete JSON with all required fields."
)

INSIGHT_SYSTEM_PROMPT = (
    "You are an expert document analyst. You find non-obvious, helpful insights in any "
    "kind of non-fiction document. Always return valid JSON only."
)

SUMMARY_SYSTEM_PROMPT = (
    "You are a document analysis expert. Provide concise, accurate summaries in JSON format."
)

_FINDINGS_SCHEMA = """\
  "contradictions": [{
    "claim": "...", "evidence": "...", "severity": "high|medium|low",
    "confidence": "high|medium|low", "explanation": "...", "impact": "...",
    "claimExcerpt": "20-30 word excerpt", "evidenceExcerpt": "20-30 word excerpt"%(evidence_doc)s
  }],
  "gaps": [{
    "area": "...", "description": "...", "severity": "high|medium|low",
    "expectedInformation": "..."
  }],%(agreements)s
  "keyClaims": [{
    "claim": "...", "importance": "high|medium|low",
    "type": "fact|opinion|recommendation|requirement", "excerpt": "..."
  }],
  "recommendations": [{
    "title": "...", "description": "...", "priority": "high|medium|low",
    "actionItems": ["..."], "relatedIssues": ["..."]
  }],
  "riskAssessment": {
    "overallRisk": "high|medium|low", "summary": "...",
    "criticalItems": ["..."], "nextSteps": ["..."]
  }"""

_AGREEMENTS_SCHEMA = """
  "agreements": [{
    "statement": "...", "sources": ["primary document name", "comparison document name"],
    "confidence": "high|medium|low", "significance": "...",
    "excerpts": ["excerpt from primary", "excerpt from comparison"]
  }],"""

_RISK_NOTE = (
    "overallRisk means: high = major issues found, medium = minor issues, "
    "low = good quality and consistency."
)


def truncate(text: str, limit: int, marker: str = "") -> str:
    if limit <= 0 or len(text) <= limit:
        return text
    return text[:limit] + marker


def within_document_prompt(document_name: str, text: str, max_chars: int) -> str:
    schema = _FINDINGS_SCHEMA % {"evidence_doc": "", "agreements": ""}
    return (
        f'You are reviewing "{document_name}" for internal consistency and quality.\n\n'
        f"DOCUMENT CONTENT:\n{truncate(text, max_chars)}\n\n"
        "Report conflicting statements, missing critical information, the most important "
        "claims (at most 5), 3-5 actionable recommendations and an overall risk assessment.\n\n"
        f"Return ONLY valid JSON:\n{{\n{schema}\n}}\n\n{_RISK_NOTE}"
    )


def across_documents_prompt(
    primary_name: str,
    primary_text: str,
    comparisons: Sequence[tuple[str, str]],
    primary_max_chars: int,
    comparison_max_chars: int,
) -> str:
    comparison_block = "\n\n---\n\n".join(
        f'DOCUMENT: "{name}"\n{truncate(text, comparison_max_chars)}' for name, text in comparisons
    )
    schema = _FINDINGS_SCHEMA % {
        "evidence_doc": ',\n    "evidenceDocumentName": "name of the comparison document"',
        "agreements": _AGREEMENTS_SCHEMA,
    }
    return (
        f'Compare the primary document "{primary_name}" against the comparison documents.\n\n'
        f'PRIMARY: "{primary_name}"\n{truncate(primary_text, primary_max_chars)}\n\n'
        f"COMPARISON DOCUMENTS:\n{comparison_block}\n\n"
        "First decide whether the documents share enough subject matter to be compared "
        "meaningfully. Documents about unrelated topics or domains are not comparable.\n\n"
        "Return ONLY valid JSON:\n{\n"
        '  "documentsComparable": true,\n'
        '  "comparabilityReason": "why the documents are or are not comparable",\n'
        f"{schema}\n}}\n\n{_RISK_NOTE}\n"
        "If documentsComparable is false, return empty arrays for every finding and do not "
        "invent connections between the documents."
    )


def document_insights_prompt(document_name: str, text: str, max_chars: int) -> str:
    content = truncate(text, max_chars, "\n\n[Document truncated due to length...]")
    return (
        "Extract non-obvious insights that would help someone understand, use or improve "
        "this document.\n\n"
        f"Document name: {document_name or 'Untitled document'}\n"
        f'Document content:\n"""{content}"""\n\n'
        "Return between 10 and 16 distinct insights, each supported by specific evidence. "
        'Use only the categories "pattern", "anomaly", "opportunity" and "risk".\n\n'
        "Return ONLY valid JSON in this structure:\n"
        '{"insights": [{"title": "...", "description": "...", '
        '"confidence": "High|Medium|Low", "category": "pattern|anomaly|opportunity|risk", '
        '"evidence": ["..."], "impact": "..."}]}'
    )


def cross_document_insights_prompt(documents: Sequence[tuple[str, str]], max_chars: int) -> str:
    per_document = max(1, max_chars // max(1, len(documents)))
    payload = [
        {"name": name, "content": truncate(text, per_document, " [truncated]")}
        for name, text in documents
    ]
    return (
        "Compare the following documents and identify insights that only emerge when "
        "their information is combined.\n\n"
        f"Documents (JSON):\n{json.dumps(payload, indent=2)}\n\n"
        "Return between 8 and 15 insights. Each insight must reference at least two documents "
        'and use only the categories "pattern", "anomaly", "opportunity" and "risk".\n\n'
        "Return ONLY valid JSON in this structure:\n"
        '{"insights": [{"title": "...", "description": "...", '
        '"confidence": "High|Medium|Low", "category": "pattern|anomaly|opportunity|risk", '
        '"evidence": ["Doc A: ...", "Doc B: ..."], "impact": "..."}]}'
    )


def summary_prompt(text: str, max_chars: int) -> str:
    content = truncate(text, max_chars, "\n\n[Document truncated for analysis]")
    return (
        "Analyze the following document and provide a 3-4 sentence overview of its main "
        "theme and purpose, 4-6 key findings and 5-8 keywords that represent core concepts. "
        "Represent the content faithfully without adding external assumptions.\n\n"
        f"Document to analyze:\n{content}\n\n"
        "Respond in JSON format:\n"
        '{"overview": "...", "keyFindings": ["..."], "keywords": ["..."]}'
    )
