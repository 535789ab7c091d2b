from __future__ import annotations

import pytest

from docsense.rag.answerer import (
    AnswerSynthesizer,
    LLMAnswerComposer,
    attribute_sources,
    build_context_block,
)
from docsense.rag.errors import NotFoundError, ValidationError
from docsense.rag.guardrails import INSUFFICIENT_INFORMATION
from docsense.rag.types import Chunk, ScoredChunk
from docsense.tests.fakes import ScriptedChatModel, build_test_pipeline, timeout_document

pytestmark = pytest.mark.anyio


def scored(document_id: str, index: int, similarity: float, content: str = "text") -> ScoredChunk:
    return ScoredChunk(
        chunk=Chunk(document_id, index, content, [1.0]),
        similarity=similarity,
        document_name=f"{document_id}.txt",
    )


async def test_chat_scoped_to_one_document() -> None:
    pipeline = build_test_pipeline()
    target = await pipeline.ingest("alice", "timeouts.txt", timeout_document())
    await pipeline.ingest("alice", "other.txt", "The timeout value is unrelated here. " * 5)
    assert target.chunk_count == 10

    answer = await pipeline.chat(
        "What is the timeout value?",
        owner_id="alice",
        limit=5,
        threshold=0.15,
        document_ids=[target.document.document_id],
    )

    assert 1 <= answer.chunks_used <= 5
    assert answer.sources
    assert all(source.document_id == target.document.document_id for source in answer.sources)
    assert answer.answer.startswith("Based on the provided context:")


async def test_chat_with_empty_selection_refuses() -> None:
    pipeline = build_test_pipeline()
    await pipeline.ingest("alice", "timeouts.txt", timeout_document())

    answer = await pipeline.chat("What is the timeout value?", owner_id="alice", document_ids=[])

    assert answer.answer == INSUFFICIENT_INFORMATION
    assert answer.sources == []
    assert answer.chunks_used == 0


async def test_chat_below_threshold_never_calls_model() -> None:
    model = ScriptedChatModel(responses=["should not be used"])
    synthesizer = AnswerSynthesizer(composer=LLMAnswerComposer(model=model))

    answer = await synthesizer.synthesize("anything", [])

    assert answer.answer == INSUFFICIENT_INFORMATION
    assert answer.refusal_reason == "no_context"
    assert model.calls == []


async def test_llm_composer_uses_chat_sampling() -> None:
    model = ScriptedChatModel(responses=["The timeout is 30 seconds."])
    synthesizer = AnswerSynthesizer(composer=LLMAnswerComposer(model=model))

    answer = await synthesizer.synthesize("timeout?", [scored("doc-a", 0, 0.9, "timeout is 30s")])

    assert answer.answer == "The timeout is 30 seconds."
    assert model.calls[0]["temperature"] == 0.7
    assert model.calls[0]["max_tokens"] == 1000
    assert "timeout is 30s" in model.calls[0]["user_prompt"]


async def test_chat_other_owner_sees_nothing() -> None:
    pipeline = build_test_pipeline()
    await pipeline.ingest("alice", "timeouts.txt", timeout_document())

    answer = await pipeline.chat("What is the timeout value?", owner_id="bob")

    assert answer.answer == INSUFFICIENT_INFORMATION


async def test_chat_rejects_out_of_range_limit() -> None:
    pipeline = build_test_pipeline()
    with pytest.raises(ValidationError):
        await pipeline.chat("timeout?", owner_id="alice", limit=0)
    with pytest.raises(ValidationError):
        await pipeline.chat("timeout?", owner_id="alice", threshold=1.2)


def test_sources_grouped_by_document_best_first() -> None:
    sources = attribute_sources(
        [
            scored("doc-b", 2, 0.8),
            scored("doc-a", 1, 0.9),
            scored("doc-b", 0, 0.7),
        ]
    )

    assert [source.document_id for source in sources] == ["doc-a", "doc-b"]
    assert sources[1].chunks_used == 2
    assert sources[1].chunk_indices == [0, 2]
    assert sources[1].top_similarity == 0.8


def test_context_block_respects_budget() -> None:
    block = build_context_block(
        [scored("doc-a", 0, 0.9, "a" * 300), scored("doc-a", 1, 0.8, "b" * 300)], max_chars=400
    )
    assert "a" * 300 in block
    assert "b" * 300 not in block


async def test_delete_unknown_document_is_not_found() -> None:
    pipeline = build_test_pipeline()
    with pytest.raises(NotFoundError):
        pipeline.delete_document("missing", "alice")


async def test_ingest_rejects_blank_content() -> None:
    pipeline = build_test_pipeline()
    with pytest.raises(ValidationError):
        await pipeline.ingest("alice", "blank.txt", "   ")
    assert pipeline.list_documents("alice") == []


async def test_ingest_uses_configured_encoding(monkeypatch) -> None:
    import docsense.rag.pipeline as pipeline_module

    seen: list[str] = []
    original = pipeline_module.chunk_document

    def recording_chunk_document(text, max_size, overlap, use_tokenizer=True, encoding_name="cl100k_base"):
        seen.append(encoding_name)
        return original(text, max_size, overlap, use_tokenizer=use_tokenizer, encoding_name=encoding_name)

    monkeypatch.setattr(pipeline_module, "chunk_document", recording_chunk_document)
    pipeline = build_test_pipeline()
    pipeline.tiktoken_encoding = "o200k_base"

    await pipeline.ingest("alice", "timeouts.txt", timeout_document())

    assert seen == ["o200k_base"]


async def test_chat_limit_follows_configured_maximum() -> None:
    pipeline = build_test_pipeline()
    pipeline.max_limit = 80
    await pipeline.ingest("alice", "timeouts.txt", timeout_document())

    answer = await pipeline.chat("What is the timeout value?", owner_id="alice", limit=60, threshold=0.0)
    assert answer.chunks_used == 10
    with pytest.raises(ValidationError, match="between 1 and 80"):
        await pipeline.chat("What is the timeout value?", owner_id="alice", limit=81)
