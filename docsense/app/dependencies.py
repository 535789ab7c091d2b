from __future__ import annotations

from functools import lru_cache

from docsense.analysis.cache import AnalysisCache
from docsense.analysis.insights import InsightGenerator
from docsense.analysis.summary import DocumentSummarizer
from docsense.analysis.validation import ContradictionAnalyzer
from docsense.app.settings import settings
from docsense.rag.answerer import AnswerSynthesizer, ExtractiveAnswerer, LLMAnswerComposer
from docsense.rag.embeddings import (
    EmbeddingBackend,
    EmbeddingClient,
    EmbeddingConfigError,
    EmbeddingConfigReport,
    HashEmbedder,
    OllamaEmbedder,
    OpenAIEmbedder,
    build_embedding_config_report,
)
from docsense.rag.llm import ChatModel, build_chat_model
from docsense.rag.pipeline import DocumentPipeline
from docsense.rag.retriever import SimilarityRetriever
from docsense.rag.retry import RetryPolicy
from docsense.vectorstore.base import ChunkStore
from docsense.vectorstore.inmemory import InMemoryChunkStore
from docsense.vectorstore.sql import SQLChunkStore


@lru_cache
def get_pipeline() -> DocumentPipeline:
    return build_pipeline()


def reset_pipeline_cache() -> None:
    get_pipeline.cache_clear()


def build_pipeline(
    *,
    chat_model: ChatModel | None = None,
    embedding_backend: EmbeddingBackend | None = None,
    store: ChunkStore | None = None,
    cache: AnalysisCache | None = None,
    retry_policy: RetryPolicy | None = None,
) -> DocumentPipeline:
    """Assemble the pipeline from settings, with optional component overrides."""
    policy = retry_policy or build_retry_policy()
    model = chat_model or build_model(policy)
    chunk_store = store or build_chunk_store()
    analysis_cache = cache or AnalysisCache(
        ttl_seconds=settings.analysis_cache_ttl,
        max_entries=settings.analysis_cache_max_entries,
    )
    embedder = EmbeddingClient(
        backend=embedding_backend or build_embedder(),
        batch_size=settings.embedding_batch_size,
        max_concurrency=settings.embedding_concurrency,
        retry_policy=policy,
    )
    if settings.answerer_mode == "extractive":
        composer = ExtractiveAnswerer()
    else:
        composer = LLMAnswerComposer(
            model=model,
            temperature=settings.chat_temperature,
            max_tokens=settings.chat_max_tokens,
            context_max_chars=settings.llm_context_max_chars,
        )
    return DocumentPipeline(
        store=chunk_store,
        embedder=embedder,
        retriever=SimilarityRetriever(store=chunk_store),
        synthesizer=AnswerSynthesizer(composer=composer),
        cache=analysis_cache,
        analyzer=ContradictionAnalyzer(
            store=chunk_store,
            model=model,
            cache=analysis_cache,
            temperature=settings.validation_temperature,
            max_tokens=settings.validation_max_tokens,
        ),
        insights=InsightGenerator(
            store=chunk_store,
            model=model,
            cache=analysis_cache,
            temperature=settings.insights_temperature,
            max_tokens=settings.insights_max_tokens,
        ),
        summarizer=DocumentSummarizer(store=chunk_store, model=model, cache=analysis_cache),
        chunk_size=settings.chunk_size,
        chunk_overlap=settings.chunk_overlap,
        use_tokenizer=settings.use_tokenizer,
        tiktoken_encoding=settings.tiktoken_encoding,
        default_limit=settings.chat_default_limit,
        default_threshold=settings.chat_default_threshold,
        max_limit=settings.chat_max_limit,
        search_default_top_k=settings.search_default_top_k,
        search_default_min_similarity=settings.search_default_min_similarity,
    )


def build_retry_policy() -> RetryPolicy:
    return RetryPolicy(
        max_attempts=settings.retry_max_attempts,
        initial_delay=settings.retry_initial_delay,
        max_delay=settings.retry_max_delay,
    )


def build_model(retry_policy: RetryPolicy) -> ChatModel:
    return build_chat_model(
        settings.llm_provider,
        api_key_openai=settings.openai_api_key,
        openai_base_url=settings.openai_base_url,
        openai_model=settings.openai_model,
        ollama_base_url=settings.ollama_base_url,
        ollama_model=settings.ollama_model,
        timeout=settings.llm_timeout,
        retry_policy=retry_policy,
    )


def get_embedding_config_report() -> EmbeddingConfigReport:
    provider = settings.embedding_provider
    model = None
    if provider == "openai":
        model = settings.openai_embedding_model
    elif provider == "ollama":
        model = settings.ollama_embedding_model
    return build_embedding_config_report(provider, model, settings.embedding_dimension)


def build_embedder() -> EmbeddingBackend:
    provider = settings.embedding_provider.strip()
    if provider == "hash":
        return HashEmbedder(dimension=settings.embedding_dimension)
    if provider == "openai":
        return OpenAIEmbedder(
            api_key=settings.openai_api_key or "",
            model=settings.openai_embedding_model or "",
            dimension=settings.embedding_dimension,
            timeout=settings.embedding_timeout,
            base_url=settings.openai_base_url,
        )
    if provider == "ollama":
        if settings.embedding_dimension <= 0:
            raise EmbeddingConfigError("EMBEDDING_DIMENSION must be set for Ollama embeddings")
        if not settings.ollama_embedding_model:
            raise EmbeddingConfigError("OLLAMA_EMBEDDING_MODEL is required for Ollama embeddings")
        return OllamaEmbedder(
            base_url=settings.ollama_base_url.rstrip("/"),
            model=settings.ollama_embedding_model,
            dimension=settings.embedding_dimension,
            timeout=settings.embedding_timeout,
        )
    raise EmbeddingConfigError(f"Unsupported embedding provider: {provider}")


def build_chunk_store() -> ChunkStore:
    backend = settings.chunk_store_backend.strip()
    if backend == "sql":
        return SQLChunkStore(settings.chunk_store_uri)
    if backend != "memory":
        raise RuntimeError(f"Unsupported chunk store backend: {backend}")
    return InMemoryChunkStore()
