from __future__ import annotations

"""Embedding providers, batching client and configuration validation."""

import asyncio
import hashlib
import logging
import math
import re
from dataclasses import dataclass, field
from typing import Any, Protocol, Sequence

import httpx

from docsense.rag.errors import UpstreamError
from docsense.rag.retry import RetryPolicy

logger = logging.getLogger(__name__)

_TOKEN_RE = re.compile(r"[a-z0-9]+")


class EmbeddingError(UpstreamError):
    """Raised when embeddings fail or are invalid."""
    pass


class EmbeddingConfigError(RuntimeError):
    """Raised when embedding configuration is invalid."""
    pass


@dataclass(frozen=True)
class IndexedEmbedding:
    """Provider result tagged with the position of its input in the batch."""
    index: int
    embedding: list[float]


class EmbeddingBackend(Protocol):
    """Protocol for providers that embed one batch per request."""
    dimension: int
    max_batch_size: int

    async def embed_batch(self, texts: list[str]) -> list[IndexedEmbedding]:
        """Embed a batch. Results may come back in any order."""
        raise NotImplementedError


def validate_vector(vector: Sequence[Any], dimension: int) -> list[float]:
    """Validate embedding vectors and coerce values to float."""
    if len(vector) != dimension:
        raise EmbeddingError(
            f"Embedding dimension mismatch: expected {dimension}, got {len(vector)}"
        )
    cleaned: list[float] = []
    for value in vector:
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            raise EmbeddingError("Embedding contains a non-numeric value")
        if not math.isfinite(value):
            raise EmbeddingError("Embedding contains a non-finite value")
        cleaned.append(float(value))
    return cleaned


@dataclass
class HashEmbedder:
    """Deterministic hash-based embedder for testing or offline use."""
    dimension: int = 256
    max_batch_size: int = 2048

    async def embed_batch(self, texts: list[str]) -> list[IndexedEmbedding]:
        return [
            IndexedEmbedding(index=idx, embedding=self.embed_text(text))
            for idx, text in enumerate(texts)
        ]

    def embed_text(self, text: str) -> list[float]:
        """Embed text using token hashing and L2 normalization."""
        tokens = _TOKEN_RE.findall(text.lower())
        vector = [0.0] * self.dimension
        for token in tokens:
            digest = hashlib.sha256(token.encode("utf-8")).digest()
            idx = int.from_bytes(digest[:4], "big") % self.dimension
            vector[idx] += 1.0
        norm = math.sqrt(sum(value * value for value in vector))
        if norm == 0.0:
            return vector
        return [value / norm for value in vector]


def resolve_openai_dimension(model: str) -> int | None:
    """Return expected dimension for OpenAI embedding model."""
    mapping = {
        "text-embedding-3-small": 1536,
        "text-embedding-3-large": 3072,
        "text-embedding-ada-002": 1536,
    }
    return mapping.get(model)


@dataclass
class OpenAIEmbedder:
    """Embedding backend using the OpenAI embeddings API."""
    api_key: str
    model: str
    dimension: int
    timeout: float = 30.0
    base_url: str | None = None
    max_batch_size: int = 2048
    client: Any = field(init=False, repr=False)

    def __post_init__(self) -> None:
        """Validate OpenAI configuration and create a client."""
        if not self.api_key:
            raise EmbeddingConfigError("OPENAI_API_KEY is required for OpenAIEmbedder")
        if not self.model:
            raise EmbeddingConfigError("OPENAI_EMBEDDING_MODEL is required for OpenAIEmbedder")
        resolved = resolve_openai_dimension(self.model)
        if self.dimension <= 0:
            if resolved is None:
                raise EmbeddingConfigError(
                    "EMBEDDING_DIMENSION must be set for OpenAI embeddings when model is unknown"
                )
            self.dimension = resolved
        elif resolved is not None and self.dimension != resolved:
            raise EmbeddingConfigError(
                f"EMBEDDING_DIMENSION should be {resolved} for model {self.model}"
            )
        try:
            from openai import AsyncOpenAI
        except ImportError as exc:
            raise EmbeddingConfigError("openai package is required for OpenAIEmbedder") from exc
        # Retries are owned by RetryPolicy, not the SDK.
        self.client = AsyncOpenAI(
            api_key=self.api_key,
            base_url=self.base_url,
            timeout=self.timeout,
            max_retries=0,
        )

    async def embed_batch(self, texts: list[str]) -> list[IndexedEmbedding]:
        import openai

        try:
            response = await self.client.embeddings.create(model=self.model, input=texts)
        except openai.APIStatusError as exc:
            raise EmbeddingError(str(exc), upstream_status=exc.status_code) from exc
        except openai.APIError as exc:
            raise EmbeddingError(str(exc)) from exc
        return [
            IndexedEmbedding(index=item.index, embedding=list(item.embedding))
            for item in response.data
        ]


@dataclass(frozen=True)
class OllamaEmbedder:
    """Embedding backend using the Ollama batch embed API."""
    base_url: str
    model: str
    dimension: int
    timeout: float = 30.0
    max_batch_size: int = 64

    async def embed_batch(self, texts: list[str]) -> list[IndexedEmbedding]:
        payload = {"model": self.model, "input": texts}
        try:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                response = await client.post(f"{self.base_url}/api/embed", json=payload)
                response.raise_for_status()
                data = response.json()
        except httpx.HTTPStatusError as exc:
            raise EmbeddingError(str(exc), upstream_status=exc.response.status_code) from exc
        except httpx.HTTPError as exc:
            raise EmbeddingError(str(exc)) from exc
        embeddings = data.get("embeddings")
        if not isinstance(embeddings, list):
            raise EmbeddingError("Ollama embedding response missing embeddings")
        # Ollama returns vectors in input order without explicit indices.
        return [
            IndexedEmbedding(index=idx, embedding=list(vector))
            for idx, vector in enumerate(embeddings)
        ]


@dataclass
class EmbeddingClient:
    """Order-preserving batched embedding client.

    Inputs are split into batches no larger than the configured batch size or
    the backend limit, whichever is smaller. Batches run concurrently under a
    semaphore; each batch is re-sorted by provider index and batches are
    concatenated in input order, so completion order never matters. The first
    failing batch cancels the rest and no queued batch reaches the provider.
    """
    backend: EmbeddingBackend
    batch_size: int = 64
    max_concurrency: int = 4
    retry_policy: RetryPolicy = field(default_factory=RetryPolicy)

    @property
    def dimension(self) -> int:
        return self.backend.dimension

    async def embed(self, texts: Sequence[str]) -> list[list[float]]:
        """Embed texts, returning one vector per input in input order."""
        if not texts:
            return []
        size = max(1, min(self.batch_size, self.backend.max_batch_size))
        batches = [list(texts[start : start + size]) for start in range(0, len(texts), size)]
        semaphore = asyncio.Semaphore(max(1, self.max_concurrency))
        failed = asyncio.Event()

        async def _run(batch: list[str]) -> list[list[float]]:
            async with semaphore:
                # A sibling batch already failed the whole call.
                if failed.is_set():
                    return []
                try:
                    return await self.retry_policy.run(
                        lambda: self._embed_batch(batch), name="embed_batch"
                    )
                except Exception:
                    failed.set()
                    raise

        tasks = [asyncio.ensure_future(_run(batch)) for batch in batches]
        try:
            results = await asyncio.gather(*tasks)
        except BaseException:
            for task in tasks:
                task.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)
            logger.warning(
                "embedding_failed",
                extra={"texts": len(texts), "batches": len(batches)},
            )
            raise
        vectors = [vector for batch_vectors in results for vector in batch_vectors]
        logger.info(
            "embedding_complete",
            extra={"texts": len(texts), "batches": len(batches)},
        )
        return vectors

    async def embed_one(self, text: str) -> list[float]:
        """Embed a single text."""
        vectors = await self.embed([text])
        return vectors[0]

    async def _embed_batch(self, batch: list[str]) -> list[list[float]]:
        items = await self.backend.embed_batch(batch)
        if len(items) != len(batch):
            raise EmbeddingError(
                f"Embedding count mismatch: sent {len(batch)}, received {len(items)}"
            )
        ordered = sorted(items, key=lambda item: item.index)
        if [item.index for item in ordered] != list(range(len(batch))):
            raise EmbeddingError("Embedding response indices do not match the request")
        return [validate_vector(item.embedding, self.dimension) for item in ordered]


@dataclass(frozen=True)
class EmbeddingConfigReport:
    """Validation report for embedding configuration."""
    provider: str
    model: str | None
    configured_dimension: int
    expected_dimension: int | None
    ok: bool
    status: str
    detail: str | None = None
    action: str | None = None


def build_embedding_config_report(
    provider: str, model: str | None, dimension: int
) -> EmbeddingConfigReport:
    """Build a validation report for embedding settings."""
    normalized = provider.lower().strip() or "hash"

    def _report(
        ok: bool,
        status: str,
        expected: int | None,
        detail: str | None = None,
        action: str | None = None,
    ) -> EmbeddingConfigReport:
        return EmbeddingConfigReport(
            provider=normalized,
            model=None if normalized == "hash" else model,
            configured_dimension=dimension,
            expected_dimension=expected,
            ok=ok,
            status=status,
            detail=detail,
            action=action,
        )

    if normalized == "hash":
        if dimension <= 0:
            return _report(
                False,
                "error",
                None,
                "EMBEDDING_DIMENSION must be greater than zero for hash embeddings.",
                "Set EMBEDDING_DIMENSION to a positive integer.",
            )
        return _report(True, "ok", dimension)

    if normalized not in {"openai", "ollama"}:
        return _report(
            False,
            "error",
            None,
            "Unsupported embedding provider.",
            "Set EMBEDDING_PROVIDER to hash, openai, or ollama.",
        )

    if not model:
        variable = "OPENAI_EMBEDDING_MODEL" if normalized == "openai" else "OLLAMA_EMBEDDING_MODEL"
        return _report(
            False,
            "error",
            None,
            f"{variable} is required for {normalized} embeddings.",
            f"Set {variable} in .env.",
        )
    expected = resolve_openai_dimension(model) if normalized == "openai" else None
    if dimension <= 0:
        action = (
            f"Set EMBEDDING_DIMENSION to {expected}."
            if expected is not None
            else "Set EMBEDDING_DIMENSION based on the model documentation."
        )
        return _report(
            False, "error", expected, "EMBEDDING_DIMENSION is missing for the configured model.", action
        )
    if expected is not None and dimension != expected:
        return _report(
            False,
            "error",
            expected,
            "EMBEDDING_DIMENSION does not match the model dimension.",
            f"Set EMBEDDING_DIMENSION to {expected}.",
        )
    if expected is None:
        return _report(
            True,
            "warning",
            None,
            "Model dimension cannot be auto-validated. Confirm EMBEDDING_DIMENSION manually.",
        )
    return _report(True, "ok", expected)
