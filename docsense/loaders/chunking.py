from __future__ import annotations

"""Text normalization and chunking utilities (char and token based)."""

import logging
import re
from dataclasses import dataclass, field
from typing import Any

logger = logging.getLogger(__name__)

_WHITESPACE_RE = re.compile(r"\s+")


@dataclass(frozen=True)
class TextChunk:
    """Chunk of document text before embedding."""
    chunk_index: int
    content: str
    token_count: int | None = None
    metadata: dict[str, Any] = field(default_factory=dict)


def normalize_text(text: str) -> str:
    """Normalize whitespace and line endings in text."""
    return _WHITESPACE_RE.sub(" ", text.replace("\r\n", "\n")).strip()


def _resolve_overlap(size: int, overlap: int) -> int:
    if overlap < 0:
        return 0
    if overlap >= size:
        return max(0, size // 4)
    return overlap


def chunk_text(text: str, max_chars: int, overlap: int) -> list[TextChunk]:
    """Split text into overlapping character-based chunks."""
    cleaned = normalize_text(text)
    if not cleaned:
        return []
    if max_chars <= 0:
        return [
            TextChunk(
                chunk_index=0,
                content=cleaned,
                metadata={"char_start": 0, "char_end": len(cleaned)},
            )
        ]
    overlap = _resolve_overlap(max_chars, overlap)

    chunks: list[TextChunk] = []
    start = 0
    length = len(cleaned)
    while start < length:
        end = min(length, start + max_chars)
        content = cleaned[start:end].strip()
        if content:
            chunks.append(
                TextChunk(
                    chunk_index=len(chunks),
                    content=content,
                    metadata={"char_start": start, "char_end": end},
                )
            )
        if end >= length:
            break
        start = max(start + 1, end - overlap)
    return chunks


def chunk_text_tokens(
    text: str,
    max_tokens: int,
    overlap: int,
    encoding_name: str = "cl100k_base",
) -> list[TextChunk]:
    """Split text into overlapping token-based chunks."""
    cleaned = normalize_text(text)
    if not cleaned:
        return []
    import tiktoken

    encoding = tiktoken.get_encoding(encoding_name)
    tokens = encoding.encode(cleaned)
    if not tokens:
        return []
    if max_tokens <= 0:
        max_tokens = len(tokens)
    overlap = _resolve_overlap(max_tokens, overlap)

    chunks: list[TextChunk] = []
    start = 0
    length = len(tokens)
    while start < length:
        end = min(length, start + max_tokens)
        content = encoding.decode(tokens[start:end]).strip()
        if content:
            chunks.append(
                TextChunk(
                    chunk_index=len(chunks),
                    content=content,
                    token_count=end - start,
                    metadata={"token_start": start, "token_end": end},
                )
            )
        if end >= length:
            break
        start = max(start + 1, end - overlap)
    return chunks


def chunk_document(
    text: str,
    max_size: int,
    overlap: int,
    use_tokenizer: bool = True,
    encoding_name: str = "cl100k_base",
) -> list[TextChunk]:
    """Chunk document text into contiguous, 0-indexed chunks.

    ``max_size`` and ``overlap`` are measured in tokens when the tokenizer is
    enabled and in characters otherwise.
    """
    if use_tokenizer:
        chunks = chunk_text_tokens(
            text, max_tokens=max_size, overlap=overlap, encoding_name=encoding_name
        )
    else:
        chunks = chunk_text(text, max_chars=max_size, overlap=overlap)
    if chunks:
        sizes = [len(chunk.content) for chunk in chunks]
        logger.info(
            "chunking_complete",
            extra={
                "chunks": len(chunks),
                "avg_chars": round(sum(sizes) / len(sizes)),
                "tokenizer": use_tokenizer,
            },
        )
    return chunks
