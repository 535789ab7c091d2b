from __future__ import annotations

import json
import os
from dataclasses import dataclass

from dotenv import load_dotenv

load_dotenv()


def _flag(name: str, default: str) -> bool:
    return os.getenv(name, default).lower() in {"1", "true", "yes"}


@dataclass(frozen=True)
class Settings:
    environment: str = os.getenv("RAG_ENV", "production")
    log_level: str = os.getenv("RAG_LOG_LEVEL", "INFO")
    chunk_size: int = int(os.getenv("RAG_CHUNK_SIZE", "1200"))
    chunk_overlap: int = int(os.getenv("RAG_CHUNK_OVERLAP", "150"))
    disable_tiktoken_raw: str = os.getenv("RAG_DISABLE_TIKTOKEN", "false")
    tiktoken_encoding: str = os.getenv("RAG_TIKTOKEN_ENCODING", "cl100k_base")
    chunk_store_backend_raw: str = os.getenv("RAG_CHUNK_STORE", "memory")
    chunk_store_uri_raw: str = os.getenv("RAG_CHUNK_STORE_URI", "sqlite:///docsense.db")
    embedding_provider_raw: str = os.getenv("EMBEDDING_PROVIDER", "hash")
    embedding_dimension: int = int(os.getenv("EMBEDDING_DIMENSION", "256"))
    embedding_batch_size: int = int(os.getenv("RAG_EMBEDDING_BATCH_SIZE", "64"))
    embedding_concurrency: int = int(os.getenv("RAG_EMBEDDING_CONCURRENCY", "4"))
    embedding_timeout: float = float(os.getenv("RAG_EMBEDDING_TIMEOUT", "30"))
    openai_api_key: str | None = os.getenv("OPENAI_API_KEY")
    openai_base_url: str = os.getenv("OPENAI_BASE_URL", "https://api.openai.com/v1")
    openai_embedding_model: str | None = os.getenv("OPENAI_EMBEDDING_MODEL")
    openai_model: str | None = os.getenv("OPENAI_MODEL", "gpt-4o")
    ollama_base_url: str = os.getenv("OLLAMA_BASE_URL", "http://localhost:11434")
    ollama_model: str = os.getenv("OLLAMA_MODEL", "llama3.1")
    ollama_embedding_model: str | None = os.getenv("OLLAMA_EMBEDDING_MODEL")
    answerer_mode_raw: str = os.getenv("RAG_ANSWERER", "llm")
    llm_provider_raw: str = os.getenv("RAG_LLM_PROVIDER", "openai")
    llm_timeout: float = float(os.getenv("RAG_LLM_TIMEOUT", "60"))
    llm_context_max_chars: int = int(os.getenv("RAG_LLM_CONTEXT_MAX_CHARS", "12000"))
    chat_temperature: float = float(os.getenv("RAG_CHAT_TEMPERATURE", "0.7"))
    chat_max_tokens: int = int(os.getenv("RAG_CHAT_MAX_TOKENS", "1000"))
    validation_temperature: float = float(os.getenv("RAG_VALIDATION_TEMPERATURE", "0.3"))
    validation_max_tokens: int = int(os.getenv("RAG_VALIDATION_MAX_TOKENS", "4000"))
    insights_temperature: float = float(os.getenv("RAG_INSIGHTS_TEMPERATURE", "0.6"))
    insights_max_tokens: int = int(os.getenv("RAG_INSIGHTS_MAX_TOKENS", "5500"))
    retry_max_attempts: int = int(os.getenv("RAG_RETRY_MAX_ATTEMPTS", "3"))
    retry_initial_delay: float = float(os.getenv("RAG_RETRY_INITIAL_DELAY", "0.5"))
    retry_max_delay: float = float(os.getenv("RAG_RETRY_MAX_DELAY", "8"))
    chat_default_limit: int = int(os.getenv("RAG_CHAT_DEFAULT_LIMIT", "5"))
    chat_default_threshold: float = float(os.getenv("RAG_CHAT_DEFAULT_THRESHOLD", "0.15"))
    chat_max_limit: int = int(os.getenv("RAG_CHAT_MAX_LIMIT", "50"))
    search_default_top_k: int = int(os.getenv("RAG_SEARCH_DEFAULT_TOP_K", "8"))
    search_default_min_similarity: float = float(os.getenv("RAG_SEARCH_DEFAULT_MIN_SIMILARITY", "0.2"))
    analysis_cache_ttl: float = float(os.getenv("RAG_ANALYSIS_CACHE_TTL", "86400"))
    analysis_cache_max_entries: int = int(os.getenv("RAG_ANALYSIS_CACHE_MAX_ENTRIES", "500"))
    metrics_enabled: bool = _flag("RAG_METRICS_ENABLED", "true")
    api_keys_raw: str = os.getenv("RAG_API_KEYS", "")
    api_key_map_raw: str = os.getenv("RAG_API_KEY_MAP", "")
    allow_anonymous_raw: str = os.getenv("RAG_ALLOW_ANONYMOUS", "false")
    default_user_id: str = os.getenv("RAG_DEFAULT_USER_ID", "anonymous")

    @property
    def is_development(self) -> bool:
        return os.getenv("RAG_ENV", self.environment).lower() in {"dev", "development"}

    @property
    def use_tokenizer(self) -> bool:
        raw = os.getenv("RAG_DISABLE_TIKTOKEN", self.disable_tiktoken_raw)
        return raw.lower() not in {"1", "true", "yes"}

    @property
    def chunk_store_backend(self) -> str:
        return os.getenv("RAG_CHUNK_STORE", self.chunk_store_backend_raw).lower()

    @property
    def chunk_store_uri(self) -> str:
        return os.getenv("RAG_CHUNK_STORE_URI", self.chunk_store_uri_raw)

    @property
    def embedding_provider(self) -> str:
        return os.getenv("EMBEDDING_PROVIDER", self.embedding_provider_raw).lower()

    @property
    def answerer_mode(self) -> str:
        return os.getenv("RAG_ANSWERER", self.answerer_mode_raw).lower()

    @property
    def llm_provider(self) -> str:
        return os.getenv("RAG_LLM_PROVIDER", self.llm_provider_raw).lower()

    @property
    def allow_anonymous(self) -> bool:
        raw = os.getenv("RAG_ALLOW_ANONYMOUS", self.allow_anonymous_raw)
        return raw.lower() in {"1", "true", "yes"}

    @property
    def api_keys(self) -> set[str]:
        raw = os.getenv("RAG_API_KEYS", self.api_keys_raw)
        return {value.strip() for value in raw.split(",") if value.strip()}

    @property
    def api_key_map(self) -> dict[str, str]:
        """Map of API key to the user id it authenticates as."""
        raw = os.getenv("RAG_API_KEY_MAP", self.api_key_map_raw).strip()
        if not raw:
            return {}
        try:
            data = json.loads(raw)
        except json.JSONDecodeError:
            return {}
        if not isinstance(data, dict):
            return {}
        result: dict[str, str] = {}
        for key, value in data.items():
            if not isinstance(key, str):
                continue
            if isinstance(value, str) and value.strip():
                result[key] = value.strip()
            elif isinstance(value, dict) and isinstance(value.get("user_id"), str):
                result[key] = value["user_id"]
        return result


settings = Settings()
