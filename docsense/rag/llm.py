from __future__ import annotations

"""Chat model clients and JSON response handling."""

import json
import logging
import re
from dataclasses import dataclass, field
from typing import Any, Protocol

import httpx

from docsense.rag.errors import UpstreamError
from docsense.rag.retry import RetryPolicy


class LLMError(UpstreamError):
    """Raised when LLM requests fail or responses are invalid."""
    pass


logger = logging.getLogger(__name__)

_FENCE_RE = re.compile(r"^```(?:json)?\s*(.*?)\s*```$", flags=re.DOTALL)


class ChatModel(Protocol):
    """Protocol for single-turn chat completion backends."""

    async def complete(
        self,
        system_prompt: str,
        user_prompt: str,
        *,
        temperature: float,
        max_tokens: int,
        json_mode: bool = False,
    ) -> str:
        """Return the raw text content of one completion."""
        raise NotImplementedError


def _transport_error(exc: httpx.HTTPError) -> LLMError:
    if isinstance(exc, httpx.HTTPStatusError):
        return LLMError(str(exc), upstream_status=exc.response.status_code)
    return LLMError(str(exc))


@dataclass(frozen=True)
class OpenAIChatModel:
    """Chat model backed by OpenAI-compatible chat completions."""
    api_key: str
    base_url: str
    model: str
    timeout: float
    retry_policy: RetryPolicy = field(default_factory=RetryPolicy)

    async def complete(
        self,
        system_prompt: str,
        user_prompt: str,
        *,
        temperature: float,
        max_tokens: int,
        json_mode: bool = False,
    ) -> str:
        payload: dict[str, Any] = {
            "model": self.model,
            "messages": [
                {"role": "system", "content": system_prompt},
                {"role": "user", "content": user_prompt},
            ],
            "temperature": temperature,
            "max_tokens": max_tokens,
        }
        if json_mode:
            payload["response_format"] = {"type": "json_object"}
        headers = {"Authorization": f"Bearer {self.api_key}"}

        async def _request() -> dict[str, Any]:
            try:
                async with httpx.AsyncClient(timeout=self.timeout) as client:
                    response = await client.post(
                        f"{self.base_url}/chat/completions",
                        json=payload,
                        headers=headers,
                    )
                    response.raise_for_status()
                    return response.json()
            except httpx.HTTPError as exc:
                raise _transport_error(exc) from exc

        data = await self.retry_policy.run(_request, name="openai_chat")
        choices = data.get("choices") or []
        if not choices:
            raise LLMError("Invalid OpenAI response")
        message = choices[0].get("message") or {}
        content = message.get("content")
        if not isinstance(content, str):
            raise LLMError("Invalid OpenAI response content")
        return content


@dataclass(frozen=True)
class OllamaChatModel:
    """Chat model backed by the Ollama chat API."""
    base_url: str
    model: str
    timeout: float
    retry_policy: RetryPolicy = field(default_factory=RetryPolicy)

    async def complete(
        self,
        system_prompt: str,
        user_prompt: str,
        *,
        temperature: float,
        max_tokens: int,
        json_mode: bool = False,
    ) -> str:
        payload: dict[str, Any] = {
            "model": self.model,
            "messages": [
                {"role": "system", "content": system_prompt},
                {"role": "user", "content": user_prompt},
            ],
            "stream": False,
            "options": {
                "temperature": temperature,
                "num_predict": max_tokens,
            },
        }
        if json_mode:
            payload["format"] = "json"

        async def _request() -> dict[str, Any]:
            try:
                async with httpx.AsyncClient(timeout=self.timeout) as client:
                    response = await client.post(f"{self.base_url}/api/chat", json=payload)
                    response.raise_for_status()
                    return response.json()
            except httpx.HTTPError as exc:
                raise _transport_error(exc) from exc

        data = await self.retry_policy.run(_request, name="ollama_chat")
        message = data.get("message") or {}
        content = message.get("content")
        if not isinstance(content, str):
            raise LLMError("Invalid LLM response")
        return content


def build_chat_model(
    provider: str,
    *,
    api_key_openai: str | None,
    openai_base_url: str,
    openai_model: str | None,
    ollama_base_url: str,
    ollama_model: str,
    timeout: float,
    retry_policy: RetryPolicy,
) -> OpenAIChatModel | OllamaChatModel:
    """Factory for chat models based on provider."""
    normalized = provider.lower().strip()
    if normalized == "openai":
        if not api_key_openai or not openai_model:
            raise LLMError("OPENAI_API_KEY and OPENAI_MODEL are required for provider openai")
        return OpenAIChatModel(
            api_key=api_key_openai,
            base_url=openai_base_url.rstrip("/"),
            model=openai_model,
            timeout=timeout,
            retry_policy=retry_policy,
        )
    if normalized == "ollama":
        return OllamaChatModel(
            base_url=ollama_base_url.rstrip("/"),
            model=ollama_model,
            timeout=timeout,
            retry_policy=retry_policy,
        )
    raise LLMError(f"Unsupported LLM provider: {provider}")


def parse_json_response(content: str) -> dict[str, Any] | list[Any]:
    """Parse a JSON object or array from model output."""
    text = content.strip()
    fenced = _FENCE_RE.match(text)
    if fenced:
        text = fenced.group(1)
    try:
        data = json.loads(text)
        if isinstance(data, (dict, list)):
            return data
    except json.JSONDecodeError:
        pass
    for pattern in (r"\{.*\}", r"\[.*\]"):
        match = re.search(pattern, text, flags=re.DOTALL)
        if not match:
            continue
        try:
            data = json.loads(match.group(0))
            if isinstance(data, (dict, list)):
                return data
        except json.JSONDecodeError:
            continue
    raise LLMError("LLM response is not valid JSON")


def _is_json_parse_error(exc: Exception) -> bool:
    """Return True when an exception indicates invalid JSON output."""
    return isinstance(exc, LLMError) and "valid JSON" in str(exc)


def _strict_system_prompt(base_prompt: str) -> str:
    """Return a stricter system prompt for JSON-only retries."""
    return (
        f"{base_prompt} "
        "Return a single JSON value and nothing else. "
        "Do not use markdown or code fences."
    )


async def complete_json(
    model: ChatModel,
    system_prompt: str,
    user_prompt: str,
    *,
    temperature: float,
    max_tokens: int,
    purpose: str,
) -> dict[str, Any] | list[Any]:
    """Request JSON output, retrying once with a stricter prompt on parse failure."""
    content = await model.complete(
        system_prompt,
        user_prompt,
        temperature=temperature,
        max_tokens=max_tokens,
        json_mode=True,
    )
    try:
        return parse_json_response(content)
    except LLMError as exc:
        if not _is_json_parse_error(exc):
            raise
        logger.warning("llm_json_retry", extra={"purpose": purpose})
    content = await model.complete(
        _strict_system_prompt(system_prompt),
        user_prompt,
        temperature=temperature,
        max_tokens=max_tokens,
        json_mode=True,
    )
    return parse_json_response(content)
