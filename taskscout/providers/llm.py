"""Async client for an OpenAI-compatible chat completions API.

Used by the planner and synthesizer. The client returns raw text only;
parsing and validation belong to the callers, which fall back to rule-based
output when the call or the parse fails.
"""

from __future__ import annotations

from typing import Any, Protocol

import httpx
import structlog

from taskscout.config import TaskscoutSettings, settings as default_settings
from taskscout.errors import ProviderError

logger = structlog.get_logger().bind(component="llm")


class LLMClient(Protocol):
    async def chat_simple(
        self,
        prompt: str,
        system: str = "",
        temperature: float = 0.7,
        max_tokens: int = 2048,
    ) -> str: ...

    async def close(self) -> None: ...


class OpenAICompatibleClient:
    """Thin httpx wrapper around ``POST {base_url}/chat/completions``."""

    def __init__(
        self,
        api_key: str,
        base_url: str = "https://api.openai.com/v1",
        model: str = "gpt-4o-mini",
        timeout: float = 60.0,
        *,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.api_key = api_key
        self.base_url = base_url.rstrip("/")
        self.model = model
        self.timeout = timeout
        self._transport = transport
        self._client: httpx.AsyncClient | None = None

    async def _get_client(self) -> httpx.AsyncClient:
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(
                base_url=self.base_url,
                timeout=self.timeout,
                headers={"Authorization": f"Bearer {self.api_key}"},
                transport=self._transport,
            )
        return self._client

    async def close(self) -> None:
        """Close the HTTP client."""
        if self._client and not self._client.is_closed:
            await self._client.aclose()
            self._client = None

    async def chat(
        self,
        messages: list[dict[str, str]],
        temperature: float = 0.7,
        max_tokens: int = 2048,
    ) -> dict[str, Any]:
        """Send a chat completion request and return the full response dict."""
        client = await self._get_client()
        payload = {
            "model": self.model,
            "messages": messages,
            "temperature": temperature,
            "max_tokens": max_tokens,
        }
        try:
            response = await client.post("/chat/completions", json=payload)
            response.raise_for_status()
        except httpx.HTTPError as exc:
            raise ProviderError("llm", str(exc) or type(exc).__name__) from exc

        result = response.json()
        logger.debug(
            "chat_completion",
            model=self.model,
            messages_count=len(messages),
            usage=result.get("usage"),
        )
        return result

    async def chat_simple(
        self,
        prompt: str,
        system: str = "",
        temperature: float = 0.7,
        max_tokens: int = 2048,
    ) -> str:
        """Convenience: send a simple prompt, get back just the text."""
        messages: list[dict[str, str]] = []
        if system:
            messages.append({"role": "system", "content": system})
        messages.append({"role": "user", "content": prompt})

        result = await self.chat(messages=messages, temperature=temperature, max_tokens=max_tokens)
        try:
            return result["choices"][0]["message"]["content"] or ""
        except (KeyError, IndexError, TypeError) as exc:
            raise ProviderError("llm", "malformed completion payload") from exc


def build_llm_client(config: TaskscoutSettings | None = None) -> OpenAICompatibleClient | None:
    """Return a configured client, or None when no API key is set."""
    config = config or default_settings
    if not config.llm_enabled:
        logger.info("llm_disabled", reason="no api key", fallback="rule_based")
        return None
    return OpenAICompatibleClient(
        api_key=config.llm_api_key,
        base_url=config.llm_base_url,
        model=config.llm_model,
        timeout=config.llm_timeout,
    )
