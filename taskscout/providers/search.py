"""Web search adapters.

Pure adapters: ``search(query, limit)`` returns raw results with no ranking
or summarisation. Any transport or payload problem surfaces as
``ProviderError``; the executor decides what a failed search means.
"""

from __future__ import annotations

import hashlib
import json
from typing import Any, Protocol

import httpx
import structlog

from taskscout.config import TaskscoutSettings, settings as default_settings
from taskscout.errors import ConfigurationError, ProviderError
from taskscout.models.research import RawSearchResult
from taskscout.utils.clock import month_year
from taskscout.utils.llm_json import extract_json_array

logger = structlog.get_logger().bind(component="search")


def _result_id(provider: str, index: int, url: str) -> str:
    digest = hashlib.sha1(url.encode()).hexdigest()[:10]
    return f"{provider}_{index}_{digest}"


class SearchClient(Protocol):
    name: str

    async def search(self, query: str, limit: int = 5) -> list[RawSearchResult]: ...

    async def close(self) -> None: ...


class _HttpSearchClient:
    """Shared httpx lifecycle for the HTTP-backed providers."""

    name = "http"

    def __init__(
        self,
        base_url: str,
        timeout: float = 30.0,
        *,
        headers: dict[str, str] | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self._headers = headers or {}
        self._transport = transport
        self._client: httpx.AsyncClient | None = None

    async def _get_client(self) -> httpx.AsyncClient:
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(
                base_url=self.base_url,
                timeout=self.timeout,
                headers=self._headers,
                transport=self._transport,
            )
        return self._client

    async def close(self) -> None:
        if self._client and not self._client.is_closed:
            await self._client.aclose()
            self._client = None

    async def _post(self, path: str, payload: dict[str, Any]) -> dict[str, Any]:
        client = await self._get_client()
        try:
            response = await client.post(path, json=payload)
            response.raise_for_status()
            return response.json()
        except httpx.HTTPStatusError as exc:
            raise ProviderError(
                self.name, f"HTTP {exc.response.status_code}: {exc.response.text[:200]}"
            ) from exc
        except (httpx.HTTPError, json.JSONDecodeError) as exc:
            raise ProviderError(self.name, str(exc) or type(exc).__name__) from exc


class TavilySearchClient(_HttpSearchClient):
    """https://tavily.com — ``POST /search``."""

    name = "tavily"

    def __init__(self, api_key: str, base_url: str = "https://api.tavily.com", **kwargs: Any) -> None:
        super().__init__(base_url, **kwargs)
        self.api_key = api_key

    async def search(self, query: str, limit: int = 5) -> list[RawSearchResult]:
        data = await self._post(
            "/search",
            {
                "api_key": self.api_key,
                "query": query,
                "max_results": limit,
                "search_depth": "basic",
                "include_answer": False,
                "include_raw_content": False,
            },
        )
        results = []
        for index, item in enumerate(data.get("results") or []):
            url = item.get("url") or ""
            results.append(
                RawSearchResult(
                    id=_result_id(self.name, index, url),
                    title=item.get("title") or "",
                    url=url,
                    snippet=item.get("content") or "",
                )
            )
        logger.debug("search_done", provider=self.name, query=query[:60], count=len(results))
        return results[:limit]


_PERPLEXITY_SYSTEM = (
    "You are a search engine that returns search results in JSON format. "
    "Return ONLY valid JSON, no other text."
)


class PerplexitySearchClient(_HttpSearchClient):
    """https://docs.perplexity.ai — chat completions with the ``sonar`` model.

    The model is asked to answer with a JSON array of {title, url, snippet}.
    """

    name = "perplexity"

    def __init__(
        self,
        api_key: str,
        base_url: str = "https://api.perplexity.ai",
        model: str = "sonar",
        **kwargs: Any,
    ) -> None:
        super().__init__(base_url, headers={"Authorization": f"Bearer {api_key}"}, **kwargs)
        self.model = model

    async def search(self, query: str, limit: int = 5) -> list[RawSearchResult]:
        prompt = (
            f'Search the web for: "{query}"\n\n'
            f"Return {limit} relevant search results in this EXACT JSON format:\n"
            '[{"title": "Page title", "url": "https://example.com", "snippet": "Relevant excerpt"}]\n\n'
            f"Return ONLY the JSON array. Prefer sources from {month_year()} or earlier this year."
        )
        data = await self._post(
            "/chat/completions",
            {
                "model": self.model,
                "messages": [
                    {"role": "system", "content": _PERPLEXITY_SYSTEM},
                    {"role": "user", "content": prompt},
                ],
                "temperature": 0.2,
                "max_tokens": 2000,
            },
        )
        try:
            content = data["choices"][0]["message"]["content"] or "[]"
            items = extract_json_array(content)
        except (KeyError, IndexError, TypeError, ValueError) as exc:
            raise ProviderError(self.name, f"invalid response format: {exc}") from exc

        results = []
        for index, item in enumerate(items[:limit]):
            if not isinstance(item, dict):
                continue
            url = str(item.get("url") or "")
            results.append(
                RawSearchResult(
                    id=_result_id(self.name, index, url),
                    title=str(item.get("title") or ""),
                    url=url,
                    snippet=str(item.get("snippet") or ""),
                )
            )
        logger.debug("search_done", provider=self.name, query=query[:60], count=len(results))
        return results


class MockSearchClient:
    """Deterministic offline results for development and tests."""

    name = "mock"

    async def search(self, query: str, limit: int = 5) -> list[RawSearchResult]:
        slug = hashlib.sha1(query.encode()).hexdigest()[:8]
        return [
            RawSearchResult(
                id=f"mock_{slug}_{i}",
                title=f'Mock Result {i + 1} for "{query}"',
                url=f"https://example.com/{slug}/result-{i + 1}",
                snippet=f"This is a mock search result snippet for query: {query}.",
            )
            for i in range(min(limit, 3))
        ]

    async def close(self) -> None:
        return None


def build_search_client(config: TaskscoutSettings | None = None) -> SearchClient:
    """Pick a search backend.

    ``auto`` prefers Perplexity, then Tavily, then the mock client.
    Naming a provider explicitly without its key is a configuration error.
    """
    config = config or default_settings
    choice = config.search_provider.lower()

    if choice in ("perplexity", "auto") and config.perplexity_api_key:
        logger.info("search_provider_selected", provider="perplexity")
        return PerplexitySearchClient(
            config.perplexity_api_key, config.perplexity_base_url, timeout=config.search_timeout
        )
    if choice in ("tavily", "auto") and config.tavily_api_key:
        logger.info("search_provider_selected", provider="tavily")
        return TavilySearchClient(config.tavily_api_key, config.tavily_base_url, timeout=config.search_timeout)
    if choice in ("perplexity", "tavily"):
        raise ConfigurationError(f"search_provider={choice} but its API key is not set")
    if choice not in ("auto", "mock"):
        raise ConfigurationError(f"unknown search_provider: {config.search_provider}")

    if choice == "auto":
        logger.warning("search_provider_selected", provider="mock", reason="no search api key configured")
    else:
        logger.info("search_provider_selected", provider="mock")
    return MockSearchClient()
