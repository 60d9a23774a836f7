"""Search adapters against MockTransport, plus backend selection."""

from __future__ import annotations

import json

import httpx
import pytest

from taskscout.config import TaskscoutSettings
from taskscout.errors import ConfigurationError, ProviderError
from taskscout.providers.search import (
    MockSearchClient,
    PerplexitySearchClient,
    TavilySearchClient,
    build_search_client,
)


def _settings(**overrides) -> TaskscoutSettings:
    return TaskscoutSettings(_env_file=None, **overrides)


# ─────────────────────────────────────────────────────────────────────────────
# 1. Tavily
# ─────────────────────────────────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_tavily_maps_results():
    sent: list[dict] = []

    def handler(request: httpx.Request) -> httpx.Response:
        sent.append(json.loads(request.content))
        return httpx.Response(
            200,
            json={
                "results": [
                    {"title": "A", "url": "https://a.com", "content": "alpha"},
                    {"title": "B", "url": "https://b.com", "content": "beta"},
                ]
            },
        )

    client = TavilySearchClient("tv-key", transport=httpx.MockTransport(handler))
    results = await client.search("ev charging", limit=1)
    await client.close()

    assert [r.url for r in results] == ["https://a.com"]
    assert results[0].snippet == "alpha"
    assert results[0].id.startswith("tavily_0_")
    assert sent[0]["api_key"] == "tv-key"
    assert sent[0]["max_results"] == 1


@pytest.mark.asyncio
async def test_tavily_http_error_is_provider_error():
    client = TavilySearchClient("k", transport=httpx.MockTransport(lambda r: httpx.Response(429, text="slow down")))
    with pytest.raises(ProviderError) as exc_info:
        await client.search("q")
    assert "429" in str(exc_info.value)
    await client.close()


# ─────────────────────────────────────────────────────────────────────────────
# 2. Perplexity
# ─────────────────────────────────────────────────────────────────────────────

def _completion(content: str) -> httpx.Response:
    return httpx.Response(200, json={"choices": [{"message": {"content": content}}]})


@pytest.mark.asyncio
async def test_perplexity_parses_fenced_json():
    content = 'Results:\n```json\n[{"title": "A", "url": "https://a.com", "snippet": "alpha"}, "junk"]\n```'
    seen: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return _completion(content)

    client = PerplexitySearchClient("px-key", transport=httpx.MockTransport(handler))
    results = await client.search("ev charging")
    await client.close()

    assert [(r.title, r.url) for r in results] == [("A", "https://a.com")]
    assert seen[0].headers["Authorization"] == "Bearer px-key"
    assert json.loads(seen[0].content)["model"] == "sonar"


@pytest.mark.asyncio
async def test_perplexity_unparseable_content_is_provider_error():
    client = PerplexitySearchClient("k", transport=httpx.MockTransport(lambda r: _completion("no results today")))
    with pytest.raises(ProviderError):
        await client.search("q")
    await client.close()


# ─────────────────────────────────────────────────────────────────────────────
# 3. Mock client and selection
# ─────────────────────────────────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_mock_client_is_deterministic():
    client = MockSearchClient()
    first = await client.search("vector databases", limit=5)
    second = await client.search("vector databases", limit=5)
    assert first == second
    assert len(first) == 3


def test_auto_prefers_perplexity_then_tavily_then_mock():
    assert build_search_client(_settings(perplexity_api_key="p", tavily_api_key="t")).name == "perplexity"
    assert build_search_client(_settings(tavily_api_key="t")).name == "tavily"
    assert build_search_client(_settings()).name == "mock"


def test_named_provider_without_key_is_config_error():
    with pytest.raises(ConfigurationError):
        build_search_client(_settings(search_provider="tavily"))


def test_unknown_provider_is_config_error():
    with pytest.raises(ConfigurationError):
        build_search_client(_settings(search_provider="bing"))
