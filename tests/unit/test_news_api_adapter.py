"""
============================================================================
Unit Tests - NewsAPI.org Adapter
============================================================================

Reliability Level: L6 Critical
Test Coverage: Headline parsing and filtering, query parameters, invalid
               key / rate limit statuses, error bodies, empty results
============================================================================
"""

import httpx
import pytest

from market_aggregator.adapters.news_api_adapter import NewsApiAdapter
from market_aggregator.error_classifier import ErrorKind
from market_aggregator.schemas import AdapterFailure, AdapterSuccess
from market_fakes import route_transport


EVERYTHING = "/v2/everything"
QUERY = '(EUR/USD OR "euro dollar") AND (forex OR currency)'


def make_adapter(body, seen=None):
    client = httpx.AsyncClient(transport=route_transport({EVERYTHING: body}, seen))
    return NewsApiAdapter(client=client, correlation_id="TEST-NEWS"), client


def articles(*titles):
    return {"status": "ok", "totalResults": len(titles), "articles": [{"title": t} for t in titles]}


class TestNewsApiAdapter:
    """Tests for the 'everything' search call."""

    @pytest.mark.asyncio
    async def test_headlines_and_query_parameters(self):
        seen = []
        adapter, client = make_adapter(articles("ECB holds rates", "Dollar slips after CPI"), seen)
        async with client:
            outcome = await adapter.fetch(QUERY, "1D", "news-key")

        assert isinstance(outcome, AdapterSuccess)
        assert outcome.error is None
        assert outcome.fields.headlines == ("ECB holds rates", "Dollar slips after CPI")

        params = seen[0].url.params
        assert params.get("q") == QUERY
        assert params.get("apiKey") == "news-key"
        assert params.get("language") == "en"
        assert params.get("sortBy") == "relevancy"
        assert params.get("pageSize") == "7"

    @pytest.mark.asyncio
    async def test_blank_titles_are_dropped(self):
        body = articles("  Gold rallies  ", "", "   ")
        body["articles"].append({"description": "no title at all"})
        adapter, client = make_adapter(body)
        async with client:
            outcome = await adapter.fetch(QUERY, "1D", "news-key")

        assert isinstance(outcome, AdapterSuccess)
        assert outcome.fields.headlines == ("Gold rallies",)

    @pytest.mark.asyncio
    async def test_only_blank_titles_is_not_found(self):
        adapter, client = make_adapter(articles("", "  "))
        async with client:
            outcome = await adapter.fetch(QUERY, "1D", "news-key")

        assert isinstance(outcome, AdapterFailure)
        assert outcome.error.kind == ErrorKind.NOT_FOUND
        assert outcome.error.message == "NewsAPI.org: No usable headlines found after filtering."

    @pytest.mark.asyncio
    async def test_no_articles_is_not_found(self):
        adapter, client = make_adapter(articles())
        async with client:
            outcome = await adapter.fetch(QUERY, "1D", "news-key")

        assert isinstance(outcome, AdapterFailure)
        assert outcome.error.kind == ErrorKind.NOT_FOUND
        assert QUERY in outcome.error.message
        assert outcome.error.is_provider_specific is True

    @pytest.mark.asyncio
    async def test_invalid_key(self):
        body = (401, {"status": "error", "code": "apiKeyInvalid", "message": "Your API key is invalid."})
        adapter, client = make_adapter(body)
        async with client:
            outcome = await adapter.fetch(QUERY, "1D", "bad-key")

        assert isinstance(outcome, AdapterFailure)
        assert outcome.error.kind == ErrorKind.UNAUTHORIZED
        assert outcome.error.message == "Invalid NewsAPI.org API Key."

    @pytest.mark.asyncio
    async def test_rate_limited(self):
        body = (429, {"status": "error", "code": "rateLimited", "message": "Too many requests."})
        adapter, client = make_adapter(body)
        async with client:
            outcome = await adapter.fetch(QUERY, "1D", "news-key")

        assert isinstance(outcome, AdapterFailure)
        assert outcome.error.kind == ErrorKind.RATE_LIMITED
        assert outcome.error.message == "NewsAPI.org rate limit exceeded."

    @pytest.mark.asyncio
    async def test_error_status_in_200_body(self):
        body = {"status": "error", "code": "apiKeyDisabled", "message": "Your API key has been disabled."}
        adapter, client = make_adapter(body)
        async with client:
            outcome = await adapter.fetch(QUERY, "1D", "news-key")

        assert isinstance(outcome, AdapterFailure)
        assert outcome.error.kind == ErrorKind.UNAUTHORIZED
        assert "Your API key has been disabled." in outcome.error.message

    @pytest.mark.asyncio
    async def test_server_error_keeps_generic_classification(self):
        adapter, client = make_adapter((503, {"message": "unavailable"}))
        async with client:
            outcome = await adapter.fetch(QUERY, "1D", "news-key")

        assert isinstance(outcome, AdapterFailure)
        assert outcome.error.kind == ErrorKind.NETWORK_ERROR
