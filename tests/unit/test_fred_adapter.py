"""
============================================================================
Unit Tests - FRED Adapter
============================================================================

Reliability Level: L6 Critical
Test Coverage: Latest observation parsing, "." sentinel, invalid key
               reported as HTTP 400, unknown series
============================================================================
"""

from decimal import Decimal

import httpx
import pytest

from market_aggregator.adapters.fred_adapter import FredAdapter
from market_aggregator.error_classifier import ErrorKind
from market_aggregator.schemas import AdapterFailure, AdapterSuccess
from market_fakes import route_transport


OBSERVATIONS = "/series/observations"


def make_adapter(body, seen=None):
    client = httpx.AsyncClient(transport=route_transport({OBSERVATIONS: body}, seen))
    return FredAdapter(client=client, correlation_id="TEST-FRED"), client


class TestFredAdapter:
    """Tests for the series observations call."""

    @pytest.mark.asyncio
    async def test_latest_observation(self):
        seen = []
        body = {"observations": [{"date": "2024-02-01", "value": "5.33"}]}
        adapter, client = make_adapter(body, seen)
        async with client:
            outcome = await adapter.fetch("FEDFUNDS", "1D", "fred-key")

        assert isinstance(outcome, AdapterSuccess)
        assert outcome.error is None
        assert outcome.fields.rate == Decimal("5.33")
        assert outcome.fields.series_id == "FEDFUNDS"
        assert outcome.fields.last_updated == "2024-02-01"

        params = seen[0].url.params
        assert params.get("series_id") == "FEDFUNDS"
        assert params.get("api_key") == "fred-key"
        assert params.get("sort_order") == "desc"
        assert params.get("limit") == "1"

    @pytest.mark.asyncio
    async def test_zero_rate_is_a_rate(self):
        body = {"observations": [{"date": "2024-02-01", "value": "0.00"}]}
        adapter, client = make_adapter(body)
        async with client:
            outcome = await adapter.fetch("BOJDPBAL", "1D", "fred-key")

        assert isinstance(outcome, AdapterSuccess)
        assert outcome.fields.rate == Decimal("0")

    @pytest.mark.asyncio
    async def test_dot_sentinel_is_no_data(self):
        body = {"observations": [{"date": "2024-03-01", "value": "."}]}
        adapter, client = make_adapter(body)
        async with client:
            outcome = await adapter.fetch("ECBDFR", "1D", "fred-key")

        assert isinstance(outcome, AdapterFailure)
        assert outcome.error.kind == ErrorKind.NOT_FOUND
        assert outcome.error.message == "FRED: Valid rate not found for ECBDFR. Last value: '.'."

    @pytest.mark.asyncio
    async def test_no_observations(self):
        adapter, client = make_adapter({"observations": []})
        async with client:
            outcome = await adapter.fetch("FEDFUNDS", "1D", "fred-key")

        assert outcome.error.kind == ErrorKind.NOT_FOUND
        assert outcome.error.message == "FRED API Error for FEDFUNDS: No observations found."

    @pytest.mark.asyncio
    async def test_unregistered_key_is_unauthorized(self):
        body = {
            "error_code": 400,
            "error_message": "Bad Request.  The value for variable api_key is not registered.  "
                             "Read https://fred.stlouisfed.org/docs/api/api_key.html for more information.",
        }
        adapter, client = make_adapter((400, body))
        async with client:
            outcome = await adapter.fetch("FEDFUNDS", "1D", "bad-key")

        assert isinstance(outcome, AdapterFailure)
        assert outcome.error.kind == ErrorKind.UNAUTHORIZED
        assert outcome.error.message == "Invalid FRED API Key."
        assert outcome.error.is_provider_specific is True

    @pytest.mark.asyncio
    async def test_unknown_series_is_not_found(self):
        body = {"error_code": 400, "error_message": "Bad Request.  The series does not exist."}
        adapter, client = make_adapter((400, body))
        async with client:
            outcome = await adapter.fetch("NOPE", "1D", "fred-key")

        assert outcome.error.kind == ErrorKind.NOT_FOUND
        assert outcome.error.message.startswith("FRED API Error for NOPE:")

    @pytest.mark.asyncio
    async def test_server_error_is_network(self):
        adapter, client = make_adapter((503, "Service Unavailable"))
        async with client:
            outcome = await adapter.fetch("FEDFUNDS", "1D", "fred-key")

        assert outcome.error.kind == ErrorKind.NETWORK_ERROR
