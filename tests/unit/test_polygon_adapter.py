"""
============================================================================
Unit Tests - Polygon.io Adapter
============================================================================

Reliability Level: L6 Critical
Test Coverage: Full fan-in, partial data, snapshot 404 downgrade,
               auth failure, transport errors
============================================================================
"""

from datetime import datetime, timezone
from decimal import Decimal

import httpx
import pytest

from market_aggregator.adapters.polygon_adapter import PolygonAdapter
from market_aggregator.error_classifier import ErrorKind
from market_aggregator.schemas import (
    AdapterFailure,
    AdapterSuccess,
    MarketStatus,
)
from market_fakes import route_transport


NOW = datetime(2024, 3, 15, 12, 0, tzinfo=timezone.utc)

PRICE_BODY = {"status": "OK", "results": [{"c": 1.0853, "t": 1710460800000}]}
RSI_BODY = {"status": "OK", "results": {"values": [{"timestamp": 1710460800000, "value": 45.2}]}}
MACD_BODY = {
    "status": "OK",
    "results": {"values": [{"value": 0.0012, "signal": 0.0008, "histogram": 0.0004}]},
}
HISTORY_BODY = {
    "status": "OK",
    "results": [
        {"c": 1.0850, "t": 1710374400000},
        {"c": 1.0840, "t": 1710288000000},
        {"c": 1.0853, "t": 1710460800000},
    ],
}
SNAPSHOT_BODY = {
    "status": "OK",
    "ticker": {"marketStatus": "open", "lastTrade": {"t": 1710504000000000000}},
}


def full_routes(**overrides):
    routes = {
        "/prev": PRICE_BODY,
        "~/indicators/rsi/": RSI_BODY,
        "~/indicators/macd/": MACD_BODY,
        "~/range/": HISTORY_BODY,
        "~/snapshot/": SNAPSHOT_BODY,
    }
    for key, value in overrides.items():
        routes[key] = value
    return routes


def make_adapter(routes, seen=None):
    client = httpx.AsyncClient(transport=route_transport(routes, seen))
    return PolygonAdapter(client=client, correlation_id="TEST-POLY", now=NOW), client


# =============================================================================
# Fan-in
# =============================================================================

class TestPolygonFetch:
    """Tests for the five concurrent sub-calls."""

    @pytest.mark.asyncio
    async def test_full_success(self):
        seen = []
        adapter, client = make_adapter(full_routes(), seen)
        async with client:
            outcome = await adapter.fetch("C:EURUSD", "1D", "poly-key")

        assert isinstance(outcome, AdapterSuccess)
        assert outcome.error is None
        assert outcome.fields.price == Decimal("1.0853")
        assert outcome.fields.rsi == Decimal("45.2")
        assert outcome.fields.macd.value == Decimal("0.0012")
        assert outcome.fields.macd.signal == Decimal("0.0008")
        assert outcome.fields.macd.histogram == Decimal("0.0004")
        assert outcome.fields.market_status == MarketStatus.OPEN
        assert outcome.fields.last_trade_timestamp == datetime(2024, 3, 15, 12, 0, tzinfo=timezone.utc)
        assert len(seen) == 5

    @pytest.mark.asyncio
    async def test_history_sorted_ascending(self):
        adapter, client = make_adapter(full_routes())
        async with client:
            outcome = await adapter.fetch("C:EURUSD", "1D", "poly-key")

        prices = [point.price for point in outcome.fields.historical]
        assert prices == [Decimal("1.084"), Decimal("1.085"), Decimal("1.0853")]

    @pytest.mark.asyncio
    async def test_credential_sent_as_query_parameter(self):
        seen = []
        adapter, client = make_adapter(full_routes(), seen)
        async with client:
            await adapter.fetch("C:EURUSD", "1H", "poly-key")

        assert all(request.url.params.get("apiKey") == "poly-key" for request in seen)

    @pytest.mark.asyncio
    async def test_history_window_in_path(self):
        seen = []
        adapter, client = make_adapter(full_routes(), seen)
        async with client:
            await adapter.fetch("C:EURUSD", "1D", "poly-key")

        history = [r for r in seen if "/range/" in r.url.path][0]
        assert history.url.path.endswith("/range/1/day/2023-09-17/2024-03-15")


# =============================================================================
# Partial and Failed Fetches
# =============================================================================

class TestPolygonFailures:
    """Tests for sub-call failure handling."""

    @pytest.mark.asyncio
    async def test_rsi_failure_is_partial(self):
        routes = full_routes(**{"~/indicators/rsi/": (429, {"status": "ERROR", "error": "too many"})})
        adapter, client = make_adapter(routes)
        async with client:
            outcome = await adapter.fetch("C:EURUSD", "1H", "poly-key")

        assert isinstance(outcome, AdapterSuccess)
        assert outcome.fields.rsi is None
        assert outcome.fields.price == Decimal("1.0853")
        assert outcome.error.kind == ErrorKind.RATE_LIMITED
        assert "RSI" in outcome.error.message

    @pytest.mark.asyncio
    async def test_snapshot_404_is_warning(self):
        routes = full_routes(**{"~/snapshot/": (404, {"status": "NOT_FOUND"})})
        adapter, client = make_adapter(routes)
        async with client:
            outcome = await adapter.fetch("C:EURUSD", "1H", "poly-key")

        assert isinstance(outcome, AdapterSuccess)
        assert outcome.error is None
        assert outcome.warnings == ("Market status snapshot unavailable for C:EURUSD (404).",)
        assert outcome.fields.market_status is None

    @pytest.mark.asyncio
    async def test_snapshot_403_is_error(self):
        routes = full_routes(**{"~/snapshot/": (403, {"status": "NOT_AUTHORIZED", "message": "upgrade your plan"})})
        adapter, client = make_adapter(routes)
        async with client:
            outcome = await adapter.fetch("C:EURUSD", "1H", "poly-key")

        assert isinstance(outcome, AdapterSuccess)
        assert outcome.error.kind == ErrorKind.QUOTA_OR_BILLING

    @pytest.mark.asyncio
    async def test_all_unauthorized(self):
        routes = {"~/": (401, {"status": "ERROR", "error": "Unknown API Key"})}
        adapter, client = make_adapter(routes)
        async with client:
            outcome = await adapter.fetch("C:EURUSD", "1H", "bad-key")

        assert isinstance(outcome, AdapterFailure)
        assert outcome.error.kind == ErrorKind.UNAUTHORIZED
        assert outcome.error.is_provider_specific is True
        assert "Price: Invalid/unauthorized API key (401)" in outcome.error.message

    @pytest.mark.asyncio
    async def test_empty_results_fail_with_guidance(self):
        empty = {"status": "OK", "results": []}
        routes = {
            "/prev": empty,
            "~/indicators/": {"status": "OK", "results": {"values": []}},
            "~/range/": empty,
            "~/snapshot/": {"status": "OK"},
        }
        adapter, client = make_adapter(routes)
        async with client:
            outcome = await adapter.fetch("USO", "1D", "poly-key")

        assert isinstance(outcome, AdapterFailure)
        assert outcome.error.kind == ErrorKind.MALFORMED_RESPONSE
        assert "Price: Data not found/unexpected format" in outcome.error.message

    @pytest.mark.asyncio
    async def test_transport_error_is_network(self):
        def boom(request):
            raise httpx.ConnectError("connection refused", request=request)

        adapter, client = make_adapter({"~/": boom})
        async with client:
            outcome = await adapter.fetch("C:EURUSD", "1H", "poly-key")

        assert isinstance(outcome, AdapterFailure)
        assert outcome.error.kind == ErrorKind.NETWORK_ERROR

    @pytest.mark.asyncio
    async def test_unexpected_sub_call_exception_keeps_siblings(self):
        def snapshot_crash(request):
            raise RuntimeError("snapshot transport crashed")

        adapter, client = make_adapter(full_routes(**{"~/snapshot/": snapshot_crash}))
        async with client:
            outcome = await adapter.fetch("C:EURUSD", "1H", "poly-key")

        assert isinstance(outcome, AdapterSuccess)
        assert outcome.fields.price == Decimal("1.0853")
        assert outcome.fields.rsi == Decimal("45.2")
        assert outcome.error.kind == ErrorKind.NETWORK_ERROR
        assert "RuntimeError: snapshot transport crashed" in outcome.error.message

    @pytest.mark.asyncio
    async def test_invalid_url_is_classified(self):
        def bad_url(request):
            raise httpx.InvalidURL("Invalid non-printable ASCII character in URL")

        adapter, client = make_adapter(full_routes(**{"~/indicators/macd/": bad_url}))
        async with client:
            outcome = await adapter.fetch("C:EURUSD", "1H", "poly-key")

        assert isinstance(outcome, AdapterSuccess)
        assert outcome.fields.macd is None
        assert outcome.fields.price == Decimal("1.0853")
        assert "MACD: Unexpected client error - InvalidURL" in outcome.error.message

    @pytest.mark.asyncio
    async def test_sentinel_price_is_missing(self):
        routes = full_routes(**{"/prev": {"status": "OK", "results": [{"c": "N/A"}]}})
        adapter, client = make_adapter(routes)
        async with client:
            outcome = await adapter.fetch("C:EURUSD", "1H", "poly-key")

        assert outcome.fields.price is None
        assert outcome.fields.rsi == Decimal("45.2")
