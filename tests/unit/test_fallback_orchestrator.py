"""
============================================================================
Unit Tests - Fallback Orchestrator
============================================================================

Reliability Level: L6 Critical
Test Coverage: Priority ordering, short-circuit on success, skip rules,
               hard failure abort, partial data selection, exhaustion,
               adapter exceptions
============================================================================
"""

from datetime import datetime, timezone
from decimal import Decimal

import pytest

from market_aggregator.error_classifier import ErrorKind
from market_aggregator.fallback_orchestrator import (
    FallbackOrchestrator,
    economic_data_essential,
    market_data_essential,
)
from market_aggregator.schemas import (
    AdapterSuccess,
    AssetClass,
    CanonicalRequest,
    HistoricalPoint,
    MacdTriple,
    PartialFields,
    ProviderRegistration,
    ProviderState,
)
from market_fakes import (
    ScriptedAdapter,
    failure,
    full_success,
    partial_success,
)


REQUEST = CanonicalRequest(
    asset_id="EUR/USD",
    asset_display_name="EUR/USD",
    asset_class=AssetClass.CURRENCY,
    timeframe_id="1H",
)


def registration(name, credential="key", symbol="SYM"):
    return ProviderRegistration(provider_name=name, credential=credential, provider_symbol=symbol)


def orchestrator_for(*adapters, essential=market_data_essential):
    return FallbackOrchestrator(
        adapters={adapter.name: adapter for adapter in adapters},
        essential=essential,
        correlation_id="TEST-ORCH",
    )


# =============================================================================
# Essential Fields
# =============================================================================

class TestEssentialPredicates:
    """Tests for the essential field rules."""

    def test_price_alone(self):
        assert market_data_essential(PartialFields(price=Decimal("1")))

    def test_zero_price_counts(self):
        assert market_data_essential(PartialFields(price=Decimal("0")))

    def test_rsi_needs_macd(self):
        assert not market_data_essential(PartialFields(rsi=Decimal("50")))
        assert market_data_essential(PartialFields(
            rsi=Decimal("50"), macd=MacdTriple(Decimal("0.1"))
        ))

    def test_historical_alone(self):
        point = HistoricalPoint(datetime(2024, 1, 1, tzinfo=timezone.utc), Decimal("1"))

        assert market_data_essential(PartialFields(historical=(point,)))
        assert not market_data_essential(PartialFields(historical=()))

    def test_rate(self):
        assert economic_data_essential(PartialFields(rate=Decimal("0")))
        assert not economic_data_essential(PartialFields(price=Decimal("1")))


# =============================================================================
# Fallback Loop
# =============================================================================

class TestFallbackLoop:
    """Tests for ordered fallback."""

    @pytest.mark.asyncio
    async def test_fallback_after_unauthorized(self):
        log = []
        p1 = ScriptedAdapter("Provider1", failure(ErrorKind.UNAUTHORIZED, "Price: Invalid/unauthorized API key (401)"), log)
        p2 = ScriptedAdapter("Provider2", full_success(), log)
        p3 = ScriptedAdapter("Provider3", full_success("9.9"), log)

        result = await orchestrator_for(p1, p2, p3).run(
            REQUEST, [registration("Provider1"), registration("Provider2"), registration("Provider3")]
        )

        assert result.source_provider == "Provider2"
        assert result.error is None
        assert result.price == Decimal("1.0853")
        assert result.rsi == Decimal("45.2")
        assert result.macd == MacdTriple(Decimal("0.0012"), Decimal("0.0008"), Decimal("0.0004"))
        assert log == ["Provider1", "Provider2"]
        assert [a.state for a in result.attempts] == [ProviderState.SOFT_FAILED, ProviderState.ACCEPTED]

    @pytest.mark.asyncio
    async def test_first_success_short_circuits(self):
        log = []
        p1 = ScriptedAdapter("Provider1", full_success(), log)
        p2 = ScriptedAdapter("Provider2", full_success("2.0"), log)

        result = await orchestrator_for(p1, p2).run(
            REQUEST, [registration("Provider1"), registration("Provider2")]
        )

        assert result.source_provider == "Provider1"
        assert log == ["Provider1"]

    @pytest.mark.asyncio
    async def test_adapter_receives_registration_values(self):
        p1 = ScriptedAdapter("Provider1", full_success())

        await orchestrator_for(p1).run(REQUEST, [registration("Provider1", "secret", "C:EURUSD")])

        assert p1.calls == [("C:EURUSD", "1H", "secret", AssetClass.CURRENCY)]

    @pytest.mark.asyncio
    async def test_missing_credential_is_skipped(self):
        log = []
        p1 = ScriptedAdapter("Provider1", full_success(), log)
        p2 = ScriptedAdapter("Provider2", full_success("2.0"), log)

        result = await orchestrator_for(p1, p2).run(
            REQUEST, [registration("Provider1", credential=None), registration("Provider2")]
        )

        assert result.source_provider == "Provider2"
        assert log == ["Provider2"]
        assert [a.provider_name for a in result.attempts] == ["Provider2"]

    @pytest.mark.asyncio
    async def test_missing_symbol_is_skipped(self):
        log = []
        p1 = ScriptedAdapter("Provider1", full_success(), log)
        p2 = ScriptedAdapter("Provider2", full_success("2.0"), log)

        await orchestrator_for(p1, p2).run(
            REQUEST, [registration("Provider1", symbol=None), registration("Provider2")]
        )

        assert log == ["Provider2"]

    @pytest.mark.asyncio
    async def test_unsupported_class_is_skipped(self):
        log = []
        p1 = ScriptedAdapter("Provider1", full_success(), log, supported=(AssetClass.COMMODITY,))
        p2 = ScriptedAdapter("Provider2", full_success("2.0"), log)

        result = await orchestrator_for(p1, p2).run(
            REQUEST, [registration("Provider1"), registration("Provider2")]
        )

        assert result.source_provider == "Provider2"
        assert log == ["Provider2"]

    @pytest.mark.asyncio
    async def test_unsupported_failure_stops_the_chain(self):
        log = []
        p1 = ScriptedAdapter("Provider1", failure(ErrorKind.UNSUPPORTED_FOR_ASSET, "does not support ETFs"), log)
        p2 = ScriptedAdapter("Provider2", full_success(), log)

        result = await orchestrator_for(p1, p2).run(
            REQUEST, [registration("Provider1"), registration("Provider2")]
        )

        assert log == ["Provider1"]
        assert result.source_provider == "Provider1"
        assert result.provider_specific_error is False
        assert result.error_kind == ErrorKind.UNSUPPORTED_FOR_ASSET
        assert result.price is None
        assert result.attempts[-1].state == ProviderState.HARD_FAILED

    @pytest.mark.asyncio
    async def test_success_without_essentials_falls_back(self):
        log = []
        p1 = ScriptedAdapter(
            "Provider1", AdapterSuccess(fields=PartialFields(rsi=Decimal("50"))), log
        )
        p2 = ScriptedAdapter("Provider2", full_success(), log)

        result = await orchestrator_for(p1, p2).run(
            REQUEST, [registration("Provider1"), registration("Provider2")]
        )

        assert result.source_provider == "Provider2"
        assert result.attempts[0].error_kind == ErrorKind.MALFORMED_RESPONSE
        assert "Essential market data missing" in result.attempts[0].message


# =============================================================================
# Partial and Exhausted
# =============================================================================

class TestPartialAndExhausted:
    """Tests for runs that never see a clean success."""

    @pytest.mark.asyncio
    async def test_all_partial_returns_richest(self):
        richer = AdapterSuccess(
            fields=PartialFields(price=Decimal("1.2"), rsi=Decimal("40")),
            error=partial_success("MACD: Data not found/unexpected format").error,
        )
        p1 = ScriptedAdapter("Provider1", partial_success("RSI: API rate limit hit (429)"))
        p2 = ScriptedAdapter("Provider2", richer)
        p3 = ScriptedAdapter("Provider3", partial_success("RSI: API rate limit hit (429)", "1.3"))

        result = await orchestrator_for(p1, p2, p3).run(
            REQUEST, [registration("Provider1"), registration("Provider2"), registration("Provider3")]
        )

        assert result.source_provider == "Provider2"
        assert result.price == Decimal("1.2")
        assert result.provider_specific_error is True
        assert result.error.startswith("Partial data from Provider2: ")
        positions = [result.error.index(f"{name}: ") for name in ("Provider1", "Provider2", "Provider3")]
        assert positions[1] < positions[2]
        assert "Provider1: RSI" in result.error

    @pytest.mark.asyncio
    async def test_richness_tie_keeps_earliest(self):
        p1 = ScriptedAdapter("Provider1", partial_success("RSI: missing", "1.1"))
        p2 = ScriptedAdapter("Provider2", partial_success("RSI: missing", "2.2"))

        result = await orchestrator_for(p1, p2).run(
            REQUEST, [registration("Provider1"), registration("Provider2")]
        )

        assert result.source_provider == "Provider1"
        assert result.price == Decimal("1.1")

    @pytest.mark.asyncio
    async def test_partial_then_failure_returns_partial(self):
        p1 = ScriptedAdapter("Provider1", partial_success("RSI: API rate limit hit (429)"))
        p2 = ScriptedAdapter("Provider2", failure(ErrorKind.NETWORK_ERROR, "Price: Network/Client error - timeout"))

        result = await orchestrator_for(p1, p2).run(
            REQUEST, [registration("Provider1"), registration("Provider2")]
        )

        assert result.source_provider == "Provider1"
        assert "Provider2: Price: Network/Client error" in result.error

    @pytest.mark.asyncio
    async def test_partial_then_clean_success_wins(self):
        p1 = ScriptedAdapter("Provider1", partial_success("RSI: API rate limit hit (429)"))
        p2 = ScriptedAdapter("Provider2", full_success())

        result = await orchestrator_for(p1, p2).run(
            REQUEST, [registration("Provider1"), registration("Provider2")]
        )

        assert result.source_provider == "Provider2"
        assert result.error is None

    @pytest.mark.asyncio
    async def test_all_failed_is_exhausted(self):
        p1 = ScriptedAdapter("Provider1", failure(ErrorKind.RATE_LIMITED, "Price: API rate limit hit (429)"))
        p2 = ScriptedAdapter("Provider2", failure(ErrorKind.UNAUTHORIZED, "Quote: Invalid/unauthorized API key (401)"))

        result = await orchestrator_for(p1, p2).run(
            REQUEST, [registration("Provider1"), registration("Provider2")]
        )

        assert result.source_provider == "Provider2"
        assert result.provider_specific_error is True
        assert result.error_kind == ErrorKind.UNAUTHORIZED
        assert result.error == (
            "Provider1: Price: API rate limit hit (429); "
            "Provider2: Quote: Invalid/unauthorized API key (401)"
        )
        assert result.price is None

    @pytest.mark.asyncio
    async def test_adapter_exception_becomes_network_error(self):
        log = []
        p1 = ScriptedAdapter("Provider1", RuntimeError("socket closed"), log)
        p2 = ScriptedAdapter("Provider2", full_success(), log)

        result = await orchestrator_for(p1, p2).run(
            REQUEST, [registration("Provider1"), registration("Provider2")]
        )

        assert result.source_provider == "Provider2"
        assert result.attempts[0].error_kind == ErrorKind.NETWORK_ERROR
        assert result.attempts[0].message == "Unexpected error - RuntimeError: socket closed"

    @pytest.mark.asyncio
    async def test_non_outcome_return_is_malformed(self):
        log = []
        p1 = ScriptedAdapter("Provider1", None, log)
        p2 = ScriptedAdapter("Provider2", full_success(), log)

        result = await orchestrator_for(p1, p2).run(
            REQUEST, [registration("Provider1"), registration("Provider2")]
        )

        assert log == ["Provider1", "Provider2"]
        assert result.source_provider == "Provider2"
        assert result.attempts[0].state == ProviderState.SOFT_FAILED
        assert result.attempts[0].error_kind == ErrorKind.MALFORMED_RESPONSE
        assert result.attempts[0].message == "Adapter returned NoneType instead of an outcome"

    @pytest.mark.asyncio
    async def test_non_outcome_from_last_provider_is_exhaustion(self):
        p1 = ScriptedAdapter("Provider1", {"price": "1.0"})

        result = await orchestrator_for(p1).run(REQUEST, [registration("Provider1")])

        assert result.source_provider == "Provider1"
        assert result.error_kind == ErrorKind.MALFORMED_RESPONSE
        assert result.provider_specific_error is True
        assert result.price is None


# =============================================================================
# Nothing Attempted
# =============================================================================

class TestNothingAttempted:
    """Tests for runs where no provider is eligible."""

    @pytest.mark.asyncio
    async def test_no_credentials_anywhere(self):
        log = []
        p1 = ScriptedAdapter("Provider1", full_success(), log)

        result = await orchestrator_for(p1).run(REQUEST, [registration("Provider1", credential=None)])

        assert log == []
        assert result.source_provider == "Unknown"
        assert result.error_kind == ErrorKind.NO_PROVIDER_CONFIGURED
        assert result.provider_specific_error is False

    @pytest.mark.asyncio
    async def test_empty_registration_list(self):
        result = await orchestrator_for().run(REQUEST, [])

        assert result.error_kind == ErrorKind.NO_PROVIDER_CONFIGURED

    @pytest.mark.asyncio
    async def test_configured_but_no_mapping(self):
        p1 = ScriptedAdapter("Provider1", full_success())

        result = await orchestrator_for(p1).run(REQUEST, [registration("Provider1", symbol=None)])

        assert result.error_kind == ErrorKind.UNSUPPORTED_FOR_ASSET
        assert result.error == "No configured provider supports EUR/USD (EUR/USD)"
        assert result.provider_specific_error is False
