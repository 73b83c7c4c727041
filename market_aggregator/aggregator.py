"""
============================================================================
Aggregator - Request-Level Entry Points
============================================================================

Reliability Level: L6 Critical
Decimal Integrity: All prices use decimal.Decimal
Traceability: One correlation_id per request, shared by every adapter

ENTRY POINTS:
    fetch_market_data(request, credentials)     Polygon -> Finnhub -> Twelve Data
    fetch_economic_data(request, credentials)   ExchangeRate-API -> Open Exchange Rates
    fetch_interest_rate(currency, credentials)  FRED
    fetch_asset_overview(request, credentials)  all three, concurrently
    fetch_news_headlines(request, credentials)  NewsAPI.org
    fetch_economic_events(day)                  Tradays calendar (public, no fallback)

Each entry point:
    1. Builds registrations (provider, credential, symbol) in priority
       order from the symbol mapper and the caller's credentials
    2. Opens one httpx.AsyncClient shared by every adapter of the request
    3. Runs the FallbackOrchestrator and returns its AggregatedResult

None of them raises for provider trouble; failures come back in the
result's error / provider_specific_error fields.
============================================================================
"""

from typing import Optional, Dict, List, Sequence
from dataclasses import dataclass
from datetime import date, datetime, timezone
import asyncio
import logging
import uuid

import httpx

from market_aggregator.adapters import (
    BaseAdapter,
    ExchangeRateApiAdapter,
    FinnhubAdapter,
    FredAdapter,
    NewsApiAdapter,
    OpenExchangeRatesAdapter,
    PolygonAdapter,
    TradaysCalendarAdapter,
    TwelveDataAdapter,
)
from market_aggregator.config import DEFAULT_HTTP_TIMEOUT_SECONDS, ProviderCredentials
from market_aggregator.data_normalizer import ResultNormalizer
from market_aggregator.error_classifier import ClassifiedError, ErrorKind
from market_aggregator.fallback_orchestrator import (
    EssentialPredicate,
    FallbackOrchestrator,
    economic_data_essential,
    market_data_essential,
    news_essential,
)
from market_aggregator.schemas import (
    AdapterSuccess,
    AggregatedResult,
    AssetClass,
    AttemptRecord,
    CanonicalRequest,
    ProviderRegistration,
    ProviderState,
    ProviderType,
)
from market_aggregator.symbol_mapper import (
    CALENDAR_COUNTRIES,
    ECONOMIC_DATA_PRIORITY,
    INTEREST_RATE_PRIORITY,
    MARKET_DATA_PRIORITY,
    NEWS_PRIORITY,
    fred_series_for,
    primary_currency,
    provider_symbol,
)

# Configure module logger
logger = logging.getLogger(__name__)


# Timeframe used for reference data requests (rates have no bar size)
REFERENCE_TIMEFRAME = "1D"


# =============================================================================
# Registration and Adapter Construction
# =============================================================================

def build_registrations(
    asset_id: str,
    priority: Sequence[ProviderType],
    credentials: ProviderCredentials
) -> List[ProviderRegistration]:
    """Registrations in priority order; missing keys/symbols stay None."""
    return [
        ProviderRegistration(
            provider_name=provider.value,
            credential=credentials.for_provider(provider),
            provider_symbol=provider_symbol(asset_id, provider),
        )
        for provider in priority
    ]


def build_adapters(
    client: Optional[httpx.AsyncClient] = None,
    timeout_seconds: float = DEFAULT_HTTP_TIMEOUT_SECONDS,
    correlation_id: Optional[str] = None,
    now: Optional[datetime] = None
) -> Dict[str, BaseAdapter]:
    """One adapter per provider, keyed by provider name."""
    adapters = [
        PolygonAdapter(client, timeout_seconds, correlation_id, now=now),
        FinnhubAdapter(client, timeout_seconds, correlation_id, now=now),
        TwelveDataAdapter(client, timeout_seconds, correlation_id),
        ExchangeRateApiAdapter(client, timeout_seconds, correlation_id),
        OpenExchangeRatesAdapter(client, timeout_seconds, correlation_id),
        FredAdapter(client, timeout_seconds, correlation_id),
        NewsApiAdapter(client, timeout_seconds, correlation_id),
    ]  # type: List[BaseAdapter]
    return {adapter.name: adapter for adapter in adapters}


async def _run(
    request: CanonicalRequest,
    registrations: Sequence[ProviderRegistration],
    essential: EssentialPredicate,
    client: Optional[httpx.AsyncClient],
    timeout_seconds: float,
    correlation_id: Optional[str],
    now: Optional[datetime] = None
) -> AggregatedResult:
    correlation_id = correlation_id or str(uuid.uuid4())

    if client is not None:
        orchestrator = FallbackOrchestrator(
            build_adapters(client, timeout_seconds, correlation_id, now),
            essential=essential,
            correlation_id=correlation_id,
        )
        return await orchestrator.run(request, registrations)

    async with httpx.AsyncClient(timeout=timeout_seconds) as shared:
        orchestrator = FallbackOrchestrator(
            build_adapters(shared, timeout_seconds, correlation_id, now),
            essential=essential,
            correlation_id=correlation_id,
        )
        return await orchestrator.run(request, registrations)


# =============================================================================
# Entry Points
# =============================================================================

async def fetch_market_data(
    request: CanonicalRequest,
    credentials: ProviderCredentials,
    client: Optional[httpx.AsyncClient] = None,
    timeout_seconds: float = DEFAULT_HTTP_TIMEOUT_SECONDS,
    correlation_id: Optional[str] = None,
    now: Optional[datetime] = None
) -> AggregatedResult:
    """
    Price, RSI, MACD, historical series and market status for one asset.

    Args:
        request: Canonical request
        credentials: Resolved provider keys
        client: Optional shared AsyncClient (one is opened per call if None)
        timeout_seconds: Transport timeout for an internally opened client
        correlation_id: Audit trail identifier (generated if None)
        now: Fixed clock for history windows (tests)

    Returns:
        AggregatedResult
    """
    registrations = build_registrations(request.asset_id, MARKET_DATA_PRIORITY, credentials)
    return await _run(
        request, registrations, market_data_essential,
        client, timeout_seconds, correlation_id, now,
    )


async def fetch_economic_data(
    request: CanonicalRequest,
    credentials: ProviderCredentials,
    client: Optional[httpx.AsyncClient] = None,
    timeout_seconds: float = DEFAULT_HTTP_TIMEOUT_SECONDS,
    correlation_id: Optional[str] = None
) -> AggregatedResult:
    """
    Reference exchange rate for the asset (FX pair rate, or metal/crypto
    price derived from a USD-based rates table).
    """
    registrations = build_registrations(request.asset_id, ECONOMIC_DATA_PRIORITY, credentials)
    return await _run(
        request, registrations, economic_data_essential,
        client, timeout_seconds, correlation_id,
    )


async def fetch_interest_rate(
    currency: str,
    credentials: ProviderCredentials,
    client: Optional[httpx.AsyncClient] = None,
    timeout_seconds: float = DEFAULT_HTTP_TIMEOUT_SECONDS,
    correlation_id: Optional[str] = None
) -> AggregatedResult:
    """Latest benchmark policy rate for a currency (percent)."""
    currency = (currency or "").strip().upper()
    if not currency:
        correlation_id = correlation_id or str(uuid.uuid4())
        logger.warning(
            f"Interest rate requested without a currency | "
            f"correlation_id={correlation_id}"
        )
        normalizer = ResultNormalizer(
            asset_name="benchmark interest rate",
            timeframe=REFERENCE_TIMEFRAME,
            correlation_id=correlation_id,
        )
        return normalizer.unsupported(ClassifiedError.of(
            ErrorKind.UNSUPPORTED_FOR_ASSET,
            "A currency code is required for a benchmark interest rate lookup",
        ))

    request = CanonicalRequest(
        asset_id=currency,
        asset_display_name=f"{currency} benchmark interest rate",
        asset_class=AssetClass.CURRENCY,
        timeframe_id=REFERENCE_TIMEFRAME,
    )
    registrations = build_registrations(currency, INTEREST_RATE_PRIORITY, credentials)
    result = await _run(
        request, registrations, economic_data_essential,
        client, timeout_seconds, correlation_id,
    )
    if result.series_id is None:
        result.series_id = fred_series_for(currency)
    return result


async def fetch_news_headlines(
    request: CanonicalRequest,
    credentials: ProviderCredentials,
    client: Optional[httpx.AsyncClient] = None,
    timeout_seconds: float = DEFAULT_HTTP_TIMEOUT_SECONDS,
    correlation_id: Optional[str] = None
) -> AggregatedResult:
    """
    Recent English headlines about the asset, for sentiment analysis.

    The search query comes from the asset's keywords plus a context clause
    for its class (see symbol_mapper.news_query).
    """
    registrations = build_registrations(request.asset_id, NEWS_PRIORITY, credentials)
    return await _run(
        request, registrations, news_essential,
        client, timeout_seconds, correlation_id,
    )


async def fetch_economic_events(
    day: Optional[date] = None,
    client: Optional[httpx.AsyncClient] = None,
    timeout_seconds: float = DEFAULT_HTTP_TIMEOUT_SECONDS,
    correlation_id: Optional[str] = None
) -> AggregatedResult:
    """
    Economic calendar releases for one UTC day (today if None) across the
    major currency areas.

    Tradays needs no credential and has no alternative provider, so the
    adapter is called directly; its outcome is still shaped by the
    ResultNormalizer. An empty calendar day is an accepted result with
    events == [].
    """
    correlation_id = correlation_id or str(uuid.uuid4())
    day = day or datetime.now(timezone.utc).date()

    adapter = TradaysCalendarAdapter(client, timeout_seconds, correlation_id, day=day)
    normalizer = ResultNormalizer(
        asset_name=f"Economic calendar {day.isoformat()}",
        timeframe=REFERENCE_TIMEFRAME,
        correlation_id=correlation_id,
    )

    outcome = await adapter.fetch(",".join(CALENDAR_COUNTRIES), REFERENCE_TIMEFRAME, "")
    name = adapter.name

    if isinstance(outcome, AdapterSuccess):
        attempts = [AttemptRecord(name, ProviderState.ACCEPTED)]
        return normalizer.accepted(name, outcome, attempts)

    error = outcome.error
    if not error.is_provider_specific:
        attempts = [AttemptRecord(name, ProviderState.HARD_FAILED, error.message, error.kind)]
        return normalizer.hard_failure(name, error, attempts)

    attempts = [AttemptRecord(name, ProviderState.SOFT_FAILED, error.message, error.kind)]
    return normalizer.exhausted(attempts, error.kind)


# =============================================================================
# Asset Overview
# =============================================================================

@dataclass
class AssetOverview:
    """Market data, reference rate and benchmark rate for one asset."""
    market: AggregatedResult
    economic: AggregatedResult
    interest_rate: AggregatedResult
    primary_currency: str

    @property
    def errors(self) -> List[str]:
        return [r.error for r in (self.market, self.economic, self.interest_rate) if r.error]

    def to_dict(self) -> Dict[str, object]:
        return {
            "market": self.market.to_dict(),
            "economic": self.economic.to_dict(),
            "interestRate": self.interest_rate.to_dict(),
            "primaryCurrency": self.primary_currency,
        }


async def fetch_asset_overview(
    request: CanonicalRequest,
    credentials: ProviderCredentials,
    client: Optional[httpx.AsyncClient] = None,
    timeout_seconds: float = DEFAULT_HTTP_TIMEOUT_SECONDS,
    correlation_id: Optional[str] = None,
    now: Optional[datetime] = None
) -> AssetOverview:
    """
    Run the three independent requests for one asset concurrently over a
    single connection pool. Each keeps its own fallback chain.
    """
    correlation_id = correlation_id or str(uuid.uuid4())
    currency = primary_currency(request.asset_id, request.asset_class)

    logger.info(
        f"Asset overview requested | "
        f"asset={request.asset_id} | "
        f"primary_currency={currency} | "
        f"correlation_id={correlation_id}"
    )

    async def gather_all(shared: httpx.AsyncClient):
        return await asyncio.gather(
            fetch_market_data(request, credentials, shared, timeout_seconds, correlation_id, now),
            fetch_economic_data(request, credentials, shared, timeout_seconds, correlation_id),
            fetch_interest_rate(currency, credentials, shared, timeout_seconds, correlation_id),
        )

    if client is not None:
        market, economic, interest_rate = await gather_all(client)
    else:
        async with httpx.AsyncClient(timeout=timeout_seconds) as shared:
            market, economic, interest_rate = await gather_all(shared)

    return AssetOverview(
        market=market,
        economic=economic,
        interest_rate=interest_rate,
        primary_currency=currency,
    )
