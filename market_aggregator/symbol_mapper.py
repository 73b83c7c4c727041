"""
============================================================================
Symbol Mapper - Canonical Timeframes and Assets to Provider Vocabulary
============================================================================

Reliability Level: L6 Critical
Side Effects: None (pure translation tables, no I/O)

TIMEFRAME MAPPING:
    Canonical   Polygon (ind.)   Finnhub   Twelve Data
    ---------   --------------   -------   -----------
    1min        minute           1         1min
    2min-4min   minute           1         1min
    5min        minute           5         5min
    15min       hour             15        15min
    1H          hour             60        1h
    4H          hour             D         4h
    1D          day              D         1day

SYMBOL MAPPING:
    EUR/USD -> Polygon 'C:EURUSD', Finnhub 'OANDA:EUR_USD',
               Twelve Data 'EUR/USD', FX providers 'EUR/USD'

    An asset/provider pair without a symbol is skipped before invocation;
    that is how unsupported combinations (e.g. an FX-only provider asked
    for an ETF) are resolved.

    For NewsAPI.org the "symbol" is the search query built from the
    listing's keywords (see news_query).
============================================================================
"""

from typing import Optional, Dict, List, Tuple, NamedTuple
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone, date

from market_aggregator.schemas import AssetClass, ProviderType


# =============================================================================
# Constants
# =============================================================================

CANONICAL_TIMEFRAMES = ("1min", "2min", "3min", "4min", "5min", "15min", "1H", "4H", "1D")

# Indicator windows (fixed)
RSI_PERIOD = 14
MACD_FAST_PERIOD = 12
MACD_SLOW_PERIOD = 26
MACD_SIGNAL_PERIOD = 9

# Points requested from providers for historical series, and points kept
HISTORY_REQUEST_LIMIT = 120
HISTORY_KEEP_POINTS = 60

# Provider priority per request type (fixed by configuration, never by latency)
MARKET_DATA_PRIORITY = (
    ProviderType.POLYGON,
    ProviderType.FINNHUB,
    ProviderType.TWELVE_DATA,
)

ECONOMIC_DATA_PRIORITY = (
    ProviderType.EXCHANGE_RATE_API,
    ProviderType.OPEN_EXCHANGE_RATES,
)

INTEREST_RATE_PRIORITY = (
    ProviderType.FRED,
)

NEWS_PRIORITY = (
    ProviderType.NEWS_API,
)

# Countries covered by the economic calendar
CALENDAR_COUNTRIES = ("US", "EU", "GB", "JP", "CA", "AU", "NZ", "CH", "CN")

# Benchmark policy rate series on FRED, by currency
FRED_SERIES_MAP = {
    "USD": "FEDFUNDS",      # Federal Funds Effective Rate
    "EUR": "ECBDFR",        # ECB Deposit Facility Rate
    "JPY": "BOJDPBAL",      # Bank of Japan Complementary Deposit Facility Rate
    "GBP": "IUMABEDR",      # Bank of England Official Bank Rate
    "AUD": "RBATCTR",       # Cash Rate Target, RBA
    "CAD": "V122530",       # Bank of Canada Overnight Rate Target
    "CHF": "SNBCHFMA",      # SNB Policy Rate
    "NZD": "RBNZOCRHC",     # Official Cash Rate, RBNZ
}


# =============================================================================
# Timeframe Mapping
# =============================================================================

def is_intraday(timeframe_id: str) -> bool:
    return "min" in timeframe_id or "H" in timeframe_id


def polygon_indicator_timespan(timeframe_id: str) -> str:
    """Polygon indicator 'timespan' parameter."""
    if timeframe_id in ("1min", "2min", "3min", "4min", "5min"):
        return "minute"
    if timeframe_id in ("15min", "1H", "4H"):
        return "hour"
    if timeframe_id == "1D":
        return "day"
    return "hour"


class PolygonHistoryWindow(NamedTuple):
    multiplier: int
    timespan: str
    from_date: date
    to_date: date


def polygon_history_window(timeframe_id: str, now: Optional[datetime] = None) -> PolygonHistoryWindow:
    """
    Aggregates range for Polygon: bar size plus a lookback long enough for
    roughly HISTORY_REQUEST_LIMIT bars.
    """
    now = now or datetime.now(timezone.utc)
    minute_bars = {"1min": 1, "2min": 2, "3min": 3, "4min": 4, "5min": 5}

    if timeframe_id in minute_bars:
        size = minute_bars[timeframe_id]
        start = now - timedelta(minutes=HISTORY_REQUEST_LIMIT * size * 2)
        return PolygonHistoryWindow(size, "minute", start.date(), now.date())
    if timeframe_id == "15min":
        return PolygonHistoryWindow(15, "minute", (now - timedelta(days=3)).date(), now.date())
    if timeframe_id == "4H":
        return PolygonHistoryWindow(4, "hour", (now - timedelta(days=30)).date(), now.date())
    if timeframe_id == "1D":
        return PolygonHistoryWindow(1, "day", (now - timedelta(days=180)).date(), now.date())
    return PolygonHistoryWindow(1, "hour", (now - timedelta(days=10)).date(), now.date())


def finnhub_resolution(timeframe_id: str) -> str:
    """Finnhub candle/indicator resolution (no 2-4 minute or 4 hour bars)."""
    mapping = {
        "1min": "1",
        "2min": "1",
        "3min": "1",
        "4min": "1",
        "5min": "5",
        "15min": "15",
        "1H": "60",
        "4H": "D",
        "1D": "D",
    }
    return mapping.get(timeframe_id, "60")


_FINNHUB_MINUTES = {"1": 1, "5": 5, "15": 15, "30": 30, "60": 60}


def finnhub_indicator_window(resolution: str, now: Optional[datetime] = None) -> Tuple[int, int]:
    """
    (from, to) Unix seconds for Finnhub indicator calls. Intraday
    resolutions need only a few days; daily bars need ~200 days for MACD.
    """
    now = now or datetime.now(timezone.utc)
    if resolution in _FINNHUB_MINUTES:
        days = {"60": 10, "30": 5, "15": 3}.get(resolution, 2)
    elif resolution == "D":
        days = 200
    else:
        days = 60
    to_ts = int(now.timestamp())
    return to_ts - days * 24 * 60 * 60, to_ts


def finnhub_history_window(timeframe_id: str, now: Optional[datetime] = None) -> Tuple[str, int, int]:
    """(resolution, from, to) for Finnhub candles."""
    now = now or datetime.now(timezone.utc)
    to_ts = int(now.timestamp())

    if not is_intraday(timeframe_id):
        return "D", int((now - timedelta(days=90)).timestamp()), to_ts

    resolution = finnhub_resolution(timeframe_id)
    if resolution == "D":
        return "D", int((now - timedelta(days=90)).timestamp()), to_ts

    minutes_per_point = _FINNHUB_MINUTES.get(resolution, 1)
    # Fetch roughly twice the points that are kept
    from_ts = to_ts - HISTORY_KEEP_POINTS * minutes_per_point * 60 * 2
    return resolution, from_ts, to_ts


def twelve_data_interval(timeframe_id: str) -> str:
    """Twelve Data 'interval' parameter."""
    mapping = {
        "1min": "1min",
        "2min": "1min",
        "3min": "1min",
        "4min": "1min",
        "5min": "5min",
        "15min": "15min",
        "1H": "1h",
        "4H": "4h",
        "1D": "1day",
    }
    return mapping.get(timeframe_id, "1h")


# =============================================================================
# Asset Catalog
# =============================================================================

@dataclass(frozen=True)
class AssetListing:
    """
    Canonical asset and its identifier on each provider.

    Reliability Level: L6 Critical
    """
    asset_id: str
    display_name: str
    asset_class: AssetClass
    symbols: Dict[ProviderType, str] = field(default_factory=dict, hash=False)
    # News search terms (multi-word terms are quoted in the query)
    search_keywords: Tuple[str, ...] = ()


def _fx(base: str, target: str, *keywords: str) -> AssetListing:
    pair = f"{base}/{target}"
    return AssetListing(
        asset_id=pair,
        display_name=pair,
        asset_class=AssetClass.CURRENCY,
        search_keywords=(pair,) + keywords,
        symbols={
            ProviderType.POLYGON: f"C:{base}{target}",
            ProviderType.FINNHUB: f"OANDA:{base}_{target}",
            ProviderType.TWELVE_DATA: pair,
            ProviderType.EXCHANGE_RATE_API: pair,
            ProviderType.OPEN_EXCHANGE_RATES: pair,
        },
    )


ASSET_CATALOG = {
    listing.asset_id: listing
    for listing in (
        _fx("EUR", "USD", "euro dollar", "ECB", "Federal Reserve"),
        _fx("GBP", "JPY", "pound yen", "Bank of England", "Bank of Japan"),
        _fx("AUD", "USD", "Australian dollar", "RBA", "Federal Reserve"),
        _fx("USD", "CAD", "Canadian dollar", "Bank of Canada", "Federal Reserve"),
        _fx("EUR", "JPY", "euro yen", "ECB", "Bank of Japan"),
        AssetListing(
            asset_id="XAU/USD",
            display_name="Gold (XAU/USD)",
            asset_class=AssetClass.COMMODITY,
            symbols={
                ProviderType.POLYGON: "C:XAUUSD",
                ProviderType.FINNHUB: "OANDA:XAU_USD",
                ProviderType.TWELVE_DATA: "XAU/USD",
                ProviderType.OPEN_EXCHANGE_RATES: "XAU/USD",
            },
            search_keywords=("gold price", "XAU", "bullion"),
        ),
        AssetListing(
            asset_id="XAG/USD",
            display_name="Silver (XAG/USD)",
            asset_class=AssetClass.COMMODITY,
            symbols={
                ProviderType.POLYGON: "C:XAGUSD",
                ProviderType.FINNHUB: "OANDA:XAG_USD",
                ProviderType.TWELVE_DATA: "XAG/USD",
                ProviderType.OPEN_EXCHANGE_RATES: "XAG/USD",
            },
            search_keywords=("silver price", "XAG", "precious metals"),
        ),
        AssetListing(
            asset_id="USO",
            display_name="Crude Oil (USO ETF)",
            asset_class=AssetClass.COMMODITY,
            symbols={
                ProviderType.POLYGON: "USO",
                ProviderType.FINNHUB: "USO",
                ProviderType.TWELVE_DATA: "USO",
            },
            search_keywords=("crude oil", "oil prices", "WTI", "Brent", "OPEC"),
        ),
        AssetListing(
            asset_id="BTC/USD",
            display_name="Bitcoin (BTC/USD)",
            asset_class=AssetClass.CRYPTO,
            symbols={
                ProviderType.POLYGON: "X:BTCUSD",
                ProviderType.FINNHUB: "BINANCE:BTCUSDT",
                ProviderType.TWELVE_DATA: "BTC/USD",
                ProviderType.OPEN_EXCHANGE_RATES: "BTC/USD",
            },
            search_keywords=("Bitcoin", "BTC", "crypto market"),
        ),
    )
}


def get_listing(asset_id: str) -> Optional[AssetListing]:
    return ASSET_CATALOG.get(asset_id.strip().upper())


def provider_symbol(asset_id: str, provider: ProviderType) -> Optional[str]:
    """
    Provider-specific symbol for a canonical asset id.

    Returns:
        The symbol, or None when the provider has no mapping for the asset
    """
    if provider == ProviderType.FRED:
        return fred_series_for(asset_id)

    listing = get_listing(asset_id)
    if listing is None:
        return None
    if provider == ProviderType.NEWS_API:
        return news_query(listing)
    return listing.symbols.get(provider)


def primary_currency(asset_id: str, asset_class: AssetClass) -> str:
    """
    Currency whose benchmark rate matters for the asset: the base leg of a
    currency pair, USD for commodities and crypto.
    """
    if asset_class == AssetClass.CURRENCY and "/" in asset_id:
        return asset_id.split("/")[0].strip().upper()
    return "USD"


def fred_series_for(currency: str) -> Optional[str]:
    return FRED_SERIES_MAP.get(currency.strip().upper())


def supported_assets() -> List[str]:
    return sorted(ASSET_CATALOG.keys())


# =============================================================================
# News Search
# =============================================================================

# NewsAPI.org rejects very long q parameters
NEWS_QUERY_MAX_LENGTH = 450

NEWS_CONTEXT_TERMS = {
    AssetClass.CURRENCY: 'forex OR currency OR "interest rate" OR "central bank"',
    AssetClass.COMMODITY: 'commodity OR "supply chain" OR demand',
    AssetClass.CRYPTO: "crypto OR blockchain OR regulation",
}


def news_query(listing: AssetListing) -> str:
    """
    NewsAPI.org 'q' expression for an asset: its keywords OR-ed together,
    narrowed by asset-class context terms.

    EUR/USD -> (EUR/USD OR "euro dollar" OR ECB OR "Federal Reserve")
               AND (forex OR currency OR "interest rate" OR "central bank")
    """
    keywords = listing.search_keywords or (listing.display_name,)
    base = " OR ".join(f'"{kw}"' if " " in kw else kw for kw in keywords)
    context = NEWS_CONTEXT_TERMS.get(listing.asset_class)
    query = f"({base}) AND ({context})" if context else base
    return query[:NEWS_QUERY_MAX_LENGTH]
