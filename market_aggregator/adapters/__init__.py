"""
============================================================================
Market Aggregator Adapters Package
============================================================================

Reliability Level: L6 Critical
Decimal Integrity: All adapters output Decimal-based data

ADAPTER HIERARCHY:
    Market data (price, RSI, MACD, history):
        1. PolygonAdapter
        2. FinnhubAdapter
        3. TwelveDataAdapter
    Economic data (exchange rates):
        1. ExchangeRateApiAdapter
        2. OpenExchangeRatesAdapter
    Interest rates:
        1. FredAdapter
    Headlines:
        1. NewsApiAdapter
    Economic calendar (public, outside the fallback chain):
        TradaysCalendarAdapter

All adapters implement the BaseAdapter interface and return a classified
AdapterOutcome; none of them raises on provider failure.
============================================================================
"""

from market_aggregator.adapters.base_adapter import (
    BaseAdapter,
    AdapterErrorCode,
    SubCallResult,
)
from market_aggregator.adapters.polygon_adapter import PolygonAdapter
from market_aggregator.adapters.finnhub_adapter import FinnhubAdapter
from market_aggregator.adapters.twelve_data_adapter import TwelveDataAdapter
from market_aggregator.adapters.rates_adapter import RatesTableAdapter
from market_aggregator.adapters.exchange_rate_adapter import ExchangeRateApiAdapter
from market_aggregator.adapters.open_exchange_rates_adapter import OpenExchangeRatesAdapter
from market_aggregator.adapters.fred_adapter import FredAdapter
from market_aggregator.adapters.news_api_adapter import NewsApiAdapter
from market_aggregator.adapters.tradays_adapter import TradaysCalendarAdapter

__all__ = [
    "BaseAdapter",
    "AdapterErrorCode",
    "SubCallResult",
    "PolygonAdapter",
    "FinnhubAdapter",
    "TwelveDataAdapter",
    "RatesTableAdapter",
    "ExchangeRateApiAdapter",
    "OpenExchangeRatesAdapter",
    "FredAdapter",
    "NewsApiAdapter",
    "TradaysCalendarAdapter",
]
