"""
============================================================================
Finnhub.io Adapter - Quote, Indicators and Candles
============================================================================

Reliability Level: L6 Critical
Decimal Integrity: All prices use decimal.Decimal
Traceability: All operations include correlation_id for audit

API ENDPOINTS (four concurrent sub-calls):
    - Quote:      /quote
    - RSI:        /indicator?indicator=rsi&timeperiod=14
    - MACD:       /indicator?indicator=macd&fastperiod=12&slowperiod=26&signalperiod=9
    - Historical: /forex/candle | /crypto/candle | /stock/candle

    Indicator responses carry whole series; the latest value is the last
    element. Candle responses carry parallel arrays c[] and t[].

QUIRKS:
    - Unknown symbols return a quote of all zeros; a zero price is
      treated as "no data", never as a price of 0
    - {"s": "no_data"} means the symbol/resolution has no bars
============================================================================
"""

from typing import Optional, Any, List, Tuple
from datetime import datetime
import asyncio
import logging

import httpx

from market_aggregator.adapters.base_adapter import (
    BaseAdapter,
    SubCallResult,
    epoch_to_datetime,
    keep_latest,
    last_item,
)
from market_aggregator.conversion import parse_decimal
from market_aggregator.error_classifier import (
    ClassifiedError,
    ErrorKind,
    classify_payload_error,
    missing_field,
)
from market_aggregator.schemas import (
    AdapterOutcome,
    AssetClass,
    HistoricalPoint,
    MacdTriple,
    PartialFields,
    ProviderType,
)
from market_aggregator.symbol_mapper import (
    MACD_FAST_PERIOD,
    MACD_SIGNAL_PERIOD,
    MACD_SLOW_PERIOD,
    RSI_PERIOD,
    finnhub_history_window,
    finnhub_indicator_window,
    finnhub_resolution,
)

# Configure module logger
logger = logging.getLogger(__name__)


# =============================================================================
# Constants
# =============================================================================

FINNHUB_API_URL = "https://finnhub.io/api/v1"

# Symbol prefix -> candle endpoint
CANDLE_ENDPOINTS = {
    "OANDA:": "/forex/candle",
    "FXCM:": "/forex/candle",
    "BINANCE:": "/crypto/candle",
    "COINBASE:": "/crypto/candle",
}
DEFAULT_CANDLE_ENDPOINT = "/stock/candle"


def candle_endpoint(provider_symbol: str) -> str:
    for prefix, path in CANDLE_ENDPOINTS.items():
        if provider_symbol.upper().startswith(prefix):
            return path
    return DEFAULT_CANDLE_ENDPOINT


# =============================================================================
# Finnhub Adapter Class
# =============================================================================

class FinnhubAdapter(BaseAdapter):
    """
    Finnhub.io REST adapter.

    Reliability Level: L6 Critical
    Input Constraints: Finnhub symbol ('OANDA:EUR_USD', 'BINANCE:BTCUSDT', 'USO')
    Side Effects: Network I/O
    """

    BASE_URL = FINNHUB_API_URL

    def __init__(
        self,
        client: Optional[httpx.AsyncClient] = None,
        timeout_seconds: float = 30.0,
        correlation_id: Optional[str] = None,
        now: Optional[datetime] = None
    ):
        super().__init__(
            provider_type=ProviderType.FINNHUB,
            client=client,
            timeout_seconds=timeout_seconds,
            correlation_id=correlation_id,
        )
        self._now = now

    async def _fetch(
        self,
        client: httpx.AsyncClient,
        provider_symbol: str,
        timeframe_id: str,
        credential: str,
        asset_class: Optional[AssetClass] = None
    ) -> AdapterOutcome:
        resolution = finnhub_resolution(timeframe_id)
        indicator_from, indicator_to = finnhub_indicator_window(resolution, self._now)
        history_resolution, history_from, history_to = finnhub_history_window(
            timeframe_id, self._now
        )
        indicator_params = {
            "symbol": provider_symbol,
            "resolution": resolution,
            "from": indicator_from,
            "to": indicator_to,
            "token": credential,
        }

        quote, rsi, macd, historical = await asyncio.gather(
            self._get_json(
                client, "Quote", f"{self.BASE_URL}/quote",
                {"symbol": provider_symbol, "token": credential},
            ),
            self._get_json(
                client, "RSI", f"{self.BASE_URL}/indicator",
                dict(indicator_params, indicator="rsi", timeperiod=RSI_PERIOD),
            ),
            self._get_json(
                client, "MACD", f"{self.BASE_URL}/indicator",
                dict(
                    indicator_params,
                    indicator="macd",
                    fastperiod=MACD_FAST_PERIOD,
                    slowperiod=MACD_SLOW_PERIOD,
                    signalperiod=MACD_SIGNAL_PERIOD,
                ),
            ),
            self._get_json(
                client, "Historical", f"{self.BASE_URL}{candle_endpoint(provider_symbol)}",
                {
                    "symbol": provider_symbol,
                    "resolution": history_resolution,
                    "from": history_from,
                    "to": history_to,
                    "token": credential,
                },
            ),
        )

        errors = []  # type: List[ClassifiedError]
        price, last_trade = self._parse_quote(quote, errors)
        fields = PartialFields(
            price=price,
            last_trade_timestamp=last_trade if price is not None else None,
            rsi=self._parse_rsi(rsi, errors),
            macd=self._parse_macd(macd, errors),
            historical=self._parse_historical(historical, errors),
        )

        return self._build_outcome(
            fields,
            errors,
            no_data_message=(
                f"No market data retrieved for {provider_symbol}. Check symbol/API key. "
                f"Resolution: '{resolution}'. Historical: {history_resolution}"
            ),
        )

    # =========================================================================
    # Parsers
    # =========================================================================

    @staticmethod
    def _status_error(result: SubCallResult) -> Optional[ClassifiedError]:
        """Finnhub series responses carry s='ok' | 'no_data'."""
        payload = result.payload
        if not isinstance(payload, dict):
            return missing_field(result.label)
        if payload.get("error"):
            return classify_payload_error(result.label, str(payload.get("error")))
        status = payload.get("s")
        if status == "ok":
            return None
        if status == "no_data":
            return ClassifiedError.of(ErrorKind.NOT_FOUND, f"{result.label}: No data for symbol/resolution")
        return classify_payload_error(result.label, str(status) if status else None)

    def _parse_quote(
        self,
        result: SubCallResult,
        errors: List[ClassifiedError]
    ) -> Tuple[Optional[Any], Optional[datetime]]:
        if result.error is not None:
            errors.append(result.error)
            return None, None

        payload = result.payload if isinstance(result.payload, dict) else {}
        if payload.get("error"):
            errors.append(classify_payload_error(result.label, str(payload.get("error"))))
            return None, None

        price = parse_decimal(payload.get("c"))
        if price is None or price <= 0:
            errors.append(missing_field(result.label, "Price data (c) not found"))
            return None, None

        return price, epoch_to_datetime(payload.get("t"))

    def _parse_rsi(self, result: SubCallResult, errors: List[ClassifiedError]):
        if result.error is not None:
            errors.append(result.error)
            return None

        status_error = self._status_error(result)
        if status_error is not None:
            errors.append(status_error)
            return None

        value = parse_decimal(last_item(result.payload.get("rsi")))
        if value is None:
            errors.append(missing_field(result.label))
        return value

    def _parse_macd(self, result: SubCallResult, errors: List[ClassifiedError]):
        if result.error is not None:
            errors.append(result.error)
            return None

        status_error = self._status_error(result)
        if status_error is not None:
            errors.append(status_error)
            return None

        payload = result.payload
        value = parse_decimal(last_item(payload.get("macd")))
        signal = parse_decimal(last_item(payload.get("macdSignal")))
        histogram = parse_decimal(last_item(payload.get("macdHist")))
        if value is None or signal is None or histogram is None:
            errors.append(missing_field(result.label))
            return None

        return MacdTriple(value=value, signal=signal, histogram=histogram)

    def _parse_historical(self, result: SubCallResult, errors: List[ClassifiedError]):
        if result.error is not None:
            errors.append(result.error)
            return None

        status_error = self._status_error(result)
        if status_error is not None:
            errors.append(status_error)
            return None

        closes = result.payload.get("c")
        times = result.payload.get("t")
        if not isinstance(closes, list) or not isinstance(times, list):
            errors.append(missing_field(result.label, "Data not found/unexpected format from Finnhub"))
            return None

        points = []  # type: List[HistoricalPoint]
        for raw_price, raw_time in zip(closes, times):
            price = parse_decimal(raw_price)
            timestamp = epoch_to_datetime(raw_time)
            if price is not None and timestamp is not None:
                points.append(HistoricalPoint(timestamp=timestamp, price=price))

        return keep_latest(points) if points else None
