"""
============================================================================
Polygon.io Adapter - Price, Indicators, History and Market Status
============================================================================

Reliability Level: L6 Critical
Decimal Integrity: All prices use decimal.Decimal
Traceability: All operations include correlation_id for audit

API ENDPOINTS (five concurrent sub-calls):
    - Price:      /v2/aggs/ticker/{ticker}/prev
    - RSI:        /v1/indicators/rsi/{ticker}     (window=14)
    - MACD:       /v1/indicators/macd/{ticker}    (12/26/9)
    - Historical: /v2/aggs/ticker/{ticker}/range/{mult}/{timespan}/{from}/{to}
    - Snapshot:   /v2/snapshot/tickers/{ticker}   (market status)

SNAPSHOT 404:
    Many tickers (FX, crypto) have no snapshot. A 404 on the snapshot
    alone is a warning, not a failure, as long as another sub-call
    returned data.

PRIVACY GUARDRAIL:
    - API key passed by the caller, sent as the apiKey query parameter
    - Never logged
============================================================================
"""

from typing import Optional, Dict, Any, List, Tuple
from datetime import datetime
import asyncio
import logging

import httpx

from market_aggregator.adapters.base_adapter import (
    BaseAdapter,
    SubCallResult,
    epoch_to_datetime,
    first_item,
    keep_latest,
)
from market_aggregator.conversion import parse_decimal
from market_aggregator.error_classifier import (
    ClassifiedError,
    classify_payload_error,
    missing_field,
)
from market_aggregator.schemas import (
    AdapterOutcome,
    AssetClass,
    HistoricalPoint,
    MacdTriple,
    MarketStatus,
    PartialFields,
    ProviderType,
)
from market_aggregator.symbol_mapper import (
    HISTORY_REQUEST_LIMIT,
    MACD_FAST_PERIOD,
    MACD_SIGNAL_PERIOD,
    MACD_SLOW_PERIOD,
    RSI_PERIOD,
    polygon_history_window,
    polygon_indicator_timespan,
)

# Configure module logger
logger = logging.getLogger(__name__)


# =============================================================================
# Constants
# =============================================================================

POLYGON_API_URL = "https://api.polygon.io"

SNAPSHOT_LABEL = "Snapshot"


# =============================================================================
# Polygon Adapter Class
# =============================================================================

class PolygonAdapter(BaseAdapter):
    """
    Polygon.io REST adapter.

    Reliability Level: L6 Critical
    Input Constraints: Polygon ticker ('C:EURUSD', 'X:BTCUSD', 'USO')
    Side Effects: Network I/O
    """

    BASE_URL = POLYGON_API_URL

    def __init__(
        self,
        client: Optional[httpx.AsyncClient] = None,
        timeout_seconds: float = 30.0,
        correlation_id: Optional[str] = None,
        now: Optional[datetime] = None
    ):
        super().__init__(
            provider_type=ProviderType.POLYGON,
            client=client,
            timeout_seconds=timeout_seconds,
            correlation_id=correlation_id,
        )
        # Fixed clock for reproducible history windows (tests)
        self._now = now

    async def _fetch(
        self,
        client: httpx.AsyncClient,
        provider_symbol: str,
        timeframe_id: str,
        credential: str,
        asset_class: Optional[AssetClass] = None
    ) -> AdapterOutcome:
        timespan = polygon_indicator_timespan(timeframe_id)
        window = polygon_history_window(timeframe_id, self._now)
        key = {"apiKey": credential}

        price, rsi, macd, historical, snapshot = await asyncio.gather(
            self._get_json(
                client, "Price",
                f"{self.BASE_URL}/v2/aggs/ticker/{provider_symbol}/prev",
                {"adjusted": "true", **key},
            ),
            self._get_json(
                client, "RSI",
                f"{self.BASE_URL}/v1/indicators/rsi/{provider_symbol}",
                {
                    "timespan": timespan,
                    "adjusted": "true",
                    "window": RSI_PERIOD,
                    "series_type": "close",
                    "order": "desc",
                    "limit": 1,
                    **key,
                },
            ),
            self._get_json(
                client, "MACD",
                f"{self.BASE_URL}/v1/indicators/macd/{provider_symbol}",
                {
                    "timespan": timespan,
                    "adjusted": "true",
                    "short_window": MACD_FAST_PERIOD,
                    "long_window": MACD_SLOW_PERIOD,
                    "signal_window": MACD_SIGNAL_PERIOD,
                    "series_type": "close",
                    "order": "desc",
                    "limit": 1,
                    **key,
                },
            ),
            self._get_json(
                client, "Historical",
                f"{self.BASE_URL}/v2/aggs/ticker/{provider_symbol}/range/"
                f"{window.multiplier}/{window.timespan}/"
                f"{window.from_date.isoformat()}/{window.to_date.isoformat()}",
                {"adjusted": "true", "sort": "asc", "limit": HISTORY_REQUEST_LIMIT, **key},
            ),
            self._get_json(
                client, SNAPSHOT_LABEL,
                f"{self.BASE_URL}/v2/snapshot/tickers/{provider_symbol}",
                key,
            ),
        )

        errors = []  # type: List[ClassifiedError]
        warnings = []  # type: List[str]
        values = {}  # type: Dict[str, Any]

        parsed_price, price_ts = self._parse_price(price, errors)
        values["price"] = parsed_price
        values["rsi"] = self._parse_rsi(rsi, errors)
        values["macd"] = self._parse_macd(macd, errors)
        values["historical"] = self._parse_historical(historical, errors)

        status, status_ts, snapshot_error = self._parse_snapshot(snapshot)
        values["market_status"] = status
        values["last_trade_timestamp"] = status_ts or price_ts

        other_data = any(
            values[name] is not None for name in ("price", "rsi", "macd", "historical")
        )
        if snapshot_error is not None:
            if snapshot_error.status_code == 404 and other_data:
                warnings.append(
                    f"Market status snapshot unavailable for {provider_symbol} (404)."
                )
                logger.info(
                    f"Polygon snapshot 404 downgraded to warning | "
                    f"symbol={provider_symbol} | "
                    f"correlation_id={self._correlation_id}"
                )
            else:
                errors.append(snapshot_error)

        fields = PartialFields(**values)
        return self._build_outcome(
            fields,
            errors,
            warnings,
            no_data_message=(
                f"No market data could be retrieved for {provider_symbol}. "
                f"Verify symbol and API key/plan. Timespan: '{timespan}'. "
                f"Historical: {window.multiplier}{window.timespan}."
            ),
        )

    # =========================================================================
    # Parsers
    # =========================================================================

    @staticmethod
    def _payload_error(result: SubCallResult) -> Optional[ClassifiedError]:
        payload = result.payload
        if isinstance(payload, dict) and str(payload.get("status", "")).upper() == "ERROR":
            return classify_payload_error(
                result.label, payload.get("error") or payload.get("message")
            )
        return None

    def _parse_price(
        self,
        result: SubCallResult,
        errors: List[ClassifiedError]
    ) -> Tuple[Optional[Any], Optional[datetime]]:
        if result.error is not None:
            errors.append(result.error)
            return None, None

        bar = first_item(result.payload.get("results")) if isinstance(result.payload, dict) else None
        close = parse_decimal(bar.get("c")) if isinstance(bar, dict) else None
        if close is None:
            errors.append(self._payload_error(result) or missing_field(result.label))
            return None, None

        return close, epoch_to_datetime(bar.get("t"))

    def _parse_rsi(self, result: SubCallResult, errors: List[ClassifiedError]):
        if result.error is not None:
            errors.append(result.error)
            return None

        entry = self._first_indicator_value(result.payload)
        value = parse_decimal(entry.get("value")) if entry else None
        if value is None:
            errors.append(self._payload_error(result) or missing_field(result.label))
        return value

    def _parse_macd(self, result: SubCallResult, errors: List[ClassifiedError]):
        if result.error is not None:
            errors.append(result.error)
            return None

        entry = self._first_indicator_value(result.payload)
        value = parse_decimal(entry.get("value")) if entry else None
        if value is None:
            errors.append(self._payload_error(result) or missing_field(result.label))
            return None

        return MacdTriple(
            value=value,
            signal=parse_decimal(entry.get("signal")),
            histogram=parse_decimal(entry.get("histogram")),
        )

    def _parse_historical(self, result: SubCallResult, errors: List[ClassifiedError]):
        if result.error is not None:
            errors.append(result.error)
            return None

        bars = result.payload.get("results") if isinstance(result.payload, dict) else None
        if not isinstance(bars, list):
            errors.append(self._payload_error(result) or missing_field(result.label))
            return None

        points = []  # type: List[HistoricalPoint]
        for bar in bars:
            if not isinstance(bar, dict):
                continue
            timestamp = epoch_to_datetime(bar.get("t"))
            close = parse_decimal(bar.get("c"))
            if timestamp is not None and close is not None:
                points.append(HistoricalPoint(timestamp=timestamp, price=close))

        return keep_latest(points) if points else None

    @staticmethod
    def _parse_snapshot(
        result: SubCallResult
    ) -> Tuple[Optional[MarketStatus], Optional[datetime], Optional[ClassifiedError]]:
        if result.error is not None:
            return None, None, result.error

        ticker = result.payload.get("ticker") if isinstance(result.payload, dict) else None
        if not isinstance(ticker, dict):
            return None, None, None

        raw_status = ticker.get("marketStatus")
        status = MarketStatus.parse(raw_status) if raw_status else None

        timestamp = None
        for section in ("lastTrade", "lastQuote"):
            block = ticker.get(section)
            if isinstance(block, dict):
                timestamp = epoch_to_datetime(block.get("t"))
                if timestamp is not None:
                    break
        if timestamp is None:
            timestamp = epoch_to_datetime(ticker.get("updated"))

        return status, timestamp, None

    @staticmethod
    def _first_indicator_value(payload: Any) -> Optional[Dict[str, Any]]:
        if not isinstance(payload, dict):
            return None
        results = payload.get("results")
        if not isinstance(results, dict):
            return None
        entry = first_item(results.get("values"))
        return entry if isinstance(entry, dict) else None
