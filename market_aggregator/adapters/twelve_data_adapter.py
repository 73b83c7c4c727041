"""
============================================================================
Twelve Data Adapter - Price, Indicators and Time Series
============================================================================

Reliability Level: L6 Critical
Decimal Integrity: All prices use decimal.Decimal
Traceability: All operations include correlation_id for audit

API ENDPOINTS (four concurrent sub-calls):
    - Price:       /price
    - RSI:         /rsi          (time_period=14, outputsize=1)
    - MACD:        /macd         (12/26/9, outputsize=1)
    - Time series: /time_series  (outputsize=120, newest first)

ERROR FORMAT:
    Twelve Data often answers HTTP 200 with an error body:
    {"code": 401, "message": "...apikey...", "status": "error"}
    The embedded code is classified exactly like an HTTP status.

    Free tier: 800 API calls/day, 8 calls/minute
============================================================================
"""

from typing import Optional, Any, List, Tuple
from datetime import datetime, timezone
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
    classify_http_error,
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
    HISTORY_REQUEST_LIMIT,
    MACD_FAST_PERIOD,
    MACD_SIGNAL_PERIOD,
    MACD_SLOW_PERIOD,
    RSI_PERIOD,
    twelve_data_interval,
)

# Configure module logger
logger = logging.getLogger(__name__)


# =============================================================================
# Constants
# =============================================================================

# Twelve Data API endpoint
TWELVE_DATA_API_URL = "https://api.twelvedata.com"

# Datetime formats used by /time_series
TIME_SERIES_FORMATS = ("%Y-%m-%d %H:%M:%S", "%Y-%m-%d")


def parse_series_datetime(raw: Any) -> Optional[datetime]:
    """Parse a time_series 'datetime' value (exchange time, treated as UTC)."""
    if not isinstance(raw, str):
        return None
    for fmt in TIME_SERIES_FORMATS:
        try:
            return datetime.strptime(raw.strip(), fmt).replace(tzinfo=timezone.utc)
        except ValueError:
            continue
    return None


# =============================================================================
# Twelve Data Adapter Class
# =============================================================================

class TwelveDataAdapter(BaseAdapter):
    """
    Twelve Data REST adapter.

    ============================================================================
    API USAGE:
    ============================================================================
    1. Price endpoint: /price?symbol=XAU/USD&apikey=xxx
    2. Indicator endpoints return {"values": [{...}], "status": "ok"}
    3. Time series returns newest first; reversed to ascending here
    ============================================================================

    Reliability Level: L6 Critical
    Input Constraints: Twelve Data symbol ('EUR/USD', 'XAU/USD', 'USO')
    Side Effects: Network I/O
    """

    BASE_URL = TWELVE_DATA_API_URL

    def __init__(
        self,
        client: Optional[httpx.AsyncClient] = None,
        timeout_seconds: float = 30.0,
        correlation_id: Optional[str] = None
    ):
        super().__init__(
            provider_type=ProviderType.TWELVE_DATA,
            client=client,
            timeout_seconds=timeout_seconds,
            correlation_id=correlation_id,
        )

    async def _fetch(
        self,
        client: httpx.AsyncClient,
        provider_symbol: str,
        timeframe_id: str,
        credential: str,
        asset_class: Optional[AssetClass] = None
    ) -> AdapterOutcome:
        interval = twelve_data_interval(timeframe_id)

        price, rsi, macd, historical = await asyncio.gather(
            self._get_json(
                client, "Price", f"{self.BASE_URL}/price",
                {"symbol": provider_symbol, "apikey": credential},
            ),
            self._get_json(
                client, "RSI", f"{self.BASE_URL}/rsi",
                {
                    "symbol": provider_symbol,
                    "interval": interval,
                    "time_period": RSI_PERIOD,
                    "series_type": "close",
                    "outputsize": 1,
                    "apikey": credential,
                },
            ),
            self._get_json(
                client, "MACD", f"{self.BASE_URL}/macd",
                {
                    "symbol": provider_symbol,
                    "interval": interval,
                    "fast_period": MACD_FAST_PERIOD,
                    "slow_period": MACD_SLOW_PERIOD,
                    "signal_period": MACD_SIGNAL_PERIOD,
                    "series_type": "close",
                    "outputsize": 1,
                    "apikey": credential,
                },
            ),
            self._get_json(
                client, "Historical", f"{self.BASE_URL}/time_series",
                {
                    "symbol": provider_symbol,
                    "interval": interval,
                    "outputsize": HISTORY_REQUEST_LIMIT,
                    "apikey": credential,
                },
            ),
        )

        errors = []  # type: List[ClassifiedError]
        price_value, last_trade = self._parse_price(price, errors)
        fields = PartialFields(
            price=price_value,
            last_trade_timestamp=last_trade,
            rsi=self._parse_rsi(rsi, errors),
            macd=self._parse_macd(macd, errors),
            historical=self._parse_historical(historical, errors),
        )

        return self._build_outcome(
            fields,
            errors,
            no_data_message=(
                f"No market data retrieved for {provider_symbol}. Check symbol/API key. "
                f"Interval: '{interval}'."
            ),
        )

    # =========================================================================
    # Parsers
    # =========================================================================

    @staticmethod
    def _body_error(result: SubCallResult) -> Optional[ClassifiedError]:
        """Error embedded in a 200 body ({"status": "error", "code": ...})."""
        payload = result.payload
        if not isinstance(payload, dict) or payload.get("status") != "error":
            return None

        message = payload.get("message")
        code = payload.get("code")
        if isinstance(code, int) and code >= 400:
            return classify_http_error(result.label, code, message)
        return classify_payload_error(result.label, message)

    def _settled(self, result: SubCallResult, errors: List[ClassifiedError]) -> bool:
        if result.error is not None:
            errors.append(result.error)
            return False
        body_error = self._body_error(result)
        if body_error is not None:
            errors.append(body_error)
            return False
        return True

    def _parse_price(
        self,
        result: SubCallResult,
        errors: List[ClassifiedError]
    ) -> Tuple[Optional[Any], Optional[datetime]]:
        if not self._settled(result, errors):
            return None, None

        payload = result.payload if isinstance(result.payload, dict) else {}
        price = parse_decimal(payload.get("price"))
        if price is None:
            errors.append(missing_field(result.label))
            return None, None
        return price, epoch_to_datetime(payload.get("timestamp"))

    def _parse_rsi(self, result: SubCallResult, errors: List[ClassifiedError]):
        if not self._settled(result, errors):
            return None

        entry = first_item(result.payload.get("values")) if isinstance(result.payload, dict) else None
        value = parse_decimal(entry.get("rsi")) if isinstance(entry, dict) else None
        if value is None:
            errors.append(missing_field(result.label))
        return value

    def _parse_macd(self, result: SubCallResult, errors: List[ClassifiedError]):
        if not self._settled(result, errors):
            return None

        entry = first_item(result.payload.get("values")) if isinstance(result.payload, dict) else None
        value = parse_decimal(entry.get("macd")) if isinstance(entry, dict) else None
        if value is None:
            errors.append(missing_field(result.label))
            return None

        return MacdTriple(
            value=value,
            signal=parse_decimal(entry.get("macd_signal")),
            histogram=parse_decimal(entry.get("macd_hist")),
        )

    def _parse_historical(self, result: SubCallResult, errors: List[ClassifiedError]):
        if not self._settled(result, errors):
            return None

        rows = result.payload.get("values") if isinstance(result.payload, dict) else None
        if not isinstance(rows, list):
            errors.append(missing_field(result.label, "Data not found/unexpected format from TwelveData"))
            return None

        points = []  # type: List[HistoricalPoint]
        for row in rows:
            if not isinstance(row, dict):
                continue
            timestamp = parse_series_datetime(row.get("datetime"))
            close = parse_decimal(row.get("close"))
            if timestamp is not None and close is not None:
                points.append(HistoricalPoint(timestamp=timestamp, price=close))

        return keep_latest(points) if points else None
