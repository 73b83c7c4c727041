"""
============================================================================
Market Aggregator Schemas - Canonical Request, Outcomes and Result Types
============================================================================

Reliability Level: L6 Critical
Decimal Integrity: All prices use decimal.Decimal with ROUND_HALF_EVEN
Traceability: All results carry the attempt trace for audit

CANONICAL TYPES:
    - CanonicalRequest: what the caller wants (asset + timeframe)
    - ProviderRegistration: one (provider, credential, symbol) pairing
    - PartialFields: whatever one provider returned (every field optional)
    - AdapterSuccess / AdapterFailure: the classified adapter outcome
    - AggregatedResult: the single record the caller receives

OPTIONAL FIELDS:
    None means "this provider did not return it". It never means zero.
    Non-finite numbers are rejected before they reach these types.

Key Constraints:
- Decimal-only math for all prices
- All timestamps in UTC
- Requests, registrations and outcomes are immutable
============================================================================
"""

from decimal import Decimal
from typing import Optional, Dict, Any, List, Tuple, Union
from dataclasses import dataclass, field
from enum import Enum
from datetime import datetime

from market_aggregator.error_classifier import ClassifiedError, ErrorKind


# =============================================================================
# Constants
# =============================================================================

# Decimal precision for currency pair rates (5 decimal places)
PRECISION_FX = Decimal("0.00001")

# Decimal precision for commodity / crypto prices (2 decimal places)
PRECISION_ASSET = Decimal("0.01")

# Source name used when no provider was attempted
UNKNOWN_PROVIDER = "Unknown"


# =============================================================================
# Enums
# =============================================================================

class AssetClass(Enum):
    """
    Asset class of a canonical request.

    Reliability Level: L6 Critical
    """
    CURRENCY = "currency"     # EUR/USD, GBP/JPY
    COMMODITY = "commodity"   # XAU/USD, XAG/USD, USO
    CRYPTO = "crypto"         # BTC/USD


class ProviderType(Enum):
    """
    Upstream data providers. The value is the provider name used for
    provenance (sourceProvider) and in error messages.

    Reliability Level: L6 Critical
    """
    POLYGON = "Polygon.io"
    FINNHUB = "Finnhub.io"
    TWELVE_DATA = "TwelveData"
    EXCHANGE_RATE_API = "ExchangeRate-API"
    OPEN_EXCHANGE_RATES = "OpenExchangeRates"
    FRED = "FRED"
    NEWS_API = "NewsAPI.org"
    TRADAYS = "Tradays.com"


class EventImpact(Enum):
    """Expected market impact of a calendar event."""
    HOLIDAY = "Holiday"
    LOW = "Low"
    MEDIUM = "Medium"
    HIGH = "High"


class MarketStatus(Enum):
    """Market session status as reported by a snapshot call."""
    OPEN = "open"
    CLOSED = "closed"
    EXTENDED_HOURS = "extended-hours"
    PRE_MARKET = "pre-market"
    POST_MARKET = "post-market"
    UNKNOWN = "unknown"

    @classmethod
    def parse(cls, raw: Optional[str]) -> "MarketStatus":
        if not raw:
            return cls.UNKNOWN
        try:
            return cls(str(raw).strip().lower())
        except ValueError:
            return cls.UNKNOWN


# =============================================================================
# Request Types
# =============================================================================

@dataclass(frozen=True)
class CanonicalRequest:
    """
    Logical request constructed by the caller.

    ============================================================================
    FIELDS:
    ============================================================================
    - asset_id: Canonical asset identifier (e.g., 'EUR/USD', 'XAU/USD', 'USO')
    - asset_display_name: Human readable name (e.g., 'Gold (XAU/USD)')
    - asset_class: CURRENCY, COMMODITY or CRYPTO
    - timeframe_id: Canonical timeframe ('1min' .. '1D')
    ============================================================================

    Reliability Level: L6 Critical
    Side Effects: None (immutable)
    """
    asset_id: str
    asset_display_name: str
    asset_class: AssetClass
    timeframe_id: str = "1H"

    def __post_init__(self):
        if not self.asset_id or not self.asset_id.strip():
            raise ValueError("asset_id is required")


@dataclass(frozen=True)
class ProviderRegistration:
    """
    One (asset, provider) pairing in priority order.

    A provider is attempted only if both its credential and its symbol
    mapping are present.
    """
    provider_name: str
    credential: Optional[str] = None
    provider_symbol: Optional[str] = None

    @property
    def is_attemptable(self) -> bool:
        return bool(self.credential) and bool(self.provider_symbol)


# =============================================================================
# Field Types
# =============================================================================

@dataclass(frozen=True)
class MacdTriple:
    """MACD line, signal line and histogram (12/26/9)."""
    value: Decimal
    signal: Optional[Decimal] = None
    histogram: Optional[Decimal] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "value": float(self.value),
            "signal": float(self.signal) if self.signal is not None else None,
            "histogram": float(self.histogram) if self.histogram is not None else None,
        }


@dataclass(frozen=True)
class HistoricalPoint:
    """One point of a historical close series (UTC timestamp)."""
    timestamp: datetime
    price: Decimal

    def to_dict(self) -> Dict[str, Any]:
        return {"timestamp": self.timestamp.isoformat(), "price": float(self.price)}


@dataclass(frozen=True)
class EconomicEvent:
    """
    One economic calendar release.

    actual / forecast / previous are provider strings kept as-is
    ("N/A" when the provider left them blank); release_time is HH:MM UTC.
    """
    event_id: str
    release_time: str
    currency: str
    country_code: str
    title: str
    impact: EventImpact
    timestamp: int
    actual: str = "N/A"
    forecast: str = "N/A"
    previous: str = "N/A"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.event_id,
            "releaseTime": self.release_time,
            "currency": self.currency,
            "countryCode": self.country_code,
            "title": self.title,
            "impact": self.impact.value,
            "actual": self.actual,
            "forecast": self.forecast,
            "previous": self.previous,
            "timestamp": self.timestamp,
        }


@dataclass(frozen=True)
class PartialFields:
    """
    Whatever a single provider returned. Every field is optional.

    Reliability Level: L6 Critical
    """
    price: Optional[Decimal] = None
    rsi: Optional[Decimal] = None
    macd: Optional[MacdTriple] = None
    historical: Optional[Tuple[HistoricalPoint, ...]] = None
    market_status: Optional[MarketStatus] = None
    last_trade_timestamp: Optional[datetime] = None
    rate: Optional[Decimal] = None
    series_id: Optional[str] = None
    last_updated: Optional[str] = None
    headlines: Optional[Tuple[str, ...]] = None
    events: Optional[Tuple[EconomicEvent, ...]] = None

    def populated(self) -> List[str]:
        """Names of the data fields this provider actually returned."""
        names = []
        for name in ("price", "rsi", "macd", "rate", "market_status",
                     "last_trade_timestamp"):
            if getattr(self, name) is not None:
                names.append(name)
        if self.historical:
            names.append("historical")
        if self.headlines:
            names.append("headlines")
        # A calendar day without releases is still an answer
        if self.events is not None:
            names.append("events")
        return names

    @property
    def has_data(self) -> bool:
        # series_id / last_updated are metadata, not data
        return bool(self.populated())


# =============================================================================
# Adapter Outcomes
# =============================================================================

@dataclass(frozen=True)
class AdapterSuccess:
    """
    At least one sub-call produced usable data.

    `error` is set when some sub-calls failed (partial data); `warnings`
    hold non-fatal notes such as a missing status snapshot.
    """
    fields: PartialFields
    warnings: Tuple[str, ...] = ()
    error: Optional[ClassifiedError] = None


@dataclass(frozen=True)
class AdapterFailure:
    """No sub-call produced usable data."""
    error: ClassifiedError
    warnings: Tuple[str, ...] = ()

    @property
    def is_provider_specific(self) -> bool:
        return self.error.is_provider_specific


AdapterOutcome = Union[AdapterSuccess, AdapterFailure]


# =============================================================================
# Attempt Trace
# =============================================================================

class ProviderState(Enum):
    """Per-provider state inside one orchestrator run."""
    NOT_ATTEMPTED = "NOT_ATTEMPTED"
    ATTEMPTING = "ATTEMPTING"
    ACCEPTED = "ACCEPTED"
    SOFT_FAILED = "SOFT_FAILED"
    HARD_FAILED = "HARD_FAILED"


@dataclass(frozen=True)
class AttemptRecord:
    """One attempted provider and how it ended."""
    provider_name: str
    state: ProviderState
    message: Optional[str] = None
    error_kind: Optional[ErrorKind] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "provider": self.provider_name,
            "state": self.state.value,
            "message": self.message,
            "error_kind": self.error_kind.value if self.error_kind else None,
        }


# =============================================================================
# Aggregated Result
# =============================================================================

@dataclass
class AggregatedResult:
    """
    The externally visible record.

    ============================================================================
    ERROR SEMANTICS:
    ============================================================================
    - error None: fields are authoritative
    - error set, provider_specific_error True: some fields may still be
      populated (partial success)
    - error set, provider_specific_error False: the error is authoritative,
      fields must be treated as unreliable
    ============================================================================

    Reliability Level: L6 Critical
    """
    source_provider: str = UNKNOWN_PROVIDER
    price: Optional[Decimal] = None
    rsi: Optional[Decimal] = None
    macd: Optional[MacdTriple] = None
    historical: Optional[Tuple[HistoricalPoint, ...]] = None
    market_status: Optional[MarketStatus] = None
    last_trade_timestamp: Optional[datetime] = None
    rate: Optional[Decimal] = None
    series_id: Optional[str] = None
    last_updated: Optional[str] = None
    headlines: Optional[Tuple[str, ...]] = None
    events: Optional[Tuple[EconomicEvent, ...]] = None
    error: Optional[str] = None
    provider_specific_error: Optional[bool] = None
    error_kind: Optional[ErrorKind] = None
    warnings: Tuple[str, ...] = ()
    attempts: Tuple[AttemptRecord, ...] = ()
    asset_name: Optional[str] = None
    timeframe: Optional[str] = None
    correlation_id: Optional[str] = field(default=None, compare=False)

    @property
    def ok(self) -> bool:
        return self.error is None

    def to_dict(self) -> Dict[str, Any]:
        """Render the record contract (camelCase keys, absent fields omitted)."""
        data = {"sourceProvider": self.source_provider}  # type: Dict[str, Any]
        if self.price is not None:
            data["price"] = float(self.price)
        if self.rsi is not None:
            data["rsi"] = float(self.rsi)
        if self.macd is not None:
            data["macd"] = self.macd.to_dict()
        if self.historical is not None:
            data["historical"] = [p.to_dict() for p in self.historical]
        if self.market_status is not None:
            data["marketStatus"] = self.market_status.value
        if self.last_trade_timestamp is not None:
            data["lastTradeTimestamp"] = int(self.last_trade_timestamp.timestamp() * 1000)
        if self.rate is not None:
            data["rate"] = float(self.rate)
        if self.series_id is not None:
            data["seriesId"] = self.series_id
        if self.last_updated is not None:
            data["lastUpdated"] = self.last_updated
        if self.headlines is not None:
            data["headlines"] = list(self.headlines)
        if self.events is not None:
            data["events"] = [e.to_dict() for e in self.events]
        if self.error is not None:
            data["error"] = self.error
            data["providerSpecificError"] = bool(self.provider_specific_error)
        if self.asset_name is not None:
            data["assetName"] = self.asset_name
        if self.timeframe is not None:
            data["timeframe"] = self.timeframe
        return data
