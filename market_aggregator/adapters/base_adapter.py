"""
============================================================================
Base Adapter - Abstract Interface for Upstream Data Providers
============================================================================

Reliability Level: L6 Critical
Decimal Integrity: All implementations must output Decimal values
Traceability: All operations include correlation_id

ADAPTER INTERFACE:
    fetch(provider_symbol, timeframe_id, credential) -> AdapterOutcome

    An adapter issues its provider's sub-calls (quote, RSI, MACD,
    historical series, optional status snapshot) concurrently and waits
    for all of them to settle. A failed sub-call never aborts the others;
    it contributes a ClassifiedError instead of data.

OUTCOME RULES:
    - Any sub-call produced data   -> AdapterSuccess (error set if some failed)
    - No sub-call produced data    -> AdapterFailure with the strongest error

Key Constraints:
- Async-first design for non-blocking I/O
- Sub-calls never raise: every failure is classified where it is read
- Credentials are never logged
============================================================================
"""

from abc import ABC, abstractmethod
from decimal import Decimal
from typing import Optional, Dict, Any, List, Iterable, AsyncIterator, FrozenSet, Tuple
from dataclasses import dataclass
from contextlib import asynccontextmanager
from datetime import datetime, timezone
import logging
import uuid

import httpx

from market_aggregator.error_classifier import (
    ClassifiedError,
    ErrorKind,
    classify_exception,
    classify_http_error,
    combine,
    unsupported_for_asset,
)
from market_aggregator.conversion import parse_decimal
from market_aggregator.schemas import (
    AdapterFailure,
    AdapterOutcome,
    AdapterSuccess,
    AssetClass,
    HistoricalPoint,
    PartialFields,
    ProviderType,
)
from market_aggregator.symbol_mapper import HISTORY_KEEP_POINTS

# Configure module logger
logger = logging.getLogger(__name__)


# =============================================================================
# Constants
# =============================================================================

DEFAULT_TIMEOUT_SECONDS = 30.0

# Epoch magnitudes above these are milliseconds / nanoseconds
MILLISECOND_EPOCH_THRESHOLD = Decimal("100000000000")
NANOSECOND_EPOCH_THRESHOLD = Decimal("100000000000000000")

# Keys providers use for a human readable error inside an error body
ERROR_MESSAGE_KEYS = ("message", "error", "error_message", "error-type", "description")


# =============================================================================
# Error Codes
# =============================================================================

class AdapterErrorCode:
    """Adapter-specific error codes for audit logging."""
    CONNECTION_FAIL = "ADAPT-001"
    PARSE_FAIL = "ADAPT-002"
    PARTIAL_DATA = "ADAPT-003"
    NO_DATA = "ADAPT-004"
    UNSUPPORTED = "ADAPT-005"


# =============================================================================
# Data Classes
# =============================================================================

@dataclass(frozen=True)
class SubCallResult:
    """
    Settled result of one HTTP sub-call: a decoded JSON payload, or a
    ClassifiedError (plus the decoded error body when the provider sent one).

    Reliability Level: L6 Critical
    """
    label: str
    payload: Optional[Any] = None
    error: Optional[ClassifiedError] = None
    status_code: Optional[int] = None

    @property
    def ok(self) -> bool:
        return self.error is None


# =============================================================================
# Base Adapter Class
# =============================================================================

class BaseAdapter(ABC):
    """
    Abstract base class for all provider adapters.

    ============================================================================
    INTERFACE CONTRACT:
    ============================================================================
    Subclasses implement:
    1. _fetch(client, provider_symbol, timeframe_id, credential, asset_class)
    Subclasses may override:
    2. supported_asset_classes - asset classes the provider can serve
    3. _extract_error_message(response) - provider error body format
    ============================================================================

    Reliability Level: L6 Critical
    Input Constraints: Credential resolved by the caller
    Side Effects: Network I/O only
    """

    BASE_URL = ""

    supported_asset_classes = frozenset(AssetClass)  # type: FrozenSet[AssetClass]

    def __init__(
        self,
        provider_type: ProviderType,
        client: Optional[httpx.AsyncClient] = None,
        timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS,
        correlation_id: Optional[str] = None
    ):
        """
        Initialize the base adapter.

        Args:
            provider_type: Upstream provider
            client: Shared AsyncClient (a private one is opened per fetch if None)
            timeout_seconds: Transport timeout for private clients
            correlation_id: Audit trail identifier
        """
        self._provider_type = provider_type
        self._client = client
        self._timeout_seconds = timeout_seconds
        self._correlation_id = correlation_id or str(uuid.uuid4())

        logger.debug(
            f"{type(self).__name__} initialized | "
            f"provider={provider_type.value} | "
            f"shared_client={client is not None} | "
            f"correlation_id={self._correlation_id}"
        )

    @property
    def provider_type(self) -> ProviderType:
        return self._provider_type

    @property
    def name(self) -> str:
        """Provider name used for provenance."""
        return self._provider_type.value

    def supports(self, asset_class: AssetClass) -> bool:
        return asset_class in self.supported_asset_classes

    # =========================================================================
    # Public Entry Point
    # =========================================================================

    async def fetch(
        self,
        provider_symbol: str,
        timeframe_id: str,
        credential: str,
        asset_class: Optional[AssetClass] = None
    ) -> AdapterOutcome:
        """
        Fetch everything this provider offers for one symbol.

        Args:
            provider_symbol: Symbol in the provider's vocabulary
            timeframe_id: Canonical timeframe id
            credential: API key
            asset_class: Asset class of the request, checked against
                supported_asset_classes when given

        Returns:
            AdapterSuccess or AdapterFailure
        """
        if asset_class is not None and not self.supports(asset_class):
            error = unsupported_for_asset(self.name, f"{asset_class.value} assets")
            logger.warning(
                f"{AdapterErrorCode.UNSUPPORTED} {error.message} | "
                f"symbol={provider_symbol} | "
                f"correlation_id={self._correlation_id}"
            )
            return AdapterFailure(error=error)

        logger.info(
            f"Adapter fetch started | "
            f"provider={self.name} | "
            f"symbol={provider_symbol} | "
            f"timeframe={timeframe_id} | "
            f"has_credential={bool(credential)} | "
            f"correlation_id={self._correlation_id}"
        )

        async with self._session() as client:
            outcome = await self._fetch(
                client, provider_symbol, timeframe_id, credential, asset_class
            )

        self._log_outcome(provider_symbol, outcome)
        return outcome

    # =========================================================================
    # Abstract Methods (Must be implemented by subclasses)
    # =========================================================================

    @abstractmethod
    async def _fetch(
        self,
        client: httpx.AsyncClient,
        provider_symbol: str,
        timeframe_id: str,
        credential: str,
        asset_class: Optional[AssetClass] = None
    ) -> AdapterOutcome:
        """
        Issue the provider's sub-calls and parse them.

        Returns:
            AdapterSuccess or AdapterFailure
        """
        pass

    # =========================================================================
    # Helpers for Subclasses
    # =========================================================================

    @asynccontextmanager
    async def _session(self) -> AsyncIterator[httpx.AsyncClient]:
        if self._client is not None:
            yield self._client
            return

        async with httpx.AsyncClient(timeout=self._timeout_seconds) as client:
            yield client

    async def _get_json(
        self,
        client: httpx.AsyncClient,
        label: str,
        url: str,
        params: Optional[Dict[str, Any]] = None
    ) -> SubCallResult:
        """
        GET a JSON document. Never raises: transport errors, non-2xx
        statuses and undecodable bodies come back as classified errors.

        Args:
            client: HTTP client
            label: Sub-call label used in messages (e.g., 'Price', 'RSI')
            url: Absolute URL
            params: Query parameters (credential included)

        Returns:
            SubCallResult
        """
        try:
            response = await client.get(url, params=params)
        except httpx.HTTPError as e:
            self._log_sub_call_error(AdapterErrorCode.CONNECTION_FAIL, label, str(e))
            return SubCallResult(label=label, error=classify_exception(label, e))
        except Exception as e:
            self._log_sub_call_error(
                AdapterErrorCode.CONNECTION_FAIL, label, f"{type(e).__name__}: {e}"
            )
            return SubCallResult(label=label, error=classify_exception(label, e, decoding=False))

        if response.status_code >= 400:
            error = classify_http_error(
                label,
                response.status_code,
                self._extract_error_message(response),
            )
            self._log_sub_call_error(AdapterErrorCode.CONNECTION_FAIL, label, error.message)
            # Decoded error body kept for providers with structured error codes
            return SubCallResult(
                label=label,
                payload=_json_or_none(response),
                error=error,
                status_code=response.status_code,
            )

        try:
            payload = response.json()
        except ValueError as e:
            self._log_sub_call_error(AdapterErrorCode.PARSE_FAIL, label, "invalid JSON body")
            return SubCallResult(
                label=label,
                error=classify_exception(label, e),
                status_code=response.status_code,
            )

        return SubCallResult(label=label, payload=payload, status_code=response.status_code)

    def _extract_error_message(self, response: httpx.Response) -> Optional[str]:
        """Pull a readable error out of an error response body."""
        try:
            body = response.json()
        except ValueError:
            text = response.text.strip()
            return text[:100] if text else None

        if isinstance(body, dict):
            for key in ERROR_MESSAGE_KEYS:
                value = body.get(key)
                if isinstance(value, str) and value:
                    return value
        return None

    def _build_outcome(
        self,
        fields: PartialFields,
        errors: Iterable[ClassifiedError],
        warnings: Iterable[str] = (),
        no_data_message: Optional[str] = None
    ) -> AdapterOutcome:
        """
        Fan-in: turn settled sub-call results into one outcome.

        Args:
            fields: Everything parsed successfully
            errors: Classified sub-call failures
            warnings: Non-fatal notes
            no_data_message: Message used when nothing failed but nothing
                usable came back either

        Returns:
            AdapterSuccess or AdapterFailure
        """
        error_list = list(errors)
        warning_tuple = tuple(warnings)
        combined = combine(error_list)

        if fields.has_data:
            return AdapterSuccess(fields=fields, warnings=warning_tuple, error=combined)

        if combined is None:
            combined = ClassifiedError.of(
                ErrorKind.MALFORMED_RESPONSE,
                no_data_message or "No market data could be retrieved",
            )
        return AdapterFailure(error=combined, warnings=warning_tuple)

    # =========================================================================
    # Logging
    # =========================================================================

    def _log_sub_call_error(self, error_code: str, label: str, message: str) -> None:
        logger.warning(
            f"{error_code} Sub-call failed | "
            f"provider={self.name} | "
            f"label={label} | "
            f"detail={message} | "
            f"correlation_id={self._correlation_id}"
        )

    def _log_outcome(self, provider_symbol: str, outcome: AdapterOutcome) -> None:
        if isinstance(outcome, AdapterSuccess):
            if outcome.error is None:
                logger.info(
                    f"Adapter fetch succeeded | "
                    f"provider={self.name} | "
                    f"symbol={provider_symbol} | "
                    f"fields={','.join(outcome.fields.populated())} | "
                    f"warnings={len(outcome.warnings)} | "
                    f"correlation_id={self._correlation_id}"
                )
            else:
                logger.warning(
                    f"{AdapterErrorCode.PARTIAL_DATA} Adapter returned partial data | "
                    f"provider={self.name} | "
                    f"symbol={provider_symbol} | "
                    f"fields={','.join(outcome.fields.populated())} | "
                    f"kind={outcome.error.kind.value} | "
                    f"correlation_id={self._correlation_id}"
                )
        else:
            logger.warning(
                f"{AdapterErrorCode.NO_DATA} Adapter returned no data | "
                f"provider={self.name} | "
                f"symbol={provider_symbol} | "
                f"kind={outcome.error.kind.value} | "
                f"provider_specific={outcome.error.is_provider_specific} | "
                f"correlation_id={self._correlation_id}"
            )


def _json_or_none(response: httpx.Response) -> Optional[Any]:
    try:
        return response.json()
    except ValueError:
        return None


def last_item(values: Any) -> Optional[Any]:
    """Last element of a list payload, or None."""
    if isinstance(values, list) and values:
        return values[-1]
    return None


def first_item(values: Any) -> Optional[Any]:
    """First element of a list payload, or None."""
    if isinstance(values, list) and values:
        return values[0]
    return None


def epoch_to_datetime(raw: Any) -> Optional[datetime]:
    """
    Convert a provider epoch value to an aware UTC datetime.

    Providers mix seconds, milliseconds and nanoseconds; the unit is
    inferred from the magnitude.
    """
    value = parse_decimal(raw)
    if value is None or value <= 0:
        return None

    seconds = value
    if value >= NANOSECOND_EPOCH_THRESHOLD:
        seconds = value / Decimal("1000000000")
    elif value >= MILLISECOND_EPOCH_THRESHOLD:
        seconds = value / Decimal("1000")

    try:
        return datetime.fromtimestamp(float(seconds), tz=timezone.utc)
    except (OverflowError, OSError, ValueError):
        return None


def keep_latest(points: List[HistoricalPoint]) -> Tuple[HistoricalPoint, ...]:
    """Sort ascending by time and keep the most recent HISTORY_KEEP_POINTS."""
    ordered = sorted(points, key=lambda p: p.timestamp)
    return tuple(ordered[-HISTORY_KEEP_POINTS:])
