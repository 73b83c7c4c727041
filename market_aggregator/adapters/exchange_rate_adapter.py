"""
============================================================================
ExchangeRate-API Adapter - Latest Conversion Rates
============================================================================

Reliability Level: L6 Critical
Decimal Integrity: All rates use decimal.Decimal

API ENDPOINT:
    GET https://v6.exchangerate-api.com/v6/{key}/latest/USD

    The key travels in the URL path, so request URLs are never logged.

ERROR FORMAT:
    {"result": "error", "error-type": "invalid-key"}

    error-type            ErrorKind
    --------------------  ----------------
    invalid-key           UNAUTHORIZED
    inactive-account      QUOTA_OR_BILLING
    quota-reached         RATE_LIMITED
    unsupported-code      NOT_FOUND
    malformed-request     MALFORMED_RESPONSE

Serves currency pairs only; metals and crypto are not in its tables.
============================================================================
"""

from typing import Optional, Dict, Any, Tuple
import logging

import httpx

from market_aggregator.adapters.rates_adapter import RatesTableAdapter
from market_aggregator.conversion import DEFAULT_PROVIDER_BASE
from market_aggregator.error_classifier import (
    ClassifiedError,
    ErrorKind,
    classify_payload_error,
)
from market_aggregator.schemas import AssetClass, ProviderType

# Configure module logger
logger = logging.getLogger(__name__)


# =============================================================================
# Constants
# =============================================================================

EXCHANGE_RATE_API_URL = "https://v6.exchangerate-api.com/v6"

ERROR_TYPE_KINDS = {
    "invalid-key": (ErrorKind.UNAUTHORIZED, "Invalid ExchangeRate-API Key. Please check the key."),
    "inactive-account": (ErrorKind.QUOTA_OR_BILLING, "ExchangeRate-API account is inactive."),
    "quota-reached": (ErrorKind.RATE_LIMITED, "ExchangeRate-API quota reached."),
    "unsupported-code": (ErrorKind.NOT_FOUND, "ExchangeRate-API does not support this currency code."),
    "malformed-request": (ErrorKind.MALFORMED_RESPONSE, "ExchangeRate-API rejected the request as malformed."),
}


class ExchangeRateApiAdapter(RatesTableAdapter):
    """
    ExchangeRate-API v6 adapter.

    Reliability Level: L6 Critical
    Input Constraints: Canonical currency pair ('EUR/USD', 'GBP/JPY')
    Side Effects: Network I/O
    """

    BASE_URL = EXCHANGE_RATE_API_URL
    RATES_FIELD = "conversion_rates"

    supported_asset_classes = frozenset({AssetClass.CURRENCY})

    def __init__(
        self,
        client: Optional[httpx.AsyncClient] = None,
        timeout_seconds: float = 30.0,
        correlation_id: Optional[str] = None
    ):
        super().__init__(
            provider_type=ProviderType.EXCHANGE_RATE_API,
            client=client,
            timeout_seconds=timeout_seconds,
            correlation_id=correlation_id,
        )

    def _rates_request(self, credential: str) -> Tuple[str, Dict[str, Any]]:
        return f"{self.BASE_URL}/{credential}/latest/{DEFAULT_PROVIDER_BASE}", {}

    def _body_error(self, payload: Dict[str, Any]) -> Optional[ClassifiedError]:
        if payload.get("result") != "error":
            return None

        error_type = payload.get("error-type")
        if error_type in ERROR_TYPE_KINDS:
            kind, message = ERROR_TYPE_KINDS[error_type]
            return ClassifiedError.of(kind, message)
        return classify_payload_error(self.name, error_type)

    def _extract_error_message(self, response: httpx.Response) -> Optional[str]:
        # Error bodies arrive with 4xx too; the error-type is the useful part
        try:
            body = response.json()
        except ValueError:
            return super()._extract_error_message(response)
        if isinstance(body, dict) and body.get("error-type"):
            return str(body["error-type"])
        return super()._extract_error_message(response)

    def _last_updated(self, payload: Dict[str, Any]) -> Optional[str]:
        value = payload.get("time_last_update_utc")
        return str(value) if value else None
