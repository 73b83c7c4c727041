"""
============================================================================
Open Exchange Rates Adapter - Latest Rates (FX, Metals, Crypto)
============================================================================

Reliability Level: L6 Critical
Decimal Integrity: All rates use decimal.Decimal

API ENDPOINT:
    GET https://openexchangerates.org/api/latest.json?app_id={key}

    Rates are quoted against USD and include XAU, XAG and BTC as
    "units per 1 USD", which is why single-leg assets are inverted.

ERROR FORMAT:
    {"error": true, "status": 401, "message": "invalid_app_id",
     "description": "..."}
============================================================================
"""

from typing import Optional, Dict, Any, Tuple
from datetime import datetime, timezone
import logging

import httpx

from market_aggregator.adapters.rates_adapter import RatesTableAdapter
from market_aggregator.error_classifier import (
    ClassifiedError,
    ErrorKind,
    classify_payload_error,
)
from market_aggregator.schemas import ProviderType

# Configure module logger
logger = logging.getLogger(__name__)


# =============================================================================
# Constants
# =============================================================================

OPEN_EXCHANGE_RATES_API_URL = "https://openexchangerates.org/api"

ERROR_MESSAGE_KINDS = {
    "invalid_app_id": ErrorKind.UNAUTHORIZED,
    "missing_app_id": ErrorKind.UNAUTHORIZED,
    "not_allowed": ErrorKind.QUOTA_OR_BILLING,
    "access_restricted": ErrorKind.QUOTA_OR_BILLING,
    "not_found": ErrorKind.NOT_FOUND,
    "invalid_base": ErrorKind.NOT_FOUND,
}


class OpenExchangeRatesAdapter(RatesTableAdapter):
    """
    Open Exchange Rates adapter.

    Reliability Level: L6 Critical
    Input Constraints: Canonical pair ('EUR/USD', 'XAU/USD', 'BTC/USD')
    Side Effects: Network I/O
    """

    BASE_URL = OPEN_EXCHANGE_RATES_API_URL
    RATES_FIELD = "rates"

    def __init__(
        self,
        client: Optional[httpx.AsyncClient] = None,
        timeout_seconds: float = 30.0,
        correlation_id: Optional[str] = None
    ):
        super().__init__(
            provider_type=ProviderType.OPEN_EXCHANGE_RATES,
            client=client,
            timeout_seconds=timeout_seconds,
            correlation_id=correlation_id,
        )

    def _rates_request(self, credential: str) -> Tuple[str, Dict[str, Any]]:
        return f"{self.BASE_URL}/latest.json", {"app_id": credential}

    def _body_error(self, payload: Dict[str, Any]) -> Optional[ClassifiedError]:
        if not payload.get("error"):
            return None

        code = str(payload.get("message") or "")
        description = payload.get("description")
        detail = f"{code}: {description}" if description else code

        kind = ERROR_MESSAGE_KINDS.get(code)
        if kind is None:
            return classify_payload_error(self.name, detail or None)
        return ClassifiedError.of(kind, f"{self.name}: API error - {detail}")

    def _last_updated(self, payload: Dict[str, Any]) -> Optional[str]:
        timestamp = payload.get("timestamp")
        if not isinstance(timestamp, (int, float)) or isinstance(timestamp, bool):
            return None
        moment = datetime.fromtimestamp(timestamp, tz=timezone.utc)
        return moment.strftime("%a, %d %b %Y %H:%M:%S +0000")
