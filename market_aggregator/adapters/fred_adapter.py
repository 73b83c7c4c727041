"""
============================================================================
FRED Adapter - Benchmark Interest Rates
============================================================================

Reliability Level: L6 Critical
Decimal Integrity: Rates use decimal.Decimal

API ENDPOINT:
    GET https://api.stlouisfed.org/fred/series/observations
        ?series_id={id}&api_key={key}&file_type=json&limit=1&sort_order=desc

    The provider symbol is the FRED series id (FEDFUNDS, ECBDFR, ...).

SENTINEL:
    FRED reports a missing observation as value ".". That is "no data",
    never a rate of zero.

ERRORS:
    HTTP 400 with {"error_code": 400, "error_message": "Bad Request.
    The value for variable api_key is not registered..."} is an invalid
    key; other 400s are unknown series.
============================================================================
"""

from typing import Optional, Any, List
from datetime import date
import logging

import httpx

from market_aggregator.adapters.base_adapter import BaseAdapter, SubCallResult, first_item
from market_aggregator.conversion import parse_decimal
from market_aggregator.error_classifier import (
    ClassifiedError,
    ErrorKind,
    classify_payload_error,
)
from market_aggregator.schemas import (
    AdapterOutcome,
    AssetClass,
    PartialFields,
    ProviderType,
)

# Configure module logger
logger = logging.getLogger(__name__)


# =============================================================================
# Constants
# =============================================================================

FRED_API_URL = "https://api.stlouisfed.org/fred"


class FredAdapter(BaseAdapter):
    """
    FRED series observations adapter.

    Reliability Level: L6 Critical
    Input Constraints: FRED series id
    Side Effects: Network I/O
    """

    BASE_URL = FRED_API_URL

    def __init__(
        self,
        client: Optional[httpx.AsyncClient] = None,
        timeout_seconds: float = 30.0,
        correlation_id: Optional[str] = None
    ):
        super().__init__(
            provider_type=ProviderType.FRED,
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
        result = await self._get_json(
            client,
            self.name,
            f"{self.BASE_URL}/series/observations",
            {
                "series_id": provider_symbol,
                "api_key": credential,
                "file_type": "json",
                "limit": 1,
                "sort_order": "desc",
            },
        )

        errors = []  # type: List[ClassifiedError]
        rate, observed = self._parse_observation(result, provider_symbol, errors)

        fields = PartialFields(
            rate=rate,
            series_id=provider_symbol,
            last_updated=observed,
        )
        return self._build_outcome(
            fields,
            errors,
            no_data_message=f"FRED: Valid rate not found for {provider_symbol}.",
        )

    def _parse_observation(
        self,
        result: SubCallResult,
        series_id: str,
        errors: List[ClassifiedError]
    ):
        if result.error is not None:
            errors.append(self._reclassify(result, series_id))
            return None, None

        payload = result.payload if isinstance(result.payload, dict) else {}
        if payload.get("error_message"):
            errors.append(classify_payload_error(
                f"FRED API Error for {series_id}", str(payload["error_message"])
            ))
            return None, None

        observation = first_item(payload.get("observations"))
        if not isinstance(observation, dict):
            errors.append(ClassifiedError.of(
                ErrorKind.NOT_FOUND,
                f"FRED API Error for {series_id}: No observations found.",
            ))
            return None, None

        raw_value = observation.get("value")
        rate = parse_decimal(raw_value)
        if rate is None:
            errors.append(ClassifiedError.of(
                ErrorKind.NOT_FOUND,
                f"FRED: Valid rate not found for {series_id}. Last value: '{raw_value}'.",
            ))
            return None, None

        return rate, self._observation_date(observation.get("date"))

    @staticmethod
    def _reclassify(result: SubCallResult, series_id: str) -> ClassifiedError:
        """FRED answers an unknown key with a 400, not a 401."""
        body = result.payload if isinstance(result.payload, dict) else {}
        message = str(body.get("error_message") or "")
        if result.status_code == 400 and "api_key" in message.replace(" ", "_").lower():
            return ClassifiedError.of(
                ErrorKind.UNAUTHORIZED, "Invalid FRED API Key.", status_code=400
            )
        if result.status_code == 400:
            return ClassifiedError.of(
                ErrorKind.NOT_FOUND,
                f"FRED API Error for {series_id}: {message or 'Bad Request.'}",
                status_code=400,
            )
        return result.error

    @staticmethod
    def _observation_date(raw: Any) -> Optional[str]:
        if not isinstance(raw, str):
            return None
        try:
            return date.fromisoformat(raw.strip()).isoformat()
        except ValueError:
            return None
