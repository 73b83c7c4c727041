"""
============================================================================
Rates Table Adapter - Shared Fetch/Reconcile for FX Rate Providers
============================================================================

Reliability Level: L6 Critical
Decimal Integrity: All rates use decimal.Decimal with ROUND_HALF_EVEN
Traceability: All operations include correlation_id for audit

FX rate providers return one table of rates quoted against a fixed base
currency (USD). Subclasses only describe:
    - where the table lives (URL, credential placement)
    - which field holds it ('conversion_rates', 'rates')
    - how an error body looks

Everything else (cross-rate derivation, single-leg inversion, rounding)
goes through conversion.reconcile(), so all rate providers derive pairs
identically.
============================================================================
"""

from abc import abstractmethod
from typing import Optional, Dict, Any, List, Tuple
import logging

import httpx

from market_aggregator.adapters.base_adapter import BaseAdapter, SubCallResult
from market_aggregator.conversion import (
    DEFAULT_PROVIDER_BASE,
    RateUnavailableError,
    reconcile,
    split_pair,
)
from market_aggregator.error_classifier import (
    ClassifiedError,
    ErrorKind,
    missing_field,
)
from market_aggregator.schemas import (
    AdapterOutcome,
    AssetClass,
    PartialFields,
    ProviderType,
)

# Configure module logger
logger = logging.getLogger(__name__)


class RatesTableAdapter(BaseAdapter):
    """
    Base for providers that publish a single rates table.

    Reliability Level: L6 Critical
    Input Constraints: Canonical pair as provider symbol ('EUR/USD', 'XAU/USD')
    Side Effects: Network I/O (one GET per fetch)
    """

    # Field of the response body holding currency -> rate
    RATES_FIELD = "rates"

    def __init__(
        self,
        provider_type: ProviderType,
        client: Optional[httpx.AsyncClient] = None,
        timeout_seconds: float = 30.0,
        correlation_id: Optional[str] = None
    ):
        super().__init__(
            provider_type=provider_type,
            client=client,
            timeout_seconds=timeout_seconds,
            correlation_id=correlation_id,
        )

    # =========================================================================
    # Subclass Hooks
    # =========================================================================

    @abstractmethod
    def _rates_request(self, credential: str) -> Tuple[str, Dict[str, Any]]:
        """(url, query params) for the latest rates table."""
        pass

    @abstractmethod
    def _body_error(self, payload: Dict[str, Any]) -> Optional[ClassifiedError]:
        """Error reported inside a response body, or None."""
        pass

    def _last_updated(self, payload: Dict[str, Any]) -> Optional[str]:
        return None

    def _provider_base(self, payload: Dict[str, Any]) -> str:
        base = payload.get("base") or payload.get("base_code")
        return str(base).upper() if base else DEFAULT_PROVIDER_BASE

    # =========================================================================
    # Fetch
    # =========================================================================

    async def _fetch(
        self,
        client: httpx.AsyncClient,
        provider_symbol: str,
        timeframe_id: str,
        credential: str,
        asset_class: Optional[AssetClass] = None
    ) -> AdapterOutcome:
        url, params = self._rates_request(credential)
        result = await self._get_json(client, self.name, url, params)

        errors = []  # type: List[ClassifiedError]
        rate, last_updated = self._parse_rates(result, provider_symbol, asset_class, errors)

        fields = PartialFields(rate=rate, last_updated=last_updated)
        return self._build_outcome(
            fields,
            errors,
            no_data_message=f"{self.name}: No rate available for {provider_symbol}",
        )

    def _parse_rates(
        self,
        result: SubCallResult,
        provider_symbol: str,
        asset_class: Optional[AssetClass],
        errors: List[ClassifiedError]
    ):
        if result.error is not None:
            body_error = None
            if isinstance(result.payload, dict):
                body_error = self._body_error(result.payload)
            errors.append(body_error or result.error)
            return None, None

        payload = result.payload
        if not isinstance(payload, dict):
            errors.append(missing_field(self.name, "Rates response was not an object"))
            return None, None

        body_error = self._body_error(payload)
        if body_error is not None:
            errors.append(body_error)
            return None, None

        last_updated = self._last_updated(payload)
        rates = payload.get(self.RATES_FIELD)
        if not isinstance(rates, dict):
            errors.append(missing_field(self.name, f"'{self.RATES_FIELD}' missing from response"))
            return None, last_updated

        resolved_class = asset_class or self._infer_asset_class(provider_symbol)
        try:
            rate = reconcile(rates, provider_symbol, resolved_class, self._provider_base(payload))
        except RateUnavailableError as e:
            logger.warning(
                f"Rate leg unavailable | "
                f"provider={self.name} | "
                f"symbol={provider_symbol} | "
                f"currency={e.currency} | "
                f"correlation_id={self._correlation_id}"
            )
            errors.append(ClassifiedError.of(
                ErrorKind.NOT_FOUND,
                f"{self.name}: {e} (pair {provider_symbol})",
            ))
            return None, last_updated

        return rate, last_updated

    @staticmethod
    def _infer_asset_class(provider_symbol: str) -> AssetClass:
        _, target = split_pair(provider_symbol)
        return AssetClass.CURRENCY if target is not None else AssetClass.COMMODITY
