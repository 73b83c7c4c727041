"""
============================================================================
Tradays Adapter - Economic Calendar
============================================================================

Reliability Level: L6 Critical
Traceability: All operations include correlation_id

API ENDPOINT:
    GET https://tradays.com/api/v1/calendar
        ?countries=US,EU,...&date_from={day}&date_to={day}

    Public endpoint: no credential. The provider symbol is the
    comma-separated country list.

RESPONSE SHAPES:
    [ {...}, ... ]                   bare event list
    {"events": [ {...}, ... ]}       wrapped event list
    {"message": "..."}               provider error in a 200 body

EVENT MAPPING:
    impact_id 0 Holiday, 1 Low, 2 Medium, 3 High (anything else Medium).
    Events without a timestamp are dropped; the rest are sorted by
    release time. A day with no releases is an empty list, not an error.
============================================================================
"""

from typing import Optional, Any, Dict, List, Tuple
from datetime import date, datetime, timezone
import logging

import httpx

from market_aggregator.adapters.base_adapter import BaseAdapter, SubCallResult
from market_aggregator.conversion import parse_decimal
from market_aggregator.error_classifier import (
    ClassifiedError,
    ErrorKind,
    classify_payload_error,
)
from market_aggregator.schemas import (
    AdapterOutcome,
    AssetClass,
    EconomicEvent,
    EventImpact,
    PartialFields,
    ProviderType,
)

# Configure module logger
logger = logging.getLogger(__name__)


# =============================================================================
# Constants
# =============================================================================

TRADAYS_API_URL = "https://tradays.com/api/v1"

IMPACT_BY_ID = {
    0: EventImpact.HOLIDAY,
    1: EventImpact.LOW,
    2: EventImpact.MEDIUM,
    3: EventImpact.HIGH,
}

MISSING_VALUE = "N/A"


def map_impact(raw: Any) -> EventImpact:
    """Tradays impact_id to EventImpact; unknown or absent ids are Medium."""
    value = parse_decimal(raw)
    if value is None or value != value.to_integral_value():
        return EventImpact.MEDIUM
    return IMPACT_BY_ID.get(int(value), EventImpact.MEDIUM)


class TradaysCalendarAdapter(BaseAdapter):
    """
    Tradays economic calendar adapter (one calendar day per fetch).

    Reliability Level: L6 Critical
    Input Constraints: Comma-separated country codes as provider symbol
    Side Effects: Network I/O
    """

    BASE_URL = TRADAYS_API_URL

    def __init__(
        self,
        client: Optional[httpx.AsyncClient] = None,
        timeout_seconds: float = 30.0,
        correlation_id: Optional[str] = None,
        day: Optional[date] = None
    ):
        super().__init__(
            provider_type=ProviderType.TRADAYS,
            client=client,
            timeout_seconds=timeout_seconds,
            correlation_id=correlation_id,
        )
        self._day = day

    async def _fetch(
        self,
        client: httpx.AsyncClient,
        provider_symbol: str,
        timeframe_id: str,
        credential: str,
        asset_class: Optional[AssetClass] = None
    ) -> AdapterOutcome:
        day = (self._day or datetime.now(timezone.utc).date()).isoformat()
        result = await self._get_json(
            client,
            self.name,
            f"{self.BASE_URL}/calendar",
            {"countries": provider_symbol, "date_from": day, "date_to": day},
        )

        errors = []  # type: List[ClassifiedError]
        events = self._parse_events(result, errors)

        return self._build_outcome(
            PartialFields(events=events),
            errors,
            no_data_message="Tradays.com: Unexpected data format received.",
        )

    def _parse_events(
        self,
        result: SubCallResult,
        errors: List[ClassifiedError]
    ) -> Optional[Tuple[EconomicEvent, ...]]:
        if result.error is not None:
            errors.append(self._reclassify(result))
            return None

        payload = result.payload
        if isinstance(payload, list):
            raw_events = payload
        elif isinstance(payload, dict) and isinstance(payload.get("events"), list):
            raw_events = payload["events"]
        elif isinstance(payload, dict) and isinstance(payload.get("message"), str):
            errors.append(classify_payload_error(self.name, payload["message"]))
            return None
        else:
            errors.append(ClassifiedError.of(
                ErrorKind.MALFORMED_RESPONSE,
                "Tradays.com: Unexpected data format received.",
            ))
            return None

        timed = [
            (timestamp, raw)
            for raw in raw_events
            if isinstance(raw, dict)
            for timestamp in (self._timestamp(raw.get("timestamp")),)
            if timestamp is not None
        ]
        events = [self._to_event(index, timestamp, raw) for index, (timestamp, raw) in enumerate(timed)]
        events.sort(key=lambda event: event.timestamp)

        logger.debug(
            f"Calendar parsed | "
            f"provider={self.name} | "
            f"received={len(raw_events)} | "
            f"kept={len(events)} | "
            f"correlation_id={self._correlation_id}"
        )
        return tuple(events)

    @staticmethod
    def _timestamp(raw: Any) -> Optional[int]:
        value = parse_decimal(raw)
        if value is None or value <= 0:
            return None
        return int(value)

    @staticmethod
    def _to_event(index: int, timestamp: int, raw: Dict[str, Any]) -> EconomicEvent:
        title = str(raw.get("title") or "").strip()
        country = str(raw.get("country") or "").strip().upper()
        released = datetime.fromtimestamp(timestamp, tz=timezone.utc)

        return EconomicEvent(
            event_id=f"{timestamp}-{country}-{title[:10]}-{index}",
            release_time=released.strftime("%H:%M"),
            currency=str(raw.get("currency") or "").strip().upper(),
            country_code=country,
            title=title,
            impact=map_impact(raw.get("impact_id")),
            timestamp=timestamp,
            actual=_value_or_missing(raw.get("actual_value")),
            forecast=_value_or_missing(raw.get("forecast_value")),
            previous=_value_or_missing(raw.get("previous_value")),
        )

    @staticmethod
    def _reclassify(result: SubCallResult) -> ClassifiedError:
        if result.status_code in (401, 403):
            return ClassifiedError.of(
                ErrorKind.UNAUTHORIZED,
                "Tradays.com: Unauthorized or forbidden access to the calendar endpoint.",
                status_code=result.status_code,
            )
        if result.status_code == 429:
            return ClassifiedError.of(
                ErrorKind.RATE_LIMITED,
                "Tradays.com API rate limit exceeded.",
                status_code=429,
            )
        return result.error


def _value_or_missing(raw: Any) -> str:
    if raw is None:
        return MISSING_VALUE
    text = str(raw).strip()
    return text or MISSING_VALUE
