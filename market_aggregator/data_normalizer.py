"""
============================================================================
Result Normalizer - Terminal State to Aggregated Result
============================================================================

Reliability Level: L6 Critical
Decimal Integrity: Winning fields are copied verbatim (no re-rounding)
Traceability: Every result carries the attempt trace and correlation_id

RESULT NORMALIZER:
    The orchestrator ends in one of a handful of terminal states. The
    normalizer turns each of them into the single AggregatedResult shape
    the caller sees:

    Terminal state          source_provider         error
    ----------------------  ----------------------  ---------------------------
    accepted                winning provider        None
    partial                 best partial provider   "Partial data from X: ..."
    hard failure            failing provider        that provider's message
    exhausted               last attempted          joined attempt messages
    nothing configured      "Unknown"               "no providers configured"

ERROR STRING:
    Distinct failure messages along the attempt path, each prefixed with
    its provider name, joined with "; " and truncated to MAX_ERROR_LENGTH
    characters (ellipsis appended) so the caller can show it as-is.
============================================================================
"""

from typing import Optional, Iterable, List, Sequence, Tuple
import logging
import uuid

from market_aggregator.error_classifier import ClassifiedError, ErrorKind
from market_aggregator.schemas import (
    AdapterSuccess,
    AggregatedResult,
    AttemptRecord,
    PartialFields,
    UNKNOWN_PROVIDER,
)

# Configure module logger
logger = logging.getLogger(__name__)


# =============================================================================
# Constants
# =============================================================================

# UI-safe bound on the error string
MAX_ERROR_LENGTH = 500

ELLIPSIS = "..."

ERROR_SEPARATOR = "; "

PARTIAL_PREFIX = "Partial data from {provider}: "

NO_PROVIDER_MESSAGE = (
    "No data providers configured for this request. "
    "Add an API key for at least one supported provider."
)


# =============================================================================
# Error Codes
# =============================================================================

class NormalizerErrorCode:
    """Normalizer-specific error codes."""
    PARTIAL = "NORM-001"
    HARD_FAIL = "NORM-002"
    EXHAUSTED = "NORM-003"
    NOT_CONFIGURED = "NORM-004"


# =============================================================================
# Message Helpers
# =============================================================================

def truncate_error(text: str, limit: int = MAX_ERROR_LENGTH) -> str:
    """Bound an error string, marking the cut with an ellipsis."""
    if len(text) <= limit:
        return text
    return text[:limit - len(ELLIPSIS)] + ELLIPSIS


def prefix_message(provider_name: str, message: str) -> str:
    if message.startswith(provider_name):
        return message
    return f"{provider_name}: {message}"


def join_messages(
    entries: Iterable[Tuple[str, Optional[str]]],
    limit: Optional[int] = None
) -> Optional[str]:
    """
    Join distinct (provider, message) pairs into one error string.

    When the joined text would exceed `limit`, every entry is shortened to
    an equal share instead of cutting the tail, so each provider name
    still appears.

    Returns:
        The joined string, or None if there were no messages
    """
    seen = []  # type: List[str]
    for provider_name, message in entries:
        if not message:
            continue
        text = prefix_message(provider_name, message)
        if text not in seen:
            seen.append(text)
    if not seen:
        return None

    joined = ERROR_SEPARATOR.join(seen)
    if limit is None or len(joined) <= limit:
        return joined

    separators = len(ERROR_SEPARATOR) * (len(seen) - 1)
    share = max((limit - separators) // len(seen), len(ELLIPSIS) + 1)
    return ERROR_SEPARATOR.join(truncate_error(text, share) for text in seen)


def attempt_trace_message(
    attempts: Sequence[AttemptRecord],
    limit: Optional[int] = None
) -> Optional[str]:
    return join_messages(((a.provider_name, a.message) for a in attempts), limit)


# =============================================================================
# Result Normalizer Class
# =============================================================================

class ResultNormalizer:
    """
    Builds AggregatedResult records from orchestrator terminal states.

    Reliability Level: L6 Critical
    Input Constraints: Attempt trace in invocation order
    Side Effects: Logging only
    """

    def __init__(
        self,
        asset_name: Optional[str] = None,
        timeframe: Optional[str] = None,
        correlation_id: Optional[str] = None
    ):
        self._asset_name = asset_name
        self._timeframe = timeframe
        self._correlation_id = correlation_id or str(uuid.uuid4())

    def _result(
        self,
        source_provider: str,
        fields: Optional[PartialFields],
        attempts: Sequence[AttemptRecord],
        warnings: Iterable[str] = ()
    ) -> AggregatedResult:
        fields = fields or PartialFields()
        return AggregatedResult(
            source_provider=source_provider,
            price=fields.price,
            rsi=fields.rsi,
            macd=fields.macd,
            historical=fields.historical,
            market_status=fields.market_status,
            last_trade_timestamp=fields.last_trade_timestamp,
            rate=fields.rate,
            series_id=fields.series_id,
            last_updated=fields.last_updated,
            headlines=fields.headlines,
            events=fields.events,
            warnings=tuple(warnings),
            attempts=tuple(attempts),
            asset_name=self._asset_name,
            timeframe=self._timeframe,
            correlation_id=self._correlation_id,
        )

    def accepted(
        self,
        provider_name: str,
        outcome: AdapterSuccess,
        attempts: Sequence[AttemptRecord]
    ) -> AggregatedResult:
        """Winning provider's fields, verbatim, with no error."""
        return self._result(provider_name, outcome.fields, attempts, outcome.warnings)

    def partial(
        self,
        provider_name: str,
        outcome: AdapterSuccess,
        attempts: Sequence[AttemptRecord]
    ) -> AggregatedResult:
        """
        Best partial result. The error names every attempted provider in
        invocation order.
        """
        result = self._result(provider_name, outcome.fields, attempts, outcome.warnings)
        prefix = PARTIAL_PREFIX.format(provider=provider_name)
        trace = attempt_trace_message(attempts, MAX_ERROR_LENGTH - len(prefix)) or (
            outcome.error.message if outcome.error else "incomplete data"
        )
        result.error = truncate_error(prefix + trace)
        result.provider_specific_error = True
        result.error_kind = outcome.error.kind if outcome.error else None

        logger.warning(
            f"{NormalizerErrorCode.PARTIAL} Returning partial result | "
            f"provider={provider_name} | "
            f"fields={','.join(outcome.fields.populated())} | "
            f"attempts={len(attempts)} | "
            f"correlation_id={self._correlation_id}"
        )
        return result

    def hard_failure(
        self,
        provider_name: str,
        error: ClassifiedError,
        attempts: Sequence[AttemptRecord]
    ) -> AggregatedResult:
        """A non-provider-specific failure; the error is authoritative."""
        result = self._result(provider_name, None, attempts)
        result.error = truncate_error(prefix_message(provider_name, error.message))
        result.provider_specific_error = False
        result.error_kind = error.kind

        logger.error(
            f"{NormalizerErrorCode.HARD_FAIL} Request-level failure | "
            f"provider={provider_name} | "
            f"kind={error.kind.value} | "
            f"correlation_id={self._correlation_id}"
        )
        return result

    def exhausted(
        self,
        attempts: Sequence[AttemptRecord],
        error_kind: Optional[ErrorKind] = None
    ) -> AggregatedResult:
        """Every eligible provider failed with a provider-specific error."""
        source = attempts[-1].provider_name if attempts else UNKNOWN_PROVIDER
        result = self._result(source, None, attempts)
        result.error = truncate_error(
            attempt_trace_message(attempts, MAX_ERROR_LENGTH)
            or "All providers failed without an error message."
        )
        result.provider_specific_error = True
        result.error_kind = error_kind

        logger.error(
            f"{NormalizerErrorCode.EXHAUSTED} All providers failed | "
            f"attempted={','.join(a.provider_name for a in attempts)} | "
            f"kind={error_kind.value if error_kind else None} | "
            f"correlation_id={self._correlation_id}"
        )
        return result

    def not_configured(self, message: Optional[str] = None) -> AggregatedResult:
        """Nothing was attempted because no provider had a credential."""
        result = self._result(UNKNOWN_PROVIDER, None, ())
        result.error = truncate_error(message or NO_PROVIDER_MESSAGE)
        result.provider_specific_error = False
        result.error_kind = ErrorKind.NO_PROVIDER_CONFIGURED

        logger.warning(
            f"{NormalizerErrorCode.NOT_CONFIGURED} No provider attempted | "
            f"asset={self._asset_name} | "
            f"correlation_id={self._correlation_id}"
        )
        return result

    def unsupported(self, error: ClassifiedError) -> AggregatedResult:
        """No configured provider can serve this asset at all."""
        result = self._result(UNKNOWN_PROVIDER, None, ())
        result.error = truncate_error(error.message)
        result.provider_specific_error = False
        result.error_kind = error.kind

        logger.warning(
            f"{NormalizerErrorCode.NOT_CONFIGURED} No provider supports asset | "
            f"asset={self._asset_name} | "
            f"correlation_id={self._correlation_id}"
        )
        return result
