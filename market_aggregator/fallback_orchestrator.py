"""
============================================================================
Fallback Orchestrator - Ordered Multi-Provider Fetch
============================================================================

Reliability Level: L6 Critical
Decimal Integrity: Provider fields pass through untouched
Traceability: Every run has a correlation_id and an attempt trace

FALLBACK LOOP:
    Providers are tried strictly one after another, in the configured
    priority order. Each registration moves through

        NOT_ATTEMPTED -> ATTEMPTING -> ACCEPTED | SOFT_FAILED | HARD_FAILED

    1. Skip (not attempted, not traced) when the credential or the
       provider symbol is missing, no adapter is registered, or the
       adapter cannot serve the asset class
    2. Success + essential fields + no error  -> ACCEPTED, return verbatim
    3. Success + essential fields + error     -> SOFT_FAILED, keep as best
       partial candidate, continue (returned if nothing better follows)
    4. Failure, provider-specific             -> SOFT_FAILED, continue
    5. Failure, not provider-specific         -> HARD_FAILED, stop

ESSENTIAL FIELDS:
    Market data:   price OR (rsi AND macd.value) OR non-empty historical
    Economic data: rate
    Headlines:     at least one headline

BOUNDARY:
    run() never raises. An adapter that raises is logged and recorded as a
    provider-specific NETWORK_ERROR attempt; one that returns anything but
    an AdapterSuccess or AdapterFailure is recorded as MALFORMED_RESPONSE.
============================================================================
"""

from typing import Optional, Dict, Any, List, Callable, Mapping, Sequence, Tuple
import logging
import uuid

from market_aggregator.data_normalizer import ResultNormalizer
from market_aggregator.error_classifier import ClassifiedError, ErrorKind
from market_aggregator.schemas import (
    AdapterFailure,
    AdapterOutcome,
    AdapterSuccess,
    AggregatedResult,
    AttemptRecord,
    CanonicalRequest,
    PartialFields,
    ProviderRegistration,
    ProviderState,
)

# Configure module logger
logger = logging.getLogger(__name__)


# =============================================================================
# Error Codes
# =============================================================================

class OrchestratorErrorCode:
    """Orchestrator-specific error codes."""
    ADAPTER_EXCEPTION = "ORCH-001"
    HARD_FAIL = "ORCH-002"
    EXHAUSTED = "ORCH-003"
    NO_PROVIDER = "ORCH-004"
    UNSUPPORTED = "ORCH-005"
    INVALID_OUTCOME = "ORCH-006"


# =============================================================================
# Essential Field Predicates
# =============================================================================

EssentialPredicate = Callable[[PartialFields], bool]


def market_data_essential(fields: PartialFields) -> bool:
    """price OR (rsi AND macd.value) OR a non-empty historical series."""
    if fields.price is not None:
        return True
    if fields.rsi is not None and fields.macd is not None and fields.macd.value is not None:
        return True
    return bool(fields.historical)


def economic_data_essential(fields: PartialFields) -> bool:
    return fields.rate is not None


def news_essential(fields: PartialFields) -> bool:
    return bool(fields.headlines)


ESSENTIAL_FIELDS_MESSAGE = {
    market_data_essential: "Essential market data missing (price, RSI+MACD or historical series)",
    economic_data_essential: "Rate missing from response",
    news_essential: "No headlines in response",
}


# =============================================================================
# Fallback Orchestrator Class
# =============================================================================

class FallbackOrchestrator:
    """
    Runs one request across registered providers in priority order.

    ============================================================================
    USAGE:
    ============================================================================
    orchestrator = FallbackOrchestrator(
        adapters={"Polygon.io": PolygonAdapter(), ...},
        essential=market_data_essential,
    )
    result = await orchestrator.run(request, registrations)
    ============================================================================

    Reliability Level: L6 Critical
    Input Constraints: registrations in priority order
    Side Effects: Network I/O through adapters, logging
    """

    def __init__(
        self,
        adapters: Mapping[str, Any],
        essential: EssentialPredicate = market_data_essential,
        correlation_id: Optional[str] = None
    ):
        """
        Initialize the orchestrator.

        Args:
            adapters: provider_name -> adapter exposing
                async fetch(provider_symbol, timeframe_id, credential, asset_class)
            essential: Predicate deciding whether fields satisfy the request
            correlation_id: Audit trail identifier
        """
        self._adapters = dict(adapters)  # type: Dict[str, Any]
        self._essential = essential
        self._correlation_id = correlation_id or str(uuid.uuid4())

    @property
    def correlation_id(self) -> str:
        return self._correlation_id

    # =========================================================================
    # Public Entry Point
    # =========================================================================

    async def run(
        self,
        request: CanonicalRequest,
        registrations: Sequence[ProviderRegistration]
    ) -> AggregatedResult:
        """
        Execute the fallback loop.

        Args:
            request: Canonical request
            registrations: (provider, credential, symbol) in priority order

        Returns:
            AggregatedResult (never raises)
        """
        normalizer = ResultNormalizer(
            asset_name=request.asset_display_name,
            timeframe=request.timeframe_id,
            correlation_id=self._correlation_id,
        )

        logger.info(
            f"Fallback run started | "
            f"asset={request.asset_id} | "
            f"class={request.asset_class.value} | "
            f"timeframe={request.timeframe_id} | "
            f"registrations={len(registrations)} | "
            f"correlation_id={self._correlation_id}"
        )

        eligible = self._eligible(request, registrations)
        if not eligible:
            return self._nothing_attempted(request, registrations, normalizer)

        attempts = []  # type: List[AttemptRecord]
        best = None  # type: Optional[Tuple[str, AdapterSuccess]]

        for index, (registration, adapter) in enumerate(eligible):
            name = registration.provider_name
            is_last = index == len(eligible) - 1

            logger.info(
                f"Provider attempt | "
                f"provider={name} | "
                f"state={ProviderState.ATTEMPTING.value} | "
                f"position={index + 1}/{len(eligible)} | "
                f"correlation_id={self._correlation_id}"
            )
            outcome = await self._invoke(adapter, registration, request)

            if isinstance(outcome, AdapterSuccess) and self._essential(outcome.fields):
                if outcome.error is None:
                    attempts.append(AttemptRecord(name, ProviderState.ACCEPTED))
                    self._log_state(name, ProviderState.ACCEPTED)
                    return normalizer.accepted(name, outcome, attempts)

                attempts.append(AttemptRecord(
                    name, ProviderState.SOFT_FAILED, outcome.error.message, outcome.error.kind
                ))
                self._log_state(name, ProviderState.SOFT_FAILED, outcome.error)
                if best is None or self._richness(outcome) > self._richness(best[1]):
                    best = (name, outcome)
                if is_last:
                    return normalizer.partial(best[0], best[1], attempts)
                continue

            error = self._failure_error(outcome)
            if not error.is_provider_specific:
                attempts.append(AttemptRecord(
                    name, ProviderState.HARD_FAILED, error.message, error.kind
                ))
                self._log_state(name, ProviderState.HARD_FAILED, error)
                return normalizer.hard_failure(name, error, attempts)

            attempts.append(AttemptRecord(
                name, ProviderState.SOFT_FAILED, error.message, error.kind
            ))
            self._log_state(name, ProviderState.SOFT_FAILED, error)

        if best is not None:
            return normalizer.partial(best[0], best[1], attempts)

        dominant = max(
            (a.error_kind for a in attempts if a.error_kind is not None),
            key=lambda kind: kind.severity,
            default=None,
        )
        logger.warning(
            f"{OrchestratorErrorCode.EXHAUSTED} Provider list exhausted | "
            f"asset={request.asset_id} | "
            f"attempted={len(attempts)} | "
            f"correlation_id={self._correlation_id}"
        )
        return normalizer.exhausted(attempts, dominant)

    # =========================================================================
    # Private Methods
    # =========================================================================

    def _eligible(
        self,
        request: CanonicalRequest,
        registrations: Sequence[ProviderRegistration]
    ) -> List[Tuple[ProviderRegistration, Any]]:
        eligible = []  # type: List[Tuple[ProviderRegistration, Any]]
        for registration in registrations:
            name = registration.provider_name
            reason = None  # type: Optional[str]
            adapter = self._adapters.get(name)

            if not registration.is_attemptable:
                reason = "no credential" if not registration.credential else "no symbol mapping"
            elif adapter is None:
                reason = "no adapter registered"
            elif hasattr(adapter, "supports") and not adapter.supports(request.asset_class):
                reason = f"does not serve {request.asset_class.value} assets"

            if reason is not None:
                logger.debug(
                    f"Provider skipped | "
                    f"provider={name} | "
                    f"state={ProviderState.NOT_ATTEMPTED.value} | "
                    f"reason={reason} | "
                    f"correlation_id={self._correlation_id}"
                )
                continue
            eligible.append((registration, adapter))
        return eligible

    def _nothing_attempted(
        self,
        request: CanonicalRequest,
        registrations: Sequence[ProviderRegistration],
        normalizer: ResultNormalizer
    ) -> AggregatedResult:
        if not any(r.credential for r in registrations):
            logger.warning(
                f"{OrchestratorErrorCode.NO_PROVIDER} No provider has a credential | "
                f"asset={request.asset_id} | "
                f"correlation_id={self._correlation_id}"
            )
            return normalizer.not_configured()

        logger.warning(
            f"{OrchestratorErrorCode.UNSUPPORTED} No configured provider serves asset | "
            f"asset={request.asset_id} | "
            f"correlation_id={self._correlation_id}"
        )
        return normalizer.unsupported(ClassifiedError.of(
            ErrorKind.UNSUPPORTED_FOR_ASSET,
            f"No configured provider supports {request.asset_display_name} ({request.asset_id})",
        ))

    async def _invoke(
        self,
        adapter: Any,
        registration: ProviderRegistration,
        request: CanonicalRequest
    ) -> AdapterOutcome:
        try:
            outcome = await adapter.fetch(
                registration.provider_symbol,
                request.timeframe_id,
                registration.credential,
                request.asset_class,
            )
        except Exception as e:
            logger.exception(
                f"{OrchestratorErrorCode.ADAPTER_EXCEPTION} Adapter raised | "
                f"provider={registration.provider_name} | "
                f"error={type(e).__name__} | "
                f"correlation_id={self._correlation_id}"
            )
            return AdapterFailure(error=ClassifiedError.of(
                ErrorKind.NETWORK_ERROR,
                f"Unexpected error - {type(e).__name__}: {str(e)[:100]}",
            ))

        if not isinstance(outcome, (AdapterSuccess, AdapterFailure)):
            logger.error(
                f"{OrchestratorErrorCode.INVALID_OUTCOME} Adapter returned no outcome | "
                f"provider={registration.provider_name} | "
                f"returned={type(outcome).__name__} | "
                f"correlation_id={self._correlation_id}"
            )
            return AdapterFailure(error=ClassifiedError.of(
                ErrorKind.MALFORMED_RESPONSE,
                f"Adapter returned {type(outcome).__name__} instead of an outcome",
            ))
        return outcome

    def _failure_error(self, outcome: AdapterOutcome) -> ClassifiedError:
        """Error for a Failure, or for a Success lacking essential fields."""
        if outcome.error is not None:
            return outcome.error
        return ClassifiedError.of(
            ErrorKind.MALFORMED_RESPONSE,
            ESSENTIAL_FIELDS_MESSAGE.get(self._essential, "Essential fields missing"),
        )

    @staticmethod
    def _richness(outcome: AdapterSuccess) -> int:
        return len(outcome.fields.populated())

    def _log_state(
        self,
        provider_name: str,
        state: ProviderState,
        error: Optional[ClassifiedError] = None
    ) -> None:
        log = logger.info if state == ProviderState.ACCEPTED else logger.warning
        prefix = ""
        if state == ProviderState.HARD_FAILED:
            log = logger.error
            prefix = f"{OrchestratorErrorCode.HARD_FAIL} "
        log(
            f"{prefix}Provider state | "
            f"provider={provider_name} | "
            f"state={state.value} | "
            f"kind={error.kind.value if error else None} | "
            f"provider_specific={error.is_provider_specific if error else None} | "
            f"correlation_id={self._correlation_id}"
        )
