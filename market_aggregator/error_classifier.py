"""
============================================================================
Error Classifier - Shared Failure Taxonomy for All Providers
============================================================================

Reliability Level: L6 Critical
Traceability: Every classification records the originating HTTP status

ERROR TAXONOMY:
    Each provider reports failures differently (HTTP status codes, JSON
    error payloads, free-text messages). The classifier collapses all of
    them into one ErrorKind plus an is_provider_specific flag:

    Kind                    Provider-specific   Fallback
    ----------------------  ------------------  ----------------
    UNAUTHORIZED            yes                 next provider
    RATE_LIMITED            yes                 next provider
    QUOTA_OR_BILLING        yes                 next provider
    NOT_FOUND               yes                 next provider
    MALFORMED_RESPONSE      yes                 next provider
    NETWORK_ERROR           yes                 next provider
    UNSUPPORTED_FOR_ASSET   no                  abort chain
    NO_PROVIDER_CONFIGURED  no                  nothing to try

CLASSIFICATION POINT:
    Free-text scanning happens exactly once, where an adapter first reads a
    raw payload. Downstream code only ever sees ClassifiedError.
============================================================================
"""

from typing import Optional, Iterable
from dataclasses import dataclass
from enum import Enum
import logging

import httpx

# Configure module logger
logger = logging.getLogger(__name__)


# =============================================================================
# Constants
# =============================================================================

# Maximum characters of a raw provider message kept in a classified error
MAX_DETAIL_LENGTH = 100

# Phrase tables (lower-case substring match)
AUTH_PHRASES = (
    "api key",
    "apikey",
    "api_key",
    "invalid key",
    "invalid-key",
    "unauthorized",
    "not authorized",
    "forbidden",
    "invalid token",
    "access denied",
)

BILLING_PHRASES = (
    "inactive-account",
    "account is inactive",
    "inactive account",
    "billing",
    "payment required",
    "upgrade your plan",
    "not available on your plan",
    "not entitled",
    "subscription",
)

RATE_LIMIT_PHRASES = (
    "rate limit",
    "rate-limit",
    "too many requests",
    "quota",
    "credit limit",
    "run out of api credits",
    "limit reached",
    "limit hit",
    "exceeded",
)


# =============================================================================
# Error Codes
# =============================================================================

class ClassifierErrorCode:
    """Classifier-specific error codes for audit logging."""
    HTTP_STATUS = "CLASS-001"
    PAYLOAD_MESSAGE = "CLASS-002"
    TRANSPORT = "CLASS-003"


# =============================================================================
# Enums
# =============================================================================

class ErrorKind(Enum):
    """
    Shared failure taxonomy.

    Reliability Level: L6 Critical
    """
    UNAUTHORIZED = "Unauthorized"
    RATE_LIMITED = "RateLimited"
    NOT_FOUND = "NotFound"
    QUOTA_OR_BILLING = "QuotaOrBilling"
    MALFORMED_RESPONSE = "MalformedResponse"
    NETWORK_ERROR = "NetworkError"
    UNSUPPORTED_FOR_ASSET = "UnsupportedForAsset"
    NO_PROVIDER_CONFIGURED = "NoProviderConfigured"

    @property
    def is_provider_specific(self) -> bool:
        return self not in NON_PROVIDER_SPECIFIC_KINDS

    @property
    def severity(self) -> int:
        return KIND_SEVERITY[self]


NON_PROVIDER_SPECIFIC_KINDS = frozenset({
    ErrorKind.UNSUPPORTED_FOR_ASSET,
    ErrorKind.NO_PROVIDER_CONFIGURED,
})

# Higher wins when an adapter has to pick one classification
KIND_SEVERITY = {
    ErrorKind.NO_PROVIDER_CONFIGURED: 90,
    ErrorKind.UNSUPPORTED_FOR_ASSET: 80,
    ErrorKind.UNAUTHORIZED: 70,
    ErrorKind.QUOTA_OR_BILLING: 60,
    ErrorKind.RATE_LIMITED: 50,
    ErrorKind.NOT_FOUND: 40,
    ErrorKind.NETWORK_ERROR: 30,
    ErrorKind.MALFORMED_RESPONSE: 20,
}


# =============================================================================
# Data Classes
# =============================================================================

@dataclass(frozen=True)
class ClassifiedError:
    """
    A failure that has already been assigned a taxonomy kind.

    Reliability Level: L6 Critical
    """
    kind: ErrorKind
    message: str
    is_provider_specific: bool
    status_code: Optional[int] = None

    @classmethod
    def of(
        cls,
        kind: ErrorKind,
        message: str,
        status_code: Optional[int] = None
    ) -> "ClassifiedError":
        """Build an error whose provider-specific flag follows its kind."""
        return cls(
            kind=kind,
            message=message,
            is_provider_specific=kind.is_provider_specific,
            status_code=status_code,
        )


# =============================================================================
# Classification Functions
# =============================================================================

def _truncate(text: str, limit: int = MAX_DETAIL_LENGTH) -> str:
    text = " ".join(str(text).split())
    if len(text) <= limit:
        return text
    return text[:limit]


def kind_from_message(message: Optional[str]) -> Optional[ErrorKind]:
    """
    Guess a kind from a provider's free-text error message.

    Returns None when no phrase matches.
    """
    if not message:
        return None
    lowered = str(message).lower()
    if any(phrase in lowered for phrase in BILLING_PHRASES):
        return ErrorKind.QUOTA_OR_BILLING
    if any(phrase in lowered for phrase in AUTH_PHRASES):
        return ErrorKind.UNAUTHORIZED
    if any(phrase in lowered for phrase in RATE_LIMIT_PHRASES):
        return ErrorKind.RATE_LIMITED
    return None


def kind_from_status(status_code: int) -> Optional[ErrorKind]:
    """Map an HTTP status code to a kind (None for 2xx/3xx)."""
    if status_code in (401, 403):
        return ErrorKind.UNAUTHORIZED
    if status_code == 429:
        return ErrorKind.RATE_LIMITED
    if status_code == 402:
        return ErrorKind.QUOTA_OR_BILLING
    if status_code in (400, 404, 422):
        return ErrorKind.NOT_FOUND
    if status_code >= 500:
        return ErrorKind.NETWORK_ERROR
    if status_code >= 400:
        return ErrorKind.MALFORMED_RESPONSE
    return None


def classify_http_error(
    label: str,
    status_code: int,
    provider_message: Optional[str] = None
) -> ClassifiedError:
    """
    Classify a non-2xx HTTP response.

    401 and 429 are taken at face value. Otherwise a recognised phrase in
    the provider's message wins over the generic status mapping, so a 400
    with "invalid API key" is UNAUTHORIZED and a 403 saying "upgrade your
    plan" is QUOTA_OR_BILLING.

    Args:
        label: Sub-call label used as message prefix (e.g., 'RSI')
        status_code: HTTP status code
        provider_message: Error text from the response body, if any

    Returns:
        ClassifiedError
    """
    phrase_kind = kind_from_message(provider_message)
    status_kind = kind_from_status(status_code)

    if status_code in (401, 429):
        kind = status_kind
    else:
        kind = phrase_kind or status_kind or ErrorKind.MALFORMED_RESPONSE

    if kind == ErrorKind.UNAUTHORIZED:
        message = f"{label}: Invalid/unauthorized API key ({status_code})"
    elif kind == ErrorKind.RATE_LIMITED:
        message = f"{label}: API rate limit hit ({status_code})"
    elif kind == ErrorKind.QUOTA_OR_BILLING:
        message = f"{label}: Account or plan does not allow this request ({status_code})"
    else:
        detail = _truncate(provider_message) if provider_message else "no detail"
        message = f"{label}: API Error {status_code}: {detail}"

    logger.debug(
        f"{ClassifierErrorCode.HTTP_STATUS} Classified HTTP failure | "
        f"label={label} | "
        f"status={status_code} | "
        f"kind={kind.value}"
    )

    return ClassifiedError.of(kind, message, status_code=status_code)


def classify_payload_error(
    label: str,
    provider_message: Optional[str],
    default_kind: ErrorKind = ErrorKind.MALFORMED_RESPONSE,
    status_code: Optional[int] = None
) -> ClassifiedError:
    """
    Classify an error reported inside a 200 response body
    (e.g., {"status": "error", "message": "..."}).
    """
    kind = kind_from_message(provider_message) or default_kind
    detail = _truncate(provider_message) if provider_message else "unknown error"

    logger.debug(
        f"{ClassifierErrorCode.PAYLOAD_MESSAGE} Classified payload failure | "
        f"label={label} | "
        f"kind={kind.value}"
    )

    return ClassifiedError.of(kind, f"{label}: API error - {detail}", status_code=status_code)


def classify_exception(label: str, exc: BaseException, decoding: bool = True) -> ClassifiedError:
    """
    Classify an exception raised while talking to a provider.

    Transport failures (httpx.HTTPError) are NETWORK_ERROR. A ValueError is
    a JSON decoding failure (MALFORMED_RESPONSE) only when raised while
    decoding a body; anything else is an unexpected NETWORK_ERROR.
    """
    if isinstance(exc, httpx.HTTPError):
        kind = ErrorKind.NETWORK_ERROR
        message = f"{label}: Network/Client error - {_truncate(str(exc) or type(exc).__name__)}"
    elif decoding and isinstance(exc, ValueError):
        kind = ErrorKind.MALFORMED_RESPONSE
        message = f"{label}: Response was not valid JSON"
    else:
        kind = ErrorKind.NETWORK_ERROR
        message = f"{label}: Unexpected client error - {_truncate(f'{type(exc).__name__}: {exc}')}"

    logger.debug(
        f"{ClassifierErrorCode.TRANSPORT} Classified exception | "
        f"label={label} | "
        f"exception={type(exc).__name__} | "
        f"kind={kind.value}"
    )

    return ClassifiedError.of(kind, message)


def missing_field(label: str, what: str = "Data not found/unexpected format") -> ClassifiedError:
    """A response parsed but the expected field is absent or unparseable."""
    return ClassifiedError.of(ErrorKind.MALFORMED_RESPONSE, f"{label}: {what}")


def unsupported_for_asset(provider_name: str, asset_description: str) -> ClassifiedError:
    """An asset/type mismatch that no amount of fallback will fix."""
    return ClassifiedError.of(
        ErrorKind.UNSUPPORTED_FOR_ASSET,
        f"{provider_name} does not support {asset_description}",
    )


def strongest(errors: Iterable[ClassifiedError]) -> Optional[ClassifiedError]:
    """
    Pick the dominant error among several sub-call failures.

    Ties keep the first error seen.
    """
    best = None  # type: Optional[ClassifiedError]
    for error in errors:
        if best is None or error.kind.severity > best.kind.severity:
            best = error
    return best


def combine(errors: Iterable[ClassifiedError]) -> Optional[ClassifiedError]:
    """
    Collapse several sub-call failures into one ClassifiedError whose kind
    is the strongest and whose message joins every sub-call message.
    """
    error_list = list(errors)
    dominant = strongest(error_list)
    if dominant is None:
        return None

    messages = []  # type: list
    for error in error_list:
        if error.message not in messages:
            messages.append(error.message)

    return ClassifiedError(
        kind=dominant.kind,
        message="; ".join(messages),
        is_provider_specific=dominant.is_provider_specific,
        status_code=dominant.status_code,
    )
