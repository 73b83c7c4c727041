"""
============================================================================
Conversion - Numeric Parsing and Base-Currency Rate Reconciliation
============================================================================

Reliability Level: L6 Critical
Decimal Integrity: All math uses decimal.Decimal with ROUND_HALF_EVEN

SENTINEL HANDLING:
    Providers use placeholders for "no data": FRED returns ".", others
    send "", "N/A", null or "NaN". Every one of them parses to None.
    A sentinel is never read as zero.

RATE RECONCILIATION:
    FX providers quote everything against a fixed base currency P
    (USD for every provider used here). For canonical pair BASE/TARGET:

        BASE == P          rate = rates[TARGET]
        TARGET == P        rate = 1 / rates[BASE]
        otherwise          rate = rates[TARGET] / rates[BASE]

    Single-leg commodities / crypto are quoted as "units of asset per 1 P",
    so the display price is 1 / rates[ticker].

    Every FX adapter calls derive_rate(); only the field name that holds
    the rates table differs between providers.
============================================================================
"""

from decimal import Decimal, ROUND_HALF_EVEN, InvalidOperation
from typing import Optional, Mapping, Any, Tuple
import logging

from market_aggregator.schemas import AssetClass, PRECISION_FX, PRECISION_ASSET

# Configure module logger
logger = logging.getLogger(__name__)


# =============================================================================
# Constants
# =============================================================================

# Values providers use to mean "no data"
SENTINEL_VALUES = frozenset({".", "", "-", "N/A", "NA", "NAN", "NULL", "NONE"})

# Base currency shared by the FX providers
DEFAULT_PROVIDER_BASE = "USD"


# =============================================================================
# Exceptions
# =============================================================================

class RateUnavailableError(Exception):
    """
    Raised when a rates table lacks a leg needed for the requested pair,
    or holds a zero / missing value for a leg that must be divided by.
    """

    def __init__(self, currency: str, message: Optional[str] = None):
        self.currency = currency
        super().__init__(message or f"Rate for {currency} not available")


# =============================================================================
# Numeric Parsing
# =============================================================================

def parse_decimal(raw: Any) -> Optional[Decimal]:
    """
    Parse a provider value into a finite Decimal.

    Args:
        raw: str, int, float, Decimal or None

    Returns:
        Decimal, or None for sentinels, non-numeric text and non-finite values
    """
    if raw is None or isinstance(raw, bool):
        return None

    if isinstance(raw, str):
        text = raw.strip()
        if text.upper() in SENTINEL_VALUES:
            return None
    else:
        text = str(raw)

    try:
        value = Decimal(text)
    except (InvalidOperation, ValueError):
        return None

    if not value.is_finite():
        return None
    return value


def quantize(value: Optional[Decimal], precision: Decimal) -> Optional[Decimal]:
    """Quantize with ROUND_HALF_EVEN, passing None through."""
    if value is None:
        return None
    return value.quantize(precision, rounding=ROUND_HALF_EVEN)


def precision_for(asset_class: AssetClass) -> Decimal:
    """Currency pairs keep 5 decimals, commodities and crypto keep 2."""
    if asset_class == AssetClass.CURRENCY:
        return PRECISION_FX
    return PRECISION_ASSET


# =============================================================================
# Rate Reconciliation
# =============================================================================

def split_pair(asset_id: str) -> Tuple[str, Optional[str]]:
    """
    Split a canonical identifier into (base, target).

    'EUR/USD' -> ('EUR', 'USD'); 'USO' -> ('USO', None)
    """
    if "/" in asset_id:
        base, target = asset_id.split("/", 1)
        return base.strip().upper(), target.strip().upper()
    return asset_id.strip().upper(), None


def _leg(rates: Mapping[str, Any], currency: str) -> Decimal:
    value = parse_decimal(rates.get(currency))
    if value is None:
        raise RateUnavailableError(currency)
    return value


def _nonzero_leg(rates: Mapping[str, Any], currency: str) -> Decimal:
    value = _leg(rates, currency)
    if value == 0:
        raise RateUnavailableError(currency, f"Rate for {currency} is zero")
    return value


def derive_rate(
    rates: Mapping[str, Any],
    base: str,
    target: str,
    provider_base: str = DEFAULT_PROVIDER_BASE
) -> Decimal:
    """
    Derive BASE/TARGET from a table of rates quoted against provider_base.

    Args:
        rates: currency -> units of that currency per 1 provider_base
        base: Base leg of the canonical pair
        target: Quote leg of the canonical pair
        provider_base: The provider's fixed base currency

    Returns:
        Unrounded Decimal rate

    Raises:
        RateUnavailableError: A needed leg is missing, sentinel or zero
    """
    base = base.upper()
    target = target.upper()
    provider_base = provider_base.upper()

    if base == target:
        return Decimal("1")

    if base == provider_base:
        return _leg(rates, target)

    if target == provider_base:
        return Decimal("1") / _nonzero_leg(rates, base)

    # Cross pair: neither leg is the provider's base
    return _leg(rates, target) / _nonzero_leg(rates, base)


def invert_single_leg(rates: Mapping[str, Any], ticker: str) -> Decimal:
    """
    Price of one unit of a single-leg asset (XAU, BTC) in provider_base,
    from a table quoting "units of asset per 1 provider_base".
    """
    return Decimal("1") / _nonzero_leg(rates, ticker.upper())


def reconcile(
    rates: Mapping[str, Any],
    asset_id: str,
    asset_class: AssetClass,
    provider_base: str = DEFAULT_PROVIDER_BASE
) -> Decimal:
    """
    Produce the display rate for a canonical asset id, rounded for its class.

    ============================================================================
    EXAMPLES (provider base USD):
    ============================================================================
    EUR/JPY with EUR=0.92, JPY=157.0   -> 157.0 / 0.92 = 170.65217
    XAU/USD with XAU=0.00046           -> 1 / 0.00046  = 2173.91
    ============================================================================

    Raises:
        RateUnavailableError: A needed leg is missing, sentinel or zero
    """
    base, target = split_pair(asset_id)

    if asset_class == AssetClass.CURRENCY and target is not None:
        value = derive_rate(rates, base, target, provider_base)
    elif target is None or target == provider_base.upper():
        value = invert_single_leg(rates, base)
    else:
        # Single-leg asset quoted in a non-base currency (e.g., XAU/EUR)
        value = invert_single_leg(rates, base) * _leg(rates, target)

    return value.quantize(precision_for(asset_class), rounding=ROUND_HALF_EVEN)
