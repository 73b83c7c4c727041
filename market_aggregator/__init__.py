"""
============================================================================
Market Aggregator Package - Multi-Provider Fetch and Fallback
============================================================================

Reliability Level: L6 Critical
Decimal Integrity: All prices use decimal.Decimal with ROUND_HALF_EVEN
Traceability: All operations include correlation_id for audit

MULTI-PROVIDER PIPELINE:
    Live market indicators (price, RSI, MACD, history, session status)
    and reference data (exchange rates, benchmark interest rates, asset
    headlines, the economic calendar) come from several rate-limited
    providers with different response shapes.
    For every request the FallbackOrchestrator tries providers in a
    fixed priority order, classifies each failure with one shared
    taxonomy, and returns a single AggregatedResult with provenance.

PRIVACY GUARDRAIL:
    - No API keys hardcoded
    - Credentials resolved once by the caller (see config.py)
    - Credentials never logged
============================================================================
"""

from market_aggregator.schemas import (
    AggregatedResult,
    AssetClass,
    CanonicalRequest,
    ProviderRegistration,
    ProviderType,
)
from market_aggregator.error_classifier import ClassifiedError, ErrorKind
from market_aggregator.config import (
    AggregatorConfig,
    AggregatorConfigurationError,
    ProviderCredentials,
    get_aggregator_config,
)
from market_aggregator.fallback_orchestrator import FallbackOrchestrator
from market_aggregator.aggregator import (
    AssetOverview,
    fetch_asset_overview,
    fetch_economic_data,
    fetch_economic_events,
    fetch_interest_rate,
    fetch_market_data,
    fetch_news_headlines,
)

__all__ = [
    # Schemas
    "AggregatedResult",
    "AssetClass",
    "CanonicalRequest",
    "ProviderRegistration",
    "ProviderType",
    # Errors
    "ClassifiedError",
    "ErrorKind",
    # Config
    "AggregatorConfig",
    "AggregatorConfigurationError",
    "ProviderCredentials",
    "get_aggregator_config",
    # Orchestration
    "FallbackOrchestrator",
    "AssetOverview",
    "fetch_asset_overview",
    "fetch_economic_data",
    "fetch_economic_events",
    "fetch_interest_rate",
    "fetch_market_data",
    "fetch_news_headlines",
]
