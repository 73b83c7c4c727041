"""
============================================================================
Market Aggregator - Configuration
============================================================================

Reliability Level: L6 Critical
Traceability: Configuration loading is logged (credentials never are)

This module provides configuration management for the aggregator:
- Provider API keys from environment variables (or a .env file)
- HTTP transport timeout
- Validation with fail-closed behavior on invalid values (CONFIG-001)

The aggregation core never reads the environment itself; callers resolve
credentials once and pass a ProviderCredentials value in.

ENVIRONMENT VARIABLES:
    - POLYGON_API_KEY
    - FINNHUB_API_KEY
    - TWELVE_DATA_API_KEY
    - EXCHANGE_RATE_API_KEY
    - OPEN_EXCHANGE_RATES_API_KEY
    - FRED_API_KEY
    - NEWS_API_KEY
    - MARKET_HTTP_TIMEOUT_SECONDS: Transport timeout (default: 30)

ERROR CODES:
    - CONFIG-001: Configuration invalid
============================================================================
"""

from typing import Optional, Dict, List
from dataclasses import dataclass, field
import logging
import math
import os

from dotenv import load_dotenv

from market_aggregator.schemas import ProviderType

# Configure module logger
logger = logging.getLogger(__name__)


# =============================================================================
# Error Codes
# =============================================================================

class AggregatorConfigErrorCode:
    """Configuration-specific error codes for audit logging."""
    CONFIG_INVALID = "CONFIG-001"


# =============================================================================
# Default Values
# =============================================================================

DEFAULT_HTTP_TIMEOUT_SECONDS = 30.0

# Environment variable per provider
PROVIDER_ENV_VARS = {
    ProviderType.POLYGON: "POLYGON_API_KEY",
    ProviderType.FINNHUB: "FINNHUB_API_KEY",
    ProviderType.TWELVE_DATA: "TWELVE_DATA_API_KEY",
    ProviderType.EXCHANGE_RATE_API: "EXCHANGE_RATE_API_KEY",
    ProviderType.OPEN_EXCHANGE_RATES: "OPEN_EXCHANGE_RATES_API_KEY",
    ProviderType.FRED: "FRED_API_KEY",
    ProviderType.NEWS_API: "NEWS_API_KEY",
}

TIMEOUT_ENV_VAR = "MARKET_HTTP_TIMEOUT_SECONDS"


# =============================================================================
# Configuration Validation Exception
# =============================================================================

class AggregatorConfigurationError(Exception):
    """
    Exception raised when aggregator configuration is invalid.

    Reliability Level: L6 Critical
    """

    def __init__(self, message: str, error_code: str = AggregatorConfigErrorCode.CONFIG_INVALID):
        """
        Initialize configuration error.

        Args:
            message: Human-readable error message
            error_code: Error code (default: CONFIG-001)
        """
        self.error_code = error_code
        self.message = message
        super().__init__(f"[{error_code}] {message}")


# =============================================================================
# Credentials
# =============================================================================

def _clean(value: Optional[str]) -> Optional[str]:
    if value is None:
        return None
    value = value.strip()
    return value or None


@dataclass(frozen=True)
class ProviderCredentials:
    """
    Already-resolved API keys, one per provider. None means "not configured".

    Reliability Level: L6 Critical
    Side Effects: None (immutable)
    """
    polygon: Optional[str] = None
    finnhub: Optional[str] = None
    twelve_data: Optional[str] = None
    exchange_rate_api: Optional[str] = None
    open_exchange_rates: Optional[str] = None
    fred: Optional[str] = None
    news_api: Optional[str] = None

    def __post_init__(self) -> None:
        # Blank strings count as absent
        for name in ("polygon", "finnhub", "twelve_data", "exchange_rate_api",
                     "open_exchange_rates", "fred", "news_api"):
            object.__setattr__(self, name, _clean(getattr(self, name)))

    def for_provider(self, provider: ProviderType) -> Optional[str]:
        mapping = {
            ProviderType.POLYGON: self.polygon,
            ProviderType.FINNHUB: self.finnhub,
            ProviderType.TWELVE_DATA: self.twelve_data,
            ProviderType.EXCHANGE_RATE_API: self.exchange_rate_api,
            ProviderType.OPEN_EXCHANGE_RATES: self.open_exchange_rates,
            ProviderType.FRED: self.fred,
            ProviderType.NEWS_API: self.news_api,
        }
        return mapping.get(provider)

    def configured_providers(self) -> List[ProviderType]:
        return [p for p in PROVIDER_ENV_VARS if self.for_provider(p)]

    def __repr__(self) -> str:
        flags = ", ".join(
            f"{p.name.lower()}={'set' if self.for_provider(p) else 'unset'}"
            for p in PROVIDER_ENV_VARS
        )
        return f"ProviderCredentials({flags})"


# =============================================================================
# AggregatorConfig Class
# =============================================================================

@dataclass
class AggregatorConfig:
    """
    Aggregator configuration.

    ============================================================================
    CONFIGURATION PARAMETERS:
    ============================================================================
    - credentials: ProviderCredentials (any subset may be unset)
    - timeout_seconds: HTTP transport timeout in seconds (default: 30)
    ============================================================================

    Reliability Level: L6 Critical
    Input Constraints: timeout_seconds must be positive
    Side Effects: Logs configuration on load
    """

    credentials: ProviderCredentials = field(default_factory=ProviderCredentials)
    timeout_seconds: float = DEFAULT_HTTP_TIMEOUT_SECONDS

    def validate(self) -> None:
        """
        Validate configuration values.

        Raises:
            AggregatorConfigurationError: If a value is out of range
        """
        errors = []  # type: List[str]

        if not math.isfinite(self.timeout_seconds) or self.timeout_seconds <= 0:
            errors.append(
                f"{TIMEOUT_ENV_VAR} must be a positive number, got: {self.timeout_seconds}"
            )

        if errors:
            error_msg = "Aggregator configuration validation failed: " + "; ".join(errors)
            logger.error(f"[{AggregatorConfigErrorCode.CONFIG_INVALID}] {error_msg}")
            raise AggregatorConfigurationError(error_msg)

        configured = self.credentials.configured_providers()
        if not configured:
            logger.warning(
                "[AGGREGATOR-CONFIG] No provider API keys configured; "
                "every request will report NoProviderConfigured"
            )

        logger.info(
            f"[AGGREGATOR-CONFIG] Configuration validated | "
            f"timeout_seconds={self.timeout_seconds} | "
            f"providers={','.join(p.value for p in configured) or 'none'}"
        )

    @classmethod
    def from_environment(cls, validate: bool = True, dotenv: bool = True) -> "AggregatorConfig":
        """
        Load configuration from environment variables.

        Args:
            validate: Whether to validate configuration after loading
            dotenv: Whether to load a .env file first (existing variables win)

        Returns:
            AggregatorConfig instance

        Raises:
            AggregatorConfigurationError: If validation fails
        """
        if dotenv:
            load_dotenv()

        keys = {
            provider: _clean(os.environ.get(env_var))
            for provider, env_var in PROVIDER_ENV_VARS.items()
        }  # type: Dict[ProviderType, Optional[str]]

        credentials = ProviderCredentials(
            polygon=keys[ProviderType.POLYGON],
            finnhub=keys[ProviderType.FINNHUB],
            twelve_data=keys[ProviderType.TWELVE_DATA],
            exchange_rate_api=keys[ProviderType.EXCHANGE_RATE_API],
            open_exchange_rates=keys[ProviderType.OPEN_EXCHANGE_RATES],
            fred=keys[ProviderType.FRED],
            news_api=keys[ProviderType.NEWS_API],
        )

        timeout_str = os.environ.get(TIMEOUT_ENV_VAR, str(DEFAULT_HTTP_TIMEOUT_SECONDS))
        try:
            timeout_seconds = float(timeout_str.strip())
        except ValueError:
            logger.warning(
                f"[AGGREGATOR-CONFIG] Invalid {TIMEOUT_ENV_VAR} value: {timeout_str}, "
                f"using default: {DEFAULT_HTTP_TIMEOUT_SECONDS}"
            )
            timeout_seconds = DEFAULT_HTTP_TIMEOUT_SECONDS

        logger.info(
            f"[AGGREGATOR-CONFIG] Loading configuration from environment | "
            f"{TIMEOUT_ENV_VAR}={timeout_seconds} | "
            f"credentials={credentials!r}"
        )

        config = cls(credentials=credentials, timeout_seconds=timeout_seconds)

        if validate:
            config.validate()

        return config

    def to_dict(self) -> dict:
        """Configuration summary for logging (no secrets)."""
        return {
            "timeout_seconds": self.timeout_seconds,
            "providers": [p.value for p in self.credentials.configured_providers()],
        }


# =============================================================================
# Module-Level Configuration Instance
# =============================================================================

# Global configuration instance (lazy-loaded)
_config_instance = None  # type: Optional[AggregatorConfig]


def get_aggregator_config(validate: bool = True) -> AggregatorConfig:
    """
    Get the global aggregator configuration, loading it from the
    environment on first access.
    """
    global _config_instance

    if _config_instance is None:
        _config_instance = AggregatorConfig.from_environment(validate=validate)

    return _config_instance


def reset_aggregator_config() -> None:
    """Reset the global configuration instance (for tests)."""
    global _config_instance
    _config_instance = None
    logger.debug("[AGGREGATOR-CONFIG] Configuration instance reset")
