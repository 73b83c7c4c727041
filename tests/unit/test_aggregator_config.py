"""
============================================================================
Unit Tests - Aggregator Configuration
============================================================================

Reliability Level: L6 Critical
Test Coverage: Credential loading from environment, blank keys,
               timeout parsing and validation (CONFIG-001), singleton
============================================================================
"""

import os

import pytest

from market_aggregator.config import (
    AggregatorConfig,
    AggregatorConfigErrorCode,
    AggregatorConfigurationError,
    DEFAULT_HTTP_TIMEOUT_SECONDS,
    PROVIDER_ENV_VARS,
    ProviderCredentials,
    TIMEOUT_ENV_VAR,
    get_aggregator_config,
    reset_aggregator_config,
)
from market_aggregator.schemas import ProviderType


# =============================================================================
# Test Fixtures
# =============================================================================

@pytest.fixture(autouse=True)
def clean_environment():
    """
    Clean environment variables before and after each test.
    """
    original_env = {}
    env_vars = list(PROVIDER_ENV_VARS.values()) + [TIMEOUT_ENV_VAR]

    for var in env_vars:
        original_env[var] = os.environ.get(var)
        if var in os.environ:
            del os.environ[var]

    reset_aggregator_config()

    yield

    for var, value in original_env.items():
        if value is not None:
            os.environ[var] = value
        elif var in os.environ:
            del os.environ[var]

    reset_aggregator_config()


# =============================================================================
# Credentials
# =============================================================================

class TestProviderCredentials:
    """Tests for the resolved credential set."""

    def test_blank_values_are_absent(self):
        credentials = ProviderCredentials(polygon="  ", finnhub="", fred="fred-key")

        assert credentials.polygon is None
        assert credentials.finnhub is None
        assert credentials.configured_providers() == [ProviderType.FRED]

    def test_for_provider(self):
        credentials = ProviderCredentials(twelve_data="td-key")

        assert credentials.for_provider(ProviderType.TWELVE_DATA) == "td-key"
        assert credentials.for_provider(ProviderType.POLYGON) is None

    def test_repr_hides_keys(self):
        text = repr(ProviderCredentials(polygon="super-secret"))

        assert "super-secret" not in text
        assert "polygon=set" in text
        assert "fred=unset" in text


# =============================================================================
# Environment Loading
# =============================================================================

class TestFromEnvironment:
    """Tests for environment parsing."""

    def test_defaults(self):
        config = AggregatorConfig.from_environment(dotenv=False)

        assert config.timeout_seconds == DEFAULT_HTTP_TIMEOUT_SECONDS
        assert config.credentials.configured_providers() == []

    def test_keys_from_environment(self):
        os.environ["POLYGON_API_KEY"] = "poly-key"
        os.environ["FRED_API_KEY"] = " fred-key "

        config = AggregatorConfig.from_environment(dotenv=False)

        assert config.credentials.polygon == "poly-key"
        assert config.credentials.fred == "fred-key"
        assert config.to_dict()["providers"] == ["Polygon.io", "FRED"]

    def test_news_key_from_environment(self):
        os.environ["NEWS_API_KEY"] = "news-key"

        config = AggregatorConfig.from_environment(dotenv=False)

        assert config.credentials.news_api == "news-key"
        assert config.credentials.for_provider(ProviderType.NEWS_API) == "news-key"
        assert "news_api=set" in repr(config.credentials)

    def test_custom_timeout(self):
        os.environ[TIMEOUT_ENV_VAR] = "12.5"

        config = AggregatorConfig.from_environment(dotenv=False)

        assert config.timeout_seconds == 12.5

    def test_unparseable_timeout_uses_default(self):
        os.environ[TIMEOUT_ENV_VAR] = "soon"

        config = AggregatorConfig.from_environment(dotenv=False)

        assert config.timeout_seconds == DEFAULT_HTTP_TIMEOUT_SECONDS

    @pytest.mark.parametrize("value", ["0", "-5", "nan", "inf"])
    def test_invalid_timeout_fails_closed(self, value):
        os.environ[TIMEOUT_ENV_VAR] = value

        with pytest.raises(AggregatorConfigurationError) as exc_info:
            AggregatorConfig.from_environment(dotenv=False)

        assert exc_info.value.error_code == AggregatorConfigErrorCode.CONFIG_INVALID
        assert str(exc_info.value).startswith("[CONFIG-001]")

    def test_validation_can_be_skipped(self):
        os.environ[TIMEOUT_ENV_VAR] = "0"

        config = AggregatorConfig.from_environment(validate=False, dotenv=False)

        assert config.timeout_seconds == 0


class TestSingleton:
    """Tests for the module-level instance."""

    def test_instance_is_cached_until_reset(self):
        for var in PROVIDER_ENV_VARS.values():
            os.environ[var] = "key"
        os.environ[TIMEOUT_ENV_VAR] = "10"

        first = get_aggregator_config()
        os.environ[TIMEOUT_ENV_VAR] = "20"

        assert get_aggregator_config() is first

        reset_aggregator_config()

        assert get_aggregator_config().timeout_seconds == 20.0
