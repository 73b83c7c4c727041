"""
============================================================================
Unit Tests - Error Classifier
============================================================================

Reliability Level: L6 Critical
Test Coverage: HTTP status, payload message and exception classification,
               severity ordering, error combination
============================================================================
"""

import pytest
import httpx

from market_aggregator.error_classifier import (
    ClassifiedError,
    ErrorKind,
    KIND_SEVERITY,
    classify_exception,
    classify_http_error,
    classify_payload_error,
    combine,
    kind_from_message,
    missing_field,
    strongest,
    unsupported_for_asset,
)


# =============================================================================
# HTTP Status Classification
# =============================================================================

class TestClassifyHttpError:
    """Tests for non-2xx response classification."""

    @pytest.mark.parametrize("status", [401, 403])
    def test_auth_statuses_are_unauthorized(self, status):
        error = classify_http_error("Price", status)

        assert error.kind == ErrorKind.UNAUTHORIZED
        assert error.is_provider_specific is True
        assert error.status_code == status
        assert error.message == f"Price: Invalid/unauthorized API key ({status})"

    def test_429_is_rate_limited(self):
        error = classify_http_error("RSI", 429, "whatever the body says")

        assert error.kind == ErrorKind.RATE_LIMITED
        assert "rate limit" in error.message

    def test_402_is_quota_or_billing(self):
        assert classify_http_error("MACD", 402).kind == ErrorKind.QUOTA_OR_BILLING

    def test_404_is_not_found(self):
        error = classify_http_error("Historical", 404, "ticker not found")

        assert error.kind == ErrorKind.NOT_FOUND
        assert error.message == "Historical: API Error 404: ticker not found"

    @pytest.mark.parametrize("status", [500, 502, 503])
    def test_server_errors_are_network_errors(self, status):
        assert classify_http_error("Price", status).kind == ErrorKind.NETWORK_ERROR

    def test_phrase_overrides_generic_status(self):
        """A 400 whose body names the API key is an auth failure."""
        error = classify_http_error("FRED", 400, "Bad Request. The value for variable api_key is not registered.")

        assert error.kind == ErrorKind.UNAUTHORIZED

    def test_plan_phrase_on_403_is_billing(self):
        error = classify_http_error(
            "Snapshot", 403, "NOT_AUTHORIZED: You are not entitled to this data. Please upgrade your plan"
        )

        assert error.kind == ErrorKind.QUOTA_OR_BILLING

    def test_401_ignores_phrases(self):
        assert classify_http_error("Price", 401, "quota exceeded").kind == ErrorKind.UNAUTHORIZED

    def test_long_detail_is_truncated(self):
        error = classify_http_error("Price", 418, "x" * 500)

        assert len(error.message) < 150


# =============================================================================
# Payload and Exception Classification
# =============================================================================

class TestClassifyPayloadError:
    """Tests for errors reported inside 200 bodies."""

    def test_credit_exhaustion_is_rate_limited(self):
        error = classify_payload_error("RSI", "You have run out of API credits for the current minute.")

        assert error.kind == ErrorKind.RATE_LIMITED
        assert error.message.startswith("RSI: API error - ")

    def test_inactive_account_is_billing(self):
        assert kind_from_message("inactive-account") == ErrorKind.QUOTA_OR_BILLING

    def test_quota_reached_is_rate_limited(self):
        assert kind_from_message("quota-reached") == ErrorKind.RATE_LIMITED

    def test_unknown_message_uses_default_kind(self):
        error = classify_payload_error("Price", "something odd", default_kind=ErrorKind.NOT_FOUND)

        assert error.kind == ErrorKind.NOT_FOUND

    def test_missing_message(self):
        error = classify_payload_error("Price", None)

        assert error.kind == ErrorKind.MALFORMED_RESPONSE
        assert "unknown error" in error.message


class TestClassifyException:
    """Tests for transport and decoding exceptions."""

    def test_transport_error_is_network(self):
        error = classify_exception("Price", httpx.ConnectError("connection refused"))

        assert error.kind == ErrorKind.NETWORK_ERROR
        assert "Network/Client error" in error.message
        assert error.is_provider_specific is True

    def test_timeout_is_network(self):
        error = classify_exception("RSI", httpx.ReadTimeout("timed out"))

        assert error.kind == ErrorKind.NETWORK_ERROR

    def test_value_error_is_malformed(self):
        error = classify_exception("MACD", ValueError("Expecting value"))

        assert error.kind == ErrorKind.MALFORMED_RESPONSE

    def test_value_error_outside_decoding_is_network(self):
        error = classify_exception("Price", ValueError("bad params"), decoding=False)

        assert error.kind == ErrorKind.NETWORK_ERROR
        assert error.message == "Price: Unexpected client error - ValueError: bad params"

    def test_unknown_exception_is_network(self):
        error = classify_exception("Status", RuntimeError("boom"))

        assert error.kind == ErrorKind.NETWORK_ERROR
        assert error.is_provider_specific is True


# =============================================================================
# Taxonomy
# =============================================================================

class TestTaxonomy:
    """Tests for provider-specific flags and severity ordering."""

    def test_unsupported_is_not_provider_specific(self):
        error = unsupported_for_asset("ExchangeRate-API", "commodity assets")

        assert error.kind == ErrorKind.UNSUPPORTED_FOR_ASSET
        assert error.is_provider_specific is False

    def test_no_provider_is_not_provider_specific(self):
        assert ErrorKind.NO_PROVIDER_CONFIGURED.is_provider_specific is False

    @pytest.mark.parametrize("kind", [
        ErrorKind.UNAUTHORIZED,
        ErrorKind.RATE_LIMITED,
        ErrorKind.NOT_FOUND,
        ErrorKind.QUOTA_OR_BILLING,
        ErrorKind.MALFORMED_RESPONSE,
        ErrorKind.NETWORK_ERROR,
    ])
    def test_recoverable_kinds_are_provider_specific(self, kind):
        assert kind.is_provider_specific is True

    def test_every_kind_has_a_severity(self):
        assert set(KIND_SEVERITY) == set(ErrorKind)

    def test_auth_dominates_not_found_dominates_format(self):
        malformed = missing_field("Price")
        not_found = ClassifiedError.of(ErrorKind.NOT_FOUND, "RSI: not found")
        auth = ClassifiedError.of(ErrorKind.UNAUTHORIZED, "MACD: bad key")

        assert strongest([malformed, not_found]) is not_found
        assert strongest([malformed, not_found, auth]) is auth

    def test_strongest_keeps_first_on_tie(self):
        first = missing_field("Price")
        second = missing_field("RSI")

        assert strongest([first, second]) is first

    def test_strongest_of_nothing(self):
        assert strongest([]) is None


class TestCombine:
    """Tests for collapsing sub-call failures."""

    def test_combine_joins_distinct_messages(self):
        errors = [
            missing_field("Price"),
            ClassifiedError.of(ErrorKind.RATE_LIMITED, "RSI: API rate limit hit (429)"),
            missing_field("Price"),
        ]

        combined = combine(errors)

        assert combined.kind == ErrorKind.RATE_LIMITED
        assert combined.message == "Price: Data not found/unexpected format; RSI: API rate limit hit (429)"

    def test_combine_empty_is_none(self):
        assert combine([]) is None
