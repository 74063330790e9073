"""
Adapter Support Tests.

============================================================
PURPOSE
============================================================
Unit tests for the pieces every adapter shares.

TEST CATEGORIES:
- Error mapping tests: Error code translation
- Metrics tests: Metrics collection
- Logging tests: Credential masking
- Parsing helper tests

============================================================
"""

import logging
from decimal import Decimal

import pytest

from arbitrage_engine.adapters import (
    AdapterLogger,
    AdapterMetrics,
    BusinessError,
    ErrorCategory,
    ExchangeException,
    MetricsAggregator,
    RetryEligibility,
    create_network_error,
    create_timeout_error,
    map_exchange_error,
    mask_headers,
    mask_params,
    mask_value,
    to_decimal,
)
from arbitrage_engine.adapters.base import parse_levels
from arbitrage_engine.adapters.errors import exception_for
from arbitrage_engine.adapters.logging_utils import mask_url


# ============================================================
# ERROR MAPPING TESTS
# ============================================================

class TestErrorMapping:
    """Tests for exchange code translation."""

    @pytest.mark.parametrize("exchange,code,category,retry", [
        ("binance", -1003, ErrorCategory.RATE_LIMIT, RetryEligibility.BACKOFF),
        ("binance", -2015, ErrorCategory.AUTHENTICATION, RetryEligibility.NO_RETRY),
        ("binance", -2010, ErrorCategory.INSUFFICIENT_FUNDS, RetryEligibility.NO_RETRY),
        ("binance", -1000, ErrorCategory.EXCHANGE_ERROR, RetryEligibility.RETRY),
        ("okx", "50011", ErrorCategory.RATE_LIMIT, RetryEligibility.BACKOFF),
        ("okx", "51008", ErrorCategory.INSUFFICIENT_FUNDS, RetryEligibility.NO_RETRY),
        ("bybit", 10006, ErrorCategory.RATE_LIMIT, RetryEligibility.BACKOFF),
        ("bybit", 110001, ErrorCategory.ORDER_NOT_FOUND, RetryEligibility.NO_RETRY),
        ("kucoin", "429000", ErrorCategory.RATE_LIMIT, RetryEligibility.BACKOFF),
        ("kucoin", "400005", ErrorCategory.AUTHENTICATION, RetryEligibility.NO_RETRY),
        ("gateio", "BALANCE_NOT_ENOUGH", ErrorCategory.INSUFFICIENT_FUNDS, RetryEligibility.NO_RETRY),
        ("bitkub", 18, ErrorCategory.INSUFFICIENT_FUNDS, RetryEligibility.NO_RETRY),
        ("bitkub", 90, ErrorCategory.EXCHANGE_ERROR, RetryEligibility.RETRY),
    ])
    def test_exchange_codes(self, exchange, code, category, retry):
        error = map_exchange_error(exchange, code, "message", 400)

        assert error.category == category
        assert error.retry_eligible == retry
        assert error.exchange_code == str(code)
        assert error.exchange_id == exchange

    def test_code_is_prefixed_with_exchange(self):
        error = map_exchange_error("Binance", -1003, "Too many requests", 429)
        assert error.code == "BINANCE_-1003"

    @pytest.mark.parametrize("status,category,retryable", [
        (429, ErrorCategory.RATE_LIMIT, True),
        (418, ErrorCategory.RATE_LIMIT, True),
        (401, ErrorCategory.AUTHENTICATION, False),
        (404, ErrorCategory.ORDER_NOT_FOUND, False),
        (502, ErrorCategory.EXCHANGE_ERROR, True),
        (400, ErrorCategory.INVALID_ORDER, False),
    ])
    def test_unknown_code_falls_back_to_http_status(self, status, category, retryable):
        error = map_exchange_error("binance", 999999, "?", status)

        assert error.category == category
        assert error.is_retryable() == retryable

    def test_unknown_exchange(self):
        error = map_exchange_error("mystery", "E1", "boom", None)
        assert error.category == ErrorCategory.UNKNOWN
        assert not error.is_retryable()

    def test_exception_for_business_categories(self):
        business = map_exchange_error("binance", -2011, "Unknown order", 400)
        auth = map_exchange_error("binance", -2015, "Invalid key", 401)

        assert isinstance(exception_for(business), BusinessError)
        assert not isinstance(exception_for(auth), BusinessError)
        assert isinstance(exception_for(auth), ExchangeException)

    def test_to_dict(self):
        error = map_exchange_error("okx", "51001", "Instrument ID does not exist", 200, "get_ticker")
        data = error.to_dict()

        assert data["category"] == "SYMBOL_NOT_FOUND"
        assert data["operation"] == "get_ticker"
        assert data["retry_eligible"] == "NO_RETRY"


class TestErrorHelpers:
    """Tests for transport error constructors."""

    def test_create_network_error(self):
        error = create_network_error("binance", "Connection refused", "get_ticker")

        assert error.category == ErrorCategory.NETWORK
        assert error.is_retryable()
        assert error.code == "BINANCE_NETWORK_ERROR"

    def test_create_timeout_error(self):
        error = create_timeout_error("okx", 10000)

        assert error.category == ErrorCategory.TIMEOUT
        assert error.is_retryable()
        assert "10000ms" in error.message


# ============================================================
# METRICS TESTS
# ============================================================

class TestAdapterMetrics:
    """Tests for AdapterMetrics."""

    def test_record_request(self):
        metrics = AdapterMetrics("binance")

        metrics.record_request("/api/v3/order", 100.0, True, 200)
        metrics.record_request("/api/v3/order", 300.0, False, 503, "BINANCE_503")

        summary = metrics.get_summary()
        assert summary["requests"]["total"] == 2
        assert summary["requests"]["success_rate"] == 0.5
        assert summary["latency"]["avg_ms"] == 200.0
        assert summary["errors"] == {"BINANCE_503": 1}

    def test_record_orders(self):
        metrics = AdapterMetrics("binance")

        metrics.record_order_placed()
        metrics.record_order_rejected("BINANCE_-2010")
        metrics.record_order_cancelled()

        orders = metrics.get_summary()["orders"]
        assert orders == {"placed": 1, "rejected": 1, "cancelled": 1}

    def test_latency_by_endpoint(self):
        metrics = AdapterMetrics("binance")

        metrics.record_request("/api/v3/order", 100, True)
        metrics.record_request("/api/v3/order", 200, True)
        metrics.record_request("/api/v3/account", 50, True)

        latency = metrics.get_latency_by_endpoint()
        assert latency["/api/v3/order"]["avg_ms"] == 150
        assert latency["/api/v3/account"]["min_ms"] == 50
        assert "_all" not in latency

    def test_reset(self):
        metrics = AdapterMetrics("binance")
        metrics.record_request("/api/v3/order", 100, True)
        metrics.record_retry()

        metrics.reset()

        summary = metrics.get_summary()
        assert summary["requests"]["total"] == 0
        assert summary["requests"]["retries"] == 0
        assert summary["requests"]["success_rate"] == 1.0


class TestMetricsAggregator:
    """Tests for MetricsAggregator."""

    def test_aggregate_summary(self):
        aggregator = MetricsAggregator()
        binance = AdapterMetrics("binance")
        okx = AdapterMetrics("okx")
        aggregator.register("binance", binance)
        aggregator.register("okx", okx)

        binance.record_request("/a", 10, True)
        okx.record_request("/b", 10, False)
        okx.record_request("/b", 10, True)

        summary = aggregator.get_aggregate_summary()
        assert summary["exchanges"] == ["binance", "okx"]
        assert summary["total_requests"] == 3
        assert summary["total_success"] == 2

        aggregator.unregister("okx")
        assert list(aggregator.get_all_summaries()) == ["binance"]


# ============================================================
# MASKING TESTS
# ============================================================

class TestCredentialMasking:
    """Tests for credential masking."""

    def test_mask_value(self):
        masked = mask_value("abc123def456", show_chars=4)

        assert masked == "abc1...***"
        assert "def456" not in masked

    def test_mask_short_value(self):
        assert mask_value("abc", show_chars=4) == "***"
        assert mask_value("") == "***"

    def test_mask_headers(self):
        headers = {
            "Content-Type": "application/json",
            "X-MBX-APIKEY": "secret_api_key",
            "OK-ACCESS-PASSPHRASE": "my-passphrase",
            "KC-API-SIGN": "c2lnbmF0dXJl",
        }

        masked = mask_headers(headers)

        assert masked["Content-Type"] == "application/json"
        assert "secret_api_key" not in masked["X-MBX-APIKEY"]
        assert "my-passphrase" not in masked["OK-ACCESS-PASSPHRASE"]
        assert "c2lnbmF0dXJl" not in masked["KC-API-SIGN"]

    def test_mask_params(self):
        params = {
            "symbol": "BTCUSDT",
            "quantity": "1.5",
            "signature": "hmac_signature_value",
            "apiKey": "my_secret_key",
            "note": "a" * 64,
        }

        masked = mask_params(params)

        assert masked["symbol"] == "BTCUSDT"
        assert masked["quantity"] == "1.5"
        assert "hmac_signature_value" not in str(masked["signature"])
        assert "my_secret_key" not in str(masked["apiKey"])
        assert masked["note"] == "***HMAC***"

    def test_mask_url(self):
        url = "/api/v3/account?recvWindow=5000&timestamp=1&signature=deadbeef"
        assert mask_url(url) == "/api/v3/account?recvWindow=5000&timestamp=1&signature=***"


class TestAdapterLogger:
    """Tests for AdapterLogger."""

    def test_request_ids_are_sequential(self):
        adapter_logger = AdapterLogger("binance")

        first = adapter_logger.log_request("GET", "/api/v3/ping")
        second = adapter_logger.log_request("GET", "/api/v3/ping")

        assert first == "binance-1"
        assert second == "binance-2"

    def test_request_log_never_contains_secrets(self, caplog):
        adapter_logger = AdapterLogger("binance")

        with caplog.at_level(logging.DEBUG, logger=adapter_logger.name):
            adapter_logger.log_request(
                "GET",
                "/api/v3/account?timestamp=1&signature=abcdef0123",
                headers={"X-MBX-APIKEY": "super-secret-key"},
            )

        assert "super-secret-key" not in caplog.text
        assert "abcdef0123" not in caplog.text
        assert "REQUEST" in caplog.text

    def test_failed_response_logged_as_warning(self, caplog):
        adapter_logger = AdapterLogger("okx")

        with caplog.at_level(logging.WARNING, logger=adapter_logger.name):
            adapter_logger.log_response("okx-1", 503, 12.3, False, error_code="OKX_503")

        assert "RESPONSE_ERROR" in caplog.text
        assert "OKX_503" in caplog.text


# ============================================================
# PARSING HELPER TESTS
# ============================================================

class TestParsingHelpers:
    """Tests for lenient numeric parsing."""

    @pytest.mark.parametrize("value,expected", [
        ("1.5", Decimal("1.5")),
        (2, Decimal("2")),
        (None, Decimal("0")),
        ("", Decimal("0")),
        ("n/a", Decimal("0")),
    ])
    def test_to_decimal(self, value, expected):
        assert to_decimal(value) == expected

    def test_parse_levels_accepts_lists_and_dicts(self):
        levels = parse_levels([["100", "1", "extra"], {"p": "99", "s": "2"}, ["bad"]])

        assert [(e.price, e.quantity) for e in levels] == [
            (Decimal("100"), Decimal("1")),
            (Decimal("99"), Decimal("2")),
        ]
