"""
Unit tests for the shared error, retry, logging and configuration helpers.
"""

from unittest.mock import AsyncMock, patch

import pytest

from shared.config import ClientConfig, get_config
from shared.errors import (
    ApplicationError,
    TransportError,
    ValidationError,
    get_error_message,
)
from shared.logging import (
    add_correlation_context,
    add_service_context,
    configure_logging,
    get_logger,
    request_context,
    request_id_var,
)
from shared.retry import RetryConfig, RetryError, _calculate_delay, retry_call


class TestErrors:
    """Test cases for client errors."""

    def test_application_error_response(self):
        error = ApplicationError(404, "Product not found", {"path": "/products/p9"})

        response = error.to_response()

        assert response.code == "APPLICATION_ERROR"
        assert response.status_code == 404
        assert response.details == {"path": "/products/p9"}

    def test_transport_error_has_no_status(self):
        assert TransportError("offline").to_response().status_code is None

    @pytest.mark.parametrize("error,expected", [
        (ApplicationError(400, "Name is required"), "Name is required"),
        (ValidationError("Resource id must not be empty"), "Resource id must not be empty"),
        (RuntimeError("boom"), "boom"),
        (RuntimeError(), "An unexpected error occurred"),
        (None, "An unexpected error occurred"),
    ])
    def test_get_error_message(self, error, expected):
        assert get_error_message(error) == expected


class TestRetry:
    """Test cases for retry_call."""

    @pytest.mark.asyncio
    async def test_succeeds_after_failures(self):
        func = AsyncMock(side_effect=[TransportError("flaky"), "ok"])
        config = RetryConfig(max_attempts=3, base_delay=0.01, jitter=False)

        with patch("shared.retry.asyncio.sleep", new=AsyncMock()) as sleep:
            assert await retry_call(func, config) == "ok"

        sleep.assert_awaited_once_with(0.01)

    @pytest.mark.asyncio
    async def test_exhausted(self):
        func = AsyncMock(side_effect=TransportError("down"))
        config = RetryConfig(max_attempts=2, base_delay=0, jitter=False)

        with pytest.raises(RetryError) as exc_info:
            await retry_call(func, config, name="products:list")

        assert exc_info.value.attempts == 2
        assert isinstance(exc_info.value.last_exception, TransportError)

    @pytest.mark.asyncio
    async def test_unlisted_exception_is_not_retried(self):
        func = AsyncMock(side_effect=KeyError("id"))
        config = RetryConfig(max_attempts=3, base_delay=0)

        with pytest.raises(KeyError):
            await retry_call(func, config, exceptions=(TransportError,))

        assert func.await_count == 1

    def test_delay_strategies(self):
        exponential = RetryConfig(base_delay=1.0, max_delay=5.0, jitter=False)
        linear = RetryConfig(base_delay=1.0, jitter=False, backoff_strategy="linear")

        assert _calculate_delay(3, exponential) == 4.0
        assert _calculate_delay(4, exponential) == 5.0
        assert _calculate_delay(3, linear) == 3.0


class TestConfig:
    """Test cases for client configuration."""

    def test_defaults(self):
        config = ClientConfig()

        assert config.api_base_url == "http://localhost:3001/api"
        assert config.stale_time_seconds == 300.0
        assert config.template_stale_time_seconds == 1800.0

    def test_environment_prefix(self, monkeypatch):
        monkeypatch.setenv("COMPLIANCE_API_BASE_URL", "https://compliance.example.com/api")
        monkeypatch.setenv("COMPLIANCE_STALE_TIME_SECONDS", "60")

        config = get_config()

        assert config.api_base_url == "https://compliance.example.com/api"
        assert config.stale_time_seconds == 60.0

    def test_overrides(self):
        assert get_config(api_token="abc").api_token == "abc"


class TestLogging:
    """Test cases for log processors and correlation context."""

    def test_request_context_binds_and_restores(self):
        with request_context() as request_id:
            event = add_correlation_context(None, "info", {"event": "API request succeeded"})
            assert event["request_id"] == request_id

        assert request_id_var.get() is None
        assert add_correlation_context(None, "info", {}) == {}

    def test_nested_request_context(self):
        with request_context("outer"):
            with request_context("inner") as inner:
                assert inner == "inner"
            assert request_id_var.get() == "outer"

    def test_service_from_logger_name(self):
        event = add_service_context(None, "info", {"logger": "compliance_client.query_executor"})

        assert event["service"] == "compliance_client"

    def test_configure_logging(self):
        configure_logging("compliance_client", "debug", json_logs=False)

        assert get_logger("compliance_client.test") is not None
