"""
Unit tests for the Logfire monitoring module.

This test suite covers:
- Logfire initialization with its configuration gates
- Feature flag handling for instrumentation
- Graceful degradation when Logfire is inactive or fails
- The logging helpers for API requests, LLM calls, letters and errors
"""

from unittest.mock import MagicMock, patch

import pytest

from dictatemed.core import monitoring
from dictatemed.core.monitoring import (
    initialize_logfire,
    is_logfire_active,
    log_api_request,
    log_error,
    log_letter_generation,
    log_llm_call,
)


@pytest.fixture(autouse=True)
def inactive_logfire(monkeypatch):
    monkeypatch.setattr(monitoring, "_logfire_active", False)


@pytest.fixture
def enabled(monkeypatch):
    monkeypatch.setattr(monitoring, "LOGFIRE_ENABLED", True)
    monkeypatch.setattr(monitoring, "LOGFIRE_TOKEN", "test-token")


class TestInitializeLogfire:
    """Test initialize_logfire gates and instrumentation."""

    def test_disabled_does_nothing(self, monkeypatch):
        monkeypatch.setattr(monitoring, "LOGFIRE_ENABLED", False)

        with patch("dictatemed.core.monitoring.logfire") as mock_logfire:
            initialize_logfire()

        mock_logfire.configure.assert_not_called()
        assert not is_logfire_active()

    def test_missing_token_does_nothing(self, monkeypatch):
        monkeypatch.setattr(monitoring, "LOGFIRE_ENABLED", True)
        monkeypatch.setattr(monitoring, "LOGFIRE_TOKEN", "")

        with patch("dictatemed.core.monitoring.logfire") as mock_logfire:
            initialize_logfire()

        mock_logfire.configure.assert_not_called()
        assert not is_logfire_active()

    def test_configures_and_instruments(self, enabled):
        app = MagicMock()

        with patch("dictatemed.core.monitoring.logfire") as mock_logfire:
            initialize_logfire(app)

        kwargs = mock_logfire.configure.call_args.kwargs
        assert kwargs["token"] == "test-token"
        assert kwargs["service_name"] == monitoring.LOGFIRE_SERVICE_NAME
        mock_logfire.instrument_pydantic_ai.assert_called_once()
        mock_logfire.instrument_sqlalchemy.assert_called_once()
        mock_logfire.instrument_httpx.assert_called_once()
        mock_logfire.instrument_fastapi.assert_called_once_with(app=app)
        assert is_logfire_active()

    def test_fastapi_needs_app(self, enabled):
        with patch("dictatemed.core.monitoring.logfire") as mock_logfire:
            initialize_logfire()

        mock_logfire.instrument_fastapi.assert_not_called()

    def test_feature_flags_skip_instrumentation(self, enabled, monkeypatch):
        monkeypatch.setattr(monitoring, "LOGFIRE_TRACE_SQLALCHEMY", False)
        monkeypatch.setattr(monitoring, "LOGFIRE_TRACE_HTTPX", False)

        with patch("dictatemed.core.monitoring.logfire") as mock_logfire:
            initialize_logfire()

        mock_logfire.instrument_sqlalchemy.assert_not_called()
        mock_logfire.instrument_httpx.assert_not_called()
        mock_logfire.instrument_pydantic_ai.assert_called_once()

    def test_configure_failure_leaves_logfire_inactive(self, enabled):
        with patch("dictatemed.core.monitoring.logfire") as mock_logfire:
            mock_logfire.configure.side_effect = RuntimeError("bad token")
            initialize_logfire()

        mock_logfire.instrument_pydantic_ai.assert_not_called()
        assert not is_logfire_active()

    def test_instrumentation_failure_is_tolerated(self, enabled):
        with patch("dictatemed.core.monitoring.logfire") as mock_logfire:
            mock_logfire.instrument_sqlalchemy.side_effect = RuntimeError("no engine")
            initialize_logfire()

        mock_logfire.instrument_httpx.assert_called_once()
        assert is_logfire_active()


class TestLoggingHelpers:
    """Test the logging helpers with Logfire active and inactive."""

    def test_inactive_helpers_do_not_touch_logfire(self):
        with patch("dictatemed.core.monitoring.logfire") as mock_logfire:
            log_api_request("GET", "/api/v1/letters", 200, 12.5)
            log_llm_call("model-x", 100, 50, 800.0, "letter_generation")
            log_letter_generation("letter-1", "NEW_PATIENT", 12, "subspecialty")
            log_error("ValueError", "boom")

        mock_logfire.info.assert_not_called()
        mock_logfire.error.assert_not_called()

    def test_api_request(self, monkeypatch):
        monkeypatch.setattr(monitoring, "_logfire_active", True)

        with patch("dictatemed.core.monitoring.logfire") as mock_logfire:
            log_api_request("POST", "/api/v1/letters/generate", 201, 42.0)

        mock_logfire.info.assert_called_once_with(
            "API request completed", method="POST", path="/api/v1/letters/generate", status_code=201, duration_ms=42.0
        )

    def test_llm_call(self, monkeypatch):
        monkeypatch.setattr(monitoring, "_logfire_active", True)

        with patch("dictatemed.core.monitoring.logfire") as mock_logfire:
            log_llm_call("model-x", 100, 50, 800.0, "fast_extraction")

        kwargs = mock_logfire.info.call_args.kwargs
        assert kwargs["model"] == "model-x"
        assert kwargs["input_tokens"] == 100
        assert kwargs["purpose"] == "fast_extraction"

    def test_letter_generation(self, monkeypatch):
        monkeypatch.setattr(monitoring, "_logfire_active", True)

        with patch("dictatemed.core.monitoring.logfire") as mock_logfire:
            log_letter_generation("letter-1", "FOLLOW_UP", 35, "global")

        assert mock_logfire.info.call_args.args == ("Letter generated",)
        assert mock_logfire.info.call_args.kwargs["risk_score"] == 35

    def test_error_includes_context(self, monkeypatch):
        monkeypatch.setattr(monitoring, "_logfire_active", True)

        with patch("dictatemed.core.monitoring.logfire") as mock_logfire:
            log_error("ExternalServiceError", "llm: timeout", {"path": "/api/v1/letters"})

        kwargs = mock_logfire.error.call_args.kwargs
        assert kwargs["error_type"] == "ExternalServiceError"
        assert kwargs["path"] == "/api/v1/letters"
