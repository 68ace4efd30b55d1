"""
Monitoring and Tracing Configuration Module.

This module provides integration with Pydantic Logfire for monitoring and
tracing of DictateMED operations, including:
- LLM calls made for letter generation, extraction and style analysis
- API endpoint tracing
- Database operation monitoring
- Error tracking

The integration is opt-in through LOGFIRE_* environment variables. When it is
disabled every helper degrades to a debug log line.
"""

import logging
import os
from typing import Optional

import logfire
from fastapi import FastAPI

logger = logging.getLogger(__name__)

# Logfire configuration from environment
LOGFIRE_ENABLED = os.getenv("LOGFIRE_ENABLED", "false").lower() in ("true", "1", "yes")
LOGFIRE_TOKEN = os.getenv("LOGFIRE_TOKEN", "")
LOGFIRE_PROJECT_NAME = os.getenv("LOGFIRE_PROJECT_NAME", "dictatemed")
LOGFIRE_ENVIRONMENT = os.getenv("LOGFIRE_ENVIRONMENT", "development")
LOGFIRE_SERVICE_NAME = os.getenv("LOGFIRE_SERVICE_NAME", "dictatemed-server")
LOGFIRE_SERVICE_VERSION = os.getenv("LOGFIRE_SERVICE_VERSION", "0.1.0")

# Sampling configuration
LOGFIRE_SAMPLE_RATE = float(os.getenv("LOGFIRE_SAMPLE_RATE", "1.0"))

# Feature flags
LOGFIRE_TRACE_PYDANTIC_AI = os.getenv("LOGFIRE_TRACE_PYDANTIC_AI", "true").lower() in ("true", "1", "yes")
LOGFIRE_TRACE_SQLALCHEMY = os.getenv("LOGFIRE_TRACE_SQLALCHEMY", "true").lower() in ("true", "1", "yes")
LOGFIRE_TRACE_HTTPX = os.getenv("LOGFIRE_TRACE_HTTPX", "true").lower() in ("true", "1", "yes")
LOGFIRE_TRACE_FASTAPI = os.getenv("LOGFIRE_TRACE_FASTAPI", "true").lower() in ("true", "1", "yes")

_logfire_active = False


def is_logfire_active() -> bool:
    """Return True once Logfire has been configured for this process."""
    return _logfire_active


def initialize_logfire(app: FastAPI | None = None) -> None:
    """
    Initialize Pydantic Logfire for monitoring and tracing.

    Sets up Logfire with automatic instrumentation for Pydantic AI model calls,
    SQLAlchemy, HTTPX and (when ``app`` is given) FastAPI endpoints.

    Args:
        app: FastAPI application instance for FastAPI instrumentation (optional).
    """
    global _logfire_active

    if not LOGFIRE_ENABLED:
        logger.info("Logfire monitoring is disabled. Set LOGFIRE_ENABLED=true to enable.")
        return

    if not LOGFIRE_TOKEN:
        logger.warning(
            "Logfire is enabled but LOGFIRE_TOKEN is not set. "
            "Monitoring will not work. Set LOGFIRE_TOKEN to enable Logfire."
        )
        return

    try:
        logfire.configure(
            token=LOGFIRE_TOKEN,
            service_name=LOGFIRE_SERVICE_NAME,
            service_version=LOGFIRE_SERVICE_VERSION,
            environment=LOGFIRE_ENVIRONMENT,
            sampling=logfire.SamplingOptions(head=LOGFIRE_SAMPLE_RATE),
        )
    except Exception as e:
        logger.error(f"Failed to initialize Logfire: {e}", exc_info=True)
        return

    _logfire_active = True

    if LOGFIRE_TRACE_PYDANTIC_AI:
        try:
            logfire.instrument_pydantic_ai()
            logger.info("Logfire: Pydantic AI instrumentation enabled")
        except Exception as e:
            logger.warning(f"Failed to instrument Pydantic AI: {e}")

    if LOGFIRE_TRACE_SQLALCHEMY:
        try:
            logfire.instrument_sqlalchemy()
            logger.info("Logfire: SQLAlchemy instrumentation enabled")
        except Exception as e:
            logger.warning(f"Failed to instrument SQLAlchemy: {e}")

    if LOGFIRE_TRACE_HTTPX:
        try:
            logfire.instrument_httpx()
            logger.info("Logfire: HTTPX instrumentation enabled")
        except Exception as e:
            logger.warning(f"Failed to instrument HTTPX: {e}")

    if LOGFIRE_TRACE_FASTAPI and app is not None:
        try:
            logfire.instrument_fastapi(app=app)
            logger.info("Logfire: FastAPI instrumentation enabled")
        except Exception as e:
            logger.warning(f"Failed to instrument FastAPI: {e}")

    logger.info(
        f"Logfire monitoring initialized: "
        f"project={LOGFIRE_PROJECT_NAME}, "
        f"environment={LOGFIRE_ENVIRONMENT}, "
        f"service={LOGFIRE_SERVICE_NAME}"
    )


def log_api_request(method: str, path: str, status_code: int, duration_ms: float) -> None:
    """
    Log an API request with performance metrics.

    Args:
        method: HTTP method
        path: Request path
        status_code: HTTP status code
        duration_ms: Request duration in milliseconds
    """
    if not _logfire_active:
        logger.debug(f"API request {method} {path} -> {status_code} ({duration_ms:.1f}ms)")
        return
    logfire.info(
        "API request completed",
        method=method,
        path=path,
        status_code=status_code,
        duration_ms=duration_ms,
    )


def log_llm_call(model: str, input_tokens: int, output_tokens: int, duration_ms: float, purpose: str) -> None:
    """
    Log an LLM model call with usage metrics.

    Args:
        model: The model id
        input_tokens: Prompt tokens
        output_tokens: Completion tokens
        duration_ms: Wall-clock duration of the call
        purpose: What the call was for (letter_generation, fast_extraction, ...)
    """
    if not _logfire_active:
        logger.debug(f"LLM call {purpose} on {model}: in={input_tokens} out={output_tokens} ({duration_ms:.1f}ms)")
        return
    logfire.info(
        "LLM call completed",
        model=model,
        input_tokens=input_tokens,
        output_tokens=output_tokens,
        duration_ms=duration_ms,
        purpose=purpose,
    )


def log_letter_generation(letter_id: str, letter_type: str, risk_score: int, style_source: str) -> None:
    """
    Log a completed letter generation.

    Args:
        letter_id: The generated letter
        letter_type: Letter type value
        risk_score: Hallucination risk score (0-100)
        style_source: Which style profile conditioned the prompt
    """
    if not _logfire_active:
        logger.debug(f"Letter generated: id={letter_id} type={letter_type} risk={risk_score} style={style_source}")
        return
    logfire.info(
        "Letter generated",
        letter_id=letter_id,
        letter_type=letter_type,
        risk_score=risk_score,
        style_source=style_source,
    )


def log_error(error_type: str, error_message: str, context: Optional[dict] = None) -> None:
    """
    Log an error with context for debugging.

    Args:
        error_type: Type of error
        error_message: Error message
        context: Additional context dictionary
    """
    if not _logfire_active:
        logger.debug(f"Error recorded: {error_type}: {error_message}")
        return
    logfire.error(
        "{error_type}: {error_message}",
        error_type=error_type,
        error_message=error_message,
        **(context or {}),
    )
