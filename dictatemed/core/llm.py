"""
LLM text generation client.

Domain services depend on the small ``TextGenerationClient`` interface rather
than on a model SDK. The production implementation runs a plain-text
``pydantic_ai.Agent`` per request; tests swap in a fake through the
``get_text_generation_client`` FastAPI dependency.
"""

from __future__ import annotations

import asyncio
import time
from abc import ABC, abstractmethod
from typing import Optional

import httpx
from pydantic import BaseModel, Field
from pydantic_ai import Agent
from pydantic_ai.exceptions import ModelHTTPError, UnexpectedModelBehavior
from pydantic_ai.settings import ModelSettings

from dictatemed.core.errors import ExternalServiceError
from dictatemed.core.logging_config import get_logger
from dictatemed.core.monitoring import log_llm_call
from dictatemed.server.core.config import settings

logger = get_logger(__name__)

LLM_SERVICE = "llm"


class TextGenerationRequest(BaseModel):
    """One prompt to send to the model."""

    prompt: str
    system_prompt: Optional[str] = None
    model_id: str
    max_tokens: int = Field(default=4096, ge=1)
    temperature: float = Field(default=0.3, ge=0.0, le=1.0)
    purpose: str = Field(default="generation", description="Label used in LLM call logs")


class TextGenerationResponse(BaseModel):
    content: str
    input_tokens: int = 0
    output_tokens: int = 0
    model_id: str


class TextGenerationClient(ABC):
    """Interface for text generation backends."""

    @abstractmethod
    async def generate_text(self, request: TextGenerationRequest) -> TextGenerationResponse:
        """Generate text for the request.

        Raises:
            ExternalServiceError: The model call failed. ``retryable`` is set
                for throttling, server-side and transport errors.
        """


class PydanticAITextGenerationClient(TextGenerationClient):
    """Text generation through pydantic-ai agents."""

    async def generate_text(self, request: TextGenerationRequest) -> TextGenerationResponse:
        agent = Agent(
            request.model_id,
            system_prompt=request.system_prompt or (),
            model_settings=ModelSettings(max_tokens=request.max_tokens, temperature=request.temperature),
        )

        started = time.perf_counter()
        try:
            result = await agent.run(request.prompt)
        except ModelHTTPError as e:
            retryable = e.status_code == 429 or e.status_code >= 500
            raise ExternalServiceError(LLM_SERVICE, f"HTTP {e.status_code}: {e.message}", retryable=retryable) from e
        except httpx.TransportError as e:
            raise ExternalServiceError(LLM_SERVICE, f"transport error: {e}", retryable=True) from e
        except UnexpectedModelBehavior as e:
            raise ExternalServiceError(LLM_SERVICE, str(e), retryable=False) from e
        duration_ms = (time.perf_counter() - started) * 1000

        usage = result.usage()
        input_tokens = usage.input_tokens or 0
        output_tokens = usage.output_tokens or 0
        log_llm_call(request.model_id, input_tokens, output_tokens, duration_ms, request.purpose)

        return TextGenerationResponse(
            content=result.output,
            input_tokens=input_tokens,
            output_tokens=output_tokens,
            model_id=request.model_id,
        )


async def generate_text_with_retry(
    client: TextGenerationClient,
    request: TextGenerationRequest,
    max_retries: Optional[int] = None,
    initial_delay_ms: Optional[int] = None,
    max_delay_ms: Optional[int] = None,
) -> TextGenerationResponse:
    """
    Call the model, retrying retryable failures with exponential backoff.

    The delay before retry ``n`` (0-based) is
    ``min(initial_delay_ms * 2**n, max_delay_ms)``. Non-retryable errors are
    raised immediately.

    Args:
        client: Text generation backend
        request: The prompt to send
        max_retries: Retries after the first attempt (default from settings)
        initial_delay_ms: First backoff delay (default from settings)
        max_delay_ms: Backoff ceiling (default from settings)

    Returns:
        The first successful response

    Raises:
        ExternalServiceError: The last error once retries are exhausted
    """
    llm_config = settings.llm
    max_retries = llm_config.max_retries if max_retries is None else max_retries
    initial_delay_ms = llm_config.initial_retry_delay_ms if initial_delay_ms is None else initial_delay_ms
    max_delay_ms = llm_config.max_retry_delay_ms if max_delay_ms is None else max_delay_ms

    last_error: Optional[ExternalServiceError] = None
    for attempt in range(max_retries + 1):
        try:
            return await client.generate_text(request)
        except ExternalServiceError as e:
            last_error = e
            if not e.retryable or attempt >= max_retries:
                raise
            delay_ms = min(initial_delay_ms * (2**attempt), max_delay_ms)
            logger.warning(
                f"LLM call failed (attempt {attempt + 1}/{max_retries + 1}), retrying in {delay_ms}ms: {e}",
                extra={"model_id": request.model_id, "purpose": request.purpose},
            )
            await asyncio.sleep(delay_ms / 1000)

    # Unreachable: the loop either returns or raises.
    raise last_error or ExternalServiceError(LLM_SERVICE, "retries exhausted")


_client: Optional[TextGenerationClient] = None


def get_text_generation_client() -> TextGenerationClient:
    """FastAPI dependency returning the process-wide text generation client."""
    global _client
    if _client is None:
        _client = PydanticAITextGenerationClient()
    return _client
