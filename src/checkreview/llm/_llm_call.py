"""Shared LLM call with per-model circuit breaker and rate-limit retry."""

from __future__ import annotations

import logging
from collections.abc import Callable, Coroutine
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

import litellm
from circuitbreaker import (  # pyright: ignore[reportUnknownVariableType]
    CircuitBreaker,
    CircuitBreakerError,
)
from litellm.exceptions import RateLimitError as LitellmRateLimitError
from tenacity import (
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential_jitter,
)

from checkreview.constants import (
    CB_LLM_FAILURE_THRESHOLD,
    CB_LLM_RECOVERY_TIMEOUT,
    LLM_MAX_OUTPUT_TOKENS,
    RETRY_INITIAL_WAIT,
    RETRY_MAX_ATTEMPTS,
    RETRY_MAX_WAIT,
)
from checkreview.resilience.errors import is_context_length_error

logger = logging.getLogger(__name__)

# litellm stubs have partially unknown types, typed alias
if TYPE_CHECKING:
    _acompletion: Callable[..., Coroutine[Any, Any, Any]]
else:
    _acompletion = litellm.acompletion


@dataclass(frozen=True)
class LLMCallResult:
    """Structured return from guarded_llm_call with token metadata."""

    content: str
    model: str
    input_tokens: int
    output_tokens: int
    finish_reason: str | None = None


def _counts_as_breaker_failure(
    thrown_type: type, thrown_value: BaseException
) -> bool:
    """Return True if the error should count against the breaker.

    Rate limits are backpressure, and oversized inputs are the
    caller's problem (it splits and retries), so neither says the
    provider is unhealthy.
    """
    if issubclass(thrown_type, LitellmRateLimitError):
        return False
    return not is_context_length_error(thrown_value)


# Per-model circuit breaker registry with independent failure tracking.
_breaker_registry: dict[str, CircuitBreaker] = {}  # pyright: ignore[reportUnknownVariableType]


def _get_breaker(model: str) -> CircuitBreaker:  # pyright: ignore[reportUnknownParameterType]
    """Get or create a circuit breaker for the given model."""
    if model not in _breaker_registry:
        _breaker_registry[model] = CircuitBreaker(  # pyright: ignore[reportUnknownMemberType]
            failure_threshold=CB_LLM_FAILURE_THRESHOLD,
            recovery_timeout=CB_LLM_RECOVERY_TIMEOUT,
            expected_exception=_counts_as_breaker_failure,
            name=f"llm_{model}",
        )
    return _breaker_registry[model]


@retry(
    stop=stop_after_attempt(RETRY_MAX_ATTEMPTS),
    wait=wait_exponential_jitter(
        initial=RETRY_INITIAL_WAIT, max=RETRY_MAX_WAIT
    ),
    retry=retry_if_exception_type(LitellmRateLimitError),
    reraise=True,
)
async def guarded_llm_call(
    model: str,
    messages: list[dict[str, Any]],
    timeout: int,
    *,
    api_key: str | None = None,
    api_base: str | None = None,
    json_mode: bool = True,
) -> LLMCallResult:
    """Per-model circuit-breaker-protected LLM completion with rate-limit retry.

    - Each model has its own circuit breaker (per-model registry).
    - Tenacity retries rate-limit errors (429) with jittered exponential
      backoff to avoid a thundering herd on a shared credential.
    - The credential travels per call; nothing is set globally on litellm.
    """
    breaker = _get_breaker(model)
    if breaker.opened:  # pyright: ignore[reportUnknownMemberType]
        raise CircuitBreakerError(breaker)  # pyright: ignore[reportUnknownArgumentType]
    with breaker:  # pyright: ignore[reportUnknownMemberType]
        kwargs: dict[str, Any] = {
            "model": model,
            "messages": messages,
            "timeout": timeout,
            "max_tokens": LLM_MAX_OUTPUT_TOKENS,
        }
        if api_key:
            kwargs["api_key"] = api_key
        if api_base:
            kwargs["api_base"] = api_base
        if json_mode:
            kwargs["response_format"] = {"type": "json_object"}
        response: Any = await _acompletion(**kwargs)

    usage: Any = getattr(response, "usage", None)
    choice: Any = response.choices[0]
    return LLMCallResult(
        content=str(choice.message.content or ""),
        model=model,
        input_tokens=int(getattr(usage, "prompt_tokens", 0) or 0),
        output_tokens=int(getattr(usage, "completion_tokens", 0) or 0),
        finish_reason=getattr(choice, "finish_reason", None),
    )
