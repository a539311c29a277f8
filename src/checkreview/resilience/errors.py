"""Error classification for structured error handling.

Classifies exceptions by category to enable:
- Structured logging (which errors are transient vs permanent)
- Context-window detection for large-document split retry
- Retry decisions (only transient/server/timeout)
"""

from __future__ import annotations

import asyncio
from enum import Enum

from litellm.exceptions import ContextWindowExceededError

_CONTEXT_LENGTH_MARKERS = (
    "context length",
    "context_length",
    "context window",
    "maximum context",
    "too many tokens",
    "prompt is too long",
    "input is too long",
)


class ErrorClass(Enum):
    TRANSIENT = "transient"  # 429, network errors: retryable
    SERVER = "server"  # 500, 502, 503: retryable
    TIMEOUT = "timeout"  # deadline exceeded: retryable with backoff
    CONTEXT_LENGTH = "context_length"  # input too large: split and retry
    CLIENT = "client"  # 400, 401, 403: do NOT retry
    UNKNOWN = "unknown"  # unclassified: do NOT retry


def classify_error(error: Exception) -> ErrorClass:
    """Classify an error to determine handling strategy.

    Context-window errors are checked first because providers report
    them as a plain 400. Then structured attributes (status_code),
    then string matching for untyped exceptions.
    """
    if is_context_length_error(error):
        return ErrorClass.CONTEXT_LENGTH

    status_code = getattr(error, "status_code", None)
    if isinstance(status_code, int):
        if status_code == 429:
            return ErrorClass.TRANSIENT
        if 400 <= status_code < 500:
            return ErrorClass.CLIENT
        if 500 <= status_code < 600:
            return ErrorClass.SERVER

    if isinstance(error, (TimeoutError, asyncio.TimeoutError)):
        return ErrorClass.TIMEOUT

    msg = str(error).lower()

    if "timeout" in msg or "timed out" in msg:
        return ErrorClass.TIMEOUT
    if "429" in msg or "rate limit" in msg or "rate_limit" in msg:
        return ErrorClass.TRANSIENT
    if any(code in msg for code in ("500", "502", "503", "504")):
        return ErrorClass.SERVER
    if "econnrefused" in msg or "connection" in msg:
        return ErrorClass.TRANSIENT
    if any(code in msg for code in ("400", "401", "403", "404")):
        return ErrorClass.CLIENT

    return ErrorClass.UNKNOWN


def is_context_length_error(error: BaseException) -> bool:
    """Return True if the model rejected the input as too large."""
    if isinstance(error, ContextWindowExceededError):
        return True
    msg = str(error).lower()
    return any(marker in msg for marker in _CONTEXT_LENGTH_MARKERS)


_RETRYABLE = frozenset({
    ErrorClass.TRANSIENT,
    ErrorClass.SERVER,
    ErrorClass.TIMEOUT,
})


def is_retryable(error: Exception) -> bool:
    """Return True if the error category supports retry."""
    return classify_error(error) in _RETRYABLE
