"""Deterministic provider failure classification for the retry engine.

Provider adapters tag their own failures with a ``FailureKind``; this module
classifies everything else (exceptions from third-party clients or injected
callables) into the same three-way contract.
"""

from __future__ import annotations

import asyncio

import httpx

from llm_taskgen.core.errors import ProviderError
from llm_taskgen.gateway.types import FailureKind

_RATE_LIMIT_PATTERNS: tuple[str, ...] = (
    "rate limit",
    "rate-limit",
    "rate_limit",
    "ratelimit",
    "too many requests",
    "429",
    "limit exceeded",
    "quota",
    "resource_exhausted",
)
_TRANSIENT_PATTERNS: tuple[str, ...] = (
    "network",
    "timeout",
    "timed out",
    "connection",
    "server error",
    "temporary",
    "temporarily",
    "unavailable",
    "overloaded",
    "bad gateway",
    "502",
    "503",
    "504",
)

_TRANSIENT_STATUS_CODES = frozenset({408, 409, 425, 500, 502, 503, 504, 529})


def classify_status_code(status_code: int) -> FailureKind:
    """Map an HTTP status code to a failure kind."""
    if status_code == 429:
        return FailureKind.RATE_LIMITED
    if status_code in _TRANSIENT_STATUS_CODES or status_code >= 500:
        return FailureKind.TRANSIENT
    return FailureKind.FATAL


def classify_message(message: str) -> FailureKind:
    """Fallback classification by error message patterns."""
    lowered = message.lower()
    if any(p in lowered for p in _RATE_LIMIT_PATTERNS):
        return FailureKind.RATE_LIMITED
    if any(p in lowered for p in _TRANSIENT_PATTERNS):
        return FailureKind.TRANSIENT
    return FailureKind.FATAL


def classify_failure(exc: BaseException) -> FailureKind:
    """Classify a failed provider call as rate-limited, transient or fatal."""
    if isinstance(exc, ProviderError):
        return exc.kind
    if isinstance(exc, httpx.HTTPStatusError):
        return classify_status_code(exc.response.status_code)
    if isinstance(exc, (httpx.TimeoutException, httpx.TransportError, asyncio.TimeoutError, ConnectionError)):
        return FailureKind.TRANSIENT
    return classify_message(str(exc))
