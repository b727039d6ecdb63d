"""Retry Engine: bounded retries around a single provider invocation.

Each failure is classified (see ``classifier``) and handled as:

  - RATE_LIMITED: provider goes into cooldown; give up on it at once
    without consuming retry budget
  - TRANSIENT: sleep ``min(base * 2^(retry-1), max_delay)`` and retry the
    same provider, up to ``max_retries`` retries
  - FATAL: give up on the provider at once

Giving up raises ``ProviderExhaustedError`` wrapping the last failure; the
gateway then moves on to the next candidate.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass

from llm_taskgen.core.errors import ProviderError, ProviderExhaustedError
from llm_taskgen.core.metrics import PROVIDER_REQUESTS, REQUEST_DURATION
from llm_taskgen.gateway.classifier import classify_failure
from llm_taskgen.gateway.normalizer import normalize_result
from llm_taskgen.gateway.rate_limiter import RateLimitTracker
from llm_taskgen.gateway.selector import ProviderRegistration
from llm_taskgen.gateway.types import CompletionRequest, CompletionResult, FailureKind, SamplingOptions

logger = logging.getLogger(__name__)

# Transient backoff, seconds
BASE_RETRY_DELAY = 1.0
MAX_RETRY_DELAY = 10.0


@dataclass
class InvocationOutcome:
    """Successful invocation of one provider."""

    result: CompletionResult
    attempts: int


class RetryEngine:
    """Wraps provider calls with failure classification and backoff.

    Usage:
        engine = RetryEngine(tracker)
        outcome = await engine.invoke_with_retry(registration, request, max_retries=3)
    """

    def __init__(
        self,
        tracker: RateLimitTracker,
        sampling_defaults: SamplingOptions | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        base_delay: float = BASE_RETRY_DELAY,
        max_delay: float = MAX_RETRY_DELAY,
    ):
        self.tracker = tracker
        self.sampling_defaults = sampling_defaults or SamplingOptions()
        self._sleep = sleep
        self.base_delay = base_delay
        self.max_delay = max_delay

    @staticmethod
    def calculate_backoff(retry: int, base_delay: float = BASE_RETRY_DELAY, max_delay: float = MAX_RETRY_DELAY) -> float:
        """Delay before retry number *retry* (1-based).

        Formula: min(base * 2^(retry-1), max_delay)
        """
        return min(base_delay * (2 ** (max(retry, 1) - 1)), max_delay)

    async def invoke_with_retry(
        self,
        registration: ProviderRegistration,
        request: CompletionRequest,
        max_retries: int,
    ) -> InvocationOutcome:
        provider = registration.name
        options = request.options.merged_over(self.sampling_defaults)
        retries = 0
        attempts = 0

        while True:
            attempts += 1
            started = time.perf_counter()
            try:
                result = await registration.client.complete(request.prompt, request.system_prompt, options)
            except Exception as e:
                kind = classify_failure(e)
                PROVIDER_REQUESTS.labels(provider=provider, outcome=kind.value).inc()

                if kind == FailureKind.RATE_LIMITED:
                    retry_after = e.retry_after if isinstance(e, ProviderError) else None
                    self.tracker.mark_rate_limited(provider, retry_after)
                    raise ProviderExhaustedError(provider, attempts, kind, e) from e

                if kind == FailureKind.TRANSIENT and retries < max_retries:
                    retries += 1
                    delay = self.calculate_backoff(retries, self.base_delay, self.max_delay)
                    logger.warning(
                        "Transient failure from %s (retry %d/%d in %.1fs): %s",
                        provider,
                        retries,
                        max_retries,
                        delay,
                        e,
                        extra={"provider": provider, "request_id": request.request_id},
                    )
                    await self._sleep(delay)
                    continue

                logger.warning(
                    "Giving up on %s after %d attempt(s) (%s): %s",
                    provider,
                    attempts,
                    kind.value,
                    e,
                    extra={"provider": provider, "request_id": request.request_id},
                )
                raise ProviderExhaustedError(provider, attempts, kind, e) from e

            REQUEST_DURATION.labels(provider=provider).observe(time.perf_counter() - started)
            PROVIDER_REQUESTS.labels(provider=provider, outcome="success").inc()
            self.tracker.record_success(provider)
            if retries:
                logger.info(
                    "Provider %s succeeded after %d retr%s",
                    provider,
                    retries,
                    "y" if retries == 1 else "ies",
                    extra={"provider": provider, "request_id": request.request_id},
                )
            return InvocationOutcome(
                result=normalize_result(result, default_model=registration.client.model),
                attempts=attempts,
            )
