"""LLM Gateway: orchestrator integrating all gateway components.

Main entry point for sending prompts to upstream providers:
  1. Accepts a prompt via ``send_request`` and enqueues it
  2. Waits for a slot in the concurrency-bounded queue
  3. Builds the candidate list (preferred → routed → default → fallback order),
     skipping providers in rate-limit cooldown
  4. Invokes each candidate through the retry engine until one succeeds
  5. Normalizes the result into a unified ``LlmResponse``

All state (registry, cooldowns, queue) lives on the gateway instance; build
one per process and pass it to collaborators.

Usage:
    gateway = LlmGateway.from_settings(settings)

    response = await gateway.send_request("Summarize ...", operation_name="summarize")
    print(response.provider, response.text)
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Awaitable, Callable

from llm_taskgen.core.config import Settings, settings
from llm_taskgen.core.errors import (
    AllProvidersFailedError,
    ConfigurationError,
    NoProvidersAvailableError,
    ProviderExhaustedError,
)
from llm_taskgen.gateway.normalizer import to_response
from llm_taskgen.gateway.providers import BaseProviderClient, build_provider_clients
from llm_taskgen.gateway.queue_manager import RequestQueue
from llm_taskgen.gateway.rate_limiter import RateLimitTracker
from llm_taskgen.gateway.retry import RetryEngine
from llm_taskgen.gateway.router import TaskRouter
from llm_taskgen.gateway.selector import CandidateSelector, ProviderRegistry
from llm_taskgen.gateway.types import FALLBACK_ORDER, CompletionRequest, LlmResponse, SamplingOptions

logger = logging.getLogger(__name__)

REFINE_SYSTEM_PROMPT = "You are a JSON-free prompt refiner."
REFINE_PROMPT_TEMPLATE = """
You are an expert prompt engineer. Your job is to improve a user prompt so that the AI model will produce exactly the desired output format.

Original Prompt:
{original_prompt}

Failed LLM Response:
{failed_response}

Desired Output Specification:
{desired_specification}

Please output only the improved prompt, with no additional commentary or reasoning, so that when the model receives it, it will follow the specification precisely.
"""


class LlmGateway:
    """Provider orchestrator.

    Integrates:
      - ProviderRegistry / CandidateSelector: who to try, in which order
      - RateLimitTracker: per-provider cooldowns with adaptive backoff
      - TaskRouter: operation name → preferred provider
      - RetryEngine: per-provider retries with failure classification
      - RequestQueue: bounded concurrency, FIFO admission
    """

    def __init__(
        self,
        clients: dict[str, BaseProviderClient] | None = None,
        *,
        task_mappings: dict[str, list[str]] | None = None,
        default_provider: str | None = None,
        max_retries: int = 3,
        max_provider_attempts: int | None = None,
        max_concurrent: int = 5,
        base_cooldown: float = 60.0,
        max_cooldown: float = 300.0,
        sampling_defaults: SamplingOptions | None = None,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        """
        Args:
            clients: Mapping of provider name → client; each entry is a configured provider
            task_mappings: Provider name → operation names it should handle
            default_provider: Preferred process-wide default (ignored if not configured)
            max_retries: Transient retries per provider after the first attempt
            max_provider_attempts: Max providers actually called per request; None tries every candidate
            max_concurrent: Queue concurrency bound
            base_cooldown: Rate-limit cooldown floor, seconds
            max_cooldown: Rate-limit cooldown ceiling, seconds
            sampling_defaults: Global sampling defaults under per-request options
            clock: Monotonic clock for cooldowns (injectable for tests)
            sleep: Backoff sleep (injectable for tests)
        """
        self.registry = ProviderRegistry()
        for name, client in (clients or {}).items():
            self.registry.register(name, client)

        self.max_retries = max_retries
        self.max_provider_attempts = None if max_provider_attempts is None else max(max_provider_attempts, 1)

        self.tracker = RateLimitTracker(base_cooldown=base_cooldown, max_cooldown=max_cooldown, clock=clock)
        self._default_provider = self._resolve_default(default_provider)
        self.router = TaskRouter(task_mappings, default_provider=self._default_provider)
        self.selector = CandidateSelector(
            self.registry,
            self.tracker,
            router=self.router,
            default_provider=self._default_provider,
        )
        self.retry_engine = RetryEngine(self.tracker, sampling_defaults=sampling_defaults, sleep=sleep)
        self.queue = RequestQueue(self._orchestrate, max_concurrent=max_concurrent)

        if self.router.mappings:
            logger.info("Loaded task routing for providers: %s", ", ".join(self.router.mappings))

    @classmethod
    def from_settings(
        cls,
        cfg: Settings | None = None,
        clients: dict[str, BaseProviderClient] | None = None,
        **kwargs,
    ) -> LlmGateway:
        """Build a gateway from settings; clients default to the built-in HTTP adapters."""
        cfg = cfg or settings
        if clients is None:
            clients = build_provider_clients(cfg)
        return cls(
            clients,
            task_mappings=cfg.task_mappings(),
            default_provider=cfg.default_llm_provider or None,
            max_retries=cfg.llm_max_retries,
            max_provider_attempts=cfg.llm_max_provider_attempts,
            max_concurrent=cfg.llm_max_concurrent_requests,
            base_cooldown=cfg.llm_base_rate_limit_duration_ms / 1000,
            max_cooldown=cfg.llm_max_rate_limit_duration_ms / 1000,
            sampling_defaults=cfg.sampling_defaults(),
            **kwargs,
        )

    def _resolve_default(self, requested: str | None) -> str | None:
        requested = requested.strip().lower() if requested else None
        if requested and self.registry.is_configured(requested):
            return requested
        if requested:
            logger.warning("Default provider %s is not configured; falling back", requested)
        for name in FALLBACK_ORDER:
            if self.registry.is_configured(name):
                return name
        configured = self.registry.configured_names()
        return configured[0] if configured else None

    @property
    def default_provider(self) -> str | None:
        return self._default_provider

    def available_providers(self) -> list[str]:
        return self.registry.configured_names()

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def send_request(
        self,
        prompt: str,
        system_prompt: str | None = None,
        options: SamplingOptions | None = None,
        operation_name: str | None = None,
        provider: str | None = None,
    ) -> LlmResponse:
        """Send one prompt through the queue and the candidate providers.

        Raises:
            ConfigurationError: no provider is configured at all
            NoProvidersAvailableError: every configured provider is cooling down
            AllProvidersFailedError: every candidate was tried and failed
        """
        if not self.registry.configured_names():
            raise ConfigurationError(
                "No LLM providers configured",
                operation=operation_name or "send_request",
            )

        request = CompletionRequest(
            prompt=prompt,
            system_prompt=system_prompt,
            options=options or SamplingOptions(),
            preferred_provider=provider,
            operation_name=operation_name,
        )
        return await self.queue.submit(request)

    async def refine_prompt(self, original_prompt: str, failed_response: str, desired_specification: str) -> str:
        """Ask a provider to rewrite a prompt that produced unusable output."""
        instruction = REFINE_PROMPT_TEMPLATE.format(
            original_prompt=original_prompt,
            failed_response=failed_response,
            desired_specification=desired_specification,
        )
        try:
            response = await self.send_request(
                instruction,
                system_prompt=REFINE_SYSTEM_PROMPT,
                options=SamplingOptions(temperature=0.2),
                operation_name="refine-prompt",
            )
        except Exception:
            logger.error("Prompt refinement failed", exc_info=True)
            raise
        logger.info("Generated improved prompt via %s", response.provider)
        return response.text.strip()

    def get_status(self) -> dict:
        """Get comprehensive gateway status."""
        return {
            "queue": self.queue.get_stats(),
            "rate_limits": self.tracker.get_all_stats(),
            "routing": self.router.mappings,
            "default_provider": self._default_provider,
            "configured_providers": self.registry.configured_names(),
        }

    # ------------------------------------------------------------------
    # Orchestration (runs inside a queue slot)
    # ------------------------------------------------------------------

    async def _orchestrate(self, request: CompletionRequest) -> LlmResponse:
        operation = request.operation_name or "send_request"
        log_extra = {"request_id": request.request_id, "operation": operation}
        started = time.perf_counter()

        candidates = self.selector.select_candidates(request.preferred_provider, request.operation_name)
        if not candidates:
            logger.warning("No providers available: all configured providers are cooling down", extra=log_extra)
            raise NoProvidersAvailableError(
                "All configured providers are rate limited; retry after the cooldown expires",
                operation=operation,
                details={"cooldowns": self.tracker.get_all_stats()},
            )

        tried: list[str] = []
        total_attempts = 0
        last_error: ProviderExhaustedError | None = None

        for name in candidates:
            if self.max_provider_attempts is not None and len(tried) >= self.max_provider_attempts:
                break
            # Another request may have put it into cooldown since selection;
            # skipped candidates do not count toward max_provider_attempts
            if self.tracker.is_cooling_down(name):
                continue
            registration = self.registry.get(name)
            tried.append(name)
            try:
                outcome = await self.retry_engine.invoke_with_retry(registration, request, self.max_retries)
            except ProviderExhaustedError as e:
                total_attempts += e.attempts
                last_error = e
                continue

            total_attempts += outcome.attempts
            return to_response(
                outcome.result,
                provider=name,
                attempts=total_attempts,
                latency_ms=int((time.perf_counter() - started) * 1000),
                request_id=request.request_id,
            )

        if last_error is None:
            logger.warning("No providers available: candidates entered cooldown before dispatch", extra=log_extra)
            raise NoProvidersAvailableError(
                "All candidate providers are rate limited; retry after the cooldown expires",
                operation=operation,
                details={"cooldowns": self.tracker.get_all_stats()},
            )

        logger.error(
            "All providers failed for request %s (tried %s): %s",
            request.request_id,
            ", ".join(tried),
            last_error,
            extra=log_extra,
        )
        raise AllProvidersFailedError(
            f"All providers failed ({', '.join(tried)}); last error: {last_error.cause}",
            operation=operation,
            details={"providers_tried": tried, "attempts": total_attempts, "last_kind": last_error.kind.value},
            cause=last_error.cause or last_error,
        )
