"""Provider Registry & Priority Selector.

The registry is built once at startup and only ever grows. The selector
derives an ordered, duplicate-free candidate list per request:

  1. preferred provider, if eligible
  2. otherwise the provider the router maps the operation name to
  3. the process-wide default provider
  4. FALLBACK_ORDER
  5. any remaining configured providers in registration order

A provider is eligible when it is configured and not cooling down.
"""

from __future__ import annotations

import logging
from collections.abc import Iterator
from dataclasses import dataclass

from llm_taskgen.gateway.providers import BaseProviderClient
from llm_taskgen.gateway.rate_limiter import RateLimitTracker
from llm_taskgen.gateway.router import TaskRouter
from llm_taskgen.gateway.types import FALLBACK_ORDER

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ProviderRegistration:
    name: str
    client: BaseProviderClient
    is_configured: bool = True


class ProviderRegistry:
    """Named provider clients in registration order."""

    def __init__(self, registrations: list[ProviderRegistration] | None = None):
        self._providers: dict[str, ProviderRegistration] = {}
        for registration in registrations or []:
            self.register(registration.name, registration.client, registration.is_configured)

    def register(self, name: str, client: BaseProviderClient, is_configured: bool = True) -> ProviderRegistration:
        name = name.strip().lower()
        if name in self._providers:
            raise ValueError(f"Provider already registered: {name}")
        registration = ProviderRegistration(name=name, client=client, is_configured=is_configured)
        self._providers[name] = registration
        return registration

    def get(self, name: str) -> ProviderRegistration | None:
        return self._providers.get(name)

    def is_configured(self, name: str | None) -> bool:
        registration = self._providers.get(name) if name else None
        return registration is not None and registration.is_configured

    def configured_names(self) -> list[str]:
        return [r.name for r in self._providers.values() if r.is_configured]

    def __contains__(self, name: object) -> bool:
        return name in self._providers

    def __iter__(self) -> Iterator[ProviderRegistration]:
        return iter(self._providers.values())

    def __len__(self) -> int:
        return len(self._providers)


class CandidateSelector:
    """Computes the candidate list for a request.

    Usage:
        selector = CandidateSelector(registry, tracker, router, default_provider="openai")
        for name in selector.select_candidates(preferred_provider="groq", operation_name="parse-prd"):
            ...
    """

    def __init__(
        self,
        registry: ProviderRegistry,
        tracker: RateLimitTracker,
        router: TaskRouter | None = None,
        default_provider: str | None = None,
        fallback_order: tuple[str, ...] = FALLBACK_ORDER,
    ):
        self.registry = registry
        self.tracker = tracker
        self.router = router
        self.default_provider = default_provider
        self.fallback_order = fallback_order

    def is_eligible(self, name: str | None) -> bool:
        return bool(name) and self.registry.is_configured(name) and not self.tracker.is_cooling_down(name)

    def select_candidates(self, preferred_provider: str | None = None, operation_name: str | None = None) -> list[str]:
        """Ordered, duplicate-free list of eligible providers. May be empty."""
        candidates: list[str] = []

        def _add(name: str | None) -> None:
            if name and name not in candidates and self.is_eligible(name):
                candidates.append(name)

        preferred = preferred_provider.strip().lower() if preferred_provider else None
        if self.is_eligible(preferred):
            _add(preferred)
        elif operation_name and self.router is not None:
            _add(self.router.match(operation_name))

        _add(self.default_provider)

        for name in self.fallback_order:
            _add(name)

        for name in self.registry.configured_names():
            _add(name)

        logger.debug(
            "Candidates for preferred=%s operation=%s: %s",
            preferred,
            operation_name,
            candidates,
        )
        return candidates
