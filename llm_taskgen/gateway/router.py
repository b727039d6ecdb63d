"""Task Router: maps an operation name to the provider configured for it.

Mappings come from ``<PROVIDER>_TASKS`` settings, e.g.
``ANTHROPIC_TASKS=parse-prd,expand-task``. Matching is fuzzy:

  1. exact match of the lowercased name
  2. normalized match (lowercase, ``-`` and ``_`` removed), so
     ``parse_prd`` == ``parse-prd`` == ``ParsePrd``
  3. substring in either direction on the normalized forms

Each stage scans every provider before the next stage begins. Anything
unmatched goes to the default provider.
"""

from __future__ import annotations

import logging
import re
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from llm_taskgen.core.config import Settings

logger = logging.getLogger(__name__)

_SEPARATORS = re.compile(r"[-_]")


def normalize_operation_name(name: str) -> str:
    return _SEPARATORS.sub("", name.strip().lower())


class TaskRouter:
    """Resolve operation names to providers.

    Usage:
        router = TaskRouter({"anthropic": ["parse-prd"]}, default_provider="openai")
        router.provider_for_operation("parse_prd")   # "anthropic"
        router.provider_for_operation("unknown")     # "openai"
    """

    def __init__(self, mappings: dict[str, list[str]] | None = None, default_provider: str | None = None):
        # Ordered (provider, lowered name, normalized name) triples
        self._entries: list[tuple[str, str, str]] = []
        for provider, tasks in (mappings or {}).items():
            for task in tasks:
                lowered = task.strip().lower()
                if lowered:
                    self._entries.append((provider, lowered, normalize_operation_name(lowered)))
        self.default_provider = default_provider

    @classmethod
    def from_settings(cls, cfg: Settings, default_provider: str | None = None) -> TaskRouter:
        return cls(cfg.task_mappings(), default_provider=default_provider or cfg.default_llm_provider or None)

    @property
    def mappings(self) -> dict[str, list[str]]:
        result: dict[str, list[str]] = {}
        for provider, lowered, _ in self._entries:
            result.setdefault(provider, []).append(lowered)
        return result

    def match(self, operation_name: str | None) -> str | None:
        """Return the mapped provider, or None when nothing matches."""
        if not operation_name:
            return None
        lowered = operation_name.strip().lower()
        normalized = normalize_operation_name(lowered)

        for provider, task, _ in self._entries:
            if task == lowered:
                return provider

        if not normalized:
            return None

        for provider, _, task_norm in self._entries:
            if task_norm == normalized:
                return provider

        for provider, _, task_norm in self._entries:
            if task_norm and (task_norm in normalized or normalized in task_norm):
                logger.debug("Operation %r fuzzily routed to %s via %r", operation_name, provider, task_norm)
                return provider

        return None

    def provider_for_operation(self, operation_name: str | None) -> str | None:
        """Provider mapped to *operation_name*, else the default provider."""
        return self.match(operation_name) or self.default_provider
