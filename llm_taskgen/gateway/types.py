"""Core types and DTOs for the provider orchestrator."""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field, fields, replace
from enum import Enum


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------


class FailureKind(str, Enum):
    """How a failed provider call should be handled by the retry engine."""

    RATE_LIMITED = "rate_limited"  # Cool the provider down, move on
    TRANSIENT = "transient"  # Back off and retry the same provider
    FATAL = "fatal"  # Give up on this provider immediately


# ---------------------------------------------------------------------------
# Provider catalogue
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ProviderDefaults:
    """Default model and sampling parameters for a provider."""

    model: str
    temperature: float = 0.7
    max_tokens: int = 4000


PROVIDER_DEFAULTS: dict[str, ProviderDefaults] = {
    "anthropic": ProviderDefaults(model="claude-3-7-sonnet-latest"),
    "openai": ProviderDefaults(model="gpt-4o"),
    "groq": ProviderDefaults(model="deepseek-r1-distill-llama-70b"),
    "mistral": ProviderDefaults(model="mistral-large-latest"),
    "gemini": ProviderDefaults(model="gemini-2.5-pro"),
    "xai": ProviderDefaults(model="grok-3"),
    "mixtral": ProviderDefaults(model="open-mixtral-8x7b"),
    "ollama": ProviderDefaults(model="llama3"),
    "perplexity": ProviderDefaults(model="sonar"),
    "openrouter": ProviderDefaults(model="mistralai/mistral-7b-instruct"),
}

# Hand-maintained quality/cost ordering used after the preferred and default providers
FALLBACK_ORDER: tuple[str, ...] = (
    "anthropic",
    "gemini",
    "openai",
    "groq",
    "mistral",
    "mixtral",
    "ollama",
    "perplexity",
    "openrouter",
    "xai",
)

KNOWN_PROVIDERS: tuple[str, ...] = FALLBACK_ORDER


# ---------------------------------------------------------------------------
# Request side
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class SamplingOptions:
    """Sampling parameters for a completion. ``None`` means "not set"."""

    temperature: float | None = None
    max_tokens: int | None = None
    top_p: float | None = None
    presence_penalty: float | None = None
    frequency_penalty: float | None = None

    def merged_over(self, defaults: SamplingOptions | None) -> SamplingOptions:
        """Fill unset fields from *defaults*; values set here win."""
        if defaults is None:
            return self
        updates = {
            f.name: getattr(defaults, f.name)
            for f in fields(self)
            if getattr(self, f.name) is None and getattr(defaults, f.name) is not None
        }
        return replace(self, **updates) if updates else self

    def to_dict(self) -> dict:
        """Only the fields that are set."""
        return {f.name: getattr(self, f.name) for f in fields(self) if getattr(self, f.name) is not None}


@dataclass(frozen=True)
class CompletionRequest:
    """A single orchestrated request. Immutable once enqueued."""

    prompt: str
    system_prompt: str | None = None
    options: SamplingOptions = field(default_factory=SamplingOptions)
    preferred_provider: str | None = None
    operation_name: str | None = None
    request_id: str = field(default_factory=lambda: uuid.uuid4().hex[:16])


# ---------------------------------------------------------------------------
# Response side
# ---------------------------------------------------------------------------


@dataclass
class TokenUsage:
    prompt_tokens: int = 0
    completion_tokens: int = 0
    total_tokens: int = 0


@dataclass
class CompletionResult:
    """What a provider client returns from ``complete``."""

    text: str
    usage: TokenUsage | None = None
    model: str = ""
    finish_reason: str = ""


@dataclass
class LlmResponse:
    """Unified response DTO handed back to callers of ``send_request``.

    Same structure regardless of which provider produced it.
    """

    text: str
    usage: TokenUsage = field(default_factory=TokenUsage)
    provider: str = ""
    model: str = ""
    attempts: int = 1  # Provider calls made across all candidates
    latency_ms: int = 0
    request_id: str = ""

    def to_dict(self) -> dict:
        """Serialize to JSON-compatible dict for logging/storage."""
        return {
            "text": self.text,
            "usage": {
                "prompt_tokens": self.usage.prompt_tokens,
                "completion_tokens": self.usage.completion_tokens,
                "total_tokens": self.usage.total_tokens,
            },
            "provider": self.provider,
            "model": self.model,
            "attempts": self.attempts,
            "latency_ms": self.latency_ms,
            "request_id": self.request_id,
        }
