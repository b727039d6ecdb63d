"""Provider clients: the uniform ``complete`` contract over each upstream API.

Every client exposes a single coroutine:

    await client.complete(prompt, system_prompt, options) -> CompletionResult

and fails by raising ``ProviderError`` tagged with a ``FailureKind``, so the
orchestrator never inspects provider shapes at runtime.

Built-in HTTP adapters:
  - OpenAI-compatible chat completions: openai, groq, mistral, mixtral, xai,
    perplexity, openrouter, ollama (local, no key)
  - Anthropic Messages API
  - Google Gemini generateContent (SAFETY blocks are fatal for the provider)
"""

from __future__ import annotations

import inspect
import logging
from abc import ABC, abstractmethod
from collections.abc import Awaitable, Callable
from typing import TYPE_CHECKING, Any

import httpx

from llm_taskgen.core.errors import ProviderError
from llm_taskgen.gateway.classifier import classify_status_code
from llm_taskgen.gateway.types import (
    PROVIDER_DEFAULTS,
    CompletionResult,
    FailureKind,
    ProviderDefaults,
    SamplingOptions,
    TokenUsage,
)

if TYPE_CHECKING:
    from llm_taskgen.core.config import Settings

logger = logging.getLogger(__name__)


def _retry_after(resp: httpx.Response) -> float | None:
    """Parse a Retry-After header given in seconds."""
    value = resp.headers.get("retry-after")
    if not value:
        return None
    try:
        return max(float(value), 0.0)
    except ValueError:
        return None


class BaseProviderClient(ABC):
    """Base class for all provider clients."""

    name: str = ""

    def __init__(self, api_key: str = "", model: str | None = None, timeout: float = 60.0, **kwargs):
        self.api_key = api_key
        self.defaults: ProviderDefaults = PROVIDER_DEFAULTS.get(self.name, ProviderDefaults(model=""))
        self.model = model or self.defaults.model
        self.timeout = timeout

    @abstractmethod
    async def complete(
        self,
        prompt: str,
        system_prompt: str | None = None,
        options: SamplingOptions | None = None,
    ) -> CompletionResult:
        """Send one completion and return the generated text."""
        ...

    def _effective_options(self, options: SamplingOptions | None) -> SamplingOptions:
        provider_defaults = SamplingOptions(
            temperature=self.defaults.temperature,
            max_tokens=self.defaults.max_tokens,
        )
        return (options or SamplingOptions()).merged_over(provider_defaults)

    async def _post_json(self, url: str, payload: dict, headers: dict[str, str], params: dict | None = None) -> dict:
        """POST a JSON payload and return the decoded body.

        Translates transport and HTTP failures into tagged ProviderErrors.
        """
        try:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                resp = await client.post(url, json=payload, headers=headers, params=params)
        except httpx.TimeoutException as e:
            raise ProviderError(
                f"{self.name} timeout after {self.timeout}s",
                provider=self.name,
                kind=FailureKind.TRANSIENT,
                cause=e,
            ) from e
        except httpx.TransportError as e:
            raise ProviderError(
                f"{self.name} network error: {e}",
                provider=self.name,
                kind=FailureKind.TRANSIENT,
                cause=e,
            ) from e

        if resp.status_code >= 400:
            kind = classify_status_code(resp.status_code)
            raise ProviderError(
                f"{self.name} returned HTTP {resp.status_code}: {resp.text[:300]}",
                provider=self.name,
                kind=kind,
                status_code=resp.status_code,
                retry_after=_retry_after(resp) if kind == FailureKind.RATE_LIMITED else None,
            )

        try:
            return resp.json()
        except ValueError as e:
            raise ProviderError(
                f"{self.name} returned a non-JSON body",
                provider=self.name,
                kind=FailureKind.TRANSIENT,
                status_code=resp.status_code,
                cause=e,
            ) from e


# ---------------------------------------------------------------------------
# OpenAI-compatible chat completions
# ---------------------------------------------------------------------------

_OPENAI_COMPATIBLE_BASE_URLS: dict[str, str] = {
    "openai": "https://api.openai.com/v1",
    "groq": "https://api.groq.com/openai/v1",
    "mistral": "https://api.mistral.ai/v1",
    "mixtral": "https://api.mistral.ai/v1",
    "xai": "https://api.x.ai/v1",
    "perplexity": "https://api.perplexity.ai",
    "openrouter": "https://openrouter.ai/api/v1",
    "ollama": "http://localhost:11434/v1",
}


class OpenAICompatibleClient(BaseProviderClient):
    """Chat completions client for every provider speaking the OpenAI protocol."""

    def __init__(self, name: str, api_key: str = "", base_url: str | None = None, **kwargs):
        if name not in _OPENAI_COMPATIBLE_BASE_URLS:
            raise ValueError(f"Unknown OpenAI-compatible provider: {name}")
        self.name = name
        super().__init__(api_key=api_key, **kwargs)
        self.base_url = (base_url or _OPENAI_COMPATIBLE_BASE_URLS[name]).rstrip("/")

    @property
    def api_url(self) -> str:
        return f"{self.base_url}/chat/completions"

    def build_payload(self, prompt: str, system_prompt: str | None, options: SamplingOptions | None) -> dict:
        opts = self._effective_options(options)
        messages = []
        if system_prompt:
            messages.append({"role": "system", "content": system_prompt})
        messages.append({"role": "user", "content": prompt})
        return {"model": self.model, "messages": messages, **opts.to_dict()}

    async def complete(
        self,
        prompt: str,
        system_prompt: str | None = None,
        options: SamplingOptions | None = None,
    ) -> CompletionResult:
        headers = {"Content-Type": "application/json"}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"

        data = await self._post_json(self.api_url, self.build_payload(prompt, system_prompt, options), headers)

        choices = data.get("choices") or []
        if not choices:
            raise ProviderError(f"{self.name} returned no choices", provider=self.name, kind=FailureKind.TRANSIENT)
        choice = choices[0]
        usage = data.get("usage") or {}
        prompt_tokens = usage.get("prompt_tokens", 0)
        completion_tokens = usage.get("completion_tokens", 0)
        return CompletionResult(
            text=(choice.get("message") or {}).get("content") or "",
            usage=TokenUsage(
                prompt_tokens=prompt_tokens,
                completion_tokens=completion_tokens,
                total_tokens=usage.get("total_tokens", prompt_tokens + completion_tokens),
            ),
            model=data.get("model", self.model),
            finish_reason=choice.get("finish_reason") or "",
        )


# ---------------------------------------------------------------------------
# Anthropic Messages API
# ---------------------------------------------------------------------------


class AnthropicClient(BaseProviderClient):
    """Anthropic Messages API client."""

    name = "anthropic"
    api_url = "https://api.anthropic.com/v1/messages"
    api_version = "2023-06-01"

    def build_payload(self, prompt: str, system_prompt: str | None, options: SamplingOptions | None) -> dict:
        opts = self._effective_options(options)
        payload: dict[str, Any] = {
            "model": self.model,
            "max_tokens": opts.max_tokens,
            "messages": [{"role": "user", "content": prompt}],
        }
        if system_prompt:
            payload["system"] = system_prompt
        if opts.temperature is not None:
            payload["temperature"] = opts.temperature
        if opts.top_p is not None:
            payload["top_p"] = opts.top_p
        return payload

    async def complete(
        self,
        prompt: str,
        system_prompt: str | None = None,
        options: SamplingOptions | None = None,
    ) -> CompletionResult:
        headers = {
            "x-api-key": self.api_key,
            "anthropic-version": self.api_version,
            "Content-Type": "application/json",
        }
        data = await self._post_json(self.api_url, self.build_payload(prompt, system_prompt, options), headers)

        text = "".join(block.get("text", "") for block in data.get("content", []) if block.get("type") == "text")
        usage = data.get("usage") or {}
        input_tokens = usage.get("input_tokens", 0)
        output_tokens = usage.get("output_tokens", 0)
        return CompletionResult(
            text=text,
            usage=TokenUsage(
                prompt_tokens=input_tokens,
                completion_tokens=output_tokens,
                total_tokens=input_tokens + output_tokens,
            ),
            model=data.get("model", self.model),
            finish_reason=data.get("stop_reason") or "",
        )


# ---------------------------------------------------------------------------
# Gemini (Google AI)
# ---------------------------------------------------------------------------


class GeminiClient(BaseProviderClient):
    """Google Gemini client with SAFETY filter detection."""

    name = "gemini"
    api_url_template = "https://generativelanguage.googleapis.com/v1beta/models/{model}:generateContent"

    def build_payload(self, prompt: str, system_prompt: str | None, options: SamplingOptions | None) -> dict:
        opts = self._effective_options(options)
        generation_config = {
            "temperature": opts.temperature,
            "maxOutputTokens": opts.max_tokens,
            "topP": opts.top_p,
            "presencePenalty": opts.presence_penalty,
            "frequencyPenalty": opts.frequency_penalty,
        }
        payload: dict[str, Any] = {
            "contents": [{"role": "user", "parts": [{"text": prompt}]}],
            "generationConfig": {k: v for k, v in generation_config.items() if v is not None},
        }
        # System instruction (separate from contents in Gemini API)
        if system_prompt:
            payload["systemInstruction"] = {"parts": [{"text": system_prompt}]}
        return payload

    async def complete(
        self,
        prompt: str,
        system_prompt: str | None = None,
        options: SamplingOptions | None = None,
    ) -> CompletionResult:
        url = self.api_url_template.format(model=self.model)
        data = await self._post_json(
            url,
            self.build_payload(prompt, system_prompt, options),
            headers={"Content-Type": "application/json"},
            params={"key": self.api_key},
        )

        candidates = data.get("candidates", [])
        if not candidates:
            block_reason = data.get("promptFeedback", {}).get("blockReason", "")
            if block_reason:
                raise ProviderError(
                    f"Gemini blocked the prompt: {block_reason}",
                    provider=self.name,
                    kind=FailureKind.FATAL,
                )
            raise ProviderError("Gemini returned no candidates", provider=self.name, kind=FailureKind.TRANSIENT)

        candidate = candidates[0]
        finish_reason = candidate.get("finishReason", "")
        if finish_reason == "SAFETY":
            raise ProviderError("Gemini safety filter triggered", provider=self.name, kind=FailureKind.FATAL)

        parts = candidate.get("content", {}).get("parts", [])
        usage = data.get("usageMetadata", {})
        return CompletionResult(
            text="".join(p.get("text", "") for p in parts if "text" in p),
            usage=TokenUsage(
                prompt_tokens=usage.get("promptTokenCount", 0),
                completion_tokens=usage.get("candidatesTokenCount", 0),
                total_tokens=usage.get("totalTokenCount", 0),
            ),
            model=self.model,
            finish_reason=finish_reason,
        )


# ---------------------------------------------------------------------------
# Callable adapter (application-supplied or test providers)
# ---------------------------------------------------------------------------

CompleteFn = Callable[..., "Awaitable[Any] | str | CompletionResult"]


class CallableProviderClient(BaseProviderClient):
    """Adapts a plain function ``fn(prompt, system_prompt, options)``.

    The function may be sync or async and may return either text or a
    ``CompletionResult``.
    """

    def __init__(self, name: str, fn: CompleteFn, model: str = ""):
        self.name = name
        super().__init__(model=model or name)
        self._fn = fn

    async def complete(
        self,
        prompt: str,
        system_prompt: str | None = None,
        options: SamplingOptions | None = None,
    ) -> CompletionResult:
        result = self._fn(prompt, system_prompt, options or SamplingOptions())
        if inspect.isawaitable(result):
            result = await result
        if isinstance(result, CompletionResult):
            return result
        return CompletionResult(text=str(result), model=self.model)


# ---------------------------------------------------------------------------
# Client registry
# ---------------------------------------------------------------------------

CLIENT_REGISTRY: dict[str, type[BaseProviderClient]] = {
    "anthropic": AnthropicClient,
    "gemini": GeminiClient,
    **{name: OpenAICompatibleClient for name in _OPENAI_COMPATIBLE_BASE_URLS},
}


def get_client(name: str, api_key: str = "", **kwargs) -> BaseProviderClient:
    """Factory: get the appropriate client for a provider name."""
    cls = CLIENT_REGISTRY.get(name)
    if cls is None:
        raise ValueError(f"No client registered for provider: {name}")
    if cls is OpenAICompatibleClient:
        return OpenAICompatibleClient(name, api_key=api_key, **kwargs)
    return cls(api_key=api_key, **kwargs)


def build_provider_clients(cfg: Settings) -> dict[str, BaseProviderClient]:
    """Create one client per provider that has credentials configured."""
    clients: dict[str, BaseProviderClient] = {}
    for name, api_key in cfg.provider_credentials().items():
        kwargs: dict[str, Any] = {"timeout": cfg.llm_request_timeout_seconds}
        if name == "openai" and cfg.openai_api_base_url:
            kwargs["base_url"] = cfg.openai_api_base_url
        elif name == "ollama":
            kwargs["base_url"] = f"{cfg.ollama_base_url.rstrip('/')}/v1"
        clients[name] = get_client(name, api_key, **kwargs)
        logger.info("Initialized provider client %s (model=%s)", name, clients[name].model)
    return clients
