"""Response Normalizer: post-processes provider completion results.

Applies final normalization steps after a provider client returns:
  - Guarantees ``text`` is a string and ``usage`` is present
  - Makes ``total_tokens`` consistent with its parts
  - Fills in the model name when the client did not report one

This is idempotent and can be called multiple times safely.
"""

from __future__ import annotations

from llm_taskgen.gateway.types import CompletionResult, LlmResponse, TokenUsage


def normalize_result(result: CompletionResult, default_model: str = "") -> CompletionResult:
    if result.text is None:
        result.text = ""
    elif not isinstance(result.text, str):
        result.text = str(result.text)

    if result.usage is None:
        result.usage = TokenUsage()

    usage = result.usage
    if usage.total_tokens == 0 and (usage.prompt_tokens or usage.completion_tokens):
        usage.total_tokens = usage.prompt_tokens + usage.completion_tokens

    if not result.model:
        result.model = default_model

    return result


def to_response(
    result: CompletionResult,
    provider: str,
    attempts: int,
    latency_ms: int,
    request_id: str,
) -> LlmResponse:
    """Build the unified response DTO from a normalized result."""
    result = normalize_result(result)
    return LlmResponse(
        text=result.text,
        usage=result.usage,
        provider=provider,
        model=result.model,
        attempts=attempts,
        latency_ms=latency_ms,
        request_id=request_id,
    )
