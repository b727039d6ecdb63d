"""Tests for failure classification and the per-provider retry engine."""

from __future__ import annotations

import asyncio

import httpx
import pytest

from llm_taskgen.core.errors import ProviderError, ProviderExhaustedError
from llm_taskgen.gateway.classifier import classify_failure, classify_message, classify_status_code
from llm_taskgen.gateway.rate_limiter import RateLimitTracker
from llm_taskgen.gateway.retry import RetryEngine
from llm_taskgen.gateway.selector import ProviderRegistration
from llm_taskgen.gateway.types import CompletionRequest, CompletionResult, FailureKind, SamplingOptions, TokenUsage


# ==========================================================================
# Test: Failure classifier
# ==========================================================================


class TestClassifyStatusCode:
    @pytest.mark.parametrize(
        "code,kind",
        [
            (429, FailureKind.RATE_LIMITED),
            (500, FailureKind.TRANSIENT),
            (503, FailureKind.TRANSIENT),
            (529, FailureKind.TRANSIENT),
            (408, FailureKind.TRANSIENT),
            (400, FailureKind.FATAL),
            (401, FailureKind.FATAL),
            (404, FailureKind.FATAL),
        ],
    )
    def test_codes(self, code, kind):
        assert classify_status_code(code) == kind


class TestClassifyFailure:
    def test_provider_error_keeps_its_tag(self):
        err = ProviderError("whatever", provider="x", kind=FailureKind.TRANSIENT)
        assert classify_failure(err) == FailureKind.TRANSIENT

    def test_http_status_error(self):
        request = httpx.Request("POST", "https://example.com")
        response = httpx.Response(429, request=request)
        err = httpx.HTTPStatusError("too many", request=request, response=response)
        assert classify_failure(err) == FailureKind.RATE_LIMITED

    def test_httpx_timeouts_and_transport_errors_are_transient(self):
        assert classify_failure(httpx.ReadTimeout("read timed out")) == FailureKind.TRANSIENT
        assert classify_failure(httpx.ConnectError("refused")) == FailureKind.TRANSIENT

    def test_asyncio_timeout_and_connection_errors_are_transient(self):
        assert classify_failure(asyncio.TimeoutError()) == FailureKind.TRANSIENT
        assert classify_failure(ConnectionResetError("reset by peer")) == FailureKind.TRANSIENT

    def test_message_patterns(self):
        assert classify_failure(RuntimeError("Too Many Requests")) == FailureKind.RATE_LIMITED
        assert classify_failure(RuntimeError("quota exhausted for today")) == FailureKind.RATE_LIMITED
        assert classify_failure(RuntimeError("upstream server error")) == FailureKind.TRANSIENT
        assert classify_failure(ValueError("invalid api key")) == FailureKind.FATAL

    def test_rate_limit_patterns_checked_before_transient(self):
        assert classify_message("rate limit hit, service temporarily unavailable") == FailureKind.RATE_LIMITED


# ==========================================================================
# Test: Retry engine
# ==========================================================================


@pytest.fixture
def tracker(clock) -> RateLimitTracker:
    return RateLimitTracker(base_cooldown=60, max_cooldown=300, clock=clock)


@pytest.fixture
def engine(tracker, sleep) -> RetryEngine:
    return RetryEngine(tracker, sleep=sleep)


def _registration(client) -> ProviderRegistration:
    return ProviderRegistration(name=client.name, client=client)


class TestBackoff:
    def test_exponential_with_cap(self):
        delays = [RetryEngine.calculate_backoff(n) for n in range(1, 7)]
        assert delays == [1.0, 2.0, 4.0, 8.0, 10.0, 10.0]


class TestInvokeWithRetry:
    @pytest.mark.asyncio
    async def test_success_first_try(self, engine, sleep, make_client):
        client = make_client("openai", ["hello"])
        outcome = await engine.invoke_with_retry(_registration(client), CompletionRequest(prompt="hi"), max_retries=3)
        assert outcome.result.text == "hello"
        assert outcome.result.model == "openai-model"
        assert outcome.attempts == 1
        assert sleep.delays == []

    @pytest.mark.asyncio
    async def test_transient_failures_are_retried_with_backoff(self, engine, sleep, make_client, failures):
        client = make_client("openai", [failures.transient(), failures.transient(), "recovered"])
        outcome = await engine.invoke_with_retry(_registration(client), CompletionRequest(prompt="hi"), max_retries=3)
        assert outcome.result.text == "recovered"
        assert outcome.attempts == 3
        assert sleep.delays == [1.0, 2.0]

    @pytest.mark.asyncio
    async def test_transient_budget_exhausted(self, engine, sleep, make_client, failures):
        client = make_client("openai", [failures.transient()])
        with pytest.raises(ProviderExhaustedError) as exc_info:
            await engine.invoke_with_retry(_registration(client), CompletionRequest(prompt="hi"), max_retries=2)
        assert exc_info.value.attempts == 3
        assert exc_info.value.kind == FailureKind.TRANSIENT
        assert isinstance(exc_info.value.cause, ProviderError)
        assert sleep.delays == [1.0, 2.0]

    @pytest.mark.asyncio
    async def test_zero_retries_means_single_attempt(self, engine, sleep, make_client, failures):
        client = make_client("openai", [failures.transient(), "never reached"])
        with pytest.raises(ProviderExhaustedError):
            await engine.invoke_with_retry(_registration(client), CompletionRequest(prompt="hi"), max_retries=0)
        assert len(client.calls) == 1
        assert sleep.delays == []

    @pytest.mark.asyncio
    async def test_rate_limit_marks_cooldown_and_gives_up(self, engine, tracker, sleep, make_client, failures):
        client = make_client("openai", [failures.rate_limited(), "never reached"])
        with pytest.raises(ProviderExhaustedError) as exc_info:
            await engine.invoke_with_retry(_registration(client), CompletionRequest(prompt="hi"), max_retries=3)
        assert exc_info.value.kind == FailureKind.RATE_LIMITED
        assert exc_info.value.attempts == 1
        assert tracker.is_cooling_down("openai") is True
        assert sleep.delays == []

    @pytest.mark.asyncio
    async def test_rate_limit_honours_retry_after(self, engine, tracker, make_client, failures):
        client = make_client("openai", [failures.rate_limited(retry_after=120)])
        with pytest.raises(ProviderExhaustedError):
            await engine.invoke_with_retry(_registration(client), CompletionRequest(prompt="hi"), max_retries=3)
        assert tracker.get_entry("openai").last_backoff == 120

    @pytest.mark.asyncio
    async def test_fatal_gives_up_immediately(self, engine, tracker, sleep, make_client, failures):
        client = make_client("openai", [failures.fatal(), "never reached"])
        with pytest.raises(ProviderExhaustedError) as exc_info:
            await engine.invoke_with_retry(_registration(client), CompletionRequest(prompt="hi"), max_retries=3)
        assert exc_info.value.kind == FailureKind.FATAL
        assert len(client.calls) == 1
        assert tracker.is_cooling_down("openai") is False
        assert sleep.delays == []

    @pytest.mark.asyncio
    async def test_untagged_exceptions_are_classified(self, engine, sleep, make_client):
        client = make_client("openai", [ConnectionError("connection reset"), "ok"])
        outcome = await engine.invoke_with_retry(_registration(client), CompletionRequest(prompt="hi"), max_retries=1)
        assert outcome.result.text == "ok"
        assert sleep.delays == [1.0]

    @pytest.mark.asyncio
    async def test_success_resets_backoff_history(self, engine, tracker, clock, make_client):
        tracker.mark_rate_limited("openai")
        tracker.mark_rate_limited("openai")
        clock.advance(500)
        client = make_client("openai", ["ok"])
        await engine.invoke_with_retry(_registration(client), CompletionRequest(prompt="hi"), max_retries=0)
        assert tracker.get_entry("openai").last_backoff == 0.0

    @pytest.mark.asyncio
    async def test_sampling_defaults_fill_unset_options(self, tracker, sleep, make_client):
        engine = RetryEngine(tracker, sampling_defaults=SamplingOptions(temperature=0.5, top_p=0.9), sleep=sleep)
        client = make_client("openai", ["ok"])
        request = CompletionRequest(prompt="hi", system_prompt="sys", options=SamplingOptions(temperature=0.1))
        await engine.invoke_with_retry(_registration(client), request, max_retries=0)

        prompt, system_prompt, options = client.calls[0]
        assert (prompt, system_prompt) == ("hi", "sys")
        assert options.temperature == 0.1
        assert options.top_p == 0.9

    @pytest.mark.asyncio
    async def test_result_usage_is_normalized(self, engine, make_client):
        result = CompletionResult(text="ok", usage=TokenUsage(prompt_tokens=3, completion_tokens=4))
        client = make_client("openai", [result])
        outcome = await engine.invoke_with_retry(_registration(client), CompletionRequest(prompt="hi"), max_retries=0)
        assert outcome.result.usage.total_tokens == 7
