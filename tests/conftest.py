from __future__ import annotations

from types import SimpleNamespace

import pytest

from llm_taskgen.core.config import Settings
from llm_taskgen.core.errors import ProviderError
from llm_taskgen.gateway.gateway import LlmGateway
from llm_taskgen.gateway.providers import BaseProviderClient
from llm_taskgen.gateway.types import CompletionResult, FailureKind, SamplingOptions


class FakeClock:
    """Monotonic clock the tests advance by hand."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class RecordingSleep:
    """Async sleep replacement that only records the requested delays."""

    def __init__(self):
        self.delays: list[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)


class ScriptedClient(BaseProviderClient):
    """Replays a script: str → success, CompletionResult → as is, exception → raised.

    The last script item repeats forever.
    """

    def __init__(self, name: str, script: list):
        self.name = name
        super().__init__(model=f"{name}-model")
        self.script = list(script)
        self.calls: list[tuple[str, str | None, SamplingOptions | None]] = []

    async def complete(self, prompt, system_prompt=None, options=None) -> CompletionResult:
        self.calls.append((prompt, system_prompt, options))
        item = self.script.pop(0) if len(self.script) > 1 else self.script[0]
        if isinstance(item, BaseException):
            raise item
        if isinstance(item, CompletionResult):
            return item
        return CompletionResult(text=item)


def rate_limited(provider: str = "", retry_after: float | None = None) -> ProviderError:
    return ProviderError(
        "HTTP 429: rate limit exceeded",
        provider=provider,
        kind=FailureKind.RATE_LIMITED,
        status_code=429,
        retry_after=retry_after,
    )


def transient(provider: str = "") -> ProviderError:
    return ProviderError("HTTP 503: service unavailable", provider=provider, kind=FailureKind.TRANSIENT, status_code=503)


def fatal(provider: str = "") -> ProviderError:
    return ProviderError("HTTP 401: invalid api key", provider=provider, kind=FailureKind.FATAL, status_code=401)


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch):
    """Keep developer credentials and overrides out of Settings()."""
    for name in Settings.model_fields:
        monkeypatch.delenv(name.upper(), raising=False)
    monkeypatch.delenv("CLAUDE_API_KEY", raising=False)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def sleep() -> RecordingSleep:
    return RecordingSleep()


@pytest.fixture
def make_settings():
    def _make(**overrides) -> Settings:
        return Settings(_env_file=None, **overrides)

    return _make


@pytest.fixture
def make_client():
    return ScriptedClient


@pytest.fixture
def failures() -> SimpleNamespace:
    """Factories for tagged provider failures."""
    return SimpleNamespace(rate_limited=rate_limited, transient=transient, fatal=fatal)


@pytest.fixture
def make_gateway(clock, sleep):
    """Gateway over scripted clients with a fake clock and a recording sleep."""

    def _make(clients: dict[str, BaseProviderClient], **kwargs) -> LlmGateway:
        kwargs.setdefault("clock", clock)
        kwargs.setdefault("sleep", sleep)
        return LlmGateway(clients, **kwargs)

    return _make
