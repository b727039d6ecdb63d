from __future__ import annotations

from pydantic import AliasChoices, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from llm_taskgen.core.errors import ConfigurationError
from llm_taskgen.gateway.types import KNOWN_PROVIDERS, SamplingOptions


def _clamp(value: int, low: int, high: int) -> int:
    return min(max(value, low), high)


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    # Provider credentials; presence decides whether a provider is configured
    anthropic_api_key: str = Field("", validation_alias=AliasChoices("anthropic_api_key", "claude_api_key"))
    openai_api_key: str = ""
    openai_api_base_url: str = ""
    groq_api_key: str = ""
    mistral_api_key: str = ""
    mixtral_api_key: str = ""
    gemini_api_key: str = ""
    xai_api_key: str = ""
    perplexity_api_key: str = ""
    openrouter_api_key: str = ""
    ollama_enabled: bool = False
    ollama_base_url: str = "http://localhost:11434"

    default_llm_provider: str = ""

    # Global sampling defaults (unset = provider default)
    temperature: float | None = None
    max_tokens: int | None = None
    top_p: float | None = None
    presence_penalty: float | None = None
    frequency_penalty: float | None = None

    # Orchestration
    llm_max_retries: int = 3
    llm_max_provider_attempts: int | None = None  # unset: every candidate may be tried
    llm_max_concurrent_requests: int = 5
    llm_base_rate_limit_duration_ms: int = 60_000
    llm_max_rate_limit_duration_ms: int = 5 * 60_000
    llm_request_timeout_seconds: float = 60.0

    # Task-to-provider routing: comma-separated operation names per provider
    anthropic_tasks: str = ""
    openai_tasks: str = ""
    groq_tasks: str = ""
    mistral_tasks: str = ""
    mixtral_tasks: str = ""
    gemini_tasks: str = ""
    xai_tasks: str = ""
    ollama_tasks: str = ""
    perplexity_tasks: str = ""
    openrouter_tasks: str = ""

    # Extraction
    prd_parser_max_retries: int = 2

    # App
    app_env: str = "development"

    # Logging
    log_level: str = "INFO"
    log_json: bool = False  # set True in production for structured JSON logs

    # Sentry
    sentry_dsn: str = ""  # leave empty to disable

    @field_validator("llm_max_retries")
    @classmethod
    def _clamp_retries(cls, v: int) -> int:
        return _clamp(v, 0, 10)

    @field_validator("llm_max_provider_attempts")
    @classmethod
    def _clamp_provider_attempts(cls, v: int | None) -> int | None:
        return None if v is None else _clamp(v, 1, 10)

    @field_validator("llm_max_concurrent_requests")
    @classmethod
    def _clamp_concurrency(cls, v: int) -> int:
        return _clamp(v, 1, 20)

    @field_validator("prd_parser_max_retries")
    @classmethod
    def _non_negative(cls, v: int) -> int:
        return max(v, 0)

    @field_validator("default_llm_provider")
    @classmethod
    def _lower(cls, v: str) -> str:
        return v.strip().lower()

    def provider_credentials(self) -> dict[str, str]:
        """Provider name → credential, only for providers that have one.

        Ollama runs locally and needs no key; it is listed with an empty
        credential when enabled.
        """
        creds: dict[str, str] = {}
        for name in KNOWN_PROVIDERS:
            if name == "ollama":
                if self.ollama_enabled:
                    creds[name] = ""
                continue
            key = getattr(self, f"{name}_api_key", "")
            if key:
                creds[name] = key
        return creds

    def task_mappings(self) -> dict[str, list[str]]:
        """Provider name → operation names parsed from ``<PROVIDER>_TASKS``."""
        mappings: dict[str, list[str]] = {}
        for name in KNOWN_PROVIDERS:
            raw = getattr(self, f"{name}_tasks", "")
            tasks = [t.strip().lower() for t in raw.split(",") if t.strip()]
            if tasks:
                mappings[name] = tasks
        return mappings

    def sampling_defaults(self) -> SamplingOptions:
        return SamplingOptions(
            temperature=self.temperature,
            max_tokens=self.max_tokens,
            top_p=self.top_p,
            presence_penalty=self.presence_penalty,
            frequency_penalty=self.frequency_penalty,
        )


settings = Settings()


def validate_settings(cfg: Settings | None = None) -> None:
    """Validate settings that would make the orchestrator unusable."""
    cfg = cfg or settings
    errors: list[str] = []

    if cfg.llm_base_rate_limit_duration_ms <= 0:
        errors.append("LLM_BASE_RATE_LIMIT_DURATION_MS must be positive")

    if cfg.llm_max_rate_limit_duration_ms < cfg.llm_base_rate_limit_duration_ms:
        errors.append("LLM_MAX_RATE_LIMIT_DURATION_MS must not be below LLM_BASE_RATE_LIMIT_DURATION_MS")

    if not cfg.provider_credentials():
        errors.append("No LLM provider configured: set at least one <PROVIDER>_API_KEY or OLLAMA_ENABLED=true")

    if errors:
        raise ConfigurationError(
            "Configuration errors:\n  - " + "\n  - ".join(errors),
            operation="validate_settings",
        )
