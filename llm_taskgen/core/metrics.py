"""Prometheus metrics for the orchestrator and the extraction pipeline."""

from prometheus_client import Counter, Gauge, Histogram, Info

APP_INFO = Info("llm_taskgen", "LLM task generation orchestrator info")
APP_INFO.info({"version": "0.1.0", "name": "llm_taskgen"})

PROVIDER_REQUESTS = Counter(
    "llm_provider_requests_total",
    "Provider calls by outcome",
    ["provider", "outcome"],  # success | rate_limited | transient | fatal
)

PROVIDER_COOLDOWNS = Counter(
    "llm_provider_cooldowns_total",
    "Times a provider was put into rate-limit cooldown",
    ["provider"],
)

REQUEST_DURATION = Histogram(
    "llm_request_duration_seconds",
    "Successful provider call duration in seconds",
    ["provider"],
    buckets=[0.25, 0.5, 1, 2.5, 5, 10, 30, 60, 120],
)

QUEUE_IN_FLIGHT = Gauge(
    "llm_queue_in_flight",
    "Orchestrated requests currently admitted, summed over all queues in the process",
)

EXTRACTION_ATTEMPTS = Counter(
    "llm_extraction_attempts_total",
    "Structured extraction attempts by outcome",
    ["outcome"],  # success | extraction_failed | validation_failed
)
