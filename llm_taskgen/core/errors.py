"""Error taxonomy shared by the orchestrator and the extraction pipeline.

Every error carries a category and a severity so callers (and the logging
layer) can tell a self-healing condition such as "every provider is cooling
down" apart from a terminal one such as "no provider is configured".
"""

from __future__ import annotations

from enum import Enum
from typing import Any

from llm_taskgen.gateway.types import FailureKind


class ErrorSeverity(str, Enum):
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"
    CRITICAL = "critical"


class ErrorCategory(str, Enum):
    CONFIGURATION = "configuration"
    NETWORK = "network"
    LLM = "llm"
    PARSING = "parsing"
    VALIDATION = "validation"
    UNKNOWN = "unknown"


class TaskGenError(Exception):
    """Base class for all errors raised by llm_taskgen."""

    category: ErrorCategory = ErrorCategory.UNKNOWN
    severity: ErrorSeverity = ErrorSeverity.ERROR

    def __init__(
        self,
        message: str,
        *,
        operation: str = "",
        details: dict[str, Any] | None = None,
        cause: BaseException | None = None,
        severity: ErrorSeverity | None = None,
    ):
        super().__init__(message)
        self.message = message
        self.operation = operation
        self.details = details or {}
        self.cause = cause
        if severity is not None:
            self.severity = severity
        if cause is not None:
            self.__cause__ = cause

    def to_dict(self) -> dict[str, Any]:
        """Serialize for structured logs and error tracking."""
        data: dict[str, Any] = {
            "type": type(self).__name__,
            "message": self.message,
            "category": self.category.value,
            "severity": self.severity.value,
            "operation": self.operation,
        }
        if self.details:
            data["details"] = self.details
        if self.cause is not None:
            data["cause"] = f"{type(self.cause).__name__}: {self.cause}"
        return data


class ConfigurationError(TaskGenError):
    """No provider configured, or settings that cannot work. Never retried."""

    category = ErrorCategory.CONFIGURATION


# ---------------------------------------------------------------------------
# Provider-level errors
# ---------------------------------------------------------------------------


class ProviderError(TaskGenError):
    """Raised by a provider client; tagged with how it should be handled."""

    category = ErrorCategory.LLM

    def __init__(
        self,
        message: str,
        *,
        provider: str = "",
        kind: FailureKind = FailureKind.FATAL,
        status_code: int = 0,
        retry_after: float | None = None,
        cause: BaseException | None = None,
    ):
        super().__init__(
            message,
            operation="provider.complete",
            details={"provider": provider, "kind": kind.value, "status_code": status_code},
            cause=cause,
        )
        self.provider = provider
        self.kind = kind
        self.status_code = status_code
        self.retry_after = retry_after


class NoProvidersAvailableError(TaskGenError):
    """Candidate list is empty: everything configured is cooling down.

    Resolves itself once cooldowns expire, hence WARNING rather than ERROR.
    """

    category = ErrorCategory.LLM
    severity = ErrorSeverity.WARNING


class ProviderExhaustedError(TaskGenError):
    """One provider gave up (retries used, rate limited, or fatal error)."""

    category = ErrorCategory.LLM
    severity = ErrorSeverity.WARNING

    def __init__(self, provider: str, attempts: int, kind: FailureKind, cause: BaseException):
        super().__init__(
            f"Provider {provider} exhausted after {attempts} attempt(s) ({kind.value}): {cause}",
            operation="invoke_with_retry",
            details={"provider": provider, "attempts": attempts, "kind": kind.value},
            cause=cause,
        )
        self.provider = provider
        self.attempts = attempts
        self.kind = kind


class AllProvidersFailedError(TaskGenError):
    """Every candidate provider was tried and failed."""

    category = ErrorCategory.LLM


# ---------------------------------------------------------------------------
# Extraction pipeline errors
# ---------------------------------------------------------------------------


class ExtractionError(TaskGenError):
    """No array/object structure could be recovered from provider text."""

    category = ErrorCategory.PARSING


class RecordValidationError(TaskGenError):
    """Structure was recovered but does not match the record schema."""

    category = ErrorCategory.VALIDATION


class ParsingError(TaskGenError):
    """The extraction retry loop ran out of attempts."""

    category = ErrorCategory.PARSING
