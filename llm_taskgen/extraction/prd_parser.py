"""Requirements document → validated task list.

Runs (send prompt → extract array → validate records) cycles through the
gateway until one produces schema-valid tasks or the retry budget runs out.
Each retry waits ``min(1s * 2^(retry-1), 5s)`` and sends a stricter system
prompt that carries the previous failure.
"""

from __future__ import annotations

import asyncio
import logging
import re
from collections.abc import Awaitable, Callable
from typing import TYPE_CHECKING

from llm_taskgen.core.config import settings
from llm_taskgen.core.errors import ExtractionError, ParsingError, RecordValidationError
from llm_taskgen.core.metrics import EXTRACTION_ATTEMPTS
from llm_taskgen.extraction.json_extractor import extract_array
from llm_taskgen.extraction.schemas import ExtractedTask, validate_records
from llm_taskgen.gateway.types import SamplingOptions

if TYPE_CHECKING:
    from llm_taskgen.gateway.gateway import LlmGateway

logger = logging.getLogger(__name__)

OPERATION_NAME = "parse-prd"
MIN_DOCUMENT_LENGTH = 100
BASE_RETRY_DELAY = 1.0
MAX_RETRY_DELAY = 5.0

JSON_ONLY_SYSTEM_PROMPT = (
    "CRITICAL: You are a JSON-only response system. "
    "Output raw JSON array ONLY with no other text or formatting."
)

TASK_BREAKDOWN_PROMPT = """
You are an expert project manager and developer tasked with breaking down a Product Requirements Document (PRD) into concrete, actionable implementation tasks.

Here's the PRD:
---
{document}
---

Based on the PRD, identify a complete set of implementation tasks required to build this product. Each task should be:
1. Specific and actionable
2. At an appropriate level of granularity (not too broad, not too detailed)
3. Described clearly enough that a developer could understand what needs to be done

For each task, provide:
- A clear, concise title (3-10 words)
- A detailed description (2-5 sentences explaining exactly what needs to be implemented)
- An appropriate priority level (critical, high, medium, low, or backlog)
- A complexity rating from 1-10 (10 being most complex)
- Tags for categorization (e.g., "frontend", "backend", "database", "auth", etc.)
- Dependencies (list any task titles that must be completed before this task can start)

Format your response as a valid JSON array of task objects with these exact fields:
[
  {{
    "title": "string",
    "description": "string",
    "priority": "critical|high|medium|low|backlog",
    "complexity": number,
    "dependencies": ["string"],
    "tags": ["string"]
  }}
]

Return ONLY the JSON array with no additional text or explanation. Ensure the JSON is properly formatted and valid.
"""

_WHITESPACE = re.compile(r"\s+")
_HEADING_MARKERS = re.compile(r"#{1,6}\s+")


def preprocess_document(text: str) -> str:
    """Collapse whitespace and drop Markdown heading markers."""
    processed = _HEADING_MARKERS.sub("", _WHITESPACE.sub(" ", text))
    if len(processed) < MIN_DOCUMENT_LENGTH:
        logger.warning(
            "Document seems too short for meaningful analysis (%d chars)",
            len(processed),
            extra={"operation": OPERATION_NAME},
        )
    return processed


def build_task_prompt(document_text: str) -> str:
    return TASK_BREAKDOWN_PROMPT.format(document=preprocess_document(document_text))


def build_system_prompt(retry: int, last_error: Exception | None = None, base: str = JSON_ONLY_SYSTEM_PROMPT) -> str:
    """JSON-only system prompt, stricter on every retry."""
    if retry == 0:
        return base
    parts = [
        base,
        f"Your previous {retry} response(s) could not be used.",
    ]
    if last_error is not None:
        parts.append(f"Problem: {last_error}.")
    parts.append(
        "Respond with a single JSON array that starts with [ and ends with ]. "
        "No markdown code fences, no commentary, no keys other than the required fields."
    )
    return " ".join(parts)


def calculate_backoff(retry: int) -> float:
    """Seconds to wait before retry number *retry* (1-based)."""
    return min(BASE_RETRY_DELAY * (2 ** (max(retry, 1) - 1)), MAX_RETRY_DELAY)


class PrdTaskExtractor:
    """Turns a requirements document into validated ``ExtractedTask`` records.

    Usage:
        extractor = PrdTaskExtractor(gateway)
        tasks = await extractor.extract_validated(document_text)
    """

    def __init__(
        self,
        gateway: LlmGateway,
        max_retries: int | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.gateway = gateway
        self.max_retries = settings.prd_parser_max_retries if max_retries is None else max(max_retries, 0)
        self._sleep = sleep

    async def extract_validated(self, document_text: str) -> list[ExtractedTask]:
        """Break a requirements document down into validated tasks."""
        return await self.extract_from_prompt(build_task_prompt(document_text))

    async def extract_from_prompt(
        self,
        prompt: str,
        system_prompt: str = JSON_ONLY_SYSTEM_PROMPT,
        max_retries: int | None = None,
    ) -> list[ExtractedTask]:
        """Extract and validate tasks, retrying on unusable output.

        An empty but valid array returns ``[]``. Gateway failures (no
        provider configured, every provider failed) propagate unchanged;
        they already went through their own retries.

        Raises:
            ParsingError: every attempt produced unparseable or invalid output
        """
        max_retries = self.max_retries if max_retries is None else max(max_retries, 0)
        options = SamplingOptions(temperature=0.2, max_tokens=4000)
        last_error: ExtractionError | RecordValidationError | None = None

        for retry in range(max_retries + 1):
            if retry > 0:
                delay = calculate_backoff(retry)
                logger.warning(
                    "Retrying task extraction (attempt %d/%d) in %.1fs: %s",
                    retry,
                    max_retries,
                    delay,
                    last_error,
                    extra={"operation": OPERATION_NAME},
                )
                await self._sleep(delay)

            response = await self.gateway.send_request(
                prompt,
                system_prompt=build_system_prompt(retry, last_error, base=system_prompt),
                options=options,
                operation_name=OPERATION_NAME,
            )

            items = extract_array(response.text)
            if items is None:
                EXTRACTION_ATTEMPTS.labels(outcome="extraction_failed").inc()
                last_error = ExtractionError(
                    f"Could not extract a JSON array from {response.provider} response",
                    operation=OPERATION_NAME,
                    details={"provider": response.provider, "preview": response.text[:200]},
                )
                continue

            try:
                tasks = validate_records(items)
            except RecordValidationError as e:
                EXTRACTION_ATTEMPTS.labels(outcome="validation_failed").inc()
                last_error = e
                continue

            EXTRACTION_ATTEMPTS.labels(outcome="success").inc()
            logger.info(
                "Extracted %d task(s) via %s on attempt %d",
                len(tasks),
                response.provider,
                retry + 1,
                extra={"operation": OPERATION_NAME, "provider": response.provider},
            )
            return tasks

        logger.error(
            "Failed to extract tasks after %d attempt(s): %s",
            max_retries + 1,
            last_error,
            extra={"operation": OPERATION_NAME},
        )
        raise ParsingError(
            f"Failed to extract tasks after {max_retries + 1} attempt(s): {last_error}",
            operation=OPERATION_NAME,
            details={"attempts": max_retries + 1},
            cause=last_error,
        )
