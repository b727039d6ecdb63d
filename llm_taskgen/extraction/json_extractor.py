"""Recover a JSON array of objects from free-text LLM output.

Providers wrap JSON in prose, code fences and log banners, leave trailing
commas, use single quotes or forget to quote keys. ``STRATEGIES`` is an
ordered cascade of pure ``text -> list | None`` functions, from exact to
increasingly aggressive; the first one that yields a list wins. A parsed
object is wrapped into a single-element list.

``extract_array`` distinguishes two outcomes callers must not conflate:
``None`` means nothing parseable was found (worth regenerating), ``[]``
means the provider legitimately returned an empty array.
"""

from __future__ import annotations

import json
import logging
import re
from collections.abc import Callable
from typing import Any

logger = logging.getLogger(__name__)

Strategy = Callable[[str], "list[Any] | None"]

_FENCE = re.compile(r"```(?:json)?", re.IGNORECASE)
_ARRAY_SPAN = re.compile(r"\[\s*\{[\s\S]*\}\s*\]")
_OBJECT_SPAN = re.compile(r'\{\s*"[\s\S]*"\s*:[\s\S]*\}')

START_MARKERS: tuple[str, ...] = (
    "===== START LLM RESPONSE =====",
    "START JSON",
    "JSON RESPONSE:",
    "JSON_RESPONSE:",
    "JSON START",
)
END_MARKERS: tuple[str, ...] = (
    "===== END LLM RESPONSE =====",
    "END JSON",
    "END OF JSON",
    "JSON END",
)

_TRAILING_COMMA_ARRAY = re.compile(r",\s*\]")
_TRAILING_COMMA_OBJECT = re.compile(r",\s*\}")
_BARE_KEY = re.compile(r"([{,])\s*([a-zA-Z0-9_]+)\s*:")

_CONTROL_CHARS = re.compile(r"[\u0000-\u001F\u007F-\u009F]")
_NON_JSON_CHARS = re.compile(r"[^\[\]{}\",:.\w\s-]")
_WHITESPACE = re.compile(r"\s+")
_FLAT_OBJECT = re.compile(r'\{[^{}]*"[^{}]*"[^{}]*:[^{}]*(?:"[^{}]*"|[0-9]+)[^{}]*\}')


def _as_array(parsed: Any) -> list[Any] | None:
    if isinstance(parsed, list):
        return parsed
    if isinstance(parsed, dict):
        return [parsed]
    return None


def _loads(candidate: str) -> Any:
    """json.loads that returns None instead of raising."""
    try:
        return json.loads(candidate)
    except (json.JSONDecodeError, RecursionError):
        return None


# ---------------------------------------------------------------------------
# Strategies, in cascade order
# ---------------------------------------------------------------------------


def parse_direct(text: str) -> list[Any] | None:
    return _as_array(_loads(text.strip()))


def parse_without_fences(text: str) -> list[Any] | None:
    """Strip ```json / ``` fences and parse the rest."""
    return _as_array(_loads(_FENCE.sub("", text).strip()))


def parse_array_span(text: str) -> list[Any] | None:
    """First ``[{ ... }]`` span in the text."""
    m = _ARRAY_SPAN.search(text)
    if not m:
        return None
    parsed = _loads(m.group(0))
    return parsed if isinstance(parsed, list) else None


def parse_bracket_slice(text: str) -> list[Any] | None:
    """Everything between the first ``[`` and the last ``]``."""
    start, end = text.find("["), text.rfind("]")
    if start == -1 or end <= start:
        return None
    parsed = _loads(text[start : end + 1])
    return parsed if isinstance(parsed, list) else None


def parse_object_span(text: str) -> list[Any] | None:
    """First ``{"key": ...}`` span, wrapped in a list."""
    m = _OBJECT_SPAN.search(text)
    if not m:
        return None
    parsed = _loads(m.group(0))
    return [parsed] if isinstance(parsed, dict) else None


def parse_between_markers(text: str) -> list[Any] | None:
    """Content between START/END banners some providers emit around payloads."""
    cleaned = text
    for marker in START_MARKERS:
        idx = text.find(marker)
        if idx != -1:
            cleaned = text[idx + len(marker) :]
            break
    for marker in END_MARKERS:
        idx = cleaned.find(marker)
        if idx != -1:
            cleaned = cleaned[:idx]
            break

    if cleaned == text:
        return None
    trimmed = cleaned.strip()
    if not ((trimmed.startswith("[") and trimmed.endswith("]")) or (trimmed.startswith("{") and trimmed.endswith("}"))):
        return None
    return _as_array(_loads(trimmed))


def parse_aggressively_cleaned(text: str) -> list[Any] | None:
    """Repair common syntax slips: trailing commas, single quotes, bare keys."""
    cleaned = text
    start, end = cleaned.find("["), cleaned.rfind("]")
    if start != -1:
        cleaned = cleaned[start:]
        end = cleaned.rfind("]")
        if end != -1:
            cleaned = cleaned[: end + 1]
    cleaned = _FENCE.sub("", cleaned).replace("\n", " ")
    cleaned = _TRAILING_COMMA_ARRAY.sub("]", cleaned)
    cleaned = _TRAILING_COMMA_OBJECT.sub("}", cleaned)
    cleaned = cleaned.replace("'", '"')
    cleaned = _BARE_KEY.sub(r'\1"\2":', cleaned)
    return _as_array(_loads(cleaned))


def parse_object_fragments(text: str) -> list[Any] | None:
    """Last resort: collect every flat ``{...}`` fragment into an array."""
    cleaned = _CONTROL_CHARS.sub("", text)
    cleaned = _NON_JSON_CHARS.sub(" ", cleaned)
    cleaned = _WHITESPACE.sub(" ", cleaned).strip()

    fragments = [m.group(0) for m in _FLAT_OBJECT.finditer(cleaned)]
    if not fragments:
        return None
    parsed = _loads("[" + ",".join(fragments) + "]")
    return parsed if isinstance(parsed, list) and parsed else None


STRATEGIES: tuple[tuple[str, Strategy], ...] = (
    ("direct", parse_direct),
    ("without_fences", parse_without_fences),
    ("array_span", parse_array_span),
    ("bracket_slice", parse_bracket_slice),
    ("object_span", parse_object_span),
    ("between_markers", parse_between_markers),
    ("aggressive_clean", parse_aggressively_cleaned),
    ("object_fragments", parse_object_fragments),
)


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


def extract_array(text: str | None, fallback_to_empty: bool = False) -> list[Any] | None:
    """Run the strategy cascade over *text*.

    Returns the first recovered list, else ``[]`` when *fallback_to_empty*
    is set, else ``None``.
    """
    if not text or not isinstance(text, str):
        logger.debug("extract_array: input is empty or not a string")
        return [] if fallback_to_empty else None

    logger.debug("extract_array: processing %d chars: %.100s", len(text), text)

    for name, strategy in STRATEGIES:
        result = strategy(text)
        if result is not None:
            logger.debug("extract_array: strategy %s recovered %d item(s)", name, len(result))
            return result
        logger.debug("extract_array: strategy %s found nothing", name)

    logger.debug("extract_array: all strategies failed, returning %s", "[]" if fallback_to_empty else "None")
    return [] if fallback_to_empty else None


def ensure_array(text: str | None) -> list[Any]:
    """Like ``extract_array`` but always returns a list."""
    return extract_array(text, fallback_to_empty=True) or []
