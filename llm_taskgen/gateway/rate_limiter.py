"""Rate Limit Tracker: per-provider cooldown windows with adaptive backoff.

When a provider signals a rate limit it is put into cooldown and excluded
from candidate lists until the cooldown elapses. Repeated signals double the
cooldown duration, bounded below by the base duration and above by the
maximum:

    duration = max(base, min(2 * previous, max))

A successful call resets the stored duration, so the next rate limit starts
again from the base value. Entries are created lazily and never deleted.

None of the methods await, so each update is atomic with respect to the
event loop.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from dataclasses import dataclass

from llm_taskgen.core.metrics import PROVIDER_COOLDOWNS

logger = logging.getLogger(__name__)


@dataclass
class RateLimitEntry:
    """Cooldown state for a single provider."""

    provider: str
    cooldown_until: float = 0.0  # clock() timestamp
    last_backoff: float = 0.0  # seconds; 0 = no backoff history

    def remaining(self, now: float) -> float:
        return max(self.cooldown_until - now, 0.0)


class RateLimitTracker:
    """Per-provider cooldown tracker.

    Usage:
        tracker = RateLimitTracker(base_cooldown=60, max_cooldown=300)

        if not tracker.is_cooling_down("openai"):
            ...

        # On a rate-limit signal:
        tracker.mark_rate_limited("openai")

        # On success:
        tracker.record_success("openai")
    """

    def __init__(
        self,
        base_cooldown: float = 60.0,
        max_cooldown: float = 300.0,
        clock: Callable[[], float] = time.monotonic,
    ):
        if base_cooldown <= 0:
            raise ValueError("base_cooldown must be positive")
        self.base_cooldown = base_cooldown
        self.max_cooldown = max(max_cooldown, base_cooldown)
        self._clock = clock
        self._entries: dict[str, RateLimitEntry] = {}

    def _get_entry(self, provider: str) -> RateLimitEntry:
        """Get or create the entry for a provider."""
        if provider not in self._entries:
            self._entries[provider] = RateLimitEntry(provider=provider)
        return self._entries[provider]

    def is_cooling_down(self, provider: str) -> bool:
        entry = self._entries.get(provider)
        if entry is None:
            return False
        return self._clock() < entry.cooldown_until

    def next_duration(self, provider: str, explicit: float | None = None) -> float:
        """Cooldown duration the next rate-limit signal would apply."""
        if explicit is not None:
            duration = explicit
        else:
            entry = self._entries.get(provider)
            previous = entry.last_backoff if entry and entry.last_backoff else self.base_cooldown / 2
            duration = min(previous * 2, self.max_cooldown)
        return max(duration, self.base_cooldown)

    def mark_rate_limited(self, provider: str, duration: float | None = None) -> float:
        """Put a provider into cooldown.

        Args:
            provider: Provider name
            duration: Explicit cooldown in seconds (e.g. from Retry-After);
                still floored at the base duration

        Returns:
            The applied cooldown duration in seconds.
        """
        applied = self.next_duration(provider, duration)
        entry = self._get_entry(provider)
        entry.cooldown_until = self._clock() + applied
        entry.last_backoff = applied

        PROVIDER_COOLDOWNS.labels(provider=provider).inc()
        logger.warning(
            "Provider %s marked as rate limited for %.1fs",
            provider,
            applied,
            extra={"provider": provider},
        )
        return applied

    def record_success(self, provider: str) -> None:
        """Forget the backoff history after a successful call."""
        entry = self._entries.get(provider)
        if entry is not None and entry.last_backoff:
            entry.last_backoff = 0.0
            logger.debug("Backoff for %s reset after success", provider)

    def get_entry(self, provider: str) -> RateLimitEntry | None:
        return self._entries.get(provider)

    def get_stats(self, provider: str) -> dict:
        """Get current cooldown stats for a provider."""
        entry = self._get_entry(provider)
        now = self._clock()
        return {
            "provider": provider,
            "cooling_down": now < entry.cooldown_until,
            "remaining_seconds": round(entry.remaining(now), 3),
            "last_backoff_seconds": entry.last_backoff,
        }

    def get_all_stats(self) -> list[dict]:
        """Get stats for every provider that has ever been rate limited."""
        return [self.get_stats(p) for p in self._entries]
