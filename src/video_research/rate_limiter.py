"""Adaptive pacing for transcript providers.

Each provider keeps a sliding window of recent attempt outcomes. A provider
that keeps failing is slowed down (its spacing multiplier grows) rather than
dropped from the cascade, so the configured order never changes. Attempts to
the same provider are also spaced by at least ``base_delay`` seconds.
"""

from __future__ import annotations

import asyncio
import time
from collections import deque
from dataclasses import dataclass, field
from typing import Any

import structlog

logger: structlog.stdlib.BoundLogger = structlog.get_logger(__name__)

_DEFAULT_WINDOW_SECONDS = 300.0
_DEFAULT_SLOWDOWN_ERROR_RATE = 0.5
_DEFAULT_RECOVERY_ERROR_RATE = 0.2
_DEFAULT_STEP = 2.0
_MIN_SAMPLES = 3


@dataclass
class _ProviderWindow:
    outcomes: deque[tuple[float, bool]] = field(default_factory=deque)
    multiplier: float = 1.0
    last_attempt: float | None = None


class AdaptiveRateLimiter:
    """Per-provider spacing that widens while a provider keeps failing.

    Attributes:
        base_delay: Minimum spacing between attempts to one provider.
        max_delay: Upper bound on the spacing after slow-downs.
        window_seconds: How far back outcomes count toward the error rate.
    """

    def __init__(
        self,
        base_delay: float = 0.0,
        max_delay: float = 30.0,
        window_seconds: float = _DEFAULT_WINDOW_SECONDS,
        slowdown_error_rate: float = _DEFAULT_SLOWDOWN_ERROR_RATE,
        recovery_error_rate: float = _DEFAULT_RECOVERY_ERROR_RATE,
        step: float = _DEFAULT_STEP,
    ) -> None:
        self.base_delay = base_delay
        self.max_delay = max_delay
        self.window_seconds = window_seconds
        self.slowdown_error_rate = slowdown_error_rate
        self.recovery_error_rate = recovery_error_rate
        self.step = step
        self._windows: dict[str, _ProviderWindow] = {}

    def _window(self, provider: str) -> _ProviderWindow:
        window = self._windows.get(provider)
        if window is None:
            window = self._windows[provider] = _ProviderWindow()
        cutoff = time.monotonic() - self.window_seconds
        while window.outcomes and window.outcomes[0][0] < cutoff:
            window.outcomes.popleft()
        return window

    def record_outcome(self, provider: str, success: bool) -> None:
        """Record an attempt outcome and widen or narrow the provider's spacing."""
        window = self._window(provider)
        window.outcomes.append((time.monotonic(), success))
        rate = self.error_rate(provider)

        if len(window.outcomes) >= _MIN_SAMPLES and rate >= self.slowdown_error_rate:
            window.multiplier = min(window.multiplier * self.step, 64.0)
            logger.info(
                "provider_slowed_down",
                provider=provider,
                error_rate=round(rate, 3),
                multiplier=window.multiplier,
            )
        elif rate <= self.recovery_error_rate and window.multiplier > 1.0:
            window.multiplier = max(window.multiplier / self.step, 1.0)
            logger.debug(
                "provider_recovered",
                provider=provider,
                error_rate=round(rate, 3),
                multiplier=window.multiplier,
            )

    def error_rate(self, provider: str) -> float:
        """Fraction of failed attempts in the window (0.0 with no history)."""
        outcomes = self._window(provider).outcomes
        if not outcomes:
            return 0.0
        return sum(1 for _, ok in outcomes if not ok) / len(outcomes)

    def current_delay(self, provider: str) -> float:
        """Spacing currently required between attempts to ``provider``."""
        window = self._window(provider)
        if self.base_delay <= 0:
            # Unpaced providers still back off after repeated failures.
            if window.multiplier <= 1.0:
                return 0.0
            return min(window.multiplier - 1.0, self.max_delay)
        return min(self.base_delay * window.multiplier, self.max_delay)

    async def acquire(self, provider: str) -> None:
        """Sleep until ``provider`` may be attempted again."""
        window = self._window(provider)
        delay = self.current_delay(provider)
        now = time.monotonic()
        slot = now
        if delay > 0 and window.last_attempt is not None:
            slot = max(now, window.last_attempt + delay)
        # Claim the slot before sleeping so concurrent callers queue behind it.
        window.last_attempt = slot
        if slot > now:
            await asyncio.sleep(slot - now)

    def stats(self, provider: str) -> dict[str, Any]:
        """Snapshot of the provider's pacing state."""
        window = self._window(provider)
        return {
            "error_rate": round(self.error_rate(provider), 3),
            "multiplier": window.multiplier,
            "current_delay": round(self.current_delay(provider), 4),
            "window_size": len(window.outcomes),
        }

    def reset(self, provider: str | None = None) -> None:
        """Forget history for one provider, or for all when ``provider`` is None."""
        if provider is None:
            self._windows.clear()
        else:
            self._windows.pop(provider, None)
        logger.debug("rate_limiter_reset", provider=provider or "all")
