"""Run-scoped quota and cost tracking.

``QuotaTracker`` is the single owner of every usage counter in a run:
discovery API units per operation, transcript successes per method and
estimated paid speech-to-text minutes. All mutation goes through one lock so
topics researched concurrently by the batch orchestrator can share it.
Counters only ever increase.
"""

from __future__ import annotations

import threading
from collections import Counter
from enum import StrEnum
from typing import TYPE_CHECKING, Any

import structlog
from pydantic import BaseModel, Field

from video_research.exceptions import QuotaExceededError

if TYPE_CHECKING:
    from video_research.config import QuotaSettings, TranscriptionSettings

logger: structlog.stdlib.BoundLogger = structlog.get_logger(__name__)


class Operation(StrEnum):
    """Billable discovery API operations."""

    SEARCH = "search"
    VIDEO = "video"
    CHANNEL = "channel"


class QuotaStatus(BaseModel):
    """Point-in-time snapshot of a tracker."""

    units_used: int = Field(default=0, ge=0)
    daily_limit: int = Field(gt=0)
    units_remaining: int = Field(default=0, ge=0)
    used_percent: float = Field(default=0.0, ge=0.0, le=100.0)
    calls_by_operation: dict[str, int] = Field(default_factory=dict)
    transcripts_by_method: dict[str, int] = Field(default_factory=dict)
    paid_minutes: float = 0.0
    estimated_cost_usd: float = 0.0


class QuotaTracker:
    """Tracks discovery quota and paid transcription spend for one run.

    Attributes:
        daily_limit: Discovery API units available for the day.
        reserve_units: Units ``can_afford`` keeps back.
        max_paid_minutes: Ceiling on paid speech-to-text minutes.
    """

    def __init__(
        self,
        daily_limit: int = 10_000,
        costs: dict[Operation, int] | None = None,
        reserve_units: int = 0,
        warn_at_percent: int = 80,
        max_paid_minutes: float = 180.0,
        cost_per_minute: dict[str, float] | None = None,
    ) -> None:
        self.daily_limit = daily_limit
        self.costs = costs or {
            Operation.SEARCH: 100,
            Operation.VIDEO: 1,
            Operation.CHANNEL: 1,
        }
        self.reserve_units = reserve_units
        self.warn_at_percent = warn_at_percent
        self.max_paid_minutes = max_paid_minutes
        self.cost_per_minute = cost_per_minute or {}

        self._lock = threading.Lock()
        self._units_used = 0
        self._calls: Counter[str] = Counter()
        self._transcripts: Counter[str] = Counter()
        self._paid_minutes: Counter[str] = Counter()
        self._warned = False

    @classmethod
    def from_settings(
        cls, quota: QuotaSettings, transcription: TranscriptionSettings
    ) -> QuotaTracker:
        return cls(
            daily_limit=quota.daily_limit,
            costs={
                Operation.SEARCH: quota.search_cost,
                Operation.VIDEO: quota.video_cost,
                Operation.CHANNEL: quota.channel_cost,
            },
            reserve_units=quota.reserve_units,
            warn_at_percent=quota.warn_at_percentage,
            max_paid_minutes=transcription.max_paid_minutes_per_run,
            cost_per_minute=dict(transcription.cost_per_minute_usd),
        )

    @property
    def units_used(self) -> int:
        return self._units_used

    @property
    def units_remaining(self) -> int:
        return max(0, self.daily_limit - self._units_used)

    # -- discovery quota -------------------------------------------------

    def charge(self, operation: Operation | str, count: int = 1) -> int:
        """Record ``count`` calls of ``operation`` and return the units charged.

        Raises:
            QuotaExceededError: If the call would take usage past the daily limit.
        """
        operation = Operation(operation)
        units = self.costs[operation] * count
        with self._lock:
            if self._units_used + units > self.daily_limit:
                raise QuotaExceededError(
                    f"Discovery API quota exceeded: {self._units_used} + {units} "
                    f"units > daily limit {self.daily_limit}. Try again tomorrow "
                    "or raise the project quota."
                )
            self._units_used += units
            self._calls[operation.value] += count
            used_percent = self._units_used / self.daily_limit * 100
            should_warn = used_percent >= self.warn_at_percent and not self._warned
            if should_warn:
                self._warned = True

        if should_warn:
            logger.warning(
                "quota_warning",
                used_percent=round(used_percent, 1),
                units_used=self._units_used,
                daily_limit=self.daily_limit,
            )
        return units

    def can_afford(self, operation: Operation | str, count: int = 1) -> bool:
        """Whether ``count`` calls fit in the remaining quota minus the reserve."""
        units = self.costs[Operation(operation)] * count
        with self._lock:
            return self._units_used + units <= self.daily_limit - self.reserve_units

    # -- transcripts -----------------------------------------------------

    def record_transcript(self, method: str) -> None:
        with self._lock:
            self._transcripts[method] += 1

    def can_spend_minutes(self, minutes: float) -> bool:
        with self._lock:
            return sum(self._paid_minutes.values()) + minutes <= self.max_paid_minutes

    def record_paid_minutes(self, method: str, minutes: float) -> None:
        """Record estimated paid speech-to-text minutes for ``method``."""
        with self._lock:
            self._paid_minutes[method] += minutes
            total = sum(self._paid_minutes.values())
        logger.info(
            "paid_transcription_recorded",
            method=method,
            minutes=round(minutes, 2),
            total_minutes=round(total, 2),
        )

    # -- reporting -------------------------------------------------------

    def status(self) -> QuotaStatus:
        """Return a snapshot of every counter."""
        with self._lock:
            cost = sum(
                minutes * self.cost_per_minute.get(method, 0.0)
                for method, minutes in self._paid_minutes.items()
            )
            return QuotaStatus(
                units_used=self._units_used,
                daily_limit=self.daily_limit,
                units_remaining=max(0, self.daily_limit - self._units_used),
                used_percent=round(
                    min(self._units_used / self.daily_limit * 100, 100.0), 1
                ),
                calls_by_operation=dict(self._calls),
                transcripts_by_method=dict(self._transcripts),
                paid_minutes=round(sum(self._paid_minutes.values()), 2),
                estimated_cost_usd=round(cost, 4),
            )

    def quota_info(self) -> dict[str, Any]:
        """Static cost table and usage advice for the discovery API."""
        return {
            "search_cost": self.costs[Operation.SEARCH],
            "video_cost": self.costs[Operation.VIDEO],
            "channel_cost": self.costs[Operation.CHANNEL],
            "daily_limit": self.daily_limit,
            "max_searches_per_day": self.daily_limit
            // max(self.costs[Operation.SEARCH], 1),
            "recommendations": [
                f"Use search sparingly - each search costs "
                f"{self.costs[Operation.SEARCH]} units",
                "Cache results to avoid repeated API calls",
                "Consider running research during off-peak hours",
                "Monitor quota usage in Google Cloud Console",
            ],
        }
