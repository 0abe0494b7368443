"""Bounded-concurrency research over many topics.

Topics run in groups of ``concurrency``; a whole group finishes before the
next one starts, with ``delay_between_batches`` seconds in between. A topic
whose pipeline raises is recorded as ``TopicError`` and never affects the
others. Progress can be persisted after every group and resumed later.
"""

from __future__ import annotations

import asyncio
import os
import tempfile
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any, TypeVar

import structlog
from pydantic import BaseModel, Field, ValidationError

from video_research.models import ResearchResult, TopicError
from video_research.quota import Operation

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable, Sequence
    from pathlib import Path

    from video_research.quota import QuotaTracker

logger: structlog.stdlib.BoundLogger = structlog.get_logger(__name__)

ResultT = TypeVar("ResultT", bound=BaseModel)

QUOTA_SKIP_MESSAGE = "skipped: quota reserve reached"


# ---------------------------------------------------------------------------
# Progress persistence
# ---------------------------------------------------------------------------


class BatchProgress(BaseModel):
    """On-disk shape of a batch progress file."""

    started_at: datetime = Field(default_factory=lambda: datetime.now(UTC))
    updated_at: datetime = Field(default_factory=lambda: datetime.now(UTC))
    topics: list[str] = Field(default_factory=list)
    results: dict[str, dict[str, Any]] = Field(default_factory=dict)


class BatchProgressStore:
    """Persist partial batch results so an interrupted batch can resume.

    Writes go through a temp file and ``os.replace`` so a crash never
    leaves a truncated progress file behind.

    Args:
        path: Progress file location.
        result_model: Model used to revive successful entries on load.
    """

    def __init__(
        self, path: Path, result_model: type[BaseModel] = ResearchResult
    ) -> None:
        self.path = path
        self.result_model = result_model

    def save(self, topics: Sequence[str], results: dict[str, BaseModel]) -> None:
        progress = BatchProgress(
            topics=list(topics),
            results={
                topic: outcome.model_dump(mode="json")
                for topic, outcome in results.items()
            },
        )
        existing = self._read()
        if existing is not None:
            progress.started_at = existing.started_at
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self._atomic_write(progress.model_dump_json(indent=2).encode("utf-8"))
        logger.debug("batch_progress_saved", path=str(self.path), topics=len(results))

    def load(self) -> dict[str, BaseModel]:
        """Return previously saved outcomes keyed by topic.

        A missing or unreadable file yields an empty mapping.
        """
        progress = self._read()
        if progress is None:
            return {}
        outcomes: dict[str, BaseModel] = {}
        for topic, payload in progress.results.items():
            try:
                if set(payload) == {"error"}:
                    outcomes[topic] = TopicError.model_validate(payload)
                else:
                    outcomes[topic] = self.result_model.model_validate(payload)
            except ValidationError as exc:
                logger.warning(
                    "batch_progress_entry_invalid", topic=topic, error=str(exc)
                )
        return outcomes

    def completed_topics(self) -> set[str]:
        """Topics with a successful saved outcome."""
        return {
            topic
            for topic, outcome in self.load().items()
            if not isinstance(outcome, TopicError)
        }

    def clear(self) -> None:
        self.path.unlink(missing_ok=True)

    def _read(self) -> BatchProgress | None:
        if not self.path.exists():
            return None
        try:
            return BatchProgress.model_validate_json(self.path.read_bytes())
        except (OSError, ValidationError) as exc:
            logger.warning(
                "batch_progress_unreadable", path=str(self.path), error=str(exc)
            )
            return None

    def _atomic_write(self, data: bytes) -> None:
        fd, tmp_path = tempfile.mkstemp(dir=str(self.path.parent), suffix=".tmp")
        fd_closed = False
        try:
            os.write(fd, data)
            os.fsync(fd)
            os.close(fd)
            fd_closed = True
            os.replace(tmp_path, str(self.path))
        except BaseException:
            if not fd_closed:
                os.close(fd)
            if os.path.exists(tmp_path):
                os.unlink(tmp_path)
            raise


# ---------------------------------------------------------------------------
# Orchestration
# ---------------------------------------------------------------------------


async def _run_topic(
    research_fn: Callable[[str], Awaitable[ResultT]], topic: str
) -> ResultT | TopicError:
    try:
        return await research_fn(topic)
    except Exception as exc:
        message = str(exc) or type(exc).__name__
        logger.error(
            "batch_topic_failed",
            topic=topic,
            error=message,
            error_type=type(exc).__name__,
        )
        return TopicError(error=message)


def _groups(topics: Sequence[str], size: int) -> list[list[str]]:
    return [list(topics[i : i + size]) for i in range(0, len(topics), size)]


async def batch_research(
    topics: Sequence[str],
    research_fn: Callable[[str], Awaitable[ResultT]],
    concurrency: int = 2,
    delay_between_batches: float = 5.0,
    progress_store: BatchProgressStore | None = None,
    quota: QuotaTracker | None = None,
    resume: bool = False,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
) -> dict[str, ResultT | TopicError]:
    """Research every topic with bounded concurrency and failure isolation.

    Args:
        topics: Topics to research; duplicates are collapsed.
        research_fn: Per-topic pipeline, e.g. ``researcher.search_by_industry``.
        concurrency: Topics running at once; at least 1.
        delay_between_batches: Pause between groups, in seconds.
        progress_store: Where partial results are saved after each group.
        quota: When given, remaining groups are skipped once another group
            could not afford its searches.
        resume: Reuse successful outcomes already in ``progress_store``.
        sleep: Awaitable sleep, replaceable in tests.

    Returns:
        Outcome per topic, in input order.
    """
    if concurrency < 1:
        raise ValueError("concurrency must be at least 1")
    ordered = list(dict.fromkeys(topics))
    results: dict[str, Any] = {}

    if resume and progress_store is not None:
        for topic, outcome in progress_store.load().items():
            if topic in ordered and not isinstance(outcome, TopicError):
                results[topic] = outcome
        if results:
            logger.info("batch_resumed", completed=len(results))

    pending = [topic for topic in ordered if topic not in results]
    groups = _groups(pending, concurrency)
    logger.info(
        "batch_started",
        topics=len(ordered),
        pending=len(pending),
        groups=len(groups),
        concurrency=concurrency,
    )

    for index, group in enumerate(groups):
        if quota is not None and not quota.can_afford(Operation.SEARCH, len(group)):
            skipped = [t for g in groups[index:] for t in g]
            logger.warning(
                "batch_quota_stop",
                skipped=len(skipped),
                units_remaining=quota.units_remaining,
            )
            for topic in skipped:
                results[topic] = TopicError(error=QUOTA_SKIP_MESSAGE)
            if progress_store is not None:
                progress_store.save(ordered, results)
            break

        outcomes = await asyncio.gather(
            *(_run_topic(research_fn, topic) for topic in group)
        )
        results.update(zip(group, outcomes, strict=True))
        logger.info(
            "batch_group_complete",
            group=index + 1,
            of=len(groups),
            failed=sum(isinstance(o, TopicError) for o in outcomes),
        )

        if progress_store is not None:
            progress_store.save(ordered, results)
        if index < len(groups) - 1 and delay_between_batches > 0:
            await sleep(delay_between_batches)

    return {topic: results[topic] for topic in ordered}
