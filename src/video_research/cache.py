"""Transcript cache keyed by video id.

The pipeline only depends on the ``TranscriptCache`` protocol. Two stores
ship with the package: ``DiskTranscriptCache`` persists entries with
``diskcache`` across runs, ``MemoryTranscriptCache`` keeps them for the
lifetime of the process. In both, an entry whose ``expires_at`` has passed
is treated as absent and evicted on read.
"""

from __future__ import annotations

from collections import Counter
from datetime import UTC, datetime, timedelta
from pathlib import Path
from typing import TYPE_CHECKING, Any, Protocol, runtime_checkable

import diskcache
import structlog
from pydantic import ValidationError

from video_research.models import CachedTranscript, CacheStats, QualityClass
from video_research.scoring import assess_quality

if TYPE_CHECKING:
    from collections.abc import Callable, Iterable

logger: structlog.stdlib.BoundLogger = structlog.get_logger(__name__)

_DEFAULT_CACHE_DIR = Path("./data/transcript_cache")
_DEFAULT_TTL = timedelta(days=30)
_KEY_PREFIX = "transcript:"
CACHE_VERSION = "2.0"


@runtime_checkable
class TranscriptCache(Protocol):
    """Key/value store for transcripts, keyed by video id."""

    def get(self, video_id: str) -> CachedTranscript | None: ...

    def set(
        self,
        video_id: str,
        text: str,
        method: str,
        ttl: timedelta | None = None,
        quality: QualityClass | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> bool: ...

    def delete(self, video_id: str) -> bool: ...

    def stats(self) -> CacheStats: ...

    def clear(self) -> int: ...


def _utcnow() -> datetime:
    return datetime.now(UTC)


def _build_entry(
    video_id: str,
    text: str,
    method: str,
    ttl: timedelta,
    quality: QualityClass | None,
    metadata: dict[str, Any] | None,
    now: datetime,
) -> CachedTranscript:
    return CachedTranscript(
        video_id=video_id,
        text=text,
        method=method,
        quality=quality or assess_quality(text),
        length=len(text),
        metadata=metadata or {},
        cached_at=now,
        expires_at=now + ttl,
        version=CACHE_VERSION,
    )


def _summarize(entries: Iterable[CachedTranscript]) -> CacheStats:
    by_method: Counter[str] = Counter()
    total_length = 0
    count = 0
    for entry in entries:
        count += 1
        total_length += entry.length
        by_method[entry.method] += 1
    return CacheStats(
        total_entries=count,
        total_length=total_length,
        average_length=round(total_length / count) if count else 0,
        by_method=dict(by_method),
    )


def _is_expired(entry: CachedTranscript, now: datetime) -> bool:
    return entry.expires_at is not None and entry.expires_at <= now


# ---------------------------------------------------------------------------
# Disk-backed cache
# ---------------------------------------------------------------------------


class DiskTranscriptCache:
    """Persistent transcript cache backed by ``diskcache``.

    Attributes:
        cache_dir: Directory of the diskcache store.
        default_ttl: TTL applied when ``set`` is called without one.
    """

    def __init__(
        self,
        cache_dir: Path | str = _DEFAULT_CACHE_DIR,
        default_ttl: timedelta = _DEFAULT_TTL,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self.cache_dir = Path(cache_dir)
        self.default_ttl = default_ttl
        self._clock = clock
        self._cache: diskcache.Cache | None = None

    def _get_cache(self) -> diskcache.Cache:
        if self._cache is None:
            self.cache_dir.mkdir(parents=True, exist_ok=True)
            self._cache = diskcache.Cache(str(self.cache_dir))
        return self._cache

    def _load(self, key: str) -> CachedTranscript | None:
        raw = self._get_cache().get(key)
        if raw is None:
            return None
        try:
            return CachedTranscript.model_validate(raw)
        except ValidationError:
            logger.warning("cache_entry_invalid", key=key)
            self._get_cache().delete(key)
            return None

    def get(self, video_id: str) -> CachedTranscript | None:
        """Return the live entry for ``video_id``, or None on miss or expiry."""
        key = _KEY_PREFIX + video_id
        entry = self._load(key)
        if entry is None:
            logger.debug("cache_miss", video_id=video_id)
            return None
        if _is_expired(entry, self._clock()):
            logger.info("cache_entry_expired", video_id=video_id)
            self._get_cache().delete(key)
            return None
        logger.debug("cache_hit", video_id=video_id, method=entry.method)
        return entry

    def set(
        self,
        video_id: str,
        text: str,
        method: str,
        ttl: timedelta | None = None,
        quality: QualityClass | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> bool:
        """Store a transcript; returns False if the store rejects the write."""
        ttl = ttl or self.default_ttl
        entry = _build_entry(
            video_id, text, method, ttl, quality, metadata, self._clock()
        )
        try:
            stored = self._get_cache().set(
                _KEY_PREFIX + video_id,
                entry.model_dump(mode="json"),
                expire=ttl.total_seconds(),
            )
        except OSError as exc:
            logger.warning("cache_write_failed", video_id=video_id, error=str(exc))
            return False
        logger.debug(
            "cache_set",
            video_id=video_id,
            method=method,
            length=entry.length,
            quality=entry.quality.value,
        )
        return bool(stored)

    def delete(self, video_id: str) -> bool:
        deleted = bool(self._get_cache().delete(_KEY_PREFIX + video_id))
        logger.info("cache_entry_deleted", video_id=video_id, deleted=deleted)
        return deleted

    def _live_entries(self) -> Iterable[CachedTranscript]:
        now = self._clock()
        for key in list(self._get_cache()):
            if not str(key).startswith(_KEY_PREFIX):
                continue
            entry = self._load(key)
            if entry is not None and not _is_expired(entry, now):
                yield entry

    def stats(self) -> CacheStats:
        """Entry count, total and average length, and per-method breakdown."""
        return _summarize(self._live_entries())

    def clear(self) -> int:
        cache = self._get_cache()
        count = len(cache)
        cache.clear()
        logger.info("cache_cleared", entries_removed=count)
        return count

    def close(self) -> None:
        """Close the underlying diskcache store."""
        if self._cache is not None:
            self._cache.close()
            self._cache = None


# ---------------------------------------------------------------------------
# In-memory cache
# ---------------------------------------------------------------------------


class MemoryTranscriptCache:
    """Process-local transcript cache with the same expiry semantics."""

    def __init__(
        self,
        default_ttl: timedelta = _DEFAULT_TTL,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self.default_ttl = default_ttl
        self._clock = clock
        self._entries: dict[str, CachedTranscript] = {}

    def get(self, video_id: str) -> CachedTranscript | None:
        entry = self._entries.get(video_id)
        if entry is None:
            return None
        if _is_expired(entry, self._clock()):
            del self._entries[video_id]
            return None
        return entry

    def set(
        self,
        video_id: str,
        text: str,
        method: str,
        ttl: timedelta | None = None,
        quality: QualityClass | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> bool:
        self._entries[video_id] = _build_entry(
            video_id,
            text,
            method,
            ttl or self.default_ttl,
            quality,
            metadata,
            self._clock(),
        )
        return True

    def delete(self, video_id: str) -> bool:
        return self._entries.pop(video_id, None) is not None

    def stats(self) -> CacheStats:
        now = self._clock()
        return _summarize(e for e in self._entries.values() if not _is_expired(e, now))

    def clear(self) -> int:
        count = len(self._entries)
        self._entries.clear()
        return count
