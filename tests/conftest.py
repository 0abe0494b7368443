"""Shared pytest fixtures for the video-research test suite."""

from __future__ import annotations

import os
from datetime import UTC, datetime, timedelta
from typing import TYPE_CHECKING, Any, ClassVar

import pytest

from video_research.cache import MemoryTranscriptCache
from video_research.config import Settings
from video_research.exceptions import ProviderFailure
from video_research.models import (
    QualityClass,
    ScoredVideo,
    TranscriptRecord,
    VideoDetail,
)
from video_research.transcripts.base import AttemptOptions, TranscriptProvider

if TYPE_CHECKING:
    from collections.abc import Callable
    from pathlib import Path

# Credentials read from the unprefixed conventional variables.
_CREDENTIAL_ENV_VARS = (
    "YOUTUBE_API_KEY",
    "ASSEMBLYAI_API_KEY",
    "DEEPGRAM_API_KEY",
    "WHISPER_API_KEY",
    "OPENAI_API_KEY",
)

FIXED_NOW = datetime(2025, 6, 1, 12, 0, tzinfo=UTC)

# Prose with capitals, regular punctuation and no repeated runs.
LONG_TRANSCRIPT = " ".join(
    f"Point {i} explains how campaign number {i * 7} improved the funnel results."
    for i in range(1, 60)
)


# ---------------------------------------------------------------------------
# Environment isolation
# ---------------------------------------------------------------------------


@pytest.fixture(autouse=True)
def _isolate_environment(
    monkeypatch: pytest.MonkeyPatch, tmp_path_factory: pytest.TempPathFactory
) -> None:
    """Keep developer credentials, ``.env`` and ``config.yaml`` out of tests."""
    for name in _CREDENTIAL_ENV_VARS:
        monkeypatch.delenv(name, raising=False)
    for name in list(os.environ):
        if name.startswith("VIDEO_RESEARCH_"):
            monkeypatch.delenv(name, raising=False)
    monkeypatch.chdir(tmp_path_factory.mktemp("cwd"))


# ---------------------------------------------------------------------------
# Configuration
# ---------------------------------------------------------------------------


@pytest.fixture()
def settings(tmp_path: Path) -> Settings:
    """Settings with a fake key, a temp cache and no pacing delays."""
    return Settings.load(
        youtube={"api_key": "test-key"},
        cache={"directory": str(tmp_path / "cache")},
        pacing={"delay_between_terms": 0.0, "delay_between_videos": 0.0},
        batch={
            "delay_between_batches": 0.0,
            "progress_file": str(tmp_path / "progress.json"),
        },
    )


# ---------------------------------------------------------------------------
# Model factories
# ---------------------------------------------------------------------------


@pytest.fixture()
def make_video() -> Callable[..., VideoDetail]:
    """Factory for ``VideoDetail`` with overridable fields."""

    def _make(video_id: str = "vid1", **overrides: Any) -> VideoDetail:
        fields: dict[str, Any] = {
            "id": video_id,
            "title": f"Video {video_id}",
            "description": "",
            "channel_title": "Channel A",
            "channel_id": "UC-a",
            "published_at": FIXED_NOW - timedelta(days=730),
            "view_count": 20_000,
            "like_count": 200,
            "comment_count": 20,
            "duration": "PT10M",
            "duration_seconds": 600,
        }
        fields.update(overrides)
        return VideoDetail(**fields)

    return _make


@pytest.fixture()
def make_scored(
    make_video: Callable[..., VideoDetail],
) -> Callable[..., ScoredVideo]:
    """Factory for a ``ScoredVideo`` carrying an optional transcript."""

    def _make(
        video_id: str = "vid1",
        text: str | None = LONG_TRANSCRIPT,
        relevance_score: int = 50,
        quality: QualityClass = QualityClass.HIGH,
        method: str = "youtube",
        **video_fields: Any,
    ) -> ScoredVideo:
        record = (
            TranscriptRecord(
                video_id=video_id,
                text=text,
                method=method,
                length_chars=len(text),
                quality_class=quality,
            )
            if text is not None
            else None
        )
        return ScoredVideo(
            video=make_video(video_id, **video_fields),
            transcript=record,
            relevance_score=relevance_score,
            quality_class=quality if text is not None else QualityClass.NONE,
            search_term="fitness marketing strategies",
        )

    return _make


@pytest.fixture()
def memory_cache() -> MemoryTranscriptCache:
    return MemoryTranscriptCache(clock=lambda: FIXED_NOW)


# ---------------------------------------------------------------------------
# Fake transcript providers
# ---------------------------------------------------------------------------


class FakeProvider(TranscriptProvider):
    """Scripted provider: returns ``text`` or raises ``error``."""

    name: ClassVar[str] = "fake"

    def __init__(
        self,
        name: str,
        text: str | None = None,
        error: Exception | None = None,
        configured: bool = True,
        paid: bool = False,
    ) -> None:
        self.name = name  # type: ignore[misc]
        self.paid = paid  # type: ignore[misc]
        self._text = text
        self._error = error
        self._configured = configured
        self.calls: list[str] = []

    def is_configured(self) -> bool:
        return self._configured

    async def attempt(self, video_id: str, options: AttemptOptions) -> str:
        self.calls.append(video_id)
        if self._error is not None:
            raise self._error
        if self._text is None:
            raise ProviderFailure(self.name, "no transcript available")
        return self._text


@pytest.fixture()
def make_provider() -> Callable[..., FakeProvider]:
    return FakeProvider
