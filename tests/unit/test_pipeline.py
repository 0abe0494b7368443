"""Unit tests for video_research.pipeline - the per-topic researcher."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, ClassVar
from unittest.mock import AsyncMock, MagicMock

import httpx
import pytest
import respx

from tests.conftest import FIXED_NOW, LONG_TRANSCRIPT
from video_research.cache import DiskTranscriptCache
from video_research.exceptions import (
    ConfigurationError,
    DiscoveryError,
    NotFoundError,
    ProviderFailure,
    QuotaExceededError,
)
from video_research.models import (
    Depth,
    Insight,
    PhasedReport,
    PhaseStatus,
    QualityClass,
    VideoCandidate,
)
from video_research.pipeline import (
    ComprehensiveOptions,
    IndustryResearcher,
    OptimizedSearchOptions,
    ResearchOptions,
    report_recommendations,
)
from video_research.quota import Operation, QuotaTracker
from video_research.transcripts import ProviderRegistry, TranscriptEngine
from video_research.transcripts.base import AttemptOptions, TranscriptProvider
from video_research.youtube import YouTubeClient

if TYPE_CHECKING:
    from collections.abc import Callable

    from video_research.config import Settings
    from video_research.models import VideoDetail


class _ScriptedProvider(TranscriptProvider):
    """Returns a fixed transcript per video id."""

    name: ClassVar[str] = "scripted"

    def __init__(self, texts: dict[str, str]) -> None:
        self.texts = texts

    async def attempt(self, video_id: str, options: AttemptOptions) -> str:
        if video_id not in self.texts:
            raise ProviderFailure(self.name, "no transcript available")
        return self.texts[video_id]


class _Clock:
    def __init__(self) -> None:
        self.now = 0.0

    def __call__(self) -> float:
        return self.now


def _candidate(video_id: str) -> VideoCandidate:
    return VideoCandidate(id=video_id, title=f"Video {video_id}")


def _by_term(results: dict[int, list[str]], terms_seen: list[str]) -> Any:
    """search side effect returning candidates for the n-th term searched."""

    async def _search(term: str, limit: int) -> list[VideoCandidate]:
        index = len(terms_seen)
        terms_seen.append(term)
        return [_candidate(v) for v in results.get(index, [])]

    return _search


def _researcher(
    details: dict[str, VideoDetail],
    texts: dict[str, str],
    quota: QuotaTracker | None = None,
    **kwargs: Any,
) -> IndustryResearcher:
    async def _detail(video_id: str) -> VideoDetail:
        if video_id not in details:
            raise NotFoundError(f"Video not found: {video_id}")
        return details[video_id]

    client = MagicMock()
    client.search = AsyncMock(return_value=[])
    client.fetch_detail = AsyncMock(side_effect=_detail)
    client.channel_videos = AsyncMock(return_value=[])
    client.aclose = AsyncMock()
    engine = TranscriptEngine(ProviderRegistry([_ScriptedProvider(texts)]))
    kwargs.setdefault("sleep", AsyncMock())
    return IndustryResearcher(
        client=client, engine=engine, quota=quota or QuotaTracker(), **kwargs
    )


# ---------------------------------------------------------------------------
# Standard search
# ---------------------------------------------------------------------------


class TestStandardSearch:
    """search_by_industry: dedupe, filtering, failures and pacing."""

    @pytest.fixture()
    def terms(self) -> list[str]:
        return []

    @pytest.fixture()
    def researcher(
        self, make_video: Callable[..., VideoDetail], terms: list[str]
    ) -> IndustryResearcher:
        details = {
            "a": make_video("a", title="Fitness marketing strategy"),
            "b": make_video("b", view_count=30_000),
            "c": make_video("c", view_count=500),
        }
        researcher = _researcher(
            details, {"a": LONG_TRANSCRIPT, "b": "short"}, delay_between_terms=0.5
        )
        researcher.client.search.side_effect = _by_term(
            {0: ["a", "b"], 1: ["b", "c", "d"]}, terms
        )
        return researcher

    @pytest.mark.asyncio()
    async def test_end_to_end(
        self, researcher: IndustryResearcher, terms: list[str]
    ) -> None:
        result = await researcher.search_by_industry("fitness")

        assert result.strategy == "standard"
        assert len(terms) == 18
        assert [v.video.id for v in result.videos] == ["a"]
        assert result.videos[0].search_term == "fitness marketing strategies"
        assert result.channels == ["Channel A"]

        stats = result.processing_stats
        assert stats.terms_searched == 18
        assert stats.total_videos_found == 5
        assert stats.skipped_low_views == 1
        assert stats.errors == 1
        assert stats.videos_with_transcripts == 1

        tstats = result.transcription_stats
        assert tstats.attempted == 2
        assert tstats.successful == 1
        assert tstats.success_rate == 50
        assert tstats.by_method == {"scripted": 1}
        assert [f.video_id for f in tstats.failure_reasons] == ["b", "d"]
        assert result.completed_at is not None

    @pytest.mark.asyncio()
    async def test_duplicates_fetched_once(
        self, researcher: IndustryResearcher
    ) -> None:
        await researcher.search_by_industry("fitness")
        fetched = [c.args[0] for c in researcher.client.fetch_detail.await_args_list]
        assert fetched == ["a", "b", "c", "d"]

    @pytest.mark.asyncio()
    async def test_depth_controls_limit(self, researcher: IndustryResearcher) -> None:
        await researcher.search_by_industry(
            "fitness", ResearchOptions(depth=Depth.QUICK)
        )
        assert researcher.client.search.await_args_list[0].args == (
            "fitness marketing strategies",
            5,
        )

    @pytest.mark.asyncio()
    async def test_pause_after_each_term(self, researcher: IndustryResearcher) -> None:
        await researcher.search_by_industry("fitness")
        sleep = researcher._sleep
        assert isinstance(sleep, AsyncMock)
        assert sleep.await_count == 18
        sleep.assert_awaited_with(0.5)

    @pytest.mark.asyncio()
    async def test_blank_topic_rejected(self, researcher: IndustryResearcher) -> None:
        with pytest.raises(ValueError):
            await researcher.search_by_industry("   ")


class TestStandardSearchErrors:
    @pytest.mark.asyncio()
    async def test_non_fatal_search_errors_are_counted(self) -> None:
        researcher = _researcher({}, {})
        researcher.client.search.side_effect = DiscoveryError("backend error")

        result = await researcher.search_by_industry("fitness")

        assert result.videos == []
        assert result.processing_stats.search_errors == 18
        assert result.processing_stats.terms_searched == 0

    @pytest.mark.asyncio()
    @respx.mock
    async def test_unreadable_search_response_does_not_abort_topic(self) -> None:
        respx.get("https://www.googleapis.com/youtube/v3/search").mock(
            return_value=httpx.Response(200, text="<html>proxy error</html>")
        )
        quota = QuotaTracker(daily_limit=100_000)
        client = YouTubeClient("test-key", quota=quota, client=httpx.AsyncClient())
        engine = TranscriptEngine(ProviderRegistry([_ScriptedProvider({})]))
        researcher = IndustryResearcher(
            client=client, engine=engine, quota=quota, sleep=AsyncMock()
        )

        result = await researcher.search_by_industry("fitness")
        await client.aclose()

        assert result.videos == []
        assert result.processing_stats.search_errors == 18

    @pytest.mark.asyncio()
    @pytest.mark.parametrize(
        "error",
        [ConfigurationError("bad key"), QuotaExceededError("quota exceeded")],
    )
    async def test_fatal_errors_propagate(self, error: Exception) -> None:
        researcher = _researcher({}, {})
        researcher.client.search.side_effect = error
        with pytest.raises(type(error)):
            await researcher.search_by_industry("fitness")

    @pytest.mark.asyncio()
    async def test_stops_at_quota_reserve(self) -> None:
        quota = QuotaTracker(daily_limit=1000, reserve_units=950)
        researcher = _researcher({}, {}, quota=quota)

        result = await researcher.search_by_industry("fitness")

        assert result.processing_stats.quota_reserve_reached is True
        researcher.client.search.assert_not_awaited()

    @pytest.mark.asyncio()
    async def test_quota_units_are_a_per_run_delta(self) -> None:
        quota = QuotaTracker(daily_limit=100_000)
        quota.charge(Operation.SEARCH, count=5)
        researcher = _researcher({}, {}, quota=quota)

        async def _charging_search(term: str, limit: int) -> list[VideoCandidate]:
            quota.charge(Operation.SEARCH)
            return []

        researcher.client.search.side_effect = _charging_search
        result = await researcher.search_by_industry("fitness")

        assert result.processing_stats.quota_units_used == 1800


# ---------------------------------------------------------------------------
# Optimized search
# ---------------------------------------------------------------------------


class TestOptimizedSearch:
    @pytest.fixture()
    def details(self, make_video: Callable[..., VideoDetail]) -> dict[str, Any]:
        return {
            "hi": make_video(
                "hi",
                title="Fitness marketing strategy case study results",
                view_count=50_000,
                like_count=2000,
            ),
            "cat": make_video(
                "cat", title="Cat video", view_count=6000, like_count=0, comment_count=0
            ),
            "tiny": make_video("tiny", title="Fitness marketing", view_count=100),
            "silent": make_video(
                "silent", title="Fitness marketing", view_count=50_000
            ),
        }

    @pytest.mark.asyncio()
    async def test_relevance_floor_and_metrics(self, details: dict[str, Any]) -> None:
        researcher = _researcher(
            details,
            {"hi": LONG_TRANSCRIPT},
            delay_between_terms=1.0,
            delay_between_videos=0.25,
        )
        terms: list[str] = []
        researcher.client.search.side_effect = _by_term(
            {0: ["hi", "cat", "tiny", "silent"]}, terms
        )

        result = await researcher.optimized_industry_search("fitness")

        assert result.strategy == "optimized"
        assert len(terms) == 15
        assert [v.video.id for v in result.videos] == ["hi"]
        assert result.processing_stats.skipped_low_relevance == 1
        assert result.processing_stats.skipped_low_views == 1
        assert [f.reason for f in result.transcription_stats.failure_reasons] == [
            "No transcript"
        ]

        metrics = result.quality_metrics
        assert metrics is not None
        assert metrics.high_quality_videos == 1
        assert metrics.distribution[QualityClass.HIGH] == 1
        assert metrics.average_relevance == result.videos[0].relevance_score

        sleep = researcher._sleep
        assert isinstance(sleep, AsyncMock)
        pauses = [c.args[0] for c in sleep.await_args_list]
        assert pauses.count(0.25) == 2
        assert pauses.count(1.0) == 15

    @pytest.mark.asyncio()
    async def test_deadline_checked_before_each_term(self) -> None:
        clock = _Clock()
        researcher = _researcher({}, {}, clock=clock)

        async def _slow_search(term: str, limit: int) -> list[VideoCandidate]:
            clock.now += 200
            return []

        researcher.client.search.side_effect = _slow_search
        result = await researcher.optimized_industry_search(
            "fitness", OptimizedSearchOptions(max_processing_seconds=300)
        )

        assert researcher.client.search.await_count == 2
        assert result.processing_stats.deadline_reached is True

    @pytest.mark.asyncio()
    async def test_leading_term_carries_year(self) -> None:
        researcher = _researcher({}, {})
        result = await researcher.optimized_industry_search("fitness")
        assert result.search_terms[0].startswith("fitness marketing strategy 20")


# ---------------------------------------------------------------------------
# Comprehensive research
# ---------------------------------------------------------------------------


class TestComprehensiveResearch:
    """Phases run in order; failures are recorded on the report."""

    @pytest.fixture()
    def researcher(self, make_video: Callable[..., VideoDetail]) -> IndustryResearcher:
        details = {
            "hi": make_video(
                "hi",
                title="Fitness marketing strategy tips",
                view_count=150_000,
                like_count=5000,
            )
        }
        researcher = _researcher(details, {"hi": LONG_TRANSCRIPT})
        researcher.client.search.side_effect = _by_term({0: ["hi"]}, [])
        return researcher

    @pytest.mark.asyncio()
    async def test_all_phases_complete(self, researcher: IndustryResearcher) -> None:
        report = await researcher.comprehensive_industry_research("fitness")

        assert {name: p.status for name, p in report.phases.items()} == {
            "discovery": PhaseStatus.COMPLETED,
            "analysis": PhaseStatus.COMPLETED,
            "insights": PhaseStatus.COMPLETED,
            "competitors": PhaseStatus.COMPLETED,
            "report": PhaseStatus.COMPLETED,
        }
        assert report.error is None
        assert report.summary.total_videos == 1
        assert report.summary.transcripts_obtained == 1
        assert report.analysis is not None
        assert report.analysis.content_themes["strategy"] == 1
        assert report.summary.competitor_intelligence[0].channel == "Channel A"
        assert report.recommendations[0].startswith(
            "fitness marketing research: 1 videos analyzed"
        )
        assert report.completed_at is not None

    @pytest.mark.asyncio()
    async def test_depth_drives_discovery(self, researcher: IndustryResearcher) -> None:
        await researcher.comprehensive_industry_research(
            "fitness", ComprehensiveOptions(depth=Depth.DEEP)
        )
        assert researcher.client.search.await_args_list[0].args[1] == 12

    @pytest.mark.asyncio()
    async def test_optional_phases_skipped(
        self, researcher: IndustryResearcher
    ) -> None:
        report = await researcher.comprehensive_industry_research(
            "fitness",
            ComprehensiveOptions(
                include_competitor_analysis=False, generate_report=False
            ),
        )
        assert report.phases["competitors"].status is PhaseStatus.SKIPPED
        assert report.phases["report"].status is PhaseStatus.SKIPPED
        assert report.competitors is None
        assert report.recommendations == []

    @pytest.mark.asyncio()
    async def test_failure_is_recorded_not_raised(
        self, researcher: IndustryResearcher
    ) -> None:
        researcher.client.search.side_effect = QuotaExceededError("quota exceeded")

        report = await researcher.comprehensive_industry_research("fitness")

        assert report.error == "quota exceeded"
        assert report.phases["discovery"].status is PhaseStatus.FAILED
        assert report.phases["discovery"].error == "quota exceeded"
        assert report.phases["analysis"].status is PhaseStatus.PENDING
        assert report.discovery is None
        assert report.completed_at is not None

    @pytest.mark.asyncio()
    async def test_configuration_error_propagates(
        self, researcher: IndustryResearcher
    ) -> None:
        researcher.client.search.side_effect = ConfigurationError("missing key")
        with pytest.raises(ConfigurationError):
            await researcher.comprehensive_industry_research("fitness")


# ---------------------------------------------------------------------------
# Insights, competitor content and summary lines
# ---------------------------------------------------------------------------


class TestInsightsAndCompetitors:
    @pytest.mark.asyncio()
    async def test_industry_insights(
        self, make_video: Callable[..., VideoDetail]
    ) -> None:
        researcher = _researcher({"a": make_video("a")}, {"a": LONG_TRANSCRIPT})
        researcher.client.search.side_effect = _by_term({0: ["a"]}, [])

        insights = await researcher.industry_insights("fitness")

        assert insights.topic == "fitness"
        assert insights.total_videos_analyzed == 1
        assert "funnel" in insights.common_strategies

    @pytest.mark.asyncio()
    async def test_analyze_competitor_content(
        self, make_video: Callable[..., VideoDetail]
    ) -> None:
        details = {
            "a": make_video("a", title="Strategy tips", view_count=4000),
            "c": make_video("c", title="Tools review", view_count=2000),
        }
        researcher = _researcher(details, {})
        researcher.client.channel_videos.return_value = [
            _candidate("a"),
            _candidate("gone"),
            _candidate("c"),
        ]

        analysis = await researcher.analyze_competitor_content("UC-x", "fitness")

        researcher.client.channel_videos.assert_awaited_once_with("UC-x", 20)
        assert analysis.competitors[0].channel == "Channel A"
        assert analysis.competitors[0].video_count == 2
        assert analysis.average_views == 3000
        assert analysis.content_themes == {"strategy": 1, "tips": 1, "tools": 1}


class TestReportRecommendations:
    def test_lines(self) -> None:
        report = PhasedReport(topic="fitness", started_at=FIXED_NOW)
        report.summary.total_videos = 4
        report.summary.transcripts_obtained = 3
        report.summary.actionable_strategies = [
            Insight(type="strategy", text="Study the leaders", actionable="Study: X")
        ]
        report.summary.market_trends = [Insight(type="trend", text="Long videos")]

        lines = report_recommendations(report)

        assert lines == [
            "fitness marketing research: 4 videos analyzed, "
            "3 transcripts processed, 0 insights generated.",
            "Immediate: Study the leaders (Study: X)",
            "Strategic: Long videos",
        ]


class TestFromSettings:
    @pytest.mark.asyncio()
    async def test_wires_shared_collaborators(self, settings: Settings) -> None:
        researcher = IndustryResearcher.from_settings(settings)
        try:
            assert researcher.client.quota is researcher.quota
            assert isinstance(researcher.engine.cache, DiskTranscriptCache)
            assert researcher.delay_between_terms == 0.0
            assert researcher.client.has_api_key is True
        finally:
            await researcher.aclose()

    @pytest.mark.asyncio()
    async def test_cache_disabled(self, settings: Settings) -> None:
        settings.cache.enabled = False
        async with IndustryResearcher.from_settings(settings) as researcher:
            assert researcher.engine.cache is None
