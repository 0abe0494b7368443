"""Per-topic research pipeline.

``IndustryResearcher`` wires the discovery client, transcript engine, quota
tracker and insight rules together:

    search terms -> search -> fetch detail -> filter -> acquire transcript
                 -> score -> ResearchResult -> insights

Search terms run sequentially with a pacing delay after each one; videos
within a term run sequentially. Per-video failures are recorded as data;
only configuration, quota and bad-request errors propagate.
"""

from __future__ import annotations

import asyncio
import time
from datetime import UTC, datetime, timedelta
from typing import TYPE_CHECKING

import httpx
import structlog
from pydantic import BaseModel, Field

from video_research.cache import DiskTranscriptCache
from video_research.exceptions import (
    FATAL_ERRORS,
    ConfigurationError,
    VideoResearchError,
)
from video_research.insights import (
    analyze_competitor_landscape,
    analyze_video_collection,
    default_rules,
    generate_advanced_insights,
    industry_insights,
    load_rules,
)
from video_research.logging import topic_logging_context
from video_research.models import (
    CompetitorAnalysis,
    Depth,
    FailureReason,
    IndustryInsights,
    PhasedReport,
    PhaseStatus,
    QualityClass,
    QualityMetrics,
    ResearchResult,
    ScoredVideo,
)
from video_research.queries import (
    generate_optimized_search_terms,
    generate_search_terms,
)
from video_research.quota import Operation, QuotaTracker
from video_research.rate_limiter import AdaptiveRateLimiter
from video_research.scoring import relevance_score
from video_research.transcripts.engine import (
    AcquireOptions,
    TranscriptEngine,
    build_registry,
)
from video_research.youtube import YouTubeClient

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable

    from video_research.config import PacingSettings, Settings
    from video_research.insights import InsightRules
    from video_research.models import VideoCandidate, VideoDetail

logger: structlog.stdlib.BoundLogger = structlog.get_logger(__name__)

RELEVANCE_FLOOR = 30
HIGH_QUALITY_RELEVANCE = 60
DISCOVERY_TIME_SHARE = 0.6
COMPETITOR_TIME_SHARE = 0.8


# ---------------------------------------------------------------------------
# Options
# ---------------------------------------------------------------------------


class ResearchOptions(BaseModel):
    """Options for the standard per-topic search."""

    depth: Depth = Depth.STANDARD
    min_views: int = Field(default=1000, ge=0)
    min_transcript_length: int = Field(default=200, ge=1)
    transcription: AcquireOptions = Field(default_factory=AcquireOptions)


class OptimizedSearchOptions(BaseModel):
    """Options for the time-boxed, relevance-filtered search."""

    max_videos_per_term: int = Field(default=8, ge=1)
    min_view_count: int = Field(default=5000, ge=0)
    max_processing_seconds: float = Field(default=300.0, gt=0.0)
    relevance_floor: int = RELEVANCE_FLOOR
    min_transcript_length: int = Field(default=100, ge=1)


class ComprehensiveOptions(BaseModel):
    """Options for the multi-phase research run."""

    depth: Depth = Depth.STANDARD
    include_competitor_analysis: bool = True
    generate_report: bool = True
    max_time_minutes: float = Field(default=15.0, gt=0.0)


def _utcnow() -> datetime:
    return datetime.now(UTC)


# ---------------------------------------------------------------------------
# Researcher
# ---------------------------------------------------------------------------


class IndustryResearcher:
    """Runs discovery, transcription and scoring for one topic at a time.

    A single instance may serve several topics concurrently (the batch
    orchestrator does this); all shared counters live on ``quota``.

    Args:
        client: Discovery client.
        engine: Transcript acquisition engine.
        quota: Run-scoped quota tracker (shared with ``client``).
        rules: Insight rule tables; the packaged defaults when omitted.
        delay_between_terms: Pause after each search term, in seconds.
        delay_between_videos: Pause after each video in optimized searches.
        clock: Monotonic clock used for deadlines.
        sleep: Awaitable sleep, replaceable in tests.
    """

    def __init__(
        self,
        client: YouTubeClient,
        engine: TranscriptEngine,
        quota: QuotaTracker | None = None,
        rules: InsightRules | None = None,
        delay_between_terms: float = 1.0,
        delay_between_videos: float = 0.5,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self.client = client
        self.engine = engine
        self.quota = quota or client.quota
        self.rules = rules or default_rules()
        self.delay_between_terms = delay_between_terms
        self.delay_between_videos = delay_between_videos
        self._clock = clock
        self._sleep = sleep

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        http_client: httpx.AsyncClient | None = None,
        quota: QuotaTracker | None = None,
    ) -> IndustryResearcher:
        """Build a researcher and all of its collaborators from settings."""
        quota = quota or QuotaTracker.from_settings(
            settings.quota, settings.transcription
        )
        http_client = http_client or httpx.AsyncClient(follow_redirects=True)
        cache = (
            DiskTranscriptCache(
                settings.cache.directory,
                default_ttl=timedelta(days=settings.cache.ttl_days),
            )
            if settings.cache.enabled
            else None
        )
        pacing: PacingSettings = settings.pacing
        engine = TranscriptEngine(
            build_registry(settings, quota=quota, client=http_client),
            cache=cache,
            rate_limiter=AdaptiveRateLimiter(
                base_delay=pacing.provider_base_delay,
                max_delay=pacing.provider_max_delay,
            ),
            quota=quota,
            attempt_timeout=settings.transcription.provider_timeout,
        )
        rules_file = settings.research.rules_file
        return cls(
            client=YouTubeClient.from_settings(settings, quota, client=http_client),
            engine=engine,
            quota=quota,
            rules=load_rules(rules_file) if rules_file else None,
            delay_between_terms=pacing.delay_between_terms,
            delay_between_videos=pacing.delay_between_videos,
        )

    async def aclose(self) -> None:
        await self.engine.aclose()
        await self.client.aclose()

    async def __aenter__(self) -> IndustryResearcher:
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.aclose()

    async def _pause(self, seconds: float) -> None:
        if seconds > 0:
            await self._sleep(seconds)

    def _out_of_quota(self, result: ResearchResult) -> bool:
        if self.quota.can_afford(Operation.SEARCH):
            return False
        result.processing_stats.quota_reserve_reached = True
        logger.warning(
            "quota_reserve_reached",
            topic=result.topic,
            units_remaining=self.quota.units_remaining,
        )
        return True

    async def _search_term(
        self, result: ResearchResult, term: str, limit: int
    ) -> list[VideoCandidate] | None:
        """Run one search; ``None`` when the term failed non-fatally."""
        try:
            candidates = await self.client.search(term, limit)
        except FATAL_ERRORS:
            raise
        except VideoResearchError as exc:
            result.processing_stats.search_errors += 1
            result.processing_stats.errors += 1
            logger.warning("search_term_failed", term=term, error=str(exc))
            return None
        result.processing_stats.terms_searched += 1
        result.processing_stats.total_videos_found += len(candidates)
        return candidates

    async def _fetch_detail(
        self, result: ResearchResult, candidate: VideoCandidate
    ) -> VideoDetail | None:
        try:
            return await self.client.fetch_detail(candidate.id)
        except FATAL_ERRORS:
            raise
        except VideoResearchError as exc:
            result.processing_stats.errors += 1
            result.transcription_stats.failure_reasons.append(
                FailureReason(
                    video_id=candidate.id, title=candidate.title, reason=str(exc)
                )
            )
            logger.warning("video_detail_failed", video_id=candidate.id, error=str(exc))
            return None

    # ------------------------------------------------------------------
    # Standard search
    # ------------------------------------------------------------------

    async def search_by_industry(
        self, topic: str, options: ResearchOptions | None = None
    ) -> ResearchResult:
        """Research ``topic`` with the standard search-term list.

        Videos below ``min_views`` are skipped; a video whose transcript is
        missing or shorter than ``min_transcript_length`` is recorded in
        ``failure_reasons`` and left out of ``videos``.

        Raises:
            ValueError: If ``topic`` is blank.
            ConfigurationError: Missing or invalid API key.
            QuotaExceededError: Quota exhausted mid-run.
            BadRequestError: A search was rejected by the provider.
        """
        options = options or ResearchOptions()
        terms = generate_search_terms(topic)
        limit = options.depth.videos_per_term
        result = ResearchResult(
            topic=topic, strategy="standard", search_terms=terms, started_at=_utcnow()
        )
        started = time.perf_counter()
        units_before = self.quota.units_used
        seen: set[str] = set()

        with topic_logging_context(topic, phase="discovery", strategy="standard"):
            for term in terms:
                if self._out_of_quota(result):
                    break
                candidates = await self._search_term(result, term, limit)
                for candidate in candidates or []:
                    if candidate.id in seen:
                        continue
                    seen.add(candidate.id)
                    await self._process_standard(result, candidate, term, options)
                await self._pause(self.delay_between_terms)

        self._finalize(result, started, units_before)
        logger.info(
            "topic_search_complete",
            topic=topic,
            videos=len(result.videos),
            success_rate=result.transcription_stats.success_rate,
        )
        return result

    async def _process_standard(
        self,
        result: ResearchResult,
        candidate: VideoCandidate,
        term: str,
        options: ResearchOptions,
    ) -> None:
        detail = await self._fetch_detail(result, candidate)
        if detail is None:
            return
        if detail.view_count < options.min_views:
            result.processing_stats.skipped_low_views += 1
            return

        result.transcription_stats.attempted += 1
        record = await self.engine.acquire(
            detail.id, options.transcription, duration_seconds=detail.duration_seconds
        )
        result.processing_stats.videos_processed += 1
        if record.text is None or len(record.text) < options.min_transcript_length:
            result.transcription_stats.failure_reasons.append(
                FailureReason(
                    video_id=detail.id,
                    title=detail.title,
                    reason="No transcript or too short",
                )
            )
            return

        result.videos.append(
            ScoredVideo(
                video=detail,
                transcript=record,
                relevance_score=relevance_score(detail, result.topic),
                quality_class=record.quality_class,
                search_term=term,
                processed_at=_utcnow(),
            )
        )

    # ------------------------------------------------------------------
    # Optimized search
    # ------------------------------------------------------------------

    async def optimized_industry_search(
        self, topic: str, options: OptimizedSearchOptions | None = None
    ) -> ResearchResult:
        """Time-boxed search with a relevance floor and quality metrics.

        The deadline is checked before each search term; work already in
        progress for a term is finished.
        """
        options = options or OptimizedSearchOptions()
        terms = generate_optimized_search_terms(topic, _utcnow().year)
        result = ResearchResult(
            topic=topic,
            strategy="optimized",
            search_terms=terms,
            started_at=_utcnow(),
            quality_metrics=QualityMetrics(),
        )
        started = time.perf_counter()
        deadline = self._clock() + options.max_processing_seconds
        units_before = self.quota.units_used
        seen: set[str] = set()
        transcription = AcquireOptions(min_length=options.min_transcript_length)

        with topic_logging_context(topic, phase="discovery", strategy="optimized"):
            for term in terms:
                if self._clock() > deadline:
                    result.processing_stats.deadline_reached = True
                    logger.info("search_deadline_reached", topic=topic, term=term)
                    break
                if self._out_of_quota(result):
                    break
                candidates = await self._search_term(
                    result, term, options.max_videos_per_term
                )
                for candidate in candidates or []:
                    if candidate.id in seen:
                        continue
                    seen.add(candidate.id)
                    await self._process_optimized(
                        result, candidate, term, options, transcription
                    )
                await self._pause(self.delay_between_terms)

        self._finalize(result, started, units_before)
        return result

    async def _process_optimized(
        self,
        result: ResearchResult,
        candidate: VideoCandidate,
        term: str,
        options: OptimizedSearchOptions,
        transcription: AcquireOptions,
    ) -> None:
        detail = await self._fetch_detail(result, candidate)
        if detail is None:
            return
        if detail.view_count < options.min_view_count:
            result.processing_stats.skipped_low_views += 1
            return
        score = relevance_score(detail, result.topic)
        if score < options.relevance_floor:
            result.processing_stats.skipped_low_relevance += 1
            return

        result.transcription_stats.attempted += 1
        record = await self.engine.acquire(
            detail.id, transcription, duration_seconds=detail.duration_seconds
        )
        result.processing_stats.videos_processed += 1
        if record.text is None:
            result.transcription_stats.failure_reasons.append(
                FailureReason(
                    video_id=detail.id, title=detail.title, reason="No transcript"
                )
            )
        else:
            metrics = result.quality_metrics or QualityMetrics()
            quality = record.quality_class
            metrics.distribution[quality] = metrics.distribution.get(quality, 0) + 1
            if quality is QualityClass.HIGH and score > HIGH_QUALITY_RELEVANCE:
                metrics.high_quality_videos += 1
            result.videos.append(
                ScoredVideo(
                    video=detail,
                    transcript=record,
                    relevance_score=score,
                    quality_class=quality,
                    search_term=term,
                    processed_at=_utcnow(),
                )
            )
            logger.info(
                "video_added",
                video_id=detail.id,
                relevance=score,
                quality=str(quality),
            )
        await self._pause(self.delay_between_videos)

    # ------------------------------------------------------------------
    # Result finalization
    # ------------------------------------------------------------------

    def _finalize(
        self, result: ResearchResult, started: float, units_before: int
    ) -> None:
        tstats = result.transcription_stats
        pstats = result.processing_stats
        transcripts = [v.transcript for v in result.videos if v.transcript]

        tstats.successful = len(transcripts)
        pstats.videos_with_transcripts = len(transcripts)
        tstats.from_cache = sum(1 for t in transcripts if t.from_cache)
        by_method: dict[str, int] = {}
        for record in transcripts:
            if record.method:
                by_method[record.method] = by_method.get(record.method, 0) + 1
        tstats.by_method = by_method
        if transcripts:
            tstats.average_length = round(
                sum(t.length_chars for t in transcripts) / len(transcripts)
            )
        if tstats.attempted:
            tstats.success_rate = round(tstats.successful / tstats.attempted * 100)

        result.videos.sort(key=lambda v: v.relevance_score, reverse=True)
        result.channels = list(
            dict.fromkeys(v.video.channel_title for v in result.videos)
        )
        if result.quality_metrics is not None and result.videos:
            result.quality_metrics.average_relevance = round(
                sum(v.relevance_score for v in result.videos) / len(result.videos)
            )

        pstats.quota_units_used = self.quota.units_used - units_before
        pstats.processing_time_ms = round((time.perf_counter() - started) * 1000, 1)
        result.completed_at = _utcnow()

    # ------------------------------------------------------------------
    # Comprehensive research
    # ------------------------------------------------------------------

    async def comprehensive_industry_research(
        self, topic: str, options: ComprehensiveOptions | None = None
    ) -> PhasedReport:
        """Discovery, analysis, insights, competitors and report in one run.

        Any failure other than a configuration error is recorded on the
        report (and on the failing phase) so partial results are returned.

        Raises:
            ConfigurationError: Missing or invalid API key.
        """
        options = options or ComprehensiveOptions()
        report = PhasedReport(topic=topic, depth=options.depth, started_at=_utcnow())
        budget = options.max_time_minutes * 60
        started = self._clock()
        current = "discovery"

        try:
            with topic_logging_context(topic, phase="discovery"):
                report.phases[current].status = PhaseStatus.RUNNING
                discovery = await self.optimized_industry_search(
                    topic,
                    OptimizedSearchOptions(
                        max_videos_per_term=options.depth.optimized_videos_per_term,
                        min_view_count=options.depth.optimized_min_views,
                        max_processing_seconds=budget * DISCOVERY_TIME_SHARE,
                    ),
                )
                report.discovery = discovery
                report.summary.total_videos = len(discovery.videos)
                report.summary.transcripts_obtained = (
                    discovery.transcription_stats.successful
                )
                report.phases[current].status = PhaseStatus.COMPLETED

            current = "analysis"
            with topic_logging_context(topic, phase=current):
                report.phases[current].status = PhaseStatus.RUNNING
                report.analysis = analyze_video_collection(
                    discovery.videos, topic, self.rules
                )
                report.phases[current].status = PhaseStatus.COMPLETED

            current = "insights"
            with topic_logging_context(topic, phase=current):
                report.phases[current].status = PhaseStatus.RUNNING
                insights = generate_advanced_insights(report.analysis, topic)
                report.insights = insights
                report.summary.key_insights = insights.key_insights
                report.summary.actionable_strategies = insights.strategies
                report.summary.market_trends = insights.trends
                report.phases[current].status = PhaseStatus.COMPLETED

            current = "competitors"
            in_time = self._clock() - started < budget * COMPETITOR_TIME_SHARE
            if options.include_competitor_analysis and in_time:
                with topic_logging_context(topic, phase=current):
                    report.phases[current].status = PhaseStatus.RUNNING
                    report.competitors = analyze_competitor_landscape(
                        discovery.videos, topic, self.rules
                    )
                    report.summary.competitor_intelligence = (
                        report.competitors.competitors
                    )
                    report.phases[current].status = PhaseStatus.COMPLETED
            else:
                report.phases[current].status = PhaseStatus.SKIPPED

            current = "report"
            if options.generate_report:
                report.recommendations = report_recommendations(report)
                report.phases[current].status = PhaseStatus.COMPLETED
            else:
                report.phases[current].status = PhaseStatus.SKIPPED
        except ConfigurationError:
            raise
        except Exception as exc:
            report.phases[current].status = PhaseStatus.FAILED
            report.phases[current].error = str(exc)
            report.error = str(exc) or type(exc).__name__
            logger.error(
                "comprehensive_research_failed",
                topic=topic,
                phase=current,
                error=str(exc),
            )
        finally:
            report.completed_at = _utcnow()
            report.total_time_minutes = round((self._clock() - started) / 60, 2)

        logger.info(
            "comprehensive_research_complete",
            topic=topic,
            videos=report.summary.total_videos,
            insights=len(report.summary.key_insights),
            minutes=report.total_time_minutes,
        )
        return report

    # ------------------------------------------------------------------
    # Insights and competitor content
    # ------------------------------------------------------------------

    async def industry_insights(
        self, topic: str, depth: Depth = Depth.STANDARD
    ) -> IndustryInsights:
        """Run a standard search and aggregate transcript-content insights."""
        result = await self.search_by_industry(topic, ResearchOptions(depth=depth))
        return industry_insights(result, self.rules)

    async def analyze_competitor_content(
        self, channel_id: str, topic: str, max_videos: int = 20
    ) -> CompetitorAnalysis:
        """Theme breakdown of a channel's recent uploads.

        Videos whose details cannot be fetched are skipped.
        """
        candidates = await self.client.channel_videos(channel_id, max_videos)
        videos: list[ScoredVideo] = []
        for candidate in candidates:
            try:
                detail = await self.client.fetch_detail(candidate.id)
            except FATAL_ERRORS:
                raise
            except VideoResearchError as exc:
                logger.warning(
                    "competitor_video_failed", video_id=candidate.id, error=str(exc)
                )
                continue
            videos.append(
                ScoredVideo(
                    video=detail, relevance_score=relevance_score(detail, topic)
                )
            )
            await self._pause(self.delay_between_videos)
        return analyze_competitor_landscape(videos, topic, self.rules)


def report_recommendations(report: PhasedReport) -> list[str]:
    """Executive-summary lines for a comprehensive report."""
    summary = report.summary
    lines = [
        f"{report.topic} marketing research: {summary.total_videos} videos analyzed, "
        f"{summary.transcripts_obtained} transcripts processed, "
        f"{len(summary.key_insights)} insights generated."
    ]
    lines.extend(
        f"Immediate: {insight.text}"
        + (f" ({insight.actionable})" if insight.actionable else "")
        for insight in summary.actionable_strategies[:3]
    )
    lines.extend(
        f"Strategic: {trend.text}"
        + (f" ({trend.actionable})" if trend.actionable else "")
        for trend in summary.market_trends
    )
    lines.extend(
        f"Competitive: study {profile.channel} "
        f"({profile.average_views:,} average views)"
        for profile in summary.competitor_intelligence[:2]
    )
    return lines
