"""Pydantic data models shared across the research pipeline.

Discovery produces ``VideoCandidate`` / ``VideoDetail``; the transcript
engine produces ``TranscriptRecord``; the pipeline combines them into
``ScoredVideo`` entries inside a ``ResearchResult``. Insight models are
derived data and can always be recomputed from a result.
"""

from __future__ import annotations

from datetime import datetime
from enum import StrEnum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------


class QualityClass(StrEnum):
    """Heuristic transcript quality bucket."""

    NONE = "none"
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class Depth(StrEnum):
    """Research depth; controls how many videos are pulled per search term."""

    QUICK = "quick"
    STANDARD = "standard"
    DEEP = "deep"

    @property
    def videos_per_term(self) -> int:
        return {Depth.QUICK: 5, Depth.STANDARD: 10, Depth.DEEP: 15}[self]

    @property
    def optimized_videos_per_term(self) -> int:
        return {Depth.QUICK: 5, Depth.STANDARD: 8, Depth.DEEP: 12}[self]

    @property
    def optimized_min_views(self) -> int:
        return 10_000 if self is Depth.QUICK else 5_000


class PhaseStatus(StrEnum):
    """Lifecycle of one phase of a comprehensive research run."""

    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    SKIPPED = "skipped"
    FAILED = "failed"


# ---------------------------------------------------------------------------
# Discovery models
# ---------------------------------------------------------------------------


class VideoCandidate(BaseModel):
    """A search hit, before statistics are resolved."""

    model_config = ConfigDict(frozen=True)

    id: str
    title: str = ""
    description: str = ""
    channel_title: str = ""
    channel_id: str = ""
    published_at: datetime | None = None
    thumbnails: dict[str, str] = Field(
        default_factory=dict, description="Thumbnail size name -> URL."
    )


class VideoDetail(VideoCandidate):
    """A candidate enriched with statistics; immutable once fetched."""

    view_count: int = Field(default=0, ge=0)
    like_count: int = Field(default=0, ge=0)
    comment_count: int = Field(default=0, ge=0)
    duration: str | None = Field(default=None, description="ISO-8601 duration.")
    duration_seconds: int | None = None
    tags: list[str] = Field(default_factory=list)


class ChannelInfo(BaseModel):
    """Channel metadata and statistics."""

    id: str
    title: str = ""
    description: str = ""
    subscriber_count: int = 0
    video_count: int = 0
    view_count: int = 0


class ConnectionCheck(BaseModel):
    """Outcome of a discovery API connectivity probe."""

    success: bool
    message: str
    error: str | None = None
    videos_found: int = 0
    sample_titles: list[str] = Field(default_factory=list)


# ---------------------------------------------------------------------------
# Transcript models
# ---------------------------------------------------------------------------


class ProviderAttempt(BaseModel):
    """One failed provider attempt inside a cascade."""

    provider: str
    error: str
    elapsed_ms: float = 0.0


class TranscriptRecord(BaseModel):
    """Result of transcript acquisition for one video.

    ``text`` and ``method`` are both ``None`` when every provider failed.
    """

    video_id: str
    text: str | None = None
    method: str | None = None
    length_chars: int = 0
    quality_class: QualityClass = QualityClass.NONE
    from_cache: bool = False
    cached_at: datetime | None = None
    expires_at: datetime | None = None
    elapsed_ms: float = 0.0
    attempts: list[ProviderAttempt] = Field(default_factory=list)

    @property
    def succeeded(self) -> bool:
        return self.text is not None


class CachedTranscript(BaseModel):
    """A transcript entry as stored in the cache."""

    video_id: str
    text: str
    method: str
    quality: QualityClass = QualityClass.NONE
    length: int = 0
    metadata: dict[str, Any] = Field(default_factory=dict)
    cached_at: datetime
    expires_at: datetime | None = None
    version: str = "2.0"


class CacheStats(BaseModel):
    """Aggregate view over the transcript cache."""

    total_entries: int = 0
    total_length: int = 0
    average_length: int = 0
    by_method: dict[str, int] = Field(default_factory=dict)


class ServiceTestResult(BaseModel):
    """Live test outcome for one transcript provider."""

    success: bool
    transcript_length: int = 0
    response_time_ms: float = 0.0
    preview: str | None = None
    error: str | None = None


class ServiceTestReport(BaseModel):
    """Live test outcome for every registered provider."""

    test_video_id: str
    service_results: dict[str, ServiceTestResult] = Field(default_factory=dict)
    overall_success: bool = False
    recommendations: list[str] = Field(default_factory=list)

    @property
    def working_services(self) -> list[str]:
        return [name for name, r in self.service_results.items() if r.success]


# ---------------------------------------------------------------------------
# Research result models
# ---------------------------------------------------------------------------


class ScoredVideo(BaseModel):
    """A processed video: detail, transcript, relevance and quality."""

    video: VideoDetail
    transcript: TranscriptRecord | None = None
    relevance_score: int = 0
    quality_class: QualityClass = QualityClass.NONE
    search_term: str = ""
    processed_at: datetime | None = None

    @property
    def transcript_text(self) -> str | None:
        return self.transcript.text if self.transcript else None


class FailureReason(BaseModel):
    """Why a candidate produced no usable transcript."""

    video_id: str
    title: str = ""
    reason: str


class TranscriptionStats(BaseModel):
    """Transcript acquisition counters for one topic run."""

    attempted: int = 0
    successful: int = 0
    from_cache: int = 0
    by_method: dict[str, int] = Field(default_factory=dict)
    average_length: int = 0
    success_rate: int = Field(default=0, description="Percentage, 0-100.")
    failure_reasons: list[FailureReason] = Field(default_factory=list)


class ProcessingStats(BaseModel):
    """Discovery and processing counters for one topic run."""

    total_videos_found: int = 0
    videos_processed: int = 0
    videos_with_transcripts: int = 0
    skipped_low_views: int = 0
    skipped_low_relevance: int = 0
    errors: int = 0
    search_errors: int = 0
    terms_searched: int = 0
    quota_units_used: int = 0
    processing_time_ms: float = 0.0
    deadline_reached: bool = False
    quota_reserve_reached: bool = False


class QualityMetrics(BaseModel):
    """Quality summary produced by the optimized search."""

    average_relevance: int = 0
    high_quality_videos: int = 0
    distribution: dict[QualityClass, int] = Field(
        default_factory=lambda: {
            QualityClass.HIGH: 0,
            QualityClass.MEDIUM: 0,
            QualityClass.LOW: 0,
        }
    )


class ResearchResult(BaseModel):
    """Everything gathered for one topic."""

    topic: str
    strategy: str = "standard"
    search_terms: list[str] = Field(default_factory=list)
    videos: list[ScoredVideo] = Field(default_factory=list)
    channels: list[str] = Field(default_factory=list)
    transcription_stats: TranscriptionStats = Field(
        default_factory=TranscriptionStats
    )
    processing_stats: ProcessingStats = Field(default_factory=ProcessingStats)
    quality_metrics: QualityMetrics | None = None
    started_at: datetime | None = None
    completed_at: datetime | None = None


# ---------------------------------------------------------------------------
# Insight models
# ---------------------------------------------------------------------------


class Insight(BaseModel):
    """A single derived observation."""

    type: str = Field(description="pain_point, strategy, value_prop, theme, ...")
    text: str
    category: str = ""
    frequency: int = 1
    relevance_score: int | None = None
    actionable: str | None = None


class TopicCount(BaseModel):
    topic: str
    count: int


class IndustryTrends(BaseModel):
    """Aggregated themes, pain points and strategies across a result."""

    popular_topics: list[TopicCount] = Field(default_factory=list)
    common_pain_points: list[str] = Field(default_factory=list)
    success_strategies: list[str] = Field(default_factory=list)
    average_engagement: float = 0.0


class MessagingInsights(BaseModel):
    """Highly relevant claims and problems suitable for outreach copy."""

    value_propositions: list[str] = Field(default_factory=list)
    pain_points: list[str] = Field(default_factory=list)
    success_stories: list[str] = Field(default_factory=list)


class ContentAnalysis(BaseModel):
    """Keyword-driven analysis of one transcript."""

    quality: QualityClass = QualityClass.LOW
    word_count: int = 0
    industry_relevance: int = 0
    marketing_strategies: list[str] = Field(default_factory=list)
    pain_points: list[str] = Field(default_factory=list)
    solutions: list[str] = Field(default_factory=list)
    insights: list[str] = Field(default_factory=list)
    key_points: list[str] = Field(default_factory=list)


class TopContent(BaseModel):
    title: str
    view_count: int
    relevance_score: int = 0
    key_insights: list[str] = Field(default_factory=list)


class IndustryInsights(BaseModel):
    """Transcript-content insights aggregated over a topic run."""

    topic: str
    total_videos_analyzed: int = 0
    common_strategies: list[str] = Field(default_factory=list)
    pain_points: list[str] = Field(default_factory=list)
    solutions: list[str] = Field(default_factory=list)
    top_performing_content: list[TopContent] = Field(default_factory=list)
    recommendations: list[str] = Field(default_factory=list)


class PerformanceMetrics(BaseModel):
    average_views: int = 0
    average_likes: int = 0
    average_comments: int = 0
    top_performers: list[TopContent] = Field(default_factory=list)


class CollectionAnalysis(BaseModel):
    """Content themes and performance over a collection of videos."""

    total_videos: int = 0
    content_themes: dict[str, int] = Field(default_factory=dict)
    performance: PerformanceMetrics = Field(default_factory=PerformanceMetrics)
    total_words: int = 0
    average_words_per_video: int = 0


class AdvancedInsights(BaseModel):
    """Key insights, strategies, trends and opportunities for a topic."""

    key_insights: list[Insight] = Field(default_factory=list)
    strategies: list[Insight] = Field(default_factory=list)
    trends: list[Insight] = Field(default_factory=list)
    opportunities: list[Insight] = Field(default_factory=list)


class CompetitorProfile(BaseModel):
    channel: str
    average_views: int
    video_count: int
    strengths: list[str] = Field(default_factory=list)


class CompetitorAnalysis(BaseModel):
    """Channel-level view over the videos of one topic, or over one channel."""

    competitors: list[CompetitorProfile] = Field(default_factory=list)
    content_themes: dict[str, int] = Field(default_factory=dict)
    average_views: int = 0
    recommended_topics: list[TopicCount] = Field(default_factory=list)


# ---------------------------------------------------------------------------
# Comprehensive research report
# ---------------------------------------------------------------------------


class PhaseRecord(BaseModel):
    status: PhaseStatus = PhaseStatus.PENDING
    error: str | None = None


class ReportSummary(BaseModel):
    total_videos: int = 0
    transcripts_obtained: int = 0
    key_insights: list[Insight] = Field(default_factory=list)
    actionable_strategies: list[Insight] = Field(default_factory=list)
    market_trends: list[Insight] = Field(default_factory=list)
    competitor_intelligence: list[CompetitorProfile] = Field(default_factory=list)


class PhasedReport(BaseModel):
    """Outcome of a comprehensive multi-phase research run.

    Failures are recorded in ``error`` (and on the failing phase) rather
    than raised, so partial results are always returned.
    """

    topic: str
    depth: Depth = Depth.STANDARD
    started_at: datetime
    completed_at: datetime | None = None
    total_time_minutes: float = 0.0
    phases: dict[str, PhaseRecord] = Field(
        default_factory=lambda: {
            name: PhaseRecord()
            for name in ("discovery", "analysis", "insights", "competitors", "report")
        }
    )
    discovery: ResearchResult | None = None
    analysis: CollectionAnalysis | None = None
    insights: AdvancedInsights | None = None
    competitors: CompetitorAnalysis | None = None
    summary: ReportSummary = Field(default_factory=ReportSummary)
    recommendations: list[str] = Field(default_factory=list)
    error: str | None = None


class TopicError(BaseModel):
    """Batch entry for a topic whose pipeline failed."""

    error: str
