"""Keyword-rule insight extraction and aggregation.

The rule tables (themes, pain/success indicators, value-proposition
patterns, ...) are declarative data loaded from ``rules.yaml`` and validated
into ``InsightRules``. Every function here is pure: it derives insights from
already-collected research data and can be re-run at any time.
"""

from __future__ import annotations

import re
from collections import Counter
from functools import lru_cache
from importlib import resources
from typing import TYPE_CHECKING

import structlog
import yaml
from pydantic import BaseModel, Field, ValidationError, field_validator

from video_research.exceptions import ConfigurationError
from video_research.models import (
    AdvancedInsights,
    CollectionAnalysis,
    CompetitorAnalysis,
    CompetitorProfile,
    ContentAnalysis,
    IndustryInsights,
    IndustryTrends,
    Insight,
    MessagingInsights,
    PerformanceMetrics,
    QualityClass,
    TopContent,
    TopicCount,
)
from video_research.scoring import assess_quality

if TYPE_CHECKING:
    from collections.abc import Iterable, Sequence
    from pathlib import Path

    from video_research.models import ResearchResult, ScoredVideo

logger: structlog.stdlib.BoundLogger = structlog.get_logger(__name__)

_SENTENCE_SPLIT = re.compile(r"[.!?]+")
_MIN_SENTENCE_LENGTH = 20
TREND_LIMIT = 10
MESSAGING_LIMIT = 5
MESSAGING_RELEVANCE_FLOOR = 70


# ---------------------------------------------------------------------------
# Rule tables
# ---------------------------------------------------------------------------


class InsightRules(BaseModel):
    """Validated keyword rule tables."""

    themes: dict[str, list[str]] = Field(default_factory=dict)
    title_topics: list[str] = Field(default_factory=list)
    pain_indicators: list[str] = Field(default_factory=list)
    success_indicators: list[str] = Field(default_factory=list)
    value_prop_patterns: list[str] = Field(default_factory=list)
    marketing_terms: list[str] = Field(default_factory=list)
    content_pain_cues: list[str] = Field(default_factory=list)
    solution_cues: list[str] = Field(default_factory=list)
    insight_cues: list[str] = Field(default_factory=list)
    trending_keywords: list[str] = Field(default_factory=list)

    @field_validator("value_prop_patterns")
    @classmethod
    def _patterns_compile(cls, patterns: list[str]) -> list[str]:
        for pattern in patterns:
            try:
                re.compile(pattern)
            except re.error as exc:
                raise ValueError(f"invalid pattern {pattern!r}: {exc}") from exc
        return patterns

    @property
    def compiled_value_patterns(self) -> list[re.Pattern[str]]:
        return [re.compile(p) for p in self.value_prop_patterns]


def load_rules(path: Path | None = None) -> InsightRules:
    """Load rule tables from ``path``, or the packaged ``rules.yaml``.

    Raises:
        ConfigurationError: If the file is missing, not YAML, or invalid.
    """
    try:
        if path is None:
            raw = resources.files("video_research").joinpath("rules.yaml").read_text(
                encoding="utf-8"
            )
        else:
            raw = path.read_text(encoding="utf-8")
        data = yaml.safe_load(raw) or {}
        return InsightRules.model_validate(data)
    except (OSError, yaml.YAMLError, ValidationError) as exc:
        raise ConfigurationError(f"Cannot load insight rules: {exc}") from exc


@lru_cache(maxsize=1)
def default_rules() -> InsightRules:
    return load_rules()


def _rules(rules: InsightRules | None) -> InsightRules:
    return rules if rules is not None else default_rules()


def _dedupe(items: Iterable[str]) -> list[str]:
    return list(dict.fromkeys(items))


def _sentences_with(text: str, cues: Sequence[str]) -> list[str]:
    found: list[str] = []
    for sentence in _SENTENCE_SPLIT.split(text):
        sentence = sentence.strip()
        if len(sentence) <= _MIN_SENTENCE_LENGTH:
            continue
        lowered = sentence.lower()
        if any(cue in lowered for cue in cues):
            found.append(sentence)
    return _dedupe(found)


# ---------------------------------------------------------------------------
# Per-item extraction
# ---------------------------------------------------------------------------


def extract_themes(
    title: str, topic: str = "", rules: InsightRules | None = None
) -> list[str]:
    """Theme names whose keywords appear in ``title``.

    ``topic`` is accepted for call-site symmetry; themes are topic-agnostic.
    """
    lowered = title.lower()
    return [
        theme
        for theme, keywords in _rules(rules).themes.items()
        if any(keyword in lowered for keyword in keywords)
    ]


def extract_topics_from_title(
    title: str, rules: InsightRules | None = None
) -> list[str]:
    lowered = title.lower()
    return [topic for topic in _rules(rules).title_topics if topic in lowered]


def extract_pain_points(
    transcript: str, rules: InsightRules | None = None
) -> list[str]:
    """Sentences (over 20 chars) that mention a pain indicator, deduplicated."""
    return _sentences_with(transcript, _rules(rules).pain_indicators)


def extract_success_strategies(
    transcript: str, rules: InsightRules | None = None
) -> list[str]:
    """Sentences (over 20 chars) that mention a success indicator, deduplicated."""
    return _sentences_with(transcript, _rules(rules).success_indicators)


def extract_value_props(
    title: str, description: str, rules: InsightRules | None = None
) -> list[str]:
    """Numeric claims such as "300% increase"; at most two per pattern."""
    content = f"{title} {description}".lower()
    props: list[str] = []
    for pattern in _rules(rules).compiled_value_patterns:
        matches = [m.group(0) for m in pattern.finditer(content)]
        props.extend(matches[:2])
    return props


def analyze_transcript_content(
    transcript: str | None, topic: str, rules: InsightRules | None = None
) -> ContentAnalysis:
    """Marketing terms, pain points, solutions and key insights in one transcript."""
    if not transcript or len(transcript) < 100:
        return ContentAnalysis(quality=QualityClass.LOW)

    rules = _rules(rules)
    lowered = transcript.lower()
    relevance = 30 if topic.lower() in lowered else 0
    strategies = [term for term in rules.marketing_terms if term in lowered]
    relevance += 5 * len(strategies)

    insights = _sentences_with(transcript, rules.insight_cues)[:10]
    solutions = _sentences_with(transcript, rules.solution_cues)[:5]
    return ContentAnalysis(
        quality=assess_quality(transcript),
        word_count=len(transcript.split()),
        industry_relevance=relevance,
        marketing_strategies=strategies,
        pain_points=_sentences_with(transcript, rules.content_pain_cues)[:5],
        solutions=solutions,
        insights=insights,
        key_points=[*insights, *solutions][:8],
    )


def most_common(items: Iterable[str], limit: int = 5) -> list[str]:
    """Most frequent strings longer than three characters, ties in first-seen order."""
    counts = Counter(item for item in items if isinstance(item, str) and len(item) > 3)
    return [item for item, _ in counts.most_common(limit)]


# ---------------------------------------------------------------------------
# Aggregation over a research result
# ---------------------------------------------------------------------------


def _engagement(video: ScoredVideo) -> float:
    detail = video.video
    return (detail.like_count + detail.comment_count) / max(detail.view_count, 1)


def aggregate_trends(
    result: ResearchResult, rules: InsightRules | None = None
) -> IndustryTrends:
    """Popular title topics, pain points and strategies across all videos."""
    if not result.videos:
        return IndustryTrends()

    rules = _rules(rules)
    topics: Counter[str] = Counter()
    pain_points: list[str] = []
    strategies: list[str] = []
    for video in result.videos:
        topics.update(extract_topics_from_title(video.video.title, rules))
        if video.transcript_text:
            pain_points.extend(extract_pain_points(video.transcript_text, rules))
            strategies.extend(extract_success_strategies(video.transcript_text, rules))

    return IndustryTrends(
        popular_topics=[
            TopicCount(topic=topic, count=count)
            for topic, count in topics.most_common()
        ],
        common_pain_points=_dedupe(pain_points)[:TREND_LIMIT],
        success_strategies=_dedupe(strategies)[:TREND_LIMIT],
        average_engagement=sum(_engagement(v) for v in result.videos)
        / len(result.videos),
    )


def messaging_insights(
    result: ResearchResult, rules: InsightRules | None = None
) -> MessagingInsights:
    """Claims and problems from highly relevant videos, five of each at most."""
    rules = _rules(rules)
    relevant = [
        v for v in result.videos if v.relevance_score > MESSAGING_RELEVANCE_FLOOR
    ][:10]
    pain_points: list[str] = []
    strategies: list[str] = []
    value_props: list[str] = []
    for video in relevant:
        if not video.transcript_text:
            continue
        pain_points.extend(extract_pain_points(video.transcript_text, rules))
        strategies.extend(extract_success_strategies(video.transcript_text, rules))
        value_props.extend(
            extract_value_props(video.video.title, video.video.description, rules)
        )
    return MessagingInsights(
        value_propositions=_dedupe(value_props)[:MESSAGING_LIMIT],
        pain_points=_dedupe(pain_points)[:MESSAGING_LIMIT],
        success_stories=_dedupe(strategies)[:MESSAGING_LIMIT],
    )


def industry_insights(
    result: ResearchResult, rules: InsightRules | None = None
) -> IndustryInsights:
    """Transcript-content analysis aggregated over every video of a result."""
    rules = _rules(rules)
    insights = IndustryInsights(
        topic=result.topic, total_videos_analyzed=len(result.videos)
    )
    for video in result.videos:
        if not video.transcript_text:
            continue
        analysis = analyze_transcript_content(
            video.transcript_text, result.topic, rules
        )
        insights.common_strategies.extend(analysis.marketing_strategies)
        insights.pain_points.extend(analysis.pain_points)
        insights.solutions.extend(analysis.solutions)
        if video.video.view_count > 50_000 and analysis.quality is QualityClass.HIGH:
            insights.top_performing_content.append(
                TopContent(
                    title=video.video.title,
                    view_count=video.video.view_count,
                    relevance_score=video.relevance_score,
                    key_insights=analysis.insights[:3],
                )
            )
    insights.top_performing_content.sort(key=lambda c: c.view_count, reverse=True)
    insights.recommendations = generate_recommendations(insights)
    return insights


def generate_recommendations(insights: IndustryInsights) -> list[str]:
    """Plain-language recommendations from aggregated industry insights."""
    topic = insights.topic
    if insights.total_videos_analyzed == 0:
        return [f"No video data found for {topic}. Consider broadening search terms."]

    recommendations = [
        f"Based on analysis of {insights.total_videos_analyzed} "
        f"{topic} marketing videos:"
    ]
    top_strategies = most_common(insights.common_strategies, 3)
    if top_strategies:
        recommendations.append(f"Focus on: {', '.join(top_strategies)}")
    top_pain_points = most_common(insights.pain_points, 2)
    if top_pain_points:
        recommendations.append(
            f"Address these pain points: {', '.join(top_pain_points)}"
        )
    if insights.top_performing_content:
        recommendations.append("High-performing content types:")
        recommendations.extend(
            f'  - "{content.title}" ({content.view_count:,} views)'
            for content in insights.top_performing_content[:2]
        )
    return recommendations


# ---------------------------------------------------------------------------
# Collection-level analysis (comprehensive research)
# ---------------------------------------------------------------------------


def analyze_video_collection(
    videos: Sequence[ScoredVideo], topic: str, rules: InsightRules | None = None
) -> CollectionAnalysis:
    """Theme counts, average performance and transcript volume."""
    rules = _rules(rules)
    analysis = CollectionAnalysis(total_videos=len(videos))
    if not videos:
        return analysis

    themes: Counter[str] = Counter()
    top: list[TopContent] = []
    for video in videos:
        detail = video.video
        if detail.view_count > 100_000:
            top.append(
                TopContent(
                    title=detail.title,
                    view_count=detail.view_count,
                    relevance_score=video.relevance_score,
                )
            )
        if video.transcript_text:
            analysis.total_words += len(video.transcript_text.split())
            themes.update(extract_themes(detail.title, topic, rules))

    count = len(videos)
    analysis.content_themes = dict(themes.most_common())
    analysis.average_words_per_video = round(analysis.total_words / count)
    analysis.performance = PerformanceMetrics(
        average_views=round(sum(v.video.view_count for v in videos) / count),
        average_likes=round(sum(v.video.like_count for v in videos) / count),
        average_comments=round(sum(v.video.comment_count for v in videos) / count),
        top_performers=sorted(top, key=lambda c: c.view_count, reverse=True)[:10],
    )
    return analysis


def generate_advanced_insights(
    analysis: CollectionAnalysis, topic: str
) -> AdvancedInsights:
    """Dominant themes, performance patterns, format trends and content gaps."""
    insights = AdvancedInsights()
    ranked = sorted(analysis.content_themes.items(), key=lambda kv: kv[1], reverse=True)

    for theme, count in ranked[:5]:
        insights.key_insights.append(
            Insight(
                type="content_theme",
                text=f"{theme} is a dominant theme in {topic} marketing content",
                category=theme,
                frequency=count,
                actionable=f"Consider creating content around {theme} strategies",
            )
        )

    performers = analysis.performance.top_performers
    if performers:
        insights.strategies.append(
            Insight(
                type="high_performance_analysis",
                text="Analyze top performing content patterns",
                category="performance",
                frequency=len(performers[:3]),
                actionable="Study: " + "; ".join(p.title for p in performers[:3]),
            )
        )

    if analysis.average_words_per_video > 1000:
        insights.trends.append(
            Insight(
                type="trend",
                text="Long-form content dominance",
                category="format",
                actionable=(
                    f"Average {analysis.average_words_per_video} words per video; "
                    "detailed, educational content performs well in this industry"
                ),
            )
        )

    gaps = [theme for theme, count in analysis.content_themes.items() if count == 1]
    if gaps:
        insights.opportunities.append(
            Insight(
                type="opportunity",
                text="Underexplored content areas",
                category=", ".join(gaps[:3]),
                frequency=len(gaps),
                actionable="Low competition topics with content gap opportunities",
            )
        )
    return insights


def analyze_competitor_landscape(
    videos: Sequence[ScoredVideo], topic: str, rules: InsightRules | None = None
) -> CompetitorAnalysis:
    """Group videos by channel and rank channels by average views."""
    rules = _rules(rules)
    views: Counter[str] = Counter()
    counts: Counter[str] = Counter()
    topics: dict[str, list[str]] = {}
    all_themes: Counter[str] = Counter()
    for video in videos:
        channel = video.video.channel_title
        views[channel] += video.video.view_count
        counts[channel] += 1
        themes = extract_themes(video.video.title, topic, rules)
        topics.setdefault(channel, []).extend(themes)
        all_themes.update(themes)

    profiles = [
        CompetitorProfile(
            channel=channel,
            average_views=round(views[channel] / counts[channel]),
            video_count=counts[channel],
            strengths=_dedupe(topics[channel])[:3],
        )
        for channel in counts
    ]
    profiles.sort(key=lambda p: p.average_views, reverse=True)
    return CompetitorAnalysis(
        competitors=profiles[:5],
        content_themes=dict(all_themes.most_common()),
        average_views=round(sum(views.values()) / len(videos)) if videos else 0,
        recommended_topics=[
            TopicCount(topic=theme, count=count)
            for theme, count in all_themes.most_common(5)
        ],
    )
