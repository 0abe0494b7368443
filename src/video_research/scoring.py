"""Deterministic relevance scoring and transcript quality assessment.

Both functions are pure: the same inputs (and, for relevance, the same
evaluation time) always give the same output, and neither mutates its
arguments.
"""

from __future__ import annotations

import math
import re
from datetime import UTC, datetime, timedelta
from typing import TYPE_CHECKING

from video_research.models import QualityClass

if TYPE_CHECKING:
    from video_research.models import VideoDetail

# Title keyword bonuses, checked case-insensitively.
TITLE_KEYWORD_WEIGHTS: dict[str, int] = {
    "marketing": 15,
    "strategy": 10,
    "case study": 15,
    "results": 10,
}
TITLE_TOPIC_WEIGHT = 20
DESCRIPTION_TOPIC_WEIGHT = 10
DESCRIPTION_MARKETING_WEIGHT = 5
ENGAGEMENT_CAP = 20
VIEWS_CAP = 25
RECENCY_BONUS = 10
RECENCY_WINDOW = timedelta(days=6 * 30)

_REPEATED_RUN = re.compile(r"(.{10,})\1{2,}")
_SENTENCE_PUNCTUATION = re.compile(r"[.!?]")
_UPPERCASE = re.compile(r"[A-Z]")


def relevance_score(
    video: VideoDetail, topic: str, now: datetime | None = None
) -> int:
    """Score how pertinent ``video`` is to ``topic``.

    Args:
        video: The fetched video detail.
        topic: The research topic.
        now: Evaluation time for the recency bonus (defaults to current UTC).

    Returns:
        The rounded score. Only engagement and view count are capped.
    """
    now = now or datetime.now(UTC)
    topic_lower = topic.lower()
    title = video.title.lower()
    description = video.description.lower()

    score = 0.0
    if topic_lower in title:
        score += TITLE_TOPIC_WEIGHT
    for keyword, weight in TITLE_KEYWORD_WEIGHTS.items():
        if keyword in title:
            score += weight

    if topic_lower in description:
        score += DESCRIPTION_TOPIC_WEIGHT
    if "marketing" in description:
        score += DESCRIPTION_MARKETING_WEIGHT

    views = max(video.view_count, 1)
    engagement = (video.like_count + video.comment_count) / views
    score += min(engagement * 1000, ENGAGEMENT_CAP)
    score += min(math.log10(views) * 5, VIEWS_CAP)

    if video.published_at is not None:
        published = video.published_at
        if published.tzinfo is None:
            published = published.replace(tzinfo=UTC)
        if now - published < RECENCY_WINDOW:
            score += RECENCY_BONUS

    return round(score)


def assess_quality(text: str | None) -> QualityClass:
    """Classify transcript text into a quality bucket.

    Rules apply in order: empty -> ``none``; under 200 chars -> ``low``;
    a run of 10+ chars repeated 3+ times back to back, or no sentence
    punctuation -> ``medium``; over 1000 chars with an uppercase letter
    and mean word length above 3 -> ``high``; otherwise ``medium``.
    """
    if not text:
        return QualityClass.NONE

    length = len(text)
    if length < 200:
        return QualityClass.LOW

    if _REPEATED_RUN.search(text) or not _SENTENCE_PUNCTUATION.search(text):
        return QualityClass.MEDIUM

    word_count = max(len(text.split()), 1)
    if length > 1000 and _UPPERCASE.search(text) and length / word_count > 3:
        return QualityClass.HIGH

    return QualityClass.MEDIUM
