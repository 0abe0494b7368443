"""Export research data as JSON, CSV or a plain-text summary.

Accepts either a single-topic ``ResearchResult`` or a comprehensive
``PhasedReport``. ``export_research`` only builds the payload; writing it
to disk is ``write_export``'s job.
"""

from __future__ import annotations

import csv
import io
import re
from datetime import UTC, datetime
from enum import StrEnum
from pathlib import Path
from typing import TYPE_CHECKING

import structlog
from pydantic import BaseModel

from video_research.exceptions import ExportError
from video_research.insights import aggregate_trends
from video_research.models import PhasedReport, ResearchResult

if TYPE_CHECKING:
    from video_research.insights import InsightRules
    from video_research.models import ScoredVideo

logger: structlog.stdlib.BoundLogger = structlog.get_logger(__name__)

_MAX_FILENAME_LENGTH = 80
_UNSAFE_CHARS = re.compile(r"[^\w\s-]")
_WHITESPACE = re.compile(r"[\s]+")

CSV_HEADERS = [
    "Title",
    "Channel",
    "Views",
    "Likes",
    "Comments",
    "Published",
    "Relevance Score",
    "Transcript Quality",
    "Search Term",
    "Duration",
]


class ExportFormat(StrEnum):
    JSON = "json"
    CSV = "csv"
    SUMMARY = "summary"


class ExportedFile(BaseModel):
    """An export payload ready to be written or served."""

    filename: str
    data: str
    mime_type: str


def sanitize_filename(topic: str) -> str:
    """Lowercased, hyphenated, filesystem-safe version of ``topic``."""
    sanitized = topic.lower().strip()
    sanitized = _UNSAFE_CHARS.sub("", sanitized)
    sanitized = _WHITESPACE.sub("-", sanitized)
    sanitized = sanitized.strip("-")

    if len(sanitized) > _MAX_FILENAME_LENGTH:
        sanitized = sanitized[:_MAX_FILENAME_LENGTH].rstrip("-")

    return sanitized or "research"


# ---------------------------------------------------------------------------
# Renderers
# ---------------------------------------------------------------------------


def _videos(data: ResearchResult | PhasedReport) -> list[ScoredVideo]:
    if isinstance(data, PhasedReport):
        return data.discovery.videos if data.discovery else []
    return data.videos


def to_csv(data: ResearchResult | PhasedReport) -> str:
    buffer = io.StringIO()
    writer = csv.writer(buffer, lineterminator="\n")
    writer.writerow(CSV_HEADERS)
    for scored in _videos(data):
        video = scored.video
        writer.writerow(
            [
                video.title,
                video.channel_title,
                video.view_count,
                video.like_count,
                video.comment_count,
                video.published_at.isoformat() if video.published_at else "",
                scored.relevance_score,
                str(scored.quality_class),
                scored.search_term,
                video.duration or "unknown",
            ]
        )
    return buffer.getvalue()


def _numbered(title: str, items: list[str], limit: int = 5) -> list[str]:
    if not items:
        return []
    lines = [f"{title}:", "-" * (len(title) + 1)]
    lines.extend(f"{i}. {item}" for i, item in enumerate(items[:limit], start=1))
    lines.append("")
    return lines


def _report_summary(report: PhasedReport) -> list[str]:
    summary = report.summary
    lines = [
        f"Research Date: {report.started_at.date().isoformat()}",
        f"Total Videos Analyzed: {summary.total_videos}",
        f"Transcripts Obtained: {summary.transcripts_obtained}",
        f"Research Duration: {report.total_time_minutes} minutes",
        "",
    ]
    lines += _numbered("KEY INSIGHTS", [i.text for i in summary.key_insights])
    lines += _numbered(
        "ACTIONABLE STRATEGIES", [s.text for s in summary.actionable_strategies]
    )
    performers = report.analysis.performance.top_performers if report.analysis else []
    lines += _numbered(
        "TOP PERFORMING CONTENT",
        [f'"{p.title}" ({p.view_count:,} views)' for p in performers],
        limit=3,
    )
    if report.error:
        lines.append(f"Research ended early: {report.error}")
    return lines


def _result_summary(result: ResearchResult, rules: InsightRules | None) -> list[str]:
    stats = result.transcription_stats
    started = result.started_at or datetime.now(UTC)
    lines = [
        f"Research Date: {started.date().isoformat()}",
        f"Total Videos Analyzed: {len(result.videos)}",
        f"Transcripts Obtained: {stats.successful} / {stats.attempted} "
        f"({stats.success_rate}%)",
        f"Search Terms: {len(result.search_terms)}",
        "",
    ]
    trends = aggregate_trends(result, rules)
    lines += _numbered("KEY INSIGHTS", trends.common_pain_points)
    lines += _numbered("ACTIONABLE STRATEGIES", trends.success_strategies)
    lines += _numbered(
        "TOP PERFORMING CONTENT",
        [
            f'"{v.video.title}" ({v.video.view_count:,} views)'
            for v in sorted(
                result.videos, key=lambda v: v.video.view_count, reverse=True
            )
        ],
        limit=3,
    )
    return lines


def to_summary(
    data: ResearchResult | PhasedReport, rules: InsightRules | None = None
) -> str:
    """Plain-text summary: header, totals, insights, strategies, top videos."""
    header = f"{data.topic.upper()} MARKETING RESEARCH SUMMARY"
    lines = [header, "=" * 50, ""]
    if isinstance(data, PhasedReport):
        lines += _report_summary(data)
    else:
        lines += _result_summary(data, rules)
    return "\n".join(lines).rstrip() + "\n"


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


def export_research(
    data: ResearchResult | PhasedReport,
    fmt: ExportFormat | str = ExportFormat.JSON,
    now: datetime | None = None,
    rules: InsightRules | None = None,
) -> ExportedFile:
    """Render ``data`` in ``fmt``.

    Raises:
        ExportError: If ``fmt`` is not json, csv or summary.
    """
    try:
        fmt = ExportFormat(fmt)
    except ValueError as exc:
        raise ExportError(f"Unsupported export format: {fmt}") from exc

    timestamp = re.sub(r"[:.]", "-", (now or datetime.now(UTC)).isoformat())
    stem = f"video-research-{sanitize_filename(data.topic)}-{timestamp}"

    if fmt is ExportFormat.JSON:
        return ExportedFile(
            filename=f"{stem}.json",
            data=data.model_dump_json(indent=2),
            mime_type="application/json",
        )
    if fmt is ExportFormat.CSV:
        return ExportedFile(
            filename=f"{stem}.csv", data=to_csv(data), mime_type="text/csv"
        )
    return ExportedFile(
        filename=f"{stem}-summary.txt",
        data=to_summary(data, rules),
        mime_type="text/plain",
    )


def write_export(exported: ExportedFile, path: Path) -> Path:
    """Write ``exported`` to ``path``; a directory receives its own filename.

    Raises:
        ExportError: If the file cannot be written.
    """
    target = path / exported.filename if path.is_dir() else path
    try:
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_text(exported.data, encoding="utf-8")
    except OSError as exc:
        raise ExportError(f"Cannot write export to {target}: {exc}") from exc
    logger.info("export_written", path=str(target), bytes=len(exported.data))
    return target
