"""Health checks and self-diagnostics for video-research."""

from __future__ import annotations

import asyncio
import re
from enum import StrEnum
from typing import TYPE_CHECKING

from pydantic import BaseModel, Field

from video_research.cache import DiskTranscriptCache
from video_research.config import DEFAULT_CASCADE, Settings
from video_research.exceptions import ConfigurationError
from video_research.insights import load_rules
from video_research.quota import QuotaTracker
from video_research.youtube import YouTubeClient

if TYPE_CHECKING:
    from pathlib import Path

_YOUTUBE_KEY_FORMAT = re.compile(r"^AIza[0-9A-Za-z_-]{35}$")
_PROBE_VIDEO_ID = "doctor-probe"


class CheckStatus(StrEnum):
    """Status for a doctor check item."""

    OK = "ok"
    WARN = "warn"
    FAIL = "fail"


class CheckResult(BaseModel):
    """A single doctor check result."""

    name: str
    status: CheckStatus
    message: str
    details: dict[str, str] = Field(default_factory=dict)


class DoctorReport(BaseModel):
    """Aggregate report for all diagnostics."""

    checks: list[CheckResult]

    @property
    def healthy(self) -> bool:
        return all(check.status != CheckStatus.FAIL for check in self.checks)

    @property
    def exit_code(self) -> int:
        return 0 if self.healthy else 1


def _check_config_schema(config_path: Path | None) -> CheckResult:
    try:
        Settings.load(config_path=config_path)
        return CheckResult(
            name="config-schema",
            status=CheckStatus.OK,
            message="Configuration schema is valid.",
        )
    except Exception as exc:
        return CheckResult(
            name="config-schema",
            status=CheckStatus.FAIL,
            message="Configuration schema validation failed.",
            details={"error": str(exc)},
        )


def _check_youtube_key(settings: Settings) -> CheckResult:
    key = settings.youtube.api_key
    if not key:
        return CheckResult(
            name="youtube-api-key",
            status=CheckStatus.FAIL,
            message="YouTube API key is not set (YOUTUBE_API_KEY).",
        )
    if not _YOUTUBE_KEY_FORMAT.match(key):
        return CheckResult(
            name="youtube-api-key",
            status=CheckStatus.WARN,
            message="YouTube API key is set but does not look like a Google API key.",
            details={"length": str(len(key))},
        )
    return CheckResult(
        name="youtube-api-key",
        status=CheckStatus.OK,
        message="YouTube API key is set.",
    )


def _check_cache(settings: Settings) -> CheckResult:
    if not settings.cache.enabled:
        return CheckResult(
            name="transcript-cache",
            status=CheckStatus.WARN,
            message="Transcript cache is disabled; every run re-fetches transcripts.",
        )
    path = settings.cache.directory
    cache = DiskTranscriptCache(path)
    try:
        cache.set(_PROBE_VIDEO_ID, "doctor probe transcript", "doctor")
        entry = cache.get(_PROBE_VIDEO_ID)
        cache.delete(_PROBE_VIDEO_ID)
    except OSError as exc:
        return CheckResult(
            name="transcript-cache",
            status=CheckStatus.FAIL,
            message="Transcript cache directory is not writable.",
            details={"path": str(path), "error": str(exc)},
        )
    finally:
        cache.close()
    if entry is None:
        return CheckResult(
            name="transcript-cache",
            status=CheckStatus.FAIL,
            message="Transcript cache did not return a freshly written entry.",
            details={"path": str(path)},
        )
    return CheckResult(
        name="transcript-cache",
        status=CheckStatus.OK,
        message="Transcript cache is writable and readable.",
        details={"path": str(path)},
    )


def _check_transcription(settings: Settings) -> CheckResult:
    order = settings.transcription.providers
    unknown = [name for name in order if name not in DEFAULT_CASCADE]
    if unknown:
        return CheckResult(
            name="transcription-providers",
            status=CheckStatus.FAIL,
            message="Unknown transcription providers in the cascade.",
            details={"unknown": ", ".join(unknown)},
        )
    paid = settings.configured_paid_providers()
    details = {
        "cascade": ", ".join(order),
        "paid-configured": ", ".join(paid) or "none",
    }
    if not paid:
        return CheckResult(
            name="transcription-providers",
            status=CheckStatus.WARN,
            message="Only free caption providers are available; "
            "videos without captions will have no transcript.",
            details=details,
        )
    return CheckResult(
        name="transcription-providers",
        status=CheckStatus.OK,
        message="Free and paid transcription providers are configured.",
        details=details,
    )


def _check_rules(settings: Settings) -> CheckResult:
    try:
        rules = load_rules(settings.research.rules_file)
    except ConfigurationError as exc:
        return CheckResult(
            name="insight-rules",
            status=CheckStatus.FAIL,
            message="Insight rule file could not be loaded.",
            details={"error": str(exc)},
        )
    return CheckResult(
        name="insight-rules",
        status=CheckStatus.OK,
        message="Insight rule tables are valid.",
        details={
            "source": str(settings.research.rules_file or "packaged"),
            "themes": str(len(rules.themes)),
        },
    )


async def _probe_youtube(settings: Settings) -> CheckResult:
    quota = QuotaTracker.from_settings(settings.quota, settings.transcription)
    client = YouTubeClient.from_settings(settings, quota)
    try:
        check = await client.validate_connection()
    finally:
        await client.aclose()
    if check.success:
        return CheckResult(
            name="youtube-search-probe",
            status=CheckStatus.OK,
            message=check.message,
            details={"videos-found": str(check.videos_found)},
        )
    return CheckResult(
        name="youtube-search-probe",
        status=CheckStatus.FAIL,
        message=check.message,
        details={"error": check.error or "unknown"},
    )


def run_doctor(
    settings: Settings,
    config_path: Path | None = None,
    probe_api: bool = True,
) -> DoctorReport:
    """Run all health checks and return a structured report.

    The live search probe spends one search (100 quota units).
    """
    checks = [
        _check_config_schema(config_path),
        _check_youtube_key(settings),
        _check_cache(settings),
        _check_transcription(settings),
        _check_rules(settings),
    ]
    if probe_api and settings.youtube.api_key:
        checks.append(asyncio.run(_probe_youtube(settings)))
    return DoctorReport(checks=checks)
