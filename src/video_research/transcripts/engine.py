"""Transcript acquisition: cache first, then the provider cascade.

``TranscriptEngine.acquire`` never raises. Every outcome, including "no
provider produced usable text", is returned as a ``TranscriptRecord``.
"""

from __future__ import annotations

import time
from typing import TYPE_CHECKING, Any

import httpx
import structlog
from pydantic import BaseModel, Field

from video_research.exceptions import ProviderFailure
from video_research.models import (
    ProviderAttempt,
    ServiceTestReport,
    ServiceTestResult,
    TranscriptRecord,
)
from video_research.scoring import assess_quality
from video_research.transcripts.base import (
    AUTO,
    AttemptOptions,
    ProviderRegistry,
    TranscriptProvider,
)
from video_research.transcripts.captions import (
    YouTubeAltCaptionProvider,
    YouTubeCaptionProvider,
)
from video_research.transcripts.free_apis import FreeTranscriptAPIProvider
from video_research.transcripts.speech import (
    AssemblyAIProvider,
    DeepgramProvider,
    WhisperProvider,
)

if TYPE_CHECKING:
    from datetime import timedelta

    from video_research.cache import TranscriptCache
    from video_research.config import Settings
    from video_research.quota import QuotaTracker
    from video_research.rate_limiter import AdaptiveRateLimiter

logger: structlog.stdlib.BoundLogger = structlog.get_logger(__name__)

DEFAULT_TEST_VIDEO_ID = "dQw4w9WgXcQ"

# Static notes shown by ``service_info``; costs for paid providers come from
# configuration.
_SERVICE_NOTES: dict[str, dict[str, str]] = {
    "youtube": {
        "limitations": "Only works if the video has captions",
        "success_rate": "60-70%",
        "setup": "No setup required",
    },
    "youtube-alt": {
        "limitations": "Backup method for YouTube captions",
        "success_rate": "50-60%",
        "setup": "No setup required",
    },
    "transcript-api": {
        "limitations": "Rate limited, may be unreliable",
        "success_rate": "40-50%",
        "setup": "No setup required",
    },
    "assemblyai": {
        "limitations": "Requires audio extraction",
        "success_rate": "95%+",
        "setup": "API key required: ASSEMBLYAI_API_KEY",
    },
    "deepgram": {
        "limitations": "Requires audio extraction",
        "success_rate": "98%+",
        "setup": "API key required: DEEPGRAM_API_KEY",
    },
    "whisperapi": {
        "limitations": "Requires audio download",
        "success_rate": "95%+",
        "setup": "API key required: WHISPER_API_KEY or OPENAI_API_KEY",
    },
}


class AcquireOptions(BaseModel):
    """Caller-facing options for one acquisition."""

    preferred_service: str = Field(
        default=AUTO, description='Provider name, or "auto" for the full cascade.'
    )
    min_length: int = Field(default=50, ge=1)
    use_cache: bool = True


def build_registry(
    settings: Settings,
    quota: QuotaTracker | None = None,
    client: httpx.AsyncClient | None = None,
) -> ProviderRegistry:
    """Instantiate every known provider, ordered by ``transcription.providers``."""
    ts = settings.transcription
    providers: list[TranscriptProvider] = [
        YouTubeCaptionProvider(),
        YouTubeAltCaptionProvider(),
        FreeTranscriptAPIProvider(ts.free_api_endpoints, client=client),
        AssemblyAIProvider(
            ts.assemblyai_api_key,
            client=client,
            quota=quota,
            audio_resolver_url=ts.audio_resolver_url,
            poll_interval=ts.poll_interval_seconds,
            max_poll_attempts=ts.max_poll_attempts,
        ),
        DeepgramProvider(
            ts.deepgram_api_key,
            client=client,
            quota=quota,
            audio_resolver_url=ts.audio_resolver_url,
        ),
        WhisperProvider(
            ts.whisper_api_key,
            client=client,
            quota=quota,
            audio_resolver_url=ts.audio_resolver_url,
        ),
    ]
    return ProviderRegistry(providers, order=ts.providers)


class TranscriptEngine:
    """Acquire transcripts through a cache and an ordered provider cascade.

    Args:
        registry: Providers and their cascade order.
        cache: Optional transcript cache; ``None`` disables caching.
        rate_limiter: Optional per-provider pacing.
        quota: Optional run tracker; successes are counted per method.
        attempt_timeout: Timeout handed to each provider attempt.
        cache_ttl: TTL for newly cached transcripts (cache default if None).
    """

    def __init__(
        self,
        registry: ProviderRegistry,
        cache: TranscriptCache | None = None,
        rate_limiter: AdaptiveRateLimiter | None = None,
        quota: QuotaTracker | None = None,
        attempt_timeout: float = 15.0,
        cache_ttl: timedelta | None = None,
    ) -> None:
        self.registry = registry
        self.cache = cache
        self._rate_limiter = rate_limiter
        self._quota = quota
        self._attempt_timeout = attempt_timeout
        self._cache_ttl = cache_ttl

    async def aclose(self) -> None:
        await self.registry.aclose()

    # ------------------------------------------------------------------
    # Cache helpers
    # ------------------------------------------------------------------

    def _cached(self, video_id: str) -> TranscriptRecord | None:
        if self.cache is None:
            return None
        try:
            entry = self.cache.get(video_id)
        except Exception as exc:
            logger.warning("cache_read_failed", video_id=video_id, error=str(exc))
            return None
        if entry is None:
            return None
        logger.info("transcript_cache_hit", video_id=video_id, method=entry.method)
        return TranscriptRecord(
            video_id=video_id,
            text=entry.text,
            method=entry.method,
            length_chars=len(entry.text),
            quality_class=entry.quality,
            from_cache=True,
            cached_at=entry.cached_at,
            expires_at=entry.expires_at,
        )

    def _store(self, record: TranscriptRecord) -> None:
        if self.cache is None or record.text is None or record.method is None:
            return
        try:
            self.cache.set(
                record.video_id,
                record.text,
                record.method,
                ttl=self._cache_ttl,
                quality=record.quality_class,
            )
        except Exception as exc:
            logger.warning(
                "cache_write_failed", video_id=record.video_id, error=str(exc)
            )

    # ------------------------------------------------------------------
    # Acquisition
    # ------------------------------------------------------------------

    async def _attempt(
        self, provider: TranscriptProvider, video_id: str, options: AttemptOptions
    ) -> str:
        if self._rate_limiter is not None:
            await self._rate_limiter.acquire(provider.name)
        try:
            text = await provider.attempt(video_id, options)
        except Exception:
            if self._rate_limiter is not None:
                self._rate_limiter.record_outcome(provider.name, success=False)
            raise
        if self._rate_limiter is not None:
            self._rate_limiter.record_outcome(provider.name, success=True)
        return text

    async def acquire(
        self,
        video_id: str,
        options: AcquireOptions | None = None,
        duration_seconds: int | None = None,
    ) -> TranscriptRecord:
        """Return a transcript for ``video_id``; never raises.

        Args:
            video_id: The video to transcribe.
            options: Provider preference, minimum length and cache use.
            duration_seconds: Known video length, for paid-minute estimates.

        Returns:
            A record with ``text`` set on success, or ``text=None`` and the
            list of failed attempts when every provider failed.
        """
        options = options or AcquireOptions()

        if options.use_cache:
            cached = self._cached(video_id)
            if cached is not None:
                return cached

        attempt_options = AttemptOptions(
            timeout=self._attempt_timeout, duration_seconds=duration_seconds
        )
        attempts: list[ProviderAttempt] = []
        providers = self.registry.resolve(options.preferred_service)
        if not providers:
            attempts.append(
                ProviderAttempt(
                    provider=options.preferred_service,
                    error="unknown or unconfigured transcription method",
                )
            )

        started = time.perf_counter()
        for provider in providers:
            attempt_started = time.perf_counter()
            try:
                text = await self._attempt(provider, video_id, attempt_options)
            except ProviderFailure as exc:
                reason = exc.reason
            except Exception as exc:
                reason = str(exc) or type(exc).__name__
            else:
                if text and len(text) >= options.min_length:
                    record = TranscriptRecord(
                        video_id=video_id,
                        text=text,
                        method=provider.name,
                        length_chars=len(text),
                        quality_class=assess_quality(text),
                        elapsed_ms=round((time.perf_counter() - started) * 1000, 1),
                        attempts=attempts,
                    )
                    logger.info(
                        "transcript_acquired",
                        video_id=video_id,
                        method=provider.name,
                        length=record.length_chars,
                        elapsed_ms=record.elapsed_ms,
                    )
                    if self._quota is not None:
                        self._quota.record_transcript(provider.name)
                    if options.use_cache:
                        self._store(record)
                    return record
                reason = (
                    f"transcript too short ({len(text or '')} < {options.min_length})"
                )

            elapsed_ms = round((time.perf_counter() - attempt_started) * 1000, 1)
            attempts.append(
                ProviderAttempt(
                    provider=provider.name, error=reason, elapsed_ms=elapsed_ms
                )
            )
            logger.info(
                "provider_failed",
                video_id=video_id,
                provider=provider.name,
                reason=reason,
            )

        logger.warning(
            "transcript_unavailable",
            video_id=video_id,
            providers_tried=[a.provider for a in attempts],
        )
        return TranscriptRecord(
            video_id=video_id,
            elapsed_ms=round((time.perf_counter() - started) * 1000, 1),
            attempts=attempts,
        )

    # ------------------------------------------------------------------
    # Diagnostics
    # ------------------------------------------------------------------

    async def test_services(
        self, video_id: str = DEFAULT_TEST_VIDEO_ID
    ) -> ServiceTestReport:
        """Try every registered provider against one video and report back."""
        report = ServiceTestReport(test_video_id=video_id)
        options = AttemptOptions(timeout=self._attempt_timeout)
        for provider in self.registry:
            started = time.perf_counter()
            try:
                text = await provider.attempt(video_id, options)
            except Exception as exc:
                reason = exc.reason if isinstance(exc, ProviderFailure) else str(exc)
                report.service_results[provider.name] = ServiceTestResult(
                    success=False,
                    error=reason,
                    response_time_ms=round((time.perf_counter() - started) * 1000, 1),
                )
                continue
            report.service_results[provider.name] = ServiceTestResult(
                success=True,
                transcript_length=len(text),
                response_time_ms=round((time.perf_counter() - started) * 1000, 1),
                preview=f"{text[:100]}..." if text else None,
            )
            if len(text) > 50:
                report.overall_success = True

        report.recommendations = self._recommendations(report)
        return report

    def _recommendations(self, report: ServiceTestReport) -> list[str]:
        working = report.working_services
        if not working:
            return [
                "No transcription services are working. "
                "Check API keys and network connectivity."
            ]
        notes = [f"Working services: {', '.join(working)}"]
        if {"youtube", "youtube-alt"} & set(working):
            notes.append(
                "YouTube captions are working; they are free and should stay first."
            )
        if "transcript-api" in working:
            notes.append("Free transcript APIs are working; good fallback option.")
        paid = [name for name in working if (p := self.registry.get(name)) and p.paid]
        if paid:
            notes.append(
                f"Paid services available: {', '.join(paid)}; "
                "use for videos without captions."
            )
        return notes

    def service_info(
        self, cost_per_minute: dict[str, float] | None = None
    ) -> dict[str, Any]:
        """Catalogue of free and paid providers with setup and cost notes."""
        cost_per_minute = cost_per_minute or {}
        free: dict[str, Any] = {}
        paid: dict[str, Any] = {}
        for provider in self.registry:
            entry: dict[str, Any] = {
                "description": provider.description,
                "configured": provider.is_configured(),
                **_SERVICE_NOTES.get(provider.name, {}),
            }
            if provider.paid:
                rate = cost_per_minute.get(provider.name)
                entry["cost"] = f"${rate:.4f}/minute" if rate is not None else "Paid"
                paid[provider.name] = entry
            else:
                entry["cost"] = "Free"
                free[provider.name] = entry
        return {
            "cascade": [p.name for p in self.registry.cascade()],
            "free_services": free,
            "paid_services": paid,
        }
