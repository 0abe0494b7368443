"""Unit tests for the transcript engine and provider registry."""

from __future__ import annotations

from typing import TYPE_CHECKING

import pytest

from tests.conftest import LONG_TRANSCRIPT
from video_research.exceptions import ProviderTimeoutError
from video_research.models import QualityClass
from video_research.quota import QuotaTracker
from video_research.rate_limiter import AdaptiveRateLimiter
from video_research.transcripts import (
    AcquireOptions,
    ProviderRegistry,
    TranscriptEngine,
    build_registry,
    clean_caption_text,
)

if TYPE_CHECKING:
    from collections.abc import Callable

    from tests.conftest import FakeProvider
    from video_research.cache import MemoryTranscriptCache
    from video_research.config import Settings


class TestCleanCaptionText:
    def test_strips_cues_and_whitespace(self) -> None:
        assert clean_caption_text("[Music]  Hello \n world [Applause]") == (
            "Hello world"
        )


class TestProviderRegistry:
    """Fixed cascade order, unconfigured providers skipped."""

    def test_cascade_follows_configured_order(
        self, make_provider: Callable[..., FakeProvider]
    ) -> None:
        a, b, c = (make_provider(n, text="x") for n in ("a", "b", "c"))
        registry = ProviderRegistry([a, b, c], order=["c", "a", "b"])
        assert [p.name for p in registry.cascade()] == ["c", "a", "b"]

    def test_default_order_is_registration_order(
        self, make_provider: Callable[..., FakeProvider]
    ) -> None:
        registry = ProviderRegistry([make_provider("b"), make_provider("a")])
        assert registry.order == ["b", "a"]

    def test_unconfigured_and_unknown_skipped(
        self, make_provider: Callable[..., FakeProvider]
    ) -> None:
        registry = ProviderRegistry(
            [make_provider("free"), make_provider("paid", configured=False)],
            order=["paid", "missing", "free"],
        )
        assert [p.name for p in registry.cascade()] == ["free"]

    def test_duplicate_name_rejected(
        self, make_provider: Callable[..., FakeProvider]
    ) -> None:
        with pytest.raises(ValueError, match="already registered"):
            ProviderRegistry([make_provider("a"), make_provider("a")])

    def test_resolve_named_provider(
        self, make_provider: Callable[..., FakeProvider]
    ) -> None:
        registry = ProviderRegistry([make_provider("a"), make_provider("b")])
        assert [p.name for p in registry.resolve("b")] == ["b"]
        assert registry.resolve("nope") == []
        assert "a" in registry


class TestBuildRegistry:
    def test_default_cascade_without_paid_keys(self, settings: Settings) -> None:
        registry = build_registry(settings)
        assert registry.order == settings.transcription.providers
        assert [p.name for p in registry.cascade()] == [
            "youtube",
            "youtube-alt",
            "transcript-api",
        ]

    def test_paid_provider_enabled_by_key(self, settings: Settings) -> None:
        settings.transcription.deepgram_api_key = "dg-key"
        names = [p.name for p in build_registry(settings).cascade()]
        assert names[-1] == "deepgram"


class TestAcquire:
    """Cache first, then providers in order, never raising."""

    @pytest.mark.asyncio()
    async def test_cache_hit_skips_providers(
        self,
        memory_cache: MemoryTranscriptCache,
        make_provider: Callable[..., FakeProvider],
    ) -> None:
        memory_cache.set("abc123", LONG_TRANSCRIPT, "youtube")
        provider = make_provider("youtube", text="fresh text " * 20)
        engine = TranscriptEngine(ProviderRegistry([provider]), cache=memory_cache)

        record = await engine.acquire("abc123", AcquireOptions(use_cache=True))

        assert record.text == LONG_TRANSCRIPT
        assert record.from_cache is True
        assert record.method == "youtube"
        assert record.cached_at is not None
        assert provider.calls == []

    @pytest.mark.asyncio()
    async def test_first_success_wins(
        self, make_provider: Callable[..., FakeProvider]
    ) -> None:
        first = make_provider("youtube")
        second = make_provider("transcript-api", text=LONG_TRANSCRIPT)
        third = make_provider("deepgram", text="unused " * 20)
        engine = TranscriptEngine(ProviderRegistry([first, second, third]))

        record = await engine.acquire("abc123")

        assert record.text == LONG_TRANSCRIPT
        assert record.method == "transcript-api"
        assert record.length_chars == len(LONG_TRANSCRIPT)
        assert record.quality_class is QualityClass.HIGH
        assert record.from_cache is False
        assert [a.provider for a in record.attempts] == ["youtube"]
        assert third.calls == []

    @pytest.mark.asyncio()
    async def test_too_short_text_counts_as_failure(
        self, make_provider: Callable[..., FakeProvider]
    ) -> None:
        short = make_provider("youtube", text="too short")
        good = make_provider("youtube-alt", text=LONG_TRANSCRIPT)
        engine = TranscriptEngine(ProviderRegistry([short, good]))

        record = await engine.acquire("abc123", AcquireOptions(min_length=50))

        assert record.method == "youtube-alt"
        assert "too short" in record.attempts[0].error

    @pytest.mark.asyncio()
    async def test_all_fail_returns_record_without_text(
        self, make_provider: Callable[..., FakeProvider]
    ) -> None:
        engine = TranscriptEngine(
            ProviderRegistry(
                [
                    make_provider("youtube"),
                    make_provider(
                        "assemblyai", error=ProviderTimeoutError("assemblyai", "slow")
                    ),
                    make_provider("deepgram", error=RuntimeError("unexpected")),
                ]
            )
        )

        record = await engine.acquire("abc123")

        assert record.text is None
        assert record.method is None
        assert record.succeeded is False
        assert [(a.provider, a.error) for a in record.attempts] == [
            ("youtube", "no transcript available"),
            ("assemblyai", "slow"),
            ("deepgram", "unexpected"),
        ]

    @pytest.mark.asyncio()
    async def test_unknown_service_yields_failure_record(
        self, make_provider: Callable[..., FakeProvider]
    ) -> None:
        provider = make_provider("youtube", text=LONG_TRANSCRIPT)
        engine = TranscriptEngine(ProviderRegistry([provider]))

        record = await engine.acquire(
            "abc123", AcquireOptions(preferred_service="rev")
        )

        assert record.text is None
        assert record.attempts[0].provider == "rev"
        assert provider.calls == []

    @pytest.mark.asyncio()
    async def test_preferred_service_only(
        self, make_provider: Callable[..., FakeProvider]
    ) -> None:
        first = make_provider("youtube", text=LONG_TRANSCRIPT)
        second = make_provider("deepgram", text=LONG_TRANSCRIPT)
        engine = TranscriptEngine(ProviderRegistry([first, second]))

        record = await engine.acquire(
            "abc123", AcquireOptions(preferred_service="deepgram")
        )

        assert record.method == "deepgram"
        assert first.calls == []

    @pytest.mark.asyncio()
    async def test_success_is_cached_and_counted(
        self,
        memory_cache: MemoryTranscriptCache,
        make_provider: Callable[..., FakeProvider],
    ) -> None:
        quota = QuotaTracker()
        engine = TranscriptEngine(
            ProviderRegistry([make_provider("youtube", text=LONG_TRANSCRIPT)]),
            cache=memory_cache,
            quota=quota,
        )

        await engine.acquire("abc123")

        entry = memory_cache.get("abc123")
        assert entry is not None
        assert entry.method == "youtube"
        assert quota.status().transcripts_by_method == {"youtube": 1}

    @pytest.mark.asyncio()
    async def test_use_cache_false_bypasses_cache(
        self,
        memory_cache: MemoryTranscriptCache,
        make_provider: Callable[..., FakeProvider],
    ) -> None:
        memory_cache.set("abc123", "cached " * 20, "youtube")
        provider = make_provider("youtube-alt", text=LONG_TRANSCRIPT)
        engine = TranscriptEngine(ProviderRegistry([provider]), cache=memory_cache)

        record = await engine.acquire("abc123", AcquireOptions(use_cache=False))

        assert record.method == "youtube-alt"
        assert provider.calls == ["abc123"]
        entry = memory_cache.get("abc123")
        assert entry is not None
        assert entry.method == "youtube"

    @pytest.mark.asyncio()
    async def test_cache_errors_do_not_break_acquisition(
        self, make_provider: Callable[..., FakeProvider]
    ) -> None:
        class BrokenCache:
            def get(self, video_id: str) -> None:
                raise OSError("disk gone")

            def set(self, *args: object, **kwargs: object) -> bool:
                raise OSError("disk gone")

        engine = TranscriptEngine(
            ProviderRegistry([make_provider("youtube", text=LONG_TRANSCRIPT)]),
            cache=BrokenCache(),  # type: ignore[arg-type]
        )
        record = await engine.acquire("abc123")
        assert record.text == LONG_TRANSCRIPT

    @pytest.mark.asyncio()
    async def test_outcomes_feed_rate_limiter(
        self, make_provider: Callable[..., FakeProvider]
    ) -> None:
        limiter = AdaptiveRateLimiter()
        engine = TranscriptEngine(
            ProviderRegistry(
                [make_provider("youtube"), make_provider("deepgram", text="short")]
            ),
            rate_limiter=limiter,
        )
        await engine.acquire("abc123")
        assert limiter.error_rate("youtube") == 1.0
        # A too-short transcript is still a successful provider call.
        assert limiter.error_rate("deepgram") == 0.0


class TestDiagnostics:
    @pytest.mark.asyncio()
    async def test_service_report(
        self, make_provider: Callable[..., FakeProvider]
    ) -> None:
        engine = TranscriptEngine(
            ProviderRegistry(
                [
                    make_provider("youtube", text=LONG_TRANSCRIPT),
                    make_provider("deepgram", paid=True),
                ]
            )
        )
        report = await engine.test_services("abc123")
        assert report.overall_success is True
        assert report.working_services == ["youtube"]
        assert report.service_results["deepgram"].error == "no transcript available"
        assert report.service_results["youtube"].preview.endswith("...")
        assert any("YouTube captions" in note for note in report.recommendations)

    @pytest.mark.asyncio()
    async def test_nothing_works(
        self, make_provider: Callable[..., FakeProvider]
    ) -> None:
        engine = TranscriptEngine(ProviderRegistry([make_provider("youtube")]))
        report = await engine.test_services()
        assert report.overall_success is False
        assert "No transcription services are working" in report.recommendations[0]

    def test_service_info(self, settings: Settings) -> None:
        engine = TranscriptEngine(build_registry(settings))
        info = engine.service_info(settings.transcription.cost_per_minute_usd)
        assert set(info["free_services"]) == {
            "youtube",
            "youtube-alt",
            "transcript-api",
        }
        assert info["paid_services"]["deepgram"]["cost"] == "$0.0125/minute"
        assert info["paid_services"]["deepgram"]["configured"] is False
        assert info["free_services"]["youtube"]["cost"] == "Free"
