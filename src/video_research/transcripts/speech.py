"""Paid speech-to-text providers.

All three resolve an audio URL for the video first (falling back to the
watch URL, which some services accept directly), then hand it to their
service. Each successful attempt records estimated minutes on the run's
``QuotaTracker``; an attempt that would pass the paid-minutes ceiling is
refused before any request is made.
"""

from __future__ import annotations

import math
from abc import abstractmethod
from typing import TYPE_CHECKING, Any

import httpx
import structlog
from tenacity import (
    AsyncRetrying,
    RetryError,
    retry_if_result,
    stop_after_attempt,
    wait_fixed,
)

from video_research.exceptions import (
    ProviderFailure,
    ProviderTimeoutError,
    ProviderUnavailableError,
)
from video_research.transcripts.base import AttemptOptions, TranscriptProvider

if TYPE_CHECKING:
    from video_research.quota import QuotaTracker

logger: structlog.stdlib.BoundLogger = structlog.get_logger(__name__)

ASSEMBLYAI_BASE_URL = "https://api.assemblyai.com/v2"
DEEPGRAM_BASE_URL = "https://api.deepgram.com/v1"
OPENAI_BASE_URL = "https://api.openai.com/v1"
DEFAULT_AUDIO_RESOLVER_URL = "https://api.cobalt.tools/api/json"

_ASSEMBLYAI_TERMINAL = frozenset({"completed", "error"})


def watch_url(video_id: str) -> str:
    return f"https://www.youtube.com/watch?v={video_id}"


def estimate_minutes(duration_seconds: int | None) -> float:
    """Billable minutes for a video; unknown durations count as zero."""
    if not duration_seconds:
        return 0.0
    return float(math.ceil(duration_seconds / 60))


async def resolve_audio_url(
    client: httpx.AsyncClient,
    video_id: str,
    resolver_url: str = DEFAULT_AUDIO_RESOLVER_URL,
    timeout: float = 15.0,
) -> str:
    """Ask the audio extraction service for a direct audio URL.

    Falls back to the plain watch URL when the service fails.
    """
    fallback = watch_url(video_id)
    try:
        response = await client.post(
            resolver_url,
            json={
                "url": fallback,
                "vQuality": "max",
                "aFormat": "mp3",
                "isAudioOnly": True,
            },
            headers={"Accept": "application/json"},
            timeout=timeout,
        )
        response.raise_for_status()
        url = response.json().get("url")
    except (httpx.HTTPError, ValueError, AttributeError) as exc:
        logger.debug("audio_url_resolution_failed", video_id=video_id, error=str(exc))
        return fallback
    return str(url) if url else fallback


class SpeechToTextProvider(TranscriptProvider):
    """Shared credential, budget and error handling for paid providers."""

    paid = True
    base_url: str

    def __init__(
        self,
        api_key: str | None,
        client: httpx.AsyncClient | None = None,
        quota: QuotaTracker | None = None,
        audio_resolver_url: str = DEFAULT_AUDIO_RESOLVER_URL,
        base_url: str | None = None,
    ) -> None:
        self._api_key = api_key
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(follow_redirects=True)
        self._quota = quota
        self._audio_resolver_url = audio_resolver_url
        if base_url:
            self.base_url = base_url

    def is_configured(self) -> bool:
        return bool(self._api_key)

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    @abstractmethod
    async def _transcribe(self, audio_url: str, options: AttemptOptions) -> str: ...

    async def attempt(self, video_id: str, options: AttemptOptions) -> str:
        if not self._api_key:
            raise ProviderUnavailableError(self.name, "not configured")

        minutes = estimate_minutes(options.duration_seconds)
        if self._quota is not None and not self._quota.can_spend_minutes(minutes):
            raise ProviderFailure(
                self.name, "paid transcription minute ceiling reached"
            )

        audio_url = await resolve_audio_url(
            self._client, video_id, self._audio_resolver_url, options.timeout
        )
        try:
            text = await self._transcribe(audio_url, options)
        except httpx.TimeoutException as exc:
            raise ProviderTimeoutError(self.name, "request timed out") from exc
        except httpx.HTTPStatusError as exc:
            raise ProviderFailure(
                self.name, f"HTTP {exc.response.status_code}"
            ) from exc
        except httpx.HTTPError as exc:
            raise ProviderFailure(self.name, str(exc) or type(exc).__name__) from exc

        if self._quota is not None:
            self._quota.record_paid_minutes(self.name, minutes)
        return text.strip()


class AssemblyAIProvider(SpeechToTextProvider):
    """Submit-and-poll transcription."""

    name = "assemblyai"
    description = "AI-powered transcription with speaker detection"
    base_url = ASSEMBLYAI_BASE_URL

    def __init__(
        self,
        api_key: str | None,
        client: httpx.AsyncClient | None = None,
        quota: QuotaTracker | None = None,
        audio_resolver_url: str = DEFAULT_AUDIO_RESOLVER_URL,
        base_url: str | None = None,
        poll_interval: float = 5.0,
        max_poll_attempts: int = 60,
    ) -> None:
        super().__init__(api_key, client, quota, audio_resolver_url, base_url)
        self._poll_interval = poll_interval
        self._max_poll_attempts = max_poll_attempts

    def _headers(self) -> dict[str, str]:
        return {"Authorization": self._api_key or ""}

    async def _poll_once(self, transcript_id: str, timeout: float) -> dict[str, Any]:
        response = await self._client.get(
            f"{self.base_url}/transcript/{transcript_id}",
            headers=self._headers(),
            timeout=timeout,
        )
        response.raise_for_status()
        payload: dict[str, Any] = response.json()
        return payload

    async def _transcribe(self, audio_url: str, options: AttemptOptions) -> str:
        submitted = await self._client.post(
            f"{self.base_url}/transcript",
            json={
                "audio_url": audio_url,
                "speaker_labels": options.include_speaker_labels,
            },
            headers=self._headers(),
            timeout=options.timeout,
        )
        submitted.raise_for_status()
        transcript_id = submitted.json().get("id")
        if not transcript_id:
            raise ProviderFailure(self.name, "no transcript id returned")

        retrying = AsyncRetrying(
            retry=retry_if_result(
                lambda payload: payload.get("status") not in _ASSEMBLYAI_TERMINAL
            ),
            stop=stop_after_attempt(self._max_poll_attempts),
            wait=wait_fixed(self._poll_interval),
        )
        try:
            payload = await retrying(self._poll_once, transcript_id, options.timeout)
        except RetryError as exc:
            raise ProviderTimeoutError(self.name, "transcription timeout") from exc

        if payload.get("status") == "error":
            raise ProviderFailure(
                self.name, str(payload.get("error") or "transcription failed")
            )
        return str(payload.get("text") or "")


class DeepgramProvider(SpeechToTextProvider):
    """Pre-recorded transcription of a remote URL."""

    name = "deepgram"
    description = "Speech recognition (nova-2)"
    base_url = DEEPGRAM_BASE_URL

    async def _transcribe(self, audio_url: str, options: AttemptOptions) -> str:
        response = await self._client.post(
            f"{self.base_url}/listen",
            json={"url": audio_url},
            params={
                "punctuate": "true",
                "paragraphs": "true",
                "utterances": str(options.include_speaker_labels).lower(),
                "model": "nova-2",
            },
            headers={"Authorization": f"Token {self._api_key}"},
            timeout=options.timeout,
        )
        response.raise_for_status()
        try:
            return str(
                response.json()["results"]["channels"][0]["alternatives"][0][
                    "transcript"
                ]
            )
        except (KeyError, IndexError, TypeError, ValueError) as exc:
            raise ProviderFailure(self.name, "unexpected response shape") from exc


class WhisperProvider(SpeechToTextProvider):
    """Download the audio and upload it to the OpenAI transcription endpoint."""

    name = "whisperapi"
    description = "OpenAI Whisper API"
    base_url = OPENAI_BASE_URL

    async def _transcribe(self, audio_url: str, options: AttemptOptions) -> str:
        audio = await self._client.get(audio_url, timeout=options.timeout)
        audio.raise_for_status()
        response = await self._client.post(
            f"{self.base_url}/audio/transcriptions",
            files={"file": ("audio.mp3", audio.content, "audio/mpeg")},
            data={"model": "whisper-1", "response_format": "text"},
            headers={"Authorization": f"Bearer {self._api_key}"},
            timeout=options.timeout,
        )
        response.raise_for_status()
        return response.text
