"""Free caption providers backed by ``youtube-transcript-api``.

The library is synchronous, so each fetch runs in a worker thread bounded
by the attempt timeout.
"""

from __future__ import annotations

import asyncio
from abc import abstractmethod
from typing import TYPE_CHECKING, Any

from youtube_transcript_api import (
    CouldNotRetrieveTranscript,
    NoTranscriptFound,
    YouTubeTranscriptApi,
)

from video_research.exceptions import ProviderFailure, ProviderTimeoutError
from video_research.transcripts.base import (
    AttemptOptions,
    TranscriptProvider,
    clean_caption_text,
)

if TYPE_CHECKING:
    from collections.abc import Callable, Iterable


def _join_snippets(snippets: Iterable[Any]) -> str:
    return clean_caption_text(" ".join(getattr(s, "text", "") for s in snippets))


class _CaptionProvider(TranscriptProvider):
    def __init__(self, api: YouTubeTranscriptApi | None = None) -> None:
        self._api = api or YouTubeTranscriptApi()

    @abstractmethod
    def _fetch(self, video_id: str) -> str:
        """Return cleaned caption text for ``video_id``."""

    async def _run(self, fn: Callable[[], str], options: AttemptOptions) -> str:
        try:
            text = await asyncio.wait_for(asyncio.to_thread(fn), options.timeout)
        except TimeoutError as exc:
            raise ProviderTimeoutError(
                self.name, f"timed out after {options.timeout}s"
            ) from exc
        except CouldNotRetrieveTranscript as exc:
            # The library's messages are long multi-paragraph help texts.
            raise ProviderFailure(self.name, type(exc).__name__) from exc
        if not text:
            raise ProviderFailure(self.name, "no transcript available")
        return text

    async def attempt(self, video_id: str, options: AttemptOptions) -> str:
        return await self._run(lambda: self._fetch(video_id), options)


class YouTubeCaptionProvider(_CaptionProvider):
    """Native captions in the default (English) language."""

    name = "youtube"
    description = "YouTube built-in captions"

    def _fetch(self, video_id: str) -> str:
        return _join_snippets(self._api.fetch(video_id))


class YouTubeAltCaptionProvider(_CaptionProvider):
    """Explicit English captions, then auto-generated ``en-US``/``en`` ones."""

    name = "youtube-alt"
    description = "Alternative YouTube caption extraction"

    def _fetch(self, video_id: str) -> str:
        transcripts = self._api.list(video_id)
        try:
            transcript = transcripts.find_manually_created_transcript(["en"])
        except NoTranscriptFound:
            transcript = transcripts.find_generated_transcript(["en-US", "en"])
        return _join_snippets(transcript.fetch())
