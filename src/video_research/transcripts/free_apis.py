"""Third-party free transcript endpoints, tried in configured order."""

from __future__ import annotations

import re
from typing import TYPE_CHECKING, Any

import httpx
import structlog

from video_research.exceptions import ProviderFailure
from video_research.transcripts.base import AttemptOptions, TranscriptProvider

if TYPE_CHECKING:
    from video_research.config import FreeTranscriptEndpoint

logger: structlog.stdlib.BoundLogger = structlog.get_logger(__name__)

_USER_AGENT = "Mozilla/5.0 (compatible; TranscriptBot/1.0)"
_MIN_FREE_API_LENGTH = 50
_WHITESPACE_RE = re.compile(r"\s+")


def parse_transcript_payload(payload: Any) -> str | None:
    """Extract text from the ``transcript`` field of a free-API response.

    The field may be a plain string or a list of segments, where each
    segment is either a string or an object with a ``text`` key.
    """
    if isinstance(payload, dict):
        payload = payload.get("transcript")
    if isinstance(payload, str):
        return payload
    if isinstance(payload, list):
        parts = [
            str(item.get("text", "")) if isinstance(item, dict) else str(item)
            for item in payload
        ]
        return " ".join(parts)
    return None


class FreeTranscriptAPIProvider(TranscriptProvider):
    """Try each free endpoint until one returns more than 50 characters."""

    name = "transcript-api"
    description = "Third-party free transcript APIs"

    def __init__(
        self,
        endpoints: list[FreeTranscriptEndpoint],
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self._endpoints = endpoints
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(follow_redirects=True)

    def is_configured(self) -> bool:
        return bool(self._endpoints)

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    async def attempt(self, video_id: str, options: AttemptOptions) -> str:
        for endpoint in self._endpoints:
            url = endpoint.url.format(video_id=video_id)
            try:
                response = await self._client.get(
                    url, headers={"User-Agent": _USER_AGENT}, timeout=options.timeout
                )
                response.raise_for_status()
                text = parse_transcript_payload(response.json())
            except (httpx.HTTPError, ValueError) as exc:
                logger.debug(
                    "free_transcript_api_failed", endpoint=endpoint.name, error=str(exc)
                )
                continue
            if text and len(text) > _MIN_FREE_API_LENGTH:
                return _WHITESPACE_RE.sub(" ", text).strip()
            logger.debug("free_transcript_api_empty", endpoint=endpoint.name)
        raise ProviderFailure(self.name, "all free transcript APIs failed")
