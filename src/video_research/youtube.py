"""YouTube Data API v3 client for discovery and detail lookups.

Every request is charged against the run's ``QuotaTracker`` before it is
sent, so a run stops cleanly at the configured daily limit instead of
hitting the provider's hard quota error. HTTP and transport failures are
mapped onto the package exception taxonomy at this boundary.
"""

from __future__ import annotations

import re
from typing import TYPE_CHECKING, Any

import httpx
import structlog
from pydantic import ValidationError

from video_research.exceptions import (
    BadRequestError,
    ConfigurationError,
    DiscoveryError,
    NetworkTimeoutError,
    NotFoundError,
    QuotaExceededError,
    VideoResearchError,
)
from video_research.models import (
    ChannelInfo,
    ConnectionCheck,
    VideoCandidate,
    VideoDetail,
)
from video_research.queries import simplify_term
from video_research.quota import Operation, QuotaTracker

if TYPE_CHECKING:
    from collections.abc import Iterable

    from video_research.config import Settings

logger: structlog.stdlib.BoundLogger = structlog.get_logger(__name__)

DEFAULT_BASE_URL = "https://www.googleapis.com/youtube/v3"
TRENDING_KEYWORDS: tuple[str, ...] = (
    "marketing",
    "business",
    "entrepreneur",
    "startup",
    "growth",
)
_PEOPLE_AND_BLOGS_CATEGORY = "22"
_ISO_DURATION_RE = re.compile(
    r"^P(?:(?P<days>\d+)D)?"
    r"(?:T(?:(?P<hours>\d+)H)?(?:(?P<minutes>\d+)M)?(?:(?P<seconds>\d+)S)?)?$"
)
_QUOTA_REASONS = {"quotaExceeded", "dailyLimitExceeded", "rateLimitExceeded"}
_KEY_REASONS = {"keyInvalid", "keyExpired", "ipRefererBlocked", "forbidden"}


def parse_iso_duration(value: str | None) -> int | None:
    """Convert an ISO-8601 duration such as ``PT1H2M3S`` to seconds.

    Returns None for missing or unparsable values.
    """
    if not value:
        return None
    match = _ISO_DURATION_RE.match(value)
    if match is None:
        return None
    parts = {k: int(v) if v else 0 for k, v in match.groupdict().items()}
    return (
        parts["days"] * 86400
        + parts["hours"] * 3600
        + parts["minutes"] * 60
        + parts["seconds"]
    )


def _to_int(value: Any) -> int:
    try:
        return int(value or 0)
    except (TypeError, ValueError):
        return 0


def _thumbnails(snippet: dict[str, Any]) -> dict[str, str]:
    raw = snippet.get("thumbnails") or {}
    return {
        name: str(thumb.get("url", ""))
        for name, thumb in raw.items()
        if isinstance(thumb, dict)
    }


def _error_details(response: httpx.Response) -> tuple[str, set[str]]:
    try:
        payload = response.json()
    except ValueError:
        return response.text[:200] or response.reason_phrase, set()
    error = payload.get("error") if isinstance(payload, dict) else None
    if not isinstance(error, dict):
        return response.reason_phrase, set()
    reasons = {
        str(item.get("reason", ""))
        for item in error.get("errors", [])
        if isinstance(item, dict)
    }
    return str(error.get("message", response.reason_phrase)), reasons


def _raise_for_status(response: httpx.Response) -> None:
    if response.is_success:
        return
    message, reasons = _error_details(response)
    status = response.status_code
    lowered = message.lower()

    if reasons & _QUOTA_REASONS or (status == 403 and "quota" in lowered):
        raise QuotaExceededError(
            "YouTube API quota exceeded. Try again tomorrow or upgrade your quota."
        )
    if reasons & _KEY_REASONS or (status in (400, 403) and "key" in lowered):
        raise ConfigurationError(
            "Invalid YouTube API key. Check VIDEO_RESEARCH_YOUTUBE__API_KEY "
            "or YOUTUBE_API_KEY."
        )
    if status == 403:
        raise ConfigurationError(f"YouTube API access denied: {message}")
    if status == 400:
        raise BadRequestError(f"Invalid request parameters: {message}")
    if status == 404:
        raise NotFoundError(message)
    raise DiscoveryError(f"YouTube API error {status}: {message}")


class YouTubeClient:
    """Async client for the search, videos and channels endpoints.

    Args:
        api_key: YouTube Data API key. Requests raise ``ConfigurationError``
            when it is missing.
        quota: Run-scoped quota tracker; a private one is created if omitted.
        client: Optional ``httpx.AsyncClient`` (injected in tests).
    """

    def __init__(
        self,
        api_key: str | None,
        quota: QuotaTracker | None = None,
        base_url: str = DEFAULT_BASE_URL,
        search_timeout: float = 15.0,
        detail_timeout: float = 10.0,
        max_results_cap: int = 50,
        region_code: str = "US",
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self._api_key = api_key
        self.quota = quota or QuotaTracker()
        self._base_url = base_url.rstrip("/")
        self._search_timeout = search_timeout
        self._detail_timeout = detail_timeout
        self._max_results_cap = max_results_cap
        self._region_code = region_code
        self._client = client or httpx.AsyncClient()

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        quota: QuotaTracker,
        client: httpx.AsyncClient | None = None,
    ) -> YouTubeClient:
        yt = settings.youtube
        return cls(
            api_key=yt.api_key,
            quota=quota,
            base_url=yt.base_url,
            search_timeout=yt.search_timeout,
            detail_timeout=yt.detail_timeout,
            max_results_cap=yt.max_results_cap,
            region_code=yt.region_code,
            client=client,
        )

    @property
    def has_api_key(self) -> bool:
        return bool(self._api_key)

    async def aclose(self) -> None:
        await self._client.aclose()

    async def _get(
        self,
        endpoint: str,
        params: dict[str, Any],
        operation: Operation,
        timeout: float,
    ) -> dict[str, Any]:
        if not self._api_key:
            raise ConfigurationError(
                "YouTube API key not configured. Set YOUTUBE_API_KEY or "
                "VIDEO_RESEARCH_YOUTUBE__API_KEY."
            )
        self.quota.charge(operation)
        try:
            response = await self._client.get(
                f"{self._base_url}/{endpoint}",
                params={**params, "key": self._api_key},
                timeout=timeout,
            )
        except httpx.TimeoutException as exc:
            raise NetworkTimeoutError(f"{endpoint} request timed out") from exc
        except httpx.TransportError as exc:
            raise DiscoveryError(f"{endpoint} request failed: {exc}") from exc

        _raise_for_status(response)
        try:
            payload = response.json()
        except ValueError as exc:
            raise DiscoveryError(f"{endpoint} returned a non-JSON body") from exc
        if not isinstance(payload, dict):
            raise DiscoveryError(f"{endpoint} returned an unexpected payload")
        return payload

    # ------------------------------------------------------------------
    # Search
    # ------------------------------------------------------------------

    async def _search_once(self, query: str, max_results: int) -> list[VideoCandidate]:
        payload = await self._get(
            "search",
            {
                "q": query,
                "part": "snippet",
                "type": "video",
                "maxResults": max_results,
                "order": "relevance",
            },
            Operation.SEARCH,
            self._search_timeout,
        )
        return self._parse_search_items(payload.get("items") or [])

    @staticmethod
    def _parse_search_items(items: Iterable[Any]) -> list[VideoCandidate]:
        candidates: list[VideoCandidate] = []
        for item in items:
            if not isinstance(item, dict):
                continue
            video_id = (item.get("id") or {}).get("videoId")
            if not video_id:
                continue
            snippet = item.get("snippet") or {}
            try:
                candidate = VideoCandidate(
                    id=str(video_id),
                    title=str(snippet.get("title", "")),
                    description=str(snippet.get("description", "")),
                    channel_title=str(snippet.get("channelTitle", "")),
                    channel_id=str(snippet.get("channelId", "")),
                    published_at=snippet.get("publishedAt") or None,
                    thumbnails=_thumbnails(snippet),
                )
            except ValidationError as exc:
                raise DiscoveryError(
                    f"search returned a malformed item for {video_id}"
                ) from exc
            candidates.append(candidate)
        return candidates

    async def search(self, term: str, max_results: int = 15) -> list[VideoCandidate]:
        """Search for videos matching ``term``.

        On zero results, or on a network timeout, the search is retried
        exactly once with the first word of ``term``.

        Args:
            term: Non-empty search phrase.
            max_results: Positive result count; capped at 50.

        Returns:
            Candidates in provider relevance order (possibly empty).

        Raises:
            ValueError: If ``term`` is blank or ``max_results`` is not positive.
            ConfigurationError: Missing or rejected API key.
            QuotaExceededError: Quota exhausted.
            BadRequestError: Parameters rejected by the provider.
            NetworkTimeoutError: Both the original and simplified calls timed out.
        """
        term = term.strip()
        if not term:
            raise ValueError("search term must be non-empty")
        if max_results <= 0:
            raise ValueError("max_results must be positive")
        max_results = min(max_results, self._max_results_cap)

        simplified = simplify_term(term)
        try:
            results = await self._search_once(term, max_results)
        except NetworkTimeoutError:
            retry_term = simplified or term
            logger.warning(
                "search_timeout_retry_simplified", term=term, retry_term=retry_term
            )
            return await self._search_once(retry_term, max_results)

        if results or simplified is None:
            logger.info("search_completed", term=term, results=len(results))
            return results

        logger.info("search_retry_simplified", term=term, retry_term=simplified)
        results = await self._search_once(simplified, max_results)
        logger.info(
            "search_completed", term=simplified, results=len(results), simplified=True
        )
        return results

    async def channel_videos(
        self, channel_id: str, max_results: int = 20
    ) -> list[VideoCandidate]:
        """Most recent uploads of a channel."""
        payload = await self._get(
            "search",
            {
                "channelId": channel_id,
                "part": "snippet",
                "type": "video",
                "maxResults": min(max_results, self._max_results_cap),
                "order": "date",
            },
            Operation.SEARCH,
            self._search_timeout,
        )
        return self._parse_search_items(payload.get("items") or [])

    # ------------------------------------------------------------------
    # Details
    # ------------------------------------------------------------------

    @staticmethod
    def _parse_video(item: dict[str, Any], video_id: str | None = None) -> VideoDetail:
        snippet = item.get("snippet") or {}
        stats = item.get("statistics") or {}
        content = item.get("contentDetails") or {}
        duration = content.get("duration")
        try:
            return VideoDetail(
                id=video_id or str(item.get("id", "")),
                title=str(snippet.get("title", "")),
                description=str(snippet.get("description", "")),
                channel_title=str(snippet.get("channelTitle", "")),
                channel_id=str(snippet.get("channelId", "")),
                published_at=snippet.get("publishedAt") or None,
                thumbnails=_thumbnails(snippet),
                view_count=_to_int(stats.get("viewCount")),
                like_count=_to_int(stats.get("likeCount")),
                comment_count=_to_int(stats.get("commentCount")),
                duration=duration,
                duration_seconds=parse_iso_duration(duration),
                tags=[str(tag) for tag in snippet.get("tags") or []],
            )
        except ValidationError as exc:
            raise DiscoveryError(
                f"video details malformed for {video_id or item.get('id')}"
            ) from exc

    async def fetch_detail(self, video_id: str) -> VideoDetail:
        """Fetch statistics and content details for one video.

        Raises:
            NotFoundError: If the id no longer resolves.
        """
        payload = await self._get(
            "videos",
            {"id": video_id, "part": "snippet,statistics,contentDetails"},
            Operation.VIDEO,
            self._detail_timeout,
        )
        items = payload.get("items") or []
        if not items:
            raise NotFoundError(f"Video not found: {video_id}")
        return self._parse_video(items[0], video_id)

    async def fetch_channel(self, channel_id: str) -> ChannelInfo:
        """Fetch channel metadata and statistics.

        Raises:
            NotFoundError: If the channel does not exist.
        """
        payload = await self._get(
            "channels",
            {"id": channel_id, "part": "snippet,statistics"},
            Operation.CHANNEL,
            self._detail_timeout,
        )
        items = payload.get("items") or []
        if not items:
            raise NotFoundError(f"Channel not found: {channel_id}")
        snippet = items[0].get("snippet") or {}
        stats = items[0].get("statistics") or {}
        return ChannelInfo(
            id=channel_id,
            title=str(snippet.get("title", "")),
            description=str(snippet.get("description", "")),
            subscriber_count=_to_int(stats.get("subscriberCount")),
            video_count=_to_int(stats.get("videoCount")),
            view_count=_to_int(stats.get("viewCount")),
        )

    async def trending(
        self,
        topic: str,
        region: str | None = None,
        keywords: Iterable[str] = TRENDING_KEYWORDS,
    ) -> list[VideoDetail]:
        """Most-popular chart filtered to videos mentioning the topic.

        Returns an empty list on any non-quota failure.
        """
        needles = [topic.lower(), *(k.lower() for k in keywords)]
        try:
            payload = await self._get(
                "videos",
                {
                    "part": "snippet,statistics",
                    "chart": "mostPopular",
                    "regionCode": region or self._region_code,
                    "maxResults": self._max_results_cap,
                    "videoCategoryId": _PEOPLE_AND_BLOGS_CATEGORY,
                },
                Operation.VIDEO,
                self._search_timeout,
            )
        except QuotaExceededError:
            raise
        except VideoResearchError as exc:
            logger.warning("trending_fetch_failed", topic=topic, error=str(exc))
            return []

        try:
            videos = [
                self._parse_video(item)
                for item in payload.get("items") or []
                if isinstance(item, dict)
            ]
        except DiscoveryError as exc:
            logger.warning("trending_parse_failed", topic=topic, error=str(exc))
            return []
        return [
            video
            for video in videos
            if any(n in f"{video.title} {video.description}".lower() for n in needles)
        ]

    async def validate_connection(self) -> ConnectionCheck:
        """Probe the search endpoint; never raises."""
        if not self._api_key:
            return ConnectionCheck(
                success=False,
                error="No API key configured",
                message="YouTube API key missing. Set YOUTUBE_API_KEY.",
            )
        try:
            results = await self._search_once("marketing", 5)
        except VideoResearchError as exc:
            return ConnectionCheck(
                success=False, error=str(exc), message="YouTube API test failed"
            )
        return ConnectionCheck(
            success=True,
            message=f"YouTube API working. Found {len(results)} videos for test query.",
            videos_found=len(results),
            sample_titles=[video.title for video in results[:3]],
        )
