"""YouTube Data API v3 client.

Every request goes through the circuit breaker and is accounted in the quota
tracker. HTTP failures are mapped onto the worker's error taxonomy:
- 403 quotaExceeded / dailyLimitExceeded -> YouTubeQuotaExceededError
- 429 or 403 rateLimitExceeded -> YouTubeRateLimitError (honours Retry-After)
- 5xx and network errors -> TransientExternalError
"""

import logging
import re
from dataclasses import dataclass, field, asdict
from typing import Optional

import httpx

from bandhub_worker.config import get_settings
from bandhub_worker.errors import (
    TransientExternalError,
    YouTubeQuotaExceededError,
    YouTubeRateLimitError,
)
from bandhub_worker.monitoring.quota_tracker import QuotaTracker
from bandhub_worker.services.circuit_breaker import CircuitBreaker

logger = logging.getLogger(__name__)

# Only videos from 2020 onwards
DEFAULT_PUBLISHED_AFTER = "2020-01-01T00:00:00Z"
MAX_IDS_PER_REQUEST = 50

QUOTA_REASONS = {"quotaExceeded", "dailyLimitExceeded"}
RATE_LIMIT_REASONS = {"rateLimitExceeded", "userRateLimitExceeded"}

DURATION_PATTERN = re.compile(r"PT(?:(\d+)H)?(?:(\d+)M)?(?:(\d+)S)?")


@dataclass
class YouTubeVideo:
    """Video details as returned by videos.list."""
    id: str
    title: str = ""
    description: str = ""
    published_at: str = ""
    duration: int = 0  # seconds
    thumbnail_url: str = ""
    view_count: int = 0
    like_count: int = 0
    channel_id: str = ""
    channel_title: str = ""

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass
class YouTubeSearchResult:
    videos: list[YouTubeVideo] = field(default_factory=list)
    next_page_token: Optional[str] = None
    total_results: int = 0


def parse_duration(iso_duration: str) -> int:
    """Convert an ISO 8601 duration (PT15M33S) to seconds."""
    match = DURATION_PATTERN.fullmatch(iso_duration or "")
    if not match:
        return 0
    hours, minutes, seconds = (int(part or 0) for part in match.groups())
    return hours * 3600 + minutes * 60 + seconds


def _pick_thumbnail(thumbnails: dict) -> str:
    for size in ("maxres", "high", "medium", "default"):
        url = (thumbnails.get(size) or {}).get("url")
        if url:
            return url
    return ""


def _to_video(item: dict) -> YouTubeVideo:
    snippet = item.get("snippet") or {}
    statistics = item.get("statistics") or {}
    content = item.get("contentDetails") or {}
    return YouTubeVideo(
        id=item["id"],
        title=snippet.get("title", ""),
        description=snippet.get("description", ""),
        published_at=snippet.get("publishedAt", ""),
        duration=parse_duration(content.get("duration", "")),
        thumbnail_url=_pick_thumbnail(snippet.get("thumbnails") or {}),
        view_count=int(statistics.get("viewCount", 0) or 0),
        like_count=int(statistics.get("likeCount", 0) or 0),
        channel_id=snippet.get("channelId", ""),
        channel_title=snippet.get("channelTitle", ""),
    )


class YouTubeClient:
    """Async client for the handful of YouTube endpoints the worker needs."""

    def __init__(
        self,
        api_key: Optional[str] = None,
        breaker: Optional[CircuitBreaker] = None,
        quota: Optional[QuotaTracker] = None,
        http_client: Optional[httpx.AsyncClient] = None,
    ):
        settings = get_settings()
        self.api_key = api_key if api_key is not None else settings.youtube_api_key
        self.breaker = breaker or CircuitBreaker("youtube")
        self.quota = quota or QuotaTracker()
        self._http = http_client or httpx.AsyncClient(
            base_url=settings.youtube_api_base_url,
            timeout=httpx.Timeout(settings.youtube_request_timeout_seconds),
        )

    async def close(self) -> None:
        await self._http.aclose()

    async def _get(self, resource: str, params: dict) -> dict:
        self.quota.log_usage(resource)
        return await self.breaker.call(self._request, resource, params)

    async def _request(self, resource: str, params: dict) -> dict:
        try:
            response = await self._http.get(f"/{resource}", params={**params, "key": self.api_key})
        except httpx.RequestError as e:
            raise TransientExternalError(f"YouTube {resource} request failed: {e}") from e

        if response.status_code in (403, 429):
            reasons = self._error_reasons(response)
            if reasons & QUOTA_REASONS:
                raise YouTubeQuotaExceededError(f"YouTube quota exceeded ({resource})")
            if response.status_code == 429 or reasons & RATE_LIMIT_REASONS:
                retry_after = self._retry_after(response)
                raise YouTubeRateLimitError(
                    f"YouTube rate limit hit ({resource}), retry after {retry_after:.0f}s",
                    retry_after=retry_after,
                )

        if response.status_code >= 500:
            raise TransientExternalError(f"YouTube {resource} returned {response.status_code}")

        response.raise_for_status()
        return response.json()

    @staticmethod
    def _error_reasons(response: httpx.Response) -> set[str]:
        try:
            errors = response.json().get("error", {}).get("errors", [])
        except ValueError:
            return set()
        return {e.get("reason", "") for e in errors}

    @staticmethod
    def _retry_after(response: httpx.Response) -> float:
        try:
            return float(response.headers.get("Retry-After", 60))
        except ValueError:
            return 60.0

    async def _search(self, params: dict) -> YouTubeSearchResult:
        data = await self._get("search", {"part": "snippet", "type": "video", **params})

        video_ids = [
            item["id"]["videoId"]
            for item in data.get("items", [])
            if isinstance(item.get("id"), dict) and item["id"].get("videoId")
        ]
        if not video_ids:
            return YouTubeSearchResult()

        return YouTubeSearchResult(
            videos=await self.get_video_details(video_ids),
            next_page_token=data.get("nextPageToken"),
            total_results=(data.get("pageInfo") or {}).get("totalResults", 0),
        )

    async def search_videos(
        self,
        query: str,
        max_results: int = 50,
        page_token: Optional[str] = None,
        published_after: str = DEFAULT_PUBLISHED_AFTER,
    ) -> YouTubeSearchResult:
        """Search videos by relevance."""
        params = {"q": query, "maxResults": max_results, "order": "relevance", "publishedAfter": published_after}
        if page_token:
            params["pageToken"] = page_token
        return await self._search(params)

    async def get_channel_videos(
        self,
        channel_id: str,
        max_results: int = 50,
        page_token: Optional[str] = None,
        published_after: str = DEFAULT_PUBLISHED_AFTER,
    ) -> YouTubeSearchResult:
        """List a channel's videos, newest first."""
        params = {"channelId": channel_id, "maxResults": max_results, "order": "date", "publishedAfter": published_after}
        if page_token:
            params["pageToken"] = page_token
        return await self._search(params)

    async def get_playlist_videos(
        self,
        playlist_id: str,
        max_results: int = 50,
        page_token: Optional[str] = None,
    ) -> YouTubeSearchResult:
        params = {"part": "snippet", "playlistId": playlist_id, "maxResults": max_results}
        if page_token:
            params["pageToken"] = page_token
        data = await self._get("playlistItems", params)

        video_ids = [
            ((item.get("snippet") or {}).get("resourceId") or {}).get("videoId")
            for item in data.get("items", [])
        ]
        video_ids = [v for v in video_ids if v]
        if not video_ids:
            return YouTubeSearchResult()

        return YouTubeSearchResult(
            videos=await self.get_video_details(video_ids),
            next_page_token=data.get("nextPageToken"),
            total_results=(data.get("pageInfo") or {}).get("totalResults", 0),
        )

    async def get_video_details(self, video_ids: list[str]) -> list[YouTubeVideo]:
        """Fetch snippet, duration and statistics, 50 ids per request."""
        videos: list[YouTubeVideo] = []
        for i in range(0, len(video_ids), MAX_IDS_PER_REQUEST):
            chunk = video_ids[i:i + MAX_IDS_PER_REQUEST]
            data = await self._get("videos", {
                "part": "snippet,contentDetails,statistics",
                "id": ",".join(chunk),
            })
            videos.extend(_to_video(item) for item in data.get("items", []))
        return videos
