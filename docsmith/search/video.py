"""YouTube video search through the YouTube Data API v3.

Every API call is charged against a daily unit quota (100 units per search,
1 unit per video whose statistics are fetched).  Once the quota is spent the
API operation fails fast with ``QuotaExceeded`` and the chain moves on to a
``site:youtube.com`` web search.
"""

from __future__ import annotations

import html
import logging
from typing import Any, Dict, List, Optional
from urllib.parse import parse_qs, urlparse

from bs4 import BeautifulSoup

from docsmith.core.cache import ResultCache
from docsmith.core.data_models import RetrievedItem, SourceType, VideoItem
from docsmith.core.error_recovery import MalformedResponse, ProviderHTTPError, QuotaExceeded
from docsmith.core.fallback import Operation
from docsmith.core.quota import SEARCH_COST, VIDEO_DETAILS_COST, QuotaTracker
from docsmith.search.base import SourceSearch, truncate

logger = logging.getLogger(__name__)

TRANSCRIPT_URL = "https://video.google.com/timedtext"
TRANSCRIPT_TTL = 24 * 60 * 60


def video_id_from_url(url: str) -> str:
    """Extract the video id from a watch or short link."""
    parsed = urlparse(url)
    if parsed.netloc.endswith("youtu.be"):
        return parsed.path.lstrip("/")
    return parse_qs(parsed.query).get("v", [""])[0]


def _count(statistics: Dict[str, Any], key: str) -> int:
    try:
        return int(statistics.get(key) or 0)
    except (TypeError, ValueError):
        return 0


class YouTubeSearch(SourceSearch):
    """YouTube tutorials and walkthroughs."""

    source_type = SourceType.YOUTUBE
    service = "youtube"
    web_fallback_template = "site:youtube.com {query}"

    def __init__(self, *args: Any, quota: Optional[QuotaTracker] = None, **kwargs: Any) -> None:
        super().__init__(*args, **kwargs)
        self.quota = quota or QuotaTracker(
            daily_limit=int(self.app_config.get("quota.youtube_daily_units", 10000)),
            service="youtube",
        )
        self.transcripts = ResultCache(ttl=TRANSCRIPT_TTL)

    def primary_operations(self, query: str, limit: int) -> List[Operation]:
        if not self.is_configured:
            return []
        return [Operation(label="youtube", call=lambda: self.search_videos(query, limit))]

    async def _api_get(self, path: str, params: Dict[str, Any]) -> Dict[str, Any]:
        try:
            data = await self.get_json(path, params={**params, "key": self.api_key})
        except ProviderHTTPError as exc:
            if exc.status == 403:
                raise QuotaExceeded(f"YouTube API refused the request: {exc}", self.service) from exc
            raise
        if not isinstance(data, dict) or not isinstance(data.get("items"), list):
            raise MalformedResponse(f"YouTube {path} response has no items list", self.service)
        return data

    async def search_videos(self, query: str, limit: int) -> List[VideoItem]:
        """Search videos and enrich them with statistics when quota allows."""
        self.quota.consume(SEARCH_COST, "search")
        data = await self._api_get(
            "search",
            {"part": "snippet", "q": query, "type": "video", "maxResults": min(limit, 50)},
        )

        snippets: Dict[str, Dict[str, Any]] = {}
        for entry in data["items"]:
            video_id = (entry.get("id") or {}).get("videoId") if isinstance(entry, dict) else None
            if video_id:
                snippets[video_id] = entry.get("snippet") or {}
        if not snippets:
            return []

        details: Dict[str, Dict[str, Any]] = {}
        cost = len(snippets) * VIDEO_DETAILS_COST
        if self.quota.can_consume(cost):
            self.quota.consume(cost, "videos")
            detail_data = await self._api_get(
                "videos",
                {"part": "statistics,contentDetails,snippet", "id": ",".join(snippets)},
            )
            details = {entry["id"]: entry for entry in detail_data["items"] if isinstance(entry, dict) and "id" in entry}
        else:
            self.logger.warning("Skipping video statistics: %d units needed, %d left", cost, self.quota.remaining)

        items = []
        for video_id, snippet in snippets.items():
            detail = details.get(video_id, {})
            snippet = detail.get("snippet") or snippet
            statistics = detail.get("statistics") or {}
            items.append(
                VideoItem(
                    title=html.unescape(snippet.get("title") or video_id),
                    url=f"https://www.youtube.com/watch?v={video_id}",
                    source_type=self.source_type,
                    snippet=truncate(snippet.get("description") or ""),
                    video_id=video_id,
                    views=_count(statistics, "viewCount"),
                    likes=_count(statistics, "likeCount"),
                    dislikes=_count(statistics, "dislikeCount"),
                    channel_title=snippet.get("channelTitle") or "",
                    duration=(detail.get("contentDetails") or {}).get("duration", ""),
                    published_at=snippet.get("publishedAt") or "",
                )
            )
        return items

    def from_web_item(self, item: RetrievedItem) -> RetrievedItem:
        return VideoItem(
            title=item.title,
            url=item.url,
            source_type=self.source_type,
            snippet=item.snippet,
            video_id=video_id_from_url(item.url),
            metadata={**item.metadata, "via": "web_search"},
        )

    async def fetch_transcript(self, video_id: str, language: str = "en") -> Optional[str]:
        """Fetch a video's captions as plain text.

        Transcripts are cached for 24 hours.

        Args:
            video_id: YouTube video id
            language: Caption language code

        Returns:
            Transcript text, or None when the video has no captions
        """
        key = f"transcript:{video_id}:{language}"
        cached = self.transcripts.get(key)
        if cached is not None:
            return cached.data

        document = await self.http.get_text(
            TRANSCRIPT_URL, service=self.service, params={"lang": language, "v": video_id}
        )
        soup = BeautifulSoup(document, "html.parser")
        lines = [html.unescape(node.get_text(" ", strip=True)) for node in soup.find_all("text")]
        transcript = " ".join(line for line in lines if line) or None

        self.transcripts.set(key, transcript, "timedtext")
        self.logger.debug(
            "Transcript for %s: %d characters", video_id, len(transcript) if transcript else 0
        )
        return transcript
