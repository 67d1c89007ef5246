import logging
import re
from dataclasses import dataclass

import httpx

from .config import settings
from .errors import NotFound, UpstreamUnavailable

logger = logging.getLogger(__name__)

VIDEO_ID_PATTERNS = (
    re.compile(r'(?:youtube\.com/watch\?v=|youtu\.be/|youtube\.com/embed/|youtube\.com/v/|youtube\.com/watch\?.*v=)([^&\s?#/]+)'),
    re.compile(r'youtube\.com/shorts/([^&\s?#/]+)'),
)
ISO_DURATION = re.compile(r'PT(?:(\d+)H)?(?:(\d+)M)?(?:(\d+)S)?')


@dataclass(frozen=True)
class VideoDetails:
    source_id: str
    title: str
    thumbnail: str | None
    duration: int


def extract_video_id(url: str) -> str | None:
    for pattern in VIDEO_ID_PATTERNS:
        match = pattern.search(url)
        if match and match.group(1):
            return match.group(1)
    return None


def parse_duration(iso_duration: str) -> int:
    match = ISO_DURATION.fullmatch(iso_duration or '')
    if not match:
        return 0
    hours, minutes, seconds = (int(part or 0) for part in match.groups())
    return hours * 3600 + minutes * 60 + seconds


class VideoResolver:
    def __init__(self, api_key: str | None = None, base_url: str | None = None, transport: httpx.AsyncBaseTransport | None = None):
        self.api_key = settings.youtube_api_key if api_key is None else api_key
        self.base_url = base_url or settings.youtube_api_url
        self.transport = transport

    async def fetch(self, video_id: str) -> VideoDetails:
        if not self.api_key:
            raise UpstreamUnavailable('YouTube API key is missing')

        params = {'part': 'snippet,contentDetails', 'id': video_id, 'key': self.api_key}
        try:
            async with httpx.AsyncClient(base_url=self.base_url, timeout=settings.youtube_timeout_seconds, transport=self.transport) as client:
                response = await client.get('/videos', params=params)
        except httpx.HTTPError as exc:
            logger.error('Error fetching video details for %s: %s', video_id, exc)
            raise UpstreamUnavailable('Failed to fetch video details') from exc

        if response.status_code in (403, 429):
            logger.warning('YouTube API quota exhausted (%s)', response.status_code)
            raise UpstreamUnavailable('Video lookup is rate limited, try again later')
        if response.status_code != 200:
            logger.error('YouTube API returned %s for %s', response.status_code, video_id)
            raise UpstreamUnavailable('Failed to fetch video details')

        items = response.json().get('items') or []
        if not items:
            raise NotFound('Video not found')

        video = items[0]
        snippet = video.get('snippet', {})
        thumbnails = snippet.get('thumbnails', {})
        thumbnail = (thumbnails.get('high') or thumbnails.get('default') or {}).get('url')
        return VideoDetails(
            source_id=video_id,
            title=snippet.get('title', ''),
            thumbnail=thumbnail,
            duration=parse_duration(video.get('contentDetails', {}).get('duration', '')),
        )


resolver = VideoResolver()
