#!/usr/bin/env python3
"""
YouTube handler: channels, handles, playlists and single videos.

Human-facing URLs are mapped onto the platform's public Atom feeds. Channel
pages do not expose their channel id consistently, so the id is scraped from
the page markup through an ordered list of patterns.
"""

from typing import Any, Dict, List, Optional, Pattern
import re
from urllib.parse import parse_qs, urlencode, urlparse

from bs4 import BeautifulSoup

from config import config, get_logger
from entities import DetectionResult, FeedInfo, ProcessedContentItem, Source, SourceType
from errors import FeedFetchError, FeedParseError
from handlers import SourceHandler
from media import extract_video_media, youtube_watch_url
from parsers import first_of, get_entry_value, normalize_entry_identity, parse_entry_timestamp, parse_video_feed
from telemetry import trace_span
from utils import chunked, make_excerpt, parse_iso8601_duration

logger = get_logger("youtube")

FEED_PATH = "/feeds/videos.xml"
CHANNEL_FEED = "https://www.youtube.com/feeds/videos.xml?channel_id={}"
PLAYLIST_FEED = "https://www.youtube.com/feeds/videos.xml?playlist_id={}"
DEFAULT_FAVICON = "https://www.youtube.com/favicon.ico"
VIDEOS_API_URL = "https://www.googleapis.com/youtube/v3/videos"
# The videos endpoint accepts at most 50 ids per request
VIDEO_DETAILS_BATCH_SIZE = 50

_CHANNEL_ID = r'(UC[0-9A-Za-z_-]+)'

# Ordered: the first pattern that matches wins.
CHANNEL_ID_PATTERNS: List[Pattern] = [
    re.compile(
        r'<link[^>]+rel=["\']canonical["\'][^>]+href=["\']https?://(?:www\.)?youtube\.com/channel/' + _CHANNEL_ID + r'["\']',
        re.I,
    ),
    re.compile(r'"externalId"\s*:\s*"' + _CHANNEL_ID + r'"'),
    re.compile(r'"browseId"\s*:\s*"' + _CHANNEL_ID + r'"[^}]*"canonicalBaseUrl"'),
    re.compile(r'"channelId"\s*:\s*"' + _CHANNEL_ID + r'"[^}]*"vanityChannelUrl"'),
    re.compile(r'"header"[^}]*"channelId"\s*:\s*"' + _CHANNEL_ID + r'"'),
    re.compile(r'"channelId"\s*:\s*"' + _CHANNEL_ID + r'"'),
]

_CHANNEL_PATH_RE = re.compile(r'/channel/' + _CHANNEL_ID)
_CHANNEL_PARAM_RE = re.compile(r'[?&]channel_id=' + _CHANNEL_ID)
_AVATAR_RE = re.compile(r'"avatar"\s*:\s*\{\s*"thumbnails"\s*:\s*\[\s*\{\s*"url"\s*:\s*"([^"]+)"')
_VIDEO_URL_PATTERNS = [
    re.compile(r'youtube\.com/watch\?(?:.*&)?v=([A-Za-z0-9_-]+)'),
    re.compile(r'youtu\.be/([A-Za-z0-9_-]+)'),
    re.compile(r'youtube\.com/(?:embed|shorts)/([A-Za-z0-9_-]+)'),
]
_HANDLE_PATTERNS = [
    re.compile(r'/@([A-Za-z0-9_.-]+)'),
    re.compile(r'/user/([A-Za-z0-9_-]+)'),
    re.compile(r'/c/([A-Za-z0-9_-]+)'),
]


def is_youtube_host(url: str) -> bool:
    try:
        host = (urlparse(url).hostname or '').lower()
    except ValueError:
        return False
    if host.startswith('www.'):
        host = host[4:]
    return host == 'youtu.be' or host == 'youtube.com' or host.endswith('.youtube.com')


def is_podcast_page(url: str) -> bool:
    """Channel podcast tabs (``/@handle/podcasts``) belong to the podcast family."""
    try:
        path = urlparse(url).path.lower()
    except ValueError:
        return False
    return path.rstrip('/').endswith('/podcasts')


def extract_channel_id(html: str) -> Optional[str]:
    """Scrape a channel id (UC...) from a YouTube page."""
    if not html:
        return None
    for pattern in CHANNEL_ID_PATTERNS:
        match = pattern.search(html)
        if match:
            return match.group(1)
    return None


def video_id_from_url(url: Optional[str]) -> Optional[str]:
    if not url:
        return None
    for pattern in _VIDEO_URL_PATTERNS:
        match = pattern.search(url)
        if match:
            return match.group(1)
    return None


def extract_video_id(entry) -> Optional[str]:
    video_id = get_entry_value(entry, 'yt_videoid')
    if video_id:
        return str(video_id)
    entry_id = get_entry_value(entry, 'id')
    if isinstance(entry_id, str):
        match = re.search(r'video:([A-Za-z0-9_-]+)', entry_id)
        if match:
            return match.group(1)
    return video_id_from_url(get_entry_value(entry, 'link'))


def handle_from_url(url: str) -> Optional[str]:
    for pattern in _HANDLE_PATTERNS:
        match = pattern.search(url)
        if match:
            return match.group(1)
    return None


def video_description(entry) -> Optional[str]:
    return first_of(entry, 'media_description', 'summary', 'description')


def build_video_item(entry, feed_title: Optional[str]) -> ProcessedContentItem:
    """Normalize one video platform feed entry."""
    video_id = extract_video_id(entry)
    title, link = normalize_entry_identity(
        first_of(entry, 'title'),
        first_of(entry, 'link') or (youtube_watch_url(video_id) if video_id else None),
    )
    description = video_description(entry)
    author = first_of(entry, 'author') or feed_title
    return ProcessedContentItem(
        url=link,
        title=title,
        content=description,
        excerpt=make_excerpt(description),
        author=author,
        published_at=parse_entry_timestamp(entry),
        media=extract_video_media(entry, video_id),
        metadata={
            'video_id': video_id,
            'channel_id': get_entry_value(entry, 'yt_channelid'),
            'channel_name': author,
        },
    )


def _count(value: Any) -> Optional[int]:
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


def parse_video_details(payload: Any) -> Dict[str, Dict[str, Optional[int]]]:
    """Map a videos API response onto {video_id: {duration, view_count, like_count}}."""
    details: Dict[str, Dict[str, Optional[int]]] = {}
    if not isinstance(payload, dict):
        return details
    for video in payload.get('items') or []:
        if not isinstance(video, dict) or not video.get('id'):
            continue
        content = video.get('contentDetails') or {}
        stats = video.get('statistics') or {}
        details[video['id']] = {
            'duration': parse_iso8601_duration(content.get('duration')),
            'view_count': _count(stats.get('viewCount')),
            'like_count': _count(stats.get('likeCount')),
        }
    return details


def apply_video_details(items: List[ProcessedContentItem], details: Dict[str, Dict[str, Optional[int]]]) -> None:
    for item in items:
        found = details.get(item.metadata.get('video_id'))
        if not found:
            continue
        if found['duration'] is not None:
            item.media.duration = found['duration']
        item.metadata['view_count'] = found['view_count']
        item.metadata['like_count'] = found['like_count']


class YouTubeHandler(SourceHandler):
    source_types = (SourceType.VIDEO_CHANNEL, SourceType.VIDEO_ITEM)
    display_name = "YouTube"
    content_table = "youtube_content"
    url_patterns = [
        re.compile(r'youtube\.com/channel/' + _CHANNEL_ID),
        re.compile(r'youtube\.com/c/([\w-]+)'),
        re.compile(r'youtube\.com/user/([\w-]+)'),
        re.compile(r'youtube\.com/@([\w.-]+)'),
        re.compile(r'youtube\.com/watch\?v=([\w-]+)'),
        re.compile(r'youtu\.be/([\w-]+)'),
        re.compile(r'youtube\.com/playlist\?list=([\w-]+)'),
        re.compile(r'youtube\.com/feeds/videos\.xml'),
    ]

    def is_valid_url(self, url: str) -> bool:
        return is_youtube_host(url)

    async def detect_url(self, url: str) -> DetectionResult:
        if not is_youtube_host(url) or is_podcast_page(url):
            return DetectionResult(detected=False)

        is_video = video_id_from_url(url) is not None and 'list=' not in url
        source_type = SourceType.VIDEO_ITEM if is_video else SourceType.VIDEO_CHANNEL
        feed_url = await self.transform_url(url)
        if not feed_url:
            return DetectionResult(
                detected=False,
                source_type=source_type,
                error=f"Could not resolve a YouTube channel feed for {url}",
            )
        return DetectionResult(
            detected=True,
            transformed_url=feed_url,
            source_type=source_type,
            suggested_title=handle_from_url(url),
        )

    async def transform_url(self, url: str) -> Optional[str]:
        return await self.resolve_feed_url(url)

    async def resolve_feed_url(self, url: str) -> Optional[str]:
        """Map any YouTube URL onto its channel or playlist Atom feed."""
        try:
            parsed = urlparse(url)
        except ValueError:
            return None

        if FEED_PATH in parsed.path:
            return url

        playlist = parse_qs(parsed.query).get('list')
        if playlist and playlist[0]:
            return PLAYLIST_FEED.format(playlist[0])

        match = _CHANNEL_PATH_RE.search(parsed.path)
        if match:
            return CHANNEL_FEED.format(match.group(1))

        if not is_youtube_host(url):
            return None

        html = await self.fetch_text(url, timeout=config.HTTP_TIMEOUT)
        channel_id = extract_channel_id(html) if html else None
        if not channel_id:
            logger.warning(f"Could not find a channel id in {url}")
            return None
        return CHANNEL_FEED.format(channel_id)

    @trace_span("youtube.fetch_feed", tracer_name="youtube", attr_from_args=lambda self, url: {"feed.url": url})
    async def fetch_feed(self, url: str) -> Optional[FeedInfo]:
        feed_url = url if FEED_PATH in url else await self.transform_url(url)
        if not feed_url:
            logger.error(f"Could not transform YouTube URL: {url}")
            return None
        try:
            parsed = parse_video_feed(await self.fetch_bytes(feed_url), feed_url)
        except (FeedFetchError, FeedParseError) as e:
            logger.error(f"Error fetching YouTube feed {feed_url}: {e}")
            return None

        items = [build_video_item(entry, parsed.title) for entry in parsed.entries]
        if config.YOUTUBE_API_KEY:
            video_ids = [item.metadata['video_id'] for item in items if item.metadata.get('video_id')]
            apply_video_details(items, await self.fetch_video_details(video_ids))

        return FeedInfo(
            title=parsed.title or "YouTube channel",
            description=parsed.description,
            image_url=parsed.image_url,
            items=items,
        )

    async def fetch_video_details(self, video_ids: List[str]) -> Dict[str, Dict[str, Optional[int]]]:
        """Duration and statistics for `video_ids` from the videos API.

        Failed batches are skipped; the feed entries stay usable without them.
        """
        details: Dict[str, Dict[str, Optional[int]]] = {}
        if not config.YOUTUBE_API_KEY:
            return details
        for batch in chunked(list(dict.fromkeys(video_ids)), VIDEO_DETAILS_BATCH_SIZE):
            query = urlencode({
                'part': 'contentDetails,statistics',
                'id': ','.join(batch),
                'key': config.YOUTUBE_API_KEY,
            })
            payload = await self.fetch_json(f"{VIDEOS_API_URL}?{query}", timeout=config.HTTP_TIMEOUT)
            if payload is None:
                logger.warning(f"Video details unavailable for {len(batch)} videos")
                continue
            details.update(parse_video_details(payload))
        return details

    def build_row(self, source: Source, item: ProcessedContentItem) -> Dict[str, Any]:
        video_id = item.metadata.get('video_id') or video_id_from_url(item.url)
        return {
            'video_id': video_id,
            'title': item.title,
            'url': item.url,
            'channel_name': item.metadata.get('channel_name') or item.author,
            'published_at': item.published_at,
            'description': item.content,
            'thumbnail_url': item.media.thumbnail_url or item.media.media_url,
            'video_url': youtube_watch_url(video_id) if video_id else item.url,
            'duration': item.media.duration,
            'view_count': item.metadata.get('view_count'),
            'like_count': item.metadata.get('like_count'),
        }

    async def get_favicon_url(self, url: str) -> Optional[str]:
        """Channel avatar scraped from the channel page, or the platform icon."""
        match = _CHANNEL_PARAM_RE.search(url)
        if match:
            page_url = f"https://www.youtube.com/channel/{match.group(1)}"
        elif is_youtube_host(url):
            page_url = url
        else:
            return DEFAULT_FAVICON

        html = await self.fetch_text(page_url, timeout=config.HTTP_TIMEOUT)
        if not html:
            return DEFAULT_FAVICON

        avatar = _AVATAR_RE.search(html)
        if avatar:
            avatar_url = avatar.group(1)
            return 'https:' + avatar_url if avatar_url.startswith('//') else avatar_url

        og_image = BeautifulSoup(html, 'html.parser').find('meta', attrs={'property': 'og:image'})
        if og_image and og_image.get('content'):
            return og_image['content']
        return DEFAULT_FAVICON
