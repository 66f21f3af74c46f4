#!/usr/bin/env python3
"""
Podcast handler.

Handles iTunes-style podcast RSS feeds, audio feeds published as YouTube
channel podcast tabs, and show pages on the big podcast directories (Apple
Podcasts is resolved to its RSS feed through the iTunes lookup API; Spotify
and Amazon Music do not publish feeds).

Episodes are deduplicated on their audio asset URL rather than their page URL.
"""

from typing import Any, Dict, Optional, Tuple
import re
from urllib.parse import urlparse

from config import config, get_logger
from entities import DetectionResult, FeedInfo, MediaType, ProcessedContentItem, Source, SourceType
from errors import FeedFetchError, FeedParseError
from handlers import SourceHandler
from media import AUDIO_EXTENSIONS, extract_episode_media
from parsers import (
    ParsedFeed,
    entry_content_html,
    first_of,
    get_entry_value,
    normalize_entry_identity,
    parse_entry_timestamp,
    parse_podcast_feed,
    parse_video_feed,
)
from rss import looks_like_feed_url
from telemetry import trace_span
from utils import clean_html_to_markdown, extract_domain, html_to_text, make_excerpt
from youtube import FEED_PATH, YouTubeHandler, build_video_item, is_podcast_page, is_youtube_host

logger = get_logger("podcast")

ITUNES_LOOKUP_URL = "https://itunes.apple.com/lookup?id={}&entity=podcast"

PLATFORM_APPLE = "apple"
PLATFORM_SPOTIFY = "spotify"
PLATFORM_AMAZON = "amazon"
PLATFORM_YOUTUBE = "youtube"

_APPLE_ID_RE = re.compile(r'podcasts\.apple\.com/.*?/id(\d+)', re.I)
_SPOTIFY_SHOW_RE = re.compile(r'open\.spotify\.com/show/([A-Za-z0-9]+)', re.I)
_AMAZON_PODCAST_RE = re.compile(r'music\.amazon\.[a-z.]+/podcasts/([A-Za-z0-9-]+)', re.I)

PODCAST_HOSTS = (
    'anchor.fm',
    'art19.com',
    'audioboom.com',
    'buzzsprout.com',
    'ivoox.com',
    'libsyn.com',
    'megaphone.fm',
    'podbean.com',
    'simplecast.com',
    'soundcloud.com',
    'spreaker.com',
    'transistor.fm',
)


def detect_platform(url: str) -> Optional[str]:
    """Podcast directory a show page belongs to, if any."""
    lowered = url.lower()
    if _APPLE_ID_RE.search(url) or 'podcasts.apple.com' in lowered:
        return PLATFORM_APPLE
    if _SPOTIFY_SHOW_RE.search(url):
        return PLATFORM_SPOTIFY
    if _AMAZON_PODCAST_RE.search(url):
        return PLATFORM_AMAZON
    if is_youtube_host(url) and is_podcast_page(url):
        return PLATFORM_YOUTUBE
    return None


def is_podcast_host(url: str) -> bool:
    try:
        host = (urlparse(url).hostname or '').lower()
    except ValueError:
        return False
    return any(host == domain or host.endswith('.' + domain) for domain in PODCAST_HOSTS)


def podcast_name_from_url(url: str) -> Optional[str]:
    host = extract_domain(url)
    if host == url:
        return None
    return host[6:] if host.startswith('feeds.') else host


def _to_int(value: Any) -> Optional[int]:
    if value in (None, ''):
        return None
    try:
        return int(str(value).strip())
    except ValueError:
        return None


def _is_explicit(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    return str(value or '').strip().lower() in ('yes', 'true', 'explicit')


def is_podcast_feed(feed: FeedInfo) -> bool:
    """A feed is a podcast if it carries audio or episode/season numbering."""
    for item in feed.items:
        media_url = (item.media.media_url or '').lower().split('?', 1)[0]
        if item.media.media_url and (item.media.media_type is MediaType.AUDIO or media_url.endswith(AUDIO_EXTENSIONS)):
            return True
        if item.metadata.get('episode_number') is not None or item.metadata.get('season_number') is not None:
            return True
    return False


def build_episode(entry) -> ProcessedContentItem:
    """Normalize one podcast RSS entry."""
    media = extract_episode_media(entry)
    title, link = normalize_entry_identity(
        html_to_text(first_of(entry, 'itunes_title', 'title')),
        first_of(entry, 'link') or media.media_url,
    )
    html = entry_content_html(entry)
    return ProcessedContentItem(
        url=link,
        title=title,
        content=clean_html_to_markdown(html, base_url=link or None) if html else None,
        excerpt=make_excerpt(first_of(entry, 'subtitle', 'itunes_subtitle', 'summary') or html),
        author=first_of(entry, 'author', 'itunes_author'),
        published_at=parse_entry_timestamp(entry),
        media=media,
        metadata={
            'episode_number': _to_int(get_entry_value(entry, 'itunes_episode')),
            'season_number': _to_int(get_entry_value(entry, 'itunes_season')),
            'episode_type': first_of(entry, 'itunes_episodetype', 'itunes_episodeType') or 'full',
            'explicit': _is_explicit(get_entry_value(entry, 'itunes_explicit')),
            'guid': first_of(entry, 'id', 'guid'),
        },
    )


class PodcastHandler(SourceHandler):
    source_types = (SourceType.PODCAST,)
    display_name = "Podcast"
    content_table = "podcast_content"
    requires_media = True
    url_patterns = [
        re.compile(r'podcast', re.I),
        re.compile(r'feeds\.feedburner\.com'),
        re.compile(r'feeds\.transistor\.fm'),
        re.compile(r'anchor\.fm'),
        re.compile(r'omnycontent\.com'),
        re.compile(r'rss\.art19\.com'),
        re.compile(r'feeds\.simplecast\.com'),
        re.compile(r'feeds\.megaphone\.fm'),
        re.compile(r'feeds\.buzzsprout\.com'),
        re.compile(r'pinecast\.com'),
        re.compile(r'feeds\.podcastmirror\.com'),
    ]

    def __init__(self, session=None, youtube: Optional[YouTubeHandler] = None):
        super().__init__(session)
        self.youtube = youtube or YouTubeHandler(session)

    # ------------------------------------------------------------------
    # Detection
    # ------------------------------------------------------------------
    async def detect_url(self, url: str) -> DetectionResult:
        if not self.is_valid_url(url):
            return DetectionResult(detected=False)

        platform = detect_platform(url)
        if platform:
            feed_url, title, error = await self.resolve_platform(platform, url)
            if not feed_url:
                return DetectionResult(detected=False, source_type=SourceType.PODCAST, error=error)
            return DetectionResult(
                detected=True,
                transformed_url=feed_url,
                source_type=SourceType.PODCAST,
                suggested_title=title,
                metadata={'platform': platform},
            )

        if self.matches_pattern(url) or is_podcast_host(url):
            return DetectionResult(
                detected=True,
                transformed_url=url,
                source_type=SourceType.PODCAST,
                suggested_title=podcast_name_from_url(url),
            )

        # Plain feed-file URLs are left to the syndication handler unprobed
        if looks_like_feed_url(url):
            return DetectionResult(detected=False)

        feed = await self._fetch_podcast_feed(url, timeout=config.DISCOVERY_PAGE_TIMEOUT)
        if feed and is_podcast_feed(feed):
            return DetectionResult(
                detected=True,
                transformed_url=url,
                source_type=SourceType.PODCAST,
                suggested_title=feed.title,
            )
        return DetectionResult(detected=False)

    async def transform_url(self, url: str) -> Optional[str]:
        platform = detect_platform(url)
        if not platform:
            return url
        feed_url, _, _ = await self.resolve_platform(platform, url)
        return feed_url

    async def resolve_platform(self, platform: str, url: str) -> Tuple[Optional[str], Optional[str], Optional[str]]:
        """Resolve a directory show page to (feed_url, title, error)."""
        if platform == PLATFORM_APPLE:
            match = _APPLE_ID_RE.search(url)
            if not match:
                return None, None, f"Invalid Apple Podcasts URL: {url}"
            data = await self.fetch_json(ITUNES_LOOKUP_URL.format(match.group(1)), timeout=config.DISCOVERY_PAGE_TIMEOUT)
            results = data.get('results') if isinstance(data, dict) else None
            show = results[0] if results else None
            if isinstance(show, dict) and show.get('feedUrl'):
                return show['feedUrl'], show.get('collectionName') or show.get('trackName'), None
            return None, None, f"Could not find the RSS feed for Apple Podcasts show {match.group(1)}"

        if platform == PLATFORM_YOUTUBE:
            channel_url = re.sub(r'/podcasts/?$', '', url.split('?', 1)[0])
            feed_url = await self.youtube.resolve_feed_url(channel_url)
            if feed_url:
                return feed_url, None, None
            return None, None, f"Could not resolve the YouTube channel behind {url}"

        if platform == PLATFORM_SPOTIFY:
            return None, None, "Spotify does not publish RSS feeds; add the show's RSS feed instead"
        if platform == PLATFORM_AMAZON:
            return None, None, "Amazon Music does not publish RSS feeds; add the show's RSS feed instead"
        return None, None, f"Unsupported podcast platform: {platform}"

    # ------------------------------------------------------------------
    # Fetch
    # ------------------------------------------------------------------
    @trace_span("podcast.fetch_feed", tracer_name="podcast", attr_from_args=lambda self, url: {"feed.url": url})
    async def fetch_feed(self, url: str) -> Optional[FeedInfo]:
        if detect_platform(url):
            resolved = await self.transform_url(url)
            if not resolved:
                logger.error(f"Could not resolve podcast feed for {url}")
                return None
            url = resolved
        if is_youtube_host(url) and FEED_PATH in url:
            return await self._fetch_video_podcast(url)
        return await self._fetch_podcast_feed(url)

    async def _fetch_podcast_feed(self, url: str, timeout: Optional[float] = None) -> Optional[FeedInfo]:
        try:
            parsed = parse_podcast_feed(await self.fetch_bytes(url, timeout=timeout), url)
        except (FeedFetchError, FeedParseError) as e:
            logger.warning(f"Error fetching podcast feed {url}: {e}")
            return None
        return self._feed_info(parsed, [build_episode(entry) for entry in parsed.entries], "Podcast")

    async def _fetch_video_podcast(self, url: str) -> Optional[FeedInfo]:
        """A YouTube channel/playlist feed reinterpreted as podcast episodes."""
        try:
            parsed = parse_video_feed(await self.fetch_bytes(url), url)
        except (FeedFetchError, FeedParseError) as e:
            logger.warning(f"Error fetching YouTube podcast feed {url}: {e}")
            return None
        items = []
        for entry in parsed.entries:
            item = build_video_item(entry, parsed.title)
            item.metadata['is_video_podcast'] = True
            items.append(item)
        return self._feed_info(parsed, items, "YouTube podcast")

    def _feed_info(self, parsed: ParsedFeed, items, default_title: str) -> FeedInfo:
        return FeedInfo(
            title=parsed.title or default_title,
            description=parsed.description,
            image_url=parsed.image_url,
            items=items,
        )

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------
    def dedup_key(self, item: ProcessedContentItem) -> Optional[str]:
        return item.media.media_url or None

    def build_row(self, source: Source, item: ProcessedContentItem) -> Dict[str, Any]:
        audio_url = item.media.media_url
        return {
            'title': item.title,
            'url': item.url or audio_url,
            'author': item.author,
            'published_at': item.published_at,
            'description': item.excerpt,
            'show_notes': item.content,
            'audio_url': audio_url,
            'image_url': item.media.thumbnail_url,
            'duration': item.media.duration,
            'episode_number': item.metadata.get('episode_number'),
            'season_number': item.metadata.get('season_number'),
        }

    async def get_favicon_url(self, url: str) -> Optional[str]:
        feed = await self.fetch_feed(url)
        return feed.image_url if feed else None
