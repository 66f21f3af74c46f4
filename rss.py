#!/usr/bin/env python3
"""
Syndication feed handler (RSS/Atom), also used for newsletters and plain
websites.

This is the fallback family: any valid http(s) URL that no more specific
handler claims is accepted, as a feed when one can be discovered and as a
website otherwise.
"""

from typing import Any, Dict, List, Optional
import re
from urllib.parse import urljoin

from bs4 import BeautifulSoup

from config import config, get_logger
from entities import DetectionResult, FeedInfo, MediaType, ProcessedContentItem, Source, SourceType
from errors import FeedFetchError, FeedParseError
from handlers import SourceHandler
from media import extract_media_info
from parsers import (
    ParsedFeed,
    entry_content_html,
    first_of,
    normalize_entry_identity,
    parse_entry_timestamp,
    parse_syndication_feed,
)
from telemetry import trace_span
from utils import (
    clean_html_to_markdown,
    count_words,
    estimate_reading_time,
    extract_domain,
    html_to_text,
    make_excerpt,
    url_origin,
)

logger = get_logger("rss")

FEED_LINK_TYPES = ('application/rss+xml', 'application/atom+xml')
COMMON_FEED_PATHS = ('/feed', '/rss', '/atom.xml', '/feed.xml', '/rss.xml')
FEED_ACCEPT = 'application/rss+xml, application/atom+xml, application/xml;q=0.9, text/xml;q=0.9, */*;q=0.8'

SYNDICATION_URL_PATTERNS = [
    re.compile(r'\.rss$', re.I),
    re.compile(r'\.xml$', re.I),
    re.compile(r'/feed/?$', re.I),
    re.compile(r'/rss/?$', re.I),
    re.compile(r'/atom/?$', re.I),
    re.compile(r'feed\.xml', re.I),
    re.compile(r'rss\.xml', re.I),
    re.compile(r'atom\.xml', re.I),
]


def looks_like_feed_url(url: str) -> bool:
    return any(pattern.search(url) for pattern in SYNDICATION_URL_PATTERNS)


def find_feed_link(html: str, page_url: str) -> Optional[str]:
    """Return the first RSS (then Atom) <link> advertised by an HTML page."""
    soup = BeautifulSoup(html, 'html.parser')
    links = soup.find_all('link', href=True)
    for feed_type in FEED_LINK_TYPES:
        for link in links:
            if (link.get('type') or '').strip().lower() == feed_type:
                return urljoin(page_url, link['href'].strip())
    return None


def _looks_like_html(body: bytes) -> bool:
    head = body[:1024].lstrip().lower()
    return head.startswith(b'<!doctype html') or head.startswith(b'<html') or b'<html' in head


class RSSHandler(SourceHandler):
    source_types = (SourceType.SYNDICATION, SourceType.NEWSLETTER, SourceType.WEBSITE)
    display_name = "RSS Feed"
    content_table = "rss_content"
    url_patterns = SYNDICATION_URL_PATTERNS

    async def detect_url(self, url: str) -> DetectionResult:
        if not self.is_valid_url(url):
            return DetectionResult(detected=False)

        title = extract_domain(url)
        if self.matches_pattern(url):
            return DetectionResult(
                detected=True,
                transformed_url=url,
                source_type=SourceType.SYNDICATION,
                suggested_title=title,
            )

        feed_url = await self.discover_feed_url(url)
        if feed_url:
            return DetectionResult(
                detected=True,
                transformed_url=feed_url,
                source_type=SourceType.SYNDICATION,
                suggested_title=title,
            )

        return DetectionResult(
            detected=True,
            transformed_url=url,
            source_type=SourceType.WEBSITE,
            suggested_title=title,
        )

    async def transform_url(self, url: str) -> Optional[str]:
        if self.matches_pattern(url):
            return url
        return await self.discover_feed_url(url)

    async def discover_feed_url(self, page_url: str) -> Optional[str]:
        """Find a feed for a web page.

        Looks for an advertised <link> first, then probes conventional paths
        with HEAD requests, accepting any XML/RSS content type.
        """
        html = await self.fetch_text(page_url, timeout=config.DISCOVERY_PAGE_TIMEOUT)
        if html is None:
            return None

        feed_url = find_feed_link(html, page_url)
        if feed_url:
            logger.info(f"Discovered feed {feed_url} from {page_url}")
            return feed_url

        for feed_path in COMMON_FEED_PATHS:
            candidate = urljoin(page_url, feed_path)
            content_type = await self.probe_head(candidate, timeout=config.DISCOVERY_PROBE_TIMEOUT)
            if content_type and ('xml' in content_type.lower() or 'rss' in content_type.lower()):
                logger.info(f"Discovered feed {candidate} by probing {page_url}")
                return candidate

        logger.debug(f"No feed found for {page_url}")
        return None

    @trace_span("rss.fetch_feed", tracer_name="rss", attr_from_args=lambda self, url: {"feed.url": url})
    async def fetch_feed(self, url: str) -> Optional[FeedInfo]:
        try:
            body = await self.fetch_bytes(url, accept=FEED_ACCEPT)
            try:
                parsed = parse_syndication_feed(body, url)
            except FeedParseError:
                if not _looks_like_html(body):
                    raise
                feed_url = find_feed_link(body.decode('utf-8', errors='replace'), url)
                if not feed_url or feed_url == url:
                    raise
                logger.info(f"{url} is a web page, following advertised feed {feed_url}")
                parsed = parse_syndication_feed(await self.fetch_bytes(feed_url, accept=FEED_ACCEPT), feed_url)
        except (FeedFetchError, FeedParseError) as e:
            logger.error(f"Error fetching RSS feed {url}: {e}")
            return None

        return FeedInfo(
            title=parsed.title or extract_domain(url),
            description=parsed.description,
            image_url=parsed.image_url,
            items=self.build_items(parsed),
        )

    def build_items(self, parsed: ParsedFeed) -> List[ProcessedContentItem]:
        return [self.build_item(entry) for entry in parsed.entries]

    def build_item(self, entry) -> ProcessedContentItem:
        title, link = normalize_entry_identity(
            html_to_text(first_of(entry, 'title')), first_of(entry, 'link')
        )
        html = entry_content_html(entry)
        content = clean_html_to_markdown(html, base_url=link or None) if html else None
        plain = html_to_text(html)
        metadata: Dict[str, Any] = {}
        guid = first_of(entry, 'id', 'guid')
        if guid:
            metadata['guid'] = guid
        return ProcessedContentItem(
            url=link,
            title=title,
            content=content or None,
            excerpt=make_excerpt(plain),
            author=first_of(entry, 'author'),
            published_at=parse_entry_timestamp(entry),
            media=extract_media_info(entry),
            reading_time=estimate_reading_time(plain) if plain else None,
            word_count=count_words(plain) if plain else None,
            metadata=metadata,
        )

    def build_row(self, source: Source, item: ProcessedContentItem) -> Dict[str, Any]:
        media = item.media
        return {
            'title': item.title,
            'url': item.url,
            'content': item.content,
            'excerpt': item.excerpt,
            'author': item.author,
            'published_at': item.published_at,
            # audio attachments are not rendered for articles
            'featured_media_type': MediaType.NONE.value if media.media_type is MediaType.AUDIO else media.media_type.value,
            'featured_media_url': media.media_url,
            'featured_thumbnail_url': media.thumbnail_url,
            'featured_media_duration': media.duration,
            'reading_time': item.reading_time,
            'word_count': item.word_count,
        }

    async def get_favicon_url(self, url: str) -> Optional[str]:
        origin = url_origin(url)
        if not origin:
            return None
        return f"https://www.google.com/s2/favicons?domain={origin}&sz=128"
