#!/usr/bin/env python3
"""
Feed format parsers.

Each parser turns a fetched body into a `ParsedFeed`: feed-level metadata
plus the raw feedparser entries. Handlers map those entries into
`ProcessedContentItem` records.
"""

from calendar import timegm
from dataclasses import dataclass, field
from datetime import datetime, timezone
from email.utils import parsedate_to_datetime
from time import time
from typing import Any, List, Optional
import re

import feedparser
from bs4 import BeautifulSoup

from config import get_logger
from errors import FeedParseError

logger = get_logger("parsers")

_DATE_FIELDS = (
    'published',
    'updated',
    'created',
    'modified',
    'date',
    'pubDate',
    'pubdate',
    'issued',
)

_CUSTOM_DATE_FORMATS = (
    "%d %b %Y %H:%M:%S %z",
    "%d %b %Y %H:%M:%S %Z",
    "%d %b %Y %H:%M:%S",
    "%Y-%m-%d",
)


@dataclass
class ParsedFeed:
    title: Optional[str] = None
    description: Optional[str] = None
    image_url: Optional[str] = None
    link: Optional[str] = None
    entries: List[Any] = field(default_factory=list)
    # True when the feed declares the itunes namespace
    itunes: bool = False


def get_entry_value(entry, name: str) -> Any:
    """Safely fetch entry fields with attribute or dict access."""
    if not name or entry is None:
        return None
    getter = getattr(entry, 'get', None)
    if callable(getter):
        value = getter(name)
        if value is not None:
            return value
    return getattr(entry, name, None)


def first_of(entry, *names: str) -> Any:
    """Return the first non-empty field among `names`."""
    for name in names:
        value = get_entry_value(entry, name)
        if value not in (None, '', [], {}):
            return value
    return None


def image_href(value: Any) -> Optional[str]:
    """Resolve feedparser image representations (dict with href/url, or str)."""
    if not value:
        return None
    if isinstance(value, str):
        return value.strip() or None
    for key in ('href', 'url'):
        found = get_entry_value(value, key)
        if isinstance(found, str) and found.strip():
            return found.strip()
    return None


def _looks_like_feed(parsed) -> bool:
    if parsed.get('version'):
        return True
    return bool(parsed.get('entries'))


def _parse(body: bytes, url: str) -> Any:
    if not body or not body.strip():
        raise FeedParseError(url, "Empty feed body")
    parsed = feedparser.parse(body)
    if not _looks_like_feed(parsed):
        reason = parsed.get('bozo_exception')
        raise FeedParseError(url, f"Not a feed ({reason})" if reason else "Not a feed")
    if parsed.get('bozo'):
        logger.debug(f"Feed {url} parsed with recoverable errors: {parsed.get('bozo_exception')}")
    return parsed


def _feed_image(feed) -> Optional[str]:
    return image_href(get_entry_value(feed, 'image'))


def annotate_media_groups(body: bytes, entries: List[Any]) -> None:
    """Attach the thumbnail declared inside each item's <media:group>.

    feedparser flattens standalone and grouped media:thumbnail elements into a
    single list, so the grouped one is read back from the markup and stored on
    the entry as `media_group_thumbnail`. Items are matched to entries by
    position.
    """
    if isinstance(body, str):
        body = body.encode('utf-8')
    if b'media:group' not in body:
        return
    items = BeautifulSoup(body, 'html.parser').find_all(['item', 'entry'])
    if len(items) != len(entries):
        logger.debug(f"Skipping media:group thumbnails: {len(items)} items for {len(entries)} entries")
        return
    for item, entry in zip(items, entries):
        group = item.find('media:group')
        thumbnail = group.find('media:thumbnail', url=True) if group else None
        if thumbnail and thumbnail['url'].strip():
            entry['media_group_thumbnail'] = thumbnail['url'].strip()


def parse_syndication_feed(body: bytes, url: str) -> ParsedFeed:
    """Parse RSS 2.0 / Atom / RDF."""
    parsed = _parse(body, url)
    feed = parsed.get('feed', {})
    namespaces = parsed.get('namespaces') or {}
    entries = list(parsed.get('entries', []))
    annotate_media_groups(body, entries)
    return ParsedFeed(
        title=first_of(feed, 'title'),
        description=first_of(feed, 'subtitle', 'description'),
        image_url=_feed_image(feed),
        link=first_of(feed, 'link'),
        entries=entries,
        itunes='itunes' in namespaces,
    )


def parse_video_feed(body: bytes, url: str) -> ParsedFeed:
    """Parse a video platform Atom feed (yt: and media:group extensions)."""
    parsed = _parse(body, url)
    feed = parsed.get('feed', {})
    return ParsedFeed(
        title=first_of(feed, 'title'),
        description=first_of(feed, 'subtitle'),
        image_url=_feed_image(feed),
        link=first_of(feed, 'link'),
        entries=list(parsed.get('entries', [])),
    )


def parse_podcast_feed(body: bytes, url: str) -> ParsedFeed:
    """Parse podcast RSS; the itunes image wins over the channel <image>."""
    parsed = _parse(body, url)
    feed = parsed.get('feed', {})
    namespaces = parsed.get('namespaces') or {}
    return ParsedFeed(
        title=first_of(feed, 'title'),
        description=first_of(feed, 'subtitle', 'description', 'summary'),
        image_url=_feed_image(feed),
        link=first_of(feed, 'link'),
        entries=list(parsed.get('entries', [])),
        itunes='itunes' in namespaces,
    )


def entry_content_html(entry) -> str:
    """Richest HTML body available: content:encoded, then summary/description."""
    contents = get_entry_value(entry, 'content')
    if contents:
        for item in contents:
            value = get_entry_value(item, 'value')
            if value:
                return value
    return first_of(entry, 'summary', 'description') or ""


def normalize_entry_identity(title: Optional[str], url: Optional[str]) -> tuple[str, str]:
    """Trim and bound title/url the same way the store does."""
    norm_title = (title or "").strip()[:500]
    norm_url = (url or "").strip()[:2048]
    return norm_title, norm_url


def parse_entry_timestamp(entry, default: Optional[int] = None) -> int:
    """Publication time of an entry as a UNIX timestamp.

    Tries the common date fields (and their feedparser *_parsed variants),
    then a date embedded in the entry id. Falls back to `default`, or now.
    """
    for name in _DATE_FIELDS:
        timestamp = date_value_to_timestamp(get_entry_value(entry, f"{name}_parsed"))
        if timestamp:
            return timestamp
        timestamp = date_value_to_timestamp(get_entry_value(entry, name))
        if timestamp:
            return timestamp

    entry_id = get_entry_value(entry, 'id')
    if isinstance(entry_id, str):
        match = re.search(r'(\d{4})[-/](\d{2})[-/](\d{2})', entry_id)
        if match:
            year, month, day = map(int, match.groups())
            try:
                return int(datetime(year, month, day, tzinfo=timezone.utc).timestamp())
            except ValueError:
                logger.debug(f"Ignoring invalid date components in id '{entry_id}'")

    return default if default is not None else int(time())


def date_value_to_timestamp(value: Any) -> Optional[int]:
    """Convert assorted date representations into a UNIX timestamp."""
    if value in (None, ''):
        return None

    if isinstance(value, bool):
        return None

    if isinstance(value, (int, float)):
        return int(value) if value > 0 else None

    if isinstance(value, datetime):
        dt = value if value.tzinfo else value.replace(tzinfo=timezone.utc)
        return int(dt.timestamp())

    if isinstance(value, (list, tuple)):
        # feedparser *_parsed values are UTC struct_time
        try:
            return timegm(tuple(value)[:9])
        except (OverflowError, ValueError, TypeError):
            return None

    if isinstance(value, str):
        return _parse_date_string(value.strip())

    return None


def _parse_date_string(date_str: str) -> Optional[int]:
    if not date_str:
        return None
    for parser in (_parse_with_feedparser, _parse_with_email_utils, _parse_with_custom_formats):
        timestamp = parser(date_str)
        if timestamp is not None:
            return timestamp
    return None


def _parse_with_feedparser(date_str: str) -> Optional[int]:
    try:
        time_struct = feedparser._parse_date(date_str)
    except (ValueError, TypeError, AttributeError, OverflowError):
        return None
    if time_struct:
        return timegm(time_struct)
    return None


def _parse_with_email_utils(date_str: str) -> Optional[int]:
    try:
        dt = parsedate_to_datetime(date_str)
    except (TypeError, ValueError, IndexError, OverflowError):
        return None
    if dt is None:
        return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return int(dt.timestamp())


def _parse_with_custom_formats(date_str: str) -> Optional[int]:
    for fmt in _CUSTOM_DATE_FORMATS:
        try:
            dt = datetime.strptime(date_str, fmt)
        except ValueError:
            continue
        if dt.tzinfo is None:
            dt = dt.replace(tzinfo=timezone.utc)
        return int(dt.timestamp())
    return None
