#!/usr/bin/env python3
"""
Media extraction for feed entries.

`extract_media_info` derives the primary media asset of a syndication item by
walking a prioritized list of strategies; the first one that finds something
wins. Podcast episodes and video platform entries have their own, simpler
extractors.
"""

from typing import Any, Callable, List, Optional
import re

from bs4 import BeautifulSoup

from config import get_logger
from entities import MediaInfo, MediaType
from parsers import entry_content_html, get_entry_value, image_href
from utils import parse_duration

logger = get_logger("media")

VIDEO_EMBED_HOSTS = ('youtube.com', 'youtu.be', 'vimeo.com', 'dailymotion.com')
AUDIO_EXTENSIONS = ('.mp3', '.m4a', '.aac', '.ogg', '.oga', '.opus', '.wav', '.flac')

_YOUTUBE_EMBED_ID_RE = re.compile(r'(?:youtube\.com/embed/|youtu\.be/)([^?&/"]+)')


def youtube_thumbnail_url(video_id: str) -> str:
    return f"https://img.youtube.com/vi/{video_id}/maxresdefault.jpg"


def youtube_watch_url(video_id: str) -> str:
    return f"https://www.youtube.com/watch?v={video_id}"


def _as_list(value: Any) -> List[Any]:
    if not value:
        return []
    if isinstance(value, (list, tuple)):
        return list(value)
    return [value]


def _attr(node: Any, name: str) -> str:
    value = get_entry_value(node, name)
    return str(value).strip() if value is not None else ""


def _first_thumbnail(entry) -> Optional[str]:
    for thumb in _as_list(get_entry_value(entry, 'media_thumbnail')):
        url = _attr(thumb, 'url')
        if url:
            return url
    return None


def _content_thumbnail(entry) -> Optional[str]:
    """Thumbnail that accompanies media:content; the media:group one wins."""
    grouped = get_entry_value(entry, 'media_group_thumbnail')
    if isinstance(grouped, str) and grouped.strip():
        return grouped.strip()
    return _first_thumbnail(entry)


def _enclosures(entry) -> List[Any]:
    found = _as_list(get_entry_value(entry, 'enclosures'))
    if not found:
        found = _as_list(get_entry_value(entry, 'enclosure'))
    return found


def _enclosure_url(enclosure) -> str:
    return _attr(enclosure, 'href') or _attr(enclosure, 'url')


def _artwork(entry) -> Optional[str]:
    """itunes:image for an item (feedparser stores it as image.href)."""
    explicit = image_href(get_entry_value(entry, 'itunes_image'))
    if explicit:
        return explicit
    image = get_entry_value(entry, 'image')
    if image and not isinstance(image, str):
        href = get_entry_value(image, 'href')
        if isinstance(href, str) and href.strip():
            return href.strip()
    return None


def _page_image(entry) -> Optional[str]:
    """A plain <image> element on the item (string or {url: ...})."""
    image = get_entry_value(entry, 'image')
    if isinstance(image, str):
        return image.strip() or None
    if image:
        url = get_entry_value(image, 'url')
        if isinstance(url, str) and url.strip():
            return url.strip()
    return None


def _duration(entry, node: Any = None) -> Optional[int]:
    if node is not None:
        value = parse_duration(get_entry_value(node, 'duration'))
        if value is not None:
            return value
    return parse_duration(get_entry_value(entry, 'itunes_duration'))


def _from_media_content(entry) -> Optional[MediaInfo]:
    contents = _as_list(get_entry_value(entry, 'media_content'))
    if not contents:
        return None
    node = contents[0]
    url = _attr(node, 'url')
    if not url:
        return None
    mime = _attr(node, 'type').lower()
    medium = _attr(node, 'medium').lower()
    if mime.startswith('video/') or medium == 'video':
        return MediaInfo(MediaType.VIDEO, url, _content_thumbnail(entry), _duration(entry, node))
    if mime.startswith('image/') or medium == 'image':
        return MediaInfo(MediaType.IMAGE, url)
    if mime.startswith('audio/') or medium == 'audio':
        return MediaInfo(MediaType.AUDIO, url, _content_thumbnail(entry) or _artwork(entry), _duration(entry, node))
    return None


def _from_enclosure(entry) -> Optional[MediaInfo]:
    enclosures = _enclosures(entry)
    if not enclosures:
        return None
    enclosure = enclosures[0]
    url = _enclosure_url(enclosure)
    if not url:
        return None
    mime = _attr(enclosure, 'type').lower()
    if mime.startswith('video/'):
        return MediaInfo(MediaType.VIDEO, url, _first_thumbnail(entry), _duration(entry))
    if mime.startswith('image/'):
        return MediaInfo(MediaType.IMAGE, url)
    if mime.startswith('audio/'):
        return MediaInfo(MediaType.AUDIO, url, _artwork(entry), _duration(entry))
    return None


def _from_artwork(entry) -> Optional[MediaInfo]:
    url = _artwork(entry)
    return MediaInfo(MediaType.IMAGE, url) if url else None


def _from_thumbnail(entry) -> Optional[MediaInfo]:
    url = _first_thumbnail(entry)
    return MediaInfo(MediaType.IMAGE, url) if url else None


def _from_page_image(entry) -> Optional[MediaInfo]:
    url = _page_image(entry)
    return MediaInfo(MediaType.IMAGE, url) if url else None


def _from_html(entry) -> Optional[MediaInfo]:
    html = entry_content_html(entry)
    if not html or '<' not in html:
        return None
    soup = BeautifulSoup(html, 'html.parser')

    for iframe in soup.find_all('iframe', src=True):
        src = iframe['src']
        if not any(host in src for host in VIDEO_EMBED_HOSTS):
            continue
        thumbnail = None
        match = _YOUTUBE_EMBED_ID_RE.search(src)
        if match:
            thumbnail = youtube_thumbnail_url(match.group(1))
        return MediaInfo(MediaType.VIDEO, src, thumbnail)

    video = soup.find('video', src=True)
    if video:
        return MediaInfo(MediaType.VIDEO, video['src'], video.get('poster'))

    img = soup.find('img', src=True)
    if img and img['src'].strip():
        return MediaInfo(MediaType.IMAGE, img['src'].strip())
    return None


MEDIA_STRATEGIES: List[Callable[[Any], Optional[MediaInfo]]] = [
    _from_media_content,
    _from_enclosure,
    _from_artwork,
    _from_thumbnail,
    _from_page_image,
    _from_html,
]


def extract_media_info(entry) -> MediaInfo:
    """Primary media of a syndication entry, or a `none` MediaInfo."""
    for strategy in MEDIA_STRATEGIES:
        info = strategy(entry)
        if info is not None:
            return info
    return MediaInfo()


def extract_episode_media(entry) -> MediaInfo:
    """Audio asset, artwork and duration of a podcast episode.

    The returned media URL is None when the episode has no audio enclosure.
    """
    audio_url = None
    for enclosure in _enclosures(entry):
        url = _enclosure_url(enclosure)
        if not url:
            continue
        mime = _attr(enclosure, 'type').lower()
        if mime.startswith('audio/'):
            audio_url = url
            break
        if not mime and url.lower().split('?', 1)[0].endswith(AUDIO_EXTENSIONS):
            audio_url = url
            break

    return MediaInfo(
        media_type=MediaType.AUDIO,
        media_url=audio_url,
        thumbnail_url=_artwork(entry) or _page_image(entry),
        duration=parse_duration(get_entry_value(entry, 'itunes_duration')),
    )


def extract_video_media(entry, video_id: Optional[str]) -> MediaInfo:
    """Media of a video platform entry: largest thumbnail, duration, watch URL."""
    thumbnails = [t for t in _as_list(get_entry_value(entry, 'media_thumbnail')) if _attr(t, 'url')]

    def _width(thumb) -> int:
        try:
            return int(_attr(thumb, 'width') or 0)
        except ValueError:
            return 0

    thumbnail_url = _attr(max(thumbnails, key=_width), 'url') if thumbnails else None

    duration = None
    for node in _as_list(get_entry_value(entry, 'media_content')):
        duration = parse_duration(get_entry_value(node, 'duration'))
        if duration is not None:
            break

    if not thumbnail_url and video_id:
        thumbnail_url = youtube_thumbnail_url(video_id)

    return MediaInfo(
        media_type=MediaType.VIDEO,
        media_url=youtube_watch_url(video_id) if video_id else None,
        thumbnail_url=thumbnail_url,
        duration=duration,
    )
