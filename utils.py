#!/usr/bin/env python3
"""
Utility functions shared by the handlers and the sync pipeline.

URL validation, text shaping (excerpts, reading time, HTML sanitizing) and
small iteration helpers live here.
"""

from math import ceil
from typing import Iterable, Iterator, List, Optional, TypeVar
import re
from urllib.parse import urljoin, urlparse

from bs4 import BeautifulSoup
from markdownify import markdownify as md

from config import config, get_logger

logger = get_logger("utils")

T = TypeVar("T")

_DURATION_SECONDS_RE = re.compile(r"^\d+$")
_DURATION_CLOCK_RE = re.compile(r"^\d+(:\d{1,2}){1,2}$")
_ISO_DURATION_RE = re.compile(r"^P(?:(\d+)D)?(?:T(?:(\d+)H)?(?:(\d+)M)?(?:(\d+)S)?)?$")


def validate_url(url: str) -> bool:
    """Validate if a string is a properly formatted http(s) URL.

    Args:
        url: The URL string to validate

    Returns:
        True if the URL appears to be valid, False otherwise
    """
    if not url or not isinstance(url, str):
        return False

    url = url.strip()
    if not url.startswith(('http://', 'https://')):
        return False
    try:
        parsed = urlparse(url)
    except ValueError:
        return False
    return bool(parsed.netloc) and '.' in parsed.netloc


def extract_domain(url: str) -> str:
    """Return the hostname without a leading www., or the input if unparseable."""
    try:
        host = urlparse(url).hostname
    except ValueError:
        return url
    if not host:
        return url
    return host[4:] if host.startswith('www.') else host


def url_origin(url: str) -> Optional[str]:
    try:
        parsed = urlparse(url)
    except ValueError:
        return None
    if not parsed.scheme or not parsed.netloc:
        return None
    return f"{parsed.scheme}://{parsed.netloc}"


def truncate_string(text: str, max_length: int, suffix: str = "...") -> str:
    """Truncate a string to a maximum length, adding a suffix if truncated.

    Args:
        text: The text to potentially truncate
        max_length: Maximum allowed length (including suffix)
        suffix: Suffix to add when truncating

    Returns:
        The original text or truncated version with suffix
    """
    if not text or len(text) <= max_length:
        return text

    if len(suffix) >= max_length:
        return text[:max_length]

    return text[:max_length - len(suffix)] + suffix


def parse_duration(value) -> Optional[int]:
    """Parse an itunes-style duration into seconds.

    Accepts a bare integer number of seconds, ``MM:SS`` or ``HH:MM:SS``.
    Anything else yields None.

    >>> parse_duration("01:02:03")
    3723
    """
    if value is None:
        return None
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value if value >= 0 else None
    text = str(value).strip()
    if not text:
        return None
    if _DURATION_SECONDS_RE.match(text):
        return int(text)
    if not _DURATION_CLOCK_RE.match(text):
        return None
    parts = [int(p) for p in text.split(':')]
    if len(parts) == 3:
        hours, minutes, seconds = parts
        return hours * 3600 + minutes * 60 + seconds
    minutes, seconds = parts
    return minutes * 60 + seconds


def parse_iso8601_duration(value) -> Optional[int]:
    """Parse an ISO-8601 duration such as ``PT1H2M3S`` into seconds.

    Only day, hour, minute and second components are accepted.
    """
    if not isinstance(value, str):
        return None
    text = value.strip().upper()
    match = _ISO_DURATION_RE.match(text)
    if not match or text == "P" or text.endswith("T"):
        return None
    days, hours, minutes, seconds = (int(part or 0) for part in match.groups())
    return ((days * 24 + hours) * 60 + minutes) * 60 + seconds


def chunked(items: Iterable[T], size: int) -> Iterator[List[T]]:
    """Yield consecutive lists of at most `size` elements."""
    if size < 1:
        raise ValueError("size must be positive")
    batch: List[T] = []
    for item in items:
        batch.append(item)
        if len(batch) == size:
            yield batch
            batch = []
    if batch:
        yield batch


def html_to_text(html_content: Optional[str]) -> str:
    """Strip markup and collapse whitespace."""
    if not html_content:
        return ""
    if '<' not in html_content:
        return " ".join(html_content.split())
    text = BeautifulSoup(html_content, 'html.parser').get_text(" ")
    return " ".join(text.split())


def make_excerpt(text: Optional[str], length: Optional[int] = None) -> Optional[str]:
    """Plain-text excerpt, ellipsized to `length` characters."""
    plain = html_to_text(text)
    if not plain:
        return None
    return truncate_string(plain, length or config.EXCERPT_LENGTH)


def count_words(text: Optional[str]) -> int:
    if not text:
        return 0
    return len(text.split())


def estimate_reading_time(text: Optional[str], words_per_minute: Optional[int] = None) -> int:
    """Estimated reading time in whole minutes (rounded up)."""
    wpm = words_per_minute or config.WORDS_PER_MINUTE
    return ceil(count_words(text) / wpm)


def clean_html_to_markdown(html_content: str, base_url: Optional[str] = None) -> str:
    """Sanitize HTML content and convert it to Markdown.

    Args:
        html_content: Raw HTML to sanitize
        base_url: Optional base URL used to resolve relative href/src values

    Behavior:
    - Removes dangerous elements (script/style/iframe/etc.)
    - Strips inline event handlers and javascript: URLs
    - Removes common tracking pixels
    - Resolves relative href/src to absolute URLs when ``base_url`` is provided; otherwise
      non-absolute references are neutralized (links -> ``#``, images removed)
    - Converts resulting HTML to Markdown with markdownify
    """
    if not html_content:
        return ""

    soup = BeautifulSoup(html_content, 'html.parser')

    for tag in soup([
        "script", "style", "iframe", "form", "object", "embed", "noscript",
        "frame", "frameset", "applet", "meta", "base", "link"
    ]):
        tag.decompose()

    for tag in soup.find_all(True):
        for attr in list(tag.attrs):
            if attr.lower().startswith('on'):
                del tag[attr]
            elif attr.lower() in ('href', 'src') and str(tag[attr]).lower().startswith('javascript:'):
                del tag[attr]

    for img in soup.find_all('img'):
        src = img.get('src', '')
        if re.search(r'(pixel|tracker|counter|spacer)', src, re.I) or img.get('height') in ('0', '1'):
            img.decompose()

    def _rewrite_url(value: str, attr: str) -> Optional[str]:
        if attr == 'href' and value.startswith('mailto:'):
            return value
        if value.startswith(('http://', 'https://')):
            return value
        if base_url:
            resolved = urljoin(base_url, value)
            if resolved.startswith(('http://', 'https://')):
                return resolved
        return None

    for tag in soup.find_all(['a', 'img']):
        for attr in ('href', 'src'):
            if not tag.has_attr(attr) or not str(tag[attr]):
                continue
            rewritten = _rewrite_url(str(tag[attr]), attr)
            if rewritten:
                tag[attr] = rewritten
            elif attr == 'href':
                tag[attr] = '#'
            else:
                del tag[attr]

    # wrap_width=0 keeps long URLs on one line
    return md(str(soup), heading_style="ATX", wrap_width=0).strip()
