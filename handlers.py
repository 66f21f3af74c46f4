#!/usr/bin/env python3
"""
Base class for source handlers.

A handler owns one family of sources (syndication feeds, video channels,
podcasts): it classifies URLs, resolves them to a feed address, fetches and
normalizes the feed, and describes how items are persisted. Synchronization
itself is shared and lives in pipeline.py.
"""

from abc import ABC, abstractmethod
from asyncio import TimeoutError
from contextlib import asynccontextmanager
from typing import Any, Dict, List, Optional, Pattern, Tuple
import json

from aiohttp import ClientError, ClientSession, ClientTimeout

from config import config, get_logger
from entities import DetectionResult, FeedInfo, HandlerContext, ProcessedContentItem, Source, SourceType, SyncResult
from errors import FeedFetchError
from pipeline import sync_source_content
from utils import validate_url

logger = get_logger("handlers")

HTTP_OK_RANGE = range(200, 300)


class SourceHandler(ABC):
    """Uniform contract every source family implements."""

    #: Source types owned by this handler; the first is the default.
    source_types: Tuple[SourceType, ...] = ()
    display_name: str = ""
    #: Content table rows are upserted into.
    content_table: str = ""
    #: Items without a media URL are dropped before persisting.
    requires_media: bool = False
    url_patterns: List[Pattern] = []

    def __init__(self, session: Optional[ClientSession] = None):
        self.session = session

    def __repr__(self) -> str:
        return f"<{self.__class__.__name__} {[t.value for t in self.source_types]}>"

    # ------------------------------------------------------------------
    # Detection
    # ------------------------------------------------------------------
    @abstractmethod
    async def detect_url(self, url: str) -> DetectionResult:
        """Classify `url`; may probe the network with short timeouts."""

    async def transform_url(self, url: str) -> Optional[str]:
        """Map a human-facing URL to its machine-readable feed address."""
        return url

    def is_valid_url(self, url: str) -> bool:
        return validate_url(url)

    def matches_pattern(self, url: str) -> bool:
        return any(pattern.search(url) for pattern in self.url_patterns)

    async def get_favicon_url(self, url: str) -> Optional[str]:
        return None

    # ------------------------------------------------------------------
    # Fetch
    # ------------------------------------------------------------------
    @abstractmethod
    async def fetch_feed(self, url: str) -> Optional[FeedInfo]:
        """Fetch and normalize a feed. Returns None on fetch or parse failure."""

    # ------------------------------------------------------------------
    # Sync
    # ------------------------------------------------------------------
    async def sync_content(self, context: HandlerContext) -> SyncResult:
        """Incremental sync: only items inside the recency window."""
        return await sync_source_content(self, context, filter_recent=True)

    async def sync_all_content(self, context: HandlerContext) -> SyncResult:
        """Backfill sync: no recency window."""
        return await sync_source_content(self, context, filter_recent=False)

    # ------------------------------------------------------------------
    # Persistence hooks
    # ------------------------------------------------------------------
    def dedup_key(self, item: ProcessedContentItem) -> Optional[str]:
        return item.url or None

    @abstractmethod
    def build_row(self, source: Source, item: ProcessedContentItem) -> Dict[str, Any]:
        """Column values for this family's content table."""

    # ------------------------------------------------------------------
    # HTTP helpers
    # ------------------------------------------------------------------
    @asynccontextmanager
    async def _client(self):
        if self.session is not None and not self.session.closed:
            yield self.session
            return
        async with ClientSession() as session:
            yield session

    def _headers(self, accept: Optional[str] = None) -> Dict[str, str]:
        headers = {'User-Agent': config.USER_AGENT}
        if accept:
            headers['Accept'] = accept
        return headers

    async def fetch_bytes(self, url: str, timeout: Optional[float] = None, accept: Optional[str] = None) -> bytes:
        """GET `url` and return the body; raises FeedFetchError on any failure."""
        timeout = timeout or config.HTTP_TIMEOUT
        try:
            async with self._client() as session:
                async with session.get(
                    url,
                    headers=self._headers(accept),
                    timeout=ClientTimeout(total=timeout),
                    max_redirects=config.MAX_REDIRECTS,
                ) as response:
                    if response.status not in HTTP_OK_RANGE:
                        raise FeedFetchError(url, f"HTTP {response.status}", status=response.status)
                    return await response.read()
        except TimeoutError as e:
            raise FeedFetchError(url, f"Timed out after {timeout}s") from e
        except ClientError as e:
            raise FeedFetchError(url, f"Network error: {e.__class__.__name__} {e}") from e

    async def fetch_text(self, url: str, timeout: Optional[float] = None) -> Optional[str]:
        """GET an HTML page; returns None on failure."""
        try:
            body = await self.fetch_bytes(url, timeout=timeout, accept='text/html,application/xhtml+xml,*/*;q=0.8')
        except FeedFetchError as e:
            logger.debug(f"Page fetch failed: {e}")
            return None
        return body.decode('utf-8', errors='replace')

    async def fetch_json(self, url: str, timeout: Optional[float] = None) -> Optional[Any]:
        try:
            body = await self.fetch_bytes(url, timeout=timeout, accept='application/json')
        except FeedFetchError as e:
            logger.debug(f"JSON fetch failed: {e}")
            return None
        try:
            return json.loads(body)
        except ValueError as e:
            logger.debug(f"Invalid JSON from {url}: {e}")
            return None

    async def probe_head(self, url: str, timeout: Optional[float] = None) -> Optional[str]:
        """HEAD `url`; returns its content type when the response is 2xx."""
        timeout = timeout or config.DISCOVERY_PROBE_TIMEOUT
        try:
            async with self._client() as session:
                async with session.head(
                    url,
                    headers=self._headers(),
                    timeout=ClientTimeout(total=timeout),
                    allow_redirects=True,
                ) as response:
                    if response.status not in HTTP_OK_RANGE:
                        return None
                    return response.headers.get('Content-Type', '')
        except (TimeoutError, ClientError) as e:
            logger.debug(f"HEAD probe failed for {url}: {e}")
            return None
