#!/usr/bin/env python3
"""
Domain types shared by the handlers, the sync pipeline and the store.

These are plain dataclasses; persistence lives in models.py and behaviour in
the handler modules.
"""

from dataclasses import dataclass, field, asdict
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, List, Optional, Protocol, Set, Union


class SourceType(str, Enum):
    SYNDICATION = "syndication"
    VIDEO_CHANNEL = "video_channel"
    VIDEO_ITEM = "video_item"
    PODCAST = "podcast"
    NEWSLETTER = "newsletter"
    WEBSITE = "website"


class MediaType(str, Enum):
    NONE = "none"
    IMAGE = "image"
    VIDEO = "video"
    AUDIO = "audio"


@dataclass
class MediaInfo:
    """Primary media asset of an item. Duration is in seconds."""

    media_type: MediaType = MediaType.NONE
    media_url: Optional[str] = None
    thumbnail_url: Optional[str] = None
    duration: Optional[int] = None

    @property
    def has_media(self) -> bool:
        return self.media_type is not MediaType.NONE and bool(self.media_url)


@dataclass
class ProcessedContentItem:
    """A feed entry normalized into the common item shape.

    `published_at` is a UNIX timestamp, `metadata` carries family-specific
    fields (video id, episode number...).
    """

    url: str
    title: str
    published_at: int
    content: Optional[str] = None
    excerpt: Optional[str] = None
    author: Optional[str] = None
    media: MediaInfo = field(default_factory=MediaInfo)
    reading_time: Optional[int] = None
    word_count: Optional[int] = None
    metadata: Dict[str, Any] = field(default_factory=dict)


@dataclass
class FeedInfo:
    title: str
    description: Optional[str] = None
    image_url: Optional[str] = None
    items: List[ProcessedContentItem] = field(default_factory=list)


@dataclass
class DetectionResult:
    """Outcome of classifying a URL.

    A non-detected result carrying `error` means the handler recognised the
    URL as its own but could not resolve it; detection stops there instead of
    falling through to the generic website fallback.
    """

    detected: bool
    transformed_url: Optional[str] = None
    source_type: Optional[SourceType] = None
    suggested_title: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)
    error: Optional[str] = None
    handler: Any = None

    @property
    def feed_url(self) -> Optional[str]:
        return self.transformed_url


@dataclass
class SyncResult:
    success: bool
    articles_added: int = 0
    articles_updated: int = 0
    error: Optional[str] = None

    @classmethod
    def failure(cls, error: str) -> "SyncResult":
        return cls(success=False, error=error)


@dataclass
class Source:
    """A registered feed. Only the sync pipeline mutates its status fields."""

    id: int
    url: str
    type: SourceType
    title: Optional[str] = None
    last_fetched_at: Optional[int] = None
    fetch_error: Optional[str] = None
    fetch_count: int = 0

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["type"] = self.type.value
        return data


@dataclass
class SyncSummary:
    total_sources: int = 0
    successful_syncs: int = 0
    failed_syncs: int = 0
    total_articles_added: int = 0
    total_articles_updated: int = 0
    results: Dict[int, SyncResult] = field(default_factory=dict)

    def record(self, source: Source, result: SyncResult) -> None:
        self.results[source.id] = result
        if result.success:
            self.successful_syncs += 1
            self.total_articles_added += result.articles_added
            self.total_articles_updated += result.articles_updated
        else:
            self.failed_syncs += 1


ProgressCallback = Callable[[], Union[None, Awaitable[None]]]


class ContentStore(Protocol):
    """Read/write contract the sync pipeline needs from persistence."""

    async def exists_by_dedup_key(self, table: str, source_id: int, keys: List[str]) -> Set[str]:
        ...

    async def upsert_content_item(
        self, table: str, source_id: int, dedup_key: str, row: Dict[str, Any], exists: bool
    ) -> str:
        ...

    async def update_source_status(
        self, source_id: int, error: Optional[str], fetched_at: int, fetch_count: Optional[int] = None
    ) -> None:
        ...


@dataclass
class HandlerContext:
    store: ContentStore
    source: Source
    on_item_processed: Optional[ProgressCallback] = None
    max_items: Optional[int] = None
