import pytest
import pytest_asyncio

from entities import HandlerContext, SourceType
from errors import StoreError
from models import DatabaseQueue, SQLiteContentStore
from rss import RSSHandler

from conftest import make_feed, make_item


@pytest_asyncio.fixture
async def store(tmp_path):
    db = DatabaseQueue(str(tmp_path / "test.db"))
    await db.start()
    try:
        yield SQLiteContentStore(db)
    finally:
        await db.stop()


def _row(n: int, title: str = None):
    return {
        "title": title or f"Post {n}",
        "url": f"https://example.com/posts/{n}",
        "published_at": 1700000000 + n,
        "featured_media_type": "none",
    }


@pytest.mark.asyncio
async def test_create_source_is_idempotent_on_url(store):
    first = await store.create_source("https://example.com/feed.xml", SourceType.SYNDICATION, title="Example")
    again = await store.create_source("https://example.com/feed.xml", SourceType.SYNDICATION, title="Other")

    assert first.id == again.id
    assert again.title == "Example"
    assert first.type is SourceType.SYNDICATION
    assert first.fetch_count == 0
    assert [s.id for s in await store.list_sources()] == [first.id]
    assert await store.get_source(999) is None


@pytest.mark.asyncio
async def test_upsert_reports_added_then_updated(store):
    source = await store.create_source("https://example.com/feed.xml", SourceType.SYNDICATION)
    key = "https://example.com/posts/1"

    assert await store.upsert_content_item("rss_content", source.id, key, _row(1), False) == "added"
    assert await store.upsert_content_item("rss_content", source.id, key, _row(1, "Renamed"), True) == "updated"
    # A stale existence check still lands as an update
    assert await store.upsert_content_item("rss_content", source.id, key, _row(1), False) == "updated"

    rows = await store.list_content("rss_content", source.id)
    assert len(rows) == 1
    assert rows[0]["title"] == "Post 1"
    assert await store.count_content("rss_content") == 1


@pytest.mark.asyncio
async def test_exists_by_dedup_key_is_scoped_to_source(store):
    a = await store.create_source("https://a.example.com/feed.xml", SourceType.SYNDICATION)
    b = await store.create_source("https://b.example.com/feed.xml", SourceType.SYNDICATION)
    await store.upsert_content_item("rss_content", a.id, "k1", _row(1), False)

    assert await store.exists_by_dedup_key("rss_content", a.id, ["k1", "k2"]) == {"k1"}
    assert await store.exists_by_dedup_key("rss_content", b.id, ["k1"]) == set()
    assert await store.exists_by_dedup_key("rss_content", a.id, []) == set()


@pytest.mark.asyncio
async def test_source_status_updates(store):
    source = await store.create_source("https://example.com/feed.xml", SourceType.SYNDICATION)

    await store.update_source_status(source.id, "Failed to fetch feed", 1700000000)
    failed = await store.get_source(source.id)
    await store.update_source_status(source.id, None, 1700000100, fetch_count=3)
    recovered = await store.get_source(source.id)

    assert (failed.fetch_error, failed.last_fetched_at, failed.fetch_count) == ("Failed to fetch feed", 1700000000, 0)
    assert (recovered.fetch_error, recovered.last_fetched_at, recovered.fetch_count) == (None, 1700000100, 3)


@pytest.mark.asyncio
async def test_unknown_tables_and_columns_are_rejected(store):
    with pytest.raises(StoreError):
        await store.exists_by_dedup_key("sources", 1, ["x"])
    with pytest.raises(StoreError):
        await store.upsert_content_item("rss_content", 1, "x", {"title": "t", "bogus": 1}, False)


@pytest.mark.asyncio
async def test_resync_against_sqlite_is_idempotent(monkeypatch, store):
    source = await store.create_source("https://example.com/feed.xml", SourceType.SYNDICATION)
    handler = RSSHandler()
    feed = make_feed([make_item(1), make_item(2), make_item(3, url="https://example.com/posts/1")])

    async def fake_fetch_feed(url):
        return feed

    monkeypatch.setattr(handler, "fetch_feed", fake_fetch_feed)
    context = HandlerContext(store=store, source=source)

    first = await handler.sync_content(context)
    second = await handler.sync_content(context)

    assert first.articles_added == 2
    assert (second.articles_added, second.articles_updated) == (0, 2)
    assert await store.count_content("rss_content", source.id) == 2
    stored = await store.get_source(source.id)
    assert stored.fetch_count == 2
    assert stored.fetch_error is None


@pytest.mark.asyncio
async def test_execute_requires_running_worker(tmp_path):
    db = DatabaseQueue(str(tmp_path / "stopped.db"))
    with pytest.raises(StoreError):
        await db.execute("list_sources")
