#!/usr/bin/env python3
"""
SQLite persistence for sources and synchronized content.

All statements run on a single connection owned by `DatabaseQueue`, whose
worker coroutine executes queued operations one at a time. `SQLiteContentStore`
exposes the async store contract the sync pipeline uses on top of it.
"""

from os import path, access, R_OK
from time import time
from sqlite3 import connect, Row, IntegrityError
from asyncio import Queue, create_task, wait_for, TimeoutError, CancelledError, Event
from uuid import uuid4
from typing import Any, Dict, List, Optional, Set

from config import config, get_logger
from entities import Source, SourceType
from errors import StoreError
from telemetry import trace_span

logger = get_logger("models")

ADDED = "added"
UPDATED = "updated"

# Columns each content table accepts from handlers (besides the key columns)
CONTENT_COLUMNS: Dict[str, Set[str]] = {
    'rss_content': {
        'title', 'url', 'content', 'excerpt', 'author', 'published_at',
        'featured_media_type', 'featured_media_url', 'featured_thumbnail_url',
        'featured_media_duration', 'reading_time', 'word_count',
    },
    'youtube_content': {
        'video_id', 'title', 'url', 'channel_name', 'published_at', 'description',
        'thumbnail_url', 'video_url', 'duration', 'view_count', 'like_count',
    },
    'podcast_content': {
        'title', 'url', 'author', 'published_at', 'description', 'show_notes',
        'audio_url', 'image_url', 'duration', 'episode_number', 'season_number',
    },
}


def initialize_database(conn) -> None:
    """Create any missing tables from schema.sql."""
    cursor = conn.cursor()
    try:
        cursor.execute("SELECT name FROM sqlite_master WHERE type='table' AND name='sources'")
        if cursor.fetchone() is None:
            logger.info("Database is new or empty. Initializing schema.")
        cursor.executescript(_read_schema_file())
        conn.commit()
    finally:
        cursor.close()


def _read_schema_file() -> str:
    schema_path = config.SCHEMA_FILE_PATH
    if not path.isfile(schema_path):
        raise FileNotFoundError(f"Schema file not found at {schema_path}")
    if not access(schema_path, R_OK):
        raise PermissionError(f"No read permission for schema file at {schema_path}")
    with open(schema_path, 'r') as f:
        return f.read()


def _check_table(table: str) -> Set[str]:
    try:
        return CONTENT_COLUMNS[table]
    except KeyError:
        raise StoreError("content", f"Unknown content table: {table}") from None


class DatabaseQueue:
    """Serializes database operations through a single worker coroutine.

    Operations are the public synchronous methods of this class, invoked by
    name through `execute`.
    """

    def __init__(self, db_path: str):
        self.db_path = db_path
        self.queue = Queue()
        self.results: Dict[str, Dict] = {}
        self.events: Dict[str, Event] = {}
        self.conn = None
        self.running = False
        self.worker_task = None

    async def start(self) -> None:
        """Open the database and start the worker."""
        if self.running:
            return
        if path.isfile(self.db_path):
            logger.info(f"Using existing database at {self.db_path}")
        else:
            logger.info(f"Database file {self.db_path} does not exist. A new database will be created.")
        self.conn = connect(self.db_path)
        self.conn.row_factory = Row
        self.conn.execute("PRAGMA foreign_keys = ON")
        initialize_database(self.conn)

        self.running = True
        self.worker_task = create_task(self._worker())
        logger.debug("Database worker started")

    async def stop(self) -> None:
        """Stop the worker and close the connection."""
        if not self.running:
            return
        self.running = False
        if self.worker_task:
            self.worker_task.cancel()
            try:
                await self.worker_task
            except CancelledError:
                pass
            self.worker_task = None

        if self.conn:
            self.conn.close()
            self.conn = None

        for event in self.events.values():
            event.set()
        self.events.clear()
        self.results.clear()
        logger.debug("Database worker stopped")

    async def __aenter__(self) -> "DatabaseQueue":
        await self.start()
        return self

    async def __aexit__(self, *exc) -> None:
        await self.stop()

    async def _worker(self) -> None:
        while self.running:
            try:
                operation_id, operation_name, params = await wait_for(self.queue.get(), timeout=1.0)
            except TimeoutError:
                continue
            except CancelledError:
                break

            try:
                method = getattr(self, operation_name, None)
                if operation_name.startswith('_') or not callable(method):
                    self.results[operation_id] = {"error": f"Unknown operation: {operation_name}"}
                else:
                    self.results[operation_id] = {"result": method(**params)}
            except Exception as e:
                if self.conn is not None and self.conn.in_transaction:
                    self.conn.rollback()
                logger.error(f"Database operation error in {operation_name}: {e}")
                self.results[operation_id] = {"error": str(e)}
            finally:
                if operation_id in self.events:
                    self.events[operation_id].set()
                self.queue.task_done()

    @trace_span(
        "db.execute",
        tracer_name="db",
        static_attrs={"db.system": "sqlite"},
        attr_from_args=lambda self, operation_name, **params: {"db.operation": operation_name},
    )
    async def execute(self, operation_name: str, **params) -> Any:
        """Queue an operation and wait for its result; raises StoreError on failure."""
        if not self.running:
            raise StoreError(operation_name, "Database worker is not running")
        operation_id = str(uuid4())
        event = Event()
        self.events[operation_id] = event
        try:
            await self.queue.put((operation_id, operation_name, params))
            await event.wait()
            result = self.results.pop(operation_id, None)
            if result is None:
                raise StoreError(operation_name, "Database worker stopped")
            if "error" in result:
                raise StoreError(operation_name, result["error"])
            return result["result"]
        finally:
            self.events.pop(operation_id, None)

    # Source operations
    def create_source(self, url: str, source_type: str, title: Optional[str] = None,
                      favicon_url: Optional[str] = None) -> Dict[str, Any]:
        """Insert a source (idempotent on URL) and return its row."""
        cursor = self.conn.cursor()
        cursor.execute(
            "INSERT OR IGNORE INTO sources (url, type, title, favicon_url, created_at) VALUES (?, ?, ?, ?, ?)",
            (url, source_type, title, favicon_url, int(time()))
        )
        self.conn.commit()
        cursor.execute("SELECT * FROM sources WHERE url = ?", (url,))
        return dict(cursor.fetchone())

    def get_source(self, source_id: int) -> Optional[Dict[str, Any]]:
        cursor = self.conn.cursor()
        cursor.execute("SELECT * FROM sources WHERE id = ?", (source_id,))
        row = cursor.fetchone()
        return dict(row) if row else None

    def list_sources(self) -> List[Dict[str, Any]]:
        cursor = self.conn.cursor()
        cursor.execute("SELECT * FROM sources ORDER BY id")
        return [dict(row) for row in cursor.fetchall()]

    def update_source_status(self, source_id: int, error: Optional[str], fetched_at: int,
                             fetch_count: Optional[int] = None) -> bool:
        """Record the outcome of a sync attempt."""
        cursor = self.conn.cursor()
        if fetch_count is None:
            cursor.execute(
                "UPDATE sources SET fetch_error = ?, last_fetched_at = ? WHERE id = ?",
                (error, fetched_at, source_id)
            )
        else:
            cursor.execute(
                "UPDATE sources SET fetch_error = ?, last_fetched_at = ?, fetch_count = ? WHERE id = ?",
                (error, fetched_at, fetch_count, source_id)
            )
        self.conn.commit()
        return cursor.rowcount > 0

    # Content operations
    def exists_by_dedup_key(self, table: str, source_id: int, keys: List[str]) -> Set[str]:
        """Return the subset of `keys` already stored for this source."""
        _check_table(table)
        if not keys:
            return set()
        found: Set[str] = set()
        cursor = self.conn.cursor()
        # Stay well below SQLite's bound-parameter limit
        for start in range(0, len(keys), 500):
            chunk = list(keys[start:start + 500])
            placeholders = ','.join('?' for _ in chunk)
            cursor.execute(
                f"SELECT dedup_key FROM {table} WHERE source_id = ? AND dedup_key IN ({placeholders})",
                [source_id] + chunk
            )
            found.update(row[0] for row in cursor.fetchall())
        return found

    def upsert_content_item(self, table: str, source_id: int, dedup_key: str,
                            row: Dict[str, Any], exists: bool = False) -> str:
        """Insert or update one item; returns "added" or "updated"."""
        allowed = _check_table(table)
        unknown = set(row) - allowed
        if unknown:
            raise StoreError("upsert_content_item", f"Unknown columns for {table}: {sorted(unknown)}")

        now = int(time())
        columns = sorted(row)
        cursor = self.conn.cursor()

        if exists and self._update_item(cursor, table, source_id, dedup_key, row, columns, now):
            self.conn.commit()
            return UPDATED

        try:
            insert_columns = ['source_id', 'dedup_key'] + columns + ['created_at', 'updated_at']
            cursor.execute(
                f"INSERT INTO {table} ({', '.join(insert_columns)}) VALUES ({', '.join('?' for _ in insert_columns)})",
                [source_id, dedup_key] + [row[c] for c in columns] + [now, now]
            )
            self.conn.commit()
            return ADDED
        except IntegrityError:
            self.conn.rollback()
            # Stored since the existence check ran
            if self._update_item(cursor, table, source_id, dedup_key, row, columns, now):
                self.conn.commit()
                return UPDATED
            raise

    def _update_item(self, cursor, table: str, source_id: int, dedup_key: str,
                     row: Dict[str, Any], columns: List[str], now: int) -> bool:
        assignments = ', '.join(f"{c} = ?" for c in columns + ['updated_at'])
        cursor.execute(
            f"UPDATE {table} SET {assignments} WHERE source_id = ? AND dedup_key = ?",
            [row[c] for c in columns] + [now, source_id, dedup_key]
        )
        return cursor.rowcount > 0

    def count_content(self, table: str, source_id: Optional[int] = None) -> int:
        _check_table(table)
        cursor = self.conn.cursor()
        if source_id is None:
            cursor.execute(f"SELECT COUNT(*) FROM {table}")
        else:
            cursor.execute(f"SELECT COUNT(*) FROM {table} WHERE source_id = ?", (source_id,))
        return cursor.fetchone()[0]

    def list_content(self, table: str, source_id: int, limit: int = 50) -> List[Dict[str, Any]]:
        """Newest items first."""
        _check_table(table)
        cursor = self.conn.cursor()
        cursor.execute(
            f"SELECT * FROM {table} WHERE source_id = ? ORDER BY published_at DESC, id DESC LIMIT ?",
            (source_id, limit)
        )
        return [dict(row) for row in cursor.fetchall()]


def row_to_source(row: Dict[str, Any]) -> Source:
    return Source(
        id=row['id'],
        url=row['url'],
        type=SourceType(row['type']),
        title=row.get('title'),
        last_fetched_at=row.get('last_fetched_at'),
        fetch_error=row.get('fetch_error'),
        fetch_count=row.get('fetch_count') or 0,
    )


class SQLiteContentStore:
    """Async content store and source registry backed by a DatabaseQueue."""

    def __init__(self, db: DatabaseQueue):
        self.db = db

    async def exists_by_dedup_key(self, table: str, source_id: int, keys: List[str]) -> Set[str]:
        return await self.db.execute('exists_by_dedup_key', table=table, source_id=source_id, keys=list(keys))

    async def upsert_content_item(self, table: str, source_id: int, dedup_key: str,
                                  row: Dict[str, Any], exists: bool) -> str:
        return await self.db.execute(
            'upsert_content_item', table=table, source_id=source_id, dedup_key=dedup_key, row=row, exists=exists
        )

    async def update_source_status(self, source_id: int, error: Optional[str], fetched_at: int,
                                   fetch_count: Optional[int] = None) -> None:
        await self.db.execute(
            'update_source_status', source_id=source_id, error=error, fetched_at=fetched_at, fetch_count=fetch_count
        )

    async def create_source(self, url: str, source_type: SourceType, title: Optional[str] = None,
                            favicon_url: Optional[str] = None) -> Source:
        row = await self.db.execute(
            'create_source', url=url, source_type=SourceType(source_type).value, title=title, favicon_url=favicon_url
        )
        return row_to_source(row)

    async def get_source(self, source_id: int) -> Optional[Source]:
        row = await self.db.execute('get_source', source_id=source_id)
        return row_to_source(row) if row else None

    async def list_sources(self) -> List[Source]:
        return [row_to_source(row) for row in await self.db.execute('list_sources')]

    async def count_content(self, table: str, source_id: Optional[int] = None) -> int:
        return await self.db.execute('count_content', table=table, source_id=source_id)

    async def list_content(self, table: str, source_id: int, limit: int = 50) -> List[Dict[str, Any]]:
        return await self.db.execute('list_content', table=table, source_id=source_id, limit=limit)
