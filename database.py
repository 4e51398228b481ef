#!/usr/bin/env python3
"""
SQLite storage for feeds, feed entries and jobs.

All SQL runs on a single connection owned by the DatabaseQueue worker
coroutine, which executes named operations in the order they are queued.
The Sqlite*Repository classes adapt those operations to the repository
interfaces in repository.py.
"""

import json
from os import path
from sqlite3 import connect, Row, Error
from asyncio import Queue, create_task, wait_for, TimeoutError, CancelledError, Event
from datetime import datetime
from uuid import uuid4
from typing import Any, Callable, Dict, List, Optional

from config import get_logger
from errors import IngestError, JobNotFoundError, InvalidJobTransitionError, RepositoryError
from models import (
    Feed,
    FeedEntry,
    FeedEntryFindParams,
    FeedEntryUpsert,
    FeedFindParams,
    FeedStatus,
    FeedUpsertParams,
    Job,
    JobStatus,
    clamp_interval,
)
from repository import FeedRepository, FeedEntryRepository, JobRepository, check_job_transition
from telemetry import trace_span
from utils import from_epoch_micros, from_timestamp, to_epoch_micros, to_timestamp, utc_now

# Module-specific logger
logger = get_logger("database")

SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS feeds (
    id TEXT PRIMARY KEY,
    source_url TEXT NOT NULL UNIQUE,
    link TEXT NOT NULL,
    title TEXT NOT NULL,
    description TEXT,
    is_custom INTEGER NOT NULL DEFAULT 0,
    status TEXT NOT NULL DEFAULT 'healthy',
    refresh_interval_min INTEGER NOT NULL DEFAULT 60,
    last_refreshed_at INTEGER,
    created_at INTEGER NOT NULL,
    updated_at INTEGER NOT NULL
);

CREATE TABLE IF NOT EXISTS feed_entries (
    id TEXT PRIMARY KEY,
    feed_id TEXT NOT NULL REFERENCES feeds(id) ON DELETE CASCADE,
    link TEXT NOT NULL,
    title TEXT NOT NULL,
    published_at INTEGER NOT NULL,  -- microseconds since the epoch
    description TEXT,
    author TEXT,
    thumbnail_url TEXT,
    created_at INTEGER NOT NULL,
    UNIQUE(feed_id, link)
);

CREATE INDEX IF NOT EXISTS idx_feed_entries_published
    ON feed_entries(feed_id, published_at DESC);

CREATE TABLE IF NOT EXISTS jobs (
    id TEXT PRIMARY KEY,
    job_type TEXT NOT NULL,
    payload TEXT NOT NULL DEFAULT '{}',
    status TEXT NOT NULL DEFAULT 'pending',
    message TEXT,
    group_identifier TEXT,
    created_at INTEGER NOT NULL,
    updated_at INTEGER NOT NULL,
    completed_at INTEGER
);

CREATE INDEX IF NOT EXISTS idx_jobs_status ON jobs(status, job_type);
"""


def initialize_database(conn) -> None:
    """Create any missing tables and indexes."""
    cursor = conn.cursor()
    try:
        cursor.execute("SELECT name FROM sqlite_master WHERE type='table' AND name='feeds'")
        if cursor.fetchone() is None:
            logger.info("Database is new or empty. Initializing schema.")
        cursor.executescript(SCHEMA_SQL)
        conn.commit()
    except Error as e:
        logger.error(f"Error initializing database: {e}")
        raise
    finally:
        cursor.close()


class DatabaseQueue:
    """A queue for database operations so that one coroutine owns the connection."""

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
        logger.info("Database worker started")

    async def stop(self) -> None:
        """Stop the database worker."""
        if not self.running:
            return

        self.running = False
        if self.worker_task:
            self.worker_task.cancel()
            try:
                await self.worker_task
            except CancelledError:
                pass

        if self.conn:
            self.conn.close()
            self.conn = None

        # Wake any callers still waiting so they do not hang forever
        for operation_id, event in self.events.items():
            self.results.setdefault(operation_id, {"error": RepositoryError("database worker stopped")})
            event.set()
        self.events.clear()

        logger.info("Database worker stopped")

    async def _worker(self) -> None:
        """Worker coroutine processing database operations."""
        while self.running:
            try:
                try:
                    operation_id, operation_name, params = await wait_for(self.queue.get(), timeout=1.0)
                except TimeoutError:
                    continue

                try:
                    method = getattr(self, f"op_{operation_name}", None)
                    if method is None:
                        self.results[operation_id] = {"error": RepositoryError(f"Unknown operation: {operation_name}")}
                    else:
                        self.results[operation_id] = {"result": method(**params)}
                except IngestError as e:
                    self.results[operation_id] = {"error": e}
                except Exception as e:
                    logger.error(f"Database operation error in {operation_name}: {e}")
                    self.results[operation_id] = {"error": RepositoryError(f"{operation_name} failed: {e}")}
                finally:
                    if operation_id in self.events:
                        self.events[operation_id].set()
                    self.queue.task_done()

            except CancelledError:
                logger.info("Database worker cancelled")
                break

    @trace_span(
        "db.execute",
        tracer_name="db",
        static_attrs={"db.system": "sqlite"},
        attr_from_args=lambda self, operation_name, **params: {
            "db.operation": operation_name,
            "db.params.keys": ",".join(sorted(params.keys())) if params else "",
        },
    )
    async def execute(self, operation_name: str, **params) -> Any:
        """Execute a named database operation and return its result.

        Raises:
            IngestError: domain errors raised by the operation, unchanged
            RepositoryError: any other storage failure
        """
        if not self.running:
            raise RepositoryError("database worker is not running")

        operation_id = str(uuid4())
        event = Event()
        self.events[operation_id] = event

        try:
            await self.queue.put((operation_id, operation_name, params))
            await event.wait()

            result = self.results.pop(operation_id)
            if "error" in result:
                raise result["error"]
            return result["result"]
        finally:
            self.events.pop(operation_id, None)

    # Feed operations
    def op_find_feeds(self, id: Optional[str] = None, source_url: Optional[str] = None,
                      ready_at: Optional[int] = None, limit: Optional[int] = None) -> List[Dict[str, Any]]:
        clauses = []
        args: List[Any] = []
        if id is not None:
            clauses.append("id = ?")
            args.append(id)
        if source_url is not None:
            clauses.append("source_url = ?")
            args.append(source_url)
        if ready_at is not None:
            clauses.append(
                "status != 'disabled' AND "
                "(last_refreshed_at IS NULL OR last_refreshed_at + refresh_interval_min * 60 <= ?)"
            )
            args.append(ready_at)

        query = "SELECT * FROM feeds"
        if clauses:
            query += " WHERE " + " AND ".join(clauses)
        query += " ORDER BY created_at, rowid"
        if limit is not None:
            query += " LIMIT ?"
            args.append(limit)

        cursor = self.conn.cursor()
        try:
            cursor.execute(query, args)
            return [dict(row) for row in cursor.fetchall()]
        finally:
            cursor.close()

    def op_upsert_feed(self, source_url: str, link: str, title: str, description: Optional[str],
                       refresh_interval_min: int, is_custom: bool, entries: List[FeedEntryUpsert],
                       now: int) -> str:
        """Insert or update a feed and add its new entries in one transaction."""
        cursor = self.conn.cursor()
        try:
            cursor.execute("SELECT id FROM feeds WHERE source_url = ?", (source_url,))
            row = cursor.fetchone()
            if row:
                feed_id = row["id"]
                cursor.execute(
                    """
                    UPDATE feeds
                       SET link = ?, title = ?, description = ?, is_custom = ?, status = ?,
                           refresh_interval_min = ?, last_refreshed_at = ?, updated_at = ?
                     WHERE id = ?
                    """,
                    (link, title, description, int(is_custom), FeedStatus.HEALTHY.value,
                     refresh_interval_min, now, now, feed_id),
                )
            else:
                feed_id = str(uuid4())
                cursor.execute(
                    """
                    INSERT INTO feeds (id, source_url, link, title, description, is_custom, status,
                                       refresh_interval_min, last_refreshed_at, created_at, updated_at)
                    VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                    """,
                    (feed_id, source_url, link, title, description, int(is_custom), FeedStatus.HEALTHY.value,
                     refresh_interval_min, now, now, now),
                )

            new_entries = 0
            for entry in entries:
                cursor.execute(
                    """
                    INSERT OR IGNORE INTO feed_entries
                        (id, feed_id, link, title, published_at, description, author, thumbnail_url, created_at)
                    VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
                    """,
                    (str(uuid4()), feed_id, entry.link, entry.title, to_epoch_micros(entry.published_at),
                     entry.description, entry.author, entry.thumbnail_url, now),
                )
                new_entries += cursor.rowcount

            self.conn.commit()
            logger.debug(f"Upserted feed {source_url} ({new_entries} new entries)")
            return feed_id
        except Exception:
            self.conn.rollback()
            raise
        finally:
            cursor.close()

    def op_mark_feed_failed(self, source_url: str, now: int) -> int:
        cursor = self.conn.cursor()
        try:
            cursor.execute(
                "UPDATE feeds SET status = ?, updated_at = ? WHERE source_url = ?",
                (FeedStatus.FAILING.value, now, source_url),
            )
            self.conn.commit()
            return cursor.rowcount
        finally:
            cursor.close()

    def op_find_feed_entries(self, feed_id: Optional[str] = None, limit: Optional[int] = None) -> List[Dict[str, Any]]:
        query = "SELECT * FROM feed_entries"
        args: List[Any] = []
        if feed_id is not None:
            query += " WHERE feed_id = ?"
            args.append(feed_id)
        query += " ORDER BY published_at DESC, rowid DESC"
        if limit is not None:
            query += " LIMIT ?"
            args.append(limit)

        cursor = self.conn.cursor()
        try:
            cursor.execute(query, args)
            return [dict(row) for row in cursor.fetchall()]
        finally:
            cursor.close()

    # Job operations
    def op_create_job(self, job_type: str, payload: Dict[str, Any], group_identifier: Optional[str], now: int) -> str:
        job_id = str(uuid4())
        cursor = self.conn.cursor()
        try:
            cursor.execute(
                """
                INSERT INTO jobs (id, job_type, payload, status, group_identifier, created_at, updated_at)
                VALUES (?, ?, ?, ?, ?, ?, ?)
                """,
                (job_id, job_type, json.dumps(payload or {}), JobStatus.PENDING.value, group_identifier, now, now),
            )
            self.conn.commit()
            return job_id
        finally:
            cursor.close()

    def op_get_job(self, job_id: str) -> Dict[str, Any]:
        cursor = self.conn.cursor()
        try:
            cursor.execute("SELECT * FROM jobs WHERE id = ?", (job_id,))
            row = cursor.fetchone()
        finally:
            cursor.close()
        if row is None:
            raise JobNotFoundError(job_id)
        return dict(row)

    def op_update_job(self, job_id: str, status: str, message: Optional[str], now: int) -> None:
        """Conditionally move a job to `status`.

        The UPDATE only matches rows whose current status may move to the target,
        so two workers racing on the same job cannot both start or finish it.
        """
        target = JobStatus(status)
        sources = [s.value for s in JobStatus if s.can_transition_to(target)]
        completed_at = now if target in (JobStatus.COMPLETED, JobStatus.FAILED) else None

        cursor = self.conn.cursor()
        try:
            if sources:
                placeholders = ",".join("?" for _ in sources)
                cursor.execute(
                    f"""
                    UPDATE jobs
                       SET status = ?, message = ?, updated_at = ?, completed_at = COALESCE(?, completed_at)
                     WHERE id = ? AND status IN ({placeholders})
                    """,
                    [target.value, message, now, completed_at, job_id] + sources,
                )
                if cursor.rowcount == 1:
                    self.conn.commit()
                    return

            cursor.execute("SELECT status FROM jobs WHERE id = ?", (job_id,))
            row = cursor.fetchone()
        finally:
            cursor.close()

        if row is None:
            raise JobNotFoundError(job_id)
        current = JobStatus(row["status"])
        check_job_transition(job_id, current, target)
        raise InvalidJobTransitionError(job_id, current.value, target.value)

    def op_find_jobs(self, status: Optional[str] = None, job_type: Optional[str] = None,
                     group_identifier: Optional[str] = None) -> List[Dict[str, Any]]:
        clauses = []
        args: List[Any] = []
        for column, value in (("status", status), ("job_type", job_type), ("group_identifier", group_identifier)):
            if value is not None:
                clauses.append(f"{column} = ?")
                args.append(value)

        query = "SELECT * FROM jobs"
        if clauses:
            query += " WHERE " + " AND ".join(clauses)
        query += " ORDER BY created_at, rowid"

        cursor = self.conn.cursor()
        try:
            cursor.execute(query, args)
            return [dict(row) for row in cursor.fetchall()]
        finally:
            cursor.close()


def _feed_from_row(row: Dict[str, Any]) -> Feed:
    return Feed(
        id=row["id"],
        source_url=row["source_url"],
        link=row["link"],
        title=row["title"],
        description=row["description"],
        is_custom=bool(row["is_custom"]),
        status=FeedStatus(row["status"]),
        refresh_interval_min=row["refresh_interval_min"],
        last_refreshed_at=from_timestamp(row["last_refreshed_at"]),
        created_at=from_timestamp(row["created_at"]),
        updated_at=from_timestamp(row["updated_at"]),
    )


def _entry_from_row(row: Dict[str, Any]) -> FeedEntry:
    return FeedEntry(
        id=row["id"],
        feed_id=row["feed_id"],
        link=row["link"],
        title=row["title"],
        published_at=from_epoch_micros(row["published_at"]),
        description=row["description"],
        author=row["author"],
        thumbnail_url=row["thumbnail_url"],
        created_at=from_timestamp(row["created_at"]),
    )


def _job_from_row(row: Dict[str, Any]) -> Job:
    return Job(
        id=row["id"],
        job_type=row["job_type"],
        payload=json.loads(row["payload"] or "{}"),
        status=JobStatus(row["status"]),
        message=row["message"],
        group_identifier=row["group_identifier"],
        created_at=from_timestamp(row["created_at"]),
        updated_at=from_timestamp(row["updated_at"]),
        completed_at=from_timestamp(row["completed_at"]),
    )


class SqliteFeedRepository(FeedRepository):
    def __init__(self, db: DatabaseQueue, now: Callable[[], datetime] = utc_now):
        self.db = db
        self.now = now

    async def find(self, params: FeedFindParams) -> List[Feed]:
        ready_at = None
        if params.ready_to_refresh:
            ready_at = to_timestamp(params.now or self.now())
        rows = await self.db.execute(
            "find_feeds", id=params.id, source_url=params.source_url, ready_at=ready_at, limit=params.limit
        )
        return [_feed_from_row(row) for row in rows]

    async def upsert(self, params: FeedUpsertParams) -> str:
        return await self.db.execute(
            "upsert_feed",
            source_url=params.source_url,
            link=params.link,
            title=params.title,
            description=params.description,
            refresh_interval_min=clamp_interval(params.refresh_interval_min),
            is_custom=params.is_custom,
            entries=list(params.entries),
            now=to_timestamp(self.now()),
        )

    async def mark_as_failed(self, source_url: str) -> None:
        updated = await self.db.execute("mark_feed_failed", source_url=source_url, now=to_timestamp(self.now()))
        if not updated:
            logger.debug(f"mark_as_failed: no stored feed for {source_url}")


class SqliteFeedEntryRepository(FeedEntryRepository):
    def __init__(self, db: DatabaseQueue):
        self.db = db

    async def find(self, params: FeedEntryFindParams) -> List[FeedEntry]:
        rows = await self.db.execute("find_feed_entries", feed_id=params.feed_id, limit=params.limit)
        return [_entry_from_row(row) for row in rows]


class SqliteJobRepository(JobRepository):
    def __init__(self, db: DatabaseQueue, now: Callable[[], datetime] = utc_now):
        self.db = db
        self.now = now

    async def create(self, job_type: str, payload: Optional[Dict[str, Any]] = None,
                     group_identifier: Optional[str] = None) -> str:
        return await self.db.execute(
            "create_job",
            job_type=job_type,
            payload=payload or {},
            group_identifier=group_identifier,
            now=to_timestamp(self.now()),
        )

    async def get(self, job_id: str) -> Job:
        return _job_from_row(await self.db.execute("get_job", job_id=job_id))

    async def update(self, job_id: str, status: JobStatus, message: Optional[str] = None) -> None:
        await self.db.execute(
            "update_job", job_id=job_id, status=JobStatus(status).value, message=message,
            now=to_timestamp(self.now()),
        )

    async def find(self, status: Optional[JobStatus] = None, job_type: Optional[str] = None,
                   group_identifier: Optional[str] = None) -> List[Job]:
        rows = await self.db.execute(
            "find_jobs",
            status=JobStatus(status).value if status is not None else None,
            job_type=job_type,
            group_identifier=group_identifier,
        )
        return [_job_from_row(row) for row in rows]
