#!/usr/bin/env python3
"""
Repository interfaces consumed by the ingestion core, plus in-memory versions.

The ingestion handlers and workers only ever talk to these interfaces. The
SQLite implementations live in database.py; the in-memory ones here back the
tests and any run that does not need persistence. They hand out copies, so
callers never mutate stored state by accident.
"""

from abc import ABC, abstractmethod
from dataclasses import replace
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, List, Optional, Tuple
from uuid import uuid4

from config import get_logger
from errors import (
    InvalidJobTransitionError,
    JobAlreadyCompletedError,
    JobNotFoundError,
)
from models import (
    Feed,
    FeedEntry,
    FeedEntryFindParams,
    FeedFindParams,
    FeedStatus,
    FeedUpsertParams,
    Job,
    JobStatus,
    clamp_interval,
)
from utils import utc_now

# Module-specific logger
logger = get_logger("repository")


class FeedRepository(ABC):
    @abstractmethod
    async def find(self, params: FeedFindParams) -> List[Feed]:
        ...

    async def find_by_source_url(self, source_url: str) -> Optional[Feed]:
        feeds = await self.find(FeedFindParams(source_url=source_url, limit=1))
        return feeds[0] if feeds else None

    async def find_by_id(self, feed_id: str) -> Optional[Feed]:
        feeds = await self.find(FeedFindParams(id=feed_id, limit=1))
        return feeds[0] if feeds else None

    @abstractmethod
    async def upsert(self, params: FeedUpsertParams) -> str:
        """Insert or update a feed keyed by source URL, together with its entries.

        Entries already stored for the feed (same link) are left untouched. The
        feed is set Healthy and its last_refreshed_at is set to now.

        Returns:
            The feed id
        """

    @abstractmethod
    async def mark_as_failed(self, source_url: str) -> None:
        """Set the feed's status to Failing. Unknown URLs are ignored."""


class FeedEntryRepository(ABC):
    @abstractmethod
    async def find(self, params: FeedEntryFindParams) -> List[FeedEntry]:
        """Entries ordered newest first by published_at."""


class JobRepository(ABC):
    @abstractmethod
    async def create(self, job_type: str, payload: Optional[Dict[str, Any]] = None,
                     group_identifier: Optional[str] = None) -> str:
        ...

    @abstractmethod
    async def get(self, job_id: str) -> Job:
        ...

    @abstractmethod
    async def update(self, job_id: str, status: JobStatus, message: Optional[str] = None) -> None:
        """Move a job to `status`.

        Raises:
            JobNotFoundError: no job with this id
            JobAlreadyCompletedError: Running was requested on a completed job
            InvalidJobTransitionError: any other transition the state machine forbids
        """

    @abstractmethod
    async def find(self, status: Optional[JobStatus] = None, job_type: Optional[str] = None,
                   group_identifier: Optional[str] = None) -> List[Job]:
        ...


def check_job_transition(job_id: str, current: JobStatus, target: JobStatus) -> None:
    """Raise the error matching a forbidden transition, or return if it is allowed."""
    if target == JobStatus.RUNNING and current == JobStatus.COMPLETED:
        raise JobAlreadyCompletedError(job_id)
    if not current.can_transition_to(target):
        raise InvalidJobTransitionError(job_id, current.value, target.value)


def is_ready_to_refresh(feed: Feed, now: datetime) -> bool:
    if feed.status == FeedStatus.DISABLED:
        return False
    if feed.last_refreshed_at is None:
        return True
    return feed.last_refreshed_at + timedelta(minutes=feed.refresh_interval_min) <= now


class InMemoryStore:
    """Dict-backed storage shared by the three in-memory repositories."""

    def __init__(self, now: Callable[[], datetime] = utc_now):
        self.now = now
        self.feeds: Dict[str, Feed] = {}
        self.entries: Dict[Tuple[str, str], FeedEntry] = {}
        self.jobs: Dict[str, Job] = {}
        self.feed_repository = InMemoryFeedRepository(self)
        self.feed_entry_repository = InMemoryFeedEntryRepository(self)
        self.job_repository = InMemoryJobRepository(self)


class InMemoryFeedRepository(FeedRepository):
    def __init__(self, store: InMemoryStore):
        self.store = store

    async def find(self, params: FeedFindParams) -> List[Feed]:
        now = params.now or self.store.now()
        results = []
        for feed in self.store.feeds.values():
            if params.id is not None and feed.id != params.id:
                continue
            if params.source_url is not None and feed.source_url != params.source_url:
                continue
            if params.ready_to_refresh and not is_ready_to_refresh(feed, now):
                continue
            results.append(replace(feed))
        if params.limit is not None:
            results = results[:params.limit]
        return results

    async def upsert(self, params: FeedUpsertParams) -> str:
        now = self.store.now()
        existing = next((f for f in self.store.feeds.values() if f.source_url == params.source_url), None)
        if existing is None:
            feed = Feed(
                id=str(uuid4()),
                source_url=params.source_url,
                link=params.link,
                title=params.title,
                created_at=now,
            )
            self.store.feeds[feed.id] = feed
        else:
            feed = existing

        feed.link = params.link
        feed.title = params.title
        feed.description = params.description
        feed.is_custom = params.is_custom
        feed.status = FeedStatus.HEALTHY
        feed.refresh_interval_min = clamp_interval(params.refresh_interval_min)
        feed.last_refreshed_at = now
        feed.updated_at = now

        new_entries = 0
        for entry in params.entries:
            key = (feed.id, entry.link)
            if key in self.store.entries:
                continue
            self.store.entries[key] = FeedEntry(
                id=str(uuid4()),
                feed_id=feed.id,
                link=entry.link,
                title=entry.title,
                published_at=entry.published_at,
                description=entry.description,
                author=entry.author,
                thumbnail_url=entry.thumbnail_url,
                created_at=now,
            )
            new_entries += 1

        logger.debug("Upserted feed %s with %d new entries", feed.source_url, new_entries)
        return feed.id

    async def mark_as_failed(self, source_url: str) -> None:
        for feed in self.store.feeds.values():
            if feed.source_url == source_url:
                feed.status = FeedStatus.FAILING
                feed.updated_at = self.store.now()


class InMemoryFeedEntryRepository(FeedEntryRepository):
    def __init__(self, store: InMemoryStore):
        self.store = store

    async def find(self, params: FeedEntryFindParams) -> List[FeedEntry]:
        entries = [
            replace(e) for e in self.store.entries.values()
            if params.feed_id is None or e.feed_id == params.feed_id
        ]
        entries.sort(key=lambda e: e.published_at, reverse=True)
        if params.limit is not None:
            entries = entries[:params.limit]
        return entries


class InMemoryJobRepository(JobRepository):
    def __init__(self, store: InMemoryStore):
        self.store = store

    async def create(self, job_type: str, payload: Optional[Dict[str, Any]] = None,
                     group_identifier: Optional[str] = None) -> str:
        now = self.store.now()
        job = Job(
            id=str(uuid4()),
            job_type=job_type,
            payload=dict(payload or {}),
            group_identifier=group_identifier,
            created_at=now,
            updated_at=now,
        )
        self.store.jobs[job.id] = job
        return job.id

    def _stored(self, job_id: str) -> Job:
        job = self.store.jobs.get(job_id)
        if job is None:
            raise JobNotFoundError(job_id)
        return job

    async def get(self, job_id: str) -> Job:
        return replace(self._stored(job_id))

    async def update(self, job_id: str, status: JobStatus, message: Optional[str] = None) -> None:
        job = self._stored(job_id)
        check_job_transition(job_id, job.status, status)
        now = self.store.now()
        job.status = status
        job.message = message
        job.updated_at = now
        if status in (JobStatus.COMPLETED, JobStatus.FAILED):
            job.completed_at = now

    async def find(self, status: Optional[JobStatus] = None, job_type: Optional[str] = None,
                   group_identifier: Optional[str] = None) -> List[Job]:
        return [
            replace(job) for job in self.store.jobs.values()
            if (status is None or job.status == status)
            and (job_type is None or job.job_type == job_type)
            and (group_identifier is None or job.group_identifier == group_identifier)
        ]
