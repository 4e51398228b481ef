#!/usr/bin/env python3
"""
Domain entities for feed ingestion.

Feeds, their entries and the jobs that refresh them. Storage lives behind the
repository interfaces in repository.py; this module holds only data and the
rules that belong to the data itself (interval bounds, job transitions).
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

DEFAULT_INTERVAL = 60
MIN_INTERVAL = 5
MAX_INTERVAL = DEFAULT_INTERVAL * 24


def clamp_interval(minutes: int) -> int:
    """Keep a refresh interval within [MIN_INTERVAL, MAX_INTERVAL]."""
    return max(MIN_INTERVAL, min(int(minutes), MAX_INTERVAL))


class FeedStatus(str, Enum):
    HEALTHY = "healthy"
    REFRESHING = "refreshing"
    FAILING = "failing"
    DISABLED = "disabled"


class JobStatus(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"

    def can_transition_to(self, target: "JobStatus") -> bool:
        """Whether the forward-only job state machine allows self -> target."""
        return target in _JOB_TRANSITIONS[self]


_JOB_TRANSITIONS = {
    JobStatus.PENDING: {JobStatus.RUNNING},
    JobStatus.RUNNING: {JobStatus.COMPLETED, JobStatus.FAILED},
    JobStatus.COMPLETED: set(),
    JobStatus.FAILED: set(),
}


@dataclass
class Feed:
    id: str
    source_url: str
    link: str
    title: str
    description: Optional[str] = None
    is_custom: bool = False
    status: FeedStatus = FeedStatus.HEALTHY
    refresh_interval_min: int = DEFAULT_INTERVAL
    last_refreshed_at: Optional[datetime] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


@dataclass
class FeedEntry:
    id: str
    feed_id: str
    link: str
    title: str
    published_at: datetime
    description: Optional[str] = None
    author: Optional[str] = None
    thumbnail_url: Optional[str] = None
    created_at: Optional[datetime] = None


@dataclass
class Job:
    id: str
    job_type: str
    payload: Dict[str, Any] = field(default_factory=dict)
    status: JobStatus = JobStatus.PENDING
    message: Optional[str] = None
    group_identifier: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None


@dataclass
class FeedFindParams:
    """Filter for FeedRepository.find. Unset fields do not constrain the result.

    ready_to_refresh selects feeds that are not disabled and whose
    last_refreshed_at is unset or at least refresh_interval_min old at `now`.
    """

    id: Optional[str] = None
    source_url: Optional[str] = None
    ready_to_refresh: bool = False
    now: Optional[datetime] = None
    limit: Optional[int] = None


@dataclass
class FeedEntryFindParams:
    feed_id: Optional[str] = None
    limit: Optional[int] = None


@dataclass
class FeedEntryUpsert:
    link: str
    title: str
    published_at: datetime
    description: Optional[str] = None
    author: Optional[str] = None
    thumbnail_url: Optional[str] = None


@dataclass
class FeedUpsertParams:
    source_url: str
    link: str
    title: str
    description: Optional[str] = None
    refresh_interval_min: int = DEFAULT_INTERVAL
    is_custom: bool = False
    entries: List[FeedEntryUpsert] = field(default_factory=list)
