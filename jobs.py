#!/usr/bin/env python3
"""
Job handlers for the ingestion workers.

A handler is any async callable taking a Job; returning means success and
raising means failure, with str(error) recorded as the job's message.

- scrape_feed: refresh one feed, payload {"source_url": ..., "feed_id": ...}
- refresh_feeds: the recurring sweep that enqueues a scrape_feed job for
  every feed whose refresh interval has elapsed
"""

from datetime import datetime
from typing import Awaitable, Callable

from config import get_logger
from errors import JobPayloadError
from job_queue import JobQueue
from models import FeedFindParams, Job
from refresh_feed import RefreshFeedHandler
from repository import FeedRepository, JobRepository
from telemetry import trace_span
from utils import parse_url, utc_now

# Module-specific logger
logger = get_logger("jobs")

SCRAPE_FEED_JOB = "scrape_feed"
REFRESH_FEEDS_JOB = "refresh_feeds"

JobHandler = Callable[[Job], Awaitable[None]]


class ScrapeFeedJobHandler:
    def __init__(self, refresh_handler: RefreshFeedHandler):
        self.refresh_handler = refresh_handler

    @trace_span(
        "job.scrape_feed",
        tracer_name="jobs",
        attr_from_args=lambda self, job: {"job.id": job.id},
    )
    async def __call__(self, job: Job) -> None:
        source_url = job.payload.get("source_url") if isinstance(job.payload, dict) else None
        if not isinstance(source_url, str) or parse_url(source_url) is None:
            raise JobPayloadError(f"job {job.id} has no valid source_url in its payload")

        await self.refresh_handler.handle(source_url.strip())


class RefreshFeedsJobHandler:
    def __init__(self, feed_repository: FeedRepository, job_repository: JobRepository, queue: JobQueue,
                 now: Callable[[], datetime] = utc_now):
        self.feed_repository = feed_repository
        self.job_repository = job_repository
        self.queue = queue
        self.now = now

    @trace_span(
        "job.refresh_feeds",
        tracer_name="jobs",
        attr_from_args=lambda self, job: {"job.id": job.id},
    )
    async def __call__(self, job: Job) -> None:
        feeds = await self.feed_repository.find(FeedFindParams(ready_to_refresh=True, now=self.now()))
        if not feeds:
            logger.debug("No feeds due for refresh")
            return

        for feed in feeds:
            job_id = await self.job_repository.create(
                SCRAPE_FEED_JOB,
                {"feed_id": feed.id, "source_url": feed.source_url},
                group_identifier=job.id,
            )
            await self.queue.push(job_id)

        logger.info(f"Queued {len(feeds)} feeds for refresh (group {job.id})")
