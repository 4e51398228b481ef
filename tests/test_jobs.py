from datetime import timedelta

import pytest

from errors import JobPayloadError
from job_queue import AsyncioJobQueue
from jobs import SCRAPE_FEED_JOB, RefreshFeedsJobHandler, ScrapeFeedJobHandler
from models import FeedStatus, FeedUpsertParams, Job, JobStatus


class FakeRefreshHandler:
    def __init__(self):
        self.urls = []

    async def handle(self, source_url):
        self.urls.append(source_url)


async def _add_feed(store, source_url, **changes):
    feed_id = await store.feed_repository.upsert(
        FeedUpsertParams(source_url=source_url, link=source_url, title=source_url)
    )
    for name, value in changes.items():
        setattr(store.feeds[feed_id], name, value)
    return feed_id


async def _drain(queue):
    await queue.close()
    job_ids = []
    while True:
        job_id = await queue.pop()
        if job_id is None:
            return job_ids
        job_ids.append(job_id)


@pytest.mark.asyncio
async def test_scrape_feed_refreshes_payload_url():
    refresh_handler = FakeRefreshHandler()
    handler = ScrapeFeedJobHandler(refresh_handler)

    await handler(Job(id="job-1", job_type=SCRAPE_FEED_JOB, payload={"source_url": " https://example.com/feed "}))

    assert refresh_handler.urls == ["https://example.com/feed"]


@pytest.mark.asyncio
@pytest.mark.parametrize("payload", [{}, {"source_url": None}, {"source_url": 42}, {"source_url": "not-a-url"}])
async def test_scrape_feed_rejects_bad_payload(payload):
    refresh_handler = FakeRefreshHandler()
    handler = ScrapeFeedJobHandler(refresh_handler)

    with pytest.raises(JobPayloadError):
        await handler(Job(id="job-1", job_type=SCRAPE_FEED_JOB, payload=payload))
    assert refresh_handler.urls == []


@pytest.mark.asyncio
async def test_refresh_feeds_queues_due_feeds(store, clock):
    never = await _add_feed(store, "https://a.example.com/feed", last_refreshed_at=None)
    overdue = await _add_feed(store, "https://b.example.com/feed",
                              last_refreshed_at=clock.now - timedelta(minutes=90), refresh_interval_min=60)
    exactly_due = await _add_feed(store, "https://c.example.com/feed",
                                  last_refreshed_at=clock.now - timedelta(minutes=30), refresh_interval_min=30)
    await _add_feed(store, "https://d.example.com/feed",
                    last_refreshed_at=clock.now - timedelta(minutes=10), refresh_interval_min=60)
    await _add_feed(store, "https://e.example.com/feed", status=FeedStatus.DISABLED, last_refreshed_at=None)
    failing = await _add_feed(store, "https://f.example.com/feed", status=FeedStatus.FAILING,
                              last_refreshed_at=clock.now - timedelta(hours=2))

    queue = AsyncioJobQueue(SCRAPE_FEED_JOB)
    sweep = Job(id="sweep-1", job_type="refresh_feeds")
    handler = RefreshFeedsJobHandler(store.feed_repository, store.job_repository, queue, now=clock)

    await handler(sweep)

    queued = await _drain(queue)
    jobs = await store.job_repository.find(group_identifier="sweep-1")
    assert sorted(j.id for j in jobs) == sorted(queued)
    assert {j.payload["feed_id"] for j in jobs} == {never, overdue, exactly_due, failing}
    for job in jobs:
        assert job.job_type == SCRAPE_FEED_JOB
        assert job.status == JobStatus.PENDING
        assert job.payload["source_url"] == store.feeds[job.payload["feed_id"]].source_url


@pytest.mark.asyncio
async def test_refresh_feeds_with_nothing_due(store, clock):
    await _add_feed(store, "https://a.example.com/feed")
    queue = AsyncioJobQueue(SCRAPE_FEED_JOB)
    handler = RefreshFeedsJobHandler(store.feed_repository, store.job_repository, queue, now=clock)

    await handler(Job(id="sweep-1", job_type="refresh_feeds"))

    assert await _drain(queue) == []
    assert store.jobs == {}
