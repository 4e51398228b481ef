#!/usr/bin/env python3
"""
Feed Ingestion Service

Wires storage, the HTTP client, the scraper and the job handlers into the
long-running workers:

1. A cron worker fires `refresh_feeds` on REFRESH_FEEDS_CRON and queues a
   `scrape_feed` job for every feed whose refresh interval has elapsed
2. A job worker drains the `scrape_feed` queue, refreshing one feed per job

Also provides one-off modes for refreshing a single feed, seeding feeds from
feeds.yaml and printing the state of the store.
"""

import asyncio
import sys
from collections import Counter
from datetime import datetime, timezone
from typing import Any, Dict, Optional
import argparse

from config import config, get_logger
from cron_worker import CronSchedule, CronWorker
from database import DatabaseQueue, SqliteFeedEntryRepository, SqliteFeedRepository, SqliteJobRepository
from errors import ScraperError
from feed_scraper import FeedScraper
from http_client import AiohttpClient, HttpClient
from job_queue import AsyncioJobQueue
from job_worker import JobWorker
from jobs import REFRESH_FEEDS_JOB, SCRAPE_FEED_JOB, RefreshFeedsJobHandler, ScrapeFeedJobHandler
from models import Feed, FeedFindParams, JobStatus
from refresh_feed import RefreshFeedHandler
from telemetry import init_telemetry, trace_span
from utils import concurrency_limit

# Module-specific logger
logger = get_logger("service")
init_telemetry("feed-ingest")


class IngestionService:
    """Owns the shared resources and builds the workers on top of them."""

    def __init__(self, db_path: Optional[str] = None, http_client: Optional[HttpClient] = None) -> None:
        self.db = DatabaseQueue(db_path or config.DATABASE_PATH)
        self.http_client = http_client or AiohttpClient()
        self.feed_repository = SqliteFeedRepository(self.db)
        self.feed_entry_repository = SqliteFeedEntryRepository(self.db)
        self.job_repository = SqliteJobRepository(self.db)
        self.scrape_feed_queue = AsyncioJobQueue(SCRAPE_FEED_JOB)
        self.scraper = FeedScraper(self.http_client)
        self.refresh_handler = RefreshFeedHandler(self.feed_repository, self.feed_entry_repository, self.scraper)

    async def start(self) -> None:
        await self.db.start()

    async def close(self) -> None:
        await self.scrape_feed_queue.close()
        await self.http_client.close()
        await self.db.stop()

    def build_scrape_feed_worker(self) -> JobWorker:
        handler = concurrency_limit(ScrapeFeedJobHandler(self.refresh_handler), config.SCRAPE_FEED_CONCURRENCY)
        return JobWorker(self.scrape_feed_queue, self.job_repository, handler, name=SCRAPE_FEED_JOB)

    def build_refresh_feeds_worker(self) -> CronWorker:
        schedule = CronSchedule(config.REFRESH_FEEDS_CRON, config.SCHEDULER_TIMEZONE)
        handler = RefreshFeedsJobHandler(self.feed_repository, self.job_repository, self.scrape_feed_queue)
        return CronWorker(REFRESH_FEEDS_JOB, schedule, self.job_repository, handler)

    async def requeue_pending(self) -> int:
        """Push scrape_feed jobs still pending in the store onto the queue."""
        pending = await self.job_repository.find(status=JobStatus.PENDING, job_type=SCRAPE_FEED_JOB)
        for job in pending:
            await self.scrape_feed_queue.push(job.id)
        if pending:
            logger.info(f"📥 Requeued {len(pending)} pending {SCRAPE_FEED_JOB} jobs")
        return len(pending)

    async def run_workers(self) -> None:
        """Run the workers until cancelled."""
        scrape_worker = self.build_scrape_feed_worker()
        cron_worker = self.build_refresh_feeds_worker()
        await self.requeue_pending()
        logger.debug(f"Configuration: {config.get_config_summary()}")
        logger.info(f"🚀 Starting workers: {SCRAPE_FEED_JOB}, {REFRESH_FEEDS_JOB} ({cron_worker.schedule})")
        await asyncio.gather(scrape_worker.run(), cron_worker.run())

    @trace_span("service.refresh", tracer_name="service", attr_from_args=lambda self, url: {"feed.source_url": url})
    async def refresh(self, url: str) -> Feed:
        return await self.refresh_handler.handle(url)

    async def seed(self, sources: Optional[Dict[str, str]] = None) -> int:
        """Create a pending scrape_feed job for every feed source.

        Without explicit sources, feeds.yaml is read again so edits made since
        start-up are picked up.
        """
        if sources is None:
            config.reload_feed_sources()
            sources = config.FEED_SOURCES
        created = 0
        for slug, url in sources.items():
            await self.job_repository.create(SCRAPE_FEED_JOB, {"source_url": url}, group_identifier=f"seed:{slug}")
            created += 1
        logger.info(f"🌱 Seeded {created} feeds")
        return created

    async def check_status(self) -> Dict[str, Any]:
        feeds = await self.feed_repository.find(FeedFindParams())
        jobs = await self.job_repository.find()
        ready = await self.feed_repository.find(FeedFindParams(ready_to_refresh=True))
        return {
            'timestamp': datetime.now(timezone.utc).isoformat(),
            'database_path': self.db.db_path,
            'feeds': dict(Counter(feed.status.value for feed in feeds)),
            'feeds_total': len(feeds),
            'feeds_ready': len(ready),
            'jobs': dict(Counter(job.status.value for job in jobs)),
            'jobs_total': len(jobs),
        }


def print_feed(feed: Feed) -> None:
    print(f"\n📡 {feed.title}")
    print(f"   🔗 Link: {feed.link}")
    print(f"   📥 Source: {feed.source_url}{' (custom)' if feed.is_custom else ''}")
    print(f"   🏥 Status: {feed.status.value}")
    print(f"   ⏳ Refresh interval: {feed.refresh_interval_min} min")


def print_status(status: Dict[str, Any]) -> None:
    print(f"\n📊 Feed Ingestion Status")
    print(f"⏰ {status['timestamp']}")
    print(f"💾 Database: {status['database_path']}")
    print(f"\n📡 Feeds: {status['feeds_total']} ({status['feeds_ready']} due for refresh)")
    for name, count in sorted(status['feeds'].items()):
        print(f"   {name}: {count}")
    print(f"\n📋 Jobs: {status['jobs_total']}")
    for name, count in sorted(status['jobs'].items()):
        print(f"   {name}: {count}")


async def run_mode(args) -> int:
    service = IngestionService(args.database)
    await service.start()
    try:
        if args.mode == 'run':
            await service.run_workers()
        elif args.mode == 'refresh':
            try:
                feed = await service.refresh(args.url)
            except ScraperError as e:
                logger.error(f"❌ Refresh of {args.url} failed: {e}")
                return 1
            print_feed(feed)
        elif args.mode == 'seed':
            await service.seed()
        elif args.mode == 'status':
            print_status(await service.check_status())
        return 0
    finally:
        await service.close()


def main():
    """Main entry point."""

    parser = argparse.ArgumentParser(description='Feed Ingestion Service')
    parser.add_argument('mode', choices=['run', 'refresh', 'seed', 'status'],
                        help='Operation mode')
    parser.add_argument('--url', type=str,
                        help='Feed source URL (refresh mode)')
    parser.add_argument('--database', type=str,
                        help='SQLite database path (default: DATABASE_PATH)')

    args = parser.parse_args()
    if args.mode == 'refresh' and not args.url:
        parser.error("refresh mode requires --url")

    try:
        sys.exit(asyncio.run(run_mode(args)))
    except KeyboardInterrupt:
        logger.info("👋 Feed ingestion shutting down")
    except Exception as e:
        logger.error(f"💥 Unexpected error: {e}")
        sys.exit(1)


if __name__ == "__main__":
    main()
