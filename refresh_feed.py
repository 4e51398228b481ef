#!/usr/bin/env python3
"""
Feed refresh: scrape a source URL, pick the next polling interval, persist.

The polling interval adapts to how often the feed publishes. When a scrape
brings new entries, the interval becomes the median gap between recent
publish times. When it brings nothing new, the current interval is stretched
by BACKOFF_MULTIPLIER so dormant feeds are polled less and less often, up to
MAX_INTERVAL.
"""

import statistics
from datetime import datetime
from typing import List, Sequence

from config import get_logger
from errors import FeedNotFoundError, ScraperError
from feed_scraper import FeedScraper, ProcessedFeed
from models import (
    DEFAULT_INTERVAL,
    MAX_INTERVAL,
    MIN_INTERVAL,
    Feed,
    FeedEntryFindParams,
    FeedEntryUpsert,
    FeedUpsertParams,
    clamp_interval,
)
from repository import FeedEntryRepository, FeedRepository
from telemetry import trace_span

# Module-specific logger
logger = get_logger("refresh_feed")

SAMPLE_SIZE = 20
BACKOFF_MULTIPLIER = 1.15

__all__ = [
    "DEFAULT_INTERVAL",
    "MIN_INTERVAL",
    "MAX_INTERVAL",
    "SAMPLE_SIZE",
    "BACKOFF_MULTIPLIER",
    "median_interval",
    "backoff_interval",
    "RefreshFeedHandler",
]


def median_interval(timestamps: Sequence[datetime]) -> int:
    """Median gap in whole minutes between consecutive timestamps, clamped.

    Timestamps may come in any order; they are sorted newest first before the
    gaps are taken. Fewer than two timestamps yield DEFAULT_INTERVAL.
    """
    if len(timestamps) < 2:
        return DEFAULT_INTERVAL
    ordered = sorted(timestamps, reverse=True)
    deltas = sorted(
        int((newer - older).total_seconds() // 60)
        for newer, older in zip(ordered, ordered[1:])
    )
    return clamp_interval(int(statistics.median(deltas)))


def backoff_interval(current: int) -> int:
    """Stretch the current interval for a feed that published nothing new."""
    return clamp_interval(min(round(current * BACKOFF_MULTIPLIER), MAX_INTERVAL))


class RefreshFeedHandler:
    def __init__(self, feed_repository: FeedRepository, feed_entry_repository: FeedEntryRepository,
                 scraper: FeedScraper):
        self.feed_repository = feed_repository
        self.feed_entry_repository = feed_entry_repository
        self.scraper = scraper

    async def calculate_refresh_interval(self, source_url: str, processed: ProcessedFeed) -> int:
        """Pick the next polling interval for `source_url`.

        `processed.entries` must already be sorted oldest first.
        """
        feed = await self.feed_repository.find_by_source_url(source_url)
        if feed is None:
            return DEFAULT_INTERVAL

        latest = await self.feed_entry_repository.find(FeedEntryFindParams(feed_id=feed.id, limit=1))

        # Only the earliest scraped entry is compared with the latest stored one;
        # feeds that publish out of order can be misjudged either way.
        has_new = bool(processed.entries) and bool(latest) and processed.entries[0].published > latest[0].published_at

        if not has_new:
            interval = backoff_interval(feed.refresh_interval_min)
            logger.debug("No new entries for %s, backing off %d -> %d min",
                         source_url, feed.refresh_interval_min, interval)
            return interval

        sample: List[datetime] = [entry.published for entry in processed.entries[-SAMPLE_SIZE:]]
        if len(sample) < SAMPLE_SIZE:
            stored = await self.feed_entry_repository.find(
                FeedEntryFindParams(feed_id=feed.id, limit=SAMPLE_SIZE - len(sample))
            )
            sample.extend(entry.published_at for entry in stored)

        interval = median_interval(sample)
        logger.debug("Estimated interval for %s from %d timestamps: %d min", source_url, len(sample), interval)
        return interval

    @trace_span(
        "refresh.handle",
        tracer_name="refresh",
        attr_from_args=lambda self, source_url: {"feed.source_url": source_url},
    )
    async def handle(self, source_url: str) -> Feed:
        """Scrape `source_url` and store the result.

        Raises:
            ScraperError: the scrape failed; the stored feed (if any) is marked Failing
            FeedNotFoundError: the upserted feed could not be read back
        """
        try:
            processed = await self.scraper.scrape(source_url)
        except ScraperError as e:
            logger.warning("Refresh of %s failed: %s", source_url, e)
            await self.feed_repository.mark_as_failed(source_url)
            raise

        processed.entries.sort(key=lambda entry: entry.published)

        interval = await self.calculate_refresh_interval(source_url, processed)

        feed_id = await self.feed_repository.upsert(FeedUpsertParams(
            source_url=source_url,
            link=processed.link,
            title=processed.title,
            description=processed.description,
            refresh_interval_min=interval,
            is_custom=processed.link == source_url,
            entries=[
                FeedEntryUpsert(
                    link=entry.link,
                    title=entry.title,
                    published_at=entry.published,
                    description=entry.description,
                    author=entry.author,
                    thumbnail_url=entry.thumbnail,
                )
                for entry in processed.entries
            ],
        ))

        feed = await self.feed_repository.find_by_id(feed_id)
        if feed is None:
            raise FeedNotFoundError(feed_id)

        logger.info("Refreshed %s (%d entries, next in %d min)", source_url, len(processed.entries), interval)
        return feed
