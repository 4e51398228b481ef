#!/usr/bin/env python3
"""
Feed scraping: fetch, parse and validate a feed into a strict document.

A scrape either yields a ProcessedFeed in which every entry has a usable
link, a non-empty title and a publish timestamp, or raises a ScraperError.
One bad entry fails the whole scrape; entries are never silently dropped.
"""

import re
from asyncio import get_running_loop
from dataclasses import dataclass, field
from datetime import datetime, timezone
from email.utils import parsedate_to_datetime
from functools import partial
from typing import List, Optional

from config import get_logger
from errors import PostprocessError, PostprocessField
from feed_parser import ExtractedFeed, ExtractedFeedEntry, parse_feed
from http_client import HttpClient
from telemetry import trace_span
from utils import parse_url

# Module-specific logger
logger = get_logger("feed_scraper")

# RFC 2822 without the comma after the weekday, e.g. "Sat 15 Nov 2025 16:00:00 +0000"
FALLBACK_DATE_FORMAT = "%a %d %b %Y %H:%M:%S %z"

_RFC3339 = re.compile(
    r"^(?P<date>\d{4}-\d{2}-\d{2})[Tt ](?P<time>\d{2}:\d{2}:\d{2})(?:\.(?P<fraction>\d+))?"
    r"(?P<offset>[Zz]|[+-]\d{2}:\d{2})$"
)


@dataclass
class ProcessedFeedEntry:
    link: str
    title: str
    published: datetime
    description: Optional[str] = None
    author: Optional[str] = None
    thumbnail: Optional[str] = None


@dataclass
class ProcessedFeed:
    link: str
    title: str
    description: Optional[str] = None
    entries: List[ProcessedFeedEntry] = field(default_factory=list)


def _parse_rfc3339(value: str) -> Optional[datetime]:
    match = _RFC3339.match(value)
    if not match:
        return None
    fraction = (match.group("fraction") or "")[:6].ljust(6, "0")
    offset = match.group("offset")
    if offset in ("Z", "z"):
        offset = "+00:00"
    try:
        return datetime.fromisoformat(f"{match.group('date')}T{match.group('time')}.{fraction}{offset}")
    except ValueError:
        return None


def _parse_rfc2822(value: str) -> Optional[datetime]:
    try:
        parsed = parsedate_to_datetime(value)
    except (TypeError, ValueError, IndexError):
        return None
    if parsed is None:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def _parse_fallback(value: str) -> Optional[datetime]:
    try:
        return datetime.strptime(value, FALLBACK_DATE_FORMAT)
    except ValueError:
        return None


def parse_published(value: Optional[str]) -> Optional[datetime]:
    """Parse a publish timestamp as RFC 3339, RFC 2822 or the fallback pattern.

    Returns:
        An aware UTC datetime, or None when no format matches
    """
    if not value or not value.strip():
        return None
    candidate = value.strip()
    for parser in (_parse_rfc3339, _parse_rfc2822, _parse_fallback):
        parsed = parser(candidate)
        if parsed is not None:
            return parsed.astimezone(timezone.utc)
    return None


def _clean_text(value: Optional[str]) -> Optional[str]:
    if value is None:
        return None
    value = value.strip()
    return value or None


def _clean_thumbnail(value: Optional[str]) -> Optional[str]:
    if not value:
        return None
    value = value.strip()
    if value.startswith("//"):
        value = f"https:{value}"
    return parse_url(value)


def _postprocess_entry(entry: ExtractedFeedEntry) -> ProcessedFeedEntry:
    link = parse_url(entry.link)
    if link is None:
        raise PostprocessError(PostprocessField.LINK, entry.link)

    title = _clean_text(entry.title)
    if title is None:
        raise PostprocessError(PostprocessField.TITLE, link)

    published = parse_published(entry.published)
    if published is None:
        raise PostprocessError(PostprocessField.PUBLISHED, entry.published or link)

    return ProcessedFeedEntry(
        link=link,
        title=title,
        published=published,
        description=_clean_text(entry.description),
        author=_clean_text(entry.author),
        thumbnail=_clean_thumbnail(entry.thumbnail),
    )


def postprocess(extracted: ExtractedFeed) -> ProcessedFeed:
    """Validate and normalize an extracted document.

    Raises:
        PostprocessError: the feed or one of its entries lacks a usable link,
            title or (entries only) publish timestamp
    """
    link = parse_url(extracted.link)
    if link is None:
        raise PostprocessError(PostprocessField.LINK, extracted.link)

    title = _clean_text(extracted.title)
    if title is None:
        raise PostprocessError(PostprocessField.TITLE)

    return ProcessedFeed(
        link=link,
        title=title,
        description=_clean_text(extracted.description),
        entries=[_postprocess_entry(entry) for entry in extracted.entries],
    )


class FeedScraper:
    def __init__(self, http_client: HttpClient):
        self.http_client = http_client

    @trace_span(
        "scraper.scrape",
        tracer_name="scraper",
        attr_from_args=lambda self, url: {"feed.url": url},
    )
    async def scrape(self, url: str) -> ProcessedFeed:
        """Fetch `url` and return the validated feed.

        Raises:
            ScraperError: transport, decode, parse, unsupported document or
                postprocess failure
        """
        response = await self.http_client.get(url)
        logger.debug("Fetched %s (%d bytes)", url, len(response.body))

        # feedparser is not async, run it in the default executor
        loop = get_running_loop()
        extracted = await loop.run_in_executor(None, partial(parse_feed, response.body))

        processed = postprocess(extracted)
        logger.info("Scraped %s: '%s' with %d entries", url, processed.title, len(processed.entries))
        return processed
