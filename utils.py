#!/usr/bin/env python3
"""
Utility classes and functions shared by the scraper, handlers and workers.

This module contains retry backoff, handler concurrency limiting, URL
validation and the timestamp helpers used by the storage layer.
"""

from asyncio import Semaphore, sleep
from datetime import datetime, timedelta, timezone
from functools import wraps
from typing import Awaitable, Callable, Optional, TypeVar
from urllib.parse import urlparse

from config import get_logger

# Module-specific logger
logger = get_logger("utils")

T = TypeVar("T")


def parse_url(value: Optional[str]) -> Optional[str]:
    """Return the trimmed URL if it is absolute (scheme and host), else None.

    Args:
        value: Candidate URL string

    Returns:
        The normalized URL string, or None when it cannot be used as a link
    """
    if not value or not isinstance(value, str):
        return None

    candidate = value.strip()
    if not candidate:
        return None

    try:
        parsed = urlparse(candidate)
    except ValueError:
        return None
    if not parsed.scheme or not parsed.netloc:
        return None
    return candidate


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def to_timestamp(value: Optional[datetime]) -> Optional[int]:
    """Convert an aware datetime to integer epoch seconds (None passes through)."""
    if value is None:
        return None
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return int(value.timestamp())


def from_timestamp(value: Optional[int]) -> Optional[datetime]:
    if value is None:
        return None
    return datetime.fromtimestamp(int(value), tz=timezone.utc)


_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)
_MICROSECOND = timedelta(microseconds=1)


def to_epoch_micros(value: Optional[datetime]) -> Optional[int]:
    """Convert a datetime to integer microseconds since the epoch, without float rounding."""
    if value is None:
        return None
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return (value - _EPOCH) // _MICROSECOND


def from_epoch_micros(value: Optional[int]) -> Optional[datetime]:
    if value is None:
        return None
    return _EPOCH + timedelta(microseconds=int(value))


class RetryHelper:
    """Helper class for implementing retry logic with exponential backoff."""

    def __init__(self, max_retries: int = 3, base_delay: float = 1.0, max_delay: float = 60.0):
        """Initialize the retry helper.

        Args:
            max_retries: Maximum number of retry attempts
            base_delay: Base delay in seconds for exponential backoff
            max_delay: Maximum delay in seconds between retries
        """
        self.max_retries = max_retries
        self.base_delay = base_delay
        self.max_delay = max_delay

    def calculate_delay(self, attempt: int) -> float:
        """Calculate the delay for a given retry attempt (0-based)."""
        delay = self.base_delay * (2 ** attempt)
        return min(delay, self.max_delay)

    async def sleep_for_attempt(self, attempt: int):
        """Sleep for the calculated delay for the given attempt."""
        delay = self.calculate_delay(attempt)
        if delay > 0:
            logger.debug(f"Retry delay: sleeping for {delay:.2f} seconds")
            await sleep(delay)


def concurrency_limit(handler: Callable[..., Awaitable[T]], limit: int) -> Callable[..., Awaitable[T]]:
    """Wrap an async handler so that at most `limit` invocations run at once.

    Callers beyond the limit wait for a slot. The wrapper keeps the handler's
    signature and return value.
    """
    if limit < 1:
        raise ValueError(f"concurrency limit must be at least 1, got {limit}")

    semaphore = Semaphore(limit)

    @wraps(handler)
    async def _limited(*args, **kwargs):
        async with semaphore:
            return await handler(*args, **kwargs)

    return _limited
