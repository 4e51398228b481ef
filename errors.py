#!/usr/bin/env python3
"""Common error types shared across modules.

Provides the ingestion error taxonomy in one place to avoid circular imports.
Scrape failures (transport, parse, postprocess) are recorded verbatim as job
failure messages, so every message here is meant to be read by a human.
"""

from enum import Enum
from typing import Optional


class IngestError(Exception):
    """Base class for every error raised by the ingestion core."""


class ScraperError(IngestError):
    """Raised when a feed could not be fetched, parsed or validated."""


class UnsupportedDocumentError(ScraperError):
    def __init__(self, message: str = "document type not supported"):
        super().__init__(message)


class FeedParseError(ScraperError):
    """Raised when the fetched bytes are not a well-formed XML document."""


class DecodeError(ScraperError):
    """Raised when the response body cannot be decoded to text."""


class TransportError(ScraperError):
    """Raised on network failures and non-success HTTP responses.

    Attributes:
        status: HTTP status code when the server answered, otherwise None.
    """

    def __init__(self, message: str, status: Optional[int] = None):
        super().__init__(message)
        self.status = status


class PostprocessField(str, Enum):
    LINK = "link"
    TITLE = "title"
    PUBLISHED = "published date"


class PostprocessError(ScraperError):
    """Raised when a well-formed document lacks a required value.

    Attributes:
        field: Which value could not be processed.
    """

    def __init__(self, field: PostprocessField, detail: Optional[str] = None):
        message = f"could not process {field.value}"
        if detail:
            message = f"{message}: {detail}"
        super().__init__(message)
        self.field = field


class RepositoryError(IngestError):
    """Raised when the storage layer fails."""


class NotFoundError(IngestError):
    pass


class FeedNotFoundError(NotFoundError):
    def __init__(self, feed_id: str):
        super().__init__(f"feed not found with ID: {feed_id}")
        self.feed_id = feed_id


class JobNotFoundError(NotFoundError):
    def __init__(self, job_id: str):
        super().__init__(f"job not found with ID: {job_id}")
        self.job_id = job_id


class JobAlreadyCompletedError(IngestError):
    """Raised when a job that already completed is asked to start again."""

    def __init__(self, job_id: str):
        super().__init__(f"job already completed: {job_id}")
        self.job_id = job_id


class InvalidJobTransitionError(IngestError):
    def __init__(self, job_id: str, current: str, target: str):
        super().__init__(f"job {job_id} cannot move from {current} to {target}")
        self.job_id = job_id
        self.current = current
        self.target = target


class JobPayloadError(IngestError):
    """Raised when a job carries a payload its handler cannot use."""


class QueueClosedError(IngestError):
    pass


__all__ = [
    "IngestError",
    "ScraperError",
    "UnsupportedDocumentError",
    "FeedParseError",
    "DecodeError",
    "TransportError",
    "PostprocessField",
    "PostprocessError",
    "RepositoryError",
    "NotFoundError",
    "FeedNotFoundError",
    "JobNotFoundError",
    "JobAlreadyCompletedError",
    "InvalidJobTransitionError",
    "JobPayloadError",
    "QueueClosedError",
]
