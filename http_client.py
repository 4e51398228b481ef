#!/usr/bin/env python3
"""
HTTP client used by the feed scraper.

The scraper only needs a single GET returning the response body, so the
interface is kept that small. AiohttpClient retries connection errors and
timeouts with exponential backoff; an answer with a non-success status is
final and raised as TransportError carrying the status code.
"""

from abc import ABC, abstractmethod
from asyncio import TimeoutError
from dataclasses import dataclass, field
from typing import Dict, List, Optional

from aiohttp import ClientError, ClientSession, ClientTimeout

from config import config, get_logger
from errors import TransportError
from telemetry import trace_span
from utils import RetryHelper

# Module-specific logger
logger = get_logger("http_client")


@dataclass
class HttpResponse:
    url: str
    status: int
    body: bytes
    headers: Dict[str, str] = field(default_factory=dict)


class HttpClient(ABC):
    @abstractmethod
    async def get(self, url: str) -> HttpResponse:
        """GET `url` and return the full body.

        Raises:
            TransportError: network failure, timeout or non-2xx response
        """

    async def close(self) -> None:
        pass


def format_client_error(error: ClientError) -> str:
    """Describe aiohttp client errors with any available status/errno."""
    parts: List[str] = [error.__class__.__name__]
    status = getattr(error, 'status', None)
    if status is not None:
        parts.append(f"status={status}")
    os_error = getattr(error, 'os_error', None)
    if os_error is not None:
        errno = getattr(os_error, 'errno', None)
        if errno is not None:
            parts.append(f"errno={errno}")
    message = str(error)
    if message:
        parts.append(message)
    return " ".join(parts)


class AiohttpClient(HttpClient):
    def __init__(self, session: Optional[ClientSession] = None, user_agent: Optional[str] = None,
                 timeout: Optional[int] = None, max_redirects: Optional[int] = None,
                 retry_helper: Optional[RetryHelper] = None):
        self._session = session
        self._owns_session = session is None
        self.user_agent = user_agent or config.USER_AGENT
        self.timeout = timeout or config.HTTP_TIMEOUT
        self.max_redirects = config.MAX_REDIRECTS if max_redirects is None else max_redirects
        self.retry_helper = retry_helper or RetryHelper(
            max_retries=config.MAX_RETRIES, base_delay=config.RETRY_DELAY_BASE
        )

    def _get_session(self) -> ClientSession:
        if self._session is None or self._session.closed:
            self._session = ClientSession(
                headers={'User-Agent': self.user_agent},
                timeout=ClientTimeout(total=self.timeout),
            )
            self._owns_session = True
        return self._session

    @trace_span(
        "http.get",
        tracer_name="http",
        attr_from_args=lambda self, url: {"http.url": url},
    )
    async def get(self, url: str) -> HttpResponse:
        session = self._get_session()
        max_retries = self.retry_helper.max_retries
        for attempt in range(max_retries + 1):
            try:
                async with session.get(url, max_redirects=self.max_redirects) as response:
                    if not 200 <= response.status < 300:
                        raise TransportError(f"HTTP {response.status} fetching {url}", status=response.status)
                    body = await response.read()
                    return HttpResponse(
                        url=str(response.url),
                        status=response.status,
                        body=body,
                        headers=dict(response.headers),
                    )
            except TimeoutError:
                if attempt < max_retries:
                    logger.warning(
                        "Timeout fetching %s (attempt %d/%d, timeout=%ss)",
                        url, attempt + 1, max_retries, self.timeout,
                    )
                    await self.retry_helper.sleep_for_attempt(attempt)
                    continue
                raise TransportError(f"Timed out fetching {url} after {self.timeout}s")
            except ClientError as e:
                detail = format_client_error(e)
                if attempt < max_retries:
                    logger.warning("Retry %d/%d for %s due to error: %s", attempt + 1, max_retries, url, detail)
                    await self.retry_helper.sleep_for_attempt(attempt)
                    continue
                raise TransportError(f"Failed to fetch {url} after {max_retries} retries ({detail})") from e

        # Only reachable with a negative retry count
        raise TransportError(f"Failed to fetch {url}")

    async def close(self) -> None:
        if self._session is not None and self._owns_session and not self._session.closed:
            await self._session.close()
        self._session = None
