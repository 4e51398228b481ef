"""Shared fixtures for the feed ingestion tests."""

import os
from datetime import datetime, timezone

import pytest
import pytest_asyncio

os.environ.setdefault("DISABLE_TELEMETRY", "true")

from database import DatabaseQueue  # noqa: E402
from errors import TransportError  # noqa: E402
from http_client import HttpClient, HttpResponse  # noqa: E402
from repository import InMemoryStore  # noqa: E402


SAMPLE_RSS_XML = b"""<?xml version="1.0" encoding="UTF-8"?>
<rss version="2.0" xmlns:media="http://search.yahoo.com/mrss/" xmlns:dc="http://purl.org/dc/elements/1.1/">
  <channel>
    <title>Example RSS</title>
    <link>https://example.org/</link>
    <description>RSS description</description>
    <item>
      <title>Item one</title>
      <link>https://example.org/items/1</link>
      <description>One</description>
      <dc:creator>Writer</dc:creator>
      <pubDate>Mon, 01 Jan 2024 10:00:00 +0000</pubDate>
      <guid>item-1</guid>
      <category>news</category>
    </item>
    <item>
      <title>Item two</title>
      <link>https://example.org/items/2</link>
      <pubDate>Mon 01 Jan 2024 10:20:00 +0000</pubDate>
      <media:thumbnail url="https://example.org/2.png"/>
    </item>
    <item>
      <title>Item three</title>
      <link>https://example.org/items/3</link>
      <description>   </description>
      <pubDate>2024-01-01T10:50:00Z</pubDate>
    </item>
  </channel>
</rss>"""

SAMPLE_ATOM_XML = b"""<?xml version="1.0" encoding="utf-8"?>
<feed xmlns="http://www.w3.org/2005/Atom" xmlns:media="http://search.yahoo.com/mrss/">
  <title>Example Atom</title>
  <subtitle>Atom subtitle</subtitle>
  <link rel="self" href="https://example.com/atom.xml"/>
  <link rel="alternate" href="https://example.com/"/>
  <id>urn:example</id>
  <updated>2024-01-02T00:00:00Z</updated>
  <entry>
    <title>Second post</title>
    <link rel="alternate" href="https://example.com/posts/2"/>
    <id>urn:2</id>
    <published>2024-01-02T00:00:00Z</published>
    <updated>2024-01-02T00:00:00Z</updated>
    <author><name>Alice</name></author>
    <author><name>Bob</name></author>
    <summary>Second summary</summary>
    <media:thumbnail url="//cdn.example.com/2.jpg"/>
  </entry>
  <entry>
    <title>First post</title>
    <link href="https://example.com/posts/1"/>
    <id>urn:1</id>
    <published>2024-01-01T23:30:00+01:00</published>
    <updated>2024-01-01T23:30:00+01:00</updated>
    <content type="html">&lt;p&gt;First content&lt;/p&gt;</content>
  </entry>
</feed>"""


class FakeHttpClient(HttpClient):
    """Serves canned bodies by URL; unknown URLs fail like a 404."""

    def __init__(self, bodies=None):
        self.bodies = dict(bodies or {})
        self.requests = []
        self.closed = False

    async def get(self, url):
        self.requests.append(url)
        body = self.bodies.get(url)
        if isinstance(body, Exception):
            raise body
        if body is None:
            raise TransportError(f"HTTP 404 fetching {url}", status=404)
        return HttpResponse(url=url, status=200, body=body)

    async def close(self):
        self.closed = True


class Clock:
    """Mutable clock usable as a `now` callable."""

    def __init__(self, now):
        self.now = now

    def __call__(self):
        return self.now


@pytest.fixture
def clock():
    return Clock(datetime(2024, 1, 10, 12, 0, tzinfo=timezone.utc))


@pytest.fixture
def store(clock):
    return InMemoryStore(now=clock)


@pytest.fixture
def http_client():
    return FakeHttpClient({
        "https://example.org/rss.xml": SAMPLE_RSS_XML,
        "https://example.com/atom.xml": SAMPLE_ATOM_XML,
    })


@pytest_asyncio.fixture
async def db(tmp_path):
    queue = DatabaseQueue(str(tmp_path / "ingest.db"))
    await queue.start()
    try:
        yield queue
    finally:
        await queue.stop()
