from datetime import datetime, timezone

import pytest

from conftest import FakeHttpClient
from errors import FeedParseError, PostprocessError, PostprocessField, TransportError
from feed_parser import ExtractedFeed, ExtractedFeedEntry
from feed_scraper import FeedScraper, parse_published, postprocess


def _extracted(**entry_overrides):
    entry = dict(
        link="https://example.com/a",
        title="A",
        published="Mon, 01 Jan 2024 10:00:00 +0000",
    )
    entry.update(entry_overrides)
    return ExtractedFeed(
        link="https://example.com/",
        title="Example",
        entries=[ExtractedFeedEntry(**entry)],
    )


def test_parse_published_rfc3339():
    assert parse_published("2024-01-01T10:50:00Z") == datetime(2024, 1, 1, 10, 50, tzinfo=timezone.utc)
    assert parse_published("2024-01-01T23:30:00+01:00") == datetime(2024, 1, 1, 22, 30, tzinfo=timezone.utc)
    assert parse_published("2024-01-01T10:50:00.123456789Z") == datetime(
        2024, 1, 1, 10, 50, 0, 123456, tzinfo=timezone.utc
    )


def test_parse_published_rfc2822():
    expected = datetime(2025, 11, 15, 16, 0, tzinfo=timezone.utc)
    assert parse_published("Sat, 15 Nov 2025 16:00:00 +0000") == expected
    assert parse_published("Sat, 15 Nov 2025 17:00:00 +0100") == expected
    assert parse_published("Sat, 15 Nov 2025 16:00:00 GMT") == expected


def test_parse_published_without_comma_after_weekday():
    assert parse_published("Sat 15 Nov 2025 16:00:00 +0000") == datetime(2025, 11, 15, 16, 0, tzinfo=timezone.utc)


@pytest.mark.parametrize("value", [None, "", "   ", "yesterday", "2024-13-45"])
def test_parse_published_rejects_garbage(value):
    assert parse_published(value) is None


def test_postprocess_trims_and_normalizes():
    processed = postprocess(_extracted(
        title="  Padded title  ",
        description="  ",
        author=" Someone ",
        thumbnail="//cdn.example.com/t.png",
    ))

    entry = processed.entries[0]
    assert entry.title == "Padded title"
    assert entry.description is None
    assert entry.author == "Someone"
    assert entry.thumbnail == "https://cdn.example.com/t.png"
    assert entry.published == datetime(2024, 1, 1, 10, 0, tzinfo=timezone.utc)


def test_postprocess_drops_unusable_thumbnail():
    processed = postprocess(_extracted(thumbnail="not a url"))

    assert processed.entries[0].thumbnail is None


@pytest.mark.parametrize("overrides, field", [
    ({"link": None}, PostprocessField.LINK),
    ({"link": "/relative/path"}, PostprocessField.LINK),
    ({"title": "   "}, PostprocessField.TITLE),
    ({"title": None}, PostprocessField.TITLE),
    ({"published": None}, PostprocessField.PUBLISHED),
    ({"published": "sometime last week"}, PostprocessField.PUBLISHED),
])
def test_postprocess_rejects_incomplete_entries(overrides, field):
    with pytest.raises(PostprocessError) as exc_info:
        postprocess(_extracted(**overrides))

    assert exc_info.value.field == field
    assert str(exc_info.value).startswith(f"could not process {field.value}")


def test_one_bad_entry_fails_the_whole_feed():
    extracted = _extracted()
    extracted.entries.append(ExtractedFeedEntry(link="https://example.com/b", title="B", published=None))

    with pytest.raises(PostprocessError):
        postprocess(extracted)


def test_postprocess_requires_feed_link_and_title():
    with pytest.raises(PostprocessError) as exc_info:
        postprocess(ExtractedFeed(link=None, title="T"))
    assert exc_info.value.field == PostprocessField.LINK

    with pytest.raises(PostprocessError) as exc_info:
        postprocess(ExtractedFeed(link="https://example.com/", title=""))
    assert exc_info.value.field == PostprocessField.TITLE


@pytest.mark.asyncio
async def test_scrape_rss(http_client):
    scraper = FeedScraper(http_client)

    feed = await scraper.scrape("https://example.org/rss.xml")

    assert http_client.requests == ["https://example.org/rss.xml"]
    assert feed.link == "https://example.org/"
    assert feed.title == "Example RSS"
    assert [e.published for e in feed.entries] == [
        datetime(2024, 1, 1, 10, 0, tzinfo=timezone.utc),
        datetime(2024, 1, 1, 10, 20, tzinfo=timezone.utc),
        datetime(2024, 1, 1, 10, 50, tzinfo=timezone.utc),
    ]
    assert feed.entries[2].description is None


@pytest.mark.asyncio
async def test_scrape_atom(http_client):
    scraper = FeedScraper(http_client)

    feed = await scraper.scrape("https://example.com/atom.xml")

    assert feed.link == "https://example.com/"
    second, first = feed.entries
    assert second.author == "Alice,Bob"
    assert second.thumbnail == "https://cdn.example.com/2.jpg"
    assert first.published == datetime(2024, 1, 1, 22, 30, tzinfo=timezone.utc)


@pytest.mark.asyncio
async def test_scrape_propagates_transport_errors():
    scraper = FeedScraper(FakeHttpClient())

    with pytest.raises(TransportError) as exc_info:
        await scraper.scrape("https://example.com/missing.xml")
    assert exc_info.value.status == 404


@pytest.mark.asyncio
async def test_scrape_rejects_malformed_documents():
    scraper = FeedScraper(FakeHttpClient({"https://example.com/bad.xml": b"<rss><channel>"}))

    with pytest.raises(FeedParseError):
        await scraper.scrape("https://example.com/bad.xml")
