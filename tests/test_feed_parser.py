import pytest

from conftest import SAMPLE_ATOM_XML, SAMPLE_RSS_XML
from errors import FeedParseError, UnsupportedDocumentError
from feed_parser import Dialect, dialect_for_version, parse_feed


def test_parse_rss_maps_channel_and_items():
    feed = parse_feed(SAMPLE_RSS_XML)

    assert feed.title == "Example RSS"
    assert feed.link == "https://example.org/"
    assert feed.description == "RSS description"
    assert len(feed.entries) == 3

    first = feed.entries[0]
    assert first.link == "https://example.org/items/1"
    assert first.title == "Item one"
    assert first.published == "Mon, 01 Jan 2024 10:00:00 +0000"
    assert first.description == "One"
    assert first.author == "Writer"
    assert first.thumbnail is None

    assert feed.entries[1].thumbnail == "https://example.org/2.png"
    assert feed.entries[1].description is None


def test_parse_rss_keeps_unmapped_fields_as_extensions():
    feed = parse_feed(SAMPLE_RSS_XML)

    first = feed.entries[0]
    assert first.extensions["id"] == "item-1"
    assert first.extensions["tags"][0]["term"] == "news"
    assert "title" not in first.extensions


def test_parse_atom_prefers_alternate_links():
    feed = parse_feed(SAMPLE_ATOM_XML)

    assert feed.title == "Example Atom"
    assert feed.link == "https://example.com/"
    assert feed.description == "Atom subtitle"
    assert [e.link for e in feed.entries] == [
        "https://example.com/posts/2",
        "https://example.com/posts/1",
    ]


def test_parse_atom_entry_fields():
    feed = parse_feed(SAMPLE_ATOM_XML)
    second, first = feed.entries

    assert second.author == "Alice,Bob"
    assert second.description == "Second summary"
    assert second.published == "2024-01-02T00:00:00Z"
    assert second.thumbnail == "//cdn.example.com/2.jpg"
    assert second.extensions["id"] == "urn:2"

    assert first.author is None
    assert "First content" in first.description
    assert first.published == "2024-01-01T23:30:00+01:00"


def test_parse_atom_tolerates_missing_fields():
    body = b"""<?xml version="1.0" encoding="utf-8"?>
<feed xmlns="http://www.w3.org/2005/Atom">
  <entry><id>urn:x</id></entry>
</feed>"""

    feed = parse_feed(body)

    assert feed.title is None
    assert feed.link is None
    assert len(feed.entries) == 1
    entry = feed.entries[0]
    assert entry.link is None
    assert entry.title is None
    assert entry.published is None


def test_declared_dialect_must_match_document():
    assert parse_feed(SAMPLE_ATOM_XML, Dialect.ATOM).title == "Example Atom"
    with pytest.raises(UnsupportedDocumentError):
        parse_feed(SAMPLE_ATOM_XML, Dialect.RSS)


@pytest.mark.parametrize("body", [b"", b"   \n"])
def test_empty_body_is_a_parse_error(body):
    with pytest.raises(FeedParseError):
        parse_feed(body)


def test_malformed_xml_is_a_parse_error():
    body = b"""<?xml version="1.0" encoding="UTF-8"?>
<rss version="2.0"><channel><title>Broken</title><item><title>Bad</item>"""

    with pytest.raises(FeedParseError):
        parse_feed(body)


def test_well_formed_non_feed_is_unsupported():
    body = b"""<?xml version="1.0" encoding="UTF-8"?><note><to>someone</to></note>"""

    with pytest.raises(UnsupportedDocumentError) as exc_info:
        parse_feed(body)
    assert "document type not supported" in str(exc_info.value)


def test_dialect_for_version():
    assert dialect_for_version("atom10") == Dialect.ATOM
    assert dialect_for_version("atom03") == Dialect.ATOM
    assert dialect_for_version("rss20") == Dialect.RSS
    assert dialect_for_version("rss10") == Dialect.RSS
    assert dialect_for_version("") is None
    assert dialect_for_version("json1") is None


YOUTUBE_ATOM_XML = b"""<?xml version="1.0" encoding="UTF-8"?>
<feed xmlns:yt="http://www.youtube.com/xml/schemas/2015" xmlns:media="http://search.yahoo.com/mrss/" xmlns="http://www.w3.org/2005/Atom">
  <title>Example Channel</title>
  <link rel="alternate" href="https://www.youtube.com/channel/UC123"/>
  <entry>
    <id>yt:video:abc</id>
    <yt:videoId>abc</yt:videoId>
    <title>Plain title</title>
    <link rel="alternate" href="https://www.youtube.com/watch?v=abc"/>
    <author><name>Example Channel</name></author>
    <published>2024-03-01T12:00:00+00:00</published>
    <summary>Plain summary</summary>
    <media:group>
      <media:title>Media title</media:title>
      <media:content url="https://www.youtube.com/v/abc" type="application/x-shockwave-flash"/>
      <media:thumbnail url="https://i.ytimg.com/vi/abc/hqdefault.jpg" width="480" height="360"/>
      <media:description>Media description</media:description>
    </media:group>
  </entry>
  <entry>
    <id>yt:video:def</id>
    <title>No group</title>
    <link rel="alternate" href="https://www.youtube.com/watch?v=def"/>
    <published>2024-02-01T12:00:00+00:00</published>
    <summary>Only a summary</summary>
  </entry>
</feed>"""


def test_parse_atom_media_group_overrides_entry_fields():
    feed = parse_feed(YOUTUBE_ATOM_XML)
    video, plain = feed.entries

    assert video.title == "Media title"
    assert video.description == "Media description"
    assert video.thumbnail == "https://i.ytimg.com/vi/abc/hqdefault.jpg"
    assert video.link == "https://www.youtube.com/watch?v=abc"
    assert video.author == "Example Channel"
    assert video.extensions["media_group"] == {
        "title": "Media title",
        "description": "Media description",
        "thumbnails": ["https://i.ytimg.com/vi/abc/hqdefault.jpg"],
    }

    assert plain.title == "No group"
    assert plain.description == "Only a summary"
    assert plain.thumbnail is None
    assert "media_group" not in plain.extensions
