#!/usr/bin/env python3
"""
Atom and RSS parsing into a loosely typed intermediate document.

feedparser does the XML work; this module decides which dialect the document
is written in and maps the fields the scraper cares about. Every field of the
result may be None: missing data is the scraper's problem, not the parser's.
The only failures here are bytes that are not a well-formed feed document.

Whatever feedparser extracted that is not mapped to a named field is kept in
`extensions`, so richer metadata (categories, ids) survives. feedparser
flattens Atom `media:group` elements and loses their title and description,
so those are read from the document tree directly: they override the entry
title, description and thumbnail, and the raw values are kept under
`extensions["media_group"]`.
"""

import io
import xml.sax
import xml.etree.ElementTree as ET
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional

import feedparser
from feedparser.exceptions import CharacterEncodingUnknown, UndeclaredNamespace

from config import get_logger
from errors import DecodeError, FeedParseError, UnsupportedDocumentError

# Module-specific logger
logger = get_logger("feed_parser")


class Dialect(str, Enum):
    ATOM = "atom"
    RSS = "rss"


@dataclass
class ExtractedFeedEntry:
    link: Optional[str] = None
    title: Optional[str] = None
    published: Optional[str] = None
    description: Optional[str] = None
    author: Optional[str] = None
    thumbnail: Optional[str] = None
    extensions: Dict[str, Any] = field(default_factory=dict)


@dataclass
class ExtractedFeed:
    link: Optional[str] = None
    title: Optional[str] = None
    description: Optional[str] = None
    entries: List[ExtractedFeedEntry] = field(default_factory=list)
    extensions: Dict[str, Any] = field(default_factory=dict)


MEDIA_NS = "{http://search.yahoo.com/mrss/}"

# Keys consumed by the field mapping; anything else goes to `extensions`
_FEED_KEYS = {
    "link", "links", "title", "title_detail", "subtitle", "subtitle_detail",
    "description",
}
_ENTRY_KEYS = {
    "link", "links", "title", "title_detail", "published", "published_parsed",
    "summary", "summary_detail", "description", "content", "author",
    "author_detail", "authors", "media_thumbnail",
}


def dialect_for_version(version: Optional[str]) -> Optional[Dialect]:
    """Map a feedparser version string ('atom10', 'rss20', 'rss10', ...) to a Dialect."""
    if not version:
        return None
    if version.startswith("atom"):
        return Dialect.ATOM
    if version.startswith("rss"):
        return Dialect.RSS
    return None


def _text(value: Any) -> Optional[str]:
    if value is None:
        return None
    return str(value)


def _alternate_link(links: List[Dict[str, Any]]) -> Optional[str]:
    """Pick the rel="alternate" link; a link without rel counts as alternate."""
    for link in links or []:
        if link.get("rel", "alternate") == "alternate" and link.get("href"):
            return link["href"]
    return None


def _thumbnail(entry: Dict[str, Any]) -> Optional[str]:
    for thumb in entry.get("media_thumbnail") or []:
        url = thumb.get("url") if isinstance(thumb, dict) else None
        if url:
            return url
    return None


def _extensions(source: Dict[str, Any], consumed: set) -> Dict[str, Any]:
    return {key: value for key, value in source.items() if key not in consumed}


def _atom_author(entry: Dict[str, Any]) -> Optional[str]:
    names = [a.get("name") for a in entry.get("authors") or [] if isinstance(a, dict) and a.get("name")]
    if names:
        return ",".join(names)
    return _text(entry.get("author"))


def _atom_description(entry: Dict[str, Any]) -> Optional[str]:
    summary = entry.get("summary")
    if summary:
        return summary
    for content in entry.get("content") or []:
        if content.get("value"):
            return content["value"]
    return None


def _child_text(element: ET.Element, tag: str) -> Optional[str]:
    child = element.find(tag)
    if child is None or child.text is None:
        return None
    return child.text.strip()


def _atom_media_groups(body: bytes) -> List[Optional[Dict[str, Any]]]:
    """Read each Atom entry's `media:group`, in document order.

    Returns one item per entry: None when the entry has no group, otherwise a
    dict with the group's title, description and thumbnail URLs. An empty list
    means the tree could not be read and no overrides apply.
    """
    try:
        root = ET.fromstring(body)
    except ET.ParseError as e:
        logger.debug("Skipping media groups, document tree unreadable: %s", e)
        return []

    # Atom 1.0 and 0.3 differ only in namespace; take it from the root element
    ns = root.tag[:root.tag.index("}") + 1] if root.tag.startswith("{") else ""
    groups = []
    for entry in root.findall(f"{ns}entry"):
        group = entry.find(f"{MEDIA_NS}group")
        if group is None:
            groups.append(None)
            continue
        thumbnails = [t.get("url") for t in group.findall(f"{MEDIA_NS}thumbnail") if t.get("url")]
        groups.append({
            "title": _child_text(group, f"{MEDIA_NS}title"),
            "description": _child_text(group, f"{MEDIA_NS}description"),
            "thumbnails": thumbnails,
        })
    return groups


def _map_atom(result, media_groups: List[Optional[Dict[str, Any]]]) -> ExtractedFeed:
    feed = result.get("feed", {})
    raw_entries = result.get("entries", [])
    if media_groups and len(media_groups) != len(raw_entries):
        logger.debug("Found %d media groups for %d entries, ignoring them", len(media_groups), len(raw_entries))
        media_groups = []

    entries = []
    for index, entry in enumerate(raw_entries):
        mapped = ExtractedFeedEntry(
            link=_alternate_link(entry.get("links")),
            title=_text(entry.get("title")),
            published=_text(entry.get("published")),
            description=_atom_description(entry),
            author=_atom_author(entry),
            thumbnail=_thumbnail(entry),
            extensions=_extensions(entry, _ENTRY_KEYS),
        )
        group = media_groups[index] if media_groups else None
        if group:
            mapped.extensions["media_group"] = group
            if group["title"]:
                mapped.title = group["title"]
            if group["description"]:
                mapped.description = group["description"]
            if group["thumbnails"]:
                mapped.thumbnail = group["thumbnails"][0]
        entries.append(mapped)
    return ExtractedFeed(
        link=_alternate_link(feed.get("links")),
        title=_text(feed.get("title")),
        description=_text(feed.get("subtitle")),
        entries=entries,
        extensions=_extensions(feed, _FEED_KEYS),
    )


def _map_rss(result) -> ExtractedFeed:
    feed = result.get("feed", {})
    entries = []
    for entry in result.get("entries", []):
        entries.append(ExtractedFeedEntry(
            link=_text(entry.get("link")),
            title=_text(entry.get("title")),
            published=_text(entry.get("published")),
            description=_text(entry.get("summary")),
            author=_text(entry.get("author")),
            thumbnail=_thumbnail(entry),
            extensions=_extensions(entry, _ENTRY_KEYS),
        ))
    return ExtractedFeed(
        link=_text(feed.get("link")),
        title=_text(feed.get("title")),
        description=_text(feed.get("subtitle")),
        entries=entries,
        extensions=_extensions(feed, _FEED_KEYS),
    )


def parse_feed(body: bytes, dialect: Optional[Dialect] = None) -> ExtractedFeed:
    """Parse raw feed bytes.

    Args:
        body: The document as fetched
        dialect: Dialect declared by the caller; sniffed from the document when None

    Returns:
        The intermediate document

    Raises:
        FeedParseError: empty body or malformed XML
        DecodeError: the character encoding could not be determined
        UnsupportedDocumentError: neither Atom nor RSS, or not the declared dialect
    """
    if not body or not body.strip():
        raise FeedParseError("empty document")

    try:
        # A stream keeps feedparser from treating the bytes as a path or URL
        result = feedparser.parse(io.BytesIO(body), sanitize_html=True, resolve_relative_uris=True)
    except UndeclaredNamespace as e:
        raise FeedParseError(f"malformed XML: {e}") from e

    if result.get("bozo"):
        error = result.get("bozo_exception")
        if isinstance(error, CharacterEncodingUnknown):
            raise DecodeError(f"could not decode document: {error}")
        if isinstance(error, (xml.sax.SAXException, UndeclaredNamespace)):
            raise FeedParseError(f"malformed XML: {error}")
        logger.debug("Ignoring feed parsing warning: %s", error)

    version = result.get("version")
    sniffed = dialect_for_version(version)
    if sniffed is None:
        raise UnsupportedDocumentError()
    if dialect is not None and dialect != sniffed:
        raise UnsupportedDocumentError(f"document type not supported: expected {dialect.value}, found {version}")

    logger.debug("Parsed %s document (%s) with %d entries", sniffed.value, version, len(result.get("entries", [])))
    if sniffed == Dialect.ATOM:
        return _map_atom(result, _atom_media_groups(body))
    return _map_rss(result)
