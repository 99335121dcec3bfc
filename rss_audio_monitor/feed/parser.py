"""RSS feed parsing into normalized items."""

import logging

# Bandit: parsing handled via defusedxml safe APIs
import xml.etree.ElementTree as ET  # nosec B405
from dataclasses import dataclass, field
from datetime import datetime, timezone
from email.utils import parsedate_to_datetime
from typing import Dict, List, Optional, Union

from defusedxml import DefusedXmlException
from defusedxml.ElementTree import ParseError as DefusedXMLParseError, fromstring as safe_fromstring

from ..exceptions import FeedParseError
from .media import (
    DEFAULT_QUALITY,
    Enclosure,
    MediaVariant,
    QualityRule,
    available_media,
    select_enclosure,
)

logger = logging.getLogger(__name__)

ITUNES_NS = "{http://www.itunes.com/dtds/podcast-1.0.dtd}"
MEDIA_NS = "{http://search.yahoo.com/mrss/}"
ATOM_NS = "{http://www.w3.org/2005/Atom}"

SECONDS_PER_MINUTE = 60
SECONDS_PER_HOUR = 3600


@dataclass
class ParsedItem:
    """One feed item reduced to what the downloader needs."""

    guid: str
    title: str
    description: Optional[str] = None
    pub_date: Optional[datetime] = None
    raw_pub_date: Optional[str] = None
    enclosure: Optional[Enclosure] = None
    image_url: Optional[str] = None
    author: Optional[str] = None
    duration: Optional[int] = None
    variants: List[MediaVariant] = field(default_factory=list)
    plain_enclosure: Optional[Enclosure] = None


@dataclass
class ParsedFeed:
    """Channel metadata and its items in document order."""

    title: str
    description: Optional[str] = None
    items: List[ParsedItem] = field(default_factory=list)


def _text(elem: Optional[ET.Element]) -> Optional[str]:
    if elem is None or elem.text is None:
        return None
    text = elem.text.strip()
    return text or None


def _to_int(value: Optional[str]) -> Optional[int]:
    try:
        return int(value) if value is not None else None
    except ValueError:
        return None


def parse_duration(duration_str: Optional[str]) -> Optional[int]:
    """Parse an iTunes duration: plain seconds, ``MM:SS`` or ``H:MM:SS``.

    Args:
        duration_str: Raw duration text

    Returns:
        Duration in seconds, or None if the text is not a duration
    """
    if not duration_str:
        return None

    parts = duration_str.strip().split(":")
    try:
        numbers = [int(part) for part in parts]
    except ValueError:
        return None

    if len(numbers) == 1:
        return numbers[0]
    if len(numbers) == 2:
        minutes, seconds = numbers
        return minutes * SECONDS_PER_MINUTE + seconds
    if len(numbers) == 3:
        hours, minutes, seconds = numbers
        return hours * SECONDS_PER_HOUR + minutes * SECONDS_PER_MINUTE + seconds
    return None


def parse_pub_date(raw: Optional[str]) -> Optional[datetime]:
    """Parse an RFC 2822 date (ISO 8601 accepted as fallback) as aware UTC.

    Returns:
        The date, or None when absent or unparseable
    """
    if not raw:
        return None

    parsed: Optional[datetime] = None
    try:
        parsed = parsedate_to_datetime(raw)
    except (TypeError, ValueError, IndexError):
        try:
            parsed = datetime.fromisoformat(raw.replace("Z", "+00:00"))
        except ValueError:
            logger.debug(f"Unparseable publication date: {raw!r}")
            return None

    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


def _extract_guid(item: ET.Element, raw_title: Optional[str], raw_date: Optional[str]) -> str:
    guid = _text(item.find("guid"))
    if guid:
        return guid

    link = _text(item.find("link"))
    if link:
        return link

    return f"{raw_title or 'unknown'}_{raw_date or 'unknown'}"


def _extract_enclosure(item: ET.Element) -> Optional[Enclosure]:
    elem = item.find("enclosure")
    if elem is None:
        return None

    url = (elem.get("url") or "").strip()
    if not url:
        return None

    return Enclosure(url=url, mime_type=elem.get("type"), length=_to_int(elem.get("length")))


def _extract_media_variants(item: ET.Element) -> List[MediaVariant]:
    variants = []
    for group in item.findall(f"{MEDIA_NS}group"):
        for content in group.findall(f"{MEDIA_NS}content"):
            url = (content.get("url") or "").strip()
            if not url:
                continue
            variants.append(MediaVariant(
                url=url,
                mime_type=content.get("type"),
                title=_text(content.find(f"{MEDIA_NS}title")),
                file_size=_to_int(content.get("fileSize")),
            ))
    return variants


def _extract_image_url(item: ET.Element) -> Optional[str]:
    itunes_image = item.find(f"{ITUNES_NS}image")
    if itunes_image is not None and itunes_image.get("href"):
        return itunes_image.get("href").strip()

    thumbnail = item.find(f".//{MEDIA_NS}thumbnail")
    if thumbnail is not None and thumbnail.get("url"):
        return thumbnail.get("url").strip()

    return None


def _extract_author(item: ET.Element) -> Optional[str]:
    return _text(item.find(f"{ITUNES_NS}author")) or _text(item.find("author"))


def _extract_raw_date(item: ET.Element) -> Optional[str]:
    return (
        _text(item.find("pubDate"))
        or _text(item.find(f"{ATOM_NS}published"))
        or _text(item.find(f"{ATOM_NS}updated"))
    )


def parse_item(
    item: ET.Element,
    quality: str = DEFAULT_QUALITY,
    rules: Optional[Dict[str, QualityRule]] = None
) -> ParsedItem:
    """Normalize a single ``<item>`` element."""
    raw_title = _text(item.find("title"))
    raw_date = _extract_raw_date(item)
    variants = _extract_media_variants(item)
    plain = _extract_enclosure(item)

    return ParsedItem(
        guid=_extract_guid(item, raw_title, raw_date),
        title=raw_title or "Untitled",
        description=_text(item.find("description")),
        pub_date=parse_pub_date(raw_date),
        raw_pub_date=raw_date,
        enclosure=select_enclosure(variants, plain, quality, rules),
        image_url=_extract_image_url(item),
        author=_extract_author(item),
        duration=parse_duration(_text(item.find(f"{ITUNES_NS}duration"))),
        variants=variants,
        plain_enclosure=plain,
    )


def parse_feed(
    xml: Union[bytes, str],
    quality: str = DEFAULT_QUALITY,
    rules: Optional[Dict[str, QualityRule]] = None
) -> ParsedFeed:
    """Parse an RSS document.

    Args:
        xml: Feed document, raw bytes as fetched or already-decoded text
        quality: Preferred media quality for enclosure selection
        rules: Quality rules (defaults to the built-in keyword lists)

    Returns:
        ParsedFeed with items in document order

    Raises:
        FeedParseError: If the document is not well-formed RSS
    """
    logger.debug(f"Parsing RSS feed with quality: {quality}")

    try:
        root = safe_fromstring(xml.encode("utf-8") if isinstance(xml, str) else xml)
    except (DefusedXMLParseError, DefusedXmlException) as e:
        raise FeedParseError(f"Malformed feed document: {e}") from e

    channel = root.find("channel")
    if channel is None:
        raise FeedParseError(f"Not an RSS document (root element <{root.tag}>)")

    items = [parse_item(item, quality, rules) for item in channel.findall("item")]

    logger.debug(f"Parsed {len(items)} items from RSS feed")

    return ParsedFeed(
        title=_text(channel.find("title")) or "",
        description=_text(channel.find("description")),
        items=items,
    )


def find_item_media(xml: Union[bytes, str], guid: str) -> Dict[str, Optional[str]]:
    """Return every media URL offered by the item with the given guid.

    Raises:
        FeedParseError: If the feed is malformed or has no such item
    """
    feed = parse_feed(xml)
    for item in feed.items:
        if item.guid == guid:
            return available_media(item.variants, item.plain_enclosure)
    raise FeedParseError(f"Episode with GUID '{guid}' not found in feed")
