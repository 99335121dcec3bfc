"""Feed retrieval, parsing and media selection."""

from .fetcher import DownloadStream, FeedFetcher
from .media import DEFAULT_QUALITY, Enclosure, MediaVariant, select_enclosure
from .parser import ParsedFeed, ParsedItem, parse_duration, parse_feed

__all__ = [
    "DEFAULT_QUALITY",
    "DownloadStream",
    "Enclosure",
    "FeedFetcher",
    "MediaVariant",
    "ParsedFeed",
    "ParsedItem",
    "parse_duration",
    "parse_feed",
    "select_enclosure",
]
