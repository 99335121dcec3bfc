"""Shared fixtures and test utilities for rss_audio_monitor tests.

This module contains:
- Test constants
- RSS document builders
- A fake HTTP fetcher with controllable streaming
- Fixtures for an isolated database, event bus and logger
"""

import logging
import threading
import time
from datetime import datetime, timezone
from typing import Dict, List, Optional, Union

import pytest

from rss_audio_monitor.config.database import DatabaseHandler, utc_now
from rss_audio_monitor.core.events import EventBus
from rss_audio_monitor.exceptions import DownloadError, FeedFetchError
from rss_audio_monitor.models.episode import Episode
from rss_audio_monitor.models.subscription import SubscriptionData

# Test constants
TEST_FEED_URL = "https://example.com/feed.xml"
TEST_MEDIA_BASE = "https://cdn.example.com/audio"
TEST_FEED_TITLE = "Test Show"
TEST_AUDIO = b"ID3" + b"x" * 29

RSS_NAMESPACES = (
    'xmlns:itunes="http://www.itunes.com/dtds/podcast-1.0.dtd" '
    'xmlns:media="http://search.yahoo.com/mrss/"'
)


def rfc2822(year, month, day, hour=12):
    """Format a UTC date the way feeds publish it."""
    return datetime(year, month, day, hour, tzinfo=timezone.utc).strftime("%a, %d %b %Y %H:%M:%S +0000")


def build_item_xml(
    title: Optional[str] = "Episode",
    guid: Optional[str] = None,
    pub_date: Optional[str] = None,
    media_url: Optional[str] = None,
    media_type: str = "audio/mpeg",
    link: Optional[str] = None,
    extra: str = "",
) -> str:
    """Build one ``<item>`` element.

    Args:
        title: Item title (None omits the element)
        guid: Item guid (None omits the element)
        pub_date: Raw pubDate text (None omits the element)
        media_url: Enclosure URL (None omits the enclosure)
        media_type: Enclosure MIME type
        link: Item link
        extra: Raw XML appended inside the item
    """
    parts = ["    <item>"]
    if title is not None:
        parts.append(f"      <title>{title}</title>")
    if guid is not None:
        parts.append(f"      <guid>{guid}</guid>")
    if link is not None:
        parts.append(f"      <link>{link}</link>")
    if pub_date is not None:
        parts.append(f"      <pubDate>{pub_date}</pubDate>")
    if media_url is not None:
        parts.append(f'      <enclosure url="{media_url}" type="{media_type}" length="{len(TEST_AUDIO)}" />')
    if extra:
        parts.append(extra)
    parts.append("    </item>")
    return "\n".join(parts)


def build_rss_xml(items: List[str], title: str = TEST_FEED_TITLE) -> str:
    """Wrap item elements in an RSS channel."""
    body = "\n".join(items)
    return f"""<?xml version='1.0' encoding='UTF-8'?>
<rss version="2.0" {RSS_NAMESPACES}>
  <channel>
    <title>{title}</title>
    <description>A test feed</description>
{body}
  </channel>
</rss>"""


def build_episode_items(count: int, start_day: int = 1) -> List[str]:
    """Build ``count`` dated items, oldest first, one day apart."""
    return [
        build_item_xml(
            title=f"Episode {n}",
            guid=f"guid-{n}",
            pub_date=rfc2822(2024, 1, start_day + n),
            media_url=f"{TEST_MEDIA_BASE}/ep{n}.mp3",
        )
        for n in range(count)
    ]


def wait_for(predicate, timeout: float = 5.0, interval: float = 0.01) -> bool:
    """Poll until ``predicate()`` is true or the timeout expires."""
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(interval)
    return predicate()


class FakeStream:
    """Stand-in for fetcher.DownloadStream.

    When a gate is given, every chunk after the first ``ungated`` ones waits
    for the gate to open.
    """

    def __init__(self, chunks: List[bytes], gate: Optional[threading.Event] = None, ungated: int = 0):
        self.chunks = chunks
        self.gate = gate
        self.ungated = ungated
        self.status_code = 200
        self.content_length = sum(len(c) for c in chunks)
        self.closed = False

    def iter_chunks(self):
        for index, chunk in enumerate(self.chunks):
            if self.gate is not None and index >= self.ungated:
                if not self.gate.wait(timeout=10):
                    raise DownloadError("Test gate never opened")
            yield chunk

    def close(self):
        self.closed = True

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()


class FakeFetcher:
    """In-memory FeedFetcher replacement.

    ``feeds`` and ``files`` map URLs to a document/body or to an exception to
    raise. Unknown feed URLs fail like a 404; unknown file URLs serve
    TEST_AUDIO.
    """

    def __init__(self, chunk_size: int = 8):
        self.feeds: Dict[str, Union[str, bytes, Exception]] = {}
        self.files: Dict[str, Union[bytes, Exception]] = {}
        self.chunk_size = chunk_size
        self.gate: Optional[threading.Event] = None
        self.ungated_chunks = 0
        self.fetch_calls: List[tuple] = []
        self.stream_calls: List[str] = []

    def fetch(self, url: str, limit: Optional[int] = None) -> bytes:
        self.fetch_calls.append((url, limit))
        result = self.feeds.get(url)
        if result is None:
            raise FeedFetchError("HTTP error 404: Failed to fetch RSS feed")
        if isinstance(result, Exception):
            raise result
        return result.encode("utf-8") if isinstance(result, str) else result

    def stream(self, url: str) -> FakeStream:
        self.stream_calls.append(url)
        body = self.files.get(url, TEST_AUDIO)
        if isinstance(body, Exception):
            raise body
        chunks = [body[i:i + self.chunk_size] for i in range(0, len(body), self.chunk_size)]
        return FakeStream(chunks, self.gate, self.ungated_chunks)


def create_test_subscription_data(**overrides) -> SubscriptionData:
    """Create SubscriptionData with test defaults."""
    defaults = {
        "name": TEST_FEED_TITLE,
        "rss_url": TEST_FEED_URL,
        "output_directory": "output",
    }
    defaults.update(overrides)
    return SubscriptionData(**defaults)


def create_test_episode(db: DatabaseHandler, subscription_id: int, **overrides) -> Episode:
    """Insert a pending episode with test defaults."""
    defaults = {
        "subscription_id": subscription_id,
        "guid": "guid-1",
        "title": "Episode 1",
        "audio_url": f"{TEST_MEDIA_BASE}/ep1.mp3",
        "audio_type": "audio/mpeg",
        "discovered_at": utc_now(),
    }
    defaults.update(overrides)
    return db.insert_episode(Episode(**defaults))


class EventRecorder:
    """Listener collecting (topic, payload) pairs."""

    def __init__(self):
        self.events: List[tuple] = []
        self._lock = threading.Lock()

    def __call__(self, topic, payload):
        with self._lock:
            self.events.append((topic, payload))

    def of(self, topic: str) -> list:
        with self._lock:
            return [payload for t, payload in self.events if t == topic]


@pytest.fixture(autouse=True)
def isolated_home(tmp_path, monkeypatch):
    """Keep config directories and default paths inside the test's tmp dir."""
    home = tmp_path / "home"
    home.mkdir()
    monkeypatch.setenv("HOME", str(home))
    monkeypatch.setenv("XDG_CONFIG_HOME", str(home / ".config"))
    return home


@pytest.fixture
def logger():
    return logging.getLogger("rss_audio_monitor.tests")


@pytest.fixture
def db(tmp_path):
    return DatabaseHandler(tmp_path / "test.db")


@pytest.fixture
def events(logger):
    return EventBus(logger)


@pytest.fixture
def recorder(events):
    rec = EventRecorder()
    events.subscribe(rec)
    return rec


@pytest.fixture
def fetcher():
    return FakeFetcher()


@pytest.fixture
def subscription(db, tmp_path):
    return db.create_subscription(
        create_test_subscription_data(output_directory=str(tmp_path / "downloads"))
    )
