"""Tests for RSS parsing."""

from datetime import datetime, timezone

import pytest

from conftest import TEST_FEED_TITLE, build_item_xml, build_rss_xml, rfc2822
from rss_audio_monitor.exceptions import FeedParseError
from rss_audio_monitor.feed.parser import find_item_media, parse_duration, parse_feed, parse_pub_date

MEDIA_GROUP = """      <media:group>
        <media:content url="https://cdn.example.com/ep-original.wav" type="audio/wav" fileSize="900">
          <media:title>Version originale</media:title>
        </media:content>
        <media:content url="https://cdn.example.com/ep-raw.flac" type="audio/flac" fileSize="500">
          <media:title>Version brute</media:title>
        </media:content>
        <media:content url="https://cdn.example.com/ep-std.mp3" type="audio/mpeg" fileSize="100">
          <media:title>Version standard</media:title>
        </media:content>
      </media:group>"""


class TestParseDuration:
    @pytest.mark.parametrize("raw, expected", [
        ("1785", 1785),
        ("29:45", 1785),
        ("01:29:45", 5385),
        ("invalid", None),
        ("", None),
        (None, None),
        ("1:2:3:4", None),
    ])
    def test_formats(self, raw, expected):
        assert parse_duration(raw) == expected


class TestParsePubDate:
    def test_rfc2822_is_utc(self):
        parsed = parse_pub_date("Tue, 05 Mar 2024 10:30:00 +0200")
        assert parsed == datetime(2024, 3, 5, 8, 30, tzinfo=timezone.utc)
        assert parsed.tzinfo == timezone.utc

    def test_iso_fallback(self):
        assert parse_pub_date("2024-03-05T08:30:00Z") == datetime(2024, 3, 5, 8, 30, tzinfo=timezone.utc)

    def test_garbage(self):
        assert parse_pub_date("sometime last week") is None


class TestParseFeed:
    def test_channel_and_item_fields(self):
        extra = """      <description>Show notes</description>
      <itunes:author>Host Name</itunes:author>
      <itunes:duration>29:45</itunes:duration>
      <itunes:image href="https://cdn.example.com/cover.jpg" />"""
        xml = build_rss_xml([build_item_xml(
            title="Pilot",
            guid="abc-123",
            pub_date=rfc2822(2024, 1, 2),
            media_url="https://cdn.example.com/pilot.mp3",
            extra=extra,
        )])

        feed = parse_feed(xml)

        assert feed.title == TEST_FEED_TITLE
        assert feed.description == "A test feed"
        item = feed.items[0]
        assert item.guid == "abc-123"
        assert item.title == "Pilot"
        assert item.description == "Show notes"
        assert item.author == "Host Name"
        assert item.duration == 1785
        assert item.image_url == "https://cdn.example.com/cover.jpg"
        assert item.pub_date == datetime(2024, 1, 2, 12, tzinfo=timezone.utc)
        assert item.enclosure.url == "https://cdn.example.com/pilot.mp3"
        assert item.enclosure.mime_type == "audio/mpeg"

    def test_items_keep_document_order(self):
        xml = build_rss_xml([
            build_item_xml(title="B", guid="b", pub_date=rfc2822(2024, 1, 1)),
            build_item_xml(title="A", guid="a", pub_date=rfc2822(2024, 2, 1)),
        ])
        assert [item.guid for item in parse_feed(xml).items] == ["b", "a"]

    def test_guid_falls_back_to_link(self):
        xml = build_rss_xml([build_item_xml(title="T", link="https://example.com/ep/1")])
        assert parse_feed(xml).items[0].guid == "https://example.com/ep/1"

    def test_guid_falls_back_to_title_and_date(self):
        date = "Tue, 02 Jan 2024 12:00:00 +0000"
        xml = build_rss_xml([build_item_xml(title="T", pub_date=date)])
        assert parse_feed(xml).items[0].guid == f"T_{date}"

    def test_guid_unknown_parts(self):
        xml = build_rss_xml([build_item_xml(title=None)])
        item = parse_feed(xml).items[0]
        assert item.guid == "unknown_unknown"
        assert item.title == "Untitled"

    def test_item_without_enclosure(self):
        xml = build_rss_xml([build_item_xml(guid="x")])
        assert parse_feed(xml).items[0].enclosure is None

    def test_quality_selection_from_media_group(self):
        xml = build_rss_xml([build_item_xml(
            guid="x",
            media_url="https://cdn.example.com/plain.mp3",
            extra=MEDIA_GROUP,
        )])

        flac = parse_feed(xml, quality="flac").items[0].enclosure
        assert flac.url == "https://cdn.example.com/ep-raw.flac"
        assert flac.length == 500

        best = parse_feed(xml).items[0].enclosure
        assert best.url == "https://cdn.example.com/ep-original.wav"

    def test_declared_latin1_bytes(self):
        xml = build_rss_xml([build_item_xml(title="Été", guid="x")], title="Chanson française")
        body = xml.replace("encoding='UTF-8'", "encoding='ISO-8859-1'").encode("iso-8859-1")

        feed = parse_feed(body)

        assert feed.title == "Chanson française"
        assert feed.items[0].title == "Été"

    def test_malformed_xml(self):
        with pytest.raises(FeedParseError):
            parse_feed("<rss><channel><title>broken")

    def test_not_rss(self):
        with pytest.raises(FeedParseError):
            parse_feed("<html><body>Not a feed</body></html>")


class TestFindItemMedia:
    def test_lists_renditions(self):
        xml = build_rss_xml([build_item_xml(
            guid="x",
            media_url="https://cdn.example.com/plain.mp3",
            extra=MEDIA_GROUP,
        )])

        assert find_item_media(xml, "x") == {
            "standard": "https://cdn.example.com/plain.mp3",
            "original": "https://cdn.example.com/ep-original.wav",
            "flac": "https://cdn.example.com/ep-raw.flac",
            "mp3": "https://cdn.example.com/ep-std.mp3",
        }

    def test_unknown_guid(self):
        xml = build_rss_xml([build_item_xml(guid="x")])
        with pytest.raises(FeedParseError, match="not found"):
            find_item_media(xml, "missing")
