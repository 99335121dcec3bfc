"""Tests for output file naming."""

from datetime import datetime, timezone

from rss_audio_monitor.utils import file_naming
from rss_audio_monitor.utils.file_naming import (
    apply_filename_format,
    build_output_path,
    extension_from_mime,
    extract_extension,
    release_path,
    resolve_extension,
    sanitize_filename,
)

PUB_DATE = datetime(2024, 3, 5, 8, 30, tzinfo=timezone.utc)


class TestSanitizeFilename:
    def test_replaces_illegal_characters(self):
        assert sanitize_filename('Episode: Title/With\\Special*Chars?') == "Episode_ Title_With_Special_Chars_"

    def test_collapses_whitespace(self):
        assert sanitize_filename("  A   lot \t of\nspace ") == "A lot of space"

    def test_truncates_long_names(self):
        assert len(sanitize_filename("x" * 500)) == file_naming.MAX_NAME_LENGTH


class TestApplyFilenameFormat:
    def test_default_format(self):
        assert apply_filename_format("{show}-{episode}", "Show", "Ep 1", PUB_DATE) == "Show-Ep 1"

    def test_date_placeholder(self):
        assert apply_filename_format("{date}_{episode}", "Show", "Ep 1", PUB_DATE) == "2024-03-05_Ep 1"

    def test_unknown_date(self):
        assert apply_filename_format("{date}", "Show", "Ep", None) == "unknown-date"

    def test_placeholders_are_sanitized(self):
        assert apply_filename_format("{show}-{episode}", "A/B", "C:D", None) == "A_B-C_D"


class TestExtensions:
    def test_mime_mpeg(self):
        assert resolve_extension("audio/mpeg", None) == "mp3"

    def test_mime_mp4(self):
        assert resolve_extension("audio/mp4", None) == "m4a"

    def test_unknown_mime_defaults_to_mp3(self):
        assert resolve_extension("application/octet-stream", None) == "mp3"

    def test_url_extension_ignores_query(self):
        assert resolve_extension(None, "https://cdn.example.com/a.m4a?x=1") == "m4a"

    def test_mime_wins_over_url(self):
        assert resolve_extension("audio/ogg", "https://cdn.example.com/a.mp3") == "ogg"

    def test_extension_from_mime_with_parameters(self):
        assert extension_from_mime("audio/flac; charset=binary") == "flac"

    def test_extension_from_mime_unknown(self):
        assert extension_from_mime("application/octet-stream") is None
        assert extension_from_mime(None) is None

    def test_extract_extension_rejects_long_suffix(self):
        assert extract_extension("https://example.com/file.toolong") is None

    def test_extract_extension_without_dot(self):
        assert extract_extension("https://example.com/download?id=3.mp3") is None


class TestBuildOutputPath:
    def test_layout(self, tmp_path):
        path = build_output_path(str(tmp_path), "My: Show", "Ep 1", PUB_DATE, "mp3")
        assert path == tmp_path / "My_ Show" / "My_ Show-Ep 1.mp3"

    def test_deterministic_on_empty_directory(self, tmp_path):
        first = build_output_path(str(tmp_path), "Show", "Ep", PUB_DATE, "mp3")
        second = build_output_path(str(tmp_path), "Show", "Ep", PUB_DATE, "mp3")
        assert first == second

    def test_existing_file_gets_suffix(self, tmp_path):
        first = build_output_path(str(tmp_path), "Show", "Ep", PUB_DATE, "mp3")
        first.parent.mkdir(parents=True)
        first.write_bytes(b"audio")

        second = build_output_path(str(tmp_path), "Show", "Ep", PUB_DATE, "mp3")
        assert second.name == "Show-Ep_2.mp3"

        second.write_bytes(b"audio")
        third = build_output_path(str(tmp_path), "Show", "Ep", PUB_DATE, "mp3")
        assert third.name == "Show-Ep_3.mp3"

    def test_reserved_paths_are_not_handed_out_twice(self, tmp_path):
        first = build_output_path(str(tmp_path), "Show", "Ep", PUB_DATE, "mp3", reserve=True)
        second = build_output_path(str(tmp_path), "Show", "Ep", PUB_DATE, "mp3", reserve=True)
        try:
            assert first != second
            assert second.name == "Show-Ep_2.mp3"
        finally:
            release_path(first)
            release_path(second)

        assert build_output_path(str(tmp_path), "Show", "Ep", PUB_DATE, "mp3") == first

    def test_custom_format(self, tmp_path):
        path = build_output_path(str(tmp_path), "Show", "Ep", PUB_DATE, "flac", "{date}_{episode}")
        assert path.name == "2024-03-05_Ep.flac"
