"""Tests for the service facade wiring every engine component together."""

import threading

import pytest

from conftest import (
    TEST_AUDIO,
    TEST_FEED_URL,
    build_episode_items,
    build_rss_xml,
    create_test_episode,
    create_test_subscription_data,
    wait_for,
)
from rss_audio_monitor.config.settings import (
    DatabaseConfig,
    DownloadConfig,
    LoggingConfig,
    NotificationConfig,
    Settings,
)
from rss_audio_monitor.exceptions import InvalidInputError, NotFoundError
from rss_audio_monitor.models.download import DownloadStatus
from rss_audio_monitor.service import DISABLED_REASON, RssAudioMonitorService


@pytest.fixture
def settings(tmp_path):
    return Settings(
        database=DatabaseConfig(path=tmp_path / "service.db"),
        download=DownloadConfig(default_output_directory=tmp_path / "downloads"),
        notifications=NotificationConfig(enabled=False),
        logging=LoggingConfig(path=tmp_path / "service.log"),
    )


@pytest.fixture
def service(settings, fetcher, logger):
    svc = RssAudioMonitorService(settings=settings, fetcher=fetcher, logger=logger)
    yield svc
    svc.downloads.stop()


@pytest.fixture
def show(service, tmp_path):
    return service.create_subscription(
        create_test_subscription_data(output_directory=str(tmp_path / "downloads"))
    )


class TestSubscriptions:
    def test_invalid_payload_is_rejected(self, service):
        with pytest.raises(InvalidInputError):
            service.create_subscription(create_test_subscription_data(rss_url="ftp://example.com/feed"))
        assert service.list_subscriptions() == []

    def test_missing_ids(self, service):
        with pytest.raises(NotFoundError):
            service.get_subscription(1)
        with pytest.raises(NotFoundError):
            service.delete_subscription(1)
        with pytest.raises(NotFoundError):
            service.check_now(1)
        with pytest.raises(NotFoundError):
            service.get_episode(1)
        with pytest.raises(NotFoundError):
            service.retry_episode(1)

    def test_feed_title_requires_http(self, service):
        with pytest.raises(InvalidInputError):
            service.fetch_feed_title("file:///etc/passwd")

    def test_disable_pauses_and_clears_queue(self, service, show):
        episode = create_test_episode(service.db, show.id)
        service.db.add_to_queue(episode.id)

        service.set_subscription_enabled(show.id, False)

        paused = service.get_episode(episode.id)
        assert paused.download_status == DownloadStatus.PAUSED
        assert paused.download_error == DISABLED_REASON
        assert service.queue_size() == 0
        assert service.list_subscriptions(enabled_only=True) == []

        service.set_subscription_enabled(show.id, True)
        assert service.get_episode(episode.id).download_status == DownloadStatus.PAUSED

    def test_check_now_reports_running_check(self, service, show):
        release = threading.Event()
        service.scheduler.check_function = lambda subscription: release.wait(timeout=5)

        try:
            assert service.check_now(show.id) is True
            assert service.check_now(show.id) is False
        finally:
            release.set()

        assert wait_for(lambda: not service.scheduler.is_checking(show.id))

    def test_delete_keeps_files(self, service, show, tmp_path):
        path = tmp_path / "kept.mp3"
        path.write_bytes(TEST_AUDIO)
        episode = create_test_episode(service.db, show.id)
        service.db.mark_episode_completed(episode.id, str(path))

        service.delete_subscription(show.id)

        assert path.exists()
        with pytest.raises(NotFoundError):
            service.get_episode(episode.id)


class TestDownloadsEndToEnd:
    def test_cap_downloads_newest(self, service, fetcher, tmp_path):
        sub = service.create_subscription(create_test_subscription_data(
            output_directory=str(tmp_path / "downloads"),
            max_episodes=2
        ))
        fetcher.feeds[TEST_FEED_URL] = build_rss_xml(build_episode_items(5))
        service.downloads.start()

        assert service.run_check(sub.id) == 2
        assert service.downloads.wait_until_idle(timeout=10)

        completed = service.list_episodes(subscription_id=sub.id, status=DownloadStatus.COMPLETED)
        assert [e.guid for e in completed] == ["guid-4", "guid-3"]
        assert (tmp_path / "downloads" / "Test Show" / "Test Show-Episode 4.mp3").read_bytes() == TEST_AUDIO
        assert service.queue_size() == 0
        assert service.get_subscription(sub.id).total_downloads == 2

    def test_retry_failed_episode(self, service, show, fetcher, tmp_path):
        episode = create_test_episode(service.db, show.id)
        service.db.mark_episode_failed(episode.id, "HTTP error 500")
        service.downloads.start()

        service.retry_episode(episode.id)
        assert service.downloads.wait_until_idle(timeout=5)

        retried = service.get_episode(episode.id)
        assert retried.download_status == DownloadStatus.COMPLETED
        assert retried.download_error is None

    def test_process_pending_skips_disabled(self, service, show):
        wanted = create_test_episode(service.db, show.id, guid="wanted")
        other = service.create_subscription(create_test_subscription_data(name="Other"))
        skipped = create_test_episode(service.db, other.id, guid="skipped")
        service.db.set_subscription_enabled(other.id, False)
        service.downloads.start()

        assert service.process_pending_episodes() == 1
        assert service.downloads.wait_until_idle(timeout=5)

        assert service.get_episode(wanted.id).download_status == DownloadStatus.COMPLETED
        assert service.get_episode(skipped.id).download_status == DownloadStatus.PENDING


class TestEpisodes:
    def test_unknown_status_filter(self, service):
        with pytest.raises(InvalidInputError):
            service.list_episodes(status="lost")

    def test_verify_resets_missing_files(self, service, show, tmp_path):
        present_path = tmp_path / "present.mp3"
        present_path.write_bytes(TEST_AUDIO)
        present = create_test_episode(service.db, show.id, guid="present")
        missing = create_test_episode(service.db, show.id, guid="missing")
        service.db.mark_episode_completed(present.id, str(present_path))
        service.db.mark_episode_completed(missing.id, str(tmp_path / "gone.mp3"))

        assert service.verify_subscription_files(show.id) == [missing.id]

        assert service.get_episode(present.id).download_status == DownloadStatus.COMPLETED
        reset = service.get_episode(missing.id)
        assert reset.download_status == DownloadStatus.PENDING
        assert reset.download_path is None

    def test_delete_episode_with_file(self, service, show, tmp_path):
        path = tmp_path / "ep.mp3"
        path.write_bytes(TEST_AUDIO)
        episode = create_test_episode(service.db, show.id)
        service.db.mark_episode_completed(episode.id, str(path))

        service.delete_episode(episode.id, delete_file=True)

        assert not path.exists()
        with pytest.raises(NotFoundError):
            service.get_episode(episode.id)

    def test_available_media(self, service, show, fetcher):
        fetcher.feeds[TEST_FEED_URL] = build_rss_xml(build_episode_items(1))
        episode = create_test_episode(service.db, show.id, guid="guid-0")

        media = service.available_media(episode.id)

        assert media["standard"] == "https://cdn.example.com/audio/ep0.mp3"


class TestSettings:
    @pytest.mark.parametrize("value", ["0", "11", "many"])
    def test_concurrency_validation(self, service, value):
        with pytest.raises(InvalidInputError):
            service.set_setting("max_concurrent_downloads", value)

    def test_concurrency_applies_on_next_start(self, service, settings, fetcher, logger):
        service.set_setting("max_concurrent_downloads", " 4 ")

        assert service.get_setting("max_concurrent_downloads") == "4"
        restarted = RssAudioMonitorService(settings=settings, fetcher=fetcher, logger=logger)
        assert restarted.downloads.max_concurrent == 4

    def test_free_form_setting(self, service):
        service.set_setting("theme", "dark")
        assert service.list_settings() == {"theme": "dark"}
