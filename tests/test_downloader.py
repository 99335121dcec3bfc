"""Tests for the concurrency-limited download manager."""

import threading
import time

import pytest

from conftest import TEST_AUDIO, TEST_MEDIA_BASE, create_test_episode, wait_for
from rss_audio_monitor.core.downloader import DownloadManager
from rss_audio_monitor.core.retention import RetentionPolicy
from rss_audio_monitor.exceptions import DownloadError
from rss_audio_monitor.models.download import DownloadRequest, DownloadStatus
from rss_audio_monitor.models.events import (
    DOWNLOAD_COMPLETED,
    DOWNLOAD_FAILED,
    DOWNLOAD_PROGRESS,
    DOWNLOAD_STARTED,
)


@pytest.fixture
def make_manager(db, fetcher, events, logger):
    managers = []

    def factory(max_concurrent=3, progress_interval=0.5):
        manager = DownloadManager(
            db=db,
            fetcher=fetcher,
            events=events,
            retention=RetentionPolicy(db, logger),
            logger=logger,
            max_concurrent=max_concurrent,
            progress_interval=progress_interval
        )
        manager.start()
        managers.append(manager)
        return manager

    yield factory

    if fetcher.gate is not None:
        fetcher.gate.set()
    for manager in managers:
        manager.stop()


def make_request(db, subscription, tmp_path, n=1):
    episode = create_test_episode(
        db,
        subscription.id,
        guid=f"guid-{n}",
        title=f"Episode {n}",
        audio_url=f"{TEST_MEDIA_BASE}/ep{n}.mp3"
    )
    db.add_to_queue(episode.id)
    return DownloadRequest(
        episode_id=episode.id,
        subscription_id=subscription.id,
        url=episode.audio_url,
        output_path=tmp_path / "downloads" / "Show" / f"ep{n}.mp3"
    )


class TestDownloadManager:
    def test_successful_download(self, db, subscription, make_manager, recorder, tmp_path):
        manager = make_manager()
        request = make_request(db, subscription, tmp_path)

        manager.submit(request)
        assert manager.wait_until_idle(timeout=5)

        assert request.output_path.read_bytes() == TEST_AUDIO
        episode = db.get_episode(request.episode_id)
        assert episode.download_status == DownloadStatus.COMPLETED
        assert episode.download_path == str(request.output_path)
        assert episode.download_progress == 100
        assert episode.download_attempts == 1
        assert db.get_queue_size() == 0
        assert db.get_subscription(subscription.id).total_downloads == 1

        assert [p.episode_id for p in recorder.of(DOWNLOAD_STARTED)] == [request.episode_id]
        assert recorder.of(DOWNLOAD_COMPLETED)[0].file_path == str(request.output_path)

    def test_never_exceeds_limit(self, db, subscription, fetcher, make_manager, tmp_path):
        limit = 2
        fetcher.gate = threading.Event()
        manager = make_manager(max_concurrent=limit)
        requests = [make_request(db, subscription, tmp_path, n) for n in range(limit + 5)]

        for request in requests:
            manager.submit(request)

        assert wait_for(lambda: manager.active_count() == limit)
        time.sleep(0.2)
        assert manager.active_count() == limit
        assert wait_for(lambda: db.get_episode_stats().downloading == limit)
        assert db.get_episode_stats().pending == 5

        fetcher.gate.set()
        assert manager.wait_until_idle(timeout=10)

        assert db.get_episode_stats().completed == limit + 5
        assert all(r.output_path.exists() for r in requests)

    def test_cancel_removes_partial_file(self, db, subscription, fetcher, make_manager, recorder, tmp_path):
        fetcher.gate = threading.Event()
        fetcher.ungated_chunks = 1
        manager = make_manager()
        request = make_request(db, subscription, tmp_path)

        manager.submit(request)
        assert wait_for(request.output_path.exists)
        assert manager.active_episode_ids() == [request.episode_id]

        assert manager.cancel(request.episode_id)
        fetcher.gate.set()
        assert manager.wait_until_idle(timeout=5)

        assert not request.output_path.exists()
        episode = db.get_episode(request.episode_id)
        assert episode.download_status == DownloadStatus.FAILED
        assert episode.download_error == "Download cancelled"
        assert recorder.of(DOWNLOAD_FAILED)[0].error == "Download cancelled"

    def test_cancel_unknown_episode(self, make_manager):
        assert make_manager().cancel(12345) is False

    def test_cancel_before_admission(self, db, subscription, fetcher, make_manager, tmp_path):
        fetcher.gate = threading.Event()
        manager = make_manager(max_concurrent=1)
        blocking = make_request(db, subscription, tmp_path, 1)
        waiting = make_request(db, subscription, tmp_path, 2)

        manager.submit(blocking)
        manager.submit(waiting)
        assert wait_for(lambda: manager.active_episode_ids() == [blocking.episode_id])

        assert manager.cancel(waiting.episode_id)
        fetcher.gate.set()
        assert manager.wait_until_idle(timeout=5)

        assert db.get_episode(blocking.episode_id).download_status == DownloadStatus.COMPLETED
        assert db.get_episode(waiting.episode_id).download_status == DownloadStatus.FAILED
        assert waiting.url not in fetcher.stream_calls
        assert db.get_queue_size() == 0

    def test_failure_is_recorded(self, db, subscription, fetcher, make_manager, recorder, tmp_path):
        manager = make_manager()
        request = make_request(db, subscription, tmp_path)
        fetcher.files[request.url] = DownloadError("HTTP error 403: Failed to download file")

        manager.submit(request)
        assert manager.wait_until_idle(timeout=5)

        episode = db.get_episode(request.episode_id)
        assert episode.download_status == DownloadStatus.FAILED
        assert "403" in episode.download_error
        assert not request.output_path.exists()
        assert recorder.of(DOWNLOAD_FAILED)[0].episode_id == request.episode_id

    def test_failure_does_not_block_siblings(self, db, subscription, fetcher, make_manager, tmp_path):
        manager = make_manager(max_concurrent=1)
        bad = make_request(db, subscription, tmp_path, 1)
        good = make_request(db, subscription, tmp_path, 2)
        fetcher.files[bad.url] = DownloadError("boom")

        manager.submit(bad)
        manager.submit(good)
        assert manager.wait_until_idle(timeout=5)

        assert db.get_episode(bad.episode_id).download_status == DownloadStatus.FAILED
        assert db.get_episode(good.episode_id).download_status == DownloadStatus.COMPLETED

    def test_progress_events(self, db, subscription, make_manager, recorder, tmp_path):
        manager = make_manager(progress_interval=0)
        request = make_request(db, subscription, tmp_path)

        manager.submit(request)
        assert manager.wait_until_idle(timeout=5)

        progress = recorder.of(DOWNLOAD_PROGRESS)
        assert progress
        assert progress[-1].downloaded == len(TEST_AUDIO)
        assert progress[-1].total == len(TEST_AUDIO)
        assert progress[-1].progress == 100

    def test_rejects_zero_slots(self, db, fetcher, events, logger):
        with pytest.raises(ValueError):
            DownloadManager(db, fetcher, events, RetentionPolicy(db, logger), logger, max_concurrent=0)
