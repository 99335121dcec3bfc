"""Concurrency-limited episode download manager."""

import logging
import queue
import threading
import time
from pathlib import Path
from typing import Dict, List, Optional

from ..config.database import DatabaseHandler
from ..exceptions import DownloadCancelledError, RssMonitorError
from ..feed.fetcher import FeedFetcher
from ..models.download import DownloadRequest
from ..models.events import (
    DOWNLOAD_COMPLETED,
    DOWNLOAD_FAILED,
    DOWNLOAD_PROGRESS,
    DOWNLOAD_STARTED,
    DownloadCompletedPayload,
    DownloadFailedPayload,
    DownloadProgressPayload,
    DownloadStartedPayload,
)
from ..utils.file_naming import release_path
from .events import EventBus
from .retention import RetentionPolicy


class DownloadTask:
    """An admitted download and its cancel token."""

    def __init__(self, request: DownloadRequest, cancel_event: threading.Event):
        self.request = request
        self.cancel_event = cancel_event
        self.thread: Optional[threading.Thread] = None

    def cancel(self) -> None:
        self.cancel_event.set()


class DownloadManager:
    """Consumes download requests with at most ``max_concurrent`` active at once.

    Requests go into an unbounded intake queue. A dispatcher thread admits
    them one by one, blocking on a semaphore while every slot is taken, and
    runs each admitted download on its own worker thread. Failures are
    recorded on the episode and reported as events; nothing is retried here.
    """

    def __init__(
        self,
        db: DatabaseHandler,
        fetcher: FeedFetcher,
        events: EventBus,
        retention: RetentionPolicy,
        logger: logging.Logger,
        max_concurrent: int = 3,
        progress_interval: float = 0.5
    ):
        """Initialize download manager.

        Args:
            db: Database handler
            fetcher: HTTP client used to stream episode files
            events: Event bus for download events
            retention: Retention policy run after each completed download
            logger: Logger instance
            max_concurrent: Maximum simultaneous downloads
            progress_interval: Minimum seconds between progress samples
        """
        if max_concurrent < 1:
            raise ValueError("max_concurrent must be >= 1")

        self.db = db
        self.fetcher = fetcher
        self.events = events
        self.retention = retention
        self.logger = logger
        self.max_concurrent = max_concurrent
        self.progress_interval = progress_interval

        self._intake: "queue.Queue[Optional[DownloadRequest]]" = queue.Queue()
        self._slots = threading.BoundedSemaphore(max_concurrent)
        self._lock = threading.Lock()
        self._idle = threading.Condition(self._lock)
        self._tokens: Dict[int, threading.Event] = {}
        self._active: Dict[int, DownloadTask] = {}
        self._outstanding = 0
        self._running = False
        self._dispatcher: Optional[threading.Thread] = None

    # Lifecycle

    def start(self) -> None:
        """Start the dispatcher thread."""
        if self._running:
            return

        self._running = True
        self._dispatcher = threading.Thread(
            target=self._dispatch_loop,
            name="download-dispatcher",
            daemon=True
        )
        self._dispatcher.start()
        self.logger.info(f"Download manager started with max_concurrent={self.max_concurrent}")

    def stop(self, timeout: Optional[float] = 10) -> None:
        """Stop admitting downloads and cancel the active ones."""
        if not self._running:
            return

        self.logger.info("Stopping download manager...")
        self._running = False

        with self._lock:
            for token in self._tokens.values():
                token.set()

        self._intake.put(None)
        if self._dispatcher:
            self._dispatcher.join(timeout)

        self.logger.info("Download manager stopped")

    # Public API

    def submit(self, request: DownloadRequest) -> None:
        """Queue a download request. Never blocks."""
        with self._lock:
            self._tokens[request.episode_id] = threading.Event()
            self._outstanding += 1
        self._intake.put(request)
        self.logger.debug(f"Queued download for episode {request.episode_id}")

    def cancel(self, episode_id: int) -> bool:
        """Signal a queued or active download to stop.

        Returns:
            True if the episode had a download to cancel
        """
        with self._lock:
            token = self._tokens.get(episode_id)
        if token is None:
            return False

        token.set()
        self.logger.info(f"Cancellation requested for episode {episode_id}")
        return True

    def active_count(self) -> int:
        with self._lock:
            return len(self._active)

    def active_episode_ids(self) -> List[int]:
        with self._lock:
            return list(self._active)

    def is_tracked(self, episode_id: int) -> bool:
        """Whether an episode is queued in memory or downloading."""
        with self._lock:
            return episode_id in self._tokens

    def wait_until_idle(self, timeout: Optional[float] = None) -> bool:
        """Block until every submitted request has finished.

        Returns:
            True if idle, False on timeout
        """
        with self._idle:
            return self._idle.wait_for(lambda: self._outstanding == 0, timeout)

    # Dispatching

    def _dispatch_loop(self) -> None:
        while True:
            request = self._intake.get()
            if request is None:
                break

            if not self._running:
                self._finish(request)
                continue

            # Event-driven admission: blocks until a worker releases its slot
            self._slots.acquire()

            with self._lock:
                token = self._tokens.get(request.episode_id) or threading.Event()
                task = DownloadTask(request, token)
                self._active[request.episode_id] = task

            self.logger.info(f"Starting download for episode {request.episode_id}")

            task.thread = threading.Thread(
                target=self._run_task,
                args=(task,),
                name=f"download-{request.episode_id}",
                daemon=True
            )
            task.thread.start()

    def _run_task(self, task: DownloadTask) -> None:
        try:
            self._download(task.request, task.cancel_event)
        except Exception as e:
            self.logger.error(
                f"Unexpected error downloading episode {task.request.episode_id}: {e}",
                exc_info=True
            )
        finally:
            with self._lock:
                self._active.pop(task.request.episode_id, None)
            self._slots.release()
            self._finish(task.request)

    def _finish(self, request: DownloadRequest) -> None:
        release_path(request.output_path)
        with self._idle:
            if self._tokens.get(request.episode_id) is not None:
                del self._tokens[request.episode_id]
            self._outstanding -= 1
            self._idle.notify_all()

    # Download

    def _download(self, request: DownloadRequest, cancel_event: threading.Event) -> None:
        episode_id = request.episode_id

        if cancel_event.is_set():
            self._dequeue(episode_id)
            self._fail(request, str(DownloadCancelledError()))
            return

        try:
            self.db.mark_episode_downloading(episode_id)
        except RssMonitorError as e:
            self.logger.error(f"Failed to mark episode {episode_id} as downloading: {e}")
            return

        self._dequeue(episode_id)

        self.events.emit(
            DOWNLOAD_STARTED,
            DownloadStartedPayload(episode_id=episode_id, subscription_id=request.subscription_id)
        )

        try:
            downloaded = self._stream_to_file(request, cancel_event)
        except (RssMonitorError, OSError) as e:
            self.logger.error(f"Download failed for episode {episode_id}: {e}")
            self._fail(request, str(e))
            return

        self.logger.info(f"Downloaded {downloaded} bytes to {request.output_path}")
        self._complete(request)

    def _dequeue(self, episode_id: int) -> None:
        try:
            self.db.remove_from_queue(episode_id)
        except RssMonitorError as e:
            self.logger.warning(f"Failed to remove episode {episode_id} from queue: {e}")

    def _stream_to_file(self, request: DownloadRequest, cancel_event: threading.Event) -> int:
        """Stream the episode body to disk, deleting the partial file on any error.

        Returns:
            Number of bytes written
        """
        output_path = Path(request.output_path)
        output_path.parent.mkdir(parents=True, exist_ok=True)

        downloaded = 0
        try:
            with self.fetcher.stream(request.url) as stream, open(output_path, 'wb') as f:
                total = stream.content_length
                last_sample = time.monotonic()
                last_downloaded = 0

                for chunk in stream.iter_chunks():
                    if cancel_event.is_set():
                        raise DownloadCancelledError()

                    f.write(chunk)
                    downloaded += len(chunk)

                    now = time.monotonic()
                    elapsed = now - last_sample
                    if elapsed >= self.progress_interval:
                        self._report_progress(
                            request.episode_id,
                            downloaded,
                            total,
                            (downloaded - last_downloaded) / elapsed if elapsed > 0 else None
                        )
                        last_sample = now
                        last_downloaded = downloaded
        except Exception:
            self._remove_partial(output_path)
            raise

        return downloaded

    def _report_progress(
        self,
        episode_id: int,
        downloaded: int,
        total: Optional[int],
        speed: Optional[float]
    ) -> None:
        progress = min(int(downloaded / total * 100), 100) if total else 0

        try:
            self.db.update_episode_progress(episode_id, progress)
        except RssMonitorError as e:
            self.logger.warning(f"Failed to persist progress for episode {episode_id}: {e}")

        self.events.emit(
            DOWNLOAD_PROGRESS,
            DownloadProgressPayload(
                episode_id=episode_id,
                downloaded=downloaded,
                total=total,
                progress=progress,
                speed=speed
            )
        )

    def _remove_partial(self, path: Path) -> None:
        try:
            path.unlink()
            self.logger.debug(f"Removed partial file {path}")
        except FileNotFoundError:
            pass
        except OSError as e:
            self.logger.warning(f"Failed to remove partial file {path}: {e}")

    def _complete(self, request: DownloadRequest) -> None:
        file_path = str(request.output_path)

        try:
            self.db.mark_episode_completed(request.episode_id, file_path)
        except RssMonitorError as e:
            self.logger.error(f"Failed to mark episode {request.episode_id} as completed: {e}")

        try:
            self.db.increment_download_count(request.subscription_id)
        except RssMonitorError as e:
            self.logger.warning(f"Failed to increment download count: {e}")

        self.retention.apply(request.subscription_id)

        self.events.emit(
            DOWNLOAD_COMPLETED,
            DownloadCompletedPayload(
                episode_id=request.episode_id,
                subscription_id=request.subscription_id,
                file_path=file_path
            )
        )

    def _fail(self, request: DownloadRequest, error: str) -> None:
        try:
            self.db.mark_episode_failed(request.episode_id, error[:500])
        except RssMonitorError as e:
            self.logger.error(f"Failed to mark episode {request.episode_id} as failed: {e}")

        self.events.emit(
            DOWNLOAD_FAILED,
            DownloadFailedPayload(
                episode_id=request.episode_id,
                subscription_id=request.subscription_id,
                error=error
            )
        )
