"""Main background service for RSS Audio Monitor."""

import logging
import os
import signal
import time
from pathlib import Path
from typing import Dict, List, Optional

from .config.database import DatabaseHandler
from .config.settings import Settings
from .core.downloader import DownloadManager
from .core.events import EventBus
from .core.monitor import FeedMonitor
from .core.notifier import Notifier
from .core.retention import RetentionPolicy
from .core.scheduler import FeedScheduler
from .exceptions import InvalidInputError, RssMonitorError, StorageError
from .feed.fetcher import FeedFetcher
from .models.download import DownloadStatus, QueueEntry
from .models.episode import Episode, EpisodeStats
from .models.subscription import Subscription, SubscriptionData
from .utils.logger import setup_logger
from .utils.platform import is_windows

MAX_CONCURRENT_DOWNLOADS_KEY = "max_concurrent_downloads"
DISABLED_REASON = "Cancelled: subscription disabled"


class RssAudioMonitorService:
    """Owns every engine component and exposes the user-facing operations.

    Components are built eagerly so that commands work without the service
    running; start() only launches the background threads.
    """

    def __init__(
        self,
        config_path: Optional[Path] = None,
        settings: Optional[Settings] = None,
        fetcher: Optional[FeedFetcher] = None,
        logger: Optional[logging.Logger] = None
    ):
        """Initialize the service.

        Args:
            config_path: Path to configuration file (optional)
            settings: Ready-made settings, bypassing the config file
            fetcher: HTTP client (default: built from network settings)
            logger: Logger instance (default: configured from logging settings)
        """
        self.running = False
        self.config_path = config_path

        self.settings = settings or Settings.from_file_or_default(config_path)

        self.logger = logger or setup_logger(
            log_file=self.settings.logging.path,
            level=self.settings.logging.level,
            max_size_mb=self.settings.logging.max_size_mb,
            backup_count=self.settings.logging.backup_count,
            console=True
        )

        self.logger.debug("Initializing RSS Audio Monitor service")

        self.db = DatabaseHandler(self.settings.database.path)
        self.events = EventBus(self.logger)
        self.fetcher = fetcher or FeedFetcher(
            timeout=self.settings.network.timeout_seconds,
            user_agent=self.settings.network.user_agent,
            max_retries=self.settings.network.max_retries,
            chunk_size=self.settings.download.chunk_size_kb * 1024
        )
        self.retention = RetentionPolicy(self.db, self.logger)

        self.downloads = DownloadManager(
            db=self.db,
            fetcher=self.fetcher,
            events=self.events,
            retention=self.retention,
            logger=self.logger,
            max_concurrent=self.db.get_setting_int(
                MAX_CONCURRENT_DOWNLOADS_KEY,
                self.settings.download.max_concurrent
            ),
            progress_interval=self.settings.download.progress_interval_ms / 1000
        )

        self.monitor = FeedMonitor(
            db=self.db,
            fetcher=self.fetcher,
            events=self.events,
            submit=self.downloads.submit,
            logger=self.logger
        )

        self.scheduler = FeedScheduler(
            logger=self.logger,
            db=self.db,
            check_function=self.monitor.check_subscription,
            tick_seconds=self.settings.scheduler.tick_seconds
        )

        self.notifier = Notifier(
            logger=self.logger,
            config=self.settings.notifications,
            db=self.db
        )
        self.notifier.attach(self.events)

    # Subscriptions

    def create_subscription(self, data: SubscriptionData) -> Subscription:
        """Validate and store a new subscription.

        Raises:
            InvalidInputError: If the payload is invalid
        """
        data.validate()
        subscription = self.db.create_subscription(data)
        self.logger.info(f"Added subscription: {subscription.name} ({subscription.rss_url})")
        return subscription

    def update_subscription(self, subscription_id: int, data: SubscriptionData) -> Subscription:
        """Replace the editable fields of a subscription.

        Raises:
            InvalidInputError: If the payload is invalid
            NotFoundError: If the subscription doesn't exist
        """
        data.validate()
        subscription = self.db.update_subscription(subscription_id, data)
        self.logger.info(f"Updated subscription: {subscription.name}")
        return subscription

    def delete_subscription(self, subscription_id: int) -> None:
        """Delete a subscription with its episodes and queue entries.

        Downloaded files stay on disk.

        Raises:
            NotFoundError: If the subscription doesn't exist
        """
        subscription = self.db.get_subscription(subscription_id)
        self._cancel_subscription_downloads(subscription_id)
        self.db.delete_subscription(subscription_id)
        self.logger.info(f"Removed subscription: {subscription.name}")

    def get_subscription(self, subscription_id: int) -> Subscription:
        return self.db.get_subscription(subscription_id)

    def list_subscriptions(self, enabled_only: bool = False) -> List[Subscription]:
        return self.db.list_subscriptions(enabled_only=enabled_only)

    def set_subscription_enabled(self, subscription_id: int, enabled: bool) -> None:
        """Enable or disable a subscription.

        Disabling pauses its pending and downloading episodes, cancels its
        active downloads and drops its queue entries.

        Raises:
            NotFoundError: If the subscription doesn't exist
        """
        self.db.set_subscription_enabled(subscription_id, enabled)

        if enabled:
            self.logger.info(f"Enabled subscription {subscription_id}")
            return

        paused = self.db.pause_subscription_episodes(subscription_id, DISABLED_REASON)
        self._cancel_subscription_downloads(subscription_id)
        self.db.remove_subscription_from_queue(subscription_id)
        self.logger.info(f"Disabled subscription {subscription_id}, paused {paused} episode(s)")

    def _cancel_subscription_downloads(self, subscription_id: int) -> None:
        for episode in self.db.list_episodes(subscription_id=subscription_id):
            if self.downloads.is_tracked(episode.id):
                self.downloads.cancel(episode.id)

    def check_now(self, subscription_id: int) -> bool:
        """Start an immediate background check of one subscription.

        Returns:
            False if a check of this subscription is already running

        Raises:
            NotFoundError: If the subscription doesn't exist
        """
        return self.scheduler.check_now(subscription_id) is not None

    def run_check(self, subscription_id: int) -> int:
        """Check one subscription on the calling thread.

        Returns:
            Number of new episodes found

        Raises:
            NotFoundError: If the subscription doesn't exist
        """
        subscription = self.db.get_subscription(subscription_id)
        return self.monitor.check_subscription(subscription)

    def fetch_feed_title(self, url: str) -> str:
        """Fetch the channel title of a feed URL without subscribing.

        Raises:
            InvalidInputError: If the URL is not http(s)
            FeedFetchError: If the feed cannot be downloaded
            FeedParseError: If the feed is malformed
        """
        if not url.startswith(("http://", "https://")):
            raise InvalidInputError(f"Feed URL must be http(s): {url}")
        return self.monitor.fetch_feed_title(url)

    # Episodes

    def list_episodes(
        self,
        subscription_id: Optional[int] = None,
        status: Optional[DownloadStatus] = None
    ) -> List[Episode]:
        """List episodes, optionally filtered by subscription and status.

        Raises:
            InvalidInputError: If the status is unknown
        """
        if status is not None:
            try:
                status = DownloadStatus(status)
            except ValueError:
                raise InvalidInputError(f"Unknown download status: {status}")
        return self.db.list_episodes(subscription_id=subscription_id, status=status)

    def get_episode(self, episode_id: int) -> Episode:
        return self.db.get_episode(episode_id)

    def episode_stats(self, subscription_id: Optional[int] = None) -> EpisodeStats:
        return self.db.get_episode_stats(subscription_id)

    def retry_episode(self, episode_id: int) -> None:
        """Reset an episode to pending and download it again.

        Raises:
            NotFoundError: If the episode or its subscription doesn't exist
            InvalidInputError: If the episode is already being downloaded
        """
        episode = self.db.get_episode(episode_id)
        subscription = self.db.get_subscription(episode.subscription_id)

        if self.downloads.is_tracked(episode_id):
            raise InvalidInputError(f"Episode {episode_id} is already queued or downloading")

        self.db.reset_episode(episode_id)
        self.db.add_to_queue(episode_id)
        self.downloads.submit(self.monitor.build_download_request(subscription, episode))
        self.logger.info(f"Retrying download of '{episode.title}'")

    def delete_episode(self, episode_id: int, delete_file: bool = False) -> None:
        """Delete an episode record and, when asked, its downloaded file.

        Raises:
            NotFoundError: If the episode doesn't exist
            StorageError: If the file exists but cannot be removed
        """
        episode = self.db.get_episode(episode_id)
        self.downloads.cancel(episode_id)

        if delete_file and episode.download_path:
            try:
                os.remove(episode.download_path)
                self.logger.info(f"Deleted episode file: {episode.download_path}")
            except FileNotFoundError:
                self.logger.debug(f"Episode file already gone: {episode.download_path}")
            except OSError as e:
                raise StorageError(f"Failed to delete {episode.download_path}: {e}") from e

        self.db.delete_episode(episode_id)
        self.logger.info(f"Deleted episode '{episode.title}'")

    def cancel_download(self, episode_id: int) -> bool:
        """Cancel the queued or active download of an episode.

        Returns:
            True if there was a download to cancel

        Raises:
            NotFoundError: If the episode doesn't exist
        """
        self.db.get_episode(episode_id)
        return self.downloads.cancel(episode_id)

    def process_pending_episodes(self) -> int:
        """Submit a download for every pending episode not already in flight.

        Episodes of disabled or missing subscriptions are skipped.

        Returns:
            Number of downloads submitted
        """
        subscriptions: Dict[int, Optional[Subscription]] = {}
        count = 0

        for episode in self.db.list_episodes(status=DownloadStatus.PENDING):
            if self.downloads.is_tracked(episode.id):
                continue

            if episode.subscription_id not in subscriptions:
                try:
                    subscriptions[episode.subscription_id] = self.db.get_subscription(
                        episode.subscription_id
                    )
                except RssMonitorError as e:
                    self.logger.error(f"Failed to get subscription for episode {episode.id}: {e}")
                    subscriptions[episode.subscription_id] = None

            subscription = subscriptions[episode.subscription_id]
            if subscription is None or not subscription.enabled:
                continue

            self.db.add_to_queue(episode.id)
            self.downloads.submit(self.monitor.build_download_request(subscription, episode))
            count += 1

        self.logger.info(f"Submitted {count} pending episode(s) for download")
        return count

    def verify_episode_file(self, episode_id: int) -> bool:
        """Check that a completed episode's file still exists.

        A completed episode whose file is gone is reset to pending.

        Returns:
            False if the episode was reset, True otherwise

        Raises:
            NotFoundError: If the episode doesn't exist
        """
        episode = self.db.get_episode(episode_id)
        if episode.download_status != DownloadStatus.COMPLETED:
            return True

        if episode.download_path and Path(episode.download_path).exists():
            return True

        self.logger.warning(f"File for '{episode.title}' is missing, marking as pending")
        self.db.reset_episode(episode_id)
        return False

    def verify_subscription_files(self, subscription_id: int) -> List[int]:
        """Verify every completed episode of a subscription.

        Returns:
            IDs of the episodes reset to pending

        Raises:
            NotFoundError: If the subscription doesn't exist
        """
        self.db.get_subscription(subscription_id)
        completed = self.db.list_episodes(
            subscription_id=subscription_id,
            status=DownloadStatus.COMPLETED
        )
        return [episode.id for episode in completed if not self.verify_episode_file(episode.id)]

    def available_media(self, episode_id: int) -> Dict[str, Optional[str]]:
        """List the media renditions the feed offers for an episode.

        Raises:
            NotFoundError: If the episode or subscription doesn't exist
            FeedFetchError: If the feed cannot be downloaded
            FeedParseError: If the feed is malformed or lacks the episode
        """
        episode = self.db.get_episode(episode_id)
        subscription = self.db.get_subscription(episode.subscription_id)
        return self.monitor.available_media(subscription, episode.guid)

    # Queue

    def queue_size(self) -> int:
        return self.db.get_queue_size()

    def list_queue(self) -> List[QueueEntry]:
        return self.db.list_queue()

    def clear_queue(self) -> int:
        """Clear the persisted queue. Downloads already submitted keep running."""
        removed = self.db.clear_queue()
        self.logger.info(f"Cleared {removed} queue entr{'y' if removed == 1 else 'ies'}")
        return removed

    # Settings

    def get_setting(self, key: str) -> Optional[str]:
        return self.db.get_setting(key)

    def list_settings(self) -> Dict[str, str]:
        return self.db.get_all_settings()

    def set_setting(self, key: str, value: str) -> None:
        """Store a runtime setting.

        ``max_concurrent_downloads`` must be an integer from 1 to 10 and
        applies from the next service start.

        Raises:
            InvalidInputError: If the key is empty or the value invalid
        """
        if not key.strip():
            raise InvalidInputError("Setting key must not be empty")

        if key == MAX_CONCURRENT_DOWNLOADS_KEY:
            try:
                parsed = int(value)
            except ValueError:
                raise InvalidInputError(f"{key} must be an integer, got '{value}'")
            if not (1 <= parsed <= 10):
                raise InvalidInputError(f"{key} must be between 1 and 10")
            value = str(parsed)

        self.db.set_setting(key, value)
        self.logger.info(f"Setting {key} = {value}")

    # Lifecycle

    def start_background(self) -> None:
        """Start the download manager and the scheduler without blocking."""
        self.running = True
        self.downloads.start()
        self.scheduler.start()

        next_run = self.scheduler.get_next_run_time()
        if next_run:
            self.logger.info(f"Next check scheduled for: {next_run}")

    def setup_signal_handlers(self) -> None:
        """Setup signal handlers for graceful shutdown."""

        def signal_handler(signum, frame):
            self.logger.info(f"Received signal {signum}, shutting down...")
            self.running = False

        signal.signal(signal.SIGINT, signal_handler)

        if is_windows():
            signal.signal(signal.SIGBREAK, signal_handler)
        else:
            signal.signal(signal.SIGTERM, signal_handler)

    def start(self) -> None:
        """Start the monitoring service and block until stopped."""
        try:
            self.setup_signal_handlers()
            self.start_background()

            self.logger.info("Service started successfully")
            self.logger.info("Press Ctrl+C to stop")

            self._keep_alive()

        except KeyboardInterrupt:
            self.logger.info("Keyboard interrupt received")
        finally:
            self.shutdown()

    def _keep_alive(self) -> None:
        """Keep the service alive.

        Windows doesn't support signal.pause(), so we use a sleep loop.
        """
        if is_windows():
            while self.running:
                time.sleep(1)
        else:
            while self.running:
                signal.pause()

    def shutdown(self) -> None:
        """Stop the scheduler, then the downloads."""
        self.running = False

        self.logger.info("Shutting down service...")
        self.scheduler.stop()
        self.downloads.stop()
        self.logger.info("Service stopped")


def main():
    """Main entry point."""
    service = RssAudioMonitorService()
    service.start()


if __name__ == "__main__":
    main()
