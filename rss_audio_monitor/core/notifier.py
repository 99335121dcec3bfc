"""Desktop notifications driven by engine events."""

import logging
import sys
from typing import Any, Optional

try:
    from plyer import notification as plyer_notification
    PLYER_AVAILABLE = True
except ImportError:
    PLYER_AVAILABLE = False

if sys.platform == 'win32':
    try:
        from winotify import Notification as WinNotification
        WINOTIFY_AVAILABLE = True
    except ImportError:
        WINOTIFY_AVAILABLE = False
else:
    WINOTIFY_AVAILABLE = False

from ..config.database import DatabaseHandler
from ..config.settings import NotificationConfig
from ..exceptions import RssMonitorError
from ..models.events import (
    DOWNLOAD_COMPLETED,
    DOWNLOAD_FAILED,
    SUBSCRIPTION_CHECKED,
    DownloadCompletedPayload,
    DownloadFailedPayload,
    SubscriptionCheckedPayload,
)
from .events import EventBus


class Notifier:
    """Cross-platform desktop notification handler.

    Subscribed to the event bus, it announces newly discovered episodes,
    finished downloads and (optionally) failures.
    """

    def __init__(
        self,
        logger: logging.Logger,
        config: Optional[NotificationConfig] = None,
        db: Optional[DatabaseHandler] = None,
        app_name: str = "RSS Audio Monitor"
    ):
        """Initialize notifier.

        Args:
            logger: Logger instance
            config: Which notifications to send
            db: Database handler used to resolve names for messages
            app_name: Application name for notifications
        """
        self.logger = logger
        self.config = config or NotificationConfig()
        self.db = db
        self.app_name = app_name
        self.enabled = self.config.enabled

        self.backend = self._detect_backend()

        if not self.backend and self.enabled:
            self.logger.warning("No notification backend available, notifications disabled")
            self.enabled = False

    def _detect_backend(self) -> Optional[str]:
        if sys.platform == 'win32' and WINOTIFY_AVAILABLE:
            return 'winotify'
        if PLYER_AVAILABLE:
            return 'plyer'
        return None

    def attach(self, events: EventBus) -> None:
        """Listen for the events that produce notifications."""
        events.subscribe(self.handle_event, SUBSCRIPTION_CHECKED)
        events.subscribe(self.handle_event, DOWNLOAD_COMPLETED)
        events.subscribe(self.handle_event, DOWNLOAD_FAILED)

    def handle_event(self, topic: str, payload: Any) -> None:
        """Turn one engine event into a notification when configured to."""
        if not self.enabled:
            return

        if topic == SUBSCRIPTION_CHECKED and self.config.on_new_episodes:
            self._on_checked(payload)
        elif topic == DOWNLOAD_COMPLETED and self.config.on_download_complete:
            self._on_completed(payload)
        elif topic == DOWNLOAD_FAILED and self.config.on_error:
            self._on_failed(payload)

    def _on_checked(self, payload: SubscriptionCheckedPayload) -> None:
        if payload.error is not None:
            if self.config.on_error:
                self.notify_error(f"Feed check failed: {payload.error}")
            return

        if payload.new_episodes_count > 0:
            self.notify_new_episodes(
                payload.new_episodes_count,
                self._subscription_name(payload.subscription_id)
            )

    def _on_completed(self, payload: DownloadCompletedPayload) -> None:
        self.notify_download_complete(self._episode_title(payload.episode_id))

    def _on_failed(self, payload: DownloadFailedPayload) -> None:
        title = self._episode_title(payload.episode_id)
        self.notify_error(f"'{title}' failed: {payload.error}")

    def _subscription_name(self, subscription_id: int) -> str:
        if self.db is not None:
            try:
                return self.db.get_subscription(subscription_id).name
            except RssMonitorError:
                pass
        return f"subscription {subscription_id}"

    def _episode_title(self, episode_id: int) -> str:
        if self.db is not None:
            try:
                return self.db.get_episode(episode_id).title
            except RssMonitorError:
                pass
        return f"episode {episode_id}"

    def send(self, title: str, message: str, duration: int = 5) -> bool:
        """Send a desktop notification.

        Args:
            title: Notification title
            message: Notification message
            duration: Duration in seconds (ignored on some platforms)

        Returns:
            True if notification sent successfully, False otherwise
        """
        if not self.enabled:
            return False

        try:
            if self.backend == 'winotify':
                WinNotification(
                    app_id=self.app_name,
                    title=title,
                    msg=message,
                    duration="short"
                ).show()
            elif self.backend == 'plyer':
                plyer_notification.notify(
                    title=title,
                    message=message,
                    app_name=self.app_name,
                    timeout=duration
                )
            else:
                return False
        except Exception as e:
            self.logger.error(f"Failed to send notification via {self.backend}: {e}")
            return False

        self.logger.debug(f"Notification sent: {title}")
        return True

    def notify_new_episodes(self, count: int, subscription_name: str) -> bool:
        return self.send(
            title="New Episodes",
            message=f"Found {count} new episode(s) in '{subscription_name}'"
        )

    def notify_download_complete(self, episode_title: str) -> bool:
        return self.send(
            title="Download Complete",
            message=f"Downloaded '{episode_title}'"
        )

    def notify_error(self, error_message: str) -> bool:
        return self.send(
            title="Monitor Error",
            message=error_message
        )
