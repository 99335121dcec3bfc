"""Pruning of completed episodes beyond a subscription's retention cap."""

import logging
import os

from ..config.database import DatabaseHandler
from ..exceptions import RssMonitorError


class RetentionPolicy:
    """Keeps at most ``max_episodes`` completed episodes per subscription.

    Cleanup is best-effort: file and storage errors are logged, never raised.
    A crash mid-cleanup can leave a subscription temporarily over its cap.
    """

    def __init__(self, db: DatabaseHandler, logger: logging.Logger):
        self.db = db
        self.logger = logger

    def apply(self, subscription_id: int) -> int:
        """Delete the oldest completed episodes beyond the cap.

        Args:
            subscription_id: Subscription to tidy up

        Returns:
            Number of episodes removed
        """
        try:
            subscription = self.db.get_subscription(subscription_id)
            cap = subscription.max_episodes
            if not cap or cap <= 0:
                return 0

            to_remove = self.db.get_oldest_completed_beyond_cap(subscription_id, cap)
        except RssMonitorError as e:
            self.logger.error(f"Retention check failed for subscription {subscription_id}: {e}")
            return 0

        removed = 0
        for episode in to_remove:
            if episode.download_path:
                try:
                    os.remove(episode.download_path)
                    self.logger.info(f"Deleted old episode file: {episode.download_path}")
                except FileNotFoundError:
                    self.logger.debug(f"Old episode file already gone: {episode.download_path}")
                except OSError as e:
                    self.logger.warning(
                        f"Failed to delete old episode file {episode.download_path}: {e}"
                    )

            try:
                self.db.delete_episode(episode.id)
                removed += 1
            except RssMonitorError as e:
                self.logger.error(f"Failed to delete old episode {episode.id}: {e}")

        if removed:
            self.logger.info(
                f"Cleaned up {removed} old episode(s) for subscription {subscription_id}"
            )

        return removed
