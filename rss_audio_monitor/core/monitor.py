"""Feed monitoring and new episode discovery."""

import logging
from typing import Callable, Dict, List, Optional

from ..config.database import DatabaseHandler, utc_now
from ..exceptions import RssMonitorError
from ..feed.fetcher import FeedFetcher
from ..feed.media import QualityRule
from ..feed.parser import ParsedItem, find_item_media, parse_feed
from ..models.download import DownloadRequest
from ..models.episode import Episode
from ..models.events import (
    EPISODE_DISCOVERED,
    SUBSCRIPTION_CHECKED,
    EpisodeDiscoveredPayload,
    SubscriptionCheckedPayload,
)
from ..models.subscription import Subscription
from ..utils.file_naming import build_output_path, resolve_extension
from .events import EventBus

Submit = Callable[[DownloadRequest], None]


def order_newest_first(items: List[ParsedItem]) -> List[ParsedItem]:
    """Sort items by publication date descending.

    Undated items go after every dated one and keep their feed order.
    """
    dated = [item for item in items if item.pub_date is not None]
    undated = [item for item in items if item.pub_date is None]
    dated.sort(key=lambda item: item.pub_date, reverse=True)
    return dated + undated


class FeedMonitor:
    """Checks subscription feeds and hands new episodes to the downloader."""

    def __init__(
        self,
        db: DatabaseHandler,
        fetcher: FeedFetcher,
        events: EventBus,
        submit: Submit,
        logger: logging.Logger,
        quality_rules: Optional[Dict[str, QualityRule]] = None
    ):
        """Initialize feed monitor.

        Args:
            db: Database handler
            fetcher: HTTP client for feeds
            events: Event bus for discovery events
            submit: Callable accepting DownloadRequests (the download intake)
            logger: Logger instance
            quality_rules: Media quality keyword rules (default: built-in)
        """
        self.db = db
        self.fetcher = fetcher
        self.events = events
        self.submit = submit
        self.logger = logger
        self.quality_rules = quality_rules

    def fetch_new_items(self, subscription: Subscription) -> List[ParsedItem]:
        """Fetch a feed and keep the items not seen before.

        Only the first ``max_items_to_check`` items in feed order are looked at.

        Raises:
            FeedFetchError: If the feed cannot be downloaded
            FeedParseError: If the feed is malformed
        """
        xml = self.fetcher.fetch(subscription.rss_url)
        feed = parse_feed(xml, subscription.preferred_quality, self.quality_rules)
        candidates = feed.items[:subscription.max_items_to_check]

        self.logger.debug(
            f"Fetched {len(feed.items)} item(s) from {subscription.name}, "
            f"checking {len(candidates)}"
        )

        return [
            item for item in candidates
            if not self.db.episode_exists(subscription.id, item.guid)
        ]

    def select_items(self, subscription: Subscription, new_items: List[ParsedItem]) -> List[ParsedItem]:
        """Apply the retention cap and ordering to unseen items.

        Returns:
            Items to record, newest first
        """
        capacity = None
        if subscription.max_episodes:
            capacity = subscription.max_episodes - self.db.count_all_episodes(subscription.id)
            if capacity <= 0:
                self.logger.info(
                    f"Subscription {subscription.name} is at its limit of "
                    f"{subscription.max_episodes} episode(s), skipping {len(new_items)} new item(s)"
                )
                return []

        ordered = order_newest_first(new_items)
        return ordered if capacity is None else ordered[:capacity]

    def build_download_request(
        self,
        subscription: Subscription,
        episode: Episode,
        reserve: bool = True
    ) -> DownloadRequest:
        """Compute the destination of an episode and wrap it as download work."""
        output_path = build_output_path(
            subscription.output_directory,
            subscription.name,
            episode.title,
            episode.pub_date,
            resolve_extension(episode.audio_type, episode.audio_url),
            subscription.filename_format,
            reserve=reserve
        )
        return DownloadRequest(
            episode_id=episode.id,
            subscription_id=subscription.id,
            url=episode.audio_url,
            output_path=output_path
        )

    def record_item(self, subscription: Subscription, item: ParsedItem) -> Optional[Episode]:
        """Persist one new item, queue it and submit its download.

        Returns:
            The stored Episode, or None if it could not be stored
        """
        try:
            episode = self.db.insert_episode(Episode(
                subscription_id=subscription.id,
                guid=item.guid,
                title=item.title,
                description=item.description,
                pub_date=item.pub_date,
                audio_url=item.enclosure.url,
                audio_type=item.enclosure.mime_type,
                audio_size_bytes=item.enclosure.length,
                duration_seconds=item.duration,
                image_url=item.image_url,
                author=item.author,
                discovered_at=utc_now()
            ))
        except RssMonitorError as e:
            self.logger.error(f"Failed to store episode '{item.title}': {e}")
            return None

        self.logger.info(f"New episode: {episode.title}")
        self.events.emit(
            EPISODE_DISCOVERED,
            EpisodeDiscoveredPayload(subscription_id=subscription.id, episode=episode)
        )

        request = self.build_download_request(subscription, episode)

        try:
            self.db.add_to_queue(episode.id)
        except RssMonitorError as e:
            self.logger.warning(f"Failed to add episode {episode.id} to queue: {e}")

        self.submit(request)
        return episode

    def check_subscription(self, subscription: Subscription) -> int:
        """Check a subscription feed for new episodes.

        This is the main method that orchestrates discovery:
        1. Fetch and parse the feed
        2. Drop items already known for this subscription
        3. Apply the retention cap, newest first
        4. Skip items without an enclosure; they still count against the cap
        5. Store, queue and submit each remaining item

        Feed errors are recorded on the subscription and never raised.

        Args:
            subscription: Subscription to check

        Returns:
            Number of new episodes recorded
        """
        self.logger.info(f"Checking subscription {subscription.name} for new episodes...")

        try:
            new_items = self.fetch_new_items(subscription)
            selected = self.select_items(subscription, new_items)
        except RssMonitorError as e:
            self.logger.error(f"Failed to check subscription {subscription.name}: {e}")
            self._record_check(subscription.id, 0, str(e))
            return 0

        new_count = 0
        for item in selected:
            if item.enclosure is None:
                self.logger.warning(f"Skipping '{item.title}': no usable enclosure")
                continue

            if self.record_item(subscription, item) is not None:
                new_count += 1

        if new_count:
            self.logger.info(f"Found {new_count} new episode(s) in {subscription.name}")
        else:
            self.logger.debug(f"No new episodes found in {subscription.name}")

        self._record_check(subscription.id, new_count, None)
        return new_count

    def _record_check(self, subscription_id: int, new_count: int, error: Optional[str]) -> None:
        try:
            self.db.update_subscription_checked(subscription_id, new_count, error)
        except RssMonitorError as e:
            self.logger.error(f"Failed to update check state of subscription {subscription_id}: {e}")

        self.events.emit(
            SUBSCRIPTION_CHECKED,
            SubscriptionCheckedPayload(
                subscription_id=subscription_id,
                new_episodes_count=new_count,
                error=error
            )
        )

    def fetch_feed_title(self, url: str) -> str:
        """Fetch only the channel title of a candidate feed.

        Raises:
            FeedFetchError: If the feed cannot be downloaded
            FeedParseError: If the feed is malformed
        """
        xml = self.fetcher.fetch(url, limit=1)
        return parse_feed(xml).title

    def available_media(self, subscription: Subscription, guid: str) -> Dict[str, Optional[str]]:
        """Look up every media rendition the feed offers for one episode.

        Raises:
            FeedFetchError: If the feed cannot be downloaded
            FeedParseError: If the feed is malformed or lacks the episode
        """
        xml = self.fetcher.fetch(subscription.rss_url)
        return find_item_media(xml, guid)
