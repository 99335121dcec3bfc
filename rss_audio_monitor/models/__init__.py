"""Data models for RSS Audio Monitor."""

from .download import DownloadRequest, DownloadStatus, QueueEntry
from .episode import Episode, EpisodeStats
from .subscription import Subscription, SubscriptionData

__all__ = [
    "DownloadRequest",
    "DownloadStatus",
    "Episode",
    "EpisodeStats",
    "QueueEntry",
    "Subscription",
    "SubscriptionData",
]
