"""Core functionality for RSS Audio Monitor."""

from .downloader import DownloadManager
from .events import EventBus
from .monitor import FeedMonitor
from .notifier import Notifier
from .retention import RetentionPolicy
from .scheduler import FeedScheduler

__all__ = [
    "DownloadManager",
    "EventBus",
    "FeedMonitor",
    "Notifier",
    "RetentionPolicy",
    "FeedScheduler",
]
