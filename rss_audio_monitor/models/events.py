"""Event topics and payloads published by the engine."""

from dataclasses import dataclass
from typing import Optional

from .episode import Episode

EPISODE_DISCOVERED = "episode-discovered"
DOWNLOAD_STARTED = "download-started"
DOWNLOAD_PROGRESS = "download-progress"
DOWNLOAD_COMPLETED = "download-completed"
DOWNLOAD_FAILED = "download-failed"
SUBSCRIPTION_CHECKED = "subscription-checked"


@dataclass
class EpisodeDiscoveredPayload:
    subscription_id: int
    episode: Episode


@dataclass
class DownloadStartedPayload:
    episode_id: int
    subscription_id: int


@dataclass
class DownloadProgressPayload:
    episode_id: int
    downloaded: int
    total: Optional[int]
    progress: int
    speed: Optional[float]


@dataclass
class DownloadCompletedPayload:
    episode_id: int
    subscription_id: int
    file_path: str


@dataclass
class DownloadFailedPayload:
    episode_id: int
    subscription_id: int
    error: str


@dataclass
class SubscriptionCheckedPayload:
    subscription_id: int
    new_episodes_count: int
    error: Optional[str] = None
