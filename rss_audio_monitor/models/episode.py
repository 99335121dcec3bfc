"""Episode data models."""

from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from .download import DownloadStatus


@dataclass
class Episode:
    """One discovered media item and its download lifecycle."""

    id: Optional[int] = None
    subscription_id: int = 0
    guid: str = ""
    title: str = ""
    description: Optional[str] = None
    pub_date: Optional[datetime] = None
    audio_url: str = ""
    audio_type: Optional[str] = None
    audio_size_bytes: Optional[int] = None
    duration_seconds: Optional[int] = None
    image_url: Optional[str] = None
    author: Optional[str] = None
    download_status: DownloadStatus = DownloadStatus.PENDING
    download_progress: int = 0
    download_path: Optional[str] = None
    download_error: Optional[str] = None
    download_attempts: int = 0
    download_started_at: Optional[datetime] = None
    download_completed_at: Optional[datetime] = None
    discovered_at: Optional[datetime] = None

    def __post_init__(self):
        """Convert status to enum if it's a string."""
        if isinstance(self.download_status, str):
            self.download_status = DownloadStatus(self.download_status)


@dataclass
class EpisodeStats:
    """Aggregate episode counts by download status."""

    total: int = 0
    pending: int = 0
    downloading: int = 0
    completed: int = 0
    failed: int = 0
    paused: int = 0
