"""Download status and download work models."""

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Optional


class DownloadStatus(str, Enum):
    """Download status enumeration."""

    PENDING = "pending"
    DOWNLOADING = "downloading"
    COMPLETED = "completed"
    FAILED = "failed"
    PAUSED = "paused"


@dataclass(frozen=True)
class DownloadRequest:
    """A single unit of download work.

    Not persisted: produced by discovery or retry, consumed once by the
    download manager.
    """

    episode_id: int
    subscription_id: int
    url: str
    output_path: Path


@dataclass
class QueueEntry:
    """Persisted mirror of a pending download."""

    id: Optional[int] = None
    episode_id: int = 0
    priority: int = 0
    added_at: Optional[datetime] = None
