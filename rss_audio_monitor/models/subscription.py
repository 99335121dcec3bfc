"""Subscription data models."""

from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from ..exceptions import InvalidInputError

DEFAULT_FILENAME_FORMAT = "{show}-{episode}"
VALID_QUALITIES = ("enclosure", "original", "flac", "mp3")


@dataclass
class Subscription:
    """A configured feed source and its download/retention policy."""

    id: Optional[int] = None
    name: str = ""
    rss_url: str = ""
    output_directory: str = ""
    check_frequency_minutes: int = 60
    max_items_to_check: int = 10
    max_episodes: Optional[int] = None
    preferred_quality: str = "enclosure"
    filename_format: str = DEFAULT_FILENAME_FORMAT
    enabled: bool = True
    last_checked_at: Optional[datetime] = None
    last_success_at: Optional[datetime] = None
    last_error: Optional[str] = None
    total_episodes_found: int = 0
    total_downloads: int = 0
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


@dataclass
class SubscriptionData:
    """Create/update payload for a subscription."""

    name: str
    rss_url: str
    output_directory: str
    check_frequency_minutes: int = 60
    max_items_to_check: int = 10
    max_episodes: Optional[int] = None
    preferred_quality: str = "enclosure"
    filename_format: str = DEFAULT_FILENAME_FORMAT

    def validate(self) -> None:
        """Validate the payload.

        Raises:
            InvalidInputError: If any field is out of range
        """
        if not self.name.strip():
            raise InvalidInputError("Subscription name must not be empty")

        if not self.rss_url.startswith(("http://", "https://")):
            raise InvalidInputError(f"Feed URL must be http(s): {self.rss_url}")

        if not self.output_directory.strip():
            raise InvalidInputError("Output directory must not be empty")

        if self.check_frequency_minutes < 1:
            raise InvalidInputError("check_frequency_minutes must be >= 1")

        if self.max_items_to_check < 1:
            raise InvalidInputError("max_items_to_check must be >= 1")

        if self.max_episodes is not None and self.max_episodes < 0:
            raise InvalidInputError("max_episodes must be >= 0")

        if self.preferred_quality not in VALID_QUALITIES:
            raise InvalidInputError(
                f"preferred_quality must be one of {list(VALID_QUALITIES)}"
            )

        if not self.filename_format.strip():
            raise InvalidInputError("filename_format must not be empty")
