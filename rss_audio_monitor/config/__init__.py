"""Configuration module for RSS Audio Monitor."""

from .database import DatabaseHandler
from .settings import Settings

__all__ = ["DatabaseHandler", "Settings"]
