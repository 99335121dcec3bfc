"""RSS Audio Monitor: follows podcast feeds and downloads new episodes."""

__version__ = "0.1.0"
