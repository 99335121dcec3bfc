"""Platform-specific utilities for cross-platform compatibility."""

import os
import sys
from pathlib import Path

APP_DIR_NAME = 'rss-audio-monitor'


def is_windows() -> bool:
    """Check if running on Windows."""
    return sys.platform == 'win32' or os.name == 'nt'


def is_macos() -> bool:
    """Check if running on macOS."""
    return sys.platform == 'darwin'


def get_config_dir() -> Path:
    """Get the configuration directory based on the platform.

    Returns:
        Path: Configuration directory path
            - Windows: %APPDATA%/rss-audio-monitor
            - macOS: ~/Library/Application Support/rss-audio-monitor
            - Linux: ~/.config/rss-audio-monitor
    """
    if is_windows():
        base = Path(os.environ.get('APPDATA', Path.home()))
    elif is_macos():
        base = Path.home() / 'Library' / 'Application Support'
    else:
        base = Path(os.environ.get('XDG_CONFIG_HOME', Path.home() / '.config'))

    config_dir = base / APP_DIR_NAME
    config_dir.mkdir(parents=True, exist_ok=True)
    return config_dir


def get_default_download_dir() -> Path:
    """Get the default download directory.

    Returns:
        Path: ~/Music/Podcasts, or ~/Downloads/Podcasts if ~/Music doesn't exist
    """
    music_dir = Path.home() / 'Music'

    if music_dir.exists():
        return music_dir / 'Podcasts'
    return Path.home() / 'Downloads' / 'Podcasts'
