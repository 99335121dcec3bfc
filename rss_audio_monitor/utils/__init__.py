"""Utility modules for RSS Audio Monitor."""

from .file_naming import build_output_path, release_path, resolve_extension, sanitize_filename
from .logger import setup_logger
from .platform import get_config_dir, get_default_download_dir, is_windows

__all__ = [
    "build_output_path",
    "get_config_dir",
    "get_default_download_dir",
    "is_windows",
    "release_path",
    "resolve_extension",
    "sanitize_filename",
    "setup_logger",
]
