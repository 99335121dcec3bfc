"""Output file naming for downloaded episodes."""

import re
import threading
from datetime import datetime
from pathlib import Path
from typing import Optional, Set
from urllib.parse import urlparse

DEFAULT_EXTENSION = "mp3"
UNKNOWN_DATE = "unknown-date"
MAX_NAME_LENGTH = 200

INVALID_CHARS = re.compile(r'[/\\:*?"<>|]')

MIME_EXTENSIONS = {
    "audio/mpeg": "mp3",
    "audio/mp3": "mp3",
    "audio/mp4": "m4a",
    "audio/x-m4a": "m4a",
    "audio/m4a": "m4a",
    "audio/ogg": "ogg",
    "audio/wav": "wav",
    "audio/x-wav": "wav",
    "audio/flac": "flac",
    "audio/x-flac": "flac",
    "audio/aac": "aac",
}

# Paths handed out with reserve=True that may not exist on disk yet
_reserved_paths: Set[Path] = set()
_reserve_lock = threading.Lock()


def sanitize_filename(name: str) -> str:
    """Make a string safe to use as a single path component.

    Filesystem-illegal characters become underscores, whitespace runs
    collapse to one space, and the result is truncated to 200 characters.

    Args:
        name: Raw name (show or episode title)

    Returns:
        Sanitized name
    """
    sanitized = INVALID_CHARS.sub("_", name)
    sanitized = " ".join(sanitized.split())
    return sanitized[:MAX_NAME_LENGTH]


def apply_filename_format(
    filename_format: str,
    show_name: str,
    episode_title: str,
    pub_date: Optional[datetime]
) -> str:
    """Substitute {show}, {episode} and {date} into a filename template.

    Args:
        filename_format: Template, e.g. "{date}_{episode}"
        show_name: Subscription name
        episode_title: Episode title
        pub_date: Publication date, or None when unknown

    Returns:
        Filename without extension
    """
    date_str = pub_date.strftime("%Y-%m-%d") if pub_date else UNKNOWN_DATE

    return (
        filename_format
        .replace("{show}", sanitize_filename(show_name))
        .replace("{episode}", sanitize_filename(episode_title))
        .replace("{date}", date_str)
    )


def extension_from_mime(mime_type: Optional[str]) -> Optional[str]:
    """Map a MIME type to a file extension, or None if the type is unknown."""
    if not mime_type:
        return None
    return MIME_EXTENSIONS.get(mime_type.split(";")[0].strip().lower())


def extract_extension(url: str) -> Optional[str]:
    """Extract a short alphanumeric extension from a URL's last path segment.

    Query strings and fragments are ignored.

    Returns:
        Lowercase extension, or None if the segment has none
    """
    segment = urlparse(url).path.rsplit("/", 1)[-1]
    if "." not in segment:
        return None

    ext = segment.rsplit(".", 1)[-1]
    if 0 < len(ext) <= 5 and ext.isalnum():
        return ext.lower()
    return None


def resolve_extension(mime_type: Optional[str], url: Optional[str]) -> str:
    """Resolve the extension for an enclosure: MIME table, then URL, then mp3."""
    ext = extension_from_mime(mime_type)
    if ext:
        return ext

    if url:
        ext = extract_extension(url)
        if ext:
            return ext

    return DEFAULT_EXTENSION


def _is_taken(path: Path) -> bool:
    return path.exists() or path in _reserved_paths


def _next_free_path(path: Path) -> Path:
    if not _is_taken(path):
        return path

    counter = 2
    while True:
        candidate = path.with_name(f"{path.stem}_{counter}{path.suffix}")
        if not _is_taken(candidate):
            return candidate
        counter += 1


def build_output_path(
    base_directory: str,
    show_name: str,
    episode_title: str,
    pub_date: Optional[datetime],
    extension: str,
    filename_format: str = "{show}-{episode}",
    reserve: bool = False
) -> Path:
    """Build a collision-free output path for an episode.

    The file lives under ``<base_directory>/<sanitized show>/``. If the
    rendered name is taken, ``_2``, ``_3``, ... is appended before the
    extension.

    Args:
        base_directory: Subscription output directory
        show_name: Subscription name
        episode_title: Episode title
        pub_date: Publication date (None renders as "unknown-date")
        extension: File extension without the dot
        filename_format: Template using {show}, {episode}, {date}
        reserve: Hold the returned path until release_path() is called, so
            concurrent callers in this process never receive the same path

    Returns:
        Destination path
    """
    base_name = apply_filename_format(filename_format, show_name, episode_title, pub_date)
    directory = Path(base_directory).expanduser() / sanitize_filename(show_name)
    path = directory / f"{base_name}.{extension}"

    with _reserve_lock:
        path = _next_free_path(path)
        if reserve:
            _reserved_paths.add(path)

    return path


def release_path(path: Path) -> None:
    """Release a path reserved by build_output_path()."""
    with _reserve_lock:
        _reserved_paths.discard(Path(path))
