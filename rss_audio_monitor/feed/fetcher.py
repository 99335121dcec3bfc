"""HTTP access for feeds and episode downloads."""

import logging
import threading
from dataclasses import dataclass
from typing import Iterator, Optional

import requests
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

from ..exceptions import DownloadError, FeedFetchError

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 30
DEFAULT_USER_AGENT = "rss-audio-monitor/0.1"
DOWNLOAD_CHUNK_SIZE = 1024 * 64
HTTP_RETRY_STATUS_CODES = (429, 500, 502, 503, 504)
HTTP_RETRY_ALLOWED_METHODS = frozenset({"GET", "HEAD"})


@dataclass
class DownloadStream:
    """An open streaming response."""

    status_code: int
    content_length: Optional[int]
    response: requests.Response
    chunk_size: int = DOWNLOAD_CHUNK_SIZE

    def iter_chunks(self) -> Iterator[bytes]:
        """Yield non-empty body chunks.

        Raises:
            DownloadError: If the connection fails mid-body
        """
        try:
            for chunk in self.response.iter_content(chunk_size=self.chunk_size):
                if chunk:
                    yield chunk
        except requests.RequestException as e:
            raise DownloadError(f"Connection lost while downloading: {e}") from e

    def close(self) -> None:
        self.response.close()

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()


def with_limit(url: str, limit: Optional[int]) -> str:
    """Append a ``limit`` query parameter when a preview is enough."""
    if limit is None:
        return url
    separator = "&" if "?" in url else "?"
    return f"{url}{separator}limit={limit}"


class FeedFetcher:
    """Retry-enabled HTTP client shared by feed checks and downloads.

    One ``requests.Session`` is kept per thread since sessions are not
    guaranteed thread-safe.
    """

    def __init__(
        self,
        timeout: int = DEFAULT_TIMEOUT,
        user_agent: str = DEFAULT_USER_AGENT,
        max_retries: int = 3,
        chunk_size: int = DOWNLOAD_CHUNK_SIZE
    ):
        """Initialize fetcher.

        Args:
            timeout: Connect/read timeout per request in seconds
            user_agent: User-Agent header value
            max_retries: Retries for connection errors and 429/5xx responses
            chunk_size: Streaming chunk size in bytes
        """
        self.timeout = timeout
        self.user_agent = user_agent
        self.max_retries = max_retries
        self.chunk_size = chunk_size
        self._local = threading.local()

    def _session(self) -> requests.Session:
        session = getattr(self._local, "session", None)
        if session is None:
            session = requests.Session()
            retry = Retry(
                total=self.max_retries,
                backoff_factor=0.5,
                status_forcelist=HTTP_RETRY_STATUS_CODES,
                allowed_methods=HTTP_RETRY_ALLOWED_METHODS,
                raise_on_status=False,
            )
            adapter = HTTPAdapter(max_retries=retry)
            session.mount("http://", adapter)
            session.mount("https://", adapter)
            session.headers["User-Agent"] = self.user_agent
            self._local.session = session
        return session

    def fetch(self, url: str, limit: Optional[int] = None) -> bytes:
        """Fetch a feed document.

        Args:
            url: Feed URL
            limit: Optional item count hint appended as ``limit=<n>``

        Returns:
            Raw response body; the XML declaration decides its encoding

        Raises:
            FeedFetchError: On transport failure or a non-2xx status
        """
        final_url = with_limit(url, limit)
        logger.info(f"Fetching RSS feed from: {final_url}")

        try:
            response = self._session().get(final_url, timeout=self.timeout)
        except requests.RequestException as e:
            raise FeedFetchError(f"Failed to fetch RSS feed: {e}") from e

        if not 200 <= response.status_code < 300:
            raise FeedFetchError(
                f"HTTP error {response.status_code}: Failed to fetch RSS feed"
            )

        logger.debug(f"Fetched {len(response.content)} bytes from RSS feed")
        return response.content

    def stream(self, url: str) -> DownloadStream:
        """Open a streaming GET for an episode file.

        Raises:
            DownloadError: On transport failure or a non-2xx status
        """
        try:
            response = self._session().get(url, timeout=self.timeout, stream=True)
        except requests.RequestException as e:
            raise DownloadError(f"Failed to download file: {e}") from e

        if not 200 <= response.status_code < 300:
            response.close()
            raise DownloadError(
                f"HTTP error {response.status_code}: Failed to download file"
            )

        length = response.headers.get("Content-Length")
        try:
            content_length = int(length) if length else None
        except ValueError:
            content_length = None

        return DownloadStream(
            status_code=response.status_code,
            content_length=content_length,
            response=response,
            chunk_size=self.chunk_size,
        )
