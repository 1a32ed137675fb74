import time
import random
import logging
import threading
from typing import Dict, Optional

import requests

logger = logging.getLogger('scraper.fetcher')

DEFAULT_TIMEOUT = 8.0
CHUNK_SIZE = 16 * 1024
POLL_INTERVAL = 0.05

USER_AGENTS = [
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36",
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/119.0.0.0 Safari/537.36",
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/605.1.15 (KHTML, like Gecko) Version/16.5 Safari/605.1.15",
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36",
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64; rv:120.0) Gecko/20100101 Firefox/120.0",
]

DEFAULT_HEADERS = {
    "Accept": "text/html,application/xhtml+xml,application/xml;q=0.9,image/avif,image/webp,image/apng,*/*;q=0.8",
    "Accept-Language": "en-US,en;q=0.9",
    "Accept-Encoding": "gzip, deflate",
    "Connection": "keep-alive",
    "Upgrade-Insecure-Requests": "1",
}


class FetchError(Exception):
    """Base class for page fetch failures."""


class FetchTimeout(FetchError):
    pass


class FetchNetworkError(FetchError):
    pass


class FetchHTTPStatusError(FetchError):

    def __init__(self, status_code: int, url: str):
        super().__init__(f"HTTP {status_code} for {url}")
        self.status_code = status_code
        self.url = url


def build_headers(extra: Optional[Dict[str, str]] = None) -> Dict[str, str]:
    headers = dict(DEFAULT_HEADERS)
    headers["User-Agent"] = random.choice(USER_AGENTS)
    if extra:
        headers.update(extra)
    return headers


class _Transfer:
    """One GET running on its own thread so the caller can walk away from it.

    urllib3 only applies the socket timeout per read, and a server that drips
    bytes never trips it, so the whole-transfer deadline is enforced by the
    caller waiting on ``done``.
    """

    def __init__(self, http: requests.Session, url: str, timeout: float,
                 headers: Dict[str, str], close_session: bool):
        self.http = http
        self.url = url
        self.timeout = timeout
        self.headers = headers
        self.close_session = close_session
        self.done = threading.Event()
        self.aborted = threading.Event()
        self.body: Optional[str] = None
        self.error: Optional[BaseException] = None
        self._lock = threading.Lock()
        self._response = None

    def run(self):
        try:
            self.body = self._download()
        except Exception as e:
            self.error = e
        finally:
            if self.close_session:
                self.http.close()
            self.done.set()

    def abort(self):
        """Stop reading and drop the connection; the worker exits at its next read."""
        self.aborted.set()
        with self._lock:
            response = self._response
        if response is not None:
            try:
                response.close()
            except Exception as e:
                logger.debug(f"Error closing abandoned response for {self.url}: {e}")

    def _download(self) -> str:
        try:
            response = self.http.get(
                self.url,
                headers=self.headers,
                timeout=(self.timeout, self.timeout),
                allow_redirects=True,
                stream=True
            )
        except requests.Timeout as e:
            raise FetchTimeout(f"Timed out connecting to {self.url}") from e
        except requests.RequestException as e:
            raise FetchNetworkError(f"Failed to fetch {self.url}: {e}") from e

        with self._lock:
            self._response = response
        try:
            if self.aborted.is_set():
                raise FetchTimeout(f"Fetch of {self.url} was abandoned")
            if not 200 <= response.status_code < 300:
                raise FetchHTTPStatusError(response.status_code, self.url)

            chunks = []
            for chunk in response.iter_content(chunk_size=CHUNK_SIZE):
                if self.aborted.is_set():
                    raise FetchTimeout(f"Fetch of {self.url} was abandoned")
                if chunk:
                    chunks.append(chunk)
        except requests.Timeout as e:
            raise FetchTimeout(f"Timed out reading {self.url}") from e
        except requests.RequestException as e:
            raise FetchNetworkError(f"Failed to read {self.url}: {e}") from e
        finally:
            response.close()

        body = b"".join(chunks)
        # requests assumes ISO-8859-1 for text/* without a charset
        content_type = response.headers.get("Content-Type", "")
        encoding = response.encoding if "charset" in content_type.lower() and response.encoding else "utf-8"
        try:
            return body.decode(encoding, errors="replace")
        except LookupError:
            return body.decode("utf-8", errors="replace")


def fetch_page(
    url: str,
    timeout: float = DEFAULT_TIMEOUT,
    session: Optional[requests.Session] = None,
    cancel_event: Optional[threading.Event] = None,
    headers: Optional[Dict[str, str]] = None,
) -> str:
    """Fetch the markup of ``url`` within ``timeout`` seconds.

    The deadline covers the whole transfer, not just individual socket reads:
    the request runs on a worker thread and this call gives up on it once the
    deadline passes, however slowly the server is still sending. Setting
    ``cancel_event`` gives up the same way.
    """
    deadline = time.monotonic() + timeout
    if cancel_event is not None and cancel_event.is_set():
        raise FetchTimeout(f"Fetch of {url} was cancelled")

    own_session = session is None
    http = requests.Session() if own_session else session
    transfer = _Transfer(http, url, timeout, build_headers(headers), close_session=own_session)

    logger.info(f"Fetching {url}")
    worker = threading.Thread(target=transfer.run, name="fetch", daemon=True)
    worker.start()

    while not transfer.done.wait(POLL_INTERVAL):
        if cancel_event is not None and cancel_event.is_set():
            transfer.abort()
            raise FetchTimeout(f"Fetch of {url} was cancelled")
        if time.monotonic() > deadline:
            transfer.abort()
            raise FetchTimeout(f"Fetch of {url} exceeded {timeout:.1f}s deadline")

    if transfer.error is not None:
        raise transfer.error
    return transfer.body


class Fetcher:
    """Fetches pages with a shared session and a configured deadline."""

    def __init__(self, timeout: float = DEFAULT_TIMEOUT, session: Optional[requests.Session] = None):
        self.timeout = timeout
        self.session = session or requests.Session()

    def fetch(self, url: str, cancel_event: Optional[threading.Event] = None) -> str:
        return fetch_page(url, timeout=self.timeout, session=self.session, cancel_event=cancel_event)

    def close(self):
        self.session.close()
