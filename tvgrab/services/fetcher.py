"""
HTTP Fetcher

Fetches listing and detail pages with retry logic and an optional on-disk cache.
Each process owns its own Fetcher; clients are never shared between workers.
"""
import hashlib
import logging
import time
from pathlib import Path

import httpx


logger = logging.getLogger(__name__)

USER_AGENT = "tvgrab/0.1 (+https://xmltv.org)"


class FetchError(RuntimeError):
    """Raised when a page cannot be fetched"""

    def __init__(self, url: str, message: str):
        super().__init__(f"{url}: {message}")
        self.url = url


class Fetcher:
    """
    Synchronous page fetcher

    Retries on transient network errors (timeouts, connection errors, 5xx).
    Does NOT retry on 4xx HTTP errors (client errors).
    """

    def __init__(
        self,
        timeout: float = 30.0,
        max_retries: int = 3,
        backoff_factor: float = 2.0,
        cache_dir: str | Path | None = None,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        self.timeout = timeout
        self.max_retries = max_retries
        self.backoff_factor = backoff_factor
        self.cache_dir = Path(cache_dir) if cache_dir else None
        self._transport = transport
        self._client: httpx.Client | None = None

    @classmethod
    def from_settings(cls, settings) -> "Fetcher":
        return cls(
            timeout=settings.request_timeout_sec,
            max_retries=settings.max_retries,
            backoff_factor=settings.backoff_factor,
            cache_dir=settings.cache_dir,
        )

    @property
    def client(self) -> httpx.Client:
        if self._client is None:
            self._client = httpx.Client(
                timeout=self.timeout,
                transport=self._transport,
                follow_redirects=True,
                headers={"User-Agent": USER_AGENT},
            )
        return self._client

    def close(self) -> None:
        if self._client is not None:
            self._client.close()
            self._client = None

    def __enter__(self) -> "Fetcher":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()

    def get(self, url: str) -> str:
        """
        Fetch a page with GET, serving it from the cache when present

        Raises:
            FetchError: If the page cannot be fetched after all retries
        """
        cached = self._read_cache(url)
        if cached is not None:
            logger.debug(f"Cache hit for {url}")
            return cached

        text = self._request("GET", url)
        self._write_cache(url, text)
        return text

    def post(self, url: str, form_fields: dict[str, str]) -> str:
        """
        Submit a form with POST (never cached)

        Raises:
            FetchError: If the page cannot be fetched after all retries
        """
        return self._request("POST", url, data=form_fields)

    def _request(self, method: str, url: str, **kwargs) -> str:
        last_error: Exception | None = None

        for attempt in range(self.max_retries):
            try:
                response = self.client.request(method, url, **kwargs)
                response.raise_for_status()
                return response.text

            except (httpx.TimeoutException, httpx.TransportError) as e:
                # Transient network errors - retry
                last_error = e
                if attempt < self.max_retries - 1:
                    wait_time = self.backoff_factor ** attempt
                    logger.warning(
                        f"{method} {url} attempt {attempt + 1}/{self.max_retries} failed "
                        f"(transient error): {type(e).__name__}. Retrying in {wait_time:.1f}s..."
                    )
                    time.sleep(wait_time)

            except httpx.HTTPStatusError as e:
                # Don't retry on 4xx (client error), retry on 5xx (server error)
                if 400 <= e.response.status_code < 500:
                    raise FetchError(url, f"HTTP {e.response.status_code} (client error)") from e

                last_error = e
                if attempt < self.max_retries - 1:
                    wait_time = self.backoff_factor ** attempt
                    logger.warning(
                        f"{method} {url} attempt {attempt + 1}/{self.max_retries} failed "
                        f"(HTTP {e.response.status_code} server error). Retrying in {wait_time:.1f}s..."
                    )
                    time.sleep(wait_time)

        raise FetchError(
            url, f"failed after {self.max_retries} attempts: {last_error}"
        ) from last_error

    def _cache_path(self, url: str) -> Path | None:
        if self.cache_dir is None:
            return None
        return self.cache_dir / hashlib.sha1(url.encode("utf-8")).hexdigest()

    def _read_cache(self, url: str) -> str | None:
        path = self._cache_path(url)
        if path is None or not path.exists():
            return None
        try:
            return path.read_text(encoding="utf-8")
        except (OSError, UnicodeDecodeError) as e:
            logger.warning(f"Ignoring unreadable cache entry {path}: {e}")
            return None

    def _write_cache(self, url: str, text: str) -> None:
        path = self._cache_path(url)
        if path is None:
            return
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_text(text, encoding="utf-8")
        except OSError as e:
            logger.warning(f"Failed to write cache entry {path}: {e}")
