"""
app/connectors/feed_fetcher.py

HTTP retrieval of raw job feed documents.
"""

from __future__ import annotations

import logging
import time

import requests

from app.config import FeedFetchSettings, get_feed_fetch_settings

logger = logging.getLogger(__name__)

RETRYABLE_STATUS_CODES = {429, 500, 502, 503, 504}

FEED_ACCEPT_HEADER = "application/rss+xml, application/atom+xml, application/xml, text/xml, */*"


class FeedFetchError(RuntimeError):
    """
    Raised when a feed cannot be fetched after retries.

    kind is one of "status", "network" or "timeout".
    """

    def __init__(self, message: str, *, kind: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.kind = kind
        self.status_code = status_code


class FeedFetcher:
    """
    Fetch raw feed bytes with a request timeout and exponential backoff.
    """

    def __init__(
        self,
        *,
        settings: FeedFetchSettings | None = None,
        session: requests.Session | None = None,
    ) -> None:
        settings = settings or get_feed_fetch_settings()
        self._session = session or requests.Session()
        self._timeout_seconds = settings.timeout_seconds
        self._max_retries = settings.max_retries
        self._backoff_initial_seconds = settings.backoff_initial_seconds
        self._backoff_multiplier = settings.backoff_multiplier
        self._headers = {
            "User-Agent": settings.user_agent,
            "Accept": FEED_ACCEPT_HEADER,
        }

    def fetch(self, url: str) -> bytes:
        last_error: FeedFetchError | None = None
        for attempt in range(self._max_retries + 1):
            try:
                response = self._session.get(
                    url,
                    headers=self._headers,
                    timeout=self._timeout_seconds,
                )
                if response.status_code in RETRYABLE_STATUS_CODES:
                    raise requests.HTTPError(
                        f"Retryable HTTP status code: {response.status_code}",
                        response=response,
                    )
                response.raise_for_status()
                logger.info(
                    "Feed fetched url=%s status=%s bytes=%s",
                    url,
                    response.status_code,
                    len(response.content),
                )
                return response.content
            except requests.HTTPError as exc:
                status_code = exc.response.status_code if exc.response is not None else None
                last_error = FeedFetchError(
                    f"HTTP {status_code} fetching {url}",
                    kind="status",
                    status_code=status_code,
                )
                if status_code not in RETRYABLE_STATUS_CODES:
                    logger.error("Feed fetch failed url=%s status=%s", url, status_code)
                    raise last_error from exc
            except requests.Timeout as exc:
                last_error = FeedFetchError(
                    f"Timed out after {self._timeout_seconds}s fetching {url}",
                    kind="timeout",
                )
                last_error.__cause__ = exc
            except requests.RequestException as exc:
                last_error = FeedFetchError(f"Network error fetching {url}: {exc}", kind="network")
                last_error.__cause__ = exc

            if attempt >= self._max_retries:
                break

            backoff_seconds = self._backoff_initial_seconds * (self._backoff_multiplier**attempt)
            logger.warning(
                "Feed fetch retry url=%s attempt=%s/%s wait_seconds=%.2f error=%s",
                url,
                attempt + 1,
                self._max_retries,
                backoff_seconds,
                last_error,
            )
            time.sleep(backoff_seconds)

        logger.error("Feed fetch exhausted retries url=%s error=%s", url, last_error)
        raise last_error or FeedFetchError(f"Could not fetch {url}", kind="network")
