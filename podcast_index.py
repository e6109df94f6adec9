"""Podcast Index API access: request signing, pacing and the HTTP client."""

from __future__ import annotations

import hashlib
import logging
import time
from typing import Any, Callable, Dict, Optional, Tuple

import requests
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

LOG = logging.getLogger("podcast_index")

HTTP_TOO_MANY_REQUESTS = 429


class PodcastIndexError(Exception):
    """Raised when the Podcast Index cannot be queried."""


class RateLimitedError(PodcastIndexError):
    """Raised when a request is still rate limited after the cooldown retry."""


def auth_headers(api_key: str, api_secret: str, now: Optional[float] = None) -> Dict[str, str]:
    """Return the three Podcast Index auth headers for the given instant."""
    timestamp = int(time.time() if now is None else now)
    digest = hashlib.sha1(f"{api_key}{api_secret}{timestamp}".encode("utf-8")).hexdigest()
    return {
        "X-Auth-Date": str(timestamp),
        "X-Auth-Key": api_key,
        "Authorization": digest,
    }


def mask_secret(value: str) -> str:
    """Return a masked representation of a key for logging."""
    if not value:
        return "***"
    if len(value) <= 4:
        return "***"
    return f"{value[:2]}***{value[-2:]}"


def sanitize_headers(headers: Dict[str, str]) -> Dict[str, str]:
    """Make a shallow copy of headers with credentials masked."""
    sanitized = dict(headers)
    if "Authorization" in sanitized:
        sanitized["Authorization"] = "***"
    if "X-Auth-Key" in sanitized:
        sanitized["X-Auth-Key"] = mask_secret(sanitized["X-Auth-Key"])
    return sanitized


class RateLimitGuard:
    """Space out calls and give a 429 exactly one cooldown-and-retry.

    ``send`` is any zero-argument callable returning an object with a
    ``status_code``. The guard is not thread-safe; callers are sequential.
    """

    def __init__(
        self,
        min_interval: float = 1.0,
        cooldown: float = 30.0,
        *,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.min_interval = max(0.0, min_interval)
        self.cooldown = max(0.0, cooldown)
        self._sleep = sleep
        self._clock = clock
        self._last_call: Optional[float] = None
        self.calls = 0
        self.cooldowns = 0

    def wait_turn(self) -> None:
        if self._last_call is not None:
            wait_for = self._last_call + self.min_interval - self._clock()
            if wait_for > 0:
                self._sleep(wait_for)
        self._last_call = self._clock()

    def call(self, send: Callable[[], Any], *, label: str = "request") -> Any:
        self.wait_turn()
        self.calls += 1
        response = send()
        if response.status_code != HTTP_TOO_MANY_REQUESTS:
            return response

        self.cooldowns += 1
        LOG.warning("Rate limited on %s; cooling down for %.0fs before one retry.", label, self.cooldown)
        self._sleep(self.cooldown)
        self.wait_turn()
        self.calls += 1
        response = send()
        if response.status_code == HTTP_TOO_MANY_REQUESTS:
            raise RateLimitedError(f"{label} still rate limited after {self.cooldown:.0f}s cooldown")
        return response


class PodcastIndexClient:
    """Client for the Podcast Index REST API."""

    def __init__(
        self,
        api_key: str,
        api_secret: str,
        *,
        base_url: str,
        user_agent: str,
        timeout: float,
        guard: RateLimitGuard,
        session: Optional[requests.Session] = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.api_key = api_key
        self._api_secret = api_secret
        self.base_url = base_url.rstrip("/")
        self.user_agent = user_agent
        self.timeout = timeout
        self.guard = guard
        self._clock = clock

        if session is None:
            session = requests.Session()
            # Only reconnect once on a dropped connection; 429 handling belongs to the guard.
            retry = Retry(total=1, connect=1, read=0, status=0, backoff_factor=0, allowed_methods=["GET"])
            adapter = HTTPAdapter(max_retries=retry)
            session.mount("https://", adapter)
            session.mount("http://", adapter)
        self.session = session

        LOG.debug("Podcast Index client configured for %s with key %s.", self.base_url, mask_secret(api_key))

    @property
    def api_calls(self) -> int:
        return self.guard.calls

    def podcast_by_guid(self, feed_guid: str) -> Tuple[int, Optional[Dict[str, Any]]]:
        return self._get("podcasts/byguid", {"guid": feed_guid})

    def episode_by_guid(
        self,
        item_guid: str,
        *,
        feed_id: Optional[int] = None,
        feed_guid: Optional[str] = None,
    ) -> Tuple[int, Optional[Dict[str, Any]]]:
        params: Dict[str, Any] = {"guid": item_guid}
        if feed_id is not None:
            params["feedid"] = feed_id
        elif feed_guid:
            params["podcastguid"] = feed_guid
        return self._get("episodes/byguid", params)

    def episodes_by_feed_id(self, feed_id: int, *, max_items: int) -> Tuple[int, Optional[Dict[str, Any]]]:
        return self._get("episodes/byfeedid", {"id": feed_id, "max": max_items})

    def _headers(self) -> Dict[str, str]:
        headers = auth_headers(self.api_key, self._api_secret, self._clock())
        headers["User-Agent"] = self.user_agent
        return headers

    def _get(self, endpoint: str, params: Dict[str, Any]) -> Tuple[int, Optional[Dict[str, Any]]]:
        """GET an endpoint through the guard; return the status code and decoded JSON.

        Timeouts and connection failures raise ``requests.RequestException``;
        a second 429 raises ``RateLimitedError``. Non-200 answers are returned
        with a ``None`` payload so callers can classify them.
        """
        url = f"{self.base_url}/{endpoint}"

        def send() -> requests.Response:
            # Signed per attempt so the retry after a cooldown carries a fresh timestamp.
            headers = self._headers()
            LOG.debug("GET %s params=%s headers=%s", url, params, sanitize_headers(headers))
            return self.session.get(url, params=params, headers=headers, timeout=self.timeout)

        response = self.guard.call(send, label=endpoint)
        if response.status_code != 200:
            LOG.debug("%s answered HTTP %s for %s", endpoint, response.status_code, params)
            return response.status_code, None

        try:
            payload = response.json()
        except ValueError as exc:
            raise PodcastIndexError(f"Invalid JSON response from {endpoint}: {exc}") from exc
        if not isinstance(payload, dict):
            raise PodcastIndexError(f"Malformed response from {endpoint}: expected a JSON object.")
        return response.status_code, payload


def status_ok(payload: Optional[Dict[str, Any]]) -> bool:
    """Podcast Index reports ``status`` as the string ``"true"`` or a boolean."""
    if not payload:
        return False
    status = payload.get("status")
    if isinstance(status, bool):
        return status
    if isinstance(status, str):
        return status.strip().lower() == "true"
    return False
