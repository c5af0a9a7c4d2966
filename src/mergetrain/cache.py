from __future__ import annotations

from collections import OrderedDict
from dataclasses import dataclass
import logging
import threading
from typing import Final

from mergetrain.observability import log_event
from mergetrain.transport import ApiRequest, ApiResponse, GitHubApiError, Send


LOGGER = logging.getLogger("mergetrain.cache")
_KEY_LOCK_STRIPES: Final[int] = 64
_RATE_LIMIT_HEADER: Final[str] = "x-ratelimit-limit"
_RATE_LIMIT_REMAINING_HEADER: Final[str] = "x-ratelimit-remaining"


@dataclass(frozen=True)
class CacheEntry:
    etag: str
    response: ApiResponse


class ConditionalCache:
    """ETag cache shared by every repository's outbound GitHub calls.

    Entries are keyed by request path (query string included) and never by the
    credentials used to fetch them, so one cache must only serve one
    installation. Each conditional round trip for a path runs under a striped
    lock, which keeps the ETag and body of an entry consistent when several
    repository queues share the cache.
    """

    def __init__(self, max_size: int) -> None:
        if max_size < 1:
            raise ValueError("max_size must be >= 1")
        self._max_size = max_size
        self._entries: OrderedDict[str, CacheEntry] = OrderedDict()
        self._lock = threading.Lock()
        self._key_locks = tuple(threading.Lock() for _ in range(_KEY_LOCK_STRIPES))
        self._rate_limit_total = ""
        self._rate_limit_remaining = ""

    @property
    def max_size(self) -> int:
        return self._max_size

    @property
    def size(self) -> int:
        with self._lock:
            return len(self._entries)

    @property
    def rate_limit_total(self) -> str:
        return self._rate_limit_total

    @property
    def rate_limit_remaining(self) -> str:
        return self._rate_limit_remaining

    def get(self, url: str) -> CacheEntry | None:
        with self._lock:
            entry = self._entries.get(url)
            if entry is not None:
                self._entries.move_to_end(url)
            return entry

    def put(self, url: str, entry: CacheEntry) -> None:
        with self._lock:
            self._entries[url] = entry
            self._entries.move_to_end(url)
            while len(self._entries) > self._max_size:
                evicted_url, _ = self._entries.popitem(last=False)
                log_event(LOGGER, "cache_evicted", url=evicted_url)

    def keys(self) -> tuple[str, ...]:
        """Cached URLs, least recently used first."""
        with self._lock:
            return tuple(self._entries.keys())

    def wrap(self, send: Send) -> Send:
        def cached_send(request: ApiRequest) -> ApiResponse:
            if request.method.upper() != "GET":
                return self._send_uncached(send, request)
            with self._key_lock(request.path):
                return self._send_conditional(send, request)

        return cached_send

    def _send_uncached(self, send: Send, request: ApiRequest) -> ApiResponse:
        try:
            response = send(request)
        except GitHubApiError as exc:
            self._record_rate_limit(exc.headers)
            raise
        self._record_rate_limit(response.headers)
        return response

    def _send_conditional(self, send: Send, request: ApiRequest) -> ApiResponse:
        url = request.path
        cached = self.get(url)
        if cached is not None:
            log_event(LOGGER, "cache_etag_found", url=url, etag=cached.etag)
            request = request.with_header("If-None-Match", cached.etag)

        try:
            response = send(request)
        except GitHubApiError as exc:
            self._record_rate_limit(exc.headers)
            if exc.status_code == 304 and cached is not None:
                log_event(LOGGER, "cache_hit", url=url, etag=cached.etag)
                return cached.response
            raise

        self._record_rate_limit(response.headers)
        etag = response.headers.get("etag")
        if etag:
            log_event(LOGGER, "cache_stored", url=url, etag=etag)
            self.put(url, CacheEntry(etag=etag, response=response))
        return response

    def _record_rate_limit(self, headers: dict[str, str]) -> None:
        with self._lock:
            self._rate_limit_total = headers.get(_RATE_LIMIT_HEADER, "")
            self._rate_limit_remaining = headers.get(_RATE_LIMIT_REMAINING_HEADER, "")

    def _key_lock(self, url: str) -> threading.Lock:
        return self._key_locks[hash(url) % _KEY_LOCK_STRIPES]
