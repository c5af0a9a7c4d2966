from __future__ import annotations

from concurrent.futures import ThreadPoolExecutor

import pytest

from mergetrain.cache import CacheEntry, ConditionalCache
from mergetrain.transport import ApiRequest, ApiResponse, GitHubApiError


def _headers(*, etag: str | None = None, limit: str = "5000", remaining: str) -> dict[str, str]:
    headers = {"x-ratelimit-limit": limit, "x-ratelimit-remaining": remaining}
    if etag is not None:
        headers["etag"] = etag
    return headers


class ScriptedSend:
    def __init__(self, *outcomes: ApiResponse | Exception) -> None:
        self.outcomes = list(outcomes)
        self.requests: list[ApiRequest] = []

    def __call__(self, request: ApiRequest) -> ApiResponse:
        self.requests.append(request)
        outcome = self.outcomes.pop(0)
        if isinstance(outcome, Exception):
            raise outcome
        return outcome


def test_not_modified_serves_cached_body_and_updates_rate_limit() -> None:
    first = ApiResponse(200, _headers(etag='W/"abc"', remaining="4999"), {"number": 1})
    send = ScriptedSend(
        first,
        GitHubApiError(304, _headers(remaining="4998"), "<empty>"),
    )
    cache = ConditionalCache(max_size=10)
    cached_send = cache.wrap(send)

    assert cached_send(ApiRequest("GET", "/repos/o/r/pulls/1")) is first
    assert cache.rate_limit_remaining == "4999"

    second = cached_send(ApiRequest("GET", "/repos/o/r/pulls/1"))

    assert second is first
    assert second.payload == {"number": 1}
    assert send.requests[0].headers == ()
    assert send.requests[1].headers == (("If-None-Match", 'W/"abc"'),)
    assert cache.rate_limit_total == "5000"
    assert cache.rate_limit_remaining == "4998"
    assert cache.size == 1


def test_not_modified_without_cached_entry_propagates() -> None:
    send = ScriptedSend(GitHubApiError(304, _headers(remaining="10"), "<empty>"))
    cache = ConditionalCache(max_size=10)

    with pytest.raises(GitHubApiError) as excinfo:
        cache.wrap(send)(ApiRequest("GET", "/repos/o/r/pulls/1"))

    assert excinfo.value.status_code == 304
    assert cache.rate_limit_remaining == "10"


def test_other_failures_propagate_unchanged() -> None:
    error = GitHubApiError(502, _headers(remaining="7"), "bad gateway")
    send = ScriptedSend(
        ApiResponse(200, _headers(etag='"e1"', remaining="9"), []),
        error,
    )
    cache = ConditionalCache(max_size=10)
    cached_send = cache.wrap(send)
    cached_send(ApiRequest("GET", "/repos/o/r/issues"))

    with pytest.raises(GitHubApiError) as excinfo:
        cached_send(ApiRequest("GET", "/repos/o/r/issues"))

    assert excinfo.value is error
    assert cache.rate_limit_remaining == "7"


def test_fresh_response_refreshes_etag() -> None:
    send = ScriptedSend(
        ApiResponse(200, _headers(etag='"v1"', remaining="9"), {"v": 1}),
        ApiResponse(200, _headers(etag='"v2"', remaining="8"), {"v": 2}),
        GitHubApiError(304, _headers(remaining="7"), "<empty>"),
    )
    cache = ConditionalCache(max_size=10)
    cached_send = cache.wrap(send)

    cached_send(ApiRequest("GET", "/u"))
    cached_send(ApiRequest("GET", "/u"))
    result = cached_send(ApiRequest("GET", "/u"))

    assert result.payload == {"v": 2}
    assert send.requests[2].headers == (("If-None-Match", '"v2"'),)


def test_response_without_etag_is_not_cached() -> None:
    send = ScriptedSend(ApiResponse(200, _headers(remaining="9"), {"ok": True}))
    cache = ConditionalCache(max_size=10)

    cache.wrap(send)(ApiRequest("GET", "/u"))

    assert cache.size == 0
    assert cache.get("/u") is None


def test_non_get_requests_bypass_cache_but_record_rate_limit() -> None:
    send = ScriptedSend(
        ApiResponse(200, _headers(etag='"put"', remaining="3"), {"merged": True}),
    )
    cache = ConditionalCache(max_size=10)

    cache.wrap(send)(ApiRequest("PUT", "/repos/o/r/pulls/1/merge", {"merge_method": "squash"}))

    assert cache.size == 0
    assert cache.rate_limit_remaining == "3"


def test_eviction_drops_least_recently_used_entry() -> None:
    cache = ConditionalCache(max_size=2)
    entry = CacheEntry(etag='"e"', response=ApiResponse(200))
    cache.put("/a", entry)
    cache.put("/b", entry)
    assert cache.get("/a") is entry

    cache.put("/c", entry)

    assert cache.keys() == ("/a", "/c")
    assert cache.get("/b") is None
    assert cache.size == 2


def test_refresh_counts_as_use_for_eviction() -> None:
    send = ScriptedSend(
        *[ApiResponse(200, _headers(etag=f'"{idx}"', remaining="1"), idx) for idx in range(4)]
    )
    cache = ConditionalCache(max_size=2)
    cached_send = cache.wrap(send)

    cached_send(ApiRequest("GET", "/a"))
    cached_send(ApiRequest("GET", "/b"))
    cached_send(ApiRequest("GET", "/a"))
    cached_send(ApiRequest("GET", "/c"))

    assert cache.keys() == ("/a", "/c")


def test_capacity_holds_under_concurrent_requests() -> None:
    cache = ConditionalCache(max_size=4)

    def send(request: ApiRequest) -> ApiResponse:
        return ApiResponse(200, _headers(etag=f'"{request.path}"', remaining="1"), request.path)

    cached_send = cache.wrap(send)

    def fetch(idx: int) -> ApiResponse:
        return cached_send(ApiRequest("GET", f"/p/{idx}"))

    with ThreadPoolExecutor(max_workers=8) as pool:
        results = list(pool.map(fetch, range(50)))

    assert [result.payload for result in results] == [f"/p/{idx}" for idx in range(50)]
    assert cache.size == 4


def test_max_size_must_be_positive() -> None:
    with pytest.raises(ValueError, match="max_size"):
        ConditionalCache(max_size=0)
