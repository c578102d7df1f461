import asyncio

import httpx
import pytest

from finboard.errors import HttpStatusError, NetworkError, ParseError
from finboard.fetch_cache import FetchCache


class FakeClock:
    def __init__(self, now: float = 1000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now


def make_cache(handler, clock=None, **kwargs) -> tuple[FetchCache, list[httpx.Request]]:
    requests: list[httpx.Request] = []

    def recording(request: httpx.Request) -> httpx.Response:
        requests.append(request)
        return handler(request)

    client = httpx.AsyncClient(transport=httpx.MockTransport(recording))
    return FetchCache(client=client, clock=clock or FakeClock(), **kwargs), requests


def json_handler(request: httpx.Request) -> httpx.Response:
    return httpx.Response(200, json={"path": request.url.path, "q": str(request.url.query, "ascii")})


def test_second_call_within_window_is_served_from_cache():
    clock = FakeClock()
    cache, requests = make_cache(json_handler, clock)

    async def scenario():
        first = await cache.get("https://api.test/quote?s=IBM", duration_ms=60_000)
        clock.now += 30
        second = await cache.get("https://api.test/quote?s=IBM", duration_ms=60_000)
        return first, second

    first, second = asyncio.run(scenario())
    assert second is first
    assert len(requests) == 1


def test_call_after_window_refetches_and_updates_timestamp():
    clock = FakeClock()
    cache, requests = make_cache(json_handler, clock)
    url = "https://api.test/quote"

    async def scenario():
        await cache.get(url, duration_ms=60_000)
        clock.now += 60
        await cache.get(url, duration_ms=60_000)

    asyncio.run(scenario())
    assert len(requests) == 2
    assert cache.peek(url).fetched_at == 1060.0


def test_force_refresh_bypasses_fresh_entry():
    clock = FakeClock()
    cache, requests = make_cache(json_handler, clock)
    url = "https://api.test/quote"

    async def scenario():
        await cache.get(url)
        clock.now += 1
        await cache.get(url, force_refresh=True)

    asyncio.run(scenario())
    assert len(requests) == 2
    assert cache.peek(url).fetched_at == 1001.0


def test_keys_are_literal_urls():
    cache, requests = make_cache(json_handler)

    async def scenario():
        await cache.get("https://api.test/q?a=1&b=2")
        await cache.get("https://api.test/q?b=2&a=1")

    asyncio.run(scenario())
    assert len(requests) == 2
    assert len(cache) == 2


def test_headers_are_sent():
    cache, requests = make_cache(json_handler)
    asyncio.run(cache.get("https://api.test/q", headers={"X-API-Key": "secret"}))
    assert requests[0].headers["X-API-Key"] == "secret"


def test_http_error_carries_status_and_excerpt_and_writes_nothing():
    cache, _ = make_cache(lambda request: httpx.Response(500, text="x" * 500))

    with pytest.raises(HttpStatusError) as exc:
        asyncio.run(cache.get("https://api.test/broken"))
    assert exc.value.status == 500
    assert exc.value.body_excerpt == "x" * 100
    assert cache.peek("https://api.test/broken") is None


def test_non_json_body_raises_parse_error():
    cache, _ = make_cache(lambda request: httpx.Response(200, text="<html>nope</html>"))
    with pytest.raises(ParseError):
        asyncio.run(cache.get("https://api.test/html"))
    assert len(cache) == 0


def test_transport_failure_raises_network_error():
    def handler(request):
        raise httpx.ConnectError("connection refused", request=request)

    cache, _ = make_cache(handler)
    with pytest.raises(NetworkError):
        asyncio.run(cache.get("https://api.test/down"))


def test_failed_refetch_keeps_stale_entry_but_does_not_return_it():
    clock = FakeClock()
    responses = iter([httpx.Response(200, json={"v": 1}), httpx.Response(503, text="busy")])
    cache, _ = make_cache(lambda request: next(responses), clock)
    url = "https://api.test/v"

    asyncio.run(cache.get(url, duration_ms=1000))
    clock.now += 5
    with pytest.raises(HttpStatusError):
        asyncio.run(cache.get(url, duration_ms=1000))
    assert cache.peek(url).payload == {"v": 1}
    assert cache.peek(url).fetched_at == 1000.0


def test_lru_eviction_bounds_entries():
    cache, _ = make_cache(json_handler, max_entries=2)

    async def scenario():
        await cache.get("https://api.test/a")
        await cache.get("https://api.test/b")
        await cache.get("https://api.test/a")  # refresh recency of a
        await cache.get("https://api.test/c")

    asyncio.run(scenario())
    assert cache.peek("https://api.test/a") is not None
    assert cache.peek("https://api.test/b") is None
    assert cache.peek("https://api.test/c") is not None


def test_sweep_and_invalidate():
    clock = FakeClock()
    cache, _ = make_cache(json_handler, clock, max_age=100)

    async def scenario():
        await cache.get("https://api.test/old")
        clock.now += 50
        await cache.get("https://api.test/new")
        clock.now += 60

    asyncio.run(scenario())
    assert cache.sweep() == 1
    assert cache.peek("https://api.test/old") is None
    assert cache.invalidate("https://api.test/new") == 1
    assert cache.invalidate("https://api.test/new") == 0
    assert cache.invalidate() == 0


def test_malformed_url_raises_network_error():
    cache, requests = make_cache(json_handler)
    with pytest.raises(NetworkError) as exc:
        asyncio.run(cache.get("http://host:abc/q"))
    assert exc.value.url == "http://host:abc/q"
    assert requests == []
    assert len(cache) == 0
