"""Tests for the retrieval strategies, exercised through an active cache manager."""

import time

import pytest

from versecache.models import Request, Response, RouteRule, Strategy
from versecache.network import NetworkError
from versecache.routing import Router
from versecache.strategies import FetchEvent, StrategyRunner
from versecache.worker import CacheWorker, WorkerScript

ORIGIN = "https://bible.example"

ROUTES = (
    RouteRule("/bibles/**", Strategy.STALE_WHILE_REVALIDATE),
    RouteRule("/xrefs/**", Strategy.STALE_WHILE_REVALIDATE),
    RouteRule("/api/**", Strategy.NETWORK_FIRST_WITH_DOCUMENT_FALLBACK),
)


@pytest.fixture
def make_active_worker(storage, fetcher):
    """Install and activate a version precaching the given paths."""
    workers = []

    def _make(precache=("/index.html", "/manifest.json"), **kwargs) -> CacheWorker:
        for path in precache:
            fetcher.add(path, body=f"precached {path}".encode())
        script = WorkerScript(
            version="v1",
            origin=ORIGIN,
            prefix="app-",
            precache=tuple(precache),
            routes=ROUTES,
            **kwargs,
        )
        worker = CacheWorker(script, storage, fetcher)
        worker.install()
        worker.activate()
        workers.append(worker)
        return worker

    yield _make

    for worker in workers:
        worker.discard()


@pytest.fixture
def worker(make_active_worker) -> CacheWorker:
    return make_active_worker()


@pytest.fixture
def cache(storage):
    return storage.open("app-v1")


class TestCacheFirst:
    """Tests for the cache-first strategy."""

    def test_hit_does_not_touch_network(self, worker, fetcher, page_request) -> None:
        """A stored entry is served without a network request."""
        before = fetcher.calls_for("/index.html")

        event = worker.handle_fetch(page_request("/index.html"))

        assert event.response.body == b"precached /index.html"
        assert fetcher.calls_for("/index.html") == before

    def test_miss_fetches_and_stores(self, worker, fetcher, cache, page_request) -> None:
        """A miss is fetched, returned and stored in the background."""
        fetcher.add("/css/app.css", b"body {}")
        request = page_request("/css/app.css")

        event = worker.handle_fetch(request)
        assert event.settle(timeout=5)

        assert event.response.body == b"body {}"
        assert cache.match(request).body == b"body {}"

    def test_other_stores_are_not_consulted(self, worker, storage, fetcher, page_request) -> None:
        """An entry held only by another store is a miss for the current version."""
        url = ORIGIN + "/about.html"
        storage.open("legacy").put(Request(url), Response(url=url, status=200, body=b"legacy copy"))
        fetcher.add("/about.html", b"fresh copy")

        event = worker.handle_fetch(page_request("/about.html"))

        assert event.response.body == b"fresh copy"
        assert fetcher.calls_for("/about.html") == 1

    def test_second_request_served_from_cache(self, worker, fetcher, page_request) -> None:
        """After the write-back, the network is not asked again."""
        fetcher.add("/js/app.js", b"app()")
        worker.handle_fetch(page_request("/js/app.js")).settle(timeout=5)

        event = worker.handle_fetch(page_request("/js/app.js"))

        assert event.response.body == b"app()"
        assert fetcher.calls_for("/js/app.js") == 1

    def test_non_200_not_stored(self, worker, fetcher, cache, page_request) -> None:
        """Error responses are returned but never stored."""
        request = page_request("/missing.png")

        event = worker.handle_fetch(request)
        event.settle(timeout=5)

        assert event.response.status == 404
        assert cache.match(request) is None

    def test_navigation_offline_serves_offline_document(self, worker, fetcher, page_request) -> None:
        """A navigation that misses the cache while offline gets the offline document."""
        fetcher.offline = True

        event = worker.handle_fetch(page_request("/study/john-3", destination="document", mode="navigate"))

        assert event.error is None
        assert event.response.body == b"precached /index.html"

    def test_subresource_offline_miss_fails(self, worker, fetcher, page_request) -> None:
        """Non-navigations do not get the offline document."""
        fetcher.offline = True

        event = worker.handle_fetch(page_request("/img/logo.png", destination="image", mode="no-cors"))

        assert event.response is None
        assert isinstance(event.error, NetworkError)
        with pytest.raises(NetworkError):
            worker.fetch(page_request("/img/logo.png"))

    def test_navigation_offline_without_offline_document(self, make_active_worker, fetcher, page_request) -> None:
        """Without a stored offline document the network failure propagates."""
        worker = make_active_worker(precache=("/manifest.json",))
        fetcher.offline = True

        event = worker.handle_fetch(page_request("/study", mode="navigate"))

        assert isinstance(event.error, NetworkError)

    def test_precached_cross_origin_served_from_cache(self, make_active_worker, fetcher) -> None:
        """A precached CDN script is served cache-first."""
        worker = make_active_worker(precache=("/index.html", "https://cdn.example/lib.js"))
        fetcher.offline = True

        response = worker.fetch(Request("https://cdn.example/lib.js", destination="script"))

        assert response.body == b"precached https://cdn.example/lib.js"


class TestStaleWhileRevalidate:
    """Tests for the stale-while-revalidate strategy."""

    def test_returns_cached_and_refreshes(self, worker, fetcher, cache, page_request) -> None:
        """The stored copy is served while the network copy replaces it."""
        request = page_request("/bibles/kjv/John.json")
        stored = Response(url=request.url, status=200, body=b'{"3": ["old"]}')
        cache.put(request, stored)
        fetcher.add("/bibles/kjv/John.json", b'{"3": ["new"]}')

        event = worker.handle_fetch(request)

        assert event.response == stored
        assert event.settle(timeout=5)
        assert fetcher.calls_for("/bibles/kjv/John.json") == 1
        assert cache.match(request).body == b'{"3": ["new"]}'

    def test_does_not_wait_for_network_on_hit(self, worker, fetcher, cache, page_request) -> None:
        """A slow network does not delay the cached answer."""
        request = page_request("/xrefs/John.json")
        cache.put(request, Response(url=request.url, status=200, body=b"{}"))
        fetcher.add("/xrefs/John.json", b'{"3:16": []}')
        gate = fetcher.hold("/xrefs/John.json")

        started = time.monotonic()
        event = worker.handle_fetch(request)
        elapsed = time.monotonic() - started

        assert event.response.body == b"{}"
        assert elapsed < 1
        assert not event.settle(timeout=0.05)

        gate.set()
        assert event.settle(timeout=5)
        assert cache.match(request).body == b'{"3:16": []}'

    def test_cold_cache_waits_for_network(self, worker, fetcher, cache, page_request) -> None:
        """Without a stored copy the network response is returned and stored."""
        request = page_request("/bibles/kjv/Genesis.json")
        fetcher.add("/bibles/kjv/Genesis.json", b'{"1": ["In the beginning"]}')

        event = worker.handle_fetch(request)
        event.settle(timeout=5)

        assert event.response.body == b'{"1": ["In the beginning"]}'
        assert cache.match(request) == event.response

    def test_cold_cache_network_failure(self, worker, fetcher, page_request) -> None:
        """Nothing stored and no network means the request fails."""
        fetcher.fail("/bibles/kjv/Ruth.json")

        event = worker.handle_fetch(page_request("/bibles/kjv/Ruth.json"))

        assert event.response is None
        assert isinstance(event.error, NetworkError)

    def test_failed_refresh_keeps_entry(self, worker, fetcher, cache, page_request) -> None:
        """A failed background refetch does not evict the stored copy."""
        request = page_request("/bibles/kjv/Mark.json")
        stored = Response(url=request.url, status=200, body=b"mark")
        cache.put(request, stored)
        fetcher.fail("/bibles/kjv/Mark.json")

        event = worker.handle_fetch(request)

        assert event.settle(timeout=5)
        assert event.response == stored
        assert cache.match(request) == stored

    def test_error_refresh_not_stored(self, worker, fetcher, cache, page_request) -> None:
        """A 500 from the refetch leaves the stored copy in place."""
        request = page_request("/bibles/kjv/Luke.json")
        cache.put(request, Response(url=request.url, status=200, body=b"luke"))
        fetcher.add("/bibles/kjv/Luke.json", b"oops", status=500)

        event = worker.handle_fetch(request)
        event.settle(timeout=5)

        assert cache.match(request).body == b"luke"

    def test_late_refresh_overwrites_newer_write(self, worker, fetcher, cache, page_request) -> None:
        """Writes are last-write-wins: a late refresh replaces an entry written meanwhile."""
        request = page_request("/bibles/kjv/Acts.json")
        cache.put(request, Response(url=request.url, status=200, body=b"old"))
        fetcher.add("/bibles/kjv/Acts.json", b"network")
        gate = fetcher.hold("/bibles/kjv/Acts.json")

        event = worker.handle_fetch(request)
        cache.put(request, Response(url=request.url, status=200, body=b"explicit"))
        gate.set()
        event.settle(timeout=5)

        assert cache.match(request).body == b"network"


class TestNetworkFirst:
    """Tests for the network-first strategy."""

    def test_online_returns_and_stores_network(self, worker, fetcher, cache, page_request) -> None:
        request = page_request("/api/plan.json")
        cache.put(request, Response(url=request.url, status=200, body=b"stale"))
        fetcher.add("/api/plan.json", b"fresh")

        event = worker.handle_fetch(request)
        event.settle(timeout=5)

        assert event.response.body == b"fresh"
        assert cache.match(request).body == b"fresh"

    def test_offline_falls_back_to_cache(self, worker, fetcher, cache, page_request) -> None:
        request = page_request("/api/plan.json")
        cache.put(request, Response(url=request.url, status=200, body=b"stale"))
        fetcher.offline = True

        assert worker.fetch(request).body == b"stale"

    def test_offline_navigation_falls_back_to_document(self, worker, fetcher, page_request) -> None:
        fetcher.offline = True

        response = worker.fetch(page_request("/api/reader", mode="navigate"))

        assert response.body == b"precached /index.html"


class TestPassthrough:
    """Requests the cache manager does not intercept."""

    def test_post_goes_to_network_uncached(self, worker, fetcher, cache, page_request) -> None:
        """Non-GET requests are neither served from nor written to the store."""
        fetcher.add("/notes", b"saved")
        request = page_request("/notes", method="POST")

        event = worker.handle_fetch(request)
        event.settle(timeout=5)

        assert event.response.body == b"saved"
        assert cache.keys() == [fetcher.url("/index.html"), fetcher.url("/manifest.json")]

    def test_cross_origin_not_precached_not_stored(self, worker, fetcher, cache) -> None:
        """Unknown cross-origin responses are passed through."""
        fetcher.add("https://fonts.example/font.woff2", b"font", type="cors")
        request = Request("https://fonts.example/font.woff2", destination="font")

        event = worker.handle_fetch(request)
        event.settle(timeout=5)

        assert event.response.body == b"font"
        assert cache.match(request) is None


class TestStrategyRunner:
    """Direct tests for StrategyRunner and FetchEvent."""

    def test_background_failure_does_not_reach_caller(self, fetcher, page_request) -> None:
        """A failing write-back is only logged."""
        from concurrent.futures import ThreadPoolExecutor

        class _BrokenCache:
            def match(self, request):
                return None

            def put(self, request, response):
                raise OSError("disk full")

        fetcher.add("/css/app.css", b"body {}")
        router = Router([], ORIGIN)
        with ThreadPoolExecutor(max_workers=1) as executor:
            runner = StrategyRunner(_BrokenCache(), fetcher, executor, router, f"{ORIGIN}/index.html")
            event = FetchEvent(page_request("/css/app.css"))

            response = runner.run(Strategy.CACHE_FIRST, event)

            assert response.body == b"body {}"
            assert event.settle(timeout=5)

    def test_settle_without_work(self, page_request) -> None:
        assert FetchEvent(page_request("/")).settle(timeout=0)
