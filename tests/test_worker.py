"""Tests for the cache manager install/activate lifecycle."""

import pytest

from versecache.config import Config, default_config
from versecache.models import Request, Response, WorkerState
from versecache.storage import MemoryCacheStorage, StorageError
from versecache.worker import (
    SKIP_WAITING,
    CacheWorker,
    PrecacheError,
    WorkerScript,
    WorkerStateError,
)

ORIGIN = "https://bible.example"


def make_worker(storage, fetcher, version="v1", precache=("/index.html", "/manifest.json"), **kwargs) -> CacheWorker:
    script = WorkerScript(version=version, origin=ORIGIN, prefix="app-", precache=tuple(precache), **kwargs)
    return CacheWorker(script, storage, fetcher)


class _FlakyDeleteStorage(MemoryCacheStorage):
    """Storage whose delete fails for one cache name."""

    def __init__(self, broken: str) -> None:
        super().__init__()
        self._broken = broken

    def delete(self, name: str) -> bool:
        if name == self._broken:
            raise StorageError(f"cannot delete {name}")
        return super().delete(name)


class TestWorkerScript:
    """Tests for WorkerScript."""

    def test_cache_name_joins_prefix_and_version(self) -> None:
        """Cache name is prefix + version."""
        script = WorkerScript(version="v7", origin=ORIGIN, prefix="app-")
        assert script.cache_name == "app-v7"

    def test_from_config(self) -> None:
        """Script mirrors the configuration."""
        config = default_config()
        script = WorkerScript.from_config(config)
        assert script.version == "v1"
        assert script.cache_name == "bible-study-v1"
        assert script.precache == tuple(config.precache)
        assert script.routes == tuple(config.routes)
        assert script.offline_document == "/index.html"

    def test_from_config_keeps_custom_origin(self) -> None:
        """Origin comes from the app section."""
        config = Config(precache=["/"])
        script = WorkerScript.from_config(config)
        assert script.origin == config.app.origin
        assert script.precache == ("/",)


class TestInstall:
    """Tests for CacheWorker.install."""

    def test_stores_every_precache_entry(self, storage, fetcher) -> None:
        """After a successful install every precache entry is stored with status 200."""
        fetcher.add("/index.html", b"<html>")
        fetcher.add("/manifest.json", b"{}")
        worker = make_worker(storage, fetcher)

        worker.install()

        assert worker.state is WorkerState.INSTALLED
        cache = storage.open("app-v1")
        assert len(cache) == 2
        for path in ("/index.html", "/manifest.json"):
            cached = cache.match(Request(fetcher.url(path)))
            assert cached is not None
            assert cached.status == 200

    def test_stores_precached_cross_origin_script(self, storage, fetcher) -> None:
        """A CDN script listed in the precache manifest is stored."""
        fetcher.add("/index.html")
        fetcher.add("https://cdn.example/lib.js", b"lib()", type="cors")
        worker = make_worker(storage, fetcher, precache=("/index.html", "https://cdn.example/lib.js"))

        worker.install()

        cached = storage.open("app-v1").match(Request("https://cdn.example/lib.js"))
        assert cached is not None
        assert cached.body == b"lib()"

    def test_fails_on_non_200_response(self, storage, fetcher) -> None:
        """A 404 precache entry fails the whole install."""
        fetcher.add("/index.html")
        worker = make_worker(storage, fetcher)

        with pytest.raises(PrecacheError, match="manifest.json"):
            worker.install()

        assert worker.state is WorkerState.REDUNDANT

    def test_fails_on_network_error(self, storage, fetcher) -> None:
        """A network failure for any entry fails the install."""
        fetcher.add("/index.html")
        fetcher.fail("/manifest.json")
        worker = make_worker(storage, fetcher)

        with pytest.raises(PrecacheError, match="Failed to fetch"):
            worker.install()

        assert worker.state is WorkerState.REDUNDANT

    def test_rejects_opaque_response(self, storage, fetcher) -> None:
        """Opaque responses cannot be inspected and fail the install."""
        fetcher.add("/index.html")
        fetcher.add("https://cdn.example/lib.js", type="opaque")
        worker = make_worker(storage, fetcher, precache=("/index.html", "https://cdn.example/lib.js"))

        with pytest.raises(PrecacheError, match="opaque"):
            worker.install()

    def test_failed_install_writes_nothing(self, storage, fetcher) -> None:
        """No partially populated store is left behind."""
        fetcher.add("/index.html")
        worker = make_worker(storage, fetcher)

        with pytest.raises(PrecacheError):
            worker.install()

        assert not storage.has("app-v1")

    def test_storage_failure_fails_install(self, fetcher) -> None:
        """A store write error is reported as a precache failure."""

        class _ReadOnlyStorage(MemoryCacheStorage):
            def open(self, name):
                raise StorageError("disk full")

        fetcher.add("/index.html")
        fetcher.add("/manifest.json")
        worker = make_worker(_ReadOnlyStorage(), fetcher)

        with pytest.raises(PrecacheError, match="disk full"):
            worker.install()

        assert worker.state is WorkerState.REDUNDANT

    def test_cannot_install_twice(self, storage, fetcher) -> None:
        """Install is only allowed from the parsed state."""
        fetcher.add("/index.html")
        fetcher.add("/manifest.json")
        worker = make_worker(storage, fetcher)
        worker.install()

        with pytest.raises(WorkerStateError):
            worker.install()

    def test_statechange_events(self, storage, fetcher) -> None:
        """Listeners see every transition in order."""
        fetcher.add("/index.html")
        fetcher.add("/manifest.json")
        worker = make_worker(storage, fetcher)
        states = []
        worker.add_listener("statechange", lambda w: states.append(w.state))

        worker.install()
        worker.activate()

        assert states == [
            WorkerState.INSTALLING,
            WorkerState.INSTALLED,
            WorkerState.ACTIVATING,
            WorkerState.ACTIVATED,
        ]


class TestActivate:
    """Tests for CacheWorker.activate."""

    def test_deletes_stale_caches_with_prefix(self, storage, fetcher) -> None:
        """Older stores with the prefix are deleted; the current one is untouched."""
        storage.open("app-v0")
        storage.open("app-old")
        storage.open("other-v1")
        fetcher.add("/index.html")
        fetcher.add("/manifest.json")
        worker = make_worker(storage, fetcher)
        worker.install()

        deleted = worker.activate()

        assert sorted(deleted) == ["app-old", "app-v0"]
        assert storage.keys() == ["other-v1", "app-v1"]
        assert len(storage.open("app-v1")) == 2
        assert worker.state is WorkerState.ACTIVATED

    def test_deletion_failure_does_not_block_others(self, fetcher) -> None:
        """A failing delete is logged and cleanup continues."""
        storage = _FlakyDeleteStorage(broken="app-v0")
        storage.open("app-v0")
        storage.open("app-v00")
        fetcher.add("/index.html")
        fetcher.add("/manifest.json")
        worker = make_worker(storage, fetcher)
        worker.install()

        deleted = worker.activate()

        assert deleted == ["app-v00"]
        assert storage.has("app-v0")
        assert worker.state is WorkerState.ACTIVATED

    def test_cannot_activate_before_install(self, storage, fetcher) -> None:
        """Activation requires a completed install."""
        worker = make_worker(storage, fetcher)
        with pytest.raises(WorkerStateError):
            worker.activate()

    def test_fetch_requires_activation(self, storage, fetcher) -> None:
        """An installed but waiting instance does not answer requests."""
        fetcher.add("/index.html")
        fetcher.add("/manifest.json")
        worker = make_worker(storage, fetcher)
        worker.install()

        with pytest.raises(WorkerStateError):
            worker.handle_fetch(Request(fetcher.url("/index.html")))


class TestMessages:
    """Tests for control messages."""

    def test_skip_waiting_message(self, storage, fetcher) -> None:
        """The skip-waiting message marks the instance."""
        worker = make_worker(storage, fetcher)
        worker.post_message({"type": SKIP_WAITING})
        assert worker.skip_waiting_requested

    def test_unknown_message_ignored(self, storage, fetcher) -> None:
        """Other messages have no effect."""
        worker = make_worker(storage, fetcher)
        worker.post_message({"type": "PING"})
        worker.post_message("SKIP_WAITING")
        worker.post_message(None)
        assert not worker.skip_waiting_requested

    def test_discard_is_idempotent(self, storage, fetcher) -> None:
        """Discarding twice leaves the instance redundant."""
        worker = make_worker(storage, fetcher)
        worker.discard()
        worker.discard()
        assert worker.state is WorkerState.REDUNDANT

    def test_response_helpers(self) -> None:
        """Only 200 basic/cors responses are cacheable."""
        assert Response(url="u", status=200).is_cacheable
        assert Response(url="u", status=200, type="cors").is_cacheable
        assert not Response(url="u", status=200, type="opaque").is_cacheable
        assert not Response(url="u", status=204).is_cacheable
        assert Response(url="u", status=204).ok
