"""Shared fixtures: a scripted network and an in-memory cache storage."""

import threading
from urllib.parse import urljoin

import pytest

from versecache.models import Request, Response
from versecache.network import NetworkError
from versecache.storage import MemoryCacheStorage

ORIGIN = "https://bible.example"


class FakeFetcher:
    """Network stand-in returning scripted responses and recording every call."""

    def __init__(self, origin: str = ORIGIN) -> None:
        self.origin = origin
        self.calls: list[str] = []
        self.offline = False
        self._outcomes: dict[str, Response | Exception] = {}
        self._gates: dict[str, threading.Event] = {}
        self._lock = threading.Lock()

    def url(self, path_or_url: str) -> str:
        return urljoin(self.origin + "/", path_or_url)

    def add(self, path_or_url: str, body: bytes = b"ok", status: int = 200, type: str = "basic") -> Response:
        url = self.url(path_or_url)
        response = Response(url=url, status=status, body=body, type=type)
        self._outcomes[url] = response
        return response

    def fail(self, path_or_url: str) -> None:
        url = self.url(path_or_url)
        self._outcomes[url] = NetworkError(f"connection refused: {url}")

    def hold(self, path_or_url: str) -> threading.Event:
        """Block fetches of this URL until the returned event is set."""
        gate = threading.Event()
        self._gates[self.url(path_or_url)] = gate
        return gate

    def calls_for(self, path_or_url: str) -> int:
        url = self.url(path_or_url)
        with self._lock:
            return self.calls.count(url)

    def fetch(self, request: Request) -> Response:
        with self._lock:
            self.calls.append(request.url)
        gate = self._gates.get(request.url)
        if gate is not None:
            gate.wait(timeout=5)
        if self.offline:
            raise NetworkError(f"offline: {request.url}")
        outcome = self._outcomes.get(request.url)
        if outcome is None:
            return Response(url=request.url, status=404, status_text="Not Found")
        if isinstance(outcome, Exception):
            raise outcome
        return outcome

    def close(self) -> None:
        pass


@pytest.fixture
def fetcher() -> FakeFetcher:
    """Scripted network for the test origin."""
    return FakeFetcher()


@pytest.fixture
def storage() -> MemoryCacheStorage:
    """Empty in-memory cache storage."""
    return MemoryCacheStorage()


@pytest.fixture
def page_request():
    """Build a Request for a path on the test origin."""

    def _make(path: str, destination: str = "", mode: str = "cors", method: str = "GET") -> Request:
        return Request(url=urljoin(ORIGIN + "/", path), method=method, destination=destination, mode=mode)

    return _make
